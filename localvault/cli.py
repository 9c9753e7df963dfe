"""
LocalVault Command-Line Interface

Runs the secret lifecycle walkthrough and serves the secrets HTTP API.

Author: LocalVault Team
Date: 2026-10-19
"""

import sys
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import click
import uvicorn
import yaml
from fastapi import FastAPI

from localvault import __version__
from localvault.core.config_manager import ConfigManager, LocalVaultConfig
from localvault.core.logging_config import setup_logging
from localvault.secrets.exceptions import VaultError
from localvault.secrets.factory import create_secret_store
from localvault.secrets.models import SecretProperties
from localvault.secrets.routes import (
    CorrelationIdMiddleware,
    create_router,
    register_exception_handlers,
)
from localvault.secrets.store import SecretStore

logger = logging.getLogger("localvault.cli")

DEMO_SECRET_NAME = "BankAccountSecret"


def _load_config(config: Optional[Path], overrides: Dict[str, Any]) -> LocalVaultConfig:
    manager = ConfigManager()
    loaded = manager.load(
        config_file=str(config) if config else None,
        cli_overrides=overrides or None,
    )
    setup_logging(
        level=loaded.logging.level,
        format_type=loaded.logging.format,
        log_file=loaded.logging.file,
        rotation_size=loaded.logging.rotation_size,
        rotation_count=loaded.logging.rotation_count,
        module_levels=loaded.logging.module_levels,
    )
    return loaded


def create_app(config: Optional[LocalVaultConfig] = None) -> FastAPI:
    """
    Create the FastAPI application serving the secrets API.

    Args:
        config: Configuration (defaults are used when omitted)

    Returns:
        FastAPI application
    """
    config = config or LocalVaultConfig()
    store = create_secret_store(config)

    app = FastAPI(
        title="LocalVault",
        description="Secret lifecycle manager",
        version=__version__,
    )
    app.include_router(create_router(store))
    register_exception_handlers(app)
    app.add_middleware(CorrelationIdMiddleware)
    return app


async def run_demo(
    store: SecretStore,
    show_values: bool = False,
    timeout: Optional[float] = None,
    echo=click.echo,
) -> None:
    """
    Walk one secret through its whole lifecycle.

    Sets a secret valid for a year, reads and lists it, extends its expiry,
    rotates its value, deletes it and, when soft-delete is enabled, purges it.
    """
    def shown(value: str) -> str:
        return value if show_values else "*" * len(value)

    one_year = timedelta(days=365)

    # Bank account credentials valid for one year; setting an existing name adds a version
    await store.set_secret(
        DEMO_SECRET_NAME,
        "f4G34fMh8v",
        SecretProperties(expires_on=datetime.now(timezone.utc) + one_year),
    )

    bank_secret = await store.get_secret(DEMO_SECRET_NAME)
    echo(f"Secret is returned with name {bank_secret.name} and value {shown(bank_secret.value)}")

    # Listing carries no values, so read each listed version back
    async for properties in store.list_secret_properties():
        secret = await store.get_secret(properties.name, properties.version)
        echo(f'Retrieved secret with name "{secret.name}" and value "{shown(secret.value)}"')

    # Extending the expiry updates properties only
    properties = bank_secret.properties.model_copy()
    properties.expires_on = datetime.now(timezone.utc) + one_year
    updated = await store.update_properties(DEMO_SECRET_NAME, bank_secret.version, properties)
    echo(f"Secret's updated expiry time {updated.expires_on.isoformat()}")

    # Changing the value requires a new version
    rotated = await store.set_secret(
        DEMO_SECRET_NAME,
        "bhjd4DDgsa",
        SecretProperties(expires_on=datetime.now(timezone.utc) + one_year),
    )
    echo(f"Secret rotated to version {rotated.version}")

    handle = await store.begin_delete(DEMO_SECRET_NAME)
    poller = store.get_poller(handle)
    response = await poller.poll()
    echo(f"Delete operation {handle.token} is {response.status.value}")

    result = await poller.wait_for_completion(timeout)
    deleted = result.value
    echo(f"Deleted date {deleted.deleted_on.isoformat()}")
    echo(f"Deleted secret's recovery id {deleted.recovery_id}")

    if deleted.recovery_id is not None:
        await store.purge(DEMO_SECRET_NAME)
        echo(f"Secret {DEMO_SECRET_NAME} purged")
    else:
        echo("Soft-delete is disabled; the secret was removed permanently")


@click.group()
@click.version_option(version=__version__, prog_name="localvault")
@click.pass_context
def cli(ctx):
    """
    LocalVault - Secret Lifecycle Manager

    Manage versioned secrets with soft-delete and purge locally.
    """
    ctx.ensure_object(dict)


@cli.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level (overrides configuration)",
)
@click.option(
    "--operation-delay",
    type=float,
    default=None,
    help="Seconds the backend takes to complete a delete",
)
@click.option(
    "--no-soft-delete",
    is_flag=True,
    help="Delete secrets permanently instead of soft-deleting them",
)
@click.option(
    "--show-values",
    is_flag=True,
    help="Print secret values instead of masking them",
)
def demo(config: Optional[Path], log_level: Optional[str], operation_delay: Optional[float],
         no_soft_delete: bool, show_values: bool):
    """
    Run the secret lifecycle walkthrough.

    Examples:
        localvault demo
        localvault demo --operation-delay 0.5 --log-level DEBUG
        localvault demo --no-soft-delete
    """
    overrides: Dict[str, Any] = {}
    if log_level:
        overrides["logging"] = {"level": log_level.upper()}
    if operation_delay is not None:
        overrides.setdefault("vault", {})["operation_delay"] = operation_delay
    if no_soft_delete:
        overrides.setdefault("vault", {})["soft_delete_enabled"] = False

    loaded = _load_config(config, overrides)
    store = create_secret_store(loaded)

    try:
        asyncio.run(run_demo(store, show_values, loaded.polling.default_timeout))
    except VaultError as e:
        logger.error(f"Demo failed: {e.message}")
        click.echo(f"[ERROR] {e.error_code}: {e.message}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level (overrides configuration)",
)
def serve(host: Optional[str], port: Optional[int], config: Optional[Path], log_level: Optional[str]):
    """
    Serve the secrets HTTP API.

    Examples:
        localvault serve
        localvault serve --port 8300 --config localvault.yaml
    """
    overrides: Dict[str, Any] = {}
    if host:
        overrides.setdefault("server", {})["host"] = host
    if port:
        overrides.setdefault("server", {})["port"] = port
    if log_level:
        overrides["logging"] = {"level": log_level.upper()}

    loaded = _load_config(config, overrides)
    click.echo(f"Starting LocalVault v{__version__} on {loaded.server.host}:{loaded.server.port}")

    try:
        uvicorn.run(
            create_app(loaded),
            host=loaded.server.host,
            port=loaded.server.port,
            log_level=loaded.logging.level.lower(),
            access_log=True,
        )
    except KeyboardInterrupt:
        click.echo("\nShutting down LocalVault...")


@cli.command()
def version():
    """Show LocalVault version."""
    click.echo(f"LocalVault version {__version__}")


@cli.command(name="config")
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
def show_config(config_file: Optional[Path]):
    """Show the active configuration."""
    loaded = ConfigManager().load(config_file=str(config_file) if config_file else None)
    click.echo(yaml.safe_dump(loaded.model_dump(mode="json"), sort_keys=False))


def main():
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
