"""
Secret Store Factory

Creates a secret store and its backend from configuration.

Author: LocalVault Team
Date: 2026-10-19
"""

from localvault.core.config_manager import LocalVaultConfig

from .memory_backend import InMemoryVaultBackend
from .store import SecretStore


def create_secret_store(config: LocalVaultConfig) -> SecretStore:
    """
    Build a SecretStore over an in-memory backend configured from config.

    Args:
        config: Loaded LocalVault configuration

    Returns:
        Ready-to-use SecretStore

    Example:
        ```python
        config = ConfigManager().load("localvault.yaml")
        store = create_secret_store(config)
        await store.set_secret("BankAccountSecret", "f4G34fMh8v")
        ```
    """
    backend = InMemoryVaultBackend(
        vault_url=config.vault.url,
        soft_delete_enabled=config.vault.soft_delete_enabled,
        retention_days=config.vault.retention_days,
        purge_protection=config.vault.purge_protection,
        operation_delay=config.vault.operation_delay,
        operation_retention=config.vault.operation_retention,
    )
    return SecretStore(
        backend,
        page_size=config.store.page_size,
        polling_policy=config.polling.to_policy(),
    )
