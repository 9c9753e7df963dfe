"""
Configuration management for LocalVault.

Handles loading, validation, and access to configuration settings.
"""

import os
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional
from enum import Enum

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator, ValidationError, ConfigDict

if TYPE_CHECKING:
    from localvault.secrets.poller import PollingPolicy

logger = logging.getLogger(__name__)


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class VaultConfig(BaseModel):
    """Vault backend behaviour."""
    url: str = "https://localvault.vault.local"
    soft_delete_enabled: bool = True
    retention_days: int = Field(default=90, ge=7, le=90)
    purge_protection: bool = False
    operation_delay: float = Field(
        default=0.0,
        ge=0.0,
        description="Seconds before delete/recover operations complete"
    )
    operation_retention: float = Field(
        default=300.0,
        ge=0.0,
        description="Seconds a finished operation stays pollable"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require an absolute http(s) URL."""
        if not v.startswith(("https://", "http://")):
            raise ValueError("Vault URL must start with http:// or https://")
        return v.rstrip("/")


class PollingConfig(BaseModel):
    """Long-running operation polling."""
    initial_interval: float = Field(default=0.05, gt=0.0)
    max_interval: float = Field(default=2.0, gt=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    default_timeout: Optional[float] = Field(default=None, ge=0.0)

    @model_validator(mode="after")
    def validate_intervals(self) -> "PollingConfig":
        """Ensure the backoff cap is not below the starting interval."""
        if self.max_interval < self.initial_interval:
            raise ValueError("max_interval must be >= initial_interval")
        return self

    def to_policy(self) -> "PollingPolicy":
        """Build the poller backoff policy from these settings."""
        from localvault.secrets.poller import PollingPolicy

        return PollingPolicy(
            initial_interval=self.initial_interval,
            max_interval=self.max_interval,
            multiplier=self.multiplier,
        )


class StoreConfig(BaseModel):
    """Secret store settings."""
    page_size: int = Field(default=25, ge=1, le=1000)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    format: str = "json"
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = 5
    module_levels: Optional[Dict[str, str]] = Field(
        default=None,
        description="Per-module log levels, e.g., {'localvault.secrets.poller': 'DEBUG'}"
    )


class ServerConfig(BaseModel):
    """HTTP server configuration."""
    host: str = "127.0.0.1"
    port: int = 8200


class LocalVaultConfig(BaseModel):
    """Main LocalVault configuration schema."""

    version: str = Field(default="0.1.0", description="Configuration version")

    vault: VaultConfig = Field(default_factory=VaultConfig)

    polling: PollingConfig = Field(default_factory=PollingConfig)

    store: StoreConfig = Field(default_factory=StoreConfig)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    server: ServerConfig = Field(default_factory=ServerConfig)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version format."""
        parts = v.split(".")
        if len(parts) != 3:
            raise ValueError("Version must be in format x.y.z")
        for part in parts:
            if not part.isdigit():
                raise ValueError("Version components must be numeric")
        return v

    model_config = ConfigDict(use_enum_values=True)


class ConfigManager:
    """
    Manages LocalVault configuration loading and validation.

    Configuration precedence (highest to lowest):
    1. CLI arguments
    2. Environment variables (LOCALVAULT_*)
    3. Configuration file (YAML/JSON)
    4. Defaults
    """

    def __init__(self):
        self._config: Optional[LocalVaultConfig] = None
        self._config_file: Optional[Path] = None

    def load(
        self,
        config_file: Optional[str] = None,
        cli_overrides: Optional[Dict[str, Any]] = None
    ) -> LocalVaultConfig:
        """
        Load and validate configuration from multiple sources.

        Args:
            config_file: Path to configuration file (YAML or JSON)
            cli_overrides: Dictionary of CLI argument overrides

        Returns:
            Validated LocalVaultConfig instance

        Raises:
            ValidationError: If configuration is invalid
            FileNotFoundError: If specified config file doesn't exist
        """
        config_dict: Dict[str, Any] = {}

        if config_file:
            config_dict = self._load_from_file(config_file)
            self._config_file = Path(config_file)
            logger.info(f"Loaded configuration from file: {config_file}")

        env_config = self._load_from_env()
        config_dict = self._merge_configs(config_dict, env_config)
        if env_config:
            logger.info(f"Applied {len(env_config)} environment variable overrides")

        if cli_overrides:
            config_dict = self._merge_configs(config_dict, cli_overrides)
            logger.info(f"Applied {len(cli_overrides)} CLI argument overrides")

        try:
            self._config = LocalVaultConfig(**config_dict)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise
        logger.debug(f"Active configuration: {json.dumps(self._config.model_dump(), indent=2)}")
        return self._config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file."""
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(path, 'r') as f:
            if path.suffix in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif path.suffix == '.json':
                return json.load(f)
            else:
                raise ValueError(f"Unsupported config file format: {path.suffix}")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}

        # Vault configuration
        if url := os.getenv("LOCALVAULT_URL"):
            config.setdefault("vault", {})["url"] = url
        if soft_delete := os.getenv("LOCALVAULT_SOFT_DELETE"):
            config.setdefault("vault", {})["soft_delete_enabled"] = soft_delete.lower() in ['true', '1', 'yes']
        if retention := os.getenv("LOCALVAULT_RETENTION_DAYS"):
            config.setdefault("vault", {})["retention_days"] = int(retention)
        if delay := os.getenv("LOCALVAULT_OPERATION_DELAY"):
            config.setdefault("vault", {})["operation_delay"] = float(delay)

        # Logging configuration
        if log_level := os.getenv("LOCALVAULT_LOG_LEVEL"):
            config.setdefault("logging", {})["level"] = log_level.upper()
        if log_file := os.getenv("LOCALVAULT_LOG_FILE"):
            config.setdefault("logging", {})["file"] = log_file

        # Server configuration
        if host := os.getenv("LOCALVAULT_HOST"):
            config.setdefault("server", {})["host"] = host
        if port := os.getenv("LOCALVAULT_PORT"):
            config.setdefault("server", {})["port"] = int(port)

        return config

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def get_config(self) -> LocalVaultConfig:
        """
        Get the loaded configuration.

        Raises:
            RuntimeError: If configuration hasn't been loaded
        """
        if self._config is None:
            raise RuntimeError("Configuration not loaded. Call load() first.")
        return self._config

    def reload(self) -> LocalVaultConfig:
        """Reload configuration from the same sources."""
        config_file = str(self._config_file) if self._config_file else None
        return self.load(config_file=config_file)
