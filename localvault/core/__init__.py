"""Core module initialization."""

from .config_manager import ConfigManager, LocalVaultConfig
from .logging_config import setup_logging, get_logger

__all__ = [
    "ConfigManager",
    "LocalVaultConfig",
    "setup_logging",
    "get_logger",
]
