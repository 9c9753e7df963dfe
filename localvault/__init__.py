"""
LocalVault: Secret Lifecycle Manager

Versioned secrets with soft-delete, recovery and purge, and pollable
long-running operations, for offline development and testing.
"""

__version__ = "0.1.0"
__author__ = "LocalVault Team"

from .secrets.store import SecretStore

__all__ = ["SecretStore", "__version__"]
