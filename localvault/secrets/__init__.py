"""
Secret Lifecycle Management.

Versioned secrets with soft-delete, recovery and purge, driven through a
narrow vault backend interface, plus polling for long-running operations.

Author: LocalVault Team
Date: 2026-10-19
"""

from .backend import VaultBackend
from .memory_backend import InMemoryVaultBackend
from .store import SecretStore
from .poller import (
    OperationHandle,
    OperationPoller,
    PollingPolicy,
    PollResponse,
    PollStatus,
    TerminalResult,
    TerminalStatus,
)
from .models import (
    DeletedSecret,
    PropertiesPage,
    RecoveryLevel,
    SecretProperties,
    SecretPropertiesUpdate,
    SecretState,
    SecretVersion,
)
from .exceptions import (
    VaultError,
    NotFoundError,
    InvalidStateError,
    InvalidSecretNameError,
    PollTimeoutError,
    OperationFailedError,
    BackendUnavailableError,
)

__all__ = [
    # Store and backends
    "SecretStore",
    "VaultBackend",
    "InMemoryVaultBackend",
    # Polling
    "OperationHandle",
    "OperationPoller",
    "PollingPolicy",
    "PollResponse",
    "PollStatus",
    "TerminalResult",
    "TerminalStatus",
    # Models
    "DeletedSecret",
    "PropertiesPage",
    "RecoveryLevel",
    "SecretProperties",
    "SecretPropertiesUpdate",
    "SecretState",
    "SecretVersion",
    # Exceptions
    "VaultError",
    "NotFoundError",
    "InvalidStateError",
    "InvalidSecretNameError",
    "PollTimeoutError",
    "OperationFailedError",
    "BackendUnavailableError",
]
