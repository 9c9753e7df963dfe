"""
Secret Store Exceptions.

Error taxonomy for secret lifecycle and long-running operations.

Author: LocalVault Team
Date: 2026-10-19
"""

from typing import Optional


class VaultError(Exception):
    """Base exception for secret store errors."""

    def __init__(self, message: str, error_code: str = "InternalError"):
        """Initialize vault error.

        Args:
            message: Error message
            error_code: Service error code
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class NotFoundError(VaultError):
    """Raised when a secret, version or operation does not exist."""

    def __init__(self, secret_name: str, version: Optional[str] = None, message: Optional[str] = None):
        """Initialize not found error.

        Args:
            secret_name: Name of the secret
            version: Version of the secret (optional)
            message: Override for the default message
        """
        if message is None:
            if version:
                message = f"Secret '{secret_name}' version '{version}' not found"
            else:
                message = f"Secret '{secret_name}' not found"
        super().__init__(message, error_code="SecretNotFound")
        self.secret_name = secret_name
        self.version = version


class InvalidStateError(VaultError):
    """Raised when an operation is illegal in the secret's current state."""

    def __init__(self, message: str, secret_name: Optional[str] = None):
        super().__init__(message, error_code="InvalidState")
        self.secret_name = secret_name


class InvalidSecretNameError(VaultError, ValueError):
    """Raised when a secret name is invalid."""

    def __init__(self, secret_name: str, reason: str):
        """Initialize invalid secret name error.

        Args:
            secret_name: Invalid secret name
            reason: Reason why the name is invalid
        """
        message = f"Invalid secret name '{secret_name}': {reason}"
        super().__init__(message, error_code="BadParameter")
        self.secret_name = secret_name
        self.reason = reason


class PollTimeoutError(VaultError, TimeoutError):
    """Raised when waiting for an operation exceeds its deadline or is stopped."""

    def __init__(self, operation_id: str, timeout: Optional[float], stopped: bool = False):
        if stopped:
            message = f"Wait for operation '{operation_id}' was stopped before it completed"
        else:
            message = f"Operation '{operation_id}' did not complete within {timeout}s"
        super().__init__(message, error_code="OperationTimeout")
        self.operation_id = operation_id
        self.timeout = timeout
        self.stopped = stopped


class OperationFailedError(VaultError):
    """Raised when a long-running operation reaches the failed state."""

    def __init__(self, operation_id: str, cause: Optional[str]):
        """Initialize operation failed error.

        Args:
            operation_id: Operation token
            cause: Failure cause reported by the backend
        """
        message = f"Operation '{operation_id}' failed: {cause or 'unknown error'}"
        super().__init__(message, error_code="OperationFailed")
        self.operation_id = operation_id
        self.cause = cause


class BackendUnavailableError(VaultError):
    """Raised when the vault backend cannot be reached."""

    def __init__(self, message: str = "Vault backend unavailable"):
        super().__init__(message, error_code="ServiceUnavailable")
