"""
Abstract Vault Backend Interface.

Defines the contract between the secret store and the service that actually
holds secrets, whether in-process or remote.

Author: LocalVault Team
Date: 2026-10-19
"""

from abc import ABC, abstractmethod
from typing import Optional

from .models import (
    DeletedSecret,
    DeletedSecretPage,
    PropertiesPage,
    SecretProperties,
    SecretPropertiesUpdate,
    SecretVersion,
)
from .poller import PollResponse

DELETE_OPERATION = "delete"
RECOVER_OPERATION = "recover"


class VaultBackend(ABC):
    """
    Abstract base class for vault backends.

    Implementations own storage, deletion latency and retention. Every
    method may raise NotFoundError or InvalidStateError; transport problems
    surface as whatever exception the transport raises and are classified
    by the store.

    Supports:
    - Versioned secret writes and reads
    - Paged listing of current properties
    - Asynchronous delete and recover operations tracked by token
    - Purge of soft-deleted secrets
    """

    #: Whether cancel_operation() is implemented
    supports_cancellation: bool = False

    @abstractmethod
    async def put_secret_version(
        self, name: str, value: str, properties: Optional[SecretProperties] = None
    ) -> SecretVersion:
        """
        Append a new version, creating the secret if needed.

        Args:
            name: Secret name
            value: Secret payload
            properties: Initial properties for the version

        Returns:
            The stored version

        Raises:
            InvalidStateError: If the secret is deleting or soft-deleted
        """
        pass

    @abstractmethod
    async def get_secret_version(
        self, name: str, version: Optional[str] = None
    ) -> SecretVersion:
        """
        Read a version (the current one when version is None).

        Raises:
            NotFoundError: If the secret or version is absent or deleted
        """
        pass

    @abstractmethod
    async def list_current_properties(
        self,
        name: Optional[str] = None,
        max_results: Optional[int] = None,
        continuation_token: Optional[str] = None,
    ) -> PropertiesPage:
        """
        List current-version properties of active secrets ordered by name.

        Args:
            name: Restrict the listing to this secret
            max_results: Page size (None = everything)
            continuation_token: Token returned by the previous page

        Returns:
            One page of properties
        """
        pass

    @abstractmethod
    async def list_version_properties(self, name: str) -> PropertiesPage:
        """
        List properties of every version of a secret, oldest first.

        Raises:
            NotFoundError: If the secret is absent or deleted
        """
        pass

    @abstractmethod
    async def update_properties(
        self, name: str, version: Optional[str], update: SecretPropertiesUpdate
    ) -> SecretProperties:
        """
        Apply the fields set on update to a version's properties.

        Raises:
            NotFoundError: If the secret or version is absent or deleted
        """
        pass

    @abstractmethod
    async def start_delete(self, name: str) -> str:
        """
        Begin deleting a secret.

        Returns:
            Operation token for poll_operation()

        Raises:
            NotFoundError: If the secret is absent
            InvalidStateError: If the secret is already deleting or deleted
        """
        pass

    @abstractmethod
    async def start_recover(self, name: str) -> str:
        """
        Begin recovering a soft-deleted secret.

        Returns:
            Operation token for poll_operation()

        Raises:
            NotFoundError: If the secret is absent
            InvalidStateError: If the secret is not soft-deleted
        """
        pass

    @abstractmethod
    async def poll_operation(self, token: str) -> PollResponse:
        """
        Report the current status of an operation.

        Raises:
            NotFoundError: If the token is unknown
        """
        pass

    async def cancel_operation(self, token: str) -> None:
        """
        Ask the backend to abandon an in-flight operation.

        Only called when supports_cancellation is True.
        """
        raise NotImplementedError("Backend does not support operation cancellation")

    @abstractmethod
    async def get_deleted_secret(self, name: str) -> DeletedSecret:
        """
        Read a soft-deleted secret.

        Raises:
            NotFoundError: If the secret is not soft-deleted
        """
        pass

    @abstractmethod
    async def list_deleted_secrets(
        self,
        max_results: Optional[int] = None,
        continuation_token: Optional[str] = None,
    ) -> DeletedSecretPage:
        """List soft-deleted secrets ordered by name."""
        pass

    @abstractmethod
    async def purge(self, name: str) -> None:
        """
        Permanently remove a soft-deleted secret.

        Raises:
            NotFoundError: If the secret is absent or already purged
            InvalidStateError: If the secret is not soft-deleted, or purge
                protection forbids it
        """
        pass
