"""
Secret Store.

Lifecycle manager for versioned secrets on top of a vault backend:
set, get, list, update, delete (as a long-running operation), recover
and purge.

Author: LocalVault Team
Date: 2026-10-19
"""

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Union

from localvault.core.logging_config import log_with_context

from .backend import DELETE_OPERATION, RECOVER_OPERATION, VaultBackend
from .exceptions import (
    BackendUnavailableError,
    InvalidSecretNameError,
    InvalidStateError,
    VaultError,
)
from .models import (
    DeletedSecret,
    SecretProperties,
    SecretPropertiesUpdate,
    SecretVersion,
    validate_secret_name,
)
from .poller import OperationHandle, OperationPoller, PollingPolicy, PollResponse

logger = logging.getLogger(__name__)

PropertiesInput = Union[SecretPropertiesUpdate, SecretProperties, Mapping[str, Any]]


class SecretStore:
    """
    Manages the lifecycle of named, versioned secrets.

    State machine per secret: active -> deleting -> soft_deleted -> purged.
    A backend with soft-delete disabled goes straight from deleting to
    purged.

    The store never retries. Errors outside the VaultError taxonomy raised
    by the backend are reported as BackendUnavailableError.

    Attributes:
        backend: Vault backend the store talks to
        page_size: Items requested per page when listing
        polling_policy: Default backoff for pollers from get_poller()
    """

    def __init__(
        self,
        backend: VaultBackend,
        page_size: int = 25,
        polling_policy: Optional[PollingPolicy] = None,
    ):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.backend = backend
        self.page_size = page_size
        self.polling_policy = polling_policy or PollingPolicy()
        self._name_locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Dict[str, int] = {}

    @contextmanager
    def _backend_call(self, operation: str, name: Optional[str] = None):
        """Classify backend failures into the error taxonomy."""
        try:
            yield
        except VaultError:
            raise
        except Exception as e:
            log_with_context(
                logger, logging.ERROR, f"Backend unavailable during {operation}",
                secret=name, error=repr(e),
            )
            raise BackendUnavailableError(f"Backend unavailable during {operation}: {e}") from e

    @asynccontextmanager
    async def _name_lock(self, name: str):
        """Hold the append lock for a name; dropped once nobody waits on it."""
        lock = self._name_locks.setdefault(name, asyncio.Lock())
        self._lock_holders[name] = self._lock_holders.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[name] -= 1
            if self._lock_holders[name] == 0:
                del self._lock_holders[name]
                del self._name_locks[name]

    # ========== Secret operations ==========

    async def set_secret(
        self,
        name: str,
        value: str,
        properties: Optional[SecretProperties] = None,
    ) -> SecretVersion:
        """Create the secret or append a new version to it.

        Args:
            name: Secret name
            value: Secret payload
            properties: Initial properties (expiry, tags, ...)

        Returns:
            The new current version

        Raises:
            InvalidSecretNameError: If the name is empty or malformed
            InvalidStateError: If the secret is being deleted or soft-deleted
        """
        reason = validate_secret_name(name)
        if reason:
            raise InvalidSecretNameError(name, reason)

        async with self._name_lock(name):
            with self._backend_call("set_secret", name):
                secret = await self.backend.put_secret_version(name, value, properties)

        logger.info(f"Set secret '{name}' version {secret.version}")
        return secret

    async def get_secret(self, name: str, version: Optional[str] = None) -> SecretVersion:
        """Get a version of a secret (the current one by default).

        Raises:
            NotFoundError: If the secret or version is absent, or the secret
                is deleted
        """
        with self._backend_call("get_secret", name):
            secret = await self.backend.get_secret_version(name, version)
        logger.debug(f"Retrieved secret '{name}' version {secret.version}")
        return secret

    async def list_secret_properties(
        self, name: Optional[str] = None
    ) -> AsyncIterator[SecretProperties]:
        """Iterate over the current-version properties of active secrets.

        Pages are fetched lazily; each call starts a fresh enumeration.

        Args:
            name: Restrict the listing to this secret
        """
        continuation_token = None
        while True:
            with self._backend_call("list_secret_properties", name):
                page = await self.backend.list_current_properties(
                    name, self.page_size, continuation_token
                )
            for properties in page.items:
                yield properties
            continuation_token = page.continuation_token
            if continuation_token is None:
                return

    async def list_secret_versions(self, name: str) -> AsyncIterator[SecretProperties]:
        """Iterate over the properties of every version, oldest first."""
        with self._backend_call("list_secret_versions", name):
            page = await self.backend.list_version_properties(name)
        for properties in page.items:
            yield properties

    async def update_properties(
        self,
        name: str,
        version: Optional[str],
        new_properties: PropertiesInput,
    ) -> SecretProperties:
        """Update a version's mutable properties.

        The value cannot be changed this way; use set_secret() to create a
        new version instead.

        Args:
            name: Secret name
            version: Version to update (None = current version)
            new_properties: Update, full properties, or a mapping of fields

        Returns:
            The updated properties

        Raises:
            NotFoundError: If the secret or version is absent
            InvalidStateError: If the update carries a value
        """
        if isinstance(new_properties, SecretProperties):
            update = SecretPropertiesUpdate.from_properties(new_properties)
            version = version or new_properties.version
        elif isinstance(new_properties, SecretPropertiesUpdate):
            update = new_properties
        else:
            fields = dict(new_properties)
            if "value" in fields:
                raise InvalidStateError(
                    "Secret values cannot be updated; set a new version instead", name
                )
            update = SecretPropertiesUpdate.model_validate(fields)

        if "value" in update.model_fields_set:
            raise InvalidStateError(
                "Secret values cannot be updated; set a new version instead", name
            )

        with self._backend_call("update_properties", name):
            properties = await self.backend.update_properties(name, version, update)

        logger.info(
            f"Updated properties of secret '{name}' version {properties.version}: "
            f"{sorted(update.model_fields_set)}"
        )
        return properties

    # ========== Deletion lifecycle ==========

    async def begin_delete(self, name: str) -> OperationHandle:
        """Start deleting a secret.

        Returns:
            Handle to poll until the secret is soft-deleted

        Raises:
            NotFoundError: If the secret does not exist
            InvalidStateError: If the secret is already deleting or deleted
        """
        with self._backend_call("begin_delete", name):
            token = await self.backend.start_delete(name)
        logger.info(f"Deletion of secret '{name}' started (operation {token})")
        return OperationHandle(token=token, kind=DELETE_OPERATION, secret_name=name)

    async def begin_recover(self, name: str) -> OperationHandle:
        """Start recovering a soft-deleted secret.

        Raises:
            NotFoundError: If the secret does not exist
            InvalidStateError: If the secret is not soft-deleted
        """
        with self._backend_call("begin_recover", name):
            token = await self.backend.start_recover(name)
        logger.info(f"Recovery of secret '{name}' started (operation {token})")
        return OperationHandle(token=token, kind=RECOVER_OPERATION, secret_name=name)

    async def poll_operation(self, handle: Union[OperationHandle, str]) -> PollResponse:
        """Check the status of an operation (handle or bare token) once."""
        token = handle.token if isinstance(handle, OperationHandle) else handle
        return await self._poll_token(token)

    def get_poller(
        self, handle: OperationHandle, policy: Optional[PollingPolicy] = None
    ) -> OperationPoller:
        """Create a poller for an operation started by this store."""
        cancel = self._cancel_token if self.backend.supports_cancellation else None
        return OperationPoller(
            handle,
            self._poll_token,
            policy=policy or self.polling_policy,
            cancel_operation=cancel,
        )

    async def _poll_token(self, token: str) -> PollResponse:
        with self._backend_call("poll_operation"):
            return await self.backend.poll_operation(token)

    async def _cancel_token(self, token: str) -> None:
        with self._backend_call("cancel_operation"):
            await self.backend.cancel_operation(token)

    async def get_deleted_secret(self, name: str) -> DeletedSecret:
        """Get a soft-deleted secret.

        Raises:
            NotFoundError: If the secret is not soft-deleted
        """
        with self._backend_call("get_deleted_secret", name):
            return await self.backend.get_deleted_secret(name)

    async def list_deleted_secrets(self) -> AsyncIterator[DeletedSecret]:
        """Iterate over soft-deleted secrets, fetching pages lazily."""
        continuation_token = None
        while True:
            with self._backend_call("list_deleted_secrets"):
                page = await self.backend.list_deleted_secrets(
                    self.page_size, continuation_token
                )
            for deleted in page.items:
                yield deleted
            continuation_token = page.continuation_token
            if continuation_token is None:
                return

    async def purge(self, name: str) -> None:
        """Permanently remove a soft-deleted secret.

        Raises:
            NotFoundError: If the secret does not exist or was already purged
            InvalidStateError: If the secret is not soft-deleted yet
        """
        with self._backend_call("purge", name):
            await self.backend.purge(name)
        logger.info(f"Purged secret '{name}'")
