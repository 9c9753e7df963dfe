"""
In-Memory Vault Backend.

Backend implementation that keeps secrets in process memory, with
versioning, soft-delete, retention, purge protection and simulated
latency for delete and recover operations.

Author: LocalVault Team
Date: 2026-10-19
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from .backend import DELETE_OPERATION, RECOVER_OPERATION, VaultBackend
from .exceptions import InvalidStateError, NotFoundError
from .models import (
    DeletedSecret,
    DeletedSecretPage,
    PropertiesPage,
    RecoveryLevel,
    SecretProperties,
    SecretPropertiesUpdate,
    SecretState,
    SecretVersion,
)
from .poller import PollResponse, PollStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _StoredVersion:
    """Value of a version plus its mutable properties."""
    value: str
    properties: SecretProperties


@dataclass
class _SecretRecord:
    """All versions and lifecycle state of one secret."""
    name: str
    versions: Dict[str, _StoredVersion] = field(default_factory=dict)
    current_version: Optional[str] = None
    state: SecretState = SecretState.ACTIVE
    deleted_on: Optional[datetime] = None
    scheduled_purge_date: Optional[datetime] = None
    recovery_id: Optional[str] = None


@dataclass
class _Operation:
    """An in-flight or finished long-running operation."""
    token: str
    kind: str
    name: str
    completes_at: float
    status: PollStatus = PollStatus.NOT_STARTED
    result: Any = None
    error: Optional[str] = None
    finished_at: Optional[float] = None


class InMemoryVaultBackend(VaultBackend):
    """
    Vault backend held in process memory.

    Delete and recover operations finish ``operation_delay`` seconds after
    they start. Completion is applied lazily at the start of the next
    backend call, so no background task is needed.

    Attributes:
        _secrets: Mapping of secret name to record
        _operations: Mapping of operation token to operation
        _lock: Asyncio lock guarding both mappings
    """

    supports_cancellation = True

    def __init__(
        self,
        vault_url: str = "https://localvault.vault.local",
        soft_delete_enabled: bool = True,
        retention_days: int = 90,
        purge_protection: bool = False,
        operation_delay: float = 0.0,
        operation_retention: float = 300.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the in-memory backend.

        Args:
            vault_url: Base URL used to build recovery identifiers
            soft_delete_enabled: Keep deleted secrets recoverable until purged
            retention_days: Retention period for deleted secrets (7-90 days)
            purge_protection: Forbid purge before the retention window ends
            operation_delay: Seconds before delete/recover operations complete
            operation_retention: Seconds a finished operation stays pollable
            clock: Wall clock returning aware datetimes (for timestamps)
        """
        self._secrets: Dict[str, _SecretRecord] = {}
        self._operations: Dict[str, _Operation] = {}
        self._lock = asyncio.Lock()

        self.vault_url = vault_url.rstrip("/")
        self.soft_delete_enabled = soft_delete_enabled
        self.retention_days = max(7, min(90, retention_days))
        self.purge_protection = purge_protection and soft_delete_enabled
        self.operation_delay = max(0.0, operation_delay)
        self.operation_retention = max(0.0, operation_retention)
        self._clock = clock or _utcnow

    @property
    def recovery_level(self) -> RecoveryLevel:
        if not self.soft_delete_enabled:
            return RecoveryLevel.PURGEABLE
        if self.purge_protection:
            return RecoveryLevel.RECOVERABLE
        return RecoveryLevel.RECOVERABLE_PURGEABLE

    # ========== Internal helpers ==========

    def _settle(self) -> None:
        """Complete due operations and drop secrets past retention.

        Finished operations stay pollable for ``operation_retention``
        seconds. Must be called with the lock held.
        """
        now = time.monotonic()
        stale = [
            token for token, operation in self._operations.items()
            if operation.finished_at is not None
            and now >= operation.finished_at + self.operation_retention
        ]
        for token in stale:
            del self._operations[token]

        for operation in self._operations.values():
            if operation.status.is_terminal or now < operation.completes_at:
                continue
            if operation.kind == DELETE_OPERATION:
                self._complete_delete(operation)
            else:
                self._complete_recover(operation)
            operation.finished_at = now

        wall_now = self._clock()
        expired = [
            name for name, record in self._secrets.items()
            if record.state == SecretState.SOFT_DELETED
            and record.scheduled_purge_date is not None
            and record.scheduled_purge_date <= wall_now
        ]
        for name in expired:
            self._remove_secret(name)
            logger.info(f"Secret '{name}' purged after retention window")

    def _remove_secret(self, name: str) -> None:
        """Purge a record along with the finished operations that named it."""
        record = self._secrets.pop(name)
        record.state = SecretState.PURGED
        finished = [
            token for token, operation in self._operations.items()
            if operation.name == name and operation.status.is_terminal
        ]
        for token in finished:
            del self._operations[token]

    def _complete_delete(self, operation: _Operation) -> None:
        record = self._secrets[operation.name]
        now = self._clock()
        properties = self._current_properties(record)
        properties.deleted = True

        if self.soft_delete_enabled:
            record.state = SecretState.SOFT_DELETED
            record.deleted_on = now
            record.scheduled_purge_date = now + timedelta(days=self.retention_days)
            record.recovery_id = f"{self.vault_url}/deletedsecrets/{record.name}"
        else:
            record.state = SecretState.PURGED
            del self._secrets[record.name]

        operation.status = PollStatus.SUCCEEDED
        operation.result = DeletedSecret(
            name=record.name,
            recovery_id=record.recovery_id,
            deleted_on=now,
            scheduled_purge_date=record.scheduled_purge_date,
            properties=properties,
        )
        logger.debug(f"Delete of '{record.name}' completed ({record.state.value})")

    def _complete_recover(self, operation: _Operation) -> None:
        record = self._secrets[operation.name]
        record.state = SecretState.ACTIVE
        record.deleted_on = None
        record.scheduled_purge_date = None
        record.recovery_id = None

        operation.status = PollStatus.SUCCEEDED
        operation.result = self._current_properties(record)
        logger.debug(f"Recover of '{record.name}' completed")

    def _current_properties(self, record: _SecretRecord) -> SecretProperties:
        stored = record.versions[record.current_version]
        return stored.properties.model_copy(deep=True)

    def _active_record(self, name: str, version: Optional[str] = None) -> _SecretRecord:
        record = self._secrets.get(name)
        if record is None or record.state != SecretState.ACTIVE:
            raise NotFoundError(name)
        if version is not None and version not in record.versions:
            raise NotFoundError(name, version)
        return record

    def _to_deleted_secret(self, record: _SecretRecord) -> DeletedSecret:
        properties = self._current_properties(record)
        properties.deleted = True
        return DeletedSecret(
            name=record.name,
            recovery_id=record.recovery_id,
            deleted_on=record.deleted_on,
            scheduled_purge_date=record.scheduled_purge_date,
            properties=properties,
        )

    def _start_operation(self, kind: str, name: str) -> str:
        token = uuid.uuid4().hex
        self._operations[token] = _Operation(
            token=token,
            kind=kind,
            name=name,
            completes_at=time.monotonic() + self.operation_delay,
        )
        return token

    @staticmethod
    def _page(items: List[Any], key: Callable[[Any], str], max_results: Optional[int],
              continuation_token: Optional[str]):
        if continuation_token is not None:
            items = [item for item in items if key(item) > continuation_token]
        if max_results and len(items) > max_results:
            items = items[:max_results]
            return items, key(items[-1])
        return items, None

    # ========== Secret operations ==========

    async def put_secret_version(
        self, name: str, value: str, properties: Optional[SecretProperties] = None
    ) -> SecretVersion:
        async with self._lock:
            self._settle()

            record = self._secrets.get(name)
            if record is not None and record.state != SecretState.ACTIVE:
                raise InvalidStateError(
                    f"Secret '{name}' is {record.state.value} and cannot take new versions",
                    name,
                )
            if record is None:
                record = _SecretRecord(name=name)
                self._secrets[name] = record

            version_id = uuid.uuid4().hex
            now = self._clock()
            stored_properties = properties.model_copy(deep=True) if properties else SecretProperties()
            stored_properties.name = name
            stored_properties.version = version_id
            stored_properties.created_on = now
            stored_properties.updated_on = now
            stored_properties.recovery_level = self.recovery_level
            stored_properties.deleted = False

            record.versions[version_id] = _StoredVersion(value=value, properties=stored_properties)
            record.current_version = version_id

            return SecretVersion(
                name=name,
                version=version_id,
                value=value,
                properties=stored_properties.model_copy(deep=True),
            )

    async def get_secret_version(
        self, name: str, version: Optional[str] = None
    ) -> SecretVersion:
        async with self._lock:
            self._settle()
            record = self._active_record(name, version)
            version_id = version or record.current_version
            stored = record.versions[version_id]
            return SecretVersion(
                name=name,
                version=version_id,
                value=stored.value,
                properties=stored.properties.model_copy(deep=True),
            )

    async def list_current_properties(
        self,
        name: Optional[str] = None,
        max_results: Optional[int] = None,
        continuation_token: Optional[str] = None,
    ) -> PropertiesPage:
        async with self._lock:
            self._settle()
            records = [
                record for record_name, record in sorted(self._secrets.items())
                if record.state == SecretState.ACTIVE
                and (name is None or record_name == name)
            ]
            records, next_token = self._page(
                records, lambda r: r.name, max_results, continuation_token
            )
            return PropertiesPage(
                items=[self._current_properties(record) for record in records],
                continuation_token=next_token,
            )

    async def list_version_properties(self, name: str) -> PropertiesPage:
        async with self._lock:
            self._settle()
            record = self._active_record(name)
            return PropertiesPage(
                items=[
                    stored.properties.model_copy(deep=True)
                    for stored in record.versions.values()
                ]
            )

    async def update_properties(
        self, name: str, version: Optional[str], update: SecretPropertiesUpdate
    ) -> SecretProperties:
        async with self._lock:
            self._settle()
            record = self._active_record(name, version)
            properties = record.versions[version or record.current_version].properties

            for field_name in update.model_fields_set:
                if field_name == "value":
                    continue
                new_value = getattr(update, field_name)
                if field_name == "enabled" and new_value is None:
                    continue
                if field_name == "tags":
                    new_value = dict(new_value or {})
                setattr(properties, field_name, new_value)
            properties.updated_on = self._clock()

            return properties.model_copy(deep=True)

    # ========== Long-running operations ==========

    async def start_delete(self, name: str) -> str:
        async with self._lock:
            self._settle()
            record = self._secrets.get(name)
            if record is None:
                raise NotFoundError(name)
            if record.state != SecretState.ACTIVE:
                raise InvalidStateError(f"Secret '{name}' is already {record.state.value}", name)

            record.state = SecretState.DELETING
            token = self._start_operation(DELETE_OPERATION, name)
            logger.debug(f"Delete of '{name}' started (operation {token})")
            return token

    async def start_recover(self, name: str) -> str:
        async with self._lock:
            self._settle()
            record = self._secrets.get(name)
            if record is None:
                raise NotFoundError(name)
            if record.state != SecretState.SOFT_DELETED:
                raise InvalidStateError(
                    f"Secret '{name}' is {record.state.value}, only soft-deleted secrets can be recovered",
                    name,
                )

            record.state = SecretState.RECOVERING
            token = self._start_operation(RECOVER_OPERATION, name)
            logger.debug(f"Recover of '{name}' started (operation {token})")
            return token

    async def poll_operation(self, token: str) -> PollResponse:
        async with self._lock:
            self._settle()
            operation = self._operations.get(token)
            if operation is None:
                raise NotFoundError(token, message=f"Operation '{token}' not found")
            if operation.status == PollStatus.NOT_STARTED:
                operation.status = PollStatus.IN_PROGRESS
            return PollResponse(
                status=operation.status,
                value=operation.result,
                error=operation.error,
            )

    async def cancel_operation(self, token: str) -> None:
        async with self._lock:
            self._settle()
            operation = self._operations.get(token)
            if operation is None:
                raise NotFoundError(token, message=f"Operation '{token}' not found")
            if operation.status.is_terminal:
                raise InvalidStateError(
                    f"Operation '{token}' already {operation.status.value}", operation.name
                )

            record = self._secrets[operation.name]
            if operation.kind == DELETE_OPERATION:
                record.state = SecretState.ACTIVE
            else:
                record.state = SecretState.SOFT_DELETED
            operation.status = PollStatus.FAILED
            operation.error = "cancelled"
            operation.finished_at = time.monotonic()
            logger.debug(f"Operation {token} cancelled")

    # ========== Deleted secrets ==========

    async def get_deleted_secret(self, name: str) -> DeletedSecret:
        async with self._lock:
            self._settle()
            record = self._secrets.get(name)
            if record is None or record.state != SecretState.SOFT_DELETED:
                raise NotFoundError(name, message=f"Deleted secret '{name}' not found")
            return self._to_deleted_secret(record)

    async def list_deleted_secrets(
        self,
        max_results: Optional[int] = None,
        continuation_token: Optional[str] = None,
    ) -> DeletedSecretPage:
        async with self._lock:
            self._settle()
            records = [
                record for _, record in sorted(self._secrets.items())
                if record.state == SecretState.SOFT_DELETED
            ]
            records, next_token = self._page(
                records, lambda r: r.name, max_results, continuation_token
            )
            return DeletedSecretPage(
                items=[self._to_deleted_secret(record) for record in records],
                continuation_token=next_token,
            )

    async def purge(self, name: str) -> None:
        async with self._lock:
            self._settle()
            record = self._secrets.get(name)
            if record is None:
                raise NotFoundError(name)
            if record.state != SecretState.SOFT_DELETED:
                raise InvalidStateError(
                    f"Secret '{name}' is {record.state.value}, only soft-deleted secrets can be purged",
                    name,
                )
            if self.purge_protection and self._clock() < record.scheduled_purge_date:
                raise InvalidStateError(
                    f"Secret '{name}' is purge-protected until {record.scheduled_purge_date.isoformat()}",
                    name,
                )

            self._remove_secret(name)

    # ========== Maintenance ==========

    async def health(self) -> dict:
        """Check backend health.

        Returns:
            Health status dictionary
        """
        async with self._lock:
            self._settle()
            states = [record.state for record in self._secrets.values()]
            return {
                "status": "healthy",
                "secrets": states.count(SecretState.ACTIVE),
                "deleting": states.count(SecretState.DELETING),
                "deleted_secrets": states.count(SecretState.SOFT_DELETED),
                "operations": len(self._operations),
                "soft_delete_enabled": self.soft_delete_enabled,
                "retention_days": self.retention_days,
                "purge_protection": self.purge_protection,
            }

    async def reset(self) -> None:
        """Reset all data (for testing)."""
        async with self._lock:
            self._secrets.clear()
            self._operations.clear()
