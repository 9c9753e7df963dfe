"""
Unit tests for the in-memory vault backend.

Tests retention, recovery levels, operation status progression, paging
and health reporting.

Author: LocalVault Team
Date: 2026
"""

from datetime import datetime, timedelta, timezone

import pytest

from localvault.secrets.exceptions import InvalidStateError, NotFoundError
from localvault.secrets.memory_backend import InMemoryVaultBackend
from localvault.secrets.models import RecoveryLevel, SecretPropertiesUpdate
from localvault.secrets.poller import PollStatus


class FakeClock:
    """Settable wall clock."""

    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend(clock):
    """Create a backend on a fake clock."""
    return InMemoryVaultBackend(vault_url="https://myvault.vault.local/", clock=clock)


async def soft_delete(backend, name):
    token = await backend.start_delete(name)
    response = await backend.poll_operation(token)
    assert response.status == PollStatus.SUCCEEDED
    return response.value


class TestConfiguration:
    """Test backend settings."""

    @pytest.mark.parametrize("days, expected", [(1, 7), (30, 30), (365, 90)])
    def test_retention_days_clamped(self, days, expected):
        """Test retention is kept within 7-90 days."""
        assert InMemoryVaultBackend(retention_days=days).retention_days == expected

    def test_recovery_levels(self):
        """Test recovery level follows soft-delete and purge protection."""
        assert InMemoryVaultBackend().recovery_level == RecoveryLevel.RECOVERABLE_PURGEABLE
        assert InMemoryVaultBackend(purge_protection=True).recovery_level == RecoveryLevel.RECOVERABLE
        assert InMemoryVaultBackend(soft_delete_enabled=False).recovery_level == RecoveryLevel.PURGEABLE

    def test_purge_protection_requires_soft_delete(self):
        """Test purge protection is ignored without soft-delete."""
        backend = InMemoryVaultBackend(soft_delete_enabled=False, purge_protection=True)
        assert backend.purge_protection is False


class TestVersions:
    """Test version storage."""

    async def test_timestamps_from_clock(self, backend, clock):
        """Test created and updated timestamps come from the clock."""
        secret = await backend.put_secret_version("A", "x")

        assert secret.properties.created_on == clock.now
        assert secret.properties.updated_on == clock.now
        assert secret.properties.recovery_level == RecoveryLevel.RECOVERABLE_PURGEABLE

    async def test_update_sets_updated_timestamp(self, backend, clock):
        """Test a properties update moves updated_on only."""
        secret = await backend.put_secret_version("A", "x")
        clock.advance(hours=1)

        properties = await backend.update_properties(
            "A", secret.version, SecretPropertiesUpdate(enabled=False)
        )

        assert properties.created_on == secret.properties.created_on
        assert properties.updated_on == clock.now
        assert properties.enabled is False

    async def test_update_ignores_value_field(self, backend):
        """Test the backend never writes a value through an update."""
        secret = await backend.put_secret_version("A", "x")

        await backend.update_properties("A", None, SecretPropertiesUpdate(value="y"))

        assert (await backend.get_secret_version("A", secret.version)).value == "x"

    async def test_versions_in_creation_order(self, backend):
        """Test version listing is oldest first."""
        first = await backend.put_secret_version("A", "1")
        second = await backend.put_secret_version("A", "2")

        page = await backend.list_version_properties("A")

        assert [p.version for p in page.items] == [first.version, second.version]


class TestPaging:
    """Test continuation-token paging."""

    async def test_pages(self, backend):
        """Test pages follow each other by name."""
        for name in ["c", "a", "b"]:
            await backend.put_secret_version(name, "v")

        first = await backend.list_current_properties(max_results=2)
        second = await backend.list_current_properties(
            max_results=2, continuation_token=first.continuation_token
        )

        assert [p.name for p in first.items] == ["a", "b"]
        assert first.continuation_token == "b"
        assert [p.name for p in second.items] == ["c"]
        assert second.continuation_token is None

    async def test_unbounded_page(self, backend):
        """Test no max_results returns everything at once."""
        for name in ["a", "b", "c"]:
            await backend.put_secret_version(name, "v")

        page = await backend.list_current_properties()

        assert len(page.items) == 3
        assert page.continuation_token is None


class TestOperations:
    """Test operation status progression."""

    async def test_status_progression(self, clock):
        """Test a pending operation reports in progress once polled."""
        backend = InMemoryVaultBackend(operation_delay=60, clock=clock)
        await backend.put_secret_version("A", "x")
        token = await backend.start_delete("A")

        response = await backend.poll_operation(token)

        assert response.status == PollStatus.IN_PROGRESS
        assert response.value is None

    async def test_unknown_operation(self, backend):
        """Test polling an unknown token."""
        with pytest.raises(NotFoundError):
            await backend.poll_operation("nope")

    async def test_delete_result(self, backend, clock):
        """Test the completed delete reports recovery data."""
        await backend.put_secret_version("A", "x")

        deleted = await soft_delete(backend, "A")

        assert deleted.recovery_id == "https://myvault.vault.local/deletedsecrets/A"
        assert deleted.deleted_on == clock.now
        assert deleted.scheduled_purge_date == clock.now + timedelta(days=90)
        assert deleted.properties.deleted is True

    async def test_recover_only_from_soft_deleted(self, backend):
        """Test recover of an unknown or active secret."""
        with pytest.raises(NotFoundError):
            await backend.start_recover("A")

        await backend.put_secret_version("A", "x")
        with pytest.raises(InvalidStateError):
            await backend.start_recover("A")


class TestRetention:
    """Test retention window handling."""

    async def test_expired_secret_purged_automatically(self, backend, clock):
        """Test a soft-deleted secret disappears after retention."""
        await backend.put_secret_version("A", "x")
        await soft_delete(backend, "A")

        clock.advance(days=91)

        with pytest.raises(NotFoundError):
            await backend.get_deleted_secret("A")
        with pytest.raises(NotFoundError):
            await backend.purge("A")

    async def test_purge_protection_blocks_within_retention(self, clock):
        """Test purge protection blocks purge until the window ends."""
        backend = InMemoryVaultBackend(purge_protection=True, retention_days=7, clock=clock)
        await backend.put_secret_version("A", "x")
        await soft_delete(backend, "A")

        with pytest.raises(InvalidStateError):
            await backend.purge("A")

        clock.advance(days=6)
        with pytest.raises(InvalidStateError):
            await backend.purge("A")

    async def test_list_deleted_secrets(self, backend):
        """Test deleted listing only includes soft-deleted secrets."""
        await backend.put_secret_version("A", "x")
        await backend.put_secret_version("B", "x")
        await soft_delete(backend, "A")

        page = await backend.list_deleted_secrets()

        assert [d.name for d in page.items] == ["A"]


class TestOperationRetention:
    """Test finished operations are not kept forever."""

    async def test_purge_drops_finished_operations(self, backend):
        """Test purging a secret forgets the operations that named it."""
        for _ in range(50):
            await backend.put_secret_version("A", "x")
            await soft_delete(backend, "A")
            await backend.purge("A")

        assert backend._operations == {}
        assert (await backend.health())["operations"] == 0

    async def test_auto_purge_drops_finished_operations(self, backend, clock):
        """Test secrets purged after retention take their operations along."""
        await backend.put_secret_version("A", "x")
        token = await backend.start_delete("A")
        await backend.poll_operation(token)

        clock.advance(days=91)

        with pytest.raises(NotFoundError):
            await backend.poll_operation(token)

    async def test_finished_operation_expires(self):
        """Test finished operations are dropped after the retention period."""
        backend = InMemoryVaultBackend(soft_delete_enabled=False, operation_retention=0)
        await backend.put_secret_version("A", "x")
        token = await backend.start_delete("A")

        assert (await backend.poll_operation(token)).status == PollStatus.SUCCEEDED
        with pytest.raises(NotFoundError):
            await backend.poll_operation(token)

    async def test_finished_operation_pollable_within_retention(self):
        """Test results stay readable until the retention period ends."""
        backend = InMemoryVaultBackend(soft_delete_enabled=False)
        await backend.put_secret_version("A", "x")
        token = await backend.start_delete("A")

        await backend.poll_operation(token)
        response = await backend.poll_operation(token)

        assert response.status == PollStatus.SUCCEEDED
        assert response.value.recovery_id is None

    async def test_pending_operation_survives_retention(self):
        """Test only finished operations expire."""
        backend = InMemoryVaultBackend(operation_delay=60, operation_retention=0)
        await backend.put_secret_version("A", "x")
        token = await backend.start_delete("A")

        await backend.poll_operation(token)
        response = await backend.poll_operation(token)

        assert response.status == PollStatus.IN_PROGRESS


class TestHealth:
    """Test health reporting and reset."""

    async def test_health_counts(self, backend):
        """Test health counts secrets by state."""
        await backend.put_secret_version("A", "x")
        await backend.put_secret_version("B", "x")
        await soft_delete(backend, "A")

        health = await backend.health()

        assert health["status"] == "healthy"
        assert health["secrets"] == 1
        assert health["deleted_secrets"] == 1
        assert health["retention_days"] == 90

    async def test_reset(self, backend):
        """Test reset drops everything."""
        await backend.put_secret_version("A", "x")

        await backend.reset()

        with pytest.raises(NotFoundError):
            await backend.get_secret_version("A")
