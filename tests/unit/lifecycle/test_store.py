"""
Unit tests for SecretStore lifecycle operations.

Tests versioning, properties updates, listing, deletion, recovery, purge
and error classification.

Author: LocalVault Team
Date: 2026
"""

import asyncio
from datetime import datetime, timezone

import pytest

from localvault.secrets.exceptions import (
    BackendUnavailableError,
    InvalidSecretNameError,
    InvalidStateError,
    NotFoundError,
)
from localvault.secrets.memory_backend import InMemoryVaultBackend
from localvault.secrets.models import SecretProperties, SecretPropertiesUpdate
from localvault.secrets.poller import PollingPolicy, PollStatus
from localvault.secrets.store import SecretStore


FAST_POLLING = PollingPolicy(initial_interval=0.01, max_interval=0.05)


@pytest.fixture
def backend():
    """Create a fresh backend whose operations complete immediately."""
    return InMemoryVaultBackend()


@pytest.fixture
def store(backend):
    """Create a store with a small page size."""
    return SecretStore(backend, page_size=2, polling_policy=FAST_POLLING)


@pytest.fixture
def slow_store():
    """Create a store whose deletes stay in progress for a minute."""
    return SecretStore(InMemoryVaultBackend(operation_delay=60), polling_policy=FAST_POLLING)


async def delete_and_wait(store, name):
    handle = await store.begin_delete(name)
    return await store.get_poller(handle).wait_for_completion(timeout=5)


class SlowWriteBackend(InMemoryVaultBackend):
    """Backend whose appends suspend before committing."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.in_flight = {}
        self.max_in_flight = {}
        self.overlapped = False

    async def put_secret_version(self, name, value, properties=None):
        self.in_flight[name] = self.in_flight.get(name, 0) + 1
        self.max_in_flight[name] = max(self.max_in_flight.get(name, 0), self.in_flight[name])
        if sum(self.in_flight.values()) > 1:
            self.overlapped = True
        try:
            await asyncio.sleep(0.01)
            return await super().put_secret_version(name, value, properties)
        finally:
            self.in_flight[name] -= 1


class TestSetAndGetSecret:
    """Test versioned writes and reads."""

    async def test_set_creates_secret(self, store):
        """Test the first set creates the secret."""
        secret = await store.set_secret("BankAccountSecret", "f4G34fMh8v")

        assert secret.name == "BankAccountSecret"
        assert secret.value == "f4G34fMh8v"
        assert len(secret.version) == 32
        assert secret.properties.version == secret.version
        assert secret.properties.created_on is not None

    async def test_new_value_becomes_current_and_old_version_kept(self, store):
        """Test a second set appends a version without touching the first."""
        v1 = await store.set_secret("A", "x")
        v2 = await store.set_secret("A", "y")

        current = await store.get_secret("A")
        old = await store.get_secret("A", v1.version)

        assert v1.version != v2.version
        assert current.value == "y"
        assert current.version == v2.version
        assert old.value == "x"

    async def test_set_keeps_initial_properties(self, store):
        """Test expiry and tags passed to set are stored."""
        expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
        secret = await store.set_secret(
            "A", "x", SecretProperties(expires_on=expires, tags={"env": "dev"})
        )

        fetched = await store.get_secret("A")
        assert secret.properties.expires_on == expires
        assert fetched.properties.tags == {"env": "dev"}

    @pytest.mark.parametrize("name", ["", "bad_name", "a" * 128, "spaces here"])
    async def test_set_invalid_name(self, store, name):
        """Test invalid names are rejected before reaching the backend."""
        with pytest.raises(InvalidSecretNameError) as exc_info:
            await store.set_secret(name, "x")
        assert isinstance(exc_info.value, ValueError)

    async def test_get_unknown_secret(self, store):
        """Test getting a secret that was never set."""
        with pytest.raises(NotFoundError):
            await store.get_secret("missing")

    async def test_get_unknown_version(self, store):
        """Test getting a version that does not exist."""
        await store.set_secret("A", "x")

        with pytest.raises(NotFoundError) as exc_info:
            await store.get_secret("A", "0" * 32)
        assert exc_info.value.version == "0" * 32

    async def test_returned_version_is_detached(self, store):
        """Test mutating returned properties does not change stored state."""
        secret = await store.set_secret("A", "x")
        secret.properties.tags["leak"] = "yes"

        fetched = await store.get_secret("A")
        assert fetched.properties.tags == {}

    async def test_concurrent_sets_keep_every_version(self):
        """Test concurrent sets on one name are appended one at a time."""
        backend = SlowWriteBackend()
        store = SecretStore(backend)

        results = await asyncio.gather(
            *(store.set_secret("A", f"value-{i}") for i in range(10))
        )

        assert backend.max_in_flight["A"] == 1
        versions = [p.version async for p in store.list_secret_versions("A")]
        assert len(versions) == 10
        assert set(versions) == {r.version for r in results}
        current = await store.get_secret("A")
        assert current.version == versions[-1]

    async def test_sets_on_different_names_overlap(self):
        """Test the append lock is per name."""
        backend = SlowWriteBackend()
        store = SecretStore(backend)

        await asyncio.gather(store.set_secret("A", "x"), store.set_secret("B", "y"))

        assert backend.overlapped

    async def test_name_locks_released_after_sets(self):
        """Test no lock is kept for a name once its appends finish."""
        store = SecretStore(SlowWriteBackend())

        await asyncio.gather(*(store.set_secret(f"S{i}", "x") for i in range(20)))
        await asyncio.gather(*(store.set_secret("A", "x") for _ in range(5)))

        assert store._name_locks == {}
        assert store._lock_holders == {}

    async def test_name_lock_released_when_set_fails(self, store):
        """Test a rejected append still releases the name's lock."""
        await store.set_secret("A", "x")
        await delete_and_wait(store, "A")

        with pytest.raises(InvalidStateError):
            await store.set_secret("A", "y")
        assert store._name_locks == {}


class TestUpdateProperties:
    """Test properties updates."""

    async def test_update_expiry_keeps_value(self, store):
        """Test updating expiry does not change the value or add a version."""
        secret = await store.set_secret("A", "x")
        expires = datetime(2031, 6, 1, tzinfo=timezone.utc)

        updated = await store.update_properties(
            "A", secret.version, SecretPropertiesUpdate(expires_on=expires)
        )

        fetched = await store.get_secret("A", secret.version)
        versions = [p async for p in store.list_secret_versions("A")]
        assert updated.expires_on == expires
        assert fetched.value == "x"
        assert fetched.properties.expires_on == expires
        assert len(versions) == 1

    async def test_update_from_properties_object(self, store):
        """Test passing properties taken from a fetched secret."""
        secret = await store.set_secret("A", "x")
        properties = secret.properties.model_copy()
        properties.expires_on = datetime(2032, 1, 1, tzinfo=timezone.utc)

        updated = await store.update_properties("A", None, properties)

        assert updated.version == secret.version
        assert updated.expires_on == properties.expires_on

    async def test_update_from_mapping(self, store):
        """Test passing a plain mapping of fields."""
        secret = await store.set_secret("A", "x")

        updated = await store.update_properties("A", secret.version, {"enabled": False, "tags": {"k": "v"}})

        assert updated.enabled is False
        assert updated.tags == {"k": "v"}

    async def test_update_from_mapping_with_wire_names(self, store):
        """Test mappings may use the serialized field names."""
        secret = await store.set_secret("A", "x")
        expires = datetime(2031, 6, 1, tzinfo=timezone.utc)

        updated = await store.update_properties("A", secret.version, {"exp": expires, "contentType": "text/plain"})

        assert updated.expires_on == expires
        assert updated.content_type == "text/plain"

    async def test_update_from_mapping_unknown_field(self, store):
        """Test an unknown field is rejected rather than ignored."""
        secret = await store.set_secret("A", "x")

        with pytest.raises(ValueError):
            await store.update_properties("A", secret.version, {"expiry": "2031-01-01T00:00:00Z"})

    async def test_update_only_touches_given_fields(self, store):
        """Test fields missing from the update are left alone."""
        secret = await store.set_secret("A", "x", SecretProperties(content_type="text/plain"))

        updated = await store.update_properties("A", secret.version, {"tags": {"k": "v"}})

        assert updated.content_type == "text/plain"

    async def test_update_rejects_value_in_mapping(self, store):
        """Test value changes through an update are rejected."""
        secret = await store.set_secret("A", "x")

        with pytest.raises(InvalidStateError):
            await store.update_properties("A", secret.version, {"value": "y"})

        assert (await store.get_secret("A")).value == "x"

    async def test_update_rejects_value_in_update_model(self, store):
        """Test value set on an update model is rejected."""
        secret = await store.set_secret("A", "x")

        with pytest.raises(InvalidStateError):
            await store.update_properties("A", secret.version, SecretPropertiesUpdate(value="y"))

    async def test_update_unknown_version(self, store):
        """Test updating a version that does not exist."""
        await store.set_secret("A", "x")

        with pytest.raises(NotFoundError):
            await store.update_properties("A", "f" * 32, {"enabled": False})


class TestListSecretProperties:
    """Test lazy listing of current properties."""

    async def test_list_reports_current_version_only(self, store):
        """Test a secret with two versions is listed once, at its latest version."""
        await store.set_secret("A", "x")
        latest = await store.set_secret("A", "y")

        listed = [p async for p in store.list_secret_properties()]

        entries = [p for p in listed if p.name == "A"]
        assert len(entries) == 1
        assert entries[0].version == latest.version

    async def test_list_pages_through_everything_in_name_order(self, store):
        """Test paging with page_size=2 yields every secret once."""
        for name in ["e", "c", "a", "d", "b"]:
            await store.set_secret(name, "v")

        names = [p.name async for p in store.list_secret_properties()]

        assert names == ["a", "b", "c", "d", "e"]

    async def test_list_fetches_pages_lazily(self, store, backend):
        """Test only the first page is requested before iteration continues."""
        for name in ["a", "b", "c", "d", "e"]:
            await store.set_secret(name, "v")

        calls = []
        original = backend.list_current_properties

        async def spy(*args, **kwargs):
            calls.append(args)
            return await original(*args, **kwargs)

        backend.list_current_properties = spy

        iterator = store.list_secret_properties()
        first = await iterator.__anext__()
        await iterator.aclose()

        assert first.name == "a"
        assert len(calls) == 1

    async def test_list_is_restartable(self, store):
        """Test a fresh listing reflects the current state."""
        await store.set_secret("a", "v")
        first = [p.name async for p in store.list_secret_properties()]

        await store.set_secret("b", "v")
        second = [p.name async for p in store.list_secret_properties()]

        assert first == ["a"]
        assert second == ["a", "b"]

    async def test_list_filters_by_name(self, store):
        """Test restricting the listing to one secret."""
        await store.set_secret("a", "v")
        await store.set_secret("b", "v")

        names = [p.name async for p in store.list_secret_properties("b")]

        assert names == ["b"]

    async def test_list_carries_no_values(self, store):
        """Test listed items are properties without a value field."""
        await store.set_secret("a", "secret-value")

        listed = [p async for p in store.list_secret_properties()]

        assert not hasattr(listed[0], "value")
        assert "secret-value" not in listed[0].model_dump_json()

    async def test_list_skips_deleted_secrets(self, store):
        """Test soft-deleted secrets are not listed."""
        await store.set_secret("a", "v")
        await store.set_secret("b", "v")
        await delete_and_wait(store, "a")

        names = [p.name async for p in store.list_secret_properties()]

        assert names == ["b"]


class TestDeleteAndPurge:
    """Test the deletion state machine."""

    async def test_full_lifecycle(self, store):
        """Test delete, wait, purge, then the name is gone."""
        await store.set_secret("A", "x")

        result = await delete_and_wait(store, "A")
        await store.purge("A")

        assert result.value.name == "A"
        assert result.value.recovery_id.endswith("/deletedsecrets/A")
        with pytest.raises(NotFoundError):
            await store.get_secret("A")
        with pytest.raises(NotFoundError):
            await store.purge("A")

    async def test_purge_active_secret(self, store):
        """Test purge before any delete is an invalid transition."""
        await store.set_secret("A", "x")

        with pytest.raises(InvalidStateError):
            await store.purge("A")

    async def test_purge_while_deleting(self, slow_store):
        """Test purge before the delete completes is an invalid transition."""
        await slow_store.set_secret("A", "x")
        await slow_store.begin_delete("A")

        with pytest.raises(InvalidStateError):
            await slow_store.purge("A")

    async def test_purge_unknown_secret(self, store):
        """Test purging a name that never existed."""
        with pytest.raises(NotFoundError):
            await store.purge("missing")

    async def test_begin_delete_unknown_secret(self, store):
        """Test deleting a name that never existed."""
        with pytest.raises(NotFoundError):
            await store.begin_delete("missing")

    async def test_begin_delete_twice(self, slow_store):
        """Test deleting a secret that is already deleting."""
        await slow_store.set_secret("A", "x")
        await slow_store.begin_delete("A")

        with pytest.raises(InvalidStateError):
            await slow_store.begin_delete("A")

    async def test_begin_delete_after_soft_delete(self, store):
        """Test deleting a secret that is already soft-deleted."""
        await store.set_secret("A", "x")
        await delete_and_wait(store, "A")

        with pytest.raises(InvalidStateError):
            await store.begin_delete("A")

    async def test_get_while_deleting(self, slow_store):
        """Test a deleting secret can no longer be read."""
        await slow_store.set_secret("A", "x")
        handle = await slow_store.begin_delete("A")

        with pytest.raises(NotFoundError):
            await slow_store.get_secret("A")
        response = await slow_store.poll_operation(handle)
        assert response.status == PollStatus.IN_PROGRESS

    async def test_set_while_soft_deleted(self, store):
        """Test a soft-deleted name cannot take new versions."""
        await store.set_secret("A", "x")
        await delete_and_wait(store, "A")

        with pytest.raises(InvalidStateError):
            await store.set_secret("A", "y")

    async def test_name_reusable_after_purge(self, store):
        """Test a purged name starts a brand new secret."""
        await store.set_secret("A", "x")
        await delete_and_wait(store, "A")
        await store.purge("A")

        secret = await store.set_secret("A", "fresh")

        versions = [p async for p in store.list_secret_versions("A")]
        assert len(versions) == 1
        assert (await store.get_secret("A")).value == "fresh"
        assert secret.version == versions[0].version

    async def test_delete_without_soft_delete(self):
        """Test a backend without soft-delete purges on completion."""
        store = SecretStore(InMemoryVaultBackend(soft_delete_enabled=False), polling_policy=FAST_POLLING)
        await store.set_secret("A", "x")

        result = await delete_and_wait(store, "A")

        assert result.value.recovery_id is None
        with pytest.raises(NotFoundError):
            await store.purge("A")
        with pytest.raises(NotFoundError):
            await store.get_deleted_secret("A")

    async def test_purge_protection(self):
        """Test purge-protected secrets cannot be purged inside retention."""
        store = SecretStore(InMemoryVaultBackend(purge_protection=True), polling_policy=FAST_POLLING)
        await store.set_secret("A", "x")
        await delete_and_wait(store, "A")

        with pytest.raises(InvalidStateError):
            await store.purge("A")


class TestDeletedSecrets:
    """Test reading and recovering soft-deleted secrets."""

    async def test_get_deleted_secret(self, store):
        """Test a soft-deleted secret exposes its recovery data."""
        secret = await store.set_secret("A", "x")
        await delete_and_wait(store, "A")

        deleted = await store.get_deleted_secret("A")

        assert deleted.recovery_id.endswith("/deletedsecrets/A")
        assert deleted.properties.deleted is True
        assert deleted.properties.version == secret.version
        assert deleted.scheduled_purge_date > deleted.deleted_on

    async def test_get_deleted_secret_for_active(self, store):
        """Test an active secret is not reported as deleted."""
        await store.set_secret("A", "x")

        with pytest.raises(NotFoundError):
            await store.get_deleted_secret("A")

    async def test_list_deleted_secrets(self, store):
        """Test listing soft-deleted secrets across pages."""
        for name in ["a", "b", "c"]:
            await store.set_secret(name, "v")
            await delete_and_wait(store, name)

        names = [d.name async for d in store.list_deleted_secrets()]

        assert names == ["a", "b", "c"]

    async def test_recover(self, store):
        """Test recovering a soft-deleted secret restores every version."""
        v1 = await store.set_secret("A", "x")
        await store.set_secret("A", "y")
        await delete_and_wait(store, "A")

        handle = await store.begin_recover("A")
        await store.get_poller(handle).wait_for_completion(timeout=5)

        assert (await store.get_secret("A")).value == "y"
        assert (await store.get_secret("A", v1.version)).value == "x"
        with pytest.raises(NotFoundError):
            await store.get_deleted_secret("A")

    async def test_recover_active_secret(self, store):
        """Test only soft-deleted secrets can be recovered."""
        await store.set_secret("A", "x")

        with pytest.raises(InvalidStateError):
            await store.begin_recover("A")


class FlakyBackend(InMemoryVaultBackend):
    """Backend whose reads fail at the transport level."""

    async def get_secret_version(self, name, version=None):
        raise ConnectionError("connection reset by peer")


class BrokenBackend(InMemoryVaultBackend):
    """Backend failing with errors that are not transport errors."""

    async def get_secret_version(self, name, version=None):
        raise RuntimeError("boom")

    async def list_current_properties(self, name=None, max_results=None, continuation_token=None):
        raise KeyError("page")


class TestErrorClassification:
    """Test backend failures are mapped onto the error taxonomy."""

    async def test_transport_error_becomes_backend_unavailable(self):
        """Test transport errors are re-raised as BackendUnavailableError."""
        store = SecretStore(FlakyBackend())

        with pytest.raises(BackendUnavailableError) as exc_info:
            await store.get_secret("A")
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert exc_info.value.error_code == "ServiceUnavailable"

    async def test_unexpected_error_becomes_backend_unavailable(self):
        """Test any non-taxonomy backend error is classified."""
        store = SecretStore(BrokenBackend())

        with pytest.raises(BackendUnavailableError) as exc_info:
            await store.get_secret("A")
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    async def test_listing_error_becomes_backend_unavailable(self):
        """Test failures while paging are classified too."""
        store = SecretStore(BrokenBackend())

        with pytest.raises(BackendUnavailableError):
            [p async for p in store.list_secret_properties()]

    async def test_taxonomy_errors_pass_through(self, store):
        """Test NotFoundError is not reclassified."""
        with pytest.raises(NotFoundError) as exc_info:
            await store.get_secret("missing")
        assert exc_info.value.error_code == "SecretNotFound"

    def test_page_size_must_be_positive(self, backend):
        """Test an empty page size is rejected."""
        with pytest.raises(ValueError):
            SecretStore(backend, page_size=0)
