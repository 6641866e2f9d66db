"""Tests for ConsentStore locking, timestamps and row mapping."""

from __future__ import annotations

import threading

import pytest

from fedconsent.audit import InMemoryAuditSink
from fedconsent.constants import StorageDefaults
from fedconsent.consent.manager import ConsentsManager
from fedconsent.consent.storage import ConsentStore
from fedconsent.exceptions import StorageError, UserNotFoundError
from fedconsent.registry import InMemoryRegistry


class TestHubLocks:
    """Test the per-hub lock table."""

    def setup_method(self) -> None:
        self.store = ConsentStore("sqlite://", lock_timeout=0.1)

    def teardown_method(self) -> None:
        self.store.dispose()

    def test_lock_table_does_not_grow_with_hub_ids(self) -> None:
        """Arbitrary hub ids from callers map onto a fixed set of locks."""
        manager = ConsentsManager.from_registry(
            InMemoryRegistry(), store=self.store, audit=InMemoryAuditSink()
        )

        for consent_hub_id in range(1000, 1500):
            with pytest.raises(UserNotFoundError):
                manager.consents.create_consent(1, consent_hub_id)

        assert len(self.store._hub_locks) == StorageDefaults.HUB_LOCK_STRIPES

    def test_same_stripe_shares_a_lock(self) -> None:
        stripes = StorageDefaults.HUB_LOCK_STRIPES

        assert self.store._hub_lock(3) is self.store._hub_lock(3 + stripes)
        assert self.store._hub_lock(3) is not self.store._hub_lock(4)

    def test_busy_hub_times_out(self) -> None:
        """A transaction that cannot get its hub lock fails as a storage error."""
        held = threading.Event()
        done = threading.Event()

        def hold() -> None:
            with self.store.transaction(7):
                held.set()
                done.wait(timeout=5)

        holder = threading.Thread(target=hold)
        holder.start()
        try:
            assert held.wait(timeout=5)
            with pytest.raises(StorageError):
                with self.store.transaction(7):
                    pass
        finally:
            done.set()
            holder.join(timeout=5)

    def test_file_database_has_no_connection_lock(self, tmp_path) -> None:
        store = ConsentStore(f"sqlite:///{tmp_path / 'consents.db'}")
        try:
            assert store._connection_lock is None
            assert self.store._connection_lock is not None
        finally:
            store.dispose()


class TestTimestamps:
    """Test that audit timestamps read back the way they were written."""

    def setup_method(self) -> None:
        self.registry = InMemoryRegistry()
        self.store = ConsentStore("sqlite://")
        self.manager = ConsentsManager.from_registry(
            self.registry, store=self.store, audit=InMemoryAuditSink()
        )
        self.user = self.registry.create_user()
        self.hub = self.manager.facility_registered(self.registry.create_facility("wiki").id)

    def teardown_method(self) -> None:
        self.store.dispose()

    def test_consent_timestamps_stay_timezone_aware(self) -> None:
        created = self.manager.consents.create_consent(self.user.id, self.hub.id)
        fetched = self.manager.consents.get_consent_by_id(created.id)

        assert created.created_at.tzinfo is not None
        assert fetched.created_at.tzinfo is not None
        assert fetched.created_at == created.created_at
        assert fetched.modified_at == created.modified_at

    def test_hub_timestamps_stay_timezone_aware(self) -> None:
        fetched = self.manager.hubs.get_consent_hub_by_id(self.hub.id)

        assert fetched.created_at.tzinfo is not None
        assert fetched.created_at == self.hub.created_at
