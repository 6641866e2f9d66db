"""Tests for consent creation, deletion, status changes and queries."""

from __future__ import annotations

import threading

import pytest
from sqlalchemy.exc import SQLAlchemyError

from fedconsent.audit import InMemoryAuditSink
from fedconsent.constants import NS_FACILITY_ATTR, NS_MEMBER_RESOURCE_ATTR, AuditEventTypes
from fedconsent.consent.manager import ConsentsManager
from fedconsent.consent.models import ConsentStatus
from fedconsent.consent.storage import ConsentStore
from fedconsent.exceptions import (
    ConsentAlreadyExistsError,
    ConsentHubNotFoundError,
    ConsentNotFoundError,
    ConsistencyError,
    ErrorKind,
    InvalidConsentStatusError,
    StorageError,
    UserNotFoundError,
)
from fedconsent.registry import InMemoryRegistry


class TestConsentLifecycle:
    """Test the consent state machine against an in-memory database."""

    def setup_method(self) -> None:
        self.registry = InMemoryRegistry()
        self.audit = InMemoryAuditSink()
        self.store = ConsentStore("sqlite://")
        self.manager = ConsentsManager.from_registry(self.registry, store=self.store, audit=self.audit)

        self.user = self.registry.create_user("Ada", "Lovelace")
        self.facility = self.registry.create_facility("wiki")
        self.hub = self.manager.facility_registered(self.facility.id)
        self.consents = self.manager.consents
        self.audit.events.clear()

    def teardown_method(self) -> None:
        self.store.dispose()

    def _require(self, namespace: str, friendly_name: str):
        resource = self.registry.create_resource(self.facility.id, f"res-{friendly_name}")
        service = self.registry.create_service(f"svc-{friendly_name}")
        attr = self.registry.create_attribute_definition(namespace, friendly_name)
        self.registry.assign_user(resource.id, self.user.id)
        self.registry.assign_service(resource.id, service.id)
        self.registry.add_required_attribute(service.id, attr.id)
        return attr

    def test_end_to_end_grant_then_new_unsigned(self) -> None:
        """A granted consent coexists with a later UNSIGNED one."""
        assert self.hub.name == "wiki"

        consent = self.consents.create_consent(self.user.id, self.hub.id)
        assert consent.status == ConsentStatus.UNSIGNED
        assert consent.attributes == []
        assert consent.consent_hub.id == self.hub.id

        granted = self.consents.change_consent_status(consent.id, ConsentStatus.GRANTED)
        assert granted.status == ConsentStatus.GRANTED

        second = self.consents.create_consent(self.user.id, self.hub.id)
        assert second.id != consent.id
        assert second.status == ConsentStatus.UNSIGNED

        statuses = {c.id: c.status for c in self.consents.get_consents_for_user(self.user.id)}
        assert statuses == {consent.id: ConsentStatus.GRANTED, second.id: ConsentStatus.UNSIGNED}

    def test_create_snapshots_eligible_attributes(self) -> None:
        """The consent carries the filtered attributes at creation time."""
        self._require(NS_MEMBER_RESOURCE_ATTR, "isBanned")
        self._require(NS_FACILITY_ATTR, "homeDir")

        consent = self.consents.create_consent(self.user.id, self.hub.id)

        assert consent.attribute_names() == [f"{NS_MEMBER_RESOURCE_ATTR}:isBanned"]
        stored = self.consents.get_consent_by_id(consent.id)
        assert stored.attribute_names() == consent.attribute_names()

    def test_create_replaces_unsigned_consent(self) -> None:
        """Creating again drops the previous UNSIGNED consent."""
        first = self.consents.create_consent(self.user.id, self.hub.id)
        second = self.consents.create_consent(self.user.id, self.hub.id)

        with pytest.raises(ConsentNotFoundError):
            self.consents.get_consent_by_id(first.id)
        unsigned = self.consents.get_consents_for_user_and_consent_hub(
            self.user.id, self.hub.id, ConsentStatus.UNSIGNED
        )
        assert [c.id for c in unsigned] == [second.id]
        assert self.audit.event_types() == [
            AuditEventTypes.CONSENT_CREATED,
            AuditEventTypes.CONSENT_DELETED,
            AuditEventTypes.CONSENT_CREATED,
        ]

    def test_create_with_explicit_id(self) -> None:
        consent = self.consents.create_consent(self.user.id, self.hub.id, consent_id=500)

        assert consent.id == 500
        assert self.consents.consent_exists(500)

    def test_create_with_taken_id_conflicts(self) -> None:
        """An explicit id already in use is a conflict, and nothing changes."""
        existing = self.consents.create_consent(self.user.id, self.hub.id)

        with pytest.raises(ConsentAlreadyExistsError) as exc_info:
            self.consents.create_consent(self.user.id, self.hub.id, consent_id=existing.id)

        assert exc_info.value.kind == ErrorKind.CONFLICT
        assert self.consents.get_consent_by_id(existing.id).status == ConsentStatus.UNSIGNED

    def test_create_for_unknown_user(self) -> None:
        with pytest.raises(UserNotFoundError):
            self.consents.create_consent(9999, self.hub.id)

    def test_create_for_unknown_hub(self) -> None:
        with pytest.raises(ConsentHubNotFoundError):
            self.consents.create_consent(self.user.id, 9999)

    def test_failed_create_keeps_previous_unsigned(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A database failure rolls back the replacement of the old consent."""
        first = self.consents.create_consent(self.user.id, self.hub.id)
        self.audit.events.clear()

        def boom(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(self.store, "insert_consent", boom)

        with pytest.raises(StorageError) as exc_info:
            self.consents.create_consent(self.user.id, self.hub.id)

        assert exc_info.value.kind == ErrorKind.INFRASTRUCTURE
        assert self.consents.get_consent_by_id(first.id).status == ConsentStatus.UNSIGNED
        assert self.audit.events == []

    def test_grant_and_revoke(self) -> None:
        consent = self.consents.create_consent(self.user.id, self.hub.id)

        self.consents.change_consent_status(consent.id, "granted")
        revoked = self.consents.change_consent_status(consent.id, ConsentStatus.REVOKED)

        assert revoked.status == ConsentStatus.REVOKED
        assert revoked.modified_by == "fedconsent"

    def test_revoked_consent_can_be_granted_again(self) -> None:
        consent = self.consents.create_consent(self.user.id, self.hub.id)
        self.consents.change_consent_status(consent.id, ConsentStatus.REVOKED)

        regranted = self.consents.change_consent_status(consent.id, ConsentStatus.GRANTED)

        assert regranted.status == ConsentStatus.GRANTED

    def test_same_status_is_rejected(self) -> None:
        consent = self.consents.create_consent(self.user.id, self.hub.id)
        self.consents.change_consent_status(consent.id, ConsentStatus.GRANTED)

        with pytest.raises(InvalidConsentStatusError) as exc_info:
            self.consents.change_consent_status(consent.id, ConsentStatus.GRANTED)

        assert exc_info.value.message == "Tried to set consent status on current value."
        assert exc_info.value.kind == ErrorKind.INVALID_STATE

    def test_unsigned_target_is_rejected(self) -> None:
        consent = self.consents.create_consent(self.user.id, self.hub.id)

        with pytest.raises(InvalidConsentStatusError) as exc_info:
            self.consents.change_consent_status(consent.id, ConsentStatus.UNSIGNED)

        assert exc_info.value.message == "Invalid consent status value."

    def test_unknown_status_literal_is_rejected(self) -> None:
        consent = self.consents.create_consent(self.user.id, self.hub.id)

        with pytest.raises(InvalidConsentStatusError):
            self.consents.change_consent_status(consent.id, "MAYBE")

    def test_change_status_of_missing_consent(self) -> None:
        with pytest.raises(ConsentNotFoundError):
            self.consents.change_consent_status(4242, ConsentStatus.GRANTED)

    def test_decision_supersedes_older_decision(self) -> None:
        """Deciding a new consent deletes the older GRANTED/REVOKED one."""
        old = self.consents.create_consent(self.user.id, self.hub.id)
        self.consents.change_consent_status(old.id, ConsentStatus.GRANTED)
        new = self.consents.create_consent(self.user.id, self.hub.id)
        self.audit.events.clear()

        self.consents.change_consent_status(new.id, ConsentStatus.REVOKED)

        remaining = self.consents.get_consents_for_user_and_consent_hub(self.user.id, self.hub.id)
        assert [(c.id, c.status) for c in remaining] == [(new.id, ConsentStatus.REVOKED)]
        assert self.audit.event_types() == [
            AuditEventTypes.CONSENT_DELETED,
            AuditEventTypes.CHANGED_CONSENT_STATUS,
        ]
        assert self.audit.events[0].details["consent_id"] == old.id

    def test_failed_supersede_leaves_both_consents(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A failure while deleting the older decision rolls back the status change too."""
        old = self.consents.create_consent(self.user.id, self.hub.id)
        self.consents.change_consent_status(old.id, ConsentStatus.GRANTED)
        new = self.consents.create_consent(self.user.id, self.hub.id)
        self.audit.events.clear()

        def boom(*args, **kwargs):
            raise SQLAlchemyError("constraint check failed")

        monkeypatch.setattr(self.store, "delete_consent_row", boom)

        with pytest.raises(StorageError):
            self.consents.change_consent_status(new.id, ConsentStatus.REVOKED)

        assert self.consents.get_consent_by_id(new.id).status == ConsentStatus.UNSIGNED
        assert self.consents.get_consent_by_id(old.id).status == ConsentStatus.GRANTED
        assert self.audit.events == []

    def test_decision_keeps_consents_of_other_users(self) -> None:
        other = self.registry.create_user("Charles", "Babbage")
        theirs = self.consents.create_consent(other.id, self.hub.id)
        self.consents.change_consent_status(theirs.id, ConsentStatus.GRANTED)

        mine = self.consents.create_consent(self.user.id, self.hub.id)
        self.consents.change_consent_status(mine.id, ConsentStatus.GRANTED)

        assert self.consents.get_consent_by_id(theirs.id).status == ConsentStatus.GRANTED

    def test_delete_consent(self) -> None:
        consent = self.consents.create_consent(self.user.id, self.hub.id)

        self.consents.delete_consent(consent.id)

        assert not self.consents.consent_exists(consent.id)
        with pytest.raises(ConsentNotFoundError):
            self.consents.delete_consent(consent.id)
        with pytest.raises(ConsentNotFoundError):
            self.consents.check_consent_exists(consent.id)


class TestConsentQueries:
    """Test consent lookups by user, hub and status."""

    def setup_method(self) -> None:
        self.registry = InMemoryRegistry()
        self.store = ConsentStore("sqlite://")
        self.manager = ConsentsManager.from_registry(
            self.registry, store=self.store, audit=InMemoryAuditSink()
        )
        self.consents = self.manager.consents

        self.user = self.registry.create_user()
        self.wiki = self.manager.facility_registered(self.registry.create_facility("wiki").id)
        self.mail = self.manager.facility_registered(self.registry.create_facility("mail").id)

        self.granted = self.consents.create_consent(self.user.id, self.wiki.id)
        self.consents.change_consent_status(self.granted.id, ConsentStatus.GRANTED)
        self.unsigned = self.consents.create_consent(self.user.id, self.mail.id)

    def teardown_method(self) -> None:
        self.store.dispose()

    def test_get_all_consents(self) -> None:
        ids = [c.id for c in self.consents.get_all_consents()]
        assert ids == [self.granted.id, self.unsigned.id]

    def test_get_consents_for_user_by_status(self) -> None:
        granted = self.consents.get_consents_for_user(self.user.id, "GRANTED")
        assert [c.id for c in granted] == [self.granted.id]

    def test_get_consents_for_unknown_user(self) -> None:
        with pytest.raises(UserNotFoundError):
            self.consents.get_consents_for_user(9999)

    def test_get_consents_for_consent_hub(self) -> None:
        consents = self.consents.get_consents_for_consent_hub(self.mail.id)
        assert [c.id for c in consents] == [self.unsigned.id]
        assert consents[0].consent_hub.name == "mail"

    def test_get_consents_for_user_and_unknown_hub(self) -> None:
        with pytest.raises(ConsentHubNotFoundError):
            self.consents.get_consents_for_user_and_consent_hub(self.user.id, 9999)

    def test_get_single_consent_for_user_and_hub(self) -> None:
        consent = self.consents.get_consent_for_user_and_consent_hub(
            self.user.id, self.wiki.id, ConsentStatus.GRANTED
        )
        assert consent.id == self.granted.id

        with pytest.raises(ConsentNotFoundError):
            self.consents.get_consent_for_user_and_consent_hub(
                self.user.id, self.wiki.id, ConsentStatus.REVOKED
            )

    def test_duplicate_unsigned_rows_are_a_consistency_error(self) -> None:
        """Two UNSIGNED rows for one pair can only come from outside the core."""
        with self.store.transaction() as uow:
            self.store.insert_consent(uow.session, self.user.id, self.mail.id,
                                      ConsentStatus.UNSIGNED, [], "test")

        with pytest.raises(ConsistencyError) as exc_info:
            self.consents.get_consent_for_user_and_consent_hub(
                self.user.id, self.mail.id, ConsentStatus.UNSIGNED
            )
        assert not exc_info.value.expected


class TestInMemoryStoreIsolation:
    """Test that transactions on different hubs do not commit each other's writes."""

    def setup_method(self) -> None:
        self.registry = InMemoryRegistry()
        self.store = ConsentStore("sqlite://")
        self.manager = ConsentsManager.from_registry(
            self.registry, store=self.store, audit=InMemoryAuditSink()
        )
        self.consents = self.manager.consents

        self.user = self.registry.create_user()
        self.wiki = self.manager.facility_registered(self.registry.create_facility("wiki").id)
        self.mail = self.manager.facility_registered(self.registry.create_facility("mail").id)

        self.old = self.consents.create_consent(self.user.id, self.wiki.id)
        self.consents.change_consent_status(self.old.id, ConsentStatus.GRANTED)
        self.new = self.consents.create_consent(self.user.id, self.wiki.id)

    def teardown_method(self) -> None:
        self.store.dispose()

    def test_commit_on_other_hub_does_not_persist_failed_change(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A status change failing mid-supersede stays rolled back while another hub commits."""
        paused = threading.Event()
        release = threading.Event()

        def stalled_delete(*args, **kwargs):
            paused.set()
            release.wait(timeout=5)
            raise SQLAlchemyError("connection reset")

        monkeypatch.setattr(self.store, "delete_consent_row", stalled_delete)
        outcome = {}

        def revoke() -> None:
            try:
                self.consents.change_consent_status(self.new.id, ConsentStatus.REVOKED)
            except StorageError as e:
                outcome["error"] = e

        def create_on_other_hub() -> None:
            outcome["created"] = self.consents.create_consent(self.user.id, self.mail.id)

        revoker = threading.Thread(target=revoke)
        revoker.start()
        assert paused.wait(timeout=5)

        creator = threading.Thread(target=create_on_other_hub)
        creator.start()
        creator.join(timeout=0.2)
        release.set()
        revoker.join(timeout=5)
        creator.join(timeout=5)

        assert isinstance(outcome.get("error"), StorageError)
        assert outcome["created"].consent_hub.id == self.mail.id
        assert self.consents.get_consent_by_id(self.new.id).status == ConsentStatus.UNSIGNED
        assert self.consents.get_consent_by_id(self.old.id).status == ConsentStatus.GRANTED


class TestConcurrentCreation:
    """Test that concurrent creations for one pair leave a single UNSIGNED consent."""

    def test_parallel_creates_keep_one_unsigned(self, tmp_path) -> None:
        registry = InMemoryRegistry()
        store = ConsentStore(f"sqlite:///{tmp_path / 'consents.db'}")
        manager = ConsentsManager.from_registry(registry, store=store, audit=InMemoryAuditSink())
        user = registry.create_user()
        hub = manager.facility_registered(registry.create_facility("wiki").id)

        errors = []

        def create() -> None:
            try:
                manager.consents.create_consent(user.id, hub.id)
            except Exception as e:  # pragma: no cover - surfaced by the assertion below
                errors.append(e)

        threads = [threading.Thread(target=create) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        try:
            assert errors == []
            unsigned = manager.consents.get_consents_for_user_and_consent_hub(
                user.id, hub.id, ConsentStatus.UNSIGNED
            )
            assert len(unsigned) == 1
        finally:
            store.dispose()
