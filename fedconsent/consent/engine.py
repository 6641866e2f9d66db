"""
Consent lifecycle engine for fedconsent
Creation, deletion and status transitions of consents
"""

from typing import Dict, List, Optional, Union

import structlog
from sqlalchemy.orm import Session

from .filter import AttributeFilter
from .hubs import ConsentHubDirectory
from .models import AttributeDefinition, Consent, ConsentHub, ConsentStatus, is_transition_allowed
from .storage import ConsentStore, ConsentRow, UnitOfWork
from ..audit import AuditSink, StructlogAuditSink, publish, changed_consent_status, consent_created, consent_deleted
from ..config import ConsentConfig, get_config
from ..exceptions import (
    ConsentAlreadyExistsError,
    ConsentNotFoundError,
    ConsistencyError,
    InvalidConsentStatusError,
    UserNotFoundError,
)
from ..registry import AttributeRegistry, UserDirectory

logger = structlog.get_logger(__name__)

StatusLike = Union[str, ConsentStatus]


class ConsentLifecycleManager:
    """Drives consents through UNSIGNED -> GRANTED/REVOKED"""

    def __init__(self, store: ConsentStore, directory: ConsentHubDirectory,
                 attribute_filter: AttributeFilter, users: UserDirectory,
                 attributes: AttributeRegistry, audit: Optional[AuditSink] = None,
                 config: Optional[ConsentConfig] = None):
        self.store = store
        self.directory = directory
        self.attribute_filter = attribute_filter
        self.users = users
        self.attributes = attributes
        self.audit = audit or StructlogAuditSink()
        self.config = config or get_config()

    # =========================================================================
    # HYDRATION
    # =========================================================================

    def _to_model(self, session: Session, row: ConsentRow,
                  consent_hub: Optional[ConsentHub] = None) -> Consent:
        if consent_hub is None or consent_hub.id != row.consent_hub_id:
            hub_row = self.store.get_consent_hub_row(session, row.consent_hub_id)
            if hub_row is None:
                raise ConsistencyError(f"Consent {row.id} outlived its consent hub",
                                       details={"consent_id": row.id,
                                                "consent_hub_id": row.consent_hub_id})
            consent_hub = self.directory.hydrate(session, hub_row)

        attributes: List[AttributeDefinition] = []
        for attr_id in self.store.get_consent_attr_ids(session, row.id):
            attribute = self.attributes.get_attribute_definition_by_id(attr_id)
            if attribute is None:
                logger.warning("Consented attribute missing from registry",
                               consent_id=row.id, attr_id=attr_id)
                continue
            attributes.append(attribute)

        return Consent(
            id=row.id,
            user_id=row.user_id,
            consent_hub=consent_hub,
            status=row.status,
            attributes=attributes,
            created_at=row.created_at,
            created_by=row.created_by,
            modified_at=row.modified_at,
            modified_by=row.modified_by,
        )

    def _to_models(self, session: Session, rows: List[ConsentRow]) -> List[Consent]:
        hubs: Dict[int, ConsentHub] = {}
        consents = []
        for row in rows:
            consent = self._to_model(session, row, hubs.get(row.consent_hub_id))
            hubs[row.consent_hub_id] = consent.consent_hub
            consents.append(consent)
        return consents

    def _count(self, session: Session, consent_id: int) -> int:
        count = self.store.count_consents(session, consent_id)
        if count > 1:
            raise ConsistencyError(f"Consent {consent_id} exists more than once",
                                   details={"consent_id": consent_id})
        return count

    def _peek(self, consent_id: int) -> ConsentRow:
        with self.store.reading() as session:
            row = self.store.get_consent_row(session, consent_id)
        if row is None:
            raise ConsentNotFoundError(consent_id)
        return row

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def create_consent(self, user_id: int, consent_hub_id: int,
                       consent_id: Optional[int] = None,
                       actor: Optional[str] = None) -> Consent:
        """
        Create an UNSIGNED consent of a user for a consent hub.

        An UNSIGNED consent the user already has for the hub is replaced.
        The attribute set is a snapshot of what the hub's facilities
        require from the user at this moment.
        """
        actor = actor or self.config.default_actor

        with self.store.transaction(consent_hub_id) as uow:
            session = uow.session
            user = self.users.get_user_by_id(user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            consent_hub = self.directory.load(session, consent_hub_id, for_update=True)

            if consent_id is not None and self._count(session, consent_id) > 0:
                raise ConsentAlreadyExistsError(consent_id)

            for unsigned in self.store.find_consent_rows(session, user_id, consent_hub_id,
                                                         ConsentStatus.UNSIGNED):
                try:
                    self.delete_in(uow, unsigned.id, actor, consent_hub)
                except ConsentNotFoundError:
                    pass

            attributes = self.attribute_filter.filter_attributes(user, consent_hub)
            row = self.store.insert_consent(
                session, user_id, consent_hub_id, ConsentStatus.UNSIGNED,
                [a.id for a in attributes], actor, consent_id=consent_id,
            )
            consent = Consent(
                id=row.id,
                user_id=row.user_id,
                consent_hub=consent_hub,
                status=row.status,
                attributes=attributes,
                created_at=row.created_at,
                created_by=row.created_by,
                modified_at=row.modified_at,
                modified_by=row.modified_by,
            )
            uow.record(consent_created(consent, actor))

        publish(self.audit, uow.events)
        logger.info("Consent created", consent_id=consent.id, user_id=user_id,
                    consent_hub_id=consent_hub_id, attributes=len(attributes))
        return consent

    def delete_consent(self, consent_id: int, actor: Optional[str] = None) -> None:
        actor = actor or self.config.default_actor
        row = self._peek(consent_id)

        with self.store.transaction(row.consent_hub_id) as uow:
            self.delete_in(uow, consent_id, actor)

        publish(self.audit, uow.events)
        logger.info("Consent deleted", consent_id=consent_id)

    def delete_in(self, uow: UnitOfWork, consent_id: int, actor: str,
                  consent_hub: Optional[ConsentHub] = None) -> Consent:
        """Delete a consent inside an open transaction"""
        session = uow.session
        if self._count(session, consent_id) == 0:
            raise ConsentNotFoundError(consent_id)

        row = self.store.get_consent_row(session, consent_id)
        consent = self._to_model(session, row, consent_hub)
        if self.store.delete_consent_row(session, consent_id) != 1:
            raise ConsentNotFoundError(consent_id)

        uow.record(consent_deleted(consent, actor))
        logger.debug("Consent removed", consent_id=consent_id, status=consent.status.value)
        return consent

    def change_consent_status(self, consent_id: int, status: StatusLike,
                              actor: Optional[str] = None) -> Consent:
        """
        Move a consent to GRANTED or REVOKED.

        Other decided (non-UNSIGNED) consents of the same user and hub
        are deleted in the same transaction, so at most one decision per
        hub survives.
        """
        actor = actor or self.config.default_actor
        target = ConsentStatus.parse(status)
        if target == ConsentStatus.UNSIGNED:
            raise InvalidConsentStatusError("Invalid consent status value.", requested=target.value)

        peeked = self._peek(consent_id)
        with self.store.transaction(peeked.consent_hub_id) as uow:
            session = uow.session
            consent_hub = self.directory.load(session, peeked.consent_hub_id, for_update=True)
            row = self.store.get_consent_row(session, consent_id)
            if row is None:
                raise ConsentNotFoundError(consent_id)
            if row.status == target:
                raise InvalidConsentStatusError("Tried to set consent status on current value.",
                                                current=row.status.value, requested=target.value)
            if not is_transition_allowed(row.status, target):
                raise InvalidConsentStatusError("Consent status transition is not allowed.",
                                                current=row.status.value, requested=target.value)

            if self.store.update_consent_status(session, consent_id, target, actor) != 1:
                raise ConsentNotFoundError(consent_id)

            for other in self.store.find_consent_rows(session, row.user_id, row.consent_hub_id):
                if other.id == consent_id or other.status == ConsentStatus.UNSIGNED:
                    continue
                try:
                    self.delete_in(uow, other.id, actor, consent_hub)
                except ConsentNotFoundError as e:
                    raise ConsistencyError(f"Superseded consent {other.id} vanished",
                                           details={"consent_id": other.id}) from e

            updated = self._to_model(session, self.store.get_consent_row(session, consent_id),
                                     consent_hub)
            uow.record(changed_consent_status(updated, actor))

        publish(self.audit, uow.events)
        logger.info("Consent status changed", consent_id=consent_id,
                    previous=row.status.value, status=target.value)
        return updated

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_consent_by_id(self, consent_id: int) -> Consent:
        with self.store.reading() as session:
            row = self.store.get_consent_row(session, consent_id)
            if row is None:
                raise ConsentNotFoundError(consent_id)
            return self._to_model(session, row)

    def get_all_consents(self) -> List[Consent]:
        with self.store.reading() as session:
            return self._to_models(session, self.store.find_consent_rows(session))

    def get_consents_for_user(self, user_id: int,
                              status: Optional[StatusLike] = None) -> List[Consent]:
        if self.users.get_user_by_id(user_id) is None:
            raise UserNotFoundError(user_id)
        wanted = ConsentStatus.parse(status) if status is not None else None
        with self.store.reading() as session:
            rows = self.store.find_consent_rows(session, user_id=user_id, status=wanted)
            return self._to_models(session, rows)

    def get_consents_for_consent_hub(self, consent_hub_id: int,
                                     status: Optional[StatusLike] = None) -> List[Consent]:
        wanted = ConsentStatus.parse(status) if status is not None else None
        with self.store.reading() as session:
            rows = self.store.find_consent_rows(session, consent_hub_id=consent_hub_id, status=wanted)
            return self._to_models(session, rows)

    def get_consents_for_user_and_consent_hub(self, user_id: int, consent_hub_id: int,
                                              status: Optional[StatusLike] = None) -> List[Consent]:
        if self.users.get_user_by_id(user_id) is None:
            raise UserNotFoundError(user_id)
        wanted = ConsentStatus.parse(status) if status is not None else None
        with self.store.reading() as session:
            consent_hub = self.directory.load(session, consent_hub_id)
            rows = self.store.find_consent_rows(session, user_id, consent_hub_id, wanted)
            return [self._to_model(session, row, consent_hub) for row in rows]

    def get_consent_for_user_and_consent_hub(self, user_id: int, consent_hub_id: int,
                                             status: StatusLike) -> Consent:
        """The single consent of a user for a hub in the given status"""
        consents = self.get_consents_for_user_and_consent_hub(user_id, consent_hub_id, status)
        if not consents:
            raise ConsentNotFoundError(
                message=f"User {user_id} has no {ConsentStatus.parse(status).value} consent "
                        f"for consent hub {consent_hub_id}",
                details={"user_id": user_id, "consent_hub_id": consent_hub_id},
            )
        if len(consents) > 1:
            logger.error("Multiple consents where one was expected", user_id=user_id,
                         consent_hub_id=consent_hub_id, count=len(consents))
            raise ConsistencyError(
                f"User {user_id} has {len(consents)} consents for consent hub {consent_hub_id}",
                details={"user_id": user_id, "consent_hub_id": consent_hub_id},
            )
        return consents[0]

    def consent_exists(self, consent_id: int) -> bool:
        with self.store.reading() as session:
            return self._count(session, consent_id) == 1

    def check_consent_exists(self, consent_id: int) -> None:
        if not self.consent_exists(consent_id):
            raise ConsentNotFoundError(consent_id)
