"""
Consent hub directory for fedconsent
Hub existence, hub-facility associations and implicit hub lifecycle
"""

from typing import Dict, List, Optional, TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import ConsentHub, Facility
from .storage import ConsentStore, ConsentHubRow
from ..audit import (
    AuditSink, StructlogAuditSink, publish,
    consent_hub_created, consent_hub_updated, facility_added, facility_removed,
)
from ..config import ConsentConfig, get_config
from ..exceptions import (
    ConsentHubAlreadyExistsError,
    ConsentHubNotFoundError,
    ConsistencyError,
    FacilityAlreadyAssignedError,
    FacilityNotFoundError,
    InvalidConsentHubError,
    RelationNotFoundError,
)
from ..registry import FacilityDirectory

if TYPE_CHECKING:
    from .cascade import CascadeCoordinator

logger = structlog.get_logger(__name__)


class ConsentHubDirectory:
    """Owns consent hubs and the facilities they aggregate"""

    def __init__(self, store: ConsentStore, facilities: FacilityDirectory,
                 audit: Optional[AuditSink] = None, config: Optional[ConsentConfig] = None):
        self.store = store
        self.facilities = facilities
        self.audit = audit or StructlogAuditSink()
        self.config = config or get_config()
        self._cascade: Optional["CascadeCoordinator"] = None

    def bind_cascade(self, cascade: "CascadeCoordinator") -> None:
        """Attach the coordinator that deletes hubs left without facilities"""
        self._cascade = cascade

    @property
    def cascade(self) -> "CascadeCoordinator":
        if self._cascade is None:
            raise RuntimeError("ConsentHubDirectory has no cascade coordinator bound")
        return self._cascade

    # =========================================================================
    # HYDRATION
    # =========================================================================

    def hydrate(self, session: Session, row: ConsentHubRow) -> ConsentHub:
        """Build a ConsentHub from its row and its facility associations"""
        facilities: List[Facility] = []
        for facility_id in self.store.get_facility_ids(session, row.id):
            facility = self.facilities.get_facility_by_id(facility_id)
            if facility is None:
                logger.warning("Facility of consent hub missing from directory",
                               consent_hub_id=row.id, facility_id=facility_id)
                continue
            facilities.append(facility)
        return _hub_from_row(row, facilities)

    def load(self, session: Session, consent_hub_id: int, for_update: bool = False) -> ConsentHub:
        row = self.store.get_consent_hub_row(session, consent_hub_id, for_update=for_update)
        if row is None:
            raise ConsentHubNotFoundError(consent_hub_id=consent_hub_id)
        return self.hydrate(session, row)

    def _resolve_facility(self, facility_id: int) -> Facility:
        facility = self.facilities.get_facility_by_id(facility_id)
        if facility is None:
            raise FacilityNotFoundError(facility_id)
        return facility

    def _link(self, session: Session, consent_hub_id: int, facility_id: int) -> None:
        try:
            self.store.add_facility(session, consent_hub_id, facility_id)
        except IntegrityError as e:
            # lost a race with another hub claiming the same facility
            raise FacilityAlreadyAssignedError(facility_id) from e

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_consent_hub(self, consent_hub: ConsentHub, actor: Optional[str] = None) -> ConsentHub:
        """
        Create a consent hub together with its facility associations.

        Uniqueness is checked by id only: a hub whose name matches an
        existing hub is created alongside it. The name defaults to the
        name of the first facility.
        """
        actor = actor or self.config.default_actor
        if not consent_hub.facilities:
            raise InvalidConsentHubError("Consent hub must reference at least one facility")

        with self.store.transaction() as uow:
            session = uow.session
            if consent_hub.id and self.store.count_consent_hubs(session, consent_hub.id) > 0:
                raise ConsentHubAlreadyExistsError(consent_hub.id, consent_hub.name)

            facilities: Dict[int, Facility] = {}
            for requested in consent_hub.facilities:
                facility = self._resolve_facility(requested.id)
                assigned_to = self.store.get_consent_hub_id_for_facility(session, facility.id)
                if assigned_to is not None:
                    raise FacilityAlreadyAssignedError(facility.id, assigned_to)
                facilities.setdefault(facility.id, facility)

            ordered = list(facilities.values())
            name = consent_hub.name or ordered[0].name
            row = self.store.insert_consent_hub(
                session, name, consent_hub.enforce_consents, actor,
                consent_hub_id=consent_hub.id or None,
            )
            for facility in ordered:
                self._link(session, row.id, facility.id)

            created = _hub_from_row(row, ordered)
            uow.record(consent_hub_created(created, actor))

        publish(self.audit, uow.events)
        logger.info("Consent hub created", consent_hub_id=created.id, name=created.name,
                    facility_ids=created.facility_ids())
        return created

    def create_consent_hub_for_facility(self, facility_id: int,
                                        actor: Optional[str] = None) -> ConsentHub:
        """Create the hub implied by registering a facility"""
        facility = self._resolve_facility(facility_id)
        return self.create_consent_hub(
            ConsentHub(
                name=facility.name,
                enforce_consents=self.config.enforce_consents_default,
                facilities=[facility],
            ),
            actor=actor,
        )

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def get_consent_hub_by_id(self, consent_hub_id: int) -> ConsentHub:
        with self.store.reading() as session:
            return self.load(session, consent_hub_id)

    def get_consent_hub_by_name(self, name: str) -> ConsentHub:
        with self.store.reading() as session:
            rows = self.store.find_consent_hub_rows_by_name(session, name)
            if not rows:
                raise ConsentHubNotFoundError(name=name)
            if len(rows) > 1:
                logger.error("Consent hub name is not unique", name=name, count=len(rows))
                raise ConsistencyError(f"Consent hub {name} exists more than once",
                                       details={"name": name, "count": len(rows)})
            return self.hydrate(session, rows[0])

    def get_consent_hub_by_facility(self, facility_id: int) -> ConsentHub:
        self._resolve_facility(facility_id)
        with self.store.reading() as session:
            consent_hub_id = self.store.get_consent_hub_id_for_facility(session, facility_id)
            if consent_hub_id is None:
                raise ConsentHubNotFoundError(facility_id=facility_id)
            return self.load(session, consent_hub_id)

    def get_all_consent_hubs(self) -> List[ConsentHub]:
        with self.store.reading() as session:
            return [self.hydrate(session, row) for row in self.store.all_consent_hub_rows(session)]

    def consent_hub_exists(self, consent_hub_id: int) -> bool:
        with self.store.reading() as session:
            count = self.store.count_consent_hubs(session, consent_hub_id)
        if count > 1:
            raise ConsistencyError(f"Consent hub {consent_hub_id} exists more than once",
                                   details={"consent_hub_id": consent_hub_id})
        return count == 1

    def check_consent_hub_exists(self, consent_hub_id: int) -> None:
        if not self.consent_hub_exists(consent_hub_id):
            raise ConsentHubNotFoundError(consent_hub_id=consent_hub_id)

    # =========================================================================
    # MUTATION
    # =========================================================================

    def update_consent_hub(self, consent_hub_id: int, name: Optional[str] = None,
                           enforce_consents: Optional[bool] = None,
                           actor: Optional[str] = None) -> ConsentHub:
        """Rename a hub or toggle its enforcement flag"""
        actor = actor or self.config.default_actor
        if name is not None and not name.strip():
            raise InvalidConsentHubError("Consent hub name must not be empty", consent_hub_id)

        with self.store.transaction(consent_hub_id) as uow:
            session = uow.session
            current = self.load(session, consent_hub_id, for_update=True)
            self.store.update_consent_hub(
                session,
                consent_hub_id,
                name if name is not None else current.name,
                current.enforce_consents if enforce_consents is None else enforce_consents,
                actor,
            )
            row = self.store.get_consent_hub_row(session, consent_hub_id)
            if row is None:
                raise ConsistencyError(f"Updated consent hub {consent_hub_id} was not found",
                                       details={"consent_hub_id": consent_hub_id})
            updated = self.hydrate(session, row)
            uow.record(consent_hub_updated(updated, actor))

        publish(self.audit, uow.events)
        logger.info("Consent hub updated", consent_hub_id=consent_hub_id)
        return updated

    def add_facility(self, consent_hub_id: int, facility_id: int,
                     actor: Optional[str] = None) -> ConsentHub:
        actor = actor or self.config.default_actor
        facility = self._resolve_facility(facility_id)

        with self.store.transaction(consent_hub_id) as uow:
            session = uow.session
            self.load(session, consent_hub_id, for_update=True)
            assigned_to = self.store.get_consent_hub_id_for_facility(session, facility.id)
            if assigned_to is not None:
                raise FacilityAlreadyAssignedError(facility.id, assigned_to)
            self._link(session, consent_hub_id, facility.id)
            hub = self.load(session, consent_hub_id)
            uow.record(facility_added(hub, facility.id, actor))

        publish(self.audit, uow.events)
        logger.info("Facility added to consent hub", consent_hub_id=consent_hub_id,
                    facility_id=facility_id)
        return hub

    def remove_facility(self, consent_hub_id: int, facility_id: int,
                        actor: Optional[str] = None) -> Optional[ConsentHub]:
        """
        Detach a facility from a hub.

        A hub left without facilities is deleted, consents included, in
        the same transaction. Returns the remaining hub, or None when it
        was deleted.
        """
        actor = actor or self.config.default_actor

        with self.store.transaction(consent_hub_id) as uow:
            session = uow.session
            row = self.store.get_consent_hub_row(session, consent_hub_id, for_update=True)
            if row is None or self.store.remove_facility(session, consent_hub_id, facility_id) == 0:
                raise RelationNotFoundError(consent_hub_id, facility_id)

            hub: Optional[ConsentHub] = self.hydrate(session, row)
            uow.record(facility_removed(hub, facility_id, actor))

            if not self.store.get_facility_ids(session, consent_hub_id):
                logger.info("Last facility removed, deleting consent hub",
                            consent_hub_id=consent_hub_id, facility_id=facility_id)
                self.cascade.delete_in(uow, consent_hub_id, actor)
                hub = None

        publish(self.audit, uow.events)
        logger.info("Facility removed from consent hub", consent_hub_id=consent_hub_id,
                    facility_id=facility_id)
        return hub

    def delete_consent_hub(self, consent_hub_id: int, actor: Optional[str] = None) -> None:
        self.cascade.delete_consent_hub(consent_hub_id, actor)


def _hub_from_row(row: ConsentHubRow, facilities: List[Facility]) -> ConsentHub:
    return ConsentHub(
        id=row.id,
        name=row.name,
        enforce_consents=row.enforce_consents,
        facilities=facilities,
        created_at=row.created_at,
        created_by=row.created_by,
        modified_at=row.modified_at,
        modified_by=row.modified_by,
    )
