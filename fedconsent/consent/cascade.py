"""
Cascade coordinator for fedconsent
Turns hub and facility removal into consent cleanup
"""

from typing import Optional

import structlog

from .engine import ConsentLifecycleManager
from .hubs import ConsentHubDirectory
from .models import ConsentHub
from .storage import ConsentStore, UnitOfWork
from ..audit import AuditSink, StructlogAuditSink, publish, consent_hub_deleted
from ..config import ConsentConfig, get_config
from ..exceptions import ConsentHubAlreadyRemovedError, ConsentNotFoundError

logger = structlog.get_logger(__name__)


class CascadeCoordinator:
    """Deletes consent hubs together with everything hanging off them"""

    def __init__(self, store: ConsentStore, lifecycle: ConsentLifecycleManager,
                 directory: ConsentHubDirectory, audit: Optional[AuditSink] = None,
                 config: Optional[ConsentConfig] = None):
        self.store = store
        self.lifecycle = lifecycle
        self.directory = directory
        self.audit = audit or StructlogAuditSink()
        self.config = config or get_config()

    def delete_consent_hub(self, consent_hub_id: int, actor: Optional[str] = None) -> ConsentHub:
        """Delete a hub, its consents and its facility associations atomically"""
        actor = actor or self.config.default_actor

        with self.store.transaction(consent_hub_id) as uow:
            consent_hub = self.delete_in(uow, consent_hub_id, actor)

        publish(self.audit, uow.events)
        return consent_hub

    def delete_in(self, uow: UnitOfWork, consent_hub_id: int, actor: str) -> ConsentHub:
        """Delete a hub inside an open transaction"""
        session = uow.session
        row = self.store.get_consent_hub_row(session, consent_hub_id, for_update=True)
        if row is None:
            raise ConsentHubAlreadyRemovedError(consent_hub_id)
        consent_hub = self.directory.hydrate(session, row)

        removed = 0
        for consent in self.store.find_consent_rows(session, consent_hub_id=consent_hub_id):
            try:
                self.lifecycle.delete_in(uow, consent.id, actor, consent_hub)
                removed += 1
            except ConsentNotFoundError:
                logger.debug("Consent already gone", consent_id=consent.id)

        self.store.remove_all_facilities(session, consent_hub_id)
        if self.store.delete_consent_hub_row(session, consent_hub_id) == 0:
            raise ConsentHubAlreadyRemovedError(consent_hub_id)

        uow.record(consent_hub_deleted(consent_hub, actor))
        logger.info("Consent hub deleted", consent_hub_id=consent_hub_id, consents_removed=removed)
        return consent_hub

    def facility_deleted(self, facility_id: int, actor: Optional[str] = None) -> Optional[ConsentHub]:
        """
        Detach a deleted facility from its hub.

        Returns the hub that still enforces other facilities, or None
        when the facility had no hub or the hub was removed with it.
        """
        with self.store.reading() as session:
            consent_hub_id = self.store.get_consent_hub_id_for_facility(session, facility_id)
        if consent_hub_id is None:
            logger.debug("Deleted facility had no consent hub", facility_id=facility_id)
            return None
        return self.directory.remove_facility(consent_hub_id, facility_id, actor)
