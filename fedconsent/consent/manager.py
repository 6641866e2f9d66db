from typing import Optional

import structlog

from .cascade import CascadeCoordinator
from .engine import ConsentLifecycleManager
from .filter import AttributeFilter
from .hubs import ConsentHubDirectory
from .models import ConsentHub
from .storage import ConsentStore
from ..audit import AuditSink, StructlogAuditSink
from ..config import ConsentConfig, get_config
from ..registry import AssignmentQuery, AttributeRegistry, Directories, FacilityDirectory, UserDirectory


logger = structlog.get_logger(__name__)


class ConsentsManager:
    """Entry point of the consent core, wiring its components to one store"""

    def __init__(self, store: ConsentStore, users: UserDirectory,
                 facilities: FacilityDirectory, assignments: AssignmentQuery,
                 attributes: AttributeRegistry, audit: Optional[AuditSink] = None,
                 config: Optional[ConsentConfig] = None):
        self.store = store
        self.audit = audit or StructlogAuditSink()
        self.config = config or get_config()

        self.attribute_filter = AttributeFilter(assignments, self.config.consent_attribute_namespaces)
        self.hubs = ConsentHubDirectory(store, facilities, self.audit, self.config)
        self.consents = ConsentLifecycleManager(
            store, self.hubs, self.attribute_filter, users, attributes, self.audit, self.config
        )
        self.cascade = CascadeCoordinator(store, self.consents, self.hubs, self.audit, self.config)
        self.hubs.bind_cascade(self.cascade)

    @classmethod
    def from_registry(cls, registry: Directories, store: Optional[ConsentStore] = None,
                      audit: Optional[AuditSink] = None,
                      config: Optional[ConsentConfig] = None) -> "ConsentsManager":
        """Build a manager whose directories are all served by one registry"""
        config = config or get_config()
        store = store or ConsentStore(config.database_url)
        return cls(store, registry, registry, registry, registry, audit=audit, config=config)

    def facility_registered(self, facility_id: int, actor: Optional[str] = None) -> ConsentHub:
        """Create the consent hub of a newly registered facility"""
        consent_hub = self.hubs.create_consent_hub_for_facility(facility_id, actor)
        logger.info("Facility registered", facility_id=facility_id, consent_hub_id=consent_hub.id)
        return consent_hub

    def facility_deleted(self, facility_id: int, actor: Optional[str] = None) -> Optional[ConsentHub]:
        """Drop a deleted facility from its hub, removing the hub if it was the last one"""
        return self.cascade.facility_deleted(facility_id, actor)
