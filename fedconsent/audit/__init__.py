"""
Audit Subpackage for fedconsent

Typed audit events for consent and consent hub changes, and the sinks
they are published to once the surrounding transaction has committed.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Optional, Dict, Any, List, Iterable, Protocol, TYPE_CHECKING
import uuid

import structlog

from ..constants import AuditEventTypes

if TYPE_CHECKING:
    from ..consent.models import Consent, ConsentHub

logger = structlog.get_logger(__name__)


@dataclass
class AuditEvent:
    """
    Represents an audit event emitted by the consent core.

    Attributes:
        event_type: One of AuditEventTypes
        actor: Who performed the change
        message: Human-readable description
        details: Additional structured data
        timestamp: When the event occurred
        event_id: Unique identifier for the event
    """
    event_type: str
    actor: Optional[str] = None
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert audit event to dictionary for logging/storage"""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "actor": self.actor,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


def _consent_details(consent: "Consent") -> Dict[str, Any]:
    return {
        "consent_id": consent.id,
        "user_id": consent.user_id,
        "consent_hub_id": consent.consent_hub.id,
        "status": consent.status.value,
        "attributes": consent.attribute_names(),
    }


def _hub_details(hub: "ConsentHub") -> Dict[str, Any]:
    return {
        "consent_hub_id": hub.id,
        "name": hub.name,
        "enforce_consents": hub.enforce_consents,
        "facility_ids": hub.facility_ids(),
    }


def consent_created(consent: "Consent", actor: Optional[str] = None) -> AuditEvent:
    return AuditEvent(
        event_type=AuditEventTypes.CONSENT_CREATED,
        actor=actor,
        message=f"Consent {consent.id} created",
        details=_consent_details(consent),
    )


def consent_deleted(consent: "Consent", actor: Optional[str] = None) -> AuditEvent:
    return AuditEvent(
        event_type=AuditEventTypes.CONSENT_DELETED,
        actor=actor,
        message=f"Consent {consent.id} deleted",
        details=_consent_details(consent),
    )


def changed_consent_status(consent: "Consent", actor: Optional[str] = None) -> AuditEvent:
    return AuditEvent(
        event_type=AuditEventTypes.CHANGED_CONSENT_STATUS,
        actor=actor,
        message=f"Consent {consent.id} status changed to {consent.status.value}",
        details=_consent_details(consent),
    )


def consent_hub_created(hub: "ConsentHub", actor: Optional[str] = None) -> AuditEvent:
    return AuditEvent(
        event_type=AuditEventTypes.CONSENT_HUB_CREATED,
        actor=actor,
        message=f"Consent hub {hub.id} created",
        details=_hub_details(hub),
    )


def consent_hub_deleted(hub: "ConsentHub", actor: Optional[str] = None) -> AuditEvent:
    return AuditEvent(
        event_type=AuditEventTypes.CONSENT_HUB_DELETED,
        actor=actor,
        message=f"Consent hub {hub.id} deleted",
        details=_hub_details(hub),
    )


def consent_hub_updated(hub: "ConsentHub", actor: Optional[str] = None) -> AuditEvent:
    return AuditEvent(
        event_type=AuditEventTypes.CONSENT_HUB_UPDATED,
        actor=actor,
        message=f"Consent hub {hub.id} updated",
        details=_hub_details(hub),
    )


def facility_added(hub: "ConsentHub", facility_id: int, actor: Optional[str] = None) -> AuditEvent:
    return AuditEvent(
        event_type=AuditEventTypes.FACILITY_ADDED_TO_CONSENT_HUB,
        actor=actor,
        message=f"Facility {facility_id} added to consent hub {hub.id}",
        details={"consent_hub_id": hub.id, "facility_id": facility_id},
    )


def facility_removed(hub: "ConsentHub", facility_id: int, actor: Optional[str] = None) -> AuditEvent:
    return AuditEvent(
        event_type=AuditEventTypes.FACILITY_REMOVED_FROM_CONSENT_HUB,
        actor=actor,
        message=f"Facility {facility_id} removed from consent hub {hub.id}",
        details={"consent_hub_id": hub.id, "facility_id": facility_id},
    )


class AuditSink(Protocol):
    """Append-only destination for audit events"""

    def log(self, event: AuditEvent) -> None: ...


class StructlogAuditSink:
    """Writes audit events to the structured log"""

    def __init__(self, logger_name: str = "fedconsent.audit"):
        self._logger = structlog.get_logger(logger_name)

    def log(self, event: AuditEvent) -> None:
        self._logger.info("Audit event", **event.to_dict())


class InMemoryAuditSink:
    """In-memory audit storage for testing"""

    def __init__(self):
        self.events: List[AuditEvent] = []

    def log(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def event_types(self) -> List[str]:
        return [e.event_type for e in self.events]


def publish(sink: AuditSink, events: Iterable[AuditEvent]) -> None:
    """Publish committed events in order"""
    for event in events:
        sink.log(event)
        logger.debug("Published audit event", event_type=event.event_type, event_id=event.event_id)


__all__ = [
    "AuditEvent",
    "AuditSink",
    "StructlogAuditSink",
    "InMemoryAuditSink",
    "publish",
    "consent_created",
    "consent_deleted",
    "changed_consent_status",
    "consent_hub_created",
    "consent_hub_deleted",
    "consent_hub_updated",
    "facility_added",
    "facility_removed",
]
