"""
Consent management module for fedconsent
Consent lifecycle, consent hubs and the cascades between them
"""

from .models import (
    AttributeDefinition, Consent, ConsentHub, ConsentStatus, Facility, Resource, Service, User,
    ALLOWED_TRANSITIONS, is_transition_allowed,
)
from .storage import ConsentStore, UnitOfWork
from .filter import AttributeFilter
from .hubs import ConsentHubDirectory
from .engine import ConsentLifecycleManager
from .cascade import CascadeCoordinator
from .manager import ConsentsManager

__all__ = [
    "AttributeDefinition",
    "Consent",
    "ConsentHub",
    "ConsentStatus",
    "Facility",
    "Resource",
    "Service",
    "User",
    "ALLOWED_TRANSITIONS",
    "is_transition_allowed",
    "ConsentStore",
    "UnitOfWork",
    "AttributeFilter",
    "ConsentHubDirectory",
    "ConsentLifecycleManager",
    "CascadeCoordinator",
    "ConsentsManager",
]
