"""
fedconsent
Consent and consent hub core for federated identity management
"""

__version__ = "0.1.0"

# Core exports
from .config import ConsentConfig, get_config

# Consent management
from .consent import (
    AttributeDefinition, Consent, ConsentHub, ConsentStatus, Facility, Resource, Service, User,
    ConsentStore, AttributeFilter, ConsentHubDirectory, ConsentLifecycleManager,
    CascadeCoordinator, ConsentsManager,
)

# Audit
from .audit import AuditEvent, AuditSink, InMemoryAuditSink, StructlogAuditSink

# Collaborators
from .registry import (
    AssignmentQuery, AttributeRegistry, Directories, FacilityDirectory, InMemoryRegistry,
    UserDirectory, load_registry,
)

# Errors
from .exceptions import (
    ErrorKind, FedConsentError,
    NotFoundError, ConflictError, InvalidStateError,
    UserNotFoundError, FacilityNotFoundError, ConsentNotFoundError, ConsentHubNotFoundError,
    RelationNotFoundError, ConsentHubAlreadyRemovedError,
    ConsentAlreadyExistsError, ConsentHubAlreadyExistsError, FacilityAlreadyAssignedError,
    InvalidConsentStatusError, InvalidConsentHubError,
    ConsistencyError, StorageError,
)

__all__ = [
    # Config
    "ConsentConfig",
    "get_config",

    # Consent
    "AttributeDefinition",
    "Consent",
    "ConsentHub",
    "ConsentStatus",
    "Facility",
    "Resource",
    "Service",
    "User",
    "ConsentStore",
    "AttributeFilter",
    "ConsentHubDirectory",
    "ConsentLifecycleManager",
    "CascadeCoordinator",
    "ConsentsManager",

    # Audit
    "AuditEvent",
    "AuditSink",
    "InMemoryAuditSink",
    "StructlogAuditSink",

    # Collaborators
    "AssignmentQuery",
    "AttributeRegistry",
    "Directories",
    "FacilityDirectory",
    "InMemoryRegistry",
    "UserDirectory",
    "load_registry",

    # Errors
    "ErrorKind",
    "FedConsentError",
    "NotFoundError",
    "ConflictError",
    "InvalidStateError",
    "UserNotFoundError",
    "FacilityNotFoundError",
    "ConsentNotFoundError",
    "ConsentHubNotFoundError",
    "RelationNotFoundError",
    "ConsentHubAlreadyRemovedError",
    "ConsentAlreadyExistsError",
    "ConsentHubAlreadyExistsError",
    "FacilityAlreadyAssignedError",
    "InvalidConsentStatusError",
    "InvalidConsentHubError",
    "ConsistencyError",
    "StorageError",
]
