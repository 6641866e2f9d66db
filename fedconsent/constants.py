"""
Constants for the fedconsent module

Attribute namespaces, consent status literals and audit event names
shared by the consent engine, the hub directory and the HTTP surface.
"""

from typing import Final, Tuple

# =============================================================================
# SERVICE IDENTIFICATION
# =============================================================================

SERVICE_NAME: Final[str] = "fedconsent"
SERVICE_VERSION: Final[str] = "0.1.0"

# =============================================================================
# ATTRIBUTE NAMESPACES
# =============================================================================

NS_FACILITY_ATTR: Final[str] = "urn:perun:facility:attribute-def"
NS_RESOURCE_ATTR: Final[str] = "urn:perun:resource:attribute-def"
NS_MEMBER_RESOURCE_ATTR: Final[str] = "urn:perun:member_resource:attribute-def"
NS_MEMBER_GROUP_ATTR: Final[str] = "urn:perun:member_group:attribute-def"
NS_MEMBER_ATTR_CORE: Final[str] = "urn:perun:member:attribute-def:core"
NS_USER_FACILITY_ATTR: Final[str] = "urn:perun:user_facility:attribute-def"
NS_USER_ATTR: Final[str] = "urn:perun:user:attribute-def"
NS_UES_ATTR: Final[str] = "urn:perun:ues:attribute-def"

# Namespaces whose attributes describe the user and may be released
# to a facility once the user consents.
CONSENT_ATTRIBUTE_NAMESPACES: Final[Tuple[str, ...]] = (
    NS_MEMBER_RESOURCE_ATTR,
    NS_MEMBER_GROUP_ATTR,
    NS_MEMBER_ATTR_CORE,
    NS_USER_FACILITY_ATTR,
    NS_USER_ATTR,
    NS_UES_ATTR,
)

# =============================================================================
# CONSENT STATUS
# =============================================================================

class ConsentStatuses:
    """Consent status literals as transmitted over the wire"""
    UNSIGNED: Final[str] = "UNSIGNED"
    GRANTED: Final[str] = "GRANTED"
    REVOKED: Final[str] = "REVOKED"

    ALL: Final[Tuple[str, ...]] = (UNSIGNED, GRANTED, REVOKED)

    # Statuses a consent may be moved into after creation
    DECIDED: Final[Tuple[str, ...]] = (GRANTED, REVOKED)


# =============================================================================
# AUDIT EVENT TYPES
# =============================================================================

class AuditEventTypes:
    """Audit event names emitted by the consent core"""
    CONSENT_CREATED: Final[str] = "ConsentCreated"
    CONSENT_DELETED: Final[str] = "ConsentDeleted"
    CHANGED_CONSENT_STATUS: Final[str] = "ChangedConsentStatus"

    CONSENT_HUB_CREATED: Final[str] = "ConsentHubCreated"
    CONSENT_HUB_DELETED: Final[str] = "ConsentHubDeleted"
    CONSENT_HUB_UPDATED: Final[str] = "ConsentHubUpdated"
    FACILITY_ADDED_TO_CONSENT_HUB: Final[str] = "FacilityAddedToConsentHub"
    FACILITY_REMOVED_FROM_CONSENT_HUB: Final[str] = "FacilityRemovedFromConsentHub"


# =============================================================================
# STORAGE
# =============================================================================

class StorageDefaults:
    """Defaults for the consent store"""
    DATABASE_URL: Final[str] = "sqlite:///consents.db"
    LOCK_TIMEOUT_SECONDS: Final[float] = 30.0
    HUB_LOCK_STRIPES: Final[int] = 64
    DEFAULT_ACTOR: Final[str] = "fedconsent"
    # empty directories, only useful for local runs
    REGISTRY_FACTORY: Final[str] = "fedconsent.registry:InMemoryRegistry"
