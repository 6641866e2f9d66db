"""
Custom Exceptions for the fedconsent module

Provides a unified exception hierarchy for consents, consent hubs and
their storage. Every error is tagged with an ErrorKind so callers can
tell expected outcomes (not found, conflict, invalid state) from
internal faults (consistency, infrastructure) without matching on
concrete classes.
"""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorKind(str, Enum):
    """Error taxonomy shared by all fedconsent errors"""
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    CONSISTENCY = "consistency"
    INFRASTRUCTURE = "infrastructure"


EXPECTED_KINDS = frozenset({ErrorKind.NOT_FOUND, ErrorKind.CONFLICT, ErrorKind.INVALID_STATE})


class FedConsentError(Exception):
    """
    Base exception for all fedconsent errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        kind: Error taxonomy tag
        details: Additional context about the error
    """

    kind: ErrorKind = ErrorKind.INFRASTRUCTURE

    def __init__(
        self,
        message: str,
        error_code: str = "FEDCONSENT_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    @property
    def expected(self) -> bool:
        """True for outcomes a caller is expected to handle"""
        return self.kind in EXPECTED_KINDS

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        result: Dict[str, Any] = {
            "error": self.error_code,
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(FedConsentError):
    """Base exception for missing entities"""

    kind = ErrorKind.NOT_FOUND


class UserNotFoundError(NotFoundError):
    """Raised when a user does not exist in the user directory"""

    def __init__(self, user_id: int):
        super().__init__(
            message=f"User {user_id} does not exist",
            error_code="USER_NOT_FOUND",
            details={"user_id": user_id}
        )


class FacilityNotFoundError(NotFoundError):
    """Raised when a facility does not exist in the facility directory"""

    def __init__(self, facility_id: int):
        super().__init__(
            message=f"Facility {facility_id} does not exist",
            error_code="FACILITY_NOT_FOUND",
            details={"facility_id": facility_id}
        )


class ConsentNotFoundError(NotFoundError):
    """Raised when a consent does not exist"""

    def __init__(
        self,
        consent_id: Optional[int] = None,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        if consent_id is not None:
            details["consent_id"] = consent_id
        super().__init__(
            message=message or f"Consent {consent_id} does not exist",
            error_code="CONSENT_NOT_FOUND",
            details=details
        )


class ConsentHubNotFoundError(NotFoundError):
    """Raised when a consent hub cannot be found"""

    def __init__(
        self,
        consent_hub_id: Optional[int] = None,
        name: Optional[str] = None,
        facility_id: Optional[int] = None
    ):
        details: Dict[str, Any] = {}
        if consent_hub_id is not None:
            details["consent_hub_id"] = consent_hub_id
        if name is not None:
            details["name"] = name
        if facility_id is not None:
            details["facility_id"] = facility_id
        super().__init__(
            message="Consent hub does not exist",
            error_code="CONSENT_HUB_NOT_FOUND",
            details=details
        )


class RelationNotFoundError(NotFoundError):
    """Raised when a facility is not associated with a consent hub"""

    def __init__(self, consent_hub_id: int, facility_id: int):
        super().__init__(
            message=f"Facility {facility_id} is not assigned to consent hub {consent_hub_id}",
            error_code="RELATION_NOT_FOUND",
            details={"consent_hub_id": consent_hub_id, "facility_id": facility_id}
        )


class ConsentHubAlreadyRemovedError(NotFoundError):
    """Raised when deleting a consent hub whose row is already gone"""

    def __init__(self, consent_hub_id: int):
        super().__init__(
            message=f"Consent hub {consent_hub_id} was already removed",
            error_code="CONSENT_HUB_ALREADY_REMOVED",
            details={"consent_hub_id": consent_hub_id}
        )


# =============================================================================
# CONFLICT
# =============================================================================

class ConflictError(FedConsentError):
    """Base exception for duplicates"""

    kind = ErrorKind.CONFLICT


class ConsentAlreadyExistsError(ConflictError):
    """Raised when an explicit consent id collides with an existing row"""

    def __init__(self, consent_id: int):
        super().__init__(
            message=f"Consent {consent_id} already exists",
            error_code="CONSENT_ALREADY_EXISTS",
            details={"consent_id": consent_id}
        )


class ConsentHubAlreadyExistsError(ConflictError):
    """Raised when creating a consent hub that already exists"""

    def __init__(self, consent_hub_id: int, name: Optional[str] = None):
        details: Dict[str, Any] = {"consent_hub_id": consent_hub_id}
        if name:
            details["name"] = name
        super().__init__(
            message=f"Consent hub {consent_hub_id} already exists",
            error_code="CONSENT_HUB_ALREADY_EXISTS",
            details=details
        )


class FacilityAlreadyAssignedError(ConflictError):
    """Raised when a facility already belongs to a consent hub"""

    def __init__(self, facility_id: int, consent_hub_id: Optional[int] = None):
        details: Dict[str, Any] = {"facility_id": facility_id}
        if consent_hub_id is not None:
            details["consent_hub_id"] = consent_hub_id
        super().__init__(
            message=f"Facility {facility_id} is already assigned to a consent hub",
            error_code="FACILITY_ALREADY_ASSIGNED",
            details=details
        )


# =============================================================================
# INVALID STATE
# =============================================================================

class InvalidStateError(FedConsentError):
    """Base exception for illegal transitions and malformed requests"""

    kind = ErrorKind.INVALID_STATE


class InvalidConsentStatusError(InvalidStateError):
    """Raised for a status transition the state machine does not permit"""

    def __init__(
        self,
        message: str,
        current: Optional[str] = None,
        requested: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if current:
            details["current_status"] = current
        if requested:
            details["requested_status"] = requested
        super().__init__(message, "INVALID_CONSENT_STATUS", details)


class InvalidConsentHubError(InvalidStateError):
    """Raised for a consent hub without facilities or with a blank name"""

    def __init__(self, message: str, consent_hub_id: Optional[int] = None):
        details: Dict[str, Any] = {}
        if consent_hub_id:
            details["consent_hub_id"] = consent_hub_id
        super().__init__(message, "INVALID_CONSENT_HUB", details)


# =============================================================================
# INTERNAL FAULTS
# =============================================================================

class ConsistencyError(FedConsentError):
    """Raised when more rows exist than the data model allows"""

    kind = ErrorKind.CONSISTENCY

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONSISTENCY_ERROR", details)


class StorageError(FedConsentError):
    """Raised when the underlying database fails"""

    kind = ErrorKind.INFRASTRUCTURE

    def __init__(self, message: str = "Storage operation failed", reason: Optional[str] = None):
        details: Dict[str, Any] = {}
        if reason:
            details["reason"] = reason
        super().__init__(message, "STORAGE_ERROR", details)
