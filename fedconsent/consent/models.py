"""
Consent data models for fedconsent
Consents, consent hubs and the directory entities they refer to
"""

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple, Union
from pydantic import BaseModel, Field

from ..constants import ConsentStatuses
from ..exceptions import InvalidConsentStatusError


class ConsentStatus(str, Enum):
    """Consent record status"""
    UNSIGNED = ConsentStatuses.UNSIGNED
    GRANTED = ConsentStatuses.GRANTED
    REVOKED = ConsentStatuses.REVOKED

    @classmethod
    def parse(cls, value: Union[str, "ConsentStatus"]) -> "ConsentStatus":
        """Parse a status literal, case-insensitively"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise InvalidConsentStatusError(
                f"Unknown consent status: {value}", requested=str(value)
            ) from None


# UNSIGNED is only ever set at creation
ALLOWED_TRANSITIONS: Dict[ConsentStatus, FrozenSet[ConsentStatus]] = {
    ConsentStatus.UNSIGNED: frozenset({ConsentStatus.GRANTED, ConsentStatus.REVOKED}),
    ConsentStatus.GRANTED: frozenset({ConsentStatus.REVOKED}),
    ConsentStatus.REVOKED: frozenset({ConsentStatus.GRANTED}),
}


def is_transition_allowed(current: ConsentStatus, target: ConsentStatus) -> bool:
    """Check whether a consent may move from current to target status"""
    return target in ALLOWED_TRANSITIONS[current]


class User(BaseModel):
    """User as seen by the consent core"""
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class Facility(BaseModel):
    """Service-provider endpoint"""
    id: int
    name: str
    description: Optional[str] = None


class Resource(BaseModel):
    """Resource of a facility, the unit users and services get assigned to"""
    id: int
    facility_id: int
    name: str


class Service(BaseModel):
    """Service propagated to a facility through its resources"""
    id: int
    name: str


class AttributeDefinition(BaseModel):
    """Namespaced descriptor of a unit of identity data"""
    id: int
    namespace: str
    friendly_name: str
    type: str = "java.lang.String"
    description: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def name(self) -> str:
        """Full URN of the attribute"""
        return f"{self.namespace}:{self.friendly_name}"

    @property
    def key(self) -> Tuple[str, str]:
        """Identity used for deduplication"""
        return (self.namespace, self.friendly_name)


class ConsentHub(BaseModel):
    """Aggregation of facilities sharing one consent-enforcement point"""
    id: int = 0
    name: Optional[str] = None
    enforce_consents: bool = True
    facilities: List[Facility] = Field(default_factory=list)

    # Audit trail
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    modified_at: Optional[datetime] = None
    modified_by: Optional[str] = None

    def facility_ids(self) -> List[int]:
        return [f.id for f in self.facilities]


class Consent(BaseModel):
    """A user's decision about releasing attributes to the facilities of a hub"""
    id: int = 0
    user_id: int
    consent_hub: ConsentHub
    status: ConsentStatus = Field(default=ConsentStatus.UNSIGNED)
    attributes: List[AttributeDefinition] = Field(default_factory=list)

    # Audit trail
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    modified_at: Optional[datetime] = None
    modified_by: Optional[str] = None

    @property
    def consent_hub_id(self) -> int:
        return self.consent_hub.id

    def attribute_names(self) -> List[str]:
        """Sorted attribute URNs, handy for comparisons and display"""
        return sorted(a.name for a in self.attributes)
