"""
Attribute eligibility filter for fedconsent
Derives which attribute definitions a consent between a user and a hub covers
"""

from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from .models import AttributeDefinition, ConsentHub, User
from ..config import get_config
from ..registry import AssignmentQuery

logger = structlog.get_logger(__name__)


class AttributeFilter:
    """Collects attributes required by services a user reaches through a hub"""

    def __init__(self, assignments: AssignmentQuery,
                 namespaces: Optional[Iterable[str]] = None):
        self.assignments = assignments
        if namespaces is None:
            namespaces = get_config().consent_attribute_namespaces
        self.namespaces: Tuple[str, ...] = tuple(namespaces)

    def is_consentable(self, attribute: AttributeDefinition) -> bool:
        """Check whether the attribute's namespace is on the allow-list"""
        return attribute.namespace.startswith(self.namespaces)

    def filter_attributes(self, user: User, consent_hub: ConsentHub) -> List[AttributeDefinition]:
        """
        Compute the attributes eligible for a consent of user to consent_hub.

        Walks facility -> resources the user is assigned to -> services of
        each resource -> attributes each service requires. The result has
        set semantics; its order carries no meaning. An empty result is
        valid, e.g. before any resource is assigned.
        """
        eligible: Dict[Tuple[str, str], AttributeDefinition] = {}
        for facility in consent_hub.facilities:
            for resource in self.assignments.get_assigned_resources(facility.id, user.id) or ():
                for service in self.assignments.get_assigned_services(resource.id) or ():
                    for attribute in self.assignments.get_required_attributes(service.id) or ():
                        if self.is_consentable(attribute):
                            eligible.setdefault(attribute.key, attribute)

        logger.debug("Filtered consent attributes", user_id=user.id,
                     consent_hub_id=consent_hub.id, count=len(eligible))
        return list(eligible.values())
