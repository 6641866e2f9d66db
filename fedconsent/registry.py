"""
Directory interfaces consumed by the consent core

Users, facilities, resource/service assignments and attribute
definitions live outside fedconsent. The core only talks to them
through the protocols below. InMemoryRegistry implements all of
them for tests and local runs; deployments hand load_registry a
factory for their own implementation.
"""

from typing import Dict, List, Optional, Protocol, Set
import importlib
import itertools

from .consent.models import AttributeDefinition, Facility, Resource, Service, User


class UserDirectory(Protocol):
    def get_user_by_id(self, user_id: int) -> Optional[User]: ...


class FacilityDirectory(Protocol):
    def get_facility_by_id(self, facility_id: int) -> Optional[Facility]: ...


class AssignmentQuery(Protocol):
    """Facility/resource/service assignment graph"""

    def get_assigned_resources(self, facility_id: int, user_id: int) -> List[Resource]: ...

    def get_assigned_services(self, resource_id: int) -> List[Service]: ...

    def get_required_attributes(self, service_id: int) -> List[AttributeDefinition]: ...


class AttributeRegistry(Protocol):
    def get_attribute_definition_by_id(self, attr_id: int) -> Optional[AttributeDefinition]: ...

    def get_attribute_definitions(self, namespace: str) -> List[AttributeDefinition]: ...


class Directories(UserDirectory, FacilityDirectory, AssignmentQuery, AttributeRegistry, Protocol):
    """One object serving every directory the core needs"""


def load_registry(factory_path: str) -> Directories:
    """
    Build the directories from a "package.module:callable" path.

    The callable is invoked without arguments and must return an object
    implementing every directory protocol.
    """
    module_name, _, attr = factory_path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Registry factory must look like 'module:callable', got {factory_path!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    return factory()


class InMemoryRegistry:
    """In-memory directories for testing"""

    def __init__(self):
        self._ids = itertools.count(1)
        self.users: Dict[int, User] = {}
        self.facilities: Dict[int, Facility] = {}
        self.resources: Dict[int, Resource] = {}
        self.services: Dict[int, Service] = {}
        self.attributes: Dict[int, AttributeDefinition] = {}

        self.resource_members: Dict[int, Set[int]] = {}
        self.resource_services: Dict[int, List[int]] = {}
        self.service_attributes: Dict[int, List[int]] = {}

    # -- population -------------------------------------------------------

    def create_user(self, first_name: Optional[str] = None,
                    last_name: Optional[str] = None) -> User:
        user = User(id=next(self._ids), first_name=first_name, last_name=last_name)
        self.users[user.id] = user
        return user

    def create_facility(self, name: str, description: Optional[str] = None) -> Facility:
        facility = Facility(id=next(self._ids), name=name, description=description)
        self.facilities[facility.id] = facility
        return facility

    def delete_facility(self, facility_id: int) -> None:
        self.facilities.pop(facility_id, None)
        for resource in [r for r in self.resources.values() if r.facility_id == facility_id]:
            self.resources.pop(resource.id)
            self.resource_members.pop(resource.id, None)
            self.resource_services.pop(resource.id, None)

    def create_resource(self, facility_id: int, name: str) -> Resource:
        resource = Resource(id=next(self._ids), facility_id=facility_id, name=name)
        self.resources[resource.id] = resource
        return resource

    def create_service(self, name: str) -> Service:
        service = Service(id=next(self._ids), name=name)
        self.services[service.id] = service
        return service

    def create_attribute_definition(self, namespace: str, friendly_name: str,
                                    type: str = "java.lang.String") -> AttributeDefinition:
        attribute = AttributeDefinition(
            id=next(self._ids), namespace=namespace, friendly_name=friendly_name, type=type
        )
        self.attributes[attribute.id] = attribute
        return attribute

    def assign_user(self, resource_id: int, user_id: int) -> None:
        self.resource_members.setdefault(resource_id, set()).add(user_id)

    def assign_service(self, resource_id: int, service_id: int) -> None:
        services = self.resource_services.setdefault(resource_id, [])
        if service_id not in services:
            services.append(service_id)

    def add_required_attribute(self, service_id: int, attr_id: int) -> None:
        required = self.service_attributes.setdefault(service_id, [])
        if attr_id not in required:
            required.append(attr_id)

    # -- UserDirectory ----------------------------------------------------

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        return self.users.get(user_id)

    # -- FacilityDirectory ------------------------------------------------

    def get_facility_by_id(self, facility_id: int) -> Optional[Facility]:
        return self.facilities.get(facility_id)

    # -- AssignmentQuery --------------------------------------------------

    def get_assigned_resources(self, facility_id: int, user_id: int) -> List[Resource]:
        return [
            r for r in self.resources.values()
            if r.facility_id == facility_id and user_id in self.resource_members.get(r.id, ())
        ]

    def get_assigned_services(self, resource_id: int) -> List[Service]:
        return [
            self.services[s] for s in self.resource_services.get(resource_id, [])
            if s in self.services
        ]

    def get_required_attributes(self, service_id: int) -> List[AttributeDefinition]:
        return [
            self.attributes[a] for a in self.service_attributes.get(service_id, [])
            if a in self.attributes
        ]

    # -- AttributeRegistry ------------------------------------------------

    def get_attribute_definition_by_id(self, attr_id: int) -> Optional[AttributeDefinition]:
        return self.attributes.get(attr_id)

    def get_attribute_definitions(self, namespace: str) -> List[AttributeDefinition]:
        return [a for a in self.attributes.values() if a.namespace == namespace]
