from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fleet_catalog.domain.naming import stringify_entity_ref

API_VERSION = "backstage.io/v1alpha1"


class EntityKind(str, Enum):
    DOMAIN = "Domain"
    SYSTEM = "System"
    COMPONENT = "Component"
    RESOURCE = "Resource"
    API = "API"


class CatalogModel(BaseModel):
    """Immutable catalog model serialized with the catalog's camelCase field names."""
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class EntityLink(CatalogModel):
    url: str
    title: str


class EntityMetadata(CatalogModel):
    name: str
    namespace: str = "default"
    description: Optional[str] = None
    annotations: Dict[str, str] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    links: List[EntityLink] = Field(default_factory=list)


class DomainSpec(CatalogModel):
    owner: str


class SystemSpec(CatalogModel):
    owner: str
    lifecycle: str
    domain: Optional[str] = None
    depends_on: List[str] = Field(default_factory=list)
    provides_apis: List[str] = Field(default_factory=list)
    consumes_apis: List[str] = Field(default_factory=list)


class ComponentSpec(CatalogModel):
    type: str
    lifecycle: str
    owner: str
    system: Optional[str] = None
    depends_on: List[str] = Field(default_factory=list)
    provides_apis: List[str] = Field(default_factory=list)
    consumes_apis: List[str] = Field(default_factory=list)


class ResourceSpec(CatalogModel):
    type: str
    owner: str
    system: Optional[str] = None
    depends_on: List[str] = Field(default_factory=list)
    dependency_of: List[str] = Field(default_factory=list)


class ApiSpec(CatalogModel):
    type: str
    lifecycle: str
    owner: str
    definition: str
    system: Optional[str] = None


class Entity(CatalogModel):
    """
    A synthesized catalog entity.
    Entities are rebuilt from scratch on every pass and never merged with a previous run.
    """
    api_version: str = API_VERSION
    kind: EntityKind
    metadata: EntityMetadata

    @property
    def key(self) -> Tuple[str, str, str]:
        """Identity used for deduplication: (kind, namespace, name)."""
        return (self.kind.value, self.metadata.namespace, self.metadata.name)

    @property
    def ref(self) -> str:
        return stringify_entity_ref(self.kind.value, self.metadata.namespace, self.metadata.name)

    def to_document(self) -> Dict[str, Any]:
        # Empty relation lists are dropped, matching how the catalog omits unset spec fields
        document = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        spec = document.get("spec", {})
        for key in [k for k, v in spec.items() if v == []]:
            del spec[key]
        return document


class Domain(Entity):
    kind: Literal[EntityKind.DOMAIN] = EntityKind.DOMAIN
    spec: DomainSpec


class System(Entity):
    kind: Literal[EntityKind.SYSTEM] = EntityKind.SYSTEM
    spec: SystemSpec


class Component(Entity):
    kind: Literal[EntityKind.COMPONENT] = EntityKind.COMPONENT
    spec: ComponentSpec


class Resource(Entity):
    kind: Literal[EntityKind.RESOURCE] = EntityKind.RESOURCE
    spec: ResourceSpec


class Api(Entity):
    kind: Literal[EntityKind.API] = EntityKind.API
    spec: ApiSpec


AnyEntity = Union[Domain, System, Component, Resource, Api]


class DeferredEntity(CatalogModel):
    entity: AnyEntity
    location_key: str


class EntityMutation(CatalogModel):
    """A full mutation replaces everything previously emitted under the same location key."""
    type: Literal["full"] = "full"
    entities: List[DeferredEntity] = Field(default_factory=list)


class EntityBatch(BaseModel):
    """Mutable accumulator for one part of the sync, grouped by kind."""
    domains: List[Domain] = Field(default_factory=list)
    systems: List[System] = Field(default_factory=list)
    components: List[Component] = Field(default_factory=list)
    resources: List[Resource] = Field(default_factory=list)
    apis: List[Api] = Field(default_factory=list)

    def extend(self, other: "EntityBatch") -> None:
        self.domains.extend(other.domains)
        self.systems.extend(other.systems)
        self.components.extend(other.components)
        self.resources.extend(other.resources)
        self.apis.extend(other.apis)

    def flatten(self) -> List[Entity]:
        return [*self.domains, *self.systems, *self.components, *self.resources, *self.apis]
