import json
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlparse

from fleet_catalog.application.topology import ClusterStats, InventoryItem
from fleet_catalog.domain.entities import (
    Api,
    ApiSpec,
    Component,
    ComponentSpec,
    Domain,
    DomainSpec,
    EntityKind,
    EntityLink,
    EntityMetadata,
    Resource,
    ResourceSpec,
    System,
    SystemSpec,
)
from fleet_catalog.domain.models import (
    Bundle,
    BundleDependsOn,
    BundleDeployment,
    FleetYaml,
    FleetYamlApiDefinition,
    GitRepo,
)
from fleet_catalog.domain.naming import (
    extract_workspace_namespace,
    stringify_entity_ref,
    to_entity_namespace,
    to_safe_name,
    to_stable_safe_name,
)
from fleet_catalog.domain.status import status_to_lifecycle
from fleet_catalog.infrastructure.config import DEFAULT_NAMESPACE, ManagementClusterConfig
from fleet_catalog.infrastructure.fleet_client import LABEL_BUNDLE_NAME, LABEL_REPO_NAME

FLEET_PREFIX = "fleet.cattle.io"

ANNOTATION_LOCATION = "backstage.io/managed-by-location"
ANNOTATION_ORIGIN_LOCATION = "backstage.io/managed-by-origin-location"
ANNOTATION_SOURCE_LOCATION = "backstage.io/source-location"
ANNOTATION_TECHDOCS_REF = "backstage.io/techdocs-ref"
ANNOTATION_TECHDOCS_ENTITY = "backstage.io/techdocs-entity"
ANNOTATION_KUBERNETES_ID = "backstage.io/kubernetes-id"
ANNOTATION_KUBERNETES_NAMESPACE = "backstage.io/kubernetes-namespace"
ANNOTATION_KUBERNETES_LABEL_SELECTOR = "backstage.io/kubernetes-label-selector"

ANNOTATION_FLEET_CLUSTER = f"{FLEET_PREFIX}/cluster"
ANNOTATION_FLEET_URL = f"{FLEET_PREFIX}/url"
ANNOTATION_FLEET_NAMESPACES = f"{FLEET_PREFIX}/namespaces"
ANNOTATION_FLEET_REPO = f"{FLEET_PREFIX}/repo"
ANNOTATION_FLEET_BRANCH = f"{FLEET_PREFIX}/branch"
ANNOTATION_FLEET_NAMESPACE = f"{FLEET_PREFIX}/namespace"
ANNOTATION_FLEET_TARGETS = f"{FLEET_PREFIX}/targets"
ANNOTATION_FLEET_STATUS = f"{FLEET_PREFIX}/status"
ANNOTATION_FLEET_READY_CLUSTERS = f"{FLEET_PREFIX}/ready-clusters"
ANNOTATION_FLEET_REPO_NAME = f"{FLEET_PREFIX}/repo-name"
ANNOTATION_FLEET_BUNDLE_PATH = f"{FLEET_PREFIX}/bundle-path"
ANNOTATION_FLEET_SOURCE_GITREPO = f"{FLEET_PREFIX}/source-gitrepo"
ANNOTATION_FLEET_SOURCE_BUNDLE = f"{FLEET_PREFIX}/source-bundle"
ANNOTATION_FLEET_BUNDLE_DEPLOYMENT = f"{FLEET_PREFIX}/bundle-deployment"
ANNOTATION_FLEET_ORIGINAL_NAME = f"{FLEET_PREFIX}/original-name"
ANNOTATION_FLEET_TARGET_CLUSTER_ID = f"{FLEET_PREFIX}/target-cluster-id"
ANNOTATION_FLEET_MESSAGE = f"{FLEET_PREFIX}/message"
ANNOTATION_FLEET_APPLIED_RESOURCES = f"{FLEET_PREFIX}/applied-resources"
ANNOTATION_FLEET_DEFINITION_URL = f"{FLEET_PREFIX}/definition-url"

ANNOTATION_CLUSTER_DRIVER = f"{FLEET_PREFIX}/cluster-driver"
ANNOTATION_CLUSTER_PROVIDER = f"{FLEET_PREFIX}/cluster-provider"
ANNOTATION_CLUSTER_VERSION = f"{FLEET_PREFIX}/kubernetes-version"
ANNOTATION_CLUSTER_STATE = f"{FLEET_PREFIX}/cluster-state"
ANNOTATION_CLUSTER_CONDITIONS = f"{FLEET_PREFIX}/cluster-conditions"
ANNOTATION_CLUSTER_NODE_COUNT = f"{FLEET_PREFIX}/node-count"
ANNOTATION_CLUSTER_MD_COUNT = f"{FLEET_PREFIX}/machine-deployment-count"
ANNOTATION_CLUSTER_VM_COUNT = f"{FLEET_PREFIX}/vm-count"

LABEL_BUNDLE_PATH = "fleet.cattle.io/bundle-path"
LABEL_OBJECTSET_HASH = "objectset.rio.cattle.io/hash"

MAX_MESSAGE_LENGTH = 500
DEPLOYMENT_NAME_MAX_LENGTH = 50

PLATFORM_OWNER = "platform-team"
UNKNOWN_OWNER = "unknown"
DEFAULT_GROUP_OWNER = "group:default/default"


@dataclass(frozen=True)
class MapperContext:
    """Everything a mapper needs besides the upstream resource itself."""
    cluster: ManagementClusterConfig
    location_key: str
    fleet_yaml: Optional[FleetYaml] = None
    auto_techdocs_ref: bool = True


def _base_annotations(context: MapperContext, cluster_value: str) -> Dict[str, str]:
    return {
        ANNOTATION_LOCATION: context.location_key,
        ANNOTATION_ORIGIN_LOCATION: context.location_key,
        ANNOTATION_FLEET_CLUSTER: cluster_value,
    }


def _merge_overrides(annotations: Dict[str, str], fleet_yaml: Optional[FleetYaml]) -> Dict[str, str]:
    # Operator-supplied annotations win over everything computed
    if fleet_yaml is None:
        return annotations
    annotations.update(fleet_yaml.annotations)
    if fleet_yaml.backstage:
        annotations.update(fleet_yaml.backstage.annotations)
    return annotations


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(v for v in values if v))


def _descriptor_tags(fleet_yaml: Optional[FleetYaml]) -> List[str]:
    if fleet_yaml and fleet_yaml.backstage:
        return list(fleet_yaml.backstage.tags)
    return []


def _descriptor_owner(fleet_yaml: Optional[FleetYaml]) -> Optional[str]:
    if fleet_yaml and fleet_yaml.backstage:
        return fleet_yaml.backstage.owner
    return None


def derive_owner_from_repo(repo: Optional[str]) -> Optional[str]:
    """
    Derives a group owner from the first path segment of a Git URL.

    Args:
        repo (Optional[str]): The repository URL, e.g. https://github.com/acme/app.

    Returns:
        Optional[str]: `group:default/<segment>`, or None if the URL has no usable path.
    """
    if not repo:
        return None
    try:
        parsed = urlparse(repo)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    segments = [s for s in parsed.path.split("/") if s]
    if not segments:
        return None
    return f"group:default/{to_safe_name(segments[0])}"


def derive_namespace_from_status(git_repo: GitRepo) -> Optional[str]:
    for resource in git_repo.status.resources:
        if resource.namespace:
            return resource.namespace
    return None


def map_depends_on(depends_on: Iterable[BundleDependsOn], kind: EntityKind, namespace: str) -> List[str]:
    return [stringify_entity_ref(kind.value, namespace, to_safe_name(dep.name)) for dep in depends_on if dep.name]


def api_namespace(context: MapperContext) -> str:
    default_namespace = context.fleet_yaml.default_namespace if context.fleet_yaml else None
    return to_entity_namespace(default_namespace or DEFAULT_NAMESPACE)


def map_fleet_cluster_to_domain(context: MapperContext, entity_namespace: str = "default") -> Domain:
    cluster = context.cluster

    try:
        hostname = urlparse(cluster.url).hostname or cluster.url
    except ValueError:
        hostname = cluster.url

    annotations = _base_annotations(context, cluster.name)
    annotations[ANNOTATION_FLEET_URL] = cluster.url
    annotations[ANNOTATION_FLEET_NAMESPACES] = ",".join(ns.name for ns in cluster.namespaces)

    return Domain(
        metadata=EntityMetadata(
            name=to_safe_name(cluster.name),
            namespace=entity_namespace,
            description=f"Fleet Rancher Cluster: {hostname}",
            annotations=annotations,
            tags=["fleet", "rancher", "gitops"],
            links=[EntityLink(url=cluster.url, title="Rancher Fleet")],
        ),
        spec=DomainSpec(owner=PLATFORM_OWNER),
    )


def map_git_repo_to_system(git_repo: GitRepo, context: MapperContext) -> System:
    """
    Maps a GitRepo to a System in the GitRepo's own namespace.

    Args:
        git_repo (GitRepo): The upstream GitRepo.
        context (MapperContext): Cluster, location key and optional fleet.yaml.

    Returns:
        System: The mapped catalog entity.
    """
    metadata = git_repo.metadata
    fleet_yaml = context.fleet_yaml
    backstage = fleet_yaml.backstage if fleet_yaml else None
    repo = git_repo.spec.repo
    branch = git_repo.spec.branch or "main"
    namespace = to_entity_namespace(metadata.namespace or DEFAULT_NAMESPACE)
    status = git_repo.status.display.state or "Unknown"

    description = (
        (backstage.description if backstage else None)
        or metadata.annotations.get("field.cattle.io/description")
        or metadata.annotations.get("description")
        or f"Fleet GitRepo: {repo or 'unknown'}"
    )

    annotations = _base_annotations(context, context.cluster.name)
    annotations[ANNOTATION_FLEET_REPO] = repo or ""
    annotations[ANNOTATION_FLEET_BRANCH] = branch
    annotations[ANNOTATION_FLEET_NAMESPACE] = metadata.namespace or ""
    annotations[ANNOTATION_FLEET_STATUS] = status

    targets = [t.name for t in git_repo.spec.targets if t.name]
    if targets:
        annotations[ANNOTATION_FLEET_TARGETS] = json.dumps(targets)
    if repo:
        annotations[ANNOTATION_SOURCE_LOCATION] = f"url:{repo}"
    if git_repo.status.display.ready_clusters:
        annotations[ANNOTATION_FLEET_READY_CLUSTERS] = git_repo.status.display.ready_clusters

    kube_namespace = (
        derive_namespace_from_status(git_repo)
        or (fleet_yaml.default_namespace if fleet_yaml else None)
        or (fleet_yaml.namespace if fleet_yaml else None)
        or metadata.namespace
        or "default"
    )
    annotations[ANNOTATION_KUBERNETES_NAMESPACE] = kube_namespace
    if metadata.name:
        annotations[ANNOTATION_KUBERNETES_LABEL_SELECTOR] = f"app.kubernetes.io/name={metadata.name}"

    _merge_overrides(annotations, fleet_yaml)

    # Left unset without a repo URL rather than pointing somewhere misleading
    if context.auto_techdocs_ref and repo and ANNOTATION_TECHDOCS_REF not in annotations:
        annotations[ANNOTATION_TECHDOCS_REF] = f"url:{repo.rstrip('/')}/-/tree/{branch}"

    depends_on: List[str] = []
    provides_apis: List[str] = []
    consumes_apis: List[str] = []
    if backstage:
        depends_on.extend(backstage.depends_on)
        provides_apis.extend(
            stringify_entity_ref(EntityKind.API.value, api_namespace(context), to_safe_name(api.name))
            for api in backstage.provides_apis
        )
        consumes_apis.extend(backstage.consumes_apis)
    if fleet_yaml:
        depends_on.extend(map_depends_on(fleet_yaml.depends_on, EntityKind.COMPONENT, namespace))

    links = [EntityLink(url=repo, title="Git Repository")] if repo else []

    return System(
        metadata=EntityMetadata(
            name=to_safe_name(metadata.name or "fleet-gitrepo"),
            namespace=namespace,
            description=description,
            annotations=annotations,
            tags=_unique(["fleet", "gitops", *_descriptor_tags(fleet_yaml)]),
            links=links,
        ),
        spec=SystemSpec(
            owner=_descriptor_owner(fleet_yaml) or derive_owner_from_repo(repo) or DEFAULT_GROUP_OWNER,
            lifecycle=status_to_lifecycle(status),
            domain=stringify_entity_ref(EntityKind.DOMAIN.value, "default", to_safe_name(context.cluster.name)),
            depends_on=_unique(depends_on),
            provides_apis=_unique(provides_apis),
            consumes_apis=_unique(consumes_apis),
        ),
    )


def map_bundle_to_component(bundle: Bundle, context: MapperContext, deployment_refs: Iterable[str] = ()) -> Component:
    """
    Maps a Bundle to a service Component.
    deployment_refs are the refs of this Bundle's BundleDeployment Resources, added to dependsOn.
    """
    metadata = bundle.metadata
    spec = bundle.spec
    fleet_yaml = context.fleet_yaml
    backstage = fleet_yaml.backstage if fleet_yaml else None
    namespace = to_entity_namespace(metadata.namespace or DEFAULT_NAMESPACE)
    status = bundle.status.display.state or "Unknown"

    git_repo_name = metadata.labels.get(LABEL_REPO_NAME)
    bundle_path = metadata.labels.get(LABEL_BUNDLE_PATH)
    system_ref = (
        stringify_entity_ref(EntityKind.SYSTEM.value, namespace, to_safe_name(git_repo_name))
        if git_repo_name else None
    )

    annotations = _base_annotations(context, context.cluster.name)
    annotations[ANNOTATION_FLEET_STATUS] = status
    if git_repo_name:
        annotations[ANNOTATION_FLEET_REPO_NAME] = git_repo_name
        annotations[ANNOTATION_FLEET_SOURCE_GITREPO] = git_repo_name
    if bundle_path:
        annotations[ANNOTATION_FLEET_BUNDLE_PATH] = bundle_path
    if bundle.status.display.ready_clusters:
        annotations[ANNOTATION_FLEET_READY_CLUSTERS] = bundle.status.display.ready_clusters

    annotations[ANNOTATION_KUBERNETES_NAMESPACE] = (
        spec.target_namespace
        or spec.default_namespace
        or spec.namespace
        or (fleet_yaml.target_namespace if fleet_yaml else None)
        or (fleet_yaml.default_namespace if fleet_yaml else None)
        or (fleet_yaml.namespace if fleet_yaml else None)
        or "default"
    )

    release_name = (
        (fleet_yaml.helm.release_name if fleet_yaml and fleet_yaml.helm else None)
        or (spec.helm.release_name if spec.helm else None)
        or metadata.name
    )
    objectset_hash = metadata.labels.get(LABEL_OBJECTSET_HASH)
    if release_name:
        annotations[ANNOTATION_KUBERNETES_LABEL_SELECTOR] = f"app.kubernetes.io/instance={release_name}"
    elif objectset_hash:
        # May select more than this bundle's objects
        annotations[ANNOTATION_KUBERNETES_LABEL_SELECTOR] = f"{LABEL_OBJECTSET_HASH}={objectset_hash}"

    _merge_overrides(annotations, fleet_yaml)
    if system_ref:
        annotations[ANNOTATION_TECHDOCS_ENTITY] = system_ref

    depends_on = map_depends_on(spec.depends_on, EntityKind.RESOURCE, namespace)
    if fleet_yaml:
        depends_on.extend(map_depends_on(fleet_yaml.depends_on, EntityKind.RESOURCE, namespace))
    depends_on.extend(deployment_refs)

    return Component(
        metadata=EntityMetadata(
            name=to_safe_name(metadata.name or "fleet-bundle"),
            namespace=namespace,
            description=(backstage.description if backstage else None) or f"Fleet Bundle: {metadata.name or 'unknown'}",
            annotations=annotations,
            tags=_unique(["fleet", "fleet-bundle", *_descriptor_tags(fleet_yaml)]),
        ),
        spec=ComponentSpec(
            type=(backstage.type if backstage else None) or "service",
            lifecycle=(backstage.lifecycle if backstage else None) or status_to_lifecycle(status),
            owner=_descriptor_owner(fleet_yaml) or UNKNOWN_OWNER,
            system=system_ref,
            depends_on=_unique(depends_on),
        ),
    )


def map_bundle_deployment_to_resource(
    bundle_deployment: BundleDeployment,
    cluster_id: str,
    context: MapperContext,
    system_ref: Optional[str] = None,
    cluster_name: Optional[str] = None,
) -> Resource:
    """
    Maps one BundleDeployment (a Bundle realized on one downstream cluster) to a Resource.

    Args:
        bundle_deployment (BundleDeployment): The upstream record.
        cluster_id (str): Downstream cluster id parsed from the record's namespace.
        context (MapperContext): Mapper context of the owning GitRepo.
        system_ref (Optional[str]): Ref of the owning System, used for the techdocs entity.
        cluster_name (Optional[str]): Friendly cluster name, when known.

    Returns:
        Resource: A `fleet-deployment` Resource depending on its Component and cluster Resource.
    """
    metadata = bundle_deployment.metadata
    display = bundle_deployment.status.display
    bd_name = metadata.name or "fleet-bundle-deployment"
    original_name = f"{bd_name}-{cluster_id}"
    status = display.state or "Unknown"
    cluster_label = cluster_name or cluster_id
    cluster_resource_name = to_safe_name(cluster_label)
    workspace = extract_workspace_namespace(metadata.namespace or "")

    annotations = _base_annotations(context, cluster_id)
    annotations[ANNOTATION_FLEET_STATUS] = status
    annotations[ANNOTATION_FLEET_BUNDLE_DEPLOYMENT] = bd_name
    annotations[ANNOTATION_FLEET_ORIGINAL_NAME] = original_name
    annotations[ANNOTATION_FLEET_TARGET_CLUSTER_ID] = cluster_id
    if display.message:
        annotations[ANNOTATION_FLEET_MESSAGE] = display.message[:MAX_MESSAGE_LENGTH]

    applied = _unique(
        f"{r.api_version}/{r.kind}" if r.api_version else r.kind
        for r in bundle_deployment.status.resources
        if r.kind
    )
    if applied:
        annotations[ANNOTATION_FLEET_APPLIED_RESOURCES] = ",".join(applied)

    depends_on: List[str] = []
    bundle_name = metadata.labels.get(LABEL_BUNDLE_NAME)
    if bundle_name:
        annotations[ANNOTATION_FLEET_SOURCE_BUNDLE] = bundle_name
        component_namespace = to_entity_namespace(workspace or metadata.namespace)
        depends_on.append(stringify_entity_ref(EntityKind.COMPONENT.value, component_namespace, to_safe_name(bundle_name)))
        if system_ref:
            annotations[ANNOTATION_TECHDOCS_ENTITY] = system_ref

    cluster_namespace = to_entity_namespace(workspace) if workspace else "default"
    depends_on.append(stringify_entity_ref(EntityKind.RESOURCE.value, cluster_namespace, cluster_resource_name))

    _merge_overrides(annotations, context.fleet_yaml)

    return Resource(
        metadata=EntityMetadata(
            name=to_stable_safe_name(original_name, DEPLOYMENT_NAME_MAX_LENGTH),
            namespace=to_entity_namespace(metadata.namespace or DEFAULT_NAMESPACE),
            description=f"Fleet deployment: {bd_name} on cluster {cluster_label}",
            annotations=annotations,
            tags=_unique(["fleet", "fleet-deployment", to_safe_name(f"cluster-{cluster_resource_name}")]),
        ),
        spec=ResourceSpec(
            type="fleet-deployment",
            owner=_descriptor_owner(context.fleet_yaml) or UNKNOWN_OWNER,
            depends_on=depends_on,
        ),
    )


def map_cluster_to_resource(
    cluster_id: str,
    cluster_name: Optional[str],
    namespace: str,
    context: MapperContext,
    stats: Optional[ClusterStats] = None,
    dashboard_url: Optional[str] = None,
) -> Resource:
    annotations = _base_annotations(context, cluster_id)
    annotations[ANNOTATION_KUBERNETES_ID] = cluster_id

    if stats is not None:
        optional = {
            ANNOTATION_CLUSTER_DRIVER: stats.driver,
            ANNOTATION_CLUSTER_PROVIDER: stats.provider,
            ANNOTATION_CLUSTER_VERSION: stats.version,
            ANNOTATION_CLUSTER_STATE: stats.state,
            ANNOTATION_CLUSTER_NODE_COUNT: stats.node_count,
            ANNOTATION_CLUSTER_MD_COUNT: stats.machine_deployment_count,
            ANNOTATION_CLUSTER_VM_COUNT: stats.virtual_machine_count,
        }
        annotations.update({key: str(value) for key, value in optional.items() if value is not None})
        if stats.conditions:
            annotations[ANNOTATION_CLUSTER_CONDITIONS] = ",".join(stats.conditions)

    links = [EntityLink(url=dashboard_url, title="Rancher Dashboard")] if dashboard_url else []

    return Resource(
        metadata=EntityMetadata(
            name=to_safe_name(cluster_name or cluster_id),
            namespace=to_entity_namespace(namespace),
            description=f"Downstream Kubernetes cluster: {cluster_name or cluster_id}",
            annotations=annotations,
            tags=["fleet", "kubernetes-cluster", to_safe_name(f"fleet-cluster-id-{cluster_id}")],
            links=links,
        ),
        spec=ResourceSpec(type="kubernetes-cluster", owner=PLATFORM_OWNER),
    )


def map_inventory_item_to_resource(
    item: InventoryItem,
    cluster_id: str,
    cluster_name: Optional[str],
    cluster_ref: str,
    namespace: str,
    context: MapperContext,
) -> Resource:
    """Maps a node, MachineDeployment or VM to a Resource that is a dependency of its cluster Resource."""
    annotations = _base_annotations(context, cluster_id)
    annotations.update(item.annotations)

    return Resource(
        metadata=EntityMetadata(
            name=to_stable_safe_name(f"{cluster_name or cluster_id}-{item.name}"),
            namespace=to_entity_namespace(namespace),
            description=item.description,
            annotations=annotations,
            tags=["fleet", item.type],
        ),
        spec=ResourceSpec(type=item.type, owner=PLATFORM_OWNER, dependency_of=[cluster_ref]),
    )


def map_api_definition_to_api(api_def: FleetYamlApiDefinition, git_repo_name: str, context: MapperContext) -> Api:
    annotations = _base_annotations(context, context.cluster.name)
    annotations[ANNOTATION_FLEET_SOURCE_GITREPO] = git_repo_name
    if api_def.definition_url:
        annotations[ANNOTATION_FLEET_DEFINITION_URL] = api_def.definition_url
    _merge_overrides(annotations, context.fleet_yaml)

    definition = api_def.definition
    if not definition and api_def.definition_url:
        definition = f"# API definition from: {api_def.definition_url}"
    if not definition:
        definition = f"# No definition provided for {api_def.name}"

    return Api(
        metadata=EntityMetadata(
            name=to_safe_name(api_def.name),
            namespace=api_namespace(context),
            description=api_def.description or f"API {api_def.name} provided by {git_repo_name}",
            annotations=annotations,
            tags=["fleet", "fleet-api"],
        ),
        spec=ApiSpec(
            type=api_def.type or "openapi",
            lifecycle=status_to_lifecycle(None),
            owner=_descriptor_owner(context.fleet_yaml) or UNKNOWN_OWNER,
            definition=definition,
        ),
    )
