from typing import Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class FleetModel(BaseModel):
    """
    Base for all upstream payload models.
    Upstream objects are read-only and loosely shaped, so every field is optional,
    unknown keys are ignored and camelCase wire names map to snake_case attributes.
    """
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )


# ---------------------------------------------------------------------------
# Kubernetes common types
# ---------------------------------------------------------------------------

class KubeMetadata(FleetModel):
    name: Optional[str] = None
    namespace: Optional[str] = None
    uid: Optional[str] = None
    annotations: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)
    creation_timestamp: Optional[str] = None


class LabelSelectorRequirement(FleetModel):
    key: str
    operator: str
    values: List[str] = Field(default_factory=list)


class LabelSelector(FleetModel):
    match_labels: Dict[str, str] = Field(default_factory=dict)
    match_expressions: List[LabelSelectorRequirement] = Field(default_factory=list)


class Condition(FleetModel):
    type: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    last_transition_time: Optional[str] = None


class DisplayStatus(FleetModel):
    ready_clusters: Optional[str] = None
    ready_bundles: Optional[str] = None
    state: Optional[str] = None
    message: Optional[str] = None
    error: Optional[bool] = None


class StatusSummary(FleetModel):
    ready: int = 0
    desired_ready: int = 0
    not_ready: int = 0
    wait_applied: int = 0
    err_applied: int = 0
    out_of_sync: int = 0
    modified: int = 0
    pending: int = 0


class ResourceCounts(FleetModel):
    ready: int = 0
    desired_ready: int = 0
    wait_applied: int = 0
    modified: int = 0
    orphaned: int = 0
    missing: int = 0
    unknown: int = 0
    not_ready: int = 0


class AppliedResource(FleetModel):
    kind: Optional[str] = None
    api_version: Optional[str] = None
    namespace: Optional[str] = None
    name: Optional[str] = None
    id: Optional[str] = None
    state: Optional[str] = None
    error: Optional[bool] = None
    message: Optional[str] = None


class BundleDependsOn(FleetModel):
    name: Optional[str] = None
    selector: Optional[LabelSelector] = None


class HelmOptions(FleetModel):
    chart: Optional[str] = None
    repo: Optional[str] = None
    version: Optional[str] = None
    release_name: Optional[str] = None


# ---------------------------------------------------------------------------
# GitRepo
# ---------------------------------------------------------------------------

class GitRepoTarget(FleetModel):
    name: Optional[str] = None
    cluster_name: Optional[str] = None
    cluster_selector: Optional[LabelSelector] = None
    cluster_group: Optional[str] = None


class GitRepoSpec(FleetModel):
    repo: Optional[str] = None
    branch: Optional[str] = None
    revision: Optional[str] = None
    paths: List[str] = Field(default_factory=list)
    targets: List[GitRepoTarget] = Field(default_factory=list)


class GitRepoStatus(FleetModel):
    display: DisplayStatus = Field(default_factory=DisplayStatus)
    summary: StatusSummary = Field(default_factory=StatusSummary)
    conditions: List[Condition] = Field(default_factory=list)
    resource_counts: ResourceCounts = Field(default_factory=ResourceCounts)
    resources: List[AppliedResource] = Field(default_factory=list)
    commit: Optional[str] = None


class GitRepo(FleetModel):
    """A Fleet GitRepo: the declared Git-backed deployment source."""
    metadata: KubeMetadata = Field(default_factory=KubeMetadata)
    spec: GitRepoSpec = Field(default_factory=GitRepoSpec)
    status: GitRepoStatus = Field(default_factory=GitRepoStatus)


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------

class BundleSpec(FleetModel):
    targets: List[GitRepoTarget] = Field(default_factory=list)
    depends_on: List[BundleDependsOn] = Field(default_factory=list)
    helm: Optional[HelmOptions] = None
    default_namespace: Optional[str] = None
    target_namespace: Optional[str] = None
    namespace: Optional[str] = None
    paused: Optional[bool] = None


class BundleStatus(FleetModel):
    display: DisplayStatus = Field(default_factory=DisplayStatus)
    summary: StatusSummary = Field(default_factory=StatusSummary)
    conditions: List[Condition] = Field(default_factory=list)
    resource_counts: ResourceCounts = Field(default_factory=ResourceCounts)


class Bundle(FleetModel):
    """A deployable unit rendered from a GitRepo path."""
    metadata: KubeMetadata = Field(default_factory=KubeMetadata)
    spec: BundleSpec = Field(default_factory=BundleSpec)
    status: BundleStatus = Field(default_factory=BundleStatus)


# ---------------------------------------------------------------------------
# BundleDeployment
# ---------------------------------------------------------------------------

class BundleDeploymentSpec(FleetModel):
    deployment_id: Optional[str] = Field(default=None, alias="deploymentID")
    depends_on: List[BundleDependsOn] = Field(default_factory=list)


class BundleDeploymentStatus(FleetModel):
    display: DisplayStatus = Field(default_factory=DisplayStatus)
    conditions: List[Condition] = Field(default_factory=list)
    ready: Optional[bool] = None
    applied_deployment_id: Optional[str] = Field(default=None, alias="appliedDeploymentID")
    release: Optional[str] = None
    resources: List[AppliedResource] = Field(default_factory=list)


class BundleDeployment(FleetModel):
    """The realized state of one Bundle on one downstream cluster."""
    metadata: KubeMetadata = Field(default_factory=KubeMetadata)
    spec: BundleDeploymentSpec = Field(default_factory=BundleDeploymentSpec)
    status: BundleDeploymentStatus = Field(default_factory=BundleDeploymentStatus)


# ---------------------------------------------------------------------------
# Cluster / ClusterGroup
# ---------------------------------------------------------------------------

class FleetClusterAgent(FleetModel):
    last_seen: Optional[str] = None
    namespace: Optional[str] = None


class FleetClusterStatus(FleetModel):
    display: DisplayStatus = Field(default_factory=DisplayStatus)
    agent: FleetClusterAgent = Field(default_factory=FleetClusterAgent)
    conditions: List[Condition] = Field(default_factory=list)


class FleetCluster(FleetModel):
    """A downstream cluster registered in a Fleet workspace."""
    metadata: KubeMetadata = Field(default_factory=KubeMetadata)
    status: FleetClusterStatus = Field(default_factory=FleetClusterStatus)


class FleetClusterGroupSpec(FleetModel):
    selector: Optional[LabelSelector] = None


class FleetClusterGroupStatus(FleetModel):
    cluster_count: int = 0
    non_ready_cluster_count: int = 0
    non_ready_clusters: List[str] = Field(default_factory=list)


class FleetClusterGroup(FleetModel):
    metadata: KubeMetadata = Field(default_factory=KubeMetadata)
    spec: FleetClusterGroupSpec = Field(default_factory=FleetClusterGroupSpec)
    status: FleetClusterGroupStatus = Field(default_factory=FleetClusterGroupStatus)


# ---------------------------------------------------------------------------
# fleet.yaml descriptor file
# ---------------------------------------------------------------------------

class FleetYamlApiDefinition(FleetModel):
    name: str
    type: Optional[str] = None
    description: Optional[str] = None
    definition: Optional[str] = None
    definition_url: Optional[str] = None


class FleetYamlBackstage(FleetModel):
    """The custom `backstage` section of fleet.yaml; Fleet itself ignores it."""
    type: Optional[str] = None
    description: Optional[str] = None
    owner: Optional[str] = None
    lifecycle: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    depends_on: List[str] = Field(default_factory=list)
    provides_apis: List[FleetYamlApiDefinition] = Field(default_factory=list)
    consumes_apis: List[str] = Field(default_factory=list)
    annotations: Dict[str, str] = Field(default_factory=dict)


class FleetYaml(FleetModel):
    default_namespace: Optional[str] = None
    namespace: Optional[str] = None
    target_namespace: Optional[str] = None
    helm: Optional[HelmOptions] = None
    depends_on: List[BundleDependsOn] = Field(default_factory=list)
    backstage: Optional[FleetYamlBackstage] = None
    annotations: Dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Rancher inventory (topology source)
# ---------------------------------------------------------------------------

class RancherEngineConfig(FleetModel):
    kubernetes_version: Optional[str] = None


class RancherVersion(FleetModel):
    git_version: Optional[str] = None


class RancherCluster(FleetModel):
    id: str
    name: Optional[str] = None
    annotations: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)
    driver: Optional[str] = None
    provider: Optional[str] = None
    ca_cert: Optional[str] = None
    state: Optional[str] = None
    conditions: List[Condition] = Field(default_factory=list)
    version: Optional[RancherVersion] = None
    rancher_kubernetes_engine_config: Optional[RancherEngineConfig] = None

    @property
    def is_harvester(self) -> bool:
        return (
            self.labels.get("provider.cattle.io") == "harvester"
            or self.provider == "harvester"
            or self.driver == "harvester"
        )


class RancherNode(FleetModel):
    id: Optional[str] = None
    node_name: Optional[str] = None
    hostname: Optional[str] = None
    name: Optional[str] = None


class NodeSystemInfo(FleetModel):
    kubelet_version: Optional[str] = None
    os_image: Optional[str] = None
    architecture: Optional[str] = None
    container_runtime_version: Optional[str] = None


class NodeAddress(FleetModel):
    type: Optional[str] = None
    address: Optional[str] = None


class KubeNodeStatus(FleetModel):
    node_info: NodeSystemInfo = Field(default_factory=NodeSystemInfo)
    conditions: List[Condition] = Field(default_factory=list)
    addresses: List[NodeAddress] = Field(default_factory=list)


class KubeNode(FleetModel):
    metadata: KubeMetadata = Field(default_factory=KubeMetadata)
    status: KubeNodeStatus = Field(default_factory=KubeNodeStatus)


class MachineDeploymentSpec(FleetModel):
    replicas: Optional[int] = None


class MachineDeploymentStatus(FleetModel):
    available_replicas: Optional[int] = None
    ready_replicas: Optional[int] = None


class MachineDeployment(FleetModel):
    metadata: KubeMetadata = Field(default_factory=KubeMetadata)
    spec: MachineDeploymentSpec = Field(default_factory=MachineDeploymentSpec)
    status: MachineDeploymentStatus = Field(default_factory=MachineDeploymentStatus)


class VirtualMachineSpec(FleetModel):
    run_strategy: Optional[str] = None


class VirtualMachineStatus(FleetModel):
    printable_status: Optional[str] = None
    ready: Optional[bool] = None


class VirtualMachine(FleetModel):
    metadata: KubeMetadata = Field(default_factory=KubeMetadata)
    spec: VirtualMachineSpec = Field(default_factory=VirtualMachineSpec)
    status: VirtualMachineStatus = Field(default_factory=VirtualMachineStatus)


class PerClusterItems(FleetModel, Generic[T]):
    """Inventory items returned for one downstream cluster."""
    cluster_id: str
    cluster_name: Optional[str] = None
    items: List[T] = Field(default_factory=list)


class ClusterVersion(FleetModel):
    cluster_id: str
    cluster_name: Optional[str] = None
    version: Optional[str] = None
