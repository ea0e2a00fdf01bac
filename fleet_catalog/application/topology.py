import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import aiohttp

from fleet_catalog.domain.models import (
    Condition,
    FleetCluster,
    KubeNode,
    MachineDeployment,
    RancherCluster,
    RancherNode,
    VirtualMachine,
)
from fleet_catalog.domain.naming import short_cluster_name
from fleet_catalog.infrastructure.rancher_client import RancherClient

logger = logging.getLogger(__name__)

DEFAULT_WORKSPACE = "fleet-default"

ANNOTATION_DISPLAY_NAME = "field.cattle.io/displayName"
ANNOTATION_HARVESTER_DISPLAY_NAME = "harvesterhci.io/cluster-display-name"
LABEL_RANCHER_CLUSTER_ID = "management.cattle.io/cluster-name"
LABEL_RANCHER_DISPLAY_NAME = "management.cattle.io/cluster-display-name"

NODE_ROLE_PREFIX = "node-role.kubernetes.io/"


@dataclass
class ClusterStats:
    """Enrichment statistics for one downstream cluster, gathered once per pass."""
    cluster_id: str
    driver: Optional[str] = None
    provider: Optional[str] = None
    version: Optional[str] = None
    state: Optional[str] = None
    node_count: Optional[int] = None
    machine_deployment_count: Optional[int] = None
    virtual_machine_count: Optional[int] = None
    conditions: List[str] = field(default_factory=list)


@dataclass
class InventoryItem:
    """A node or workload discovered inside a downstream cluster."""
    type: str
    name: str
    description: str
    annotations: Dict[str, str] = field(default_factory=dict)


def format_conditions(conditions: Iterable[Condition]) -> List[str]:
    return [f"{c.type}={c.status or 'Unknown'}" for c in conditions if c.type]


def resolve_friendly_name(cluster: RancherCluster) -> str:
    """
    Picks the name a human would recognize: display-name annotation, then the
    Rancher-assigned name, then the Harvester override, then the raw id.
    """
    display_name = cluster.annotations.get(ANNOTATION_DISPLAY_NAME)
    if display_name:
        return display_name
    if cluster.name:
        return cluster.name
    if cluster.is_harvester and cluster.annotations.get(ANNOTATION_HARVESTER_DISPLAY_NAME):
        return cluster.annotations[ANNOTATION_HARVESTER_DISPLAY_NAME]
    return cluster.id


class TopologyState:
    """
    Everything learned about downstream clusters during one pass.
    Every lookup accepts any known alias of a cluster (Rancher id, Fleet cluster
    name, or a Fleet id carrying a generated 12-hex suffix).

    The state collected from the Rancher inventory is shared by all management
    clusters. What a management cluster learns on its own (Fleet Cluster names,
    degraded node listings) goes into an overlay() so that concurrent fetches
    never see each other's names.
    """

    def __init__(self, parent: Optional["TopologyState"] = None) -> None:
        self.parent = parent
        self.degraded = parent.degraded if parent else False
        self._aliases: Dict[str, str] = {}
        self._names: Dict[str, str] = {}
        self._stats: Dict[str, ClusterStats] = {}
        self._inventory: Dict[str, List[InventoryItem]] = {}
        self._dashboard_urls: Dict[str, str] = {}

    def overlay(self) -> "TopologyState":
        """Returns a child state: reads fall through to this one, writes stay in the child."""
        return TopologyState(parent=self)

    def canonical_id(self, cluster_id: str) -> Optional[str]:
        for candidate in (cluster_id, short_cluster_name(cluster_id)):
            canonical = self._lookup("_aliases", candidate) if candidate else None
            if canonical:
                return canonical
        return None

    def register_cluster(self, canonical_id: str, *aliases: Optional[str], friendly_name: Optional[str] = None) -> None:
        if self._lookup("_aliases", canonical_id) is None:
            self._aliases[canonical_id] = canonical_id
        for alias in aliases:
            if alias and self._lookup("_aliases", alias) is None:
                self._aliases[alias] = canonical_id
        if friendly_name and self._lookup("_names", canonical_id) is None:
            self._names[canonical_id] = friendly_name

    def register_fleet_cluster(self, cluster: FleetCluster) -> Optional[str]:
        """Links a workspace Cluster resource to a known Rancher cluster, or registers it on its own."""
        name = cluster.metadata.name
        if not name:
            return None

        labels = cluster.metadata.labels
        rancher_id = labels.get(LABEL_RANCHER_CLUSTER_ID)
        canonical = self.canonical_id(rancher_id) if rancher_id else None
        if canonical is None:
            canonical = self.canonical_id(name) or name

        friendly = (
            cluster.metadata.annotations.get(ANNOTATION_DISPLAY_NAME)
            or labels.get(LABEL_RANCHER_DISPLAY_NAME)
            or name
        )
        self.register_cluster(canonical, name, rancher_id, friendly_name=friendly)
        return canonical

    def friendly_name(self, cluster_id: str) -> Optional[str]:
        canonical = self.canonical_id(cluster_id)
        return self._lookup("_names", canonical) if canonical else None

    def stats_for(self, cluster_id: str) -> Optional[ClusterStats]:
        canonical = self.canonical_id(cluster_id)
        return self._lookup("_stats", canonical) if canonical else None

    def inventory_for(self, cluster_id: str) -> List[InventoryItem]:
        canonical = self.canonical_id(cluster_id)
        return list(self._lookup("_inventory", canonical) or []) if canonical else []

    def dashboard_url(self, cluster_id: str) -> Optional[str]:
        canonical = self.canonical_id(cluster_id)
        return self._lookup("_dashboard_urls", canonical) if canonical else None

    def _lookup(self, table: str, key: str):
        value = getattr(self, table).get(key)
        if value is None and self.parent:
            return self.parent._lookup(table, key)
        return value

    def ensure_stats(self, canonical_id: str) -> ClusterStats:
        return self._stats.setdefault(canonical_id, ClusterStats(cluster_id=canonical_id))

    def add_inventory(self, canonical_id: str, items: Iterable[InventoryItem]) -> None:
        self._inventory.setdefault(canonical_id, []).extend(items)

    def set_dashboard_url(self, canonical_id: str, url: str) -> None:
        self._dashboard_urls[canonical_id] = url


class WorkspaceRegistry:
    """Cluster id -> Fleet workspace namespaces, in first-seen order, for one management cluster."""

    def __init__(self) -> None:
        self._workspaces: Dict[str, List[str]] = {}

    def record(self, cluster_id: str, workspace: Optional[str]) -> None:
        if not cluster_id or not workspace:
            return
        workspaces = self._workspaces.setdefault(cluster_id, [])
        if workspace not in workspaces:
            workspaces.append(workspace)

    def cluster_ids(self) -> List[str]:
        return list(self._workspaces)

    def workspaces(self, cluster_id: str) -> List[str]:
        return list(self._workspaces.get(cluster_id, []))

    def primary_workspace(self, cluster_id: str) -> Optional[str]:
        workspaces = self._workspaces.get(cluster_id)
        if not workspaces:
            return None
        if DEFAULT_WORKSPACE in workspaces:
            return DEFAULT_WORKSPACE
        return workspaces[0]


def _node_item(node: KubeNode) -> Optional[InventoryItem]:
    name = node.metadata.name
    if not name:
        return None

    info = node.status.node_info
    annotations: Dict[str, str] = {}
    roles = sorted(label[len(NODE_ROLE_PREFIX):] for label in node.metadata.labels if label.startswith(NODE_ROLE_PREFIX))
    if roles:
        annotations["fleet.cattle.io/node-roles"] = ",".join(roles)
    if info.kubelet_version:
        annotations["fleet.cattle.io/kubelet-version"] = info.kubelet_version
    if info.os_image:
        annotations["fleet.cattle.io/os-image"] = info.os_image
    if info.architecture:
        annotations["fleet.cattle.io/architecture"] = info.architecture
    for address in node.status.addresses:
        if address.type == "InternalIP" and address.address:
            annotations["fleet.cattle.io/internal-ip"] = address.address
            break
    ready = next((c.status for c in node.status.conditions if c.type == "Ready"), None)
    if ready:
        annotations["fleet.cattle.io/ready"] = ready

    return InventoryItem(type="kubernetes-node", name=name, description=f"Kubernetes node {name}", annotations=annotations)


def _rancher_node_item(node: RancherNode) -> Optional[InventoryItem]:
    name = node.node_name or node.hostname or node.name or node.id
    if not name:
        return None
    return InventoryItem(type="kubernetes-node", name=name, description=f"Kubernetes node {name}")


def _machine_deployment_item(md: MachineDeployment) -> Optional[InventoryItem]:
    name = md.metadata.name
    if not name:
        return None
    annotations: Dict[str, str] = {}
    if md.spec.replicas is not None:
        annotations["fleet.cattle.io/replicas"] = str(md.spec.replicas)
    if md.status.ready_replicas is not None:
        annotations["fleet.cattle.io/ready-replicas"] = str(md.status.ready_replicas)
    return InventoryItem(
        type="kubernetes-machine-deployment",
        name=name,
        description=f"MachineDeployment {md.metadata.namespace or 'default'}/{name}",
        annotations=annotations,
    )


def _virtual_machine_item(vm: VirtualMachine) -> Optional[InventoryItem]:
    name = vm.metadata.name
    if not name:
        return None
    annotations: Dict[str, str] = {}
    if vm.status.printable_status:
        annotations["fleet.cattle.io/vm-status"] = vm.status.printable_status
    if vm.spec.run_strategy:
        annotations["fleet.cattle.io/run-strategy"] = vm.spec.run_strategy
    if vm.metadata.namespace:
        annotations["fleet.cattle.io/vm-namespace"] = vm.metadata.namespace
    return InventoryItem(
        type="virtual-machine",
        name=f"{vm.metadata.namespace}-{name}" if vm.metadata.namespace else name,
        description=f"Harvester virtual machine {vm.metadata.namespace or 'default'}/{name}",
        annotations=annotations,
    )


class TopologyCollector:
    """
    Queries the downstream-cluster inventory once per pass.

    When the Rancher inventory is unavailable (not configured, or the cluster listing fails),
    the state is marked degraded: cluster identity then comes only from BundleDeployment
    namespaces, and node counts from the per-cluster node listing.
    """

    def __init__(self, client: Optional[RancherClient] = None):
        self.client = client

    async def collect(self, session: aiohttp.ClientSession) -> TopologyState:
        state = TopologyState()
        if self.client is None:
            state.degraded = True
            return state

        details = await self.client.list_cluster_details(session)
        if not details.ok:
            logger.warning(f"Cluster inventory unavailable, falling back to deployment namespaces: {details.error}")
            state.degraded = True
            return state

        clusters = details.items
        for cluster in clusters:
            friendly = resolve_friendly_name(cluster)
            state.register_cluster(cluster.id, cluster.name, friendly, friendly_name=friendly)
            stats = state.ensure_stats(cluster.id)
            stats.driver = cluster.driver
            stats.provider = cluster.provider or cluster.labels.get("provider.cattle.io")
            stats.state = cluster.state
            stats.conditions = format_conditions(cluster.conditions)
            if cluster.version and cluster.version.git_version:
                stats.version = cluster.version.git_version
            elif cluster.rancher_kubernetes_engine_config:
                stats.version = cluster.rancher_kubernetes_engine_config.kubernetes_version
            state.set_dashboard_url(cluster.id, self.client.cluster_dashboard_url(cluster.id))

        nodes = await self.client.list_nodes_detailed(session, clusters)
        for group in nodes.items:
            state.ensure_stats(group.cluster_id).node_count = len(group.items)
            state.add_inventory(group.cluster_id, filter(None, (_node_item(n) for n in group.items)))

        machine_deployments = await self.client.list_machine_deployment_groups(session, clusters)
        for group in machine_deployments.items:
            state.ensure_stats(group.cluster_id).machine_deployment_count = len(group.items)
            state.add_inventory(group.cluster_id, filter(None, (_machine_deployment_item(m) for m in group.items)))

        versions = await self.client.list_cluster_versions(session, clusters)
        for version in versions.items:
            if version.version:
                state.ensure_stats(version.cluster_id).version = version.version

        virtual_machines = await self.client.list_virtual_machine_groups(session, clusters)
        for group in virtual_machines.items:
            state.ensure_stats(group.cluster_id).virtual_machine_count = len(group.items)
            state.add_inventory(group.cluster_id, filter(None, (_virtual_machine_item(v) for v in group.items)))

        logger.info(f"Collected topology for {len(clusters)} downstream cluster(s)")
        return state

    async def collect_degraded(self, session: aiohttp.ClientSession, state: TopologyState, cluster_ids: Iterable[str]) -> None:
        """Fills node counts for clusters only known from BundleDeployment namespaces."""
        if self.client is None or not state.degraded:
            return

        for cluster_id in cluster_ids:
            if state.stats_for(cluster_id) is not None:
                continue

            candidates = [cluster_id]
            short_name = short_cluster_name(cluster_id)
            if short_name:
                candidates.append(short_name)

            for candidate in candidates:
                result = await self.client.list_cluster_nodes(session, candidate)
                if not result.ok:
                    continue
                state.register_cluster(cluster_id, candidate)
                state.ensure_stats(cluster_id).node_count = len(result.items)
                state.add_inventory(cluster_id, filter(None, (_rancher_node_item(n) for n in result.items)))
                break
