import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

import aiohttp

from fleet_catalog.application.entity_mapper import (
    MapperContext,
    map_api_definition_to_api,
    map_bundle_deployment_to_resource,
    map_bundle_to_component,
    map_cluster_to_resource,
    map_fleet_cluster_to_domain,
    map_git_repo_to_system,
    map_inventory_item_to_resource,
)
from fleet_catalog.application.topology import TopologyCollector, TopologyState, WorkspaceRegistry
from fleet_catalog.domain.entities import (
    DeferredEntity,
    Entity,
    EntityBatch,
    EntityKind,
    EntityMutation,
    Resource,
)
from fleet_catalog.domain.exceptions import NotConnectedException
from fleet_catalog.domain.models import Bundle, GitRepo
from fleet_catalog.domain.naming import (
    extract_cluster_id,
    extract_workspace_namespace,
    stringify_entity_ref,
    to_entity_namespace,
    to_safe_name,
)
from fleet_catalog.infrastructure.acl import AnnotationFleetYamlFetcher
from fleet_catalog.infrastructure.catalog_store import EntityProviderConnection
from fleet_catalog.infrastructure.config import (
    DEFAULT_NAMESPACE,
    ManagementClusterConfig,
    NamespaceConfig,
    ProviderConfig,
    ScheduleConfig,
    read_provider_configs,
    read_topology_config,
)
from fleet_catalog.infrastructure.fleet_client import FleetClient, create_fleet_client, selector_to_string
from fleet_catalog.infrastructure.rancher_client import RancherClient

logger = logging.getLogger(__name__)

# Limit concurrent connections to the management cluster API servers
CONNECTOR_LIMIT = 10


def deduplicate_entities(entities: Iterable[Entity]) -> List[Entity]:
    """
    Drops entities whose (kind, namespace, name) was already seen; the first occurrence wins.

    Args:
        entities (Iterable[Entity]): Entities in fetch order.

    Returns:
        List[Entity]: The entities with duplicates removed, order preserved.
    """
    seen: Set[Tuple[str, str, str]] = set()
    unique: List[Entity] = []
    for entity in entities:
        if entity.key in seen:
            logger.debug(f"Dropping duplicate entity {entity.ref}")
            continue
        seen.add(entity.key)
        unique.append(entity)
    return unique


class FleetEntityProvider:
    """
    Reconciles Rancher Fleet resources into catalog entities.

    Lifecycle: construct, connect() once, then run() on every scheduled tick. Each run
    builds the complete entity set from scratch and emits it as one full mutation, or
    emits nothing if the pass fails.
    """

    def __init__(
            self,
            config: ProviderConfig,
            topology_client: Optional[RancherClient] = None,
            client_factory: Callable[[ManagementClusterConfig], FleetClient] = create_fleet_client,
            fleet_yaml_fetcher: Optional[AnnotationFleetYamlFetcher] = None,
            include_nodes: bool = True,
    ):
        self.provider_id = config.id
        self.clusters = config.clusters
        self.schedule = config.schedule
        self.concurrency = config.concurrency
        self.location_key = f"fleet:{config.id}"
        self.topology = TopologyCollector(topology_client)
        self.client_factory = client_factory
        self.fleet_yaml_fetcher = fleet_yaml_fetcher or AnnotationFleetYamlFetcher()
        self.include_nodes = include_nodes
        self.connection: Optional[EntityProviderConnection] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> List["FleetEntityProvider"]:
        """Builds one provider per entry under catalog.providers.fleet, sharing the topology client."""
        topology_config = read_topology_config(config)
        topology_client = RancherClient(topology_config) if topology_config else None
        include_nodes = topology_config.include_nodes if topology_config else False

        return [
            cls(provider_config, topology_client=topology_client, include_nodes=include_nodes)
            for provider_config in read_provider_configs(config)
        ]

    def get_provider_name(self) -> str:
        return self.location_key

    def get_schedule(self) -> ScheduleConfig:
        return self.schedule

    async def connect(self, connection: EntityProviderConnection) -> None:
        self.connection = connection
        logger.info(f"FleetEntityProvider[{self.location_key}] connected")

    async def run(self) -> None:
        """
        Runs one full sync pass.

        Raises:
            NotConnectedException: If connect() has not been called.
            Exception: Any pass-level failure, after logging it; no mutation is emitted.
        """
        if self.connection is None:
            raise NotConnectedException(self.location_key)

        started = time.monotonic()
        logger.info(f"FleetEntityProvider[{self.location_key}] starting sync of {len(self.clusters)} cluster(s)")

        try:
            async with aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=CONNECTOR_LIMIT),
            ) as session:
                topology = await self.topology.collect(session)
                semaphore = asyncio.Semaphore(self.concurrency)

                async def fetch_bounded(cluster: ManagementClusterConfig) -> EntityBatch:
                    async with semaphore:
                        return await self._fetch_cluster(session, cluster, topology)

                results = await asyncio.gather(
                    *(fetch_bounded(cluster) for cluster in self.clusters),
                    return_exceptions=True,
                )

            batch = EntityBatch()
            for result in results:
                if isinstance(result, BaseException):
                    raise result
                batch.extend(result)

            entities = deduplicate_entities(batch.flatten())
            await self.connection.apply_mutation(
                EntityMutation(
                    type="full",
                    entities=[DeferredEntity(entity=e, location_key=self.location_key) for e in entities],
                )
            )
        except Exception as e:
            logger.error(f"FleetEntityProvider[{self.location_key}] sync failed: {e}")
            raise

        elapsed = time.monotonic() - started
        logger.info(
            f"FleetEntityProvider[{self.location_key}] emitted {len(entities)} entities "
            f"({len(batch.domains)} domains, {len(batch.systems)} systems, {len(batch.components)} components, "
            f"{len(batch.resources)} resources, {len(batch.apis)} APIs) in {elapsed:.1f}s"
        )

    async def _fetch_cluster(
        self,
        session: aiohttp.ClientSession,
        cluster: ManagementClusterConfig,
        topology: TopologyState,
    ) -> EntityBatch:
        """Fetches and maps the full entity subtree of one management cluster."""
        client = self.client_factory(cluster)
        # Names learned from this cluster's Fleet Cluster resources stay local to it
        topology = topology.overlay()
        workspaces = WorkspaceRegistry()
        context = MapperContext(
            cluster=cluster,
            location_key=self.location_key,
            auto_techdocs_ref=cluster.auto_techdocs_ref,
        )

        batch = EntityBatch()
        batch.domains.append(map_fleet_cluster_to_domain(context))

        for namespace in cluster.namespaces:
            batch.extend(await self._fetch_namespace(session, client, context, namespace, topology, workspaces))

        if topology.degraded:
            await self.topology.collect_degraded(session, topology, workspaces.cluster_ids())

        batch.resources.extend(self._map_downstream_clusters(context, topology, workspaces))
        logger.info(f"[{cluster.name}] Mapped {len(batch.flatten())} entities")
        return batch

    async def _fetch_namespace(
        self,
        session: aiohttp.ClientSession,
        client: FleetClient,
        context: MapperContext,
        namespace: NamespaceConfig,
        topology: TopologyState,
        workspaces: WorkspaceRegistry,
    ) -> EntityBatch:
        batch = EntityBatch()
        cluster = context.cluster

        fleet_clusters = await client.list_clusters(session, namespace.name)
        for fleet_cluster in fleet_clusters.items:
            if fleet_cluster.metadata.name:
                topology.register_fleet_cluster(fleet_cluster)
                workspaces.record(fleet_cluster.metadata.name, namespace.name)

        # A global GitRepo selector takes precedence over the per-namespace one
        selector = selector_to_string(cluster.git_repo_selector or namespace.label_selector)
        git_repos = await client.list_git_repos(session, namespace.name, selector)
        logger.debug(f"[{cluster.name}] Found {len(git_repos.items)} GitRepos in {namespace.name}")

        for git_repo in git_repos.items:
            batch.extend(await self._process_git_repo(session, client, context, git_repo, topology, workspaces))

        return batch

    async def _process_git_repo(
        self,
        session: aiohttp.ClientSession,
        client: FleetClient,
        context: MapperContext,
        git_repo: GitRepo,
        topology: TopologyState,
        workspaces: WorkspaceRegistry,
    ) -> EntityBatch:
        batch = EntityBatch()
        cluster = context.cluster

        fleet_yaml = await self.fleet_yaml_fetcher.fetch(git_repo) if cluster.fetch_fleet_yaml else None
        repo_context = replace(context, fleet_yaml=fleet_yaml)

        system = map_git_repo_to_system(git_repo, repo_context)
        batch.systems.append(system)

        if cluster.generate_apis and fleet_yaml and fleet_yaml.backstage:
            for api_def in fleet_yaml.backstage.provides_apis:
                batch.apis.append(map_api_definition_to_api(api_def, git_repo.metadata.name or "", repo_context))

        if not cluster.include_bundles or not git_repo.metadata.name:
            return batch

        bundles = await client.list_bundles_for_git_repo(
            session, git_repo.metadata.namespace or DEFAULT_NAMESPACE, git_repo.metadata.name
        )
        logger.debug(f"[{cluster.name}] Found {len(bundles.items)} Bundles for GitRepo {git_repo.metadata.name}")

        for bundle in bundles.items:
            batch.extend(await self._process_bundle(session, client, repo_context, bundle, system.ref, topology, workspaces))

        return batch

    async def _process_bundle(
        self,
        session: aiohttp.ClientSession,
        client: FleetClient,
        context: MapperContext,
        bundle: Bundle,
        system_ref: str,
        topology: TopologyState,
        workspaces: WorkspaceRegistry,
    ) -> EntityBatch:
        batch = EntityBatch()

        if context.cluster.include_bundle_deployments and bundle.metadata.name:
            deployments = await client.list_bundle_deployments_for_bundle(
                session, bundle.metadata.name, bundle.metadata.namespace
            )
            for deployment in deployments.items:
                namespace = deployment.metadata.namespace or ""
                cluster_id = extract_cluster_id(namespace)
                if not cluster_id:
                    logger.debug(f"Skipping BundleDeployment {deployment.metadata.name}: unrecognized namespace {namespace}")
                    continue

                workspaces.record(cluster_id, extract_workspace_namespace(namespace))
                batch.resources.append(
                    map_bundle_deployment_to_resource(
                        deployment,
                        cluster_id,
                        context,
                        system_ref=system_ref,
                        cluster_name=topology.friendly_name(cluster_id),
                    )
                )

        component = map_bundle_to_component(bundle, context, deployment_refs=[r.ref for r in batch.resources])
        batch.components.append(component)
        return batch

    def _map_downstream_clusters(
        self,
        context: MapperContext,
        topology: TopologyState,
        workspaces: WorkspaceRegistry,
    ) -> List[Resource]:
        resources: List[Resource] = []
        for cluster_id in workspaces.cluster_ids():
            friendly_name = topology.friendly_name(cluster_id)
            stats = topology.stats_for(cluster_id)
            dashboard_url = topology.dashboard_url(cluster_id)

            for workspace in workspaces.workspaces(cluster_id):
                resources.append(
                    map_cluster_to_resource(cluster_id, friendly_name, workspace, context, stats, dashboard_url)
                )

            if not self.include_nodes:
                continue

            primary = workspaces.primary_workspace(cluster_id)
            cluster_ref = stringify_entity_ref(
                EntityKind.RESOURCE.value, to_entity_namespace(primary), to_safe_name(friendly_name or cluster_id)
            )
            for item in topology.inventory_for(cluster_id):
                resources.append(
                    map_inventory_item_to_resource(item, cluster_id, friendly_name, cluster_ref, primary, context)
                )

        return resources
