import asyncio
import logging
import ssl
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

import aiohttp

from fleet_catalog.domain.exceptions import ConfigurationException, UpstreamRequestException
from fleet_catalog.domain.models import (
    ClusterVersion,
    FleetModel,
    KubeNode,
    MachineDeployment,
    PerClusterItems,
    RancherCluster,
    RancherNode,
    VirtualMachine,
)
from fleet_catalog.domain.results import FetchResult
from fleet_catalog.infrastructure.acl import FleetTranslator
from fleet_catalog.infrastructure.config import TopologyConfig
from fleet_catalog.infrastructure.fleet_client import build_ssl_context

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30, connect=10)
LIST_LIMIT = 500

M = TypeVar("M", bound=FleetModel)

_FETCH_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, UpstreamRequestException, ValueError)


class RancherClient:
    """
    Client for the Rancher management API and the per-cluster proxy (/k8s/clusters/<id>).
    Used to discover downstream clusters and the inventory that enriches them.
    """

    def __init__(self, config: TopologyConfig):
        self.rancher_url = config.rancher_url
        self.include_local = config.include_local
        self.skip_tls_verify = config.skip_tls_verify
        self.headers = {
            "Authorization": f"Bearer {config.rancher_token}",
            "Accept": "application/json",
            "User-Agent": "fleet-catalog",
        }
        self.ssl = build_ssl_context(config.skip_tls_verify)

    def cluster_dashboard_url(self, cluster_id: str) -> str:
        return f"{self.rancher_url}/dashboard/c/{cluster_id}/explorer"

    def _ssl_for(self, cluster: RancherCluster) -> Union[ssl.SSLContext, bool]:
        try:
            return build_ssl_context(self.skip_tls_verify, cluster.ca_cert)
        except ConfigurationException as e:
            logger.debug(f"Ignoring unusable CA certificate for cluster {cluster.id}: {e}")
            return self.ssl

    async def _get_json(self, session: aiohttp.ClientSession, url: str, ssl_context=None) -> Dict[str, Any]:
        ssl_arg = self.ssl if ssl_context is None else ssl_context
        async with session.get(url, headers=self.headers, ssl=ssl_arg, timeout=REQUEST_TIMEOUT) as response:
            if response.status >= 400:
                body = await response.text()
                raise UpstreamRequestException(url, response.status, body)
            return await response.json()

    def _visible(self, clusters: List[RancherCluster]) -> List[RancherCluster]:
        return [c for c in clusters if self.include_local or c.id != "local"]

    async def list_cluster_details(self, session: aiohttp.ClientSession) -> FetchResult[RancherCluster]:
        url = f"{self.rancher_url}/v3/clusters"
        logger.debug(f"Fetching Rancher clusters from {url}")
        try:
            data = await self._get_json(session, url)
        except _FETCH_ERRORS as e:
            logger.warning(f"Failed to fetch Rancher clusters: {e}")
            return FetchResult.failure(str(e))

        clusters = FleetTranslator.to_domain_list(data.get("data") or [], RancherCluster)
        logger.debug(f"Received {len(clusters)} Rancher clusters")
        return FetchResult.success(self._visible(clusters))

    async def list_cluster_summaries(self, session: aiohttp.ClientSession) -> List[Dict[str, Optional[str]]]:
        result = await self.list_cluster_details(session)
        return [{"id": c.id, "name": c.name} for c in result.items]

    async def _per_cluster(
        self,
        session: aiohttp.ClientSession,
        clusters: Optional[List[RancherCluster]],
        path: str,
        model: Type[M],
        label: str,
        keep_empty: bool = True,
    ) -> FetchResult[PerClusterItems[M]]:
        if clusters is None:
            details = await self.list_cluster_details(session)
            if not details.ok:
                return FetchResult.failure(details.error)
            clusters = details.items

        groups: List[PerClusterItems[M]] = []
        for cluster in self._visible(clusters):
            url = f"{self.rancher_url}/k8s/clusters/{cluster.id}{path}"
            try:
                data = await self._get_json(session, url, self._ssl_for(cluster))
            except _FETCH_ERRORS as e:
                logger.debug(f"Failed to fetch {label} for cluster {cluster.id}: {e}")
                continue

            items = FleetTranslator.to_domain_list(data.get("items") or [], model)
            if items or keep_empty:
                groups.append(PerClusterItems[model](cluster_id=cluster.id, cluster_name=cluster.name, items=items))

        return FetchResult.success(groups)

    async def list_nodes_detailed(self, session, clusters=None) -> FetchResult[PerClusterItems[KubeNode]]:
        return await self._per_cluster(session, clusters, f"/api/v1/nodes?limit={LIST_LIMIT}", KubeNode, "nodes")

    async def list_machine_deployment_groups(self, session, clusters=None) -> FetchResult[PerClusterItems[MachineDeployment]]:
        # Only clusters running Cluster API have MachineDeployments
        return await self._per_cluster(
            session,
            clusters,
            f"/apis/cluster.x-k8s.io/v1beta1/machinedeployments?limit={LIST_LIMIT}",
            MachineDeployment,
            "MachineDeployments",
            keep_empty=False,
        )

    async def list_virtual_machine_groups(self, session, clusters=None) -> FetchResult[PerClusterItems[VirtualMachine]]:
        if clusters is None:
            details = await self.list_cluster_details(session)
            if not details.ok:
                return FetchResult.failure(details.error)
            clusters = details.items

        harvester_clusters = [c for c in clusters if c.is_harvester]
        return await self._per_cluster(
            session,
            harvester_clusters,
            f"/apis/kubevirt.io/v1/virtualmachines?limit={LIST_LIMIT}",
            VirtualMachine,
            "Harvester VMs",
            keep_empty=False,
        )

    async def list_cluster_versions(self, session, clusters=None) -> FetchResult[ClusterVersion]:
        if clusters is None:
            details = await self.list_cluster_details(session)
            if not details.ok:
                return FetchResult.failure(details.error)
            clusters = details.items

        versions: List[ClusterVersion] = []
        for cluster in self._visible(clusters):
            url = f"{self.rancher_url}/k8s/clusters/{cluster.id}/version"
            try:
                data = await self._get_json(session, url, self._ssl_for(cluster))
            except _FETCH_ERRORS as e:
                logger.debug(f"Failed to fetch version for cluster {cluster.id}: {e}")
                continue
            versions.append(ClusterVersion(cluster_id=cluster.id, cluster_name=cluster.name, version=data.get("gitVersion")))

        return FetchResult.success(versions)

    async def list_cluster_nodes(self, session: aiohttp.ClientSession, cluster_id: str) -> FetchResult[RancherNode]:
        """Management-API node listing; the fallback when the detailed inventory is unavailable."""
        url = f"{self.rancher_url}/v3/clusters/{cluster_id}/nodes"
        try:
            data = await self._get_json(session, url)
        except _FETCH_ERRORS as e:
            logger.debug(f"Failed to fetch nodes for cluster {cluster_id}: {e}")
            return FetchResult.failure(str(e))
        return FetchResult.success(FleetTranslator.to_domain_list(data.get("data") or [], RancherNode))
