import asyncio
import base64
import binascii
import logging
import ssl
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

import aiohttp

from fleet_catalog.domain.exceptions import ConfigurationException, UpstreamRequestException
from fleet_catalog.domain.models import (
    Bundle,
    BundleDeployment,
    FleetCluster,
    FleetClusterGroup,
    FleetModel,
    GitRepo,
    LabelSelector,
)
from fleet_catalog.domain.naming import extract_cluster_id
from fleet_catalog.domain.results import FetchResult
from fleet_catalog.infrastructure.acl import FleetTranslator
from fleet_catalog.infrastructure.config import ManagementClusterConfig

logger = logging.getLogger(__name__)

FLEET_API_GROUP = "fleet.cattle.io"
FLEET_API_VERSION = "v1alpha1"
PAGE_LIMIT = 500
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=60, connect=10)

LABEL_REPO_NAME = "fleet.cattle.io/repo-name"
LABEL_BUNDLE_NAME = "fleet.cattle.io/bundle-name"
LABEL_BUNDLE_NAMESPACE = "fleet.cattle.io/bundle-namespace"

M = TypeVar("M", bound=FleetModel)


def build_ssl_context(skip_tls_verify: bool, ca_data: Optional[str] = None) -> Union[ssl.SSLContext, bool]:
    """
    Builds the `ssl` argument for aiohttp requests.
    ca_data may be base64-encoded PEM (kubeconfig style) or plain PEM.
    """
    if skip_tls_verify:
        return False
    if not ca_data:
        return True

    try:
        pem = base64.b64decode(ca_data, validate=True).decode("ascii")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        pem = ca_data

    try:
        return ssl.create_default_context(cadata=pem)
    except (ssl.SSLError, ValueError) as e:
        raise ConfigurationException(f"Invalid CA data: {e}") from e


def selector_to_string(selector: Optional[LabelSelector]) -> Optional[str]:
    """Renders a label selector in the Kubernetes `labelSelector` query syntax."""
    if selector is None:
        return None

    parts: List[str] = [f"{key}={value}" for key, value in selector.match_labels.items()]

    for expr in selector.match_expressions:
        values = ",".join(expr.values)
        if expr.operator == "In":
            parts.append(f"{expr.key} in ({values})")
        elif expr.operator == "NotIn":
            parts.append(f"{expr.key} notin ({values})")
        elif expr.operator == "Exists":
            parts.append(expr.key)
        elif expr.operator == "DoesNotExist":
            parts.append(f"!{expr.key}")

    return ",".join(parts) if parts else None


class FleetClient:
    """
    Read-only client for the Fleet custom resources of one management cluster.
    Every call is best-effort: failures are logged and surface as an empty FetchResult
    (or None for single-object reads) instead of an exception.
    """

    def __init__(self, cluster: ManagementClusterConfig):
        self.cluster_name = cluster.name
        self.base_url = cluster.url.rstrip("/")
        self.headers = {
            "Accept": "application/json",
            "User-Agent": "fleet-catalog",
        }
        if cluster.token:
            self.headers["Authorization"] = f"Bearer {cluster.token}"
        self.ssl = build_ssl_context(cluster.skip_tls_verify, cluster.ca_data)

    def _resource_url(self, plural: str, namespace: Optional[str] = None, name: Optional[str] = None) -> str:
        url = f"{self.base_url}/apis/{FLEET_API_GROUP}/{FLEET_API_VERSION}"
        if namespace:
            url += f"/namespaces/{namespace}"
        url += f"/{plural}"
        if name:
            url += f"/{name}"
        return url

    async def _get_json(
        self,
        session: aiohttp.ClientSession,
        url: str,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        async with session.get(url, headers=self.headers, params=params, ssl=self.ssl, timeout=REQUEST_TIMEOUT) as response:
            if response.status >= 400:
                body = await response.text()
                raise UpstreamRequestException(url, response.status, body)
            return await response.json()

    async def _list(
        self,
        session: aiohttp.ClientSession,
        plural: str,
        model: Type[M],
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> FetchResult[M]:
        url = self._resource_url(plural, namespace)
        raw_items: List[Dict[str, Any]] = []
        continue_token = None

        try:
            while True:
                params = {"limit": str(PAGE_LIMIT)}
                if label_selector:
                    params["labelSelector"] = label_selector
                if continue_token:
                    params["continue"] = continue_token

                data = await self._get_json(session, url, params)
                raw_items.extend(data.get("items") or [])

                continue_token = (data.get("metadata") or {}).get("continue")
                if not continue_token:
                    break
        except (aiohttp.ClientError, asyncio.TimeoutError, UpstreamRequestException, ValueError) as e:
            logger.warning(
                f"[FleetClient:{self.cluster_name}] Failed to list {plural} in "
                f"{namespace or 'all namespaces'}: {e}"
            )
            return FetchResult.failure(str(e))

        return FetchResult.success(FleetTranslator.to_domain_list(raw_items, model))

    async def _get(
        self,
        session: aiohttp.ClientSession,
        plural: str,
        model: Type[M],
        namespace: str,
        name: str,
    ) -> Optional[M]:
        url = self._resource_url(plural, namespace, name)
        try:
            data = await self._get_json(session, url)
            return FleetTranslator.to_domain(data, model)
        except (aiohttp.ClientError, asyncio.TimeoutError, UpstreamRequestException, ValueError) as e:
            logger.warning(f"[FleetClient:{self.cluster_name}] Failed to get {plural} {namespace}/{name}: {e}")
            return None

    # GitRepos

    async def list_git_repos(self, session, namespace=None, label_selector=None) -> FetchResult[GitRepo]:
        return await self._list(session, "gitrepos", GitRepo, namespace, label_selector)

    async def get_git_repo(self, session, namespace: str, name: str) -> Optional[GitRepo]:
        return await self._get(session, "gitrepos", GitRepo, namespace, name)

    # Bundles

    async def list_bundles(self, session, namespace=None, label_selector=None) -> FetchResult[Bundle]:
        return await self._list(session, "bundles", Bundle, namespace, label_selector)

    async def get_bundle(self, session, namespace: str, name: str) -> Optional[Bundle]:
        return await self._get(session, "bundles", Bundle, namespace, name)

    async def list_bundles_for_git_repo(self, session, namespace: str, git_repo_name: str) -> FetchResult[Bundle]:
        return await self.list_bundles(session, namespace, f"{LABEL_REPO_NAME}={git_repo_name}")

    # BundleDeployments

    async def list_bundle_deployments(self, session, namespace=None, label_selector=None) -> FetchResult[BundleDeployment]:
        return await self._list(session, "bundledeployments", BundleDeployment, namespace, label_selector)

    async def get_bundle_deployment(self, session, namespace: str, name: str) -> Optional[BundleDeployment]:
        return await self._get(session, "bundledeployments", BundleDeployment, namespace, name)

    async def list_bundle_deployments_for_bundle(
        self,
        session,
        bundle_name: str,
        bundle_namespace: Optional[str] = None,
    ) -> FetchResult[BundleDeployment]:
        # BundleDeployments live in per-cluster namespaces (cluster-fleet-<ws>-<id>), so list cluster-wide
        selector = f"{LABEL_BUNDLE_NAME}={bundle_name}"
        if bundle_namespace:
            selector += f",{LABEL_BUNDLE_NAMESPACE}={bundle_namespace}"
        return await self.list_bundle_deployments(session, label_selector=selector)

    async def get_target_cluster_ids(self, session, bundle_name: str) -> List[str]:
        result = await self.list_bundle_deployments_for_bundle(session, bundle_name)
        cluster_ids: List[str] = []
        for deployment in result.items:
            cluster_id = extract_cluster_id(deployment.metadata.namespace or "")
            if cluster_id and cluster_id not in cluster_ids:
                cluster_ids.append(cluster_id)
        return cluster_ids

    async def get_bundle_deployment_status_by_cluster(self, session, bundle_name: str) -> Dict[str, BundleDeployment]:
        result = await self.list_bundle_deployments_for_bundle(session, bundle_name)
        by_cluster: Dict[str, BundleDeployment] = {}
        for deployment in result.items:
            cluster_id = extract_cluster_id(deployment.metadata.namespace or "")
            if cluster_id:
                by_cluster[cluster_id] = deployment
        return by_cluster

    # Clusters

    async def list_clusters(self, session, namespace=None, label_selector=None) -> FetchResult[FleetCluster]:
        return await self._list(session, "clusters", FleetCluster, namespace, label_selector)

    async def get_cluster(self, session, namespace: str, name: str) -> Optional[FleetCluster]:
        return await self._get(session, "clusters", FleetCluster, namespace, name)

    async def list_cluster_groups(self, session, namespace=None, label_selector=None) -> FetchResult[FleetClusterGroup]:
        return await self._list(session, "clustergroups", FleetClusterGroup, namespace, label_selector)


def create_fleet_client(cluster: ManagementClusterConfig) -> FleetClient:
    return FleetClient(cluster)
