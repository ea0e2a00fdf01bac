import unittest
from unittest.mock import AsyncMock, MagicMock

import aiohttp

from fleet_catalog.domain.models import RancherCluster
from fleet_catalog.infrastructure.config import TopologyConfig
from fleet_catalog.infrastructure.rancher_client import RancherClient


def _response(status=200, payload=None):
    response = AsyncMock()
    response.status = status
    response.json = AsyncMock(return_value=payload or {})
    response.text = AsyncMock(return_value="error")
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=False)
    return response


def _client(include_local=True) -> RancherClient:
    return RancherClient(TopologyConfig.model_validate({
        "rancherUrl": "https://rancher.example.com/",
        "rancherToken": "token-xyz",
        "includeLocal": include_local,
    }))


class TestRancherClient(unittest.TestCase):
    def test_headers_and_dashboard_url(self) -> None:
        client = _client()

        self.assertEqual(client.headers["Authorization"], "Bearer token-xyz")
        self.assertEqual(
            client.cluster_dashboard_url("c-abc"),
            "https://rancher.example.com/dashboard/c/c-abc/explorer",
        )


class TestRancherClientRequests(unittest.IsolatedAsyncioTestCase):
    async def test_list_cluster_details_hides_local_when_excluded(self) -> None:
        session = AsyncMock()
        session.get = MagicMock(return_value=_response(payload={"data": [{"id": "local"}, {"id": "c-abc", "name": "prod"}]}))

        result = await _client(include_local=False).list_cluster_details(session)

        self.assertTrue(result.ok)
        self.assertEqual([c.id for c in result.items], ["c-abc"])
        self.assertEqual(session.get.call_args.args[0], "https://rancher.example.com/v3/clusters")

    async def test_list_cluster_details_failure(self) -> None:
        session = AsyncMock()
        session.get = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))

        result = await _client().list_cluster_details(session)

        self.assertFalse(result.ok)
        self.assertEqual(result.items, [])

    async def test_per_cluster_failures_only_skip_that_cluster(self) -> None:
        clusters = [RancherCluster(id="c-1"), RancherCluster(id="c-2")]
        session = AsyncMock()
        session.get = MagicMock(side_effect=[
            _response(status=503),
            _response(payload={"items": [{"metadata": {"name": "node-a"}}]}),
        ])

        result = await _client().list_nodes_detailed(session, clusters)

        self.assertTrue(result.ok)
        self.assertEqual([g.cluster_id for g in result.items], ["c-2"])
        self.assertEqual(result.items[0].items[0].metadata.name, "node-a")

    async def test_virtual_machines_only_queried_on_harvester(self) -> None:
        clusters = [RancherCluster(id="c-1"), RancherCluster(id="c-hv", provider="harvester")]
        session = AsyncMock()
        session.get = MagicMock(return_value=_response(payload={"items": [{"metadata": {"name": "vm-1", "namespace": "default"}}]}))

        result = await _client().list_virtual_machine_groups(session, clusters)

        self.assertEqual([g.cluster_id for g in result.items], ["c-hv"])
        self.assertIn("/k8s/clusters/c-hv/apis/kubevirt.io/v1/virtualmachines", session.get.call_args.args[0])

    async def test_cluster_versions(self) -> None:
        session = AsyncMock()
        session.get = MagicMock(return_value=_response(payload={"gitVersion": "v1.28.3+rke2r1"}))

        result = await _client().list_cluster_versions(session, [RancherCluster(id="c-1", name="prod")])

        self.assertEqual(result.items[0].version, "v1.28.3+rke2r1")
        self.assertEqual(result.items[0].cluster_name, "prod")

    async def test_cluster_summaries(self) -> None:
        session = AsyncMock()
        session.get = MagicMock(return_value=_response(payload={"data": [
            {"id": "local", "name": "local"},
            {"id": "c-abc", "name": "prod"},
        ]}))

        summaries = await _client(include_local=False).list_cluster_summaries(session)

        self.assertEqual(summaries, [{"id": "c-abc", "name": "prod"}])

    async def test_cluster_summaries_empty_on_failure(self) -> None:
        session = AsyncMock()
        session.get = MagicMock(return_value=_response(status=401))

        self.assertEqual(await _client().list_cluster_summaries(session), [])
