import os
import tempfile
import unittest
from unittest.mock import patch

from fleet_catalog.domain.exceptions import ConfigurationException
from fleet_catalog.infrastructure.config import load_config_file, read_provider_configs, read_topology_config


class TestReadProviderConfigs(unittest.TestCase):
    def test_missing_block_means_no_providers(self) -> None:
        self.assertEqual(read_provider_configs({}), [])
        self.assertEqual(read_provider_configs({"catalog": {"providers": {}}}), [])

    def test_single_provider_legacy_form(self) -> None:
        config = {"catalog": {"providers": {"fleet": {
            "clusterName": "rancher",
            "apiServer": "https://rancher.example.com",
            "namespaces": ["fleet-default", {"name": "fleet-team", "selector": {"matchLabels": {"team": "a"}}}],
            "includeBundleDeployments": True,
            "schedule": {"frequency": {"minutes": 30}, "initialDelay": {"seconds": 45}},
        }}}}

        [provider] = read_provider_configs(config)

        self.assertEqual(provider.id, "default")
        cluster = provider.clusters[0]
        self.assertEqual(cluster.name, "rancher")
        self.assertEqual(cluster.url, "https://rancher.example.com")
        self.assertEqual([ns.name for ns in cluster.namespaces], ["fleet-default", "fleet-team"])
        self.assertEqual(cluster.namespaces[1].label_selector.match_labels, {"team": "a"})
        self.assertTrue(cluster.include_bundle_deployments)
        self.assertEqual(provider.schedule.frequency_minutes, 30)
        self.assertEqual(provider.schedule.timeout_minutes, 5)
        self.assertEqual(provider.schedule.initial_delay.total_seconds(), 45)
        self.assertEqual(provider.concurrency, 3)

    def test_cluster_defaults(self) -> None:
        [provider] = read_provider_configs({"catalog": {"providers": {"fleet": {"clusters": [{}]}}}})
        cluster = provider.clusters[0]

        self.assertEqual(cluster.name, "local")
        self.assertEqual(cluster.url, "https://kubernetes.default.svc")
        self.assertEqual([ns.name for ns in cluster.namespaces], ["fleet-default"])
        self.assertTrue(cluster.include_bundles)
        self.assertFalse(cluster.include_bundle_deployments)
        self.assertFalse(cluster.generate_apis)
        self.assertTrue(cluster.auto_techdocs_ref)

    def test_invalid_provider_raises(self) -> None:
        config = {"catalog": {"providers": {"fleet": {"clusters": [{}], "concurrency": 0}}}}

        with self.assertRaises(ConfigurationException):
            read_provider_configs(config)


class TestReadTopologyConfig(unittest.TestCase):
    def test_disabled_or_incomplete_locator(self) -> None:
        self.assertIsNone(read_topology_config({}))
        disabled = {"catalog": {"providers": {"fleetK8sLocator": {"enabled": False, "rancherUrl": "u", "rancherToken": "t"}}}}
        self.assertIsNone(read_topology_config(disabled))

    def test_scalar_locator_raises(self) -> None:
        with self.assertRaises(ConfigurationException):
            read_topology_config({"catalog": {"providers": {"fleetK8sLocator": True}}})

    def test_locator_defaults(self) -> None:
        config = {"catalog": {"providers": {"fleetK8sLocator": {
            "rancherUrl": "https://rancher.example.com/",
            "rancherToken": "token",
        }}}}

        topology = read_topology_config(config)

        self.assertEqual(topology.rancher_url, "https://rancher.example.com")
        self.assertFalse(topology.skip_tls_verify)
        self.assertTrue(topology.include_local)
        self.assertTrue(topology.include_nodes)


class TestLoadConfigFile(unittest.TestCase):
    def test_expands_environment_variables(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "app-config.yaml")
            with open(path, "w", encoding="utf-8") as handle:
                handle.write("catalog:\n  providers:\n    fleet:\n      token: ${FLEET_TOKEN}\n")

            with patch.dict(os.environ, {"FLEET_TOKEN": "abc"}):
                config = load_config_file(path)

        self.assertEqual(config["catalog"]["providers"]["fleet"]["token"], "abc")

    def test_missing_file_raises(self) -> None:
        with self.assertRaises(ConfigurationException):
            load_config_file("/nonexistent/app-config.yaml")
