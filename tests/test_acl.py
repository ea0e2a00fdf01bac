import json
import unittest

from fleet_catalog.domain.exceptions import DescriptorFileException
from fleet_catalog.domain.models import BundleDeployment, GitRepo, RancherCluster
from fleet_catalog.infrastructure.acl import ANNOTATION_FLEET_YAML, AnnotationFleetYamlFetcher, FleetTranslator


class TestFleetTranslator(unittest.TestCase):
    def test_to_domain_maps_camel_case_fields(self) -> None:
        raw = {
            "metadata": {"name": "web-c1", "namespace": "cluster-fleet-default-c1"},
            "spec": {"deploymentID": "s-123"},
            "status": {"appliedDeploymentID": "s-123", "ready": True, "display": {"state": "Ready"}},
        }

        deployment = FleetTranslator.to_domain(raw, BundleDeployment)

        self.assertEqual(deployment.spec.deployment_id, "s-123")
        self.assertEqual(deployment.status.applied_deployment_id, "s-123")
        self.assertTrue(deployment.status.ready)

    def test_missing_fields_default_safely(self) -> None:
        repo = FleetTranslator.to_domain({}, GitRepo)

        self.assertIsNone(repo.metadata.name)
        self.assertEqual(repo.metadata.labels, {})
        self.assertEqual(repo.status.resources, [])

    def test_non_object_payload_raises(self) -> None:
        with self.assertRaises(ValueError):
            FleetTranslator.to_domain(["not", "a", "dict"], GitRepo)

    def test_to_domain_list_skips_invalid_items(self) -> None:
        clusters = FleetTranslator.to_domain_list([{"id": "c-1"}, {"name": "no-id"}], RancherCluster)

        self.assertEqual([c.id for c in clusters], ["c-1"])

    def test_to_fleet_yaml_rejects_bad_json(self) -> None:
        with self.assertRaises(DescriptorFileException):
            FleetTranslator.to_fleet_yaml("{not json")


class TestAnnotationFleetYamlFetcher(unittest.IsolatedAsyncioTestCase):
    def _repo(self, annotation=None) -> GitRepo:
        annotations = {ANNOTATION_FLEET_YAML: annotation} if annotation is not None else {}
        return GitRepo.model_validate({"metadata": {"name": "my-app", "annotations": annotations}})

    async def test_parses_annotation_payload(self) -> None:
        payload = json.dumps({
            "defaultNamespace": "web",
            "backstage": {"owner": "team-platform", "providesApis": [{"name": "orders", "definitionUrl": "https://x/y"}]},
        })

        fleet_yaml = await AnnotationFleetYamlFetcher().fetch(self._repo(payload))

        self.assertEqual(fleet_yaml.default_namespace, "web")
        self.assertEqual(fleet_yaml.backstage.owner, "team-platform")
        self.assertEqual(fleet_yaml.backstage.provides_apis[0].definition_url, "https://x/y")

    async def test_missing_annotation_is_absent(self) -> None:
        self.assertIsNone(await AnnotationFleetYamlFetcher().fetch(self._repo()))

    async def test_malformed_annotation_is_logged_and_absent(self) -> None:
        with self.assertLogs("fleet_catalog.infrastructure.acl", level="WARNING"):
            fleet_yaml = await AnnotationFleetYamlFetcher().fetch(self._repo("{broken"))

        self.assertIsNone(fleet_yaml)
