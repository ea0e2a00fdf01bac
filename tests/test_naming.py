import re
import unittest

from fleet_catalog.domain.naming import (
    FALLBACK_NAME,
    extract_cluster_id,
    extract_workspace_namespace,
    short_cluster_name,
    stringify_entity_ref,
    to_safe_name,
    to_stable_safe_name,
)

SAFE_NAME = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")


class TestToSafeName(unittest.TestCase):
    def test_lowercases_and_replaces_invalid_characters(self) -> None:
        self.assertEqual(to_safe_name("My_App.Frontend"), "my-app-frontend")

    def test_collapses_and_strips_hyphens(self) -> None:
        self.assertEqual(to_safe_name("--a---b--"), "a-b")

    def test_empty_input_falls_back_to_placeholder(self) -> None:
        self.assertEqual(to_safe_name(""), FALLBACK_NAME)
        self.assertEqual(to_safe_name("___"), FALLBACK_NAME)
        self.assertEqual(to_safe_name(None), FALLBACK_NAME)

    def test_truncation_strips_trailing_hyphen(self) -> None:
        raw = "a" * 62 + "-bcd"
        name = to_safe_name(raw)

        self.assertEqual(name, "a" * 62)
        self.assertLessEqual(len(name), 63)

    def test_outputs_are_always_catalog_safe(self) -> None:
        samples = ["Hello World!", "ÄÖÜ", "x" * 200, "-lead", "trail-", "UPPER_case-1.2.3", "a/b:c@d"]
        for raw in samples:
            with self.subTest(raw=raw):
                name = to_safe_name(raw)
                self.assertTrue(name == FALLBACK_NAME or SAFE_NAME.match(name))
                self.assertLessEqual(len(name), 63)


class TestToStableSafeName(unittest.TestCase):
    def test_short_names_are_unchanged(self) -> None:
        self.assertEqual(to_stable_safe_name("my-bundle-c1", 50), "my-bundle-c1")

    def test_long_names_get_hash_suffix_within_limit(self) -> None:
        raw = "my-very-long-bundle-deployment-name-for-a-very-long-cluster-id-abcdef"
        name = to_stable_safe_name(raw, 50)

        self.assertLessEqual(len(name), 50)
        self.assertRegex(name, SAFE_NAME)
        self.assertRegex(name, r"-[0-9a-f]{6}$")

    def test_shared_prefix_inputs_stay_distinct(self) -> None:
        prefix = "p" * 63
        first = to_stable_safe_name(prefix + "-one")
        second = to_stable_safe_name(prefix + "-two")

        self.assertNotEqual(first, second)
        self.assertLessEqual(len(first), 63)
        self.assertLessEqual(len(second), 63)

    def test_is_deterministic(self) -> None:
        raw = "z" * 100
        self.assertEqual(to_stable_safe_name(raw), to_stable_safe_name(raw))

    def test_empty_input_falls_back_to_placeholder(self) -> None:
        self.assertEqual(to_stable_safe_name("!!!"), FALLBACK_NAME)


class TestClusterIdentity(unittest.TestCase):
    def test_short_cluster_name_strips_generated_suffix(self) -> None:
        self.assertEqual(short_cluster_name("prod-east-0123456789ab"), "prod-east")

    def test_short_cluster_name_without_suffix(self) -> None:
        self.assertIsNone(short_cluster_name("prod-east"))
        self.assertIsNone(short_cluster_name("prod-east-0123456789AB"))

    def test_extracts_cluster_id_and_workspace(self) -> None:
        namespace = "cluster-fleet-default-c-abc12-0123456789ab"

        self.assertEqual(extract_cluster_id(namespace), "c-abc12-0123456789ab")
        self.assertEqual(extract_workspace_namespace(namespace), "fleet-default")

    def test_unrecognized_namespace(self) -> None:
        self.assertIsNone(extract_cluster_id("fleet-default"))
        self.assertIsNone(extract_workspace_namespace("kube-system"))

    def test_stringify_entity_ref(self) -> None:
        self.assertEqual(stringify_entity_ref("Resource", "fleet-default", "c1"), "resource:fleet-default/c1")
