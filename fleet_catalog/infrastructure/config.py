import logging
import os
from datetime import timedelta
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from fleet_catalog.domain.exceptions import ConfigurationException
from fleet_catalog.domain.models import LabelSelector

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "fleet-default"
DEFAULT_CONCURRENCY = 3


class ConfigModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )


class NamespaceConfig(ConfigModel):
    name: str
    label_selector: Optional[LabelSelector] = Field(default=None, alias="selector")


class ManagementClusterConfig(ConfigModel):
    """One Fleet management cluster (a Rancher `local` cluster) to scan."""
    name: str = "local"
    url: str = "https://kubernetes.default.svc"
    token: Optional[str] = None
    ca_data: Optional[str] = None
    skip_tls_verify: bool = Field(default=False, alias="skipTLSVerify")
    namespaces: List[NamespaceConfig] = Field(
        default_factory=lambda: [NamespaceConfig(name=DEFAULT_NAMESPACE)]
    )
    include_bundles: bool = True
    include_bundle_deployments: bool = False
    generate_apis: bool = False
    fetch_fleet_yaml: bool = False
    auto_techdocs_ref: bool = True
    git_repo_selector: Optional[LabelSelector] = None

    @field_validator("namespaces", mode="before")
    @classmethod
    def _accept_plain_names(cls, value: Any) -> Any:
        if value is None:
            return [{"name": DEFAULT_NAMESPACE}]
        if isinstance(value, list):
            return [{"name": item} if isinstance(item, str) else item for item in value]
        return value


class ScheduleConfig(ConfigModel):
    frequency_minutes: float = 10
    timeout_minutes: float = 5
    initial_delay_seconds: float = 15

    @property
    def frequency(self) -> timedelta:
        return timedelta(minutes=self.frequency_minutes)

    @property
    def timeout(self) -> timedelta:
        return timedelta(minutes=self.timeout_minutes)

    @property
    def initial_delay(self) -> timedelta:
        return timedelta(seconds=self.initial_delay_seconds)


class ProviderConfig(ConfigModel):
    id: str
    clusters: List[ManagementClusterConfig]
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    concurrency: int = Field(default=DEFAULT_CONCURRENCY, ge=1)


class TopologyConfig(ConfigModel):
    """Rancher API access used to discover downstream clusters and their inventory."""
    rancher_url: str
    rancher_token: str
    skip_tls_verify: bool = Field(default=False, alias="skipTLSVerify")
    include_local: bool = True
    include_nodes: bool = True

    @field_validator("rancher_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


def load_config_file(path: str) -> Dict[str, Any]:
    """
    Reads a YAML app-config file, expanding ${VAR} references from the environment.

    Args:
        path (str): Path to the YAML file.

    Returns:
        Dict[str, Any]: The parsed configuration tree (empty if the file is empty).
    """
    try:
        with open(path, encoding="utf-8") as handle:
            raw = os.path.expandvars(handle.read())
        return yaml.safe_load(raw) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationException(f"Unable to read configuration from {path}: {e}") from e


def _get_path(config: Dict[str, Any], *keys: str) -> Any:
    node: Any = config
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _normalize_cluster(raw: Dict[str, Any]) -> Dict[str, Any]:
    # Older configs used clusterName / apiServer / clusterUrl
    cluster = dict(raw)
    if "name" not in cluster and "clusterName" in cluster:
        cluster["name"] = cluster["clusterName"]
    if "url" not in cluster:
        for legacy in ("apiServer", "clusterUrl"):
            if legacy in cluster:
                cluster["url"] = cluster[legacy]
                break
    return cluster


def _normalize_schedule(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    raw = raw or {}
    schedule: Dict[str, Any] = {}
    if _get_path(raw, "frequency", "minutes") is not None:
        schedule["frequency_minutes"] = raw["frequency"]["minutes"]
    if _get_path(raw, "timeout", "minutes") is not None:
        schedule["timeout_minutes"] = raw["timeout"]["minutes"]
    if _get_path(raw, "initialDelay", "seconds") is not None:
        schedule["initial_delay_seconds"] = raw["initialDelay"]["seconds"]
    return schedule


def _build_provider(provider_id: str, raw: Dict[str, Any]) -> ProviderConfig:
    if "clusters" in raw:
        clusters = [_normalize_cluster(c) for c in raw.get("clusters") or []]
    else:
        # Single-cluster form: cluster properties sit at the provider root
        clusters = [_normalize_cluster(raw)]

    try:
        provider = ProviderConfig(
            id=provider_id,
            clusters=clusters,
            schedule=ScheduleConfig(**_normalize_schedule(raw.get("schedule"))),
            concurrency=raw.get("concurrency", DEFAULT_CONCURRENCY),
        )
    except ValidationError as e:
        raise ConfigurationException(f"Invalid Fleet provider configuration '{provider_id}': {e}") from e

    logger.info(f"Creating FleetEntityProvider[{provider_id}] with {len(provider.clusters)} cluster(s)")
    return provider


def read_provider_configs(config: Dict[str, Any]) -> List[ProviderConfig]:
    """
    Reads catalog.providers.fleet, which is either one provider or a map of named providers.
    """
    fleet = _get_path(config, "catalog", "providers", "fleet")
    if not isinstance(fleet, dict) or not fleet:
        logger.info("No Fleet provider configuration found")
        return []

    is_multi_provider = any(
        isinstance(value, dict) and ("clusters" in value or "namespaces" in value)
        for value in fleet.values()
    )

    if is_multi_provider:
        return [_build_provider(key, value) for key, value in fleet.items() if isinstance(value, dict)]

    return [_build_provider("default", fleet)]


def read_topology_config(config: Dict[str, Any]) -> Optional[TopologyConfig]:
    locator = _get_path(config, "catalog", "providers", "fleetK8sLocator")
    if locator is None:
        locator = {}
    if not isinstance(locator, dict):
        raise ConfigurationException(f"FleetK8sLocator configuration must be a mapping, got {locator!r}")

    if locator.get("enabled") is False:
        logger.info("FleetK8sLocator disabled via config")
        return None

    if not locator.get("rancherUrl") or not locator.get("rancherToken"):
        logger.warning("FleetK8sLocator: missing rancherUrl or rancherToken; locator disabled")
        return None

    try:
        return TopologyConfig.model_validate(locator)
    except ValidationError as e:
        raise ConfigurationException(f"Invalid FleetK8sLocator configuration: {e}") from e
