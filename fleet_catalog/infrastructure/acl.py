import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import ValidationError

from fleet_catalog.domain.exceptions import DescriptorFileException
from fleet_catalog.domain.models import FleetModel, FleetYaml, GitRepo

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=FleetModel)

# Pre-fetched fleet.yaml content, stored as JSON on the GitRepo
ANNOTATION_FLEET_YAML = "fleet.cattle.io/fleet-yaml"


class FleetTranslator:
    """
    Anti-corruption layer that translates raw Kubernetes / Rancher JSON payloads into typed domain models.
    """

    @staticmethod
    def to_domain(raw: Dict[str, Any], model: Type[M]) -> M:
        """
        Transforms a raw JSON object into the given model.

        Args:
            raw (Dict[str, Any]): The decoded JSON object.
            model (Type[M]): The target model class.

        Returns:
            M: The typed model instance.

        Raises:
            ValueError: If the payload is not an object or does not fit the model.
        """
        if not isinstance(raw, dict):
            raise ValueError(f"Expected a JSON object for {model.__name__}, got {type(raw).__name__}.")
        return model.model_validate(raw)

    @staticmethod
    def to_domain_list(raw_items: Iterable[Dict[str, Any]], model: Type[M]) -> List[M]:
        """Translates every item, skipping (and logging) the ones that do not fit the model."""
        items: List[M] = []
        for raw in raw_items:
            try:
                items.append(FleetTranslator.to_domain(raw, model))
            except ValueError as e:
                logger.warning(f"Skipping malformed {model.__name__} payload: {e}")
        return items

    @staticmethod
    def to_fleet_yaml(raw_json: str) -> FleetYaml:
        try:
            payload = json.loads(raw_json)
            return FleetTranslator.to_domain(payload, FleetYaml)
        except (json.JSONDecodeError, ValidationError, ValueError) as e:
            raise DescriptorFileException(f"Invalid fleet.yaml payload: {e}") from e


class AnnotationFleetYamlFetcher:
    """
    Descriptor-file fetcher backed by the fleet.cattle.io/fleet-yaml annotation.
    Reading fleet.yaml straight from Git is not supported; only pre-populated payloads are used.
    """

    async def fetch(self, git_repo: GitRepo) -> Optional[FleetYaml]:
        raw = git_repo.metadata.annotations.get(ANNOTATION_FLEET_YAML)
        if not raw:
            return None

        try:
            return FleetTranslator.to_fleet_yaml(raw)
        except DescriptorFileException as e:
            logger.warning(f"Failed to parse fleet.yaml annotation for {git_repo.metadata.name}: {e}")
            return None
