import hashlib
import re
from typing import Optional

# Catalog entity names must match [a-z0-9]+(-[a-z0-9]+)* and fit in 63 chars
MAX_ENTITY_NAME_LENGTH = 63
FALLBACK_NAME = "fleet-entity"
HASH_LENGTH = 6

_INVALID_CHARS = re.compile(r"[^a-z0-9-]")
_REPEATED_HYPHENS = re.compile(r"--+")
_GENERATED_SUFFIX = re.compile(r"^(.*?)-[a-f0-9]{12}$")
# BundleDeployments live in cluster-fleet-<workspace>-<cluster id>
_DEPLOYMENT_NAMESPACE = re.compile(r"^cluster-fleet-([^-]+)-(.+)$")


def _sanitize(value: str) -> str:
    clean = _INVALID_CHARS.sub("-", (value or "").lower())
    clean = _REPEATED_HYPHENS.sub("-", clean)
    return clean.strip("-")


def to_safe_name(value: Optional[str]) -> str:
    """
    Converts an arbitrary upstream name into a catalog-safe entity name.
    Never raises; falls back to a fixed placeholder when nothing usable is left.
    """
    clean = _sanitize(value or "")
    trimmed = clean[:MAX_ENTITY_NAME_LENGTH].rstrip("-")
    return trimmed or FALLBACK_NAME


def to_stable_safe_name(value: Optional[str], max_length: int = MAX_ENTITY_NAME_LENGTH) -> str:
    """
    Like to_safe_name, but over-length names are truncated and suffixed with a
    short content hash so that distinct inputs stay distinct.

    Args:
        value (str): The raw upstream name.
        max_length (int): Maximum length of the returned name.

    Returns:
        str: A catalog-safe name no longer than max_length.
    """
    clean = _sanitize(value or "")
    if not clean:
        return FALLBACK_NAME
    if len(clean) <= max_length:
        return clean

    digest = hashlib.sha1(clean.encode("utf-8")).hexdigest()[:HASH_LENGTH]
    base = clean[:max(1, max_length - HASH_LENGTH - 1)].rstrip("-")
    if not base:
        return f"{FALLBACK_NAME}-{digest}"
    return f"{base}-{digest}"


def to_entity_namespace(namespace: Optional[str]) -> str:
    return to_safe_name(namespace)


def stringify_entity_ref(kind: str, namespace: str, name: str) -> str:
    return f"{kind.lower()}:{namespace}/{name}"


def short_cluster_name(cluster_id: str) -> Optional[str]:
    """Strips the random 12-hex suffix Fleet appends to downstream cluster ids."""
    match = _GENERATED_SUFFIX.match(cluster_id or "")
    if not match or not match.group(1):
        return None
    return match.group(1)


def extract_cluster_id(namespace: str) -> Optional[str]:
    match = _DEPLOYMENT_NAMESPACE.match(namespace or "")
    return match.group(2) if match else None


def extract_workspace_namespace(namespace: str) -> Optional[str]:
    match = _DEPLOYMENT_NAMESPACE.match(namespace or "")
    return f"fleet-{match.group(1)}" if match else None
