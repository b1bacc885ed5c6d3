"""
Helpers for working with declarative resource dictionaries.

Resources are plain dicts as produced by ``yaml.safe_load``. These helpers
give them stable identities, merge patches into them and strip the fields
the API server owns.
"""

import copy
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..core.constants import SERVER_MANAGED_METADATA

ResourceKey = Tuple[str, str]


def resource_key(resource: Dict[str, Any]) -> ResourceKey:
    """(kind, name) identity of a resource inside one namespace."""
    metadata = resource.get("metadata") or {}
    return resource.get("kind", ""), metadata.get("name", "")


def describe(resource: Dict[str, Any]) -> str:
    kind, name = resource_key(resource)
    return f"{kind}/{name}"


def _named_items(items: List[Any]) -> bool:
    return bool(items) and all(isinstance(i, dict) and "name" in i for i in items)


def deep_merge(base: Any, patch: Any) -> Any:
    """
    Field-merge ``patch`` onto ``base`` and return a new object.

    Dicts merge key by key and a ``None`` value removes the key. Lists of
    named items (containers, env, volumes) merge by ``name``; any other list
    is replaced wholesale.
    """
    if isinstance(base, dict) and isinstance(patch, dict):
        merged = copy.deepcopy(base)
        for key, value in patch.items():
            if value is None:
                merged.pop(key, None)
            elif key in merged:
                merged[key] = deep_merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged

    if isinstance(base, list) and isinstance(patch, list):
        if _named_items(base) and _named_items(patch):
            merged_list = [copy.deepcopy(item) for item in base]
            index = {item["name"]: i for i, item in enumerate(merged_list)}
            for item in patch:
                if item["name"] in index:
                    pos = index[item["name"]]
                    merged_list[pos] = deep_merge(merged_list[pos], item)
                else:
                    merged_list.append(copy.deepcopy(item))
            return merged_list
        return copy.deepcopy(patch)

    return copy.deepcopy(patch)


def contains_fields(actual: Any, expected: Any) -> bool:
    """True when every field declared in ``expected`` is present in ``actual``."""
    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            return False
        return all(
            key in actual and contains_fields(actual[key], value)
            for key, value in expected.items()
        )
    if isinstance(expected, list):
        if not isinstance(actual, list):
            return False
        if _named_items(expected) and _named_items(actual):
            by_name = {item["name"]: item for item in actual}
            return all(
                item["name"] in by_name and contains_fields(by_name[item["name"]], item)
                for item in expected
            )
        return len(actual) == len(expected) and all(
            contains_fields(a, e) for a, e in zip(actual, expected)
        )
    return actual == expected


def strip_server_fields(resource: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy without status and server-owned metadata."""
    cleaned = copy.deepcopy(resource)
    cleaned.pop("status", None)
    metadata = cleaned.get("metadata") or {}
    for key in SERVER_MANAGED_METADATA:
        metadata.pop(key, None)
    annotations = metadata.get("annotations") or {}
    annotations.pop("kubectl.kubernetes.io/last-applied-configuration", None)
    if "annotations" in metadata and not annotations:
        metadata.pop("annotations")
    return cleaned


def container_image(resource: Dict[str, Any], index: int = 0) -> Optional[str]:
    """Image of the n-th container in a workload's pod template."""
    containers = (
        resource.get("spec", {})
        .get("template", {})
        .get("spec", {})
        .get("containers", [])
    )
    if len(containers) <= index:
        return None
    return containers[index].get("image")


def image_tag(image: Optional[str]) -> Optional[str]:
    """Tag portion of an image reference, ``None`` when untagged."""
    if not image:
        return None
    image = image.split("@", 1)[0]
    name, sep, tag = image.rpartition(":")
    if not sep or "/" in tag:
        return None
    return tag


def dedupe(resources: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the last definition of each (kind, name), preserving first-seen order."""
    order: List[ResourceKey] = []
    latest: Dict[ResourceKey, Dict[str, Any]] = {}
    for resource in resources:
        key = resource_key(resource)
        if key not in latest:
            order.append(key)
        latest[key] = resource
    return [latest[key] for key in order]
