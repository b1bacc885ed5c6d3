"""
Layered resource set resolution.

Resolves a release's overlay (a kustomization.yaml with resources, patches,
images and namespace) plus its migration resources into one flat list of
resource dicts ready to apply. Only the subset of kustomize needed for
base-plus-overlay layering is supported.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import httpx
import yaml

from ..core.constants import CLUSTER_SCOPED_KINDS, DEFAULT_NAMESPACE, KUSTOMIZATION_FILE
from ..core.dataclasses import MigrationStep, ReleaseNode
from ..core.exceptions import CatalogError
from ..utils.resources import deep_merge, dedupe, describe, resource_key

logger = logging.getLogger(__name__)

REMOTE_FETCH_TIMEOUT = 30.0


def _load_documents(text: str, origin: str) -> List[Dict[str, Any]]:
    try:
        docs = [d for d in yaml.safe_load_all(text) if d]
    except yaml.YAMLError as e:
        raise CatalogError(f"Invalid YAML in {origin}: {e}")
    resources: List[Dict[str, Any]] = []
    for doc in docs:
        if not isinstance(doc, dict):
            raise CatalogError(f"{origin} contains a document that is not a mapping")
        if doc.get("kind") == "List":
            resources.extend(doc.get("items") or [])
        else:
            resources.append(doc)
    return resources


class ManifestResolver:
    """Flattens per-version overlays into resource lists."""

    def __init__(
        self,
        overlays_dir: Path,
        namespace: str = DEFAULT_NAMESPACE,
        http_client: Optional[httpx.Client] = None,
    ):
        self.overlays_dir = Path(overlays_dir)
        self.namespace = namespace
        self.http_client = http_client

    # -------------------------------------------------------------------------
    # Source checks (read-only, used by preflight)
    # -------------------------------------------------------------------------

    def overlay_path(self, node: ReleaseNode) -> Path:
        return self.overlays_dir / node.manifest_source

    def migration_path(self, step: MigrationStep) -> Path:
        return self.overlays_dir / step.source

    def overlay_exists(self, node: ReleaseNode) -> bool:
        return (self.overlay_path(node) / KUSTOMIZATION_FILE).is_file()

    def missing_migrations(self, node: ReleaseNode) -> List[str]:
        return [
            step.source for step in node.migrations if not self.migration_path(step).exists()
        ]

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve(self, node: ReleaseNode, include_migrations: bool = True) -> List[Dict[str, Any]]:
        """
        Full resource set for a release.

        Migration resources are appended after the overlay so their fields win
        over the same objects declared by the overlay.
        """
        resources = self.resolve_directory(self.overlay_path(node))
        if include_migrations:
            for step in node.migrations:
                resources.extend(self.resolve_migration(step))
        resources = dedupe(resources)
        logger.debug(f"[{node.version}] Resolved {len(resources)} resources")
        return resources

    def resolve_migration(self, step: MigrationStep) -> List[Dict[str, Any]]:
        path = self.migration_path(step)
        if path.is_dir():
            resources = self.resolve_directory(path)
        else:
            resources = self._load_file(path)
        return [self._with_namespace(r) for r in resources]

    def resolve_directory(self, directory: Path, _seen: Optional[Set[Path]] = None) -> List[Dict[str, Any]]:
        directory = Path(directory).resolve()
        seen = set(_seen or ())
        if directory in seen:
            raise CatalogError(f"Overlay cycle detected at {directory}")
        seen.add(directory)

        kustomization_file = directory / KUSTOMIZATION_FILE
        if not kustomization_file.is_file():
            raise CatalogError(
                f"No {KUSTOMIZATION_FILE} in {directory}",
                "Check manifest_source in the release catalog",
            )
        try:
            kustomization = yaml.safe_load(kustomization_file.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise CatalogError(f"Cannot read {kustomization_file}: {e}")

        resources: List[Dict[str, Any]] = []
        for entry in kustomization.get("resources") or []:
            if entry.startswith(("http://", "https://")):
                resources.extend(self._fetch_remote(entry))
                continue
            target = directory / entry
            if target.is_dir():
                resources.extend(self.resolve_directory(target, seen))
            else:
                resources.extend(self._load_file(target))

        for patch in kustomization.get("patches") or []:
            resources = self._apply_patch(resources, patch, directory)

        for image in kustomization.get("images") or []:
            resources = [self._apply_image(r, image) for r in resources]

        namespace = kustomization.get("namespace")
        if namespace:
            resources = [self._with_namespace(r, namespace) for r in resources]

        return dedupe(resources)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _load_file(self, path: Path) -> List[Dict[str, Any]]:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise CatalogError(f"Cannot read resource file {path}: {e}")
        return _load_documents(text, str(path))

    def _fetch_remote(self, url: str) -> List[Dict[str, Any]]:
        logger.info(f"🌐 Fetching remote resources from {url}")
        try:
            if self.http_client is not None:
                response = self.http_client.get(url)
            else:
                response = httpx.get(url, timeout=REMOTE_FETCH_TIMEOUT, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise CatalogError(
                f"Cannot fetch remote resources {url}: {e}",
                "Check network access or vendor the manifest into the overlay",
            )
        return _load_documents(response.text, url)

    def _apply_patch(
        self, resources: List[Dict[str, Any]], patch: Dict[str, Any], directory: Path
    ) -> List[Dict[str, Any]]:
        if "path" in patch:
            documents = self._load_file(directory / patch["path"])
        elif "patch" in patch:
            documents = _load_documents(patch["patch"], f"inline patch in {directory}")
        else:
            raise CatalogError(f"Patch in {directory} needs 'path' or 'patch'")

        for document in documents:
            key = resource_key(document)
            matched = False
            patched = []
            for resource in resources:
                if resource_key(resource) == key:
                    resource = deep_merge(resource, document)
                    matched = True
                patched.append(resource)
            if not matched:
                raise CatalogError(
                    f"Patch target {describe(document)} not found in {directory}",
                    "Patches may only modify resources declared by the overlay's bases",
                )
            resources = patched
        return resources

    def _apply_image(self, resource: Dict[str, Any], image: Dict[str, Any]) -> Dict[str, Any]:
        pod_spec = resource.get("spec", {}).get("template", {}).get("spec")
        if not pod_spec:
            return resource
        name = image["name"]
        changed = False
        containers = []
        for section in ("initContainers", "containers"):
            for container in pod_spec.get(section) or []:
                current = container.get("image", "")
                repo = current.split("@", 1)[0]
                repo_name, sep, tag = repo.rpartition(":")
                if not sep or "/" in tag:
                    repo_name, tag = repo, ""
                if repo_name != name:
                    continue
                new_image = image.get("newName", repo_name)
                new_tag = image.get("newTag", tag)
                if "digest" in image:
                    container_image = f"{new_image}@{image['digest']}"
                else:
                    container_image = f"{new_image}:{new_tag}" if new_tag else new_image
                containers.append((section, container["name"], container_image))
                changed = True
        if not changed:
            return resource

        patch_spec: Dict[str, Any] = {}
        for section, container_name, container_image in containers:
            patch_spec.setdefault(section, []).append(
                {"name": container_name, "image": container_image}
            )
        return deep_merge(resource, {"spec": {"template": {"spec": patch_spec}}})

    def _with_namespace(self, resource: Dict[str, Any], namespace: Optional[str] = None) -> Dict[str, Any]:
        if resource.get("kind") in CLUSTER_SCOPED_KINDS:
            return resource
        metadata = resource.get("metadata") or {}
        if namespace is None and metadata.get("namespace"):
            return resource
        return deep_merge(resource, {"metadata": {"namespace": namespace or self.namespace}})
