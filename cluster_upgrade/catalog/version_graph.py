"""
Static release catalog and upgrade sequencing.

Loads the ordered release ladder from YAML, resolves the live release from
the reported image tag and enforces that every transition moves to the
immediate successor only.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from ..core.config import DEFAULT_CATALOG_PATH
from ..core.dataclasses import (
    AdvisoryRecord,
    ComponentSpec,
    InvariantSpec,
    MigrationStep,
    ReleaseNode,
)
from ..core.enums import CheckSeverity, InvariantType
from ..core.exceptions import CatalogError, SequenceError
from .versions import compare_versions

logger = logging.getLogger(__name__)


# =============================================================================
# SECTION 1: CATALOG FILE SCHEMA
# =============================================================================


class _ComponentModel(BaseModel):
    name: str
    kind: str = "Deployment"
    required: bool = True


class _MigrationModel(BaseModel):
    name: str
    source: str
    description: str = ""


class _InvariantModel(BaseModel):
    name: str
    type: InvariantType
    severity: CheckSeverity = CheckSeverity.CRITICAL
    params: Dict[str, Any] = Field(default_factory=dict)


class _ReleaseModel(BaseModel):
    version: str
    manifest_source: str
    migrations: List[_MigrationModel] = Field(default_factory=list)
    breaking_changes: List[str] = Field(default_factory=list)
    min_dependency_version: Optional[str] = None
    components: Optional[List[_ComponentModel]] = None
    invariants: List[_InvariantModel] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)


class _AdvisoryModel(BaseModel):
    title: str
    impact: CheckSeverity
    remediation: str
    from_range: Tuple[Optional[str], Optional[str]] = (None, None)
    to_range: Tuple[Optional[str], Optional[str]] = (None, None)
    reference: Optional[str] = None


class _CatalogModel(BaseModel):
    default_components: List[_ComponentModel] = Field(default_factory=list)
    releases: List[_ReleaseModel]
    advisories: List[_AdvisoryModel] = Field(default_factory=list)


def load_catalog(path: Path = DEFAULT_CATALOG_PATH) -> Tuple[List[ReleaseNode], List[AdvisoryRecord]]:
    """
    Load and validate the release catalog.

    Args:
        path: YAML catalog file

    Returns:
        Tuple of (ordered release nodes, advisory records)

    Raises:
        CatalogError: When the file is missing, malformed or out of order
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        catalog = _CatalogModel.model_validate(raw)
    except OSError as e:
        raise CatalogError(f"Cannot read release catalog {path}: {e}")
    except yaml.YAMLError as e:
        raise CatalogError(f"Release catalog {path} is not valid YAML: {e}")
    except PydanticValidationError as e:
        raise CatalogError(
            f"Release catalog {path} failed schema validation: {e}",
            "Compare the catalog against the packaged releases.yaml",
        )

    nodes: List[ReleaseNode] = []
    for ordinal, release in enumerate(catalog.releases):
        components = release.components
        if components is None:
            components = catalog.default_components
        nodes.append(
            ReleaseNode(
                version=release.version,
                ordinal=ordinal,
                manifest_source=release.manifest_source,
                migrations=tuple(
                    MigrationStep(m.name, m.source, m.description)
                    for m in release.migrations
                ),
                breaking_changes=tuple(release.breaking_changes),
                min_dependency_version=release.min_dependency_version,
                components=tuple(
                    ComponentSpec(c.name, c.kind, c.required) for c in components
                ),
                invariants=tuple(
                    InvariantSpec(
                        name=i.name,
                        type=i.type,
                        severity=i.severity,
                        params=tuple(sorted(i.params.items())),
                    )
                    for i in release.invariants
                ),
                features=frozenset(release.features),
            )
        )

    for earlier, later in zip(nodes, nodes[1:]):
        if compare_versions(earlier.version, later.version) >= 0:
            raise CatalogError(
                f"Release catalog is out of order: {earlier.version} before {later.version}"
            )

    advisories = [
        AdvisoryRecord(
            title=a.title,
            impact=a.impact,
            remediation=a.remediation,
            from_range=tuple(a.from_range),
            to_range=tuple(a.to_range),
            reference=a.reference,
        )
        for a in catalog.advisories
    ]
    return nodes, advisories


# =============================================================================
# SECTION 2: VERSION GRAPH
# =============================================================================


class VersionGraph:
    """
    Ordered, immutable ladder of releases.

    Only forward transitions between neighbours are valid; anything else is a
    SequenceError raised before any mutation is attempted.
    """

    def __init__(self, nodes: List[ReleaseNode]):
        if not nodes:
            raise CatalogError("Release catalog contains no releases")
        self._nodes: Tuple[ReleaseNode, ...] = tuple(nodes)
        self._by_version: Dict[str, ReleaseNode] = {n.version: n for n in nodes}

    @classmethod
    def from_file(cls, path: Path = DEFAULT_CATALOG_PATH) -> "VersionGraph":
        nodes, _ = load_catalog(path)
        return cls(nodes)

    # -------------------------------------------------------------------------
    # SUBSECTION 2.1: LOOKUPS
    # -------------------------------------------------------------------------

    @property
    def nodes(self) -> Tuple[ReleaseNode, ...]:
        return self._nodes

    @property
    def first(self) -> ReleaseNode:
        return self._nodes[0]

    @property
    def last(self) -> ReleaseNode:
        return self._nodes[-1]

    def node(self, version: str) -> ReleaseNode:
        """Catalog node for a release id or any patch version on its line."""
        if version in self._by_version:
            return self._by_version[version]
        for candidate in self._nodes:
            if candidate.matches(version):
                return candidate
        raise SequenceError(
            f"Version {version} is not in the release catalog",
            f"Known releases: {', '.join(n.version for n in self._nodes)}",
        )

    def find(self, reported: Optional[str]) -> Optional[ReleaseNode]:
        """Like node() but returns None for an unknown or missing version."""
        if not reported:
            return None
        for candidate in self._nodes:
            if candidate.matches(reported):
                return candidate
        return None

    def current_version(self, client, deployment: str) -> Optional[ReleaseNode]:
        """
        Resolve the live release from the reported version.

        Args:
            client: ClusterClient used to read the version-bearing deployment
            deployment: Name of the deployment whose image tag is the version

        Returns:
            Matching ReleaseNode, or None when nothing is installed or the
            reported version is outside the catalog
        """
        reported = client.reported_version(deployment)
        node = self.find(reported)
        if reported and node is None:
            logger.warning(f"⚠️ Reported version {reported} is not in the release catalog")
        return node

    def next_version(self, version: str) -> Optional[ReleaseNode]:
        current = self.node(version)
        if current.ordinal + 1 >= len(self._nodes):
            return None
        return self._nodes[current.ordinal + 1]

    def step(self, number: int) -> Tuple[ReleaseNode, ReleaseNode]:
        """
        Source and target of upgrade step ``number`` (1-based).

        Step 1 moves from the first release to the second.
        """
        if number < 1 or number >= len(self._nodes):
            raise SequenceError(
                f"Upgrade step {number} does not exist",
                f"Valid steps are 1 to {len(self._nodes) - 1}",
            )
        return self._nodes[number - 1], self._nodes[number]

    # -------------------------------------------------------------------------
    # SUBSECTION 2.2: SEQUENCING
    # -------------------------------------------------------------------------

    def is_valid_transition(self, from_version: str, to_version: str) -> bool:
        try:
            source = self.node(from_version)
            target = self.node(to_version)
        except SequenceError:
            return False
        return target.ordinal == source.ordinal + 1

    def require_transition(self, from_version: str, to_version: str) -> Tuple[ReleaseNode, ReleaseNode]:
        """Return (source, target) nodes or raise SequenceError."""
        source = self.node(from_version)
        target = self.node(to_version)
        if target.ordinal != source.ordinal + 1:
            successor = self.next_version(source.version)
            hint = (
                f"Upgrade to {successor.version} first"
                if successor and target.ordinal > source.ordinal
                else "Releases can only move forward one step at a time"
            )
            raise SequenceError(
                f"Transition {source.version} → {target.version} skips or reverses the release ladder",
                hint,
            )
        return source, target

    def breaking_changes(self, from_version: str, to_version: str) -> Tuple[str, ...]:
        _, target = self.require_transition(from_version, to_version)
        return target.breaking_changes

    def path(self, from_version: str, to_version: str) -> List[ReleaseNode]:
        """Releases visited when walking from one version to a later one."""
        source = self.node(from_version)
        target = self.node(to_version)
        if target.ordinal < source.ordinal:
            raise SequenceError(
                f"{target.version} is older than {source.version}",
                f"Use 'rollback {target.version}' to move backwards",
            )
        return list(self._nodes[source.ordinal + 1 : target.ordinal + 1])
