"""
Application of migrations and target resource sets.

Every mutating call first proves that a Completed backup snapshot for the
attempt exists on disk. Applies are field-merge and idempotent. The single
recognized recovery is an immutable selector conflict on an
identity-bearing workload: the object is deleted with orphan cascade (pods
and claims survive), the executor polls until it is gone and reapplies
once. Every other failure is raised as ApplyError without retrying.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..core.constants import DEFAULT_POLL_INTERVAL, DEFAULT_RECREATE_TIMEOUT, IDENTITY_BEARING_KINDS
from ..core.dataclasses import ApplyResult, BackupSnapshot, MigrationStep, ReleaseNode
from ..core.exceptions import ApplyError, ResourceConflict
from ..manifests.resolver import ManifestResolver
from ..utils.resources import contains_fields, describe, resource_key, strip_server_fields
from .backup_manager import StateBackupManager

logger = logging.getLogger(__name__)


class TransitionExecutor:
    """Applies resource sets through a ClusterClient."""

    def __init__(
        self,
        client,
        resolver: ManifestResolver,
        backups: StateBackupManager,
        recreate_timeout: float = DEFAULT_RECREATE_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.resolver = resolver
        self.backups = backups
        self.recreate_timeout = recreate_timeout
        self.poll_interval = poll_interval
        self.clock = clock
        self.sleep = sleep

    # =========================================================================
    # SECTION 1: MIGRATIONS
    # =========================================================================

    def run_migrations(self, node: ReleaseNode, snapshot: Optional[BackupSnapshot]) -> List[str]:
        """
        Apply and verify each migration step of ``node`` in order.

        Returns:
            Names of the completed migration steps

        Raises:
            BackupError: When no Completed snapshot backs this attempt
            ApplyError: When a step fails to apply or to verify
        """
        self.backups.verify(snapshot)
        completed: List[str] = []
        for idx, step in enumerate(node.migrations, start=1):
            logger.info(
                f"[{node.version}] 🔧 Migration {idx}/{len(node.migrations)}: {step.name}"
            )
            resources = self.resolver.resolve_migration(step)
            try:
                self.client.apply(resources)
            except ApplyError as e:
                raise ApplyError(
                    f"Migration {step.name} failed to apply: {e.message}",
                    e.remediation,
                    conflicts=e.conflicts,
                ) from e
            self.verify_migration(step, resources)
            completed.append(step.name)
            logger.info(f"[{node.version}] ✅ Migration {step.name} verified")
        return completed

    def verify_migration(self, step: MigrationStep, resources: List[Dict[str, Any]]) -> None:
        """Read every migration resource back and compare declared fields."""
        for resource in resources:
            kind, name = resource_key(resource)
            live = self.client.get(kind, name)
            if live is None or not contains_fields(live, strip_server_fields(resource)):
                raise ApplyError(
                    f"Migration {step.name} not verified: {describe(resource)} does not match",
                    "Inspect the live object; another writer may have reverted it",
                    conflicts=[ResourceConflict(kind, name, message="verification failed")],
                )

    # =========================================================================
    # SECTION 2: TARGET APPLY
    # =========================================================================

    def apply_target(self, node: ReleaseNode, snapshot: Optional[BackupSnapshot]) -> ApplyResult:
        """
        Apply the full resolved resource set of ``node``.

        Raises:
            BackupError: When no Completed snapshot backs this attempt
            ApplyError: On any apply failure other than the recognized
                immutable selector conflict
        """
        self.backups.verify(snapshot)
        resources = self.resolver.resolve(node)
        logger.info(f"[{node.version}] 🚀 Applying {len(resources)} resources")
        result = self.apply_resources(resources)
        result.migrations = [step.name for step in node.migrations]
        return result

    def apply_resources(self, resources: List[Dict[str, Any]]) -> ApplyResult:
        """Field-merge apply with the single delete-recreate escape hatch."""
        claims_before = self._claim_references(resources)
        recreated: List[str] = []
        try:
            changed = self.client.apply(resources)
        except ApplyError as e:
            if not self._recoverable(e):
                logger.error(f"❌ Apply failed: {e.message}")
                raise
            for kind, name in self._unique_targets(e.immutable_conflicts):
                self._recreate(kind, name)
                recreated.append(f"{kind}/{name}")
            logger.info(f"🔁 Reapplying after recreating {', '.join(recreated)}")
            changed = self.client.apply(resources)
            changed = sorted(set(changed) | set(recreated))

        self._verify_claims(claims_before)
        return ApplyResult(
            applied=[describe(r) for r in resources],
            changed=list(changed),
            recreated=recreated,
            preserved_claims=sorted(claims_before[0] | claims_before[1]),
        )

    # -------------------------------------------------------------------------
    # Delete-recreate
    # -------------------------------------------------------------------------

    def _recoverable(self, error: ApplyError) -> bool:
        return error.only_immutable_conflicts and all(
            c.kind in IDENTITY_BEARING_KINDS for c in error.conflicts
        )

    @staticmethod
    def _unique_targets(conflicts: List[ResourceConflict]) -> List[Tuple[str, str]]:
        seen: List[Tuple[str, str]] = []
        for conflict in conflicts:
            key = (conflict.kind, conflict.name)
            if key not in seen:
                seen.append(key)
        return seen

    def _recreate(self, kind: str, name: str) -> None:
        logger.warning(
            f"⚠️ Immutable selector conflict on {kind}/{name}; deleting with orphan cascade"
        )
        self.client.delete(kind, name, cascade="orphan")

        deadline = self.clock() + self.recreate_timeout
        while self.client.get(kind, name) is not None:
            now = self.clock()
            if now >= deadline:
                raise ApplyError(
                    f"{kind}/{name} still present {self.recreate_timeout:.0f}s after delete",
                    f"Check finalizers on {kind}/{name}, then re-run the step",
                    conflicts=[ResourceConflict(kind, name, "metadata.finalizers")],
                )
            self.sleep(min(self.poll_interval, deadline - now))
        logger.info(f"✅ {kind}/{name} removed; pods and volume claims kept")

    # -------------------------------------------------------------------------
    # Persistent-data references
    # -------------------------------------------------------------------------

    def _claim_references(self, resources: List[Dict[str, Any]]) -> Tuple[Set[str], Set[str]]:
        """(existing claim names, claim templates of live identity workloads)"""
        claims = {
            (c.get("metadata") or {}).get("name", "")
            for c in self.client.list("PersistentVolumeClaim")
        }
        templates: Set[str] = set()
        for resource in resources:
            kind, name = resource_key(resource)
            if kind not in IDENTITY_BEARING_KINDS:
                continue
            live = self.client.get(kind, name)
            if live is None:
                continue
            for template in (live.get("spec") or {}).get("volumeClaimTemplates") or []:
                templates.add(f"{kind}/{name}/{template['metadata']['name']}")
        return claims, templates

    def _verify_claims(self, before: Tuple[Set[str], Set[str]]) -> None:
        claims_before, templates_before = before
        claims_after = {
            (c.get("metadata") or {}).get("name", "")
            for c in self.client.list("PersistentVolumeClaim")
        }
        lost_claims = claims_before - claims_after

        lost_templates = []
        for reference in sorted(templates_before):
            kind, name, template = reference.split("/", 2)
            live = self.client.get(kind, name) or {}
            names = {
                t["metadata"]["name"]
                for t in (live.get("spec") or {}).get("volumeClaimTemplates") or []
            }
            if template not in names:
                lost_templates.append(reference)

        if lost_claims or lost_templates:
            raise ApplyError(
                "Persistent data references changed during apply: "
                + ", ".join(sorted(lost_claims) + lost_templates),
                "Restore the claims from the snapshot before continuing",
            )
