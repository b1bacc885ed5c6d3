"""
Durable pre-mutation snapshots and restore.

Every transition captures one snapshot before anything is applied. A
snapshot is written into a hidden staging directory, flushed, and renamed
into place with its metadata marked Completed; a failure at any point
removes the staging directory and aborts the transition.
"""

import json
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from ..core.constants import (
    BACKUP_CATEGORIES,
    BACKUP_TIMESTAMP_FORMAT,
    DEFAULT_ACCESS_POLICY_CONFIGMAP,
    DEFAULT_BACKUP_RETENTION,
    SNAPSHOT_METADATA_FILE,
)
from ..core.dataclasses import BackupSnapshot
from ..core.enums import SnapshotStatus
from ..core.exceptions import BackupError, UpgradeError
from ..utils.json_utils import write_json_atomic
from ..utils.resources import strip_server_fields

logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".partial"
SECRET_CATEGORIES = frozenset({"secrets"})

ApplyFunction = Callable[[List[Dict[str, Any]]], Any]


def _fsync_dir(path: Path) -> None:
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class StateBackupManager:
    """Captures, restores and prunes snapshots under one backup directory."""

    def __init__(
        self,
        client,
        backup_dir: Path,
        access_policy_configmap: str = DEFAULT_ACCESS_POLICY_CONFIGMAP,
        retention: int = DEFAULT_BACKUP_RETENTION,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.backup_dir = Path(backup_dir)
        self.access_policy_configmap = access_policy_configmap
        self.retention = retention
        self.now = now

    # =========================================================================
    # SECTION 1: CAPTURE
    # =========================================================================

    def _collect(self, category: str, kinds: List[str]) -> List[Dict[str, Any]]:
        resources: List[Dict[str, Any]] = []
        for kind in kinds:
            for obj in self.client.list(kind):
                name = (obj.get("metadata") or {}).get("name")
                is_policy = kind == "ConfigMap" and name == self.access_policy_configmap
                if category == "access-policy" and not is_policy:
                    continue
                if category == "configuration" and is_policy:
                    continue
                resources.append(strip_server_fields(obj))
        return resources

    def _new_directory_name(self, target_version: str, timestamp: str) -> str:
        base = f"{target_version}_{timestamp}"
        name = base
        suffix = 1
        while (self.backup_dir / name).exists() or (
            self.backup_dir / f".{name}{STAGING_SUFFIX}"
        ).exists():
            name = f"{base}-{suffix}"
            suffix += 1
        return name

    def capture(self, version: str, target_version: str) -> BackupSnapshot:
        """
        Capture every backup category for the running release.

        Args:
            version: Release whose state is being captured
            target_version: Release the upcoming transition moves to; names
                the backup directory

        Returns:
            Completed BackupSnapshot

        Raises:
            BackupError: When any read or write fails; no partial snapshot
                is left behind
        """
        timestamp = self.now().strftime(BACKUP_TIMESTAMP_FORMAT)
        name = self._new_directory_name(target_version, timestamp)
        final_dir = self.backup_dir / name
        staging_dir = self.backup_dir / f".{name}{STAGING_SUFFIX}"

        logger.info(f"[{version}] 💾 Capturing backup {name}")
        try:
            staging_dir.mkdir(parents=True)
            categories: Dict[str, str] = {}
            total = 0
            for category, kinds in BACKUP_CATEGORIES.items():
                resources = self._collect(category, kinds)
                filename = f"{category}.yaml"
                self._write_category(staging_dir / filename, resources, category)
                categories[category] = filename
                total += len(resources)
                logger.debug(f"[{version}] {category}: {len(resources)} resources")

            snapshot = BackupSnapshot(
                version=version,
                target_version=target_version,
                timestamp=timestamp,
                directory=str(final_dir),
                categories=categories,
                status=SnapshotStatus.COMPLETED,
                resource_count=total,
            )
            write_json_atomic(staging_dir / SNAPSHOT_METADATA_FILE, snapshot.to_dict())
            _fsync_dir(staging_dir)
            os.rename(staging_dir, final_dir)
            _fsync_dir(self.backup_dir)
        except (OSError, yaml.YAMLError, UpgradeError) as e:
            shutil.rmtree(staging_dir, ignore_errors=True)
            logger.error(f"[{version}] ❌ Backup failed: {e}")
            raise BackupError(
                f"Backup capture failed: {e}",
                f"Check free space and permissions under {self.backup_dir}",
            ) from e

        logger.info(f"[{version}] ✅ Backup completed: {final_dir} ({total} resources)")
        return snapshot

    def _write_category(self, path: Path, resources: List[Dict[str, Any]], category: str) -> None:
        opener = None
        if category in SECRET_CATEGORIES:
            opener = lambda p, flags: os.open(p, flags, 0o600)  # noqa: E731
        with open(path, "w", encoding="utf-8", opener=opener) as f:
            yaml.safe_dump_all(resources, f, sort_keys=False)
            f.flush()
            os.fsync(f.fileno())

    # =========================================================================
    # SECTION 2: LOAD AND RESTORE
    # =========================================================================

    def load(self, reference: str) -> BackupSnapshot:
        """
        Load a Completed snapshot by directory path or name.

        Raises:
            BackupError: When the snapshot is missing, incomplete or damaged
        """
        directory = Path(reference)
        if not directory.is_absolute() and not directory.exists():
            directory = self.backup_dir / reference
        metadata = directory / SNAPSHOT_METADATA_FILE
        try:
            with open(metadata, "r", encoding="utf-8") as f:
                snapshot = BackupSnapshot.from_dict(json.load(f))
        except (OSError, ValueError, TypeError) as e:
            raise BackupError(
                f"Snapshot {reference} cannot be loaded: {e}",
                "Choose another snapshot with the 'backups' command",
            ) from e

        snapshot.directory = str(directory)
        if not snapshot.is_completed:
            raise BackupError(f"Snapshot {reference} is not Completed")
        missing = [f for f in snapshot.categories.values() if not (directory / f).is_file()]
        if missing:
            raise BackupError(f"Snapshot {reference} is missing files: {', '.join(missing)}")
        return snapshot

    def verify(self, snapshot: Optional[BackupSnapshot]) -> BackupSnapshot:
        """Re-load a snapshot from disk to prove it is durably persisted."""
        if snapshot is None:
            raise BackupError(
                "No backup snapshot for this transition",
                "Capture a backup before any mutating phase",
            )
        if not snapshot.is_completed:
            raise BackupError(f"Snapshot {snapshot.directory} is not Completed")
        return self.load(snapshot.directory)

    def read_resources(self, snapshot: BackupSnapshot) -> List[Dict[str, Any]]:
        """Captured resources in restore order."""
        directory = Path(snapshot.directory)
        resources: List[Dict[str, Any]] = []
        for category in BACKUP_CATEGORIES:
            filename = snapshot.categories.get(category)
            if not filename:
                continue
            try:
                with open(directory / filename, "r", encoding="utf-8") as f:
                    resources.extend(d for d in yaml.safe_load_all(f) if d)
            except (OSError, yaml.YAMLError) as e:
                raise BackupError(f"Cannot read {filename} from {directory}: {e}") from e
        return resources

    def restore(
        self, snapshot: BackupSnapshot, apply: Optional[ApplyFunction] = None
    ) -> List[Dict[str, Any]]:
        """
        Re-apply every captured resource.

        Args:
            snapshot: Completed snapshot to restore
            apply: Apply function; defaults to the client's field-merge apply

        Returns:
            The restored resources

        Raises:
            BackupError: When the snapshot is not Completed or apply fails
        """
        snapshot = self.verify(snapshot)
        resources = self.read_resources(snapshot)
        apply = apply or self.client.apply
        logger.info(
            f"[{snapshot.version}] ♻️ Restoring {len(resources)} resources from {snapshot.directory}"
        )
        try:
            apply(resources)
        except UpgradeError as e:
            raise BackupError(
                f"Restore from {snapshot.directory} failed: {e.message}",
                e.remediation or "Inspect the rejected resources and restore manually",
            ) from e
        logger.info(f"[{snapshot.version}] ✅ Restore applied")
        return resources

    # =========================================================================
    # SECTION 3: HOUSEKEEPING
    # =========================================================================

    def list(self) -> List[BackupSnapshot]:
        """Completed snapshots, oldest first."""
        if not self.backup_dir.is_dir():
            return []
        snapshots: List[BackupSnapshot] = []
        for entry in self.backup_dir.iterdir():
            if entry.name.startswith(".") or not (entry / SNAPSHOT_METADATA_FILE).is_file():
                continue
            try:
                snapshots.append(self.load(str(entry)))
            except BackupError as e:
                logger.warning(f"⚠️ Skipping unusable snapshot {entry.name}: {e.message}")
        snapshots.sort(key=lambda s: (s.timestamp, s.directory))
        return snapshots

    def latest_for(self, version: str) -> Optional[BackupSnapshot]:
        """Newest snapshot that captured ``version``."""
        matching = [s for s in self.list() if s.version == version]
        return matching[-1] if matching else None

    def prune(self, keep: Optional[int] = None, protect: Optional[List[str]] = None) -> List[str]:
        """
        Remove old snapshots and abandoned staging directories.

        Args:
            keep: Number of newest snapshots to keep (defaults to retention)
            protect: Snapshot directories that must never be removed

        Returns:
            Removed directory paths
        """
        keep = self.retention if keep is None else keep
        protected = {str(Path(p)) for p in (protect or [])}
        removed: List[str] = []

        if self.backup_dir.is_dir():
            for entry in self.backup_dir.iterdir():
                if entry.name.startswith(".") and entry.name.endswith(STAGING_SUFFIX):
                    shutil.rmtree(entry, ignore_errors=True)
                    removed.append(str(entry))

        snapshots = self.list()
        candidates = snapshots[: max(len(snapshots) - keep, 0)]
        for snapshot in candidates:
            if snapshot.directory in protected:
                continue
            shutil.rmtree(snapshot.directory, ignore_errors=True)
            removed.append(snapshot.directory)
            logger.info(f"🗑️ Pruned backup {snapshot.directory}")
        return removed
