"""
Persistent record of every transition.

Each TransitionRecord is stored as ``<backup_dir>/transitions/<id>.json`` and
rewritten after every phase, so a later ``rollback <version>`` can find the
record and snapshot of an earlier run.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from ..core.constants import TRANSITIONS_DIR
from ..core.dataclasses import TransitionRecord
from ..core.enums import TransitionKind, TransitionStatus
from ..utils.json_utils import write_json_atomic

logger = logging.getLogger(__name__)


class TransitionJournal:
    def __init__(self, backup_dir: Path):
        self.directory = Path(backup_dir) / TRANSITIONS_DIR

    def save(self, record: TransitionRecord) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / f"{record.transition_id}.json"
        write_json_atomic(path, record.to_dict())
        return path

    def load(self, transition_id: str) -> TransitionRecord:
        with open(self.directory / f"{transition_id}.json", "r", encoding="utf-8") as f:
            return TransitionRecord.from_dict(json.load(f))

    def records(self) -> List[TransitionRecord]:
        """All journaled transitions, oldest first."""
        if not self.directory.is_dir():
            return []
        found: List[TransitionRecord] = []
        for path in self.directory.glob("*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    found.append(TransitionRecord.from_dict(json.load(f)))
            except (OSError, ValueError, TypeError, KeyError) as e:
                logger.warning(f"⚠️ Skipping unreadable journal entry {path.name}: {e}")
        found.sort(key=lambda r: (r.started_at, r.transition_id))
        return found

    def latest_leaving(self, version: str) -> Optional[TransitionRecord]:
        """
        Newest reversible transition that started from ``version``.

        Reversible means a forward transition (install excluded) that ended
        in Success or Failed and still has a backup reference.
        """
        candidates = [
            r
            for r in self.records()
            if r.kind == TransitionKind.UPGRADE
            and r.from_version == version
            and r.status in (TransitionStatus.SUCCESS, TransitionStatus.FAILED)
            and r.backup_reference
        ]
        return candidates[-1] if candidates else None

    def referenced_backups(self) -> List[str]:
        """Backups that ``rollback <version>`` would use for each version."""
        latest = {}
        for record in self.records():
            if (
                record.kind == TransitionKind.UPGRADE
                and record.backup_reference
                and record.status in (TransitionStatus.SUCCESS, TransitionStatus.FAILED)
            ):
                latest[record.from_version] = record.backup_reference
        return list(latest.values())
