"""
Structured progress events.

Emits one JSON object per line with a sequence number so drivers and UIs
can follow every phase outcome of a transition in order.
"""

import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

from ..core.dataclasses import PhaseOutcome, PreflightResult, TransitionRecord
from ..utils.json_utils import safe_json_serialize


class EventEmitter:
    """
    Clean JSON event emitter with sequence tracking for guaranteed message ordering.
    """

    def __init__(self, stream: Optional[TextIO] = None, enabled: bool = True):
        self.stream = stream
        self.enabled = enabled
        self.sequence = 0

    def emit(
        self,
        event_type: str,
        data: Optional[Dict[str, Any]] = None,
        message: Optional[str] = None,
        level: str = "INFO",
    ) -> Optional[Dict[str, Any]]:
        """Emit a structured JSON event with sequence tracking."""
        if not self.enabled:
            return None
        self.sequence += 1

        event: Dict[str, Any] = {
            "event_type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "sequence": self.sequence,
        }
        if message:
            event["message"] = message
        if data is not None:
            event["data"] = safe_json_serialize(data)

        stream = self.stream or sys.stdout
        print(json.dumps(event), file=stream, flush=True)
        return event

    def phase_complete(self, record: TransitionRecord, outcome: PhaseOutcome) -> None:
        """One event per phase, passed or failed."""
        self.emit(
            "PHASE_COMPLETE",
            data={
                "transition_id": record.transition_id,
                "from_version": record.from_version,
                "to_version": record.to_version,
                "phase": outcome.phase,
                "passed": outcome.passed,
                "details": outcome.details,
            },
            message=outcome.message,
            level="SUCCESS" if outcome.passed else "ERROR",
        )

    def pre_check_complete(self, record: TransitionRecord, result: PreflightResult) -> None:
        self.emit(
            "PRE_CHECK_COMPLETE",
            data={
                "transition_id": record.transition_id,
                "outcome": result.outcome,
                "reported_version": result.reported_version,
                "total_checks": len(result.checks),
                "passed": sum(1 for c in result.checks if c.passed),
                "warnings": len(result.warnings),
                "critical_failures": len(result.critical_failures),
            },
            message="Preflight checks completed",
            level="SUCCESS" if not result.critical_failures else "WARNING",
        )

    def transition_complete(self, record: TransitionRecord) -> None:
        """Final event carrying the rollback command on failure."""
        data = {
            "transition_id": record.transition_id,
            "kind": record.kind,
            "from_version": record.from_version,
            "to_version": record.to_version,
            "status": record.status,
            "backup_reference": record.backup_reference,
            "error": record.error,
            "error_type": record.error_type,
            "rollback_command": record.rollback_command,
        }
        self.emit(
            "TRANSITION_COMPLETE",
            data=data,
            message=(
                f"{record.kind.value} {record.from_version or 'none'} → {record.to_version}: "
                f"{record.status.value}"
            ),
            level="SUCCESS" if record.succeeded else "ERROR",
        )
