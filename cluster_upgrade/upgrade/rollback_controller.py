"""
Operator-invoked reversal of a transition.

A rollback is itself a transition: it captures its own pre-rollback
snapshot, restores the snapshot taken before the transition being reversed,
waits for health and runs reduced (version and health) validation against
the prior release. It only re-applies captured configuration and workload
definitions; persisted application data is never deleted.
"""

import logging
from typing import Optional

from ..core.dataclasses import TransitionRecord
from ..core.enums import TransitionKind, TransitionStatus
from ..core.exceptions import (
    SequenceError,
    UnexpectedTransitionError,
    UpgradeError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class RollbackController:
    def __init__(self, orchestrator):
        self.orchestrator = orchestrator
        self.graph = orchestrator.graph
        self.backups = orchestrator.backups
        self.executor = orchestrator.executor
        self.health_gate = orchestrator.health_gate
        self.validator = orchestrator.validator
        self.journal = orchestrator.journal
        self.emitter = orchestrator.emitter
        self.settings = orchestrator.settings

    def reverse_to(self, version: str) -> TransitionRecord:
        """
        Reverse the newest journaled transition that left ``version``.

        Raises:
            SequenceError: When the version is unknown or no reversible
                transition left it
        """
        node = self.graph.node(version)
        record = self.journal.latest_leaving(node.version)
        if record is None:
            raise SequenceError(
                f"No reversible transition from {node.version} in the journal",
                "List snapshots with the 'backups' command and restore manually",
            )
        return self.reverse(record)

    def reverse(self, record: TransitionRecord) -> TransitionRecord:
        """
        Restore the snapshot captured immediately before ``record``.

        Args:
            record: A Failed or Success transition with a backup reference

        Returns:
            The rollback TransitionRecord; on success ``record`` is marked
            RolledBack
        """
        if record.status not in (TransitionStatus.FAILED, TransitionStatus.SUCCESS):
            raise SequenceError(
                f"Transition {record.transition_id} is {record.status.value} and cannot be reversed"
            )
        if not record.from_version or not record.backup_reference:
            raise SequenceError(
                f"Transition {record.transition_id} has no prior release snapshot to restore",
                "An install has nothing to roll back to",
            )

        prior = self.graph.node(record.from_version)
        rollback = TransitionRecord(
            from_version=record.to_version,
            to_version=prior.version,
            kind=TransitionKind.ROLLBACK,
            source_transition=record.transition_id,
        )
        label = f"rollback {record.to_version} → {prior.version}"
        logger.warning(f"[{label}] 🔙 Reversing transition {record.transition_id}")
        self.journal.save(rollback)

        try:
            snapshot = self.backups.load(record.backup_reference)
            self._advance(
                rollback,
                TransitionStatus.PREFLIGHTED,
                f"Snapshot {snapshot.directory} is Completed",
                snapshot_version=snapshot.version,
            )

            current = self._reported_version() or record.to_version
            pre_rollback = self.backups.capture(current, prior.version)
            rollback.backup_reference = pre_rollback.directory
            self._advance(
                rollback,
                TransitionStatus.BACKUP_CAPTURED,
                f"Pre-rollback backup captured at {pre_rollback.directory}",
            )

            self._advance(
                rollback, TransitionStatus.APPLYING, f"Restoring {snapshot.resource_count} resources"
            )
            self.backups.restore(snapshot, apply=self.executor.apply_resources)
            self._advance(rollback, TransitionStatus.HEALTH_PENDING, "Snapshot restored")

            health = self.health_gate.require_ready(prior, self.settings.health_timeout)
            self._advance(
                rollback,
                TransitionStatus.VALIDATING,
                f"All required components ready in {health.elapsed:.0f}s",
            )

            outcome = self.validator.validate(prior, reduced=True)
            rollback.validation_results = outcome.reports
            if not outcome.passed:
                raise ValidationError(
                    f"Reduced validation of {prior.version} failed: "
                    + ", ".join(r.check_name for r in outcome.critical_failures),
                    "Inspect the restored workloads manually",
                    outcome=outcome,
                )
            self._advance(rollback, TransitionStatus.SUCCESS, f"Rolled back to {prior.version}")
        except UpgradeError as e:
            return self._fail(rollback, e, prior.version, label)
        except Exception as e:
            logger.exception(f"[{label}] Unexpected error during {rollback.status.value}")
            error = UnexpectedTransitionError(e, "Inspect the log for the stack trace, then retry")
            return self._fail(rollback, error, prior.version, label)

        record.mark_rolled_back(rollback.transition_id)
        self.journal.save(record)
        self.emitter.transition_complete(rollback)
        logger.info(f"[{label}] ✅ Reported version is back on {prior.version}")
        return rollback

    def _reported_version(self) -> Optional[str]:
        return self.orchestrator.client.reported_version(self.settings.version_deployment)

    def _advance(self, record: TransitionRecord, status: TransitionStatus, message: str, **details) -> None:
        outcome = record.advance(status, message, **details)
        self.journal.save(record)
        self.emitter.phase_complete(record, outcome)

    def _fail(
        self, rollback: TransitionRecord, error: UpgradeError, prior_version: str, label: str
    ) -> TransitionRecord:
        outcome = rollback.fail(error, f"rollback {prior_version}")
        self.journal.save(rollback)
        self.emitter.phase_complete(rollback, outcome)
        self.emitter.transition_complete(rollback)
        logger.error(f"[{label}] ❌ {type(error).__name__}: {error.message}")
        return rollback
