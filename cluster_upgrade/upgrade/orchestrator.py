"""
Per-transition state machine.

Drives one transition through preflight, backup, advisory gating, apply,
health gating and validation. Every phase records a structured outcome on
the TransitionRecord, persists it to the journal and emits a progress
event. Any fatal error halts the transition in its last-applied state and
surfaces the rollback command; nothing is rolled back implicitly.

Only one transition may be active per target system. That is guaranteed by
running a single orchestrator per system, not by a lock in this process.
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from ..catalog.advisory import BreakingChangeAdvisory
from ..catalog.version_graph import VersionGraph, load_catalog
from ..core.config import OrchestratorSettings
from ..core.dataclasses import ReleaseNode, TransitionRecord, ValidationOutcome
from ..core.enums import PreflightOutcome, TransitionKind, TransitionStatus
from ..core.exceptions import (
    ConfirmationRequiredError,
    PreflightError,
    TransitionCancelled,
    UnexpectedTransitionError,
    UpgradeError,
    ValidationError,
)
from ..manifests.resolver import ManifestResolver
from ..progress.event_sender import EventEmitter
from ..validation.health_gate import HealthGate
from ..validation.post_transition_validator import PostTransitionValidator
from ..validation.preflight import PreflightValidator, collect_system_summary
from .backup_manager import StateBackupManager
from .journal import TransitionJournal
from .transition_executor import TransitionExecutor

logger = logging.getLogger(__name__)


class TransitionOrchestrator:
    """
    Wires the engine components together for one target system.

    Clock and sleep are injectable so bounded waits can be driven without
    real time passing.
    """

    def __init__(
        self,
        settings: OrchestratorSettings,
        client,
        emitter: Optional[EventEmitter] = None,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.client = client
        self.clock = clock
        self.sleep = sleep
        self.emitter = emitter or EventEmitter(enabled=False)
        self.cancel_event = cancel_event or threading.Event()
        self.policy = settings.confirmation_policy()

        nodes, advisories = load_catalog(settings.catalog_path)
        self.graph = VersionGraph(nodes)
        self.advisory = BreakingChangeAdvisory(advisories)

        self.resolver = ManifestResolver(settings.overlays_dir, settings.namespace)
        self.preflight = PreflightValidator(self.resolver, settings.credentials_file)
        self.backups = StateBackupManager(
            client,
            settings.backup_dir,
            access_policy_configmap=settings.access_policy_configmap,
            retention=settings.backup_retention,
        )
        self.executor = TransitionExecutor(
            client,
            self.resolver,
            self.backups,
            recreate_timeout=settings.recreate_timeout,
            poll_interval=settings.poll_interval,
            clock=clock,
            sleep=sleep,
        )
        self.health_gate = HealthGate(
            client, poll_interval=settings.poll_interval, clock=clock, sleep=sleep
        )
        self.validator = PostTransitionValidator(
            client,
            self.health_gate,
            version_deployment=settings.version_deployment,
            access_policy_configmap=settings.access_policy_configmap,
        )
        self.journal = TransitionJournal(settings.backup_dir)

    # =========================================================================
    # SECTION 1: COMMANDS
    # =========================================================================

    def current_release(self) -> Optional[ReleaseNode]:
        return self.graph.current_version(self.client, self.settings.version_deployment)

    def install(self, confirmed: bool = False) -> TransitionRecord:
        """Install the first release of the ladder on an empty namespace."""
        record = TransitionRecord(
            from_version=None, to_version=self.graph.first.version, kind=TransitionKind.INSTALL
        )
        return self._execute(record, None, self.graph.first, confirmed)

    def upgrade(self, from_version: str, to_version: str, confirmed: bool = False) -> TransitionRecord:
        """Run exactly one adjacent transition."""
        record = TransitionRecord(from_version=from_version, to_version=to_version)
        try:
            source, target = self.graph.require_transition(from_version, to_version)
        except UpgradeError as e:
            self._fail(record, e)
            return record
        record.from_version, record.to_version = source.version, target.version
        return self._execute(record, source, target, confirmed)

    def upgrade_step(self, number: int, confirmed: bool = False) -> TransitionRecord:
        source, target = self.graph.step(number)
        return self.upgrade(source.version, target.version, confirmed)

    def upgrade_to(self, version: str, confirmed: bool = False) -> List[TransitionRecord]:
        """
        Walk the ladder from the running release up to ``version``.

        Each hop is a separate transition; the walk stops at the first one
        that does not succeed.
        """
        current = self.current_release()
        if current is None:
            raise PreflightError(
                "No catalogued release is running",
                "Run 'install' first or check the version-bearing deployment",
            )
        records: List[TransitionRecord] = []
        for target in self.graph.path(current.version, version):
            record = self.upgrade(current.version, target.version, confirmed)
            records.append(record)
            if not record.succeeded:
                break
            current = target
        return records

    def validate(self, version: Optional[str] = None, reduced: bool = False) -> ValidationOutcome:
        """
        Post-transition validation of the running (or given) release.

        ``reduced`` limits the checks to the reported version and component
        health.
        """
        node = self.graph.node(version) if version else self.current_release()
        if node is None:
            raise ValidationError(
                "No catalogued release is running",
                "Install a release before validating",
            )
        previous = self.graph.nodes[node.ordinal - 1] if node.ordinal > 0 else None
        return self.validator.validate(node, reduced=reduced, previous=previous)

    def cleanup(self, keep: Optional[int] = None) -> List[str]:
        """Prune old snapshots, keeping those needed by 'rollback <version>'."""
        return self.backups.prune(keep, protect=self.journal.referenced_backups())

    def uninstall(self, confirmed: bool = False) -> List[str]:
        """
        Tear down the installation on the target system.

        Deletes every Application, waits (bounded) for their finalizers,
        clears the finalizers of any that remain, then deletes the sample
        application namespaces and the target namespace. Snapshots and the
        journal on disk are left in place.

        Returns:
            "Kind/name" of every object that was deleted

        Raises:
            ConfirmationRequiredError: When the operator did not confirm
        """
        namespace = self.settings.namespace
        applications = [a["metadata"]["name"] for a in self.client.list("Application")]
        namespaces = list(self.settings.application_namespaces) + [namespace]
        if not confirmed and not self.policy.confirm(
            f"Delete {len(applications)} applications and namespaces {', '.join(namespaces)}?",
            {"applications": applications, "namespaces": namespaces},
        ):
            raise ConfirmationRequiredError(
                "Uninstall needs confirmation",
                "Re-run 'cleanup --uninstall' with --yes",
            )

        logger.warning(f"[{namespace}] 🗑️ Uninstalling: {len(applications)} applications")
        removed: List[str] = []
        for name in applications:
            if self.client.delete("Application", name, cascade="background"):
                removed.append(f"Application/{name}")

        deadline = self.clock() + self.settings.recreate_timeout
        remaining = self.client.list("Application")
        while remaining and self.clock() < deadline:
            self.sleep(self.settings.poll_interval)
            remaining = self.client.list("Application")
        for app in remaining:
            name = app["metadata"]["name"]
            if app["metadata"].get("finalizers"):
                logger.warning(f"[{namespace}] ⚠️ Clearing finalizers of stuck Application {name}")
                self.client.patch("Application", name, {"metadata": {"finalizers": None}})

        for ns in namespaces:
            if self.client.delete("Namespace", ns, cascade="background"):
                removed.append(f"Namespace/{ns}")
                logger.info(f"[{namespace}] ✅ Deleted namespace {ns}")
        return removed

    # =========================================================================
    # SECTION 2: STATE MACHINE
    # =========================================================================

    def _execute(
        self,
        record: TransitionRecord,
        source: Optional[ReleaseNode],
        target: ReleaseNode,
        confirmed: bool,
    ) -> TransitionRecord:
        label = f"{source.version if source else 'none'} → {target.version}"
        logger.info(f"[{label}] 🚀 Starting {record.kind.value} {record.transition_id}")
        self.journal.save(record)
        try:
            self._run_phases(record, source, target, confirmed, label)
        except UpgradeError as e:
            self._fail(record, e)
        except Exception as e:
            logger.exception(f"[{label}] Unexpected error during {record.status.value}")
            self._fail(
                record,
                UnexpectedTransitionError(
                    e, "Inspect the log for the stack trace, then roll back or re-run the step"
                ),
            )
        return record

    def _run_phases(
        self,
        record: TransitionRecord,
        source: Optional[ReleaseNode],
        target: ReleaseNode,
        confirmed: bool,
        label: str,
    ) -> None:
        # -- Preflight ---------------------------------------------------------
        self._checkpoint("preflight")
        summary = collect_system_summary(self.client, self.settings.version_deployment)
        preflight = self.preflight.run(source, target, summary)
        self.emitter.pre_check_complete(record, preflight)
        if preflight.outcome == PreflightOutcome.FAIL:
            failures = "; ".join(c.detail for c in preflight.critical_failures)
            recommendation = next(
                (c.recommendation for c in preflight.critical_failures if c.recommendation),
                None,
            )
            raise PreflightError(f"Preflight failed: {failures}", recommendation, result=preflight)
        if preflight.outcome == PreflightOutcome.NEEDS_CONFIRMATION and not confirmed:
            unhealthy = [w.name for w in summary.unhealthy_workloads]
            if not self.policy.confirm(
                f"{len(unhealthy)} applications are not Healthy/Synced. Continue anyway?",
                {"unhealthy": unhealthy, "to_version": target.version},
            ):
                raise ConfirmationRequiredError(
                    f"Preflight needs confirmation: {len(unhealthy)} unconverged applications",
                    "Fix application health or re-run with --yes",
                )
        self._advance(
            record,
            TransitionStatus.PREFLIGHTED,
            f"Preflight {preflight.outcome.value}",
            outcome=preflight.outcome.value,
            warnings=[c.check_name for c in preflight.warnings],
        )

        # -- Backup ------------------------------------------------------------
        self._checkpoint("backup")
        snapshot = self.backups.capture(source.version if source else "none", target.version)
        record.backup_reference = snapshot.directory
        self._advance(
            record,
            TransitionStatus.BACKUP_CAPTURED,
            f"Backup captured at {snapshot.directory}",
            resource_count=snapshot.resource_count,
        )

        # -- Advisories ----------------------------------------------------------
        self._checkpoint("advisory review")
        if source is None:
            acknowledged = []
        else:
            lookup = self.advisory.lookup(source.version, target.version)
            acknowledged = self.advisory.gate(lookup, self.policy, confirmed)
        self._advance(
            record,
            TransitionStatus.ADVISORY_ACKNOWLEDGED,
            f"{len(acknowledged)} advisories acknowledged",
            advisories=[f"[{a.impact.value}] {a.title}" for a in acknowledged],
        )

        # -- Apply (no cancellation past this point) --------------------------------
        self._checkpoint("apply")
        self._advance(
            record,
            TransitionStatus.APPLYING,
            f"Applying {len(target.migrations)} migrations and the {target.version} resource set",
        )
        migrations = self.executor.run_migrations(target, snapshot)
        applied = self.executor.apply_target(target, snapshot)
        self._advance(
            record,
            TransitionStatus.HEALTH_PENDING,
            f"Applied {len(applied.applied)} resources ({len(applied.changed)} changed)",
            migrations=migrations,
            changed=applied.changed,
            recreated=applied.recreated,
            preserved_claims=applied.preserved_claims,
        )

        # -- Health gate ---------------------------------------------------------
        health = self.health_gate.require_ready(target, self.settings.health_timeout)
        self._advance(
            record,
            TransitionStatus.VALIDATING,
            f"All required components ready in {health.elapsed:.0f}s",
            warnings=health.warnings,
        )

        # -- Validation ----------------------------------------------------------
        outcome = self.validator.validate(target, previous=source)
        record.validation_results = outcome.reports
        if not outcome.passed:
            failures = ", ".join(r.check_name for r in outcome.critical_failures)
            raise ValidationError(
                f"Post-transition validation failed: {failures}",
                outcome.rollback_recommendation,
                outcome=outcome,
            )
        self._advance(
            record,
            TransitionStatus.SUCCESS,
            f"{label} complete",
            warnings=[r.check_name for r in outcome.warnings],
        )
        self.emitter.transition_complete(record)
        logger.info(f"[{label}] ✅ Transition {record.transition_id} succeeded")

    # =========================================================================
    # SECTION 3: HELPERS
    # =========================================================================

    def _checkpoint(self, next_phase: str) -> None:
        if self.cancel_event.is_set():
            raise TransitionCancelled(
                f"Cancelled before {next_phase}",
                "Nothing was applied; re-run the step when ready",
            )

    def _advance(self, record: TransitionRecord, status: TransitionStatus, message: str, **details) -> None:
        outcome = record.advance(status, message, **details)
        self.journal.save(record)
        self.emitter.phase_complete(record, outcome)

    def _fail(self, record: TransitionRecord, error: UpgradeError) -> None:
        rollback_command = f"rollback {record.from_version}" if record.from_version else None
        outcome = record.fail(error, rollback_command)
        self.journal.save(record)
        self.emitter.phase_complete(record, outcome)
        self.emitter.transition_complete(record)

        label = f"{record.from_version or 'none'} → {record.to_version}"
        logger.error(f"[{label}] ❌ {type(error).__name__} during {outcome.phase}: {error.message}")
        if error.remediation:
            logger.error(f"[{label}]    Remediation: {error.remediation}")
        if rollback_command:
            logger.error(f"[{label}]    To roll back: {rollback_command}")
