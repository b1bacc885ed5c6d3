"""
Data classes for the upgrade orchestration engine.

Defines structured data containers for the release catalog, transition
state, backups, health and validation results with type hints for robust
data handling.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Tuple, FrozenSet

from .enums import (
    CheckSeverity,
    HealthStatus,
    InvariantType,
    PreflightOutcome,
    SnapshotStatus,
    TransitionKind,
    TransitionStatus,
)


def utc_now() -> str:
    """ISO-8601 UTC timestamp used on every record."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


# =============================================================================
# SECTION 1: RELEASE CATALOG
# =============================================================================


@dataclass(frozen=True)
class MigrationStep:
    """A resource set that must be applied and verified before the main apply."""

    name: str
    source: str
    description: str = ""


@dataclass(frozen=True)
class ComponentSpec:
    """A workload the health gate waits for."""

    name: str
    kind: str = "Deployment"
    required: bool = True


@dataclass(frozen=True)
class InvariantSpec:
    """A transition-specific post-condition."""

    name: str
    type: InvariantType
    severity: CheckSeverity = CheckSeverity.CRITICAL
    params: Tuple[Tuple[str, Any], ...] = ()

    def param(self, key: str, default: Any = None) -> Any:
        return dict(self.params).get(key, default)


@dataclass(frozen=True)
class ReleaseNode:
    """One release on the upgrade ladder. Immutable once defined."""

    version: str
    ordinal: int
    manifest_source: str
    migrations: Tuple[MigrationStep, ...] = ()
    breaking_changes: Tuple[str, ...] = ()
    min_dependency_version: Optional[str] = None
    components: Tuple[ComponentSpec, ...] = ()
    invariants: Tuple[InvariantSpec, ...] = ()
    features: FrozenSet[str] = frozenset()

    def matches(self, reported: Optional[str]) -> bool:
        """True when a reported version belongs to this release line."""
        if not reported:
            return False
        reported = reported.strip()
        if not reported.startswith("v"):
            reported = f"v{reported}"
        return reported == self.version or reported.startswith(f"{self.version}.")

    @property
    def required_components(self) -> List[ComponentSpec]:
        return [c for c in self.components if c.required]

    @property
    def optional_components(self) -> List[ComponentSpec]:
        return [c for c in self.components if not c.required]


# =============================================================================
# SECTION 2: LIVE SYSTEM STATE
# =============================================================================


@dataclass
class WorkloadState:
    """Health and sync state of one managed workload."""

    name: str
    health: str
    sync: str

    @property
    def is_converged(self) -> bool:
        return self.health == "Healthy" and self.sync == "Synced"


@dataclass
class SystemSummary:
    """Read-only snapshot of the target system used by preflight."""

    reported_version: Optional[str]
    workloads: List[WorkloadState] = field(default_factory=list)
    dependency_version: Optional[str] = None
    collected_at: str = field(default_factory=utc_now)

    @property
    def unhealthy_workloads(self) -> List[WorkloadState]:
        return [w for w in self.workloads if not w.is_converged]


# =============================================================================
# SECTION 3: CHECK RESULTS
# =============================================================================


@dataclass
class ValidationReport:
    """Result of a single preflight or post-transition check."""

    check_name: str
    passed: bool
    detail: str
    severity: CheckSeverity = CheckSeverity.INFO
    recommendation: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_critical_failure(self) -> bool:
        return not self.passed and self.severity == CheckSeverity.CRITICAL


@dataclass
class PreflightResult:
    """Summary of all preflight checks for one transition."""

    outcome: PreflightOutcome
    expected_version: str
    reported_version: Optional[str]
    checks: List[ValidationReport] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now)

    @property
    def critical_failures(self) -> List[ValidationReport]:
        return [c for c in self.checks if c.is_critical_failure]

    @property
    def warnings(self) -> List[ValidationReport]:
        return [
            c for c in self.checks if not c.passed and c.severity == CheckSeverity.WARNING
        ]


@dataclass
class HealthCheckResult:
    """Readiness of one component at the last poll."""

    component: str
    kind: str
    desired: int
    ready: int
    required: bool
    status: HealthStatus
    message: str = ""


@dataclass
class HealthGateResult:
    """Outcome of a bounded wait for target-state readiness."""

    status: HealthStatus
    results: List[HealthCheckResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def ready(self) -> bool:
        return self.status == HealthStatus.READY

    @property
    def not_ready(self) -> List[HealthCheckResult]:
        return [
            r for r in self.results if r.required and r.status != HealthStatus.READY
        ]


@dataclass
class ValidationOutcome:
    """All post-transition reports for one target version."""

    target_version: str
    reports: List[ValidationReport] = field(default_factory=list)
    reduced: bool = False
    rollback_recommendation: Optional[str] = None

    @property
    def passed(self) -> bool:
        return not self.critical_failures

    @property
    def critical_failures(self) -> List[ValidationReport]:
        return [r for r in self.reports if r.is_critical_failure]

    @property
    def warnings(self) -> List[ValidationReport]:
        return [
            r for r in self.reports if not r.passed and r.severity != CheckSeverity.CRITICAL
        ]


# =============================================================================
# SECTION 4: ADVISORIES
# =============================================================================


@dataclass(frozen=True)
class AdvisoryRecord:
    """A documented breaking change for a range of version pairs."""

    title: str
    impact: CheckSeverity
    remediation: str
    from_range: Tuple[Optional[str], Optional[str]] = (None, None)
    to_range: Tuple[Optional[str], Optional[str]] = (None, None)
    reference: Optional[str] = None


@dataclass
class AdvisoryLookup:
    """Advisories that apply to one transition."""

    from_version: str
    to_version: str
    records: List[AdvisoryRecord] = field(default_factory=list)
    unknown_risk: bool = False

    @property
    def critical(self) -> List[AdvisoryRecord]:
        return [r for r in self.records if r.impact == CheckSeverity.CRITICAL]

    @property
    def requires_confirmation(self) -> bool:
        return self.unknown_risk or bool(self.critical)


# =============================================================================
# SECTION 5: BACKUPS AND APPLY RESULTS
# =============================================================================


@dataclass
class BackupSnapshot:
    """Point-in-time capture of mutable configuration taken before a transition."""

    version: str
    target_version: str
    timestamp: str
    directory: str
    categories: Dict[str, str] = field(default_factory=dict)
    status: SnapshotStatus = SnapshotStatus.IN_PROGRESS
    resource_count: int = 0

    @property
    def reference(self) -> str:
        return self.directory

    @property
    def is_completed(self) -> bool:
        return self.status == SnapshotStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupSnapshot":
        data = dict(data)
        data["status"] = SnapshotStatus(data.get("status", "in_progress"))
        return cls(**data)


@dataclass
class ApplyResult:
    """What the executor changed while applying a resource set."""

    applied: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)
    recreated: List[str] = field(default_factory=list)
    preserved_claims: List[str] = field(default_factory=list)
    migrations: List[str] = field(default_factory=list)


# =============================================================================
# SECTION 6: TRANSITION RECORD
# =============================================================================


@dataclass
class PhaseOutcome:
    """Structured pass/fail outcome reported at the end of every phase."""

    phase: str
    passed: bool
    message: str
    timestamp: str = field(default_factory=utc_now)
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransitionRecord:
    """A single move between two releases, mutated through its phases."""

    from_version: Optional[str]
    to_version: str
    kind: TransitionKind = TransitionKind.UPGRADE
    transition_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: str = field(default_factory=utc_now)
    finished_at: Optional[str] = None
    status: TransitionStatus = TransitionStatus.INIT
    backup_reference: Optional[str] = None
    phases: List[PhaseOutcome] = field(default_factory=list)
    validation_results: List[ValidationReport] = field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None
    rollback_command: Optional[str] = None
    source_transition: Optional[str] = None

    def advance(self, status: TransitionStatus, message: str, **details) -> PhaseOutcome:
        """Move to the next phase and record its passing outcome."""
        if self.status.is_terminal:
            raise ValueError(
                f"Transition {self.transition_id} is already {self.status.value}"
            )
        self.status = status
        outcome = PhaseOutcome(
            phase=status.value, passed=True, message=message, details=details
        )
        self.phases.append(outcome)
        if status.is_terminal:
            self.finished_at = outcome.timestamp
        return outcome

    def fail(self, error: Exception, rollback_command: Optional[str] = None) -> PhaseOutcome:
        """Terminate in Failed, keeping the phase that was active when it broke."""
        failed_phase = self.status.value
        self.status = TransitionStatus.FAILED
        self.error = str(error)
        self.error_type = type(error).__name__
        self.rollback_command = rollback_command
        outcome = PhaseOutcome(
            phase=failed_phase,
            passed=False,
            message=str(error),
            details={"error_type": self.error_type},
        )
        self.phases.append(outcome)
        self.finished_at = outcome.timestamp
        return outcome

    def mark_rolled_back(self, rollback_id: str) -> None:
        self.status = TransitionStatus.ROLLED_BACK
        self.phases.append(
            PhaseOutcome(
                phase=TransitionStatus.ROLLED_BACK.value,
                passed=True,
                message=f"Reversed by transition {rollback_id}",
            )
        )

    @property
    def succeeded(self) -> bool:
        return self.status == TransitionStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["status"] = self.status.value
        data["validation_results"] = [
            dict(asdict(r), severity=r.severity.value) for r in self.validation_results
        ]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransitionRecord":
        data = dict(data)
        data["kind"] = TransitionKind(data.get("kind", "upgrade"))
        data["status"] = TransitionStatus(data.get("status", "init"))
        data["phases"] = [PhaseOutcome(**p) for p in data.get("phases", [])]
        data["validation_results"] = [
            ValidationReport(**dict(r, severity=CheckSeverity(r["severity"])))
            for r in data.get("validation_results", [])
        ]
        return cls(**data)
