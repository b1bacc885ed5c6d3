"""
Application enumerations for type safety and clear intent definitions.

Centralized enum definitions for transition phases, check severities and
component health values used throughout the upgrade orchestration engine.
"""

from enum import Enum


class TransitionStatus(Enum):
    """Phases of a single release transition."""

    INIT = "init"
    PREFLIGHTED = "preflighted"
    BACKUP_CAPTURED = "backup_captured"
    ADVISORY_ACKNOWLEDGED = "advisory_acknowledged"
    APPLYING = "applying"
    HEALTH_PENDING = "health_pending"
    VALIDATING = "validating"
    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self in (
            TransitionStatus.SUCCESS,
            TransitionStatus.FAILED,
            TransitionStatus.ROLLED_BACK,
        )


class TransitionKind(Enum):
    """What a transition record describes."""

    INSTALL = "install"
    UPGRADE = "upgrade"
    ROLLBACK = "rollback"


class PreflightOutcome(Enum):
    """Overall result of the read-only preflight checks."""

    PASS = "pass"
    FAIL = "fail"
    NEEDS_CONFIRMATION = "needs_confirmation"


class CheckSeverity(Enum):
    """Severity levels for validation checks and advisories."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class HealthStatus(Enum):
    """Readiness of a single component while the health gate polls."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    TIMEOUT = "timeout"


class SnapshotStatus(Enum):
    """Lifecycle of a backup snapshot on disk."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class InvariantType(Enum):
    """Transition-specific post-condition kinds declared in the catalog."""

    PERMISSION = "permission"
    LOG_SCAN = "log_scan"
