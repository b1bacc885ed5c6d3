"""
Core package for the cluster upgrade orchestration engine.

Contains fundamental data structures, constants, enumerations, settings and
exceptions used throughout the upgrade framework.
"""

from .dataclasses import (
    AdvisoryLookup,
    AdvisoryRecord,
    ApplyResult,
    BackupSnapshot,
    ComponentSpec,
    HealthCheckResult,
    HealthGateResult,
    InvariantSpec,
    MigrationStep,
    PhaseOutcome,
    PreflightResult,
    ReleaseNode,
    SystemSummary,
    TransitionRecord,
    ValidationOutcome,
    ValidationReport,
    WorkloadState,
)
from .enums import (
    CheckSeverity,
    HealthStatus,
    InvariantType,
    PreflightOutcome,
    SnapshotStatus,
    TransitionKind,
    TransitionStatus,
)
from .exceptions import (
    ApplyError,
    BackupError,
    CatalogError,
    ClusterCommandError,
    ConfirmationRequiredError,
    HealthTimeoutError,
    PreflightError,
    ResourceConflict,
    SequenceError,
    TransitionCancelled,
    UnexpectedTransitionError,
    UpgradeError,
    ValidationError,
)
from .config import ConfirmationPolicy, OrchestratorSettings

__all__ = [
    # Data classes
    "AdvisoryLookup",
    "AdvisoryRecord",
    "ApplyResult",
    "BackupSnapshot",
    "ComponentSpec",
    "HealthCheckResult",
    "HealthGateResult",
    "InvariantSpec",
    "MigrationStep",
    "PhaseOutcome",
    "PreflightResult",
    "ReleaseNode",
    "SystemSummary",
    "TransitionRecord",
    "ValidationOutcome",
    "ValidationReport",
    "WorkloadState",
    # Enums
    "CheckSeverity",
    "HealthStatus",
    "InvariantType",
    "PreflightOutcome",
    "SnapshotStatus",
    "TransitionKind",
    "TransitionStatus",
    # Exceptions
    "ApplyError",
    "BackupError",
    "CatalogError",
    "ClusterCommandError",
    "ConfirmationRequiredError",
    "HealthTimeoutError",
    "PreflightError",
    "ResourceConflict",
    "SequenceError",
    "TransitionCancelled",
    "UnexpectedTransitionError",
    "UpgradeError",
    "ValidationError",
    # Settings
    "ConfirmationPolicy",
    "OrchestratorSettings",
]
