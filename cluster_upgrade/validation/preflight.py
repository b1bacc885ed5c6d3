"""
Read-only preflight checks run before any transition mutates the cluster.

Verifies that the live system is on the expected predecessor release, that
managed applications have converged, and that every input the transition
needs (overlay, migrations, cluster version, credentials) is in place.
Nothing here writes to the cluster or the filesystem.
"""

import logging
import os
from pathlib import Path
from typing import Callable, List, Optional

from ..catalog.versions import version_at_least
from ..core.constants import FAILED_HEALTH_STATES, HEALTHY_STATE, SYNCED_STATE
from ..core.dataclasses import PreflightResult, ReleaseNode, SystemSummary, ValidationReport, WorkloadState
from ..core.enums import CheckSeverity, PreflightOutcome
from ..manifests.resolver import ManifestResolver

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int, bool], None]

# Checks whose failure may be overridden by an operator confirmation
CONFIRMABLE_CHECKS = frozenset({"workloads_converged"})


def collect_system_summary(client, version_deployment: str) -> SystemSummary:
    """
    Read the live state preflight and validation need.

    Args:
        client: ClusterClient for the target namespace
        version_deployment: Deployment whose image tag reports the version

    Returns:
        SystemSummary with reported version, application states and the
        cluster control-plane version
    """
    workloads: List[WorkloadState] = []
    for app in client.list("Application"):
        status = app.get("status") or {}
        workloads.append(
            WorkloadState(
                name=(app.get("metadata") or {}).get("name", "<unnamed>"),
                health=(status.get("health") or {}).get("status", "Unknown"),
                sync=(status.get("sync") or {}).get("status", "Unknown"),
            )
        )
    return SystemSummary(
        reported_version=client.reported_version(version_deployment),
        workloads=workloads,
        dependency_version=client.server_version(),
    )


class PreflightValidator:
    """
    Precondition checks for one transition.

    Each check returns a ValidationReport; the overall outcome is Fail on any
    critical failure, NeedsConfirmation when only confirmable checks failed,
    and Pass otherwise.
    """

    def __init__(self, resolver: ManifestResolver, credentials_file: Optional[Path] = None):
        self.resolver = resolver
        self.credentials_file = Path(credentials_file) if credentials_file else None

    def run(
        self,
        expected: Optional[ReleaseNode],
        target: ReleaseNode,
        summary: SystemSummary,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> PreflightResult:
        """
        Execute every preflight check.

        Args:
            expected: Release the system must currently run; None for a
                fresh install where nothing may be running yet
            target: Release the transition moves to
            summary: Live system state collected by collect_system_summary
            progress_callback: Optional callback(check_name, check_num,
                total_checks, passed) invoked after each check

        Returns:
            PreflightResult with all reports and the overall outcome
        """
        checks = [
            ("version_match", lambda: self.check_version_match(expected, summary)),
            ("workloads_converged", lambda: self.check_workloads(summary)),
            ("overlay_present", lambda: self.check_overlay(target)),
            ("migrations_present", lambda: self.check_migrations(target)),
            ("dependency_version", lambda: self.check_dependency_version(target, summary)),
            ("credentials_readable", self.check_credentials),
        ]

        reports: List[ValidationReport] = []
        for idx, (check_name, check) in enumerate(checks, start=1):
            report = check()
            reports.append(report)
            icon = "✅" if report.passed else ("❌" if report.is_critical_failure else "⚠️")
            logger.info(f"[{target.version}] {icon} Preflight {idx}/{len(checks)} {check_name}: {report.detail}")
            if progress_callback:
                progress_callback(check_name, idx, len(checks), report.passed)

        if any(r.is_critical_failure for r in reports):
            outcome = PreflightOutcome.FAIL
        elif any(not r.passed and r.check_name in CONFIRMABLE_CHECKS for r in reports):
            outcome = PreflightOutcome.NEEDS_CONFIRMATION
        else:
            outcome = PreflightOutcome.PASS

        return PreflightResult(
            outcome=outcome,
            expected_version=expected.version if expected else "none",
            reported_version=summary.reported_version,
            checks=reports,
        )

    # -------------------------------------------------------------------------
    # Individual checks
    # -------------------------------------------------------------------------

    def check_version_match(
        self, expected: Optional[ReleaseNode], summary: SystemSummary
    ) -> ValidationReport:
        reported = summary.reported_version
        if expected is None:
            passed = reported is None
            detail = (
                "No existing installation found"
                if passed
                else f"An installation is already running ({reported})"
            )
            recommendation = None if passed else "Use an upgrade step instead of install"
        else:
            passed = expected.matches(reported)
            detail = (
                f"Running {reported}, expected {expected.version}.x"
                if reported
                else f"No running version found, expected {expected.version}.x"
            )
            recommendation = (
                None if passed else f"Bring the system to {expected.version} before this step"
            )
        return ValidationReport(
            check_name="version_match",
            passed=passed,
            detail=detail,
            severity=CheckSeverity.CRITICAL,
            recommendation=recommendation,
            details={"reported_version": reported},
        )

    def check_workloads(self, summary: SystemSummary) -> ValidationReport:
        unhealthy = summary.unhealthy_workloads
        if not unhealthy:
            return ValidationReport(
                check_name="workloads_converged",
                passed=True,
                detail=f"All {len(summary.workloads)} applications are {HEALTHY_STATE}/{SYNCED_STATE}",
            )
        degraded = [w.name for w in unhealthy if w.health in FAILED_HEALTH_STATES]
        return ValidationReport(
            check_name="workloads_converged",
            passed=False,
            detail=f"{len(unhealthy)} of {len(summary.workloads)} applications are not {HEALTHY_STATE}/{SYNCED_STATE}",
            severity=CheckSeverity.WARNING,
            recommendation="Resolve application health first or confirm to continue",
            details={
                "unhealthy": [f"{w.name} ({w.health}/{w.sync})" for w in unhealthy],
                "degraded": degraded,
            },
        )

    def check_overlay(self, target: ReleaseNode) -> ValidationReport:
        path = self.resolver.overlay_path(target)
        passed = self.resolver.overlay_exists(target)
        return ValidationReport(
            check_name="overlay_present",
            passed=passed,
            detail=f"Overlay {'found' if passed else 'missing'} at {path}",
            severity=CheckSeverity.CRITICAL,
            recommendation=None if passed else f"Restore the {target.version} overlay",
        )

    def check_migrations(self, target: ReleaseNode) -> ValidationReport:
        missing = self.resolver.missing_migrations(target)
        if not target.migrations:
            detail = "No migrations declared"
        elif missing:
            detail = f"Missing migration sources: {', '.join(missing)}"
        else:
            detail = f"{len(target.migrations)} migration sources found"
        return ValidationReport(
            check_name="migrations_present",
            passed=not missing,
            detail=detail,
            severity=CheckSeverity.CRITICAL,
            recommendation=None if not missing else "Restore the migration files under the overlay",
            details={"missing": missing},
        )

    def check_dependency_version(
        self, target: ReleaseNode, summary: SystemSummary
    ) -> ValidationReport:
        minimum = target.min_dependency_version
        actual = summary.dependency_version
        if not minimum:
            return ValidationReport(
                check_name="dependency_version",
                passed=True,
                detail=f"No minimum cluster version for {target.version}",
            )
        passed = version_at_least(actual, minimum)
        return ValidationReport(
            check_name="dependency_version",
            passed=passed,
            detail=f"Cluster version {actual or 'unknown'}, requires {minimum}+",
            severity=CheckSeverity.CRITICAL,
            recommendation=None if passed else f"Upgrade the cluster to {minimum} or newer",
        )

    def check_credentials(self) -> ValidationReport:
        if self.credentials_file is None:
            return ValidationReport(
                check_name="credentials_readable",
                passed=True,
                detail="No credentials file configured",
            )
        readable = self.credentials_file.is_file() and os.access(self.credentials_file, os.R_OK)
        return ValidationReport(
            check_name="credentials_readable",
            passed=readable,
            detail=f"Credentials {'readable' if readable else 'not readable'} at {self.credentials_file}",
            severity=CheckSeverity.WARNING,
            recommendation=None if readable else "Provision the admin credentials file",
        )
