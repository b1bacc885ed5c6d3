"""
Post-transition validation.

Confirms the system reached the target release and runs the release's own
invariants. Each check is independent; a Critical failure fails the
transition and yields a rollback recommendation, which is never executed
automatically. Log inspection only ever produces warnings.
"""

import logging
import re
from typing import List, Optional

from ..core.constants import (
    DEFAULT_ACCESS_POLICY_CONFIGMAP,
    DEFAULT_VERSION_DEPLOYMENT,
    FAILED_HEALTH_STATES,
    LOG_INSPECTION_WINDOW,
    PENDING_HEALTH_STATES,
)
from ..core.dataclasses import InvariantSpec, ReleaseNode, ValidationOutcome, ValidationReport
from ..core.enums import CheckSeverity, HealthStatus, InvariantType
from .health_gate import HealthGate
from .preflight import collect_system_summary
from .rbac_policy import RBACPolicy

logger = logging.getLogger(__name__)


class PostTransitionValidator:
    """Validates the live system against a target release."""

    def __init__(
        self,
        client,
        health_gate: HealthGate,
        version_deployment: str = DEFAULT_VERSION_DEPLOYMENT,
        access_policy_configmap: str = DEFAULT_ACCESS_POLICY_CONFIGMAP,
    ):
        self.client = client
        self.health_gate = health_gate
        self.version_deployment = version_deployment
        self.access_policy_configmap = access_policy_configmap

    def validate(
        self,
        node: ReleaseNode,
        reduced: bool = False,
        previous: Optional[ReleaseNode] = None,
    ) -> ValidationOutcome:
        """
        Run post-transition checks for ``node``.

        Args:
            node: Release the system should now be running
            reduced: Only check version and component health (used after
                a rollback)
            previous: Release to recommend rolling back to on failure

        Returns:
            ValidationOutcome; passed is False on any Critical failure
        """
        summary = collect_system_summary(self.client, self.version_deployment)
        reports: List[ValidationReport] = [
            self.check_version(node, summary.reported_version),
            self.check_components(node),
        ]
        if not reduced:
            reports.append(self.check_workloads(summary))
            for invariant in node.invariants:
                reports.append(self.check_invariant(node, invariant))

        outcome = ValidationOutcome(target_version=node.version, reports=reports, reduced=reduced)
        for report in reports:
            if report.passed:
                logger.info(f"[{node.version}] ✅ {report.check_name}: {report.detail}")
            elif report.severity == CheckSeverity.CRITICAL:
                logger.error(f"[{node.version}] ❌ {report.check_name}: {report.detail}")
            else:
                logger.warning(f"[{node.version}] ⚠️ {report.check_name}: {report.detail}")

        if not outcome.passed and previous is not None:
            outcome.rollback_recommendation = f"rollback {previous.version}"
            logger.warning(
                f"[{node.version}] Consider rolling back: {outcome.rollback_recommendation}"
            )
        return outcome

    # -------------------------------------------------------------------------
    # Core checks
    # -------------------------------------------------------------------------

    def check_version(self, node: ReleaseNode, reported: Optional[str]) -> ValidationReport:
        passed = node.matches(reported)
        return ValidationReport(
            check_name="version",
            passed=passed,
            detail=f"Reported {reported or 'nothing'}, expected {node.version}.x",
            severity=CheckSeverity.CRITICAL,
            recommendation=None if passed else "Check that the overlay image tags were applied",
            details={"reported_version": reported},
        )

    def check_components(self, node: ReleaseNode) -> ValidationReport:
        results = [self.health_gate.check_component(c) for c in node.required_components]
        not_ready = [r for r in results if r.status != HealthStatus.READY]
        return ValidationReport(
            check_name="components_ready",
            passed=not not_ready,
            detail=(
                f"All {len(results)} required components ready"
                if not not_ready
                else "Not ready: " + ", ".join(f"{r.component} ({r.message})" for r in not_ready)
            ),
            severity=CheckSeverity.CRITICAL,
            details={"not_ready": [r.component for r in not_ready]},
        )

    def check_workloads(self, summary) -> ValidationReport:
        failed = [w for w in summary.workloads if w.health in FAILED_HEALTH_STATES]
        pending = [w for w in summary.workloads if w.health in PENDING_HEALTH_STATES]
        bad = failed + pending
        return ValidationReport(
            check_name="workloads_settled",
            passed=not bad,
            detail=(
                f"No failed or pending applications ({len(summary.workloads)} checked)"
                if not bad
                else "Unsettled applications: " + ", ".join(f"{w.name} ({w.health})" for w in bad)
            ),
            severity=CheckSeverity.CRITICAL,
            details={
                "failed": [w.name for w in failed],
                "pending": [w.name for w in pending],
            },
        )

    # -------------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------------

    def check_invariant(self, node: ReleaseNode, invariant: InvariantSpec) -> ValidationReport:
        if invariant.type == InvariantType.PERMISSION:
            return self.check_permission(node, invariant)
        return self.check_logs(invariant)

    def check_permission(self, node: ReleaseNode, invariant: InvariantSpec) -> ValidationReport:
        configmap = self.client.get("ConfigMap", self.access_policy_configmap)
        policy = RBACPolicy.from_configmap(configmap)
        subject = invariant.param("subject")
        action = invariant.param("action")
        expect = invariant.param("expect", "allow")
        allowed = policy.enforce(
            subject,
            invariant.param("resource", "applications"),
            action,
            invariant.param("object", "*/*"),
            node.features,
        )
        actual = "allow" if allowed else "deny"
        passed = actual == expect
        return ValidationReport(
            check_name=invariant.name,
            passed=passed,
            detail=f"{subject} {action}: {actual} (expected {expect})",
            severity=invariant.severity,
            recommendation=None if passed else "Re-apply the access-policy migration for this release",
            details={"subject": subject, "action": action, "result": actual},
        )

    def check_logs(self, invariant: InvariantSpec) -> ValidationReport:
        selector = invariant.param("selector", "")
        pattern = re.compile(invariant.param("pattern", "(?i)error"))
        text = self.client.logs(selector, invariant.param("since", LOG_INSPECTION_WINDOW))
        hits = [line for line in text.splitlines() if pattern.search(line)]
        severity = invariant.severity
        if severity == CheckSeverity.CRITICAL:
            severity = CheckSeverity.WARNING
        return ValidationReport(
            check_name=invariant.name,
            passed=not hits,
            detail=(
                f"No matching log lines for {selector}"
                if not hits
                else f"{len(hits)} log lines matched: {invariant.param('message', pattern.pattern)}"
            ),
            severity=severity,
            details={"samples": hits[:5]},
        )
