"""
Bounded wait for target-state readiness.

Polls every component declared on a release until all required components
are ready, one of them fails, or the timeout elapses. The wait never blocks
past its deadline; on timeout the last per-component results are returned
for diagnostics.
"""

import logging
import time
from typing import Callable, List, Optional

from ..core.constants import DEFAULT_HEALTH_TIMEOUT, DEFAULT_POLL_INTERVAL
from ..core.dataclasses import ComponentSpec, HealthCheckResult, HealthGateResult, ReleaseNode
from ..core.enums import HealthStatus
from ..core.exceptions import HealthTimeoutError

logger = logging.getLogger(__name__)


class HealthGate:
    """Polls component readiness through a ClusterClient."""

    def __init__(
        self,
        client,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.poll_interval = poll_interval
        self.clock = clock
        self.sleep = sleep

    def check_component(self, component: ComponentSpec) -> HealthCheckResult:
        """Single readiness read for one component."""
        status = self.client.replica_status(component.kind, component.name)
        if status is None:
            return HealthCheckResult(
                component=component.name,
                kind=component.kind,
                desired=0,
                ready=0,
                required=component.required,
                status=HealthStatus.PENDING,
                message="not found",
            )
        if status.failed:
            state = HealthStatus.FAILED
            message = status.message
        elif status.ready >= status.desired:
            state = HealthStatus.READY
            message = f"{status.ready}/{status.desired} ready"
        else:
            state = HealthStatus.PENDING
            message = f"{status.ready}/{status.desired} ready"
        return HealthCheckResult(
            component=component.name,
            kind=component.kind,
            desired=status.desired,
            ready=status.ready,
            required=component.required,
            status=state,
            message=message,
        )

    def wait(self, node: ReleaseNode, timeout: float = DEFAULT_HEALTH_TIMEOUT) -> HealthGateResult:
        """
        Wait for a release's components to become ready.

        Args:
            node: Release whose components are polled
            timeout: Upper bound on the wait in seconds

        Returns:
            HealthGateResult; READY when every required component is ready,
            FAILED when one reported failure or the deadline passed. Missing
            optional components are listed as warnings.
        """
        start = self.clock()
        deadline = start + timeout
        results: List[HealthCheckResult] = []
        logger.info(
            f"[{node.version}] ⏳ Waiting up to {timeout:.0f}s for "
            f"{len(node.required_components)} required components"
        )

        while True:
            results = [self.check_component(c) for c in node.components]
            required = [r for r in results if r.required]

            failed = [r for r in required if r.status == HealthStatus.FAILED]
            if failed:
                names = ", ".join(r.component for r in failed)
                logger.error(f"[{node.version}] ❌ Components failed: {names}")
                return self._result(HealthStatus.FAILED, results, start)

            if all(r.status == HealthStatus.READY for r in required):
                logger.info(f"[{node.version}] ✅ All required components ready")
                return self._result(HealthStatus.READY, results, start)

            now = self.clock()
            if now >= deadline:
                break
            pending = ", ".join(r.component for r in required if r.status != HealthStatus.READY)
            logger.debug(f"[{node.version}] Still waiting for: {pending}")
            self.sleep(min(self.poll_interval, max(deadline - now, 0)))

        for r in results:
            if r.required and r.status == HealthStatus.PENDING:
                r.status = HealthStatus.TIMEOUT
        names = ", ".join(r.component for r in results if r.status == HealthStatus.TIMEOUT)
        logger.error(f"[{node.version}] ❌ Timed out after {timeout:.0f}s waiting for: {names}")
        return self._result(HealthStatus.FAILED, results, start)

    def require_ready(
        self, node: ReleaseNode, timeout: float = DEFAULT_HEALTH_TIMEOUT
    ) -> HealthGateResult:
        """wait() that raises HealthTimeoutError unless the result is READY."""
        result = self.wait(node, timeout)
        if not result.ready:
            summary = ", ".join(
                f"{r.component}={r.status.value} ({r.ready}/{r.desired})" for r in result.not_ready
            )
            raise HealthTimeoutError(
                f"{node.version} components not ready: {summary}",
                "Inspect the listed workloads, then retry validate or roll back",
                result=result,
            )
        return result

    def _result(
        self, status: HealthStatus, results: List[HealthCheckResult], start: float
    ) -> HealthGateResult:
        warnings = [
            f"Optional component {r.component} is not present"
            for r in results
            if not r.required and r.message == "not found"
        ]
        for warning in warnings:
            logger.warning(f"⚠️ {warning}")
        return HealthGateResult(
            status=status,
            results=results,
            warnings=warnings,
            elapsed=self.clock() - start,
        )
