"""
Cluster control API access.

ClusterClient is the orchestrator's only mutation surface. KubectlClient
implements it over the kubectl CLI with server-side apply; tests supply an
in-memory implementation.

Apply failures are translated into structured ResourceConflict entries at
this boundary so callers never match on command output.
"""

import json
import logging
import re
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import yaml

from ..core.constants import DEFAULT_COMMAND_TIMEOUT, DEFAULT_KUBECTL, DEFAULT_NAMESPACE
from ..core.exceptions import ApplyError, ClusterCommandError, ResourceConflict
from ..utils.resources import container_image, describe, image_tag, resource_key

logger = logging.getLogger(__name__)


@dataclass
class ReplicaStatus:
    """Desired and ready replica counts read from a workload's status."""

    desired: int
    ready: int
    failed: bool = False
    message: str = ""


# =============================================================================
# SECTION 1: ABSTRACT CLIENT
# =============================================================================


class ClusterClient(ABC):
    """Namespaced access to named resources, readiness and logs."""

    namespace: str = DEFAULT_NAMESPACE

    @abstractmethod
    def get(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        """Return the live object or None when it does not exist."""

    @abstractmethod
    def list(self, kind: str) -> List[Dict[str, Any]]:
        """Return every object of a kind in the namespace."""

    @abstractmethod
    def apply(self, resources: List[Dict[str, Any]]) -> List[str]:
        """
        Field-merge apply a resource set.

        Returns:
            "Kind/name" of every resource whose observed state changed

        Raises:
            ApplyError: With one ResourceConflict per rejected resource
        """

    @abstractmethod
    def delete(self, kind: str, name: str, cascade: str = "orphan") -> bool:
        """Delete one object; True when it existed."""

    @abstractmethod
    def patch(self, kind: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Merge-patch one object and return the result."""

    @abstractmethod
    def logs(self, selector: str, since: str) -> str:
        """Recent log text of pods matching a label selector."""

    @abstractmethod
    def server_version(self) -> Optional[str]:
        """Version of the cluster control plane, e.g. v1.29.3."""

    # -------------------------------------------------------------------------
    # Derived reads shared by every implementation
    # -------------------------------------------------------------------------

    def reported_version(self, deployment: str) -> Optional[str]:
        """Image tag of the version-bearing deployment's first container."""
        obj = self.get("Deployment", deployment)
        if obj is None:
            return None
        return image_tag(container_image(obj))

    def replica_status(self, kind: str, name: str) -> Optional[ReplicaStatus]:
        """Readiness of a Deployment or StatefulSet, None when absent."""
        obj = self.get(kind, name)
        if obj is None:
            return None

        spec = obj.get("spec") or {}
        status = obj.get("status") or {}
        desired = spec.get("replicas", 1)
        ready = status.get("readyReplicas", 0) or 0

        failed = False
        message = ""
        for condition in status.get("conditions") or []:
            ctype = condition.get("type")
            cstatus = condition.get("status")
            if ctype == "ReplicaFailure" and cstatus == "True":
                failed = True
                message = condition.get("message", "replica failure")
            elif (
                ctype == "Progressing"
                and cstatus == "False"
                and condition.get("reason") == "ProgressDeadlineExceeded"
            ):
                failed = True
                message = condition.get("message", "progress deadline exceeded")

        return ReplicaStatus(desired=desired, ready=ready, failed=failed, message=message)


# =============================================================================
# SECTION 2: KUBECTL IMPLEMENTATION
# =============================================================================

_INVALID_RE = re.compile(r'The (\w+) "([^"]+)" is invalid: (.+)')
_IMMUTABLE_MARKERS = ("field is immutable", "Forbidden: updates to statefulset spec")


def parse_apply_conflicts(stderr: str) -> List[ResourceConflict]:
    """
    Turn kubectl apply error output into ResourceConflict entries.

    Only the "is invalid" form carries a kind and name; every other error
    line becomes a non-immutable conflict without a resource identity.
    """
    conflicts: List[ResourceConflict] = []
    for line in stderr.splitlines():
        line = line.strip()
        if not line:
            continue
        match = _INVALID_RE.search(line)
        if match:
            kind, name, detail = match.groups()
            immutable = any(marker in detail for marker in _IMMUTABLE_MARKERS)
            field_name = "spec.selector" if "selector" in detail or immutable else ""
            conflicts.append(
                ResourceConflict(kind, name, field_name, immutable=immutable, message=detail)
            )
        elif line.lower().startswith("error"):
            conflicts.append(ResourceConflict("", "", message=line))
    return conflicts


def _applied_objects(stdout: str) -> List[Dict[str, Any]]:
    """Objects echoed by `kubectl apply -o json` (one object or a List)."""
    if not stdout.strip():
        return []
    payload = json.loads(stdout)
    if payload.get("kind") == "List":
        return payload.get("items") or []
    return [payload]


class KubectlClient(ClusterClient):
    """ClusterClient backed by the kubectl CLI."""

    def __init__(
        self,
        namespace: str = DEFAULT_NAMESPACE,
        kubectl: str = DEFAULT_KUBECTL,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        timeout: int = DEFAULT_COMMAND_TIMEOUT,
    ):
        self.namespace = namespace
        self.kubectl = kubectl
        self.kubeconfig = kubeconfig
        self.context = context
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "KubectlClient":
        return cls(
            namespace=settings.namespace,
            kubectl=settings.kubectl,
            kubeconfig=settings.kubeconfig,
            context=settings.context,
            timeout=settings.command_timeout,
        )

    def _base(self, namespaced: bool = True) -> List[str]:
        cmd = [self.kubectl]
        if self.kubeconfig:
            cmd += ["--kubeconfig", self.kubeconfig]
        if self.context:
            cmd += ["--context", self.context]
        if namespaced:
            cmd += ["-n", self.namespace]
        return cmd

    def _run(
        self, args: List[str], stdin: Optional[str] = None, namespaced: bool = True
    ) -> subprocess.CompletedProcess:
        cmd = self._base(namespaced) + args
        logger.debug(f"[{self.namespace}] $ {' '.join(cmd)}")
        try:
            return subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise ClusterCommandError(
                f"kubectl binary not found: {self.kubectl}",
                "Install kubectl or set UPGRADE_KUBECTL",
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ClusterCommandError(
                f"kubectl {' '.join(args[:2])} timed out after {self.timeout}s",
                "Check cluster connectivity or raise the command timeout",
            ) from e

    def _check(self, result: subprocess.CompletedProcess, action: str) -> str:
        if result.returncode != 0:
            raise ClusterCommandError(
                f"kubectl {action} failed: {result.stderr.strip()}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result.stdout

    def get(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        result = self._run(["get", kind, name, "-o", "json"])
        if result.returncode != 0 and "NotFound" in result.stderr:
            return None
        return json.loads(self._check(result, f"get {kind}/{name}"))

    def list(self, kind: str) -> List[Dict[str, Any]]:
        result = self._run(["get", kind, "-o", "json"])
        if result.returncode != 0 and "the server doesn't have a resource type" in result.stderr:
            return []
        return json.loads(self._check(result, f"get {kind}")).get("items", [])

    def apply(self, resources: List[Dict[str, Any]]) -> List[str]:
        if not resources:
            return []
        before = {resource_key(r): self._resource_version(*resource_key(r)) for r in resources}
        manifest = yaml.safe_dump_all(resources, sort_keys=False)
        result = self._run(
            ["apply", "--server-side", "--force-conflicts", "-o", "json", "-f", "-"], stdin=manifest
        )
        if result.returncode != 0:
            conflicts = parse_apply_conflicts(result.stderr)
            raise ApplyError(
                f"Apply of {len(resources)} resources failed: {result.stderr.strip()}",
                "Inspect the rejected resources listed in the error",
                conflicts=conflicts,
            )

        # server-side apply reports every object as applied; only a new
        # resourceVersion means the stored object changed
        changed = []
        for obj in _applied_objects(result.stdout):
            version = (obj.get("metadata") or {}).get("resourceVersion")
            if version != before.get(resource_key(obj)):
                changed.append(describe(obj))
        logger.debug(f"[{self.namespace}] Applied {len(resources)} resources")
        return changed

    def _resource_version(self, kind: str, name: str) -> Optional[str]:
        result = self._run(["get", kind, name, "-o", "jsonpath={.metadata.resourceVersion}"])
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def delete(self, kind: str, name: str, cascade: str = "orphan") -> bool:
        result = self._run(
            ["delete", kind, name, f"--cascade={cascade}", "--wait=false", "--ignore-not-found"]
        )
        output = self._check(result, f"delete {kind}/{name}")
        return bool(output.strip())

    def patch(self, kind: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        result = self._run(
            ["patch", kind, name, "--type=merge", "-p", json.dumps(patch), "-o", "json"]
        )
        return json.loads(self._check(result, f"patch {kind}/{name}"))

    def logs(self, selector: str, since: str) -> str:
        result = self._run(
            ["logs", "-l", selector, f"--since={since}", "--all-containers", "--tail=500"]
        )
        if result.returncode != 0:
            logger.warning(f"[{self.namespace}] ⚠️ Could not read logs for {selector}")
            return ""
        return result.stdout

    def server_version(self) -> Optional[str]:
        result = self._run(["version", "-o", "json"], namespaced=False)
        if result.returncode != 0:
            logger.warning(f"⚠️ Could not read cluster version: {result.stderr.strip()}")
            return None
        data = json.loads(result.stdout or "{}")
        return (data.get("serverVersion") or {}).get("gitVersion")
