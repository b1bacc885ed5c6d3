"""
In-memory ClusterClient used across the test suite.

Applies behave like a single field manager doing server-side apply: the
applied definition replaces the stored one, server-owned status survives
and resourceVersion only moves when the object actually changed.
"""

import copy
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from cluster_upgrade.connectivity.cluster_client import ClusterClient
from cluster_upgrade.core.exceptions import ApplyError, ResourceConflict
from cluster_upgrade.manifests.resolver import ManifestResolver
from cluster_upgrade.utils.resources import deep_merge, resource_key, strip_server_fields

OVERLAYS_DIR = Path(__file__).resolve().parent.parent / "overlays"

WORKLOAD_KINDS = ("Deployment", "StatefulSet")


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(seconds, 0.001)


class FakeCluster(ClusterClient):
    def __init__(self, namespace: str = "argocd", server_version: Optional[str] = "v1.29.3"):
        self.namespace = namespace
        self.objects: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.dependency_version = server_version
        self.stuck: Set[str] = set()
        self.failing: Set[str] = set()
        self.undeletable: Set[Tuple[str, str]] = set()
        self.log_text: Dict[str, str] = {}
        self.apply_errors: List[Exception] = []
        self.apply_calls: List[List[str]] = []
        self.deletions: List[Tuple[str, str, str]] = []
        self._version_counter = 0

    # -------------------------------------------------------------------------
    # Seeding helpers
    # -------------------------------------------------------------------------

    def add(self, obj: Dict[str, Any]) -> None:
        """Store an object as-is, bypassing apply (status included)."""
        obj = copy.deepcopy(obj)
        obj.setdefault("metadata", {}).setdefault("namespace", self.namespace)
        self._stamp(obj)
        self.objects[resource_key(obj)] = obj

    def add_application(self, name: str, health: str = "Healthy", sync: str = "Synced") -> None:
        self.add(
            {
                "apiVersion": "argoproj.io/v1alpha1",
                "kind": "Application",
                "metadata": {"name": name},
                "spec": {"project": "default"},
                "status": {"health": {"status": health}, "sync": {"status": sync}},
            }
        )

    def add_claim(self, name: str) -> None:
        self.add(
            {
                "apiVersion": "v1",
                "kind": "PersistentVolumeClaim",
                "metadata": {"name": name},
                "spec": {"accessModes": ["ReadWriteOnce"]},
            }
        )

    def install_release(self, version: str, graph) -> None:
        """Put the resolved resource set of ``version`` straight into the store."""
        resolver = ManifestResolver(OVERLAYS_DIR, self.namespace)
        self.apply(resolver.resolve(graph.node(version)))
        self.apply_calls.clear()

    def state(self) -> Dict[Tuple[str, str], Dict[str, Any]]:
        return copy.deepcopy(self.objects)

    # -------------------------------------------------------------------------
    # ClusterClient
    # -------------------------------------------------------------------------

    def get(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        obj = self.objects.get((kind, name))
        return copy.deepcopy(obj) if obj is not None else None

    def list(self, kind: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(o) for (k, _), o in sorted(self.objects.items()) if k == kind]

    def apply(self, resources: List[Dict[str, Any]]) -> List[str]:
        self.apply_calls.append([f"{k}/{n}" for k, n in map(resource_key, resources)])
        if self.apply_errors:
            raise self.apply_errors.pop(0)

        conflicts = []
        for resource in resources:
            key = resource_key(resource)
            live = self.objects.get(key)
            if live is None or key[0] != "StatefulSet":
                continue
            if live["spec"].get("selector") != resource["spec"].get("selector"):
                conflicts.append(
                    ResourceConflict(
                        key[0],
                        key[1],
                        "spec.selector",
                        immutable=True,
                        message="Forbidden: updates to statefulset spec for fields other than "
                        "'replicas', 'template' are forbidden",
                    )
                )
        if conflicts:
            raise ApplyError(
                f"{len(conflicts)} resources rejected", "recreate", conflicts=conflicts
            )

        changed = []
        for resource in resources:
            key = resource_key(resource)
            live = self.objects.get(key)
            desired = strip_server_fields(resource)
            desired.setdefault("metadata", {}).setdefault("namespace", self.namespace)
            if live is not None and strip_server_fields(live) == desired:
                stored = live
            else:
                stored = copy.deepcopy(desired)
                if live is not None and "status" in live:
                    stored["status"] = copy.deepcopy(live["status"])
                self._stamp(stored)
                changed.append(f"{key[0]}/{key[1]}")
            if key[0] in WORKLOAD_KINDS:
                stored["status"] = self._workload_status(stored)
            self.objects[key] = stored
        return changed

    def delete(self, kind: str, name: str, cascade: str = "orphan") -> bool:
        self.deletions.append((kind, name, cascade))
        if (kind, name) in self.undeletable:
            return True
        return self.objects.pop((kind, name), None) is not None

    def patch(self, kind: str, name: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        merged = deep_merge(self.objects[(kind, name)], patch)
        self._stamp(merged)
        self.objects[(kind, name)] = merged
        return copy.deepcopy(merged)

    def logs(self, selector: str, since: str) -> str:
        return self.log_text.get(selector, "")

    def server_version(self) -> Optional[str]:
        return self.dependency_version

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _stamp(self, obj: Dict[str, Any]) -> None:
        self._version_counter += 1
        obj["metadata"]["resourceVersion"] = str(self._version_counter)
        obj["metadata"].setdefault("uid", f"uid-{self._version_counter}")

    def _workload_status(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        name = obj["metadata"]["name"]
        replicas = (obj.get("spec") or {}).get("replicas", 1)
        status: Dict[str, Any] = {
            "replicas": replicas,
            "readyReplicas": 0 if name in self.stuck or name in self.failing else replicas,
        }
        if name in self.failing:
            status["conditions"] = [
                {
                    "type": "Progressing",
                    "status": "False",
                    "reason": "ProgressDeadlineExceeded",
                    "message": f"{name} exceeded its progress deadline",
                }
            ]
        return status
