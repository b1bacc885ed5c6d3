"""
Tests for the kubectl-backed client and the shared readiness reads.
"""

import json
import subprocess

import pytest

from cluster_upgrade.connectivity.cluster_client import KubectlClient, parse_apply_conflicts
from cluster_upgrade.core.exceptions import ApplyError, ClusterCommandError

IMMUTABLE_STDERR = (
    'The StatefulSet "argocd-application-controller" is invalid: spec: Forbidden: '
    "updates to statefulset spec for fields other than 'replicas', 'template' are forbidden\n"
)


class RecordingRun:
    """Stands in for subprocess.run and records every command."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append((cmd, kwargs))
        returncode, stdout, stderr = self.results.pop(0)
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def kubectl():
    return KubectlClient(namespace="argocd", kubeconfig="/tmp/kubeconfig", context="lab")


class TestParseApplyConflicts:
    def test_immutable_statefulset_selector(self):
        conflicts = parse_apply_conflicts(IMMUTABLE_STDERR)
        assert len(conflicts) == 1
        conflict = conflicts[0]
        assert (conflict.kind, conflict.name) == ("StatefulSet", "argocd-application-controller")
        assert conflict.immutable
        assert conflict.field == "spec.selector"

    def test_other_errors_are_not_immutable(self):
        conflicts = parse_apply_conflicts(
            'The Deployment "argocd-server" is invalid: spec.replicas: Invalid value: -1\n'
            "error: unable to recognize \"STDIN\": no matches for kind \"Rollout\"\n"
        )
        assert [c.immutable for c in conflicts] == [False, False]
        assert conflicts[1].kind == ""


class TestKubectlClient:
    def test_command_carries_connection_flags(self, kubectl, monkeypatch):
        run = RecordingRun((0, json.dumps({"kind": "ConfigMap", "metadata": {"name": "argocd-cm"}}), ""))
        monkeypatch.setattr(subprocess, "run", run)
        assert kubectl.get("ConfigMap", "argocd-cm")["metadata"]["name"] == "argocd-cm"
        cmd = run.calls[0][0]
        assert cmd[:7] == ["kubectl", "--kubeconfig", "/tmp/kubeconfig", "--context", "lab", "-n", "argocd"]
        assert cmd[7:] == ["get", "ConfigMap", "argocd-cm", "-o", "json"]

    def test_get_missing_object(self, kubectl, monkeypatch):
        monkeypatch.setattr(
            subprocess, "run", RecordingRun((1, "", 'Error from server (NotFound): configmaps "x" not found'))
        )
        assert kubectl.get("ConfigMap", "x") is None

    def test_get_other_failure_raises(self, kubectl, monkeypatch):
        monkeypatch.setattr(subprocess, "run", RecordingRun((1, "", "Unable to connect to the server")))
        with pytest.raises(ClusterCommandError):
            kubectl.get("ConfigMap", "x")

    def test_apply_reports_only_resources_with_a_new_resource_version(self, kubectl, monkeypatch):
        applied = {
            "kind": "List",
            "items": [
                {"kind": "ConfigMap", "metadata": {"name": "argocd-cm", "resourceVersion": "5"}},
                {"kind": "Deployment", "metadata": {"name": "argocd-server", "resourceVersion": "9"}},
            ],
        }
        run = RecordingRun(
            (0, "5", ""),
            (1, "", 'Error from server (NotFound): deployments.apps "argocd-server" not found'),
            (0, json.dumps(applied), ""),
        )
        monkeypatch.setattr(subprocess, "run", run)
        changed = kubectl.apply(
            [
                {"kind": "ConfigMap", "metadata": {"name": "argocd-cm"}},
                {"kind": "Deployment", "metadata": {"name": "argocd-server"}},
            ]
        )
        assert changed == ["Deployment/argocd-server"]
        cmd, kwargs = run.calls[2]
        assert "--server-side" in cmd
        assert cmd[cmd.index("-o") + 1] == "json"
        assert "name: argocd-cm" in kwargs["input"]

    def test_idempotent_reapply_reports_nothing_changed(self, kubectl, monkeypatch):
        applied = {"kind": "ConfigMap", "metadata": {"name": "argocd-cm", "resourceVersion": "5"}}
        monkeypatch.setattr(subprocess, "run", RecordingRun((0, "5", ""), (0, json.dumps(applied), "")))
        assert kubectl.apply([{"kind": "ConfigMap", "metadata": {"name": "argocd-cm"}}]) == []

    def test_apply_failure_carries_conflicts(self, kubectl, monkeypatch):
        monkeypatch.setattr(subprocess, "run", RecordingRun((0, "12", ""), (1, "", IMMUTABLE_STDERR)))
        with pytest.raises(ApplyError) as exc_info:
            kubectl.apply([{"kind": "StatefulSet", "metadata": {"name": "argocd-application-controller"}}])
        assert exc_info.value.only_immutable_conflicts

    def test_delete_uses_orphan_cascade(self, kubectl, monkeypatch):
        run = RecordingRun((0, 'statefulset.apps "argocd-application-controller" deleted\n', ""))
        monkeypatch.setattr(subprocess, "run", run)
        assert kubectl.delete("StatefulSet", "argocd-application-controller")
        assert "--cascade=orphan" in run.calls[0][0]

    def test_missing_binary(self, monkeypatch):
        def missing(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(subprocess, "run", missing)
        with pytest.raises(ClusterCommandError):
            KubectlClient(kubectl="no-such-kubectl").list("Application")

    def test_server_version(self, kubectl, monkeypatch):
        payload = json.dumps({"serverVersion": {"gitVersion": "v1.29.3+k3s1"}})
        monkeypatch.setattr(subprocess, "run", RecordingRun((0, payload, "")))
        assert kubectl.server_version() == "v1.29.3+k3s1"


class TestReplicaStatus:
    def test_replica_failure_condition(self, cluster):
        cluster.add(
            {
                "kind": "Deployment",
                "metadata": {"name": "argocd-server"},
                "spec": {"replicas": 2},
                "status": {
                    "readyReplicas": 1,
                    "conditions": [
                        {"type": "ReplicaFailure", "status": "True", "message": "quota exceeded"}
                    ],
                },
            }
        )
        status = cluster.replica_status("Deployment", "argocd-server")
        assert (status.desired, status.ready, status.failed) == (2, 1, True)
        assert status.message == "quota exceeded"
        assert cluster.replica_status("Deployment", "missing") is None

    def test_reported_version_reads_first_container(self, cluster, graph):
        assert cluster.reported_version("argocd-server") is None
        cluster.install_release("v3.1", graph)
        assert cluster.reported_version("argocd-server") == "v3.1.9"
