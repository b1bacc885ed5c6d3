"""
End-to-end transition tests against the in-memory cluster.
"""

import io
import json
import threading

import pytest

from cluster_upgrade.core.enums import TransitionKind, TransitionStatus
from cluster_upgrade.core.exceptions import ConfirmationRequiredError, SequenceError, ValidationError
from cluster_upgrade.progress.event_sender import EventEmitter
from cluster_upgrade.upgrade.orchestrator import TransitionOrchestrator
from cluster_upgrade.upgrade.rollback_controller import RollbackController

CONTROLLER = ("StatefulSet", "argocd-application-controller")
CLAIM = "data-argocd-application-controller-0"


def _phases(record):
    return [p.phase for p in record.phases]


def _policy_csv(cluster):
    return cluster.get("ConfigMap", "argocd-rbac-cm")["data"]["policy.csv"]


class TestInstallAndUpgrade:
    def test_install_first_release(self, orchestrator, cluster):
        record = orchestrator.install()
        assert record.status == TransitionStatus.SUCCESS, record.error
        assert record.kind == TransitionKind.INSTALL
        assert record.from_version is None
        assert cluster.reported_version("argocd-server") == "v2.10.17"
        assert _phases(record) == [
            "preflighted",
            "backup_captured",
            "advisory_acknowledged",
            "applying",
            "health_pending",
            "validating",
            "success",
        ]

    def test_install_refuses_existing_installation(self, orchestrator, cluster, graph):
        cluster.install_release("v2.14", graph)
        record = orchestrator.install()
        assert record.status == TransitionStatus.FAILED
        assert record.error_type == "PreflightError"
        assert record.rollback_command is None

    def test_walk_the_whole_ladder(self, orchestrator, cluster):
        cluster.add_application("guestbook")
        cluster.add_claim(CLAIM)
        assert orchestrator.install().succeeded

        records = orchestrator.upgrade_to("v3.2", confirmed=True)
        assert [(r.from_version, r.to_version) for r in records] == [
            ("v2.10", "v2.14"),
            ("v2.14", "v3.0"),
            ("v3.0", "v3.1"),
            ("v3.1", "v3.2"),
        ]
        assert all(r.succeeded for r in records), [r.error for r in records]
        assert cluster.reported_version("argocd-server") == "v3.2.1"
        assert "update/*" in _policy_csv(cluster)
        assert cluster.deletions == [(CONTROLLER[0], CONTROLLER[1], "orphan")]
        assert cluster.get("PersistentVolumeClaim", CLAIM) is not None

        v3 = records[1]
        health_pending = next(p for p in v3.phases if p.phase == "health_pending")
        assert health_pending.details["recreated"] == ["StatefulSet/argocd-application-controller"]
        assert health_pending.details["migrations"] == ["rbac-fine-grained-permissions"]

    def test_upgrade_step_numbers(self, orchestrator, cluster, graph):
        cluster.install_release("v2.10", graph)
        record = orchestrator.upgrade_step(1)
        assert record.succeeded
        assert (record.from_version, record.to_version) == ("v2.10", "v2.14")
        with pytest.raises(SequenceError):
            orchestrator.upgrade_step(7)

    def test_skip_is_rejected_before_any_mutation(self, orchestrator, cluster, graph):
        cluster.install_release("v2.14", graph)
        before = cluster.state()
        record = orchestrator.upgrade("v2.14", "v3.1", confirmed=True)
        assert record.status == TransitionStatus.FAILED
        assert record.error_type == "SequenceError"
        assert record.backup_reference is None
        assert cluster.state() == before

    def test_wrong_running_version_fails_preflight(self, orchestrator, cluster, graph):
        cluster.install_release("v2.10", graph)
        before = cluster.state()
        record = orchestrator.upgrade("v2.14", "v3.0", confirmed=True)
        assert record.status == TransitionStatus.FAILED
        assert record.error_type == "PreflightError"
        assert record.backup_reference is None
        assert record.rollback_command == "rollback v2.14"
        assert cluster.state() == before
        assert orchestrator.backups.list() == []


class TestGates:
    def test_critical_advisory_blocks_applying(self, orchestrator, cluster, graph):
        cluster.install_release("v2.14", graph)
        before = cluster.state()

        record = orchestrator.upgrade("v2.14", "v3.0")

        assert record.status == TransitionStatus.FAILED
        assert record.error_type == "ConfirmationRequiredError"
        assert "applying" not in _phases(record)
        assert record.phases[-1].phase == "backup_captured"
        assert record.backup_reference is not None
        assert cluster.state() == before

    def test_callback_confirms_advisory(self, settings, cluster, graph, clock):
        prompts = []

        def confirm(prompt, details):
            prompts.append(details)
            return True

        settings.confirmation_callback = confirm
        cluster.install_release("v2.14", graph)
        orchestrator = TransitionOrchestrator(settings, cluster, clock=clock, sleep=clock.sleep)

        record = orchestrator.upgrade("v2.14", "v3.0")
        assert record.succeeded, record.error
        assert prompts[0]["to_version"] == "v3.0"

    def test_unconverged_applications_need_confirmation(self, orchestrator, cluster, graph):
        cluster.install_release("v2.10", graph)
        cluster.add_application("billing", health="Degraded")
        record = orchestrator.upgrade("v2.10", "v2.14")
        assert record.error_type == "ConfirmationRequiredError"
        assert record.phases[-1].phase == "init"

    def test_cancellation_before_apply(self, settings, cluster, graph, clock):
        cluster.install_release("v2.10", graph)
        cancel = threading.Event()
        cancel.set()
        orchestrator = TransitionOrchestrator(
            settings, cluster, cancel_event=cancel, clock=clock, sleep=clock.sleep
        )
        record = orchestrator.upgrade("v2.10", "v2.14")
        assert record.error_type == "TransitionCancelled"
        assert cluster.apply_calls == []

    def test_skipped_migration_fails_validation(self, orchestrator, cluster, graph):
        cluster.install_release("v2.14", graph)
        orchestrator.executor.run_migrations = lambda node, snapshot: []
        orchestrator.resolver.resolve = (
            lambda node, include_migrations=True, _resolve=orchestrator.resolver.resolve: _resolve(
                node, include_migrations=False
            )
        )

        record = orchestrator.upgrade("v2.14", "v3.0", confirmed=True)

        assert record.status == TransitionStatus.FAILED
        assert record.error_type == "ValidationError"
        assert record.rollback_command == "rollback v2.14"
        failed = {r.check_name for r in record.validation_results if not r.passed}
        assert "operator-can-update-managed-resources" in failed


class TestHealthFailureAndRollback:
    def _failed_v3_upgrade(self, orchestrator, cluster, graph):
        cluster.install_release("v2.14", graph)
        cluster.add_application("guestbook")
        cluster.add_claim(CLAIM)
        cluster.stuck.add("argocd-repo-server")
        return orchestrator.upgrade("v2.14", "v3.0", confirmed=True)

    def test_health_timeout_halts_in_place(self, orchestrator, cluster, graph):
        record = self._failed_v3_upgrade(orchestrator, cluster, graph)

        assert record.status == TransitionStatus.FAILED
        assert record.error_type == "HealthTimeoutError"
        assert record.phases[-1].phase == "health_pending"
        assert record.rollback_command == "rollback v2.14"
        assert "argocd-repo-server" in record.error
        assert cluster.reported_version("argocd-server") == "v3.0.12"

    def test_rollback_restores_prior_release(self, orchestrator, cluster, graph):
        failed = self._failed_v3_upgrade(orchestrator, cluster, graph)
        cluster.stuck.clear()

        rollback = RollbackController(orchestrator).reverse_to("v2.14")

        assert rollback.status == TransitionStatus.SUCCESS, rollback.error
        assert rollback.kind == TransitionKind.ROLLBACK
        assert rollback.source_transition == failed.transition_id
        assert cluster.reported_version("argocd-server") == "v2.14.11"
        assert "update/*" not in _policy_csv(cluster)
        assert [r.check_name for r in rollback.validation_results] == ["version", "components_ready"]
        assert cluster.get("PersistentVolumeClaim", CLAIM) is not None
        selector = cluster.get(*CONTROLLER)["spec"]["selector"]["matchLabels"]
        assert "app.kubernetes.io/part-of" not in selector

        journaled = orchestrator.journal.load(failed.transition_id)
        assert journaled.status == TransitionStatus.ROLLED_BACK
        assert rollback.backup_reference != failed.backup_reference

    def test_rollback_without_journal_entry(self, orchestrator):
        with pytest.raises(SequenceError):
            RollbackController(orchestrator).reverse_to("v3.0")

    def test_failed_rollback_reports_retry_command(self, orchestrator, cluster, graph):
        self._failed_v3_upgrade(orchestrator, cluster, graph)
        rollback = RollbackController(orchestrator).reverse_to("v2.14")
        assert rollback.status == TransitionStatus.FAILED
        assert rollback.error_type == "HealthTimeoutError"
        assert rollback.rollback_command == "rollback v2.14"

    def test_unexpected_error_ends_failed_and_stays_reversible(self, orchestrator, cluster, graph):
        cluster.install_release("v2.14", graph)
        cluster.apply_errors.append(PermissionError("kubectl: permission denied"))

        record = orchestrator.upgrade("v2.14", "v3.0", confirmed=True)

        assert record.status == TransitionStatus.FAILED
        assert record.error_type == "UnexpectedTransitionError"
        assert "PermissionError" in record.error
        assert record.phases[-1].phase == "applying"
        assert record.rollback_command == "rollback v2.14"
        assert orchestrator.journal.load(record.transition_id).status == TransitionStatus.FAILED
        assert orchestrator.journal.latest_leaving("v2.14").transition_id == record.transition_id
        assert record.backup_reference in orchestrator.journal.referenced_backups()

        rollback = RollbackController(orchestrator).reverse_to("v2.14")
        assert rollback.status == TransitionStatus.SUCCESS, rollback.error
        assert cluster.reported_version("argocd-server") == "v2.14.11"

    def test_unexpected_error_during_rollback(self, orchestrator, cluster, graph, monkeypatch):
        self._failed_v3_upgrade(orchestrator, cluster, graph)
        cluster.stuck.clear()

        def broken_gate(node, timeout):
            raise KeyError("readyReplicas")

        monkeypatch.setattr(orchestrator.health_gate, "require_ready", broken_gate)
        rollback = RollbackController(orchestrator).reverse_to("v2.14")

        assert rollback.status == TransitionStatus.FAILED
        assert rollback.error_type == "UnexpectedTransitionError"
        assert rollback.phases[-1].phase == "health_pending"
        assert rollback.rollback_command == "rollback v2.14"
        assert orchestrator.journal.load(rollback.transition_id).status == TransitionStatus.FAILED

    def test_cleanup_keeps_rollback_snapshots(self, orchestrator, cluster, graph):
        failed = self._failed_v3_upgrade(orchestrator, cluster, graph)
        removed = orchestrator.cleanup(keep=0)
        assert failed.backup_reference not in removed
        assert [s.directory for s in orchestrator.backups.list()] == [failed.backup_reference]


class TestUninstall:
    STUCK_FINALIZER = "resources-finalizer.argocd.argoproj.io"

    def _seed(self, cluster, graph):
        cluster.install_release("v2.10", graph)
        cluster.add_application("guestbook")
        for name in ("argocd", "guestbook", "test-apps"):
            cluster.add({"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}})

    def test_uninstall_needs_confirmation(self, orchestrator, cluster, graph):
        self._seed(cluster, graph)
        with pytest.raises(ConfirmationRequiredError):
            orchestrator.uninstall()
        assert cluster.deletions == []

    def test_uninstall_removes_applications_and_namespaces(self, orchestrator, cluster, graph):
        self._seed(cluster, graph)
        removed = orchestrator.uninstall(confirmed=True)
        assert removed == [
            "Application/guestbook",
            "Namespace/guestbook",
            "Namespace/test-apps",
            "Namespace/argocd",
        ]
        assert cluster.list("Application") == []
        assert cluster.list("Namespace") == []
        assert ("Application", "guestbook", "background") in cluster.deletions

    def test_stuck_finalizers_are_cleared(self, orchestrator, cluster, graph, clock):
        self._seed(cluster, graph)
        cluster.patch("Application", "guestbook", {"metadata": {"finalizers": [self.STUCK_FINALIZER]}})
        cluster.undeletable.add(("Application", "guestbook"))
        start = clock.now

        orchestrator.uninstall(confirmed=True)

        assert clock.now - start == pytest.approx(20)
        assert "finalizers" not in cluster.get("Application", "guestbook")["metadata"]
        assert cluster.get("Namespace", "argocd") is None


class TestValidateAndEvents:
    def test_validate_running_release(self, orchestrator, cluster, graph):
        cluster.install_release("v3.0", graph)
        outcome = orchestrator.validate()
        assert outcome.target_version == "v3.0"
        assert outcome.passed

    def test_validate_with_nothing_installed(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.validate()

    def test_events_follow_every_phase(self, settings, cluster, clock):
        stream = io.StringIO()
        orchestrator = TransitionOrchestrator(
            settings, cluster, emitter=EventEmitter(stream=stream), clock=clock, sleep=clock.sleep
        )
        orchestrator.install()

        events = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert [e["sequence"] for e in events] == list(range(1, len(events) + 1))
        assert events[0]["event_type"] == "PRE_CHECK_COMPLETE"
        assert [e["data"]["phase"] for e in events if e["event_type"] == "PHASE_COMPLETE"][-1] == "success"
        final = events[-1]
        assert final["event_type"] == "TRANSITION_COMPLETE"
        assert final["data"]["status"] == "success"

    def test_journal_lists_every_transition(self, orchestrator, cluster, graph):
        orchestrator.install()
        orchestrator.upgrade("v2.10", "v2.14")
        records = orchestrator.journal.records()
        assert [r.kind for r in records] == [TransitionKind.INSTALL, TransitionKind.UPGRADE]
        assert all(r.status == TransitionStatus.SUCCESS for r in records)
