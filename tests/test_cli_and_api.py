"""
Tests for the command-line driver, settings loading and the HTTP gateway.
"""

import io
import json

import pytest
from fastapi.testclient import TestClient

from cluster_upgrade.api.main import create_app
from cluster_upgrade.core.config import ConfirmationPolicy, OrchestratorSettings
from cluster_upgrade.core.exceptions import CatalogError
from cluster_upgrade.run import main, normalize_argv
from cluster_upgrade.upgrade.orchestrator import TransitionOrchestrator


@pytest.fixture(autouse=True)
def non_interactive(monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO())


@pytest.fixture
def cli_args(settings):
    return [
        "--overlays-dir",
        str(settings.overlays_dir),
        "--backup-dir",
        str(settings.backup_dir),
        "--credentials-file",
        str(settings.credentials_file),
        "--health-timeout",
        "30",
    ]


def _run(cli_args, cluster, *command):
    return main(list(cli_args) + list(command), client_factory=lambda settings: cluster)


class TestSettings:
    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("UPGRADE_NAMESPACE", "argocd-staging")
        monkeypatch.setenv("UPGRADE_HEALTH_TIMEOUT", "45")
        monkeypatch.setenv("UPGRADE_AUTO_CONFIRM", "true")
        settings = OrchestratorSettings.from_env(health_timeout=60)
        assert settings.namespace == "argocd-staging"
        assert settings.health_timeout == 60
        assert settings.auto_confirm is True

    def test_settings_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("namespace: argocd-prod\nbackup_retention: 3\n")
        settings = OrchestratorSettings.from_file(path, backup_retention=5)
        assert settings.namespace == "argocd-prod"
        assert settings.backup_retention == 5

    def test_unreadable_settings_file(self, tmp_path):
        with pytest.raises(CatalogError):
            OrchestratorSettings.from_file(tmp_path / "missing.yaml")

    def test_confirmation_policy(self):
        assert not ConfirmationPolicy().confirm("continue?")
        assert ConfirmationPolicy(auto_confirm=True).confirm("continue?")
        assert ConfirmationPolicy(callback=lambda prompt, details: details["ok"]).confirm(
            "continue?", {"ok": True}
        )


class TestCommandLine:
    def test_normalize_step_command(self):
        assert normalize_argv(["-y", "upgrade-step-2"]) == ["-y", "upgrade-step", "2"]
        assert normalize_argv(["upgrade", "--to", "v3.2"]) == ["upgrade", "--to", "v3.2"]

    def test_install_then_status(self, cli_args, cluster, capsys):
        assert _run(cli_args, cluster, "install") == 0
        capsys.readouterr()

        assert _run(cli_args, cluster, "status") == 0
        status = json.loads(capsys.readouterr().out)
        assert status["reported_version"] == "v2.10.17"
        assert status["release"] == "v2.10"
        assert status["next_release"] == "v2.14"

    def test_upgrade_step_shorthand(self, cli_args, cluster, graph):
        cluster.install_release("v2.10", graph)
        assert _run(cli_args, cluster, "upgrade-step-1") == 0
        assert cluster.reported_version("argocd-server") == "v2.14.11"

    def test_critical_step_needs_yes(self, cli_args, cluster, graph):
        cluster.install_release("v2.14", graph)
        assert _run(cli_args, cluster, "upgrade-step-2") == 1
        assert cluster.reported_version("argocd-server") == "v2.14.11"
        assert _run(cli_args + ["-y"], cluster, "upgrade-step-2") == 0
        assert cluster.reported_version("argocd-server") == "v3.0.12"

    def test_upgrade_to(self, cli_args, cluster, graph):
        cluster.install_release("v3.0", graph)
        assert _run(cli_args, cluster, "upgrade", "--to", "v3.2") == 0
        assert cluster.reported_version("argocd-server") == "v3.2.1"
        assert _run(cli_args, cluster, "upgrade", "--to", "v3.2") == 0

    def test_rollback_command(self, cli_args, cluster, graph):
        cluster.install_release("v2.10", graph)
        cluster.failing.add("argocd-server")
        assert _run(cli_args, cluster, "upgrade-step-1") == 1
        cluster.failing.clear()
        assert _run(cli_args, cluster, "rollback", "v2.10") == 0
        assert cluster.reported_version("argocd-server") == "v2.10.17"

    def test_rollback_unknown_version(self, cli_args, cluster):
        assert _run(cli_args, cluster, "rollback", "v9.0") == 1

    def test_validate_and_backups(self, cli_args, cluster, graph, capsys):
        cluster.install_release("v2.10", graph)
        assert _run(cli_args, cluster, "upgrade-step-1") == 0
        capsys.readouterr()

        assert _run(cli_args, cluster, "validate") == 0
        outcome = json.loads(capsys.readouterr().out)
        assert outcome["target_version"] == "v2.14"
        assert outcome["passed"] is True

        assert _run(cli_args, cluster, "backups") == 0
        backups = json.loads(capsys.readouterr().out)
        assert [b["version"] for b in backups] == ["v2.10"]

        assert _run(cli_args, cluster, "cleanup", "--keep", "0") == 0
        assert json.loads(capsys.readouterr().out) == {"removed": []}

    def test_validate_quick(self, cli_args, cluster, graph, capsys):
        cluster.install_release("v3.0", graph)
        assert _run(cli_args, cluster, "validate", "--quick") == 0
        outcome = json.loads(capsys.readouterr().out)
        assert outcome["reduced"] is True
        assert [r["check_name"] for r in outcome["reports"]] == ["version", "components_ready"]

    def test_cleanup_uninstall_needs_yes(self, cli_args, cluster, graph, capsys):
        cluster.install_release("v2.10", graph)
        cluster.add_application("guestbook")
        assert _run(cli_args, cluster, "cleanup", "--uninstall") == 1
        assert cluster.get("Application", "guestbook") is not None
        capsys.readouterr()

        assert _run(cli_args + ["-y"], cluster, "cleanup", "--uninstall") == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload == {"uninstalled": ["Application/guestbook"], "removed": []}
        assert cluster.list("Application") == []

    def test_advisories(self, cli_args, cluster, capsys):
        assert _run(cli_args, cluster, "advisories", "v2.14", "v3.0") == 0
        lookup = json.loads(capsys.readouterr().out)
        assert lookup["requires_confirmation"] is True
        assert lookup["records"][0]["impact"] == "critical"

    def test_events_flag_writes_json_lines(self, cli_args, cluster, capsys):
        assert _run(cli_args + ["--events"], cluster, "install") == 0
        lines = capsys.readouterr().out.splitlines()
        events = [json.loads(line) for line in lines]
        assert events[-1]["event_type"] == "TRANSITION_COMPLETE"


class TestGateway:
    @pytest.fixture
    def client(self, settings, cluster):
        return TestClient(create_app(settings, client_factory=lambda s: cluster))

    def test_health(self, client):
        assert client.get("/api/upgrade/health").json() == {"status": "ok"}

    def test_releases(self, client):
        releases = client.get("/api/upgrade/releases").json()
        assert [r["version"] for r in releases] == ["v2.10", "v2.14", "v3.0", "v3.1", "v3.2"]
        assert releases[2]["migrations"] == ["rbac-fine-grained-permissions"]

    def test_advisories(self, client):
        response = client.get(
            "/api/upgrade/advisories", params={"from_version": "v2.14", "to_version": "v3.0"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["requires_confirmation"] is True
        assert body["records"][0]["impact"] == "critical"

    def test_status(self, client, cluster, graph):
        cluster.install_release("v2.14", graph)
        status = client.get("/api/upgrade/status").json()
        assert status["release"] == "v2.14"
        assert status["next_release"] == "v3.0"

    def test_validate(self, client, cluster, graph):
        assert client.post("/api/upgrade/validate").status_code == 409

        cluster.install_release("v3.0", graph)
        body = client.post("/api/upgrade/validate").json()
        assert body["target_version"] == "v3.0"
        assert body["passed"] is True
        assert client.post("/api/upgrade/validate", params={"version": "v9.9"}).status_code == 404

        quick = client.post("/api/upgrade/validate", params={"quick": True}).json()
        assert [r["check_name"] for r in quick["reports"]] == ["version", "components_ready"]

    def test_backups_and_transitions(self, client, settings, cluster, clock):
        TransitionOrchestrator(settings, cluster, clock=clock, sleep=clock.sleep).install()

        transitions = client.get("/api/upgrade/transitions").json()
        assert [(t["kind"], t["status"]) for t in transitions] == [("install", "success")]

        backups = client.get("/api/upgrade/backups").json()
        assert backups[0]["target_version"] == "v2.10"
        assert backups[0]["status"] == "completed"
