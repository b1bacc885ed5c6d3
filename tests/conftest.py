"""
Pytest configuration and shared fixtures for the upgrade engine tests.
"""

import pytest

from cluster_upgrade.catalog.advisory import BreakingChangeAdvisory
from cluster_upgrade.catalog.version_graph import VersionGraph
from cluster_upgrade.core.config import OrchestratorSettings
from cluster_upgrade.upgrade.orchestrator import TransitionOrchestrator

from .fakes import OVERLAYS_DIR, FakeClock, FakeCluster


@pytest.fixture
def graph():
    """Release ladder from the packaged catalog."""
    return VersionGraph.from_file()


@pytest.fixture
def advisory():
    return BreakingChangeAdvisory.from_file()


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def credentials_file(tmp_path):
    path = tmp_path / "credentials" / "password"
    path.parent.mkdir()
    path.write_text("admin-password\n")
    return path


@pytest.fixture
def settings(tmp_path, credentials_file):
    """Settings pointing at the repository overlays and a scratch backup dir."""
    return OrchestratorSettings(
        overlays_dir=OVERLAYS_DIR,
        backup_dir=tmp_path / "backups",
        credentials_file=credentials_file,
        health_timeout=30,
        poll_interval=5,
        recreate_timeout=20,
    )


@pytest.fixture
def orchestrator(settings, cluster, clock):
    return TransitionOrchestrator(settings, cluster, clock=clock, sleep=clock.sleep)
