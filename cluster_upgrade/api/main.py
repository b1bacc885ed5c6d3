"""
MAIN FASTAPI APPLICATION ENTRY POINT
====================================
Read-only HTTP gateway over the upgrade engine.

Run with:
    uvicorn cluster_upgrade.api.main:app
"""

from typing import Any, Callable, Optional

from fastapi import FastAPI
from loguru import logger

from ..connectivity.cluster_client import KubectlClient
from ..core.config import OrchestratorSettings
from .routers import upgrade


def create_app(
    settings: Optional[OrchestratorSettings] = None,
    client_factory: Optional[Callable[[OrchestratorSettings], Any]] = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Orchestrator settings; read from UPGRADE_* when omitted
        client_factory: Builds a ClusterClient from settings
    """
    app = FastAPI(
        title="Cluster Upgrade Gateway",
        version="1.0.0",
        description="Read-only views over release transitions, snapshots and validation.",
    )
    app.state.settings = settings or OrchestratorSettings.from_env()
    app.state.client_factory = client_factory or KubectlClient.from_settings

    app.include_router(upgrade.router)
    logger.info(f"✅ Registered upgrade router with prefix {upgrade.router.prefix}")
    logger.info(f"🔧 Namespace: {app.state.settings.namespace}")
    return app


app = create_app()
