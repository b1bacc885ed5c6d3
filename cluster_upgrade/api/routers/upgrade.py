"""
=============================================================================
UPGRADE STATUS API ROUTER
=============================================================================

Read-only views over the release ladder, advisories, snapshots, journaled
transitions and live status, plus an on-demand validation run. Mutating
commands stay on the CLI so a single active transition is guaranteed by
the deployment.
=============================================================================
"""

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger
from pydantic import BaseModel, Field

from ...core.exceptions import SequenceError, UpgradeError
from ...upgrade.orchestrator import TransitionOrchestrator
from ...utils.json_utils import safe_json_serialize

router = APIRouter(prefix="/api/upgrade", tags=["upgrade"])

# =============================================================================
# SECTION 1: PYDANTIC MODELS (SCHEMAS)
# =============================================================================


class ReleaseInfo(BaseModel):
    """Schema for one release on the ladder."""

    version: str = Field(..., description="Release line, e.g. v3.0")
    ordinal: int = Field(..., description="Position on the ladder")
    breaking_changes: List[str] = Field(default_factory=list)
    migrations: List[str] = Field(default_factory=list)
    min_dependency_version: Optional[str] = None


class AdvisoryInfo(BaseModel):
    title: str
    impact: str
    remediation: str
    reference: Optional[str] = None


class AdvisoryResponse(BaseModel):
    """Schema for an advisory lookup."""

    from_version: str
    to_version: str
    unknown_risk: bool = Field(..., description="No advisory covers this pair")
    requires_confirmation: bool
    records: List[AdvisoryInfo] = Field(default_factory=list)


class SnapshotInfo(BaseModel):
    version: str
    target_version: str
    timestamp: str
    directory: str
    status: str
    resource_count: int
    categories: Dict[str, str] = Field(default_factory=dict)


class TransitionInfo(BaseModel):
    transition_id: str
    kind: str
    from_version: Optional[str] = None
    to_version: str
    status: str
    started_at: str
    finished_at: Optional[str] = None
    backup_reference: Optional[str] = None
    error: Optional[str] = None
    rollback_command: Optional[str] = None


class StatusResponse(BaseModel):
    reported_version: Optional[str] = None
    release: Optional[str] = None
    next_release: Optional[str] = None
    ladder: List[str] = Field(default_factory=list)


class ReportInfo(BaseModel):
    check_name: str
    passed: bool
    detail: str
    severity: str
    recommendation: Optional[str] = None


class ValidationResponse(BaseModel):
    """Schema for a validation run."""

    target_version: str
    passed: bool
    reports: List[ReportInfo] = Field(default_factory=list)
    rollback_recommendation: Optional[str] = None


# =============================================================================
# SECTION 2: DEPENDENCIES
# =============================================================================


def get_orchestrator(request: Request) -> TransitionOrchestrator:
    """Build an orchestrator from the settings and client factory on app state."""
    settings = request.app.state.settings
    client = request.app.state.client_factory(settings)
    try:
        return TransitionOrchestrator(settings, client)
    except UpgradeError as e:
        logger.error(f"❌ Cannot load release catalog: {e.message}")
        raise HTTPException(status_code=500, detail=e.message)


# =============================================================================
# SECTION 3: ENDPOINTS
# =============================================================================


@router.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@router.get("/releases", response_model=List[ReleaseInfo])
def list_releases(orchestrator: TransitionOrchestrator = Depends(get_orchestrator)):
    return [
        ReleaseInfo(
            version=n.version,
            ordinal=n.ordinal,
            breaking_changes=list(n.breaking_changes),
            migrations=[m.name for m in n.migrations],
            min_dependency_version=n.min_dependency_version,
        )
        for n in orchestrator.graph.nodes
    ]


@router.get("/advisories", response_model=AdvisoryResponse)
def get_advisories(
    from_version: str = Query(..., description="Release being left"),
    to_version: str = Query(..., description="Release being entered"),
    orchestrator: TransitionOrchestrator = Depends(get_orchestrator),
):
    lookup = orchestrator.advisory.lookup(from_version, to_version)
    return AdvisoryResponse(
        from_version=lookup.from_version,
        to_version=lookup.to_version,
        unknown_risk=lookup.unknown_risk,
        requires_confirmation=lookup.requires_confirmation,
        records=[
            AdvisoryInfo(
                title=r.title,
                impact=r.impact.value,
                remediation=r.remediation,
                reference=r.reference,
            )
            for r in lookup.records
        ],
    )


@router.get("/backups", response_model=List[SnapshotInfo])
def list_backups(orchestrator: TransitionOrchestrator = Depends(get_orchestrator)):
    return [SnapshotInfo(**s.to_dict()) for s in orchestrator.backups.list()]


@router.get("/transitions", response_model=List[TransitionInfo])
def list_transitions(orchestrator: TransitionOrchestrator = Depends(get_orchestrator)):
    return [
        TransitionInfo(**{k: v for k, v in safe_json_serialize(r.to_dict()).items() if k in TransitionInfo.model_fields})
        for r in orchestrator.journal.records()
    ]


@router.get("/status", response_model=StatusResponse)
def get_status(orchestrator: TransitionOrchestrator = Depends(get_orchestrator)):
    current = orchestrator.current_release()
    successor = (
        orchestrator.graph.next_version(current.version) if current else orchestrator.graph.first
    )
    return StatusResponse(
        reported_version=orchestrator.client.reported_version(
            orchestrator.settings.version_deployment
        ),
        release=current.version if current else None,
        next_release=successor.version if successor else None,
        ladder=[n.version for n in orchestrator.graph.nodes],
    )


@router.post("/validate", response_model=ValidationResponse)
def run_validation(
    version: Optional[str] = Query(None, description="Release to validate against"),
    quick: bool = Query(False, description="Only check the version and component health"),
    orchestrator: TransitionOrchestrator = Depends(get_orchestrator),
):
    try:
        outcome = orchestrator.validate(version, reduced=quick)
    except SequenceError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except UpgradeError as e:
        raise HTTPException(status_code=409, detail=e.message)

    logger.info(f"🔍 Validation of {outcome.target_version}: passed={outcome.passed}")
    return ValidationResponse(
        target_version=outcome.target_version,
        passed=outcome.passed,
        reports=[
            ReportInfo(
                check_name=r.check_name,
                passed=r.passed,
                detail=r.detail,
                severity=r.severity.value,
                recommendation=r.recommendation,
            )
            for r in outcome.reports
        ],
        rollback_recommendation=outcome.rollback_recommendation,
    )
