"""Read API for mission progress and audit reporting.

Routes are thin; all logic lives in the ledger and audit services, which
the application lifespan places on ``app.state``.

Endpoints:
- GET /missions/runs: List runs, newest first
- GET /missions/runs/latest: Most recent run
- GET /missions/runs/{run_id}: One run
- GET /missions/runs/{run_id}/timeline: Timeline events ordered by seq
- GET /audit/entries: Query the audit trail, newest first
- GET /audit/verify: Verify the audit hash chain
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from aumos_mission_engine.adapters.audit_trail import AuditTrailService
from aumos_mission_engine.api.schemas import AuditIntegrityResponse, ErrorResponse
from aumos_mission_engine.core.interfaces import IMissionLedger
from aumos_mission_engine.core.models import AuditEntry, AuditQuery, MissionRun, MissionTimelineEvent
from aumos_mission_engine.errors import MissionEngineError, NotFoundError, ValidationError
from aumos_mission_engine.observability import get_logger

logger = get_logger(__name__)

router = APIRouter()


def get_mission_ledger(request: Request) -> IMissionLedger:
    """Return the mission ledger stored on app state by the lifespan handler."""
    return request.app.state.mission_ledger


def get_audit_service(request: Request) -> AuditTrailService:
    """Return the audit trail service stored on app state by the lifespan handler."""
    return request.app.state.audit_service


def _not_found(run_id: str) -> NotFoundError:
    return NotFoundError(f"Mission run '{run_id}' not found.", details={"run_id": run_id})


@router.get("/missions/runs", response_model=list[MissionRun])
async def list_runs(
    ledger: Annotated[IMissionLedger, Depends(get_mission_ledger)],
    limit: int = Query(default=50, ge=1, le=500),
) -> list[MissionRun]:
    """List mission runs, newest first."""
    return await ledger.list_runs(limit=limit)


@router.get("/missions/runs/latest", response_model=MissionRun)
async def get_latest_run(
    ledger: Annotated[IMissionLedger, Depends(get_mission_ledger)],
) -> MissionRun:
    """Return the most recently created run.

    Raises:
        NotFoundError: If no run has been recorded yet.
    """
    run = await ledger.get_latest_run()
    if run is None:
        raise NotFoundError("No mission runs recorded.")
    return run


@router.get("/missions/runs/{run_id}", response_model=MissionRun)
async def get_run(
    run_id: str,
    ledger: Annotated[IMissionLedger, Depends(get_mission_ledger)],
) -> MissionRun:
    """Return one run by id."""
    run = await ledger.get_run(run_id)
    if run is None:
        raise _not_found(run_id)
    return run


@router.get("/missions/runs/{run_id}/timeline", response_model=list[MissionTimelineEvent])
async def get_timeline(
    run_id: str,
    ledger: Annotated[IMissionLedger, Depends(get_mission_ledger)],
) -> list[MissionTimelineEvent]:
    """Return a run's timeline ordered ascending by seq."""
    if await ledger.get_run(run_id) is None:
        raise _not_found(run_id)
    return await ledger.get_timeline(run_id)


@router.get("/audit/entries", response_model=list[AuditEntry])
async def query_audit_entries(
    service: Annotated[AuditTrailService, Depends(get_audit_service)],
    action: str | None = Query(default=None, description="Exact action filter"),
    target: str | None = Query(default=None, description="Target substring filter"),
    start: datetime | None = Query(default=None, description="Start of time range (inclusive)"),
    end: datetime | None = Query(default=None, description="End of time range (inclusive)"),
    limit: int = Query(default=100, ge=1, le=1000),
) -> list[AuditEntry]:
    """Query the append-only audit trail, newest first."""
    return await service.query(AuditQuery(action=action, target=target, start=start, end=end, limit=limit))


@router.get("/audit/verify", response_model=AuditIntegrityResponse)
async def verify_audit_chain(
    service: Annotated[AuditTrailService, Depends(get_audit_service)],
) -> AuditIntegrityResponse:
    """Recompute every entry hash and check chain linkage."""
    return AuditIntegrityResponse(valid=await service.verify_integrity())


def register_exception_handlers(app: FastAPI) -> None:
    """Map MissionEngineError subclasses to HTTP status codes."""

    @app.exception_handler(MissionEngineError)
    async def handle_engine_error(request: Request, exc: MissionEngineError) -> JSONResponse:  # noqa: ARG001
        if isinstance(exc, NotFoundError):
            status_code = 404
        elif isinstance(exc, ValidationError):
            status_code = 422
        else:
            status_code = 409
        logger.info("Request failed", error_code=exc.error_code, status_code=status_code)
        body = ErrorResponse(error_code=exc.error_code, message=exc.message, details=exc.details)
        return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
