"""
Sync status API endpoints.

Provides:
- Per-service sync state (status, last sync, incremental mode, last run duration)
- Recent run history
- Manual reset of a stuck service
- The follow-up list derived from imported interactions
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from crmsync.services.crm_db import CRMDatabase, get_crm_database
from crmsync.services.interaction_store import InteractionStore
from crmsync.services.sync_runs import SyncRunStore
from crmsync.services.sync_state import SERVICES, SyncStateStore, SyncStatus

router = APIRouter(prefix="/api/sync", tags=["sync"])
logger = logging.getLogger(__name__)


class ServiceStatus(BaseModel):
    """Sync state of one provider service."""
    service: str
    status: str
    last_sync_time: Optional[str] = None
    incremental_enabled: bool = False
    error_message: Optional[str] = None
    last_run_duration_seconds: Optional[float] = None
    stale: bool = True


class SyncStatusResponse(BaseModel):
    services: list[ServiceStatus]


class SyncRunResponse(BaseModel):
    id: int
    service: str
    trigger: str
    status: str
    started_at: str
    completed_at: Optional[str] = None
    duration_seconds: Optional[float] = None
    fetched: int = 0
    imported: int = 0
    skipped: int = 0
    contacts_created: int = 0
    record_errors: int = 0
    error_message: Optional[str] = None


class ResetResponse(BaseModel):
    service: str
    status: str
    message: str


class FollowupResponse(BaseModel):
    contact_id: str
    name: str
    email: Optional[str] = None
    cadence_days: int
    relationship_strength: str
    priority_score: float
    last_interaction_date: Optional[str] = None
    next_followup_date: Optional[str] = None
    days_since_contact: Optional[int] = None


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(db: CRMDatabase = Depends(get_crm_database)) -> SyncStatusResponse:
    """
    Get sync state for every known service.

    Services that have never run are reported as idle.
    """
    states = {s.service: s for s in SyncStateStore(db).list_all()}
    runs = SyncRunStore(db)

    services = []
    for service in SERVICES:
        state = states.get(service)
        last_run = runs.last_run(service)
        services.append(ServiceStatus(
            service=service,
            status=state.status.value if state else SyncStatus.IDLE.value,
            last_sync_time=(
                state.last_sync_time.isoformat() if state and state.last_sync_time else None
            ),
            incremental_enabled=bool(state and state.incremental_enabled),
            error_message=state.error_message if state else None,
            last_run_duration_seconds=last_run.duration_seconds if last_run else None,
            stale=runs.is_stale(service),
        ))
    return SyncStatusResponse(services=services)


@router.get("/runs", response_model=list[SyncRunResponse])
async def get_sync_runs(
    service: Optional[str] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=200),
    db: CRMDatabase = Depends(get_crm_database),
) -> list[SyncRunResponse]:
    """Recent sync runs, newest first."""
    if service and service not in SERVICES:
        raise HTTPException(status_code=404, detail=f"Unknown service: {service}")
    return [SyncRunResponse(**run.to_dict()) for run in SyncRunStore(db).recent(service, limit)]


@router.post("/reset/{service}", response_model=ResetResponse)
async def reset_service(service: str, db: CRMDatabase = Depends(get_crm_database)) -> ResetResponse:
    """Force a service back to idle. The stored cursor is kept."""
    if service not in SERVICES:
        raise HTTPException(status_code=404, detail=f"Unknown service: {service}")

    store = SyncStateStore(db)
    if store.reset(service):
        logger.info(f"Reset {service} sync state via API")
        return ResetResponse(service=service, status="idle", message=f"Reset {service} to idle")
    return ResetResponse(service=service, status="idle", message=f"{service} has never synced")


@router.get("/followups", response_model=list[FollowupResponse])
async def get_followups(
    limit: int = Query(default=10, ge=1, le=100),
    db: CRMDatabase = Depends(get_crm_database),
) -> list[FollowupResponse]:
    """Contacts overdue for follow-up, most urgent first."""
    return [
        FollowupResponse(**row.to_dict())
        for row in InteractionStore(db).get_followup_list(limit=limit)
    ]
