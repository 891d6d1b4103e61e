"""
Jira Planner - Automation Router
Config, manual runs, run history and the human approval queue.

Every response uses the envelope {"success": true, "data": ...}. Failures
are rendered as {"success": false, "error": ...} by the app-level handler.
"""
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_admin
from ..database import get_db
from ..models.db_models import (
    UserDB, AutomationConfigDB, AutomationRunDB, AutomationActionDB, SprintHealthSnapshotDB,
    ActionStatus, ActionType,
)
from ..services.automation import (
    AutomationEngine,
    AutomationLifecycle,
    AutomationScheduler,
    AutomationError,
    ConfigValidationError,
    InvalidStateError,
    ActionNotFoundError,
    RunNotFoundError,
    RunInProgressError,
    get_automation_engine,
    get_automation_scheduler,
)
from ..services.automation.lifecycle import DEFAULT_RUN_LIMIT, MAX_RUN_LIMIT, DEFAULT_ACTION_LIMIT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/automation", tags=["automation"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class UpdateConfigRequest(BaseModel):
    """Partial config update. Omitted fields keep their current value."""
    enabled: Optional[bool] = Field(None, description="Run checks on the schedule")
    check_interval_minutes: Optional[int] = Field(None, description="Minutes between scheduled runs")
    auto_approve_threshold: Optional[int] = Field(
        None, description="Actions with confidence at or above this value are approved at creation (0-100)"
    )
    notify_on_new_actions: Optional[bool] = Field(None, description="Log a notice when actions await review")


# =============================================================================
# SERIALIZATION
# =============================================================================

def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def serialize_config(config: AutomationConfigDB) -> Dict[str, Any]:
    return {
        "enabled": config.enabled,
        "check_interval_minutes": config.check_interval_minutes,
        "auto_approve_threshold": config.auto_approve_threshold,
        "notify_on_new_actions": config.notify_on_new_actions,
        "updated_at": _iso(config.updated_at),
    }


def serialize_run(run: AutomationRunDB) -> Dict[str, Any]:
    return {
        "id": run.id,
        "started_at": _iso(run.started_at),
        "completed_at": _iso(run.completed_at),
        "checks_run": list(run.checks_run or []),
        "actions_proposed": run.actions_proposed,
        "actions_auto_approved": run.actions_auto_approved,
        "status": run.status.value,
        "error": run.error,
    }


def serialize_action(action: AutomationActionDB) -> Dict[str, Any]:
    return {
        "id": action.id,
        "run_id": action.run_id,
        "type": action.type.value,
        "check_module": action.check_module,
        "title": action.title,
        "description": action.description,
        "confidence": action.confidence,
        "status": action.status.value,
        "metadata": action.action_metadata or {},
        "dedupe_key": action.dedupe_key,
        "created_at": _iso(action.created_at),
        "resolved_at": _iso(action.resolved_at),
        "resolved_by": action.resolved_by,
    }


def serialize_sprint_snapshot(snapshot: SprintHealthSnapshotDB) -> Dict[str, Any]:
    return {
        "id": snapshot.id,
        "run_id": snapshot.run_id,
        "sprint_id": snapshot.sprint_id,
        "sprint_name": snapshot.sprint_name,
        "snapshot_date": snapshot.snapshot_date,
        "total_tickets": snapshot.total_tickets,
        "completed_tickets": snapshot.completed_tickets,
        "in_progress_tickets": snapshot.in_progress_tickets,
        "todo_tickets": snapshot.todo_tickets,
        "per_engineer_data": snapshot.per_engineer_data or [],
        "health_score": snapshot.health_score,
        "days_remaining": snapshot.days_remaining,
        "created_at": _iso(snapshot.created_at),
    }


def _ok(data: Any) -> Dict[str, Any]:
    return {"success": True, "data": data}


def _http_error(e: AutomationError) -> HTTPException:
    """Map a domain error onto its HTTP status."""
    if isinstance(e, ConfigValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(e, (ActionNotFoundError, RunNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, (InvalidStateError, RunInProgressError)):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(e))


# =============================================================================
# CONFIG
# =============================================================================

@router.get("/config", response_model=dict)
async def get_config(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Current automation config (created with defaults on first read)."""
    try:
        config = AutomationLifecycle(db).get_config()
    except AutomationError as e:
        raise _http_error(e)
    return _ok(serialize_config(config))


@router.put("/config", response_model=dict)
async def update_config(
    request: UpdateConfigRequest,
    db: Session = Depends(get_db),
    admin: UserDB = Depends(require_admin),
    scheduler: AutomationScheduler = Depends(get_automation_scheduler),
):
    """
    Update the config. Invalid values are rejected with 400 and nothing changes.
    The schedule is rebuilt from the new values.
    """
    lifecycle = AutomationLifecycle(db)
    try:
        config = lifecycle.update_config(**request.model_dump(exclude_none=True))
        scheduler.restart(lifecycle.get_config_snapshot())
    except AutomationError as e:
        raise _http_error(e)

    logger.info(f"Automation config changed by {admin.username}")
    return _ok(serialize_config(config))


# =============================================================================
# RUNS
# =============================================================================

@router.post("/run", response_model=dict)
def trigger_run(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
    engine: AutomationEngine = Depends(get_automation_engine),
):
    """
    Run all enabled checks now, regardless of config.enabled.
    Returns the closed run. 409 while another run is executing.
    """
    logger.info(f"Manual automation run requested by {current_user.username}")
    try:
        run = engine.run_cycle(db)
    except AutomationError as e:
        raise _http_error(e)
    return _ok(serialize_run(run))


@router.get("/runs", response_model=dict)
async def list_runs(
    limit: int = Query(DEFAULT_RUN_LIMIT, ge=1, le=MAX_RUN_LIMIT),
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Run history, newest first."""
    try:
        runs = AutomationLifecycle(db).list_runs(limit=limit)
    except AutomationError as e:
        raise _http_error(e)
    return _ok([serialize_run(r) for r in runs])


@router.get("/runs/{run_id}", response_model=dict)
async def get_run(
    run_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """One run with the actions it proposed."""
    try:
        run = AutomationLifecycle(db).get_run(run_id)
    except AutomationError as e:
        raise _http_error(e)

    data = serialize_run(run)
    data["actions"] = [serialize_action(a) for a in run.actions]
    return _ok(data)


# =============================================================================
# ACTIONS
# =============================================================================

@router.get("/actions", response_model=dict)
async def list_actions(
    status_filter: Optional[ActionStatus] = Query(None, alias="status"),
    type_filter: Optional[ActionType] = Query(None, alias="type"),
    run_id: Optional[str] = None,
    limit: int = Query(DEFAULT_ACTION_LIMIT, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Actions newest first. Filter with ?status=pending to get the review queue."""
    try:
        actions = AutomationLifecycle(db).list_actions(
            status=status_filter,
            action_type=type_filter,
            run_id=run_id,
            limit=limit,
        )
    except AutomationError as e:
        raise _http_error(e)
    return _ok([serialize_action(a) for a in actions])


@router.post("/actions/{action_id}/approve", response_model=dict)
async def approve_action(
    action_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Approve a pending action. 409 if it was already resolved."""
    try:
        action = AutomationLifecycle(db).approve_action(action_id, current_user.username)
    except AutomationError as e:
        raise _http_error(e)
    return _ok(serialize_action(action))


@router.post("/actions/{action_id}/reject", response_model=dict)
async def reject_action(
    action_id: str,
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Reject a pending action. 409 if it was already resolved."""
    try:
        action = AutomationLifecycle(db).reject_action(action_id, current_user.username)
    except AutomationError as e:
        raise _http_error(e)
    return _ok(serialize_action(action))


# =============================================================================
# SPRINT HEALTH
# =============================================================================

@router.get("/sprint-health", response_model=dict)
async def list_sprint_health(
    sprint_id: Optional[str] = None,
    limit: int = Query(DEFAULT_RUN_LIMIT, ge=1, le=MAX_RUN_LIMIT),
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
):
    """Sprint health snapshots, newest first. One per run that scored the active sprint."""
    try:
        snapshots = AutomationLifecycle(db).list_sprint_snapshots(sprint_id=sprint_id, limit=limit)
    except AutomationError as e:
        raise _http_error(e)
    return _ok([serialize_sprint_snapshot(s) for s in snapshots])


# =============================================================================
# STATUS
# =============================================================================

@router.get("/status", response_model=dict)
async def get_status(
    db: Session = Depends(get_db),
    current_user: UserDB = Depends(get_current_user),
    engine: AutomationEngine = Depends(get_automation_engine),
    scheduler: AutomationScheduler = Depends(get_automation_scheduler),
):
    """Engine and scheduler state plus the current config."""
    lifecycle = AutomationLifecycle(db)
    try:
        config = lifecycle.get_config()
        pending = lifecycle.pending_count()
    except AutomationError as e:
        raise _http_error(e)

    return _ok({
        **engine.status(),
        "scheduler_active": scheduler.is_active,
        "pending_actions": pending,
        "config": serialize_config(config),
    })
