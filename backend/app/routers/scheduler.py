"""
Scheduler API Routes

Internal endpoints for system-automatic tasks, for deployments that drive
the automation engine from an external cron instead of the in-process
scheduler.
"""
from datetime import datetime, timezone
import logging
import os

from fastapi import APIRouter, Depends, HTTPException, Header
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.automation import (
    AutomationEngine,
    AutomationLifecycle,
    AutomationError,
    RunInProgressError,
    get_automation_engine,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "scheduler-internal-key-change-in-production")
ORPHAN_RUN_MINUTES = int(os.getenv("AUTOMATION_ORPHAN_MINUTES", "60"))


async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/automation-cycle", response_model=dict)
def run_automation_cycle(
    db: Session = Depends(get_db),
    engine: AutomationEngine = Depends(get_automation_engine),
    _: bool = Depends(verify_internal_key),
):
    """
    Run one automation cycle.

    System-automatic - honours config.enabled, unlike the manual run.
    A cycle already in progress is reported as skipped, not as an error.
    """
    run_date = datetime.now(timezone.utc).isoformat()

    try:
        config = AutomationLifecycle(db).get_config_snapshot()
        if not config.enabled:
            return {"success": True, "data": {"task": "automation_cycle", "run_date": run_date,
                                              "skipped": True, "reason": "disabled"}}
        run = engine.run_cycle(db)
    except RunInProgressError:
        logger.info("External automation trigger skipped, run already in progress")
        return {"success": True, "data": {"task": "automation_cycle", "run_date": run_date,
                                          "skipped": True, "reason": "in_progress"}}
    except AutomationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "data": {
            "task": "automation_cycle",
            "run_date": run_date,
            "skipped": False,
            "run_id": run.id,
            "status": run.status.value,
            "actions_proposed": run.actions_proposed,
            "actions_auto_approved": run.actions_auto_approved,
            "error": run.error,
        },
    }


@router.post("/reconcile-runs", response_model=dict)
async def reconcile_runs(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Fail runs left RUNNING by a process that died mid-run.
    """
    try:
        count = AutomationLifecycle(db).reconcile_orphaned_runs(ORPHAN_RUN_MINUTES)
    except AutomationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "data": {
            "task": "reconcile_runs",
            "run_date": datetime.now(timezone.utc).isoformat(),
            "runs_failed": count,
        },
    }
