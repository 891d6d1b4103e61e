"""
Jira Planner - FastAPI Application

Main entry point for the Jira Planner automation backend.

Architecture:
- Local state (tickets, commits, PRs, pipelines, sprints) -> CheckState
- CheckState -> CheckRegistry / CheckRunner -> ProposedAction[]
- ProposedAction -> AutomationLifecycle -> AutomationAction (auto-approved or pending)
- Pending actions -> human approve / reject
"""
from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .routers import auth_router, automation_router, scheduler_router
from .database import init_db, SessionLocal
from .services.automation import AutomationLifecycle, AutomationError, get_automation_scheduler


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

ORPHAN_RUN_MINUTES = int(os.getenv("AUTOMATION_ORPHAN_MINUTES", "60"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database, recover orphaned runs and start the scheduler."""
    init_db()

    scheduler = get_automation_scheduler()
    db = SessionLocal()
    try:
        lifecycle = AutomationLifecycle(db)
        lifecycle.reconcile_orphaned_runs(ORPHAN_RUN_MINUTES)
        scheduler.start(lifecycle.get_config_snapshot())
    except AutomationError as e:
        logger.error(f"Automation engine not started: {e}")
    finally:
        db.close()

    yield

    scheduler.shutdown()

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Jira Planner Automation",
    description="""
    Jira Planner - PM Automation Engine

    Periodically runs a registry of checks over synced Jira / Bitbucket state
    and records the interventions they propose.

    ## Pipeline
    1. **Check Registry**: ordered, named checks; a failing check stops the run
    2. **Action Lifecycle**: each proposal is stored with its confidence
    3. **Approval Policy**: confidence >= threshold is approved by "system" at creation
    4. **Review Queue**: everything else waits for a human approve / reject

    ## Key Principles
    - Runs are append-only history
    - An action is resolved exactly once
    - Only one run executes at a time
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ERROR ENVELOPE
# =============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in errors
    )
    return JSONResponse(status_code=400, content={"success": False, "error": message or "Invalid request"})


# Include routers
app.include_router(auth_router)
app.include_router(automation_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Jira Planner Automation",
        "version": "1.0.0",
        "description": "PM automation engine with human-in-the-loop approval",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
