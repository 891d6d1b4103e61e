"""
Automation Engine

Ties the check runner to the action lifecycle for one run:

    start_run -> load state -> (run check -> record its actions)* -> complete_run

Runs are serialized: a second trigger while a run is executing gets
RunInProgressError instead of a concurrent run, so the same condition is
never proposed (and auto-approved) twice by overlapping runs.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging
import threading

from sqlalchemy.orm import Session

from ...models.automation import CheckState, ProposedAction
from ...models.db_models import AutomationRunDB
from .checks import DEFAULT_CHECKS, SprintHealthCheck
from .checks.sprint_health import assess_sprint
from .errors import RunInProgressError, StorageError
from .lifecycle import AutomationLifecycle
from .registry import CheckRegistry, CheckRunner
from .state import load_check_state


logger = logging.getLogger(__name__)


StateLoader = Callable[[Session, datetime], CheckState]


class AutomationEngine:
    """
    Executes the registered checks and persists their proposals.

    Usage:
        engine = build_default_engine()
        run = engine.run_cycle(db)
    """

    def __init__(
        self,
        registry: Optional[CheckRegistry] = None,
        state_loader: StateLoader = load_check_state,
    ):
        self.registry = registry or CheckRegistry()
        self.state_loader = state_loader
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def run_cycle(self, db: Session, now: Optional[datetime] = None) -> AutomationRunDB:
        """
        Execute one full run and return the closed run record.

        A check failure does not raise: it is recorded on the run, which comes
        back FAILED. Storage failures raise StorageError.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("Automation cycle already in progress, refusing to start another")
            raise RunInProgressError("An automation run is already in progress")

        try:
            return self._run(db, now or datetime.utcnow())
        finally:
            self._lock.release()

    def _run(self, db: Session, now: datetime) -> AutomationRunDB:
        lifecycle = AutomationLifecycle(db)
        config = lifecycle.get_config_snapshot()
        run = lifecycle.start_run()
        run_id = run.id

        try:
            state = self.state_loader(db, now)
        except Exception as e:
            db.rollback()
            logger.error(f"Automation run {run_id} could not load check state: {e}")
            return lifecycle.complete_run(run_id, checks_run=[], error=f"Failed to load check state: {e}")

        persisted: List[str] = []

        def record(check_name: str, proposed: List[ProposedAction]):
            persisted.append(check_name)
            for action in proposed:
                lifecycle.record_proposed_action(run_id, action, config, check_name)
            if check_name == SprintHealthCheck.name:
                self._record_sprint_health(lifecycle, run_id, state)

        # Each check's actions are stored before the next check starts
        try:
            result = CheckRunner(self.registry).execute(state, on_check_done=record)
        except StorageError as e:
            self._close_after_storage_failure(lifecycle, run_id, persisted, e)
            raise

        run = lifecycle.complete_run(
            run_id,
            checks_run=result.checks_run,
            error=str(result.error) if result.failed else None,
        )

        pending = run.actions_proposed - run.actions_auto_approved
        if config.notify_on_new_actions and pending > 0:
            logger.info(f"{pending} automation actions from run {run_id} awaiting review")

        return run

    def _record_sprint_health(self, lifecycle: AutomationLifecycle, run_id: str, state: CheckState):
        """Keep the sprint health history, one snapshot per run that scored the sprint."""
        report = assess_sprint(state)
        if report is not None:
            lifecycle.record_sprint_snapshot(run_id, report)

    def _close_after_storage_failure(
        self,
        lifecycle: AutomationLifecycle,
        run_id: str,
        checks_run: List[str],
        error: StorageError,
    ):
        """Mark the run FAILED. If that write fails too, reconciliation picks the run up later."""
        try:
            lifecycle.complete_run(run_id, checks_run=checks_run, error=str(error))
        except StorageError as close_error:
            logger.error(f"Automation run {run_id} left running after storage failure: {close_error}")

    def status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "registered_checks": self.registry.names(),
            "enabled_checks": [c.name for c in self.registry.enabled_checks()],
        }


def build_default_engine() -> AutomationEngine:
    """Engine with the built-in checks registered in their standard order."""
    registry = CheckRegistry()
    for check_cls in DEFAULT_CHECKS:
        registry.register(check_cls())
    return AutomationEngine(registry)


_default_engine: Optional[AutomationEngine] = None
_default_engine_lock = threading.Lock()


def get_automation_engine() -> AutomationEngine:
    """Process-wide engine. The run guard only works if everyone shares it."""
    global _default_engine
    with _default_engine_lock:
        if _default_engine is None:
            _default_engine = build_default_engine()
    return _default_engine
