"""
Action Lifecycle & Approval Policy

Persists runs and actions and applies the auto-approval rule.

State machines:
- Run:    RUNNING -> COMPLETED | FAILED   (never reopened)
- Action: PENDING -> APPROVED | REJECTED  (terminal, resolved exactly once)

Auto-approval is decided when the action row is created: an action whose
confidence reaches the threshold is written already APPROVED by "system",
so it is never visible as pending.

Every write is its own commit. Storage failures are rolled back and raised
as StorageError, they are not retried here.
"""
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.automation import ProposedAction
from ...models.db_models import (
    AutomationConfigDB, AutomationRunDB, AutomationActionDB, SprintHealthSnapshotDB,
    RunStatus, ActionStatus, ActionType,
    CONFIG_ROW_ID, SYSTEM_RESOLVER,
)
from .checks.sprint_health import SprintHealthReport
from .errors import (
    ConfigValidationError, InvalidStateError, ActionNotFoundError,
    RunNotFoundError, StorageError,
)


logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION BOUNDS
# =============================================================================

CONFIG_DEFAULTS = {
    "enabled": False,
    "check_interval_minutes": 15,
    "auto_approve_threshold": 100,
    "notify_on_new_actions": True,
}

CONFIG_FIELDS = tuple(CONFIG_DEFAULTS.keys())

THRESHOLD_MIN = 0
THRESHOLD_MAX = 100
MIN_CHECK_INTERVAL_MINUTES = 1

DEFAULT_RUN_LIMIT = 20
MAX_RUN_LIMIT = 100
DEFAULT_ACTION_LIMIT = 200

DEDUPE_WINDOW_DAYS = 7  # A condition flagged within this window is not proposed again


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_config_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a partial config update.

    Returns only the recognised fields. Raises ConfigValidationError on the
    first bad value; nothing has been written at that point.
    """
    accepted = {k: v for k, v in changes.items() if k in CONFIG_FIELDS and v is not None}

    for key in ("enabled", "notify_on_new_actions"):
        if key in accepted and not isinstance(accepted[key], bool):
            raise ConfigValidationError(f"{key} must be a boolean")

    if "check_interval_minutes" in accepted:
        interval = accepted["check_interval_minutes"]
        if not _is_int(interval) or interval < MIN_CHECK_INTERVAL_MINUTES:
            raise ConfigValidationError(
                f"check_interval_minutes must be an integer >= {MIN_CHECK_INTERVAL_MINUTES}"
            )

    if "auto_approve_threshold" in accepted:
        threshold = accepted["auto_approve_threshold"]
        if not _is_int(threshold) or not THRESHOLD_MIN <= threshold <= THRESHOLD_MAX:
            raise ConfigValidationError(
                f"auto_approve_threshold must be an integer between {THRESHOLD_MIN} and {THRESHOLD_MAX}"
            )

    return accepted


def should_auto_approve(confidence: int, threshold: int) -> bool:
    """The approval policy. Inclusive: confidence equal to the threshold approves."""
    return confidence >= threshold


@dataclass(frozen=True)
class ConfigSnapshot:
    """Config values read once at the start of an operation."""
    enabled: bool
    check_interval_minutes: int
    auto_approve_threshold: int
    notify_on_new_actions: bool

    @classmethod
    def from_row(cls, row: AutomationConfigDB) -> "ConfigSnapshot":
        return cls(**{key: getattr(row, key) for key in CONFIG_FIELDS})


# =============================================================================
# LIFECYCLE SERVICE
# =============================================================================

class AutomationLifecycle:
    """
    Persistence and policy for automation runs and actions.

    Usage:
        lifecycle = AutomationLifecycle(db)
        config = lifecycle.get_config_snapshot()
        run = lifecycle.start_run()
        lifecycle.record_proposed_action(run.id, proposed, config, "stale_ticket_check")
        lifecycle.complete_run(run.id, checks_run=["stale_ticket_check"])
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _storage(self, operation: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Storage failure during {operation}: {e}")
            raise StorageError(f"Storage failure during {operation}") from e

    # -------------------------------------------------------------------------
    # CONFIG
    # -------------------------------------------------------------------------

    def get_config(self) -> AutomationConfigDB:
        """Read the singleton config, creating it with defaults on first use."""
        with self._storage("get_config"):
            config = self.db.get(AutomationConfigDB, CONFIG_ROW_ID)
            if config is None:
                config = AutomationConfigDB(
                    id=CONFIG_ROW_ID,
                    updated_at=datetime.utcnow(),
                    **CONFIG_DEFAULTS,
                )
                self.db.add(config)
                self.db.commit()
                logger.info("Created default automation config")
            return config

    def update_config(self, **changes) -> AutomationConfigDB:
        """Merge a partial update into the config. Unknown fields are ignored."""
        accepted = validate_config_changes(changes)
        config = self.get_config()

        with self._storage("update_config"):
            for key, value in accepted.items():
                setattr(config, key, value)
            config.updated_at = datetime.utcnow()
            self.db.commit()

        logger.info(f"Automation config updated: {accepted}")
        return config

    def get_config_snapshot(self) -> ConfigSnapshot:
        return ConfigSnapshot.from_row(self.get_config())

    # -------------------------------------------------------------------------
    # RUNS
    # -------------------------------------------------------------------------

    def start_run(self) -> AutomationRunDB:
        """Create a RUNNING run. Committed at once so the id is visible while checks execute."""
        run = AutomationRunDB(
            id=str(uuid4()),
            started_at=datetime.utcnow(),
            checks_run=[],
            actions_proposed=0,
            actions_auto_approved=0,
            status=RunStatus.RUNNING,
        )
        with self._storage("start_run"):
            self.db.add(run)
            self.db.commit()

        logger.info(f"Automation run {run.id} started")
        return run

    def complete_run(
        self,
        run_id: str,
        checks_run: List[str],
        error: Optional[str] = None,
    ) -> AutomationRunDB:
        """
        Close a run. COMPLETED unless an error was captured, then FAILED.
        Counters were maintained as actions were recorded.
        """
        run = self.get_run(run_id)
        if run.status != RunStatus.RUNNING:
            raise InvalidStateError(f"Run {run_id} is already {run.status.value}")

        with self._storage("complete_run"):
            run.checks_run = list(checks_run)
            run.completed_at = datetime.utcnow()
            if error:
                run.status = RunStatus.FAILED
                run.error = error
            else:
                run.status = RunStatus.COMPLETED
            self.db.commit()

        logger.info(
            f"Automation run {run.id} {run.status.value}: "
            f"{run.actions_proposed} proposed, {run.actions_auto_approved} auto-approved"
        )
        return run

    def get_run(self, run_id: str) -> AutomationRunDB:
        with self._storage("get_run"):
            run = self.db.get(AutomationRunDB, run_id)
        if run is None:
            raise RunNotFoundError(f"Run {run_id} not found")
        return run

    def list_runs(self, limit: int = DEFAULT_RUN_LIMIT) -> List[AutomationRunDB]:
        """Most recent runs first."""
        limit = max(1, min(limit or DEFAULT_RUN_LIMIT, MAX_RUN_LIMIT))
        with self._storage("list_runs"):
            return (
                self.db.query(AutomationRunDB)
                .order_by(AutomationRunDB.started_at.desc())
                .limit(limit)
                .all()
            )

    def reconcile_orphaned_runs(self, stale_after_minutes: int = 60) -> int:
        """
        Fail runs left RUNNING by a crashed process.

        A run still RUNNING after the staleness window can no longer complete,
        nothing else ever closes it.
        """
        cutoff = datetime.utcnow() - timedelta(minutes=stale_after_minutes)

        with self._storage("reconcile_orphaned_runs"):
            orphans = (
                self.db.query(AutomationRunDB)
                .filter(
                    AutomationRunDB.status == RunStatus.RUNNING,
                    AutomationRunDB.started_at < cutoff,
                )
                .all()
            )
            now = datetime.utcnow()
            for run in orphans:
                run.status = RunStatus.FAILED
                run.completed_at = now
                run.error = f"Run abandoned: no completion recorded within {stale_after_minutes} minutes"
            self.db.commit()

        if orphans:
            logger.warning(f"Marked {len(orphans)} orphaned automation runs as failed")
        return len(orphans)

    # -------------------------------------------------------------------------
    # ACTIONS
    # -------------------------------------------------------------------------

    def record_proposed_action(
        self,
        run_id: str,
        proposed: ProposedAction,
        config: ConfigSnapshot,
        check_module: str,
    ) -> AutomationActionDB:
        """
        Persist one proposal and apply the approval policy in the same write.
        The run's counters are bumped in that commit as well.
        """
        run = self.get_run(run_id)
        if run.status != RunStatus.RUNNING:
            raise InvalidStateError(f"Run {run_id} is {run.status.value}, cannot record actions")

        now = datetime.utcnow()
        auto_approved = should_auto_approve(proposed.confidence, config.auto_approve_threshold)

        action = AutomationActionDB(
            id=str(uuid4()),
            run_id=run.id,
            type=proposed.type,
            check_module=check_module,
            title=proposed.title,
            description=proposed.description,
            confidence=proposed.confidence,
            action_metadata=proposed.metadata_dict(),
            dedupe_key=proposed.dedupe_key,
            created_at=now,
            status=ActionStatus.APPROVED if auto_approved else ActionStatus.PENDING,
            resolved_at=now if auto_approved else None,
            resolved_by=SYSTEM_RESOLVER if auto_approved else None,
        )

        with self._storage("record_proposed_action"):
            self.db.add(action)
            run.actions_proposed += 1
            if auto_approved:
                run.actions_auto_approved += 1
            self.db.commit()

        return action

    def approve_action(self, action_id: str, resolved_by: str) -> AutomationActionDB:
        """Human approval. Only PENDING actions can be approved."""
        return self._resolve(action_id, ActionStatus.APPROVED, resolved_by)

    def reject_action(self, action_id: str, resolved_by: str) -> AutomationActionDB:
        """Human rejection. Only PENDING actions can be rejected."""
        return self._resolve(action_id, ActionStatus.REJECTED, resolved_by)

    def _resolve(self, action_id: str, status: ActionStatus, resolved_by: str) -> AutomationActionDB:
        if not resolved_by:
            raise ValueError("resolved_by is required")

        # Conditional update: two concurrent resolutions cannot both succeed
        with self._storage("resolve_action"):
            updated = (
                self.db.query(AutomationActionDB)
                .filter(
                    AutomationActionDB.id == action_id,
                    AutomationActionDB.status == ActionStatus.PENDING,
                )
                .update(
                    {
                        AutomationActionDB.status: status,
                        AutomationActionDB.resolved_at: datetime.utcnow(),
                        AutomationActionDB.resolved_by: resolved_by,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()

        action = self.get_action(action_id)
        if updated == 0:
            raise InvalidStateError(
                f"Action {action_id} is already {action.status.value}"
            )

        logger.info(f"Action {action_id} {status.value} by {resolved_by}")
        return action

    def get_action(self, action_id: str) -> AutomationActionDB:
        with self._storage("get_action"):
            action = self.db.get(AutomationActionDB, action_id)
            if action is not None:
                self.db.refresh(action)
        if action is None:
            raise ActionNotFoundError(f"Action {action_id} not found")
        return action

    def list_actions(
        self,
        status: Optional[ActionStatus] = None,
        action_type: Optional[ActionType] = None,
        run_id: Optional[str] = None,
        limit: int = DEFAULT_ACTION_LIMIT,
    ) -> List[AutomationActionDB]:
        """Actions newest first, optionally filtered."""
        with self._storage("list_actions"):
            query = self.db.query(AutomationActionDB)
            if status is not None:
                query = query.filter(AutomationActionDB.status == status)
            if action_type is not None:
                query = query.filter(AutomationActionDB.type == action_type)
            if run_id is not None:
                query = query.filter(AutomationActionDB.run_id == run_id)
            return query.order_by(AutomationActionDB.created_at.desc()).limit(limit).all()

    def pending_count(self) -> int:
        with self._storage("pending_count"):
            return (
                self.db.query(AutomationActionDB)
                .filter(AutomationActionDB.status == ActionStatus.PENDING)
                .count()
            )

    def recent_action_keys(self, window_days: int = DEDUPE_WINDOW_DAYS) -> Set[str]:
        """Dedupe keys of actions proposed inside the window, whatever their status."""
        since = datetime.utcnow() - timedelta(days=window_days)
        with self._storage("recent_action_keys"):
            rows = (
                self.db.query(AutomationActionDB.dedupe_key)
                .filter(
                    AutomationActionDB.dedupe_key.isnot(None),
                    AutomationActionDB.created_at >= since,
                )
                .all()
            )
        return {row[0] for row in rows}

    # -------------------------------------------------------------------------
    # SPRINT HEALTH HISTORY
    # -------------------------------------------------------------------------

    def record_sprint_snapshot(self, run_id: str, report: SprintHealthReport) -> SprintHealthSnapshotDB:
        """Store the sprint health measured by a run."""
        run = self.get_run(run_id)
        if run.status != RunStatus.RUNNING:
            raise InvalidStateError(f"Run {run_id} is {run.status.value}, cannot record a sprint snapshot")

        now = datetime.utcnow()
        snapshot = SprintHealthSnapshotDB(
            id=str(uuid4()),
            run_id=run.id,
            sprint_id=report.sprint_id,
            sprint_name=report.sprint_name,
            snapshot_date=now.date().isoformat(),
            total_tickets=report.total,
            completed_tickets=report.completed,
            in_progress_tickets=report.in_progress,
            todo_tickets=report.todo,
            per_engineer_data=report.per_engineer_data(),
            health_score=report.health_score,
            days_remaining=report.days_remaining,
            created_at=now,
        )

        with self._storage("record_sprint_snapshot"):
            self.db.add(snapshot)
            self.db.commit()

        logger.info(f"Sprint {report.sprint_name} health {report.health_score}/100 recorded for run {run_id}")
        return snapshot

    def list_sprint_snapshots(
        self,
        sprint_id: Optional[str] = None,
        limit: int = DEFAULT_RUN_LIMIT,
    ) -> List[SprintHealthSnapshotDB]:
        """Sprint health history, newest first."""
        limit = max(1, min(limit or DEFAULT_RUN_LIMIT, MAX_RUN_LIMIT))
        with self._storage("list_sprint_snapshots"):
            query = self.db.query(SprintHealthSnapshotDB)
            if sprint_id is not None:
                query = query.filter(SprintHealthSnapshotDB.sprint_id == sprint_id)
            return query.order_by(SprintHealthSnapshotDB.created_at.desc()).limit(limit).all()
