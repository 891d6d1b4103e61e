"""
Automation Scheduler

In-process interval trigger for the automation engine (APScheduler).

- Job interval follows config.check_interval_minutes
- Nothing is scheduled while config.enabled is False
- restart() is called after every config update so changes apply at once

External cron can drive the engine instead through the /internal endpoints.
"""
from typing import Callable, Optional
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from ...database import SessionLocal
from .engine import AutomationEngine, get_automation_engine
from .errors import RunInProgressError
from .lifecycle import ConfigSnapshot


logger = logging.getLogger(__name__)


JOB_ID = "automation_cycle"


class AutomationScheduler:
    """
    Usage:
        scheduler = AutomationScheduler(engine)
        scheduler.start(lifecycle.get_config_snapshot())
        ...
        scheduler.shutdown()
    """

    def __init__(
        self,
        engine: AutomationEngine,
        session_factory: Callable[[], Session] = SessionLocal,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.engine = engine
        self.session_factory = session_factory
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")

    @property
    def is_active(self) -> bool:
        return self.scheduler.get_job(JOB_ID) is not None

    def start(self, config: ConfigSnapshot) -> bool:
        """Schedule the cycle job. Returns False when automation is disabled."""
        if not config.enabled:
            logger.info("Automation engine is disabled, not scheduling")
            return False

        if not self.scheduler.running:
            self.scheduler.start()

        self.scheduler.add_job(
            self.run_scheduled_cycle,
            trigger=IntervalTrigger(minutes=config.check_interval_minutes),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Automation engine scheduled every {config.check_interval_minutes}m")
        return True

    def stop(self):
        if self.is_active:
            self.scheduler.remove_job(JOB_ID)
            logger.info("Automation engine schedule stopped")

    def restart(self, config: ConfigSnapshot) -> bool:
        self.stop()
        return self.start(config)

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def run_scheduled_cycle(self):
        """Job body. Runs on the scheduler thread, so failures are logged rather than raised."""
        db = self.session_factory()
        try:
            run = self.engine.run_cycle(db)
            logger.info(f"Scheduled automation run {run.id} finished: {run.status.value}")
        except RunInProgressError:
            logger.info("Skipping scheduled automation run, previous run still in progress")
        except Exception as e:
            logger.error(f"Scheduled automation run failed: {e}")
        finally:
            db.close()


_default_scheduler: Optional[AutomationScheduler] = None


def get_automation_scheduler() -> AutomationScheduler:
    """Process-wide scheduler bound to the shared engine."""
    global _default_scheduler
    if _default_scheduler is None:
        _default_scheduler = AutomationScheduler(get_automation_engine())
    return _default_scheduler
