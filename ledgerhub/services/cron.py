"""
Cron Service

In-process scheduled jobs on an APScheduler background scheduler.
Currently one job: the nightly trial cleanup.

NOTE: With several web workers every worker runs its own scheduler. Run
with CRON_ENABLED=false on all but one of them, or schedule
`ledgerhub cleanup-trials` from the system crontab instead.
"""
import logging
import threading
from typing import Any, Callable, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from ledgerhub.config import Settings, get_settings
from ledgerhub.services.trial_cleanup import TrialCleanupService

logger = logging.getLogger(__name__)

TRIAL_CLEANUP_JOB = "trial-cleanup"

# Shared by scheduled and manual runs in this process
_cleanup_lock = threading.Lock()


class CleanupAlreadyRunning(RuntimeError):
    pass


class CronService:

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        settings: Optional[Settings] = None,
        cleanup_factory: Optional[Callable[..., TrialCleanupService]] = None,
    ):
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self._cleanup_factory = cleanup_factory or TrialCleanupService
        self.scheduler = BackgroundScheduler(timezone=self.settings.TIMEZONE)
        self.is_initialized = False

    def _new_session(self) -> Session:
        if self._session_factory is None:
            from ledgerhub.database import SessionLocal
            self._session_factory = SessionLocal
        return self._session_factory()

    def initialize(self, start: bool = True) -> None:
        """Register jobs and start the scheduler. Calling it again is a no-op."""
        if self.is_initialized:
            logger.warning("CronService already initialized")
            return

        logger.info("Initializing cron service")
        self._setup_trial_cleanup_job()

        if start:
            self.scheduler.start()
        self.is_initialized = True

        jobs = [job.id for job in self.scheduler.get_jobs()]
        logger.info(f"Cron service initialized, jobs: {', '.join(jobs)}")

        job = self.scheduler.get_job(TRIAL_CLEANUP_JOB)
        if job is not None and getattr(job, "next_run_time", None):
            logger.info(f"Next trial cleanup: {job.next_run_time.isoformat()}")

    def _setup_trial_cleanup_job(self) -> None:
        schedule = self.settings.TRIAL_CLEANUP_SCHEDULE
        trigger = CronTrigger.from_crontab(schedule, timezone=self.settings.TIMEZONE)
        self.scheduler.add_job(
            self._run_scheduled_cleanup,
            trigger=trigger,
            id=TRIAL_CLEANUP_JOB,
            name=TRIAL_CLEANUP_JOB,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info(f"Trial cleanup job scheduled: {schedule} ({self.settings.TIMEZONE})")

    def _run_cleanup(self, dry_run: Optional[bool]) -> Dict[str, Any]:
        if not _cleanup_lock.acquire(blocking=False):
            raise CleanupAlreadyRunning("Trial cleanup is already running")
        try:
            db = self._new_session()
            try:
                service = self._cleanup_factory(db, dry_run=dry_run)
                return service.run().to_dict()
            finally:
                db.close()
        finally:
            _cleanup_lock.release()

    def _run_scheduled_cleanup(self) -> None:
        logger.info("Starting scheduled trial cleanup")
        try:
            summary = self._run_cleanup(dry_run=None)
            logger.info(
                f"Scheduled trial cleanup completed: deleted={summary['deleted']} "
                f"kept={summary['kept']} errors={summary['errors']}"
            )
        except CleanupAlreadyRunning:
            logger.warning("Skipping scheduled trial cleanup, a manual run is in progress")
        except Exception:
            # Never propagate into the scheduler thread
            logger.exception("Scheduled trial cleanup failed")

    def trigger_trial_cleanup(self, dry_run: bool = True) -> Dict[str, Any]:
        """Run the cleanup now, outside the schedule."""
        logger.info(f"Manually triggering trial cleanup (dry run: {dry_run})")
        try:
            summary = self._run_cleanup(dry_run=dry_run)
        except CleanupAlreadyRunning as exc:
            logger.warning(str(exc))
            return {"success": False, "message": str(exc), "summary": None}
        except Exception as exc:
            logger.exception("Manual trial cleanup failed")
            return {"success": False, "message": str(exc), "summary": None}

        logger.info("Manual trial cleanup completed")
        return {
            "success": True,
            "message": "Trial cleanup completed successfully",
            "summary": summary,
        }

    def start_job(self, name: str) -> bool:
        if self.scheduler.get_job(name) is None:
            return False
        self.scheduler.resume_job(name)
        logger.info(f"Started cron job: {name}")
        return True

    def stop_job(self, name: str) -> bool:
        if self.scheduler.get_job(name) is None:
            return False
        self.scheduler.pause_job(name)
        logger.info(f"Stopped cron job: {name}")
        return True

    def stop_all(self) -> None:
        for job in self.scheduler.get_jobs():
            self.scheduler.pause_job(job.id)
            logger.info(f"Stopped cron job: {job.id}")
        logger.info("All cron jobs stopped")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.is_initialized = False
        logger.info("Cron service shut down")

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        status = {}
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            status[job.id] = {
                "running": self.scheduler.running and next_run is not None,
                "scheduled": True,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            }
        return status


cron_service = CronService()
