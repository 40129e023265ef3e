from datetime import datetime
import logging
import threading

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger

from catalog_sync.errors import InvalidSchedule, RescheduleFailure
from catalog_sync.pipeline import SyncOrchestrator
from catalog_sync.schemas import ScheduleConfig, TriggerSource


logger = logging.getLogger(__name__)

SYNC_JOB_ID = "catalog_sync"


def build_trigger(expression: str, timezone: str) -> CronTrigger:
    """Parse a 5-field crontab expression, raising ``InvalidSchedule`` if it is malformed."""
    try:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    except (ValueError, KeyError, TypeError) as exc:
        raise InvalidSchedule(f"invalid schedule {expression!r} ({timezone}): {exc}") from exc


def next_fire_times(trigger: CronTrigger, count: int, start: datetime | None = None) -> list[datetime]:
    times: list[datetime] = []
    previous = None
    now = start or datetime.now(trigger.timezone)
    for _ in range(count):
        fire_time = trigger.get_next_fire_time(previous, now)
        if fire_time is None:
            break
        times.append(fire_time)
        previous = fire_time
        now = fire_time
    return times


class ScheduleDriver:
    # stop/resume pause the single job instead of removing it, so reschedule
    # can keep whichever of the two states the driver was in.

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        *,
        timezone: str = "UTC",
        scheduler: BaseScheduler | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.default_timezone = timezone
        self._scheduler = scheduler if scheduler is not None else BackgroundScheduler(timezone=timezone)
        self._config: ScheduleConfig | None = None
        self._active = False
        self._lock = threading.RLock()

    @property
    def config(self) -> ScheduleConfig | None:
        return self._config

    @property
    def active(self) -> bool:
        return self._active

    def start(self, expression: str, timezone: str | None = None) -> ScheduleConfig:
        timezone = timezone or self.default_timezone
        trigger = build_trigger(expression, timezone)

        with self._lock:
            new_config = ScheduleConfig(expression=expression, timezone=timezone)
            if self._active and self._config == new_config:
                logger.info("scheduler already running", extra={"schedule": expression})
                return new_config

            if not self._scheduler.running:
                self._scheduler.start()
            self._scheduler.add_job(
                self.fire,
                trigger,
                id=SYNC_JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            self._config = new_config
            self._active = True

        logger.info(
            "scheduler started",
            extra={"schedule": expression, "timezone": timezone, "next_run_at": self._next_run_iso()},
        )
        return new_config

    def reschedule(self, expression: str) -> ScheduleConfig:
        with self._lock:
            timezone = self._config.timezone if self._config else self.default_timezone
            trigger = build_trigger(expression, timezone)
            new_config = ScheduleConfig(expression=expression, timezone=timezone)

            if self._scheduler.get_job(SYNC_JOB_ID) is None:
                # Nothing armed yet; remember the expression for the next start.
                self._config = new_config
                logger.info("schedule stored for next start", extra={"schedule": expression})
                return new_config

            previous = self._config
            try:
                self._swap_trigger(trigger)
            except Exception as exc:
                logger.exception("reschedule failed, restoring previous schedule", extra={"schedule": expression})
                if previous is not None:
                    self._restore_trigger(previous)
                raise RescheduleFailure(f"could not reschedule to {expression!r}: {exc}") from exc
            self._config = new_config

        logger.info("scheduler rescheduled", extra={"schedule": expression, "next_run_at": self._next_run_iso()})
        return new_config

    def stop(self) -> None:
        with self._lock:
            if not self._active:
                logger.info("scheduler already stopped")
                return
            self._scheduler.pause_job(SYNC_JOB_ID)
            self._active = False
        logger.info("scheduler stopped")

    def resume(self) -> None:
        with self._lock:
            if self._active:
                logger.info("scheduler already running")
                return
            if self._config is None:
                raise InvalidSchedule("no schedule configured; call start() first")
            if self._scheduler.get_job(SYNC_JOB_ID) is None:
                self.start(self._config.expression, self._config.timezone)
                return
            self._scheduler.resume_job(SYNC_JOB_ID)
            self._active = True
        logger.info("scheduler resumed", extra={"next_run_at": self._next_run_iso()})

    def next_run_time(self) -> datetime | None:
        if not self._active:
            return None
        job = self._scheduler.get_job(SYNC_JOB_ID)
        return job.next_run_time if job is not None else None

    def shutdown(self) -> None:
        with self._lock:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._active = False
        logger.info("scheduler shut down")

    def fire(self) -> None:
        logger.info("scheduled sync triggered")
        outcome = self.orchestrator.run(TriggerSource.SCHEDULED)
        if outcome.status == "already_running":
            logger.warning("scheduled sync skipped", extra={"state": outcome.current_state.value})
            return
        if outcome.status == "failed":
            logger.error("scheduled sync failed", extra={"error_detail": outcome.message})
            return
        logger.info("scheduled sync completed", extra={"status": outcome.status})

    def _swap_trigger(self, trigger: CronTrigger) -> None:
        if self._active:
            self._scheduler.reschedule_job(SYNC_JOB_ID, trigger=trigger)
        else:
            # modify_job keeps a paused job paused.
            self._scheduler.modify_job(SYNC_JOB_ID, trigger=trigger)

    def _restore_trigger(self, previous: ScheduleConfig) -> None:
        try:
            self._swap_trigger(build_trigger(previous.expression, previous.timezone))
        except Exception:
            logger.exception("could not restore previous schedule", extra={"schedule": previous.expression})

    def _next_run_iso(self) -> str | None:
        next_run = self.next_run_time()
        return next_run.isoformat() if next_run else None
