"""
Scheduler Driver - runs the Reminder Engine checks on APScheduler triggers.

  recurring_sessions       every RECURRING_CHECK_MINUTES (watermark-guarded)
  one_time_sessions        daily at PT_REMINDER_TIME
  ad_hoc_reminders         daily at FOLLOW_UP_REMINDER_TIME
  advance_recurring_dates  daily at ADVANCE_DATES_TIME

No decision logic lives here. The driver only owns timing and makes sure a
check never runs twice at the same time.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from gymcrm.config import config
from gymcrm.models import CheckReport

logger = logging.getLogger(__name__)

JOB_RECURRING = 'recurring_sessions'
JOB_ONE_TIME = 'one_time_sessions'
JOB_AD_HOC = 'ad_hoc_reminders'
JOB_ADVANCE = 'advance_recurring_dates'

# job id -> ReminderEngine coroutine method
_CHECKS = {
    JOB_ADVANCE: 'check_past_recurring_sessions',
    JOB_ONE_TIME: 'check_one_time_sessions',
    JOB_RECURRING: 'check_recurring_sessions',
    JOB_AD_HOC: 'check_ad_hoc_reminders',
}

_JOB_NAMES = {
    JOB_RECURRING: 'Recurring PT session reminders',
    JOB_ONE_TIME: 'One-time PT session reminders',
    JOB_AD_HOC: 'Ad hoc follow-up reminders',
    JOB_ADVANCE: 'Advance past recurring session dates',
}


def parse_hhmm(value: str) -> Tuple[int, int]:
    """'08:05' -> (8, 5). Raises ValueError on anything else."""
    try:
        hour_s, minute_s = value.strip().split(':')
        hour, minute = int(hour_s), int(minute_s)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid time {value!r}. Use HH:MM") from None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid time {value!r}. Use HH:MM")
    return hour, minute


class SchedulerDriver:

    def __init__(
        self,
        engine,
        scheduler_factory: Callable[..., Any] = AsyncIOScheduler,
        clock: Optional[Callable[[], datetime]] = None,
        timezone: Optional[str] = None,
        recurring_minutes: Optional[int] = None,
        pt_reminder_time: Optional[str] = None,
        follow_up_time: Optional[str] = None,
        advance_time: Optional[str] = None,
    ):
        self.engine = engine
        self.tz = pytz.timezone(timezone or config.TIMEZONE)
        self.clock = clock or (lambda: datetime.now(self.tz))
        self._scheduler_factory = scheduler_factory
        self._scheduler = None
        self._in_flight: Set[str] = set()

        self.recurring_minutes = recurring_minutes or config.RECURRING_CHECK_MINUTES
        self.pt_reminder_time = parse_hhmm(pt_reminder_time or config.PT_REMINDER_TIME)
        self.follow_up_time = parse_hhmm(follow_up_time or config.FOLLOW_UP_REMINDER_TIME)
        self.advance_time = parse_hhmm(advance_time or config.ADVANCE_DATES_TIME)

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def triggers(self) -> Dict[str, Any]:
        """The trigger for each job. The one-time check must stay on a once-a-day trigger."""
        def daily(hour_minute: Tuple[int, int]) -> CronTrigger:
            hour, minute = hour_minute
            return CronTrigger(hour=hour, minute=minute, timezone=self.tz)

        return {
            JOB_RECURRING: IntervalTrigger(minutes=self.recurring_minutes, timezone=self.tz),
            JOB_ONE_TIME: daily(self.pt_reminder_time),
            JOB_AD_HOC: daily(self.follow_up_time),
            JOB_ADVANCE: daily(self.advance_time),
        }

    async def run_check(self, job_id: str) -> Optional[CheckReport]:
        """
        Run one engine check with the driver's clock.
        Returns None when the same check is already in flight or crashed.
        """
        if job_id in self._in_flight:
            logger.warning(f"{job_id} is still running, skipping this invocation")
            return None

        self._in_flight.add(job_id)
        try:
            check = getattr(self.engine, _CHECKS[job_id])
            return await check(self.clock())
        except Exception as e:
            logger.error(f"{job_id} crashed: {type(e).__name__}: {e}", exc_info=True)
            return None
        finally:
            self._in_flight.discard(job_id)

    async def run_all(self) -> List[Optional[CheckReport]]:
        """Every check once, in dependency order (dates are advanced first)."""
        return [await self.run_check(job_id) for job_id in _CHECKS]

    async def start(self, catch_up: bool = True) -> None:
        """Register the jobs, start the scheduler, then run every check once."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        scheduler = self._scheduler_factory(timezone=self.tz)
        for job_id, trigger in self.triggers().items():
            scheduler.add_job(
                self.run_check,
                trigger,
                args=[job_id],
                id=job_id,
                name=_JOB_NAMES[job_id],
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            f"Scheduler started ({self.tz}): recurring every {self.recurring_minutes} min, "
            f"one-time at {self.pt_reminder_time[0]:02d}:{self.pt_reminder_time[1]:02d}, "
            f"follow-ups at {self.follow_up_time[0]:02d}:{self.follow_up_time[1]:02d}, "
            f"date advance at {self.advance_time[0]:02d}:{self.advance_time[1]:02d}"
        )

        if catch_up:
            logger.info("Running startup catch-up checks")
            await self.run_all()

    async def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scheduler stopped")

    async def serve(self) -> None:
        """Start and block until cancelled (Ctrl+C), then shut down."""
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    def get_jobs_info(self) -> List[Dict[str, Any]]:
        if self._scheduler is None:
            return []
        return [
            {
                'id': job.id,
                'name': job.name,
                'next_run_time': job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self._scheduler.get_jobs()
        ]
