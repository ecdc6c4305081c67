"""Periodic execution of check cycles."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Type

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 60
DEFAULT_INITIAL_DELAY_MINUTES = 1
MISFIRE_GRACE_SECONDS = 300
JOB_ID = "check_all"


class Scheduler:
    """Run a callback on a fixed period, with on-demand triggering.

    Runs never overlap; a trigger that arrives mid-run is dropped and the
    regular period resumes afterwards.
    """

    def __init__(
        self,
        callback: Callable[[], object],
        interval_minutes: float = DEFAULT_INTERVAL_MINUTES,
        initial_delay_minutes: float = DEFAULT_INITIAL_DELAY_MINUTES,
    ):
        self.callback = callback
        self.interval_minutes = interval_minutes
        self.initial_delay_minutes = initial_delay_minutes
        self.runs = 0
        self._scheduler: Optional[BaseScheduler] = None

    @property
    def next_run_time(self) -> Optional[datetime]:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job is not None else None

    def start(self) -> None:
        """Run the schedule on a background thread."""
        if self._scheduler is not None:
            return
        self._scheduler = self._build(BackgroundScheduler)
        self._scheduler.start()
        logger.info(
            "Scheduler started (every %s minutes, first run at %s)",
            self.interval_minutes,
            self.next_run_time,
        )

    def run_forever(self) -> None:
        """Block the calling thread running the schedule until stopped."""
        self._scheduler = self._build(BlockingScheduler)
        logger.info("Watching every %s minutes", self.interval_minutes)
        try:
            self._scheduler.start()
        finally:
            self._scheduler = None

    def trigger(self) -> None:
        """Request an immediate run."""
        if self._scheduler is None:
            raise RuntimeError("Scheduler is not running")
        self._scheduler.modify_job(JOB_ID, next_run_time=datetime.now(self._scheduler.timezone))

    def stop(self, wait: bool = True) -> None:
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=wait)

    def _build(self, scheduler_cls: Type[BaseScheduler]) -> BaseScheduler:
        scheduler = scheduler_cls()
        first_run = datetime.now(scheduler.timezone) + timedelta(minutes=self.initial_delay_minutes)
        scheduler.add_job(
            self._run_once,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=JOB_ID,
            next_run_time=first_run,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=MISFIRE_GRACE_SECONDS,
        )
        return scheduler

    def _run_once(self) -> None:
        self.runs += 1
        try:
            self.callback()
        except Exception:  # noqa: BLE001
            logger.exception("Scheduled run failed")
