"""Cron layer: named jobs with per-job non-overlap and manual triggers."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from inbox_pilot.config import ContentSchedule
from inbox_pilot.orchestrator.background import fire_and_forget

logger = logging.getLogger(__name__)

JobHandler = Callable[[], Awaitable[None]]


@dataclass(slots=True)
class ScheduledJobView:
    """Registered job as shown by the CLI and HTTP surface."""

    name: str
    cron: str
    running: bool
    next_run_at: datetime | None


@dataclass(slots=True)
class _RegisteredJob:
    name: str
    cron: str
    handler: JobHandler


class JobScheduler:
    """Run registered handlers on cron expressions.

    A job that is still running skips new triggers, whether they come from
    the cron trigger or from ``run_now``. Handler errors are logged and never
    stop later triggers.
    """

    def __init__(self, *, timezone: str = "UTC") -> None:
        self.timezone = timezone
        self._scheduler = AsyncIOScheduler(timezone=timezone)
        self._jobs: dict[str, _RegisteredJob] = {}
        self._active: set[str] = set()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def register(self, name: str, cron_expression: str, handler: JobHandler) -> None:
        """Add or replace a job; invalid cron expressions raise ``ValueError``."""

        try:
            trigger = CronTrigger.from_crontab(cron_expression, timezone=self.timezone)
        except ValueError as error:
            raise ValueError(f"Invalid cron expression for job {name!r}: {error}") from error

        self._jobs[name] = _RegisteredJob(name=name, cron=cron_expression, handler=handler)
        self._scheduler.add_job(
            self._trigger,
            trigger=trigger,
            args=[name],
            id=name,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("Registered scheduled job: %s (%s)", name, cron_expression)

    def job_names(self) -> list[str]:
        return sorted(self._jobs)

    def is_running(self, name: str) -> bool:
        return name in self._active

    def list_jobs(self) -> list[ScheduledJobView]:
        views: list[ScheduledJobView] = []
        for name in self.job_names():
            job = self._scheduler.get_job(name)
            views.append(
                ScheduledJobView(
                    name=name,
                    cron=self._jobs[name].cron,
                    running=name in self._active,
                    next_run_at=getattr(job, "next_run_time", None) if job else None,
                ),
            )
        return views

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Scheduler started with %d jobs", len(self._jobs))

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def run_now(self, name: str) -> bool:
        """Start ``name`` in the background; ``False`` when it is already running.

        Raises ``KeyError`` for unknown jobs. Must be called from a running loop.
        """

        if name not in self._jobs:
            raise KeyError(name)
        if not self._claim(name):
            logger.info("Job %s already running; manual trigger skipped", name)
            return False
        fire_and_forget(self._run_claimed(name), f"scheduled job {name}")
        return True

    async def _trigger(self, name: str) -> None:
        if not self._claim(name):
            logger.warning("Job %s still running; trigger skipped", name)
            return
        await self._run_claimed(name)

    def _claim(self, name: str) -> bool:
        if name in self._active:
            return False
        self._active.add(name)
        return True

    async def _run_claimed(self, name: str) -> None:
        job = self._jobs[name]
        logger.info("Scheduled job started: %s", name)
        try:
            await job.handler()
        except Exception:  # noqa: BLE001
            logger.exception("Scheduled job failed: %s", name)
        else:
            logger.info("Scheduled job finished: %s", name)
        finally:
            self._active.discard(name)


ContentEnqueuer = Callable[[str, str, str], Awaitable[object]]
"""``(thread_id, platform, topic)``"""


def register_content_schedules(
    scheduler: JobScheduler,
    schedules: Iterable[ContentSchedule],
    enqueue: ContentEnqueuer,
) -> list[str]:
    """Register one ``content:<platform>`` job per schedule entry."""

    names: list[str] = []
    for schedule in schedules:
        name = f"content:{schedule.platform}"
        scheduler.register(name, schedule.cron, _content_handler(name, schedule, enqueue))
        names.append(name)
    return names


def _content_handler(name: str, schedule: ContentSchedule, enqueue: ContentEnqueuer) -> JobHandler:
    async def handler() -> None:
        thread_id = f"{name}:{datetime.now().strftime('%Y%m%dT%H%M%S')}"
        await enqueue(thread_id, schedule.platform, schedule.topic)

    return handler
