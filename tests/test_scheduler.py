from __future__ import annotations

import asyncio
import logging

import allure
import pytest

from inbox_pilot.config import ContentSchedule
from inbox_pilot.orchestrator.background import pending_background_tasks
from inbox_pilot.orchestrator.scheduler import JobScheduler, register_content_schedules

pytestmark = [
    allure.epic("Scheduling"),
    allure.feature("Cron Layer"),
]


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def test_invalid_cron_expression_is_rejected() -> None:
    scheduler = JobScheduler()

    async def handler() -> None:
        return None

    with pytest.raises(ValueError, match="Invalid cron expression for job 'broken'"):
        scheduler.register("broken", "every day at noon", handler)
    assert scheduler.job_names() == []


def test_run_now_does_not_overlap_a_running_job() -> None:
    release = asyncio.Event()
    runs: list[str] = []

    async def handler() -> None:
        runs.append("start")
        await release.wait()
        runs.append("end")

    async def scenario() -> tuple[bool, bool, bool]:
        scheduler = JobScheduler()
        scheduler.register("digest", "0 9 * * *", handler)
        idle = pending_background_tasks()

        first = scheduler.run_now("digest")
        assert pending_background_tasks() == idle + 1
        await _settle()
        second = scheduler.run_now("digest")
        await scheduler._trigger("digest")
        assert scheduler.is_running("digest")

        release.set()
        await _settle()
        third = scheduler.run_now("digest")
        await _settle()
        assert pending_background_tasks() == idle
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert (first, second, third) == (True, False, True)
    assert runs == ["start", "end", "start", "end"]


def test_unknown_job_raises_key_error() -> None:
    scheduler = JobScheduler()

    with pytest.raises(KeyError):
        scheduler.run_now("missing")


def test_handler_errors_are_logged_and_release_the_job(caplog: pytest.LogCaptureFixture) -> None:
    calls = 0

    async def handler() -> None:
        nonlocal calls
        calls += 1
        raise RuntimeError("feed unavailable")

    async def scenario() -> JobScheduler:
        scheduler = JobScheduler()
        scheduler.register("flaky", "*/5 * * * *", handler)
        await scheduler._trigger("flaky")
        await scheduler._trigger("flaky")
        return scheduler

    with caplog.at_level(logging.ERROR, logger="inbox_pilot.orchestrator.scheduler"):
        scheduler = asyncio.run(scenario())

    assert calls == 2
    assert not scheduler.is_running("flaky")
    assert "Scheduled job failed: flaky" in caplog.text


def test_list_jobs_reports_registered_jobs() -> None:
    scheduler = JobScheduler(timezone="Europe/Berlin")

    async def handler() -> None:
        return None

    scheduler.register("b-job", "0 8 * * 1-5", handler)
    scheduler.register("a-job", "30 7 * * *", handler)
    scheduler.register("a-job", "45 7 * * *", handler)

    views = scheduler.list_jobs()

    assert [(view.name, view.cron, view.running) for view in views] == [
        ("a-job", "45 7 * * *", False),
        ("b-job", "0 8 * * 1-5", False),
    ]
    assert scheduler.running is False


def test_content_schedules_enqueue_topic_per_platform() -> None:
    enqueued: list[tuple[str, str, str]] = []

    async def enqueue(thread_id: str, platform: str, topic: str) -> None:
        enqueued.append((thread_id, platform, topic))

    async def scenario() -> list[str]:
        scheduler = JobScheduler()
        names = register_content_schedules(
            scheduler,
            [
                ContentSchedule(platform="x", cron="0 12 * * *", topic="weekly release notes"),
                ContentSchedule(platform="zenn", cron="0 18 * * 5", topic="async tips"),
            ],
            enqueue,
        )
        scheduler.run_now("content:zenn")
        await _settle()
        return names

    names = asyncio.run(scenario())

    assert names == ["content:x", "content:zenn"]
    [(thread_id, platform, topic)] = enqueued
    assert thread_id.startswith("content:zenn:")
    assert (platform, topic) == ("zenn", "async tips")
