from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure

from inbox_pilot.orchestrator.models import (
    ExecutionStatus,
    Intent,
    LessonWrite,
    Severity,
    Task,
    TaskStatus,
)

pytestmark = [
    allure.epic("Persistence"),
    allure.feature("Harness Repository"),
]

_BASE_TIME = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)


def _task(task_id: str, status: TaskStatus, *, thread_id: str = "thread", offset: int = 0) -> Task:
    return Task(
        task_id=task_id,
        thread_id=thread_id,
        request_text=f"request {task_id}",
        intent=Intent.CONTENT,
        autonomy_level=3,
        summary=f"summary {task_id}",
        execution_prompt=f"prompt {task_id}",
        status=status,
        created_at=_BASE_TIME + timedelta(minutes=offset),
        platform="zenn",
    )


def test_save_task_round_trips_and_updates_in_place(repository) -> None:
    task = _task("t1", TaskStatus.PENDING)
    repository.save_task(task)

    task.status = TaskStatus.COMPLETED
    task.result_text = "done"
    task.cost_usd = 0.25
    task.tool_count = 3
    task.pipeline_job_id = "job-1"
    task.finished_at = _BASE_TIME + timedelta(minutes=5)
    repository.save_task(task)

    stored = repository.get_task("t1")
    assert stored is not None
    assert stored.status == TaskStatus.COMPLETED
    assert stored.intent == Intent.CONTENT
    assert stored.platform == "zenn"
    assert stored.result_text == "done"
    assert stored.cost_usd == 0.25
    assert stored.tool_count == 3
    assert stored.pipeline_job_id == "job-1"
    assert stored.created_at == _BASE_TIME
    assert stored.finished_at == _BASE_TIME + timedelta(minutes=5)
    assert repository.get_task("missing") is None


def test_task_listings_filter_and_order(repository) -> None:
    repository.save_task(_task("old", TaskStatus.RUNNING, offset=0))
    repository.save_task(_task("mid", TaskStatus.COMPLETED, offset=1))
    repository.save_task(_task("new", TaskStatus.AWAITING_CLARIFICATION, offset=2))

    assert [task.task_id for task in repository.list_tasks()] == ["new", "mid", "old"]
    assert [task.task_id for task in repository.list_tasks(limit=1)] == ["new"]
    assert [
        task.task_id for task in repository.list_tasks(status=TaskStatus.COMPLETED)
    ] == ["mid"]
    unfinished = repository.list_tasks_in_statuses(
        [TaskStatus.RUNNING, TaskStatus.AWAITING_CLARIFICATION],
    )
    assert [task.task_id for task in unfinished] == ["old", "new"]


def test_find_awaiting_task_returns_most_recent_in_thread(repository) -> None:
    repository.save_task(_task("a", TaskStatus.AWAITING_CLARIFICATION, thread_id="x", offset=0))
    repository.save_task(_task("b", TaskStatus.AWAITING_CLARIFICATION, thread_id="x", offset=1))
    repository.save_task(_task("c", TaskStatus.AWAITING_CLARIFICATION, thread_id="y", offset=2))

    found = repository.find_awaiting_task("x")

    assert found is not None and found.task_id == "b"
    assert repository.find_awaiting_task("z") is None


def test_closed_execution_record_is_immutable(repository) -> None:
    record_id = repository.open_execution_record(
        session_id="s",
        tool_use_id="toolu_1",
        tool_name="Grep",
        tool_input={"pattern": "TODO"},
    )

    assert repository.close_execution_record(
        record_id=record_id,
        status=ExecutionStatus.ERROR,
        tool_result="permission denied",
        duration_ms=12,
    )
    assert not repository.close_execution_record(
        record_id=record_id,
        status=ExecutionStatus.SUCCESS,
        tool_result="ok",
        duration_ms=99,
    )

    [record] = repository.list_execution_records(session_id="s")
    assert record.status == ExecutionStatus.ERROR
    assert record.tool_result == "permission denied"
    assert record.tool_input == {"pattern": "TODO"}
    assert record.duration_ms == 12


def test_lessons_are_returned_newest_first_with_limit(repository) -> None:
    for index in range(3):
        repository.add_lesson(
            LessonWrite(
                tool_name="WebFetch",
                error_pattern=f"timeout {index}",
                reflection="r",
                severity=Severity.HIGH if index == 2 else Severity.MEDIUM,
                session_id="s",
            ),
        )

    lessons = repository.get_recent_lessons(limit=2)

    assert [lesson.error_pattern for lesson in lessons] == ["timeout 2", "timeout 1"]
    assert lessons[0].severity == Severity.HIGH
    assert repository.get_recent_lessons(limit=0) == []


def test_phase_artifact_upsert_overwrites_same_phase(repository) -> None:
    repository.upsert_phase_artifact(
        platform="zenn",
        job_id="job",
        phase_name="research",
        artifact="v1",
    )
    repository.upsert_phase_artifact(
        platform="zenn",
        job_id="job",
        phase_name="research",
        artifact="v2",
    )
    repository.upsert_phase_artifact(
        platform="zenn",
        job_id="other",
        phase_name="research",
        artifact="x",
    )

    [artifact] = repository.list_phase_artifacts("job")

    assert artifact.artifact == "v2"
    assert artifact.platform == "zenn"
    assert repository.list_phase_artifacts("missing") == []


def test_session_mapping_upsert(repository) -> None:
    created = repository.upsert_session(thread_id="thread", agent_session_id="sess-1")
    updated = repository.upsert_session(thread_id="thread", agent_session_id="sess-2")

    stored = repository.get_session("thread")
    assert stored is not None
    assert stored.agent_session_id == "sess-2"
    assert updated.created_at == created.created_at
    assert updated.updated_at >= created.updated_at
    assert repository.get_session("other") is None
