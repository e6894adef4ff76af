"""Controllers for harness CLI commands."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import uvicorn

from inbox_pilot.config import Settings
from inbox_pilot.content.configs import PIPELINE_CONFIGS, get_pipeline_config
from inbox_pilot.content.flow import content_pipeline_flow
from inbox_pilot.content.models import PipelineRunResult
from inbox_pilot.http.api import create_app
from inbox_pilot.orchestrator.executor import render_pipeline_content
from inbox_pilot.orchestrator.lessons import truncate
from inbox_pilot.orchestrator.models import Task, TaskStatus
from inbox_pilot.orchestrator.reporter import ConsoleMessenger
from inbox_pilot.orchestrator.repository import HarnessRepository
from inbox_pilot.orchestrator.services import Harness, build_harness


@dataclass(slots=True)
class SubmitCommand:
    """CLI input for a new request."""

    db_path: Path | None
    text: str
    thread_id: str | None = None


@dataclass(slots=True)
class ReplyCommand:
    """CLI input for a reply in an existing thread."""

    db_path: Path | None
    thread_id: str
    text: str


@dataclass(slots=True)
class DismissCommand:
    db_path: Path | None
    thread_id: str


@dataclass(slots=True)
class TasksListCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class LessonsListCommand:
    db_path: Path | None
    limit: int


@dataclass(slots=True)
class PipelineRunCommand:
    """CLI input for a one-off content pipeline run."""

    db_path: Path | None
    platform: str
    topic: str
    category: str | None = None
    job_id: str | None = None


@dataclass(slots=True)
class PipelineArtifactsCommand:
    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class ServeCommand:
    db_path: Path | None
    host: str | None
    port: int | None
    log_level: str = "info"


class HarnessCliController:
    """Runs CLI commands and renders their outcome as printable lines."""

    def submit(self, command: SubmitCommand) -> list[str]:
        lines: list[str] = []
        thread_id = command.thread_id or uuid.uuid4().hex

        async def run(harness: Harness) -> Task | None:
            task = await harness.dispatcher.handle_message(thread_id, command.text)
            await harness.queue.join()
            return task

        with _harness(command.db_path, lines) as harness:
            task = asyncio.run(run(harness))
        lines.append(_task_outcome(task, thread_id))
        return lines

    def reply(self, command: ReplyCommand) -> list[str]:
        lines: list[str] = []

        async def run(harness: Harness) -> Task | None:
            harness.dispatcher.recover(command.thread_id)
            task = await harness.dispatcher.handle_reply(command.thread_id, command.text)
            await harness.queue.join()
            return task

        with _harness(command.db_path, lines) as harness:
            task = asyncio.run(run(harness))
        lines.append(_task_outcome(task, command.thread_id))
        return lines

    def dismiss(self, command: DismissCommand) -> list[str]:
        lines: list[str] = []

        async def run(harness: Harness) -> Task | None:
            waiting = harness.repository.find_awaiting_task(command.thread_id)
            if waiting is not None:
                harness.queue.restore([waiting])
            return await harness.dispatcher.dismiss(command.thread_id)

        with _harness(command.db_path, lines) as harness:
            task = asyncio.run(run(harness))
        if task is None:
            lines.append(f"Nothing to dismiss in thread {command.thread_id}.")
        else:
            lines.append(f"Task {task.task_id} dismissed.")
        return lines

    def list_tasks(self, command: TasksListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} thread={task.thread_id} status={task.status.value} "
                f"intent={task.intent.value} tools={task.tool_count} "
                f"cost=${task.cost_usd:.4f} created={task.created_at.isoformat()}",
            )
            lines.append(f"    {task.summary}")
            if task.error_summary:
                lines.append(f"    error: {task.error_summary}")
        return lines

    def list_lessons(self, command: LessonsListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            lessons = repository.get_recent_lessons(command.limit)

        lines = [f"Lessons: {len(lessons)}"]
        for lesson in lessons:
            lines.append(
                f"  #{lesson.lesson_id} [{lesson.severity.value}] {lesson.tool_name} "
                f"at {lesson.created_at.isoformat()}",
            )
            lines.append(f"    error: {truncate(lesson.error_pattern, 160)}")
            lines.append(f"    resolution: {lesson.resolution or '(unresolved)'}")
        return lines

    def run_pipeline(self, command: PipelineRunCommand) -> list[str]:
        config = get_pipeline_config(command.platform)
        result: PipelineRunResult = asyncio.run(
            content_pipeline_flow(
                platform=config.platform,
                topic=command.topic,
                category=command.category,
                job_id=command.job_id,
                db_path=str(command.db_path) if command.db_path else None,
            ),
        )
        lines = [
            f"Pipeline {result.platform} job={result.job_id} "
            f"status={'success' if result.success else 'failed'}",
        ]
        for phase in result.phase_results:
            suffix = f" error={phase.error}" if phase.error else ""
            lines.append(f"  {phase.phase}: {'ok' if phase.success else 'failed'}{suffix}")
        if result.success:
            lines.append(render_pipeline_content(result.content))
        return lines

    def list_artifacts(self, command: PipelineArtifactsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            artifacts = repository.list_phase_artifacts(command.job_id)

        lines = [f"Artifacts for job {command.job_id}: {len(artifacts)}"]
        for artifact in artifacts:
            lines.append(
                f"  {artifact.phase_name} platform={artifact.platform} "
                f"chars={len(artifact.artifact)} at {artifact.created_at.isoformat()}",
            )
        return lines

    def list_configs(self) -> list[str]:
        lines = [f"Pipelines: {len(PIPELINE_CONFIGS)}"]
        for platform in sorted(PIPELINE_CONFIGS):
            config = PIPELINE_CONFIGS[platform]
            phases = " -> ".join(
                f"{phase.name}*" if phase.allow_external_search else phase.name
                for phase in config.phases
            )
            lines.append(f"  {platform}: {phases} (output: {config.output_key})")
        lines.append("  * phase may search externally")
        return lines

    def serve(self, command: ServeCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        host = command.host or settings.scheduler.http_host
        port = command.port or settings.scheduler.http_port
        harness = build_harness(settings)
        try:
            uvicorn.run(create_app(harness), host=host, port=port, log_level=command.log_level)
        finally:
            harness.close()
        return [f"Server on {host}:{port} stopped."]


def _task_outcome(task: Task | None, thread_id: str) -> str:
    if task is None:
        return f"Thread {thread_id}: request was not queued."
    return f"Task {task.task_id} thread={thread_id} status={task.status.value}"


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value)


@contextmanager
def _harness(db_path: Path | None, lines: list[str]) -> Iterator[Harness]:
    harness = build_harness(
        Settings.from_env(db_path=db_path),
        messenger=ConsoleMessenger(echo=lines.append),
    )
    try:
        yield harness
    finally:
        harness.close()


@contextmanager
def _repository(settings: Settings) -> Iterator[HarnessRepository]:
    repository = HarnessRepository(settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
