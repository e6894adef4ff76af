"""Harness wiring: one object graph per process."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from inbox_pilot.config import Settings
from inbox_pilot.orchestrator.backend import AgentBackend, CliAgentBackend
from inbox_pilot.orchestrator.classifier import Classifier, KeywordClassifier, TaskClassifier
from inbox_pilot.orchestrator.dispatcher import Dispatcher
from inbox_pilot.orchestrator.executor import TaskExecutor
from inbox_pilot.orchestrator.models import Task, TaskStatus
from inbox_pilot.orchestrator.queue import TaskQueue
from inbox_pilot.orchestrator.reporter import ConsoleMessenger, MessagingSurface, TaskReporter
from inbox_pilot.orchestrator.repository import HarnessRepository
from inbox_pilot.orchestrator.scheduler import JobScheduler, register_content_schedules

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Harness:
    """Wired components sharing one repository and one queue."""

    settings: Settings
    repository: HarnessRepository
    backend: AgentBackend
    classifier: Classifier
    reporter: TaskReporter
    executor: TaskExecutor
    queue: TaskQueue
    dispatcher: Dispatcher
    scheduler: JobScheduler

    def close(self) -> None:
        self.scheduler.shutdown()
        self.repository.close()


def build_backend(settings: Settings) -> CliAgentBackend:
    return CliAgentBackend(
        command_template=settings.agent.command_template,
        model=settings.agent.model,
        timeout_seconds=settings.agent.timeout_seconds,
        search_tools=settings.agent.search_tools,
    )


def build_classifier(settings: Settings, backend: AgentBackend) -> Classifier:
    if settings.classifier.mode == "keyword":
        return KeywordClassifier()
    return TaskClassifier(
        backend,
        model=settings.agent.classifier_model,
        timeout_seconds=settings.agent.timeout_seconds,
    )


def build_harness(
    settings: Settings,
    *,
    messenger: MessagingSurface | None = None,
    backend: AgentBackend | None = None,
    classifier: Classifier | None = None,
) -> Harness:
    """Build the harness; the schema is migrated before anything else runs."""

    settings.validate()
    repository = HarnessRepository(settings.db_path)
    repository.init_schema()

    agent_backend = backend or build_backend(settings)

    def count_artifacts(task: Task) -> int:
        if task.pipeline_job_id is None:
            return 0
        return len(repository.list_phase_artifacts(task.pipeline_job_id))

    reporter = TaskReporter(
        messenger or ConsoleMessenger(),
        chunk_chars=settings.reporter.message_chunk_chars,
        artifact_counter=count_artifacts,
    )
    executor = TaskExecutor(
        backend=agent_backend,
        repository=repository,
        settings=settings,
        reporter=reporter,
    )

    def persist(task: Task, previous: TaskStatus | None) -> None:
        repository.save_task(task)
        logger.debug(
            "Task %s: %s -> %s",
            task.task_id,
            previous.value if previous is not None else "new",
            task.status.value,
        )

    queue = TaskQueue(
        executor,
        max_concurrent=settings.queue.max_concurrent,
        on_status_change=persist,
        on_finished=reporter.finished,
    )
    dispatcher = Dispatcher(
        classifier=classifier or build_classifier(settings, agent_backend),
        queue=queue,
        repository=repository,
        reporter=reporter,
    )
    scheduler = JobScheduler(timezone=settings.scheduler.timezone)
    register_content_schedules(
        scheduler,
        settings.scheduler.content_schedules,
        dispatcher.enqueue_content,
    )
    return Harness(
        settings=settings,
        repository=repository,
        backend=agent_backend,
        classifier=dispatcher.classifier,
        reporter=reporter,
        executor=executor,
        queue=queue,
        dispatcher=dispatcher,
        scheduler=scheduler,
    )
