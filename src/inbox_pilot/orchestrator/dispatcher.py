"""Inbound message handling: classify, then clarify or queue."""

from __future__ import annotations

import logging
import uuid

from inbox_pilot.content.configs import PIPELINE_CONFIGS
from inbox_pilot.orchestrator.classifier import (
    DEFAULT_AUTONOMY_LEVEL,
    ClassificationError,
    Classifier,
    shorten_summary,
)
from inbox_pilot.orchestrator.models import ClassificationResult, Intent, Task, TaskStatus
from inbox_pilot.orchestrator.queue import TaskQueue
from inbox_pilot.orchestrator.reporter import TaskReporter
from inbox_pilot.orchestrator.repository import HarnessRepository
from inbox_pilot.storage.common import utc_now

logger = logging.getLogger(__name__)

_RECOVERABLE_STATUSES = (
    TaskStatus.PENDING,
    TaskStatus.QUEUED,
    TaskStatus.RUNNING,
    TaskStatus.AWAITING_CLARIFICATION,
)


def build_task(thread_id: str, text: str, classification: ClassificationResult) -> Task:
    return Task(
        task_id=uuid.uuid4().hex,
        thread_id=thread_id,
        request_text=text,
        intent=classification.intent,
        autonomy_level=classification.autonomy_level,
        summary=classification.summary,
        execution_prompt=classification.execution_prompt,
        status=TaskStatus.PENDING,
        created_at=utc_now(),
        platform=classification.platform,
    )


class Dispatcher:
    """Glue between the classifier, the task queue and the reporter."""

    def __init__(
        self,
        *,
        classifier: Classifier,
        queue: TaskQueue,
        repository: HarnessRepository,
        reporter: TaskReporter,
    ) -> None:
        self.classifier = classifier
        self.queue = queue
        self.repository = repository
        self.reporter = reporter

    async def handle_message(self, thread_id: str, text: str) -> Task | None:
        """Classify a new request; returns ``None`` when classification failed."""

        try:
            classification = await self.classifier.classify(text)
        except ClassificationError:
            logger.exception("Classification failed for thread %s", thread_id)
            await self.reporter.classification_failed(thread_id)
            return None

        task = build_task(thread_id, text, classification)
        self.queue.accept(task)
        await self._acknowledge(task, classification)
        if classification.clarify_question:
            self.queue.hold_for_clarification(task, classification.clarify_question)
        else:
            self.queue.submit(task)
        return task

    async def enqueue_content(self, thread_id: str, platform: str, topic: str) -> Task:
        """Queue a content task directly, as scheduled jobs do."""

        if platform not in PIPELINE_CONFIGS:
            raise KeyError(f"Unknown content platform: {platform}")
        classification = ClassificationResult(
            intent=Intent.CONTENT,
            autonomy_level=DEFAULT_AUTONOMY_LEVEL,
            summary=shorten_summary(f"{platform}: {topic}"),
            execution_prompt=topic,
            reasoning="scheduled content job",
            platform=platform,
        )
        task = build_task(thread_id, topic, classification)
        self.queue.accept(task)
        await self._acknowledge(task, classification)
        self.queue.submit(task)
        return task

    async def _acknowledge(self, task: Task, classification: ClassificationResult) -> None:
        """Post the acknowledgement; a messaging failure never strands the task."""

        try:
            await self.reporter.acknowledge(task, classification)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to acknowledge task %s", task.task_id)

    async def handle_reply(self, thread_id: str, text: str) -> Task | None:
        """Resume the thread's waiting task, or treat the reply as a follow-up request."""

        task = self.queue.resume_clarification(thread_id, text)
        if task is not None:
            logger.info("Task %s clarified, queued again", task.task_id)
            return task
        return await self.handle_message(thread_id, text)

    async def dismiss(self, thread_id: str) -> Task | None:
        task = self.queue.dismiss(thread_id)
        if task is None:
            logger.info("Nothing to dismiss in thread %s", thread_id)
            return None
        await self.reporter.finished(task)
        return task

    def recover(self, thread_id: str | None = None) -> int:
        """Re-adopt tasks left unfinished by a previous process.

        ``running`` tasks are queued again; ``thread_id`` limits recovery to one thread.
        """

        tasks = self.repository.list_tasks_in_statuses(_RECOVERABLE_STATUSES)
        if thread_id is not None:
            tasks = [task for task in tasks if task.thread_id == thread_id]
        if not tasks:
            return 0
        logger.info("Recovering %d unfinished tasks", len(tasks))
        self.queue.restore(tasks)
        return len(tasks)
