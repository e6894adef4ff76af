"""In-memory task queue bounding how many tasks run at once."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from inbox_pilot.orchestrator.models import Task, TaskStatus
from inbox_pilot.storage.common import utc_now

logger = logging.getLogger(__name__)

TaskRunner = Callable[[Task], Awaitable[None]]
StatusListener = Callable[[Task, TaskStatus | None], None]
FinishedCallback = Callable[[Task], Awaitable[None]]

DEFAULT_MAX_CONCURRENT = 3
CLARIFICATION_PREFIX = "Clarification from the requester:"
_ERROR_SUMMARY_LIMIT = 500


class TaskQueue:
    """Concurrency governor owning the queued deque, the running set and waiting tasks.

    Admission and release are synchronous: no ``await`` separates the slot check
    from taking the slot, so the bound holds however completions interleave.
    The runner either returns (task completed), sets ``task.status`` to
    ``error`` itself, or raises (task becomes ``error``).
    """

    def __init__(
        self,
        runner: TaskRunner,
        *,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        on_status_change: StatusListener | None = None,
        on_finished: FinishedCallback | None = None,
    ) -> None:
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be > 0")
        self._runner = runner
        self.max_concurrent = max_concurrent
        self._on_status_change = on_status_change
        self._on_finished = on_finished
        self._queued: deque[Task] = deque()
        self._running: dict[str, asyncio.Task[None]] = {}
        self._waiting: dict[str, Task] = {}
        self._callbacks: set[asyncio.Task[Any]] = set()

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def queued_count(self) -> int:
        return len(self._queued)

    @property
    def waiting_count(self) -> int:
        return len(self._waiting)

    def queued_ids(self) -> list[str]:
        return [task.task_id for task in self._queued]

    def running_ids(self) -> list[str]:
        return list(self._running)

    def accept(self, task: Task) -> None:
        """Announce a freshly created ``pending`` task."""

        task.status = TaskStatus.PENDING
        self._notify(task, None)

    def submit(self, task: Task) -> None:
        """Queue a task and admit it immediately if a slot is free."""

        if task.status.is_terminal:
            raise ValueError(f"Task {task.task_id} is already {task.status.value}")
        previous = task.status
        task.status = TaskStatus.QUEUED
        self._queued.append(task)
        self._notify(task, previous)
        self._admit()

    def hold_for_clarification(self, task: Task, question: str) -> None:
        """Park a task until a reply on its thread arrives; holds no slot."""

        previous = task.status
        task.status = TaskStatus.AWAITING_CLARIFICATION
        task.clarify_question = question
        self._waiting[task.task_id] = task
        self._notify(task, previous)

    def find_waiting(self, thread_id: str) -> Task | None:
        """Most recent task of ``thread_id`` awaiting clarification."""

        candidates = [task for task in self._waiting.values() if task.thread_id == thread_id]
        if not candidates:
            return None
        return max(candidates, key=lambda task: task.created_at)

    def resume_clarification(self, thread_id: str, answer: str) -> Task | None:
        """Append the answer to the execution prompt and queue the waiting task."""

        task = self.find_waiting(thread_id)
        if task is None:
            return None
        del self._waiting[task.task_id]
        task.clarify_answer = answer
        task.execution_prompt = (
            f"{task.execution_prompt}\n\n{CLARIFICATION_PREFIX}\n{answer.strip()}"
        )
        self.submit(task)
        return task

    def dismiss(self, thread_id: str) -> Task | None:
        """Cancel the thread's waiting task, or failing that its queued task."""

        task = self.find_waiting(thread_id)
        if task is not None:
            del self._waiting[task.task_id]
            return self._cancel(task)

        for queued in reversed(self._queued):
            if queued.thread_id == thread_id:
                self._queued.remove(queued)
                return self._cancel(queued)
        return None

    def restore(self, tasks: Iterable[Task]) -> None:
        """Re-adopt persisted non-terminal tasks in the given order."""

        for task in tasks:
            if task.status == TaskStatus.AWAITING_CLARIFICATION:
                self._waiting[task.task_id] = task
            elif task.status in {TaskStatus.PENDING, TaskStatus.QUEUED, TaskStatus.RUNNING}:
                task.started_at = None
                self.submit(task)

    async def join(self) -> None:
        """Wait until nothing is queued or running and finish callbacks are done."""

        while self._running or self._queued or self._callbacks:
            pending = [*self._running.values(), *self._callbacks]
            if not pending:
                await asyncio.sleep(0)
                continue
            await asyncio.wait(pending)

    def _cancel(self, task: Task) -> Task:
        previous = task.status
        task.status = TaskStatus.CANCELLED
        task.finished_at = utc_now()
        self._notify(task, previous)
        logger.info("Task %s cancelled (was %s)", task.task_id, previous.value)
        return task

    def _admit(self) -> None:
        while self._queued and len(self._running) < self.max_concurrent:
            task = self._queued.popleft()
            task.status = TaskStatus.RUNNING
            task.started_at = utc_now()
            self._running[task.task_id] = asyncio.create_task(
                self._run(task),
                name=f"task:{task.task_id}",
            )
            self._notify(task, TaskStatus.QUEUED)
            logger.info(
                "Task %s admitted (%d/%d running, %d queued)",
                task.task_id,
                len(self._running),
                self.max_concurrent,
                len(self._queued),
            )

    async def _run(self, task: Task) -> None:
        try:
            await self._runner(task)
        except asyncio.CancelledError:
            self._running.pop(task.task_id, None)
            raise
        except Exception as error:  # noqa: BLE001
            logger.exception("Task %s failed", task.task_id)
            task.status = TaskStatus.ERROR
            task.error_summary = f"{type(error).__name__}: {error}"[:_ERROR_SUMMARY_LIMIT]
        else:
            if task.status == TaskStatus.RUNNING:
                task.status = TaskStatus.COMPLETED
        self._release(task)

    def _release(self, task: Task) -> None:
        self._running.pop(task.task_id, None)
        task.finished_at = utc_now()
        self._notify(task, TaskStatus.RUNNING)
        logger.info("Task %s finished: %s", task.task_id, task.status.value)
        self._admit()
        if self._on_finished is not None:
            callback = asyncio.create_task(
                self._on_finished(task),
                name=f"finished:{task.task_id}",
            )
            self._callbacks.add(callback)
            callback.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, callback: asyncio.Task[Any]) -> None:
        self._callbacks.discard(callback)
        if callback.cancelled():
            return
        error = callback.exception()
        if error is not None:
            logger.error(
                "Finish callback failed: %s",
                callback.get_name(),
                exc_info=(type(error), error, error.__traceback__),
            )

    def _notify(self, task: Task, previous: TaskStatus | None) -> None:
        if self._on_status_change is None:
            return
        try:
            self._on_status_change(task, previous)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Status listener failed for task %s (%s -> %s)",
                task.task_id,
                previous.value if previous is not None else None,
                task.status.value,
            )
