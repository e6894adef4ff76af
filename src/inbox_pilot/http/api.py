"""FastAPI app exposing manual job triggers and inbound messages."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from inbox_pilot import __version__
from inbox_pilot.orchestrator.background import fire_and_forget
from inbox_pilot.orchestrator.models import Task, TaskStatus
from inbox_pilot.orchestrator.services import Harness

logger = logging.getLogger(__name__)


class MessageRequest(BaseModel):
    text: str = Field(min_length=1)
    thread_id: str | None = None
    reply: bool = False


class MessageAccepted(BaseModel):
    thread_id: str
    status: str = "accepted"


class JobTriggered(BaseModel):
    job: str
    status: str


class JobInfo(BaseModel):
    name: str
    cron: str
    running: bool
    next_run_at: datetime | None = None


class TaskInfo(BaseModel):
    task_id: str
    thread_id: str
    status: str
    intent: str
    summary: str
    platform: str | None = None
    pipeline_job_id: str | None = None
    error_summary: str | None = None
    created_at: datetime
    finished_at: datetime | None = None


def _task_info(task: Task) -> TaskInfo:
    return TaskInfo(
        task_id=task.task_id,
        thread_id=task.thread_id,
        status=task.status.value,
        intent=task.intent.value,
        summary=task.summary,
        platform=task.platform,
        pipeline_job_id=task.pipeline_job_id,
        error_summary=task.error_summary,
        created_at=task.created_at,
        finished_at=task.finished_at,
    )


def create_app(harness: Harness, *, manage_lifecycle: bool = True) -> FastAPI:
    """Build the app; with ``manage_lifecycle`` startup recovers tasks and starts cron."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        recovered = harness.dispatcher.recover()
        if recovered:
            logger.info("Recovered %d tasks on startup", recovered)
        harness.scheduler.start()
        try:
            yield
        finally:
            harness.scheduler.shutdown()

    app = FastAPI(
        title="inbox-pilot",
        version=__version__,
        lifespan=lifespan if manage_lifecycle else None,
    )

    @app.get("/health")
    def health() -> dict[str, object]:
        return {
            "status": "ok",
            "running": harness.queue.running_count,
            "queued": harness.queue.queued_count,
            "awaiting_clarification": harness.queue.waiting_count,
        }

    @app.get("/jobs", response_model=list[JobInfo])
    def list_jobs() -> list[JobInfo]:
        return [
            JobInfo(
                name=job.name,
                cron=job.cron,
                running=job.running,
                next_run_at=job.next_run_at,
            )
            for job in harness.scheduler.list_jobs()
        ]

    @app.post("/jobs/{name}/run", status_code=202, response_model=JobTriggered)
    async def run_job(name: str) -> JobTriggered:
        try:
            started = harness.scheduler.run_now(name)
        except KeyError as error:
            raise HTTPException(status_code=404, detail=f"Unknown job: {name}") from error
        if not started:
            raise HTTPException(status_code=409, detail=f"Job already running: {name}")
        return JobTriggered(job=name, status="started")

    @app.get("/tasks", response_model=list[TaskInfo])
    def list_tasks(
        status: TaskStatus | None = None,
        limit: int = Query(default=50, ge=1, le=500),
    ) -> list[TaskInfo]:
        return [
            _task_info(task)
            for task in harness.repository.list_tasks(status=status, limit=limit)
        ]

    @app.post("/messages", status_code=202, response_model=MessageAccepted)
    async def post_message(payload: MessageRequest) -> MessageAccepted:
        thread_id = payload.thread_id or uuid.uuid4().hex
        if payload.reply:
            handling = harness.dispatcher.handle_reply(thread_id, payload.text)
        else:
            handling = harness.dispatcher.handle_message(thread_id, payload.text)
        fire_and_forget(handling, f"inbound message {thread_id}")
        return MessageAccepted(thread_id=thread_id)

    @app.post("/threads/{thread_id}/dismiss", response_model=TaskInfo)
    async def dismiss(thread_id: str) -> TaskInfo:
        task = await harness.dispatcher.dismiss(thread_id)
        if task is None:
            raise HTTPException(status_code=404, detail="Nothing to dismiss in this thread")
        return _task_info(task)

    return app
