"""Persistence facade for tasks, audit trail, lessons, checkpoints and sessions."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from sqlmodel import Session, col, select

from inbox_pilot.orchestrator.models import (
    ExecutionRecordView,
    ExecutionStatus,
    Intent,
    LessonEntry,
    LessonWrite,
    PhaseArtifactView,
    SessionView,
    Severity,
    Task,
    TaskStatus,
)
from inbox_pilot.storage.alembic_runner import upgrade_head
from inbox_pilot.storage.common import (
    as_utc,
    build_sqlite_engine,
    dump_json,
    load_json,
    utc_now,
)
from inbox_pilot.storage.sqlmodel_models import (
    AgentSessionRow,
    ExecutionRecordRow,
    LessonRow,
    PhaseArtifactRow,
    TaskRow,
)


class HarnessRepository:
    """Harness persistence backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    # Tasks

    def save_task(self, task: Task) -> None:
        """Insert or update the full task row."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(TaskRow, task.task_id)
            if row is None:
                row = TaskRow(
                    task_id=task.task_id,
                    thread_id=task.thread_id,
                    request_text=task.request_text,
                    intent=task.intent.value,
                    execution_prompt=task.execution_prompt,
                    status=task.status.value,
                    created_at=task.created_at,
                    updated_at=now,
                )
            row.thread_id = task.thread_id
            row.request_text = task.request_text
            row.intent = task.intent.value
            row.autonomy_level = task.autonomy_level
            row.summary = task.summary
            row.execution_prompt = task.execution_prompt
            row.status = task.status.value
            row.platform = task.platform
            row.clarify_question = task.clarify_question
            row.clarify_answer = task.clarify_answer
            row.pipeline_job_id = task.pipeline_job_id
            row.agent_session_id = task.agent_session_id
            row.result_text = task.result_text
            row.error_summary = task.error_summary
            row.cost_usd = task.cost_usd
            row.tool_count = task.tool_count
            row.started_at = task.started_at
            row.finished_at = task.finished_at
            row.updated_at = now
            session.add(row)
            session.commit()

    def get_task(self, task_id: str) -> Task | None:
        with Session(self.engine) as session:
            row = session.get(TaskRow, task_id)
        return _to_task(row) if row is not None else None

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[Task]:
        """List recent tasks, newest first, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(TaskRow)
            if status is not None:
                statement = statement.where(TaskRow.status == status.value)
            statement = statement.order_by(col(TaskRow.created_at).desc()).limit(limit)
            rows = session.exec(statement).all()
        return [_to_task(row) for row in rows]

    def list_tasks_in_statuses(self, statuses: Iterable[TaskStatus]) -> list[Task]:
        """Tasks in any of the given statuses, oldest first."""

        values = [status.value for status in statuses]
        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow)
                .where(col(TaskRow.status).in_(values))
                .order_by(col(TaskRow.created_at).asc()),
            ).all()
        return [_to_task(row) for row in rows]

    def find_awaiting_task(self, thread_id: str) -> Task | None:
        """Most recent task of a thread waiting for a clarification reply."""

        with Session(self.engine) as session:
            row = session.exec(
                select(TaskRow)
                .where(
                    TaskRow.thread_id == thread_id,
                    TaskRow.status == TaskStatus.AWAITING_CLARIFICATION.value,
                )
                .order_by(col(TaskRow.created_at).desc())
                .limit(1),
            ).one_or_none()
        return _to_task(row) if row is not None else None

    # Execution records

    def open_execution_record(
        self,
        *,
        session_id: str,
        tool_use_id: str,
        tool_name: str,
        tool_input: object,
    ) -> int:
        """Insert a ``running`` audit record and return its id."""

        with Session(self.engine) as session:
            row = ExecutionRecordRow(
                session_id=session_id,
                tool_use_id=tool_use_id,
                tool_name=tool_name,
                tool_input=dump_json(tool_input),
                status=ExecutionStatus.RUNNING.value,
                started_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return row.record_id or 0

    def close_execution_record(
        self,
        *,
        record_id: int,
        status: ExecutionStatus,
        tool_result: object,
        duration_ms: int,
    ) -> bool:
        """Close a running record; closed records are immutable and left untouched."""

        with Session(self.engine) as session:
            row = session.get(ExecutionRecordRow, record_id)
            if row is None or row.status != ExecutionStatus.RUNNING.value:
                return False
            row.status = status.value
            row.tool_result = dump_json(tool_result)
            row.duration_ms = max(0, duration_ms)
            row.finished_at = utc_now()
            session.add(row)
            session.commit()
            return True

    def list_execution_records(
        self,
        *,
        session_id: str | None = None,
        limit: int = 100,
    ) -> list[ExecutionRecordView]:
        with Session(self.engine) as session:
            statement = select(ExecutionRecordRow)
            if session_id is not None:
                statement = statement.where(ExecutionRecordRow.session_id == session_id)
            statement = statement.order_by(col(ExecutionRecordRow.record_id).asc()).limit(limit)
            rows = session.exec(statement).all()
        return [_to_execution_record(row) for row in rows]

    # Lessons

    def add_lesson(self, lesson: LessonWrite) -> LessonEntry:
        """Append one lesson."""

        with Session(self.engine) as session:
            row = LessonRow(
                session_id=lesson.session_id,
                execution_record_id=lesson.execution_record_id,
                tool_name=lesson.tool_name,
                error_pattern=lesson.error_pattern,
                reflection=lesson.reflection,
                resolution=lesson.resolution,
                severity=lesson.severity.value,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_lesson(row)

    def get_recent_lessons(self, limit: int = 10) -> list[LessonEntry]:
        """Most recent lessons first."""

        if limit <= 0:
            return []
        with Session(self.engine) as session:
            rows = session.exec(
                select(LessonRow)
                .order_by(col(LessonRow.created_at).desc(), col(LessonRow.lesson_id).desc())
                .limit(limit),
            ).all()
        return [_to_lesson(row) for row in rows]

    # Phase artifacts

    def upsert_phase_artifact(
        self,
        *,
        platform: str,
        job_id: str,
        phase_name: str,
        artifact: str,
    ) -> None:
        """Checkpoint one phase output keyed by (job id, phase name)."""

        with Session(self.engine) as session:
            row = session.get(PhaseArtifactRow, (job_id, phase_name))
            if row is None:
                row = PhaseArtifactRow(
                    job_id=job_id,
                    phase_name=phase_name,
                    platform=platform,
                    artifact=artifact,
                    created_at=utc_now(),
                )
            else:
                row.platform = platform
                row.artifact = artifact
            session.add(row)
            session.commit()

    def list_phase_artifacts(self, job_id: str) -> list[PhaseArtifactView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(PhaseArtifactRow)
                .where(PhaseArtifactRow.job_id == job_id)
                .order_by(col(PhaseArtifactRow.created_at).asc()),
            ).all()
        return [
            PhaseArtifactView(
                job_id=row.job_id,
                phase_name=row.phase_name,
                platform=row.platform,
                artifact=row.artifact,
                created_at=as_utc(row.created_at) or row.created_at,
            )
            for row in rows
        ]

    # Agent sessions

    def get_session(self, thread_id: str) -> SessionView | None:
        with Session(self.engine) as session:
            row = session.get(AgentSessionRow, thread_id)
        return _to_session(row) if row is not None else None

    def upsert_session(self, *, thread_id: str, agent_session_id: str) -> SessionView:
        """Create the thread mapping or point it at a newly issued runtime session."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(AgentSessionRow, thread_id)
            if row is None:
                row = AgentSessionRow(
                    thread_id=thread_id,
                    agent_session_id=agent_session_id,
                    created_at=now,
                    updated_at=now,
                )
            elif row.agent_session_id != agent_session_id:
                row.agent_session_id = agent_session_id
                row.updated_at = now
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_session(row)


def _to_task(row: TaskRow) -> Task:
    return Task(
        task_id=row.task_id,
        thread_id=row.thread_id,
        request_text=row.request_text,
        intent=Intent.parse(row.intent),
        autonomy_level=row.autonomy_level,
        summary=row.summary,
        execution_prompt=row.execution_prompt,
        status=TaskStatus(row.status),
        created_at=as_utc(row.created_at) or row.created_at,
        platform=row.platform,
        clarify_question=row.clarify_question,
        clarify_answer=row.clarify_answer,
        pipeline_job_id=row.pipeline_job_id,
        agent_session_id=row.agent_session_id,
        result_text=row.result_text,
        error_summary=row.error_summary,
        cost_usd=row.cost_usd,
        tool_count=row.tool_count,
        started_at=as_utc(row.started_at),
        finished_at=as_utc(row.finished_at),
    )


def _to_execution_record(row: ExecutionRecordRow) -> ExecutionRecordView:
    return ExecutionRecordView(
        record_id=row.record_id or 0,
        session_id=row.session_id,
        tool_use_id=row.tool_use_id,
        tool_name=row.tool_name,
        tool_input=load_json(row.tool_input),
        tool_result=load_json(row.tool_result),
        status=ExecutionStatus(row.status),
        duration_ms=row.duration_ms,
        started_at=as_utc(row.started_at) or row.started_at,
        finished_at=as_utc(row.finished_at),
    )


def _to_lesson(row: LessonRow) -> LessonEntry:
    return LessonEntry(
        lesson_id=row.lesson_id or 0,
        tool_name=row.tool_name,
        error_pattern=row.error_pattern,
        reflection=row.reflection,
        resolution=row.resolution,
        severity=Severity(row.severity),
        created_at=as_utc(row.created_at) or row.created_at,
        session_id=row.session_id,
    )


def _to_session(row: AgentSessionRow) -> SessionView:
    return SessionView(
        thread_id=row.thread_id,
        agent_session_id=row.agent_session_id,
        created_at=as_utc(row.created_at) or row.created_at,
        updated_at=as_utc(row.updated_at) or row.updated_at,
    )
