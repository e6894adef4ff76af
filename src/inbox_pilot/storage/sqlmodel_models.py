"""SQLModel ORM tables for harness persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, PrimaryKeyConstraint, Text
from sqlmodel import Field, SQLModel


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_status_created", "status", "created_at"),)

    task_id: str = Field(primary_key=True)
    thread_id: str = Field(index=True)
    request_text: str = Field(sa_column=Column(Text, nullable=False))
    intent: str = Field(index=True)
    autonomy_level: int = Field(default=2)
    summary: str = ""
    execution_prompt: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    platform: str | None = None
    clarify_question: str | None = Field(default=None, sa_column=Column(Text))
    clarify_answer: str | None = Field(default=None, sa_column=Column(Text))
    pipeline_job_id: str | None = None
    agent_session_id: str | None = None
    result_text: str | None = Field(default=None, sa_column=Column(Text))
    error_summary: str | None = Field(default=None, sa_column=Column(Text))
    cost_usd: float = 0.0
    tool_count: int = 0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ExecutionRecordRow(SQLModel, table=True):
    __tablename__ = "execution_records"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_execution_records_session_time", "session_id", "started_at"),)

    record_id: int | None = Field(default=None, primary_key=True)
    session_id: str = Field(index=True)
    tool_use_id: str = Field(index=True)
    tool_name: str = Field(index=True)
    tool_input: str | None = Field(default=None, sa_column=Column(Text))
    tool_result: str | None = Field(default=None, sa_column=Column(Text))
    status: str = Field(index=True)
    duration_ms: int | None = None
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))


class LessonRow(SQLModel, table=True):
    __tablename__ = "lessons"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_lessons_created", "created_at"),)

    lesson_id: int | None = Field(default=None, primary_key=True)
    session_id: str | None = Field(default=None, index=True)
    execution_record_id: int | None = None
    tool_name: str = Field(index=True)
    error_pattern: str = Field(sa_column=Column(Text, nullable=False))
    reflection: str = Field(sa_column=Column(Text, nullable=False))
    resolution: str | None = Field(default=None, sa_column=Column(Text))
    severity: str = Field(default="medium")
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PhaseArtifactRow(SQLModel, table=True):
    __tablename__ = "phase_artifacts"  # type: ignore[bad-override]
    __table_args__ = (PrimaryKeyConstraint("job_id", "phase_name"),)

    job_id: str
    phase_name: str
    platform: str = Field(index=True)
    artifact: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AgentSessionRow(SQLModel, table=True):
    __tablename__ = "agent_sessions"  # type: ignore[bad-override]

    thread_id: str = Field(primary_key=True)
    agent_session_id: str
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
