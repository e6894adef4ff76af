"""Domain models for the task queue, audit trail and lessons."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    AWAITING_CLARIFICATION = "awaiting_clarification"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.ERROR, TaskStatus.CANCELLED})


class Intent(str, Enum):
    """Classified purpose of an inbound request."""

    RESEARCH = "research"
    CODE_CHANGE = "code_change"
    ORGANIZE = "organize"
    QUESTION = "question"
    REMINDER = "reminder"
    CONTENT = "content"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: object) -> Intent:
        """Normalize free-form intent labels; unknown values become ``other``."""

        token = str(raw or "").strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(token)
        except ValueError:
            return cls.OTHER


class ExecutionStatus(str, Enum):
    """Per tool-call audit record states."""

    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class Severity(str, Enum):
    """Lesson severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FailureClass(str, Enum):
    """Normalized tool failure classes used by the lesson severity policy."""

    TRANSIENT = "transient"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    OTHER = "other"


@dataclass(slots=True)
class ClassificationResult:
    """Classifier verdict for one inbound request."""

    intent: Intent
    autonomy_level: int
    summary: str
    execution_prompt: str
    reasoning: str = ""
    clarify_question: str | None = None
    platform: str | None = None


@dataclass(slots=True)
class Task:
    """One unit of classified work, mutated in place by the queue."""

    task_id: str
    thread_id: str
    request_text: str
    intent: Intent
    autonomy_level: int
    summary: str
    execution_prompt: str
    status: TaskStatus
    created_at: datetime
    platform: str | None = None
    clarify_question: str | None = None
    clarify_answer: str | None = None
    pipeline_job_id: str | None = None
    agent_session_id: str | None = None
    result_text: str | None = None
    error_summary: str | None = None
    cost_usd: float = 0.0
    tool_count: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None


@dataclass(slots=True)
class ExecutionRecordView:
    """Closed or in-flight audit record of one tool invocation."""

    record_id: int
    session_id: str
    tool_use_id: str
    tool_name: str
    tool_input: Any
    tool_result: Any
    status: ExecutionStatus
    duration_ms: int | None
    started_at: datetime
    finished_at: datetime | None


@dataclass(slots=True)
class LessonWrite:
    """Input payload for appending a lesson."""

    tool_name: str
    error_pattern: str
    reflection: str
    resolution: str | None = None
    severity: Severity = Severity.MEDIUM
    session_id: str | None = None
    execution_record_id: int | None = None


@dataclass(slots=True)
class LessonEntry:
    """Stored lesson as read back for prompts and CLI."""

    lesson_id: int
    tool_name: str
    error_pattern: str
    reflection: str
    resolution: str | None
    severity: Severity
    created_at: datetime
    session_id: str | None = None


@dataclass(slots=True)
class SessionView:
    """Conversation thread mapped to an agent-runtime session."""

    thread_id: str
    agent_session_id: str
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class PhaseArtifactView:
    """Persisted checkpoint of one pipeline phase."""

    job_id: str
    phase_name: str
    platform: str
    artifact: str
    created_at: datetime
