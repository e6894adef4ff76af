"""Runtime configuration for the task harness."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_AGENT_COMMAND = (
    "claude -p --output-format stream-json --verbose --model {model} "
    "{disallowed_tools} {resume} -- {prompt}"
)


@dataclass(slots=True)
class QueueSettings:
    """Concurrency governor settings."""

    max_concurrent: int = 3


@dataclass(slots=True)
class AgentSettings:
    """Agent runtime invocation settings."""

    command_template: str = DEFAULT_AGENT_COMMAND
    model: str = "sonnet"
    classifier_model: str = "haiku"
    timeout_seconds: int = 600
    search_tools: tuple[str, ...] = ("WebSearch", "WebFetch")


@dataclass(slots=True)
class ClassifierSettings:
    """Inbound request classification settings."""

    mode: str = "agent"


@dataclass(slots=True)
class LessonSettings:
    """Episodic memory settings."""

    recent_limit: int = 10


@dataclass(slots=True)
class PipelineSettings:
    """Phase pipeline prompt sources and caller-side retry policy."""

    phase_retry_limit: int = 0
    retry_backoff_seconds: float = 1.0
    prompts_dir: Path | None = None


@dataclass(slots=True)
class ReporterSettings:
    """Messaging surface formatting settings."""

    message_chunk_chars: int = 3_000


@dataclass(slots=True)
class ContentSchedule:
    """One recurring content-generation job."""

    platform: str
    cron: str
    topic: str


@dataclass(slots=True)
class SchedulerSettings:
    """Cron layer and HTTP trigger settings."""

    timezone: str = "UTC"
    http_host: str = "127.0.0.1"
    http_port: int = 8765
    content_schedules: tuple[ContentSchedule, ...] = ()


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".inbox_pilot.db")
    queue: QueueSettings = field(default_factory=QueueSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    classifier: ClassifierSettings = field(default_factory=ClassifierSettings)
    lessons: LessonSettings = field(default_factory=LessonSettings)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    reporter: ReporterSettings = field(default_factory=ReporterSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("INBOX_PILOT_DB_PATH", ".inbox_pilot.db")),
            queue=QueueSettings(
                max_concurrent=int(os.getenv("INBOX_PILOT_MAX_CONCURRENT", "3")),
            ),
            agent=AgentSettings(
                command_template=os.getenv("INBOX_PILOT_AGENT_COMMAND", DEFAULT_AGENT_COMMAND),
                model=os.getenv("INBOX_PILOT_AGENT_MODEL", "sonnet"),
                classifier_model=os.getenv("INBOX_PILOT_CLASSIFIER_MODEL", "haiku"),
                timeout_seconds=int(os.getenv("INBOX_PILOT_AGENT_TIMEOUT_SECONDS", "600")),
                search_tools=_csv_tuple(
                    os.getenv("INBOX_PILOT_SEARCH_TOOLS", "WebSearch,WebFetch"),
                ),
            ),
            classifier=ClassifierSettings(
                mode=os.getenv("INBOX_PILOT_CLASSIFIER_MODE", "agent").strip().lower(),
            ),
            lessons=LessonSettings(
                recent_limit=int(os.getenv("INBOX_PILOT_LESSONS_LIMIT", "10")),
            ),
            pipeline=PipelineSettings(
                phase_retry_limit=int(os.getenv("INBOX_PILOT_PHASE_RETRY_LIMIT", "0")),
                retry_backoff_seconds=float(
                    os.getenv("INBOX_PILOT_PHASE_RETRY_BACKOFF_SECONDS", "1.0"),
                ),
                prompts_dir=_optional_path(os.getenv("INBOX_PILOT_PROMPTS_DIR")),
            ),
            reporter=ReporterSettings(
                message_chunk_chars=int(os.getenv("INBOX_PILOT_MESSAGE_CHUNK_CHARS", "3000")),
            ),
            scheduler=SchedulerSettings(
                timezone=os.getenv("INBOX_PILOT_TIMEZONE", "UTC"),
                http_host=os.getenv("INBOX_PILOT_HTTP_HOST", "127.0.0.1"),
                http_port=int(os.getenv("INBOX_PILOT_HTTP_PORT", "8765")),
                content_schedules=_collect_content_schedules(),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the harness cannot run with."""

        if self.queue.max_concurrent <= 0:
            raise ValueError("INBOX_PILOT_MAX_CONCURRENT must be > 0.")
        if self.agent.timeout_seconds <= 0:
            raise ValueError("INBOX_PILOT_AGENT_TIMEOUT_SECONDS must be > 0.")
        if "{prompt}" not in self.agent.command_template:
            raise ValueError("INBOX_PILOT_AGENT_COMMAND must include {prompt}.")
        if self.classifier.mode not in {"agent", "keyword"}:
            raise ValueError(
                f"INBOX_PILOT_CLASSIFIER_MODE must be 'agent' or 'keyword': "
                f"{self.classifier.mode!r}",
            )
        if self.lessons.recent_limit < 0:
            raise ValueError("INBOX_PILOT_LESSONS_LIMIT must be >= 0.")
        if self.pipeline.phase_retry_limit < 0:
            raise ValueError("INBOX_PILOT_PHASE_RETRY_LIMIT must be >= 0.")
        if self.pipeline.retry_backoff_seconds < 0:
            raise ValueError("INBOX_PILOT_PHASE_RETRY_BACKOFF_SECONDS must be >= 0.")
        if self.reporter.message_chunk_chars < 100:
            raise ValueError("INBOX_PILOT_MESSAGE_CHUNK_CHARS must be >= 100.")


def _csv_tuple(raw: str) -> tuple[str, ...]:
    values: list[str] = []
    for part in raw.split(","):
        token = part.strip()
        if token and token not in values:
            values.append(token)
    return tuple(values)


def _collect_content_schedules() -> tuple[ContentSchedule, ...]:
    raw = os.getenv("INBOX_PILOT_CONTENT_SCHEDULES", "").strip()
    if not raw:
        return ()

    schedules: list[ContentSchedule] = []
    for part in raw.split(";"):
        token = part.strip()
        if not token:
            continue
        pieces = [piece.strip() for piece in token.split("|")]
        if len(pieces) != 3 or not all(pieces):
            raise ValueError(
                "Invalid INBOX_PILOT_CONTENT_SCHEDULES entry: "
                f"{token!r}. Expected format '<platform>|<cron>|<topic>'.",
            )
        platform, cron, topic = pieces
        schedules.append(ContentSchedule(platform=platform.lower(), cron=cron, topic=topic))
    return tuple(schedules)


def _optional_path(raw: str | None) -> Path | None:
    if raw is None or not raw.strip():
        return None
    return Path(raw.strip())
