"""CLI entrypoint for inbox-pilot."""

import logging
from pathlib import Path

import rich_click as click

from inbox_pilot import __version__
from inbox_pilot.orchestrator.controllers import (
    DismissCommand,
    HarnessCliController,
    LessonsListCommand,
    PipelineArtifactsCommand,
    PipelineRunCommand,
    ReplyCommand,
    ServeCommand,
    SubmitCommand,
    TasksListCommand,
)
from inbox_pilot.orchestrator.models import TaskStatus

click.rich_click.USE_MARKDOWN = True
CONTROLLER = HarnessCliController()
LOG_LEVELS = ["debug", "info", "warning", "error"]


@click.group()
@click.version_option(version=__version__, prog_name="inbox-pilot")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="warning",
    show_default=True,
    help="Logging level for harness internals.",
)
def inbox_pilot(log_level: str) -> None:
    """Personal automation harness: classify requests, run agents, learn from failures."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@inbox_pilot.command("submit")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--thread-id", default=None, help="Conversation thread id; generated if omitted.")
@click.argument("text")
def submit(db_path: Path | None, thread_id: str | None, text: str) -> None:
    """Classify a request and run it to completion."""

    _emit_lines(
        CONTROLLER.submit(SubmitCommand(db_path=db_path, text=text, thread_id=thread_id)),
    )


@inbox_pilot.command("reply")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("thread_id")
@click.argument("text")
def reply(db_path: Path | None, thread_id: str, text: str) -> None:
    """Answer a clarification question, or follow up in a thread."""

    _emit_lines(
        CONTROLLER.reply(ReplyCommand(db_path=db_path, thread_id=thread_id, text=text)),
    )


@inbox_pilot.command("dismiss")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("thread_id")
def dismiss(db_path: Path | None, thread_id: str) -> None:
    """Cancel the request waiting for clarification in a thread."""

    _emit_lines(CONTROLLER.dismiss(DismissCommand(db_path=db_path, thread_id=thread_id)))


@inbox_pilot.group()
def tasks() -> None:
    """Task inspection commands."""


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Max rows.",
)
def tasks_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent tasks, newest first."""

    _emit_lines(
        CONTROLLER.list_tasks(
            TasksListCommand(
                db_path=db_path,
                status=status.lower() if status else None,
                limit=limit,
            ),
        ),
    )


@inbox_pilot.group()
def lessons() -> None:
    """Lessons learned from tool failures."""


@lessons.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=10,
    show_default=True,
    help="How many recent lessons to show.",
)
def lessons_list(db_path: Path | None, limit: int) -> None:
    """Show the most recent lessons."""

    _emit_lines(CONTROLLER.list_lessons(LessonsListCommand(db_path=db_path, limit=limit)))


@inbox_pilot.group()
def pipeline() -> None:
    """Content pipeline commands."""


@pipeline.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--category", default=None, help="Optional content category for the first phase.")
@click.option("--job-id", default=None, help="Job id for checkpoints; generated if omitted.")
@click.argument("platform")
@click.argument("topic")
def pipeline_run(
    db_path: Path | None,
    category: str | None,
    job_id: str | None,
    platform: str,
    topic: str,
) -> None:
    """Run one platform pipeline for a topic."""

    try:
        lines = CONTROLLER.run_pipeline(
            PipelineRunCommand(
                db_path=db_path,
                platform=platform,
                topic=topic,
                category=category,
                job_id=job_id,
            ),
        )
    except KeyError as error:
        raise click.ClickException(str(error.args[0])) from error
    _emit_lines(lines)


@pipeline.command("artifacts")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id")
def pipeline_artifacts(db_path: Path | None, job_id: str) -> None:
    """List checkpointed phase artifacts of a job."""

    _emit_lines(
        CONTROLLER.list_artifacts(PipelineArtifactsCommand(db_path=db_path, job_id=job_id)),
    )


@pipeline.command("configs")
def pipeline_configs() -> None:
    """List shipped pipeline configurations."""

    _emit_lines(CONTROLLER.list_configs())


@inbox_pilot.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--host", default=None, help="Bind host; defaults to INBOX_PILOT_HTTP_HOST.")
@click.option(
    "--port",
    type=click.IntRange(min=1, max=65535),
    default=None,
    help="Bind port; defaults to INBOX_PILOT_HTTP_PORT.",
)
def serve(db_path: Path | None, host: str | None, port: int | None) -> None:
    """Run the scheduler and HTTP trigger surface."""

    level = logging.getLevelName(logging.getLogger().getEffectiveLevel()).lower()
    _emit_lines(
        CONTROLLER.serve(
            ServeCommand(
                db_path=db_path,
                host=host,
                port=port,
                log_level=level if level in LOG_LEVELS else "info",
            ),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    inbox_pilot()
