from __future__ import annotations

import re
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner
from conftest import ECHO_AGENT_COMMAND_TEMPLATE

from inbox_pilot.main import inbox_pilot
from inbox_pilot.orchestrator.repository import HarnessRepository
from inbox_pilot.orchestrator.reporter import TASK_CANCELLED_TEXT

pytestmark = [
    allure.epic("Surfaces"),
    allure.feature("Command Line"),
]

_TASK_LINE = re.compile(
    r"Task (?P<task_id>[0-9a-f]{32}) thread=(?P<thread>\S+) status=(?P<status>\w+)",
)


@pytest.fixture()
def db_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("INBOX_PILOT_CLASSIFIER_MODE", "keyword")
    monkeypatch.setenv("INBOX_PILOT_AGENT_COMMAND", ECHO_AGENT_COMMAND_TEMPLATE)
    monkeypatch.delenv("INBOX_PILOT_CONTENT_SCHEDULES", raising=False)
    return tmp_path / "cli.db"


def _invoke(*args: str):
    result = CliRunner().invoke(inbox_pilot, list(args))
    assert result.exit_code == 0, result.output
    return result


def _outcome(output: str) -> re.Match[str]:
    match = _TASK_LINE.search(output)
    assert match is not None, output
    return match


def test_submit_runs_request_through_echo_agent(db_path: Path) -> None:
    result = _invoke(
        "submit",
        "--db-path",
        str(db_path),
        "--thread-id",
        "cli-1",
        "Explain asyncio",
    )

    outcome = _outcome(result.output)
    assert outcome["thread"] == "cli-1"
    assert outcome["status"] == "completed"
    assert "[cli-1#1] *Explain asyncio*" in result.output
    assert "echo: " in result.output

    listing = _invoke("tasks", "list", "--db-path", str(db_path), "--status", "completed")
    assert "Tasks: 1" in listing.output
    assert f"{outcome['task_id']} thread=cli-1 status=completed intent=question" in listing.output


def test_clarify_then_reply_completes_the_task(db_path: Path) -> None:
    asked = _invoke(
        "submit",
        "--db-path",
        str(db_path),
        "--thread-id",
        "cli-2",
        "Build a new feature for the billing system",
    )
    assert _outcome(asked.output)["status"] == "awaiting_clarification"
    assert "Question: " in asked.output

    answered = _invoke("reply", "--db-path", str(db_path), "cli-2", "Only invoices")

    assert _outcome(answered.output)["task_id"] == _outcome(asked.output)["task_id"]
    assert _outcome(answered.output)["status"] == "completed"


def test_dismiss_cancels_waiting_request(db_path: Path) -> None:
    asked = _invoke(
        "submit",
        "--db-path",
        str(db_path),
        "--thread-id",
        "cli-3",
        "Build a new feature for the billing system",
    )
    task_id = _outcome(asked.output)["task_id"]

    dismissed = _invoke("dismiss", "--db-path", str(db_path), "cli-3")
    again = _invoke("dismiss", "--db-path", str(db_path), "cli-3")

    assert f"Task {task_id} dismissed." in dismissed.output
    assert TASK_CANCELLED_TEXT in dismissed.output
    assert "Nothing to dismiss in thread cli-3." in again.output
    listing = _invoke("tasks", "list", "--db-path", str(db_path), "--status", "cancelled")
    assert "Tasks: 1" in listing.output


def test_tool_failure_shows_up_in_lessons(db_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(
        "INBOX_PILOT_AGENT_COMMAND",
        ECHO_AGENT_COMMAND_TEMPLATE.replace(" -- ", " --fail-tool WebSearch -- "),
    )

    submitted = _invoke("submit", "--db-path", str(db_path), "Research the latest asyncio news")
    lessons = _invoke("lessons", "list", "--db-path", str(db_path))

    assert _outcome(submitted.output)["status"] == "completed"
    assert "Lessons: 1" in lessons.output
    assert "[medium] WebSearch" in lessons.output
    assert "error: rate limit exceeded" in lessons.output
    assert "resolution: (unresolved)" in lessons.output


def test_pipeline_configs_lists_platforms() -> None:
    result = _invoke("pipeline", "configs")

    assert "Pipelines: 10" in result.output
    assert "  qiita: research* -> structure -> content -> optimize (output: article)" in (
        result.output
    )
    assert "  x: research* -> generate (output: post)" in result.output


def test_pipeline_run_rejects_unknown_platform(db_path: Path) -> None:
    result = CliRunner().invoke(
        inbox_pilot,
        ["pipeline", "run", "--db-path", str(db_path), "myspace", "topic"],
    )

    assert result.exit_code == 1
    assert "Unknown platform 'myspace'" in result.output


def test_pipeline_artifacts_lists_checkpoints(db_path: Path) -> None:
    repository = HarnessRepository(db_path)
    repository.init_schema()
    repository.upsert_phase_artifact(
        platform="zenn",
        job_id="job-cli",
        phase_name="research",
        artifact='{"topic": "t"}',
    )
    repository.close()

    result = _invoke("pipeline", "artifacts", "--db-path", str(db_path), "job-cli")

    assert "Artifacts for job job-cli: 1" in result.output
    assert "research platform=zenn chars=14" in result.output
