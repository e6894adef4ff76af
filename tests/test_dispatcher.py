from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import allure
import pytest
from conftest import FakeAgentBackend, RecordingMessenger, ScriptedTool, ScriptedTurn

from inbox_pilot.config import Settings
from inbox_pilot.orchestrator.backend.base import AgentInvocationError, AgentRequest
from inbox_pilot.orchestrator.classifier import ClassificationError, KeywordClassifier
from inbox_pilot.orchestrator.executor import EXECUTOR_DISALLOWED_TOOLS
from inbox_pilot.orchestrator.lessons import LESSONS_HEADER
from inbox_pilot.orchestrator.models import (
    ClassificationResult,
    ExecutionStatus,
    Intent,
    Severity,
    TaskStatus,
)
from inbox_pilot.orchestrator.queue import CLARIFICATION_PREFIX
from inbox_pilot.orchestrator.reporter import (
    CLASSIFICATION_FAILED_TEXT,
    TASK_CANCELLED_TEXT,
    TASK_FAILED_TEXT,
)
from inbox_pilot.orchestrator.services import Harness, build_harness

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Message Dispatch"),
]

T = TypeVar("T")


class FailingClassifier:
    async def classify(self, text: str) -> ClassificationResult:
        raise ClassificationError("Classifier reply is not JSON")


def _run(harness: Harness, scenario: Callable[[], Awaitable[T]]) -> T:
    async def wrapped() -> T:
        result = await scenario()
        await harness.queue.join()
        return result

    try:
        return asyncio.run(wrapped())
    finally:
        harness.close()


def _phase_reply(request: AgentRequest) -> ScriptedTurn:
    phase = request.prompt.splitlines()[0].removeprefix("## Phase: ")
    replies = {
        "research": '{"topic": "asyncio", "key_points": ["event loop"]}',
        "structure": '{"title": "Asyncio", "sections": [{"heading": "Loop"}]}',
        "content": "Body text.",
        "optimize": '{"article": "Final article text"}',
        "generate": '{"post": "Short post"}',
    }
    return ScriptedTurn(text=replies[phase])


def test_tool_failure_becomes_lesson_and_task_still_completes(
    settings: Settings,
    messenger: RecordingMessenger,
) -> None:
    backend = FakeAgentBackend(
        [
            ScriptedTurn(
                text="Findings: asyncio 3.14 adds free-threading support.\n",
                tools=[
                    ScriptedTool(
                        "WebSearch",
                        {"query": "asyncio news"},
                        "rate limit exceeded",
                        is_error=True,
                    ),
                ],
                cost_usd=0.02,
                session_id="sess-1",
            ),
        ],
    )
    harness = build_harness(
        settings,
        messenger=messenger,
        backend=backend,
        classifier=KeywordClassifier(),
    )
    repository = harness.repository

    async def scenario():
        task = await harness.dispatcher.handle_message(
            "thread-1",
            "Research the latest asyncio news",
        )
        await harness.queue.join()
        assert task is not None
        stored = repository.get_task(task.task_id)
        assert stored is not None and stored.status == TaskStatus.COMPLETED
        [lesson] = repository.get_recent_lessons()
        assert lesson.severity == Severity.MEDIUM
        assert lesson.tool_name == "WebSearch"
        assert lesson.session_id == task.task_id
        [record] = repository.list_execution_records(session_id=task.task_id)
        assert record.status == ExecutionStatus.ERROR
        session = repository.get_session("thread-1")
        assert session is not None and session.agent_session_id == "sess-1"
        return task

    task = _run(harness, scenario)

    assert task.status == TaskStatus.COMPLETED
    assert task.result_text == "Findings: asyncio 3.14 adds free-threading support."
    assert task.tool_count == 1
    assert task.cost_usd == pytest.approx(0.02)
    assert task.agent_session_id == "sess-1"

    [request] = backend.requests
    assert request.disallowed_tools == EXECUTOR_DISALLOWED_TOOLS
    assert request.allow_external_search is True
    assert request.resume_session_id is None
    assert messenger.texts("thread-1") == [
        "*Research the latest asyncio news*\n_research_",
        "Working... 1 tool calls (last: WebSearch)",
        "Findings: asyncio 3.14 adds free-threading support.",
    ]


def test_lessons_and_session_carry_into_the_next_request(
    settings: Settings,
    messenger: RecordingMessenger,
) -> None:
    backend = FakeAgentBackend(
        [
            ScriptedTurn(
                text="first",
                tools=[ScriptedTool("Bash", {"command": "make"}, "403 Forbidden", is_error=True)],
                session_id="sess-9",
            ),
            ScriptedTurn(text="second", session_id="sess-9"),
        ],
    )
    harness = build_harness(
        settings,
        messenger=messenger,
        backend=backend,
        classifier=KeywordClassifier(),
    )

    async def scenario() -> None:
        await harness.dispatcher.handle_message("thread-2", "Fix the build")
        await harness.queue.join()
        await harness.dispatcher.handle_message("thread-2", "Fix the tests too")

    _run(harness, scenario)

    first, second = backend.requests
    assert LESSONS_HEADER not in (first.system_prompt or "")
    assert LESSONS_HEADER in (second.system_prompt or "")
    assert "1. [HIGH] Bash" in (second.system_prompt or "")
    assert second.resume_session_id == "sess-9"


class FlakyMessenger(RecordingMessenger):
    """Drops the first ``failures`` posts with a connection error."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures

    async def post_message(self, thread_id: str, text: str) -> str:
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("messaging surface down")
        return await super().post_message(thread_id, text)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Research the latest asyncio news", TaskStatus.COMPLETED),
        ("Build a new feature for the billing system", TaskStatus.AWAITING_CLARIFICATION),
    ],
)
def test_acknowledgement_failure_does_not_strand_task(
    settings: Settings,
    text: str,
    expected: TaskStatus,
) -> None:
    messenger = FlakyMessenger()
    harness = build_harness(
        settings,
        messenger=messenger,
        backend=FakeAgentBackend([ScriptedTurn(text="Done.")]),
        classifier=KeywordClassifier(),
    )
    repository = harness.repository

    async def scenario():
        task = await harness.dispatcher.handle_message("thread-ack", text)
        await harness.queue.join()
        assert task is not None
        stored = repository.get_task(task.task_id)
        assert stored is not None
        return stored.status

    assert _run(harness, scenario) == expected
    assert messenger.failures == 0


def test_classification_failure_posts_notice_and_queues_nothing(
    settings: Settings,
    messenger: RecordingMessenger,
) -> None:
    backend = FakeAgentBackend()
    harness = build_harness(
        settings,
        messenger=messenger,
        backend=backend,
        classifier=FailingClassifier(),
    )
    repository = harness.repository

    async def scenario() -> object:
        task = await harness.dispatcher.handle_message("thread-3", "???")
        assert repository.list_tasks() == []
        return task

    assert _run(harness, scenario) is None
    assert messenger.posts == [("thread-3", CLASSIFICATION_FAILED_TEXT)]
    assert backend.requests == []


def test_clarification_reply_resumes_with_answer_appended(
    settings: Settings,
    messenger: RecordingMessenger,
) -> None:
    backend = FakeAgentBackend([ScriptedTurn(text="Billing module scaffolded.")])
    harness = build_harness(
        settings,
        messenger=messenger,
        backend=backend,
        classifier=KeywordClassifier(),
    )
    repository = harness.repository

    async def scenario():
        task = await harness.dispatcher.handle_message(
            "thread-4",
            "Build a new feature for the billing system",
        )
        assert task is not None
        assert task.status == TaskStatus.AWAITING_CLARIFICATION
        stored = repository.find_awaiting_task("thread-4")
        assert stored is not None and stored.task_id == task.task_id
        assert harness.queue.running_count == 0

        resumed = await harness.dispatcher.handle_reply("thread-4", "Stripe only, keep the API")
        assert resumed is task
        return task

    task = _run(harness, scenario)

    assert task.status == TaskStatus.COMPLETED
    [request] = backend.requests
    assert request.prompt.endswith(f"{CLARIFICATION_PREFIX}\nStripe only, keep the API")
    ack = messenger.texts("thread-4")[0]
    assert "Question: " in ack
    assert messenger.texts("thread-4")[-1] == "Billing module scaffolded."


def test_reply_without_waiting_task_is_a_follow_up(
    settings: Settings,
    messenger: RecordingMessenger,
) -> None:
    backend = FakeAgentBackend([ScriptedTurn(text="It is 42.")])
    harness = build_harness(
        settings,
        messenger=messenger,
        backend=backend,
        classifier=KeywordClassifier(),
    )

    task = _run(
        harness,
        lambda: harness.dispatcher.handle_reply("thread-5", "What is the answer?"),
    )

    assert task is not None
    assert task.intent == Intent.QUESTION
    assert task.status == TaskStatus.COMPLETED


def test_dismiss_cancels_waiting_task_without_running_it(
    settings: Settings,
    messenger: RecordingMessenger,
) -> None:
    backend = FakeAgentBackend()
    harness = build_harness(
        settings,
        messenger=messenger,
        backend=backend,
        classifier=KeywordClassifier(),
    )
    repository = harness.repository

    async def scenario():
        await harness.dispatcher.handle_message(
            "thread-6",
            "Build a new feature for the billing system",
        )
        cancelled = await harness.dispatcher.dismiss("thread-6")
        assert await harness.dispatcher.dismiss("thread-6") is None
        assert cancelled is not None
        stored = repository.get_task(cancelled.task_id)
        assert stored is not None and stored.status == TaskStatus.CANCELLED
        return cancelled

    cancelled = _run(harness, scenario)

    assert cancelled.status == TaskStatus.CANCELLED
    assert backend.requests == []
    assert messenger.texts("thread-6")[-1] == TASK_CANCELLED_TEXT


def test_content_request_runs_the_platform_pipeline(
    settings: Settings,
    messenger: RecordingMessenger,
) -> None:
    backend = FakeAgentBackend(responder=_phase_reply)
    harness = build_harness(
        settings,
        messenger=messenger,
        backend=backend,
        classifier=KeywordClassifier(),
    )
    repository = harness.repository

    async def scenario():
        task = await harness.dispatcher.handle_message(
            "thread-7",
            "Write a qiita article about asyncio",
        )
        await harness.queue.join()
        assert task is not None and task.pipeline_job_id is not None
        assert len(repository.list_phase_artifacts(task.pipeline_job_id)) == 4
        return task

    task = _run(harness, scenario)

    assert task.status == TaskStatus.COMPLETED
    assert task.platform == "qiita"
    assert task.result_text == "Final article text"
    assert len(backend.requests) == 4
    assert messenger.texts("thread-7")[-2:] == ["Final article text", "4 artifacts produced"]


def test_failed_pipeline_marks_task_error_with_generic_notice(
    settings: Settings,
    messenger: RecordingMessenger,
) -> None:
    backend = FakeAgentBackend([ScriptedTurn(text="no json here")])
    harness = build_harness(
        settings,
        messenger=messenger,
        backend=backend,
        classifier=KeywordClassifier(),
    )

    task = _run(
        harness,
        lambda: harness.dispatcher.handle_message("thread-8", "Post a tweet about the launch"),
    )

    assert task is not None
    assert task.status == TaskStatus.ERROR
    assert task.error_summary is not None
    assert task.error_summary.startswith('Phase "research" failed:')
    assert messenger.texts("thread-8")[-1] == TASK_FAILED_TEXT


def test_scheduled_content_bypasses_classifier(
    settings: Settings,
    messenger: RecordingMessenger,
) -> None:
    backend = FakeAgentBackend(responder=_phase_reply)
    harness = build_harness(
        settings,
        messenger=messenger,
        backend=backend,
        classifier=FailingClassifier(),
    )

    task = _run(
        harness,
        lambda: harness.dispatcher.enqueue_content("content:x:20261018T120000", "x", "release"),
    )

    assert task.intent == Intent.CONTENT
    assert task.summary == "x: release"
    assert task.status == TaskStatus.COMPLETED
    assert task.result_text == "Short post"


def test_enqueue_content_rejects_unknown_platform(settings: Settings) -> None:
    harness = build_harness(settings, messenger=RecordingMessenger(), backend=FakeAgentBackend())

    with pytest.raises(KeyError):
        _run(harness, lambda: harness.dispatcher.enqueue_content("t", "myspace", "topic"))


def test_resume_failure_falls_back_to_a_new_session(
    settings: Settings,
    messenger: RecordingMessenger,
) -> None:
    def responder(request: AgentRequest) -> ScriptedTurn:
        if request.resume_session_id is not None:
            return ScriptedTurn(
                error=AgentInvocationError("No conversation found", transient=False),
            )
        return ScriptedTurn(text="fresh answer", session_id="sess-new")

    backend = FakeAgentBackend(responder=responder)
    harness = build_harness(
        settings,
        messenger=messenger,
        backend=backend,
        classifier=KeywordClassifier(),
    )
    harness.repository.upsert_session(thread_id="thread-9", agent_session_id="sess-stale")
    repository = harness.repository

    async def scenario():
        task = await harness.dispatcher.handle_message("thread-9", "Explain the queue")
        await harness.queue.join()
        session = repository.get_session("thread-9")
        assert session is not None and session.agent_session_id == "sess-new"
        return task

    task = _run(harness, scenario)

    assert task.status == TaskStatus.COMPLETED
    assert [request.resume_session_id for request in backend.requests] == ["sess-stale", None]


def test_recover_requeues_unfinished_tasks(
    settings: Settings,
    messenger: RecordingMessenger,
) -> None:
    first = build_harness(
        settings,
        messenger=messenger,
        backend=FakeAgentBackend(),
        classifier=KeywordClassifier(),
    )

    async def park() -> None:
        await first.dispatcher.handle_message("thread-10", "Build a new feature for billing")

    _run(first, park)

    backend = FakeAgentBackend([ScriptedTurn(text="recovered")])
    second = build_harness(
        settings,
        messenger=messenger,
        backend=backend,
        classifier=KeywordClassifier(),
    )

    async def scenario():
        assert second.dispatcher.recover(thread_id="other-thread") == 0
        assert second.dispatcher.recover() == 1
        return await second.dispatcher.handle_reply("thread-10", "Only invoices")

    task = _run(second, scenario)

    assert task is not None
    assert task.status == TaskStatus.COMPLETED
    assert backend.requests[0].prompt.endswith("Only invoices")
