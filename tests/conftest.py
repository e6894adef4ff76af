"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from inbox_pilot.config import Settings
from inbox_pilot.orchestrator.backend.base import (
    AgentInvocationError,
    AgentRequest,
    AgentResult,
    ToolCall,
)
from inbox_pilot.orchestrator.hooks import (
    AgentHooks,
    ToolFailureEvent,
    ToolResultEvent,
    ToolUseEvent,
    emit_post_tool_use,
    emit_pre_tool_use,
    emit_tool_failure,
)
from inbox_pilot.orchestrator.repository import HarnessRepository

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m inbox_pilot.orchestrator.backend.echo_agent "
    "--model {model} {disallowed_tools} {resume} -- {prompt}"
)


@dataclass(slots=True)
class ScriptedTool:
    """One tool call the fake agent reports through hooks."""

    name: str
    tool_input: dict[str, Any] = field(default_factory=dict)
    result: str = "ok"
    is_error: bool = False


@dataclass(slots=True)
class ScriptedTurn:
    """Canned outcome of one fake agent invocation."""

    text: str = "done"
    tools: list[ScriptedTool] = field(default_factory=list)
    error: AgentInvocationError | None = None
    cost_usd: float = 0.0
    session_id: str | None = None
    delay: float = 0.0


class FakeAgentBackend:
    """Agent backend replaying scripted turns and firing hooks like a real runtime."""

    def __init__(
        self,
        turns: list[ScriptedTurn] | None = None,
        *,
        responder: Callable[[AgentRequest], ScriptedTurn] | None = None,
    ) -> None:
        self.turns = list(turns or [])
        self.responder = responder
        self.requests: list[AgentRequest] = []

    async def invoke(self, request: AgentRequest, hooks: AgentHooks | None = None) -> AgentResult:
        self.requests.append(request)
        if self.responder is not None:
            turn = self.responder(request)
        elif self.turns:
            turn = self.turns.pop(0)
        else:
            turn = ScriptedTurn()
        if turn.delay:
            await asyncio.sleep(turn.delay)

        calls: list[ToolCall] = []
        for index, tool in enumerate(turn.tools):
            tool_use_id = f"toolu_{len(self.requests)}_{index}"
            calls.append(ToolCall(tool_use_id, tool.name, tool.tool_input, tool.is_error))
            await emit_pre_tool_use(hooks, ToolUseEvent(tool_use_id, tool.name, tool.tool_input))
            if tool.is_error:
                await emit_tool_failure(
                    hooks,
                    ToolFailureEvent(tool_use_id, tool.name, tool.tool_input, tool.result),
                )
            else:
                await emit_post_tool_use(
                    hooks,
                    ToolResultEvent(tool_use_id, tool.name, tool.tool_input, tool.result),
                )

        if turn.error is not None:
            raise turn.error
        return AgentResult(
            text=turn.text,
            tool_calls=calls,
            cost_usd=turn.cost_usd,
            session_id=turn.session_id,
        )


class RecordingMessenger:
    """Messaging surface keeping every post and edit in memory."""

    def __init__(self) -> None:
        self.posts: list[tuple[str, str]] = []
        self.updates: list[tuple[str, str, str]] = []

    async def post_message(self, thread_id: str, text: str) -> str:
        self.posts.append((thread_id, text))
        return f"m{len(self.posts)}"

    async def update_message(self, thread_id: str, message_id: str, text: str) -> None:
        self.updates.append((thread_id, message_id, text))

    def texts(self, thread_id: str | None = None) -> list[str]:
        return [text for thread, text in self.posts if thread_id is None or thread == thread_id]


@pytest.fixture()
def repository(tmp_path: Path):
    repo = HarnessRepository(tmp_path / "harness.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(db_path=tmp_path / "harness.db")


@pytest.fixture()
def messenger() -> RecordingMessenger:
    return RecordingMessenger()
