"""Agent invocation interface."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from inbox_pilot.orchestrator.hooks import AgentHooks


class AgentInvocationError(RuntimeError):
    """Agent runtime error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


@dataclass(slots=True)
class AgentRequest:
    """Inputs required for one agent invocation."""

    prompt: str
    system_prompt: str | None = None
    model: str | None = None
    allowed_tools: tuple[str, ...] | None = None
    disallowed_tools: tuple[str, ...] = ()
    allow_external_search: bool = False
    resume_session_id: str | None = None
    timeout_seconds: int | None = None


@dataclass(slots=True)
class ToolCall:
    """One tool call observed during an invocation."""

    tool_use_id: str
    tool_name: str
    tool_input: Any
    is_error: bool = False


@dataclass(slots=True)
class AgentResult:
    """Final reply of an invocation."""

    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    cost_usd: float = 0.0
    session_id: str | None = None


class AgentBackend(Protocol):
    """Protocol implemented by agent runtimes."""

    async def invoke(self, request: AgentRequest, hooks: AgentHooks | None = None) -> AgentResult:
        """Run one agent turn, firing ``hooks`` for each tool event."""
