"""Tool lifecycle hooks and the observation hooks that feed the audit trail."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from inbox_pilot.orchestrator.failure_classifier import classify_tool_failure
from inbox_pilot.orchestrator.models import ExecutionStatus, LessonEntry, LessonWrite, Severity

logger = logging.getLogger(__name__)

REFLECTION_INPUT_LIMIT = 500


@dataclass(slots=True)
class ToolUseEvent:
    """Agent is about to run a tool."""

    tool_use_id: str
    tool_name: str
    tool_input: Any = field(default_factory=dict)


@dataclass(slots=True)
class ToolResultEvent:
    """Tool finished and returned a result."""

    tool_use_id: str
    tool_name: str
    tool_input: Any
    result: Any


@dataclass(slots=True)
class ToolFailureEvent:
    """Tool finished with an error."""

    tool_use_id: str
    tool_name: str
    tool_input: Any
    error: str


PreToolUseHook = Callable[[ToolUseEvent], Awaitable[None]]
PostToolUseHook = Callable[[ToolResultEvent], Awaitable[None]]
ToolFailureHook = Callable[[ToolFailureEvent], Awaitable[None]]


@dataclass(slots=True)
class AgentHooks:
    """Independently optional async callbacks invoked by agent backends."""

    on_pre_tool_use: PreToolUseHook | None = None
    on_post_tool_use: PostToolUseHook | None = None
    on_tool_failure: ToolFailureHook | None = None


async def emit_pre_tool_use(hooks: AgentHooks | None, event: ToolUseEvent) -> None:
    if hooks is not None and hooks.on_pre_tool_use is not None:
        await hooks.on_pre_tool_use(event)


async def emit_post_tool_use(hooks: AgentHooks | None, event: ToolResultEvent) -> None:
    if hooks is not None and hooks.on_post_tool_use is not None:
        await hooks.on_post_tool_use(event)


async def emit_tool_failure(hooks: AgentHooks | None, event: ToolFailureEvent) -> None:
    if hooks is not None and hooks.on_tool_failure is not None:
        await hooks.on_tool_failure(event)


def merge_hooks(*hook_sets: AgentHooks | None) -> AgentHooks:
    """Compose hook sets; callbacks run in argument order."""

    present = [hooks for hooks in hook_sets if hooks is not None]

    async def pre(event: ToolUseEvent) -> None:
        for hooks in present:
            await emit_pre_tool_use(hooks, event)

    async def post(event: ToolResultEvent) -> None:
        for hooks in present:
            await emit_post_tool_use(hooks, event)

    async def failure(event: ToolFailureEvent) -> None:
        for hooks in present:
            await emit_tool_failure(hooks, event)

    return AgentHooks(on_pre_tool_use=pre, on_post_tool_use=post, on_tool_failure=failure)


class ObservationStore(Protocol):
    """Persistence operations used by observation hooks."""

    def open_execution_record(
        self,
        *,
        session_id: str,
        tool_use_id: str,
        tool_name: str,
        tool_input: object,
    ) -> int: ...

    def close_execution_record(
        self,
        *,
        record_id: int,
        status: ExecutionStatus,
        tool_result: object,
        duration_ms: int,
    ) -> bool: ...

    def add_lesson(self, lesson: LessonWrite) -> LessonEntry: ...


def build_failure_reflection(tool_name: str, tool_input: Any) -> str:
    serialized = json.dumps(tool_input, ensure_ascii=False, separators=(",", ":"), default=str)
    return f"Tool {tool_name} failed with input: {serialized[:REFLECTION_INPUT_LIMIT]}"


def create_observation_hooks(
    store: ObservationStore,
    session_id: str,
    *,
    severity_policy: Callable[[str], Severity] | None = None,
) -> AgentHooks:
    """Hooks that write one execution record per tool call and a lesson per failure.

    Store errors are logged and swallowed: auditing never aborts the agent turn.
    """

    resolve_severity = severity_policy or (lambda error: classify_tool_failure(error).severity)
    in_flight: dict[str, tuple[int, float]] = {}

    async def on_pre_tool_use(event: ToolUseEvent) -> None:
        try:
            record_id = store.open_execution_record(
                session_id=session_id,
                tool_use_id=event.tool_use_id,
                tool_name=event.tool_name,
                tool_input=event.tool_input,
            )
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to open execution record: session=%s tool=%s",
                session_id,
                event.tool_name,
            )
            return
        in_flight[event.tool_use_id] = (record_id, time.monotonic())

    async def on_post_tool_use(event: ToolResultEvent) -> None:
        opened = in_flight.pop(event.tool_use_id, None)
        if opened is None:
            logger.debug("Tool result without observed start: %s", event.tool_use_id)
            return
        record_id, started = opened
        try:
            store.close_execution_record(
                record_id=record_id,
                status=ExecutionStatus.SUCCESS,
                tool_result=event.result,
                duration_ms=_elapsed_ms(started),
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to close execution record %s", record_id)

    async def on_tool_failure(event: ToolFailureEvent) -> None:
        opened = in_flight.pop(event.tool_use_id, None)
        record_id: int | None = None
        if opened is not None:
            record_id, started = opened
            try:
                store.close_execution_record(
                    record_id=record_id,
                    status=ExecutionStatus.ERROR,
                    tool_result=event.error,
                    duration_ms=_elapsed_ms(started),
                )
            except Exception:  # noqa: BLE001
                logger.exception("Failed to close execution record %s", record_id)

        try:
            store.add_lesson(
                LessonWrite(
                    tool_name=event.tool_name,
                    error_pattern=event.error,
                    reflection=build_failure_reflection(event.tool_name, event.tool_input),
                    severity=resolve_severity(event.error),
                    session_id=session_id,
                    execution_record_id=record_id,
                ),
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record lesson for tool %s", event.tool_name)

    return AgentHooks(
        on_pre_tool_use=on_pre_tool_use,
        on_post_tool_use=on_post_tool_use,
        on_tool_failure=on_tool_failure,
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
