"""Subprocess-based agent backend for stream-JSON CLI agents."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
from dataclasses import dataclass, field
from typing import Any

from inbox_pilot.orchestrator.backend.base import (
    AgentInvocationError,
    AgentRequest,
    AgentResult,
    ToolCall,
)
from inbox_pilot.orchestrator.failure_classifier import classify_tool_failure
from inbox_pilot.orchestrator.hooks import (
    AgentHooks,
    ToolFailureEvent,
    ToolResultEvent,
    ToolUseEvent,
    emit_post_tool_use,
    emit_pre_tool_use,
    emit_tool_failure,
)
from inbox_pilot.orchestrator.models import FailureClass

logger = logging.getLogger(__name__)

_STREAM_LINE_LIMIT = 16 * 1024 * 1024
_STDERR_TAIL_CHARS = 2_000


class CliAgentBackend:
    """Run a CLI agent command template and translate its event stream into hooks."""

    def __init__(
        self,
        *,
        command_template: str,
        model: str,
        timeout_seconds: int,
        search_tools: tuple[str, ...] = ("WebSearch", "WebFetch"),
        env: dict[str, str] | None = None,
    ) -> None:
        self.command_template = command_template
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.search_tools = search_tools
        self.env = env

    async def invoke(self, request: AgentRequest, hooks: AgentHooks | None = None) -> AgentResult:
        disallowed = list(request.disallowed_tools)
        if not request.allow_external_search:
            disallowed.extend(tool for tool in self.search_tools if tool not in disallowed)

        run_args = _build_run_args(
            command_template=self.command_template,
            model=request.model or self.model,
            prompt=request.prompt,
            system_prompt=request.system_prompt,
            disallowed_tools=tuple(disallowed),
            resume_session_id=request.resume_session_id,
            allowed_tools=request.allowed_tools,
        )
        env = os.environ.copy()
        if self.env:
            env.update(self.env)

        try:
            process = await asyncio.create_subprocess_exec(
                *run_args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=_STREAM_LINE_LIMIT,
            )
        except FileNotFoundError as error:
            raise AgentInvocationError(
                f"Agent command not found: {run_args[0]}",
                transient=False,
            ) from error
        except OSError as error:
            raise AgentInvocationError(
                f"Agent command failed to start: {error}",
                transient=True,
            ) from error

        state = _StreamState()
        timeout = request.timeout_seconds or self.timeout_seconds
        try:
            _, stderr_text = await asyncio.wait_for(
                asyncio.gather(
                    _consume_stream(process, state, hooks),
                    _read_stderr(process),
                ),
                timeout=timeout,
            )
            returncode = await process.wait()
        except TimeoutError as error:
            await _terminate_process(process)
            raise AgentInvocationError(
                f"Agent invocation timed out after {timeout}s",
                transient=True,
            ) from error

        if returncode != 0 or state.is_error:
            detail = state.error_text or stderr_text[-_STDERR_TAIL_CHARS:].strip()
            message = f"Agent exited with code {returncode}: {detail or 'no output'}"
            transient = classify_tool_failure(message).failure_class == FailureClass.TRANSIENT
            raise AgentInvocationError(message, transient=transient)

        return AgentResult(
            text=state.final_text(),
            tool_calls=state.tool_calls,
            cost_usd=state.cost_usd,
            session_id=state.session_id,
        )


@dataclass(slots=True)
class _StreamState:
    session_id: str | None = None
    result_text: str | None = None
    assistant_text: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    pending: dict[str, ToolCall] = field(default_factory=dict)
    cost_usd: float = 0.0
    is_error: bool = False
    error_text: str | None = None

    def final_text(self) -> str:
        if self.result_text is not None:
            return self.result_text
        return "\n".join(self.assistant_text)


async def _consume_stream(
    process: asyncio.subprocess.Process,
    state: _StreamState,
    hooks: AgentHooks | None,
) -> None:
    assert process.stdout is not None
    async for raw_line in process.stdout:
        line = raw_line.decode("utf-8", errors="replace").strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON agent output line: %s", line[:200])
            continue
        if isinstance(event, dict):
            await _handle_event(event, state, hooks)


async def _read_stderr(process: asyncio.subprocess.Process) -> str:
    assert process.stderr is not None
    data = await process.stderr.read()
    return data.decode("utf-8", errors="replace")


async def _handle_event(
    event: dict[str, Any],
    state: _StreamState,
    hooks: AgentHooks | None,
) -> None:
    session_id = event.get("session_id")
    if isinstance(session_id, str) and session_id:
        state.session_id = session_id

    event_type = event.get("type")
    if event_type == "assistant":
        for block in _content_blocks(event):
            if block.get("type") == "text":
                state.assistant_text.append(str(block.get("text", "")))
            elif block.get("type") == "tool_use":
                call = ToolCall(
                    tool_use_id=str(block.get("id", "")),
                    tool_name=str(block.get("name", "unknown")),
                    tool_input=block.get("input", {}),
                )
                state.pending[call.tool_use_id] = call
                state.tool_calls.append(call)
                await emit_pre_tool_use(
                    hooks,
                    ToolUseEvent(
                        tool_use_id=call.tool_use_id,
                        tool_name=call.tool_name,
                        tool_input=call.tool_input,
                    ),
                )
    elif event_type == "user":
        for block in _content_blocks(event):
            if block.get("type") == "tool_result":
                await _handle_tool_result(block, state, hooks)
    elif event_type == "result":
        result = event.get("result")
        if isinstance(result, str):
            state.result_text = result
        cost = event.get("total_cost_usd", event.get("cost_usd"))
        if isinstance(cost, int | float):
            state.cost_usd = float(cost)
        if event.get("is_error"):
            state.is_error = True
            state.error_text = str(result or event.get("subtype") or "agent reported an error")


async def _handle_tool_result(
    block: dict[str, Any],
    state: _StreamState,
    hooks: AgentHooks | None,
) -> None:
    tool_use_id = str(block.get("tool_use_id", ""))
    call = state.pending.pop(tool_use_id, None)
    tool_name = call.tool_name if call is not None else "unknown"
    tool_input = call.tool_input if call is not None else {}
    content = _tool_result_text(block.get("content"))
    if block.get("is_error"):
        if call is not None:
            call.is_error = True
        await emit_tool_failure(
            hooks,
            ToolFailureEvent(
                tool_use_id=tool_use_id,
                tool_name=tool_name,
                tool_input=tool_input,
                error=content,
            ),
        )
        return
    await emit_post_tool_use(
        hooks,
        ToolResultEvent(
            tool_use_id=tool_use_id,
            tool_name=tool_name,
            tool_input=tool_input,
            result=content,
        ),
    )


def _content_blocks(event: dict[str, Any]) -> list[dict[str, Any]]:
    message = event.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _tool_result_text(content: object) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            str(item.get("text", ""))
            for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        return "\n".join(parts)
    if content is None:
        return ""
    return json.dumps(content, ensure_ascii=False, default=str)


def _build_run_args(  # noqa: PLR0913
    *,
    command_template: str,
    model: str,
    prompt: str,
    system_prompt: str | None,
    disallowed_tools: tuple[str, ...],
    resume_session_id: str | None,
    allowed_tools: tuple[str, ...] | None = None,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise AgentInvocationError("Agent command template is empty.", transient=False)
    if "{prompt}" not in stripped:
        raise AgentInvocationError(
            "Agent command template must include {prompt}.",
            transient=False,
        )

    if system_prompt and "{system_prompt}" not in stripped:
        prompt = f"{system_prompt}\n\n{prompt}"

    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            allowed_tools=(
                f"--allowed-tools {shlex.quote(','.join(allowed_tools))}" if allowed_tools else ""
            ),
            prompt=shlex.quote(prompt),
            system_prompt=(
                f"--append-system-prompt {shlex.quote(system_prompt)}" if system_prompt else ""
            ),
            disallowed_tools=(
                f"--disallowed-tools {shlex.quote(','.join(disallowed_tools))}"
                if disallowed_tools
                else ""
            ),
            resume=f"--resume {shlex.quote(resume_session_id)}" if resume_session_id else "",
        )
    except KeyError as error:
        raise AgentInvocationError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise AgentInvocationError("Agent command template rendered empty command.", transient=False)
    return argv


async def _terminate_process(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=2)
    except TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()
