"""Task execution: one plain agent call or a content pipeline run."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable

from inbox_pilot.config import Settings
from inbox_pilot.content.configs import PIPELINE_CONFIGS
from inbox_pilot.content.flow import build_pipeline_runner, run_content_pipeline
from inbox_pilot.orchestrator.backend.base import (
    AgentBackend,
    AgentInvocationError,
    AgentRequest,
    AgentResult,
)
from inbox_pilot.orchestrator.hooks import (
    AgentHooks,
    ToolUseEvent,
    create_observation_hooks,
    merge_hooks,
)
from inbox_pilot.orchestrator.lessons import load_lessons_section
from inbox_pilot.orchestrator.models import Intent, Task, TaskStatus
from inbox_pilot.orchestrator.reporter import TaskReporter
from inbox_pilot.orchestrator.repository import HarnessRepository

logger = logging.getLogger(__name__)

EXECUTOR_DISALLOWED_TOOLS: tuple[str, ...] = ("AskUserQuestion", "EnterPlanMode", "ExitPlanMode")

EXECUTOR_SYSTEM_PROMPT = """\
# Task execution mode

You execute requests for a personal automation assistant autonomously and
report the outcome briefly.

- Do not ask questions; make the best reasonable decision and proceed.
- Do not narrate intermediate steps. Write one final report containing only
  the result: what was done, or the findings.
- If something fails, state the cause in one line.
"""


def build_system_prompt(lessons_section: str) -> str:
    if not lessons_section:
        return EXECUTOR_SYSTEM_PROMPT
    return f"{EXECUTOR_SYSTEM_PROMPT}\n{lessons_section}"


def render_pipeline_content(content: object) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, ensure_ascii=False, indent=2)


class TaskExecutor:
    """Queue runner: executes a task and records its outcome on the task."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        backend: AgentBackend,
        repository: HarnessRepository,
        settings: Settings,
        reporter: TaskReporter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.repository = repository
        self.settings = settings
        self.reporter = reporter
        self._sleep = sleep

    async def __call__(self, task: Task) -> None:
        await self.execute(task)

    async def execute(self, task: Task) -> None:
        hooks = merge_hooks(
            create_observation_hooks(self.repository, task.task_id),
            self._progress_hooks(task),
        )
        if task.intent == Intent.CONTENT and task.platform in PIPELINE_CONFIGS:
            await self._run_pipeline(task, hooks)
        else:
            await self._run_agent(task, hooks)

    async def _run_agent(self, task: Task, hooks: AgentHooks) -> None:
        session = self.repository.get_session(task.thread_id)
        resume_id = session.agent_session_id if session is not None else None
        system_prompt = build_system_prompt(
            load_lessons_section(self.repository, self.settings.lessons.recent_limit),
        )

        try:
            result = await self._invoke(task, system_prompt, resume_id, hooks)
        except AgentInvocationError as error:
            if resume_id is None:
                raise
            logger.warning(
                "Resuming session %s failed for task %s (%s); starting a new session",
                resume_id,
                task.task_id,
                error,
            )
            result = await self._invoke(task, system_prompt, None, hooks)

        if result.session_id:
            task.agent_session_id = result.session_id
            self.repository.upsert_session(
                thread_id=task.thread_id,
                agent_session_id=result.session_id,
            )
        task.result_text = result.text.strip()
        task.cost_usd += result.cost_usd
        task.tool_count += len(result.tool_calls)

    async def _invoke(
        self,
        task: Task,
        system_prompt: str,
        resume_id: str | None,
        hooks: AgentHooks,
    ) -> AgentResult:
        return await self.backend.invoke(
            AgentRequest(
                prompt=task.execution_prompt,
                system_prompt=system_prompt,
                model=self.settings.agent.model,
                disallowed_tools=EXECUTOR_DISALLOWED_TOOLS,
                allow_external_search=True,
                resume_session_id=resume_id,
                timeout_seconds=self.settings.agent.timeout_seconds,
            ),
            hooks,
        )

    async def _run_pipeline(self, task: Task, hooks: AgentHooks) -> None:
        assert task.platform is not None
        config = PIPELINE_CONFIGS[task.platform]
        if task.pipeline_job_id is None:
            task.pipeline_job_id = uuid.uuid4().hex
        # persist the job reference before the first checkpoint lands
        self.repository.save_task(task)

        runner = build_pipeline_runner(
            settings=self.settings,
            backend=self.backend,
            repository=self.repository,
            hooks=hooks,
        )
        result = await run_content_pipeline(
            runner,
            config,
            task.execution_prompt,
            job_id=task.pipeline_job_id,
            retry_limit=self.settings.pipeline.phase_retry_limit,
            backoff_seconds=self.settings.pipeline.retry_backoff_seconds,
            sleep=self._sleep,
        )
        task.pipeline_job_id = result.job_id
        if not result.success:
            task.status = TaskStatus.ERROR
            task.error_summary = result.error
            return
        task.result_text = render_pipeline_content(result.content)

    def _progress_hooks(self, task: Task) -> AgentHooks | None:
        reporter = self.reporter
        if reporter is None:
            return None
        seen = 0

        async def on_pre_tool_use(event: ToolUseEvent) -> None:
            nonlocal seen
            seen += 1
            try:
                await reporter.progress(
                    task,
                    f"Working... {seen} tool calls (last: {event.tool_name})",
                )
            except Exception:  # noqa: BLE001
                logger.exception("Progress update failed for task %s", task.task_id)

        return AgentHooks(on_pre_tool_use=on_pre_tool_use)
