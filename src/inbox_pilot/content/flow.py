"""Pipeline entry points: caller-side retry policy and the Prefect flow."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from pathlib import Path

from prefect import flow

from inbox_pilot.config import Settings
from inbox_pilot.content.configs import get_pipeline_config
from inbox_pilot.content.models import PipelineConfig, PipelineRunResult
from inbox_pilot.content.runner import CheckpointCallback, PhasePipelineRunner
from inbox_pilot.orchestrator.backend.base import AgentBackend
from inbox_pilot.orchestrator.backend.cli_backend import CliAgentBackend
from inbox_pilot.orchestrator.hooks import AgentHooks, create_observation_hooks
from inbox_pilot.orchestrator.repository import HarnessRepository

logger = logging.getLogger(__name__)


def repository_checkpoint(repository: HarnessRepository) -> CheckpointCallback:
    """Checkpoint callback persisting each artifact keyed by (job id, phase)."""

    async def save(platform: str, job_id: str, phase_name: str, artifact: str) -> None:
        repository.upsert_phase_artifact(
            platform=platform,
            job_id=job_id,
            phase_name=phase_name,
            artifact=artifact,
        )

    return save


def build_pipeline_runner(
    *,
    settings: Settings,
    backend: AgentBackend,
    repository: HarnessRepository,
    hooks: AgentHooks | None = None,
) -> PhasePipelineRunner:
    return PhasePipelineRunner(
        backend,
        checkpoint=repository_checkpoint(repository),
        hooks=hooks,
        model=settings.agent.model,
        search_tools=settings.agent.search_tools,
        prompts_dir=settings.pipeline.prompts_dir,
        timeout_seconds=settings.agent.timeout_seconds,
    )


async def run_content_pipeline(  # noqa: PLR0913
    runner: PhasePipelineRunner,
    config: PipelineConfig,
    topic: str,
    category: str | None = None,
    *,
    job_id: str | None = None,
    retry_limit: int = 0,
    backoff_seconds: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> PipelineRunResult:
    """Run a pipeline, re-running it from scratch up to ``retry_limit`` extra times.

    Each attempt gets its own job id so checkpoints of a failed attempt stay intact.
    """

    base_job_id = job_id or uuid.uuid4().hex
    attempt = 0
    while True:
        attempt_job_id = base_job_id if attempt == 0 else f"{base_job_id}-r{attempt}"
        result = await runner.run(config, topic, category, job_id=attempt_job_id)
        if result.success or attempt >= retry_limit:
            return result
        delay = backoff_seconds * (2**attempt)
        logger.warning(
            "Pipeline attempt %d/%d failed for %s (%s); retrying in %.1fs",
            attempt + 1,
            retry_limit + 1,
            config.platform,
            result.error,
            delay,
        )
        await sleep(delay)
        attempt += 1


@flow(name="content_pipeline_flow")
async def content_pipeline_flow(
    *,
    platform: str,
    topic: str,
    category: str | None = None,
    job_id: str | None = None,
    db_path: str | None = None,
) -> PipelineRunResult:
    """Run one platform pipeline against the configured agent and database."""

    settings = Settings.from_env(db_path=Path(db_path) if db_path else None)
    settings.validate()
    config = get_pipeline_config(platform)
    run_job_id = job_id or uuid.uuid4().hex

    repository = HarnessRepository(settings.db_path)
    repository.init_schema()
    try:
        backend = CliAgentBackend(
            command_template=settings.agent.command_template,
            model=settings.agent.model,
            timeout_seconds=settings.agent.timeout_seconds,
            search_tools=settings.agent.search_tools,
        )
        runner = build_pipeline_runner(
            settings=settings,
            backend=backend,
            repository=repository,
            hooks=create_observation_hooks(repository, f"pipeline:{run_job_id}"),
        )
        return await run_content_pipeline(
            runner,
            config,
            topic,
            category,
            job_id=run_job_id,
            retry_limit=settings.pipeline.phase_retry_limit,
            backoff_seconds=settings.pipeline.retry_backoff_seconds,
        )
    finally:
        repository.close()
