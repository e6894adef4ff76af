"""Generic checkpointed phase pipeline runner."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from inbox_pilot.content.json_extract import JsonExtractionError, extract_json, parse_json_payload
from inbox_pilot.content.models import PhaseResult, PhaseSpec, PipelineConfig, PipelineRunResult
from inbox_pilot.content.prompts import PromptSourceError, load_prompt
from inbox_pilot.content.schemas import SCHEMAS_BY_ID
from inbox_pilot.orchestrator.backend.base import (
    AgentBackend,
    AgentInvocationError,
    AgentRequest,
)
from inbox_pilot.orchestrator.hooks import AgentHooks

logger = logging.getLogger(__name__)

CheckpointCallback = Callable[[str, str, str, str], Awaitable[None]]
"""``(platform, job_id, phase_name, artifact)``"""

PHASE_DISALLOWED_TOOLS: tuple[str, ...] = (
    "Write",
    "Edit",
    "Bash",
    "AskUserQuestion",
    "EnterPlanMode",
    "NotebookEdit",
)


class PipelineError(RuntimeError):
    """Phase failed; the pipeline stops at ``phase``."""

    def __init__(self, message: str, *, phase: str) -> None:
        super().__init__(message)
        self.phase = phase


class PhaseValidationError(PipelineError):
    """Phase reply does not satisfy the declared schema."""


def build_phase_prompt(  # noqa: PLR0913
    *,
    phase: PhaseSpec,
    phase_prompt: str,
    seed_prompt: str,
    category: str | None,
    previous_artifact: str | None,
    output_key: str,
    is_first: bool,
    is_last: bool,
) -> str:
    """Assemble the user prompt for one phase."""

    parts = [f"## Phase: {phase.name}", "", phase_prompt.strip()]

    if is_first:
        parts.extend(["", "## Topic", seed_prompt.strip()])
        if category:
            parts.append(f"Category: {category}")

    if phase.input_from_phase is not None and previous_artifact is not None:
        parts.extend(
            [
                "",
                f"## Input from phase {phase.input_from_phase}",
                previous_artifact,
            ],
        )

    parts.extend(["", "## Output format (strict)"])
    if phase.schema_id is not None:
        parts.extend(
            [
                "1. Output exactly one JSON object inside a ```json block.",
                "2. No explanation before or after the JSON.",
                "3. If you searched the web, fold the findings into the JSON.",
                "4. If a string value contains ``` fences, wrap the block in ````json.",
            ],
        )
    elif is_last:
        parts.extend(
            [
                f'1. Output one JSON object with the final result under "{output_key}".',
                "2. Wrap it in a ```json block; no text outside the block.",
            ],
        )
    else:
        parts.append("Output only the phase result, without preamble or commentary.")
    parts.append("Do not save files; reply with the result directly.")
    return "\n".join(parts)


class PhasePipelineRunner:
    """Run a ``PipelineConfig`` phase by phase, checkpointing every artifact."""

    def __init__(  # noqa: PLR0913
        self,
        backend: AgentBackend,
        *,
        checkpoint: CheckpointCallback | None = None,
        hooks: AgentHooks | None = None,
        model: str | None = None,
        search_tools: tuple[str, ...] = ("WebSearch", "WebFetch"),
        prompts_dir: Path | None = None,
        timeout_seconds: int | None = None,
        schemas: Mapping[str, type[BaseModel]] | None = None,
    ) -> None:
        self.backend = backend
        self.checkpoint = checkpoint
        self.hooks = hooks
        self.model = model
        self.search_tools = search_tools
        self.prompts_dir = prompts_dir
        self.timeout_seconds = timeout_seconds
        self.schemas = dict(schemas or SCHEMAS_BY_ID)

    async def run(
        self,
        config: PipelineConfig,
        seed_prompt: str,
        category: str | None = None,
        *,
        job_id: str | None = None,
    ) -> PipelineRunResult:
        """Execute every phase in order; the first failure ends the run."""

        run_id = job_id or uuid.uuid4().hex
        result = PipelineRunResult(job_id=run_id, platform=config.platform, success=False)
        last_index = len(config.phases) - 1

        for index, phase in enumerate(config.phases):
            previous = (
                result.artifacts.get(phase.input_from_phase)
                if phase.input_from_phase is not None
                else None
            )
            logger.info(
                "Pipeline phase started: platform=%s job=%s phase=%s",
                config.platform,
                run_id,
                phase.name,
            )
            try:
                artifact = await self._execute_phase(
                    config=config,
                    phase=phase,
                    seed_prompt=seed_prompt,
                    category=category,
                    previous_artifact=previous,
                    is_first=index == 0,
                    is_last=index == last_index,
                )
                if self.checkpoint is not None:
                    await self.checkpoint(config.platform, run_id, phase.name, artifact)
                result.artifacts[phase.name] = artifact
            except Exception as error:  # noqa: BLE001
                message = _describe_error(error)
                logger.warning(
                    "Pipeline phase failed: platform=%s job=%s phase=%s error=%s",
                    config.platform,
                    run_id,
                    phase.name,
                    message,
                )
                result.phase_results.append(
                    PhaseResult(phase=phase.name, success=False, error=message),
                )
                result.failed_phase = phase.name
                result.error = f'Phase "{phase.name}" failed: {message}'
                return result

            result.phase_results.append(
                PhaseResult(phase=phase.name, success=True, artifact=artifact),
            )

        result.success = True
        result.content = select_final_content(
            result.artifacts[config.phases[-1].name],
            output_key=config.output_key,
        )
        logger.info("Pipeline completed: platform=%s job=%s", config.platform, run_id)
        return result

    async def _execute_phase(  # noqa: PLR0913
        self,
        *,
        config: PipelineConfig,
        phase: PhaseSpec,
        seed_prompt: str,
        category: str | None,
        previous_artifact: str | None,
        is_first: bool,
        is_last: bool,
    ) -> str:
        try:
            system_prompt = load_prompt(config.system_prompt_source, prompts_dir=self.prompts_dir)
            phase_prompt = load_prompt(phase.prompt_source, prompts_dir=self.prompts_dir)
        except PromptSourceError as error:
            raise PipelineError(str(error), phase=phase.name) from error

        prompt = build_phase_prompt(
            phase=phase,
            phase_prompt=phase_prompt,
            seed_prompt=seed_prompt,
            category=category,
            previous_artifact=previous_artifact,
            output_key=config.output_key,
            is_first=is_first,
            is_last=is_last,
        )
        disallowed = list(PHASE_DISALLOWED_TOOLS)
        if not phase.allow_external_search:
            disallowed.extend(self.search_tools)

        reply = await self.backend.invoke(
            AgentRequest(
                prompt=prompt,
                system_prompt=system_prompt,
                model=self.model,
                disallowed_tools=tuple(disallowed),
                allow_external_search=phase.allow_external_search,
                timeout_seconds=self.timeout_seconds,
            ),
            self.hooks,
        )

        if phase.schema_id is None:
            return reply.text.strip()
        return self._validate(phase, reply.text)

    def _validate(self, phase: PhaseSpec, text: str) -> str:
        schema = self.schemas.get(phase.schema_id or "")
        if schema is None:
            raise PipelineError(f"Unknown schema: {phase.schema_id!r}", phase=phase.name)
        try:
            payload = extract_json(text)
        except JsonExtractionError as error:
            raise PhaseValidationError(str(error), phase=phase.name) from error
        try:
            model = schema.model_validate(payload)
        except ValidationError as error:
            raise PhaseValidationError(
                f"Schema {phase.schema_id!r} validation failed: {error.error_count()} error(s): "
                f"{_first_validation_message(error)}",
                phase=phase.name,
            ) from error
        return json.dumps(
            model.model_dump(mode="json"),
            ensure_ascii=False,
            sort_keys=True,
            indent=2,
        )


def select_final_content(artifact: str, *, output_key: str) -> Any:
    """Value under ``output_key`` when present, else parsed JSON, else the raw text."""

    parsed_ok, parsed = parse_json_payload(artifact)
    if not parsed_ok:
        return artifact
    if isinstance(parsed, dict) and output_key in parsed:
        return parsed[output_key]
    return parsed


def _describe_error(error: Exception) -> str:
    if isinstance(error, AgentInvocationError | PipelineError):
        return str(error)
    return f"{type(error).__name__}: {error}"


def _first_validation_message(error: ValidationError) -> str:
    details = error.errors()
    if not details:
        return str(error)
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location or '<root>'}: {first.get('msg', 'invalid value')}"
