"""Pipeline configuration and result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class PhaseSpec:
    """One named step of a generation pipeline."""

    name: str
    prompt_source: str
    schema_id: str | None = None
    allow_external_search: bool = False
    input_from_phase: str | None = None


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Immutable description of a platform's phase chain."""

    platform: str
    phases: tuple[PhaseSpec, ...]
    system_prompt_source: str
    output_key: str

    def __post_init__(self) -> None:
        if not self.phases:
            raise ValueError(f"Pipeline {self.platform!r} declares no phases.")
        if self.phases[0].input_from_phase is not None:
            raise ValueError(
                f"Pipeline {self.platform!r}: first phase {self.phases[0].name!r} "
                "cannot depend on another phase.",
            )
        seen: set[str] = set()
        for phase in self.phases:
            if phase.name in seen:
                raise ValueError(
                    f"Pipeline {self.platform!r}: duplicate phase name {phase.name!r}.",
                )
            if phase.input_from_phase is not None and phase.input_from_phase not in seen:
                raise ValueError(
                    f"Pipeline {self.platform!r}: phase {phase.name!r} depends on "
                    f"{phase.input_from_phase!r}, which does not run before it.",
                )
            seen.add(phase.name)

    @property
    def phase_names(self) -> tuple[str, ...]:
        return tuple(phase.name for phase in self.phases)


@dataclass(slots=True)
class PhaseResult:
    """Outcome of one executed phase."""

    phase: str
    success: bool
    artifact: str | None = None
    error: str | None = None


@dataclass(slots=True)
class PipelineRunResult:
    """Outcome of a full pipeline run."""

    job_id: str
    platform: str
    success: bool
    content: Any = None
    artifacts: dict[str, str] = field(default_factory=dict)
    phase_results: list[PhaseResult] = field(default_factory=list)
    failed_phase: str | None = None
    error: str | None = None
