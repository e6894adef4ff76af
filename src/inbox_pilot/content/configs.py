"""Shipped pipeline configurations per platform."""

from __future__ import annotations

from inbox_pilot.content.models import PhaseSpec, PipelineConfig

LONG_FORM_PHASES: tuple[PhaseSpec, ...] = (
    PhaseSpec(
        name="research",
        prompt_source="long_form/research",
        schema_id="strategy",
        allow_external_search=True,
    ),
    PhaseSpec(
        name="structure",
        prompt_source="long_form/structure",
        schema_id="structure",
        input_from_phase="research",
    ),
    PhaseSpec(
        name="content",
        prompt_source="long_form/content",
        input_from_phase="structure",
    ),
    PhaseSpec(
        name="optimize",
        prompt_source="long_form/optimize",
        input_from_phase="content",
    ),
)

SHORT_FORM_PHASES: tuple[PhaseSpec, ...] = (
    PhaseSpec(
        name="research",
        prompt_source="short_form/research",
        schema_id="strategy",
        allow_external_search=True,
    ),
    PhaseSpec(
        name="generate",
        prompt_source="short_form/generate",
        input_from_phase="research",
    ),
)


def build_long_form_config(platform: str, *, output_key: str) -> PipelineConfig:
    return PipelineConfig(
        platform=platform,
        phases=LONG_FORM_PHASES,
        system_prompt_source=f"system/{platform}",
        output_key=output_key,
    )


def build_short_form_config(platform: str, *, output_key: str) -> PipelineConfig:
    return PipelineConfig(
        platform=platform,
        phases=SHORT_FORM_PHASES,
        system_prompt_source=f"system/{platform}",
        output_key=output_key,
    )


LONG_FORM_CONFIGS: dict[str, PipelineConfig] = {
    "qiita": build_long_form_config("qiita", output_key="article"),
    "zenn": build_long_form_config("zenn", output_key="article"),
    "note": build_long_form_config("note", output_key="article"),
    "youtube": build_long_form_config("youtube", output_key="metadata"),
    "podcast": build_long_form_config("podcast", output_key="episode"),
    "tiktok": build_long_form_config("tiktok", output_key="script"),
    "github": build_long_form_config("github", output_key="repository"),
}

SHORT_FORM_CONFIGS: dict[str, PipelineConfig] = {
    "x": build_short_form_config("x", output_key="post"),
    "threads": build_short_form_config("threads", output_key="post"),
    "instagram": build_short_form_config("instagram", output_key="content"),
}

PIPELINE_CONFIGS: dict[str, PipelineConfig] = {**LONG_FORM_CONFIGS, **SHORT_FORM_CONFIGS}


def get_pipeline_config(platform: str) -> PipelineConfig:
    """Look up a shipped configuration; raises ``KeyError`` for unknown platforms."""

    try:
        return PIPELINE_CONFIGS[platform.strip().lower()]
    except KeyError as error:
        known = ", ".join(sorted(PIPELINE_CONFIGS))
        raise KeyError(f"Unknown platform {platform!r}. Known platforms: {known}") from error
