"""Prompt sources for each content pipeline phase.

Sources are addressed by identifiers such as ``long_form/research`` or
``system/qiita``. A prompts directory, when configured, overrides built-in
text with ``<identifier>.md`` files.
"""

from __future__ import annotations

from pathlib import Path


class PromptSourceError(LookupError):
    """Prompt source identifier cannot be resolved."""


LONG_FORM_RESEARCH_PROMPT = """\
Research the topic below before anything is written.

- Identify what the target reader already knows and what they are missing.
- Collect recent, verifiable facts; prefer primary sources.
- Choose one angle that makes this piece worth reading on the platform.

Return a JSON object with:
  "topic": the topic restated in one line,
  "angle": the chosen angle,
  "target_audience": who the piece is for,
  "key_points": list of facts or arguments the piece must cover,
  "sources": list of URLs or references you relied on.
"""

LONG_FORM_STRUCTURE_PROMPT = """\
Turn the research strategy provided as input into an outline.

- Every key point from the strategy must land in exactly one section.
- Order sections so each builds on the previous one.
- Keep headings concrete; no filler sections.

Return a JSON object with:
  "title": working title,
  "sections": list of {"heading": str, "points": list of str}.
"""

LONG_FORM_CONTENT_PROMPT = """\
Write the full piece from the outline provided as input.

- Follow the outline order and headings.
- Use the platform conventions described in the system prompt.
- Do not invent facts that are not in the outline.
"""

LONG_FORM_OPTIMIZE_PROMPT = """\
Polish the draft provided as input for publication.

- Tighten wording, fix structure and formatting issues.
- Add platform metadata (tags, description, title variants) where it applies.
- Keep the author's voice and every factual claim intact.
"""

SHORT_FORM_RESEARCH_PROMPT = """\
Research the topic below for a short social post.

- Find one timely, concrete hook.
- Note the facts the post can safely state.

Return a JSON object with:
  "topic": the topic restated in one line,
  "angle": the hook,
  "target_audience": who should stop scrolling for this,
  "key_points": list of facts the post may use,
  "sources": list of URLs or references.
"""

SHORT_FORM_GENERATE_PROMPT = """\
Write the post from the research strategy provided as input.

- Lead with the hook; one idea per post.
- Respect the platform length limits from the system prompt.
"""

SYSTEM_PROMPT_TEMPLATE = """\
You are a content writer for {display_name}.

Platform conventions:
{conventions}

Final output goes under the "{output_key}" key of a JSON object.
"""

_PLATFORM_CONVENTIONS: dict[str, tuple[str, str, str]] = {
    "qiita": (
        "Qiita",
        "article",
        "- Technical article in Markdown with runnable code samples.\n"
        "- Up to five tags; title states the problem solved.",
    ),
    "zenn": (
        "Zenn",
        "article",
        "- Technical article in Markdown; use message blocks for caveats.\n"
        "- Include an emoji and topics list in front matter metadata.",
    ),
    "note": (
        "note",
        "article",
        "- Essay style for a general audience; short paragraphs.\n"
        "- Personal experience first, technique second.",
    ),
    "youtube": (
        "YouTube",
        "metadata",
        "- Produce video metadata: title, description, tags, chapters.\n"
        "- Title under 60 characters; first description line is the hook.",
    ),
    "podcast": (
        "a podcast",
        "episode",
        "- Produce an episode plan: title, description, chapters.\n"
        "- Conversational tone; each chapter has one takeaway.",
    ),
    "tiktok": (
        "TikTok",
        "script",
        "- Produce a vertical video script: hook, body scenes, call to action.\n"
        "- Hook lands in the first two seconds; total under 60 seconds.",
    ),
    "github": (
        "GitHub",
        "repository",
        "- Produce repository metadata: name, description, README, topics.\n"
        "- README opens with what the project does and how to run it.",
    ),
    "x": (
        "X",
        "post",
        "- Single post or short thread; each post under 280 characters.\n"
        "- At most two hashtags.",
    ),
    "threads": (
        "Threads",
        "post",
        "- Conversational post under 500 characters.\n"
        "- End with a question that invites replies.",
    ),
    "instagram": (
        "Instagram",
        "content",
        "- Caption plus an image prompt describing the visual.\n"
        "- Up to ten hashtags at the end of the caption.",
    ),
}

_PHASE_PROMPTS: dict[str, str] = {
    "long_form/research": LONG_FORM_RESEARCH_PROMPT,
    "long_form/structure": LONG_FORM_STRUCTURE_PROMPT,
    "long_form/content": LONG_FORM_CONTENT_PROMPT,
    "long_form/optimize": LONG_FORM_OPTIMIZE_PROMPT,
    "short_form/research": SHORT_FORM_RESEARCH_PROMPT,
    "short_form/generate": SHORT_FORM_GENERATE_PROMPT,
}


def _build_system_prompts() -> dict[str, str]:
    return {
        f"system/{platform}": SYSTEM_PROMPT_TEMPLATE.format(
            display_name=display_name,
            conventions=conventions,
            output_key=output_key,
        )
        for platform, (display_name, output_key, conventions) in _PLATFORM_CONVENTIONS.items()
    }


PROMPTS_BY_SOURCE: dict[str, str] = {**_PHASE_PROMPTS, **_build_system_prompts()}


def load_prompt(source_id: str, *, prompts_dir: Path | None = None) -> str:
    """Resolve a prompt source; directory overrides win over built-ins."""

    if not source_id or ".." in source_id.split("/") or source_id.startswith("/"):
        raise PromptSourceError(f"Invalid prompt source identifier: {source_id!r}")

    if prompts_dir is not None:
        candidate = prompts_dir / f"{source_id}.md"
        if candidate.is_file():
            return candidate.read_text("utf-8")

    try:
        return PROMPTS_BY_SOURCE[source_id]
    except KeyError as error:
        raise PromptSourceError(f"Unknown prompt source: {source_id!r}") from error
