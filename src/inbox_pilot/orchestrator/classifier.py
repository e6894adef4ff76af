"""Inbound request classification."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

from inbox_pilot.content.configs import PIPELINE_CONFIGS
from inbox_pilot.content.json_extract import JsonExtractionError, extract_json
from inbox_pilot.orchestrator.backend.base import (
    AgentBackend,
    AgentInvocationError,
    AgentRequest,
)
from inbox_pilot.orchestrator.models import ClassificationResult, Intent

logger = logging.getLogger(__name__)

SUMMARY_MAX_CHARS = 80
DEFAULT_AUTONOMY_LEVEL = 2

CLASSIFIER_DISALLOWED_TOOLS: tuple[str, ...] = (
    "Bash",
    "Edit",
    "Write",
    "Read",
    "Glob",
    "Grep",
    "NotebookEdit",
    "Task",
    "WebSearch",
    "WebFetch",
)

CLASSIFIER_SYSTEM_PROMPT = f"""\
You triage requests sent to a personal automation assistant.
Do not use any tools. Reply with one JSON object and nothing else:

{{
  "intent": one of {", ".join(intent.value for intent in Intent)},
  "autonomy_level": 1 (ask before acting), 2 (act, report), or 3 (act silently),
  "summary": noun phrase of at most {SUMMARY_MAX_CHARS} characters,
  "execution_prompt": self-contained instruction for the executing agent,
  "reasoning": one sentence on why this intent was chosen,
  "clarify_question": question for the requester, or null,
  "platform": publishing platform for content requests, or null
}}

Ask a clarify_question only when the request is too ambiguous to execute
safely, such as a large change without a concrete target. Known content
platforms: {", ".join(sorted(PIPELINE_CONFIGS))}.
"""

LARGE_TASK_QUESTION = (
    "This looks like a large task. What scope and requirements do you have in mind? "
    "Reply in this thread, or dismiss the request to cancel it."
)


class ClassificationError(RuntimeError):
    """Request could not be classified; the task is not queued."""


class Classifier(Protocol):
    async def classify(self, text: str) -> ClassificationResult: ...


def build_classifier_prompt(text: str) -> str:
    return f"Classify this request:\n\n<request>\n{text.strip()}\n</request>"


def shorten_summary(summary: str, limit: int = SUMMARY_MAX_CHARS) -> str:
    """Collapse whitespace and cut at a word boundary when over ``limit``."""

    compact = " ".join(summary.split())
    if len(compact) <= limit:
        return compact
    cut = compact[:limit]
    boundary = cut.rfind(" ")
    if boundary >= limit // 2:
        cut = cut[:boundary]
    return cut.rstrip(" ,;:.-")


def detect_platform(text: str) -> str | None:
    """First known platform named in ``text``."""

    lowered = text.lower()
    best: tuple[int, str] | None = None
    for platform in PIPELINE_CONFIGS:
        match = _platform_pattern(platform).search(lowered)
        if match is not None and (best is None or match.start() < best[0]):
            best = (match.start(), platform)
    return best[1] if best is not None else None


def _platform_pattern(platform: str) -> re.Pattern[str]:
    if platform == "x":
        return re.compile(r"\b(?:x|twitter|tweet)\b(?![-.]\w)")
    return re.compile(rf"\b{re.escape(platform)}\b")


def parse_classification_result(reply: str, request_text: str) -> ClassificationResult:
    """Parse an agent reply; raises ``ClassificationError`` when fields are missing."""

    try:
        payload = extract_json(reply)
    except JsonExtractionError as error:
        raise ClassificationError(f"Classifier reply is not JSON: {error}") from error
    if not isinstance(payload, dict):
        raise ClassificationError("Classifier reply is not a JSON object.")

    intent_raw = _pick(payload, "intent")
    summary = _pick(payload, "summary")
    execution_prompt = _pick(payload, "execution_prompt", "executionPrompt")
    if not isinstance(intent_raw, str) or not intent_raw.strip():
        raise ClassificationError("Classifier reply has no intent.")
    if not isinstance(summary, str) or not summary.strip():
        raise ClassificationError("Classifier reply has no summary.")
    if not isinstance(execution_prompt, str) or not execution_prompt.strip():
        raise ClassificationError("Classifier reply has no execution prompt.")

    intent = Intent.parse(intent_raw)
    clarify = _pick(payload, "clarify_question", "clarifyQuestion")
    reasoning = _pick(payload, "reasoning")
    return ClassificationResult(
        intent=intent,
        autonomy_level=_clamp_autonomy(_pick(payload, "autonomy_level", "autonomyLevel")),
        summary=shorten_summary(summary),
        execution_prompt=execution_prompt.strip(),
        reasoning=reasoning.strip() if isinstance(reasoning, str) else "",
        clarify_question=clarify.strip() if isinstance(clarify, str) and clarify.strip() else None,
        platform=_resolve_platform(_pick(payload, "platform"), intent, request_text),
    )


def _pick(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _clamp_autonomy(raw: object) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        return DEFAULT_AUTONOMY_LEVEL
    return max(1, min(3, int(raw)))


def _resolve_platform(raw: object, intent: Intent, request_text: str) -> str | None:
    if isinstance(raw, str) and raw.strip().lower() in PIPELINE_CONFIGS:
        return raw.strip().lower()
    if intent == Intent.CONTENT:
        return detect_platform(request_text)
    return None


class TaskClassifier:
    """Classify through a lightweight agent call; fails closed."""

    def __init__(
        self,
        backend: AgentBackend,
        *,
        model: str | None = None,
        timeout_seconds: int | None = None,
    ) -> None:
        self.backend = backend
        self.model = model
        self.timeout_seconds = timeout_seconds

    async def classify(self, text: str) -> ClassificationResult:
        if not text.strip():
            raise ValueError("Cannot classify an empty request.")

        request = AgentRequest(
            prompt=build_classifier_prompt(text),
            system_prompt=CLASSIFIER_SYSTEM_PROMPT,
            model=self.model,
            allowed_tools=(),
            disallowed_tools=CLASSIFIER_DISALLOWED_TOOLS,
            allow_external_search=False,
            timeout_seconds=self.timeout_seconds,
        )
        try:
            reply = await self.backend.invoke(request)
        except AgentInvocationError as error:
            raise ClassificationError(f"Classifier invocation failed: {error}") from error

        result = parse_classification_result(reply.text, text)
        logger.info(
            "Classified request: intent=%s autonomy=%s clarify=%s summary=%s",
            result.intent.value,
            result.autonomy_level,
            result.clarify_question is not None,
            json.dumps(result.summary, ensure_ascii=False),
        )
        return result


@dataclass(frozen=True, slots=True)
class _ScoringRule:
    pattern: re.Pattern[str]
    intent: Intent
    weight: int


def _rule(pattern: str, intent: Intent, weight: int) -> _ScoringRule:
    return _ScoringRule(re.compile(pattern, re.IGNORECASE), intent, weight)


_PLATFORM_ALTERNATION = "|".join(
    ["twitter", "tweet", *sorted(name for name in PIPELINE_CONFIGS if name != "x")],
)

STRONG_RULES: tuple[_ScoringRule, ...] = (
    _rule(r"\b(?:research|investigate|look into|find out)\b", Intent.RESEARCH, 10),
    _rule(r"\bsearch (?:for|the web)\b", Intent.RESEARCH, 8),
    _rule(r"\b(?:implement|refactor|fix|debug)\b", Intent.CODE_CHANGE, 10),
    _rule(r"\b(?:change|update|improve|modify)\b", Intent.CODE_CHANGE, 8),
    _rule(r"\b(?:add|create|build)\b", Intent.CODE_CHANGE, 6),
    _rule(r"\b(?:explain|tell me)\b", Intent.QUESTION, 10),
    _rule(r"^(?:what|why|how|when|where|who|which)\b", Intent.QUESTION, 8),
    _rule(r"\?$", Intent.QUESTION, 8),
    _rule(r"\bremind(?: me)?\b|\breminder\b", Intent.REMINDER, 10),
    _rule(r"\b(?:calendar|schedule)\b.*\b(?:add|put|book)\b", Intent.REMINDER, 10),
    _rule(r"\b(?:organi[sz]e|summari[sz]e|tidy up|clean up|sort out)\b", Intent.ORGANIZE, 10),
    _rule(r"\blist\b.*\b(?:all|every)\b", Intent.ORGANIZE, 8),
    _rule(
        rf"\b(?:write|draft|create|generate|publish|post)\b.*\b(?:{_PLATFORM_ALTERNATION})\b",
        Intent.CONTENT,
        15,
    ),
    _rule(r"\b(?:draft|publish)\b", Intent.CONTENT, 8),
)

MEDIUM_RULES: tuple[_ScoringRule, ...] = (
    _rule(r"\b(?:build|tests?|bug|code)\b", Intent.CODE_CHANGE, 4),
    _rule(r"\bcheck\b", Intent.QUESTION, 4),
    _rule(r"\b(?:calendar|schedule|meeting)\b", Intent.REMINDER, 5),
    _rule(r"\b(?:files?|folders?|inbox)\b", Intent.ORGANIZE, 3),
    _rule(r"\b(?:blog|article|post|thread|video|episode)\b", Intent.CONTENT, 5),
)

WEAK_RULES: tuple[_ScoringRule, ...] = (
    _rule(r"\blatest\b", Intent.RESEARCH, 2),
    _rule(r"\binfo(?:rmation)?\b", Intent.RESEARCH, 1),
    _rule(r"\bwrite\b", Intent.CONTENT, 2),
)

ALL_RULES: tuple[_ScoringRule, ...] = (*STRONG_RULES, *MEDIUM_RULES, *WEAK_RULES)

_LARGE_SCOPE = re.compile(
    r"\b(?:new feature|new (?:system|service|app)|design|architecture|large[- ]scale"
    r"|migrate|rewrite|replace)\b",
    re.IGNORECASE,
)
_SPECIFIC_TARGET = re.compile(
    r"(?:\b(?:src|tests?|packages|apps)/|\.(?:py|ts|tsx|js|toml|md|ya?ml)\b)",
    re.IGNORECASE,
)
_TRAILING_PUNCTUATION = re.compile(r"[.!?\s]+$")


class KeywordClassifier:
    """Offline weighted-regex classification, used only when configured."""

    async def classify(self, text: str) -> ClassificationResult:
        return self.classify_text(text)

    def classify_text(self, text: str) -> ClassificationResult:
        stripped = text.strip()
        if not stripped:
            raise ValueError("Cannot classify an empty request.")

        target = " ".join(stripped.split())
        scores: dict[Intent, int] = {}
        for rule in ALL_RULES:
            if rule.pattern.search(target):
                scores[rule.intent] = scores.get(rule.intent, 0) + rule.weight

        summary = shorten_summary(_normalize(stripped.splitlines()[0]))
        if not scores:
            return ClassificationResult(
                intent=Intent.OTHER,
                autonomy_level=DEFAULT_AUTONOMY_LEVEL,
                summary=summary,
                execution_prompt=stripped,
                reasoning="keyword classification: no rule matched",
            )

        intent, score = max(scores.items(), key=lambda item: item[1])
        clarify = None
        if (
            intent == Intent.CODE_CHANGE
            and _LARGE_SCOPE.search(stripped)
            and not _SPECIFIC_TARGET.search(stripped)
        ):
            clarify = LARGE_TASK_QUESTION
        return ClassificationResult(
            intent=intent,
            autonomy_level=DEFAULT_AUTONOMY_LEVEL,
            summary=summary,
            execution_prompt=stripped,
            reasoning=f"keyword classification: {intent.value} ({score} points)",
            clarify_question=clarify,
            platform=detect_platform(stripped) if intent == Intent.CONTENT else None,
        )


def _normalize(text: str) -> str:
    return _TRAILING_PUNCTUATION.sub("", " ".join(text.split()))
