"""Deterministic tool failure classification for lesson severity."""

from __future__ import annotations

from dataclasses import dataclass

from inbox_pilot.orchestrator.models import FailureClass, Severity

_RATE_LIMIT_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "rate-limit",
    "429",
    "please retry",
    "try again later",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "network error",
    "timed out",
    "timeout",
    "could not resolve host",
)
_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "authentication",
    "restricted token",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
)

_SEVERITY_BY_CLASS: dict[FailureClass, Severity] = {
    FailureClass.TRANSIENT: Severity.MEDIUM,
    FailureClass.BILLING_OR_QUOTA: Severity.HIGH,
    FailureClass.ACCESS_OR_AUTH: Severity.HIGH,
    FailureClass.MODEL_NOT_AVAILABLE: Severity.HIGH,
    FailureClass.OTHER: Severity.MEDIUM,
}


@dataclass(slots=True)
class ToolFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    severity: Severity
    matched_rule: str
    matched_pattern: str | None


def classify_tool_failure(error: str) -> ToolFailureClassification:
    """Classify a tool error text; rate-limit wording wins over quota wording."""

    haystack = error.lower()

    rules: tuple[tuple[str, FailureClass, tuple[str, ...]], ...] = (
        ("rate_limit_transient", FailureClass.TRANSIENT, _RATE_LIMIT_TRANSIENT_PATTERNS),
        ("billing_or_quota", FailureClass.BILLING_OR_QUOTA, _BILLING_OR_QUOTA_PATTERNS),
        ("access_or_auth", FailureClass.ACCESS_OR_AUTH, _ACCESS_OR_AUTH_PATTERNS),
        ("model_not_available", FailureClass.MODEL_NOT_AVAILABLE, _MODEL_NOT_AVAILABLE_PATTERNS),
        ("generic_transient", FailureClass.TRANSIENT, _GENERIC_TRANSIENT_PATTERNS),
    )
    for rule, failure_class, patterns in rules:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return ToolFailureClassification(
                failure_class=failure_class,
                severity=_SEVERITY_BY_CLASS[failure_class],
                matched_rule=rule,
                matched_pattern=pattern,
            )

    return ToolFailureClassification(
        failure_class=FailureClass.OTHER,
        severity=_SEVERITY_BY_CLASS[FailureClass.OTHER],
        matched_rule="fallback",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
