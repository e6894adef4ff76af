"""Best-effort JSON recovery from free-form agent replies."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCED_JSON_LONG = re.compile(r"````+json\s*(.*?)````+", re.DOTALL | re.IGNORECASE)
_FENCED_JSON = re.compile(r"```json\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*$")


class JsonExtractionError(ValueError):
    """Reply contains no recoverable JSON value."""


def extract_json(text: str) -> Any:
    """Return the first well-formed JSON candidate found in ``text``.

    Candidates are tried in order: the whole reply, fenced ``json`` blocks
    (four-backtick fences before three-backtick ones), the first balanced span
    that parses, and the raw span from the first ``{`` to the last ``}``. Only
    when none parses is truncated-JSON repair attempted, on the fenced blocks
    and on the unterminated tail of the reply.
    """

    stripped = text.strip()
    if not stripped:
        raise JsonExtractionError("Empty reply, no JSON found.")

    fenced = _fenced_blocks(stripped)
    candidates = [stripped, *fenced]
    balanced = extract_balanced(stripped)
    if balanced is not None:
        candidates.append(balanced)
    raw_object = _raw_object_span(stripped)
    if raw_object is not None:
        candidates.append(raw_object)

    for candidate in candidates:
        parsed = _try_load(candidate)
        if parsed is not _MISSING:
            return parsed

    tail = _unterminated_tail(stripped)
    for candidate in (*fenced, *([tail] if tail is not None else [])):
        repaired = _repair_truncated_json(candidate)
        if repaired is not _MISSING:
            logger.warning("Recovered truncated JSON from agent reply")
            return repaired

    raise JsonExtractionError(f"No JSON found in reply: {stripped[:200]!r}")


def _fenced_blocks(text: str) -> list[str]:
    long_fenced = [match.group(1) for match in _FENCED_JSON_LONG.finditer(text)]
    if long_fenced:
        return long_fenced
    return [match.group(1) for match in _FENCED_JSON.finditer(text)]


def extract_balanced(text: str) -> str | None:
    """First balanced ``{...}`` or ``[...]`` span that parses as JSON.

    Objects are tried before arrays, so a bracketed citation such as ``[1]``
    ahead of the payload is skipped. An array wins when it encloses the object
    found, as in a top-level list of records, or when the text has no ``{``.
    """

    found = _first_parsing_span(text, "{")
    if found is None:
        if "{" in text:
            return None
        found = _first_parsing_span(text, "[")
        return None if found is None else found[2]

    object_start, object_end, span = found
    for start in _opener_positions(text, "[", stop=object_start):
        end = _balanced_end(text, start)
        if end is not None and end >= object_end and _try_load(text[start:end]) is not _MISSING:
            return text[start:end]
    return span


def _first_parsing_span(text: str, opener: str) -> tuple[int, int, str] | None:
    for start in _opener_positions(text, opener):
        end = _balanced_end(text, start)
        if end is not None and _try_load(text[start:end]) is not _MISSING:
            return start, end, text[start:end]
    return None


def _opener_positions(text: str, opener: str, *, stop: int | None = None) -> list[int]:
    limit = len(text) if stop is None else stop
    return [index for index, char in enumerate(text[:limit]) if char == opener]


def _balanced_end(text: str, start: int) -> int | None:
    """Index just past the bracket closing ``text[start]``; None if it never closes."""

    stack: list[str] = []
    in_string = False
    index = start
    while index < len(text):
        char = text[index]
        if in_string:
            if char == "\\":
                index += 2
                continue
            if char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "{[":
            stack.append(char)
        elif char in "}]":
            if not stack or _CLOSERS[stack[-1]] != char:
                return None
            stack.pop()
            if not stack:
                return index + 1
        index += 1
    return None


def _raw_object_span(text: str) -> str | None:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def _unterminated_tail(text: str) -> str | None:
    """Reply from the first ``{`` (else ``[``) onwards, for truncated-JSON repair."""

    start = text.find("{")
    if start == -1:
        start = text.find("[")
    return None if start == -1 else text[start:]


def _repair_truncated_json(raw: str) -> Any:
    """Close dangling strings and brackets; ``_MISSING`` when still invalid."""

    candidate = _TRAILING_COMMA.sub("", raw.strip())

    in_string = False
    stack: list[str] = []
    index = 0
    while index < len(candidate):
        char = candidate[index]
        if in_string:
            if char == "\\":
                index += 2
                continue
            if char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "{[":
            stack.append(char)
        elif char in "}]" and stack and _CLOSERS[stack[-1]] == char:
            stack.pop()
        index += 1

    if in_string:
        candidate += '"'
    candidate = _TRAILING_COMMA.sub("", candidate)
    candidate += "".join(_CLOSERS[opener] for opener in reversed(stack))
    return _try_load(candidate)


def _try_load(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return _MISSING


_CLOSERS = {"{": "}", "[": "]"}


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


_MISSING: Any = _Missing()


def parse_json_payload(text: str) -> tuple[bool, Any]:
    """Strict variant: the whole text or one fenced ``json`` block must parse."""

    stripped = text.strip()
    for candidate in (stripped, *_fenced_blocks(stripped)):
        parsed = _try_load(candidate)
        if parsed is not _MISSING:
            return True, parsed
    return False, None
