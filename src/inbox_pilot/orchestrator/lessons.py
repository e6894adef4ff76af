"""Render stored lessons into a prompt section."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from inbox_pilot.orchestrator.models import LessonEntry, LessonWrite

MAX_ENTRY_LENGTH = 500
LESSONS_HEADER = "# Past Lessons (avoid repeating these mistakes)"


class LessonStore(Protocol):
    """Append-only lesson persistence used by hooks and the executor."""

    def add_lesson(self, lesson: LessonWrite) -> LessonEntry: ...

    def get_recent_lessons(self, limit: int = 10) -> list[LessonEntry]: ...


def truncate(text: str, max_length: int = MAX_ENTRY_LENGTH) -> str:
    """Cut ``text`` so the result, ``...`` included, fits ``max_length``."""

    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def format_lessons_for_prompt(lessons: Sequence[LessonEntry]) -> str:
    """Numbered lesson list for prompt injection; empty input yields ``""``."""

    if not lessons:
        return ""

    lines = [LESSONS_HEADER, ""]
    for index, lesson in enumerate(lessons, start=1):
        lines.append(f"{index}. [{lesson.severity.value.upper()}] {lesson.tool_name}")
        lines.append(f"   Error: {truncate(lesson.error_pattern)}")
        lines.append(f"   Reflection: {truncate(lesson.reflection)}")
        if lesson.resolution:
            lines.append(f"   Resolution: {truncate(lesson.resolution)}")
        else:
            lines.append("   Resolution: (unresolved)")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def load_lessons_section(store: LessonStore, limit: int) -> str:
    """Fetch the most recent lessons and render them."""

    return format_lessons_for_prompt(store.get_recent_lessons(limit))
