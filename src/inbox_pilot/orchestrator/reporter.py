"""Progress and result reporting to a messaging surface."""

from __future__ import annotations

import itertools
import logging
import re
from collections.abc import Callable
from typing import Protocol

import click

from inbox_pilot.orchestrator.models import ClassificationResult, Task, TaskStatus

logger = logging.getLogger(__name__)

MESSAGE_CHUNK_CHARS = 3_000
CLASSIFICATION_FAILED_TEXT = (
    "Sorry, I could not classify this request. Please rephrase and send it again."
)
TASK_FAILED_TEXT = "The task failed. Details were recorded in the task log."
TASK_CANCELLED_TEXT = "Request dismissed; nothing was run."
CLARIFY_INSTRUCTIONS = "Reply in this thread to continue, or dismiss the request to cancel it."

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE_END = re.compile(r"(?<=[.!?。！？])\s+")


class MessagingSurface(Protocol):
    """Chat-like surface the harness reports to."""

    async def post_message(self, thread_id: str, text: str) -> str: ...

    async def update_message(self, thread_id: str, message_id: str, text: str) -> None: ...


def split_text(text: str, limit: int = MESSAGE_CHUNK_CHARS) -> list[str]:
    """Split on paragraph boundaries into chunks of at most ``limit`` characters.

    Paragraphs longer than ``limit`` are split at sentence ends, and sentences
    longer than ``limit`` are hard-wrapped.
    """

    if limit <= 0:
        raise ValueError("limit must be > 0")
    stripped = text.strip()
    if not stripped:
        return []

    pieces: list[str] = []
    for paragraph in _PARAGRAPH_BREAK.split(stripped):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        if len(paragraph) <= limit:
            pieces.append(paragraph)
            continue
        pieces.extend(_split_paragraph(paragraph, limit))

    chunks: list[str] = []
    current = ""
    for piece in pieces:
        if not current:
            current = piece
        elif len(current) + 2 + len(piece) <= limit:
            current = f"{current}\n\n{piece}"
        else:
            chunks.append(current)
            current = piece
    if current:
        chunks.append(current)
    return chunks


def _split_paragraph(paragraph: str, limit: int) -> list[str]:
    parts: list[str] = []
    current = ""
    for sentence in _SENTENCE_END.split(paragraph):
        for segment in _hard_wrap(sentence, limit):
            if not current:
                current = segment
            elif len(current) + 1 + len(segment) <= limit:
                current = f"{current} {segment}"
            else:
                parts.append(current)
                current = segment
    if current:
        parts.append(current)
    return parts


def _hard_wrap(text: str, limit: int) -> list[str]:
    return [text[start : start + limit] for start in range(0, len(text), limit)] or [""]


def build_classification_message(
    *,
    summary: str,
    intent: str,
    clarify_question: str | None = None,
) -> str:
    lines = [f"*{summary}*", f"_{intent}_"]
    if clarify_question:
        lines.extend(["", f"Question: {clarify_question}", CLARIFY_INSTRUCTIONS])
    return "\n".join(lines)


def build_result_messages(result_text: str, limit: int = MESSAGE_CHUNK_CHARS) -> list[str]:
    """Result body split into postable chunks; no cost or duration footer."""

    return split_text(result_text, limit) or ["(no output)"]


def build_artifact_summary(artifact_count: int) -> str:
    noun = "artifact" if artifact_count == 1 else "artifacts"
    return f"{artifact_count} {noun} produced"


class TaskReporter:
    """Reports a task's lifecycle into its thread."""

    def __init__(
        self,
        messenger: MessagingSurface,
        *,
        chunk_chars: int = MESSAGE_CHUNK_CHARS,
        artifact_counter: Callable[[Task], int] | None = None,
    ) -> None:
        self.messenger = messenger
        self.chunk_chars = chunk_chars
        self.artifact_counter = artifact_counter
        self._progress_messages: dict[str, str] = {}

    async def acknowledge(self, task: Task, classification: ClassificationResult) -> str:
        return await self.messenger.post_message(
            task.thread_id,
            build_classification_message(
                summary=classification.summary,
                intent=classification.intent.value,
                clarify_question=classification.clarify_question,
            ),
        )

    async def classification_failed(self, thread_id: str) -> str:
        return await self.messenger.post_message(thread_id, CLASSIFICATION_FAILED_TEXT)

    async def progress(self, task: Task, text: str) -> None:
        """Post the first progress line, then edit that same message."""

        message_id = self._progress_messages.get(task.task_id)
        if message_id is None:
            self._progress_messages[task.task_id] = await self.messenger.post_message(
                task.thread_id,
                text,
            )
            return
        await self.messenger.update_message(task.thread_id, message_id, text)

    async def finished(self, task: Task) -> None:
        """Final report for a task leaving the queue."""

        self._progress_messages.pop(task.task_id, None)
        if task.status == TaskStatus.COMPLETED:
            for chunk in build_result_messages(task.result_text or "", self.chunk_chars):
                await self.messenger.post_message(task.thread_id, chunk)
            artifact_count = self.artifact_counter(task) if self.artifact_counter else 0
            if artifact_count > 0:
                await self.messenger.post_message(
                    task.thread_id,
                    build_artifact_summary(artifact_count),
                )
        elif task.status == TaskStatus.ERROR:
            await self.messenger.post_message(task.thread_id, TASK_FAILED_TEXT)
        elif task.status == TaskStatus.CANCELLED:
            await self.messenger.post_message(task.thread_id, TASK_CANCELLED_TEXT)
        else:
            logger.warning("Finished report for non-terminal task %s", task.task_id)


class ConsoleMessenger:
    """Messaging surface that prints to the terminal."""

    def __init__(self, echo: Callable[[str], None] = click.echo) -> None:
        self._echo = echo
        self._ids = itertools.count(1)

    async def post_message(self, thread_id: str, text: str) -> str:
        message_id = str(next(self._ids))
        self._echo(f"[{thread_id}#{message_id}] {text}")
        return message_id

    async def update_message(self, thread_id: str, message_id: str, text: str) -> None:
        self._echo(f"[{thread_id}#{message_id} edited] {text}")
