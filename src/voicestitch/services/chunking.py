"""
Script chunking for bounded-size speech requests.

A chunk is a run of whole script lines joined by newlines, at or under the
character budget and the line budget. Lines that alone exceed the budget are
broken at sentence ends, then at word boundaries, and only as a last resort
inside a word.
"""

from __future__ import annotations

import re

from voicestitch.exceptions import ValidationError
from voicestitch.utils.logging import get_logger
from voicestitch.utils.text import non_empty_lines

log = get_logger(__name__)

DEFAULT_MAX_CHARS = 3000
DEFAULT_MAX_LINES = 60
DEFAULT_MAX_TOTAL_CHARS = 100_000

SENTENCE_END_RE = re.compile(r"(?<=[.!?。？！…])\s+")


def _pack(parts: list[str], max_chars: int, sep: str) -> list[str]:
    packed: list[str] = []
    current = ""
    for part in parts:
        candidate = f"{current}{sep}{part}" if current else part
        if len(candidate) <= max_chars:
            current = candidate
            continue
        if current:
            packed.append(current)
        current = part
    if current:
        packed.append(current)
    return packed


def _split_word(word: str, max_chars: int) -> list[str]:
    return [word[i : i + max_chars] for i in range(0, len(word), max_chars)]


def split_long_line(line: str, max_chars: int) -> list[str]:
    if len(line) <= max_chars:
        return [line]
    pieces: list[str] = []
    for sentence in SENTENCE_END_RE.split(line):
        sentence = sentence.strip()
        if not sentence:
            continue
        if len(sentence) <= max_chars:
            pieces.append(sentence)
            continue
        words: list[str] = []
        for word in sentence.split():
            words.extend(_split_word(word, max_chars) if len(word) > max_chars else [word])
        pieces.extend(_pack(words, max_chars, " "))
    return _pack(pieces, max_chars, " ")


def split_script(
    text: str,
    max_chars: int = DEFAULT_MAX_CHARS,
    *,
    max_lines: int = DEFAULT_MAX_LINES,
    max_total_chars: int = DEFAULT_MAX_TOTAL_CHARS,
) -> list[str]:
    """Split a script into ordered chunks that respect the character and line budgets."""
    if max_chars <= 0:
        raise ValidationError("Chunk size must be a positive number of characters.")
    if max_lines <= 0:
        raise ValidationError("Chunk line budget must be positive.")
    if len(text) > max_total_chars:
        raise ValidationError(
            f"Script has {len(text):,} characters; the limit is {max_total_chars:,}."
        )
    lines = non_empty_lines(text)
    if not lines:
        raise ValidationError("Script is empty; nothing to synthesize.")

    pieces: list[str] = []
    for line in lines:
        pieces.extend(split_long_line(line, max_chars))

    chunks: list[str] = []
    current: list[str] = []
    current_len = 0
    for piece in pieces:
        added = len(piece) + (1 if current else 0)
        if current and (current_len + added > max_chars or len(current) >= max_lines):
            chunks.append("\n".join(current))
            current, current_len = [], 0
            added = len(piece)
        current.append(piece)
        current_len += added
    if current:
        chunks.append("\n".join(current))

    log.info("Split script (%d chars, %d lines) into %d chunk(s)", len(text), len(lines), len(chunks))
    return chunks
