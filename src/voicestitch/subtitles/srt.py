"""
SubRip (.srt) reading and writing.

Block grammar: an index line, a `start --> end` line with canonical
timecodes, then one or more text lines. Blocks are separated by blank lines.
Output is always renumbered 1..N.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable

from voicestitch.domain.models import SubtitleLine
from voicestitch.exceptions import FormatError, ParseError
from voicestitch.subtitles.timecode import to_millis, to_text

BLOCK_SEPARATOR_RE = re.compile(r"\n(?:[ \t]*\n)+")
ARROW = "-->"


def _parse_block(block: str, block_number: int) -> SubtitleLine:
    rows = [row.rstrip() for row in block.split("\n")]
    index_row = rows[0].strip()
    if not index_row.isdigit():
        raise ParseError(f"index '{index_row}' is not numeric", block_number=block_number)
    if len(rows) < 2 or ARROW not in rows[1]:
        raise ParseError("missing 'start --> end' line", block_number=block_number)

    start_text, _, end_text = rows[1].partition(ARROW)
    try:
        start_ms = to_millis(start_text)
        end_ms = to_millis(end_text)
    except FormatError as exc:
        raise ParseError(exc.message, block_number=block_number) from exc

    text = "\n".join(rows[2:]).strip()
    if not text:
        raise ParseError("missing subtitle text", block_number=block_number)
    return SubtitleLine(start_ms=start_ms, end_ms=end_ms, text=text, sequence_index=block_number)


def parse(text: str) -> list[SubtitleLine]:
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n").lstrip("\ufeff").strip()
    if not cleaned:
        return []
    blocks = BLOCK_SEPARATOR_RE.split(cleaned)
    return [_parse_block(block, n) for n, block in enumerate(blocks, start=1)]


def reindex(lines: list[SubtitleLine]) -> list[SubtitleLine]:
    for position, line in enumerate(lines, start=1):
        line.sequence_index = position
    return lines


def serialize(lines: Iterable[SubtitleLine]) -> str:
    blocks = []
    for position, line in enumerate(lines, start=1):
        start = to_text(max(0, line.start_ms))
        end = to_text(max(0, line.end_ms))
        blocks.append(f"{position}\n{start} {ARROW} {end}\n{line.text}")
    return "\n\n".join(blocks)


def read_srt(path: str | Path) -> list[SubtitleLine]:
    return parse(Path(path).read_text(encoding="utf-8"))


def write_srt(path: str | Path, lines: Iterable[SubtitleLine]) -> Path:
    out = Path(path)
    body = serialize(lines)
    out.write_text(body + "\n" if body else "", encoding="utf-8")
    return out
