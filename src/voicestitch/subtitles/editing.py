"""
Timestamp edit engine.

Every operation takes the live line list, mutates it in place and keeps
`sequence_index` contiguous (1..N in list order). Nothing is remembered
between calls; the session owns the list and the "unsaved edits" flag.

Two mutually exclusive policies apply to `update_line`:

- ripple: moving a start pulls the previous line's end with it; moving an
  end slides every later line by the same delta. No bounds are enforced.
- clamp: a line may not cross its neighbours; collapsed lines are given a
  100 ms minimum length.
"""

from __future__ import annotations

from typing import Optional

from voicestitch.domain.models import EditMode, SubtitleLine, clone_lines
from voicestitch.exceptions import LineNotFoundError, ValidationError
from voicestitch.subtitles.srt import reindex
from voicestitch.utils.text import new_id

CLAMP_MIN_DURATION_MS = 100


def find_index(lines: list[SubtitleLine], line_id: str) -> int:
    for position, line in enumerate(lines):
        if line.id == line_id:
            return position
    raise LineNotFoundError(line_id)


def update_line(
    lines: list[SubtitleLine],
    line_id: str,
    *,
    start_ms: Optional[int] = None,
    end_ms: Optional[int] = None,
    text: Optional[str] = None,
    mode: EditMode = EditMode.RIPPLE,
) -> bool:
    """
    Apply changes to one line and propagate them according to `mode`.

    Returns True when a timestamp was part of the change (the caller's
    unsaved-edits flag); text-only edits return False.
    """
    index = find_index(lines, line_id)
    line = lines[index]
    old_start, old_end = line.start_ms, line.end_ms

    if text is not None:
        line.text = text
    if start_ms is not None:
        line.start_ms = start_ms
    if end_ms is not None:
        line.end_ms = end_ms

    if start_ms is None and end_ms is None:
        return False

    if EditMode(mode) is EditMode.RIPPLE:
        _ripple(lines, index, start_ms, end_ms, old_start, old_end)
    else:
        _clamp(lines, index, start_edited=start_ms is not None, end_edited=end_ms is not None)
    return True


def _ripple(
    lines: list[SubtitleLine],
    index: int,
    start_ms: Optional[int],
    end_ms: Optional[int],
    old_start: int,
    old_end: int,
) -> None:
    if start_ms is not None and index > 0:
        lines[index - 1].end_ms += start_ms - old_start
    if end_ms is not None:
        delta = end_ms - old_end
        for later in lines[index + 1 :]:
            later.start_ms += delta
            later.end_ms += delta


def _clamp(lines: list[SubtitleLine], index: int, *, start_edited: bool, end_edited: bool) -> None:
    line = lines[index]
    start, end = line.start_ms, line.end_ms

    if index > 0:
        start = max(start, lines[index - 1].end_ms)
    else:
        start = max(start, 0)
    if index < len(lines) - 1:
        end = min(end, lines[index + 1].start_ms)

    if start >= end:
        if start_edited:
            end = start + CLAMP_MIN_DURATION_MS
        elif end_edited:
            start = max(0, end - CLAMP_MIN_DURATION_MS)

    line.start_ms, line.end_ms = start, end


def remove_line(lines: list[SubtitleLine], line_id: str) -> SubtitleLine:
    removed = lines.pop(find_index(lines, line_id))
    reindex(lines)
    return removed


def split_line(
    lines: list[SubtitleLine],
    line_id: str,
    char_offset: int,
) -> tuple[SubtitleLine, SubtitleLine]:
    """
    Split a line's text at `char_offset`; the cut time is interpolated by
    character position.
    """
    index = find_index(lines, line_id)
    line = lines[index]
    length = len(line.text)
    if not 0 < char_offset < length:
        raise ValidationError(f"Split offset {char_offset} is outside the text (length {length}).")

    head = line.text[:char_offset].strip()
    tail = line.text[char_offset:].strip()
    if not head or not tail:
        raise ValidationError("Split would leave an empty subtitle line.")

    split_ms = line.start_ms + (line.end_ms - line.start_ms) * char_offset // length
    second = SubtitleLine(
        start_ms=split_ms,
        end_ms=line.end_ms,
        text=tail,
        id=new_id(),
        chunk_index=line.chunk_index,
        has_audio=line.has_audio,
        warning_type=line.warning_type,
    )
    line.text = head
    line.end_ms = split_ms
    lines.insert(index + 1, second)
    reindex(lines)
    return line, second


def merge_line(lines: list[SubtitleLine], index: int, direction: str) -> bool:
    """
    Merge the line at `index` with its upper or lower neighbour.

    The upper line of the pair survives with its timing untouched; the lower
    line is dropped. Returns False when there is no neighbour in that direction.
    """
    if direction == "up":
        upper = index - 1
    elif direction == "down":
        upper = index
    else:
        raise ValidationError(f"Unknown merge direction '{direction}'; use up or down.")
    if upper < 0 or upper + 1 >= len(lines) or index >= len(lines):
        return False

    survivor = lines[upper]
    dropped = lines.pop(upper + 1)
    survivor.text = f"{survivor.text.strip()} {dropped.text.strip()}".strip()
    reindex(lines)
    return True


def bulk_shift(lines: list[SubtitleLine], delta_ms: int) -> None:
    for line in lines:
        line.start_ms = max(0, line.start_ms + delta_ms)
        line.end_ms = max(0, line.end_ms + delta_ms)


def reset(original: list[SubtitleLine] | tuple[SubtitleLine, ...]) -> list[SubtitleLine]:
    return reindex(clone_lines(original))
