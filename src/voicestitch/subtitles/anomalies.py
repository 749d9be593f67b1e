"""
Gap normalization and per-line anomaly classification.

Both passes return copies; the input lines are never modified.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence

from voicestitch.domain.models import SubtitleLine, WarningType, clone_lines

SUSPICIOUS_MIN_DURATION_MS = 50
SUSPICIOUS_MAX_DURATION_MS = 30_000


class ChunkLike(Protocol):
    index: int

    @property
    def duration_ms(self) -> float: ...


@dataclass(frozen=True)
class ChunkSpan:
    index: int
    start_ms: float
    end_ms: float

    def contains(self, ms: float) -> bool:
        return self.start_ms <= ms < self.end_ms


def normalize_gaps(lines: Iterable[SubtitleLine]) -> list[SubtitleLine]:
    """Push each line that overlaps its predecessor forward, keeping its duration."""
    adjusted = clone_lines(lines)
    for current, nxt in zip(adjusted, adjusted[1:]):
        if nxt.start_ms < current.end_ms:
            delta = current.end_ms - nxt.start_ms
            nxt.start_ms += delta
            nxt.end_ms += delta
    return adjusted


def chunk_offsets(chunks: Sequence[ChunkLike]) -> list[int]:
    """Whole-ms start of each chunk on the stitched timeline (floored running total)."""
    offsets: list[int] = []
    cursor = 0.0
    for chunk in chunks:
        offsets.append(int(math.floor(cursor)))
        cursor += chunk.duration_ms
    return offsets


def chunk_spans(chunks: Sequence[ChunkLike]) -> list[ChunkSpan]:
    """
    Timeline range of each chunk. A span ends where the next one starts; the
    last one ends at the exact total duration.
    """
    offsets = chunk_offsets(chunks)
    total = sum(chunk.duration_ms for chunk in chunks)
    ends = offsets[1:] + [total]
    return [
        ChunkSpan(index=chunk.index, start_ms=start, end_ms=end)
        for chunk, start, end in zip(chunks, offsets, ends)
    ]


def owning_chunk(spans: Sequence[ChunkSpan], start_ms: float) -> Optional[ChunkSpan]:
    for span in spans:
        if span.contains(start_ms):
            return span
    return None


def is_suspicious(line: SubtitleLine, previous: Optional[SubtitleLine]) -> bool:
    duration = line.end_ms - line.start_ms
    if duration < SUSPICIOUS_MIN_DURATION_MS or duration > SUSPICIOUS_MAX_DURATION_MS:
        return True
    if line.start_ms >= line.end_ms:
        return True
    return previous is not None and line.start_ms < previous.end_ms


def detect_anomalies(
    lines: Iterable[SubtitleLine],
    chunks: Sequence[ChunkLike],
    failed_chunk_indices: Iterable[int] = (),
) -> list[SubtitleLine]:
    """
    Classify every line as backed by audio, missing audio, or suspiciously timed.

    The owning chunk is the one whose cumulative [start, end) range contains
    the line's start. Missing audio takes precedence over timing warnings.
    """
    failed = set(failed_chunk_indices)
    spans = chunk_spans(chunks)
    classified = clone_lines(lines)

    previous: Optional[SubtitleLine] = None
    for line in classified:
        suspicious = is_suspicious(line, previous)
        owner = owning_chunk(spans, line.start_ms)
        line.chunk_index = owner.index if owner is not None else None

        if owner is None or owner.index in failed:
            line.has_audio = False
            line.warning_type = WarningType.NO_AUDIO
        elif suspicious:
            line.has_audio = True
            line.warning_type = WarningType.SUSPICIOUS_TIMECODE
        else:
            line.has_audio = True
            line.warning_type = WarningType.NONE
        previous = line
    return classified


def summarize_anomalies(lines: Iterable[SubtitleLine]) -> dict[str, int]:
    counts = Counter(WarningType(line.warning_type).value for line in lines)
    return {kind.value: counts.get(kind.value, 0) for kind in WarningType}
