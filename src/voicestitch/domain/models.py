from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

import numpy as np

from voicestitch.utils.text import new_id
from voicestitch.utils.timing import utc_now


class WarningType(str, Enum):
    NONE = "none"
    NO_AUDIO = "no_audio"
    SUSPICIOUS_TIMECODE = "suspicious_timecode"


class EditMode(str, Enum):
    RIPPLE = "ripple"
    CLAMP = "clamp"


class ResultKind(str, Enum):
    GENERATED = "generated"
    RECONSTRUCTED = "reconstructed"
    RETIMED = "retimed"
    REGENERATED = "regenerated"


@dataclass
class SubtitleLine:
    start_ms: int
    end_ms: int
    text: str
    id: str = field(default_factory=new_id)
    sequence_index: int = 0
    chunk_index: Optional[int] = None
    has_audio: bool = True
    warning_type: WarningType = WarningType.NONE

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    def clone(self) -> "SubtitleLine":
        return copy.deepcopy(self)


def clone_lines(lines) -> list[SubtitleLine]:
    return [line.clone() for line in lines]


@dataclass(frozen=True, eq=False)
class AudioBuffer:
    """
    Decoded audio: float32 samples shaped (frames, channels) at one sample rate.
    """

    samples: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        samples = np.asarray(self.samples, dtype=np.float32)
        if samples.ndim == 1:
            samples = samples.reshape(-1, 1)
        object.__setattr__(self, "samples", samples)

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration_ms(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frames * 1000.0 / self.sample_rate


@dataclass(frozen=True)
class LocalCue:
    """A timed line relative to the start of its chunk."""

    start_ms: int
    end_ms: int
    text: str


@dataclass(frozen=True)
class AudioChunk:
    index: int
    audio: AudioBuffer
    source_text: str
    local_cues: tuple[LocalCue, ...] = ()

    @property
    def duration_ms(self) -> float:
        return self.audio.duration_ms


@dataclass(frozen=True)
class GenerationResult:
    """
    One immutable entry of a session's generation history.

    `original_subtitle_lines` is a private deep copy taken at creation time;
    use `lines()` / `original_lines()` to obtain editable copies.
    """

    track: AudioBuffer
    subtitle_lines: tuple[SubtitleLine, ...]
    original_subtitle_lines: tuple[SubtitleLine, ...]
    failed_chunk_indices: tuple[int, ...] = ()
    chunks: tuple[AudioChunk, ...] = ()
    chunk_texts: tuple[str, ...] = ()
    script_text: str = ""
    kind: ResultKind = ResultKind.GENERATED
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def create(
        cls,
        *,
        track: AudioBuffer,
        lines,
        failed_chunk_indices=(),
        chunks=(),
        chunk_texts=(),
        script_text: str = "",
        kind: ResultKind = ResultKind.GENERATED,
    ) -> "GenerationResult":
        return cls(
            track=track,
            subtitle_lines=tuple(clone_lines(lines)),
            original_subtitle_lines=tuple(clone_lines(lines)),
            failed_chunk_indices=tuple(sorted(failed_chunk_indices)),
            chunks=tuple(chunks),
            chunk_texts=tuple(chunk_texts),
            script_text=script_text,
            kind=kind,
        )

    def lines(self) -> list[SubtitleLine]:
        return clone_lines(self.subtitle_lines)

    def original_lines(self) -> list[SubtitleLine]:
        return clone_lines(self.original_subtitle_lines)

    def chunk(self, index: int) -> Optional[AudioChunk]:
        for chunk in self.chunks:
            if chunk.index == index:
                return chunk
        return None

    @property
    def duration_ms(self) -> float:
        return self.track.duration_ms
