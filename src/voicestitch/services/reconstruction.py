"""
Audio reconstruction: rebuild a track from the original per-line spans so it
matches a structurally edited subtitle list, without calling the provider.

Edited lines are matched to the original snapshot by id. Each matched line
contributes the frames of its *original* span, in edited order, abutted with
no silence; the new timeline is the running sum of the original (clamped)
millisecond durations, while the audio is cut on the nearest frames. Manual
timestamp edits are therefore superseded; only deletions, reordering and
split halves change the result.
"""

from __future__ import annotations

import math
from typing import Iterable

from voicestitch.domain.models import (
    AudioBuffer,
    AudioChunk,
    GenerationResult,
    LocalCue,
    ResultKind,
    SubtitleLine,
)
from voicestitch.exceptions import EmptyReconstructionError
from voicestitch.subtitles import srt
from voicestitch.subtitles.anomalies import detect_anomalies
from voicestitch.utils.audio import concatenate, ensure_same_format, slice_ms
from voicestitch.utils.logging import get_logger

log = get_logger(__name__)


def reconstruct(
    track: AudioBuffer,
    edited_lines: Iterable[SubtitleLine],
    original_lines: Iterable[SubtitleLine],
    *,
    script_text: str = "",
) -> GenerationResult:
    originals = {line.id: line for line in original_lines}
    limit_ms = int(math.floor(track.duration_ms))

    pieces: list[AudioBuffer] = []
    lines: list[SubtitleLine] = []
    cursor_ms = 0
    skipped = 0
    for edited in edited_lines:
        source = originals.get(edited.id)
        if source is None:
            skipped += 1
            continue
        start_ms = min(max(source.start_ms, 0), limit_ms)
        end_ms = min(max(source.end_ms, 0), limit_ms)
        piece = slice_ms(track, start_ms, end_ms)
        if end_ms <= start_ms or piece.frames == 0:
            skipped += 1
            continue

        if pieces:
            ensure_same_format(pieces[0], piece)
        pieces.append(piece)

        lines.append(
            SubtitleLine(
                start_ms=cursor_ms,
                end_ms=cursor_ms + end_ms - start_ms,
                text=edited.text,
                id=edited.id,
            )
        )
        cursor_ms += end_ms - start_ms

    if not pieces:
        raise EmptyReconstructionError()

    new_track = concatenate(pieces)
    chunk = AudioChunk(
        index=0,
        audio=new_track,
        source_text="\n".join(line.text for line in lines),
        local_cues=tuple(LocalCue(l.start_ms, l.end_ms, l.text) for l in lines),
    )
    lines = srt.reindex(detect_anomalies(lines, [chunk]))
    log.info(
        "Reconstructed %d line(s) into %.1f s of audio (%d skipped)",
        len(lines),
        new_track.duration_ms / 1000.0,
        skipped,
    )
    return GenerationResult.create(
        track=new_track,
        lines=lines,
        chunks=[chunk],
        chunk_texts=[chunk.source_text],
        script_text=script_text,
        kind=ResultKind.RECONSTRUCTED,
    )
