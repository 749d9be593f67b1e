"""
Sample-buffer helpers for VoiceStitch.

Responsibilities:
- Decode provider payloads (any container libsndfile reads) into AudioBuffers
- Encode AudioBuffers to 16-bit PCM WAV
- Concatenate, slice and trim buffers on frame boundaries

Does NOT:
- Resample or remix channels (buffers must already agree on format)
"""

from __future__ import annotations

import io
import math
from pathlib import Path
from typing import Iterable

import numpy as np
import soundfile as sf

from voicestitch.domain.models import AudioBuffer
from voicestitch.exceptions import FormatMismatchError, ValidationError
from voicestitch.utils.logging import get_logger

log = get_logger(__name__)

PCM16_SAMPLE_RATE = 24000


def ms_to_frame(ms: float, sample_rate: int) -> int:
    return int(math.floor(ms * sample_rate / 1000.0))


def frame_to_ms(frame: int, sample_rate: int) -> float:
    return frame * 1000.0 / sample_rate


def decode_audio(data: bytes) -> AudioBuffer:
    """Decode an encoded audio payload (WAV, FLAC, OGG, MP3...) to float32 frames."""
    samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    return AudioBuffer(samples, int(sample_rate))


def pcm16_to_buffer(raw: bytes, *, sample_rate: int = PCM16_SAMPLE_RATE, channels: int = 1) -> AudioBuffer:
    """Interpret headerless little-endian 16-bit PCM."""
    usable = len(raw) - (len(raw) % (2 * channels))
    ints = np.frombuffer(raw[:usable], dtype="<i2")
    samples = ints.astype(np.float32) / 32768.0
    return AudioBuffer(samples.reshape(-1, channels), sample_rate)


def pcm16_to_wav(raw: bytes, *, sample_rate: int = PCM16_SAMPLE_RATE, channels: int = 1) -> bytes:
    return encode_wav(pcm16_to_buffer(raw, sample_rate=sample_rate, channels=channels))


def encode_wav(buffer: AudioBuffer) -> bytes:
    out = io.BytesIO()
    sf.write(out, buffer.samples, buffer.sample_rate, format="WAV", subtype="PCM_16")
    return out.getvalue()


def write_wav(path: str | Path, buffer: AudioBuffer) -> Path:
    out = Path(path)
    sf.write(str(out), buffer.samples, buffer.sample_rate, format="WAV", subtype="PCM_16")
    return out


def read_audio(path: str | Path) -> AudioBuffer:
    samples, sample_rate = sf.read(str(path), dtype="float32", always_2d=True)
    return AudioBuffer(samples, int(sample_rate))


def ensure_same_format(first: AudioBuffer, other: AudioBuffer) -> None:
    if first.sample_rate != other.sample_rate:
        raise FormatMismatchError(
            f"Sample rate mismatch: {first.sample_rate} Hz vs {other.sample_rate} Hz."
        )
    if first.channels != other.channels:
        raise FormatMismatchError(
            f"Channel count mismatch: {first.channels} vs {other.channels}."
        )


def concatenate(buffers: Iterable[AudioBuffer]) -> AudioBuffer:
    items = list(buffers)
    if not items:
        raise ValidationError("No audio buffers to concatenate.")
    head = items[0]
    for other in items[1:]:
        ensure_same_format(head, other)
    samples = np.concatenate([b.samples for b in items], axis=0)
    return AudioBuffer(samples, head.sample_rate)


def slice_frames(buffer: AudioBuffer, start: int, end: int) -> AudioBuffer:
    start = max(0, min(start, buffer.frames))
    end = max(start, min(end, buffer.frames))
    return AudioBuffer(buffer.samples[start:end].copy(), buffer.sample_rate)


def slice_ms(buffer: AudioBuffer, start_ms: float, end_ms: float) -> AudioBuffer:
    return slice_frames(
        buffer,
        ms_to_frame(start_ms, buffer.sample_rate),
        ms_to_frame(end_ms, buffer.sample_rate),
    )


def _envelope(buffer: AudioBuffer) -> np.ndarray:
    if buffer.frames == 0:
        return np.zeros(0, dtype=np.float32)
    return np.max(np.abs(buffer.samples), axis=1)


def trim_trailing_silence(
    buffer: AudioBuffer,
    *,
    threshold: float = 0.03,
    min_tail_ms: float = 300,
) -> AudioBuffer:
    """
    Drop provider padding after the narration ends.

    The cut is placed `min_tail_ms` after the last frame whose peak amplitude
    (across channels) reaches `threshold`. Buffers with no loud frame, or whose
    trailing quiet section is already shorter than the tail, are returned as-is.
    """
    envelope = _envelope(buffer)
    loud = np.flatnonzero(envelope >= threshold)
    if loud.size == 0:
        log.debug("Trailing silence trim: no frame above %.3f, keeping buffer", threshold)
        return buffer
    keep = int(loud[-1]) + 1 + ms_to_frame(min_tail_ms, buffer.sample_rate)
    if keep >= buffer.frames:
        return buffer
    log.debug(
        "Trailing silence trim: %.0f ms -> %.0f ms",
        buffer.duration_ms,
        frame_to_ms(keep, buffer.sample_rate),
    )
    return slice_frames(buffer, 0, keep)


def detect_silence(
    buffer: AudioBuffer,
    *,
    threshold: float = 0.01,
    min_silence_ms: float = 250,
) -> list[tuple[float, float]]:
    """Return (start_ms, end_ms) spans where the first channel stays below `threshold`."""
    if buffer.frames == 0:
        return []
    quiet = np.abs(buffer.samples[:, 0]) < threshold
    min_frames = ms_to_frame(min_silence_ms, buffer.sample_rate)
    # Edges of quiet runs: +1 where a run starts, -1 one past where it ends.
    padded = np.concatenate(([False], quiet, [False])).astype(np.int8)
    edges = np.diff(padded)
    starts = np.flatnonzero(edges == 1)
    ends = np.flatnonzero(edges == -1)
    spans: list[tuple[float, float]] = []
    for start, end in zip(starts, ends):
        if end - start >= min_frames:
            spans.append(
                (
                    frame_to_ms(int(start), buffer.sample_rate),
                    frame_to_ms(int(end), buffer.sample_rate),
                )
            )
    return spans
