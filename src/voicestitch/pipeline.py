"""
Chunked generation pipeline for VoiceStitch.

The pipeline executes a single generation:

1) Split the script into bounded chunks
2) Synthesize each chunk sequentially (throttled, cancellable)
3) Trim trailing silence and time each chunk's lines
4) Stitch chunk audio into one track with global subtitle offsets
5) Normalize gaps and classify anomalies

Responsibilities:
- Pace provider requests and tolerate failures after the first chunk
- Keep per-chunk audio and cues so single chunks can be regenerated

Does NOT:
- Implement vendor-specific logic (speech/transcription backends do)
- Own filesystem paths (Workspace does)
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from voicestitch.config.settings import Settings
from voicestitch.domain.models import (
    AudioBuffer,
    AudioChunk,
    GenerationResult,
    LocalCue,
    ResultKind,
    SubtitleLine,
)
from voicestitch.exceptions import CancelledError, ChunkGenerationError, ValidationError
from voicestitch.services.chunking import split_script
from voicestitch.services.speech import SpeechBackend
from voicestitch.services.transcription import TranscriptionBackend
from voicestitch.subtitles import srt
from voicestitch.subtitles.anomalies import chunk_offsets, detect_anomalies, normalize_gaps
from voicestitch.utils.audio import concatenate, decode_audio, trim_trailing_silence
from voicestitch.utils.logging import get_logger
from voicestitch.utils.text import non_empty_lines
from voicestitch.utils.timing import StepTimer, utc_now

log = get_logger(__name__)

T = TypeVar("T")


class CancellationToken:
    """
    Cooperative cancellation for one pipeline run.

    `guard` races an awaitable against the token: when the token fires first,
    the awaitable's task is cancelled and CancelledError is raised.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CancelledError()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task.result()
        # Drain the aborted request so its cancellation is not reported as unretrieved.
        await asyncio.gather(task, return_exceptions=True)
        raise CancelledError()

    async def sleep(self, ms: float) -> None:
        if ms <= 0:
            self.raise_if_cancelled()
            return
        await self.guard(asyncio.sleep(ms / 1000.0))


@dataclass(frozen=True)
class PipelineEvent:
    kind: str
    chunk_index: Optional[int]
    total: int
    message: str


EventCallback = Callable[[PipelineEvent], None]


@dataclass(frozen=True)
class PipelineOptions:
    voice: str = "alloy"
    style: str = ""
    speed: float = 1.0
    max_chars: int = 3000
    max_lines: int = 60
    max_total_chars: int = 100_000
    request_delay_ms: int = 5000
    silence_threshold: float = 0.03
    min_tail_ms: int = 300
    srt_split_char_count: int = 25

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineOptions":
        return cls(
            voice=settings.voice,
            style=settings.style,
            speed=settings.speed,
            max_chars=settings.max_chars_per_chunk,
            max_lines=settings.max_lines_per_chunk,
            max_total_chars=settings.max_script_chars,
            request_delay_ms=settings.request_delay_ms,
            silence_threshold=settings.silence_threshold,
            min_tail_ms=settings.min_tail_ms,
            srt_split_char_count=settings.srt_split_char_count,
        )


def even_cues(text: str, duration_ms: float) -> tuple[LocalCue, ...]:
    """Chunk duration divided evenly across the chunk's non-empty lines."""
    lines = non_empty_lines(text)
    if not lines:
        return ()
    count = len(lines)
    return tuple(
        LocalCue(
            start_ms=int(math.floor(i * duration_ms / count)),
            end_ms=int(math.floor((i + 1) * duration_ms / count)),
            text=line,
        )
        for i, line in enumerate(lines)
    )


def assemble(
    chunks: Sequence[AudioChunk],
    failed_chunk_indices: Sequence[int] = (),
) -> tuple[AudioBuffer, list[SubtitleLine]]:
    """
    Stitch chunks (in index order) into one track and globally timed lines.

    Each chunk's cues are offset by the floored summed duration of the chunks
    before it (the same offsets the anomaly detector uses); lines are
    normalized for overlaps and classified for anomalies.
    """
    ordered = sorted(chunks, key=lambda c: c.index)
    if not ordered:
        raise ValidationError("No generated chunks to assemble.")
    track = concatenate(c.audio for c in ordered)

    lines: list[SubtitleLine] = []
    for chunk, offset in zip(ordered, chunk_offsets(ordered)):
        for cue in chunk.local_cues:
            lines.append(
                SubtitleLine(
                    start_ms=offset + int(cue.start_ms),
                    end_ms=offset + int(cue.end_ms),
                    text=cue.text,
                    chunk_index=chunk.index,
                )
            )

    lines = detect_anomalies(normalize_gaps(lines), ordered, failed_chunk_indices)
    return track, srt.reindex(lines)


class GenerationPipeline:
    """
    Orchestrates chunked speech generation using injected backends.

    Notes:
    - One provider request is outstanding at a time.
    - `timer` holds the step timings of the most recent run.
    """

    def __init__(
        self,
        backend: SpeechBackend,
        *,
        transcriber: Optional[TranscriptionBackend] = None,
        options: Optional[PipelineOptions] = None,
        on_event: Optional[EventCallback] = None,
    ) -> None:
        self.backend = backend
        self.transcriber = transcriber
        self.options = options or PipelineOptions()
        self.on_event = on_event
        self.timer = StepTimer(clock=utc_now)

    def _emit(self, kind: str, chunk_index: Optional[int], total: int, message: str) -> None:
        if self.on_event is not None:
            self.on_event(PipelineEvent(kind=kind, chunk_index=chunk_index, total=total, message=message))

    async def _local_cues(
        self, text: str, audio: AudioBuffer, token: CancellationToken
    ) -> tuple[LocalCue, ...]:
        if self.transcriber is None:
            return even_cues(text, audio.duration_ms)
        try:
            srt_text = await token.guard(
                self.transcriber.transcribe(
                    audio=audio,
                    max_line_chars=self.options.srt_split_char_count,
                    reference_text=text,
                )
            )
            parsed = srt.parse(srt_text or "")
        except CancelledError:
            raise
        except Exception as exc:
            log.warning("Transcription failed (%s); using even division.", exc)
            return even_cues(text, audio.duration_ms)
        if not parsed:
            log.warning("Transcription returned no cues; using even division.")
            return even_cues(text, audio.duration_ms)
        return tuple(LocalCue(start_ms=l.start_ms, end_ms=l.end_ms, text=l.text) for l in parsed)

    async def synthesize_chunk(
        self,
        index: int,
        text: str,
        token: CancellationToken,
        *,
        fatal: bool,
    ) -> AudioChunk:
        """Synthesize, decode, trim and time one chunk. Any backend failure becomes ChunkGenerationError."""
        opts = self.options
        try:
            payload = await token.guard(
                self.backend.synthesize(text=text, voice=opts.voice, style=opts.style, speed=opts.speed)
            )
            audio = decode_audio(payload)
        except CancelledError:
            raise
        except Exception as exc:
            raise ChunkGenerationError(str(exc) or type(exc).__name__, chunk_index=index, fatal=fatal) from exc
        if audio.frames == 0:
            raise ChunkGenerationError("provider returned no audio", chunk_index=index, fatal=fatal)

        audio = trim_trailing_silence(audio, threshold=opts.silence_threshold, min_tail_ms=opts.min_tail_ms)
        cues = await self._local_cues(text, audio, token)
        return AudioChunk(index=index, audio=audio, source_text=text, local_cues=cues)

    async def run(self, script: str, token: Optional[CancellationToken] = None) -> GenerationResult:
        """
        Run the pipeline once.

        Raises ChunkGenerationError when the first chunk fails and
        CancelledError when the token fires; later chunk failures are
        recorded in `failed_chunk_indices`.
        """
        token = token or CancellationToken()
        self.timer = StepTimer(clock=utc_now)
        opts = self.options

        with self.timer.step("split_script"):
            texts = split_script(
                script,
                opts.max_chars,
                max_lines=opts.max_lines,
                max_total_chars=opts.max_total_chars,
            )
        total = len(texts)

        chunks: list[AudioChunk] = []
        failed: list[int] = []
        for index, text in enumerate(texts):
            if index > 0:
                self._emit("waiting", index, total, f"Waiting {opts.request_delay_ms} ms before chunk {index + 1}/{total}")
                await token.sleep(opts.request_delay_ms)
            log.info("Generating chunk %d/%d (%d chars)", index + 1, total, len(text))
            self._emit("chunk_started", index, total, f"Generating audio ({index + 1}/{total})")
            try:
                with self.timer.step(f"chunk_{index + 1}"):
                    chunk = await self.synthesize_chunk(index, text, token, fatal=index == 0)
            except ChunkGenerationError as exc:
                if exc.fatal:
                    raise
                log.warning("%s; continuing without it.", exc.message)
                self._emit("chunk_failed", index, total, exc.message)
                failed.append(index)
                continue
            chunks.append(chunk)
            self._emit("chunk_done", index, total, f"Chunk {index + 1}/{total}: {chunk.duration_ms:.0f} ms")

        with self.timer.step("assemble"):
            track, lines = assemble(chunks, failed)
        log.info(
            "Generated %.1f s of audio, %d subtitle lines, %d failed chunk(s)",
            track.duration_ms / 1000.0,
            len(lines),
            len(failed),
        )
        self._emit("finished", None, total, f"{len(lines)} lines, {len(failed)} failed chunk(s)")
        return GenerationResult.create(
            track=track,
            lines=lines,
            failed_chunk_indices=failed,
            chunks=chunks,
            chunk_texts=texts,
            script_text=script,
        )

    async def regenerate_chunk(
        self,
        result: GenerationResult,
        chunk_index: int,
        token: Optional[CancellationToken] = None,
    ) -> GenerationResult:
        """Re-synthesize one planned chunk and re-stitch; failures are always fatal here."""
        if not 0 <= chunk_index < len(result.chunk_texts):
            raise ValidationError(
                f"Chunk {chunk_index + 1} does not exist (result has {len(result.chunk_texts)} chunk(s))."
            )
        token = token or CancellationToken()
        self.timer = StepTimer(clock=utc_now)
        total = len(result.chunk_texts)
        self._emit("chunk_started", chunk_index, total, f"Regenerating chunk {chunk_index + 1}/{total}")

        with self.timer.step(f"chunk_{chunk_index + 1}"):
            fresh = await self.synthesize_chunk(chunk_index, result.chunk_texts[chunk_index], token, fatal=True)

        chunks = [c for c in result.chunks if c.index != chunk_index] + [fresh]
        failed = [i for i in result.failed_chunk_indices if i != chunk_index]
        with self.timer.step("assemble"):
            track, lines = assemble(chunks, failed)
        self._emit("chunk_done", chunk_index, total, f"Chunk {chunk_index + 1}/{total} regenerated")
        return GenerationResult.create(
            track=track,
            lines=lines,
            failed_chunk_indices=failed,
            chunks=sorted(chunks, key=lambda c: c.index),
            chunk_texts=result.chunk_texts,
            script_text=result.script_text,
            kind=ResultKind.REGENERATED,
        )


def run_sync(coro: Awaitable[T]) -> T:
    """Drive a pipeline coroutine from synchronous code (CLI)."""
    return asyncio.run(coro)
