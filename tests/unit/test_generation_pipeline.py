from __future__ import annotations

import asyncio

import numpy as np
import pytest

from voicestitch.domain.models import AudioBuffer, ResultKind, WarningType
from voicestitch.exceptions import CancelledError, ChunkGenerationError, ValidationError
from voicestitch.pipeline import (
    CancellationToken,
    GenerationPipeline,
    PipelineEvent,
    PipelineOptions,
    even_cues,
)
from voicestitch.utils.audio import encode_wav

RATE = 24000


def _wav(ms: float, amplitude: float = 0.5) -> bytes:
    frames = int(RATE * ms / 1000)
    return encode_wav(AudioBuffer(np.full(frames, amplitude, dtype=np.float32), RATE))


class FakeSpeechBackend:
    """Maps chunk text to a duration in ms, or to an exception to raise."""

    def __init__(self, plan: dict[str, object]) -> None:
        self.plan = dict(plan)
        self.calls: list[str] = []

    async def synthesize(self, *, text: str, voice: str, style: str, speed: float) -> bytes:
        self.calls.append(text)
        outcome = self.plan[text]
        if isinstance(outcome, Exception):
            raise outcome
        return _wav(float(outcome))


class HangingSpeechBackend:
    def __init__(self) -> None:
        self.cancelled = False

    async def synthesize(self, *, text: str, voice: str, style: str, speed: float) -> bytes:
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return b""


class FakeTranscriber:
    def __init__(self, srt_text: str | Exception) -> None:
        self.srt_text = srt_text
        self.reference_texts: list[str] = []

    async def transcribe(self, *, audio: AudioBuffer, max_line_chars: int, reference_text: str) -> str:
        self.reference_texts.append(reference_text)
        if isinstance(self.srt_text, Exception):
            raise self.srt_text
        return self.srt_text


def _options(**overrides) -> PipelineOptions:
    base = dict(max_chars=5, request_delay_ms=0)
    base.update(overrides)
    return PipelineOptions(**base)


SCRIPT = "one\ntwo\nthree"


def test_failed_middle_chunk_is_recorded_and_offsets_skip_it() -> None:
    backend = FakeSpeechBackend({"one": 1000, "two": RuntimeError("quota"), "three": 1500})
    events: list[PipelineEvent] = []
    pipeline = GenerationPipeline(backend, options=_options(), on_event=events.append)

    result = asyncio.run(pipeline.run(SCRIPT))

    assert result.failed_chunk_indices == (1,)
    lines = result.lines()
    assert [(l.text, l.start_ms, l.end_ms) for l in lines] == [("one", 0, 1000), ("three", 1000, 2500)]
    assert [l.chunk_index for l in lines] == [0, 2]
    assert [l.sequence_index for l in lines] == [1, 2]
    assert all(l.warning_type == WarningType.NONE for l in lines)
    assert result.track.duration_ms == pytest.approx(2500.0)
    assert result.chunk_texts == ("one", "two", "three")
    assert [c.index for c in result.chunks] == [0, 2]
    assert backend.calls == ["one", "two", "three"]
    assert any(e.kind == "chunk_failed" and e.chunk_index == 1 for e in events)
    assert result.kind == ResultKind.GENERATED


def test_first_chunk_failure_is_fatal() -> None:
    backend = FakeSpeechBackend({"one": RuntimeError("boom"), "two": 1000, "three": 1000})
    pipeline = GenerationPipeline(backend, options=_options())

    with pytest.raises(ChunkGenerationError) as excinfo:
        asyncio.run(pipeline.run(SCRIPT))

    assert excinfo.value.chunk_index == 0
    assert excinfo.value.fatal is True
    assert backend.calls == ["one"]


def test_undecodable_payload_counts_as_chunk_failure() -> None:
    class GarbageBackend(FakeSpeechBackend):
        async def synthesize(self, *, text: str, voice: str, style: str, speed: float) -> bytes:
            if text == "two":
                return b"not audio"
            return await super().synthesize(text=text, voice=voice, style=style, speed=speed)

    pipeline = GenerationPipeline(GarbageBackend({"one": 500, "three": 500}), options=_options())
    result = asyncio.run(pipeline.run(SCRIPT))
    assert result.failed_chunk_indices == (1,)


def test_even_division_within_a_chunk() -> None:
    backend = FakeSpeechBackend({"a\nb\nc\nd": 1000})
    pipeline = GenerationPipeline(backend, options=_options(max_chars=100))
    result = asyncio.run(pipeline.run("a\nb\n\nc\nd"))
    assert [(l.start_ms, l.end_ms) for l in result.lines()] == [(0, 250), (250, 500), (500, 750), (750, 1000)]


def test_even_cues_floor_to_integer_ms() -> None:
    cues = even_cues("x\ny\nz", 1000)
    assert [(c.start_ms, c.end_ms) for c in cues] == [(0, 333), (333, 666), (666, 1000)]


def test_trailing_silence_is_trimmed_before_offsetting() -> None:
    class PaddedBackend:
        async def synthesize(self, *, text: str, voice: str, style: str, speed: float) -> bytes:
            loud = np.full(RATE, 0.5, dtype=np.float32)
            quiet = np.zeros(RATE * 2, dtype=np.float32)
            return encode_wav(AudioBuffer(np.concatenate([loud, quiet]), RATE))

    pipeline = GenerationPipeline(PaddedBackend(), options=_options(min_tail_ms=300))
    result = asyncio.run(pipeline.run("one\ntwo"))
    assert [(l.start_ms, l.end_ms) for l in result.lines()] == [(0, 1300), (1300, 2600)]


def test_transcribed_timing_replaces_even_division() -> None:
    backend = FakeSpeechBackend({"one": 1000, "two": 1000})
    transcriber = FakeTranscriber("1\n00:00:00,100 --> 00:00:00,900\nspoken\n")
    pipeline = GenerationPipeline(backend, transcriber=transcriber, options=_options())

    result = asyncio.run(pipeline.run("one\ntwo"))

    assert [(l.text, l.start_ms, l.end_ms) for l in result.lines()] == [
        ("spoken", 100, 900),
        ("spoken", 1100, 1900),
    ]
    assert transcriber.reference_texts == ["one", "two"]


@pytest.mark.parametrize("srt_text", [RuntimeError("asr down"), "", "garbage block"])
def test_transcription_problems_fall_back_to_even_division(srt_text) -> None:
    backend = FakeSpeechBackend({"one": 1000})
    pipeline = GenerationPipeline(backend, transcriber=FakeTranscriber(srt_text), options=_options())
    result = asyncio.run(pipeline.run("one"))
    assert [(l.text, l.start_ms, l.end_ms) for l in result.lines()] == [("one", 0, 1000)]


def test_cancellation_aborts_in_flight_request() -> None:
    backend = HangingSpeechBackend()
    pipeline = GenerationPipeline(backend, options=_options())

    async def scenario() -> None:
        token = CancellationToken()
        task = asyncio.create_task(pipeline.run("one", token))
        await asyncio.sleep(0.01)
        token.cancel()
        await task

    with pytest.raises(CancelledError):
        asyncio.run(scenario())
    assert backend.cancelled is True


def test_cancellation_during_delay_stops_before_next_request() -> None:
    backend = FakeSpeechBackend({"one": 500, "two": 500, "three": 500})
    token_holder: dict[str, CancellationToken] = {}

    def on_event(event: PipelineEvent) -> None:
        if event.kind == "waiting":
            token_holder["token"].cancel()

    pipeline = GenerationPipeline(backend, options=_options(request_delay_ms=60_000), on_event=on_event)

    async def scenario() -> None:
        token_holder["token"] = CancellationToken()
        await pipeline.run(SCRIPT, token_holder["token"])

    with pytest.raises(CancelledError):
        asyncio.run(scenario())
    assert backend.calls == ["one"]


def test_regenerate_failed_chunk_restitches_in_order() -> None:
    backend = FakeSpeechBackend({"one": 1000, "two": RuntimeError("quota"), "three": 1500})
    pipeline = GenerationPipeline(backend, options=_options())
    first = asyncio.run(pipeline.run(SCRIPT))

    backend.plan["two"] = 500
    again = asyncio.run(pipeline.regenerate_chunk(first, 1))

    assert again.kind == ResultKind.REGENERATED
    assert again.failed_chunk_indices == ()
    assert [(l.text, l.start_ms, l.end_ms) for l in again.lines()] == [
        ("one", 0, 1000),
        ("two", 1000, 1500),
        ("three", 1500, 3000),
    ]
    assert first.failed_chunk_indices == (1,)


def test_regenerate_failure_is_fatal_and_unknown_chunk_rejected() -> None:
    backend = FakeSpeechBackend({"one": 1000, "two": RuntimeError("quota"), "three": 1500})
    pipeline = GenerationPipeline(backend, options=_options())
    first = asyncio.run(pipeline.run(SCRIPT))

    with pytest.raises(ChunkGenerationError) as excinfo:
        asyncio.run(pipeline.regenerate_chunk(first, 1))
    assert excinfo.value.fatal is True
    with pytest.raises(ValidationError):
        asyncio.run(pipeline.regenerate_chunk(first, 7))


def test_step_timings_cover_each_chunk() -> None:
    backend = FakeSpeechBackend({"one": 100, "two": 100})
    pipeline = GenerationPipeline(backend, options=_options())
    asyncio.run(pipeline.run("one\ntwo"))
    assert [s.name for s in pipeline.timer.steps] == ["split_script", "chunk_1", "chunk_2", "assemble"]


def test_fractional_chunk_duration_keeps_lines_with_their_chunk() -> None:
    # 24012 frames @ 24 kHz = 1000.5 ms
    backend = FakeSpeechBackend({"one": 1000.5, "two": 1000})
    pipeline = GenerationPipeline(backend, options=_options())
    result = asyncio.run(pipeline.run("one\ntwo"))

    assert result.chunk(0).audio.frames == 24012
    assert [(l.text, l.start_ms, l.end_ms, l.chunk_index) for l in result.lines()] == [
        ("one", 0, 1000, 0),
        ("two", 1000, 2000, 1),
    ]
    assert all(l.has_audio for l in result.lines())
