"""
Speech synthesis backends for VoiceStitch.

Responsibilities:
- Turn one chunk of script text into an encoded audio payload (bytes)
- Hide vendor SDKs behind the async SpeechBackend protocol

Does NOT:
- Chunk scripts, throttle requests or retry (the pipeline owns pacing)
- Decode or trim audio

Notes:
- OpenAI returns headerless 24 kHz 16-bit PCM; it is wrapped as WAV here.
- edge-tts is optional and imported lazily; `auto` falls back to the
  offline sine backend when neither vendor is usable.
"""

from __future__ import annotations

import os
from typing import Protocol

import numpy as np

from voicestitch.config.settings import Settings
from voicestitch.domain.models import AudioBuffer
from voicestitch.exceptions import ConfigurationError, DependencyMissingError
from voicestitch.utils.audio import PCM16_SAMPLE_RATE, encode_wav, pcm16_to_wav
from voicestitch.utils.logging import get_logger
from voicestitch.utils.text import non_empty_lines

log = get_logger(__name__)

API_KEY_ENV = "VOICESTITCH_OPENAI_API_KEY"
EDGE_DEFAULT_VOICE = "en-US-JennyNeural"


class SpeechBackend(Protocol):
    async def synthesize(self, *, text: str, voice: str, style: str, speed: float) -> bytes: ...


class OpenAISpeechBackend:
    """OpenAI text-to-speech (`audio.speech`), one request per call."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini-tts") -> None:
        from openai import AsyncOpenAI  # local import

        self._client = AsyncOpenAI(api_key=api_key)
        self._model = model

    async def synthesize(self, *, text: str, voice: str, style: str, speed: float) -> bytes:
        kwargs = {}
        if style:
            kwargs["instructions"] = style
        response = await self._client.audio.speech.create(
            model=self._model,
            voice=voice,
            input=text,
            response_format="pcm",
            speed=speed,
            **kwargs,
        )
        return pcm16_to_wav(response.content, sample_rate=PCM16_SAMPLE_RATE)


def _edge_rate(speed: float) -> str:
    percent = int(round((speed - 1.0) * 100))
    return f"{percent:+d}%"


class EdgeTTSBackend:
    """edge-tts backend (async). Streams MP3 frames into memory."""

    def __init__(self, *, default_voice: str = EDGE_DEFAULT_VOICE) -> None:
        import edge_tts  # type: ignore

        self._edge_tts = edge_tts
        self.default_voice = default_voice

    async def synthesize(self, *, text: str, voice: str, style: str, speed: float) -> bytes:
        # edge voices are locale-qualified ("en-US-JennyNeural"); anything else is another vendor's name.
        chosen = voice if "-" in voice else self.default_voice
        communicate = self._edge_tts.Communicate(text=text, voice=chosen, rate=_edge_rate(speed))
        payload = bytearray()
        async for message in communicate.stream():
            if message["type"] == "audio":
                payload.extend(message["data"])
        return bytes(payload)


class SineSpeechBackend:
    """
    Offline backend: one tone per script line, separated by short gaps, with
    trailing silence the pipeline's trim step removes. Lets the whole pipeline
    run without credentials.
    """

    def __init__(
        self,
        *,
        sample_rate: int = PCM16_SAMPLE_RATE,
        ms_per_char: float = 55.0,
        min_line_ms: float = 400.0,
        gap_ms: float = 150.0,
        tail_padding_ms: float = 800.0,
        amplitude: float = 0.2,
    ) -> None:
        self.sample_rate = sample_rate
        self.ms_per_char = ms_per_char
        self.min_line_ms = min_line_ms
        self.gap_ms = gap_ms
        self.tail_padding_ms = tail_padding_ms
        self.amplitude = amplitude

    def _frames(self, ms: float) -> int:
        return int(self.sample_rate * ms / 1000.0)

    def render(self, text: str, *, speed: float = 1.0) -> AudioBuffer:
        pieces: list[np.ndarray] = []
        for i, line in enumerate(non_empty_lines(text) or [text]):
            line_ms = max(self.min_line_ms, len(line) * self.ms_per_char) / max(speed, 0.1)
            t = np.arange(self._frames(line_ms), dtype=np.float32) / self.sample_rate
            freq = 220.0 + 55.0 * (i % 5)
            pieces.append((self.amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32))
            pieces.append(np.zeros(self._frames(self.gap_ms), dtype=np.float32))
        pieces.append(np.zeros(self._frames(self.tail_padding_ms), dtype=np.float32))
        return AudioBuffer(np.concatenate(pieces), self.sample_rate)

    async def synthesize(self, *, text: str, voice: str, style: str, speed: float) -> bytes:
        return encode_wav(self.render(text, speed=speed))


def create_speech_backend(settings: Settings) -> SpeechBackend:
    """
    Factory: explicit backend names must be usable; `auto` prefers OpenAI
    (when an API key is set), then edge-tts, then the sine generator.
    """
    choice = settings.speech_backend.lower()
    api_key = os.getenv(API_KEY_ENV)

    if choice == "sine":
        log.info("Speech backend: sine (offline)")
        return SineSpeechBackend()
    if choice == "openai":
        if not api_key:
            raise ConfigurationError(f"{API_KEY_ENV} is not set; cannot use the openai speech backend.")
        log.info("Speech backend: OpenAI (%s)", settings.speech_model)
        return OpenAISpeechBackend(api_key=api_key, model=settings.speech_model)
    if choice == "edge":
        try:
            backend = EdgeTTSBackend()
        except ImportError as exc:
            raise DependencyMissingError(
                "edge-tts is not installed. Install with: pip install 'voicestitch[edge]'"
            ) from exc
        log.info("Speech backend: edge-tts")
        return backend
    if choice != "auto":
        raise ConfigurationError(f"Unknown speech backend '{settings.speech_backend}'; use auto, openai, edge or sine.")

    if api_key:
        log.info("Speech backend: OpenAI (%s)", settings.speech_model)
        return OpenAISpeechBackend(api_key=api_key, model=settings.speech_model)
    try:
        backend = EdgeTTSBackend()
        log.info("Speech backend: edge-tts")
        return backend
    except ImportError:
        log.warning("Speech backend: sine (no %s and edge-tts unavailable)", API_KEY_ENV)
        return SineSpeechBackend()
