"""
Transcription-based timing for generated chunks.

A transcription backend turns one chunk's audio into SRT text whose
timestamps are relative to the chunk start. The pipeline prefers it over
even division when configured.
"""

from __future__ import annotations

import os
from typing import Optional, Protocol

from voicestitch.config.settings import Settings
from voicestitch.domain.models import AudioBuffer, SubtitleLine
from voicestitch.exceptions import ConfigurationError
from voicestitch.subtitles import srt
from voicestitch.utils.audio import encode_wav
from voicestitch.utils.logging import get_logger

log = get_logger(__name__)

API_KEY_ENV = "VOICESTITCH_OPENAI_API_KEY"
PROMPT_MAX_CHARS = 800


class TranscriptionBackend(Protocol):
    async def transcribe(self, *, audio: AudioBuffer, max_line_chars: int, reference_text: str) -> str: ...


def split_for_display(text: str, max_line_chars: int) -> list[str]:
    """Greedy word packing into pieces of at most `max_line_chars` (long words stay whole)."""
    pieces: list[str] = []
    current: list[str] = []
    current_len = 0
    for word in text.split():
        next_len = current_len + (1 if current else 0) + len(word)
        if current and next_len > max_line_chars:
            pieces.append(" ".join(current))
            current, current_len = [word], len(word)
        else:
            current.append(word)
            current_len = next_len
    if current:
        pieces.append(" ".join(current))
    return pieces


def timed_pieces(start_ms: float, end_ms: float, text: str, max_line_chars: int) -> list[SubtitleLine]:
    """Spread a timed span over its display pieces in proportion to their length."""
    pieces = split_for_display(text, max_line_chars) if max_line_chars > 0 else [text.strip()]
    pieces = [p for p in pieces if p]
    total_chars = sum(len(p) for p in pieces)
    if not pieces or total_chars == 0 or end_ms <= start_ms:
        return []
    lines: list[SubtitleLine] = []
    cursor = start_ms
    consumed = 0
    for piece in pieces:
        consumed += len(piece)
        piece_end = start_ms + (end_ms - start_ms) * consumed / total_chars
        lines.append(SubtitleLine(start_ms=int(cursor), end_ms=int(piece_end), text=piece))
        cursor = piece_end
    return lines


def _field(obj, name: str):
    value = getattr(obj, name, None)
    if value is None and isinstance(obj, dict):
        value = obj.get(name)
    return value


class OpenAITranscribeBackend:
    """
    OpenAI transcription backend that produces SRT by converting returned segments.

    Uses `response_format="verbose_json"` to obtain segment timestamps when supported.
    """

    def __init__(self, api_key: str, model: str = "whisper-1") -> None:
        from openai import AsyncOpenAI  # local import

        self._client = AsyncOpenAI(api_key=api_key)
        self._model = model

    async def _request_transcription(self, *, payload: bytes, prompt: str, response_format: str):
        kwargs = {}
        if prompt:
            kwargs["prompt"] = prompt[:PROMPT_MAX_CHARS]
        return await self._client.audio.transcriptions.create(
            model=self._model,
            file=("chunk.wav", payload, "audio/wav"),
            response_format=response_format,
            **kwargs,
        )

    async def transcribe(self, *, audio: AudioBuffer, max_line_chars: int, reference_text: str) -> str:
        payload = encode_wav(audio)
        try:
            resp = await self._request_transcription(
                payload=payload,
                prompt=reference_text,
                response_format="verbose_json",
            )
        except Exception as exc:
            msg = str(exc)
            if "response_format" in msg or "unsupported_value" in msg:
                log.warning(
                    "Transcription model does not support verbose_json; falling back to json."
                )
                resp = await self._request_transcription(
                    payload=payload,
                    prompt=reference_text,
                    response_format="json",
                )
            else:
                raise

        duration_ms = audio.duration_ms
        segments = _field(resp, "segments")
        if not segments:
            text = _field(resp, "text")
            if not text:
                return ""
            return srt.serialize(timed_pieces(0, duration_ms, str(text), max_line_chars))

        lines: list[SubtitleLine] = []
        for seg in segments:
            start = float(_field(seg, "start")) * 1000.0
            end = min(float(_field(seg, "end")) * 1000.0, duration_ms)
            text = str(_field(seg, "text") or "").strip()
            if end <= start or not text:
                continue
            lines.extend(timed_pieces(start, end, text, max_line_chars))
        return srt.serialize(lines)


def create_transcription_backend(settings: Settings) -> Optional[TranscriptionBackend]:
    if settings.timing_source == "even":
        return None
    if settings.timing_source != "transcribe":
        raise ConfigurationError(f"Unknown timing source '{settings.timing_source}'; use even or transcribe.")
    api_key = os.getenv(API_KEY_ENV)
    if not api_key:
        raise ConfigurationError(f"{API_KEY_ENV} is not set; transcription timing needs OpenAI.")
    log.info("Transcription backend: OpenAI (%s)", settings.transcription_model)
    return OpenAITranscribeBackend(api_key=api_key, model=settings.transcription_model)
