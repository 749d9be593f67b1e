from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime configuration for VoiceStitch.

    All settings are loaded from environment variables with the
    `VOICESTITCH_` prefix and optional `.env` support.

    This class is intentionally flat and explicit to keep runtime
    behavior predictable and debuggable.
    """

    model_config = SettingsConfigDict(
        env_prefix="VOICESTITCH_",
        env_file=".env",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Runtime
    # ------------------------------------------------------------------
    workdir: str = Field(
        default=".voicestitch",
        description="Root directory for generation outputs.",
    )

    # ------------------------------------------------------------------
    # Speech generation
    # ------------------------------------------------------------------
    speech_backend: str = Field(
        default="auto",
        description="Speech backend: auto, openai, edge, or sine.",
    )
    speech_model: str = Field(
        default="gpt-4o-mini-tts",
        description="Speech model name (openai backend).",
    )
    voice: str = Field(
        default="alloy",
        description="Voice identifier passed to the speech backend.",
    )
    style: str = Field(
        default="",
        description="Free-form style/tone instructions for the narrator.",
    )
    speed: float = Field(
        default=1.0,
        description="Narration speed multiplier.",
    )

    # ------------------------------------------------------------------
    # Chunking / throttling
    # ------------------------------------------------------------------
    max_chars_per_chunk: int = Field(
        default=3000,
        description="Maximum characters sent to the speech backend per request.",
    )
    max_lines_per_chunk: int = Field(
        default=60,
        description="Maximum script lines per chunk.",
    )
    max_script_chars: int = Field(
        default=100_000,
        description="Maximum total script length accepted for one run.",
    )
    request_delay_ms: int = Field(
        default=5000,
        description="Delay between consecutive speech requests (rate limiting).",
    )

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------
    silence_threshold: float = Field(
        default=0.03,
        description="Amplitude (fraction of full scale) below which trailing audio counts as silence.",
    )
    min_tail_ms: int = Field(
        default=300,
        description="Audio kept after the last non-silent frame when trimming.",
    )

    # ------------------------------------------------------------------
    # Subtitles
    # ------------------------------------------------------------------
    timing_source: str = Field(
        default="even",
        description="Line timing source: even (interpolated) or transcribe.",
    )
    transcription_model: str = Field(
        default="whisper-1",
        description="Transcription model (transcribe timing source).",
    )
    srt_split_char_count: int = Field(
        default=25,
        description="Target characters per subtitle line for transcribed timing.",
    )
    edit_mode: str = Field(
        default="ripple",
        description="Timestamp edit mode: ripple or clamp.",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )

    # ------------------------------------------------------------------
    # Public / safe export
    # ------------------------------------------------------------------
    def to_public_dict(self) -> dict:
        """
        Return a dictionary of non-sensitive settings suitable
        for logging or CLI display.
        """
        return {
            "workdir": self.workdir,
            "speech_backend": self.speech_backend,
            "speech_model": self.speech_model,
            "voice": self.voice,
            "style": self.style,
            "speed": self.speed,
            "max_chars_per_chunk": self.max_chars_per_chunk,
            "max_lines_per_chunk": self.max_lines_per_chunk,
            "max_script_chars": self.max_script_chars,
            "request_delay_ms": self.request_delay_ms,
            "silence_threshold": self.silence_threshold,
            "min_tail_ms": self.min_tail_ms,
            "timing_source": self.timing_source,
            "transcription_model": self.transcription_model,
            "srt_split_char_count": self.srt_split_char_count,
            "edit_mode": self.edit_mode,
            "log_level": self.log_level,
        }
