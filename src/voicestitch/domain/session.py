"""
Editing session: an append-only history of generation results with one
active entry, the live (editable) subtitle list of that entry and its
immutable original snapshot.
"""

from __future__ import annotations

from typing import Optional

from voicestitch.config.settings import Settings
from voicestitch.domain.models import EditMode, GenerationResult, ResultKind, SubtitleLine
from voicestitch.exceptions import ConfigurationError, ValidationError
from voicestitch.pipeline import CancellationToken, EventCallback, GenerationPipeline, PipelineOptions
from voicestitch.services.reconstruction import reconstruct
from voicestitch.services.speech import create_speech_backend
from voicestitch.services.transcription import TranscriptionBackend, create_transcription_backend
from voicestitch.subtitles import editing, srt
from voicestitch.subtitles.anomalies import detect_anomalies, normalize_gaps, summarize_anomalies
from voicestitch.utils.logging import get_logger

log = get_logger(__name__)


class Session:
    def __init__(
        self,
        pipeline: GenerationPipeline,
        *,
        mode: EditMode | str = EditMode.RIPPLE,
        transcriber: Optional[TranscriptionBackend] = None,
    ) -> None:
        self.pipeline = pipeline
        self.mode = EditMode(mode)
        self.transcriber = transcriber or pipeline.transcriber
        self.history: list[GenerationResult] = []
        self.lines: list[SubtitleLine] = []
        self.original: list[SubtitleLine] = []
        self.has_timestamp_edits = False
        self._active_id: Optional[str] = None
        self._token: Optional[CancellationToken] = None

    @classmethod
    def from_settings(cls, settings: Settings, *, on_event: Optional[EventCallback] = None) -> "Session":
        """Build the backends, pipeline and edit mode from resolved settings."""
        try:
            mode = EditMode(settings.edit_mode.lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown edit mode '{settings.edit_mode}'; use ripple or clamp."
            ) from None
        transcriber = create_transcription_backend(settings)
        pipeline = GenerationPipeline(
            create_speech_backend(settings),
            transcriber=transcriber,
            options=PipelineOptions.from_settings(settings),
            on_event=on_event,
        )
        return cls(pipeline, mode=mode, transcriber=transcriber)

    @property
    def active(self) -> Optional[GenerationResult]:
        for result in self.history:
            if result.id == self._active_id:
                return result
        return None

    def _require_active(self) -> GenerationResult:
        result = self.active
        if result is None:
            raise ValidationError("No generation in this session yet.")
        return result

    # --- history -----------------------------------------------------------

    def add_result(self, result: GenerationResult) -> GenerationResult:
        self.history.append(result)
        return self.activate(result.id)

    def activate(self, result_id: str) -> GenerationResult:
        for result in self.history:
            if result.id == result_id:
                self._active_id = result.id
                self.lines = result.lines()
                self.original = result.original_lines()
                self.has_timestamp_edits = False
                return result
        raise ValidationError(f"No generation with id '{result_id}' in this session.")

    # --- generation --------------------------------------------------------

    def cancel(self) -> None:
        if self._token is not None:
            self._token.cancel()

    async def _run(self, coro_factory) -> GenerationResult:
        # A new request supersedes any in-flight one.
        self.cancel()
        token = CancellationToken()
        self._token = token
        try:
            result = await coro_factory(token)
        finally:
            if self._token is token:
                self._token = None
        return self.add_result(result)

    async def generate(self, script: str) -> GenerationResult:
        return await self._run(lambda token: self.pipeline.run(script, token))

    async def regenerate_chunk(self, chunk_index: int) -> GenerationResult:
        active = self._require_active()
        return await self._run(lambda token: self.pipeline.regenerate_chunk(active, chunk_index, token))

    async def retime(self) -> GenerationResult:
        """Replace the active result's timings with a transcription of its whole track."""
        active = self._require_active()
        if self.transcriber is None:
            raise ConfigurationError("No transcription backend configured; set timing_source=transcribe.")
        transcriber = self.transcriber
        max_line_chars = self.pipeline.options.srt_split_char_count

        async def _retime(token: CancellationToken) -> GenerationResult:
            srt_text = await token.guard(
                transcriber.transcribe(
                    audio=active.track,
                    max_line_chars=max_line_chars,
                    reference_text=active.script_text,
                )
            )
            parsed = srt.parse(srt_text or "")
            if not parsed:
                raise ValidationError("Transcription returned no subtitle lines.")
            lines = detect_anomalies(normalize_gaps(parsed), active.chunks, active.failed_chunk_indices)
            return GenerationResult.create(
                track=active.track,
                lines=srt.reindex(lines),
                failed_chunk_indices=active.failed_chunk_indices,
                chunks=active.chunks,
                chunk_texts=active.chunk_texts,
                script_text=active.script_text,
                kind=ResultKind.RETIMED,
            )

        return await self._run(_retime)

    def reconstruct(self) -> GenerationResult:
        active = self._require_active()
        result = reconstruct(active.track, self.lines, self.original, script_text=active.script_text)
        return self.add_result(result)

    # --- edits -------------------------------------------------------------

    def update_line(
        self,
        line_id: str,
        *,
        start_ms: Optional[int] = None,
        end_ms: Optional[int] = None,
        text: Optional[str] = None,
    ) -> None:
        touched = editing.update_line(
            self.lines, line_id, start_ms=start_ms, end_ms=end_ms, text=text, mode=self.mode
        )
        if touched:
            self.has_timestamp_edits = True

    def remove_line(self, line_id: str) -> SubtitleLine:
        removed = editing.remove_line(self.lines, line_id)
        self.has_timestamp_edits = True
        return removed

    def split_line(self, line_id: str, char_offset: int) -> tuple[SubtitleLine, SubtitleLine]:
        halves = editing.split_line(self.lines, line_id, char_offset)
        self.has_timestamp_edits = True
        return halves

    def merge_line(self, index: int, direction: str) -> bool:
        return editing.merge_line(self.lines, index, direction)

    def bulk_shift(self, delta_ms: int) -> None:
        editing.bulk_shift(self.lines, delta_ms)
        if delta_ms:
            self.has_timestamp_edits = True

    def reset(self) -> None:
        self.lines = editing.reset(self.original)
        self.has_timestamp_edits = False

    # --- analysis / export -------------------------------------------------

    def detect(self) -> dict[str, int]:
        active = self._require_active()
        self.lines = srt.reindex(
            detect_anomalies(self.lines, active.chunks, active.failed_chunk_indices)
        )
        summary = summarize_anomalies(self.lines)
        log.info("Anomaly check: %s", summary)
        return summary

    def export_srt(self) -> str:
        return srt.serialize(self.lines)
