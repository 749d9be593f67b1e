from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    CONFIG = "config"
    DEPENDENCY = "dependency"
    RUNTIME = "runtime"
    INPUT = "input"


DEFAULT_EXIT_CODES: dict[ErrorCategory, int] = {
    ErrorCategory.RUNTIME: 1,
    ErrorCategory.CONFIG: 2,
    ErrorCategory.DEPENDENCY: 3,
    ErrorCategory.INPUT: 4,
}


@dataclass
class VoiceStitchError(Exception):
    """Base exception for VoiceStitch with standardized categories."""

    message: str
    category: ErrorCategory = ErrorCategory.RUNTIME
    exit_code: int | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.exit_code is None:
            self.exit_code = DEFAULT_EXIT_CODES.get(self.category, 1)

    def label(self) -> str:
        return {
            ErrorCategory.CONFIG: "Configuration error",
            ErrorCategory.DEPENDENCY: "Dependency error",
            ErrorCategory.RUNTIME: "Runtime error",
            ErrorCategory.INPUT: "Input error",
        }.get(self.category, "Error")


class DependencyMissingError(VoiceStitchError):
    """Raised when a required external dependency is missing."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(
            message,
            category=ErrorCategory.DEPENDENCY,
            exit_code=exit_code,
        )


class ConfigurationError(VoiceStitchError):
    """Raised when configuration is invalid."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(
            message,
            category=ErrorCategory.CONFIG,
            exit_code=exit_code,
        )


class ValidationError(VoiceStitchError):
    """Raised when input violates a budget or precondition (e.g. script too long)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, category=ErrorCategory.INPUT)


class FormatError(VoiceStitchError):
    """Raised when a timecode string is not in canonical HH:MM:SS,mmm form."""

    def __init__(self, message: str) -> None:
        super().__init__(message, category=ErrorCategory.INPUT)


class ParseError(VoiceStitchError):
    """Raised for a malformed timed-text block."""

    def __init__(self, message: str, *, block_number: int) -> None:
        self.block_number = block_number
        super().__init__(
            f"Block {block_number}: {message}",
            category=ErrorCategory.INPUT,
        )


class LineNotFoundError(VoiceStitchError):
    def __init__(self, line_id: str) -> None:
        self.line_id = line_id
        super().__init__(f"No subtitle line with id '{line_id}'.", category=ErrorCategory.INPUT)


class CancelledError(VoiceStitchError):
    """Raised when a pipeline run is aborted through its cancellation token."""

    def __init__(self, message: str = "Generation was cancelled.") -> None:
        super().__init__(message)


class ChunkGenerationError(VoiceStitchError):
    """
    Audio generation failed for one chunk.

    `fatal` is True when the failure halts the run (first chunk, or an
    explicit single-chunk regeneration); later chunks in a full run are
    recorded and skipped instead.
    """

    def __init__(self, message: str, *, chunk_index: int, fatal: bool) -> None:
        self.chunk_index = chunk_index
        self.fatal = fatal
        super().__init__(f"Chunk {chunk_index + 1}: {message}")


class EmptyReconstructionError(VoiceStitchError):
    def __init__(
        self,
        message: str = "Reconstruction produced no audio: no edited line maps to an original span.",
    ) -> None:
        super().__init__(message)


class FormatMismatchError(VoiceStitchError):
    """Raised when audio buffers disagree on sample rate or channel count."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
