"""Error taxonomy for the voice pipeline.

Every failure that can surface to a transport is a VoxlineError subclass
carrying the ErrorKind used in the outbound ``error`` event.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    FORMAT = "format"
    TRANSCRIPTION = "transcription"
    NO_SPEECH = "no_speech"
    GENERATION = "generation"
    SYNTHESIS = "synthesis"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    BUSY = "busy"


class VoxlineError(Exception):
    """Base class for pipeline errors."""

    kind: ErrorKind = ErrorKind.TRANSCRIPTION

    def __init__(self, message: str = "", *, backend: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.backend = backend


class FormatError(VoxlineError):
    """Unrecognized or corrupt audio container."""

    kind = ErrorKind.FORMAT


class TranscriptionError(VoxlineError):
    """Speech-to-text failed on every configured backend."""

    kind = ErrorKind.TRANSCRIPTION


class GenerationError(VoxlineError):
    """The language model could not produce a reply."""

    kind = ErrorKind.GENERATION


class SynthesisError(VoxlineError):
    """Text-to-speech failed for a single sentence."""

    kind = ErrorKind.SYNTHESIS


class ProviderUnavailable(VoxlineError):
    """A backend could not be reached. Adapters answer this with one fallback attempt."""

    kind = ErrorKind.PROVIDER_UNAVAILABLE


class BusyError(VoxlineError):
    """A segment arrived while the session could not accept more work."""

    kind = ErrorKind.BUSY
