"""Base interfaces for AI backends (speech-to-text, language model, text-to-speech).

Every concrete backend inherits from one of these abstract base classes,
so the adapters in ``voxline.providers.adapters`` can drive primary and
fallback backends interchangeably.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator


# ---------------------------------------------------------------------------
# Data classes for backend communication
# ---------------------------------------------------------------------------

@dataclass
class Message:
    """A conversation message for the language model."""

    role: str  # "system", "user", "assistant"
    content: str = ""


@dataclass
class TranscriptionHints:
    """Optional context passed along with audio to a transcriber."""

    language: str | None = None
    prompt: str = ""
    sample_rate: int = 16000
    # None: sniff the bytes; "pcm16": known raw PCM; otherwise a container name
    container: str | None = None


# ---------------------------------------------------------------------------
# Abstract Base Classes
# ---------------------------------------------------------------------------

class BaseTranscriber(ABC):
    """Abstract base class for speech-to-text backends.

    Backends receive a complete audio file (already in a container) and
    return its transcript. Connection, authentication and rate-limit
    failures are raised as ProviderUnavailable; anything else as
    TranscriptionError.
    """

    @abstractmethod
    async def transcribe(
        self, audio: bytes, container: str, hints: TranscriptionHints
    ) -> str:
        """Transcribe one utterance.

        Args:
            audio: Encoded audio file bytes.
            container: Container name, e.g. "wav" or "webm".
            hints: Language and prompt hints.

        Returns:
            The transcript (possibly empty).
        """
        ...

    async def close(self) -> None:
        """Clean up any persistent connections. Override if needed."""
        pass

    @property
    def name(self) -> str:
        """Backend name for logging."""
        return self.__class__.__name__


class BaseResponder(ABC):
    """Abstract base class for language-model backends.

    Lifecycle:
        1. __init__(api_key, **config): configure the backend
        2. generate(messages, ...): async iterator of text chunks
        3. close(): clean up any persistent connections
    """

    #: Model used when the requested one is not offered by this backend
    default_model: str = ""
    #: Models this backend is known to serve
    known_models: tuple[str, ...] = ()

    @abstractmethod
    async def generate(
        self,
        messages: list[Message],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 150,
        stream: bool = True,
    ) -> AsyncIterator[str]:
        """Generate a reply.

        Args:
            messages: System prompt followed by the conversation history.
            model: Model identifier, already resolved for this backend.
            temperature: Sampling temperature (0.0 - 2.0).
            max_tokens: Maximum tokens to generate.
            stream: Yield chunks as they arrive instead of one final chunk.

        Yields:
            Text chunks in order.
        """
        ...
        yield  # pragma: no cover

    def resolve_model(self, model: str) -> str:
        """Return ``model`` if this backend serves it, else the backend default."""
        if model in self.known_models:
            return model
        return self.default_model

    async def close(self) -> None:
        """Clean up any persistent connections. Override if needed."""
        pass

    @property
    def name(self) -> str:
        """Backend name for logging."""
        return self.__class__.__name__


class BaseSynthesizer(ABC):
    """Abstract base class for text-to-speech backends."""

    #: Encoding of the returned audio, e.g. "mp3"
    audio_format: str = "mp3"

    @abstractmethod
    async def synthesize(
        self, text: str, voice: str, speed: float = 1.0, language: str | None = None
    ) -> bytes:
        """Synthesize one sentence.

        Args:
            text: The text to speak. Best results with complete sentences.
            voice: Voice name from the closed voice set (alloy, nova, ...).
            speed: Playback speed multiplier.
            language: Script hint such as "ar" when script tuning applied.

        Returns:
            Encoded audio bytes.
        """
        ...

    async def close(self) -> None:
        """Clean up any persistent connections. Override if needed."""
        pass

    @property
    def name(self) -> str:
        """Backend name for logging."""
        return self.__class__.__name__
