"""Groq-hosted Whisper speech-to-text backend.

Same request shape as OpenAI's transcription endpoint, served by Groq's
low-latency inference (``whisper-large-v3``).
"""

from __future__ import annotations

import groq
from groq import AsyncGroq
from loguru import logger

from voxline.audio.formats import CONTAINER_EXTENSIONS
from voxline.errors import ProviderUnavailable, TranscriptionError
from voxline.providers.base import BaseTranscriber, TranscriptionHints

UNAVAILABLE_ERRORS = (
    groq.APIConnectionError,
    groq.AuthenticationError,
    groq.RateLimitError,
    groq.InternalServerError,
)


class GroqWhisperTranscriber(BaseTranscriber):
    """Groq Whisper transcription backend.

    Args:
        api_key: Groq API key.
        model: Model identifier (default: "whisper-large-v3").
        temperature: Decoding temperature (default: 0.0).
        timeout: Request timeout in seconds (default: 30).
    """

    def __init__(
        self,
        api_key: str,
        model: str = "whisper-large-v3",
        temperature: float = 0.0,
        timeout: float = 30.0,
        max_retries: int = 2,
    ):
        self._model = model
        self._temperature = temperature
        self._client = AsyncGroq(api_key=api_key, timeout=timeout, max_retries=max_retries)

    async def transcribe(
        self, audio: bytes, container: str, hints: TranscriptionHints
    ) -> str:
        filename = f"audio.{CONTAINER_EXTENSIONS.get(container, container)}"
        kwargs = {
            "model": self._model,
            "file": (filename, audio),
            "temperature": self._temperature,
        }
        if hints.language:
            kwargs["language"] = hints.language
        if hints.prompt:
            kwargs["prompt"] = hints.prompt

        logger.debug(f"Groq Whisper request: model={self._model}, bytes={len(audio)}")
        try:
            result = await self._client.audio.transcriptions.create(**kwargs)
        except UNAVAILABLE_ERRORS as e:
            raise ProviderUnavailable(str(e), backend="groq") from e
        except groq.GroqError as e:
            raise TranscriptionError(str(e), backend="groq") from e
        return (result.text or "").strip()

    async def close(self) -> None:
        await self._client.close()
