"""OpenAI Whisper speech-to-text backend.

Uploads one complete utterance to the Audio Transcriptions API.

API key: https://platform.openai.com/
"""

from __future__ import annotations

import openai
from loguru import logger
from openai import AsyncOpenAI

from voxline.audio.formats import CONTAINER_EXTENSIONS
from voxline.errors import ProviderUnavailable, TranscriptionError
from voxline.providers.base import BaseTranscriber, TranscriptionHints

# Failures that say "this backend is unreachable right now"
UNAVAILABLE_ERRORS = (
    openai.APIConnectionError,
    openai.AuthenticationError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIWhisperTranscriber(BaseTranscriber):
    """OpenAI Whisper transcription backend.

    Args:
        api_key: OpenAI API key.
        model: Model identifier (default: "whisper-1").
        temperature: Decoding temperature (default: 0.2).
        base_url: Optional custom API base URL.
        max_retries: SDK-level retries (default: 2).
    """

    def __init__(
        self,
        api_key: str,
        model: str = "whisper-1",
        temperature: float = 0.2,
        base_url: str | None = None,
        max_retries: int = 2,
    ):
        self._model = model
        self._temperature = temperature
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=max_retries)

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

        logger.debug(f"Whisper request: model={self._model}, file={filename}, bytes={len(audio)}")
        try:
            result = await self._client.audio.transcriptions.create(**kwargs)
        except UNAVAILABLE_ERRORS as e:
            raise ProviderUnavailable(str(e), backend="openai") from e
        except openai.OpenAIError as e:
            raise TranscriptionError(str(e), backend="openai") from e
        return (result.text or "").strip()

    async def close(self) -> None:
        await self._client.close()
