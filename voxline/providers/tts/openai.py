"""OpenAI text-to-speech backend.

One request per sentence against the Audio Speech API, returning MP3.
Arabic-script text is sent to the higher-fidelity ``tts-1-hd`` model.

API key: https://platform.openai.com/
"""

from __future__ import annotations

import openai
from loguru import logger
from openai import AsyncOpenAI

from voxline.errors import ProviderUnavailable, SynthesisError
from voxline.providers.base import BaseSynthesizer
from voxline.providers.stt.openai_whisper import UNAVAILABLE_ERRORS


class OpenAISynthesizer(BaseSynthesizer):
    """OpenAI TTS backend.

    Args:
        api_key: OpenAI API key.
        model: Default model (default: "tts-1").
        hd_model: Model used for Arabic-script text (default: "tts-1-hd").
        max_retries: Max API retries (default: 2).
    """

    audio_format = "mp3"

    def __init__(
        self,
        api_key: str,
        model: str = "tts-1",
        hd_model: str = "tts-1-hd",
        max_retries: int = 2,
    ):
        self._model = model
        self._hd_model = hd_model
        self._client = AsyncOpenAI(api_key=api_key, max_retries=max_retries)

    async def synthesize(
        self, text: str, voice: str, speed: float = 1.0, language: str | None = None
    ) -> bytes:
        model = self._hd_model if language == "ar" else self._model
        logger.debug(f"OpenAI TTS request: model={model}, voice={voice}, chars={len(text)}")
        try:
            response = await self._client.audio.speech.create(
                model=model,
                voice=voice,
                input=text,
                speed=speed,
                response_format=self.audio_format,
            )
        except UNAVAILABLE_ERRORS as e:
            raise ProviderUnavailable(str(e), backend="openai") from e
        except openai.OpenAIError as e:
            raise SynthesisError(str(e), backend="openai") from e

        audio = response.content
        if not audio:
            raise SynthesisError("OpenAI TTS returned no audio", backend="openai")
        return audio

    async def close(self) -> None:
        await self._client.close()
