"""Groq language-model backend.

Groq serves open-weight models behind an OpenAI-compatible chat API with
very low time-to-first-token, which makes it the default for voice.
"""

from __future__ import annotations

from typing import Any, AsyncIterator

import groq
from groq import AsyncGroq
from loguru import logger

from voxline.errors import GenerationError, ProviderUnavailable
from voxline.providers.base import BaseResponder, Message
from voxline.providers.stt.groq_whisper import UNAVAILABLE_ERRORS


class GroqResponder(BaseResponder):
    """Groq chat-completions backend.

    Args:
        api_key: Groq API key.
        timeout: Request timeout in seconds (default: 30).
        max_retries: Max API retries (default: 2).
    """

    default_model = "llama-3.1-8b-instant"
    known_models = (
        "llama-3.1-8b-instant",
        "llama-3.3-70b-versatile",
        "llama3-70b-8192",
        "llama3-8b-8192",
        "gemma2-9b-it",
    )

    def __init__(self, api_key: str, timeout: float = 30.0, max_retries: int = 2):
        self._client = AsyncGroq(api_key=api_key, timeout=timeout, max_retries=max_retries)

    async def generate(
        self,
        messages: list[Message],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 150,
        stream: bool = True,
    ) -> AsyncIterator[str]:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        logger.debug(f"Groq request: model={model}, messages={len(messages)}, stream={stream}")

        try:
            if stream:
                response = await self._client.chat.completions.create(stream=True, **kwargs)
                async for chunk in response:
                    delta = chunk.choices[0].delta if chunk.choices else None
                    if delta and delta.content:
                        yield delta.content
            else:
                completion = await self._client.chat.completions.create(**kwargs)
                text = completion.choices[0].message.content or ""
                if text:
                    yield text
        except UNAVAILABLE_ERRORS as e:
            raise ProviderUnavailable(str(e), backend="groq") from e
        except groq.GroqError as e:
            raise GenerationError(str(e), backend="groq") from e

    async def close(self) -> None:
        await self._client.close()
