"""OpenAI GPT language-model backend.

Uses the OpenAI Chat Completions API, streaming token deltas when asked
to and returning one buffered reply otherwise.

API key: https://platform.openai.com/
"""

from __future__ import annotations

from typing import Any, AsyncIterator

import openai
from loguru import logger
from openai import AsyncOpenAI

from voxline.errors import GenerationError, ProviderUnavailable
from voxline.providers.base import BaseResponder, Message
from voxline.providers.stt.openai_whisper import UNAVAILABLE_ERRORS


class OpenAIResponder(BaseResponder):
    """OpenAI GPT backend.

    Args:
        api_key: OpenAI API key.
        base_url: Optional custom API base URL (for Azure, local models, etc.).
        organization: Optional OpenAI organization ID.
        max_retries: Max API retries (default: 2).
    """

    default_model = "gpt-4o-mini"
    known_models = ("gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo")

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        organization: str | None = None,
        max_retries: int = 2,
    ):
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            organization=organization,
            max_retries=max_retries,
        )

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
        logger.debug(f"OpenAI request: model={model}, messages={len(messages)}, stream={stream}")

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
            raise ProviderUnavailable(str(e), backend="openai") from e
        except openai.OpenAIError as e:
            raise GenerationError(str(e), backend="openai") from e

    async def close(self) -> None:
        """Close the OpenAI client."""
        await self._client.close()
