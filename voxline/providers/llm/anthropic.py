"""Anthropic Claude language-model backend.

Uses the Anthropic Messages API. The system prompt travels outside the
message array, so it is split off before the request.

API key: https://console.anthropic.com/
"""

from __future__ import annotations

from typing import Any, AsyncIterator

import anthropic
from anthropic import AsyncAnthropic
from loguru import logger

from voxline.errors import GenerationError, ProviderUnavailable
from voxline.providers.base import BaseResponder, Message

UNAVAILABLE_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.AuthenticationError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


class AnthropicResponder(BaseResponder):
    """Anthropic Claude backend.

    Args:
        api_key: Anthropic API key.
        max_retries: Max API retries (default: 2).
    """

    default_model = "claude-sonnet-4-20250514"
    known_models = ("claude-sonnet-4-20250514", "claude-3-5-haiku-latest")

    def __init__(self, api_key: str, max_retries: int = 2):
        self._client = AsyncAnthropic(api_key=api_key, max_retries=max_retries)

    async def generate(
        self,
        messages: list[Message],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 150,
        stream: bool = True,
    ) -> AsyncIterator[str]:
        system_prompt, anthropic_messages = self._convert_messages(messages)
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": anthropic_messages,
            "max_tokens": max_tokens,
            "temperature": min(temperature, 1.0),
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        logger.debug(
            f"Anthropic request: model={model}, messages={len(anthropic_messages)}, stream={stream}"
        )

        try:
            if stream:
                async with self._client.messages.stream(**kwargs) as response:
                    async for text in response.text_stream:
                        if text:
                            yield text
            else:
                message = await self._client.messages.create(**kwargs)
                text = "".join(
                    block.text for block in message.content if block.type == "text"
                )
                if text:
                    yield text
        except UNAVAILABLE_ERRORS as e:
            raise ProviderUnavailable(str(e), backend="anthropic") from e
        except anthropic.AnthropicError as e:
            raise GenerationError(str(e), backend="anthropic") from e

    async def close(self) -> None:
        """Close the Anthropic client."""
        await self._client.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _convert_messages(
        self, messages: list[Message]
    ) -> tuple[str, list[dict[str, Any]]]:
        """Split off the system prompt and merge consecutive same-role turns.

        The Messages API requires alternating roles starting with a user
        turn.
        """
        system_prompt = ""
        converted: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                system_prompt = msg.content
                continue
            if converted and converted[-1]["role"] == msg.role:
                converted[-1]["content"] += "\n" + msg.content
                continue
            if not converted and msg.role != "user":
                continue
            converted.append({"role": msg.role, "content": msg.content})

        return system_prompt, converted
