"""Provider adapters: the pipeline's view of transcription, generation and synthesis.

Each adapter wraps a set of named backends and picks the primary one
from the session's ProviderConfig. The adapters own the cross-backend
policy:

- Transcriber: container sniffing / WAV wrapping, one retry on the
  fallback backend for any failure.
- Responder: history -> messages, model resolution, buffered or
  streamed output, one fallback attempt when the primary is unavailable
  before it produced anything.
- Synthesizer: script tuning, one fallback attempt when the primary is
  unavailable.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, AsyncIterator, Iterable

from loguru import logger

from voxline.audio.formats import as_container, wrap_pcm16_wav
from voxline.config import ProviderConfig
from voxline.errors import (
    GenerationError,
    ProviderUnavailable,
    SynthesisError,
    TranscriptionError,
)
from voxline.providers.base import (
    BaseResponder,
    BaseSynthesizer,
    BaseTranscriber,
    Message,
    TranscriptionHints,
)
from voxline.providers.script import tune_for_script

if TYPE_CHECKING:
    from voxline.pipeline.history import Turn


def _pick(backends: dict, requested: str | None, fallback: str | None, kind: str):
    """Return (primary_name, fallback_name or None) for a backend table."""
    if not backends:
        raise ValueError(f"No {kind} backends configured")
    primary = requested if requested in backends else next(iter(backends))
    if requested and requested != primary:
        logger.warning(f"{kind} backend '{requested}' not configured, using '{primary}'")
    secondary = fallback if fallback in backends and fallback != primary else None
    return primary, secondary


# ---------------------------------------------------------------------------
# Transcription
# ---------------------------------------------------------------------------

class Transcriber:
    """Speech-to-text with format handling and a single fallback retry.

    Args:
        backends: Backend instances by name (e.g. {"openai": ..., "groq": ...}).
        fallback: Name of the backend tried after the primary fails.
    """

    def __init__(self, backends: dict[str, BaseTranscriber], fallback: str | None = None):
        self.backends = backends
        self.fallback = fallback

    async def close(self) -> None:
        for backend in self.backends.values():
            await backend.close()

    async def transcribe(
        self,
        audio: bytes,
        hints: TranscriptionHints | None = None,
        backend: str | None = None,
    ) -> str:
        """Transcribe one utterance.

        Raises:
            FormatError: The bytes are a corrupt container or odd-length PCM.
            TranscriptionError: Empty audio, or both backends failed.
        """
        hints = hints or TranscriptionHints()
        if not audio:
            raise TranscriptionError("Empty audio")

        if hints.container == "pcm16":
            payload, container = wrap_pcm16_wav(audio, hints.sample_rate), "wav"
        elif hints.container:
            payload, container = audio, hints.container
        else:
            payload, container = as_container(audio, hints.sample_rate)

        primary, secondary = _pick(self.backends, backend, self.fallback, "STT")
        try:
            return await self.backends[primary].transcribe(payload, container, hints)
        except Exception as e:
            logger.warning(f"STT backend '{primary}' failed: {e}")
            if secondary is None:
                raise TranscriptionError(str(e), backend=primary) from e
            first_error = e

        logger.info(f"Retrying transcription on fallback '{secondary}'")
        try:
            return await self.backends[secondary].transcribe(payload, container, hints)
        except Exception as e:
            logger.error(f"STT fallback '{secondary}' failed: {e}")
            raise TranscriptionError(
                f"All transcription backends failed ({primary}: {first_error}; {secondary}: {e})",
                backend=secondary,
            ) from e


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

def build_messages(history: Iterable[Turn], system_prompt: str) -> list[Message]:
    """System prompt followed by the conversation turns."""
    messages = [Message(role="system", content=system_prompt)] if system_prompt else []
    messages.extend(Message(role=turn.role, content=turn.text) for turn in history)
    return messages


class Responder:
    """Language-model generation with model resolution and fallback.

    Args:
        backends: Backend instances by name.
        fallback: Name of the backend tried when the primary is unavailable.
    """

    def __init__(self, backends: dict[str, BaseResponder], fallback: str | None = None):
        self.backends = backends
        self.fallback = fallback

    async def close(self) -> None:
        for backend in self.backends.values():
            await backend.close()

    async def generate(
        self,
        history: Iterable[Turn],
        system_prompt: str,
        config: ProviderConfig,
    ) -> AsyncIterator[str]:
        """Yield the reply text: many chunks when streaming, one otherwise.

        Raises:
            GenerationError: The reply could not be produced.
        """
        messages = build_messages(history, system_prompt)
        primary, secondary = _pick(self.backends, config.llm_backend, self.fallback, "LLM")

        produced = False
        try:
            async for chunk in self._run(primary, messages, config):
                produced = True
                yield chunk
            return
        except ProviderUnavailable as e:
            if produced or secondary is None:
                raise GenerationError(str(e), backend=primary) from e
            logger.warning(f"LLM backend '{primary}' unavailable ({e}), trying '{secondary}'")
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(str(e), backend=primary) from e

        try:
            async for chunk in self._run(secondary, messages, config):
                yield chunk
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(str(e), backend=secondary) from e

    async def _run(
        self, name: str, messages: list[Message], config: ProviderConfig
    ) -> AsyncIterator[str]:
        backend = self.backends[name]
        model = backend.resolve_model(config.llm_model)
        if model != config.llm_model:
            logger.info(f"Model '{config.llm_model}' not offered by {name}, using '{model}'")
        async for chunk in backend.generate(
            messages,
            model=model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            stream=config.streaming,
        ):
            yield chunk


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------

class Synthesizer:
    """Text-to-speech with script tuning and fallback.

    Args:
        backends: Backend instances by name (e.g. {"openai": ..., "edge": ...}).
        primary: Name of the backend used first.
        fallback: Name of the backend tried when the primary is unavailable.
    """

    def __init__(
        self,
        backends: dict[str, BaseSynthesizer],
        primary: str | None = None,
        fallback: str | None = None,
    ):
        self.backends = backends
        self.primary = primary
        self.fallback = fallback

    async def close(self) -> None:
        for backend in self.backends.values():
            await backend.close()

    async def synthesize(self, text: str, voice: str, speed: float = 1.0) -> bytes:
        """Speak one sentence.

        Raises:
            SynthesisError: The sentence could not be synthesized.
        """
        request = tune_for_script(text, voice, speed)
        if request.language:
            logger.debug(
                f"Script tuning applied: language={request.language}, "
                f"voice={request.voice}, speed={request.speed}"
            )

        primary, secondary = _pick(self.backends, self.primary, self.fallback, "TTS")
        try:
            return await self.backends[primary].synthesize(
                request.text, request.voice, request.speed, request.language
            )
        except ProviderUnavailable as e:
            if secondary is None:
                raise SynthesisError(str(e), backend=primary) from e
            logger.warning(f"TTS backend '{primary}' unavailable ({e}), trying '{secondary}'")
        except SynthesisError:
            raise
        except Exception as e:
            raise SynthesisError(str(e), backend=primary) from e

        try:
            return await self.backends[secondary].synthesize(
                request.text, request.voice, request.speed, request.language
            )
        except SynthesisError:
            raise
        except Exception as e:
            raise SynthesisError(str(e), backend=secondary) from e
