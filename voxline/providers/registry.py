"""Provider registry: factory for transcription, generation and synthesis backends.

Supports registration of backend classes by name, with lazy imports so
that an SDK is only imported once a backend that needs it is created.
``build_adapters`` turns a CoreConfig into the three adapters a
SessionRegistry is constructed with.
"""

from __future__ import annotations

import importlib
from typing import Any, Type

from loguru import logger

from voxline.config import CoreConfig
from voxline.providers.adapters import Responder, Synthesizer, Transcriber
from voxline.providers.base import BaseResponder, BaseSynthesizer, BaseTranscriber

# backend name -> credentials field; None means no key needed
BACKEND_KEYS: dict[str, str | None] = {
    "openai": "openai_api_key",
    "groq": "groq_api_key",
    "anthropic": "anthropic_api_key",
    "edge": None,
}


class ProviderRegistry:
    """Factory for creating backend instances.

    Backends are registered by name and created on demand. Built-in
    backends are registered automatically; custom ones can be added via
    register_transcriber/register_responder/register_synthesizer.

    Example:
        registry = ProviderRegistry()
        stt = registry.create_transcriber("groq", api_key="...")
        llm = registry.create_responder("anthropic", api_key="...")
        tts = registry.create_synthesizer("edge")
    """

    def __init__(self) -> None:
        self._transcribers: dict[str, Type[BaseTranscriber] | str] = {}
        self._responders: dict[str, Type[BaseResponder] | str] = {}
        self._synthesizers: dict[str, Type[BaseSynthesizer] | str] = {}
        self._register_builtins()

    def _register_builtins(self) -> None:
        """Register built-in backends with lazy import paths."""
        # Speech-to-text
        self._transcribers["openai"] = (
            "voxline.providers.stt.openai_whisper:OpenAIWhisperTranscriber"
        )
        self._transcribers["groq"] = "voxline.providers.stt.groq_whisper:GroqWhisperTranscriber"

        # Language models
        self._responders["openai"] = "voxline.providers.llm.openai:OpenAIResponder"
        self._responders["groq"] = "voxline.providers.llm.groq:GroqResponder"
        self._responders["anthropic"] = "voxline.providers.llm.anthropic:AnthropicResponder"

        # Text-to-speech
        self._synthesizers["openai"] = "voxline.providers.tts.openai:OpenAISynthesizer"
        self._synthesizers["edge"] = "voxline.providers.tts.edge:EdgeSynthesizer"

    def _resolve_class(self, ref: Type | str) -> Type:
        """Resolve a class reference, importing lazily if needed."""
        if isinstance(ref, str):
            module_path, class_name = ref.rsplit(":", 1)
            module = importlib.import_module(module_path)
            return getattr(module, class_name)
        return ref

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_transcriber(self, name: str, cls: Type[BaseTranscriber]) -> None:
        """Register a custom speech-to-text backend class."""
        self._transcribers[name] = cls
        logger.debug(f"Registered STT backend: {name}")

    def register_responder(self, name: str, cls: Type[BaseResponder]) -> None:
        """Register a custom language-model backend class."""
        self._responders[name] = cls
        logger.debug(f"Registered LLM backend: {name}")

    def register_synthesizer(self, name: str, cls: Type[BaseSynthesizer]) -> None:
        """Register a custom text-to-speech backend class."""
        self._synthesizers[name] = cls
        logger.debug(f"Registered TTS backend: {name}")

    # ------------------------------------------------------------------
    # Factory methods
    # ------------------------------------------------------------------

    def _create(self, table: dict[str, Any], kind: str, name: str, **kwargs: Any) -> Any:
        if name not in table:
            available = ", ".join(table.keys())
            raise ValueError(f"Unknown {kind} backend '{name}'. Available: {available}")
        cls = self._resolve_class(table[name])
        logger.info(f"Creating {kind} backend: {name}")
        return cls(**kwargs)

    def create_transcriber(self, name: str, **kwargs: Any) -> BaseTranscriber:
        """Create a speech-to-text backend.

        Raises:
            ValueError: If the backend name is not registered.
        """
        return self._create(self._transcribers, "STT", name, **kwargs)

    def create_responder(self, name: str, **kwargs: Any) -> BaseResponder:
        """Create a language-model backend.

        Raises:
            ValueError: If the backend name is not registered.
        """
        return self._create(self._responders, "LLM", name, **kwargs)

    def create_synthesizer(self, name: str, **kwargs: Any) -> BaseSynthesizer:
        """Create a text-to-speech backend.

        Raises:
            ValueError: If the backend name is not registered.
        """
        return self._create(self._synthesizers, "TTS", name, **kwargs)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def available_transcribers(self) -> list[str]:
        return list(self._transcribers.keys())

    @property
    def available_responders(self) -> list[str]:
        return list(self._responders.keys())

    @property
    def available_synthesizers(self) -> list[str]:
        return list(self._synthesizers.keys())


# ---------------------------------------------------------------------------
# Adapter assembly
# ---------------------------------------------------------------------------

def _credentials_for(config: CoreConfig, name: str) -> dict[str, Any] | None:
    """Constructor kwargs for a built-in backend, or None when its key is missing."""
    field = BACKEND_KEYS.get(name)
    if field is None:
        return {}
    key = getattr(config.credentials, field)
    if not key:
        return None
    return {"api_key": key}


def _build_table(
    config: CoreConfig, names: list[str], factory: Any, kind: str
) -> dict[str, Any]:
    table: dict[str, Any] = {}
    for name in names:
        kwargs = _credentials_for(config, name)
        if kwargs is None:
            logger.warning(f"Skipping {kind} backend '{name}': no API key configured")
            continue
        table[name] = factory(name, **kwargs)
    if not table:
        raise ValueError(f"No usable {kind} backend; set an API key for one of: {', '.join(names)}")
    return table


def build_adapters(
    config: CoreConfig, registry: ProviderRegistry | None = None
) -> tuple[Transcriber, Responder, Synthesizer]:
    """Create every backend that has credentials and wrap them in adapters.

    All backends of a kind are built (not just the configured primary)
    because a session may switch backend with a config update.
    """
    registry = registry or ProviderRegistry()

    transcribers = _build_table(
        config, registry.available_transcribers, registry.create_transcriber, "STT"
    )
    responders = _build_table(
        config, registry.available_responders, registry.create_responder, "LLM"
    )
    synthesizers = _build_table(
        config, registry.available_synthesizers, registry.create_synthesizer, "TTS"
    )

    return (
        Transcriber(transcribers, fallback=config.backends.stt_fallback),
        Responder(responders, fallback=config.backends.llm_fallback),
        Synthesizer(
            synthesizers,
            primary=config.backends.tts,
            fallback=config.backends.tts_fallback,
        ),
    )
