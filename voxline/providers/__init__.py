"""Voxline AI providers - transcription, generation and synthesis backends.

Backends implement the narrow interfaces in ``voxline.providers.base``;
the pipeline only talks to the adapters, which add fallback, format
detection and script tuning on top:

- Transcriber: OpenAI Whisper, Groq Whisper
- Responder: Groq, OpenAI, Anthropic
- Synthesizer: OpenAI TTS, Edge TTS

Usage:
    from voxline.providers import build_adapters

    transcriber, responder, synthesizer = build_adapters(config)
"""

from voxline.providers.adapters import Responder, Synthesizer, Transcriber
from voxline.providers.base import BaseResponder, BaseSynthesizer, BaseTranscriber
from voxline.providers.registry import ProviderRegistry, build_adapters

__all__ = [
    "BaseTranscriber",
    "BaseResponder",
    "BaseSynthesizer",
    "Transcriber",
    "Responder",
    "Synthesizer",
    "ProviderRegistry",
    "build_adapters",
]
