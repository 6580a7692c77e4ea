"""Voxline - real-time voice conversation core.

Turns a stream of microphone audio into spoken replies: energy-based
voice activity detection cuts utterances, which are transcribed, answered
by a language model and synthesized back to speech, with barge-in and
per-session conversation history.

Quick start (server):
    $ pip install voxline
    $ voxline init            # generates voxline.yaml
    $ voxline serve --config voxline.yaml

Quick start (programmatic):
    from voxline import SessionRegistry, build_adapters, load_config

    config = load_config("voxline.yaml")
    registry = SessionRegistry(config, *build_adapters(config))

    await registry.on_audio_chunk("caller-1", pcm_frame)
    async for event in registry.events("caller-1"):
        print(event.to_wire())
"""

__version__ = "0.1.0"

# Core
from voxline.config import CoreConfig, ProviderConfig, VADConfig, load_config
from voxline.errors import ErrorKind, VoxlineError
from voxline.session import Session, SessionRegistry

# Events
from voxline.core.events import (
    Audio,
    Complete,
    ErrorEvent,
    Event,
    EventType,
    InboundMessage,
    Interrupted,
    Partial,
    Response,
    Transcript,
    parse_inbound,
)

# Audio
from voxline.audio.segmenter import AudioSegment, Segmenter
from voxline.audio.vad import VoiceActivityDetector

# Pipeline
from voxline.pipeline import ConversationHistory, ConversationPipeline, PipelineState

# Providers
from voxline.providers import ProviderRegistry, build_adapters

__all__ = [
    # Core
    "CoreConfig",
    "ProviderConfig",
    "VADConfig",
    "load_config",
    "ErrorKind",
    "VoxlineError",
    "Session",
    "SessionRegistry",
    # Events
    "Event",
    "EventType",
    "InboundMessage",
    "parse_inbound",
    "Transcript",
    "Partial",
    "Response",
    "Audio",
    "Complete",
    "ErrorEvent",
    "Interrupted",
    # Audio
    "AudioSegment",
    "Segmenter",
    "VoiceActivityDetector",
    # Pipeline
    "ConversationPipeline",
    "ConversationHistory",
    "PipelineState",
    # Providers
    "ProviderRegistry",
    "build_adapters",
]
