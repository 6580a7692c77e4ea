"""Configuration system for Voxline.

Supports loading from YAML files, dicts, or programmatic construction
via Pydantic models. ``CoreConfig`` drives backend selection, voice
activity detection, segmentation and session lifecycle; ``ProviderConfig``
is the per-session, runtime-updatable slice that a transport may change
mid-conversation.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


# ---------------------------------------------------------------------------
# Voice activity detection
# ---------------------------------------------------------------------------

# name -> (energy floor, silence-confirm ms, speech-confirm ms)
VAD_PRESETS: dict[str, tuple[float, float, float]] = {
    "sensitive": (0.015, 1000.0, 200.0),
    "normal": (0.02, 1500.0, 300.0),
    "relaxed": (0.03, 2000.0, 500.0),
    "noisy": (0.04, 2500.0, 600.0),
}


class VADConfig(BaseModel):
    """Energy VAD tuning.

    ``energy_floor`` is the minimum speech threshold (full scale = 1.0);
    the silence threshold never drops below half of it.
    """

    preset: str = "normal"
    sample_rate: int = 16000
    energy_floor: float = 0.02
    speech_confirm_ms: float = 300.0
    silence_confirm_ms: float = 1500.0
    calibration_ms: float = 1000.0
    calibrate_on_start: bool = True
    band_low_hz: float = 300.0
    band_high_hz: float = 3400.0
    # 0 disables smoothing; the browser client used 0.8
    smoothing: float = Field(default=0.0, ge=0.0, lt=1.0)

    @model_validator(mode="before")
    @classmethod
    def _apply_preset(cls, data: Any) -> Any:
        # a preset fills in the thresholds that were not given explicitly
        if not isinstance(data, dict) or "preset" not in data:
            return data
        name = data["preset"]
        if name not in VAD_PRESETS:
            available = ", ".join(VAD_PRESETS)
            raise ValueError(f"Unknown VAD preset '{name}'. Available: {available}")
        floor, silence_ms, speech_ms = VAD_PRESETS[name]
        values: dict[str, Any] = {
            "energy_floor": floor,
            "silence_confirm_ms": silence_ms,
            "speech_confirm_ms": speech_ms,
        }
        values.update(data)
        return values

    @classmethod
    def from_preset(cls, name: str, **overrides: Any) -> VADConfig:
        """Build a VADConfig from one of the named environment presets.

        Raises:
            ValueError: If the preset name is unknown.
        """
        return cls(preset=name, **overrides)


class SegmenterConfig(BaseModel):
    """Utterance segmentation settings."""

    settle_delay_ms: float = 500.0


# ---------------------------------------------------------------------------
# Per-session provider selection
# ---------------------------------------------------------------------------

SttBackend = Literal["openai", "groq"]
LlmBackend = Literal["openai", "groq", "anthropic"]
TtsVoice = Literal["alloy", "echo", "fable", "onyx", "nova", "shimmer"]

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful voice assistant. Keep responses concise and natural "
    "for voice conversation."
)


class ProviderConfig(BaseModel):
    """Closed, validated backend selection for one session.

    Instances are immutable: a pipeline run captures the object it
    started with, and ``merged`` returns a new one for the next run.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    stt_backend: SttBackend = "openai"
    llm_backend: LlmBackend = "groq"
    llm_model: str = "llama-3.1-8b-instant"
    tts_voice: TtsVoice = "nova"
    tts_speed: float = Field(default=1.0, ge=0.25, le=4.0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    streaming: bool = True
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_tokens: int = Field(default=150, gt=0)

    def merged(self, partial: dict[str, Any]) -> ProviderConfig:
        """Apply a partial update.

        Accepts snake_case or camelCase keys and an optional ``profile``
        name whose values are applied first. Unknown fields are ignored
        and a field whose new value fails validation keeps its current
        value.
        """
        if "profile" in partial:
            partial = dict(partial)
            profile = partial.pop("profile")
            if profile in AGENT_PROFILES:
                partial = {**AGENT_PROFILES[profile], **partial}
            else:
                logger.warning(f"Ignoring unknown agent profile: {profile!r}")

        current = self.model_dump()
        updates: dict[str, Any] = {}
        for key, value in partial.items():
            field_name = _CAMEL_ALIASES.get(key, key)
            if field_name not in type(self).model_fields:
                logger.debug(f"Ignoring unknown provider config field: {key}")
                continue
            candidate = {**current, field_name: value}
            try:
                type(self).model_validate(candidate)
            except ValidationError:
                logger.warning(
                    f"Invalid value for {field_name}: {value!r}; keeping {current[field_name]!r}"
                )
                continue
            updates[field_name] = value
        return type(self).model_validate({**current, **updates})


_CAMEL_ALIASES = {
    "sttBackend": "stt_backend",
    "llmBackend": "llm_backend",
    "llmModel": "llm_model",
    "ttsVoice": "tts_voice",
    "ttsSpeed": "tts_speed",
    "systemPrompt": "system_prompt",
    "maxTokens": "max_tokens",
}


# Named assistant profiles a transport can pick with ``{"profile": name}``
AGENT_PROFILES: dict[str, dict[str, Any]] = {
    "assistant": {
        "llm_backend": "groq",
        "llm_model": "llama-3.3-70b-versatile",
        "tts_voice": "nova",
        "system_prompt": (
            "You are a helpful voice assistant. Keep responses concise and natural "
            "for spoken conversation. Be friendly and conversational. Limit "
            "responses to 2-3 sentences."
        ),
    },
    "fast": {
        "llm_backend": "groq",
        "llm_model": "llama-3.1-8b-instant",
        "tts_voice": "echo",
        "temperature": 0.5,
        "system_prompt": (
            "You are a quick-response voice assistant. Give brief, direct answers. "
            "Maximum 1-2 sentences per response."
        ),
    },
    "smart": {
        "llm_backend": "openai",
        "llm_model": "gpt-4o",
        "tts_voice": "alloy",
        "temperature": 0.7,
        "system_prompt": (
            "You are an intelligent voice assistant capable of complex reasoning. "
            "Provide thoughtful, accurate responses while keeping them conversational."
        ),
    },
    "creative": {
        "llm_backend": "openai",
        "llm_model": "gpt-4o-mini",
        "tts_voice": "shimmer",
        "temperature": 0.9,
        "system_prompt": (
            "You are a creative and imaginative voice assistant. Be playful, use "
            "metaphors, and think outside the box."
        ),
    },
    "multilingual": {
        "llm_backend": "openai",
        "llm_model": "gpt-4o-mini",
        "tts_voice": "nova",
        "temperature": 0.6,
        "system_prompt": (
            "You are a multilingual voice assistant. Detect the user's language and "
            "respond in the same language. If unsure, ask for clarification."
        ),
    },
}


# ---------------------------------------------------------------------------
# Process-level settings
# ---------------------------------------------------------------------------

class CredentialsConfig(BaseModel):
    """API keys for the hosted backends. Empty values fall back to the environment."""

    openai_api_key: str = Field(default_factory=lambda: os.environ.get("OPENAI_API_KEY", ""))
    groq_api_key: str = Field(default_factory=lambda: os.environ.get("GROQ_API_KEY", ""))
    anthropic_api_key: str = Field(
        default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", "")
    )


class BackendConfig(BaseModel):
    """Process-wide backend choices not covered by ProviderConfig.

    The speech-to-text and language-model primaries come from each
    session's ProviderConfig; the fallbacks and the synthesizer do not.
    """

    stt_fallback: str = "groq"
    llm_fallback: str = "openai"
    tts: str = "openai"
    tts_fallback: str = "edge"


class SessionConfig(BaseModel):
    """Session lifecycle and concurrency settings."""

    history_max_turns: int = Field(default=20, gt=0)
    busy_policy: Literal["queue", "reject"] = "queue"
    idle_timeout_s: float = 600.0
    auto_barge_in: bool = False
    stt_language: str | None = None
    stt_prompt: str = "Voice assistant conversation."


class ServerConfig(BaseModel):
    """Reference WebSocket transport settings."""

    host: str = "0.0.0.0"
    port: int = 8765
    reap_interval_s: float = 30.0


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"


class CoreConfig(BaseModel):
    """Top-level Voxline configuration.

    Can be constructed programmatically, from a dict, or loaded from YAML.

    Examples:
        # Programmatic
        config = CoreConfig(
            providers=ProviderConfig(llm_backend="openai", llm_model="gpt-4o-mini"),
            vad=VADConfig.from_preset("noisy"),
        )

        # From YAML
        config = CoreConfig.from_yaml("voxline.yaml")

        # Shorthand
        config = CoreConfig.from_dict({
            "llm_backend": "anthropic",
            "vad_preset": "relaxed",
            "port": 9000,
        })
    """

    providers: ProviderConfig = Field(default_factory=ProviderConfig)
    backends: BackendConfig = Field(default_factory=BackendConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    vad: VADConfig = Field(default_factory=VADConfig)
    segmenter: SegmenterConfig = Field(default_factory=SegmenterConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> CoreConfig:
        """Load configuration from a YAML file."""
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls._from_raw(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CoreConfig:
        """Load configuration from a dictionary.

        Supports both the full nested format and a flat shorthand format:

        Full format:
            {"providers": {"llm_backend": "openai"}, "vad": {"preset": "noisy"}}

        Shorthand format:
            {"llm_backend": "openai", "vad_preset": "noisy", "log_level": "DEBUG"}
        """
        return cls._from_raw(dict(data))

    @classmethod
    def _from_raw(cls, data: dict[str, Any]) -> CoreConfig:
        """Normalize and construct config from a raw dict."""
        flat_mappings = {
            "stt_backend": ("providers", "stt_backend"),
            "llm_backend": ("providers", "llm_backend"),
            "llm_model": ("providers", "llm_model"),
            "tts_voice": ("providers", "tts_voice"),
            "tts_speed": ("providers", "tts_speed"),
            "temperature": ("providers", "temperature"),
            "streaming": ("providers", "streaming"),
            "system_prompt": ("providers", "system_prompt"),
            "vad_preset": ("vad", "preset"),
            "settle_delay_ms": ("segmenter", "settle_delay_ms"),
            "busy_policy": ("session", "busy_policy"),
            "history_max_turns": ("session", "history_max_turns"),
            "host": ("server", "host"),
            "port": ("server", "port"),
            "log_level": ("logging", "level"),
        }

        for flat_key, (section, nested_key) in flat_mappings.items():
            if flat_key in data:
                data.setdefault(section, {})
                data[section][nested_key] = data.pop(flat_key)

        providers = data.get("providers")
        if isinstance(providers, dict) and "profile" in providers:
            providers = dict(providers)
            profile = providers.pop("profile")
            if profile not in AGENT_PROFILES:
                available = ", ".join(AGENT_PROFILES)
                raise ValueError(f"Unknown agent profile '{profile}'. Available: {available}")
            data["providers"] = {**AGENT_PROFILES[profile], **providers}

        return cls(**data)


def load_config(source: str | Path | dict[str, Any] | CoreConfig | None = None) -> CoreConfig:
    """Load a CoreConfig from any supported source.

    Args:
        source: A YAML file path (str/Path), a dict, an existing CoreConfig,
            or None for defaults.

    Returns:
        A CoreConfig instance.
    """
    if source is None:
        return CoreConfig()
    if isinstance(source, CoreConfig):
        return source
    if isinstance(source, dict):
        return CoreConfig.from_dict(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        return CoreConfig.from_yaml(path)
    raise TypeError(f"Cannot load config from {type(source)}")


# Default YAML template for `voxline init`
DEFAULT_CONFIG_YAML = """\
# Voxline Configuration

providers:
  # profile: assistant       # assistant | fast | smart | creative | multilingual
  stt_backend: openai        # openai | groq
  llm_backend: groq          # openai | groq | anthropic
  llm_model: llama-3.1-8b-instant
  tts_voice: nova            # alloy | echo | fable | onyx | nova | shimmer
  tts_speed: 1.0
  temperature: 0.7
  streaming: true
  max_tokens: 150
  system_prompt: >-
    You are a helpful voice assistant. Keep responses concise and natural
    for voice conversation.

backends:
  stt_fallback: groq
  llm_fallback: openai
  tts: openai                # openai | edge
  tts_fallback: edge

# API keys default to OPENAI_API_KEY / GROQ_API_KEY / ANTHROPIC_API_KEY
# credentials:
#   openai_api_key: sk-...

vad:
  preset: normal             # sensitive | normal | relaxed | noisy
  sample_rate: 16000
  calibrate_on_start: true

segmenter:
  settle_delay_ms: 500

session:
  history_max_turns: 20
  busy_policy: queue         # queue | reject
  idle_timeout_s: 600
  auto_barge_in: false

server:
  host: 0.0.0.0
  port: 8765

logging:
  level: INFO
"""
