"""Tests for configuration loading and runtime provider updates."""

import pytest
import yaml
from pydantic import ValidationError

from voxline.config import (
    AGENT_PROFILES,
    DEFAULT_CONFIG_YAML,
    CoreConfig,
    CredentialsConfig,
    ProviderConfig,
    VADConfig,
    load_config,
)


# =========================================================================
# CoreConfig
# =========================================================================


class TestCoreConfig:
    """Loading the process configuration."""

    def test_defaults(self):
        config = CoreConfig()
        assert config.providers.stt_backend == "openai"
        assert config.providers.llm_backend == "groq"
        assert config.vad.preset == "normal"
        assert config.segmenter.settle_delay_ms == 500
        assert config.session.history_max_turns == 20
        assert config.session.busy_policy == "queue"
        assert config.server.port == 8765

    def test_flat_shorthand(self):
        config = CoreConfig.from_dict(
            {
                "llm_backend": "anthropic",
                "tts_voice": "onyx",
                "vad_preset": "noisy",
                "port": 9000,
                "log_level": "DEBUG",
            }
        )
        assert config.providers.llm_backend == "anthropic"
        assert config.providers.tts_voice == "onyx"
        assert config.vad.energy_floor == 0.04
        assert config.vad.silence_confirm_ms == 2500
        assert config.server.port == 9000
        assert config.logging.level == "DEBUG"

    def test_preset_with_override(self):
        config = CoreConfig.from_dict({"vad": {"preset": "sensitive", "speech_confirm_ms": 120}})
        assert config.vad.energy_floor == 0.015
        assert config.vad.speech_confirm_ms == 120

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="Unknown VAD preset"):
            VADConfig.from_preset("stadium")

    def test_preset_applies_on_direct_construction(self):
        vad = VADConfig(preset="noisy", calibration_ms=500)
        assert vad.energy_floor == 0.04
        assert vad.silence_confirm_ms == 2500
        assert vad.speech_confirm_ms == 600
        assert vad.calibration_ms == 500

    def test_explicit_threshold_beats_preset(self):
        vad = VADConfig(preset="relaxed", energy_floor=0.05)
        assert vad.energy_floor == 0.05
        assert vad.silence_confirm_ms == 2000

    def test_unknown_preset_on_direct_construction(self):
        with pytest.raises(ValidationError, match="Unknown VAD preset"):
            VADConfig(preset="stadium")

    def test_profile(self):
        config = CoreConfig.from_dict({"providers": {"profile": "smart", "tts_voice": "fable"}})
        assert config.providers.llm_backend == "openai"
        assert config.providers.llm_model == "gpt-4o"
        assert config.providers.tts_voice == "fable"

    def test_unknown_profile(self):
        with pytest.raises(ValueError, match="Unknown agent profile"):
            CoreConfig.from_dict({"providers": {"profile": "pirate"}})

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "voxline.yaml"
        path.write_text("providers:\n  llm_backend: openai\nsession:\n  busy_policy: reject\n")
        config = load_config(path)
        assert config.providers.llm_backend == "openai"
        assert config.session.busy_policy == "reject"

    def test_default_template_loads(self):
        config = CoreConfig.from_dict(yaml.safe_load(DEFAULT_CONFIG_YAML))
        assert config.backends.tts_fallback == "edge"
        assert config.vad.calibrate_on_start is True

    def test_load_config_sources(self):
        config = CoreConfig()
        assert load_config(config) is config
        assert isinstance(load_config(None), CoreConfig)
        assert load_config({"port": 1234}).server.port == 1234

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_credentials_from_environment(self, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "gsk-env")
        assert CredentialsConfig().groq_api_key == "gsk-env"


# =========================================================================
# ProviderConfig updates
# =========================================================================


class TestProviderConfigMerge:
    """Runtime updates from a transport."""

    def test_snake_and_camel_case(self):
        merged = ProviderConfig().merged({"tts_voice": "echo", "llmModel": "gpt-4o"})
        assert merged.tts_voice == "echo"
        assert merged.llm_model == "gpt-4o"

    def test_returns_new_instance(self):
        original = ProviderConfig()
        merged = original.merged({"temperature": 0.2})
        assert original.temperature == 0.7
        assert merged.temperature == 0.2

    def test_unknown_fields_ignored(self):
        merged = ProviderConfig().merged({"favourite_colour": "blue"})
        assert merged == ProviderConfig()

    def test_invalid_value_keeps_current(self):
        merged = ProviderConfig().merged({"tts_speed": 10.0, "tts_voice": "robot", "streaming": False})
        assert merged.tts_speed == 1.0
        assert merged.tts_voice == "nova"
        assert merged.streaming is False

    def test_profile_then_overrides(self):
        merged = ProviderConfig().merged({"profile": "fast", "tts_voice": "onyx"})
        assert merged.llm_model == AGENT_PROFILES["fast"]["llm_model"]
        assert merged.temperature == 0.5
        assert merged.tts_voice == "onyx"

    def test_unknown_profile_ignored(self):
        assert ProviderConfig().merged({"profile": "pirate"}) == ProviderConfig()

    def test_frozen(self):
        with pytest.raises(ValidationError):
            ProviderConfig().tts_voice = "echo"
