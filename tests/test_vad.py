"""Tests for energy-based voice activity detection."""

import math

import numpy as np
import pytest

from fakes import SAMPLE_RATE, silence_frame, tone_frame
from voxline.audio.vad import (
    VadTransition,
    VoiceActivityDetector,
    band_energy,
    calibration_from_samples,
    pcm16_to_float,
)
from voxline.config import VADConfig


def make_vad(**overrides) -> VoiceActivityDetector:
    values = {"speech_confirm_ms": 60, "silence_confirm_ms": 100}
    values.update(overrides)
    return VoiceActivityDetector(VADConfig(**values))


def transitions(vad, frames):
    return [vad.observe(f).transition for f in frames]


# =========================================================================
# Energy measurement
# =========================================================================


class TestBandEnergy:
    """Tests for the band-limited RMS."""

    def test_empty(self):
        assert band_energy(np.array([]), SAMPLE_RATE) == 0.0

    def test_silence(self):
        assert band_energy(pcm16_to_float(silence_frame()), SAMPLE_RATE) == 0.0

    def test_in_band_tone_reports_rms(self):
        samples = pcm16_to_float(tone_frame(amplitude=0.5))
        assert band_energy(samples, SAMPLE_RATE) == pytest.approx(0.5 / math.sqrt(2), rel=1e-2)

    def test_out_of_band_tone_ignored(self):
        samples = pcm16_to_float(tone_frame(amplitude=0.5, freq=100.0))
        assert band_energy(samples, SAMPLE_RATE) < 0.001

    def test_odd_trailing_byte_dropped(self):
        assert len(pcm16_to_float(b"\x00\x10\x00")) == 1


# =========================================================================
# Hysteresis
# =========================================================================


class TestHysteresis:
    """Speech and silence must persist before a transition is reported."""

    def test_silence_never_triggers(self):
        vad = make_vad()
        assert transitions(vad, [silence_frame()] * 20) == [None] * 20
        assert not vad.is_speaking

    def test_speech_start_after_confirm_window(self):
        vad = make_vad()
        result = transitions(vad, [tone_frame()] * 3)
        assert result == [None, None, VadTransition.SPEECH_START]
        assert vad.is_speaking

    def test_speech_end_after_silence_window(self):
        vad = make_vad()
        transitions(vad, [tone_frame()] * 3)
        result = transitions(vad, [silence_frame()] * 5)
        assert result == [None, None, None, None, VadTransition.SPEECH_END]
        assert not vad.is_speaking

    def test_short_burst_ignored(self):
        vad = make_vad()
        frames = [tone_frame(), tone_frame(), silence_frame(), tone_frame(), tone_frame()]
        assert VadTransition.SPEECH_START not in transitions(vad, frames)

    def test_energy_between_thresholds_holds_counters(self):
        # rms ~0.014: below the 0.02 speech threshold, above the 0.01 silence one
        middle = tone_frame(amplitude=0.02)
        vad = make_vad()
        result = transitions(vad, [tone_frame(), tone_frame(), middle, tone_frame()])
        assert result == [None, None, None, VadTransition.SPEECH_START]

    def test_frame_size_independent(self):
        vad = make_vad()
        result = transitions(vad, [tone_frame(ms=60)])
        assert result == [VadTransition.SPEECH_START]

    def test_reset_clears_speaking_state(self):
        vad = make_vad()
        transitions(vad, [tone_frame()] * 3)
        vad.reset()
        assert not vad.is_speaking
        assert transitions(vad, [tone_frame()]) == [None]


# =========================================================================
# Calibration
# =========================================================================


class TestCalibration:
    """Thresholds adapt to the ambient noise of the source."""

    def test_percentile_thresholds(self):
        cal = calibration_from_samples([0.01] * 7 + [0.9], floor_min=0.02)
        assert cal.noise_floor == 0.01
        assert cal.energy_threshold == 0.02
        assert cal.silence_threshold == pytest.approx(0.015)

    def test_floor_applies_to_quiet_rooms(self):
        cal = calibration_from_samples([0.0] * 10, floor_min=0.04)
        assert cal.energy_threshold == 0.04
        assert cal.silence_threshold == 0.02

    def test_window_reports_no_speech(self):
        vad = make_vad()
        vad.calibrate(100)
        assert vad.is_calibrating
        observations = [vad.observe(tone_frame()) for _ in range(5)]
        assert not any(o.is_speaking for o in observations)
        assert not vad.is_calibrating

    def test_noisy_room_raises_threshold(self):
        vad = make_vad()
        noise = tone_frame(amplitude=0.05)
        vad.calibrate(100)
        transitions(vad, [noise] * 5)

        expected_floor = 0.05 / math.sqrt(2)
        assert vad.calibration.noise_floor == pytest.approx(expected_floor, rel=1e-2)
        assert vad.calibration.energy_threshold == pytest.approx(2 * expected_floor, rel=1e-2)

        # the same noise no longer counts as speech
        assert VadTransition.SPEECH_START not in transitions(vad, [noise] * 10)
        assert transitions(vad, [tone_frame()] * 3)[-1] is VadTransition.SPEECH_START

    def test_reset_keeps_calibration(self):
        vad = make_vad()
        vad.calibrate(40)
        transitions(vad, [tone_frame(amplitude=0.05)] * 2)
        calibration = vad.calibration
        vad.reset()
        assert vad.calibration == calibration

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            make_vad().calibrate(0)


# =========================================================================
# Manual override
# =========================================================================


class TestForce:
    """Push-to-talk overrides."""

    def test_force_start_and_stop(self):
        vad = make_vad()
        assert vad.force_start() is VadTransition.SPEECH_START
        assert all(vad.observe(silence_frame()).is_speaking for _ in range(20))
        assert vad.force_stop() is VadTransition.SPEECH_END
        assert not vad.is_speaking

    def test_force_start_while_speaking(self):
        vad = make_vad()
        transitions(vad, [tone_frame()] * 3)
        assert vad.force_start() is None

    def test_force_stop_when_silent(self):
        assert make_vad().force_stop() is None

    def test_force_start_abandons_calibration(self):
        vad = make_vad()
        vad.calibrate()
        vad.force_start()
        assert not vad.is_calibrating
