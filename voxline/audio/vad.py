"""Energy-based voice activity detection.

Frames are mono PCM16 (little-endian). Each frame's energy is the RMS of
the 300-3400 Hz band, taken from its spectrum, in full-scale units
(a full-scale sine reports ~0.707). Speech and silence decisions use
hysteresis measured in audio time, so the detector behaves the same
whatever the frame size.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

import numpy as np
from loguru import logger

from voxline.config import VADConfig


class VadTransition(str, Enum):
    SPEECH_START = "speech_start"
    SPEECH_END = "speech_end"


@dataclass
class VadObservation:
    """Result of observing one frame."""

    energy: float
    is_speaking: bool
    transition: VadTransition | None = None


@dataclass
class VadCalibration:
    """Thresholds derived from the ambient noise of one audio source."""

    noise_floor: float
    energy_threshold: float
    silence_threshold: float


def pcm16_to_float(frame: bytes) -> np.ndarray:
    """Decode PCM16 bytes to float samples in [-1, 1). A trailing odd byte is dropped."""
    usable = len(frame) - (len(frame) % 2)
    return np.frombuffer(frame[:usable], dtype="<i2").astype(np.float64) / 32768.0


def band_energy(samples: np.ndarray, sample_rate: int,
                low_hz: float = 300.0, high_hz: float = 3400.0) -> float:
    """RMS of the part of ``samples`` that falls inside [low_hz, high_hz]."""
    n = len(samples)
    if n == 0:
        return 0.0
    spectrum = np.fft.rfft(samples)
    freqs = np.fft.rfftfreq(n, d=1.0 / sample_rate)
    band = (freqs >= low_hz) & (freqs <= high_hz)
    power = float(np.sum(np.abs(spectrum[band]) ** 2))
    # one-sided spectrum: each in-band bin stands for its negative twin too
    return math.sqrt(2.0 * power) / n


def calibration_from_samples(samples: list[float], floor_min: float) -> VadCalibration:
    """Derive thresholds from energies collected over the calibration window."""
    ordered = sorted(samples)
    noise_floor = ordered[int(math.floor(len(ordered) * 0.75))] if ordered else 0.0
    return VadCalibration(
        noise_floor=noise_floor,
        energy_threshold=max(2.0 * noise_floor, floor_min),
        silence_threshold=max(1.5 * noise_floor, floor_min / 2.0),
    )


class VoiceActivityDetector:
    """Classifies PCM16 frames as speech or silence.

    Usage:
        vad = VoiceActivityDetector(VADConfig.from_preset("normal"))
        vad.calibrate()
        for frame in frames:
            obs = vad.observe(frame)
            if obs.transition is VadTransition.SPEECH_START:
                ...
    """

    def __init__(self, config: VADConfig | None = None) -> None:
        self.config = config or VADConfig()
        floor = self.config.energy_floor
        self._calibration = VadCalibration(
            noise_floor=0.0,
            energy_threshold=floor,
            silence_threshold=floor / 2.0,
        )
        self._calibrating = False
        self._calibration_target_ms = 0.0
        self._calibration_elapsed_ms = 0.0
        self._calibration_samples: list[float] = []

        self._speaking = False
        self._forced = False
        self._speech_ms = 0.0
        self._silence_ms = 0.0
        self._smoothed: float | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def calibration(self) -> VadCalibration:
        return self._calibration

    @property
    def is_calibrating(self) -> bool:
        return self._calibrating

    @property
    def is_speaking(self) -> bool:
        return self._speaking

    def frame_duration_ms(self, frame: bytes) -> float:
        return (len(frame) // 2) / self.config.sample_rate * 1000.0

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def measure(self, frame: bytes) -> float:
        """Band energy of a frame, smoothed when smoothing is enabled."""
        cfg = self.config
        energy = band_energy(
            pcm16_to_float(frame), cfg.sample_rate, cfg.band_low_hz, cfg.band_high_hz
        )
        if cfg.smoothing > 0.0:
            if self._smoothed is None:
                self._smoothed = energy
            else:
                self._smoothed = cfg.smoothing * self._smoothed + (1.0 - cfg.smoothing) * energy
            energy = self._smoothed
        return energy

    def observe(self, frame: bytes) -> VadObservation:
        """Classify one frame and report any speech start/end transition."""
        energy = self.measure(frame)
        duration_ms = self.frame_duration_ms(frame)

        if self._calibrating:
            self._calibration_samples.append(energy)
            self._calibration_elapsed_ms += duration_ms
            if self._calibration_elapsed_ms >= self._calibration_target_ms:
                self._finish_calibration()
            return VadObservation(energy=energy, is_speaking=False)

        if self._forced:
            return VadObservation(energy=energy, is_speaking=True)

        cal = self._calibration
        if energy > cal.energy_threshold:
            self._speech_ms += duration_ms
            self._silence_ms = 0.0
        elif energy < cal.silence_threshold:
            self._silence_ms += duration_ms
            self._speech_ms = 0.0
        # between the thresholds both counters hold

        transition = None
        if not self._speaking and self._speech_ms >= self.config.speech_confirm_ms:
            self._speaking = True
            self._silence_ms = 0.0
            transition = VadTransition.SPEECH_START
        elif self._speaking and self._silence_ms >= self.config.silence_confirm_ms:
            self._speaking = False
            self._speech_ms = 0.0
            transition = VadTransition.SPEECH_END

        return VadObservation(energy=energy, is_speaking=self._speaking, transition=transition)

    # ------------------------------------------------------------------
    # Calibration and control
    # ------------------------------------------------------------------

    def calibrate(self, duration_ms: float | None = None) -> None:
        """Arm a calibration window over the next ``duration_ms`` of audio.

        Frames observed inside the window only measure ambient noise and
        never report speech.
        """
        target = self.config.calibration_ms if duration_ms is None else duration_ms
        if target <= 0:
            raise ValueError(f"Calibration window must be positive, got {target}")
        self.reset()
        self._calibrating = True
        self._calibration_target_ms = target
        self._calibration_elapsed_ms = 0.0
        self._calibration_samples = []
        logger.debug(f"VAD calibration armed for {target:.0f}ms")

    def _finish_calibration(self) -> None:
        self._calibration = calibration_from_samples(
            self._calibration_samples, self.config.energy_floor
        )
        self._calibrating = False
        self._calibration_samples = []
        logger.info(
            f"VAD calibrated: noise_floor={self._calibration.noise_floor:.4f}, "
            f"speech>{self._calibration.energy_threshold:.4f}, "
            f"silence<{self._calibration.silence_threshold:.4f}"
        )

    def reset(self) -> None:
        """Clear hysteresis state. The last calibration is kept."""
        self._speaking = False
        self._forced = False
        self._speech_ms = 0.0
        self._silence_ms = 0.0
        self._smoothed = None

    def force_start(self) -> VadTransition | None:
        """Treat the source as speaking until ``force_stop`` (push-to-talk)."""
        if self._calibrating:
            logger.debug("VAD calibration abandoned by manual start")
            self._calibrating = False
            self._calibration_samples = []
        self._forced = True
        self._speech_ms = 0.0
        self._silence_ms = 0.0
        if self._speaking:
            return None
        self._speaking = True
        return VadTransition.SPEECH_START

    def force_stop(self) -> VadTransition | None:
        """End a manual override (or an ongoing utterance) immediately."""
        self._forced = False
        self._speech_ms = 0.0
        self._silence_ms = 0.0
        if not self._speaking:
            return None
        self._speaking = False
        return VadTransition.SPEECH_END
