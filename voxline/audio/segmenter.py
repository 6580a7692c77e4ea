"""Utterance segmentation.

The Segmenter feeds raw PCM16 frames through a VoiceActivityDetector and
cuts the stream into one AudioSegment per utterance. A segment is
finalized ``settle_delay_ms`` after the detector reports the end of
speech, unless speech resumes first.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from loguru import logger

from voxline.audio.vad import VadObservation, VadTransition, VoiceActivityDetector
from voxline.config import SegmenterConfig


@dataclass
class AudioSegment:
    """One finalized utterance.

    ``container`` is None for raw PCM16 mono; otherwise it names the
    encoded container the bytes arrived in (e.g. "webm").
    """

    sequence: int
    audio: bytes
    sample_rate: int = 16000
    container: str | None = None
    created_at: float = field(default_factory=time.time)

    @property
    def duration_ms(self) -> float:
        if self.container is not None:
            return 0.0
        return (len(self.audio) // 2) / self.sample_rate * 1000.0


SegmentCallback = Callable[[AudioSegment], Awaitable[None]]
SpeechStartCallback = Callable[[], Awaitable[None]]


class Segmenter:
    """Accumulates frames into utterances and decides when each one is done.

    Frames seen before speech is confirmed are kept in a short pre-roll
    (as long as the speech-confirm window) so the start of the utterance
    is not clipped. From the first confirmed speech until the flush every
    frame is buffered, including the trailing silence.

    Args:
        vad: The detector that classifies frames.
        config: Settle delay settings.
    """

    def __init__(
        self,
        vad: VoiceActivityDetector | None = None,
        config: SegmenterConfig | None = None,
    ) -> None:
        self.vad = vad or VoiceActivityDetector()
        self.config = config or SegmenterConfig()

        self._buffer: list[bytes] = []
        self._pre_roll: deque[bytes] = deque()
        self._pre_roll_ms = 0.0
        self._has_speech = False
        self._sequence = 0
        self._flush_task: asyncio.Task | None = None

        self._on_segment: SegmentCallback | None = None
        self._on_speech_start: SpeechStartCallback | None = None

    def set_segment_callback(self, callback: SegmentCallback) -> None:
        """Set the async callback receiving each finalized segment."""
        self._on_segment = callback

    def set_speech_start_callback(self, callback: SpeechStartCallback) -> None:
        """Set the async callback fired when speech is confirmed."""
        self._on_speech_start = callback

    @property
    def has_pending_flush(self) -> bool:
        return self._flush_task is not None and not self._flush_task.done()

    @property
    def buffered_bytes(self) -> int:
        return sum(len(frame) for frame in self._buffer)

    @property
    def is_streaming(self) -> bool:
        """True while raw frames are held as an utterance or as pre-roll."""
        return bool(self._buffer or self._pre_roll)

    # ------------------------------------------------------------------
    # Frame intake
    # ------------------------------------------------------------------

    async def push(self, frame: bytes) -> VadObservation:
        """Feed one PCM16 frame. Frames must arrive in capture order."""
        observation = self.vad.observe(frame)

        if observation.transition is VadTransition.SPEECH_START:
            self._buffer.append(frame)
            await self._on_speech_confirmed()
        elif self._has_speech:
            self._buffer.append(frame)
        else:
            self._remember(frame)

        if observation.transition is VadTransition.SPEECH_END:
            self._schedule_flush()

        return observation

    def _remember(self, frame: bytes) -> None:
        """Keep the most recent speech-confirm window of audio."""
        self._pre_roll.append(frame)
        self._pre_roll_ms += self.vad.frame_duration_ms(frame)
        limit = self.vad.config.speech_confirm_ms
        while len(self._pre_roll) > 1:
            oldest_ms = self.vad.frame_duration_ms(self._pre_roll[0])
            if self._pre_roll_ms - oldest_ms < limit:
                break
            self._pre_roll.popleft()
            self._pre_roll_ms -= oldest_ms

    async def _on_speech_confirmed(self) -> None:
        self._cancel_pending_flush()
        if not self._has_speech:
            # pre-roll goes in front of the confirming frame
            self._buffer[:0] = list(self._pre_roll)
            self._pre_roll.clear()
            self._pre_roll_ms = 0.0
            self._has_speech = True
            logger.debug(f"Speech started (segment {self._sequence + 1})")
        else:
            logger.debug("Speech resumed before settle delay, flush cancelled")
        if self._on_speech_start:
            await self._on_speech_start()

    # ------------------------------------------------------------------
    # Settle timer
    # ------------------------------------------------------------------

    def _schedule_flush(self) -> None:
        """Start (or restart) the settle timer."""
        self._cancel_pending_flush()
        self._flush_task = asyncio.create_task(self._settle_then_flush())

    def _cancel_pending_flush(self) -> None:
        if self._flush_task and not self._flush_task.done():
            self._flush_task.cancel()
        self._flush_task = None

    async def _settle_then_flush(self) -> None:
        try:
            await asyncio.sleep(self.config.settle_delay_ms / 1000.0)
        except asyncio.CancelledError:
            return
        # detach first so flush() does not cancel the task running it
        self._flush_task = None
        await self.flush()

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    async def flush(self) -> AudioSegment | None:
        """Finalize the buffered utterance. An empty buffer is a no-op."""
        self._cancel_pending_flush()
        if not self._buffer:
            return None

        pcm = b"".join(self._buffer)
        self._buffer = []
        self._has_speech = False
        self.vad.reset()
        self._sequence += 1

        segment = AudioSegment(
            sequence=self._sequence,
            audio=pcm,
            sample_rate=self.vad.config.sample_rate,
        )
        logger.info(f"Segment {segment.sequence} finalized ({segment.duration_ms:.0f}ms)")

        if self._on_segment:
            await self._on_segment(segment)
        return segment

    def wrap_encoded(self, audio: bytes, container: str) -> AudioSegment:
        """Turn an already-complete encoded recording into the next segment.

        Buffered PCM is left alone; only the sequence counter is shared.
        """
        self._sequence += 1
        return AudioSegment(
            sequence=self._sequence,
            audio=audio,
            sample_rate=self.vad.config.sample_rate,
            container=container,
        )

    async def force_start(self) -> None:
        """Manual speech start (push-to-talk pressed)."""
        if self.vad.force_start() is VadTransition.SPEECH_START:
            await self._on_speech_confirmed()

    async def force_stop(self) -> AudioSegment | None:
        """Manual speech end (push-to-talk released). Flushes without settling."""
        self.vad.force_stop()
        return await self.flush()

    def clear(self) -> None:
        """Drop all buffered audio and any pending flush."""
        self._cancel_pending_flush()
        self._buffer = []
        self._pre_roll.clear()
        self._pre_roll_ms = 0.0
        self._has_speech = False
        self.vad.reset()

    def close(self) -> None:
        """Release the settle timer."""
        self._cancel_pending_flush()
