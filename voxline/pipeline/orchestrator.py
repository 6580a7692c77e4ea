"""Conversation pipeline: the per-session Transcribe -> Generate -> Synthesize state machine.

One ConversationPipeline drives every utterance of a session:

1. A finalized AudioSegment is transcribed
2. The transcript joins the history and the reply is generated
3. Each completed sentence of the reply is dispatched to synthesis
   while generation continues
4. Audio is emitted in sentence order once the full reply is known
5. The reply joins the history and a ``complete`` event closes the run

Results leave through an outbound queue of events. Every run carries a
token; ``interrupt()`` invalidates it, so anything the run produces
afterwards is dropped instead of emitted.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Literal

from loguru import logger

from voxline.config import ProviderConfig
from voxline.core.events import (
    Audio,
    Complete,
    ErrorEvent,
    Event,
    Interrupted,
    Partial,
    Response,
    StageTimings,
    Transcript,
)
from voxline.errors import (
    BusyError,
    ErrorKind,
    FormatError,
    GenerationError,
    SynthesisError,
    TranscriptionError,
)
from voxline.pipeline.history import ConversationHistory
from voxline.pipeline.sentences import SentenceChunker
from voxline.providers.base import TranscriptionHints

if TYPE_CHECKING:
    from voxline.audio.segmenter import AudioSegment
    from voxline.providers.adapters import Responder, Synthesizer, Transcriber

NO_SPEECH_MESSAGE = "No speech detected. Please speak clearly."
INTERRUPTED_MARKER = " [interrupted]"


class PipelineState(str, Enum):
    IDLE = "idle"
    BUFFERING = "buffering"
    TRANSCRIBING = "transcribing"
    GENERATING = "generating"
    SYNTHESIZING = "synthesizing"
    INTERRUPTED = "interrupted"


@dataclass
class RunToken:
    """Identity and liveness of one pipeline run."""

    run_id: int
    cancelled: bool = False
    stage: ErrorKind = ErrorKind.TRANSCRIPTION


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


class ConversationPipeline:
    """Single-flight voice pipeline for one session.

    At most one run is active at a time. While a run is active, the
    ``queue`` busy policy keeps one pending segment and rejects anything
    beyond it; the ``reject`` policy rejects every concurrent segment.

    Args:
        session_id: Session the emitted events belong to.
        transcriber: Speech-to-text adapter.
        responder: Language-model adapter.
        synthesizer: Text-to-speech adapter.
        history: The session's conversation history.
        outbox: Queue receiving outbound events (created if omitted).
        busy_policy: "queue" (depth 1) or "reject".
        stt_hints: Language and prompt hints for every transcription.

    Usage:
        pipeline = ConversationPipeline("s1", transcriber, responder, synthesizer, history)
        await pipeline.submit(segment, provider_config)
        event = await pipeline.outbox.get()
    """

    def __init__(
        self,
        session_id: str,
        transcriber: Transcriber,
        responder: Responder,
        synthesizer: Synthesizer,
        history: ConversationHistory,
        outbox: asyncio.Queue[Event] | None = None,
        busy_policy: Literal["queue", "reject"] = "queue",
        stt_hints: TranscriptionHints | None = None,
    ) -> None:
        self.session_id = session_id
        self.transcriber = transcriber
        self.responder = responder
        self.synthesizer = synthesizer
        self.history = history
        self.outbox: asyncio.Queue[Event] = outbox if outbox is not None else asyncio.Queue()
        self.busy_policy = busy_policy
        self.stt_hints = stt_hints or TranscriptionHints()

        self._state = PipelineState.IDLE
        self._run_counter = 0
        self._token: RunToken | None = None
        self._run_task: asyncio.Task | None = None
        self._pending: tuple[AudioSegment, ProviderConfig] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def is_running(self) -> bool:
        """Whether a run is in flight."""
        return self._run_task is not None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def begin_buffering(self) -> None:
        """Mark the start of a new utterance (speech confirmed by the segmenter)."""
        if self._state is PipelineState.IDLE and self._run_task is None:
            self._state = PipelineState.BUFFERING

    async def submit(self, segment: AudioSegment, config: ProviderConfig) -> None:
        """Hand a finalized segment to the pipeline.

        ``config`` is the snapshot the run will use from start to end.

        Raises:
            BusyError: The segment was rejected by the busy policy. An
                ``error`` event of kind ``busy`` has been emitted.
        """
        if self._run_task is None:
            self._start_run(segment, config)
            return

        if self.busy_policy == "queue" and self._pending is None:
            logger.info(
                f"[session={self.session_id}] run active, segment {segment.sequence} queued"
            )
            self._pending = (segment, config)
            return

        message = f"Still processing the previous request; segment {segment.sequence} dropped"
        logger.warning(f"[session={self.session_id}] {message}")
        await self._put(ErrorEvent(kind=ErrorKind.BUSY, message=message))
        raise BusyError(message)

    async def interrupt(self) -> None:
        """Cancel the active run (barge-in).

        Drops the queued segment, invalidates the run token and emits
        ``interrupted``. Requests already sent to a backend may still
        complete remotely; their results are discarded.
        """
        token = self._token
        task = self._run_task
        self._pending = None
        if token is not None:
            token.cancelled = True

        self._state = PipelineState.INTERRUPTED
        logger.info(f"[session={self.session_id}] interrupted (run={token.run_id if token else None})")
        await self._put(Interrupted())

        self._token = None
        self._run_task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        # a submit may have started the next run while the old one unwound
        if self._run_task is None:
            self._state = PipelineState.IDLE
            self._idle.set()

    async def wait_idle(self) -> None:
        """Wait until no run is active and nothing is queued."""
        await self._idle.wait()

    async def close(self) -> None:
        """Cancel everything without emitting."""
        if self._token is not None:
            self._token.cancelled = True
        task = self._run_task
        self._token = None
        self._run_task = None
        self._pending = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._run_task is None:
            self._state = PipelineState.IDLE
            self._idle.set()

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def _start_run(self, segment: AudioSegment, config: ProviderConfig) -> None:
        self._run_counter += 1
        token = RunToken(run_id=self._run_counter)
        self._token = token
        self._idle.clear()
        self._run_task = asyncio.create_task(self._drive(segment, config, token))

    async def _drive(self, segment: AudioSegment, config: ProviderConfig, token: RunToken) -> None:
        try:
            await self._run(segment, config, token)
        except Exception as e:
            logger.exception(f"[session={self.session_id}] run {token.run_id} crashed: {e}")
            await self._emit(ErrorEvent(kind=token.stage, message=str(e)), token)
        finally:
            if self._token is token:
                self._token = None
                self._run_task = None
                self._state = PipelineState.IDLE
                if self._pending is not None:
                    next_segment, next_config = self._pending
                    self._pending = None
                    self._start_run(next_segment, next_config)
                else:
                    self._idle.set()

    async def _run(self, segment: AudioSegment, config: ProviderConfig, token: RunToken) -> None:
        run_start = time.perf_counter()
        timings = StageTimings()
        tag = f"[session={self.session_id} run={token.run_id}]"

        # --- Transcribing ---
        self._set_state(PipelineState.TRANSCRIBING, token)
        hints = replace(
            self.stt_hints,
            container="pcm16" if segment.container is None else segment.container,
            sample_rate=segment.sample_rate,
        )
        try:
            text = await self.transcriber.transcribe(
                segment.audio, hints, backend=config.stt_backend
            )
        except (FormatError, TranscriptionError) as e:
            logger.error(f"{tag} stage=transcription failed: {e}")
            await self._emit(ErrorEvent(kind=e.kind, message=str(e)), token)
            return
        timings.transcription_ms = _elapsed_ms(run_start)

        text = text.strip()
        if not text:
            logger.info(f"{tag} empty transcript")
            await self._emit(ErrorEvent(kind=ErrorKind.NO_SPEECH, message=NO_SPEECH_MESSAGE), token)
            return
        if not self._alive(token):
            return

        self.history.add_user(text)
        logger.info(f"{tag} transcript: '{text[:80]}{'...' if len(text) > 80 else ''}'")
        await self._emit(Transcript(text=text, elapsed_ms=timings.transcription_ms), token)

        # --- Generating (and Synthesizing as sentences complete) ---
        self._set_state(PipelineState.GENERATING, token)
        token.stage = ErrorKind.GENERATION
        generation_start = time.perf_counter()
        synthesis_start: float | None = None
        chunker = SentenceChunker()
        parts: list[str] = []
        dispatched: list[tuple[str, asyncio.Task]] = []

        def dispatch(sentence: str) -> None:
            nonlocal synthesis_start
            if synthesis_start is None:
                synthesis_start = time.perf_counter()
                self._set_state(PipelineState.SYNTHESIZING, token)
            task = asyncio.create_task(
                self.synthesizer.synthesize(sentence, config.tts_voice, config.tts_speed)
            )
            dispatched.append((sentence, task))

        try:
            async for chunk in self.responder.generate(
                self.history.snapshot(), config.system_prompt, config
            ):
                if not self._alive(token):
                    await self._cancel_all(dispatched)
                    return
                parts.append(chunk)
                if config.streaming:
                    await self._emit(Partial(text=chunk), token)
                for sentence in chunker.feed(chunk):
                    dispatch(sentence)

            remainder = chunker.flush()
            if remainder:
                dispatch(remainder)

            reply = "".join(parts).strip()
            if not reply:
                raise GenerationError("Language model returned an empty reply")
        except GenerationError as e:
            logger.error(f"{tag} stage=generation failed: {e}")
            await self._cancel_all(dispatched)
            await self._emit(ErrorEvent(kind=ErrorKind.GENERATION, message=str(e)), token)
            return
        except asyncio.CancelledError:
            await self._cancel_all(dispatched)
            partial_reply = "".join(parts).strip()
            if partial_reply:
                self.history.add_assistant(partial_reply + INTERRUPTED_MARKER)
            raise

        timings.generation_ms = _elapsed_ms(generation_start)
        await self._emit(Response(text=reply, elapsed_ms=timings.generation_ms), token)

        # --- Audio delivery in sentence order ---
        token.stage = ErrorKind.SYNTHESIS
        try:
            for sequence, (sentence, task) in enumerate(dispatched, start=1):
                try:
                    audio = await task
                except SynthesisError as e:
                    logger.warning(f"{tag} stage=synthesis skipped sentence {sequence}: {e}")
                    continue
                if timings.first_audio_ms is None:
                    timings.first_audio_ms = _elapsed_ms(run_start)
                await self._emit(
                    Audio(audio=audio, source_text=sentence, sequence=sequence), token
                )
        except asyncio.CancelledError:
            await self._cancel_all(dispatched)
            self.history.add_assistant(reply + INTERRUPTED_MARKER)
            raise

        if synthesis_start is not None:
            timings.synthesis_ms = _elapsed_ms(synthesis_start)
        if not self._alive(token):
            return

        self.history.add_assistant(reply)
        timings.total_ms = _elapsed_ms(run_start)
        await self._emit(Complete(timings=timings), token)
        logger.info(
            f"{tag} complete: stt={timings.transcription_ms:.0f}ms "
            f"llm={timings.generation_ms:.0f}ms tts={timings.synthesis_ms:.0f}ms "
            f"total={timings.total_ms:.0f}ms"
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _alive(self, token: RunToken) -> bool:
        return not token.cancelled and self._token is token

    def _set_state(self, state: PipelineState, token: RunToken) -> None:
        if self._alive(token):
            self._state = state

    async def _emit(self, event: Event, token: RunToken) -> None:
        """Emit an event for a run, unless the run has been interrupted."""
        if not self._alive(token):
            logger.debug(
                f"[session={self.session_id}] dropping {event.event_type.value} "
                f"from stale run {token.run_id}"
            )
            return
        await self._put(event)

    async def _put(self, event: Event) -> None:
        event.session_id = self.session_id
        await self.outbox.put(event)

    @staticmethod
    async def _cancel_all(dispatched: list[tuple[str, asyncio.Task]]) -> None:
        tasks = [task for _, task in dispatched]
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
