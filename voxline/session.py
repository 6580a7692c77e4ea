"""Session management for Voxline.

Each logical caller gets a Session holding its provider config,
conversation history, segmenter and pipeline. The SessionRegistry owns
every Session, routes transport messages to them and tears them down on
session end or idle timeout.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from loguru import logger

from voxline.audio.formats import detect_container
from voxline.audio.segmenter import AudioSegment, Segmenter
from voxline.audio.vad import VoiceActivityDetector
from voxline.config import CoreConfig, ProviderConfig
from voxline.core.events import (
    AudioChunk,
    ClearHistory,
    ConfigUpdate,
    ErrorEvent,
    Event,
    InboundMessage,
    Interrupt,
    SessionEnd,
)
from voxline.errors import BusyError, FormatError
from voxline.pipeline.history import ConversationHistory
from voxline.pipeline.orchestrator import ConversationPipeline
from voxline.providers.adapters import Responder, Synthesizer, Transcriber
from voxline.providers.base import TranscriptionHints


@dataclass
class Session:
    """One logical caller.

    ``outbox`` carries the session's outbound events in emission order;
    a ``None`` marks the end of the stream.
    """

    session_id: str
    config: ProviderConfig
    history: ConversationHistory
    segmenter: Segmenter
    pipeline: ConversationPipeline
    outbox: asyncio.Queue

    is_active: bool = True
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    ended_at: float | None = None

    def touch(self) -> None:
        self.last_activity = time.time()

    @property
    def duration_ms(self) -> int:
        """Session duration in milliseconds."""
        end = self.ended_at or time.time()
        return int((end - self.created_at) * 1000)


class SessionRegistry:
    """Owns every active Session.

    Backend adapters are shared by all sessions; everything else
    (history, segmenter, pipeline) is per session.

    Args:
        config: Process configuration (VAD, segmenter, session policy).
        transcriber: Speech-to-text adapter.
        responder: Language-model adapter.
        synthesizer: Text-to-speech adapter.

    Usage:
        registry = SessionRegistry(config, *build_adapters(config))
        await registry.on_audio_chunk("caller-1", pcm_frame)
        async for event in registry.events("caller-1"):
            ...
    """

    def __init__(
        self,
        config: CoreConfig,
        transcriber: Transcriber,
        responder: Responder,
        synthesizer: Synthesizer,
    ) -> None:
        self.config = config
        self.transcriber = transcriber
        self.responder = responder
        self.synthesizer = synthesizer
        self._sessions: dict[str, Session] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get_or_create(
        self, session_id: str, config: ProviderConfig | dict[str, Any] | None = None
    ) -> Session:
        """Return the session, creating it on first interaction.

        ``config`` only applies when the session is created.
        """
        session = self._sessions.get(session_id)
        if session is not None:
            return session

        if isinstance(config, dict):
            provider_config = self.config.providers.merged(config)
        else:
            provider_config = config or self.config.providers

        settings = self.config.session
        history = ConversationHistory(max_turns=settings.history_max_turns)
        outbox: asyncio.Queue = asyncio.Queue()
        vad = VoiceActivityDetector(self.config.vad)
        segmenter = Segmenter(vad, self.config.segmenter)
        pipeline = ConversationPipeline(
            session_id,
            self.transcriber,
            self.responder,
            self.synthesizer,
            history,
            outbox=outbox,
            busy_policy=settings.busy_policy,
            stt_hints=TranscriptionHints(
                language=settings.stt_language,
                prompt=settings.stt_prompt,
                sample_rate=self.config.vad.sample_rate,
            ),
        )
        session = Session(
            session_id=session_id,
            config=provider_config,
            history=history,
            segmenter=segmenter,
            pipeline=pipeline,
            outbox=outbox,
        )

        async def on_segment(segment: AudioSegment) -> None:
            await self._submit(session, segment)

        async def on_speech_start() -> None:
            await self._on_speech_start(session)

        segmenter.set_segment_callback(on_segment)
        segmenter.set_speech_start_callback(on_speech_start)
        if self.config.vad.calibrate_on_start:
            vad.calibrate()

        self._sessions[session_id] = session
        logger.info(f"Session created: {session_id}")
        return session

    def get(self, session_id: str) -> Session | None:
        """Get a session by id."""
        return self._sessions.get(session_id)

    def update_config(self, session_id: str, partial: dict[str, Any]) -> ProviderConfig:
        """Merge a partial ProviderConfig; applies from the next run on."""
        session = self.get_or_create(session_id)
        session.config = session.config.merged(partial)
        session.touch()
        logger.info(f"[session={session_id}] config updated: {sorted(partial)}")
        return session.config

    def clear(self, session_id: str) -> bool:
        """Drop the conversation history, keeping the provider config."""
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"clear: unknown session {session_id}")
            return False
        session.history.clear()
        session.touch()
        logger.info(f"[session={session_id}] history cleared")
        return True

    async def destroy(self, session_id: str) -> bool:
        """Cancel the active run, release timers and deregister the session."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.is_active = False
        session.ended_at = time.time()
        session.segmenter.close()
        await session.pipeline.close()
        session.outbox.put_nowait(None)
        logger.info(f"Session removed: {session_id} (duration: {session.duration_ms}ms)")
        return True

    async def reap_idle(self, now: float | None = None) -> int:
        """Destroy sessions idle longer than the configured timeout. Returns count removed."""
        now = time.time() if now is None else now
        timeout = self.config.session.idle_timeout_s
        expired = [
            sid
            for sid, s in self._sessions.items()
            if now - s.last_activity > timeout and not s.pipeline.is_running
        ]
        for sid in expired:
            logger.info(f"[session={sid}] idle timeout")
            await self.destroy(sid)
        return len(expired)

    async def close_all(self) -> None:
        for sid in list(self._sessions):
            await self.destroy(sid)

    @property
    def active_count(self) -> int:
        """Number of active sessions."""
        return len(self._sessions)

    async def events(self, session_id: str) -> AsyncIterator[Event]:
        """Yield a session's outbound events until it is destroyed.

        Raises:
            KeyError: If the session does not exist.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(session_id)
        while True:
            event = await session.outbox.get()
            if event is None:
                return
            yield event

    # ------------------------------------------------------------------
    # Transport entry points
    # ------------------------------------------------------------------

    async def on_audio_chunk(
        self, session_id: str, data: bytes, timestamp: float | None = None
    ) -> None:
        """Accept audio: a complete encoded recording or a raw PCM16 frame."""
        session = self.get_or_create(session_id)
        session.touch()
        if not data:
            return

        try:
            # a session mid-stream only receives raw frames
            container = None if session.segmenter.is_streaming else detect_container(data)
            if container is None and len(data) % 2:
                raise FormatError(f"Raw PCM16 chunk has odd length {len(data)}")
        except FormatError as e:
            logger.warning(f"[session={session_id}] rejected audio chunk: {e}")
            await session.outbox.put(
                ErrorEvent(session_id=session_id, kind=e.kind, message=str(e))
            )
            return

        if container is not None:
            segment = session.segmenter.wrap_encoded(data, container)
            logger.debug(f"[session={session_id}] {container} upload as segment {segment.sequence}")
            await self._submit(session, segment)
            return

        await session.segmenter.push(data)

    def on_config_update(self, session_id: str, fields: dict[str, Any]) -> ProviderConfig:
        return self.update_config(session_id, fields)

    async def on_interrupt(self, session_id: str) -> None:
        """Barge-in: drop unflushed audio and cancel the active run."""
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"interrupt: unknown session {session_id}")
            return
        session.touch()
        session.segmenter.clear()
        await session.pipeline.interrupt()

    def on_clear_history(self, session_id: str) -> bool:
        return self.clear(session_id)

    async def on_session_end(self, session_id: str) -> bool:
        return await self.destroy(session_id)

    async def dispatch(self, message: InboundMessage) -> None:
        """Route a validated inbound message to its handler."""
        if isinstance(message, AudioChunk):
            await self.on_audio_chunk(message.session_id, message.data, message.timestamp)
        elif isinstance(message, ConfigUpdate):
            self.on_config_update(message.session_id, message.fields)
        elif isinstance(message, Interrupt):
            await self.on_interrupt(message.session_id)
        elif isinstance(message, ClearHistory):
            self.on_clear_history(message.session_id)
        elif isinstance(message, SessionEnd):
            await self.on_session_end(message.session_id)
        else:
            raise TypeError(f"Unsupported inbound message: {type(message).__name__}")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _submit(self, session: Session, segment: AudioSegment) -> None:
        try:
            await session.pipeline.submit(segment, session.config)
        except BusyError:
            logger.debug(f"[session={session.session_id}] segment {segment.sequence} rejected")

    async def _on_speech_start(self, session: Session) -> None:
        if self.config.session.auto_barge_in and session.pipeline.is_running:
            logger.info(f"[session={session.session_id}] speech during reply, barging in")
            await session.pipeline.interrupt()
        session.pipeline.begin_buffering()
