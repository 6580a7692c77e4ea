"""Tests for the conversation pipeline.

Tests cover:
- Event order of a full run
- Audio delivered in sentence order regardless of synthesis speed
- Buffered (non-streaming) generation
- Interrupt / barge-in
- Busy policies
- Transcription, generation and synthesis failures
- Bounded history
"""

import asyncio

import pytest

from fakes import FakeResponder, FakeSynthesizer, FakeTranscriber, drain
from voxline.audio.segmenter import AudioSegment
from voxline.config import ProviderConfig
from voxline.core.events import (
    Audio,
    Complete,
    ErrorEvent,
    EventType,
    Interrupted,
    Partial,
    Response,
    Transcript,
)
from voxline.errors import BusyError, ErrorKind, ProviderUnavailable, TranscriptionError
from voxline.pipeline.history import ConversationHistory
from voxline.pipeline.orchestrator import (
    INTERRUPTED_MARKER,
    NO_SPEECH_MESSAGE,
    ConversationPipeline,
    PipelineState,
)
from voxline.providers.adapters import Responder, Synthesizer, Transcriber


def make_pipeline(
    stt=None, llm=None, tts=None, max_turns=20, busy_policy="queue"
) -> ConversationPipeline:
    return ConversationPipeline(
        "s1",
        Transcriber({"openai": stt or FakeTranscriber()}),
        Responder({"groq": llm or FakeResponder()}),
        Synthesizer({"openai": tts or FakeSynthesizer()}, primary="openai"),
        ConversationHistory(max_turns=max_turns),
        busy_policy=busy_policy,
    )


def segment(n: int = 1) -> AudioSegment:
    return AudioSegment(sequence=n, audio=b"\x01\x00" * 1600)


CONFIG = ProviderConfig()


# =========================================================================
# Happy path
# =========================================================================


class TestRun:
    """A full Transcribe -> Generate -> Synthesize run."""

    @pytest.mark.asyncio
    async def test_event_order(self):
        llm = FakeResponder(chunks=["Hello! ", "How can I help?"])
        pipeline = make_pipeline(llm=llm)

        await pipeline.submit(segment(), CONFIG)
        await pipeline.wait_idle()
        events = drain(pipeline.outbox)

        assert [e.event_type for e in events] == [
            EventType.TRANSCRIPT,
            EventType.PARTIAL,
            EventType.PARTIAL,
            EventType.RESPONSE,
            EventType.AUDIO,
            EventType.AUDIO,
            EventType.COMPLETE,
        ]
        assert events[0].text == "Hi"
        assert events[3].text == "Hello! How can I help?"
        assert [e.source_text for e in events if isinstance(e, Audio)] == [
            "Hello!",
            "How can I help?",
        ]
        assert all(e.session_id == "s1" for e in events)
        assert pipeline.state is PipelineState.IDLE

    @pytest.mark.asyncio
    async def test_short_buffered_reply(self):
        llm = FakeResponder(chunks=["Hello!"])
        pipeline = make_pipeline(llm=llm)

        await pipeline.submit(segment(), ProviderConfig(streaming=False))
        await pipeline.wait_idle()
        events = drain(pipeline.outbox)

        assert [e.event_type for e in events] == [
            EventType.TRANSCRIPT,
            EventType.RESPONSE,
            EventType.AUDIO,
            EventType.COMPLETE,
        ]
        assert events[1].text == "Hello!"
        assert events[2].sequence == 1

    @pytest.mark.asyncio
    async def test_history_after_run(self):
        pipeline = make_pipeline()
        await pipeline.submit(segment(), CONFIG)
        await pipeline.wait_idle()

        turns = pipeline.history.snapshot()
        assert [(t.role, t.text) for t in turns] == [("user", "Hi"), ("assistant", "Hello!")]

    @pytest.mark.asyncio
    async def test_audio_in_sentence_order_when_later_sentence_is_faster(self):
        llm = FakeResponder(chunks=["First one. ", "Second one."])
        tts = FakeSynthesizer(delays={"First one.": 0.05, "Second one.": 0.0})
        pipeline = make_pipeline(llm=llm, tts=tts)

        await pipeline.submit(segment(), CONFIG)
        await pipeline.wait_idle()
        audio = [e for e in drain(pipeline.outbox) if isinstance(e, Audio)]

        assert [(a.sequence, a.source_text) for a in audio] == [
            (1, "First one."),
            (2, "Second one."),
        ]
        assert audio[0].audio == b"audio:First one."

    @pytest.mark.asyncio
    async def test_response_precedes_all_audio(self):
        llm = FakeResponder(chunks=["One. ", "Two. ", "Three."])
        pipeline = make_pipeline(llm=llm)
        await pipeline.submit(segment(), CONFIG)
        await pipeline.wait_idle()
        types = [e.event_type for e in drain(pipeline.outbox)]

        assert types.index(EventType.RESPONSE) < types.index(EventType.AUDIO)
        assert types[-1] is EventType.COMPLETE

    @pytest.mark.asyncio
    async def test_buffered_generation_has_no_partials(self):
        llm = FakeResponder(chunks=["Sure. ", "Done."])
        pipeline = make_pipeline(llm=llm)
        config = ProviderConfig(streaming=False)

        await pipeline.submit(segment(), config)
        await pipeline.wait_idle()
        events = drain(pipeline.outbox)

        assert not any(isinstance(e, Partial) for e in events)
        assert llm.calls[0]["stream"] is False
        assert len([e for e in events if isinstance(e, Audio)]) == 2

    @pytest.mark.asyncio
    async def test_complete_carries_timings(self):
        pipeline = make_pipeline()
        await pipeline.submit(segment(), CONFIG)
        await pipeline.wait_idle()
        complete = drain(pipeline.outbox)[-1]

        assert isinstance(complete, Complete)
        assert complete.timings.first_audio_ms is not None
        assert complete.timings.total_ms >= complete.timings.transcription_ms

    @pytest.mark.asyncio
    async def test_raw_segment_is_sent_as_wav(self):
        stt = FakeTranscriber()
        pipeline = make_pipeline(stt=stt)
        await pipeline.submit(segment(), CONFIG)
        await pipeline.wait_idle()

        audio, container, hints = stt.calls[0]
        assert container == "wav"
        assert audio[:4] == b"RIFF"
        assert len(audio) == 44 + 3200

    @pytest.mark.asyncio
    async def test_system_prompt_and_history_sent(self):
        llm = FakeResponder()
        pipeline = make_pipeline(llm=llm)
        config = ProviderConfig(system_prompt="Be brief.")

        await pipeline.submit(segment(), config)
        await pipeline.wait_idle()
        messages = llm.calls[0]["messages"]

        assert messages[0].role == "system"
        assert messages[0].content == "Be brief."
        assert (messages[-1].role, messages[-1].content) == ("user", "Hi")


# =========================================================================
# Failures
# =========================================================================


class TestFailures:
    """Stage failures end the run with an error event."""

    @pytest.mark.asyncio
    async def test_empty_transcript_is_no_speech(self):
        pipeline = make_pipeline(stt=FakeTranscriber(text="   "))
        await pipeline.submit(segment(), CONFIG)
        await pipeline.wait_idle()
        events = drain(pipeline.outbox)

        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        assert events[0].kind is ErrorKind.NO_SPEECH
        assert events[0].message == NO_SPEECH_MESSAGE
        assert len(pipeline.history) == 0

    @pytest.mark.asyncio
    async def test_transcription_failure(self):
        stt = FakeTranscriber(error=TranscriptionError("bad audio"))
        pipeline = make_pipeline(stt=stt)
        await pipeline.submit(segment(), CONFIG)
        await pipeline.wait_idle()
        events = drain(pipeline.outbox)

        assert [e.kind for e in events] == [ErrorKind.TRANSCRIPTION]
        assert len(pipeline.history) == 0

    @pytest.mark.asyncio
    async def test_odd_length_pcm_is_format_error(self):
        pipeline = make_pipeline()
        await pipeline.submit(AudioSegment(sequence=1, audio=b"\x01\x02\x03"), CONFIG)
        await pipeline.wait_idle()
        events = drain(pipeline.outbox)

        assert events[0].kind is ErrorKind.FORMAT

    @pytest.mark.asyncio
    async def test_generation_failure_keeps_user_turn(self):
        llm = FakeResponder(error=ProviderUnavailable("rate limited"))
        pipeline = make_pipeline(llm=llm)
        await pipeline.submit(segment(), CONFIG)
        await pipeline.wait_idle()
        events = drain(pipeline.outbox)

        assert isinstance(events[0], Transcript)
        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].kind is ErrorKind.GENERATION
        assert [t.role for t in pipeline.history] == ["user"]

    @pytest.mark.asyncio
    async def test_empty_reply_is_generation_error(self):
        pipeline = make_pipeline(llm=FakeResponder(chunks=[]))
        await pipeline.submit(segment(), CONFIG)
        await pipeline.wait_idle()
        events = drain(pipeline.outbox)

        assert events[-1].kind is ErrorKind.GENERATION
        assert not any(isinstance(e, Response) for e in events)

    @pytest.mark.asyncio
    async def test_failed_sentence_is_skipped(self):
        llm = FakeResponder(chunks=["Good. ", "Broken. ", "Fine."])
        tts = FakeSynthesizer(fail=("Broken.",))
        pipeline = make_pipeline(llm=llm, tts=tts)
        await pipeline.submit(segment(), CONFIG)
        await pipeline.wait_idle()
        events = drain(pipeline.outbox)

        audio = [e for e in events if isinstance(e, Audio)]
        assert [(a.sequence, a.source_text) for a in audio] == [(1, "Good."), (3, "Fine.")]
        assert isinstance(events[-1], Complete)
        assert pipeline.history.last.text == "Good. Broken. Fine."

    @pytest.mark.asyncio
    async def test_unexpected_transcription_failure_keeps_its_stage(self):
        pipeline = ConversationPipeline(
            "s1",
            Transcriber({}),
            Responder({"groq": FakeResponder()}),
            Synthesizer({"openai": FakeSynthesizer()}),
            ConversationHistory(),
        )
        await pipeline.submit(segment(), CONFIG)
        await pipeline.wait_idle()
        events = drain(pipeline.outbox)

        assert [e.kind for e in events] == [ErrorKind.TRANSCRIPTION]
        assert "No STT backends" in events[0].message

    @pytest.mark.asyncio
    async def test_unexpected_synthesis_failure_keeps_its_stage(self):
        pipeline = ConversationPipeline(
            "s1",
            Transcriber({"openai": FakeTranscriber()}),
            Responder({"groq": FakeResponder(chunks=["Hello."])}),
            Synthesizer({}),
            ConversationHistory(),
        )
        await pipeline.submit(segment(), ProviderConfig(streaming=False))
        await pipeline.wait_idle()
        events = drain(pipeline.outbox)

        assert [e.event_type for e in events] == [
            EventType.TRANSCRIPT,
            EventType.RESPONSE,
            EventType.ERROR,
        ]
        assert events[-1].kind is ErrorKind.SYNTHESIS


# =========================================================================
# Interrupt
# =========================================================================


class TestInterrupt:
    """Barge-in cancels the active run."""

    @pytest.mark.asyncio
    async def test_interrupt_during_generation(self):
        llm = FakeResponder(chunks=["Hello there. ", "More ", "words."], delay=0.05)
        pipeline = make_pipeline(llm=llm)

        await pipeline.submit(segment(), CONFIG)
        while True:
            event = await pipeline.outbox.get()
            if isinstance(event, Partial):
                break

        await pipeline.interrupt()
        events = drain(pipeline.outbox)

        assert [e.event_type for e in events] == [EventType.INTERRUPTED]
        assert pipeline.state is PipelineState.IDLE
        assert not pipeline.is_running
        assert pipeline.history.last.role == "assistant"
        assert pipeline.history.last.text == "Hello there." + INTERRUPTED_MARKER

        # nothing from the cancelled run shows up later
        await asyncio.sleep(0.15)
        assert pipeline.outbox.empty()

    @pytest.mark.asyncio
    async def test_interrupt_during_audio_delivery(self):
        llm = FakeResponder(chunks=["First. ", "Second."])
        tts = FakeSynthesizer(delays={"Second.": 5.0})
        pipeline = make_pipeline(llm=llm, tts=tts)

        await pipeline.submit(segment(), CONFIG)
        while True:
            event = await asyncio.wait_for(pipeline.outbox.get(), timeout=1.0)
            if isinstance(event, Audio):
                break
        assert event.source_text == "First."
        assert pipeline.state is PipelineState.SYNTHESIZING

        await pipeline.interrupt()
        await asyncio.sleep(0.05)

        assert [e.event_type for e in drain(pipeline.outbox)] == [EventType.INTERRUPTED]
        assert [t.role for t in pipeline.history] == ["user", "assistant"]
        assert pipeline.history.last.text == "First. Second." + INTERRUPTED_MARKER

    @pytest.mark.asyncio
    async def test_submit_while_interrupt_unwinds(self):
        class SlowToCancel(FakeSynthesizer):
            async def synthesize(self, text, voice, speed=1.0, language=None):
                try:
                    return await super().synthesize(text, voice, speed, language)
                except asyncio.CancelledError:
                    await asyncio.sleep(0.05)
                    raise

        llm = FakeResponder(chunks=["Stuck."])
        pipeline = make_pipeline(llm=llm, tts=SlowToCancel(delays={"Stuck.": 5.0}))

        await pipeline.submit(segment(1), CONFIG)
        while True:
            event = await asyncio.wait_for(pipeline.outbox.get(), timeout=1.0)
            if isinstance(event, Response):
                break

        async def late_submit():
            await asyncio.sleep(0.01)
            await pipeline.submit(segment(2), CONFIG)

        await asyncio.gather(pipeline.interrupt(), late_submit())

        # the second run owns the pipeline now
        assert pipeline.is_running
        assert pipeline.state is not PipelineState.IDLE
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(pipeline.wait_idle(), timeout=0.02)

        await pipeline.close()
        assert pipeline.state is PipelineState.IDLE

    @pytest.mark.asyncio
    async def test_interrupt_drops_queued_segment(self):
        llm = FakeResponder(chunks=["Slow reply."], delay=0.05)
        pipeline = make_pipeline(llm=llm)

        await pipeline.submit(segment(1), CONFIG)
        await pipeline.submit(segment(2), CONFIG)
        assert pipeline.has_pending

        await pipeline.interrupt()
        await pipeline.wait_idle()
        await asyncio.sleep(0.1)

        assert not pipeline.has_pending
        assert len(llm.calls) <= 1
        assert isinstance(drain(pipeline.outbox)[-1], Interrupted)

    @pytest.mark.asyncio
    async def test_interrupt_when_idle(self):
        pipeline = make_pipeline()
        await pipeline.interrupt()

        events = drain(pipeline.outbox)
        assert [e.event_type for e in events] == [EventType.INTERRUPTED]
        assert pipeline.state is PipelineState.IDLE

    @pytest.mark.asyncio
    async def test_new_run_after_interrupt(self):
        llm = FakeResponder(chunks=["Hi again."], delay=0.02)
        pipeline = make_pipeline(llm=llm)

        await pipeline.submit(segment(1), CONFIG)
        await pipeline.interrupt()
        drain(pipeline.outbox)

        await pipeline.submit(segment(2), CONFIG)
        await pipeline.wait_idle()
        assert isinstance(drain(pipeline.outbox)[-1], Complete)


# =========================================================================
# Busy policy
# =========================================================================


class TestBusyPolicy:
    """Segments arriving while a run is active."""

    @pytest.mark.asyncio
    async def test_queue_keeps_one_and_rejects_the_rest(self):
        llm = FakeResponder(chunks=["Okay."], delay=0.03)
        pipeline = make_pipeline(llm=llm)

        await pipeline.submit(segment(1), CONFIG)
        await pipeline.submit(segment(2), CONFIG)
        with pytest.raises(BusyError):
            await pipeline.submit(segment(3), CONFIG)

        await pipeline.wait_idle()
        events = drain(pipeline.outbox)

        busy = [e for e in events if isinstance(e, ErrorEvent)]
        assert [e.kind for e in busy] == [ErrorKind.BUSY]
        assert len([e for e in events if isinstance(e, Complete)]) == 2
        assert len(llm.calls) == 2

    @pytest.mark.asyncio
    async def test_reject_policy(self):
        llm = FakeResponder(chunks=["Okay."], delay=0.03)
        pipeline = make_pipeline(llm=llm, busy_policy="reject")

        await pipeline.submit(segment(1), CONFIG)
        with pytest.raises(BusyError):
            await pipeline.submit(segment(2), CONFIG)

        await pipeline.wait_idle()
        assert len(llm.calls) == 1

    @pytest.mark.asyncio
    async def test_config_snapshot_is_per_run(self):
        tts = FakeSynthesizer()
        llm = FakeResponder(chunks=["Okay."], delay=0.02)
        pipeline = make_pipeline(llm=llm, tts=tts)

        await pipeline.submit(segment(1), ProviderConfig(tts_voice="echo"))
        await pipeline.submit(segment(2), ProviderConfig(tts_voice="onyx"))
        await pipeline.wait_idle()

        assert [call[1] for call in tts.calls] == ["echo", "onyx"]


# =========================================================================
# History
# =========================================================================


class TestHistoryBound:
    """History never grows past max_turns."""

    @pytest.mark.asyncio
    async def test_oldest_turns_dropped(self):
        pipeline = make_pipeline(max_turns=4)
        for n in range(3):
            await pipeline.submit(segment(n), CONFIG)
            await pipeline.wait_idle()

        assert len(pipeline.history) == 4
        assert [t.role for t in pipeline.history] == ["user", "assistant", "user", "assistant"]
