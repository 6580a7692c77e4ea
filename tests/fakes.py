"""In-memory backends and audio helpers shared by the test modules."""

from __future__ import annotations

import asyncio

import numpy as np

from voxline.errors import SynthesisError
from voxline.providers.base import BaseResponder, BaseSynthesizer, BaseTranscriber

SAMPLE_RATE = 16000


def tone_frame(ms: int = 20, amplitude: float = 0.3, freq: float = 1000.0) -> bytes:
    """A PCM16 sine frame inside the speech band."""
    n = SAMPLE_RATE * ms // 1000
    t = np.arange(n) / SAMPLE_RATE
    samples = amplitude * np.sin(2 * np.pi * freq * t)
    return (samples * 32767).astype("<i2").tobytes()


def silence_frame(ms: int = 20) -> bytes:
    return b"\x00\x00" * (SAMPLE_RATE * ms // 1000)


class FakeTranscriber(BaseTranscriber):
    def __init__(self, text: str = "Hi", error: Exception | None = None, **kwargs):
        self.text = text
        self.error = error
        self.kwargs = kwargs
        self.calls: list[tuple[bytes, str, object]] = []

    async def transcribe(self, audio, container, hints):
        self.calls.append((audio, container, hints))
        if self.error:
            raise self.error
        return self.text


class FakeResponder(BaseResponder):
    default_model = "fake-default"
    known_models = ("fake-default", "fake-large")

    def __init__(
        self,
        chunks: list[str] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        **kwargs,
    ):
        self.chunks = ["Hello!"] if chunks is None else chunks
        self.error = error
        self.delay = delay
        self.kwargs = kwargs
        self.calls: list[dict] = []

    async def generate(self, messages, model, temperature=0.7, max_tokens=150, stream=True):
        self.calls.append(
            {"messages": list(messages), "model": model, "stream": stream,
             "temperature": temperature}
        )
        if self.error:
            raise self.error
        if not stream:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield "".join(self.chunks)
            return
        for chunk in self.chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk


class FakeSynthesizer(BaseSynthesizer):
    def __init__(
        self,
        delays: dict[str, float] | None = None,
        fail: tuple[str, ...] = (),
        error: Exception | None = None,
        **kwargs,
    ):
        self.delays = delays or {}
        self.fail = set(fail)
        self.error = error
        self.kwargs = kwargs
        self.calls: list[tuple[str, str, float, str | None]] = []

    async def synthesize(self, text, voice, speed=1.0, language=None):
        self.calls.append((text, voice, speed, language))
        await asyncio.sleep(self.delays.get(text, 0.0))
        if self.error:
            raise self.error
        if text in self.fail:
            raise SynthesisError(f"cannot speak {text!r}", backend="fake")
        return f"audio:{text}".encode()


def drain(queue: asyncio.Queue) -> list:
    """Everything currently in a queue, in order."""
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items
