"""Microsoft Edge text-to-speech backend (no API key).

Uses the unofficial Edge read-aloud service through ``edge-tts``. The
service may change without notice, so it serves as the fallback
synthesizer. Voice names from the OpenAI voice set are mapped onto
comparable neural voices.
"""

from __future__ import annotations

import io

import aiohttp
import edge_tts
from edge_tts.exceptions import NoAudioReceived, WebSocketError
from loguru import logger

from voxline.errors import ProviderUnavailable, SynthesisError
from voxline.providers.base import BaseSynthesizer

EDGE_VOICES: dict[str, str] = {
    "alloy": "en-US-JennyNeural",
    "echo": "en-US-GuyNeural",
    "fable": "en-GB-RyanNeural",
    "onyx": "en-US-ChristopherNeural",
    "nova": "en-US-AriaNeural",
    "shimmer": "en-US-MichelleNeural",
}
EDGE_ARABIC_VOICE = "ar-SA-ZariyahNeural"


def edge_rate(speed: float) -> str:
    """Convert a speed multiplier to Edge's signed percentage, e.g. 0.85 -> "-15%"."""
    return f"{round((speed - 1.0) * 100):+d}%"


class EdgeSynthesizer(BaseSynthesizer):
    """Edge TTS backend.

    Args:
        voices: Optional override of the voice mapping.
        arabic_voice: Neural voice used when script tuning reports Arabic.
    """

    audio_format = "mp3"

    def __init__(
        self,
        voices: dict[str, str] | None = None,
        arabic_voice: str = EDGE_ARABIC_VOICE,
    ):
        self._voices = {**EDGE_VOICES, **(voices or {})}
        self._arabic_voice = arabic_voice

    async def synthesize(
        self, text: str, voice: str, speed: float = 1.0, language: str | None = None
    ) -> bytes:
        edge_voice = self._arabic_voice if language == "ar" else self._voices.get(voice, voice)
        logger.debug(f"Edge TTS request: voice={edge_voice}, chars={len(text)}")

        buffer = io.BytesIO()
        try:
            communicate = edge_tts.Communicate(text, edge_voice, rate=edge_rate(speed))
            async for message in communicate.stream():
                if message["type"] == "audio":
                    buffer.write(message["data"])
        except NoAudioReceived as e:
            raise SynthesisError(str(e), backend="edge") from e
        except (WebSocketError, aiohttp.ClientError, OSError) as e:
            raise ProviderUnavailable(str(e), backend="edge") from e

        audio = buffer.getvalue()
        if not audio:
            raise SynthesisError("Edge TTS returned no audio", backend="edge")
        return audio
