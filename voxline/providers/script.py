"""Script-sensitive speech tuning.

Text written mostly in Arabic script gets a voice and speed validated
for it, right-to-left embedding marks and a terminal punctuation mark so
the synthesizer ends the sentence with a proper cadence.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

ARABIC_PATTERN = re.compile(
    "[\u0600-\u06FF\u0750-\u077F\u08A0-\u08FF\uFB50-\uFDFF\uFE70-\uFEFF]"
)
BIDI_EMBEDDING_PATTERN = re.compile("[\u202A-\u202E]")
WHITESPACE_PATTERN = re.compile(r"\s+")

RTL_EMBEDDING = "\u202B"
POP_DIRECTIONAL = "\u202C"
# . ! ? and the Arabic comma, semicolon and question mark
SENTENCE_TERMINATORS = (".", "!", "?", "\u060C", "\u061B", "\u061F")

SCRIPT_RATIO_THRESHOLD = 0.30


@dataclass(frozen=True)
class ScriptProfile:
    """Voice settings validated for one script."""

    language: str
    voice: str
    speed: float


ARABIC_PROFILE = ScriptProfile(language="ar", voice="nova", speed=0.85)


@dataclass(frozen=True)
class SpeechRequest:
    """What actually gets sent to a synthesizer backend."""

    text: str
    voice: str
    speed: float
    language: str | None = None


def script_ratio(text: str) -> float:
    """Share of non-whitespace characters that are Arabic script."""
    visible = WHITESPACE_PATTERN.sub("", text)
    if not visible:
        return 0.0
    return len(ARABIC_PATTERN.findall(visible)) / len(visible)


def prepare_rtl_text(text: str) -> str:
    """Normalize Arabic text for synthesis."""
    cleaned = BIDI_EMBEDDING_PATTERN.sub("", text)
    cleaned = WHITESPACE_PATTERN.sub(" ", cleaned).strip()
    if cleaned and not cleaned.endswith(SENTENCE_TERMINATORS):
        cleaned += "."
    return f"{RTL_EMBEDDING}{cleaned}{POP_DIRECTIONAL}"


def tune_for_script(text: str, voice: str, speed: float) -> SpeechRequest:
    """Apply the Arabic profile when more than 30% of the text is Arabic script."""
    if script_ratio(text) > SCRIPT_RATIO_THRESHOLD:
        profile = ARABIC_PROFILE
        return SpeechRequest(
            text=prepare_rtl_text(text),
            voice=profile.voice,
            speed=profile.speed,
            language=profile.language,
        )
    return SpeechRequest(text=text, voice=voice, speed=speed)
