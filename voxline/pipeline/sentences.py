"""Sentence chunking for incremental synthesis.

Text arrives from the language model in arbitrary fragments. The chunker
releases a sentence as soon as a terminator followed by whitespace has
been seen, and hands back whatever is left at the end of the stream.
"""

from __future__ import annotations

import re

# A terminator followed by whitespace closes a sentence
SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?…؟。！？])\s+")


def split_sentences(text: str) -> list[str]:
    """Split complete text into sentences."""
    return [part.strip() for part in SENTENCE_BOUNDARY.split(text) if part.strip()]


class SentenceChunker:
    """Accumulates streamed text and yields completed sentences in order."""

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, fragment: str) -> list[str]:
        """Add a fragment; return the sentences it completed."""
        self._pending += fragment
        parts = SENTENCE_BOUNDARY.split(self._pending)
        # the last part has no boundary after it yet
        self._pending = parts.pop()
        return [part.strip() for part in parts if part.strip()]

    def flush(self) -> str | None:
        """Return the unterminated remainder, if any, and reset."""
        remainder = self._pending.strip()
        self._pending = ""
        return remainder or None

    @property
    def pending(self) -> str:
        return self._pending
