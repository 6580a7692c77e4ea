"""Conversation history for one session.

An ordered, bounded list of user and assistant turns. Pushing past the
limit drops the oldest turn first.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator, Literal

from loguru import logger

Role = Literal["user", "assistant"]


@dataclass
class Turn:
    """One utterance in the conversation."""

    role: Role
    text: str
    timestamp: float = field(default_factory=time.time)


class ConversationHistory:
    """Bounded conversation history.

    Args:
        max_turns: Turns kept (default: 20).
    """

    def __init__(self, max_turns: int = 20) -> None:
        if max_turns <= 0:
            raise ValueError(f"max_turns must be positive, got {max_turns}")
        self.max_turns = max_turns
        self._turns: deque[Turn] = deque(maxlen=max_turns)

    def append(self, role: Role, text: str) -> Turn:
        """Add a turn, dropping the oldest one when full."""
        turn = Turn(role=role, text=text)
        if len(self._turns) == self.max_turns:
            logger.debug(f"History full ({self.max_turns}), dropping oldest turn")
        self._turns.append(turn)
        return turn

    def add_user(self, text: str) -> Turn:
        return self.append("user", text)

    def add_assistant(self, text: str) -> Turn:
        return self.append("assistant", text)

    def clear(self) -> None:
        self._turns.clear()

    def snapshot(self) -> list[Turn]:
        """A copy of the current turns, oldest first."""
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(list(self._turns))

    @property
    def last(self) -> Turn | None:
        return self._turns[-1] if self._turns else None
