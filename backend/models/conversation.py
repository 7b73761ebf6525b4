"""Conversation data models."""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Iterator, Optional, Tuple


class Speaker(str, Enum):
    """Who produced a turn."""
    USER = "user"
    CHARACTER = "character"


class ConversationStatus(str, Enum):
    """Lifecycle of a roleplay conversation."""
    ACTIVE = "active"
    CONCLUDING = "concluding"
    ENDED = "ended"


class ConversationError(Exception):
    """Base class for structural conversation errors surfaced to callers."""


class InvalidTurnOrder(ConversationError):
    """Raised when a turn is appended out of sequence or out of speaker order."""


class ConversationClosed(ConversationError):
    """Raised when a closed conversation is asked to accept another turn."""


class ConversationNotFound(ConversationError):
    """Raised when no stored conversation matches a session id."""


@dataclass(frozen=True)
class Turn:
    """Represents a single utterance in a conversation."""
    speaker: Speaker
    text: str
    sequence: int
    timestamp: datetime


class RecentWindow:
    """Restartable view over the last ``size`` turns of a conversation.

    Each call to ``iter()`` starts again from the oldest turn in the window,
    so the same window can be walked repeatedly.
    """

    def __init__(self, turns: Tuple[Turn, ...], size: int):
        self._turns = turns
        self._start = max(len(turns) - size, 0) if size > 0 else len(turns)

    def __iter__(self) -> Iterator[Turn]:
        for index in range(self._start, len(self._turns)):
            yield self._turns[index]

    def __len__(self) -> int:
        return len(self._turns) - self._start


@dataclass(frozen=True)
class ConversationState:
    """
    Ordered, append-only turn history for one roleplay session.

    Every mutating operation returns a new state; the receiver is left
    untouched so a failed advance never leaves a half-applied turn behind.
    """
    session_id: str
    scenario_id: str
    turns: Tuple[Turn, ...] = field(default_factory=tuple)
    status: ConversationStatus = ConversationStatus.ACTIVE

    @property
    def last_turn(self) -> Optional[Turn]:
        return self.turns[-1] if self.turns else None

    @property
    def next_sequence(self) -> int:
        last = self.last_turn
        return last.sequence + 1 if last else 1

    @property
    def is_closed(self) -> bool:
        return self.status == ConversationStatus.ENDED

    def append(self, turn: Turn) -> "ConversationState":
        """
        Append a turn and return the updated state.

        Args:
            turn: Turn to append; its sequence must be exactly one past the
                last turn's sequence (1 for the first turn)

        Returns:
            New ConversationState including the turn

        Raises:
            ConversationClosed: If the conversation has ended
            InvalidTurnOrder: On a sequence gap/repeat or a repeated speaker
        """
        if self.is_closed:
            raise ConversationClosed(f"Conversation {self.session_id} is closed")

        expected = self.next_sequence
        if turn.sequence != expected:
            raise InvalidTurnOrder(
                f"Expected sequence {expected} for conversation {self.session_id}, got {turn.sequence}"
            )

        last = self.last_turn
        if last is not None and last.speaker == turn.speaker:
            # Only the opening greeting may stack character turns
            opening = turn.speaker == Speaker.CHARACTER and not any(
                t.speaker == Speaker.USER for t in self.turns
            )
            if not opening:
                raise InvalidTurnOrder(
                    f"Consecutive {turn.speaker.value} turns are not allowed (sequence {turn.sequence})"
                )

        return replace(self, turns=self.turns + (turn,))

    def exchange_count(self) -> int:
        return len(self.turns) // 2

    def recent_window(self, n: int = 6) -> RecentWindow:
        return RecentWindow(self.turns, n)

    def elapsed_seconds(self, now: datetime) -> float:
        if not self.turns:
            return 0.0
        return max((now - self.turns[0].timestamp).total_seconds(), 0.0)

    def with_status(self, status: ConversationStatus) -> "ConversationState":
        return replace(self, status=status)

    def close(self) -> "ConversationState":
        return self.with_status(ConversationStatus.ENDED)
