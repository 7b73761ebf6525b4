"""Natural-ending policy for roleplay conversations."""
from dataclasses import dataclass
import logging
import re

from config import MAX_EXCHANGES, MAX_DURATION_SECONDS
from models.scenario import Difficulty

logger = logging.getLogger(__name__)

# Phrases a user tends to use when wrapping a conversation up
USER_END_SIGNALS = [
    "thank you",
    "thanks",
    "that's all",
    "that is all",
    "i think we're done",
    "wrap up",
    "wrap this up",
    "that covers everything",
    "nothing else",
    "i'm satisfied",
    "talk soon",
]

_USER_END_REGEX = re.compile(
    r"\b(" + "|".join(re.escape(s) for s in sorted(USER_END_SIGNALS, key=len, reverse=True)) + r")\b"
)


@dataclass(frozen=True)
class EndingPolicy:
    """
    Decides when a conversation should wind down.

    Attributes:
        max_exchanges: Exchange count at which the conversation concludes
        max_duration_seconds: Elapsed time at which the conversation concludes
        honor_user_signals: Also conclude when the user says goodbye
        min_exchanges_for_signals: Completed exchanges required before a
            goodbye can end the conversation
    """
    max_exchanges: int = MAX_EXCHANGES
    max_duration_seconds: float = MAX_DURATION_SECONDS
    honor_user_signals: bool = False
    min_exchanges_for_signals: int = 1

    @classmethod
    def for_difficulty(cls, difficulty: Difficulty, honor_user_signals: bool = False) -> "EndingPolicy":
        """Preset thresholds per scenario difficulty; advanced sessions run longer."""
        if difficulty == Difficulty.ADVANCED:
            return cls(max_exchanges=10, max_duration_seconds=900, honor_user_signals=honor_user_signals)
        return cls(honor_user_signals=honor_user_signals)

    def should_end(self, exchange_count: int, elapsed_seconds: float) -> bool:
        return exchange_count >= self.max_exchanges or elapsed_seconds >= self.max_duration_seconds

    def user_signals_end(self, utterance: str, exchange_count: int) -> bool:
        """
        Check if the user's utterance reads as a closing remark.

        Args:
            utterance: What the user just said
            exchange_count: Exchanges completed before this utterance; openers
                such as "Thanks for seeing me" never count as a goodbye

        Returns:
            True if the conversation should wind down on the user's cue
        """
        if not self.honor_user_signals or not utterance:
            return False
        if exchange_count < self.min_exchanges_for_signals:
            return False
        # Normalize curly apostrophes so "that’s all" matches
        text = utterance.lower().replace("’", "'")
        matched = bool(_USER_END_REGEX.search(text))
        if matched:
            logger.debug(f"User end signal detected: {utterance[:50]}")
        return matched
