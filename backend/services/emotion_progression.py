"""
Emotion progression for the simulated character.

Maps conversation progress (completed exchanges) onto a coarse emotional
label. Stages are deliberately wide so a one-turn difference does not make
the label flicker between responses.
"""

from enum import Enum
import logging
from typing import Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class EmotionLabel(str, Enum):
    """Closed set of character emotions."""
    PROFESSIONAL = "professional"
    CURIOUS = "curious"
    INTERESTED = "interested"
    ENGAGED = "engaged"
    SATISFIED = "satisfied"
    COLLABORATIVE = "collaborative"
    CONCERNED = "concerned"
    SKEPTICAL = "skeptical"


# Engagement intensity, used to check that staging never regresses
INTENSITY: Dict[EmotionLabel, int] = {
    EmotionLabel.SKEPTICAL: 0,
    EmotionLabel.CONCERNED: 0,
    EmotionLabel.PROFESSIONAL: 1,
    EmotionLabel.CURIOUS: 2,
    EmotionLabel.INTERESTED: 3,
    EmotionLabel.ENGAGED: 4,
    EmotionLabel.SATISFIED: 5,
    EmotionLabel.COLLABORATIVE: 5,
}

# (minimum exchanges, label), ascending
DEFAULT_STAGES: List[Tuple[int, EmotionLabel]] = [
    (0, EmotionLabel.PROFESSIONAL),
    (1, EmotionLabel.CURIOUS),
    (3, EmotionLabel.INTERESTED),
    (6, EmotionLabel.ENGAGED),
    (8, EmotionLabel.SATISFIED),
]

DEFAULT_ARC: List[Tuple[int, str]] = [
    (0, "initial distance, still sizing them up"),
    (3, "growing engagement"),
    (6, "building trust"),
    (9, "open collaboration"),
]


def _lookup(stages: Sequence[Tuple[int, object]], exchange_count: int):
    selected = stages[0][1]
    for threshold, value in stages:
        if exchange_count >= threshold:
            selected = value
        else:
            break
    return selected


class EmotionProgression:
    """Stages the character's emotional arc by exchange count."""

    def __init__(
        self,
        stages: Optional[Sequence[Tuple[int, EmotionLabel]]] = None,
        arc: Optional[Sequence[Tuple[int, str]]] = None
    ):
        """
        Args:
            stages: Ascending ``(min_exchanges, label)`` pairs; the first pair
                must start at 0 and intensity must never decrease
            arc: Ascending ``(min_exchanges, phrase)`` pairs describing the
                character arc for prompts

        Raises:
            ValueError: If the stages are empty, unsorted, or regress
        """
        self.stages = list(stages or DEFAULT_STAGES)
        self.arc = list(arc or DEFAULT_ARC)
        self._validate()

    def _validate(self) -> None:
        if not self.stages or self.stages[0][0] != 0:
            raise ValueError("Emotion stages must start at 0 exchanges")

        thresholds = [threshold for threshold, _ in self.stages]
        if thresholds != sorted(set(thresholds)):
            raise ValueError("Emotion stage thresholds must be strictly ascending")

        intensities = [INTENSITY[label] for _, label in self.stages]
        if intensities != sorted(intensities):
            raise ValueError("Emotion stages must not regress in engagement intensity")

    def emotion_for(self, exchange_count: int) -> EmotionLabel:
        """Return the character emotion for a number of completed exchanges."""
        if exchange_count < 0:
            logger.warning(f"Negative exchange count {exchange_count}, treating as 0")
            exchange_count = 0
        return _lookup(self.stages, exchange_count)

    def character_arc(self, exchange_count: int) -> str:
        return _lookup(self.arc, max(exchange_count, 0))

    @staticmethod
    def intensity(label: EmotionLabel) -> int:
        return INTENSITY[label]
