"""Deterministic fallback utterances for failed model calls."""
import hashlib
import logging
from typing import Dict, List, Optional, Sequence

from config import FALLBACK_UTTERANCES, CLOSING_FALLBACK_UTTERANCES
from models.scenario import PracticeRole

logger = logging.getLogger(__name__)

ROLE_FALLBACKS: Dict[PracticeRole, List[str]] = {
    PracticeRole.SALES: [
        "That's interesting. Tell me more about what you're looking for.",
        "I see. What challenges are you currently facing in this area?",
        "How would solving this problem impact your business?",
    ],
    PracticeRole.PROJECT_MANAGER: [
        "Thanks for that update. What do you see as our next priority?",
        "I understand. What timeline are we working with for this?",
        "What resources do we need to make this successful?",
    ],
    PracticeRole.SUPPORT_AGENT: [
        "I understand your concern. Let me help you with that.",
        "Thank you for explaining. Can you walk me through what happened?",
        "I appreciate your patience. Let's work through this together.",
    ],
}


class FallbackSelector:
    """
    Picks a canned character line when the language model cannot be used.

    Selection hashes the session id and turn sequence, so the same failure
    in the same conversation always yields the same line.
    """

    def __init__(
        self,
        utterances: Optional[Sequence[str]] = None,
        closing_utterances: Optional[Sequence[str]] = None,
        role_utterances: Optional[Dict[PracticeRole, Sequence[str]]] = None
    ):
        self.utterances = list(FALLBACK_UTTERANCES if utterances is None else utterances)
        self.closing_utterances = list(
            CLOSING_FALLBACK_UTTERANCES if closing_utterances is None else closing_utterances
        )
        self.role_utterances = {
            role: list(lines)
            for role, lines in (ROLE_FALLBACKS if role_utterances is None else role_utterances).items()
            if lines
        }
        if not self.utterances or not self.closing_utterances:
            raise ValueError("Fallback utterance lists cannot be empty")

    def select(
        self,
        session_id: str,
        sequence: int,
        role: PracticeRole = PracticeRole.UNKNOWN,
        closing: bool = False
    ) -> str:
        """
        Select a fallback line.

        Args:
            session_id: Conversation the line is for
            sequence: Sequence number the character turn will take
            role: Practice role of the scenario, for role-flavoured lines
            closing: Whether the line must also wrap the conversation up

        Returns:
            Fallback utterance
        """
        if closing:
            pool = self.closing_utterances
        else:
            pool = self.role_utterances.get(role, self.utterances)

        digest = hashlib.sha256(f"{session_id}:{sequence}".encode("utf-8")).hexdigest()
        choice = pool[int(digest, 16) % len(pool)]
        logger.debug(f"Selected fallback for {session_id} (sequence {sequence}, closing={closing})")
        return choice
