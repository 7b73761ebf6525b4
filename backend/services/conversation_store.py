"""Conversation persistence: Supabase-backed and in-memory stores."""
import abc
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
from supabase import create_client, Client

from models.conversation import (
    ConversationError,
    ConversationNotFound,
    ConversationState,
    ConversationStatus,
    Speaker,
    Turn,
)
from config import SUPABASE_URL, SUPABASE_KEY

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    """Generate a unique session ID."""
    return f"sess_{uuid.uuid4().hex[:12]}"


class ConversationStore(abc.ABC):
    """Append-only persistence for conversation state, keyed by session id."""

    @abc.abstractmethod
    def create(self, scenario_id: str, session_id: Optional[str] = None) -> ConversationState:
        ...

    @abc.abstractmethod
    def load(self, session_id: str) -> ConversationState:
        ...

    @abc.abstractmethod
    def append_turns(self, session_id: str, turns: List[Turn]) -> None:
        ...

    @abc.abstractmethod
    def set_status(self, session_id: str, status: ConversationStatus) -> None:
        ...


class InMemoryConversationStore(ConversationStore):
    """Process-local store with the same semantics as the Supabase store."""

    def __init__(self):
        self._states: Dict[str, ConversationState] = {}

    def create(self, scenario_id: str, session_id: Optional[str] = None) -> ConversationState:
        session_id = session_id or generate_session_id()
        if session_id in self._states:
            raise ValueError(f"Conversation {session_id} already exists")
        state = ConversationState(session_id=session_id, scenario_id=scenario_id)
        self._states[session_id] = state
        logger.info(f"Created new conversation: {session_id}")
        return state

    def load(self, session_id: str) -> ConversationState:
        try:
            return self._states[session_id]
        except KeyError:
            raise ConversationNotFound(f"Conversation {session_id} not found") from None

    def append_turns(self, session_id: str, turns: List[Turn]) -> None:
        state = self.load(session_id)
        for turn in turns:
            state = state.append(turn)
        self._states[session_id] = state

    def set_status(self, session_id: str, status: ConversationStatus) -> None:
        self._states[session_id] = self.load(session_id).with_status(status)


class SupabaseConversationStore(ConversationStore):
    """Manages conversation storage and retrieval using Supabase PostgreSQL.

    Tables:
        conversations: session_id, scenario_id, status, created_at
        conversation_turns: session_id, sequence, speaker, text, timestamp
            (unique on session_id + sequence)
    """

    def __init__(
        self,
        supabase_url: str = SUPABASE_URL,
        supabase_key: str = SUPABASE_KEY,
        client: Optional[Client] = None
    ):
        """
        Initialize the store with a Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            client: Pre-built client; skips credential checks when given

        Raises:
            ValueError: If Supabase credentials are missing
        """
        if client is None:
            if not supabase_url or not supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")
            client = create_client(supabase_url, supabase_key)

        self.client: Client = client
        logger.info("SupabaseConversationStore initialized")

    def create(self, scenario_id: str, session_id: Optional[str] = None) -> ConversationState:
        session_id = session_id or generate_session_id()
        created_at = datetime.now(timezone.utc)

        try:
            self.client.table("conversations").insert({
                "session_id": session_id,
                "scenario_id": scenario_id,
                "status": ConversationStatus.ACTIVE.value,
                "created_at": created_at.isoformat()
            }).execute()
        except Exception as e:
            logger.error(f"Error creating conversation: {e}")
            raise

        logger.info(f"Created new conversation: {session_id}")
        return ConversationState(session_id=session_id, scenario_id=scenario_id)

    def load(self, session_id: str) -> ConversationState:
        """
        Load a conversation and replay its turns.

        Replaying through ConversationState.append re-checks the sequence
        and speaker rules on every load.

        Raises:
            ConversationNotFound: If no conversation row exists
            ConversationError: If the stored status is not a known status
        """
        result = self.client.table("conversations").select("*").eq("session_id", session_id).execute()
        if not result.data:
            raise ConversationNotFound(f"Conversation {session_id} not found")

        row = result.data[0]
        state = ConversationState(session_id=session_id, scenario_id=row["scenario_id"])
        for turn in self._get_turns(session_id):
            state = state.append(turn)

        stored_status = row.get("status") or ConversationStatus.ACTIVE.value
        try:
            status = ConversationStatus(stored_status)
        except ValueError:
            logger.error(f"Conversation {session_id} has unknown status {stored_status!r}")
            raise ConversationError(
                f"Conversation {session_id} has unknown status {stored_status!r}"
            ) from None
        logger.debug(f"Loaded conversation {session_id} with {len(state.turns)} turns ({status.value})")
        return state.with_status(status)

    def append_turns(self, session_id: str, turns: List[Turn]) -> None:
        """Insert new turns in one request."""
        if not turns:
            return

        try:
            self.client.table("conversation_turns").insert([
                {
                    "session_id": session_id,
                    "sequence": turn.sequence,
                    "speaker": turn.speaker.value,
                    "text": turn.text,
                    "timestamp": turn.timestamp.isoformat()
                }
                for turn in turns
            ]).execute()
            logger.info(f"Added {len(turns)} turns to conversation {session_id}")
        except Exception as e:
            logger.error(f"Error adding turns to conversation {session_id}: {e}")
            raise

    def set_status(self, session_id: str, status: ConversationStatus) -> None:
        try:
            self.client.table("conversations").update(
                {"status": status.value}
            ).eq("session_id", session_id).execute()
        except Exception as e:
            logger.error(f"Error updating status of conversation {session_id}: {e}")
            raise

    def _get_turns(self, session_id: str) -> Iterable[Turn]:
        result = (
            self.client.table("conversation_turns")
            .select("*")
            .eq("session_id", session_id)
            .order("sequence", desc=False)
            .execute()
        )
        for t in result.data or []:
            yield Turn(
                speaker=Speaker(t["speaker"]),
                text=t["text"],
                sequence=int(t["sequence"]),
                timestamp=parse_timestamp(t["timestamp"])
            )


def parse_timestamp(timestamp_str: str) -> datetime:
    """
    Parse timestamp string from Supabase, handling various formats.

    Supabase can return timestamps with varying microsecond precision,
    which Python's fromisoformat() can't always handle. This normalizes
    the fraction to six digits and treats naive values as UTC.
    """
    timestamp_str = timestamp_str.replace("Z", "+00:00")

    # Format: 2026-02-21T02:08:26.18976+00:00
    if "." in timestamp_str:
        head, tail = timestamp_str.split(".", 1)
        tz = ""
        for sign in ("+", "-"):
            if sign in tail:
                tail, tz_rest = tail.split(sign, 1)
                tz = sign + tz_rest
                break
        timestamp_str = f"{head}.{tail[:6].ljust(6, '0')}{tz}"

    parsed = datetime.fromisoformat(timestamp_str)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
