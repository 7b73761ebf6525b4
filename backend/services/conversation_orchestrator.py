"""
Conversation orchestrator for roleplay sessions.

Drives one exchange at a time: the user's utterance goes in, a character
turn comes out along with the character's emotion and whether the
conversation should wind down. Provider failures never reach the caller;
they are replaced by deterministic fallback lines. Structural misuse
(out-of-order turns, closed or unknown sessions) is raised.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import AsyncIterator, Dict, Optional

from config import LLM_TIMEOUT_SECONDS
from models.conversation import (
    ConversationClosed,
    ConversationState,
    ConversationStatus,
    Speaker,
    Turn,
)
from models.scenario import ScenarioContext
from services.conversation_store import ConversationStore
from services.emotion_progression import EmotionLabel, EmotionProgression
from services.ending_policy import EndingPolicy
from services.fallback_selector import FallbackSelector
from services.llm_client import GenerationConfig, LLMClient, ProviderError, ProviderTimeout
from services.progression_analyzer import ProgressionAnalyzer, ProgressionReport
from services.prompt_assembler import PromptAssembler
from services.response_sanitizer import EmptyResponse, ResponseSanitizer
from services.scenario_repository import ScenarioRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdvanceResult:
    """Outcome of one advance() call."""
    character_text: str
    emotion: EmotionLabel
    should_end_conversation: bool
    new_state: ConversationState
    used_fallback: bool = False
    progression: Optional[ProgressionReport] = None


def _discard_result(task: "asyncio.Future") -> None:
    # Retrieve the outcome of an abandoned model call so asyncio doesn't warn about it
    if not task.cancelled():
        task.exception()


class ConversationOrchestrator:
    """Advances roleplay conversations held in a ConversationStore."""

    def __init__(
        self,
        store: ConversationStore,
        scenarios: ScenarioRepository,
        llm_client: LLMClient,
        assembler: Optional[PromptAssembler] = None,
        sanitizer: Optional[ResponseSanitizer] = None,
        emotion_progression: Optional[EmotionProgression] = None,
        ending_policy: Optional[EndingPolicy] = None,
        fallback_selector: Optional[FallbackSelector] = None,
        generation_config: Optional[GenerationConfig] = None,
        progression_analyzer: Optional[ProgressionAnalyzer] = None,
        timeout_seconds: float = LLM_TIMEOUT_SECONDS
    ):
        """
        Args:
            store: Persistence collaborator
            scenarios: Scenario lookup collaborator
            llm_client: Language-model collaborator exposing ``generate``
            assembler: Prompt builder
            sanitizer: Model output cleaner
            emotion_progression: Emotion staging
            ending_policy: Fixed ending thresholds; when omitted the policy is
                picked per scenario difficulty
            fallback_selector: Canned lines for failed model calls
            generation_config: Model and sampling parameters
            progression_analyzer: Topic, objective and stage analytics reported
                with each result
            timeout_seconds: Upper bound on one model call
        """
        self.store = store
        self.scenarios = scenarios
        self.llm_client = llm_client
        self.emotion_progression = emotion_progression or EmotionProgression()
        self.assembler = assembler or PromptAssembler(emotion_progression=self.emotion_progression)
        self.sanitizer = sanitizer or ResponseSanitizer()
        self.ending_policy = ending_policy
        self.fallback_selector = fallback_selector or FallbackSelector()
        self.generation_config = generation_config or GenerationConfig()
        self.progression_analyzer = progression_analyzer or ProgressionAnalyzer()
        self.timeout_seconds = timeout_seconds

        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Dict[str, int] = {}

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        """Serialize work on one session; the lock is dropped once nobody waits on it."""
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_holders[session_id] = self._lock_holders.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[session_id] -= 1
            if self._lock_holders[session_id] == 0:
                del self._lock_holders[session_id]
                del self._locks[session_id]

    def _policy_for(self, scenario: ScenarioContext) -> EndingPolicy:
        if self.ending_policy is not None:
            return self.ending_policy
        return EndingPolicy.for_difficulty(scenario.difficulty)

    async def start(
        self,
        scenario_id: str,
        now: datetime,
        session_id: Optional[str] = None,
        greeting: Optional[str] = None
    ) -> ConversationState:
        """
        Create a conversation for a scenario.

        Args:
            scenario_id: Scenario to roleplay
            now: Creation time, used as the greeting timestamp
            session_id: Explicit session id (generated when omitted)
            greeting: Optional opening line spoken by the character

        Returns:
            The new ConversationState

        Raises:
            ScenarioNotFound: If the scenario does not exist
        """
        scenario = self.scenarios.get(scenario_id)
        state = self.store.create(scenario.scenario_id, session_id=session_id)

        if greeting and greeting.strip():
            turn = Turn(Speaker.CHARACTER, greeting.strip(), state.next_sequence, now)
            state = state.append(turn)
            self.store.append_turns(state.session_id, [turn])

        logger.info(
            f"Started conversation with {scenario.character_name} for scenario {scenario_id}",
            extra={"session_id": state.session_id}
        )
        return state

    async def close(self, session_id: str) -> ConversationState:
        """Mark a conversation as ended. Closing twice is a no-op."""
        async with self._session_lock(session_id):
            state = self.store.load(session_id)
            if state.is_closed:
                return state
            self.store.set_status(session_id, ConversationStatus.ENDED)
            logger.info(
                f"Closed conversation after {state.exchange_count()} exchanges",
                extra={"session_id": session_id}
            )
            return state.close()

    async def advance(self, session_id: str, user_utterance: str, now: datetime) -> AdvanceResult:
        """
        Record the user's utterance and produce the character's reply.

        Either both turns are persisted or neither is. A failed or timed-out
        model call is replaced by a fallback line rather than raised.

        Args:
            session_id: Conversation to advance
            user_utterance: What the user said
            now: Request time (timezone-aware)

        Returns:
            AdvanceResult with the reply text, emotion, ending flag and new state

        Raises:
            ValueError: If the utterance is blank
            ConversationNotFound: If the session does not exist
            ConversationClosed: If the conversation has ended
            InvalidTurnOrder: If the stored history cannot take another user turn
            ScenarioNotFound: If the session's scenario no longer exists
        """
        utterance = (user_utterance or "").strip()
        if not utterance:
            raise ValueError("User utterance cannot be empty")

        async with self._session_lock(session_id):
            state = self.store.load(session_id)
            if state.is_closed:
                raise ConversationClosed(f"Conversation {session_id} is closed")

            scenario = self.scenarios.get(state.scenario_id)
            policy = self._policy_for(scenario)

            user_turn = Turn(Speaker.USER, utterance, state.next_sequence, now)
            with_user = state.append(user_turn)

            emotion = self.emotion_progression.emotion_for(state.exchange_count())
            # Exchange count once the character has replied
            exchanges_after = (len(with_user.turns) + 1) // 2
            ending = (
                policy.should_end(exchanges_after, with_user.elapsed_seconds(now))
                or policy.user_signals_end(utterance, state.exchange_count())
            )

            payload = self.assembler.assemble(scenario, state, utterance, emotion, now, concluding=ending)
            logger.debug(
                f"Assembled prompt: {payload.token_count} tokens, {payload.history_turns} history turns",
                extra={"session_id": session_id}
            )

            used_fallback = False
            try:
                raw = await self._call_model(payload.text)
                character_text = self.sanitizer.clean(raw, scenario.character_name)
            except (ProviderError, EmptyResponse) as e:
                code = e.error.code if isinstance(e, ProviderError) else "EMPTY_RESPONSE"
                logger.warning(
                    f"Using fallback response: {e}",
                    extra={"session_id": session_id, "error_code": code}
                )
                character_text = self.fallback_selector.select(
                    session_id, with_user.next_sequence, role=scenario.role, closing=ending
                )
                emotion = EmotionLabel.PROFESSIONAL
                used_fallback = True

            character_turn = Turn(Speaker.CHARACTER, character_text, with_user.next_sequence, now)
            new_state = with_user.append(character_turn)
            if ending:
                new_state = new_state.with_status(ConversationStatus.CONCLUDING)

            self.store.append_turns(session_id, [user_turn, character_turn])
            if new_state.status != state.status:
                try:
                    self.store.set_status(session_id, new_state.status)
                except Exception as e:
                    # Turns are committed; the ending flag is recomputed from them on the next advance
                    logger.error(
                        f"Error updating status to {new_state.status.value}: {e}",
                        exc_info=True,
                        extra={"session_id": session_id}
                    )

            progression = self.progression_analyzer.analyze(new_state, scenario.role, now)

            logger.info(
                f"Advanced to {new_state.exchange_count()} exchanges: emotion={emotion.value}, "
                f"should_end={ending}, fallback={used_fallback}",
                extra={"session_id": session_id}
            )

            return AdvanceResult(
                character_text=character_text,
                emotion=emotion,
                should_end_conversation=ending,
                new_state=new_state,
                used_fallback=used_fallback,
                progression=progression
            )

    async def _call_model(self, prompt: str) -> str:
        """
        Run the blocking model call in a worker thread under a timeout.

        The call is shielded: on timeout or caller cancellation it keeps
        running to completion and its result is dropped.
        """
        task = asyncio.ensure_future(
            asyncio.to_thread(self.llm_client.generate, prompt, self.generation_config)
        )
        try:
            response = await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            task.add_done_callback(_discard_result)
            raise ProviderTimeout.after(self.timeout_seconds, self.generation_config.model) from None
        except asyncio.CancelledError:
            task.add_done_callback(_discard_result)
            raise
        return response.text
