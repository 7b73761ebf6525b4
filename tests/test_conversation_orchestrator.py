"""Unit tests for ConversationOrchestrator."""
import asyncio
import time
from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import T0, FakeLLMClient, build_state
from models.conversation import (
    ConversationClosed,
    ConversationNotFound,
    ConversationStatus,
    InvalidTurnOrder,
    Speaker,
    Turn,
)
from models.scenario import Difficulty
from services.conversation_orchestrator import ConversationOrchestrator
from services.conversation_store import InMemoryConversationStore
from services.emotion_progression import EmotionLabel
from services.ending_policy import EndingPolicy
from services.fallback_selector import FallbackSelector
from services.llm_client import ProviderTimeout
from services.prompt_assembler import PromptAssembler
from services.scenario_repository import InMemoryScenarioRepository, ScenarioNotFound

NEUTRAL = ["Neutral fallback one.", "Neutral fallback two."]
CLOSING = ["Closing fallback one.", "Closing fallback two."]


class SlowLLMClient(FakeLLMClient):
    def __init__(self, delay):
        super().__init__()
        self.delay = delay

    def generate(self, prompt, generation_config=None):
        time.sleep(self.delay)
        return super().generate(prompt, generation_config)


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def llm():
    return FakeLLMClient()


@pytest.fixture
def make_orchestrator(store, scenario, word_counter):
    def factory(llm_client, **kwargs):
        kwargs.setdefault("fallback_selector", FallbackSelector(
            utterances=NEUTRAL, closing_utterances=CLOSING, role_utterances={}
        ))
        return ConversationOrchestrator(
            store=store,
            scenarios=InMemoryScenarioRepository([scenario]),
            llm_client=llm_client,
            assembler=PromptAssembler(token_counter=word_counter),
            **kwargs
        )
    return factory


def seed(store, turn_count, start=T0, session_id="sess_test"):
    """Store a conversation with ``turn_count`` alternating turns."""
    state = build_state(turn_count, session_id=session_id, start=start)
    store.create(state.scenario_id, session_id=state.session_id)
    store.append_turns(state.session_id, list(state.turns))
    return state


def run(coro):
    return asyncio.run(coro)


class TestAdvance:

    def test_first_exchange(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 0)

        result = run(orchestrator.advance("sess_test", "Hi, interested in your product", T0))

        assert result.character_text == "Sounds good, tell me more."
        assert result.emotion == EmotionLabel.PROFESSIONAL
        assert result.should_end_conversation is False
        assert result.used_fallback is False
        assert result.new_state.exchange_count() == 1
        assert [t.speaker for t in result.new_state.turns] == [Speaker.USER, Speaker.CHARACTER]
        assert [t.sequence for t in result.new_state.turns] == [1, 2]

    def test_turns_persisted(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 0)

        result = run(orchestrator.advance("sess_test", "Hello", T0))

        assert store.load("sess_test").turns == result.new_state.turns

    def test_reply_is_sanitized(self, store, make_orchestrator):
        orchestrator = make_orchestrator(FakeLLMClient(replies=['Sarah Johnson: "Fine. Go on."']))
        seed(store, 0)

        result = run(orchestrator.advance("sess_test", "Hello", T0))

        assert result.character_text == "Fine. Go on."

    def test_emotion_progresses(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 6)

        result = run(orchestrator.advance("sess_test", "What would it take?", T0 + timedelta(seconds=120)))

        assert result.emotion == EmotionLabel.INTERESTED

    def test_prompt_carries_scenario_and_utterance(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 2)

        run(orchestrator.advance("sess_test", "Can we talk pricing?", T0 + timedelta(seconds=60)))

        prompt = llm.prompts[0]
        assert "Sarah Johnson" in prompt
        assert "Can we talk pricing?" in prompt
        assert "user line 1" in prompt

    def test_ends_at_exchange_limit(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 14)

        result = run(orchestrator.advance("sess_test", "So, do we have a deal?", T0 + timedelta(seconds=300)))

        assert result.should_end_conversation is True
        assert result.new_state.status == ConversationStatus.CONCLUDING
        assert store.load("sess_test").status == ConversationStatus.CONCLUDING
        assert orchestrator.assembler.concluding_directive in llm.prompts[0]

    def test_long_history_ends(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 16)

        result = run(orchestrator.advance("sess_test", "One more thing", T0 + timedelta(seconds=330)))

        assert result.should_end_conversation is True
        assert result.emotion == EmotionLabel.SATISFIED
        assert orchestrator.assembler.concluding_directive in llm.prompts[0]

    def test_ends_at_duration_limit(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 2)

        result = run(orchestrator.advance("sess_test", "Sorry, I was away", T0 + timedelta(seconds=601)))

        assert result.should_end_conversation is True

    def test_below_limits_does_not_end(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 12)

        result = run(orchestrator.advance("sess_test", "Tell me about support", T0 + timedelta(seconds=300)))

        assert result.should_end_conversation is False
        assert result.new_state.status == ConversationStatus.ACTIVE

    def test_advanced_scenario_runs_longer(self, store, llm, scenario, word_counter):
        advanced = replace(scenario, difficulty=Difficulty.ADVANCED)
        orchestrator = ConversationOrchestrator(
            store=store,
            scenarios=InMemoryScenarioRepository([advanced]),
            llm_client=llm,
            assembler=PromptAssembler(token_counter=word_counter),
        )
        seed(store, 14)

        result = run(orchestrator.advance("sess_test", "So, do we have a deal?", T0 + timedelta(seconds=700)))

        assert result.should_end_conversation is False

    def test_fixed_policy_overrides_difficulty(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm, ending_policy=EndingPolicy(max_exchanges=2))
        seed(store, 2)

        result = run(orchestrator.advance("sess_test", "Hello again", T0 + timedelta(seconds=30)))

        assert result.should_end_conversation is True

    def test_user_signal_ends_when_enabled(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm, ending_policy=EndingPolicy(honor_user_signals=True))
        seed(store, 2)

        result = run(orchestrator.advance("sess_test", "Thanks, that's all for today", T0 + timedelta(seconds=30)))

        assert result.should_end_conversation is True

    def test_can_advance_while_concluding(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 16)
        store.set_status("sess_test", ConversationStatus.CONCLUDING)

        result = run(orchestrator.advance("sess_test", "Bye then", T0 + timedelta(seconds=330)))

        assert result.new_state.status == ConversationStatus.CONCLUDING
        assert len(store.load("sess_test").turns) == 18

    def test_blank_utterance_rejected(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 0)

        with pytest.raises(ValueError):
            run(orchestrator.advance("sess_test", "   ", T0))
        assert llm.prompts == []

    def test_unknown_session(self, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)

        with pytest.raises(ConversationNotFound):
            run(orchestrator.advance("sess_missing", "Hello", T0))

    def test_closed_session(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 2)
        run(orchestrator.close("sess_test"))

        with pytest.raises(ConversationClosed):
            run(orchestrator.advance("sess_test", "Hello?", T0 + timedelta(seconds=60)))
        assert len(store.load("sess_test").turns) == 2

    def test_invalid_history_persists_nothing(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        store.create("scn_sales", session_id="sess_test")
        store.append_turns("sess_test", [Turn(Speaker.USER, "Hello", 1, T0)])

        with pytest.raises(InvalidTurnOrder):
            run(orchestrator.advance("sess_test", "Anyone there?", T0 + timedelta(seconds=10)))
        assert len(store.load("sess_test").turns) == 1
        assert llm.prompts == []


class TestFallbacks:

    def test_provider_error_uses_fallback(self, store, make_orchestrator):
        orchestrator = make_orchestrator(FakeLLMClient(error=ProviderTimeout.after(10, "fake-model")))
        seed(store, 4)

        result = run(orchestrator.advance("sess_test", "Are you still there?", T0 + timedelta(seconds=90)))

        assert result.used_fallback is True
        assert result.character_text in NEUTRAL
        assert result.emotion == EmotionLabel.PROFESSIONAL
        assert result.new_state.turns[-1].text == result.character_text
        assert len(store.load("sess_test").turns) == 6

    def test_slow_model_times_out(self, store, make_orchestrator):
        orchestrator = make_orchestrator(SlowLLMClient(delay=0.2), timeout_seconds=0.05)
        seed(store, 0)

        result = run(orchestrator.advance("sess_test", "Hello", T0))

        assert result.used_fallback is True
        assert result.character_text in NEUTRAL

    def test_empty_reply_uses_fallback(self, store, make_orchestrator):
        orchestrator = make_orchestrator(FakeLLMClient(replies=['**""**']))
        seed(store, 0)

        result = run(orchestrator.advance("sess_test", "Hello", T0))

        assert result.used_fallback is True
        assert result.character_text in NEUTRAL

    def test_closing_fallback_when_ending(self, store, make_orchestrator):
        orchestrator = make_orchestrator(FakeLLMClient(error=ProviderTimeout.after(10, "fake-model")))
        seed(store, 14)

        result = run(orchestrator.advance("sess_test", "Deal?", T0 + timedelta(seconds=300)))

        assert result.should_end_conversation is True
        assert result.character_text in CLOSING

    def test_fallback_is_deterministic(self, scenario, word_counter):
        texts = []
        for _ in range(2):
            store = InMemoryConversationStore()
            orchestrator = ConversationOrchestrator(
                store=store,
                scenarios=InMemoryScenarioRepository([scenario]),
                llm_client=FakeLLMClient(error=ProviderTimeout.after(10, "fake-model")),
                assembler=PromptAssembler(token_counter=word_counter),
            )
            seed(store, 4)
            texts.append(run(orchestrator.advance("sess_test", "Hello", T0 + timedelta(seconds=90))).character_text)

        assert texts[0] == texts[1]


class TestLifecycle:

    def test_start_without_greeting(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)

        state = run(orchestrator.start("scn_sales", T0))

        assert state.session_id.startswith("sess_")
        assert state.turns == ()
        assert store.load(state.session_id).scenario_id == "scn_sales"

    def test_start_with_greeting(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)

        state = run(orchestrator.start("scn_sales", T0, session_id="sess_greet", greeting="  Morning. You have ten minutes. "))

        assert len(state.turns) == 1
        assert state.turns[0].speaker == Speaker.CHARACTER
        assert state.turns[0].text == "Morning. You have ten minutes."
        assert store.load("sess_greet").turns == state.turns

        result = run(orchestrator.advance("sess_greet", "Thanks for seeing me", T0 + timedelta(seconds=5)))
        assert [t.sequence for t in result.new_state.turns] == [1, 2, 3]

    def test_start_unknown_scenario(self, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)

        with pytest.raises(ScenarioNotFound):
            run(orchestrator.start("scn_missing", T0))

    def test_close_is_idempotent(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 2)

        first = run(orchestrator.close("sess_test"))
        second = run(orchestrator.close("sess_test"))

        assert first.status == ConversationStatus.ENDED
        assert second.status == ConversationStatus.ENDED
        assert store.load("sess_test").is_closed


class TestConcurrency:

    def test_same_session_advances_serialize(self, store, make_orchestrator):
        orchestrator = make_orchestrator(SlowLLMClient(delay=0.05))
        seed(store, 0)

        async def both():
            return await asyncio.gather(
                orchestrator.advance("sess_test", "First", T0),
                orchestrator.advance("sess_test", "Second", T0 + timedelta(seconds=1)),
            )

        results = run(both())

        state = store.load("sess_test")
        assert [t.sequence for t in state.turns] == [1, 2, 3, 4]
        assert [t.speaker for t in state.turns] == [
            Speaker.USER, Speaker.CHARACTER, Speaker.USER, Speaker.CHARACTER
        ]
        assert sorted(r.new_state.exchange_count() for r in results) == [1, 2]
        assert orchestrator._locks == {}

    def test_lock_released_after_error(self, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)

        with pytest.raises(ConversationNotFound):
            run(orchestrator.advance("sess_missing", "Hello", T0))

        assert orchestrator._locks == {}
        assert orchestrator._lock_holders == {}

    def test_cancelled_advance_persists_nothing(self, store, make_orchestrator):
        orchestrator = make_orchestrator(SlowLLMClient(delay=0.2))
        seed(store, 0)

        async def cancel_then_retry():
            task = asyncio.ensure_future(orchestrator.advance("sess_test", "First", T0))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert store.load("sess_test").turns == ()
            assert orchestrator._locks == {}
            return await orchestrator.advance("sess_test", "Second", T0 + timedelta(seconds=1))

        result = run(cancel_then_retry())

        state = store.load("sess_test")
        assert [t.sequence for t in state.turns] == [1, 2]
        assert state.turns[0].text == "Second"
        assert result.new_state.turns == state.turns

    def test_different_sessions_run_in_parallel(self, store, make_orchestrator):
        orchestrator = make_orchestrator(SlowLLMClient(delay=0.3))
        seed(store, 0, session_id="sess_a")
        seed(store, 0, session_id="sess_b")

        async def both():
            return await asyncio.gather(
                orchestrator.advance("sess_a", "Hello from A", T0),
                orchestrator.advance("sess_b", "Hello from B", T0),
            )

        started = time.perf_counter()
        results = run(both())
        elapsed = time.perf_counter() - started

        # Two serialized calls would take at least 0.6s
        assert elapsed < 0.5
        assert [r.new_state.session_id for r in results] == ["sess_a", "sess_b"]
        assert all(r.used_fallback is False for r in results)


class FailingStatusStore(InMemoryConversationStore):
    def set_status(self, session_id, status):
        raise RuntimeError("status update failed")


class TestPartialFailures:

    def test_status_update_failure_keeps_turns(self, scenario, llm, word_counter):
        store = FailingStatusStore()
        orchestrator = ConversationOrchestrator(
            store=store,
            scenarios=InMemoryScenarioRepository([scenario]),
            llm_client=llm,
            assembler=PromptAssembler(token_counter=word_counter),
        )
        seed(store, 14)

        result = run(orchestrator.advance("sess_test", "So, do we have a deal?", T0 + timedelta(seconds=300)))

        assert result.should_end_conversation is True
        stored = store.load("sess_test")
        assert len(stored.turns) == 16
        assert stored.status == ConversationStatus.ACTIVE
        assert orchestrator._locks == {}

    def test_next_advance_still_ends_after_status_failure(self, scenario, llm, word_counter):
        store = FailingStatusStore()
        orchestrator = ConversationOrchestrator(
            store=store,
            scenarios=InMemoryScenarioRepository([scenario]),
            llm_client=llm,
            assembler=PromptAssembler(token_counter=word_counter),
        )
        seed(store, 14)
        run(orchestrator.advance("sess_test", "So, do we have a deal?", T0 + timedelta(seconds=300)))

        result = run(orchestrator.advance("sess_test", "Great, talk soon", T0 + timedelta(seconds=330)))

        assert result.should_end_conversation is True
        assert orchestrator.assembler.concluding_directive in llm.prompts[-1]


class TestProgression:

    def test_result_reports_progression(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 0)

        result = run(orchestrator.advance("sess_test", "What's the price, and when can we deploy?", T0))

        progression = result.progression
        assert progression.stage == "opening"
        assert progression.topics_covered == ("pricing", "timeline", "implementation")
        assert progression.objectives_completed == ("discuss_pricing",)
        assert progression.ready_for_conclusion is False

    def test_progression_does_not_change_ending(self, store, llm, make_orchestrator):
        orchestrator = make_orchestrator(llm)
        seed(store, 12)

        result = run(orchestrator.advance(
            "sess_test",
            "Because budget matters, what would the price and the timeline be? However we need support.",
            T0 + timedelta(seconds=300)
        ))

        assert result.should_end_conversation is False
        assert result.progression.stage == "deep_exploration"
