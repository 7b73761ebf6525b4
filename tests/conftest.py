"""Shared fixtures for the conversation engine tests."""
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from models.conversation import ConversationState, Speaker, Turn
from models.scenario import Difficulty, PracticeRole, ScenarioContext
from services.llm_client import LLMResponse

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


class FakeLLMClient:
    """Stands in for LLMClient; records prompts and replays scripted replies."""

    def __init__(self, replies=None, error=None):
        self.replies = list(replies or [])
        self.error = error
        self.prompts = []

    def generate(self, prompt, generation_config=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        text = self.replies.pop(0) if self.replies else "Sounds good, tell me more."
        return LLMResponse(text=text, tokens_input=100, tokens_output=12, latency_ms=5, model_used="fake-model")


def build_state(turn_count, session_id="sess_test", start=T0, step_seconds=20):
    """Alternating user/character history of ``turn_count`` turns."""
    state = ConversationState(session_id=session_id, scenario_id="scn_sales")
    for i in range(turn_count):
        speaker = Speaker.USER if i % 2 == 0 else Speaker.CHARACTER
        state = state.append(Turn(
            speaker=speaker,
            text=f"{speaker.value} line {i + 1}",
            sequence=i + 1,
            timestamp=start + timedelta(seconds=i * step_seconds)
        ))
    return state


@pytest.fixture
def scenario():
    return ScenarioContext(
        scenario_id="scn_sales",
        title="Pitching to a skeptical buyer",
        character_name="Sarah Johnson",
        character_role="Procurement Director",
        personality="Direct, budget-conscious, values concrete numbers",
        category="Sales",
        role=PracticeRole.SALES,
        difficulty=Difficulty.INTERMEDIATE,
    )


@pytest.fixture
def word_counter():
    """Cheap stand-in for tiktoken: one token per whitespace-separated word."""
    return lambda text: len(text.split())
