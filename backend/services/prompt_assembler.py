"""
Prompt assembly for character responses.

Builds the instruction text sent to the language model from the scenario,
a bounded window of recent turns, the new user utterance, the character's
current emotion, and a staging directive keyed by conversation progress.

Output is a pure function of the inputs: no clocks, no randomness, and
stable ordering everywhere, so identical inputs yield byte-identical text.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from config import HISTORY_WINDOW, MAX_PROMPT_TOKENS
from models.conversation import ConversationState, Speaker, Turn
from models.scenario import PracticeRole, ScenarioContext
from services.emotion_progression import EmotionLabel, EmotionProgression

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleProfile:
    """How the user is addressed and what they are practicing."""
    label: str
    objectives: Tuple[str, ...]


ROLE_PROFILES: Dict[PracticeRole, RoleProfile] = {
    PracticeRole.SALES: RoleProfile("salesperson", (
        "Build rapport and establish trust with the prospect",
        "Identify customer needs and pain points through questioning",
        "Present solution benefits clearly and guide toward next steps",
    )),
    PracticeRole.PROJECT_MANAGER: RoleProfile("project manager", (
        "Clarify project scope, timeline, and deliverables",
        "Identify stakeholders and manage expectations",
        "Establish clear next steps and accountability",
    )),
    PracticeRole.PRODUCT_MANAGER: RoleProfile("product manager", (
        "Gather comprehensive user requirements and feedback",
        "Prioritize features based on business impact",
        "Align stakeholders on product roadmap decisions",
    )),
    PracticeRole.LEADER: RoleProfile("leader", (
        "Communicate organizational vision and strategic direction",
        "Inspire and motivate team members toward common goals",
        "Demonstrate emotional intelligence and active listening",
    )),
    PracticeRole.MANAGER: RoleProfile("manager", (
        "Provide specific, constructive feedback on performance",
        "Set clear expectations and measurable goals",
        "Support professional development and career growth",
    )),
    PracticeRole.STRATEGY_LEAD: RoleProfile("strategy lead", (
        "Frame the strategic problem and the options on the table",
        "Test assumptions with evidence and stakeholder input",
        "Secure agreement on a direction and its first milestones",
    )),
    PracticeRole.SUPPORT_AGENT: RoleProfile("customer service representative", (
        "Quickly understand and diagnose customer issues",
        "Provide clear, step-by-step solutions and guidance",
        "Ensure complete issue resolution and customer satisfaction",
    )),
    PracticeRole.DATA_ANALYST: RoleProfile("data analyst", (
        "Understand business questions and analytical requirements",
        "Communicate findings clearly to non-technical stakeholders",
        "Provide actionable insights and data-driven recommendations",
    )),
    PracticeRole.ENGINEER: RoleProfile("engineer", (
        "Understand technical requirements and system constraints",
        "Communicate technical concepts to non-technical stakeholders",
        "Collaborate effectively on solution architecture decisions",
    )),
    PracticeRole.NURSE: RoleProfile("healthcare provider", (
        "Provide compassionate and professional patient care",
        "Communicate clearly about procedures and care plans",
        "Coordinate effectively with medical team members",
    )),
    PracticeRole.DOCTOR: RoleProfile("healthcare provider", (
        "Gather comprehensive patient history and symptoms",
        "Explain medical conditions and treatment options clearly",
        "Involve patients in treatment decisions and ensure informed consent",
    )),
    PracticeRole.UNKNOWN: RoleProfile("professional", (
        "Understand the other person's situation and priorities",
        "Communicate clearly and respond to concerns",
        "Agree on concrete next steps",
    )),
}

# (minimum exchanges, directive), ascending
DEFAULT_DIRECTIVES: List[Tuple[int, str]] = [
    (0, "establish initial contact and rapport"),
    (1, "continue building the discussion naturally, ask relevant follow-up questions"),
    (6, "show growing engagement, begin moving toward resolution"),
    (8, "offer a natural conclusion; thank them and suggest next steps"),
]


@dataclass(frozen=True)
class PromptPayload:
    """Assembled prompt plus bookkeeping about how it was built."""
    text: str
    token_count: int
    history_turns: int
    directive: str
    utterance_clipped: bool = False


class PromptTooLarge(ValueError):
    """Raised when the fixed part of the prompt cannot fit the token budget."""


def _tiktoken_counter() -> Callable[[str], int]:
    import tiktoken

    # o200k_base approximates Llama 3 tokenization closely enough for budgeting
    encoder = tiktoken.get_encoding("o200k_base")
    return lambda text: len(encoder.encode(text))


class PromptAssembler:
    """Builds the character prompt within a token budget."""

    def __init__(
        self,
        history_window: int = HISTORY_WINDOW,
        max_prompt_tokens: int = MAX_PROMPT_TOKENS,
        directives: Optional[Sequence[Tuple[int, str]]] = None,
        role_profiles: Optional[Dict[PracticeRole, RoleProfile]] = None,
        emotion_progression: Optional[EmotionProgression] = None,
        token_counter: Optional[Callable[[str], int]] = None
    ):
        """
        Args:
            history_window: Number of recent turns offered to the prompt
            max_prompt_tokens: Budget for the assembled prompt
            directives: Ascending ``(min_exchanges, text)`` staging directives;
                the last entry doubles as the concluding directive
            role_profiles: Role tables; must contain PracticeRole.UNKNOWN
            emotion_progression: Source of the character-arc phrase
            token_counter: Callable returning the token count of a string
                (defaults to tiktoken's o200k_base encoding)
        """
        self.history_window = history_window
        self.max_prompt_tokens = max_prompt_tokens
        self.directives = list(directives or DEFAULT_DIRECTIVES)
        self.role_profiles = role_profiles or ROLE_PROFILES
        if PracticeRole.UNKNOWN not in self.role_profiles:
            raise ValueError("role_profiles must define a PracticeRole.UNKNOWN entry")
        self.emotion_progression = emotion_progression or EmotionProgression()
        self._token_counter = token_counter

    @property
    def concluding_directive(self) -> str:
        return self.directives[-1][1]

    def count_tokens(self, text: str) -> int:
        if self._token_counter is None:
            self._token_counter = _tiktoken_counter()
        return self._token_counter(text)

    def role_profile(self, role: PracticeRole) -> RoleProfile:
        return self.role_profiles.get(role, self.role_profiles[PracticeRole.UNKNOWN])

    def directive_for(self, exchange_count: int, concluding: bool = False) -> str:
        if concluding:
            return self.concluding_directive
        selected = self.directives[0][1]
        for threshold, directive in self.directives:
            if max(exchange_count, 0) >= threshold:
                selected = directive
            else:
                break
        return selected

    def assemble(
        self,
        scenario: ScenarioContext,
        state: ConversationState,
        utterance: str,
        emotion: EmotionLabel,
        now: datetime,
        concluding: bool = False
    ) -> PromptPayload:
        """
        Assemble the prompt for the next character turn.

        ``state`` is the history before the new utterance. Oldest history
        lines are dropped first when the prompt exceeds the token budget;
        the scenario block and instructions are always kept. Only when no
        history is left and the prompt is still over budget is the
        utterance clipped to its longest prefix that fits.

        Args:
            scenario: Character and situation
            state: Conversation history preceding the utterance
            utterance: What the user just said
            emotion: Current character emotion
            now: Request time, used for elapsed minutes
            concluding: Force the concluding directive

        Returns:
            PromptPayload with the final text and its token count, which
            never exceeds ``max_prompt_tokens``

        Raises:
            PromptTooLarge: If the prompt does not fit even with no history
                and an empty utterance
        """
        exchange_count = state.exchange_count()
        directive = self.directive_for(exchange_count, concluding)
        profile = self.role_profile(scenario.role)

        history = [
            self._format_turn(turn, scenario, profile)
            for turn in state.recent_window(self.history_window)
        ]
        minutes = int(state.elapsed_seconds(now) // 60)

        def render(history_lines: List[str], said: str) -> str:
            return self._render(scenario, profile, history_lines, said, emotion, directive, exchange_count, minutes)

        text = render(history, utterance)
        tokens = self.count_tokens(text)
        while tokens > self.max_prompt_tokens and history:
            history = history[1:]
            text = render(history, utterance)
            tokens = self.count_tokens(text)

        clipped = False
        if tokens > self.max_prompt_tokens:
            bare = render([], "")
            if self.count_tokens(bare) > self.max_prompt_tokens:
                raise PromptTooLarge(
                    f"Scenario block alone exceeds the {self.max_prompt_tokens}-token prompt budget"
                )

            # Longest utterance prefix that fits; prefix 0 is known to fit
            fits, too_long = 0, len(utterance)
            while too_long - fits > 1:
                middle = (fits + too_long) // 2
                if self.count_tokens(render([], utterance[:middle])) <= self.max_prompt_tokens:
                    fits = middle
                else:
                    too_long = middle

            logger.warning(
                f"Utterance of {len(utterance)} chars clipped to {fits} to fit {self.max_prompt_tokens} tokens",
                extra={"session_id": state.session_id}
            )
            utterance = utterance[:fits]
            text = render([], utterance)
            tokens = self.count_tokens(text)
            clipped = True

        return PromptPayload(
            text=text,
            token_count=tokens,
            history_turns=len(history),
            directive=directive,
            utterance_clipped=clipped
        )

    @staticmethod
    def _format_turn(turn: Turn, scenario: ScenarioContext, profile: RoleProfile) -> str:
        name = profile.label.capitalize() if turn.speaker == Speaker.USER else scenario.character_name
        return f'{name}: "{turn.text}"'

    def _render(
        self,
        scenario: ScenarioContext,
        profile: RoleProfile,
        history: List[str],
        utterance: str,
        emotion: EmotionLabel,
        directive: str,
        exchange_count: int,
        minutes: int
    ) -> str:
        name = scenario.character_name
        objectives = "\n".join(f"{i}. {objective}" for i, objective in enumerate(profile.objectives, 1))
        history_text = "\n".join(history) if history else "(no previous messages)"

        return f"""You are {name}, a {scenario.character_role}. You are in a roleplay practice scenario titled "{scenario.title}", talking with a {profile.label} who is practicing their communication skills.

CHARACTER:
- Name: {name}
- Role: {scenario.character_role}
- Personality: {scenario.personality or "professional and realistic"}
- Domain: {scenario.category or "general"}
- Current emotional state: {emotion.value}
- Character arc: {self.emotion_progression.character_arc(exchange_count)}

WHAT THE {profile.label.upper()} IS PRACTICING:
{objectives}

CONVERSATION SO FAR ({exchange_count} exchanges, {minutes} minutes):
{history_text}

THE {profile.label.upper()} JUST SAID: "{utterance}"

STAGE DIRECTION: {directive}

INSTRUCTIONS:
- Respond only and exactly as {name}, in 1-2 sentences
- Stay in character; never reveal or hint that you are an AI or a language model
- Do not add stage directions, speaker labels, or quotation marks
- Let your tone reflect your current emotional state

Respond as {name}:"""
