"""
Progression analytics for roleplay conversations.

Reports what the user has covered so far: discussion topics, practice
objectives touched on, a 0-10 depth score and the conversation stage.
The report is informational; it never decides when a conversation ends.
"""

from dataclasses import dataclass
from datetime import datetime
import logging
import re
from typing import Dict, List, Tuple

from models.conversation import ConversationState, Speaker
from models.scenario import PracticeRole

logger = logging.getLogger(__name__)

TOPIC_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "pricing": ("price", "cost", "budget", "fee", "payment"),
    "timeline": ("timeline", "schedule", "deadline", "when", "date"),
    "features": ("feature", "functionality", "capability", "option"),
    "requirements": ("requirement", "need", "specification", "criteria"),
    "concerns": ("concern", "worry", "issue", "problem", "risk"),
    "benefits": ("benefit", "advantage", "value", "improvement"),
    "implementation": ("implementation", "setup", "install", "deploy"),
    "support": ("support", "help", "assistance", "service"),
    "integration": ("integration", "connect", "combine", "merge"),
    "security": ("security", "safe", "secure", "protect", "privacy"),
}

OBJECTIVE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "understand_needs": ("need", "problem", "challenge", "requirement", "pain"),
    "present_solution": ("solution", "offer", "provide", "help", "service"),
    "handle_objections": ("concern", "worry", "issue", "problem", "doubt"),
    "discuss_pricing": ("price", "cost", "budget", "investment", "fee"),
    "establish_next_steps": ("next", "follow", "meeting", "call", "contact"),
    "define_scope": ("scope", "deliverable", "requirement", "feature"),
    "set_timeline": ("timeline", "schedule", "deadline", "date", "when"),
    "identify_resources": ("resource", "team", "staff", "capacity", "tool"),
    "discuss_risks": ("risk", "blocker", "dependency", "delay"),
    "align_stakeholders": ("stakeholder", "sponsor", "align", "sign-off"),
    "gather_requirements": ("requirement", "need", "specification", "criteria"),
    "prioritize_features": ("priority", "prioritize", "must-have", "backlog"),
    "discuss_roadmap": ("roadmap", "release", "quarter", "milestone"),
    "validate_assumptions": ("assumption", "validate", "test", "data"),
    "set_success_metrics": ("metric", "kpi", "measure", "success"),
    "share_vision": ("vision", "mission", "future", "direction"),
    "build_alignment": ("align", "agree", "together", "buy-in"),
    "address_concerns": ("concern", "worry", "issue", "question"),
    "motivate_team": ("motivate", "proud", "recognize", "celebrate"),
    "set_direction": ("goal", "priority", "focus", "plan"),
    "provide_feedback": ("feedback", "performance", "improvement", "strength"),
    "discuss_performance": ("performance", "result", "review", "target"),
    "set_goals": ("goal", "objective", "target", "expectation"),
    "identify_development": ("develop", "growth", "training", "skill", "career"),
    "create_action_plan": ("plan", "action", "next", "step"),
    "understand_issue": ("issue", "problem", "error", "trouble", "difficulty"),
    "diagnose_problem": ("cause", "log", "reproduce", "diagnose", "check"),
    "provide_solution": ("fix", "solution", "resolve", "workaround"),
    "ensure_satisfaction": ("satisfied", "happy", "anything else", "work for you"),
    "prevent_recurrence": ("prevent", "future", "again", "avoid"),
}

OBJECTIVE_CHECKLISTS: Dict[PracticeRole, Tuple[str, ...]] = {
    PracticeRole.SALES: (
        "understand_needs", "present_solution", "handle_objections",
        "discuss_pricing", "establish_next_steps",
    ),
    PracticeRole.PROJECT_MANAGER: (
        "define_scope", "set_timeline", "identify_resources",
        "discuss_risks", "align_stakeholders",
    ),
    PracticeRole.PRODUCT_MANAGER: (
        "gather_requirements", "prioritize_features", "discuss_roadmap",
        "validate_assumptions", "set_success_metrics",
    ),
    PracticeRole.LEADER: (
        "share_vision", "build_alignment", "address_concerns",
        "motivate_team", "set_direction",
    ),
    PracticeRole.MANAGER: (
        "provide_feedback", "discuss_performance", "set_goals",
        "identify_development", "create_action_plan",
    ),
    PracticeRole.SUPPORT_AGENT: (
        "understand_issue", "diagnose_problem", "provide_solution",
        "ensure_satisfaction", "prevent_recurrence",
    ),
}

REASONING_WORDS = ("because", "however", "although", "therefore")

# (max exchanges, stage), ascending
STAGES: List[Tuple[int, str]] = [
    (1, "opening"),
    (3, "rapport_building"),
    (6, "core_discussion"),
    (9, "deep_exploration"),
]


def _keyword_regex(keywords: Tuple[str, ...]) -> "re.Pattern":
    # Prefix match at a word start, so "prices" counts for "price"
    return re.compile(r"\b(" + "|".join(re.escape(k) for k in keywords) + ")")


_TOPIC_REGEXES = {topic: _keyword_regex(words) for topic, words in TOPIC_KEYWORDS.items()}
_OBJECTIVE_REGEXES = {objective: _keyword_regex(words) for objective, words in OBJECTIVE_KEYWORDS.items()}


@dataclass(frozen=True)
class ProgressionReport:
    """Snapshot of how far a conversation has come."""
    stage: str
    topics_covered: Tuple[str, ...]
    objectives_completed: Tuple[str, ...]
    depth: float
    ready_for_conclusion: bool


class ProgressionAnalyzer:
    """Derives a ProgressionReport from the user's side of a conversation."""

    def __init__(
        self,
        checklists: Dict[PracticeRole, Tuple[str, ...]] = None,
        conclusion_objectives: int = 3,
        conclusion_exchanges: int = 6,
        conclusion_seconds: float = 300,
        conclusion_depth: float = 6.0
    ):
        """
        Args:
            checklists: Objective ids per practice role; roles without a
                checklist use the sales checklist
            conclusion_objectives: Objectives needed before the conversation
                reads as ready to conclude
            conclusion_exchanges: Exchanges needed for the same
            conclusion_seconds: Elapsed time needed for the same
            conclusion_depth: Depth score needed for the same
        """
        self.checklists = checklists or OBJECTIVE_CHECKLISTS
        self.conclusion_objectives = conclusion_objectives
        self.conclusion_exchanges = conclusion_exchanges
        self.conclusion_seconds = conclusion_seconds
        self.conclusion_depth = conclusion_depth

    def analyze(self, state: ConversationState, role: PracticeRole, now: datetime) -> ProgressionReport:
        """
        Analyze a conversation.

        Args:
            state: Conversation including the latest exchange
            role: Practice role of the scenario
            now: Request time, for elapsed-time checks

        Returns:
            ProgressionReport
        """
        user_texts = [t.text.lower() for t in state.turns if t.speaker == Speaker.USER]
        exchanges = state.exchange_count()
        elapsed = state.elapsed_seconds(now)

        topics = self.topics_covered(user_texts)
        objectives = self.objectives_completed(user_texts, role, len(state.turns))
        depth = self.depth(user_texts)
        stage = self.stage(exchanges, elapsed)
        ready = (
            len(objectives) >= self.conclusion_objectives
            and exchanges >= self.conclusion_exchanges
            and elapsed >= self.conclusion_seconds
            and depth >= self.conclusion_depth
        )

        logger.debug(
            f"Progression: stage={stage}, topics={len(topics)}, objectives={len(objectives)}, depth={depth}",
            extra={"session_id": state.session_id}
        )
        return ProgressionReport(
            stage=stage,
            topics_covered=topics,
            objectives_completed=objectives,
            depth=depth,
            ready_for_conclusion=ready
        )

    @staticmethod
    def topics_covered(user_texts: List[str]) -> Tuple[str, ...]:
        return tuple(
            topic for topic, regex in _TOPIC_REGEXES.items()
            if any(regex.search(text) for text in user_texts)
        )

    def objectives_completed(self, user_texts: List[str], role: PracticeRole, turn_count: int) -> Tuple[str, ...]:
        checklist = self.checklists.get(role, self.checklists[PracticeRole.SALES])
        joined = " ".join(user_texts)
        completed = [
            objective for objective in checklist
            if objective in _OBJECTIVE_REGEXES and _OBJECTIVE_REGEXES[objective].search(joined)
        ]
        # Milestones reached by sustained conversation alone
        if turn_count >= 8:
            completed.append("rapport_built")
        if turn_count >= 12:
            completed.append("deep_discussion")
        return tuple(completed)

    @staticmethod
    def depth(user_texts: List[str]) -> float:
        """Score 0-10 from message count, detail, questions and reasoning words."""
        score = min(len(user_texts) * 0.5, 5.0)
        score += 0.3 * sum(1 for text in user_texts if len(text) > 50)
        score += 0.4 * sum(1 for text in user_texts if "?" in text)
        score += 0.5 * sum(1 for text in user_texts if any(word in text for word in REASONING_WORDS))
        return round(min(score, 10.0), 1)

    @staticmethod
    def stage(exchange_count: int, elapsed_seconds: float) -> str:
        for max_exchanges, stage in STAGES:
            if exchange_count <= max_exchanges:
                return stage
        return "conclusion_phase" if elapsed_seconds >= 600 else "wrapping_up"
