"""Data models for the roleplay conversation engine."""
from .conversation import (
    ConversationClosed,
    ConversationError,
    ConversationNotFound,
    ConversationState,
    ConversationStatus,
    InvalidTurnOrder,
    RecentWindow,
    Speaker,
    Turn,
)
from .scenario import Difficulty, PracticeRole, ScenarioContext
from .api import (
    AdvanceRequest,
    AdvanceResponse,
    ConversationSummary,
    ProgressionModel,
    StartConversationRequest,
    TurnModel,
)

__all__ = [
    "ConversationClosed",
    "ConversationError",
    "ConversationNotFound",
    "ConversationState",
    "ConversationStatus",
    "InvalidTurnOrder",
    "RecentWindow",
    "Speaker",
    "Turn",
    "Difficulty",
    "PracticeRole",
    "ScenarioContext",
    "AdvanceRequest",
    "AdvanceResponse",
    "ConversationSummary",
    "ProgressionModel",
    "StartConversationRequest",
    "TurnModel",
]
