"""Request and response models for the HTTP API."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class StartConversationRequest(BaseModel):
    """Body for POST /conversations."""
    scenario_id: str = Field(..., min_length=1)
    greeting: Optional[str] = Field(default=None, max_length=2000)


class AdvanceRequest(BaseModel):
    """Body for POST /conversations/{session_id}/advance."""
    message: str = Field(..., min_length=1, max_length=4000)


class TurnModel(BaseModel):
    speaker: str
    text: str
    sequence: int
    timestamp: datetime


class ConversationSummary(BaseModel):
    session_id: str
    scenario_id: str
    status: str
    exchange_count: int
    turns: List[TurnModel] = Field(default_factory=list)


class ProgressionModel(BaseModel):
    stage: str
    topics_covered: List[str] = Field(default_factory=list)
    objectives_completed: List[str] = Field(default_factory=list)
    depth: float
    ready_for_conclusion: bool


class AdvanceResponse(BaseModel):
    """Character reply plus progression metadata."""
    session_id: str
    character_text: str
    character: str
    emotion: str
    should_end_conversation: bool
    exchange_count: int
    status: str
    used_fallback: bool = False
    progression: Optional[ProgressionModel] = None
