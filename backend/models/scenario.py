"""Scenario data models."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PracticeRole(str, Enum):
    """Role the user is practicing in a scenario."""
    SALES = "sales"
    PROJECT_MANAGER = "project-manager"
    PRODUCT_MANAGER = "product-manager"
    LEADER = "leader"
    MANAGER = "manager"
    STRATEGY_LEAD = "strategy-lead"
    SUPPORT_AGENT = "support-agent"
    DATA_ANALYST = "data-analyst"
    ENGINEER = "engineer"
    NURSE = "nurse"
    DOCTOR = "doctor"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "PracticeRole":
        """Map a stored role string onto the enum, falling back to UNKNOWN."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Difficulty":
        if not value:
            return cls.BEGINNER
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.BEGINNER


@dataclass(frozen=True)
class ScenarioContext:
    """Static description of the simulated character and situation."""
    scenario_id: str
    title: str
    character_name: str
    character_role: str
    personality: str = ""
    category: str = ""
    role: PracticeRole = PracticeRole.UNKNOWN
    difficulty: Difficulty = Difficulty.BEGINNER
