"""Scenario lookup backed by Supabase, with an optional TTL cache."""
import abc
import json
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from supabase import create_client, Client

from models.conversation import ConversationError
from models.scenario import Difficulty, PracticeRole, ScenarioContext
from config import SUPABASE_URL, SUPABASE_KEY, SCENARIO_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


class ScenarioNotFound(ConversationError):
    """Raised when a scenario id does not resolve to a scenario."""


def scenario_from_row(row: Dict[str, Any]) -> ScenarioContext:
    """Build a ScenarioContext from a ``scenarios`` table row."""
    return ScenarioContext(
        scenario_id=str(row["id"]),
        title=row.get("title") or "",
        character_name=row["character_name"],
        character_role=row.get("character_role") or "",
        personality=row.get("personality") or row.get("description") or "",
        category=row.get("category") or row.get("industry") or "",
        role=PracticeRole.parse(row.get("role")),
        difficulty=Difficulty.parse(row.get("difficulty")),
    )


DEMO_SCENARIO_ROWS: List[Dict[str, Any]] = [
    {
        "id": "scn_cold_call",
        "title": "Cold Call Champion",
        "character_name": "Sarah Chen",
        "character_role": "VP of Operations",
        "personality": "Busy and guarded, warms up to concrete numbers",
        "category": "SaaS",
        "role": "sales",
        "difficulty": "intermediate",
    },
    {
        "id": "scn_sales_cold_call",
        "title": "Sales Cold Call",
        "character_name": "John Smith",
        "character_role": "Business Owner",
        "personality": "Skeptical but fair",
        "category": "sales",
        "role": "sales",
        "difficulty": "beginner",
    },
    {
        "id": "scn_project_kickoff",
        "title": "Project Kickoff",
        "character_name": "Priya Patel",
        "character_role": "Engineering Lead",
        "personality": "Detail-oriented, worried about the timeline",
        "category": "project management",
        "role": "project-manager",
        "difficulty": "intermediate",
    },
    {
        "id": "scn_support_escalation",
        "title": "Escalated Support Ticket",
        "character_name": "Mark Davis",
        "character_role": "Frustrated Customer",
        "personality": "Impatient after three failed fixes",
        "category": "customer support",
        "role": "support-agent",
        "difficulty": "advanced",
    },
]


def load_scenarios(path: Optional[str] = None) -> List[ScenarioContext]:
    """
    Load scenarios for in-memory mode.

    Args:
        path: JSON file holding a list of ``scenarios`` rows; the built-in
            demo scenarios are used when omitted

    Returns:
        List of ScenarioContext

    Raises:
        ValueError: If the file does not hold a list of rows
    """
    if not path:
        return [scenario_from_row(row) for row in DEMO_SCENARIO_ROWS]

    with open(path, "r", encoding="utf-8") as f:
        rows = json.load(f)
    if not isinstance(rows, list):
        raise ValueError(f"Scenario file {path} must contain a JSON list of scenario rows")

    scenarios = [scenario_from_row(row) for row in rows]
    logger.info(f"Loaded {len(scenarios)} scenarios from {path}")
    return scenarios

class ScenarioRepository(abc.ABC):

    @abc.abstractmethod
    def get(self, scenario_id: str) -> ScenarioContext:
        ...


class InMemoryScenarioRepository(ScenarioRepository):
    def __init__(self, scenarios: Iterable[ScenarioContext] = ()):
        self._scenarios = {s.scenario_id: s for s in scenarios}

    def add(self, scenario: ScenarioContext) -> None:
        self._scenarios[scenario.scenario_id] = scenario

    def scenario_ids(self) -> List[str]:
        return sorted(self._scenarios)

    def get(self, scenario_id: str) -> ScenarioContext:
        try:
            return self._scenarios[scenario_id]
        except KeyError:
            raise ScenarioNotFound(f"Scenario {scenario_id} not found") from None


class SupabaseScenarioRepository(ScenarioRepository):
    """Reads scenarios from the Supabase ``scenarios`` table."""

    def __init__(
        self,
        supabase_url: str = SUPABASE_URL,
        supabase_key: str = SUPABASE_KEY,
        client: Optional[Client] = None,
        cache_ttl_seconds: float = SCENARIO_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            client: Pre-built client; skips credential checks when given
            cache_ttl_seconds: How long a fetched scenario is reused; 0 disables caching
            clock: Monotonic clock used for cache expiry
        """
        if client is None:
            if not supabase_url or not supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")
            client = create_client(supabase_url, supabase_key)

        self.client: Client = client
        self.cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock
        self._cache: Dict[str, Tuple[float, ScenarioContext]] = {}

    def get(self, scenario_id: str) -> ScenarioContext:
        if self.cache_ttl_seconds > 0:
            now = self._clock()
            cached = self._cache.get(scenario_id)
            if cached and now - cached[0] < self.cache_ttl_seconds:
                return cached[1]
            self._evict_expired(now)

        result = self.client.table("scenarios").select("*").eq("id", scenario_id).execute()
        if not result.data:
            raise ScenarioNotFound(f"Scenario {scenario_id} not found")

        scenario = scenario_from_row(result.data[0])
        if self.cache_ttl_seconds > 0:
            self._cache[scenario_id] = (self._clock(), scenario)
        logger.debug(f"Fetched scenario {scenario_id}: {scenario.character_name}")
        return scenario

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (fetched_at, _) in self._cache.items() if now - fetched_at >= self.cache_ttl_seconds]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} expired scenarios from cache")

    def invalidate(self, scenario_id: Optional[str] = None) -> None:
        if scenario_id is None:
            self._cache.clear()
        else:
            self._cache.pop(scenario_id, None)
