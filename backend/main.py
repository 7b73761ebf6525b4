"""Main entry point for the roleplay conversation API."""
import logging
from datetime import datetime, timezone
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from config import PORT, CORS_ORIGINS, LOG_FORMAT, LOG_LEVEL, SUPABASE_URL, SUPABASE_KEY, SCENARIOS_FILE
from logger import setup_logging
from models.api import (
    AdvanceRequest,
    AdvanceResponse,
    ConversationSummary,
    ProgressionModel,
    StartConversationRequest,
    TurnModel,
)
from models.conversation import (
    ConversationClosed,
    ConversationError,
    ConversationNotFound,
    ConversationState,
    InvalidTurnOrder,
)
from services.conversation_orchestrator import ConversationOrchestrator
from services.conversation_store import InMemoryConversationStore, SupabaseConversationStore
from services.llm_client import LLMClient
from services.scenario_repository import (
    InMemoryScenarioRepository,
    ScenarioNotFound,
    SupabaseScenarioRepository,
    load_scenarios,
)

if LOG_FORMAT == "json":
    setup_logging(LOG_LEVEL)

# Initialize logging
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Roleplay Conversation Engine",
    description="Conversation progression for AI roleplay practice sessions",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize services (will be done on startup)
orchestrator: ConversationOrchestrator = None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    global orchestrator

    logger.info("Initializing conversation engine services...")

    try:
        if SUPABASE_URL and SUPABASE_KEY:
            store = SupabaseConversationStore()
            scenarios = SupabaseScenarioRepository(client=store.client)
            logger.info("Using Supabase persistence")
        else:
            store = InMemoryConversationStore()
            scenarios = InMemoryScenarioRepository(load_scenarios(SCENARIOS_FILE))
            logger.warning(
                f"SUPABASE_URL/SUPABASE_KEY not set, using in-memory persistence "
                f"with {len(scenarios.scenario_ids())} scenarios"
            )

        llm_client = LLMClient()
        logger.info("Initialized LLMClient")

        orchestrator = ConversationOrchestrator(store=store, scenarios=scenarios, llm_client=llm_client)
        logger.info("All services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _summary(state: ConversationState) -> ConversationSummary:
    return ConversationSummary(
        session_id=state.session_id,
        scenario_id=state.scenario_id,
        status=state.status.value,
        exchange_count=state.exchange_count(),
        turns=[
            TurnModel(
                speaker=turn.speaker.value,
                text=turn.text,
                sequence=turn.sequence,
                timestamp=turn.timestamp
            )
            for turn in state.turns
        ]
    )


def _http_error(e: ConversationError) -> HTTPException:
    """Map structural conversation errors onto HTTP status codes."""
    if isinstance(e, (ConversationNotFound, ScenarioNotFound)):
        status_code, code = 404, "NOT_FOUND"
    elif isinstance(e, ConversationClosed):
        status_code, code = 409, "CONVERSATION_CLOSED"
    elif isinstance(e, InvalidTurnOrder):
        status_code, code = 409, "INVALID_TURN_ORDER"
    else:
        status_code, code = 400, "CONVERSATION_ERROR"
    return HTTPException(status_code=status_code, detail={"error": {"code": code, "message": str(e)}})


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Roleplay Conversation Engine API"}


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "service": "roleplay-conversation-engine",
        "version": "1.0.0"
    }


@app.post("/conversations", response_model=ConversationSummary, status_code=201)
async def start_conversation(request: StartConversationRequest) -> ConversationSummary:
    """Create a conversation for a scenario, optionally opening with a character greeting."""
    try:
        state = await orchestrator.start(request.scenario_id, _utcnow(), greeting=request.greeting)
    except ConversationError as e:
        logger.warning(f"Could not start conversation: {e}")
        raise _http_error(e)
    return _summary(state)


@app.get("/conversations/{session_id}", response_model=ConversationSummary)
async def get_conversation(session_id: str) -> ConversationSummary:
    try:
        state = orchestrator.store.load(session_id)
    except ConversationError as e:
        raise _http_error(e)
    return _summary(state)


@app.post("/conversations/{session_id}/advance", response_model=AdvanceResponse)
async def advance_conversation(session_id: str, request: AdvanceRequest) -> AdvanceResponse:
    """
    Send the user's message and get the character's reply.

    Model failures are absorbed by the orchestrator (fallback replies), so
    only structural errors reach the client:
    - 404 unknown session or scenario
    - 409 closed conversation or out-of-order turn
    - 422 missing or empty message
    """
    if not request.message.strip():
        raise HTTPException(status_code=422, detail="Message cannot be blank")

    try:
        result = await orchestrator.advance(session_id, request.message, _utcnow())
        scenario = orchestrator.scenarios.get(result.new_state.scenario_id)
    except ConversationError as e:
        logger.warning(f"Advance rejected for {session_id}: {e}")
        raise _http_error(e)

    return AdvanceResponse(
        session_id=session_id,
        character_text=result.character_text,
        character=scenario.character_name,
        emotion=result.emotion.value,
        should_end_conversation=result.should_end_conversation,
        exchange_count=result.new_state.exchange_count(),
        status=result.new_state.status.value,
        used_fallback=result.used_fallback,
        progression=ProgressionModel(
            stage=result.progression.stage,
            topics_covered=list(result.progression.topics_covered),
            objectives_completed=list(result.progression.objectives_completed),
            depth=result.progression.depth,
            ready_for_conclusion=result.progression.ready_for_conclusion
        ) if result.progression else None
    )


@app.post("/conversations/{session_id}/close", response_model=ConversationSummary)
async def close_conversation(session_id: str) -> ConversationSummary:
    try:
        state = await orchestrator.close(session_id)
    except ConversationError as e:
        raise _http_error(e)
    return _summary(state)


if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting Roleplay Conversation Engine API on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT)
