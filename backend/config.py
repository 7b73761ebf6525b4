"""Configuration management for the roleplay conversation engine."""
import os
import logging
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Keys
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")

# Server Configuration
PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # "text" or "json"

# CORS Configuration
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:3001"
).split(",")

# Model Configuration
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama-3.1-8b-instant")
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.8"))
LLM_TOP_P = float(os.getenv("LLM_TOP_P", "0.9"))
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "250"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "10"))

# Conversation Progression
MAX_EXCHANGES = int(os.getenv("MAX_EXCHANGES", "8"))
MAX_DURATION_SECONDS = int(os.getenv("MAX_DURATION_SECONDS", "600"))  # 10 minutes
HISTORY_WINDOW = int(os.getenv("HISTORY_WINDOW", "6"))  # turns
MAX_PROMPT_TOKENS = int(os.getenv("MAX_PROMPT_TOKENS", "1500"))

# Scenario lookup
SCENARIO_CACHE_TTL_SECONDS = int(os.getenv("SCENARIO_CACHE_TTL_SECONDS", "300"))

# JSON list of scenario rows for in-memory mode (built-in demo scenarios when unset)
SCENARIOS_FILE = os.getenv("SCENARIOS_FILE")

# Scenario-neutral lines used when the model call fails
FALLBACK_UTTERANCES = [
    "That's interesting, could you tell me more?",
    "I see. Can you walk me through that in a bit more detail?",
    "I appreciate you explaining that. What would you suggest as the next step?",
]
CLOSING_FALLBACK_UTTERANCES = [
    "Thank you, this has been a really valuable conversation. Let's follow up on the next steps soon.",
    "I appreciate the time we've spent discussing this. Let's touch base again about next steps.",
]

# Logging Configuration
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
