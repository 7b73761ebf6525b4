"""Services for the roleplay conversation engine."""
from .emotion_progression import EmotionLabel, EmotionProgression
from .ending_policy import EndingPolicy
from .response_sanitizer import ResponseSanitizer, EmptyResponse
from .llm_client import LLMClient, LLMResponse, LLMError, LLMClientError, GenerationConfig, ProviderError, ProviderTimeout
from .prompt_assembler import PromptAssembler, PromptPayload, PromptTooLarge, RoleProfile
from .progression_analyzer import ProgressionAnalyzer, ProgressionReport
from .fallback_selector import FallbackSelector
from .conversation_store import ConversationStore, InMemoryConversationStore, SupabaseConversationStore
from .scenario_repository import ScenarioRepository, InMemoryScenarioRepository, SupabaseScenarioRepository, ScenarioNotFound
from .conversation_orchestrator import ConversationOrchestrator, AdvanceResult

__all__ = ['EmotionLabel', 'EmotionProgression', 'EndingPolicy', 'ResponseSanitizer', 'EmptyResponse', 'LLMClient', 'LLMResponse', 'LLMError', 'LLMClientError', 'GenerationConfig', 'ProviderError', 'ProviderTimeout', 'PromptAssembler', 'PromptPayload', 'PromptTooLarge', 'RoleProfile', 'ProgressionAnalyzer', 'ProgressionReport', 'FallbackSelector', 'ConversationStore', 'InMemoryConversationStore', 'SupabaseConversationStore', 'ScenarioRepository', 'InMemoryScenarioRepository', 'SupabaseScenarioRepository', 'ScenarioNotFound', 'ConversationOrchestrator', 'AdvanceResult']
