"""LLM Client for Groq API integration."""
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from groq import Groq
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError
import logging

from config import (
    GROQ_API_KEY,
    CHAT_MODEL,
    LLM_TEMPERATURE,
    LLM_TOP_P,
    LLM_MAX_TOKENS,
    LLM_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling parameters for one completion request."""
    model: str = CHAT_MODEL
    temperature: float = LLM_TEMPERATURE
    top_p: float = LLM_TOP_P
    max_tokens: int = LLM_MAX_TOKENS


@dataclass
class LLMResponse:
    """Response from LLM generation."""
    text: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    model_used: str


@dataclass
class LLMError:
    """Structured error response from LLM operations."""
    code: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


class LLMClientError(Exception):
    """Custom exception for LLM client errors with structured error information."""

    def __init__(self, error: LLMError):
        self.error = error
        super().__init__(error.message)


class ProviderError(LLMClientError):
    """The language-model provider failed to produce a completion."""


class ProviderTimeout(ProviderError):
    """The language-model provider did not answer in time."""

    @classmethod
    def after(cls, timeout_seconds: float, model: str = "") -> "ProviderTimeout":
        return cls(LLMError(
            code="TIMEOUT_ERROR",
            message="Request timed out. Please try again.",
            details={"model": model, "timeout_seconds": timeout_seconds}
        ))


class LLMClient:
    """Client for interfacing with Groq API for character responses."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_seconds: float = LLM_TIMEOUT_SECONDS
    ):
        """
        Initialize LLM client with Groq API key.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
            timeout_seconds: Per-request HTTP timeout passed to the Groq client
        """
        self.api_key = api_key or GROQ_API_KEY
        if not self.api_key:
            raise ValueError("GROQ_API_KEY must be provided or set in environment")

        self.timeout_seconds = timeout_seconds
        self.client = Groq(api_key=self.api_key, timeout=timeout_seconds, max_retries=0)
        logger.info("LLMClient initialized successfully")

    def generate(
        self,
        prompt: str,
        generation_config: Optional[GenerationConfig] = None
    ) -> LLMResponse:
        """
        Generate a completion using Groq API.

        Args:
            prompt: Complete character prompt
            generation_config: Model and sampling parameters

        Returns:
            LLMResponse with text, token counts, and latency

        Raises:
            ProviderTimeout: If the request timed out
            ProviderError: Structured error with code, message, and details
        """
        config = generation_config or GenerationConfig()
        model = config.model
        start_time = time.time()

        try:
            logger.debug(f"Generating response with model: {model}")

            response = self.client.chat.completions.create(
                model=model,
                messages=[
                    {
                        "role": "user",
                        "content": prompt
                    }
                ],
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                top_p=config.top_p
            )

            latency_ms = int((time.time() - start_time) * 1000)

            text = response.choices[0].message.content or ""

            tokens_input = response.usage.prompt_tokens
            tokens_output = response.usage.completion_tokens

            logger.info(
                f"Generated response: model={model}, "
                f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
                f"latency={latency_ms}ms"
            )

            return LLMResponse(
                text=text,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                latency_ms=latency_ms,
                model_used=model
            )

        except RateLimitError as e:
            raise self._fail(
                ProviderError, "RATE_LIMIT_ERROR",
                "Rate limit exceeded. Please try again in a few moments.",
                model, start_time, e, retry_after=60
            )

        except AuthenticationError as e:
            raise self._fail(
                ProviderError, "AUTHENTICATION_ERROR",
                "Authentication failed. Please check your API key.",
                model, start_time, e
            )

        except APITimeoutError as e:
            raise self._fail(
                ProviderTimeout, "TIMEOUT_ERROR",
                "Request timed out. Please try again.",
                model, start_time, e
            )

        except APIError as e:
            raise self._fail(
                ProviderError, "API_ERROR",
                f"Groq API error: {str(e)}",
                model, start_time, e
            )

        except Exception as e:
            raise self._fail(
                ProviderError, "UNKNOWN_ERROR",
                f"Unexpected error during generation: {str(e)}",
                model, start_time, e, error_type=type(e).__name__
            )

    @staticmethod
    def _fail(
        error_cls,
        code: str,
        message: str,
        model: str,
        start_time: float,
        cause: Exception,
        **extra_details: Any
    ) -> ProviderError:
        latency_ms = int((time.time() - start_time) * 1000)
        details: Dict[str, Any] = {
            "model": model,
            "latency_ms": latency_ms,
            "original_error": str(cause),
            **extra_details
        }
        error = LLMError(code=code, message=message, details=details)
        logger.error(
            f"{code}: model={model}, latency={latency_ms}ms, error={cause}",
            exc_info=True,
            extra={"error_code": error.code, "error_details": error.details}
        )
        return error_cls(error)
