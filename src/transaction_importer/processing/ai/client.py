"""Async Anthropic client wrapper with timeouts, retries and bounded concurrency."""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from transaction_importer.config import InferenceConfig
from transaction_importer.processing.ai.json_extract import extract_json
from transaction_importer.processing.ai.models import AIUsageStats, ExtractionResult, Malformed
from transaction_importer.utils.logging_config import get_logger

logger = get_logger(__name__)


class AIClientError(Exception):
    """Base exception for inference errors."""

    pass


class APIKeyNotFoundError(AIClientError):
    """Raised when the API key is not set."""

    pass


class InferenceTimeout(AIClientError):
    """Raised when a request exceeds its timeout."""

    pass


class MalformedInferenceResponse(AIClientError):
    """Raised when a response contains no parseable JSON and no fallback applies."""

    def __init__(self, message: str, raw_text: str = ""):
        """Initialize MalformedInferenceResponse.

        Args:
            message: Error message.
            raw_text: The offending response text.
        """
        self.raw_text = raw_text
        super().__init__(message)


@runtime_checkable
class InferenceService(Protocol):
    """Stateless prompt-completion service.

    Implementations return free-form text that is expected to embed JSON.
    """

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        ...


async def request_json(
    service: InferenceService,
    system_prompt: str,
    user_prompt: str,
    usage_stats: Optional[AIUsageStats] = None,
) -> ExtractionResult:
    """Send a request and extract the embedded JSON from the response.

    Service errors (timeouts, transport failures, missing API key) are
    folded into a Malformed result so callers have one failure path to
    handle. Cancellation is never swallowed.

    Args:
        service: Inference service to call.
        system_prompt: The system prompt.
        user_prompt: The user prompt.
        usage_stats: Optional stats to count malformed responses in.

    Returns:
        Parsed JSON, or Malformed describing what went wrong.
    """
    try:
        response = await service.complete(system_prompt, user_prompt)
    except AIClientError as e:
        logger.warning(f"Inference request failed: {e}")
        return Malformed(raw_text="", reason=str(e))

    result = extract_json(response)
    if isinstance(result, Malformed):
        logger.debug(f"No JSON in model response: {response[:200]!r}")
        if usage_stats is not None:
            usage_stats.malformed_responses += 1
    return result


class CountingInferenceService:
    """Wraps a service and counts the requests sent through it."""

    def __init__(self, service: InferenceService):
        self.service = service
        self.calls = 0

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls += 1
        return await self.service.complete(system_prompt, user_prompt)


@dataclass
class AIClient:
    """Wrapper for the Anthropic async API.

    This client provides:
    - Lazy initialization (only connects when first used)
    - A cap on concurrent requests
    - A timeout per request
    - Retry with exponential backoff
    - Token usage tracking
    """

    config: InferenceConfig = field(default_factory=InferenceConfig)
    usage_stats: AIUsageStats = field(default_factory=AIUsageStats)
    _client: Any = field(default=None, init=False, repr=False)
    _semaphore: Optional[asyncio.Semaphore] = field(default=None, init=False, repr=False)

    @property
    def is_available(self) -> bool:
        """Check if the client can be initialized (API key exists)."""
        return bool(os.environ.get(self.config.api_key_env))

    def _ensure_initialized(self) -> None:
        """Lazily create the Anthropic client."""
        if self._client is not None:
            return

        api_key = os.environ.get(self.config.api_key_env)
        if not api_key:
            raise APIKeyNotFoundError(
                f"API key not found in environment variable: {self.config.api_key_env}"
            )

        import anthropic

        self._client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)
        logger.info(f"Inference client initialized with model: {self.config.model}")

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_requests))
        return self._semaphore

    async def _request_once(self, system_prompt: str, user_prompt: str) -> str:
        response = await asyncio.wait_for(
            self._client.messages.create(
                model=self.config.model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            ),
            timeout=self.config.timeout_seconds,
        )

        if response.content and len(response.content) > 0:
            content = "".join(
                getattr(block, "text", "") for block in response.content
            )
        else:
            content = ""

        self.usage_stats.add_request(
            response.usage.input_tokens, response.usage.output_tokens
        )
        logger.debug(
            f"Request completed: {response.usage.input_tokens} in, "
            f"{response.usage.output_tokens} out"
        )
        return content

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Send a prompt and return the response text.

        Args:
            system_prompt: The system prompt.
            user_prompt: The user prompt.

        Returns:
            Response text.

        Raises:
            APIKeyNotFoundError: If the API key is missing.
            InferenceTimeout: If the final attempt timed out.
            AIClientError: If the request failed after all retries.
        """
        self._ensure_initialized()

        delay = self.config.retry_delay
        attempts = max(1, self.config.retry_attempts)

        async with self._get_semaphore():
            for attempt in range(1, attempts + 1):
                try:
                    return await self._request_once(system_prompt, user_prompt)
                except asyncio.TimeoutError as e:
                    self.usage_stats.timeouts += 1
                    logger.warning(
                        f"Inference request timed out after {self.config.timeout_seconds}s "
                        f"(attempt {attempt}/{attempts})"
                    )
                    if attempt == attempts:
                        self.usage_stats.failed_requests += 1
                        raise InferenceTimeout(
                            f"Request timed out after {self.config.timeout_seconds}s"
                        ) from e
                except Exception as e:
                    if attempt == attempts:
                        self.usage_stats.failed_requests += 1
                        raise AIClientError(
                            f"Request failed after {attempt} attempts: {e}"
                        ) from e
                    error_msg = str(e).lower()
                    if "rate" in error_msg or "429" in error_msg:
                        logger.warning(f"Rate limited, waiting {delay}s before retry")
                    elif "overloaded" in error_msg or "529" in error_msg:
                        logger.warning(f"Service overloaded, waiting {delay}s before retry")
                    else:
                        logger.warning(f"Request failed: {e}, retrying in {delay}s")

                await asyncio.sleep(delay)
                delay *= 2

        raise AIClientError("Request failed: no attempts made")

    def get_usage_summary(self) -> str:
        """Get a human-readable summary of usage."""
        stats = self.usage_stats
        return (
            f"Inference Usage Summary:\n"
            f"  Total requests: {stats.total_requests}\n"
            f"  Input tokens: {stats.total_input_tokens:,}\n"
            f"  Output tokens: {stats.total_output_tokens:,}\n"
            f"  Failed requests: {stats.failed_requests} ({stats.timeouts} timeouts)\n"
            f"  Malformed responses: {stats.malformed_responses}"
        )
