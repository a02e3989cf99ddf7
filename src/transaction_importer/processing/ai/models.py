"""Data models for inference requests and responses."""

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class Parsed:
    """JSON value successfully decoded from a model response.

    Attributes:
        value: The decoded object or array.
    """

    value: Union[dict[str, Any], list[Any]]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Malformed:
    """Model response that held no decodable JSON object or array.

    Attributes:
        raw_text: The response text as received.
        reason: Why extraction failed.
    """

    raw_text: str
    reason: str = ""

    @property
    def ok(self) -> bool:
        return False


ExtractionResult = Union[Parsed, Malformed]


@dataclass
class AIUsageStats:
    """Cumulative inference usage for a client.

    Attributes:
        total_requests: Requests that returned a response.
        total_input_tokens: Input tokens reported by the service.
        total_output_tokens: Output tokens reported by the service.
        failed_requests: Requests that failed after all retries.
        timeouts: Requests that exceeded the timeout.
        malformed_responses: Responses without usable JSON.
    """

    total_requests: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    failed_requests: int = 0
    timeouts: int = 0
    malformed_responses: int = 0

    def add_request(self, input_tokens: int, output_tokens: int) -> None:
        """Record a completed request."""
        self.total_requests += 1
        self.total_input_tokens += input_tokens
        self.total_output_tokens += output_tokens


@dataclass
class ColumnMappingSuggestion:
    """Roles proposed by the model, already validated against real headers.

    Attributes:
        roles: Role name -> header name for every role the model resolved.
        rejected: Role name -> value the model proposed that is not a header.
    """

    roles: dict[str, str] = field(default_factory=dict)
    rejected: dict[str, str] = field(default_factory=dict)
