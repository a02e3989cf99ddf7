"""Inference-backed helpers for column mapping and categorization.

Example usage:
    from transaction_importer.processing.ai import AIClient, request_json

    client = AIClient(config.inference)
    result = await request_json(client, system_prompt, user_prompt)
    if result.ok:
        print(result.value)
"""

from transaction_importer.processing.ai.client import (
    AIClient,
    AIClientError,
    APIKeyNotFoundError,
    CountingInferenceService,
    InferenceService,
    InferenceTimeout,
    MalformedInferenceResponse,
    request_json,
)
from transaction_importer.processing.ai.json_extract import extract_json, find_json_span
from transaction_importer.processing.ai.models import (
    AIUsageStats,
    ColumnMappingSuggestion,
    ExtractionResult,
    Malformed,
    Parsed,
)

__all__ = [
    # Client
    "AIClient",
    "InferenceService",
    "CountingInferenceService",
    "request_json",
    # Errors
    "AIClientError",
    "APIKeyNotFoundError",
    "InferenceTimeout",
    "MalformedInferenceResponse",
    # JSON extraction
    "extract_json",
    "find_json_span",
    # Result models
    "Parsed",
    "Malformed",
    "ExtractionResult",
    "AIUsageStats",
    "ColumnMappingSuggestion",
]
