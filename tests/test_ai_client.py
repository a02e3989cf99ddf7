"""Tests for the inference client wrapper."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from helpers.fake_inference import FakeInferenceService
from transaction_importer.config import InferenceConfig
from transaction_importer.processing.ai.client import (
    AIClient,
    AIClientError,
    APIKeyNotFoundError,
    CountingInferenceService,
    InferenceService,
    InferenceTimeout,
    request_json,
)
from transaction_importer.processing.ai.models import AIUsageStats, Malformed, Parsed


def make_response(text: str, input_tokens: int = 10, output_tokens: int = 5) -> SimpleNamespace:
    return SimpleNamespace(
        content=[SimpleNamespace(text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def make_client(create, **overrides) -> AIClient:
    settings = {"retry_attempts": 2, "retry_delay": 0.0, "timeout_seconds": 1.0}
    settings.update(overrides)
    client = AIClient(InferenceConfig(**settings))
    client._client = MagicMock()
    client._client.messages.create = create
    return client


class TestAIClient:
    """Tests for AIClient."""

    def test_not_available_without_api_key(self) -> None:
        """Test availability check."""
        with patch.dict("os.environ", {}, clear=True):
            assert not AIClient().is_available

    def test_available_with_api_key(self) -> None:
        """Test availability with the configured variable set."""
        with patch.dict("os.environ", {"MY_KEY": "sk-test"}, clear=True):
            assert AIClient(InferenceConfig(api_key_env="MY_KEY")).is_available

    @pytest.mark.asyncio
    async def test_missing_api_key_raises(self) -> None:
        """Test lazy initialization without a key."""
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(APIKeyNotFoundError):
                await AIClient().complete("system", "user")

    @pytest.mark.asyncio
    async def test_complete_returns_text_and_tracks_usage(self) -> None:
        """Test a successful request."""
        create = AsyncMock(return_value=make_response('{"category": "Travel"}', 12, 3))
        client = make_client(create)

        text = await client.complete("system prompt", "user prompt")

        assert text == '{"category": "Travel"}'
        assert client.usage_stats.total_requests == 1
        assert client.usage_stats.total_input_tokens == 12
        assert client.usage_stats.total_output_tokens == 3
        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "system prompt"
        assert kwargs["messages"] == [{"role": "user", "content": "user prompt"}]
        assert kwargs["max_tokens"] == 512

    @pytest.mark.asyncio
    async def test_retries_transient_failure(self) -> None:
        """Test a failed attempt is retried."""
        create = AsyncMock(side_effect=[RuntimeError("overloaded"), make_response("[]")])
        client = make_client(create)

        assert await client.complete("s", "u") == "[]"
        assert create.await_count == 2
        assert client.usage_stats.failed_requests == 0

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self) -> None:
        """Test the error raised once attempts are exhausted."""
        create = AsyncMock(side_effect=RuntimeError("boom"))
        client = make_client(create, retry_attempts=3)

        with pytest.raises(AIClientError, match="after 3 attempts"):
            await client.complete("s", "u")
        assert create.await_count == 3
        assert client.usage_stats.failed_requests == 1

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """Test that a slow request raises InferenceTimeout."""

        async def slow_create(**kwargs):
            await asyncio.sleep(5)

        client = make_client(slow_create, retry_attempts=1, timeout_seconds=0.01)

        with pytest.raises(InferenceTimeout):
            await client.complete("s", "u")
        assert client.usage_stats.timeouts == 1

    def test_usage_summary(self) -> None:
        """Test the summary text."""
        client = AIClient()
        client.usage_stats.add_request(1000, 200)
        summary = client.get_usage_summary()
        assert "Total requests: 1" in summary
        assert "Input tokens: 1,000" in summary

    def test_satisfies_protocol(self) -> None:
        """Test structural typing of the client."""
        assert isinstance(AIClient(), InferenceService)


class TestRequestJson:
    """Tests for request_json."""

    @pytest.mark.asyncio
    async def test_parsed(self) -> None:
        """Test JSON is extracted from prose."""
        service = FakeInferenceService(responses=['Answer: {"a": 1}'])
        assert await request_json(service, "s", "u") == Parsed({"a": 1})

    @pytest.mark.asyncio
    async def test_malformed_counted(self) -> None:
        """Test responses without JSON are counted."""
        stats = AIUsageStats()
        service = FakeInferenceService(responses=["nothing here"])
        result = await request_json(service, "s", "u", stats)
        assert isinstance(result, Malformed)
        assert stats.malformed_responses == 1

    @pytest.mark.asyncio
    async def test_service_errors_become_malformed(self) -> None:
        """Test that client errors are folded into Malformed."""
        service = FakeInferenceService(responses=[AIClientError("down")])
        result = await request_json(service, "s", "u")
        assert isinstance(result, Malformed)
        assert result.reason == "down"

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self) -> None:
        """Test that unexpected exceptions are not swallowed."""
        service = FakeInferenceService(responses=[KeyError("bug")])
        with pytest.raises(KeyError):
            await request_json(service, "s", "u")


class TestWrappers:
    """Tests for the counting wrapper."""

    @pytest.mark.asyncio
    async def test_counting_service(self) -> None:
        """Test calls are counted and forwarded."""
        inner = FakeInferenceService(responses=["a", "b"])
        counting = CountingInferenceService(inner)
        assert await counting.complete("s", "u1") == "a"
        assert await counting.complete("s", "u2") == "b"
        assert counting.calls == 2
        assert [user for _, user in inner.calls] == ["u1", "u2"]
