"""Tests for the oracle client and the Anthropic backend."""

import asyncio
from unittest.mock import AsyncMock, Mock

import anthropic
import httpx
import pytest

from theme_analyzer.analyzers.oracle_client import (
    SYSTEM_PROMPTS,
    AnalysisOracleClient,
    AnthropicOracle,
    OracleBackend,
    OracleTimeout,
    OracleUnavailable,
)
from theme_analyzer.metrics_collector import MetricsCollector
from theme_analyzer.models import RawOracleOutput

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def text_response(*texts):
    response = Mock()
    response.content = [Mock(text=t) for t in texts]
    return response


class TestAnthropicOracle:
    """Test suite for AnthropicOracle."""

    @pytest.fixture
    def mock_client(self):
        return AsyncMock()

    @pytest.fixture
    def oracle(self, mock_client):
        return AnthropicOracle(api_key="test-key", model="test-model", client=mock_client)

    @pytest.mark.asyncio
    async def test_call_passes_parameters(self, oracle, mock_client):
        mock_client.messages.create.return_value = text_response('{"themes": []}')

        text = await oracle.call("prompt", 1500, 0.2, system="be precise")

        assert text == '{"themes": []}'
        kwargs = mock_client.messages.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["max_tokens"] == 1500
        assert kwargs["temperature"] == 0.2
        assert kwargs["system"] == "be precise"
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]

    @pytest.mark.asyncio
    async def test_empty_content_returns_empty_text(self, oracle, mock_client):
        response = Mock()
        response.content = []
        mock_client.messages.create.return_value = response
        assert await oracle.call("prompt", 100, 0.1) == ""

    @pytest.mark.asyncio
    async def test_text_blocks_are_joined(self, oracle, mock_client):
        mock_client.messages.create.return_value = text_response('{"a":', ' 1}')
        assert await oracle.call("prompt", 100, 0.1) == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_timeout_maps_to_oracle_timeout(self, oracle, mock_client):
        mock_client.messages.create.side_effect = anthropic.APITimeoutError(request=REQUEST)
        with pytest.raises(OracleTimeout):
            await oracle.call("prompt", 100, 0.1)

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_unavailable(self, oracle, mock_client):
        mock_client.messages.create.side_effect = anthropic.APIConnectionError(request=REQUEST)
        with pytest.raises(OracleUnavailable):
            await oracle.call("prompt", 100, 0.1)

    @pytest.mark.asyncio
    async def test_rate_limit_carries_retry_after(self, oracle, mock_client):
        response = httpx.Response(429, request=REQUEST, headers={"retry-after": "17"})
        mock_client.messages.create.side_effect = anthropic.RateLimitError(
            "rate limited", response=response, body=None)
        with pytest.raises(OracleUnavailable) as exc_info:
            await oracle.call("prompt", 100, 0.1)
        assert exc_info.value.retry_after == 17.0

    @pytest.mark.asyncio
    async def test_auth_error_maps_to_unavailable(self, oracle, mock_client):
        response = httpx.Response(401, request=REQUEST)
        mock_client.messages.create.side_effect = anthropic.AuthenticationError(
            "bad key", response=response, body=None)
        with pytest.raises(OracleUnavailable) as exc_info:
            await oracle.call("prompt", 100, 0.1)
        assert exc_info.value.retry_after is None

    @pytest.mark.asyncio
    async def test_response_validation_error_maps_to_unavailable(self, oracle, mock_client):
        response = httpx.Response(200, request=REQUEST)
        mock_client.messages.create.side_effect = anthropic.APIResponseValidationError(response=response, body=None)
        with pytest.raises(OracleUnavailable):
            await oracle.call("prompt", 100, 0.1)


class SlowOracle(OracleBackend):
    model = "slow"

    async def call(self, prompt, max_output_tokens, temperature, system=None):
        await asyncio.sleep(5)
        return "{}"


class TestAnalysisOracleClient:
    """Test suite for AnalysisOracleClient."""

    @pytest.mark.asyncio
    async def test_extract_uses_extract_settings(self, make_client):
        client, backend = make_client(['{"themes": ["Hope"]}'])
        text = await client.extract("the prompt")

        assert text == '{"themes": ["Hope"]}'
        call = backend.calls[0]
        assert call["prompt"] == "the prompt"
        assert call["max_output_tokens"] == 1500
        assert call["temperature"] == 0.2
        assert call["system"] == SYSTEM_PROMPTS["extract"]

    @pytest.mark.asyncio
    async def test_refine_sends_prior_result(self, make_client):
        client, backend = make_client(['{"themes": ["Love"]}'])
        prior = RawOracleOutput(themes=["Hope"])

        await client.refine(prior, "ORIGINAL PROMPT")

        call = backend.calls[0]
        assert '"Hope"' in call["prompt"]
        assert "ORIGINAL PROMPT" in call["prompt"]
        assert call["temperature"] == 0.1
        assert call["system"] == SYSTEM_PROMPTS["refine"]

    @pytest.mark.asyncio
    async def test_bounded_wait_raises_timeout(self):
        client = AnalysisOracleClient(SlowOracle(), timeout_seconds=0.01)
        with pytest.raises(OracleTimeout):
            await client.extract("prompt")

    @pytest.mark.asyncio
    async def test_backend_errors_propagate(self, make_client):
        client, _ = make_client([OracleUnavailable("down")])
        with pytest.raises(OracleUnavailable):
            await client.extract("prompt")

    @pytest.mark.asyncio
    async def test_metrics_recorded_for_success_and_failure(self, make_client):
        metrics = MetricsCollector()
        client, _ = make_client(['{"themes": []}', OracleTimeout("slow")], metrics=metrics)

        await client.extract("abc")
        with pytest.raises(OracleTimeout):
            await client.refine(RawOracleOutput(), "abc")

        assert metrics.pass_metrics["extract"].call_count == 1
        assert metrics.pass_metrics["extract"].error_count == 0
        assert metrics.oracle_calls[0].prompt_chars == 3
        assert metrics.pass_metrics["refine"].error_count == 1
        assert metrics.oracle_calls[1].error == "slow"

    def test_model_comes_from_backend(self, make_client):
        client, _ = make_client([])
        assert client.model == "scripted-model"
