"""Client for the external text-analysis oracle (a large language model)."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import anthropic
from anthropic import AsyncAnthropic

from ..metrics_collector import MetricsCollector, OracleCallMetrics
from ..models import RawOracleOutput
from ..prompt_composer import PromptComposer

logger = logging.getLogger(__name__)


DEFAULT_MODEL = "claude-sonnet-4-20250514"

SYSTEM_PROMPTS = {
    "extract": "You are an expert narrative analyst focused on diversity and specificity in theme identification. Always respond with valid JSON only.",
    "refine": "You are refining a thematic analysis for maximum diversity and specificity. Always respond with valid JSON only.",
}


class OracleError(Exception):
    """Base class for oracle call failures."""


class OracleUnavailable(OracleError):
    """The oracle could not be reached (network, auth, rate limit)."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class OracleTimeout(OracleError):
    """The oracle call exceeded its bounded wait."""


class OracleBackend(ABC):
    """The single oracle contract: prompt in, free text out."""

    model: str = "unknown"

    @abstractmethod
    async def call(self, prompt: str, max_output_tokens: int, temperature: float,
                   system: Optional[str] = None) -> str:
        """Send one prompt and return the raw response text."""


class AnthropicOracle(OracleBackend):
    """Oracle backed by the Anthropic Messages API."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, client: Optional[AsyncAnthropic] = None):
        self.model = model
        self.async_client = client or AsyncAnthropic(api_key=api_key)

    async def call(self, prompt: str, max_output_tokens: int, temperature: float,
                   system: Optional[str] = None) -> str:
        kwargs = {
            "model": self.model,
            "max_tokens": max_output_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        try:
            response = await self.async_client.messages.create(**kwargs)
        except anthropic.APITimeoutError as e:
            raise OracleTimeout(f"Oracle request timed out: {e}") from e
        except anthropic.RateLimitError as e:
            raise OracleUnavailable(f"Oracle rate limit hit: {e}", retry_after=_retry_after(e)) from e
        except anthropic.APIConnectionError as e:
            raise OracleUnavailable(f"Could not reach oracle: {e}") from e
        except anthropic.APIStatusError as e:
            # Covers authentication, permission and server-side errors
            raise OracleUnavailable(f"Oracle returned status {e.status_code}: {e}") from e
        except anthropic.APIError as e:
            raise OracleUnavailable(f"Oracle request failed: {e}") from e

        return _extract_text_content(response)


def _retry_after(error: anthropic.APIStatusError) -> Optional[float]:
    """Read the retry-after header from a rate limit response, if present."""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) or {}
    value = headers.get("retry-after") if hasattr(headers, "get") else None
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _extract_text_content(response) -> str:
    """Concatenate text blocks of a Messages API response."""
    if not response or not getattr(response, "content", None):
        logger.warning("Empty response from oracle")
        return ""
    parts = []
    for block in response.content:
        text = getattr(block, "text", None)
        if isinstance(text, str):
            parts.append(text)
    if not parts:
        logger.warning("No text content in oracle response")
    return "".join(parts)


class AnalysisOracleClient:
    """Runs the extraction and refinement passes against an oracle backend."""

    def __init__(self,
                 backend: OracleBackend,
                 composer: Optional[PromptComposer] = None,
                 timeout_seconds: float = 60.0,
                 extract_max_tokens: int = 1500,
                 extract_temperature: float = 0.2,
                 refine_max_tokens: int = 1500,
                 refine_temperature: float = 0.1,
                 metrics: Optional[MetricsCollector] = None):
        self.backend = backend
        self.composer = composer or PromptComposer()
        self.timeout_seconds = timeout_seconds
        self.extract_max_tokens = extract_max_tokens
        self.extract_temperature = extract_temperature
        self.refine_max_tokens = refine_max_tokens
        self.refine_temperature = refine_temperature
        self.metrics = metrics

    @property
    def model(self) -> str:
        return getattr(self.backend, "model", "unknown")

    async def extract(self, prompt: str) -> str:
        """First pass: one focused, low-temperature oracle call."""
        return await self._call("extract", prompt, self.extract_max_tokens, self.extract_temperature)

    async def refine(self, prior_result: RawOracleOutput, prompt: str) -> str:
        """Second pass: ask the oracle to critique and diversify the first result."""
        refinement_prompt = self.composer.compose_refinement(prior_result, prompt)
        return await self._call("refine", refinement_prompt, self.refine_max_tokens, self.refine_temperature)

    async def _call(self, pass_name: str, prompt: str, max_tokens: int, temperature: float) -> str:
        start = time.time()
        error: Optional[str] = None
        text = ""
        try:
            text = await asyncio.wait_for(
                self.backend.call(prompt, max_tokens, temperature, system=SYSTEM_PROMPTS[pass_name]),
                timeout=self.timeout_seconds,
            )
            return text
        except asyncio.TimeoutError as e:
            error = f"timed out after {self.timeout_seconds}s"
            raise OracleTimeout(f"Oracle {pass_name} pass {error}") from e
        except Exception as e:
            error = str(e)
            raise
        finally:
            if self.metrics:
                self.metrics.record_oracle_call(OracleCallMetrics(
                    pass_name=pass_name,
                    model=self.model,
                    start_time=start,
                    end_time=time.time(),
                    prompt_chars=len(prompt),
                    response_chars=len(text or ""),
                    error=error,
                ))
