"""Pytest configuration and shared fixtures."""

import json
from typing import List, Optional, Union

import pytest

from theme_analyzer.analyzers.oracle_client import AnalysisOracleClient, OracleBackend
from theme_analyzer.models import AnalysisResult, CanonicalTheme, Taxonomy, ThemeStatus, Transcript
from theme_analyzer.storage import InMemoryThemeStore


class ScriptedOracle(OracleBackend):
    """Oracle backend that replays canned responses or raises canned errors."""

    model = "scripted-model"

    def __init__(self, responses: List[Union[str, Exception]]):
        self.responses = list(responses)
        self.calls = []

    async def call(self, prompt: str, max_output_tokens: int, temperature: float,
                   system: Optional[str] = None) -> str:
        self.calls.append({
            'prompt': prompt,
            'max_output_tokens': max_output_tokens,
            'temperature': temperature,
            'system': system,
        })
        if not self.responses:
            raise AssertionError("ScriptedOracle ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def oracle_json(themes, **extra) -> str:
    """Oracle-style JSON response with the given theme labels."""
    payload = {
        "themes": list(themes),
        "emotions": ["pride"],
        "topics": ["family farm"],
        "quotes": ["\"We never gave up on each other, not once.\""],
        "summary": "A story about holding on.",
        "insights": ["Persistence matters"],
        "confidence_score": 0.8,
        "quality_score": 0.75,
    }
    payload.update(extra)
    return json.dumps(payload)


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """Mock environment variables for testing."""
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-api-key")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    for var in ("THEME_ANALYZER_MODEL", "THEME_ANALYZER_TIMEOUT",
                "THEME_ANALYZER_RATE_LIMIT", "THEME_ANALYZER_BATCH_SIZE"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def temp_dir(tmp_path):
    """Create a temporary directory for test files."""
    return tmp_path


@pytest.fixture
def small_themes():
    return [
        CanonicalTheme(id="1", name="Resilience"),
        CanonicalTheme(id="2", name="Community"),
        CanonicalTheme(id="3", name="Hope"),
    ]


@pytest.fixture
def small_taxonomy(small_themes):
    return Taxonomy(small_themes)


@pytest.fixture
def rich_themes():
    return [
        CanonicalTheme(id="10", name="Community", description="Belonging to a group of people", category="Social"),
        CanonicalTheme(id="11", name="Community Resilience", description="Neighbors rebuilding together",
                       category="Social"),
        CanonicalTheme(id="12", name="Family Bonds", description="Relationships between parents and children",
                       category="Relationships"),
        CanonicalTheme(id="13", name="Healing Journey", description="", category="Wellbeing"),
        CanonicalTheme(id="14", name="Cultural Identity", description="Connection to heritage and language",
                       category="Identity"),
        CanonicalTheme(id="15", name="Mental Health", description="Psychological wellbeing", category="Wellbeing"),
        CanonicalTheme(id="16", name="Retired Theme", description="No longer used", category="Other",
                       status=ThemeStatus.INACTIVE),
    ]


@pytest.fixture
def rich_taxonomy(rich_themes):
    return Taxonomy(rich_themes)


@pytest.fixture
def transcript():
    return Transcript(id="t-1", text="I grew up on a farm. " * 20, storyteller_id="s-1",
                      storyteller_name="Aunty May")


@pytest.fixture
def store(small_themes, transcript):
    return InMemoryThemeStore(themes=small_themes, transcripts=[transcript])


@pytest.fixture
def make_client():
    def _make(responses, **kwargs):
        backend = ScriptedOracle(responses)
        return AnalysisOracleClient(backend, **kwargs), backend
    return _make


def make_result(transcript_id: str, theme_ids, **kwargs) -> AnalysisResult:
    return AnalysisResult(transcript_id=transcript_id, mapped_theme_ids=list(theme_ids), **kwargs)
