"""Storyteller theme analysis: oracle extraction, label mapping and diversity enforcement."""

from .models import (
    AnalysisResult,
    CanonicalTheme,
    RawOracleOutput,
    Taxonomy,
    ThemeStatus,
    Transcript,
    UsageStatistic
)
from .pipeline import PipelineRun, ThemeAnalysisPipeline
from .storage import InMemoryThemeStore, JsonFileThemeStore, StorageError, ThemeStore, TranscriptNotFound

__version__ = "2.0.0"

__all__ = [
    'AnalysisResult',
    'CanonicalTheme',
    'RawOracleOutput',
    'Taxonomy',
    'ThemeStatus',
    'Transcript',
    'UsageStatistic',
    'PipelineRun',
    'ThemeAnalysisPipeline',
    'InMemoryThemeStore',
    'JsonFileThemeStore',
    'StorageError',
    'ThemeStore',
    'TranscriptNotFound'
]
