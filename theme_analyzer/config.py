"""Analyzer configuration: defaults, YAML file and environment overrides."""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .analyzers.oracle_client import DEFAULT_MODEL
from .usage_statistics import METRIC_COUNT, METRIC_PERCENTAGE, DiversityPolicy

logger = logging.getLogger(__name__)


# Environment variable -> (field, type)
ENV_OVERRIDES = {
    'THEME_ANALYZER_MODEL': ('model', str),
    'THEME_ANALYZER_TIMEOUT': ('oracle_timeout_seconds', float),
    'THEME_ANALYZER_RATE_LIMIT': ('rate_limit_seconds', float),
    'THEME_ANALYZER_BATCH_SIZE': ('batch_size', int),
}


def _coerce(name: str, value: Any, target: Any) -> Any:
    """Cast a configuration value to its field's scalar type."""
    if value is None:
        if target in (bool, int, float, str):
            raise ValueError(f"Missing value for {name}")
        return value
    if target is bool:
        if isinstance(value, bool):
            return value
        raise ValueError(f"Invalid value for {name}: {value!r} (expected true or false)")
    if target not in (int, float, str):
        return value
    if target in (int, float) and isinstance(value, bool):
        raise ValueError(f"Invalid value for {name}: {value!r}")
    try:
        return target(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for {name}: {value!r}")


@dataclass
class AnalyzerConfig:
    """Tunable settings for the theme analysis pipeline and batch runner."""
    model: str = DEFAULT_MODEL
    extract_max_tokens: int = 1500
    extract_temperature: float = 0.2
    refine_max_tokens: int = 1500
    refine_temperature: float = 0.1
    refinement_enabled: bool = True
    oracle_timeout_seconds: float = 60.0
    transcript_max_chars: int = 6000
    avoid_limit: int = 5
    prefer_limit: int = 10
    overuse_metric: str = METRIC_COUNT
    overuse_threshold: float = 8
    underuse_threshold: float = 3
    min_themes: int = 3
    backfill_seed: Optional[int] = None
    usage_cache_ttl_seconds: float = 0.0
    rate_limit_seconds: float = 2.0
    batch_size: int = 1
    max_retries: int = 3
    backoff_base_seconds: float = 5.0
    backoff_multiplier: float = 2.0
    approval_confidence: float = 0.7
    analysis_version: str = "2.0"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AnalyzerConfig':
        known = {f.name: f.type for f in fields(cls)}
        values = {}
        for key, value in (data or {}).items():
            if key not in known:
                logger.warning(f"Ignoring unknown configuration key: {key}")
                continue
            values[key] = _coerce(key, value, known[key])
        config = cls(**values)
        # The percentage metric has its own default thresholds
        if config.overuse_metric == METRIC_PERCENTAGE:
            preset = DiversityPolicy.by_percentage()
            if 'overuse_threshold' not in values:
                config.overuse_threshold = preset.overuse_threshold
            if 'underuse_threshold' not in values:
                config.underuse_threshold = preset.underuse_threshold
        return config

    @classmethod
    def load(cls, path: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> 'AnalyzerConfig':
        """Load defaults, then the YAML file, then environment overrides."""
        data: Dict[str, Any] = {}
        if path:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Configuration file {path} must contain a mapping")

        config = cls.from_dict(data)
        config.apply_env(os.environ if env is None else env)
        config.validate()
        return config

    def apply_env(self, env) -> None:
        for var, (field_name, cast) in ENV_OVERRIDES.items():
            raw = env.get(var)
            if raw in (None, ""):
                continue
            try:
                setattr(self, field_name, cast(raw))
            except ValueError:
                raise ValueError(f"Invalid value for {var}: {raw!r}")

    def validate(self) -> None:
        if self.overuse_metric not in (METRIC_COUNT, METRIC_PERCENTAGE):
            raise ValueError(f"overuse_metric must be '{METRIC_COUNT}' or '{METRIC_PERCENTAGE}'")
        for name in ('overuse_threshold', 'underuse_threshold', 'rate_limit_seconds',
                     'usage_cache_ttl_seconds', 'backoff_base_seconds'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        for name in ('extract_temperature', 'refine_temperature', 'approval_confidence'):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1")
        for name in ('extract_max_tokens', 'refine_max_tokens', 'transcript_max_chars',
                     'batch_size', 'max_retries'):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        if self.min_themes < 0 or self.avoid_limit < 0 or self.prefer_limit < 0:
            raise ValueError("min_themes, avoid_limit and prefer_limit must be non-negative")
        if self.oracle_timeout_seconds <= 0:
            raise ValueError("oracle_timeout_seconds must be positive")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")

    @property
    def policy(self) -> DiversityPolicy:
        return DiversityPolicy(self.overuse_metric, self.overuse_threshold, self.underuse_threshold)
