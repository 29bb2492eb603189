"""Turns raw oracle text into a RawOracleOutput, never raising."""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from ..models import RawOracleOutput

logger = logging.getLogger(__name__)


FALLBACK_THEME = "Content requires manual review"
FALLBACK_SENSITIVITY_FLAG = "Requires manual review for theme assignment"
FALLBACK_SUMMARY = "Story contains rich content requiring manual analysis for proper theme identification."
FALLBACK_SCORE = 0.3
DEFAULT_SCORE = 0.5

# Accepted spellings for each output field, first match wins
FIELD_ALIASES = {
    "themes": ("themes", "diverse_themes"),
    "emotions": ("emotions",),
    "topics": ("topics",),
    "quotes": ("quotes",),
    "insights": ("insights",),
    "cultural_elements": ("cultural_elements", "culturalElements"),
    "sensitivity_flags": ("sensitivity_flags", "sensitivityFlags"),
    "theme_justifications": ("theme_justifications", "themeJustifications"),
}
SCORE_ALIASES = {
    "confidence_score": ("confidence_score", "confidenceScore"),
    "quality_score": ("quality_score", "qualityScore"),
}


def create_fallback_output() -> RawOracleOutput:
    """The deterministic record used when oracle output is unusable."""
    return RawOracleOutput(
        themes=[FALLBACK_THEME],
        summary=FALLBACK_SUMMARY,
        sensitivity_flags=[FALLBACK_SENSITIVITY_FLAG],
        confidence_score=FALLBACK_SCORE,
        quality_score=FALLBACK_SCORE,
        is_fallback=True,
    )


class ResponseParser:
    """Strict decode with light cleanup; substitutes a fallback on failure."""

    def parse(self, content: Optional[str], context: str = "") -> RawOracleOutput:
        """Parse oracle text into RawOracleOutput.

        Args:
            content: Raw oracle response text
            context: Description used in log messages

        Returns:
            The decoded output, or the fallback record if decoding fails.
        """
        error_context = f" for {context}" if context else ""
        if not content or not content.strip():
            logger.warning(f"Empty oracle response{error_context}, using fallback analysis")
            return create_fallback_output()

        try:
            data = self._parse_json_response(content, context)
        except (ValueError, RecursionError):
            logger.warning(f"No valid JSON in oracle response{error_context}, using fallback analysis")
            return create_fallback_output()

        if not isinstance(data, dict):
            logger.warning(f"Oracle response{error_context} is not a JSON object, using fallback analysis")
            return create_fallback_output()

        return self._to_output(data)

    def _parse_json_response(self, content: str, context: str = "") -> Any:
        """Parse JSON from an oracle response, tolerating surrounding prose.

        Raises:
            ValueError: If no JSON object is found in the content
            json.JSONDecodeError: If JSON parsing fails after cleanup attempts
        """
        try:
            return json.loads(content)
        except json.JSONDecodeError:
            # Try to extract the outermost JSON object from the response
            json_start = content.find('{')
            json_end = content.rfind('}') + 1

            if json_start >= 0 and json_end > json_start:
                json_str = content[json_start:json_end]

                # Remove // and /* */ comments
                json_str = re.sub(r'^\s*//.*$', '', json_str, flags=re.MULTILINE)
                json_str = re.sub(r'/\*.*?\*/', '', json_str, flags=re.DOTALL)
                # Remove trailing commas
                json_str = re.sub(r',(\s*[}\]])', r'\1', json_str)

                try:
                    return json.loads(json_str)
                except json.JSONDecodeError as e:
                    error_context = f" in {context}" if context else ""
                    logger.error(f"JSON parse error{error_context}: {e}")
                    logger.debug(f"Failed JSON (first 500 chars): {json_str[:500]}...")
                    raise
            raise ValueError("No JSON object found in response")

    def _to_output(self, data: Dict[str, Any]) -> RawOracleOutput:
        output = RawOracleOutput()
        for field_name, aliases in FIELD_ALIASES.items():
            setattr(output, field_name, _string_list(_first_present(data, aliases)))
        summary = data.get("summary")
        output.summary = summary.strip() if isinstance(summary, str) else ""
        for field_name, aliases in SCORE_ALIASES.items():
            setattr(output, field_name, _score(_first_present(data, aliases)))
        return output


def _first_present(data: Dict[str, Any], keys) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _string_list(value: Any) -> List[str]:
    """Coerce a field to a list of non-empty strings."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    items = []
    for item in value:
        if item is None or isinstance(item, (dict, list)):
            continue
        text = str(item).strip()
        if text:
            items.append(text)
    return items


def _score(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return DEFAULT_SCORE
    try:
        score = float(value)
    except (TypeError, ValueError):
        return DEFAULT_SCORE
    if score != score:  # NaN
        return DEFAULT_SCORE
    return min(1.0, max(0.0, score))
