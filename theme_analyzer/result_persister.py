"""Writes the finished analysis as one record per transcript."""

import logging
from typing import List, Optional, Sequence

from .models import AnalysisResult, RawOracleOutput
from .storage import ThemeStore

logger = logging.getLogger(__name__)


MIN_QUOTE_CHARS = 10
QUOTE_CHARS = '"\'“”‘’'


def normalize_quotes(quotes: Sequence[str]) -> List[str]:
    """Strip surrounding quote marks and drop fragments too short to use."""
    cleaned = []
    for quote in quotes:
        text = quote.strip().strip(QUOTE_CHARS).strip()
        if len(text) > MIN_QUOTE_CHARS:
            cleaned.append(text)
    return cleaned


class ResultPersister:
    """Builds AnalysisResult records and upserts them.

    Storage failures propagate to the caller; retrying is the caller's
    decision.
    """

    def __init__(self, store: ThemeStore, approval_confidence: float = 0.7, analysis_version: str = "2.0"):
        self.store = store
        self.approval_confidence = approval_confidence
        self.analysis_version = analysis_version

    def build_result(self,
                     transcript_id: str,
                     mapped_theme_ids: Sequence[str],
                     output: RawOracleOutput,
                     pass_count: int = 1,
                     model_used: Optional[str] = None,
                     processing_time: float = 0.0) -> AnalysisResult:
        return AnalysisResult(
            transcript_id=transcript_id,
            mapped_theme_ids=list(dict.fromkeys(mapped_theme_ids)),
            emotions=list(output.emotions),
            topics=list(output.topics),
            quotes=normalize_quotes(output.quotes),
            summary=output.summary,
            insights=list(output.insights),
            confidence_score=output.confidence_score,
            quality_score=output.quality_score,
            pass_count=pass_count,
            raw_themes=list(output.themes),
            cultural_elements=list(output.cultural_elements),
            sensitivity_flags=list(output.sensitivity_flags),
            theme_justifications=list(output.theme_justifications),
            model_used=model_used,
            analysis_version=self.analysis_version,
            approved_for_use=output.confidence_score > self.approval_confidence,
            requires_review=output.is_fallback,
            processing_time_seconds=round(processing_time, 3),
        )

    def persist(self,
                transcript_id: str,
                mapped_theme_ids: Sequence[str],
                output: RawOracleOutput,
                pass_count: int = 1,
                model_used: Optional[str] = None,
                processing_time: float = 0.0) -> AnalysisResult:
        """Replace any prior analysis of the transcript with a new record."""
        result = self.build_result(transcript_id, mapped_theme_ids, output,
                                   pass_count, model_used, processing_time)
        try:
            self.store.upsert_analysis_result(transcript_id, result)
        except Exception as e:
            logger.error(f"Failed to persist analysis for {transcript_id}: {e}")
            raise
        logger.info(f"Saved analysis for {transcript_id} with {len(result.mapped_theme_ids)} themes")
        return result
