"""Runs the pipeline over many transcripts with rate limiting and retries."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from tqdm import tqdm

from .analyzers.oracle_client import OracleTimeout, OracleUnavailable
from .models import AnalysisResult, Transcript
from .pipeline import ThemeAnalysisPipeline
from .processing_tracker import ProcessingTracker

logger = logging.getLogger(__name__)


@dataclass
class BatchSummary:
    """Outcome of one batch run."""
    processed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: int = 0
    elapsed_seconds: float = 0.0
    results: Dict[str, AnalysisResult] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.processed) + len(self.failed)


class BatchAnalysisRunner:
    """Feeds transcripts to the pipeline one batch at a time.

    A failure in one transcript is recorded and never stops the rest of
    the batch. The rate-limit delay applies between batches, not between
    the two passes of one transcript.
    """

    def __init__(self,
                 pipeline: ThemeAnalysisPipeline,
                 tracker: Optional[ProcessingTracker] = None,
                 batch_size: int = 1,
                 rate_limit_seconds: float = 2.0,
                 max_retries: int = 3,
                 backoff_base_seconds: float = 5.0,
                 backoff_multiplier: float = 2.0,
                 sleep=asyncio.sleep,
                 show_progress: bool = True):
        self.pipeline = pipeline
        self.tracker = tracker
        self.batch_size = max(1, batch_size)
        self.rate_limit_seconds = rate_limit_seconds
        self.max_retries = max(1, max_retries)
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_multiplier = backoff_multiplier
        self._sleep = sleep
        self.show_progress = show_progress

    def select_transcripts(self,
                           transcripts: Sequence[Transcript],
                           force_all: bool = False,
                           retry_failed: bool = False,
                           transcript_ids: Optional[Sequence[str]] = None,
                           limit: Optional[int] = None) -> List[Transcript]:
        """Pending transcripts, shortest first."""
        if transcript_ids:
            wanted = set(transcript_ids)
            transcripts = [t for t in transcripts if t.id in wanted]
            missing = wanted - {t.id for t in transcripts}
            if missing:
                logger.warning(f"Transcripts not found: {', '.join(sorted(missing))}")
            # Explicitly requested transcripts are always re-run
            force_all = True

        by_id = {t.id: t for t in transcripts}
        if self.tracker:
            pending_ids = self.tracker.get_pending(list(by_id), force_all=force_all, retry_failed=retry_failed)
        else:
            pending_ids = list(by_id)

        selected = sorted((by_id[i] for i in pending_ids), key=lambda t: (t.effective_word_count, t.id))
        if limit is not None:
            selected = selected[:limit]
        return selected

    def backoff_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before retry number `attempt` (1-based)."""
        delay = self.backoff_base_seconds * (self.backoff_multiplier ** (attempt - 1))
        if retry_after is not None and retry_after > delay:
            return retry_after
        return delay

    async def run(self,
                  transcripts: Optional[Sequence[Transcript]] = None,
                  force_all: bool = False,
                  retry_failed: bool = False,
                  transcript_ids: Optional[Sequence[str]] = None,
                  limit: Optional[int] = None) -> BatchSummary:
        start = time.time()
        if transcripts is None:
            transcripts = self.pipeline.store.list_transcripts()

        selected = self.select_transcripts(transcripts, force_all, retry_failed, transcript_ids, limit)
        summary = BatchSummary(skipped=len(transcripts) - len(selected))

        if not selected:
            logger.info("All transcripts already analyzed")
            summary.elapsed_seconds = time.time() - start
            return summary

        logger.info(f"Analyzing {len(selected)} transcripts (skipping {summary.skipped} already analyzed)")
        total_batches = (len(selected) + self.batch_size - 1) // self.batch_size

        with tqdm(total=len(selected), desc="Analyzing transcripts", disable=not self.show_progress) as pbar:
            for i in range(0, len(selected), self.batch_size):
                batch = selected[i:i + self.batch_size]
                batch_num = i // self.batch_size + 1
                logger.debug(f"Processing batch {batch_num}/{total_batches} ({len(batch)} transcripts)")

                batch_results = await asyncio.gather(
                    *(self._analyze_with_retry(t) for t in batch),
                    return_exceptions=True,
                )

                for result, transcript in zip(batch_results, batch):
                    if isinstance(result, BaseException):
                        if not isinstance(result, Exception):
                            raise result
                        error = f"{type(result).__name__}: {result}"
                        logger.error(f"Analysis failed for {transcript.id}: {error}")
                        summary.failed[transcript.id] = error
                        if self.tracker:
                            self.tracker.mark_failed(transcript.id, error)
                        continue

                    summary.processed.append(transcript.id)
                    summary.results[transcript.id] = result
                    if self.tracker:
                        self.tracker.mark_processed(transcript.id, pass_count=result.pass_count)

                pbar.update(len(batch))

                if batch_num < total_batches and self.rate_limit_seconds > 0:
                    await self._sleep(self.rate_limit_seconds)

        summary.elapsed_seconds = time.time() - start
        logger.info(f"Batch complete: {len(summary.processed)} analyzed, {len(summary.failed)} failed")
        return summary

    async def _analyze_with_retry(self, transcript: Transcript) -> AnalysisResult:
        for attempt in range(1, self.max_retries + 1):
            try:
                return await self.pipeline.analyze(transcript)
            except (OracleUnavailable, OracleTimeout) as e:
                if attempt == self.max_retries:
                    raise
                retry_after = getattr(e, "retry_after", None)
                delay = self.backoff_delay(attempt, retry_after)
                logger.warning(f"Oracle error for {transcript.id} (attempt {attempt}/{self.max_retries}), "
                               f"retrying in {delay:.1f}s: {e}")
                await self._sleep(delay)
