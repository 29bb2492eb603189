"""Per-transcript orchestration of the theme analysis passes."""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Union

from .analyzers.oracle_client import AnalysisOracleClient, OracleTimeout, OracleUnavailable
from .analyzers.response_parser import ResponseParser
from .mapping.diversity_filter import DiversityFilter, FilterDecision
from .mapping.label_mapper import LabelMapper, MappingReport
from .metrics_collector import MetricsCollector, TranscriptMappingMetrics
from .models import AnalysisResult, RawOracleOutput, Taxonomy, Transcript
from .prompt_composer import PromptComposer
from .result_persister import ResultPersister
from .storage import ThemeStore
from .usage_statistics import UsageStatisticsAggregator

logger = logging.getLogger(__name__)


@dataclass
class PipelineRun:
    """Everything one transcript's run produced."""
    result: AnalysisResult
    first_pass: RawOracleOutput
    adopted_output: RawOracleOutput
    mapping: MappingReport
    decision: FilterDecision
    refinement_error: Optional[str] = None

    @property
    def pass_count(self) -> int:
        return self.result.pass_count


class ThemeAnalysisPipeline:
    """compose, extract, parse, refine, parse, map, filter, persist.

    Steps run strictly in that order for one transcript. The only write
    is the final persist, so a run cancelled earlier leaves storage
    untouched. Runs for different transcripts share no mutable state.
    """

    def __init__(self,
                 store: ThemeStore,
                 oracle_client: AnalysisOracleClient,
                 composer: Optional[PromptComposer] = None,
                 mapper: Optional[LabelMapper] = None,
                 diversity_filter: Optional[DiversityFilter] = None,
                 persister: Optional[ResultPersister] = None,
                 aggregator: Optional[UsageStatisticsAggregator] = None,
                 parser: Optional[ResponseParser] = None,
                 refinement_enabled: bool = True,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.oracle_client = oracle_client
        self.composer = composer or oracle_client.composer
        self.mapper = mapper or LabelMapper()
        self.diversity_filter = diversity_filter or DiversityFilter(self.composer.policy)
        self.persister = persister or ResultPersister(store)
        self.aggregator = aggregator or UsageStatisticsAggregator(store)
        self.parser = parser or ResponseParser()
        self.refinement_enabled = refinement_enabled
        self.metrics = metrics

    async def analyze(self, transcript: Union[str, Transcript]) -> AnalysisResult:
        """Analyze one transcript and persist the result."""
        run = await self.run(transcript)
        return run.result

    async def run(self, transcript: Union[str, Transcript]) -> PipelineRun:
        start = time.time()
        if not isinstance(transcript, Transcript):
            transcript = self.store.get_transcript(transcript)
        context = f"transcript {transcript.id}"

        taxonomy = Taxonomy(self.store.get_active_themes())
        usage = self.aggregator.snapshot()
        orphaned = usage.orphaned_ids(taxonomy)
        if orphaned:
            logger.warning(f"{len(orphaned)} referenced theme ids are not active taxonomy entries: {', '.join(orphaned[:10])}")

        prompt = self.composer.compose_for_transcript(transcript, taxonomy, usage)

        logger.info(f"Pass 1: extracting themes for {context} with {self.oracle_client.model}")
        try:
            raw_text = await self.oracle_client.extract(prompt)
        except (OracleUnavailable, OracleTimeout) as e:
            logger.error(f"Extraction failed for {context}: {e}")
            raise
        first_pass = self.parser.parse(raw_text, context)

        adopted, pass_count, refinement_error = first_pass, 1, None
        if self.refinement_enabled:
            adopted, pass_count, refinement_error = await self._refine(first_pass, prompt, context)

        mapping = self.mapper.map_all(adopted.themes, taxonomy)
        decision = self.diversity_filter.apply(mapping.mapped_ids, usage, taxonomy)
        logger.info(f"Mapped {len(mapping.mapped_ids)}/{len(adopted.themes)} labels for {context}; "
                    f"final themes: {', '.join(taxonomy.name_of(t) for t in decision.selected_ids)}")

        result = self.persister.persist(
            transcript.id,
            decision.selected_ids,
            adopted,
            pass_count=pass_count,
            model_used=self.oracle_client.model,
            processing_time=time.time() - start,
        )
        # New analyses change usage; a cached snapshot is now stale
        self.aggregator.invalidate()

        if self.metrics:
            self.metrics.record_mapping(TranscriptMappingMetrics(
                transcript_id=transcript.id,
                labels_received=len(adopted.themes),
                labels_mapped=len(mapping.mapped_ids),
                labels_unmapped=len(mapping.unmapped),
                skipped_overused=len(decision.skipped_overused),
                backfilled=len(decision.backfilled),
                used_fallback=adopted.is_fallback,
                pass_count=pass_count,
            ))

        return PipelineRun(
            result=result,
            first_pass=first_pass,
            adopted_output=adopted,
            mapping=mapping,
            decision=decision,
            refinement_error=refinement_error,
        )

    async def _refine(self, first_pass: RawOracleOutput, prompt: str, context: str):
        """Best-effort second pass; returns (adopted output, pass count, error)."""
        logger.info(f"Pass 2: refining themes for {context}")
        try:
            raw_text = await self.oracle_client.refine(first_pass, prompt)
        except (OracleUnavailable, OracleTimeout) as e:
            logger.warning(f"Refinement failed for {context}, keeping first pass: {e}")
            return first_pass, 1, str(e)
        except Exception as e:
            logger.warning(f"Refinement raised {type(e).__name__} for {context}, keeping first pass: {e}")
            return first_pass, 1, f"{type(e).__name__}: {e}"

        refined = self.parser.parse(raw_text, f"{context} (refinement)")
        if refined.is_fallback:
            logger.warning(f"Refinement output unusable for {context}, keeping first pass")
            return first_pass, 1, "malformed refinement output"
        return refined, 2, None
