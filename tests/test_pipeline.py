"""End-to-end tests for the theme analysis pipeline."""

import asyncio
from unittest.mock import AsyncMock, Mock

import anthropic
import httpx
import pytest

from conftest import ScriptedOracle, make_result, oracle_json
from theme_analyzer.analyzers.oracle_client import (
    AnalysisOracleClient,
    AnthropicOracle,
    OracleTimeout,
    OracleUnavailable,
)
from theme_analyzer.analyzers.response_parser import FALLBACK_THEME
from theme_analyzer.metrics_collector import MetricsCollector
from theme_analyzer.models import CanonicalTheme, Transcript
from theme_analyzer.pipeline import ThemeAnalysisPipeline
from theme_analyzer.storage import InMemoryThemeStore, StorageError, TranscriptNotFound


class FailingWriteStore(InMemoryThemeStore):
    def upsert_analysis_result(self, transcript_id, result):
        raise StorageError("disk full")


def build_pipeline(store, responses, **kwargs):
    backend = ScriptedOracle(responses)
    pipeline = ThemeAnalysisPipeline(store, AnalysisOracleClient(backend), **kwargs)
    return pipeline, backend


class TestThemeAnalysisPipeline:
    """Test suite for ThemeAnalysisPipeline."""

    @pytest.mark.asyncio
    async def test_unmapped_label_dropped_and_floor_backfilled(self, store):
        pipeline, _ = build_pipeline(store, [oracle_json(["resilience", "unknown-label-xyz"])],
                                     refinement_enabled=False)

        run = await pipeline.run("t-1")

        assert run.mapping.mapped_ids == ["1"]
        assert run.mapping.unmapped == ["unknown-label-xyz"]
        assert run.result.mapped_theme_ids == ["1", "2", "3"]
        assert store.results["t-1"].mapped_theme_ids == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_refinement_timeout_keeps_first_pass(self, store):
        pipeline, backend = build_pipeline(store, [oracle_json(["Hope"]), OracleTimeout("too slow")])

        run = await pipeline.run("t-1")

        assert len(backend.calls) == 2
        assert run.result.mapped_theme_ids[0] == "3"
        assert run.result.mapped_theme_ids == ["3", "1", "2"]
        assert run.pass_count == 1
        assert run.refinement_error == "too slow"
        assert run.adopted_output is run.first_pass

    @pytest.mark.asyncio
    async def test_refinement_unavailable_keeps_first_pass(self, store):
        pipeline, _ = build_pipeline(store, [oracle_json(["Hope"]), OracleUnavailable("down")])
        result = await pipeline.analyze("t-1")
        assert result.raw_themes == ["Hope"]
        assert result.pass_count == 1

    @pytest.mark.asyncio
    async def test_unexpected_refinement_error_keeps_first_pass(self, store):
        pipeline, _ = build_pipeline(store, [oracle_json(["Hope"]), ConnectionResetError("peer reset")])

        run = await pipeline.run("t-1")

        assert run.result.mapped_theme_ids[0] == "3"
        assert run.pass_count == 1
        assert run.refinement_error == "ConnectionResetError: peer reset"
        assert "t-1" in store.results

    @pytest.mark.asyncio
    async def test_anthropic_refinement_error_keeps_first_pass(self, store):
        mock_client = AsyncMock()
        response = httpx.Response(200, request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
        first = Mock()
        first.content = [Mock(text=oracle_json(["Hope"]))]
        mock_client.messages.create.side_effect = [
            first,
            anthropic.APIResponseValidationError(response=response, body=None),
        ]
        oracle = AnthropicOracle(api_key="test-key", model="test-model", client=mock_client)
        pipeline = ThemeAnalysisPipeline(store, AnalysisOracleClient(oracle))

        result = await pipeline.analyze("t-1")

        assert result.mapped_theme_ids[0] == "3"
        assert result.pass_count == 1
        assert mock_client.messages.create.await_count == 2

    @pytest.mark.asyncio
    async def test_cancellation_during_refinement_propagates(self, store):
        class CancellingOracle(ScriptedOracle):
            async def call(self, prompt, max_output_tokens, temperature, system=None):
                if self.calls:
                    raise asyncio.CancelledError()
                return await super().call(prompt, max_output_tokens, temperature, system)

        pipeline = ThemeAnalysisPipeline(store, AnalysisOracleClient(CancellingOracle([oracle_json(["Hope"])])))

        with pytest.raises(asyncio.CancelledError):
            await pipeline.run("t-1")
        assert "t-1" not in store.results

    @pytest.mark.asyncio
    async def test_successful_refinement_is_adopted(self, store):
        pipeline, backend = build_pipeline(store, [
            oracle_json(["Hope"]),
            oracle_json(["Community", "Resilience", "Hope"], confidence_score=0.9),
        ])

        result = await pipeline.analyze("t-1")

        assert result.mapped_theme_ids == ["2", "1", "3"]
        assert result.pass_count == 2
        assert result.confidence_score == 0.9
        assert '"Hope"' in backend.calls[1]["prompt"]

    @pytest.mark.asyncio
    async def test_malformed_refinement_keeps_first_pass(self, store):
        pipeline, _ = build_pipeline(store, [oracle_json(["Community"]), "not json"])
        result = await pipeline.analyze("t-1")
        assert result.raw_themes == ["Community"]
        assert result.pass_count == 1
        assert not result.requires_review

    @pytest.mark.asyncio
    async def test_malformed_first_pass_recovered_by_refinement(self, store):
        pipeline, _ = build_pipeline(store, ["garbage", oracle_json(["Hope"])])
        result = await pipeline.analyze("t-1")
        assert result.raw_themes == ["Hope"]
        assert result.pass_count == 2
        assert not result.requires_review

    @pytest.mark.asyncio
    async def test_both_passes_malformed_uses_fallback(self, store):
        pipeline, _ = build_pipeline(store, ["garbage", "more garbage"])

        result = await pipeline.analyze("t-1")

        assert result.requires_review
        assert result.raw_themes == [FALLBACK_THEME]
        assert result.confidence_score <= 0.5
        assert result.quality_score <= 0.5
        assert sorted(result.mapped_theme_ids) == ["1", "2", "3"]
        assert not result.approved_for_use

    @pytest.mark.asyncio
    async def test_extraction_failure_propagates_without_write(self, store):
        pipeline, backend = build_pipeline(store, [OracleUnavailable("no network")])

        with pytest.raises(OracleUnavailable):
            await pipeline.analyze("t-1")

        assert len(backend.calls) == 1
        assert store.results == {}

    @pytest.mark.asyncio
    async def test_storage_write_failure_propagates(self, small_themes, transcript):
        store = FailingWriteStore(themes=small_themes, transcripts=[transcript])
        pipeline, _ = build_pipeline(store, [oracle_json(["Hope"])], refinement_enabled=False)

        with pytest.raises(StorageError):
            await pipeline.analyze("t-1")

    @pytest.mark.asyncio
    async def test_missing_transcript(self, store):
        pipeline, backend = build_pipeline(store, [])
        with pytest.raises(TranscriptNotFound):
            await pipeline.analyze("nope")
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_overused_theme_suppressed_across_corpus(self):
        themes = [CanonicalTheme(id=i, name=name) for i, name in
                  [("A", "Resilience"), ("B", "Community"), ("C", "Hope"), ("D", "Family"), ("E", "Courage")]]
        history = [make_result(f"old-{i}", ["A"]) for i in range(9)] + [make_result("old-9", ["B"])]
        store = InMemoryThemeStore(themes=themes, transcripts=[Transcript(id="new", text="story")],
                                   results=history)
        pipeline, _ = build_pipeline(store, [oracle_json(["Resilience", "zzqx-unmappable"])],
                                     refinement_enabled=False)

        result = await pipeline.analyze("new")

        assert result.mapped_theme_ids[0] == "A"
        assert len(result.mapped_theme_ids) >= 3
        assert len(set(result.mapped_theme_ids)) == len(result.mapped_theme_ids)

    @pytest.mark.asyncio
    async def test_prompt_lists_overused_theme(self):
        themes = [CanonicalTheme(id="A", name="Resilience"), CanonicalTheme(id="B", name="Community")]
        history = [make_result(f"old-{i}", ["A"]) for i in range(9)]
        store = InMemoryThemeStore(themes=themes, transcripts=[Transcript(id="new", text="story")],
                                   results=history)
        pipeline, backend = build_pipeline(store, [oracle_json(["Community"])], refinement_enabled=False)

        await pipeline.analyze("new")

        assert "absolutely central to the story: Resilience" in backend.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_reanalysis_replaces_prior_result(self, store):
        pipeline, _ = build_pipeline(store, [oracle_json(["Hope"]), oracle_json(["Community"])],
                                     refinement_enabled=False)

        await pipeline.analyze("t-1")
        await pipeline.analyze("t-1")

        assert len(store.results) == 1
        assert store.results["t-1"].raw_themes == ["Community"]

    @pytest.mark.asyncio
    async def test_accepts_transcript_object(self, store):
        pipeline, backend = build_pipeline(store, [oracle_json(["Hope"])], refinement_enabled=False)
        transcript = Transcript(id="inline", text="A new story", storyteller_name="Lee")

        result = await pipeline.analyze(transcript)

        assert result.transcript_id == "inline"
        assert "STORYTELLER: Lee" in backend.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_result_fields_populated(self, store):
        pipeline, _ = build_pipeline(store, [oracle_json(["Hope"], cultural_elements=["Country"])],
                                     refinement_enabled=False)

        result = await pipeline.analyze("t-1")

        assert result.model_used == "scripted-model"
        assert result.emotions == ["pride"]
        assert result.quotes == ["We never gave up on each other, not once."]
        assert result.cultural_elements == ["Country"]
        assert result.approved_for_use
        assert result.processing_time_seconds >= 0

    @pytest.mark.asyncio
    async def test_metrics_record_mapping_outcome(self, store):
        metrics = MetricsCollector()
        pipeline, _ = build_pipeline(store, [oracle_json(["Hope", "unknown-label-xyz"])],
                                     refinement_enabled=False, metrics=metrics)

        await pipeline.analyze("t-1")

        outcome = metrics.mappings[0]
        assert outcome.labels_received == 2
        assert outcome.labels_mapped == 1
        assert outcome.labels_unmapped == 1
        assert outcome.backfilled == 2
        assert not outcome.used_fallback
