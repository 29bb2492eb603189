"""Tests for usage statistics aggregation and the diversity policy."""

import pytest

from conftest import make_result
from theme_analyzer.models import CanonicalTheme, Taxonomy, ThemeStatus, UsageStatistic
from theme_analyzer.storage import InMemoryThemeStore
from theme_analyzer.usage_statistics import (
    DiversityPolicy,
    UsageSnapshot,
    UsageStatisticsAggregator,
)


class TestDiversityPolicy:

    def test_count_policy_thresholds_are_strict(self):
        policy = DiversityPolicy.by_count(overuse=8, underuse=3)
        assert not policy.is_overused(UsageStatistic("a", 8, 50.0))
        assert policy.is_overused(UsageStatistic("a", 9, 50.0))
        assert policy.is_underused(UsageStatistic("a", 2, 90.0))
        assert not policy.is_underused(UsageStatistic("a", 3, 0.0))

    def test_percentage_policy_uses_percentage(self):
        policy = DiversityPolicy.by_percentage()
        assert policy.is_overused(UsageStatistic("a", 1, 31.0))
        assert not policy.is_overused(UsageStatistic("a", 100, 30.0))
        assert policy.is_underused(UsageStatistic("a", 100, 9.9))

    def test_invalid_policy_rejected(self):
        with pytest.raises(ValueError):
            DiversityPolicy("median", 1, 1)
        with pytest.raises(ValueError):
            DiversityPolicy.by_count(overuse=-1)


class TestUsageStatisticsAggregator:
    """Test suite for UsageStatisticsAggregator."""

    def test_empty_history(self):
        snapshot = UsageStatisticsAggregator.aggregate([])
        stat = snapshot.get("1")
        assert stat.count == 0
        assert stat.percentage == 0.0
        assert snapshot.total_analyses == 0

    def test_counts_and_percentages(self):
        results = [
            make_result("t1", ["1", "2"]),
            make_result("t2", ["1"]),
            make_result("t3", ["1", "3"]),
            make_result("t4", []),
        ]
        snapshot = UsageStatisticsAggregator.aggregate(results)
        assert snapshot.count("1") == 3
        assert snapshot.get("1").percentage == pytest.approx(75.0)
        assert snapshot.get("2").percentage == pytest.approx(25.0)

    def test_repeated_id_counts_once_per_analysis(self):
        snapshot = UsageStatisticsAggregator.aggregate([make_result("t1", ["1", "1"])])
        assert snapshot.count("1") == 1

    def test_orphaned_ids_are_counted(self, small_taxonomy):
        snapshot = UsageStatisticsAggregator.aggregate([make_result("t1", ["1", "gone"])])
        assert snapshot.count("gone") == 1
        assert snapshot.orphaned_ids(small_taxonomy) == ["gone"]

    def test_sorted_views(self):
        snapshot = UsageSnapshot({"a": 1, "b": 5, "c": 5}, total_analyses=6)
        assert [s.theme_id for s in snapshot.sorted_by_usage()] == ["b", "c", "a"]
        assert [s.theme_id for s in snapshot.sorted_by_usage(descending=False)] == ["a", "b", "c"]

    def test_overused_and_underused_only_active(self):
        taxonomy = Taxonomy([
            CanonicalTheme(id="a", name="A"),
            CanonicalTheme(id="b", name="B"),
            CanonicalTheme(id="c", name="C"),
            CanonicalTheme(id="d", name="D", status=ThemeStatus.INACTIVE),
        ])
        snapshot = UsageSnapshot({"a": 12, "b": 9, "d": 20}, total_analyses=30)
        policy = DiversityPolicy.by_count()
        assert [s.theme_id for s in snapshot.overused(taxonomy, policy)] == ["a", "b"]
        assert [s.theme_id for s in snapshot.overused(taxonomy, policy, limit=1)] == ["a"]
        assert [s.theme_id for s in snapshot.underused(taxonomy, policy)] == ["c"]

    def test_snapshot_reads_store_each_time_without_ttl(self):
        store = InMemoryThemeStore(results=[make_result("t1", ["1"])])
        aggregator = UsageStatisticsAggregator(store)
        assert aggregator.snapshot().count("1") == 1
        store.upsert_analysis_result("t2", make_result("t2", ["1"]))
        assert aggregator.snapshot().count("1") == 2

    def test_snapshot_cached_within_ttl(self):
        now = [100.0]
        store = InMemoryThemeStore(results=[make_result("t1", ["1"])])
        aggregator = UsageStatisticsAggregator(store, cache_ttl_seconds=30, clock=lambda: now[0])
        assert aggregator.snapshot().count("1") == 1

        store.upsert_analysis_result("t2", make_result("t2", ["1"]))
        assert aggregator.snapshot().count("1") == 1

        now[0] += 31
        assert aggregator.snapshot().count("1") == 2

    def test_invalidate_drops_cache(self):
        store = InMemoryThemeStore(results=[make_result("t1", ["1"])])
        aggregator = UsageStatisticsAggregator(store, cache_ttl_seconds=300)
        aggregator.snapshot()
        store.upsert_analysis_result("t2", make_result("t2", ["1"]))
        aggregator.invalidate()
        assert aggregator.snapshot().count("1") == 2
