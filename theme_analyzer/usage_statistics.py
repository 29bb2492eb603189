"""Corpus-wide theme usage statistics computed from persisted analyses."""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .models import AnalysisResult, Taxonomy, UsageStatistic

logger = logging.getLogger(__name__)


METRIC_COUNT = "count"
METRIC_PERCENTAGE = "percentage"


@dataclass(frozen=True)
class DiversityPolicy:
    """When a theme counts as overused or underused.

    The same policy drives the prompt's avoid/prefer lists and the
    diversity filter, measured either by raw count or by percentage of
    all analyses.
    """
    metric: str = METRIC_COUNT
    overuse_threshold: float = 8
    underuse_threshold: float = 3

    @classmethod
    def by_count(cls, overuse: int = 8, underuse: int = 3) -> 'DiversityPolicy':
        return cls(METRIC_COUNT, overuse, underuse)

    @classmethod
    def by_percentage(cls, overuse: float = 30.0, underuse: float = 10.0) -> 'DiversityPolicy':
        return cls(METRIC_PERCENTAGE, overuse, underuse)

    def __post_init__(self):
        if self.metric not in (METRIC_COUNT, METRIC_PERCENTAGE):
            raise ValueError(f"Unknown usage metric: {self.metric}")
        if self.overuse_threshold < 0 or self.underuse_threshold < 0:
            raise ValueError("Usage thresholds must be non-negative")

    def measure(self, stat: UsageStatistic) -> float:
        return stat.count if self.metric == METRIC_COUNT else stat.percentage

    def is_overused(self, stat: UsageStatistic) -> bool:
        return self.measure(stat) > self.overuse_threshold

    def is_underused(self, stat: UsageStatistic) -> bool:
        return self.measure(stat) < self.underuse_threshold


class UsageSnapshot:
    """Point-in-time usage view for one pipeline run."""

    def __init__(self, counts: Dict[str, int], total_analyses: int):
        self.counts = dict(counts)
        self.total_analyses = total_analyses

    def get(self, theme_id: str) -> UsageStatistic:
        """Usage of a theme; unknown themes have zero usage."""
        count = self.counts.get(theme_id, 0)
        if self.total_analyses == 0:
            percentage = 0.0
        else:
            percentage = 100.0 * count / self.total_analyses
        return UsageStatistic(theme_id=theme_id, count=count, percentage=percentage)

    def count(self, theme_id: str) -> int:
        return self.counts.get(theme_id, 0)

    def as_mapping(self) -> Dict[str, UsageStatistic]:
        return {theme_id: self.get(theme_id) for theme_id in self.counts}

    def sorted_by_usage(self, descending: bool = True) -> List[UsageStatistic]:
        """Every referenced theme, ordered by count (ties broken on id)."""
        stats = [self.get(theme_id) for theme_id in self.counts]
        if descending:
            return sorted(stats, key=lambda s: (-s.count, s.theme_id))
        return sorted(stats, key=lambda s: (s.count, s.theme_id))

    def overused(self, taxonomy: Taxonomy, policy: DiversityPolicy,
                 limit: Optional[int] = None) -> List[UsageStatistic]:
        """Active themes above the overuse threshold, most used first."""
        stats = [self.get(t.id) for t in taxonomy.active_themes()]
        flagged = sorted(
            (s for s in stats if policy.is_overused(s)),
            key=lambda s: (-s.count, s.theme_id),
        )
        return flagged[:limit] if limit is not None else flagged

    def underused(self, taxonomy: Taxonomy, policy: DiversityPolicy,
                  limit: Optional[int] = None) -> List[UsageStatistic]:
        """Active themes below the underuse threshold, least used first."""
        stats = [self.get(t.id) for t in taxonomy.active_themes()]
        flagged = sorted(
            (s for s in stats if policy.is_underused(s)),
            key=lambda s: (s.count, s.theme_id),
        )
        return flagged[:limit] if limit is not None else flagged

    def orphaned_ids(self, taxonomy: Taxonomy) -> List[str]:
        """Referenced ids that are no longer active taxonomy entries."""
        return sorted(t for t in self.counts if not taxonomy.is_active_id(t))


class UsageStatisticsAggregator:
    """Recomputes theme usage from the full history of analyses.

    Holds no counters between runs; each call reads storage again unless
    a short cache TTL is configured.
    """

    def __init__(self, store, cache_ttl_seconds: float = 0.0, clock=time.monotonic):
        self.store = store
        self.cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock
        self._cached: Optional[Tuple[float, UsageSnapshot]] = None

    @staticmethod
    def aggregate(results: List[AnalysisResult]) -> UsageSnapshot:
        """Count how many analyses reference each theme id."""
        counts: Dict[str, int] = {}
        for result in results:
            # An analysis counts once per theme even if the id repeats
            for theme_id in set(result.mapped_theme_ids or []):
                counts[theme_id] = counts.get(theme_id, 0) + 1
        return UsageSnapshot(counts, total_analyses=len(results))

    def snapshot(self) -> UsageSnapshot:
        """Current usage statistics, served from cache while fresh."""
        now = self._clock()
        if self._cached and self.cache_ttl_seconds > 0:
            cached_at, cached = self._cached
            if now - cached_at < self.cache_ttl_seconds:
                return cached

        results = self.store.get_all_analysis_results()
        snapshot = self.aggregate(results)
        logger.debug(f"Usage statistics: {len(snapshot.counts)} themes referenced across {snapshot.total_analyses} analyses")

        if self.cache_ttl_seconds > 0:
            self._cached = (now, snapshot)
        return snapshot

    def invalidate(self):
        self._cached = None
