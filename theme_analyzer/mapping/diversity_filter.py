"""Usage-aware selection of mapped themes with a guaranteed diversity floor."""

import logging
import random
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..models import CanonicalTheme, Taxonomy
from ..usage_statistics import DiversityPolicy, UsageSnapshot

logger = logging.getLogger(__name__)


DEFAULT_MIN_THEMES = 3


@dataclass
class FilterDecision:
    """Selected ids plus what the filter did to get there."""
    selected_ids: List[str] = field(default_factory=list)
    skipped_overused: List[str] = field(default_factory=list)
    dropped_inactive: List[str] = field(default_factory=list)
    backfilled: List[str] = field(default_factory=list)


class DiversityFilter:
    """Skips overused themes and backfills underused ones.

    Backfill order is lowest usage first with theme id as tiebreak. A
    seed shuffles ties reproducibly instead.
    """

    def __init__(self,
                 policy: Optional[DiversityPolicy] = None,
                 min_themes: int = DEFAULT_MIN_THEMES,
                 seed: Optional[int] = None):
        if min_themes < 0:
            raise ValueError("min_themes must be non-negative")
        self.policy = policy or DiversityPolicy.by_count()
        self.min_themes = min_themes
        self.seed = seed

    def apply(self, candidate_ids: Sequence[str], usage: UsageSnapshot, taxonomy: Taxonomy) -> FilterDecision:
        decision = FilterDecision()
        seen = set()

        for theme_id in candidate_ids:
            if theme_id in seen:
                continue
            seen.add(theme_id)

            if not taxonomy.is_active_id(theme_id):
                logger.warning(f"Theme id {theme_id} is not an active taxonomy entry, dropping")
                decision.dropped_inactive.append(theme_id)
                continue

            stat = usage.get(theme_id)
            # The first surviving candidate is kept even when overused
            if self.policy.is_overused(stat) and decision.selected_ids:
                logger.warning(f"Theme '{taxonomy.name_of(theme_id)}' mapped but overused, "
                               f"promoting diversity ({stat.count} uses)")
                decision.skipped_overused.append(theme_id)
                continue

            decision.selected_ids.append(theme_id)

        if len(decision.selected_ids) < self.min_themes:
            self._backfill(decision, usage, taxonomy)

        return decision

    def _backfill(self, decision: FilterDecision, usage: UsageSnapshot, taxonomy: Taxonomy):
        needed = self.min_themes - len(decision.selected_ids)
        chosen = set(decision.selected_ids)
        remaining = [t for t in taxonomy.active_themes() if t.id not in chosen]

        underused = [t for t in remaining if self.policy.is_underused(usage.get(t.id))]
        others = [t for t in remaining if not self.policy.is_underused(usage.get(t.id))]

        added = []
        for theme in self._order(underused, usage) + self._order(others, usage):
            if len(added) >= needed:
                break
            added.append(theme.id)

        if added:
            decision.selected_ids.extend(added)
            decision.backfilled.extend(added)
            logger.info(f"Added {len(added)} underused themes for diversity")
        if len(decision.selected_ids) < self.min_themes:
            logger.warning(f"Only {len(decision.selected_ids)} active themes available, "
                           f"below the floor of {self.min_themes}")

    def _order(self, themes: List[CanonicalTheme], usage: UsageSnapshot) -> List[CanonicalTheme]:
        """Lowest usage first; ties by id, or shuffled when seeded."""
        if self.seed is None:
            return sorted(themes, key=lambda t: (usage.count(t.id), t.id))
        rng = random.Random(self.seed)
        shuffled = list(themes)
        rng.shuffle(shuffled)
        # sorted() is stable, so the shuffle decides order within a usage level
        return sorted(shuffled, key=lambda t: usage.count(t.id))
