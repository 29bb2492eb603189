"""Resolves free-text theme labels onto canonical taxonomy entries."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..models import CanonicalTheme, Taxonomy
from .semantic_groups import SEMANTIC_GROUPS, normalize_fragment

logger = logging.getLogger(__name__)


DESCRIPTION_PREFIX_CHARS = 20

# A strategy receives the normalized label and the active themes in
# taxonomy order, and returns the first theme it accepts.
Strategy = Callable[[str, Sequence[CanonicalTheme]], Optional[CanonicalTheme]]


def normalize(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def match_exact_name(label: str, themes: Sequence[CanonicalTheme]) -> Optional[CanonicalTheme]:
    for theme in themes:
        if normalize(theme.name) == label:
            return theme
    return None


def match_substring(label: str, themes: Sequence[CanonicalTheme]) -> Optional[CanonicalTheme]:
    for theme in themes:
        name = normalize(theme.name)
        if name and (name in label or label in name):
            return theme
    return None


def match_description(label: str, themes: Sequence[CanonicalTheme]) -> Optional[CanonicalTheme]:
    for theme in themes:
        description = normalize(theme.description)
        if not description:
            continue
        if label in description or description[:DESCRIPTION_PREFIX_CHARS] in label:
            return theme
    return None


def make_semantic_group_matcher(groups: Dict[str, List[str]]) -> Strategy:
    """Build a keyword-group strategy over the given table."""
    prepared: List[Tuple[str, List[str]]] = [
        (normalize_fragment(key), [normalize(k) for k in keywords if normalize(k)])
        for key, keywords in groups.items()
    ]

    def match_semantic_group(label: str, themes: Sequence[CanonicalTheme]) -> Optional[CanonicalTheme]:
        for fragment, keywords in prepared:
            if not any(keyword in label for keyword in keywords):
                continue
            for theme in themes:
                if fragment in normalize(theme.name):
                    return theme
        return None

    return match_semantic_group


match_semantic_group = make_semantic_group_matcher(SEMANTIC_GROUPS)

# Most precise first; the first strategy to accept a theme wins
DEFAULT_STRATEGIES: List[Tuple[str, Strategy]] = [
    ("exact", match_exact_name),
    ("substring", match_substring),
    ("description", match_description),
    ("semantic_group", match_semantic_group),
]


@dataclass(frozen=True)
class MappingMatch:
    """How one label resolved."""
    label: str
    theme_id: Optional[str]
    strategy: Optional[str]

    @property
    def is_mapped(self) -> bool:
        return self.theme_id is not None


@dataclass
class MappingReport:
    """Outcome of mapping every label from one oracle response."""
    matches: List[MappingMatch] = field(default_factory=list)

    @property
    def mapped_ids(self) -> List[str]:
        """Mapped ids in label order, duplicates included."""
        return [m.theme_id for m in self.matches if m.theme_id is not None]

    @property
    def unmapped(self) -> List[str]:
        return [m.label for m in self.matches if m.theme_id is None]


class LabelMapper:
    """Chain of matching strategies applied in order.

    Mapping is a pure function of the label and the taxonomy; inactive
    themes are never returned.
    """

    def __init__(self, strategies: Optional[List[Tuple[str, Strategy]]] = None):
        self.strategies = list(strategies) if strategies is not None else list(DEFAULT_STRATEGIES)

    def map(self, label: str, taxonomy: Taxonomy) -> Optional[str]:
        """Return the canonical theme id for a label, or None."""
        return self.map_with_strategy(label, taxonomy).theme_id

    def map_with_strategy(self, label: str, taxonomy: Taxonomy) -> MappingMatch:
        normalized = normalize(label)
        if not normalized:
            return MappingMatch(label=label, theme_id=None, strategy=None)

        themes = taxonomy.active_themes()
        for name, strategy in self.strategies:
            theme = strategy(normalized, themes)
            if theme is not None:
                logger.debug(f"Mapped '{label}' -> '{theme.name}' ({theme.id}) via {name}")
                return MappingMatch(label=label, theme_id=theme.id, strategy=name)

        logger.warning(f"Theme '{label}' unmapped")
        return MappingMatch(label=label, theme_id=None, strategy=None)

    def map_all(self, labels: Sequence[str], taxonomy: Taxonomy) -> MappingReport:
        report = MappingReport()
        for label in labels:
            report.matches.append(self.map_with_strategy(label, taxonomy))
        return report
