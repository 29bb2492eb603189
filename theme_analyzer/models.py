"""Core data model for transcripts, the theme taxonomy and analysis records."""

from collections import OrderedDict
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class ThemeStatus(Enum):
    """Lifecycle state of a taxonomy entry."""
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class Transcript:
    """A storyteller's narrative transcript (read-only here)."""
    id: str
    text: str
    storyteller_id: Optional[str] = None
    storyteller_name: Optional[str] = None
    word_count: Optional[int] = None

    @property
    def char_count(self) -> int:
        return len(self.text)

    @property
    def effective_word_count(self) -> int:
        """Stored word count, or a whitespace split of the text."""
        if self.word_count is not None:
            return self.word_count
        return len(self.text.split())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transcript':
        return cls(
            id=str(data['id']),
            text=data.get('text') or data.get('transcript_content') or '',
            storyteller_id=data.get('storyteller_id'),
            storyteller_name=data.get('storyteller_name'),
            word_count=data.get('word_count'),
        )


@dataclass(frozen=True)
class CanonicalTheme:
    """A curated taxonomy entry that free-text labels resolve to."""
    id: str
    name: str
    description: str = ""
    category: str = "Other"
    status: ThemeStatus = ThemeStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == ThemeStatus.ACTIVE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CanonicalTheme':
        return cls(
            id=str(data['id']),
            name=data['name'],
            description=data.get('description') or "",
            category=data.get('category') or "Other",
            status=ThemeStatus(data.get('status', 'active')),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        return data


class Taxonomy:
    """Ordered mapping of theme id to CanonicalTheme."""

    def __init__(self, themes: Optional[List[CanonicalTheme]] = None):
        self._themes: "OrderedDict[str, CanonicalTheme]" = OrderedDict()
        for theme in themes or []:
            self._themes[theme.id] = theme

    def __len__(self) -> int:
        return len(self._themes)

    def __iter__(self) -> Iterator[CanonicalTheme]:
        return iter(self._themes.values())

    def __contains__(self, theme_id: object) -> bool:
        return theme_id in self._themes

    def get(self, theme_id: str) -> Optional[CanonicalTheme]:
        return self._themes.get(theme_id)

    def active_themes(self) -> List[CanonicalTheme]:
        return [t for t in self._themes.values() if t.is_active]

    def active(self) -> 'Taxonomy':
        """Taxonomy restricted to active entries."""
        return Taxonomy(self.active_themes())

    def is_active_id(self, theme_id: str) -> bool:
        theme = self._themes.get(theme_id)
        return theme is not None and theme.is_active

    def grouped_by_category(self) -> Dict[str, List[CanonicalTheme]]:
        """Active themes grouped by category, categories sorted by name."""
        groups: Dict[str, List[CanonicalTheme]] = {}
        for theme in self.active_themes():
            groups.setdefault(theme.category or "Other", []).append(theme)
        return {category: groups[category] for category in sorted(groups)}

    def name_of(self, theme_id: str) -> str:
        theme = self._themes.get(theme_id)
        return theme.name if theme else theme_id


@dataclass(frozen=True)
class UsageStatistic:
    """Corpus-wide usage of one theme."""
    theme_id: str
    count: int
    percentage: float


@dataclass
class RawOracleOutput:
    """Structured view of one oracle response."""
    themes: List[str] = field(default_factory=list)
    emotions: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    quotes: List[str] = field(default_factory=list)
    summary: str = ""
    insights: List[str] = field(default_factory=list)
    cultural_elements: List[str] = field(default_factory=list)
    sensitivity_flags: List[str] = field(default_factory=list)
    theme_justifications: List[str] = field(default_factory=list)
    confidence_score: float = 0.5
    quality_score: float = 0.5
    is_fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Oracle-facing JSON shape (used when asking for a refinement)."""
        data = asdict(self)
        data.pop('is_fallback')
        return data


@dataclass
class AnalysisResult:
    """Persisted outcome of one transcript's analysis."""
    transcript_id: str
    mapped_theme_ids: List[str]
    emotions: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    quotes: List[str] = field(default_factory=list)
    summary: str = ""
    insights: List[str] = field(default_factory=list)
    confidence_score: float = 0.5
    quality_score: float = 0.5
    pass_count: int = 1
    raw_themes: List[str] = field(default_factory=list)
    cultural_elements: List[str] = field(default_factory=list)
    sensitivity_flags: List[str] = field(default_factory=list)
    theme_justifications: List[str] = field(default_factory=list)
    model_used: Optional[str] = None
    analysis_version: str = "2.0"
    approved_for_use: bool = False
    requires_review: bool = False
    processing_time_seconds: float = 0.0
    analyzed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisResult':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known['transcript_id'] = str(known['transcript_id'])
        known['mapped_theme_ids'] = [str(t) for t in known.get('mapped_theme_ids') or []]
        return cls(**known)
