"""Label mapping and diversity filtering."""

from .label_mapper import (
    LabelMapper,
    MappingMatch,
    MappingReport,
    DEFAULT_STRATEGIES
)
from .diversity_filter import DiversityFilter, FilterDecision
from .semantic_groups import SEMANTIC_GROUPS

__all__ = [
    'LabelMapper',
    'MappingMatch',
    'MappingReport',
    'DEFAULT_STRATEGIES',
    'DiversityFilter',
    'FilterDecision',
    'SEMANTIC_GROUPS'
]
