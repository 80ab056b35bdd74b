"""Intake screening, duplicate detection and relevance pre-scoring."""

from .dedup import DuplicateCheckResult, DuplicateDetector, jaccard_similarity, title_hash, tokenize_title
from .intake import IntakeFilter, IntakeResult, IntakeStats, is_target_language
from .keywords import KEYWORD_CATEGORIES, build_keyword_set, categorize_event, default_keyword_set
from .prefilter import PreFilterConfig, PreFilterResult, RelevanceScorer

__all__ = [
    "DuplicateCheckResult",
    "DuplicateDetector",
    "IntakeFilter",
    "IntakeResult",
    "IntakeStats",
    "KEYWORD_CATEGORIES",
    "PreFilterConfig",
    "PreFilterResult",
    "RelevanceScorer",
    "build_keyword_set",
    "categorize_event",
    "default_keyword_set",
    "is_target_language",
    "jaccard_similarity",
    "title_hash",
    "tokenize_title",
]
