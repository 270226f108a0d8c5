"""Query performance analysis for SQLiTune.

Records query patterns, recommends indexes for the frequent and slow ones
and suggests PRAGMA settings.
"""

from .indexer import HIGH, LOW, MEDIUM, AutoIndexer, IndexRecommendation, priority_for
from .parsing import ColumnReference, QueryColumns, extract_query_columns
from .pragmas import PragmaAdvisor, TuningSuggestion
from .recorder import QueryPattern, QueryPatternRecorder, infer_table, normalize_query

__all__ = [
    "HIGH",
    "LOW",
    "MEDIUM",
    "AutoIndexer",
    "ColumnReference",
    "IndexRecommendation",
    "PragmaAdvisor",
    "QueryColumns",
    "QueryPattern",
    "QueryPatternRecorder",
    "TuningSuggestion",
    "extract_query_columns",
    "infer_table",
    "normalize_query",
    "priority_for",
]
