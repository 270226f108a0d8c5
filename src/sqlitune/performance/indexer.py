"""Index recommendations from recorded query patterns.

The auto-indexer turns frequent query shapes into index candidates: the
columns a query filters on by equality come first, then join columns, range
columns and finally sort columns. Candidates already served by an existing
index are dropped, a candidate that leads a wider one on the same table is
folded into it, and the rest are ranked by priority and observed cost.

Recommendations are advice only; nothing here creates an index.

Example:
    >>> indexer = AutoIndexer(recorder, IndexerConfig(min_frequency=3))
    >>> for rec in indexer.analyze_and_recommend(await discovery.get_schema()):
    ...     print(rec.priority, rec.ddl)
    high CREATE INDEX IF NOT EXISTS "idx_users_email" ON "users" ("email")
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..config.models import IndexerConfig
from ..core.cache import TTLCache
from ..core.exceptions import ErrorCodes, RecommendationError
from ..database.models import SchemaSnapshot, TableSchema
from ..logging import get_logger, get_performance_logger
from ..schema.constraints import create_index_ddl, index_name_for
from .parsing import ROLE_ORDER, ColumnReference, QueryColumns, extract_query_columns
from .recorder import QueryPattern, QueryPatternRecorder

HIGH = "high"
MEDIUM = "medium"
LOW = "low"

PRIORITY_RANK: Dict[str, int] = {HIGH: 3, MEDIUM: 2, LOW: 1}


@dataclass(frozen=True)
class IndexRecommendation:
    table: str
    columns: Tuple[str, ...]
    index_name: str
    priority: str
    frequency: int
    average_duration_ms: float
    estimated_impact_ms: float
    reason: str
    ddl: str
    fingerprints: Tuple[str, ...] = ()

    @property
    def is_composite(self) -> bool:
        return len(self.columns) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "columns": list(self.columns),
            "index_name": self.index_name,
            "priority": self.priority,
            "frequency": self.frequency,
            "average_duration_ms": self.average_duration_ms,
            "estimated_impact_ms": self.estimated_impact_ms,
            "reason": self.reason,
            "ddl": self.ddl,
            "fingerprints": list(self.fingerprints),
        }


@dataclass
class _Candidate:
    table: str
    columns: Tuple[str, ...]
    frequency: int = 0
    total_duration_ms: float = 0.0
    fingerprints: List[str] = field(default_factory=list)

    @property
    def average_duration_ms(self) -> float:
        return self.total_duration_ms / self.frequency if self.frequency else 0.0

    def absorb(self, pattern: QueryPattern) -> None:
        self.frequency += pattern.frequency
        self.total_duration_ms += pattern.total_duration_ms
        self.fingerprints.append(pattern.fingerprint)

    def merge(self, other: "_Candidate") -> None:
        self.frequency += other.frequency
        self.total_duration_ms += other.total_duration_ms
        self.fingerprints.extend(other.fingerprints)

    def extends(self, other: "_Candidate") -> bool:
        """True when ``other`` is a strict leading prefix of this candidate."""
        width = len(other.columns)
        return (
            self.table == other.table
            and len(self.columns) > width
            and self.columns[:width] == other.columns
        )


def merge_prefix_candidates(candidates: Sequence[_Candidate]) -> List[_Candidate]:
    """Fold candidates whose columns lead a wider candidate into it.

    An index on ``(email, name)`` also serves lookups on ``email`` alone, so
    the narrower candidate adds its traffic to the wider one. When several
    wider candidates share the prefix, the costliest one takes it.
    """
    kept: List[_Candidate] = []
    for candidate in sorted(candidates, key=lambda c: -len(c.columns)):
        wider = [other for other in kept if other.extends(candidate)]
        if wider:
            max(wider, key=lambda c: (c.total_duration_ms, c.columns)).merge(candidate)
        else:
            kept.append(candidate)
    return kept


def priority_for(
    frequency: int,
    average_duration_ms: float,
    *,
    min_frequency: int,
    slow_query_threshold_ms: float,
) -> str:
    """Priority of a candidate from its frequency and average duration."""
    if average_duration_ms >= slow_query_threshold_ms:
        return HIGH
    if average_duration_ms >= slow_query_threshold_ms / 2 or frequency >= 5 * min_frequency:
        return MEDIUM
    return LOW


class AutoIndexer:
    """Recommends indexes for the patterns held by a recorder.

    Args:
        recorder: Source of query patterns
        config: Thresholds and limits
    """

    def __init__(self, recorder: QueryPatternRecorder, config: Optional[IndexerConfig] = None) -> None:
        self.recorder = recorder
        self.config = config or IndexerConfig()
        self.logger = get_logger("performance.indexer")
        self.perf_logger = get_performance_logger("performance.indexer")
        self._parsed: TTLCache[Optional[QueryColumns]] = TTLCache(max_size=self.config.max_patterns)

    def _parse(self, fingerprint: str) -> Optional[QueryColumns]:
        if fingerprint in self._parsed:
            return self._parsed.get(fingerprint)
        found = extract_query_columns(fingerprint)
        self._parsed.set(fingerprint, found)
        return found

    def _resolve_table(
        self, reference: ColumnReference, query_tables: Sequence[str], schema: SchemaSnapshot
    ) -> Optional[TableSchema]:
        if reference.table is not None:
            return schema.find_table(reference.table)

        owners = [
            table
            for table in (schema.find_table(name) for name in query_tables)
            if table is not None and table.has_column(reference.column)
        ]
        return owners[0] if len(owners) == 1 else None

    def _candidate_columns(
        self, pattern: QueryPattern, schema: SchemaSnapshot
    ) -> Dict[str, Tuple[str, ...]]:
        found = self._parse(pattern.fingerprint)
        if found is None:
            return {}

        by_table: Dict[str, Dict[str, List[str]]] = {}
        for reference in found.references:
            table = self._resolve_table(reference, found.tables, schema)
            if table is None:
                continue
            column = table.get_column(reference.column)
            if column is None:
                self.logger.debug(
                    "Ignoring unknown column",
                    table=table.name,
                    column=reference.column,
                    fingerprint=pattern.fingerprint,
                )
                continue
            roles = by_table.setdefault(table.name, {role: [] for role in ROLE_ORDER})
            roles[reference.role].append(column.name)

        limit = self.config.max_composite_columns
        result: Dict[str, Tuple[str, ...]] = {}
        for table_name, roles in by_table.items():
            ordered: List[str] = []
            for role in ROLE_ORDER:
                for column in roles[role]:
                    if column not in ordered:
                        ordered.append(column)
            if ordered:
                result[table_name] = tuple(ordered[:limit])
        return result

    def analyze_and_recommend(
        self,
        schema: SchemaSnapshot,
        *,
        min_frequency: Optional[int] = None,
        slow_query_threshold_ms: Optional[float] = None,
        max_recommendations: Optional[int] = None,
    ) -> List[IndexRecommendation]:
        """Rank index candidates for the recorded patterns.

        Raises:
            RecommendationError: If a threshold argument is out of range
        """
        min_frequency = self.config.min_frequency if min_frequency is None else min_frequency
        threshold = (
            self.config.slow_query_threshold_ms
            if slow_query_threshold_ms is None
            else slow_query_threshold_ms
        )
        limit = self.config.max_recommendations if max_recommendations is None else max_recommendations

        if min_frequency < 1 or threshold <= 0 or limit < 1:
            raise RecommendationError(
                "min_frequency, slow_query_threshold_ms and max_recommendations must be positive",
                code=ErrorCodes.RECOMMENDATION_GENERATION_FAILED,
                operation="analyze_and_recommend",
                context={
                    "min_frequency": min_frequency,
                    "slow_query_threshold_ms": threshold,
                    "max_recommendations": limit,
                },
            )

        with self.perf_logger.measure("analyze_and_recommend"):
            candidates: Dict[Tuple[str, Tuple[str, ...]], _Candidate] = {}
            for pattern in self.recorder.patterns():
                if pattern.frequency < min_frequency:
                    continue
                for table_name, columns in self._candidate_columns(pattern, schema).items():
                    key = (table_name, columns)
                    candidate = candidates.get(key)
                    if candidate is None:
                        candidate = candidates[key] = _Candidate(table=table_name, columns=columns)
                    candidate.absorb(pattern)

            recommendations: List[IndexRecommendation] = []
            for candidate in merge_prefix_candidates(list(candidates.values())):
                table = schema.find_table(candidate.table)
                if table is None or table.is_covered_by_index(candidate.columns):
                    continue
                recommendations.append(self._recommend(candidate, min_frequency, threshold))

            recommendations.sort(
                key=lambda rec: (
                    -PRIORITY_RANK[rec.priority],
                    -(rec.frequency * rec.average_duration_ms),
                    rec.index_name,
                )
            )

        self.logger.debug(
            "Index recommendations generated",
            candidates=len(candidates),
            recommendations=len(recommendations),
        )
        return recommendations[:limit]

    @staticmethod
    def _recommend(candidate: _Candidate, min_frequency: int, threshold: float) -> IndexRecommendation:
        average = candidate.average_duration_ms
        priority = priority_for(
            candidate.frequency,
            average,
            min_frequency=min_frequency,
            slow_query_threshold_ms=threshold,
        )
        column_list = ", ".join(candidate.columns)
        return IndexRecommendation(
            table=candidate.table,
            columns=candidate.columns,
            index_name=index_name_for(candidate.table, candidate.columns),
            priority=priority,
            frequency=candidate.frequency,
            average_duration_ms=average,
            estimated_impact_ms=candidate.total_duration_ms,
            reason=(
                f"{candidate.frequency} queries averaging {average:.0f}ms "
                f"use {candidate.table}({column_list}) without an index"
            ),
            ddl=create_index_ddl(candidate.table, candidate.columns),
            fingerprints=tuple(candidate.fingerprints),
        )

    def revalidate(
        self, recommendations: Sequence[IndexRecommendation], schema: SchemaSnapshot
    ) -> List[IndexRecommendation]:
        """Keep only recommendations still meaningful against ``schema``."""
        valid: List[IndexRecommendation] = []
        for rec in recommendations:
            table = schema.find_table(rec.table)
            if table is None:
                continue
            if not all(table.has_column(column) for column in rec.columns):
                continue
            if table.is_covered_by_index(rec.columns):
                continue
            valid.append(rec)
        return valid
