"""Query pattern recording.

Observed queries are reduced to a fingerprint (literals and parameters
replaced by ``?``) and aggregated per fingerprint: how often the shape ran
and how long it took. The auto-indexer works from these aggregates.

Example:
    >>> recorder = QueryPatternRecorder()
    >>> recorder.record_query("SELECT * FROM users WHERE email = 'a@b.c'", 1250.0)
    >>> recorder.get_pattern("select * from users where email = 'x@y.z'").frequency
    1
"""

import re
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from ..config.models import IndexerConfig
from ..core.exceptions import ErrorCodes, ValidationError
from ..logging import get_logger

_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
_NUMERIC_LITERAL = re.compile(r"(?<![\w.])-?\d+(?:\.\d+)?(?:e[+-]?\d+)?\b", re.IGNORECASE)
_NAMED_PARAMETER = re.compile(r"(?:\$\d+|[:@$][A-Za-z_]\w*|\?\d+)")
_IN_LIST = re.compile(r"\bin\s*\(\s*\?(?:\s*,\s*\?)*\s*\)")
_WHITESPACE = re.compile(r"\s+")
_TABLE_TARGET = re.compile(
    r"\b(?:from|into|update)\s+(?:or\s+\w+\s+)?[\"`\[]?([A-Za-z_][\w$]*)",
    re.IGNORECASE,
)
_OPERATION = re.compile(r"^\s*(?:with\b.*?\)\s*)?(\w+)", re.IGNORECASE | re.DOTALL)


def normalize_query(sql: str) -> str:
    """Reduce a statement to its fingerprint.

    Example:
        >>> normalize_query("SELECT * FROM t WHERE id IN (1, 2, 3) AND name = 'x';")
        'select * from t where id in (?) and name = ?'
    """
    text = _STRING_LITERAL.sub("?", sql)
    text = text.lower()
    text = _NAMED_PARAMETER.sub("?", text)
    text = _NUMERIC_LITERAL.sub("?", text)
    text = _WHITESPACE.sub(" ", text).strip()
    text = _IN_LIST.sub("in (?)", text)
    return text.rstrip(";").rstrip()


def infer_table(sql: str) -> Optional[str]:
    """First FROM, INTO or UPDATE target of a statement."""
    match = _TABLE_TARGET.search(sql)
    return match.group(1).lower() if match else None


def infer_operation(sql: str) -> str:
    match = _OPERATION.match(sql)
    return match.group(1).upper() if match else "UNKNOWN"


@dataclass
class QueryPattern:
    """Aggregated timings of one query shape."""

    fingerprint: str
    table: Optional[str]
    operation: str
    frequency: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    first_seen: float = 0.0
    last_seen: float = 0.0

    @property
    def average_duration_ms(self) -> float:
        if self.frequency == 0:
            return 0.0
        return self.total_duration_ms / self.frequency

    def add(self, duration_ms: float, seen_at: float) -> None:
        if self.frequency == 0:
            self.first_seen = seen_at
        self.frequency += 1
        self.total_duration_ms += duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        self.last_seen = seen_at

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["average_duration_ms"] = self.average_duration_ms
        return data


class QueryPatternRecorder:
    """Bounded store of query patterns keyed by fingerprint.

    Args:
        config: Indexer configuration; ``max_patterns`` bounds the store and
            the least recently seen pattern is evicted first
    """

    def __init__(self, config: Optional[IndexerConfig] = None) -> None:
        self.config = config or IndexerConfig()
        self.logger = get_logger("performance.recorder")
        self._patterns: "OrderedDict[str, QueryPattern]" = OrderedDict()
        self._recorded = 0
        self._evicted = 0

    @property
    def max_patterns(self) -> int:
        return self.config.max_patterns

    def record_query(
        self,
        sql_text: str,
        duration_ms: float,
        table: Optional[str] = None,
    ) -> QueryPattern:
        """Record one execution of ``sql_text``.

        Raises:
            ValidationError: If ``duration_ms`` is negative or the text is empty
        """
        if duration_ms < 0:
            raise ValidationError(
                f"Query duration must not be negative, got {duration_ms}",
                code=ErrorCodes.CONFIG_VALIDATION_FAILED,
                operation="record_query",
            )
        if not sql_text or not sql_text.strip():
            raise ValidationError("Query text must not be empty", operation="record_query")

        fingerprint = normalize_query(sql_text)
        pattern = self._patterns.get(fingerprint)
        if pattern is None:
            pattern = QueryPattern(
                fingerprint=fingerprint,
                table=(table.lower() if table else infer_table(fingerprint)),
                operation=infer_operation(fingerprint),
            )
            if len(self._patterns) >= self.max_patterns:
                evicted, _ = self._patterns.popitem(last=False)
                self._evicted += 1
                self.logger.debug("Query pattern evicted", fingerprint=evicted)
            self._patterns[fingerprint] = pattern
        else:
            self._patterns.move_to_end(fingerprint)

        pattern.add(float(duration_ms), time.time())
        self._recorded += 1
        return pattern

    def patterns(self) -> List[QueryPattern]:
        """Recorded patterns, most frequent first."""
        return sorted(self._patterns.values(), key=lambda p: (-p.frequency, p.fingerprint))

    def get_pattern(self, sql: str) -> Optional[QueryPattern]:
        """Pattern for ``sql`` (raw or already normalised)."""
        return self._patterns.get(normalize_query(sql))

    def slow_patterns(self, threshold_ms: Optional[float] = None) -> List[QueryPattern]:
        threshold = self.config.slow_query_threshold_ms if threshold_ms is None else threshold_ms
        slow = [p for p in self._patterns.values() if p.average_duration_ms >= threshold]
        return sorted(slow, key=lambda p: -p.average_duration_ms)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "patterns": len(self._patterns),
            "max_patterns": self.max_patterns,
            "queries_recorded": self._recorded,
            "patterns_evicted": self._evicted,
            "slow_patterns": len(self.slow_patterns()),
        }

    def clear(self) -> None:
        self._patterns.clear()
        self._recorded = 0
        self._evicted = 0

    def __len__(self) -> int:
        return len(self._patterns)
