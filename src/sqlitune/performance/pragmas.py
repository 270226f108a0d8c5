"""PRAGMA-level tuning advice.

Reads connection and database settings and suggests changes. The advisor
never changes anything itself; each suggestion carries the statement that
would apply it.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from ..database.connector import SQLiteConnector
from ..logging import get_logger

# PRAGMA synchronous values
_SYNCHRONOUS = {0: "OFF", 1: "NORMAL", 2: "FULL", 3: "EXTRA"}

MIN_PAGE_SIZE = 4096
FREELIST_VACUUM_RATIO = 0.1
MAX_CACHE_KIB = 64 * 1024


@dataclass(frozen=True)
class TuningSuggestion:
    setting: str
    current_value: Any
    recommended_value: Any
    statement: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PragmaAdvisor:
    """Suggests PRAGMA settings and maintenance for one database."""

    def __init__(self, connector: SQLiteConnector) -> None:
        self.connector = connector
        self.logger = get_logger("performance.pragmas")

    async def _settings(self) -> Dict[str, Any]:
        settings: Dict[str, Any] = {}
        for name in (
            "page_size",
            "page_count",
            "freelist_count",
            "journal_mode",
            "cache_size",
            "foreign_keys",
            "synchronous",
        ):
            settings[name] = await self.connector.pragma_value(name)

        settings["index_count"] = await self.connector.fetch_value(
            "SELECT COUNT(*) FROM sqlite_master WHERE type = 'index'"
        )
        settings["has_stat1"] = (
            await self.connector.fetch_value(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_stat1'"
            )
            is not None
        )
        return settings

    async def suggest(self) -> List[TuningSuggestion]:
        """Current tuning suggestions, most impactful first."""
        settings = await self._settings()
        suggestions: List[TuningSuggestion] = []

        page_size = int(settings["page_size"] or 0)
        page_count = int(settings["page_count"] or 0)
        freelist = int(settings["freelist_count"] or 0)
        journal_mode = str(settings["journal_mode"] or "").lower()

        if freelist and page_count and freelist / page_count >= FREELIST_VACUUM_RATIO:
            suggestions.append(
                TuningSuggestion(
                    setting="freelist_count",
                    current_value=freelist,
                    recommended_value=0,
                    statement="VACUUM",
                    reason=f"{freelist} of {page_count} pages are free; VACUUM reclaims them",
                )
            )

        if 0 < page_size < MIN_PAGE_SIZE:
            suggestions.append(
                TuningSuggestion(
                    setting="page_size",
                    current_value=page_size,
                    recommended_value=MIN_PAGE_SIZE,
                    statement=f"PRAGMA page_size = {MIN_PAGE_SIZE}",
                    reason="Small pages increase I/O; the new size applies after VACUUM",
                )
            )

        if journal_mode not in ("wal", "memory") and not self.connector.config.is_memory:
            suggestions.append(
                TuningSuggestion(
                    setting="journal_mode",
                    current_value=journal_mode,
                    recommended_value="wal",
                    statement="PRAGMA journal_mode = WAL",
                    reason="WAL lets readers proceed while a writer is active",
                )
            )

        cache_suggestion = self._cache_suggestion(int(settings["cache_size"] or 0), page_size, page_count)
        if cache_suggestion is not None:
            suggestions.append(cache_suggestion)

        if not settings["foreign_keys"]:
            suggestions.append(
                TuningSuggestion(
                    setting="foreign_keys",
                    current_value=0,
                    recommended_value=1,
                    statement="PRAGMA foreign_keys = ON",
                    reason="Foreign key constraints are declared but not enforced",
                )
            )

        synchronous = int(settings["synchronous"] if settings["synchronous"] is not None else 2)
        if journal_mode == "wal" and synchronous >= 2:
            suggestions.append(
                TuningSuggestion(
                    setting="synchronous",
                    current_value=_SYNCHRONOUS.get(synchronous, synchronous),
                    recommended_value="NORMAL",
                    statement="PRAGMA synchronous = NORMAL",
                    reason="NORMAL is durable enough under WAL and avoids a sync per commit",
                )
            )

        if settings["index_count"] and not settings["has_stat1"]:
            suggestions.append(
                TuningSuggestion(
                    setting="sqlite_stat1",
                    current_value=None,
                    recommended_value="analyzed",
                    statement="ANALYZE",
                    reason="Indexes exist but the query planner has no statistics",
                )
            )

        self.logger.debug("Tuning suggestions computed", count=len(suggestions))
        return suggestions

    @staticmethod
    def _cache_suggestion(cache_size: int, page_size: int, page_count: int) -> Optional[TuningSuggestion]:
        # negative cache_size is in KiB, positive in pages
        cache_kib = -cache_size if cache_size < 0 else cache_size * page_size // 1024
        database_kib = page_count * page_size // 1024
        target_kib = min(database_kib, MAX_CACHE_KIB)

        if target_kib <= cache_kib:
            return None

        return TuningSuggestion(
            setting="cache_size",
            current_value=cache_size,
            recommended_value=-target_kib,
            statement=f"PRAGMA cache_size = -{target_kib}",
            reason=f"The page cache ({cache_kib} KiB) is smaller than the database ({database_kib} KiB)",
        )
