"""Migration engine.

Discovers timestamped migration scripts, tracks what has been applied in a
tracking table and applies pending scripts one at a time. Each script runs
with its tracking insert inside a single ``BEGIN IMMEDIATE`` transaction,
bounded by a per-attempt and an overall timeout, and is retried with linear
backoff.

File listings, applied records and checksums are cached briefly so that
status queries do not hit the disk and the database on every call.

Example:
    >>> core = MigrationCore(connector, MigrationConfig(directory="migrations"))
    >>> await core.initialize()
    >>> result = await core.execute_all_migrations()
    >>> result.executed, result.failed
    (2, 0)
"""

import asyncio
import re
import uuid
import warnings
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from ..config.models import MigrationConfig
from ..core.cache import TTLCache
from ..core.exceptions import (
    ChecksumDriftWarning,
    ErrorCodes,
    MigrationExecutionError,
    MigrationTimeoutError,
    SQLiTuneException,
    ValidationError,
)
from ..core.utils import StringUtils
from ..database.connector import SQLiteConnector, split_sql_statements
from ..logging import get_logger, get_performance_logger
from ..schema.discovery import SchemaDiscovery
from .models import (
    BatchResult,
    ChecksumDrift,
    MigrationFile,
    MigrationRecord,
    MigrationState,
    MigrationStateMachine,
    MigrationStatus,
)

MIGRATION_FILE_PATTERN = re.compile(r"^(?P<timestamp>\d{14})_(?P<description>[A-Za-z0-9_]+)\.sql$")

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

_SQL_COMMENTS = re.compile(r"--[^\n]*|/\*.*?\*/", re.DOTALL)

# (pattern, problem) pairs checked against each comment-free statement
_STATEMENT_CHECKS = (
    (re.compile(r"\bAUTO_INCREMENT\b", re.IGNORECASE), "uses AUTO_INCREMENT, SQLite spells it AUTOINCREMENT"),
    (re.compile(r"\bSERIAL\b", re.IGNORECASE), "uses SERIAL, which SQLite does not support"),
    (
        re.compile(r"^\s*DROP\s+TABLE\s+(?!IF\s+EXISTS\b)", re.IGNORECASE),
        "drops a table without IF EXISTS",
    ),
    (
        re.compile(r"^\s*DROP\s+INDEX\s+(?!IF\s+EXISTS\b)", re.IGNORECASE),
        "drops an index without IF EXISTS",
    ),
    (
        re.compile(r"^\s*(BEGIN|COMMIT|END|ROLLBACK)\b", re.IGNORECASE),
        "controls the transaction itself; migrations already run in one",
    ),
)

_DELETE_STATEMENT = re.compile(r"^\s*DELETE\s+FROM\b", re.IGNORECASE)
_WHERE_CLAUSE = re.compile(r"\bWHERE\b", re.IGNORECASE)

_FILES_KEY = "files"
_APPLIED_KEY = "applied"


def _parse_applied_at(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MigrationCore:
    """Discovers, validates, applies and tracks migration scripts.

    Args:
        connector: Open SQLite connector
        config: Migration settings
        discovery: Schema discovery whose snapshot is invalidated after a
            migration is applied
    """

    def __init__(
        self,
        connector: SQLiteConnector,
        config: Optional[MigrationConfig] = None,
        *,
        discovery: Optional[SchemaDiscovery] = None,
    ) -> None:
        self.connector = connector
        self.config = config or MigrationConfig()
        self.discovery = discovery
        self.logger = get_logger("migration.core")
        self.perf_logger = get_performance_logger("migration.core")

        self._files_cache: TTLCache[List[MigrationFile]] = TTLCache(ttl=self.config.cache_ttl)
        self._applied_cache: TTLCache[List[MigrationRecord]] = TTLCache(ttl=self.config.cache_ttl)
        self._checksums: TTLCache[str] = TTLCache(max_size=1000)
        self._states = MigrationStateMachine()
        self._initialized = False

    @property
    def tracking_table(self) -> str:
        return self.config.tracking_table

    @property
    def _quoted_table(self) -> str:
        return StringUtils.quote_identifier(self.tracking_table)

    async def initialize(self) -> None:
        """Create the tracking table if it does not exist."""
        if self._initialized:
            return

        await self.connector.execute_query(
            f"CREATE TABLE IF NOT EXISTS {self._quoted_table} ("
            "id TEXT PRIMARY KEY, "
            "name TEXT UNIQUE NOT NULL, "
            "applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP, "
            "checksum TEXT NOT NULL)"
        )
        self._initialized = True
        self._applied_cache.clear()
        self.logger.debug("Migration tracking table ready", table=self.tracking_table)

    def invalidate_cache(self) -> None:
        """Forget cached listings so the next read goes to disk and database."""
        self._files_cache.clear()
        self._applied_cache.clear()

    # Files

    def _scan_directory(self) -> Optional[List[MigrationFile]]:
        directory = Path(self.config.directory)
        if not directory.is_dir():
            return None

        files: List[MigrationFile] = []
        for path in sorted(directory.iterdir(), key=lambda p: p.name):
            if not path.is_file():
                continue
            match = MIGRATION_FILE_PATTERN.match(path.name)
            if match is None:
                if path.suffix == ".sql":
                    self.logger.warning(
                        "Skipping misnamed migration file",
                        file=path.name,
                        expected="<14-digit timestamp>_<description>.sql",
                    )
                continue
            files.append(
                MigrationFile(
                    name=path.stem,
                    timestamp=match.group("timestamp"),
                    description=match.group("description"),
                    content=path.read_text(encoding="utf-8"),
                    path=path,
                )
            )
        return files

    async def list_migration_files(self) -> List[MigrationFile]:
        """Migration files on disk, ordered by name (and so by timestamp)."""
        cached = self._files_cache.get(_FILES_KEY)
        if cached is not None:
            self.logger.debug("Migration file listing served from cache", count=len(cached))
            return list(cached)

        files = await asyncio.to_thread(self._scan_directory)
        if files is None:
            self.logger.warning(
                "Migration directory not found",
                directory=str(self.config.directory),
            )
            files = []

        for migration in files:
            self._states.discover(migration.name)

        self._files_cache.set(_FILES_KEY, files)
        return list(files)

    # Tracking table

    async def _tracking_table_exists(self) -> bool:
        found = await self.connector.fetch_value(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (self.tracking_table,),
        )
        return found is not None

    @staticmethod
    def _to_record(row: Dict[str, Any]) -> MigrationRecord:
        return MigrationRecord(
            id=row["id"],
            name=row["name"],
            applied_at=_parse_applied_at(row["applied_at"]),
            checksum=row["checksum"],
        )

    async def list_applied(self) -> List[MigrationRecord]:
        """Applied migrations in application order.

        Returns an empty list without creating anything when the tracking
        table does not exist yet.
        """
        cached = self._applied_cache.get(_APPLIED_KEY)
        if cached is not None:
            self.logger.debug("Applied migrations served from cache", count=len(cached))
            return list(cached)

        if not await self._tracking_table_exists():
            return []

        rows = await self.connector.fetch_all(
            f"SELECT id, name, applied_at, checksum FROM {self._quoted_table} "
            "ORDER BY applied_at, name"
        )
        records = [self._to_record(row) for row in rows]
        self._applied_cache.set(_APPLIED_KEY, records)
        return list(records)

    async def _find_record(self, name: str) -> Optional[MigrationRecord]:
        row = await self.connector.fetch_one(
            f"SELECT id, name, applied_at, checksum FROM {self._quoted_table} WHERE name = ?",
            (name,),
        )
        return self._to_record(row) if row else None

    async def is_applied(self, name: str) -> bool:
        return any(record.name == name for record in await self.list_applied())

    def calculate_checksum(self, content: str) -> str:
        """sha256 hex digest of ``content``, memoised."""
        checksum = self._checksums.get(content)
        if checksum is None:
            checksum = StringUtils.compute_hash(content)
            self._checksums.set(content, checksum)
        return checksum

    # Execution

    def _mark(self, name: str, state: MigrationState) -> None:
        if self._states.get(name) != state:
            self._states.transition(name, state)

    async def _apply(
        self,
        migration: MigrationFile,
        statements: List[str],
        record_id: str,
        checksum: str,
    ) -> MigrationRecord:
        applied_at = datetime.now(timezone.utc)
        async with self.connector.transaction() as tx:
            for statement in statements:
                await tx.execute(statement)
            await tx.execute(
                f"INSERT INTO {self._quoted_table} (id, name, applied_at, checksum) "
                "VALUES (?, ?, ?, ?)",
                (record_id, migration.name, applied_at.isoformat(sep=" "), checksum),
            )
        return MigrationRecord(
            id=record_id,
            name=migration.name,
            applied_at=applied_at,
            checksum=checksum,
        )

    def _after_apply(self) -> None:
        self.invalidate_cache()
        if self.discovery is not None:
            self.discovery.invalidate()

    async def _already_recorded(self, name: str, attempt: int) -> Optional[MigrationRecord]:
        existing = await self._find_record(name)
        if existing is None:
            return None
        self._mark(name, MigrationState.APPLIED)
        self._after_apply()
        self.logger.info("Migration already recorded", migration=name, attempt=attempt)
        return existing

    async def execute_migration(self, migration: MigrationFile) -> MigrationRecord:
        """Apply one migration with retries and timeouts.

        A record that already exists when an attempt starts, for instance
        because the previous attempt committed just before its timer fired,
        is returned as is. The record is looked up again after a final
        timeout for the same reason. The migration is never recorded twice.

        Raises:
            MigrationTimeoutError: If the last attempt timed out
            MigrationExecutionError: If every attempt failed otherwise
            MigrationError: If the migration is in a state that cannot be run
        """
        await self.initialize()

        name = migration.name
        state = self._states.discover(name)
        if state in (MigrationState.DISCOVERED, MigrationState.FAILED):
            self._states.transition(name, MigrationState.PENDING)

        statements = split_sql_statements(migration.content)
        checksum = self.calculate_checksum(migration.content)
        record_id = uuid.uuid4().hex

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.migration_timeout
        max_attempts = self.config.max_retries
        last_error: Optional[SQLiTuneException] = None
        attempts = 0

        with self.perf_logger.measure("execute_migration", migration=name):
            for attempt in range(1, max_attempts + 1):
                remaining = deadline - loop.time()
                if remaining <= 0:
                    last_error = MigrationTimeoutError(
                        f"Migration '{name}' exceeded its overall timeout of "
                        f"{self.config.migration_timeout}s",
                        code=ErrorCodes.MIGRATION_TIMEOUT,
                        operation="execute_migration",
                        context={"migration": name, "attempts": attempts},
                    )
                    break

                attempts = attempt
                self._states.transition(name, MigrationState.APPLYING)
                attempt_timeout = min(self.config.attempt_timeout, remaining)

                try:
                    existing = await self._already_recorded(name, attempt)
                    if existing is not None:
                        return existing

                    record = await asyncio.wait_for(
                        self._apply(migration, statements, record_id, checksum),
                        attempt_timeout,
                    )
                except asyncio.TimeoutError as e:
                    last_error = MigrationTimeoutError(
                        f"Migration '{name}' attempt {attempt} timed out after {attempt_timeout:.1f}s",
                        code=ErrorCodes.MIGRATION_TIMEOUT,
                        operation="execute_migration",
                        context={"migration": name, "attempt": attempt},
                        cause=e,
                    )
                except SQLiTuneException as e:
                    last_error = e
                else:
                    self._mark(name, MigrationState.APPLIED)
                    self._after_apply()
                    self.logger.info(
                        "Migration applied",
                        migration=name,
                        attempt=attempt,
                        statements=len(statements),
                    )
                    return record

                self.logger.warning(
                    "Migration attempt failed",
                    migration=name,
                    attempt=attempt,
                    max_retries=max_attempts,
                    error=str(last_error),
                )

                if attempt < max_attempts:
                    delay = self.config.retry_delay * attempt
                    await asyncio.sleep(max(0.0, min(delay, deadline - loop.time())))

            if attempts and isinstance(last_error, MigrationTimeoutError):
                # the last attempt may have committed after its timer fired
                try:
                    existing = await self._already_recorded(name, attempts)
                except SQLiTuneException as e:
                    self.logger.warning("Could not re-check migration record", migration=name, error=str(e))
                else:
                    if existing is not None:
                        return existing

            self._states.transition(name, MigrationState.FAILED)

            if isinstance(last_error, MigrationTimeoutError):
                raise last_error

            raise MigrationExecutionError(
                f"Migration '{name}' failed after {attempts} attempt(s): "
                f"{last_error.message if last_error else 'unknown error'}",
                code=ErrorCodes.MIGRATION_FAILED,
                operation="execute_migration",
                context={"migration": name, "attempts": attempts},
                cause=last_error,
            ) from last_error

    async def get_pending(self) -> List[MigrationFile]:
        """Files whose names are not in the tracking table, in order."""
        files = await self.list_migration_files()
        applied_names: Set[str] = {record.name for record in await self.list_applied()}

        pending: List[MigrationFile] = []
        for migration in files:
            state = self._states.discover(migration.name)
            if migration.name in applied_names:
                if state in (MigrationState.DISCOVERED, MigrationState.PENDING):
                    self._states.transition(migration.name, MigrationState.APPLIED)
                continue
            if state == MigrationState.DISCOVERED:
                self._states.transition(migration.name, MigrationState.PENDING)
            pending.append(migration)
        return pending

    async def verify_checksums(self) -> List[ChecksumDrift]:
        """Compare applied records with the files on disk.

        Drift is reported, never raised: each mismatch is logged and emitted
        as a :class:`ChecksumDriftWarning`.
        """
        files = {migration.name: migration for migration in await self.list_migration_files()}
        drift: List[ChecksumDrift] = []

        for record in await self.list_applied():
            migration = files.get(record.name)
            current = self.calculate_checksum(migration.content) if migration else None
            if current == record.checksum:
                continue

            item = ChecksumDrift(
                name=record.name,
                recorded_checksum=record.checksum,
                current_checksum=current,
            )
            drift.append(item)
            self.logger.warning(
                "Migration checksum drift",
                migration=record.name,
                recorded_checksum=record.checksum,
                current_checksum=current,
                missing_file=item.missing_file,
            )
            warnings.warn(item.describe(), ChecksumDriftWarning, stacklevel=2)

        return drift

    async def execute_all_migrations(self) -> BatchResult:
        """Apply every pending migration in order, stopping at the first failure."""
        await self.initialize()

        result = BatchResult()
        result.drift = await self.verify_checksums()
        pending = await self.get_pending()

        if not pending:
            self.logger.debug("No pending migrations")
            return result

        self.logger.info("Applying pending migrations", count=len(pending))
        for migration in pending:
            try:
                record = await self.execute_migration(migration)
            except SQLiTuneException as e:
                result.failed += 1
                result.errors.append(f"{migration.name}: {e.message}")
                self.logger.error(
                    "Migration batch stopped",
                    migration=migration.name,
                    executed=result.executed,
                    error=str(e),
                )
                break
            result.executed += 1
            result.applied.append(record)

        return result

    async def get_status(self) -> MigrationStatus:
        files = await self.list_migration_files()
        applied = await self.list_applied()
        pending = await self.get_pending()
        return MigrationStatus(
            total_files=len(files),
            applied=len(applied),
            pending=len(pending),
            last_applied=applied[-1].name if applied else None,
            pending_names=[migration.name for migration in pending],
        )

    def get_state(self, name: str) -> Optional[MigrationState]:
        return self._states.get(name)

    def validate_migration(self, migration: MigrationFile) -> List[str]:
        """Problems that make a migration unsafe or unlikely to run on SQLite."""
        problems: List[str] = []

        if not MIGRATION_FILE_PATTERN.match(migration.filename):
            problems.append(
                f"{migration.filename}: name must be <14-digit timestamp>_<description>.sql"
            )

        statements = [
            _SQL_COMMENTS.sub("", statement).strip()
            for statement in split_sql_statements(migration.content)
        ]
        statements = [statement for statement in statements if statement.strip(";")]
        if not statements:
            problems.append(f"{migration.name}: contains no SQL statements")
            return problems

        for number, statement in enumerate(statements, start=1):
            for pattern, problem in _STATEMENT_CHECKS:
                if pattern.search(statement):
                    problems.append(f"{migration.name}: statement {number} {problem}")
            if _DELETE_STATEMENT.match(statement) and not _WHERE_CLAUSE.search(statement):
                problems.append(f"{migration.name}: statement {number} deletes without a WHERE clause")

        return problems

    def _write_migration(self, description: str, content: str) -> MigrationFile:
        directory = Path(self.config.directory)
        directory.mkdir(parents=True, exist_ok=True)

        taken = {path.name[:14] for path in directory.glob("*.sql")}
        moment = datetime.now(timezone.utc)
        while moment.strftime(TIMESTAMP_FORMAT) in taken:
            moment += timedelta(seconds=1)

        timestamp = moment.strftime(TIMESTAMP_FORMAT)
        path = directory / f"{timestamp}_{description}.sql"
        path.write_text(content, encoding="utf-8")

        return MigrationFile(
            name=path.stem,
            timestamp=timestamp,
            description=description,
            content=content,
            path=path,
        )

    async def create_migration(self, description: str, content: str) -> MigrationFile:
        """Write a new migration file stamped with the current UTC time.

        Raises:
            ValidationError: If the description has no usable characters
        """
        slug = re.sub(r"[^A-Za-z0-9_]+", "_", description).strip("_")
        if not slug:
            raise ValidationError(
                f"Invalid migration description: {description!r}",
                code=ErrorCodes.MIGRATION_INVALID,
                operation="create_migration",
                suggestion="Use letters, digits and underscores",
            )

        migration = await asyncio.to_thread(self._write_migration, slug, content)
        self._files_cache.clear()
        self.logger.info("Migration created", migration=migration.name, path=str(migration.path))
        return migration
