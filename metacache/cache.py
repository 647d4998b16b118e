"""Metadata cache store for Metacache backed by SQLite."""

from __future__ import annotations

import base64
import binascii
import logging
import os
import sqlite3
import zlib
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Mapping, Protocol, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .config import DEFAULT_BUSY_TIMEOUT_MS, DEFAULT_LOCK_RETRIES, Config, resolve_db_path
from .errors import (
    CorruptedStoreError,
    InvalidArgumentError,
    SchemaInvalidError,
    StoreUnavailableError,
)
from .text import Messages
from .utils import FileType, detect_file_type, normalize_path

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = "2.0"
LEGACY_SCHEMA_VERSION = "0.0"
ENTRY_TABLE = "metadata_cache"
STATS_TABLE = "cache_stats"
LEGACY_TABLE = "metadata"

VERSION_KEY = "version"
SIZE_LIMIT_KEY = "size_limit"
COMPRESSION_KEY = "compression"
HITS_KEY = "hits"
MISSES_KEY = "misses"
BYTES_WRITTEN_KEY = "bytes_written"

RETRY_WAIT_SECONDS = 0.05
RETRY_MAX_WAIT_SECONDS = 2.0

T = TypeVar("T")

# Columns each schema version must provide, used by validation and migration.
SCHEMA_COLUMNS: dict[str, dict[str, tuple[str, ...]]] = {
    "1.0": {
        ENTRY_TABLE: (
            "file_path",
            "metadata",
            "file_size",
            "file_hash",
            "modified_time",
            "file_type",
            "created_at",
            "accessed_at",
        ),
        STATS_TABLE: ("key", "value", "updated_at"),
    },
    "2.0": {
        ENTRY_TABLE: (
            "file_path",
            "metadata",
            "file_size",
            "file_hash",
            "modified_time",
            "file_type",
            "created_at",
            "accessed_at",
            "payload_size",
            "access_count",
            "compressed",
        ),
        STATS_TABLE: ("key", "value", "updated_at"),
    },
}

BASE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS metadata_cache (
    file_path TEXT PRIMARY KEY,
    metadata TEXT,
    file_size INTEGER,
    file_hash TEXT,
    modified_time INTEGER,
    file_type TEXT,
    created_at TEXT,
    accessed_at TEXT
);

CREATE TABLE IF NOT EXISTS cache_stats (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT
);
"""

INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_metadata_cache_file_type ON metadata_cache(file_type);
CREATE INDEX IF NOT EXISTS idx_metadata_cache_created_at ON metadata_cache(created_at);
CREATE INDEX IF NOT EXISTS idx_metadata_cache_accessed_at ON metadata_cache(accessed_at);
"""

V2_COLUMNS: tuple[tuple[str, str], ...] = (
    ("payload_size", "INTEGER NOT NULL DEFAULT 0"),
    ("access_count", "INTEGER NOT NULL DEFAULT 0"),
    ("compressed", "INTEGER NOT NULL DEFAULT 0"),
)


@dataclass(slots=True)
class CacheEntry:
    path: str
    metadata: str
    size: int | None
    hash: str | None
    modified_time: int | None
    file_type: FileType
    created_at: str
    accessed_at: str
    payload_size: int = 0
    access_count: int = 0


@dataclass(slots=True)
class EntrySummary:
    path: str
    payload_size: int
    created_at: str
    accessed_at: str


@dataclass(slots=True)
class CacheStats:
    count: int = 0
    total_bytes: int = 0
    oldest: str | None = None
    newest: str | None = None
    by_type: dict[str, int] = field(default_factory=dict)


class CacheObserver(Protocol):
    def record_hit(self) -> None: ...

    def record_miss(self) -> None: ...

    def record_write(self, nbytes: int) -> None: ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Return the fixed-width ISO form stored in timestamp columns."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def encode_payload(metadata: str, *, compress: bool = False) -> tuple[str, int]:
    """Encode *metadata* for storage, returning ``(text, raw_byte_length)``."""

    raw = metadata.encode("utf-8", "surrogatepass")
    data = zlib.compress(raw) if compress else raw
    return base64.b64encode(data).decode("ascii"), len(raw)


def decode_payload(value: str | None, *, compressed: bool = False) -> str:
    if not value:
        return ""
    try:
        data = base64.b64decode(value.encode("ascii"), validate=True)
        if compressed:
            data = zlib.decompress(data)
    except (binascii.Error, zlib.error, UnicodeEncodeError) as exc:
        raise CorruptedStoreError(Messages.ERROR_PAYLOAD_CORRUPTED) from exc
    return data.decode("utf-8", "surrogatepass")


def connect(
    db_path: Path,
    *,
    readonly: bool = False,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
) -> sqlite3.Connection:
    if readonly:
        db_uri = f"file:{db_path.as_posix()}?mode=ro"
        conn = sqlite3.connect(db_uri, uri=True, isolation_level=None, check_same_thread=False)
    else:
        conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")
        try:
            conn.execute("PRAGMA journal_mode = WAL;")
        except sqlite3.OperationalError as exc:
            if "readonly" not in str(exc).lower():
                raise
        conn.execute("PRAGMA synchronous = NORMAL;")
        conn.execute("PRAGMA temp_store = MEMORY;")
        if readonly:
            conn.execute("PRAGMA query_only = ON;")
    except sqlite3.Error:
        conn.close()
        raise
    return conn


@contextmanager
def write_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Hold the SQLite write lock for the duration of the block."""

    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None


def table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    if not table_exists(conn, table):
        return []
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]


def read_version(conn: sqlite3.Connection) -> str | None:
    if not table_exists(conn, STATS_TABLE):
        return None
    row = conn.execute(
        "SELECT value FROM cache_stats WHERE key = ?",
        (VERSION_KEY,),
    ).fetchone()
    if row is None or row["value"] is None:
        return None
    return str(row["value"])


def write_stat(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        """
        INSERT OR REPLACE INTO cache_stats (key, value, updated_at)
        VALUES (?, ?, ?)
        """,
        (key, value, format_timestamp(utc_now())),
    )


def add_missing_columns(
    conn: sqlite3.Connection,
    table: str,
    columns: tuple[tuple[str, str], ...],
) -> list[str]:
    added: list[str] = []
    existing = set(table_columns(conn, table))
    for name, definition in columns:
        if name in existing:
            continue
        try:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {definition}")
        except sqlite3.OperationalError as exc:
            if "duplicate column" not in str(exc).lower():
                raise
            logger.debug("Column %s.%s already exists", table, name)
            continue
        added.append(name)
    return added


def create_schema(conn: sqlite3.Connection) -> None:
    """Create the current schema and stamp the version; assumes an open transaction."""

    _execute_script(conn, BASE_SCHEMA_SQL)
    add_missing_columns(conn, ENTRY_TABLE, V2_COLUMNS)
    _execute_script(conn, INDEX_SQL)
    write_stat(conn, VERSION_KEY, CURRENT_SCHEMA_VERSION)


def _execute_script(conn: sqlite3.Connection, script: str) -> None:
    # executescript() would commit the surrounding transaction.
    for statement in script.split(";"):
        if statement.strip():
            conn.execute(statement)


def is_lock_error(exc: BaseException) -> bool:
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def translate_error(exc: sqlite3.Error, db_path: Path) -> Exception:
    message = str(exc).lower()
    if is_lock_error(exc):
        return StoreUnavailableError(Messages.ERROR_STORE_LOCKED.format(path=db_path))
    if "not a database" in message or "malformed" in message:
        return CorruptedStoreError(
            Messages.ERROR_STORE_CORRUPTED.format(path=db_path, detail=exc)
        )
    if "no such table" in message or "no such column" in message:
        return SchemaInvalidError(
            Messages.ERROR_SCHEMA_INVALID.format(path=db_path, detail=exc)
        )
    if isinstance(exc, sqlite3.OperationalError):
        return StoreUnavailableError(
            Messages.ERROR_STORE_UNAVAILABLE.format(path=db_path, detail=exc)
        )
    return exc


class CacheStore:
    """Durable per-file metadata records keyed by absolute path."""

    def __init__(
        self,
        db_path: Path | str,
        *,
        lock_retries: int = DEFAULT_LOCK_RETRIES,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        retry_wait: float = RETRY_WAIT_SECONDS,
    ) -> None:
        self.db_path = Path(db_path).expanduser().absolute()
        self.lock_retries = max(int(lock_retries), 1)
        self.busy_timeout_ms = int(busy_timeout_ms)
        self.retry_wait = retry_wait
        self._observers: list[CacheObserver] = []
        self._schema_ready = False

    @classmethod
    def from_config(cls, config: Config) -> "CacheStore":
        return cls(
            resolve_db_path(config),
            lock_retries=config.lock_retries,
            busy_timeout_ms=config.busy_timeout_ms,
        )

    def add_observer(self, observer: CacheObserver) -> None:
        self._observers.append(observer)

    def exists(self) -> bool:
        return self.db_path.is_file()

    # -- connection plumbing -------------------------------------------------

    def open(self, *, readonly: bool = False, create: bool = False) -> sqlite3.Connection:
        if not create and not self.db_path.exists():
            raise StoreUnavailableError(Messages.ERROR_STORE_MISSING.format(path=self.db_path))
        if create and not self.db_path.parent.is_dir():
            raise StoreUnavailableError(
                Messages.ERROR_STORE_DIR_MISSING.format(path=self.db_path.parent)
            )
        return connect(self.db_path, readonly=readonly, busy_timeout_ms=self.busy_timeout_ms)

    def run(
        self,
        operation: Callable[[sqlite3.Connection], T],
        *,
        write: bool = True,
        check_schema: bool = True,
        create: bool = False,
    ) -> T:
        """Run *operation* on a fresh connection, retrying on lock contention."""

        if check_schema and not self._schema_ready:
            self._verify_schema()
        retrying = Retrying(
            stop=stop_after_attempt(self.lock_retries),
            wait=wait_exponential(multiplier=self.retry_wait, max=RETRY_MAX_WAIT_SECONDS),
            retry=retry_if_exception(is_lock_error),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    return self._run_once(operation, write=write, create=create)
        except sqlite3.Error as exc:
            translated = translate_error(exc, self.db_path)
            if translated is exc:
                raise
            raise translated from exc
        raise AssertionError("unreachable")  # pragma: no cover

    def _run_once(
        self,
        operation: Callable[[sqlite3.Connection], T],
        *,
        write: bool,
        create: bool,
    ) -> T:
        conn = self.open(create=create)
        try:
            if not write:
                return operation(conn)
            with write_transaction(conn):
                return operation(conn)
        finally:
            conn.close()

    def _verify_schema(self) -> None:
        version = self.run(read_version, write=False, check_schema=False)
        if version != CURRENT_SCHEMA_VERSION:
            raise SchemaInvalidError(
                Messages.ERROR_SCHEMA_VERSION.format(
                    path=self.db_path,
                    found=version or "none",
                    expected=CURRENT_SCHEMA_VERSION,
                )
            )
        self._schema_ready = True

    def reset_schema_state(self) -> None:
        """Forget the cached schema check (after migration or restore)."""
        self._schema_ready = False

    # -- lifecycle -----------------------------------------------------------

    def init(self) -> Path:
        """Create the store, schema and indexes; safe to call repeatedly."""

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailableError(
                Messages.ERROR_STORE_UNAVAILABLE.format(path=self.db_path, detail=exc)
            ) from exc

        def _init(conn: sqlite3.Connection) -> str | None:
            version = read_version(conn)
            if version is None and not _has_legacy_tables(conn):
                create_schema(conn)
                logger.info("Initialized metadata cache at %s", self.db_path)
                return CURRENT_SCHEMA_VERSION
            if version == CURRENT_SCHEMA_VERSION:
                _execute_script(conn, INDEX_SQL)
            return version

        version = self.run(_init, check_schema=False, create=True)
        if version != CURRENT_SCHEMA_VERSION:
            raise SchemaInvalidError(
                Messages.ERROR_SCHEMA_VERSION.format(
                    path=self.db_path,
                    found=version or "legacy",
                    expected=CURRENT_SCHEMA_VERSION,
                )
            )
        self._schema_ready = True
        return self.db_path

    # -- entries -------------------------------------------------------------

    def put(
        self,
        path: Path | str,
        metadata: str | bytes,
        *,
        size: int | None = None,
        hash: str | None = None,
        modified_time: int | None = None,
        file_type: FileType | str | None = None,
    ) -> None:
        """Insert or fully replace the entry for *path*.

        Byte payloads are decoded as UTF-8 with ``surrogateescape``, so any byte
        sequence survives; ``get(path).encode("utf-8", "surrogateescape")``
        returns the original bytes.
        """

        if isinstance(metadata, (bytes, bytearray)):
            metadata = bytes(metadata).decode("utf-8", "surrogateescape")
        if not isinstance(metadata, str):
            raise InvalidArgumentError(Messages.ERROR_METADATA_TYPE)
        key = normalize_path(path)
        if size is None or modified_time is None:
            try:
                stat = os.stat(key)
            except OSError:
                stat = None
            if stat is not None:
                size = stat.st_size if size is None else size
                modified_time = int(stat.st_mtime) if modified_time is None else modified_time
        kind = FileType(file_type) if file_type else detect_file_type(key)

        def _put(conn: sqlite3.Connection) -> int:
            compress = _read_flag(conn, COMPRESSION_KEY)
            encoded, payload_size = encode_payload(metadata, compress=compress)
            now = format_timestamp(utc_now())
            conn.execute(
                """
                INSERT OR REPLACE INTO metadata_cache (
                    file_path,
                    metadata,
                    file_size,
                    file_hash,
                    modified_time,
                    file_type,
                    created_at,
                    accessed_at,
                    payload_size,
                    access_count,
                    compressed
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (
                    key,
                    encoded,
                    size,
                    hash,
                    modified_time,
                    kind.value,
                    now,
                    now,
                    payload_size,
                    int(compress),
                ),
            )
            return payload_size

        written = self.run(_put)
        logger.debug("Cached %d bytes for %s", written, key)
        for observer in self._observers:
            observer.record_write(written)

    def get(self, path: Path | str) -> str | None:
        """Return cached metadata for *path* or ``None``; bumps ``accessed_at`` on hit."""

        key = normalize_path(path)

        def _get(conn: sqlite3.Connection) -> str | None:
            row = conn.execute(
                "SELECT metadata, compressed FROM metadata_cache WHERE file_path = ?",
                (key,),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                """
                UPDATE metadata_cache
                SET accessed_at = MAX(?, created_at),
                    access_count = access_count + 1
                WHERE file_path = ?
                """,
                (format_timestamp(utc_now()), key),
            )
            return decode_payload(row["metadata"], compressed=bool(row["compressed"]))

        result = self.run(_get)
        for observer in self._observers:
            if result is None:
                observer.record_miss()
            else:
                observer.record_hit()
        return result

    def record_miss(self) -> None:
        """Report a lookup that found no usable entry without reading the store."""
        for observer in self._observers:
            observer.record_miss()

    def get_entry(self, path: Path | str) -> CacheEntry | None:
        """Return the full entry without touching its access time."""

        key = normalize_path(path)

        def _load(conn: sqlite3.Connection) -> CacheEntry | None:
            row = conn.execute(
                "SELECT * FROM metadata_cache WHERE file_path = ?",
                (key,),
            ).fetchone()
            return None if row is None else _row_to_entry(row)

        return self.run(_load, write=False)

    def contains(self, path: Path | str) -> bool:
        key = normalize_path(path)
        row = self.run(
            lambda conn: conn.execute(
                "SELECT 1 FROM metadata_cache WHERE file_path = ?",
                (key,),
            ).fetchone(),
            write=False,
        )
        return row is not None

    def set_file_info(
        self,
        path: Path | str,
        size: int | None,
        hash: str | None,
        modified_time: int | None,
        file_type: FileType | str | None,
    ) -> bool:
        """Update descriptive fields of an existing entry, leaving metadata untouched."""

        key = normalize_path(path)
        kind = FileType(file_type) if file_type else detect_file_type(key)
        cursor = self.run(
            lambda conn: conn.execute(
                """
                UPDATE metadata_cache
                SET file_size = ?,
                    file_hash = ?,
                    modified_time = ?,
                    file_type = ?
                WHERE file_path = ?
                """,
                (size, hash, modified_time, kind.value, key),
            )
        )
        return cursor.rowcount > 0

    def invalidate(self, path: Path | str) -> bool:
        key = normalize_path(path)
        cursor = self.run(
            lambda conn: conn.execute(
                "DELETE FROM metadata_cache WHERE file_path = ?",
                (key,),
            )
        )
        return cursor.rowcount > 0

    def clear(self) -> int:
        """Delete every entry and statistic; the store stays initialized."""

        def _clear(conn: sqlite3.Connection) -> int:
            row = conn.execute("SELECT COUNT(*) AS total FROM metadata_cache").fetchone()
            total = int(row["total"] if row is not None else 0)
            conn.execute("DELETE FROM metadata_cache")
            conn.execute("DELETE FROM cache_stats")
            write_stat(conn, VERSION_KEY, CURRENT_SCHEMA_VERSION)
            return total

        removed = self.run(_clear)
        logger.info("Cleared %d cache entries from %s", removed, self.db_path)
        return removed

    def stats(self) -> CacheStats:
        def _stats(conn: sqlite3.Connection) -> CacheStats:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(payload_size), 0) AS total_bytes,
                    MIN(created_at) AS oldest,
                    MAX(created_at) AS newest
                FROM metadata_cache
                """
            ).fetchone()
            by_type = {
                str(type_row["file_type"] or FileType.UNKNOWN.value): int(type_row["total"])
                for type_row in conn.execute(
                    """
                    SELECT file_type, COUNT(*) AS total
                    FROM metadata_cache
                    GROUP BY file_type
                    """
                ).fetchall()
            }
            return CacheStats(
                count=int(row["total"]),
                total_bytes=int(row["total_bytes"]),
                oldest=row["oldest"],
                newest=row["newest"],
                by_type=by_type,
            )

        return self.run(_stats, write=False)

    def iter_entries(self) -> list[EntrySummary]:
        rows = self.run(
            lambda conn: conn.execute(
                """
                SELECT file_path, payload_size, created_at, accessed_at
                FROM metadata_cache
                ORDER BY created_at ASC, file_path ASC
                """
            ).fetchall(),
            write=False,
        )
        return [
            EntrySummary(
                path=row["file_path"],
                payload_size=int(row["payload_size"] or 0),
                created_at=row["created_at"],
                accessed_at=row["accessed_at"],
            )
            for row in rows
        ]

    # -- statistics sidecar --------------------------------------------------

    def get_stat(self, key: str) -> str | None:
        row = self.run(
            lambda conn: conn.execute(
                "SELECT value FROM cache_stats WHERE key = ?",
                (key,),
            ).fetchone(),
            write=False,
        )
        return None if row is None else row["value"]

    def set_stat(self, key: str, value: str) -> None:
        if key == VERSION_KEY:
            raise InvalidArgumentError(Messages.ERROR_VERSION_KEY_RESERVED)
        self.run(lambda conn: write_stat(conn, key, value))

    def increment_stats(self, deltas: Mapping[str, int]) -> None:
        pending = {key: int(value) for key, value in deltas.items() if value}
        if not pending:
            return

        def _increment(conn: sqlite3.Connection) -> None:
            now = format_timestamp(utc_now())
            for key, delta in pending.items():
                conn.execute(
                    """
                    INSERT INTO cache_stats (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = CAST(COALESCE(value, '0') AS INTEGER) + excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, delta, now),
                )

        self.run(_increment)

    def set_compression(self, enabled: bool) -> None:
        self.set_stat(COMPRESSION_KEY, "1" if enabled else "0")

    def compression_enabled(self) -> bool:
        return self.run(lambda conn: _read_flag(conn, COMPRESSION_KEY), write=False)

    # -- file level ----------------------------------------------------------

    def file_size_bytes(self) -> int:
        total = 0
        for candidate in (self.db_path, Path(f"{self.db_path}-wal")):
            if candidate.exists():
                total += candidate.stat().st_size
        return total

    def integrity_check(self) -> list[str]:
        rows = self.run(
            lambda conn: conn.execute("PRAGMA integrity_check").fetchall(),
            write=False,
            check_schema=False,
        )
        return [str(row[0]) for row in rows]

    def checkpoint(self) -> None:
        self.run(
            lambda conn: conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchall(),
            write=False,
            check_schema=False,
        )

    def backup_to(self, destination: Path | str) -> Path:
        """Copy the live store to *destination* with SQLite's online backup API."""

        target = Path(destination).expanduser().absolute()
        target.parent.mkdir(parents=True, exist_ok=True)

        def _backup(conn: sqlite3.Connection) -> None:
            dest = sqlite3.connect(target)
            try:
                conn.backup(dest)
            finally:
                dest.close()

        self.run(_backup, write=False, check_schema=False)
        logger.info("Backed up %s to %s", self.db_path, target)
        return target

    def restore_from(self, source: Path | str) -> Path:
        """Replace the store contents with the database at *source*."""

        origin = Path(source).expanduser().absolute()
        if not origin.is_file():
            raise StoreUnavailableError(Messages.ERROR_BACKUP_MISSING.format(path=origin))
        try:
            src = connect(origin, readonly=True, busy_timeout_ms=self.busy_timeout_ms)
        except sqlite3.Error as exc:
            raise CorruptedStoreError(
                Messages.ERROR_STORE_CORRUPTED.format(path=origin, detail=exc)
            ) from exc
        try:
            try:
                if not table_exists(src, ENTRY_TABLE):
                    raise SchemaInvalidError(
                        Messages.ERROR_BACKUP_NOT_CACHE.format(path=origin)
                    )
            except sqlite3.DatabaseError as exc:
                raise CorruptedStoreError(
                    Messages.ERROR_STORE_CORRUPTED.format(path=origin, detail=exc)
                ) from exc
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.run(
                lambda conn: src.backup(conn),
                write=False,
                check_schema=False,
                create=True,
            )
        finally:
            src.close()
        self._schema_ready = False
        logger.info("Restored %s from %s", self.db_path, origin)
        return self.db_path


def _has_legacy_tables(conn: sqlite3.Connection) -> bool:
    return any(
        table_exists(conn, table) for table in (ENTRY_TABLE, STATS_TABLE, LEGACY_TABLE)
    )


def _read_flag(conn: sqlite3.Connection, key: str) -> bool:
    row = conn.execute(
        "SELECT value FROM cache_stats WHERE key = ?",
        (key,),
    ).fetchone()
    return row is not None and str(row["value"]).strip() in {"1", "true", "on"}


def _row_to_entry(row: sqlite3.Row) -> CacheEntry:
    keys = row.keys()
    compressed = bool(row["compressed"]) if "compressed" in keys else False
    raw_type = row["file_type"] or FileType.UNKNOWN.value
    try:
        kind = FileType(raw_type)
    except ValueError:
        kind = FileType.UNKNOWN
    return CacheEntry(
        path=row["file_path"],
        metadata=decode_payload(row["metadata"], compressed=compressed),
        size=row["file_size"],
        hash=row["file_hash"],
        modified_time=row["modified_time"],
        file_type=kind,
        created_at=row["created_at"],
        accessed_at=row["accessed_at"],
        payload_size=int(row["payload_size"] or 0) if "payload_size" in keys else 0,
        access_count=int(row["access_count"] or 0) if "access_count" in keys else 0,
    )
