"""Eviction and storage maintenance passes for the metadata cache."""

from __future__ import annotations

import hashlib
import logging
import os
import sqlite3
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Literal, Union

from ..cache import (
    INDEX_SQL,
    SIZE_LIMIT_KEY,
    CacheStore,
    _execute_script,
    format_timestamp,
    utc_now,
)
from ..errors import CorruptedStoreError, InvalidArgumentError
from ..text import Messages

logger = logging.getLogger(__name__)

SizeOrder = Literal["created", "accessed"]

REBUILD_TABLE_SQL = """
CREATE TABLE metadata_cache_rebuild (
    file_path TEXT PRIMARY KEY,
    metadata TEXT,
    file_size INTEGER,
    file_hash TEXT,
    modified_time INTEGER,
    file_type TEXT,
    created_at TEXT,
    accessed_at TEXT,
    payload_size INTEGER NOT NULL DEFAULT 0,
    access_count INTEGER NOT NULL DEFAULT 0,
    compressed INTEGER NOT NULL DEFAULT 0
)
"""
REBUILD_COLUMNS = (
    "file_path, metadata, file_size, file_hash, modified_time, file_type, "
    "created_at, accessed_at, payload_size, access_count, compressed"
)

_STORE_LOCKS: dict[Path, threading.RLock] = {}
_STORE_LOCKS_GUARD = threading.Lock()


def maintenance_lock(db_path: Path) -> threading.RLock:
    """Return the lock serializing maintenance passes on *db_path* in this process."""

    with _STORE_LOCKS_GUARD:
        lock = _STORE_LOCKS.get(db_path)
        if lock is None:
            lock = threading.RLock()
            _STORE_LOCKS[db_path] = lock
        return lock


def _require_positive(value: timedelta, field: str) -> None:
    if not isinstance(value, timedelta) or value <= timedelta(0):
        raise InvalidArgumentError(Messages.ERROR_DURATION_INVALID.format(field=field))


def _require_size(value: int | None, field: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidArgumentError(
            Messages.ERROR_SIZE_INVALID.format(field=field, value=value)
        )


@dataclass(frozen=True, slots=True)
class AgePolicy:
    max_age: timedelta

    def __post_init__(self) -> None:
        _require_positive(self.max_age, "max_age")


@dataclass(frozen=True, slots=True)
class SizePolicy:
    max_bytes: int | None = None
    order: SizeOrder = "created"

    def __post_init__(self) -> None:
        _require_size(self.max_bytes, "max_bytes")
        if self.order not in ("created", "accessed"):
            raise InvalidArgumentError(Messages.ERROR_SIZE_ORDER.format(order=self.order))


@dataclass(frozen=True, slots=True)
class AccessPolicy:
    max_idle: timedelta

    def __post_init__(self) -> None:
        _require_positive(self.max_idle, "max_idle")


@dataclass(frozen=True, slots=True)
class SmartPolicy:
    max_age: timedelta | None = None
    max_idle: timedelta | None = None
    max_bytes: int | None = None
    remove_missing: bool = True

    def __post_init__(self) -> None:
        if self.max_age is not None:
            _require_positive(self.max_age, "max_age")
        if self.max_idle is not None:
            _require_positive(self.max_idle, "max_idle")
        _require_size(self.max_bytes, "max_bytes")


PrunePolicy = Union[AgePolicy, SizePolicy, AccessPolicy, SmartPolicy]


@dataclass(slots=True)
class PruneResult:
    policy: PrunePolicy
    removed: int
    bytes_before: int
    bytes_after: int

    @property
    def bytes_freed(self) -> int:
        return max(self.bytes_before - self.bytes_after, 0)


@dataclass(slots=True)
class MaintenanceResult:
    operation: str
    entries: int
    size_before: int
    size_after: int
    elapsed_seconds: float
    checksum: str | None = None


class EvictionManager:
    """Apply prune policies and storage maintenance to one store."""

    def __init__(self, store: CacheStore) -> None:
        self.store = store
        self._lock = maintenance_lock(store.db_path)

    def size_limit(self) -> int | None:
        raw = self.store.get_stat(SIZE_LIMIT_KEY)
        if raw is None or not str(raw).strip():
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning("Ignoring malformed size limit %r in %s", raw, self.store.db_path)
            return None

    def set_size_limit(self, max_bytes: int | None) -> None:
        _require_size(max_bytes, "size_limit")
        self.store.set_stat(SIZE_LIMIT_KEY, "" if max_bytes is None else str(max_bytes))

    def prune(self, policy: PrunePolicy, *, now: datetime | None = None) -> PruneResult:
        """Delete entries selected by *policy* and report the bytes before and after."""

        moment = now or utc_now()
        with self._lock:
            before = self._total_bytes()
            if isinstance(policy, AgePolicy):
                removed = self._prune_age(policy.max_age, moment)
            elif isinstance(policy, AccessPolicy):
                removed = self._prune_idle(policy.max_idle, moment)
            elif isinstance(policy, SizePolicy):
                limit = policy.max_bytes if policy.max_bytes is not None else self.size_limit()
                if limit is None:
                    raise InvalidArgumentError(Messages.ERROR_SIZE_LIMIT_UNSET)
                removed = self._prune_size(limit, policy.order)
            elif isinstance(policy, SmartPolicy):
                removed = self._prune_smart(policy, moment)
            else:
                raise InvalidArgumentError(
                    Messages.ERROR_POLICY_UNKNOWN.format(policy=type(policy).__name__)
                )
            after = self._total_bytes()
        logger.info(
            "Pruned %d entries from %s (%d -> %d bytes)",
            removed,
            self.store.db_path,
            before,
            after,
        )
        return PruneResult(policy=policy, removed=removed, bytes_before=before, bytes_after=after)

    def remove_missing(self) -> int:
        """Drop entries whose file no longer exists on disk."""

        with self._lock:
            return self._remove_missing()

    def defragment(self) -> MaintenanceResult:
        """Reclaim free pages and refresh indexes and planner statistics."""

        with self._lock:
            start = time.perf_counter()
            self.store.checkpoint()
            size_before = self.store.file_size_bytes()

            def _defragment(conn: sqlite3.Connection) -> None:
                conn.execute("VACUUM")
                conn.execute("REINDEX")
                conn.execute("ANALYZE")

            self.store.run(_defragment, write=False)
            self.store.checkpoint()
            size_after = self.store.file_size_bytes()
            entries = self.store.stats().count
        logger.info("Defragmented %s (%d -> %d bytes)", self.store.db_path, size_before, size_after)
        return MaintenanceResult(
            operation="defragment",
            entries=entries,
            size_before=size_before,
            size_after=size_after,
            elapsed_seconds=time.perf_counter() - start,
        )

    def rebuild(self) -> MaintenanceResult:
        """Copy every entry into a fresh table, swap it in and verify nothing changed."""

        with self._lock:
            start = time.perf_counter()
            self.store.checkpoint()
            size_before = self.store.file_size_bytes()

            def _rebuild(conn: sqlite3.Connection) -> tuple[int, str]:
                count_before, checksum_before = _content_checksum(conn, "metadata_cache")
                conn.execute("DROP TABLE IF EXISTS metadata_cache_rebuild")
                conn.execute(REBUILD_TABLE_SQL)
                conn.execute(
                    f"INSERT INTO metadata_cache_rebuild ({REBUILD_COLUMNS}) "
                    f"SELECT {REBUILD_COLUMNS} FROM metadata_cache"
                )
                count_after, checksum_after = _content_checksum(conn, "metadata_cache_rebuild")
                if (count_before, checksum_before) != (count_after, checksum_after):
                    raise CorruptedStoreError(
                        Messages.ERROR_REBUILD_MISMATCH.format(
                            before=count_before, after=count_after
                        )
                    )
                conn.execute("DROP TABLE metadata_cache")
                conn.execute("ALTER TABLE metadata_cache_rebuild RENAME TO metadata_cache")
                _execute_script(conn, INDEX_SQL)
                return count_after, checksum_after

            entries, checksum = self.store.run(_rebuild)
            self.store.run(lambda conn: conn.execute("VACUUM"), write=False)
            self.store.checkpoint()
            size_after = self.store.file_size_bytes()
        logger.info("Rebuilt %s with %d entries", self.store.db_path, entries)
        return MaintenanceResult(
            operation="rebuild",
            entries=entries,
            size_before=size_before,
            size_after=size_after,
            elapsed_seconds=time.perf_counter() - start,
            checksum=checksum,
        )

    def _total_bytes(self) -> int:
        return self.store.stats().total_bytes

    def _delete_before(self, column: str, cutoff: datetime) -> int:
        threshold = format_timestamp(cutoff)
        cursor = self.store.run(
            lambda conn: conn.execute(
                f"DELETE FROM metadata_cache WHERE {column} < ?",
                (threshold,),
            )
        )
        return cursor.rowcount

    def _prune_age(self, max_age: timedelta, now: datetime) -> int:
        return self._delete_before("created_at", now - max_age)

    def _prune_idle(self, max_idle: timedelta, now: datetime) -> int:
        return self._delete_before("accessed_at", now - max_idle)

    def _prune_size(self, max_bytes: int, order: SizeOrder) -> int:
        column = "accessed_at" if order == "accessed" else "created_at"

        def _prune(conn: sqlite3.Connection) -> int:
            rows = conn.execute(
                f"""
                SELECT file_path, payload_size
                FROM metadata_cache
                ORDER BY {column} ASC, file_path ASC
                """
            ).fetchall()
            total = sum(int(row["payload_size"] or 0) for row in rows)
            victims: list[tuple[str]] = []
            for row in rows:
                if total <= max_bytes:
                    break
                victims.append((row["file_path"],))
                total -= int(row["payload_size"] or 0)
            conn.executemany("DELETE FROM metadata_cache WHERE file_path = ?", victims)
            return len(victims)

        return self.store.run(_prune)

    def _prune_smart(self, policy: SmartPolicy, now: datetime) -> int:
        removed = 0
        if policy.remove_missing:
            removed += self._remove_missing()
        if policy.max_age is not None:
            removed += self._prune_age(policy.max_age, now)
        if policy.max_idle is not None:
            removed += self._prune_idle(policy.max_idle, now)
        limit = policy.max_bytes if policy.max_bytes is not None else self.size_limit()
        if limit is not None:
            removed += self._prune_size(limit, "accessed")
        return removed

    def _remove_missing(self) -> int:
        def _remove(conn: sqlite3.Connection) -> int:
            removed = 0
            for row in conn.execute("SELECT file_path FROM metadata_cache").fetchall():
                path = row["file_path"]
                if os.path.exists(path):
                    continue
                removed += conn.execute(
                    "DELETE FROM metadata_cache WHERE file_path = ?", (path,)
                ).rowcount
            return removed

        removed = self.store.run(_remove)
        if removed:
            logger.info("Removed %d entries for missing files", removed)
        return removed


def _content_checksum(conn: sqlite3.Connection, table: str) -> tuple[int, str]:
    hasher = hashlib.sha256()
    count = 0
    for row in conn.execute(
        f"SELECT file_path, metadata, payload_size FROM {table} ORDER BY file_path"
    ):
        count += 1
        hasher.update(str(row["file_path"]).encode("utf-8", "surrogatepass"))
        hasher.update(b"\0")
        hasher.update(str(row["metadata"] or "").encode("ascii"))
        hasher.update(b"\0")
        hasher.update(str(row["payload_size"] or 0).encode("ascii"))
        hasher.update(b"\n")
    return count, hasher.hexdigest()
