"""Schema version detection, migration and rollback for the metadata cache.

Versions form a linear chain ``0.0 -> 1.0 -> 2.0``. ``0.0`` names the
pre-versioning layout (tables present, no ``version`` statistic). Each
migration step runs inside a single write transaction and every statement
in it is guarded, so an interrupted step is retried by running it again.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from ..cache import (
    BASE_SCHEMA_SQL,
    CURRENT_SCHEMA_VERSION,
    ENTRY_TABLE,
    INDEX_SQL,
    LEGACY_SCHEMA_VERSION,
    LEGACY_TABLE,
    SCHEMA_COLUMNS,
    STATS_TABLE,
    V2_COLUMNS,
    VERSION_KEY,
    CacheStore,
    _execute_script,
    add_missing_columns,
    decode_payload,
    encode_payload,
    format_timestamp,
    read_version,
    table_columns,
    table_exists,
    utc_now,
    write_stat,
)
from ..errors import (
    CorruptedStoreError,
    InvalidVersionError,
    MigrationFailedError,
    SchemaInvalidError,
)
from ..text import Messages
from ..utils import detect_file_type

logger = logging.getLogger(__name__)

SCHEMA_VERSIONS: tuple[str, ...] = (LEGACY_SCHEMA_VERSION, "1.0", CURRENT_SCHEMA_VERSION)
LEGACY_TABLES: tuple[str, ...] = (ENTRY_TABLE, STATS_TABLE, LEGACY_TABLE)
_LEGACY_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

V1_COLUMNS: tuple[tuple[str, str], ...] = (
    ("metadata", "TEXT"),
    ("file_size", "INTEGER"),
    ("file_hash", "TEXT"),
    ("modified_time", "INTEGER"),
    ("file_type", "TEXT"),
    ("created_at", "TEXT"),
    ("accessed_at", "TEXT"),
)


@dataclass(slots=True)
class MigrationStep:
    from_version: str
    to_version: str
    backup_path: Path | None = None
    elapsed_seconds: float = 0.0


@dataclass(slots=True)
class MigrationResult:
    success: bool
    from_version: str | None
    to_version: str
    steps: list[MigrationStep] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def backups(self) -> list[Path]:
        return [step.backup_path for step in self.steps if step.backup_path is not None]


@dataclass(slots=True)
class RollbackResult:
    success: bool
    from_version: str | None
    to_version: str
    backup_path: Path | None = None
    entries_before: int = 0
    entries_after: int = 0


@dataclass(slots=True)
class Compatibility:
    version: str | None
    compatible: bool
    needs_migration: bool
    reason: str


def version_index(version: str) -> int:
    try:
        return SCHEMA_VERSIONS.index(version)
    except ValueError as exc:
        raise InvalidVersionError(
            Messages.ERROR_VERSION_UNKNOWN.format(
                version=version, known=", ".join(SCHEMA_VERSIONS)
            )
        ) from exc


class VersionManager:
    """Drive the store through its schema-version lifecycle."""

    def __init__(self, store: CacheStore) -> None:
        self.store = store

    def detect_version(self) -> str | None:
        """Return the stored version, ``"0.0"`` for legacy layouts or ``None`` if uninitialized."""

        if not self.store.exists():
            return None

        def _detect(conn: sqlite3.Connection) -> str | None:
            version = read_version(conn)
            if version is not None:
                return version
            if any(table_exists(conn, table) for table in LEGACY_TABLES):
                return LEGACY_SCHEMA_VERSION
            return None

        return self.store.run(_detect, write=False, check_schema=False)

    def validate_schema(self, version: str | None = None) -> str:
        """Check tables and columns for *version* (default: detected); return the version."""

        detected = version or self.detect_version()
        if detected is None:
            raise SchemaInvalidError(
                Messages.ERROR_STORE_UNINITIALIZED.format(path=self.store.db_path)
            )
        if detected == LEGACY_SCHEMA_VERSION:
            return detected
        expected = SCHEMA_COLUMNS.get(detected)
        if expected is None:
            raise SchemaInvalidError(
                Messages.ERROR_VERSION_UNSUPPORTED.format(
                    version=detected, current=CURRENT_SCHEMA_VERSION
                )
            )

        def _missing(conn: sqlite3.Connection) -> list[str]:
            problems: list[str] = []
            for table, columns in expected.items():
                present = set(table_columns(conn, table))
                if not present:
                    problems.append(table)
                    continue
                problems.extend(f"{table}.{column}" for column in columns if column not in present)
            return problems

        missing = self.store.run(_missing, write=False, check_schema=False)
        if missing:
            raise SchemaInvalidError(
                Messages.ERROR_SCHEMA_MISSING.format(
                    version=detected, missing=", ".join(missing)
                )
            )
        return detected

    def compatibility_check(self) -> Compatibility:
        """Report whether the current reader can use the store without migrating."""

        version = self.detect_version()
        if version is None:
            return Compatibility(
                version=None,
                compatible=False,
                needs_migration=True,
                reason=Messages.COMPAT_UNINITIALIZED,
            )
        if version == CURRENT_SCHEMA_VERSION:
            try:
                self.validate_schema(version)
            except SchemaInvalidError as exc:
                return Compatibility(
                    version=version, compatible=False, needs_migration=False, reason=str(exc)
                )
            return Compatibility(
                version=version,
                compatible=True,
                needs_migration=False,
                reason=Messages.COMPAT_CURRENT,
            )
        if version in SCHEMA_VERSIONS:
            return Compatibility(
                version=version,
                compatible=False,
                needs_migration=True,
                reason=Messages.COMPAT_OLDER.format(
                    version=version, current=CURRENT_SCHEMA_VERSION
                ),
            )
        return Compatibility(
            version=version,
            compatible=False,
            needs_migration=False,
            reason=Messages.COMPAT_NEWER.format(version=version, current=CURRENT_SCHEMA_VERSION),
        )

    def backup_path(self, version: str) -> Path:
        db_path = self.store.db_path
        return db_path.with_name(f"{db_path.name}.v{version}.bak")

    def list_backups(self) -> list[tuple[str, Path]]:
        found: list[tuple[str, Path]] = []
        for version in SCHEMA_VERSIONS:
            candidate = self.backup_path(version)
            if candidate.is_file():
                found.append((version, candidate))
        return found

    def migrate(
        self,
        *,
        backup: bool = False,
        target: str = CURRENT_SCHEMA_VERSION,
    ) -> MigrationResult:
        """Move the store forward one version at a time until it reaches *target*."""

        target_index = version_index(target)
        if target == LEGACY_SCHEMA_VERSION:
            raise InvalidVersionError(Messages.ERROR_VERSION_TARGET_LEGACY)
        start = time.perf_counter()
        current = self.detect_version()

        if current is None:
            if target != CURRENT_SCHEMA_VERSION:
                raise InvalidVersionError(
                    Messages.ERROR_VERSION_FRESH_TARGET.format(current=CURRENT_SCHEMA_VERSION)
                )
            self.store.init()
            logger.info("Created store at version %s", CURRENT_SCHEMA_VERSION)
            return MigrationResult(
                success=True,
                from_version=None,
                to_version=CURRENT_SCHEMA_VERSION,
                elapsed_seconds=time.perf_counter() - start,
            )

        if current not in SCHEMA_VERSIONS:
            raise SchemaInvalidError(
                Messages.ERROR_VERSION_UNSUPPORTED.format(
                    version=current, current=CURRENT_SCHEMA_VERSION
                )
            )
        current_index = SCHEMA_VERSIONS.index(current)
        if current_index > target_index:
            raise InvalidVersionError(
                Messages.ERROR_VERSION_DOWNGRADE.format(current=current, target=target)
            )

        result = MigrationResult(success=True, from_version=current, to_version=target)
        for index in range(current_index, target_index):
            from_version = SCHEMA_VERSIONS[index]
            to_version = SCHEMA_VERSIONS[index + 1]
            result.steps.append(self._apply_step(from_version, to_version, backup=backup))

        self.store.reset_schema_state()
        self.validate_schema(target)
        result.elapsed_seconds = time.perf_counter() - start
        return result

    def _apply_step(self, from_version: str, to_version: str, *, backup: bool) -> MigrationStep:
        step = MigrationStep(from_version=from_version, to_version=to_version)
        step_start = time.perf_counter()
        if backup:
            step.backup_path = self.store.backup_to(self.backup_path(from_version))
        operation = _STEPS[(from_version, to_version)]
        logger.info("Applying migration %s -> %s", from_version, to_version)
        try:
            self.store.run(operation, check_schema=False)
        except (SchemaInvalidError, CorruptedStoreError, sqlite3.Error) as exc:
            raise MigrationFailedError(
                Messages.ERROR_MIGRATION_STEP.format(
                    source=from_version, target=to_version, detail=exc
                )
            ) from exc
        step.elapsed_seconds = time.perf_counter() - step_start
        logger.info("Migration %s -> %s applied", from_version, to_version)
        return step

    def rollback(self, to_version: str) -> RollbackResult:
        """Restore the backup taken before migrating away from *to_version*."""

        target_index = version_index(to_version)
        current = self.detect_version()
        if current == to_version:
            return RollbackResult(success=True, from_version=current, to_version=to_version)
        if current is None or (
            current in SCHEMA_VERSIONS and SCHEMA_VERSIONS.index(current) < target_index
        ):
            raise InvalidVersionError(
                Messages.ERROR_ROLLBACK_NOT_OLDER.format(
                    target=to_version, current=current or "uninitialized"
                )
            )
        backup = self.backup_path(to_version)
        if not backup.is_file():
            raise InvalidVersionError(
                Messages.ERROR_ROLLBACK_NO_BACKUP.format(version=to_version, path=backup)
            )
        entries_before = self._count_entries()
        self.store.restore_from(backup)
        restored = self.detect_version()
        if restored != to_version:
            raise MigrationFailedError(
                Messages.ERROR_ROLLBACK_MISMATCH.format(
                    expected=to_version, found=restored or "uninitialized"
                )
            )
        logger.info("Rolled back %s from %s to %s", self.store.db_path, current, to_version)
        return RollbackResult(
            success=True,
            from_version=current,
            to_version=to_version,
            backup_path=backup,
            entries_before=entries_before,
            entries_after=self._count_entries(),
        )

    def _count_entries(self) -> int:
        def _count(conn: sqlite3.Connection) -> int:
            if not table_exists(conn, ENTRY_TABLE):
                return 0
            row = conn.execute("SELECT COUNT(*) AS total FROM metadata_cache").fetchone()
            return int(row["total"] if row is not None else 0)

        return self.store.run(_count, write=False, check_schema=False)


def _normalize_legacy_timestamp(value: str | None, fallback: str) -> str:
    if not value:
        return fallback
    try:
        moment = datetime.strptime(value, _LEGACY_TIMESTAMP_FORMAT)
    except ValueError:
        return value
    return format_timestamp(moment.replace(tzinfo=timezone.utc))


def _migrate_legacy_to_v1(conn: sqlite3.Connection) -> None:
    _execute_script(conn, BASE_SCHEMA_SQL)
    add_missing_columns(conn, ENTRY_TABLE, V1_COLUMNS)
    now = format_timestamp(utc_now())

    if table_exists(conn, LEGACY_TABLE):
        legacy_columns = set(table_columns(conn, LEGACY_TABLE))
        if {"file_path", "metadata_json"} <= legacy_columns:
            rows = conn.execute(
                "SELECT file_path, metadata_json FROM metadata"
            ).fetchall()
            for row in rows:
                encoded, _ = encode_payload(row["metadata_json"] or "")
                conn.execute(
                    """
                    INSERT OR IGNORE INTO metadata_cache (
                        file_path, metadata, file_type, created_at, accessed_at
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        row["file_path"],
                        encoded,
                        detect_file_type(row["file_path"]).value,
                        now,
                        now,
                    ),
                )
            logger.info("Imported %d rows from legacy metadata table", len(rows))
        conn.execute("DROP TABLE metadata")

    rows = conn.execute(
        "SELECT file_path, created_at, accessed_at, file_type FROM metadata_cache"
    ).fetchall()
    for row in rows:
        created = _normalize_legacy_timestamp(row["created_at"], now)
        accessed = _normalize_legacy_timestamp(row["accessed_at"], created)
        if accessed < created:
            accessed = created
        file_type = row["file_type"] or detect_file_type(row["file_path"]).value
        if (created, accessed, file_type) != (
            row["created_at"],
            row["accessed_at"],
            row["file_type"],
        ):
            conn.execute(
                """
                UPDATE metadata_cache
                SET created_at = ?, accessed_at = ?, file_type = ?
                WHERE file_path = ?
                """,
                (created, accessed, file_type, row["file_path"]),
            )

    _execute_script(conn, INDEX_SQL)
    write_stat(conn, VERSION_KEY, "1.0")


def _migrate_v1_to_v2(conn: sqlite3.Connection) -> None:
    add_missing_columns(conn, ENTRY_TABLE, V2_COLUMNS)
    rows = conn.execute(
        """
        SELECT file_path, metadata
        FROM metadata_cache
        WHERE payload_size = 0 AND metadata IS NOT NULL AND metadata != ''
        """
    ).fetchall()
    for row in rows:
        payload = decode_payload(row["metadata"])
        conn.execute(
            "UPDATE metadata_cache SET payload_size = ? WHERE file_path = ?",
            (len(payload.encode("utf-8", "surrogatepass")), row["file_path"]),
        )
    write_stat(conn, VERSION_KEY, "2.0")


_STEPS: dict[tuple[str, str], Callable[[sqlite3.Connection], None]] = {
    (LEGACY_SCHEMA_VERSION, "1.0"): _migrate_legacy_to_v1,
    ("1.0", "2.0"): _migrate_v1_to_v2,
}
