"""Decide whether a cached entry still reflects the file on disk."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..cache import CacheEntry, CacheStore
from ..config import Config
from ..utils import FileType, detect_file_type, file_digest, normalize_path

logger = logging.getLogger(__name__)


class ChangeStatus(str, Enum):
    FRESH = "fresh"
    MODIFIED = "modified"
    NEW = "new"
    DELETED = "deleted"


@dataclass(frozen=True, slots=True)
class StalenessPolicy:
    """How file changes are detected.

    Without hash checking only the modification time is compared. With
    hash checking a missing or differing stored hash always counts as a
    change; a matching hash with a different modification time counts as a
    change only when ``timestamp_counts`` is set.
    """

    check_hash: bool = False
    timestamp_counts: bool = True

    @classmethod
    def from_config(cls, config: Config) -> "StalenessPolicy":
        return cls(check_hash=config.check_hash, timestamp_counts=config.timestamp_counts)


@dataclass(slots=True)
class FileInfo:
    size: int
    hash: str | None
    modified_time: int
    file_type: FileType


@dataclass(slots=True)
class Inspection:
    """A change decision plus the file state it was made against."""

    status: ChangeStatus
    stat: os.stat_result | None = None
    digest: str | None = None


class ChangeDetector:
    def __init__(self, store: CacheStore, policy: StalenessPolicy | None = None) -> None:
        self.store = store
        self.policy = policy or StalenessPolicy()

    def check(self, path: Path | str) -> ChangeStatus:
        return self.inspect(path).status

    def inspect(self, path: Path | str) -> Inspection:
        key = normalize_path(path)
        entry = self.store.get_entry(key)
        if entry is None:
            return Inspection(ChangeStatus.NEW)
        try:
            stat = os.stat(key)
        except FileNotFoundError:
            return Inspection(ChangeStatus.DELETED)
        inspection = self._compare(entry, key, stat)
        logger.debug("%s: %s", key, inspection.status.value)
        return inspection

    def is_stale(self, path: Path | str) -> bool:
        return self.check(path) is not ChangeStatus.FRESH

    def live_file_info(self, path: Path | str, inspection: Inspection | None = None) -> FileInfo:
        """Return the descriptive fields a writer should store for *path*.

        Writers take this snapshot before extracting, so a change made while
        extraction runs shows up as MODIFIED on the next check. State already
        gathered by *inspection* is reused rather than read again.
        """

        key = normalize_path(path)
        stat = inspection.stat if inspection is not None else None
        if stat is None:
            stat = os.stat(key)
        digest = inspection.digest if inspection is not None else None
        if self.policy.check_hash and digest is None:
            digest = file_digest(key)
        return FileInfo(
            size=stat.st_size,
            hash=digest if self.policy.check_hash else None,
            modified_time=int(stat.st_mtime),
            file_type=detect_file_type(key),
        )

    def _compare(self, entry: CacheEntry, key: str, stat: os.stat_result) -> Inspection:
        mtime_changed = entry.modified_time != int(stat.st_mtime)
        if not self.policy.check_hash:
            status = ChangeStatus.MODIFIED if mtime_changed else ChangeStatus.FRESH
            return Inspection(status, stat)
        if not entry.hash:
            return Inspection(ChangeStatus.MODIFIED, stat)
        try:
            live_hash = file_digest(key)
        except FileNotFoundError:
            return Inspection(ChangeStatus.DELETED)
        if live_hash != entry.hash:
            return Inspection(ChangeStatus.MODIFIED, stat, live_hash)
        if mtime_changed and self.policy.timestamp_counts:
            return Inspection(ChangeStatus.MODIFIED, stat, live_hash)
        return Inspection(ChangeStatus.FRESH, stat, live_hash)
