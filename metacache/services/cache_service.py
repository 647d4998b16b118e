"""Cached read path plus backup and restore helpers for the metadata cache."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from ..cache import CacheStore, utc_now
from ..errors import SchemaInvalidError
from ..extractors import Extractor
from ..text import Messages
from .change_service import ChangeDetector, ChangeStatus
from .version_service import VersionManager

logger = logging.getLogger(__name__)


def load_or_extract(
    store: CacheStore,
    path: Path | str,
    extractor: Extractor,
    detector: ChangeDetector | None = None,
) -> tuple[str, bool]:
    """Return ``(metadata, from_cache)`` for *path*, extracting and caching on a stale read."""

    file_path = Path(path).expanduser().absolute()
    detector = detector or ChangeDetector(store)
    inspection = detector.inspect(file_path)
    if inspection.status is ChangeStatus.FRESH:
        cached = store.get(file_path)
        if cached is not None:
            return cached, True
    else:
        store.record_miss()
    if inspection.status is ChangeStatus.DELETED:
        store.invalidate(file_path)
        raise FileNotFoundError(file_path)
    info = detector.live_file_info(file_path, inspection)
    metadata = extractor(file_path)
    store.put(
        file_path,
        metadata,
        size=info.size,
        hash=info.hash,
        modified_time=info.modified_time,
        file_type=info.file_type,
    )
    return metadata, False


def default_backup_path(store: CacheStore, moment: datetime | None = None) -> Path:
    stamp = (moment or utc_now()).strftime("%Y%m%d-%H%M%S")
    return store.db_path.with_name(f"{store.db_path.name}.{stamp}.bak")


def backup_store(store: CacheStore, destination: Path | str | None = None) -> Path:
    """Write a consistent copy of *store* to *destination* (timestamped by default)."""

    target = Path(destination) if destination is not None else default_backup_path(store)
    return store.backup_to(target)


def restore_store(store: CacheStore, source: Path | str) -> str:
    """Replace *store* with the backup at *source* and return the restored schema version."""

    store.restore_from(source)
    version = VersionManager(store).detect_version()
    if version is None:
        raise SchemaInvalidError(Messages.ERROR_BACKUP_NOT_CACHE.format(path=source))
    logger.info("Restored store is at schema version %s", version)
    return version
