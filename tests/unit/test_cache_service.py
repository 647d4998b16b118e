from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from metacache.cache import CacheStore
from metacache.errors import SchemaInvalidError, StoreUnavailableError
from metacache.services import cache_service
from metacache.services.change_service import ChangeDetector, ChangeStatus
from metacache.services.stats_service import StatsCollector


@pytest.fixture
def store(tmp_path):
    store = CacheStore(tmp_path / "cache.db", retry_wait=0)
    store.init()
    return store


def test_load_or_extract_caches_then_hits(store, tmp_path: Path) -> None:
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(b"pixels")
    calls: list[Path] = []

    def extractor(path: Path) -> str:
        calls.append(path)
        return '{"Make": "Fuji"}'

    first = cache_service.load_or_extract(store, photo, extractor)
    second = cache_service.load_or_extract(store, photo, extractor)

    assert first == ('{"Make": "Fuji"}', False)
    assert second == ('{"Make": "Fuji"}', True)
    assert calls == [photo]
    assert store.get_entry(photo).size == 6


def test_load_or_extract_refreshes_modified_file(store, tmp_path: Path) -> None:
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(b"v1")
    os.utime(photo, (1_700_000_000, 1_700_000_000))
    versions = iter(["first", "second"])

    cache_service.load_or_extract(store, photo, lambda _path: next(versions))
    os.utime(photo, (1_700_000_900, 1_700_000_900))
    metadata, from_cache = cache_service.load_or_extract(
        store, photo, lambda _path: next(versions)
    )

    assert (metadata, from_cache) == ("second", False)
    assert store.get_entry(photo).modified_time == 1_700_000_900


def test_load_or_extract_stores_file_state_from_before_extraction(store, tmp_path: Path) -> None:
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(b"v1")
    os.utime(photo, (1_000_000, 1_000_000))

    def extractor(path: Path) -> str:
        metadata = "meta:" + path.read_text()
        path.write_bytes(b"version two")
        os.utime(path, (2_000_000, 2_000_000))
        return metadata

    assert cache_service.load_or_extract(store, photo, extractor) == ("meta:v1", False)
    assert store.get_entry(photo).modified_time == 1_000_000
    assert ChangeDetector(store).check(photo) is ChangeStatus.MODIFIED

    metadata, from_cache = cache_service.load_or_extract(
        store, photo, lambda path: "meta:" + path.read_text()
    )
    assert (metadata, from_cache) == ("meta:version two", False)


def test_load_or_extract_counts_misses_and_hits(store, tmp_path: Path) -> None:
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(b"pixels")
    collector = StatsCollector(store)

    cache_service.load_or_extract(store, photo, lambda _path: "meta")
    cache_service.load_or_extract(store, photo, lambda _path: "meta")

    assert (collector.hits, collector.misses) == (1, 1)


def test_load_or_extract_drops_entry_for_deleted_file(store, tmp_path: Path) -> None:
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(b"v1")
    cache_service.load_or_extract(store, photo, lambda _path: "meta")
    photo.unlink()

    with pytest.raises(FileNotFoundError):
        cache_service.load_or_extract(store, photo, lambda _path: "meta")
    assert store.get_entry(photo) is None


def test_default_backup_path_is_timestamped(store) -> None:
    moment = datetime(2025, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
    path = cache_service.default_backup_path(store, moment)
    assert path == store.db_path.with_name("cache.db.20250304-050607.bak")


def test_backup_and_restore_store(store, tmp_path: Path) -> None:
    store.put(tmp_path / "a.jpg", "original")

    backup = cache_service.backup_store(store)
    assert backup.is_file()
    assert backup.parent == store.db_path.parent

    store.clear()
    version = cache_service.restore_store(store, backup)

    assert version == "2.0"
    assert store.get(tmp_path / "a.jpg") == "original"


def test_restore_store_rejects_missing_source(store, tmp_path: Path) -> None:
    with pytest.raises(StoreUnavailableError):
        cache_service.restore_store(store, tmp_path / "nope.bak")


def test_restore_store_rejects_empty_database(store, tmp_path: Path) -> None:
    empty = tmp_path / "empty.db"
    empty.write_bytes(b"")

    with pytest.raises(SchemaInvalidError):
        cache_service.restore_store(store, empty)
