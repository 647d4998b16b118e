from __future__ import annotations

import os

import pytest

from metacache.cache import CacheStore
from metacache.config import Config
from metacache.services import change_service
from metacache.services.change_service import ChangeDetector, ChangeStatus, StalenessPolicy
from metacache.utils import file_digest


@pytest.fixture
def store(tmp_path):
    store = CacheStore(tmp_path / "cache.db", retry_wait=0)
    store.init()
    return store


def _media(tmp_path, name="photo.jpg", content=b"pixels"):
    path = tmp_path / name
    path.write_bytes(content)
    os.utime(path, (1_700_000_000, 1_700_000_000))
    return path


def _cache(store, detector, path, metadata="meta"):
    info = detector.live_file_info(path)
    store.put(
        path,
        metadata,
        size=info.size,
        hash=info.hash,
        modified_time=info.modified_time,
        file_type=info.file_type,
    )


def test_new_and_fresh(store, tmp_path):
    detector = ChangeDetector(store)
    photo = _media(tmp_path)

    assert detector.check(photo) is ChangeStatus.NEW
    assert detector.is_stale(photo) is True

    _cache(store, detector, photo)

    assert detector.check(photo) is ChangeStatus.FRESH
    assert detector.is_stale(photo) is False


def test_mtime_change_is_modified(store, tmp_path):
    detector = ChangeDetector(store)
    photo = _media(tmp_path)
    _cache(store, detector, photo)

    os.utime(photo, (1_700_000_100, 1_700_000_100))

    assert detector.check(photo) is ChangeStatus.MODIFIED


def test_deleted_file(store, tmp_path):
    detector = ChangeDetector(store)
    photo = _media(tmp_path)
    _cache(store, detector, photo)

    photo.unlink()

    assert detector.check(photo) is ChangeStatus.DELETED


def test_hash_policy_detects_content_change_with_same_mtime(store, tmp_path):
    detector = ChangeDetector(store, StalenessPolicy(check_hash=True))
    photo = _media(tmp_path)
    _cache(store, detector, photo)
    assert store.get_entry(photo).hash == file_digest(photo)

    photo.write_bytes(b"other pixels")
    os.utime(photo, (1_700_000_000, 1_700_000_000))

    assert detector.check(photo) is ChangeStatus.MODIFIED


def test_hash_policy_missing_stored_hash_counts_as_change(store, tmp_path):
    photo = _media(tmp_path)
    _cache(store, ChangeDetector(store), photo)

    detector = ChangeDetector(store, StalenessPolicy(check_hash=True))

    assert detector.check(photo) is ChangeStatus.MODIFIED


def test_hash_policy_timestamp_toggle(store, tmp_path):
    photo = _media(tmp_path)
    _cache(store, ChangeDetector(store, StalenessPolicy(check_hash=True)), photo)
    os.utime(photo, (1_700_000_500, 1_700_000_500))

    strict = ChangeDetector(store, StalenessPolicy(check_hash=True, timestamp_counts=True))
    lenient = ChangeDetector(store, StalenessPolicy(check_hash=True, timestamp_counts=False))

    assert strict.check(photo) is ChangeStatus.MODIFIED
    assert lenient.check(photo) is ChangeStatus.FRESH


def test_live_file_info_includes_hash_only_when_enabled(store, tmp_path):
    video = _media(tmp_path, "clip.mp4", b"frames")

    plain = ChangeDetector(store).live_file_info(video)
    hashed = ChangeDetector(store, StalenessPolicy(check_hash=True)).live_file_info(video)

    assert plain.hash is None
    assert plain.size == 6
    assert plain.modified_time == 1_700_000_000
    assert plain.file_type.value == "video"
    assert hashed.hash == file_digest(video)


def test_inspection_digest_is_reused_by_live_file_info(store, tmp_path, monkeypatch):
    photo = _media(tmp_path)
    detector = ChangeDetector(store, StalenessPolicy(check_hash=True))
    _cache(store, detector, photo)
    photo.write_bytes(b"retouched")
    digests = []
    real_digest = change_service.file_digest

    def counting_digest(path):
        digests.append(path)
        return real_digest(path)

    monkeypatch.setattr(change_service, "file_digest", counting_digest)

    inspection = detector.inspect(photo)
    info = detector.live_file_info(photo, inspection)

    assert inspection.status is ChangeStatus.MODIFIED
    assert info.hash == inspection.digest == real_digest(photo)
    assert info.size == len(b"retouched")
    assert len(digests) == 1


def test_inspection_of_uncached_file_carries_no_state(store, tmp_path):
    photo = _media(tmp_path)
    inspection = ChangeDetector(store, StalenessPolicy(check_hash=True)).inspect(photo)

    assert inspection.status is ChangeStatus.NEW
    assert inspection.stat is None
    assert inspection.digest is None

def test_policy_from_config():
    policy = StalenessPolicy.from_config(Config(check_hash=True, timestamp_counts=False))
    assert policy == StalenessPolicy(check_hash=True, timestamp_counts=False)
