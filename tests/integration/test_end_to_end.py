import os
from datetime import timedelta

from metacache.cache import CacheStore
from metacache.errors import ExtractionFailedError
from metacache.services.cache_service import load_or_extract
from metacache.services.change_service import ChangeDetector, ChangeStatus, StalenessPolicy
from metacache.services.dispatch_service import BatchDispatcher, DispatchStatus
from metacache.services.eviction_service import EvictionManager, SmartPolicy
from metacache.services.stats_service import StatsCollector
from metacache.utils import collect_media_files


class CountingExtractor:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    def __call__(self, path):
        self.calls.append(path.name)
        if path.name in self.failing:
            raise ExtractionFailedError(f"unreadable: {path.name}")
        return f'{{"File": "{path.name}", "Size": {path.stat().st_size}}}'


def test_library_scan_revalidate_and_prune(tmp_path):
    media = tmp_path / "library"
    (media / "2024").mkdir(parents=True)
    names = ["2024/a.jpg", "2024/b.jpg", "c.mp4", "d.png", "broken.jpg"]
    for name in names:
        (media / name).write_bytes(name.encode() * 10)

    store = CacheStore(tmp_path / "cache.db", retry_wait=0)
    store.init()
    collector = StatsCollector(store)
    extractor = CountingExtractor(failing={"broken.jpg"})
    policy = StalenessPolicy(check_hash=True)
    dispatcher = BatchDispatcher(store, extractor, policy=policy)

    files = collect_media_files(media)
    report = dispatcher.dispatch(files, workers=2, batch_size=2)

    assert len(files) == 5
    assert report.status is DispatchStatus.COMPLETED
    assert (report.processed, report.failed) == (4, 1)
    assert store.stats().count == 4

    # Touch one file's contents and drop another from disk.
    edited = media / "2024" / "a.jpg"
    stat = edited.stat()
    edited.write_bytes(b"edited contents")
    os.utime(edited, (stat.st_atime, stat.st_mtime))
    (media / "d.png").unlink()

    detector = ChangeDetector(store, policy)
    assert detector.check(edited) is ChangeStatus.MODIFIED
    assert detector.check(media / "d.png") is ChangeStatus.DELETED
    assert detector.check(media / "c.mp4") is ChangeStatus.FRESH

    extractor.calls.clear()
    metadata, from_cache = load_or_extract(store, edited, extractor, detector)
    assert from_cache is False
    assert '"Size": 15' in metadata
    assert extractor.calls == ["a.jpg"]

    cached, from_cache = load_or_extract(store, media / "c.mp4", extractor, detector)
    assert from_cache is True
    assert '"File": "c.mp4"' in cached

    result = EvictionManager(store).prune(SmartPolicy(max_age=timedelta(days=30)))
    assert result.removed == 1
    assert store.get_entry(media / "d.png") is None

    assert collector.flush() is True
    usage = StatsCollector(store, attach=False).snapshot()
    assert usage.entries == 3
    assert usage.hits >= 1
    assert StatsCollector(store, attach=False).health_check().healthy is True
