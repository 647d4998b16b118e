"""Usage statistics, health checks, benchmarks and efficiency reports."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Sequence

from ..cache import (
    BYTES_WRITTEN_KEY,
    HITS_KEY,
    MISSES_KEY,
    CacheStore,
    format_timestamp,
    utc_now,
)
from ..errors import CorruptedStoreError, ExtractionFailedError, MetacacheError, SchemaInvalidError
from ..text import Messages
from ..extractors import Extractor
from .cache_service import load_or_extract
from .change_service import ChangeDetector
from .eviction_service import EvictionManager
from .version_service import VersionManager

logger = logging.getLogger(__name__)

PRUNE_AGE_DAYS = 30
SIZE_WARNING_RATIO = 0.9
LOW_HIT_RATE = 0.5
MIN_REQUESTS_FOR_HIT_RATE = 20
COMPRESSION_THRESHOLD_BYTES = 50 * 1024 * 1024


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    CORRUPTED = "corrupted"
    MISSING = "missing"


@dataclass(slots=True)
class UsageStats:
    hits: int
    misses: int
    hit_rate: float
    entries: int
    total_bytes: int
    oldest: str | None
    newest: str | None
    file_size: int
    by_type: dict[str, int] = field(default_factory=dict)

    @property
    def requests(self) -> int:
        return self.hits + self.misses


@dataclass(slots=True)
class HealthReport:
    status: HealthStatus
    detail: str
    checks: dict[str, bool] = field(default_factory=dict)

    @property
    def healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY


@dataclass(slots=True)
class BenchmarkResult:
    files: int
    iterations: int
    cached_seconds: float
    uncached_seconds: float
    failures: int = 0

    @property
    def speedup(self) -> float:
        if self.cached_seconds <= 0:
            return 0.0
        return self.uncached_seconds / self.cached_seconds

    @property
    def improvement_percent(self) -> float:
        if self.uncached_seconds <= 0:
            return 0.0
        return (self.uncached_seconds - self.cached_seconds) / self.uncached_seconds * 100


@dataclass(slots=True)
class EfficiencyReport:
    hit_rate: float
    requests: int
    entries: int
    total_bytes: int
    bytes_last_day: int
    bytes_last_week: int
    daily_growth: float
    size_limit: int | None
    size_usage: float | None
    stale_entries: int
    compression: bool
    recommendations: list[str] = field(default_factory=list)


def hit_rate(hits: int, misses: int) -> float:
    total = hits + misses
    return hits / total if total else 0.0


class StatsCollector:
    """Count cache hits, misses and writes, and report on store health."""

    def __init__(self, store: CacheStore, *, attach: bool = True) -> None:
        self.store = store
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.writes = 0
        self.bytes_written = 0
        self._pending: dict[str, int] = {}
        if attach:
            store.add_observer(self)

    def record_hit(self) -> None:
        with self._lock:
            self.hits += 1
            self._pending[HITS_KEY] = self._pending.get(HITS_KEY, 0) + 1

    def record_miss(self) -> None:
        with self._lock:
            self.misses += 1
            self._pending[MISSES_KEY] = self._pending.get(MISSES_KEY, 0) + 1

    def record_write(self, nbytes: int) -> None:
        with self._lock:
            self.writes += 1
            self.bytes_written += nbytes
            self._pending[BYTES_WRITTEN_KEY] = self._pending.get(BYTES_WRITTEN_KEY, 0) + nbytes

    def flush(self) -> bool:
        """Add pending counters to the persistent statistics; failures are logged and retried later."""

        with self._lock:
            pending, self._pending = self._pending, {}
        if not pending:
            return True
        try:
            self.store.increment_stats(pending)
        except MetacacheError as exc:
            logger.warning("Could not persist cache statistics: %s", exc)
            with self._lock:
                for key, value in pending.items():
                    self._pending[key] = self._pending.get(key, 0) + value
            return False
        return True

    def _persisted_counter(self, key: str) -> int:
        raw = self.store.get_stat(key)
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            return 0

    def snapshot(self) -> UsageStats:
        stats = self.store.stats()
        with self._lock:
            pending = dict(self._pending)
        hits = self._persisted_counter(HITS_KEY) + pending.get(HITS_KEY, 0)
        misses = self._persisted_counter(MISSES_KEY) + pending.get(MISSES_KEY, 0)
        return UsageStats(
            hits=hits,
            misses=misses,
            hit_rate=hit_rate(hits, misses),
            entries=stats.count,
            total_bytes=stats.total_bytes,
            oldest=stats.oldest,
            newest=stats.newest,
            file_size=self.store.file_size_bytes(),
            by_type=stats.by_type,
        )

    def health_check(self) -> HealthReport:
        checks: dict[str, bool] = {"exists": self.store.exists()}
        if not checks["exists"]:
            return HealthReport(
                status=HealthStatus.MISSING,
                detail=Messages.ERROR_STORE_MISSING.format(path=self.store.db_path),
                checks=checks,
            )
        try:
            rows = self.store.integrity_check()
        except CorruptedStoreError as exc:
            checks["integrity"] = False
            return HealthReport(status=HealthStatus.CORRUPTED, detail=str(exc), checks=checks)
        checks["integrity"] = rows == ["ok"]
        if not checks["integrity"]:
            return HealthReport(
                status=HealthStatus.CORRUPTED,
                detail="; ".join(rows[:5]),
                checks=checks,
            )
        versions = VersionManager(self.store)
        try:
            version = versions.validate_schema()
        except SchemaInvalidError as exc:
            checks["schema"] = False
            return HealthReport(status=HealthStatus.CORRUPTED, detail=str(exc), checks=checks)
        checks["schema"] = True
        compatibility = versions.compatibility_check()
        checks["current_version"] = compatibility.compatible
        detail = Messages.HEALTH_OK.format(version=version)
        if not compatibility.compatible:
            detail = compatibility.reason
        return HealthReport(status=HealthStatus.HEALTHY, detail=detail, checks=checks)

    def benchmark(
        self,
        paths: Sequence[Path | str],
        extractor: Extractor,
        *,
        iterations: int = 1,
        detector: ChangeDetector | None = None,
    ) -> BenchmarkResult:
        """Time cached reads against calling *extractor* directly for every path."""

        iterations = max(int(iterations), 1)
        files = [Path(path).expanduser().absolute() for path in paths]
        detector = detector or ChangeDetector(self.store)
        failed: set[Path] = set()
        for path in files:
            try:
                load_or_extract(self.store, path, extractor, detector)
            except (ExtractionFailedError, OSError) as exc:
                logger.debug("Benchmark warm-up failed for %s: %s", path, exc)
                failed.add(path)
        usable = [path for path in files if path not in failed]

        start = time.perf_counter()
        for _ in range(iterations):
            for path in usable:
                load_or_extract(self.store, path, extractor, detector)
        cached_seconds = time.perf_counter() - start

        start = time.perf_counter()
        for _ in range(iterations):
            for path in usable:
                extractor(path)
        uncached_seconds = time.perf_counter() - start

        return BenchmarkResult(
            files=len(usable),
            iterations=iterations,
            cached_seconds=cached_seconds,
            uncached_seconds=uncached_seconds,
            failures=len(failed),
        )

    def efficiency_report(self, *, now: datetime | None = None) -> EfficiencyReport:
        moment = now or utc_now()
        usage = self.snapshot()
        last_day = self._bytes_since(moment - timedelta(days=1))
        last_week = self._bytes_since(moment - timedelta(days=7))
        stale = self._entries_before(moment - timedelta(days=PRUNE_AGE_DAYS))
        size_limit = EvictionManager(self.store).size_limit()
        size_usage = usage.total_bytes / size_limit if size_limit else None
        compression = self.store.compression_enabled()

        recommendations: list[str] = []
        if stale:
            recommendations.append(Messages.RECOMMEND_PRUNE.format(count=stale, days=PRUNE_AGE_DAYS))
        if size_usage is not None and size_usage >= SIZE_WARNING_RATIO:
            recommendations.append(Messages.RECOMMEND_SIZE_CAP.format(percent=size_usage * 100))
        if usage.requests >= MIN_REQUESTS_FOR_HIT_RATE and usage.hit_rate < LOW_HIT_RATE:
            recommendations.append(Messages.RECOMMEND_WARM.format(rate=usage.hit_rate * 100))
        if usage.file_size > COMPRESSION_THRESHOLD_BYTES and not compression:
            recommendations.append(Messages.RECOMMEND_COMPRESSION)

        return EfficiencyReport(
            hit_rate=usage.hit_rate,
            requests=usage.requests,
            entries=usage.entries,
            total_bytes=usage.total_bytes,
            bytes_last_day=last_day,
            bytes_last_week=last_week,
            daily_growth=last_week / 7,
            size_limit=size_limit,
            size_usage=size_usage,
            stale_entries=stale,
            compression=compression,
            recommendations=recommendations,
        )

    def _bytes_since(self, cutoff: datetime) -> int:
        threshold = format_timestamp(cutoff)
        row = self.store.run(
            lambda conn: conn.execute(
                "SELECT COALESCE(SUM(payload_size), 0) AS total FROM metadata_cache WHERE created_at >= ?",
                (threshold,),
            ).fetchone(),
            write=False,
        )
        return int(row["total"])

    def _entries_before(self, cutoff: datetime) -> int:
        threshold = format_timestamp(cutoff)
        row = self.store.run(
            lambda conn: conn.execute(
                "SELECT COUNT(*) AS total FROM metadata_cache WHERE created_at < ?",
                (threshold,),
            ).fetchone(),
            write=False,
        )
        return int(row["total"])
