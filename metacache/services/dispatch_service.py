"""Concurrent batch extraction of stale or missing metadata."""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Sequence

import psutil

from ..cache import CacheStore
from ..config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_WORKERS,
    MAX_BATCH_SIZE,
    MAX_WORKERS,
    MIN_BATCH_SIZE,
    MIN_WORKERS,
    Config,
)
from ..errors import InvalidArgumentError, MetacacheError, StoreUnavailableError
from ..text import Messages
from ..utils import normalize_path
from ..extractors import Extractor
from .change_service import ChangeDetector, ChangeStatus, Inspection, StalenessPolicy

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


class OutcomeKind(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


class DispatchStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


@dataclass(slots=True)
class Outcome:
    kind: OutcomeKind
    metadata: str | None = None
    error: BaseException | None = None


@dataclass(slots=True)
class DispatchProgress:
    completed: int
    total: int
    elapsed: float
    eta_seconds: float | None


@dataclass(slots=True)
class DispatchReport:
    total: int
    outcomes: dict[str, Outcome] = field(default_factory=dict)
    status: DispatchStatus = DispatchStatus.COMPLETED
    elapsed: float = 0.0
    error: BaseException | None = None

    def _count(self, kind: OutcomeKind) -> int:
        return sum(1 for outcome in self.outcomes.values() if outcome.kind is kind)

    @property
    def processed(self) -> int:
        return self._count(OutcomeKind.PROCESSED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeKind.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeKind.FAILED)

    @property
    def exit_code(self) -> int:
        if self.status is DispatchStatus.CANCELLED:
            return EXIT_CANCELLED
        if self.status is DispatchStatus.ABORTED:
            return EXIT_FAILURE
        return EXIT_OK


ProgressCallback = Callable[[DispatchProgress], None]


class _Abort(Exception):
    def __init__(self, error: BaseException) -> None:
        super().__init__(str(error))
        self.error = error


def current_memory_bytes() -> int:
    return psutil.Process().memory_info().rss


def dedupe_paths(paths: Iterable[Path | str]) -> list[str]:
    """Normalize *paths* and drop repeats, keeping first-seen order."""
    return list(dict.fromkeys(normalize_path(path) for path in paths))


def common_root(paths: Sequence[str]) -> Path | None:
    """Return the deepest directory holding every path, or ``None`` when there is none."""
    if not paths:
        return None
    try:
        return Path(os.path.commonpath([str(Path(path).parent) for path in paths]))
    except ValueError:
        return None


class BatchDispatcher:
    """Extract metadata for changed or uncached files with a bounded thread pool."""

    def __init__(
        self,
        store: CacheStore,
        extractor: Extractor,
        *,
        policy: StalenessPolicy | None = None,
        memory_limit_bytes: int | None = None,
        memory_probe: Callable[[], int] = current_memory_bytes,
    ) -> None:
        self.store = store
        self.extractor = extractor
        self.detector = ChangeDetector(store, policy)
        self.memory_limit_bytes = memory_limit_bytes
        self._memory_probe = memory_probe

    @classmethod
    def from_config(cls, store: CacheStore, extractor: Extractor, config: Config) -> "BatchDispatcher":
        return cls(
            store,
            extractor,
            policy=StalenessPolicy.from_config(config),
            memory_limit_bytes=config.memory_limit_bytes,
        )

    def dispatch(
        self,
        paths: Iterable[Path | str],
        *,
        workers: int = DEFAULT_WORKERS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> DispatchReport:
        """Run extraction for every path that is not fresh and report one outcome per path.

        Per-file failures are recorded in the report. A store-level error or the
        disappearance of the inputs' common root aborts the run; setting
        *cancel_event* stops scheduling and lets in-flight work finish.
        """

        _check_range(workers, "workers", MIN_WORKERS, MAX_WORKERS)
        _check_range(batch_size, "batch_size", MIN_BATCH_SIZE, MAX_BATCH_SIZE)
        unique = dedupe_paths(paths)
        run = _DispatchRun(
            total=len(unique),
            progress=progress,
            cancel_event=cancel_event or threading.Event(),
            root=_existing_root(unique),
        )
        logger.info("Dispatching %d files with %d workers", len(unique), workers)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            try:
                for offset in range(0, len(unique), batch_size):
                    if run.should_stop():
                        break
                    self._run_batch(unique[offset : offset + batch_size], executor, workers, run)
            except _Abort as abort:
                run.abort(abort.error)
            finally:
                run.drain()

        report = run.report()
        logger.info(
            "Dispatch %s: %d processed, %d skipped, %d failed in %.2fs",
            report.status.value,
            report.processed,
            report.skipped,
            report.failed,
            report.elapsed,
        )
        return report

    def _run_batch(
        self,
        batch: Sequence[str],
        executor: ThreadPoolExecutor,
        workers: int,
        run: "_DispatchRun",
    ) -> None:
        pending: list[tuple[str, Inspection]] = []
        for path in batch:
            if run.should_stop():
                return
            run.check_root()
            try:
                inspection = self.detector.inspect(path)
            except MetacacheError as exc:
                raise _Abort(exc) from exc
            except OSError as exc:
                run.record(path, Outcome(OutcomeKind.FAILED, error=exc))
                continue
            status = inspection.status
            if status is ChangeStatus.FRESH:
                cached = self._cached(path)
                if cached is not None:
                    run.record(path, Outcome(OutcomeKind.SKIPPED, metadata=cached))
                    continue
            else:
                self.store.record_miss()
            if status is ChangeStatus.DELETED:
                self._forget(path)
                run.record(
                    path,
                    Outcome(
                        OutcomeKind.FAILED,
                        error=FileNotFoundError(Messages.ERROR_FILE_GONE.format(path=path)),
                    ),
                )
                continue
            logger.debug("%s is %s; scheduling extraction", path, status.value)
            pending.append((path, inspection))

        for path, inspection in pending:
            while run.in_flight and len(run.in_flight) >= self._slots(workers):
                run.wait_one()
            if run.should_stop():
                return
            run.check_root()
            future = executor.submit(self._extract_one, path, inspection)
            run.in_flight[future] = path

    def _cached(self, path: str) -> str | None:
        try:
            return self.store.get(path)
        except MetacacheError as exc:
            raise _Abort(exc) from exc

    def _forget(self, path: str) -> None:
        try:
            self.store.invalidate(path)
        except MetacacheError as exc:
            raise _Abort(exc) from exc

    def _slots(self, workers: int) -> int:
        return 1 if self._over_memory_limit() else workers

    def _over_memory_limit(self) -> bool:
        if not self.memory_limit_bytes:
            return False
        usage = self._memory_probe()
        if usage > self.memory_limit_bytes:
            logger.debug(
                "Memory usage %d exceeds limit %d; throttling", usage, self.memory_limit_bytes
            )
            return True
        return False

    def _extract_one(self, path: str, inspection: Inspection) -> Outcome:
        try:
            info = self.detector.live_file_info(path, inspection)
        except OSError as exc:
            return Outcome(OutcomeKind.FAILED, error=exc)
        try:
            metadata = self.extractor(Path(path))
        except Exception as exc:
            logger.debug("Extraction failed for %s: %s", path, exc)
            return Outcome(OutcomeKind.FAILED, error=exc)
        self.store.put(
            path,
            metadata,
            size=info.size,
            hash=info.hash,
            modified_time=info.modified_time,
            file_type=info.file_type,
        )
        return Outcome(OutcomeKind.PROCESSED, metadata=metadata)


class _DispatchRun:
    """Mutable bookkeeping for one dispatch call; used only from the calling thread."""

    def __init__(
        self,
        *,
        total: int,
        progress: ProgressCallback | None,
        cancel_event: threading.Event,
        root: Path | None,
    ) -> None:
        self.total = total
        self.progress = progress
        self.cancel_event = cancel_event
        self.root = root
        self.start = time.perf_counter()
        self.outcomes: dict[str, Outcome] = {}
        self.in_flight: dict[Future[Outcome], str] = {}
        self.error: BaseException | None = None

    def should_stop(self) -> bool:
        return self.error is not None or self.cancel_event.is_set()

    def check_root(self) -> None:
        if self.root is not None and not self.root.is_dir():
            raise _Abort(
                StoreUnavailableError(Messages.ERROR_ROOT_GONE.format(path=self.root))
            )

    def abort(self, error: BaseException) -> None:
        if self.error is None:
            logger.error("Dispatch aborted: %s", error)
            self.error = error

    def record(self, path: str, outcome: Outcome) -> None:
        if path in self.outcomes:
            return
        self.outcomes[path] = outcome
        if self.progress is None:
            return
        completed = len(self.outcomes)
        elapsed = time.perf_counter() - self.start
        eta = elapsed / completed * (self.total - completed) if completed else None
        self.progress(
            DispatchProgress(
                completed=completed,
                total=self.total,
                elapsed=elapsed,
                eta_seconds=eta,
            )
        )

    def wait_one(self) -> None:
        done, _ = wait(list(self.in_flight), return_when=FIRST_COMPLETED)
        self._collect(done)

    def drain(self) -> None:
        while self.in_flight:
            try:
                self.wait_one()
            except _Abort as abort:
                self.abort(abort.error)

    def _collect(self, done: Iterable[Future[Outcome]]) -> None:
        abort: _Abort | None = None
        for future in done:
            path = self.in_flight.pop(future)
            try:
                outcome = future.result()
            except MetacacheError as exc:
                outcome = Outcome(OutcomeKind.FAILED, error=exc)
                abort = abort or _Abort(exc)
            self.record(path, outcome)
        if abort is not None:
            raise abort

    def report(self) -> DispatchReport:
        if self.error is not None:
            status = DispatchStatus.ABORTED
        elif self.cancel_event.is_set() and len(self.outcomes) < self.total:
            status = DispatchStatus.CANCELLED
        else:
            status = DispatchStatus.COMPLETED
        return DispatchReport(
            total=self.total,
            outcomes=self.outcomes,
            status=status,
            elapsed=time.perf_counter() - self.start,
            error=self.error,
        )


def _existing_root(paths: Sequence[str]) -> Path | None:
    root = common_root(paths)
    if root is not None and not root.is_dir():
        logger.debug("Common root %s is missing at start; files will fail individually", root)
        return None
    return root


def _check_range(value: int, field: str, low: int, high: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise InvalidArgumentError(
            Messages.ERROR_VALUE_RANGE.format(field=field, low=low, high=high)
        )
