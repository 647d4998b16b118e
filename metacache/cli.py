"""Command line interface for Metacache."""

from __future__ import annotations

import logging
import signal
import sys
import threading
from contextlib import contextmanager
from dataclasses import fields, replace
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from . import __version__, config as config_module
from .cache import CURRENT_SCHEMA_VERSION, CacheStore
from .config import Config, load_config, resolve_db_path, save_config, update_config
from .errors import InvalidArgumentError, MetacacheError
from .extractors import MediaExtractor
from .output import format_status_icon
from .services.cache_service import backup_store, restore_store
from .services.change_service import ChangeDetector, ChangeStatus, StalenessPolicy
from .services.dispatch_service import BatchDispatcher, DispatchProgress, OutcomeKind
from .services.eviction_service import (
    AccessPolicy,
    AgePolicy,
    EvictionManager,
    PrunePolicy,
    SizePolicy,
    SmartPolicy,
)
from .services.stats_service import HealthStatus, StatsCollector
from .services.version_service import VersionManager
from .text import Messages, Styles
from .utils import FileType, collect_media_files, format_eta, format_size, parse_size

console = Console()
err_console = Console(stderr=True)

MAX_LISTED_FAILURES = 10

app = typer.Typer(
    help=Messages.APP_HELP,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
prune_app = typer.Typer(help=Messages.HELP_PRUNE, no_args_is_help=True)
app.add_typer(prune_app, name="prune")


PolicyBuilder = Callable[[Config], PrunePolicy]


class SizeOrderChoice(str, Enum):
    created = "created"
    accessed = "accessed"


def _styled(text: str, style: str) -> str:
    return f"[{style}]{escape(text)}[/{style}]"


def _fail(message: str) -> NoReturn:
    console.print(_styled(message, Styles.ERROR))
    raise typer.Exit(code=1)


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except MetacacheError as exc:
        _fail(str(exc))
    except OSError as exc:
        _fail(Messages.ERROR_OS.format(reason=exc))


def _configure_logging(verbose: bool) -> None:
    logger = logging.getLogger("metacache")
    logger.handlers.clear()
    level = logging.DEBUG if verbose else logging.WARNING
    handler = RichHandler(
        console=err_console,
        show_path=False,
        markup=False,
        rich_tracebacks=verbose,
        log_time_format="[%H:%M:%S]",
    )
    handler.setLevel(level)
    logger.addHandler(handler)
    logger.setLevel(level)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"Metacache v{__version__}")
        raise typer.Exit()


def _settings(ctx: typer.Context) -> Config:
    try:
        config = load_config()
    except InvalidArgumentError as exc:
        _fail(str(exc))
    db_override = (ctx.obj or {}).get("db")
    if db_override:
        config = replace(config, db_path=str(db_override))
    return config


def _open_store(config: Config) -> CacheStore:
    return CacheStore.from_config(config)


def _require_store(store: CacheStore) -> None:
    if not store.exists():
        _fail(Messages.ERROR_STORE_MISSING.format(path=store.db_path))


def _parse_size_option(value: str | None, field: str) -> int | None:
    if value is None:
        return None
    try:
        return parse_size(value)
    except ValueError as exc:
        raise InvalidArgumentError(
            Messages.ERROR_SIZE_INVALID.format(field=field, value=value)
        ) from exc


def _days(value: float | None) -> timedelta | None:
    return None if value is None else timedelta(days=value)


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def _key_value_table(title: str, rows: list[tuple[str, str]]) -> Table:
    table = Table(title=title, show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_FIELD, no_wrap=True)
    table.add_column(Messages.TABLE_HEADER_VALUE, overflow="fold")
    for key, value in rows:
        table.add_row(key, escape(value))
    return table


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help=Messages.HELP_VERSION,
    ),
    db: Path | None = typer.Option(None, "--db", help=Messages.HELP_DB),
    config_dir: Path | None = typer.Option(
        None, "--config-dir", envvar="METACACHE_CONFIG_DIR", help=Messages.HELP_CONFIG_DIR
    ),
    verbose: bool = typer.Option(False, "--verbose", help=Messages.HELP_VERBOSE),
) -> None:
    """Global Typer callback for shared options."""
    _configure_logging(verbose)
    with _handle_errors():
        ctx.with_resource(config_module.config_dir_context(config_dir))
    ctx.obj = {"db": db}


@app.command(help=Messages.HELP_INIT)
def init(ctx: typer.Context) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        path = store.init()
        limit = config.size_limit_bytes
        eviction = EvictionManager(store)
        if limit is not None and eviction.size_limit() is None:
            eviction.set_size_limit(limit)
    console.print(
        _styled(
            Messages.INFO_INIT_DONE.format(path=path, version=CURRENT_SCHEMA_VERSION),
            Styles.SUCCESS,
        )
    )


@app.command("store", help=Messages.HELP_STORE)
def store_command(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help=Messages.HELP_STORE_FILE),
    metadata: str | None = typer.Argument(None, help=Messages.HELP_STORE_METADATA),
    from_file: Path | None = typer.Option(None, "--from-file", help=Messages.HELP_STORE_FROM_FILE),
) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    file_path = file.expanduser().absolute()
    with _handle_errors():
        detector = ChangeDetector(store, StalenessPolicy.from_config(config))
        info = detector.live_file_info(file_path) if file_path.is_file() else None
        if metadata is None and from_file is not None:
            metadata = from_file.read_text(encoding="utf-8")
        if metadata is None:
            metadata = MediaExtractor()(file_path)
        if info is not None:
            store.put(
                file_path,
                metadata,
                size=info.size,
                hash=info.hash,
                modified_time=info.modified_time,
                file_type=info.file_type,
            )
        else:
            store.put(file_path, metadata)
    size = format_size(len(metadata.encode("utf-8", "surrogatepass")))
    console.print(
        _styled(
            Messages.INFO_STORED.format(path=file_path, size=size),
            Styles.SUCCESS,
        )
    )


@app.command(help=Messages.HELP_RETRIEVE)
def retrieve(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help=Messages.HELP_RETRIEVE_FILE),
    allow_stale: bool = typer.Option(False, "--allow-stale", help=Messages.HELP_ALLOW_STALE),
) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    file_path = file.expanduser().absolute()
    with _handle_errors():
        _require_store(store)
        stats = StatsCollector(store)
        if not allow_stale:
            status = ChangeDetector(store, StalenessPolicy.from_config(config)).check(file_path)
            if status is not ChangeStatus.FRESH:
                store.record_miss()
                stats.flush()
            if status is ChangeStatus.NEW:
                _fail(Messages.INFO_NOT_CACHED.format(path=file_path))
            if status is not ChangeStatus.FRESH:
                _fail(Messages.INFO_STALE.format(path=file_path, status=status.value))
        metadata = store.get(file_path)
        stats.flush()
    if metadata is None:
        _fail(Messages.INFO_NOT_CACHED.format(path=file_path))
    typer.echo(metadata, nl=not metadata.endswith("\n"))


@app.command(help=Messages.HELP_STATUS)
def status(ctx: typer.Context) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        _require_store(store)
        compatibility = VersionManager(store).compatibility_check()
        if not compatibility.compatible:
            _fail(compatibility.reason)
        stats = store.stats()
        limit = EvictionManager(store).size_limit()
        compression = store.compression_enabled()
        file_size = store.file_size_bytes()
    by_type = ", ".join(f"{name}: {count}" for name, count in sorted(stats.by_type.items())) or "-"
    rows = [
        (Messages.LABEL_PATH, str(store.db_path)),
        (Messages.LABEL_VERSION, compatibility.version or "-"),
        (Messages.LABEL_ENTRIES, str(stats.count)),
        (Messages.LABEL_PAYLOAD, format_size(stats.total_bytes)),
        (Messages.LABEL_FILE_SIZE, format_size(file_size)),
        (Messages.LABEL_SIZE_LIMIT, format_size(limit) if limit is not None else "none"),
        (Messages.LABEL_COMPRESSION, _yes_no(compression)),
        (Messages.LABEL_OLDEST, stats.oldest or "-"),
        (Messages.LABEL_NEWEST, stats.newest or "-"),
        (Messages.LABEL_BY_TYPE, by_type),
    ]
    console.print(_key_value_table(Messages.TITLE_STATUS, rows))


@app.command(help=Messages.HELP_STATS)
def stats(ctx: typer.Context) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        _require_store(store)
        usage = StatsCollector(store, attach=False).snapshot()
    rows = [
        (Messages.LABEL_HITS, str(usage.hits)),
        (Messages.LABEL_MISSES, str(usage.misses)),
        (Messages.LABEL_HIT_RATE, f"{usage.hit_rate * 100:.1f}%"),
        (Messages.LABEL_ENTRIES, str(usage.entries)),
        (Messages.LABEL_PAYLOAD, format_size(usage.total_bytes)),
        (Messages.LABEL_FILE_SIZE, format_size(usage.file_size)),
        (Messages.LABEL_OLDEST, usage.oldest or "-"),
        (Messages.LABEL_NEWEST, usage.newest or "-"),
    ]
    console.print(_key_value_table(Messages.TITLE_STATS, rows))


@app.command(help=Messages.HELP_CLEAR)
def clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help=Messages.HELP_CLEAR_YES),
) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        _require_store(store)
        if not yes and not typer.confirm(Messages.PROMPT_CLEAR.format(path=store.db_path)):
            console.print(_styled(Messages.INFO_CLEAR_CANCELLED, Styles.WARNING))
            raise typer.Exit(code=0)
        removed = store.clear()
    console.print(
        _styled(
            Messages.INFO_CLEARED.format(count=removed, plural="y" if removed == 1 else "ies"),
            Styles.SUCCESS,
        )
    )


def _run_prune(ctx: typer.Context, build: PolicyBuilder) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        _require_store(store)
        policy = build(config)
        result = EvictionManager(store).prune(policy)
    console.print(
        _styled(
            Messages.INFO_PRUNED.format(
                count=result.removed,
                freed=format_size(result.bytes_freed),
                remaining=format_size(result.bytes_after),
            ),
            Styles.SUCCESS,
        )
    )


@prune_app.command("age", help=Messages.HELP_PRUNE_AGE)
def prune_age(
    ctx: typer.Context,
    days: float = typer.Option(30.0, "--days", help=Messages.HELP_PRUNE_DAYS),
) -> None:
    _run_prune(ctx, lambda _config: AgePolicy(max_age=timedelta(days=days)))


@prune_app.command("size", help=Messages.HELP_PRUNE_SIZE)
def prune_size(
    ctx: typer.Context,
    max_size: str | None = typer.Option(None, "--max", help=Messages.HELP_PRUNE_MAX),
    order: SizeOrderChoice = typer.Option(
        SizeOrderChoice.created, "--order", help=Messages.HELP_PRUNE_ORDER
    ),
) -> None:
    def build(config: Config) -> PrunePolicy:
        limit = _parse_size_option(max_size, "max")
        if limit is None:
            limit = config.size_limit_bytes
        return SizePolicy(max_bytes=limit, order=order.value)

    _run_prune(ctx, build)


@prune_app.command("access", help=Messages.HELP_PRUNE_ACCESS)
def prune_access(
    ctx: typer.Context,
    days: float = typer.Option(7.0, "--days", help=Messages.HELP_PRUNE_IDLE_DAYS),
) -> None:
    _run_prune(ctx, lambda _config: AccessPolicy(max_idle=timedelta(days=days)))


@prune_app.command("smart", help=Messages.HELP_PRUNE_SMART)
def prune_smart(
    ctx: typer.Context,
    max_age_days: float | None = typer.Option(30.0, "--max-age-days", help=Messages.HELP_PRUNE_DAYS),
    max_idle_days: float | None = typer.Option(None, "--max-idle-days", help=Messages.HELP_PRUNE_IDLE_DAYS),
    max_size: str | None = typer.Option(None, "--max", help=Messages.HELP_PRUNE_MAX),
    keep_missing: bool = typer.Option(False, "--keep-missing", help=Messages.HELP_PRUNE_KEEP_MISSING),
) -> None:
    def build(config: Config) -> PrunePolicy:
        limit = _parse_size_option(max_size, "max")
        return SmartPolicy(
            max_age=_days(max_age_days),
            max_idle=_days(max_idle_days),
            max_bytes=limit if limit is not None else config.size_limit_bytes,
            remove_missing=not keep_missing,
        )

    _run_prune(ctx, build)


@app.command(help=Messages.HELP_DEFRAG)
def defrag(ctx: typer.Context) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        _require_store(store)
        result = EvictionManager(store).defragment()
    console.print(
        _styled(
            Messages.INFO_DEFRAG_DONE.format(
                before=format_size(result.size_before),
                after=format_size(result.size_after),
                seconds=result.elapsed_seconds,
            ),
            Styles.SUCCESS,
        )
    )


@app.command(help=Messages.HELP_REBUILD)
def rebuild(ctx: typer.Context) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        _require_store(store)
        result = EvictionManager(store).rebuild()
    console.print(
        _styled(
            Messages.INFO_REBUILD_DONE.format(
                count=result.entries,
                before=format_size(result.size_before),
                after=format_size(result.size_after),
            ),
            Styles.SUCCESS,
        )
    )


@app.command("health-check", help=Messages.HELP_HEALTH)
def health_check(ctx: typer.Context) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        report = StatsCollector(store, attach=False).health_check()
    table = Table(title=Messages.TITLE_HEALTH, show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_CHECK, no_wrap=True)
    table.add_column(Messages.TABLE_HEADER_RESULT, justify="center")
    for name, passed in report.checks.items():
        table.add_row(name, format_status_icon(passed, console))
    console.print(table)
    style = Styles.SUCCESS if report.healthy else Styles.ERROR
    console.print(
        _styled(
            Messages.INFO_HEALTH_STATUS.format(status=report.status.value, detail=report.detail),
            style,
        )
    )
    if report.status is not HealthStatus.HEALTHY:
        raise typer.Exit(code=1)


@app.command(help=Messages.HELP_MIGRATE)
def migrate(
    ctx: typer.Context,
    target: str = typer.Option(CURRENT_SCHEMA_VERSION, "--target", help=Messages.HELP_MIGRATE_TARGET),
    backup: bool | None = typer.Option(None, "--backup/--no-backup", help=Messages.HELP_MIGRATE_BACKUP),
) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    use_backup = config.backup_on_migrate if backup is None else backup
    with _handle_errors():
        result = VersionManager(store).migrate(backup=use_backup, target=target)
    if not result.steps and result.from_version is not None:
        console.print(_styled(Messages.INFO_MIGRATE_CURRENT.format(version=target), Styles.INFO))
        return
    for step in result.steps:
        console.print(
            _styled(
                Messages.INFO_MIGRATE_STEP.format(
                    source=step.from_version,
                    target=step.to_version,
                    seconds=step.elapsed_seconds,
                ),
                Styles.INFO,
            )
        )
        if step.backup_path is not None:
            console.print(
                _styled(Messages.INFO_BACKUP_WRITTEN.format(path=step.backup_path), Styles.INFO)
            )
    console.print(
        _styled(
            Messages.INFO_MIGRATE_DONE.format(
                source=result.from_version or "uninitialized",
                target=result.to_version,
            ),
            Styles.SUCCESS,
        )
    )


@app.command(help=Messages.HELP_ROLLBACK)
def rollback(
    ctx: typer.Context,
    version: str = typer.Argument(..., help=Messages.HELP_ROLLBACK_VERSION),
) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        result = VersionManager(store).rollback(version)
    console.print(
        _styled(
            Messages.INFO_ROLLBACK_DONE.format(
                source=result.from_version or "-",
                target=result.to_version,
                count=result.entries_after,
            ),
            Styles.SUCCESS,
        )
    )


@app.command(help=Messages.HELP_BACKUP)
def backup(
    ctx: typer.Context,
    destination: Path | None = typer.Argument(None, help=Messages.HELP_BACKUP_DEST),
) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        _require_store(store)
        path = backup_store(store, destination)
    console.print(_styled(Messages.INFO_BACKUP_WRITTEN.format(path=path), Styles.SUCCESS))


@app.command(help=Messages.HELP_RESTORE)
def restore(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help=Messages.HELP_RESTORE_SOURCE),
) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        version = restore_store(store, source)
    console.print(
        _styled(Messages.INFO_RESTORED.format(path=source, version=version), Styles.SUCCESS)
    )


@app.command(help=Messages.HELP_BENCHMARK)
def benchmark(
    ctx: typer.Context,
    directory: Path = typer.Argument(..., help=Messages.HELP_DIRECTORY),
    iterations: int = typer.Option(1, "--iterations", min=1, help=Messages.HELP_ITERATIONS),
    limit: int = typer.Option(20, "--limit", min=1, help=Messages.HELP_BENCHMARK_LIMIT),
) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        files = collect_media_files(directory)[:limit]
        if not files:
            console.print(_styled(Messages.INFO_NO_FILES, Styles.WARNING))
            raise typer.Exit(code=0)
        store.init()
        collector = StatsCollector(store)
        result = collector.benchmark(
            files,
            MediaExtractor(),
            iterations=iterations,
            detector=ChangeDetector(store, StalenessPolicy.from_config(config)),
        )
        collector.flush()
    rows = [
        (Messages.LABEL_FILES, str(result.files)),
        (Messages.LABEL_ITERATIONS, str(result.iterations)),
        (Messages.LABEL_CACHED_TIME, f"{result.cached_seconds:.3f}s"),
        (Messages.LABEL_UNCACHED_TIME, f"{result.uncached_seconds:.3f}s"),
        (Messages.LABEL_SPEEDUP, f"{result.speedup:.1f}x"),
        (Messages.LABEL_IMPROVEMENT, f"{result.improvement_percent:.1f}%"),
        (Messages.LABEL_FAILED, str(result.failures)),
    ]
    console.print(_key_value_table(Messages.TITLE_BENCHMARK, rows))


@app.command(help=Messages.HELP_REPORT)
def report(ctx: typer.Context) -> None:
    config = _settings(ctx)
    store = _open_store(config)
    with _handle_errors():
        _require_store(store)
        result = StatsCollector(store, attach=False).efficiency_report()
    usage = f"{result.size_usage * 100:.1f}%" if result.size_usage is not None else "-"
    rows = [
        (Messages.LABEL_HIT_RATE, f"{result.hit_rate * 100:.1f}%"),
        (Messages.LABEL_REQUESTS, str(result.requests)),
        (Messages.LABEL_ENTRIES, str(result.entries)),
        (Messages.LABEL_PAYLOAD, format_size(result.total_bytes)),
        (Messages.LABEL_LAST_DAY, format_size(result.bytes_last_day)),
        (Messages.LABEL_LAST_WEEK, format_size(result.bytes_last_week)),
        (Messages.LABEL_DAILY_GROWTH, format_size(int(result.daily_growth))),
        (Messages.LABEL_SIZE_USAGE, usage),
        (Messages.LABEL_COMPRESSION, _yes_no(result.compression)),
    ]
    console.print(_key_value_table(Messages.TITLE_REPORT, rows))
    if not result.recommendations:
        console.print(_styled(Messages.INFO_NO_RECOMMENDATIONS, Styles.SUCCESS))
        return
    console.print(_styled(Messages.INFO_RECOMMENDATIONS, Styles.TITLE))
    for item in result.recommendations:
        console.print(_styled(f"- {item}", Styles.WARNING))


@app.command(help=Messages.HELP_PROCESS)
def process(
    ctx: typer.Context,
    directory: Path = typer.Argument(..., help=Messages.HELP_DIRECTORY),
    workers: int | None = typer.Option(None, "--workers", "-w", help=Messages.HELP_WORKERS),
    batch_size: int | None = typer.Option(None, "--batch-size", "-b", help=Messages.HELP_BATCH_SIZE),
    recursive: bool = typer.Option(True, "--recursive/--no-recursive", help=Messages.HELP_RECURSIVE),
    include_hidden: bool = typer.Option(False, "--include-hidden", help=Messages.HELP_INCLUDE_HIDDEN),
    file_types: list[FileType] | None = typer.Option(None, "--type", help=Messages.HELP_FILE_TYPE),
    check_hash: bool | None = typer.Option(None, "--check-hash/--no-check-hash", help=Messages.HELP_CHECK_HASH),
) -> None:
    config = _settings(ctx)
    if check_hash is not None:
        config = replace(config, check_hash=check_hash)
    store = _open_store(config)
    with _handle_errors():
        files = collect_media_files(
            directory,
            include_hidden=include_hidden,
            recursive=recursive,
            file_types=file_types,
        )
        if not files:
            console.print(_styled(Messages.INFO_NO_FILES, Styles.WARNING))
            raise typer.Exit(code=0)
        store.init()
        collector = StatsCollector(store)
        dispatcher = BatchDispatcher.from_config(store, MediaExtractor(), config)
        cancel_event = threading.Event()
        console.print(
            _styled(Messages.INFO_PROCESS_RUNNING.format(count=len(files), path=directory), Styles.INFO)
        )
        previous_handler = signal.signal(signal.SIGINT, lambda *_args: cancel_event.set())
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("{task.description}"),
                BarColumn(),
                TextColumn("{task.completed}/{task.total}"),
                TextColumn("{task.fields[eta]}"),
                TimeElapsedColumn(),
                console=console,
                transient=True,
            ) as progress_bar:
                task = progress_bar.add_task(Messages.PROGRESS_LABEL, total=len(files), eta="")

                def _on_progress(update: DispatchProgress) -> None:
                    progress_bar.update(
                        task,
                        completed=update.completed,
                        eta=Messages.PROGRESS_ETA.format(eta=format_eta(update.eta_seconds)),
                    )

                result = dispatcher.dispatch(
                    files,
                    workers=workers if workers is not None else config.workers,
                    batch_size=batch_size if batch_size is not None else config.batch_size,
                    progress=_on_progress,
                    cancel_event=cancel_event,
                )
        finally:
            signal.signal(signal.SIGINT, previous_handler)
        collector.flush()

    rows = [
        (Messages.LABEL_FILES, str(result.total)),
        (Messages.LABEL_PROCESSED, str(result.processed)),
        (Messages.LABEL_SKIPPED, str(result.skipped)),
        (Messages.LABEL_FAILED, str(result.failed)),
        (Messages.LABEL_STATUS, result.status.value),
        (Messages.LABEL_ELAPSED, f"{result.elapsed:.2f}s"),
    ]
    console.print(_key_value_table(Messages.TITLE_PROCESS, rows))
    failures = [
        (path, outcome)
        for path, outcome in result.outcomes.items()
        if outcome.kind is OutcomeKind.FAILED
    ]
    for path, outcome in failures[:MAX_LISTED_FAILURES]:
        console.print(
            _styled(Messages.WARNING_FILE_FAILED.format(path=path, reason=outcome.error), Styles.WARNING)
        )
    if len(failures) > MAX_LISTED_FAILURES:
        console.print(
            _styled(
                Messages.WARNING_MORE_FAILURES.format(count=len(failures) - MAX_LISTED_FAILURES),
                Styles.WARNING,
            )
        )
    if result.error is not None:
        console.print(_styled(Messages.ERROR_DISPATCH_ABORTED.format(reason=result.error), Styles.ERROR))
    if result.exit_code:
        raise typer.Exit(code=result.exit_code)


@app.command("config", help=Messages.HELP_CONFIG)
def config_command(
    ctx: typer.Context,
    show: bool = typer.Option(False, "--show", help=Messages.HELP_CONFIG_SHOW),
    set_values: list[str] | None = typer.Option(None, "--set", help=Messages.HELP_CONFIG_SET),
    set_json: str | None = typer.Option(None, "--set-json", help=Messages.HELP_CONFIG_SET_JSON),
    reset: bool = typer.Option(False, "--reset", help=Messages.HELP_CONFIG_RESET),
    compression: bool | None = typer.Option(
        None, "--compression/--no-compression", help=Messages.HELP_CONFIG_COMPRESSION
    ),
) -> None:
    changed = False
    with _handle_errors():
        if reset:
            save_config(Config())
            console.print(_styled(Messages.INFO_CONFIG_RESET, Styles.SUCCESS))
            changed = True
        if set_json is not None:
            update_config(set_json)
            changed = True
        if set_values:
            update_config(_parse_assignments(set_values))
            changed = True
        if compression is not None:
            store = _open_store(_settings(ctx))
            _require_store(store)
            store.set_compression(compression)
            console.print(
                _styled(Messages.INFO_COMPRESSION_SET.format(value=_yes_no(compression)), Styles.SUCCESS)
            )
            changed = True
        if changed and not show:
            console.print(_styled(Messages.INFO_CONFIG_SAVED.format(path=config_module.config_file_path()), Styles.SUCCESS))
            return
        config = _settings(ctx)
    rows = [
        ("db_path", str(resolve_db_path(config))),
        ("workers", str(config.workers)),
        ("batch_size", str(config.batch_size)),
        ("memory_limit", config.memory_limit or "none"),
        ("size_limit", config.size_limit or "none"),
        ("check_hash", _yes_no(config.check_hash)),
        ("timestamp_counts", _yes_no(config.timestamp_counts)),
        ("lock_retries", str(config.lock_retries)),
        ("busy_timeout_ms", str(config.busy_timeout_ms)),
        ("backup_on_migrate", _yes_no(config.backup_on_migrate)),
    ]
    console.print(_key_value_table(Messages.TITLE_CONFIG, rows))


def _parse_assignments(values: list[str]) -> dict[str, str]:
    known = {field.name for field in fields(Config)}
    payload: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise InvalidArgumentError(Messages.ERROR_CONFIG_ASSIGNMENT.format(value=item))
        if key not in known:
            raise InvalidArgumentError(
                Messages.ERROR_CONFIG_KEY_UNKNOWN.format(key=key, known=", ".join(sorted(known)))
            )
        payload[key] = value.strip()
    return payload


def run(argv: list[str] | None = None) -> None:
    """Entry point wrapper allowing optional argument override."""
    args = list(argv) if argv is not None else sys.argv[1:]
    if argv is None:
        app()
    else:
        app(args=args)
