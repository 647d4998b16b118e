import base64
import json
import os
import re
import sqlite3

import pytest
from rich.console import Console
from typer.testing import CliRunner

from metacache.cache import CacheStore
from metacache.cli import app
from metacache.errors import ExtractionFailedError


ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi(text: str) -> str:
    return ANSI_RE.sub("", text)


class FakeMediaExtractor:
    calls: list = []

    def __init__(self, *args, **kwargs):
        pass

    def __call__(self, path):
        FakeMediaExtractor.calls.append(path)
        if "bad" in path.name:
            raise ExtractionFailedError(f"cannot read {path.name}")
        return json.dumps({"SourceFile": path.name})


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    db_path = tmp_path / "store" / "cache.db"
    monkeypatch.setattr("metacache.config.CONFIG_DIR", config_dir)
    monkeypatch.setattr("metacache.config.CONFIG_FILE", config_dir / "config.json")
    monkeypatch.setattr("metacache.config.load_dotenv", lambda: False)
    monkeypatch.setenv("METACACHE_DB", str(db_path))
    monkeypatch.delenv("METACACHE_CONFIG_DIR", raising=False)
    monkeypatch.setattr("metacache.cli.console", Console(width=300))
    monkeypatch.setattr("metacache.cli.MediaExtractor", FakeMediaExtractor)
    FakeMediaExtractor.calls = []
    return db_path


def _invoke(*args, input=None):
    result = CliRunner().invoke(app, list(args), input=input)
    return result, strip_ansi(result.stdout)


def _media_dir(tmp_path, names):
    root = tmp_path / "media"
    root.mkdir(exist_ok=True)
    paths = []
    for name in names:
        path = root / name
        path.write_bytes(name.encode())
        paths.append(path)
    return root, paths


def test_init_creates_store(cli_env):
    result, out = _invoke("init")

    assert result.exit_code == 0
    assert "Cache initialized" in out
    assert cli_env.is_file()
    assert CacheStore(cli_env).stats().count == 0


def test_store_requires_initialized_store(tmp_path, cli_env):
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(b"x")

    result, out = _invoke("store", str(photo), '{"a": 1}')

    assert result.exit_code == 1
    assert "does not exist" in out
    assert not cli_env.exists()


def test_store_and_retrieve_round_trip(tmp_path, cli_env):
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(b"pixels")
    metadata = '{"Make": "Leica", "Note": "line\\nbreak"}'
    _invoke("init")

    result, out = _invoke("store", str(photo), metadata)
    assert result.exit_code == 0
    assert "Cached" in out

    result, out = _invoke("retrieve", str(photo))
    assert result.exit_code == 0
    assert out.strip() == metadata

    entry = CacheStore(cli_env).get_entry(photo)
    assert entry.size == 6
    assert entry.file_type.value == "image"


def test_store_extracts_when_no_metadata_given(tmp_path):
    photo = tmp_path / "auto.png"
    photo.write_bytes(b"pixels")
    _invoke("init")

    result, _ = _invoke("store", str(photo))

    assert result.exit_code == 0
    assert FakeMediaExtractor.calls == [photo]
    _, out = _invoke("retrieve", str(photo))
    assert json.loads(out) == {"SourceFile": "auto.png"}


def test_store_from_file(tmp_path):
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(b"pixels")
    source = tmp_path / "meta.json"
    source.write_text('{"from": "file"}', encoding="utf-8")
    _invoke("init")

    result, _ = _invoke("store", str(photo), "--from-file", str(source))

    assert result.exit_code == 0
    _, out = _invoke("retrieve", str(photo))
    assert out.strip() == '{"from": "file"}'


def test_retrieve_reports_missing_and_stale(tmp_path):
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(b"pixels")
    os.utime(photo, (1_700_000_000, 1_700_000_000))
    _invoke("init")

    result, out = _invoke("retrieve", str(photo))
    assert result.exit_code == 1
    assert "No cached metadata" in out

    _invoke("store", str(photo), "old")
    os.utime(photo, (1_700_000_500, 1_700_000_500))

    result, out = _invoke("retrieve", str(photo))
    assert result.exit_code == 1
    assert "stale (modified)" in out

    result, out = _invoke("retrieve", str(photo), "--allow-stale")
    assert result.exit_code == 0
    assert out.strip() == "old"

    result, out = _invoke("stats")
    assert re.search(r"Hits\s*[│|]\s*1\b", out)
    assert re.search(r"Misses\s*[│|]\s*2\b", out)


def test_status_and_stats(tmp_path):
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(b"pixels")
    _invoke("init")
    _invoke("store", str(photo), "abc")
    _invoke("retrieve", str(photo))

    result, out = _invoke("status")
    assert result.exit_code == 0
    assert "Cache status" in out
    assert "Schema version" in out
    assert "2.0" in out
    assert "image: 1" in out

    result, out = _invoke("stats")
    assert result.exit_code == 0
    assert re.search(r"Hits\s*[│|]\s*1", out)
    assert re.search(r"Hit rate\s*[│|]\s*100\.0%", out)


def test_status_without_store_fails():
    result, out = _invoke("status")
    assert result.exit_code == 1
    assert "metacache init" in out


def test_clear_confirms_unless_yes(tmp_path, cli_env):
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(b"pixels")
    _invoke("init")
    _invoke("store", str(photo), "abc")

    result, out = _invoke("clear", input="n\n")
    assert result.exit_code == 0
    assert "Clear cancelled" in out
    assert CacheStore(cli_env).stats().count == 1

    result, out = _invoke("clear", "--yes")
    assert result.exit_code == 0
    assert "Removed 1 cache entry" in out
    assert CacheStore(cli_env).stats().count == 0


def test_prune_commands(tmp_path, cli_env):
    _invoke("init")
    for name in ("a.jpg", "b.jpg", "c.jpg"):
        _invoke("store", str(tmp_path / name), "x" * 100)

    result, out = _invoke("prune", "age", "--days", "30")
    assert result.exit_code == 0
    assert "Pruned 0 entries" in out

    result, out = _invoke("prune", "access", "--days", "7")
    assert result.exit_code == 0

    result, out = _invoke("prune", "size")
    assert result.exit_code == 1
    assert "No size cap" in out

    result, out = _invoke("prune", "size", "--max", "200B")
    assert result.exit_code == 0
    assert "Pruned 1 entries" in out
    assert CacheStore(cli_env).stats().count == 2

    result, out = _invoke("prune", "smart")
    assert result.exit_code == 0
    assert CacheStore(cli_env).stats().count == 0


def test_prune_rejects_invalid_size():
    _invoke("init")
    result, out = _invoke("prune", "size", "--max", "lots")
    assert result.exit_code == 1
    assert "Invalid size" in out


def test_process_directory(tmp_path, cli_env):
    root, paths = _media_dir(
        tmp_path, ["a.jpg", "b.png", "bad.jpg", "clip.mp4", "notes.txt"]
    )

    result, out = _invoke("process", str(root), "--workers", "2", "--batch-size", "2")

    assert result.exit_code == 0
    assert "Processing summary" in out
    assert "bad.jpg" in out
    store = CacheStore(cli_env)
    assert store.stats().count == 3
    assert store.get(root / "clip.mp4") == json.dumps({"SourceFile": "clip.mp4"})

    FakeMediaExtractor.calls = []
    result, out = _invoke("process", str(root))
    assert result.exit_code == 0
    assert re.search(r"Skipped\s*[│|]\s*3", out)
    assert [path.name for path in FakeMediaExtractor.calls] == ["bad.jpg"]


def test_process_filters_types(tmp_path, cli_env):
    root, _ = _media_dir(tmp_path, ["a.jpg", "clip.mp4"])

    result, _ = _invoke("process", str(root), "--type", "video")

    assert result.exit_code == 0
    assert [path.name for path in FakeMediaExtractor.calls] == ["clip.mp4"]


def test_process_rejects_out_of_range_workers(tmp_path):
    root, _ = _media_dir(tmp_path, ["a.jpg"])

    result, out = _invoke("process", str(root), "--workers", "99")

    assert result.exit_code == 1
    assert "workers must be between 1 and 16" in out


def test_process_empty_directory(tmp_path, cli_env):
    root, _ = _media_dir(tmp_path, ["notes.txt"])

    result, out = _invoke("process", str(root))

    assert result.exit_code == 0
    assert "No media files" in out
    assert not cli_env.exists()


def test_health_check(cli_env):
    result, out = _invoke("health-check")
    assert result.exit_code == 1
    assert "missing" in out

    _invoke("init")
    result, out = _invoke("health-check")
    assert result.exit_code == 0
    assert "Status: healthy" in out

    cli_env.write_bytes(b"garbage bytes " * 200)
    result, out = _invoke("health-check")
    assert result.exit_code == 1
    assert "corrupted" in out


def _write_legacy_store(db_path):
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.executescript(
        """
        CREATE TABLE metadata (file_path TEXT PRIMARY KEY, metadata_json TEXT);
        CREATE TABLE metadata_cache (
            file_path TEXT PRIMARY KEY, metadata TEXT, file_size INTEGER, file_hash TEXT,
            modified_time INTEGER, file_type TEXT, created_at TEXT, accessed_at TEXT
        );
        """
    )
    conn.execute(
        "INSERT INTO metadata (file_path, metadata_json) VALUES (?, ?)",
        ("/legacy/a.jpg", '{"legacy": true}'),
    )
    conn.execute(
        "INSERT INTO metadata_cache (file_path, metadata, created_at, accessed_at) "
        "VALUES (?, ?, ?, ?)",
        (
            "/legacy/b.jpg",
            base64.b64encode(b'{"cached": true}').decode("ascii"),
            "2022-05-05 08:00:00",
            "2022-05-05 08:00:00",
        ),
    )
    conn.commit()
    conn.close()


def test_migrate_and_rollback_legacy_store(cli_env):
    _write_legacy_store(cli_env)

    result, out = _invoke("status")
    assert result.exit_code == 1
    assert "metacache migrate" in out

    result, out = _invoke("migrate", "--backup")
    assert result.exit_code == 0
    assert "Migrated 0.0 -> 1.0" in out
    assert "Migrated 1.0 -> 2.0" in out
    assert "Cache migrated from 0.0 to 2.0" in out
    assert cli_env.with_name("cache.db.v0.0.bak").is_file()

    store = CacheStore(cli_env)
    assert store.get("/legacy/a.jpg") == '{"legacy": true}'
    assert store.get("/legacy/b.jpg") == '{"cached": true}'

    result, out = _invoke("migrate")
    assert result.exit_code == 0
    assert "already at version 2.0" in out

    result, out = _invoke("rollback", "0.0")
    assert result.exit_code == 0
    assert "Rolled back from 2.0 to 0.0" in out

    result, out = _invoke("rollback", "1.5")
    assert result.exit_code == 1
    assert "Unknown schema version" in out


def test_migrate_creates_fresh_store(cli_env):
    result, out = _invoke("migrate", "--no-backup")

    assert result.exit_code == 0
    assert "Cache migrated from uninitialized to 2.0" in out
    assert cli_env.is_file()


def test_backup_and_restore(tmp_path, cli_env):
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(b"pixels")
    _invoke("init")
    _invoke("store", str(photo), "keep me")
    destination = tmp_path / "backups" / "copy.db"

    result, out = _invoke("backup", str(destination))
    assert result.exit_code == 0
    assert "Backup written" in out
    assert destination.is_file()

    _invoke("clear", "--yes")
    result, out = _invoke("restore", str(destination))
    assert result.exit_code == 0
    assert "schema 2.0" in out

    _, out = _invoke("retrieve", str(photo))
    assert out.strip() == "keep me"


def test_defrag_and_rebuild(tmp_path):
    _invoke("init")
    for name in ("a.jpg", "b.jpg"):
        _invoke("store", str(tmp_path / name), "meta " * 50)

    result, out = _invoke("defrag")
    assert result.exit_code == 0
    assert "Defragmented cache" in out

    result, out = _invoke("rebuild")
    assert result.exit_code == 0
    assert "Rebuilt cache with 2 entries" in out


def test_benchmark_and_report(tmp_path):
    root, _ = _media_dir(tmp_path, ["a.jpg", "b.jpg", "bad.png"])

    result, out = _invoke("benchmark", str(root), "--iterations", "2")
    assert result.exit_code == 0
    assert "Benchmark" in out
    assert re.search(r"Files\s*[│|]\s*2", out)
    assert re.search(r"Failed\s*[│|]\s*1", out)

    result, out = _invoke("report")
    assert result.exit_code == 0
    assert "Cache efficiency" in out
    assert "No recommendations" in out


def test_config_set_show_and_reset(tmp_path):
    config_file = tmp_path / "config" / "config.json"

    result, out = _invoke("config", "--set", "workers=4", "--set", "size_limit=10MB")
    assert result.exit_code == 0
    assert "Configuration saved" in out
    stored = json.loads(config_file.read_text())
    assert stored["workers"] == 4
    assert stored["size_limit"] == "10MB"

    result, out = _invoke("config", "--show")
    assert result.exit_code == 0
    assert re.search(r"workers\s*[│|]\s*4", out)

    result, out = _invoke("config", "--set-json", '{"check_hash": true}')
    assert result.exit_code == 0
    assert json.loads(config_file.read_text())["check_hash"] is True

    result, out = _invoke("config", "--reset")
    assert result.exit_code == 0
    assert "size_limit" not in json.loads(config_file.read_text())


def test_config_rejects_bad_assignments():
    result, out = _invoke("config", "--set", "colour=blue")
    assert result.exit_code == 1
    assert "Unknown config key" in out

    result, out = _invoke("config", "--set", "workers")
    assert result.exit_code == 1
    assert "Expected KEY=VALUE" in out


def test_config_compression_toggle(cli_env):
    result, out = _invoke("config", "--compression")
    assert result.exit_code == 1

    _invoke("init")
    result, out = _invoke("config", "--compression")
    assert result.exit_code == 0
    assert "Payload compression: yes" in out
    assert CacheStore(cli_env).compression_enabled() is True


def test_db_option_overrides_environment(tmp_path, cli_env):
    other = tmp_path / "other.db"

    result, _ = _invoke("--db", str(other), "init")

    assert result.exit_code == 0
    assert other.is_file()
    assert not cli_env.exists()


def test_init_applies_configured_size_limit(cli_env):
    _invoke("config", "--set", "size_limit=1MB")
    _invoke("init")

    result, out = _invoke("status")

    assert result.exit_code == 0
    assert re.search(r"Size limit\s*[│|]\s*1024\.0KB", out)


def test_config_dir_option_redirects_settings(tmp_path):
    alt = tmp_path / "alt"

    result, _ = _invoke("--config-dir", str(alt), "config", "--set", "workers=3")
    assert result.exit_code == 0
    assert json.loads((alt / "config.json").read_text())["workers"] == 3
    assert not (tmp_path / "config" / "config.json").exists()

    result, out = _invoke("--config-dir", str(alt), "config", "--show")
    assert result.exit_code == 0
    assert re.search(r"workers\s*[│|]\s*3\b", out)

    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    result, _ = _invoke("--config-dir", str(blocker), "status")
    assert result.exit_code == 1


def test_process_records_misses_then_hits(tmp_path, cli_env):
    root, _ = _media_dir(tmp_path, ["a.jpg", "b.jpg"])
    _invoke("process", str(root))
    _invoke("process", str(root))

    result, out = _invoke("stats")

    assert result.exit_code == 0
    assert re.search(r"Hits\s*[│|]\s*2\b", out)
    assert re.search(r"Misses\s*[│|]\s*2\b", out)
    assert re.search(r"Hit rate\s*[│|]\s*50\.0%", out)
