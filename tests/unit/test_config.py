import json

import pytest

from metacache import config as config_module
from metacache.errors import InvalidArgumentError


def _prepare_config(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    config_file = config_dir / "config.json"
    monkeypatch.setattr(config_module, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_file)
    return config_file


def test_load_config_defaults(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)

    cfg = config_module.load_config()

    assert cfg.db_path is None
    assert cfg.workers == config_module.DEFAULT_WORKERS
    assert cfg.batch_size == config_module.DEFAULT_BATCH_SIZE
    assert cfg.memory_limit is None
    assert cfg.size_limit is None
    assert cfg.check_hash is False
    assert cfg.timestamp_counts is True
    assert cfg.backup_on_migrate is True


def test_default_workers_within_bounds():
    assert 2 <= config_module.DEFAULT_WORKERS <= 8


def test_save_and_load_round_trip(tmp_path, monkeypatch):
    config_file = _prepare_config(tmp_path, monkeypatch)

    config_module.save_config(
        config_module.Config(workers=4, size_limit="100MB", check_hash=True)
    )

    stored = json.loads(config_file.read_text())
    assert stored["workers"] == 4
    assert stored["size_limit"] == "100MB"
    assert "memory_limit" not in stored
    cfg = config_module.load_config()
    assert cfg.workers == 4
    assert cfg.size_limit_bytes == 100 * 1024**2
    assert cfg.check_hash is True


def test_update_config_merges_and_validates(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    config_module.update_config({"workers": "6"})

    cfg = config_module.update_config('{"batch_size": 200, "memory_limit": "1gb"}')

    assert cfg.workers == 6
    assert cfg.batch_size == 200
    assert cfg.memory_limit == "1GB"
    assert cfg.memory_limit_bytes == 1024**3

    with pytest.raises(InvalidArgumentError):
        config_module.update_config({"workers": 0})
    with pytest.raises(InvalidArgumentError):
        config_module.update_config({"batch_size": 5000})
    with pytest.raises(InvalidArgumentError):
        config_module.update_config({"memory_limit": "lots"})
    with pytest.raises(InvalidArgumentError):
        config_module.update_config({"check_hash": "maybe"})
    with pytest.raises(InvalidArgumentError):
        config_module.update_config("[1, 2]")
    assert config_module.load_config().workers == 6


def test_update_config_replace_all(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    config_module.update_config({"workers": 3, "check_hash": True})

    cfg = config_module.update_config({"batch_size": 10}, replace_all=True)

    assert cfg.workers == config_module.DEFAULT_WORKERS
    assert cfg.check_hash is False
    assert cfg.batch_size == 10


def test_load_config_rejects_invalid_json(tmp_path, monkeypatch):
    config_file = _prepare_config(tmp_path, monkeypatch)
    config_file.parent.mkdir(parents=True)
    config_file.write_text("{broken", encoding="utf-8")

    with pytest.raises(InvalidArgumentError):
        config_module.load_config()


def test_resolve_db_path_precedence(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    monkeypatch.setattr(config_module, "load_dotenv", lambda: False)
    monkeypatch.delenv(config_module.ENV_DB_PATH, raising=False)

    assert config_module.resolve_db_path() == tmp_path / "config" / "cache.db"

    monkeypatch.setenv(config_module.ENV_DB_PATH, str(tmp_path / "env.db"))
    assert config_module.resolve_db_path() == tmp_path / "env.db"

    explicit = config_module.Config(db_path=str(tmp_path / "explicit.db"))
    assert config_module.resolve_db_path(explicit) == tmp_path / "explicit.db"


def test_config_dir_context_overrides_location(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    override = tmp_path / "override"

    with config_module.config_dir_context(override):
        config_module.save_config(config_module.Config(workers=2))
        assert config_module.load_config().workers == 2

    assert (override / "config.json").is_file()
    assert config_module.load_config().workers == config_module.DEFAULT_WORKERS


def test_config_file_path_follows_override(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    assert config_module.config_file_path() == config_module.CONFIG_FILE

    with config_module.config_dir_context(tmp_path / "elsewhere"):
        assert config_module.config_file_path() == (tmp_path / "elsewhere").resolve() / "config.json"

    blocker = tmp_path / "blocker"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(NotADirectoryError):
        with config_module.config_dir_context(blocker):
            pass
