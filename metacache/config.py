"""Global configuration management for Metacache."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from contextlib import contextmanager
from contextvars import ContextVar
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from .errors import InvalidArgumentError
from .text import Messages
from .utils import optimal_workers, parse_size

DEFAULT_CONFIG_DIR = Path(os.path.expanduser("~")) / ".metacache"
CONFIG_DIR = DEFAULT_CONFIG_DIR
CONFIG_FILE = CONFIG_DIR / "config.json"
_CONFIG_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "metacache_config_dir_override",
    default=None,
)
DB_FILENAME = "cache.db"
ENV_DB_PATH = "METACACHE_DB"
DEFAULT_WORKERS = optimal_workers()
DEFAULT_BATCH_SIZE = 50
DEFAULT_LOCK_RETRIES = 5
DEFAULT_BUSY_TIMEOUT_MS = 5000
MIN_WORKERS, MAX_WORKERS = 1, 16
MIN_BATCH_SIZE, MAX_BATCH_SIZE = 1, 1000


@dataclass
class Config:
    db_path: str | None = None
    workers: int = DEFAULT_WORKERS
    batch_size: int = DEFAULT_BATCH_SIZE
    memory_limit: str | None = None
    size_limit: str | None = None
    check_hash: bool = False
    timestamp_counts: bool = True
    lock_retries: int = DEFAULT_LOCK_RETRIES
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    backup_on_migrate: bool = True

    @property
    def memory_limit_bytes(self) -> int | None:
        return parse_size(self.memory_limit)

    @property
    def size_limit_bytes(self) -> int | None:
        return parse_size(self.size_limit)


def _resolve_config_dir() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    return override if override is not None else CONFIG_DIR


def _resolve_config_file() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    if override is not None:
        return override / "config.json"
    return CONFIG_FILE


@contextmanager
def config_dir_context(path: Path | str | None):
    """Temporarily override the config directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _CONFIG_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _CONFIG_DIR_OVERRIDE.reset(token)


def config_file_path() -> Path:
    """Return the config file in effect for the current context."""
    return _resolve_config_file()


def load_config() -> Config:
    config_file = _resolve_config_file()
    if not config_file.exists():
        return Config()
    try:
        raw = json.loads(config_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InvalidArgumentError(Messages.ERROR_CONFIG_JSON_INVALID) from exc
    return config_from_json(raw)


def save_config(config: Config) -> None:
    config_dir = _resolve_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    data: Dict[str, Any] = {}
    if config.db_path:
        data["db_path"] = config.db_path
    data["workers"] = config.workers
    data["batch_size"] = config.batch_size
    if config.memory_limit:
        data["memory_limit"] = config.memory_limit
    if config.size_limit:
        data["size_limit"] = config.size_limit
    data["check_hash"] = bool(config.check_hash)
    data["timestamp_counts"] = bool(config.timestamp_counts)
    data["lock_retries"] = config.lock_retries
    data["busy_timeout_ms"] = config.busy_timeout_ms
    data["backup_on_migrate"] = bool(config.backup_on_migrate)
    config_file = _resolve_config_file()
    config_file.write_text(
        json.dumps(data, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def config_from_json(
    payload: str | Mapping[str, object], *, base: Config | None = None
) -> Config:
    """Return a Config from a JSON string or mapping without saving it."""
    data = _coerce_config_payload(payload)
    config = Config() if base is None else replace(base)
    _apply_config_payload(config, data)
    return config


def update_config(
    payload: str | Mapping[str, object], *, replace_all: bool = False
) -> Config:
    """Update config from a JSON string or mapping and persist it."""
    base = None if replace_all else load_config()
    config = config_from_json(payload, base=base)
    save_config(config)
    return config


def resolve_db_path(config: Config | None = None) -> Path:
    """Return the store location: config value, then ``METACACHE_DB``, then the per-user default."""

    if config is not None and config.db_path:
        return Path(config.db_path).expanduser().absolute()
    load_dotenv()
    env_value = os.getenv(ENV_DB_PATH)
    if env_value:
        return Path(env_value).expanduser().absolute()
    return _resolve_config_dir() / DB_FILENAME


def _coerce_config_payload(payload: str | Mapping[str, object]) -> Mapping[str, object]:
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise InvalidArgumentError(Messages.ERROR_CONFIG_JSON_INVALID) from exc
    elif isinstance(payload, Mapping):
        data = dict(payload)
    else:
        raise InvalidArgumentError(Messages.ERROR_CONFIG_JSON_INVALID)
    if not isinstance(data, Mapping):
        raise InvalidArgumentError(Messages.ERROR_CONFIG_JSON_INVALID)
    return data


def _apply_config_payload(config: Config, payload: Mapping[str, object]) -> None:
    if "db_path" in payload:
        config.db_path = _coerce_optional_str(payload["db_path"], "db_path")
    if "workers" in payload:
        config.workers = _coerce_bounded_int(
            payload["workers"], "workers", DEFAULT_WORKERS, MIN_WORKERS, MAX_WORKERS
        )
    if "batch_size" in payload:
        config.batch_size = _coerce_bounded_int(
            payload["batch_size"],
            "batch_size",
            DEFAULT_BATCH_SIZE,
            MIN_BATCH_SIZE,
            MAX_BATCH_SIZE,
        )
    if "memory_limit" in payload:
        config.memory_limit = _coerce_size(payload["memory_limit"], "memory_limit")
    if "size_limit" in payload:
        config.size_limit = _coerce_size(payload["size_limit"], "size_limit")
    if "check_hash" in payload:
        config.check_hash = _coerce_bool(payload["check_hash"], "check_hash")
    if "timestamp_counts" in payload:
        config.timestamp_counts = _coerce_bool(
            payload["timestamp_counts"], "timestamp_counts"
        )
    if "lock_retries" in payload:
        config.lock_retries = _coerce_bounded_int(
            payload["lock_retries"], "lock_retries", DEFAULT_LOCK_RETRIES, 1, 50
        )
    if "busy_timeout_ms" in payload:
        config.busy_timeout_ms = _coerce_bounded_int(
            payload["busy_timeout_ms"],
            "busy_timeout_ms",
            DEFAULT_BUSY_TIMEOUT_MS,
            0,
            600_000,
        )
    if "backup_on_migrate" in payload:
        config.backup_on_migrate = _coerce_bool(
            payload["backup_on_migrate"], "backup_on_migrate"
        )


def _coerce_optional_str(value: object, field: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    raise InvalidArgumentError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_int(value: object, field: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise InvalidArgumentError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise InvalidArgumentError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return default
        try:
            return int(cleaned)
        except ValueError as exc:
            raise InvalidArgumentError(
                Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field)
            ) from exc
    raise InvalidArgumentError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))


def _coerce_bounded_int(value: object, field: str, default: int, low: int, high: int) -> int:
    number = _coerce_int(value, field, default)
    if number < low or number > high:
        raise InvalidArgumentError(
            Messages.ERROR_VALUE_RANGE.format(field=field, low=low, high=high)
        )
    return number


def _coerce_size(value: object, field: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        raise InvalidArgumentError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
    cleaned = value.strip().upper()
    if not cleaned:
        return None
    try:
        size = parse_size(cleaned)
    except ValueError as exc:
        raise InvalidArgumentError(
            Messages.ERROR_SIZE_INVALID.format(field=field, value=value)
        ) from exc
    if not size:
        raise InvalidArgumentError(Messages.ERROR_SIZE_INVALID.format(field=field, value=value))
    return cleaned


def _coerce_bool(value: object, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if cleaned in {"true", "1", "yes", "on"}:
            return True
        if cleaned in {"false", "0", "no", "off"}:
            return False
    raise InvalidArgumentError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field=field))
