"""Metacache package initialization."""

from __future__ import annotations

from .cache import CacheStore
from .config import Config
from .errors import MetacacheError

__all__ = [
    "__version__",
    "CacheStore",
    "Config",
    "MetacacheError",
    "get_version",
]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
