"""Utility helpers for filesystem access, sizes and media classification."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Sequence, Tuple
import hashlib
import os
import re

IMAGE_EXTENSIONS: tuple[str, ...] = (
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".bmp",
    ".tiff",
    ".tif",
    ".webp",
    ".heic",
    ".heif",
)
VIDEO_EXTENSIONS: tuple[str, ...] = (
    ".mp4",
    ".avi",
    ".mov",
    ".mkv",
    ".wmv",
    ".flv",
    ".webm",
    ".m4v",
    ".3gp",
    ".mpg",
    ".mpeg",
)
HASH_CHUNK_SIZE = 1 << 20

_SIZE_PATTERN = re.compile(r"^\s*(\d+)\s*(B|KB|MB|GB)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}


class FileType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    UNKNOWN = "unknown"


def resolve_directory(path: Path | str) -> Path:
    """Resolve and validate a user supplied directory path."""
    dir_path = Path(path).expanduser().resolve()
    if not dir_path.exists():
        raise FileNotFoundError(f"Directory does not exist: {dir_path}")
    if not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    return dir_path


def normalize_path(path: Path | str) -> str:
    """Return the absolute, user-expanded string form used as a cache key."""
    return str(Path(path).expanduser().absolute())


def detect_file_type(path: Path | str) -> FileType:
    """Classify *path* as image, video or unknown by its extension."""
    suffix = Path(path).suffix.lower()
    if suffix in IMAGE_EXTENSIONS:
        return FileType.IMAGE
    if suffix in VIDEO_EXTENSIONS:
        return FileType.VIDEO
    return FileType.UNKNOWN


def extensions_for_types(file_types: Sequence[FileType] | None) -> tuple[str, ...]:
    if not file_types:
        return IMAGE_EXTENSIONS + VIDEO_EXTENSIONS
    extensions: list[str] = []
    if FileType.IMAGE in file_types:
        extensions.extend(IMAGE_EXTENSIONS)
    if FileType.VIDEO in file_types:
        extensions.extend(VIDEO_EXTENSIONS)
    return tuple(extensions)


def collect_media_files(
    root: Path | str,
    include_hidden: bool = False,
    recursive: bool = True,
    file_types: Sequence[FileType] | None = None,
) -> List[Path]:
    """Collect supported media files under *root*; optionally keep hidden entries and recurse."""

    directory = resolve_directory(root)
    files: List[Path] = []
    normalized_exts: Tuple[str, ...] = extensions_for_types(file_types)

    if recursive:
        for dirpath, dirnames, filenames in os.walk(directory, topdown=True):
            if not include_hidden:
                dirnames[:] = [d for d in dirnames if not d.startswith(".")]
                filenames = [f for f in filenames if not f.startswith(".")]
            current_dir = Path(dirpath)
            for filename in filenames:
                candidate = current_dir / filename
                if not _matches_extension(candidate, normalized_exts):
                    continue
                files.append(candidate)
    else:
        for entry in directory.iterdir():
            if entry.is_dir():
                continue
            if not include_hidden and entry.name.startswith("."):
                continue
            if not _matches_extension(entry, normalized_exts):
                continue
            files.append(entry)

    files.sort()
    return files


def _matches_extension(path: Path, extensions: Sequence[str]) -> bool:
    """Return True if *path* ends with any of the provided *extensions*."""

    filename = path.name.lower()
    return any(filename.endswith(ext) for ext in extensions)


def file_digest(path: Path | str) -> str:
    """Return the SHA-256 hex digest of the file contents."""
    hasher = hashlib.sha256()
    with open(path, "rb") as handle:
        for block in iter(lambda: handle.read(HASH_CHUNK_SIZE), b""):
            hasher.update(block)
    return hasher.hexdigest()


def format_size(size_bytes: int | None) -> str:
    """Render a byte count as B/KB/MB/GB with one decimal."""
    value = int(size_bytes or 0)
    if value > 1024**3:
        return f"{value / 1024**3:.1f}GB"
    if value > 1024**2:
        return f"{value / 1024**2:.1f}MB"
    if value > 1024:
        return f"{value / 1024:.1f}KB"
    return f"{value}B"


def parse_size(value: str | int | None) -> int | None:
    """Parse ``"512MB"``/``"1GB"``/``"2048"`` into bytes; ``None`` stays ``None``."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid size: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Size must be >= 0: {value}")
        return value
    match = _SIZE_PATTERN.match(value)
    if match is None:
        raise ValueError(f"Invalid size: {value!r} (expected e.g. 256MB or 1GB)")
    number = int(match.group(1))
    unit = (match.group(2) or "B").upper()
    return number * _SIZE_UNITS[unit]


def format_eta(seconds: float | None) -> str:
    """Format remaining seconds as ``45s``, ``12m`` or ``1h5m``."""
    if seconds is None:
        return "Unknown"
    total = max(int(seconds), 0)
    if total < 60:
        return f"{total}s"
    if total < 3600:
        return f"{total // 60}m"
    hours, remainder = divmod(total, 3600)
    return f"{hours}h{remainder // 60}m"


def optimal_workers() -> int:
    """Return twice the CPU count clamped to [2, 8]."""
    optimal = (os.cpu_count() or 4) * 2
    return max(2, min(8, optimal))
