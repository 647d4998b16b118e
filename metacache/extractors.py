"""Default metadata extractors wrapping ``exiftool`` and ``ffprobe``."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Protocol, Sequence

from .errors import ExtractionFailedError
from .text import Messages
from .utils import FileType, detect_file_type

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
FFPROBE_ARGS: tuple[str, ...] = (
    "-v",
    "quiet",
    "-print_format",
    "json",
    "-show_format",
    "-show_streams",
)


class Extractor(Protocol):
    def __call__(self, path: Path) -> str: ...


class CommandExtractor:
    """Run an external tool on one file and return its standard output."""

    executable: str = ""
    arguments: Sequence[str] = ()

    def __init__(self, *, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    def command(self, path: Path) -> list[str]:
        return [self.executable, *self.arguments, str(path)]

    def __call__(self, path: Path) -> str:
        command = self.command(path)
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="surrogateescape",
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ExtractionFailedError(
                Messages.ERROR_TOOL_MISSING.format(tool=self.executable)
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ExtractionFailedError(
                Messages.ERROR_EXTRACT_TIMEOUT.format(
                    tool=self.executable, path=path, timeout=self.timeout
                )
            ) from exc
        if result.returncode != 0 or not result.stdout.strip():
            raise ExtractionFailedError(
                Messages.ERROR_EXTRACT_FAILED.format(
                    tool=self.executable, path=path, code=result.returncode
                )
            )
        logger.debug("%s extracted %d characters from %s", self.executable, len(result.stdout), path)
        return result.stdout


class ExifToolExtractor(CommandExtractor):
    executable = "exiftool"


class FFprobeExtractor(CommandExtractor):
    executable = "ffprobe"
    arguments = FFPROBE_ARGS


class MediaExtractor:
    """Route images to exiftool and videos to ffprobe, falling back to exiftool."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        image: CommandExtractor | None = None,
        video: CommandExtractor | None = None,
    ) -> None:
        self.image = image or ExifToolExtractor(timeout=timeout)
        self.video = video or FFprobeExtractor(timeout=timeout)

    def __call__(self, path: Path) -> str:
        kind = detect_file_type(path)
        if kind is FileType.VIDEO:
            try:
                return self.video(path)
            except ExtractionFailedError as exc:
                logger.debug("ffprobe failed for %s (%s); trying exiftool", path, exc)
                return self.image(path)
        if kind is FileType.IMAGE:
            return self.image(path)
        raise ExtractionFailedError(Messages.ERROR_UNSUPPORTED_FILE.format(path=path))
