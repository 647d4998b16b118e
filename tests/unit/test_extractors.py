from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from metacache import extractors
from metacache.errors import ExtractionFailedError


class _Completed:
    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def test_exiftool_command_and_output(monkeypatch):
    captured = {}

    def fake_run(command, **kwargs):
        captured["command"] = command
        captured["kwargs"] = kwargs
        return _Completed(stdout='[{"Make": "Canon"}]\n')

    monkeypatch.setattr(extractors.subprocess, "run", fake_run)

    output = extractors.ExifToolExtractor(timeout=5)(Path("/photos/a.jpg"))

    assert output == '[{"Make": "Canon"}]\n'
    assert captured["command"] == ["exiftool", "/photos/a.jpg"]
    assert captured["kwargs"]["timeout"] == 5
    assert captured["kwargs"]["check"] is False


def test_ffprobe_command_includes_json_flags():
    command = extractors.FFprobeExtractor().command(Path("/videos/clip.mp4"))
    assert command[0] == "ffprobe"
    assert "-show_streams" in command
    assert command[-1] == "/videos/clip.mp4"


@pytest.mark.parametrize(
    "result",
    [_Completed(returncode=1, stdout="partial"), _Completed(returncode=0, stdout="  \n")],
)
def test_nonzero_exit_or_empty_output_fails(monkeypatch, result):
    monkeypatch.setattr(extractors.subprocess, "run", lambda *_args, **_kwargs: result)

    with pytest.raises(ExtractionFailedError):
        extractors.ExifToolExtractor()(Path("/photos/a.jpg"))


def test_missing_tool_and_timeout(monkeypatch):
    def missing(*_args, **_kwargs):
        raise FileNotFoundError("exiftool")

    monkeypatch.setattr(extractors.subprocess, "run", missing)
    with pytest.raises(ExtractionFailedError) as excinfo:
        extractors.ExifToolExtractor()(Path("/photos/a.jpg"))
    assert "not installed" in str(excinfo.value)

    def slow(command, **kwargs):
        raise subprocess.TimeoutExpired(command, kwargs["timeout"])

    monkeypatch.setattr(extractors.subprocess, "run", slow)
    with pytest.raises(ExtractionFailedError) as excinfo:
        extractors.FFprobeExtractor(timeout=1)(Path("/videos/clip.mp4"))
    assert "timed out" in str(excinfo.value)


class _Recorder:
    def __init__(self, name: str, fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.calls: list[Path] = []

    def __call__(self, path: Path) -> str:
        self.calls.append(path)
        if self.fail:
            raise ExtractionFailedError(f"{self.name} failed")
        return f"{self.name}:{path.name}"


def test_media_extractor_routes_by_type():
    image = _Recorder("exif")
    video = _Recorder("ffprobe")
    extractor = extractors.MediaExtractor(image=image, video=video)

    assert extractor(Path("a.JPG")) == "exif:a.JPG"
    assert extractor(Path("b.mkv")) == "ffprobe:b.mkv"
    with pytest.raises(ExtractionFailedError):
        extractor(Path("notes.txt"))


def test_media_extractor_falls_back_to_exiftool_for_video():
    image = _Recorder("exif")
    video = _Recorder("ffprobe", fail=True)
    extractor = extractors.MediaExtractor(image=image, video=video)

    assert extractor(Path("b.mov")) == "exif:b.mov"
    assert video.calls == [Path("b.mov")]
    assert image.calls == [Path("b.mov")]


def test_is_available_uses_which(monkeypatch):
    monkeypatch.setattr(extractors.shutil, "which", lambda name: f"/usr/bin/{name}")
    assert extractors.ExifToolExtractor().is_available() is True
    monkeypatch.setattr(extractors.shutil, "which", lambda name: None)
    assert extractors.FFprobeExtractor().is_available() is False
