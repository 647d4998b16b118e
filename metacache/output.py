"""Helpers for formatting CLI output safely across terminals."""

from __future__ import annotations

import sys

from rich.console import Console

CHECK_MARK = "✓"
CROSS_MARK = "✗"


def _encoding_supports(text: str, encoding: str | None) -> bool:
    if not encoding:
        return False
    try:
        text.encode(encoding)
    except (LookupError, UnicodeEncodeError):
        return False
    return True


def supports_unicode_output(console: Console | None = None) -> bool:
    sample = CHECK_MARK + CROSS_MARK
    if console is not None and _encoding_supports(sample, console.encoding):
        return True
    return _encoding_supports(sample, sys.stdout.encoding)


def format_status_icon(passed: bool, console: Console | None = None) -> str:
    """Return a coloured pass/fail marker, falling back to ASCII on limited terminals."""
    if supports_unicode_output(console):
        return f"[green]{CHECK_MARK}[/green]" if passed else f"[red]{CROSS_MARK}[/red]"
    return "[green]OK[/green]" if passed else "[red]FAIL[/red]"
