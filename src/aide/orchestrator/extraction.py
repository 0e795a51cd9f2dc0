"""Pull commands and filesystem paths out of free-form requests.

Both extractors try their patterns in a fixed order and return the capture of
the first pattern that matches; later patterns are never consulted once one
succeeds.
"""

from __future__ import annotations

import re

COMMAND_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"شغل[:\s]+(.+)"),
    re.compile(r"نفذ[:\s]+(.+)"),
    re.compile(r"\brun\s*:\s*(.+)", re.IGNORECASE),
    re.compile(r"\bexecute\s*:\s*(.+)", re.IGNORECASE),
    # Fenced blocks are tried before inline backticks.
    re.compile(r"```(?:[\w+-]*[ \t]*\n)?(.+?)```", re.DOTALL),
    re.compile(r"`([^`\n]+)`"),
)

PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"([A-Za-z]:\\[^\s\"']+)"),
    re.compile(r"(?:^|(?<=[\s\"'(]))(~/[^\s\"']*)"),
    re.compile(r"(?:^|(?<=[\s\"'(]))(/[^\s\"']+)"),
    re.compile(r"في[:\s]+[\"']?([^\"'\s]+)[\"']?"),
    re.compile(r"path[:\s]+[\"']?([^\"'\s]+)[\"']?", re.IGNORECASE),
)

BACKGROUND_PATTERN = re.compile(
    r"\s*(?:\bin the background\b|\bin background\b|في الخلفية)[.!]?",
    re.IGNORECASE,
)

_FENCE_LINE = re.compile(r"^\s*```[^\n]*$", re.MULTILINE)


def split_background(text: str) -> tuple[str, bool]:
    """Remove a "run it in the background" marker from *text*.

    Returns the remaining text and whether a marker was present.
    """
    stripped, count = BACKGROUND_PATTERN.subn("", text)
    return stripped.strip(), count > 0


def strip_fences(text: str) -> str:
    """Remove markdown fence lines (```` ``` ```` / ```` ```lang ````) from *text*."""
    return _FENCE_LINE.sub("", text).strip()


def extract_command(text: str) -> str | None:
    """Return the literal command in *text*, or ``None``.

    Recognises ``run: ...`` / ``execute: ...`` prefixes, their Arabic
    equivalents (colon optional), fenced code blocks and inline backticks.
    """
    for pattern in COMMAND_PATTERNS:
        match = pattern.search(text)
        if match is None:
            continue
        command = strip_fences(match.group(1))
        if len(command) > 1 and command.startswith("`") and command.endswith("`"):
            command = command.strip("`").strip()
        if command:
            return command
    return None


def extract_path(text: str) -> str | None:
    """Return the first filesystem path mentioned in *text*, or ``None``."""
    for pattern in PATH_PATTERNS:
        match = pattern.search(text)
        if match is not None and match.group(1).strip():
            return match.group(1).strip().rstrip(".,;:")
    return None
