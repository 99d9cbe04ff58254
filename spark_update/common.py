"""
Common utilities shared across spark_update modules.
"""

from __future__ import annotations

import os
import re

ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")


def home_dir() -> str:
    """Return the current user's home directory."""
    return os.environ.get("HOME") or os.path.expanduser("~")


def local_bin_path(binary: str) -> str:
    """Return the per-user install location for a binary (~/.local/bin)."""
    return os.path.join(home_dir(), ".local", "bin", binary)


def subprocess_env(**overrides: str) -> dict[str, str]:
    """
    Build the environment for external commands.

    Colour and pager output is disabled so captured output stays parseable.

    Args:
        overrides: Extra variables to set

    Returns:
        New environment mapping
    """
    env = {**os.environ, "TERM": "dumb", "NO_COLOR": "1", "HOMEBREW_NO_AUTO_UPDATE": "1"}
    env.update(overrides)
    return env


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    return ANSI_ESCAPE_RE.sub("", text)


def tail(text: str, limit: int = 400) -> str:
    """
    Keep the end of a long command output.

    Args:
        text: Command output
        limit: Maximum number of characters to keep

    Returns:
        Stripped text, prefixed with an ellipsis when truncated
    """
    text = strip_ansi(text or "").strip()
    if len(text) <= limit:
        return text
    return "…" + text[-limit:]


class SparkError(Exception):
    """
    Base exception for spark errors.

    Attributes:
        message: Human-readable error message
        remediation: Suggested fix for the error
    """
    def __init__(self, message: str, remediation: str | None = None):
        self.message = message
        self.remediation = remediation
        super().__init__(message)
