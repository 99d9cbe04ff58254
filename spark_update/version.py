"""
Version string extraction and comparison.

Turns raw ``--version`` banners into a canonical version token using an
ordered cascade of patterns, first match wins.
"""

from __future__ import annotations

import re

from packaging.version import InvalidVersion, Version

from .common import strip_ansi

# Sentinels shared by the detector and the session
MISSING = "MISSING"
UNKNOWN = "Unknown"
CHECKING = "Checking..."
PLACEHOLDER = "..."

# Present on disk but version not readable
PRESENCE_MARKERS = frozenset({"Detected", "Installed"})

_UNRESOLVED = frozenset({"", MISSING, UNKNOWN, CHECKING, PLACEHOLDER})

FALLBACK_MAX_LEN = 30

SEMVER_RE = re.compile(r"v?(\d+\.\d+\.\d+[\w\-+]*)")
MAJOR_MINOR_RE = re.compile(r"v?(\d+\.\d+)")
DATE_VERSION_RE = re.compile(r"(\d{4}\.\d+\.\d+)")
GIT_HASH_RE = re.compile(r"\b([a-f0-9]{7,40})\b")
NUMBER_RE = re.compile(r"\b(\d+)\b")


def clean_version(version: str) -> str:
    """Strip a leading v/V and trailing dots or dashes."""
    if version[:1] in ("v", "V"):
        version = version[1:]
    return version.rstrip(".-")


def is_version_like(token: str) -> bool:
    """True if token starts with a digit, or v/V followed by a digit."""
    if not token:
        return False
    if token[0].isdigit():
        return True
    return token[0] in ("v", "V") and len(token) > 1 and token[1].isdigit()


def normalize(raw: str | None) -> str:
    """
    Extract a canonical version from command output.

    Args:
        raw: Raw command output (may be multi-line, may contain ANSI codes)

    Returns:
        Version token, "Unknown" for empty output, or a truncated first line
    """
    if not raw:
        return UNKNOWN

    text = strip_ansi(raw).strip()
    if not text:
        return UNKNOWN

    first_line = text.splitlines()[0].strip()

    for pattern in (SEMVER_RE, MAJOR_MINOR_RE, DATE_VERSION_RE):
        m = pattern.search(first_line)
        if m:
            return clean_version(m.group(1))

    m = GIT_HASH_RE.search(first_line)
    if m:
        return m.group(1)[:7]

    m = NUMBER_RE.search(first_line)
    if m:
        return m.group(1)

    for token in first_line.split():
        if is_version_like(token):
            return clean_version(token)

    if len(first_line) > FALLBACK_MAX_LEN:
        return first_line[:FALLBACK_MAX_LEN] + "…"
    return first_line


def _after_word(output: str, word: str) -> str:
    """Token following a literal word, e.g. 'git version 2.43.0'."""
    parts = output.split()
    for i, part in enumerate(parts[:-1]):
        if part == word:
            return clean_version(parts[i + 1].rstrip(","))
    return ""


def _parse_aws(output: str) -> str:
    # aws-cli/2.22.35 Python/3.11.9 Darwin/24.0.0
    parts = output.split()
    if parts and "/" in parts[0]:
        return parts[0].split("/")[1]
    return ""


def _parse_go(output: str) -> str:
    # go version go1.23.4 darwin/arm64
    parts = output.split()
    if len(parts) >= 3:
        return parts[2].removeprefix("go")
    return ""


def _parse_python(output: str) -> str:
    # Python 3.13.1
    for part in output.split():
        if SEMVER_RE.fullmatch(part):
            return clean_version(part)
    return ""


def _parse_brew(output: str) -> str:
    # Homebrew 4.2.0
    parts = output.split()
    if len(parts) >= 2:
        return clean_version(parts[1])
    return ""


def _parse_prefixed(output: str) -> str:
    # v20.11.0
    return clean_version(output.splitlines()[0].strip()) if output else ""


TOOL_PARSERS = {
    "aws": _parse_aws,
    "go": _parse_go,
    "python": _parse_python,
    "python3": _parse_python,
    "node": _parse_prefixed,
    "npm": _parse_prefixed,
    "docker": lambda output: _after_word(output, "version"),
    "git": lambda output: _after_word(output, "version"),
    "brew": _parse_brew,
}


def parse_tool_version(binary: str, raw: str | None) -> str:
    """
    Parse version output, using tool-specific rules for noisy banners.

    Args:
        binary: Binary name of the tool (selects the override)
        raw: Raw command output

    Returns:
        Version token (falls back to normalize())
    """
    output = strip_ansi(raw or "").strip()
    parser = TOOL_PARSERS.get(binary)
    if parser and output:
        version = parser(output)
        if version:
            return version
    return normalize(output)


def is_resolved(value: str | None) -> bool:
    """True if value is a concrete version rather than a sentinel or placeholder."""
    return bool(value) and value not in _UNRESOLVED


def versions_match(a: str, b: str) -> bool:
    """
    Check whether two version strings denote the same version.

    PEP 440 parsing is used when both sides parse, so "1.0" matches "1.0.0".

    Args:
        a: First version
        b: Second version

    Returns:
        True if equal
    """
    try:
        return Version(a) == Version(b)
    except InvalidVersion:
        return clean_version(a.strip()) == clean_version(b.strip())


def is_comparable(a: str, b: str) -> bool:
    """True if both strings parse as PEP 440 versions, so ordering is meaningful."""
    try:
        Version(a)
        Version(b)
    except InvalidVersion:
        return False
    return True


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two version strings.

    Args:
        v1: First version
        v2: Second version

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2
    """
    try:
        ver1 = Version(v1)
        ver2 = Version(v2)
        if ver1 < ver2:
            return -1
        elif ver1 > ver2:
            return 1
        return 0
    except InvalidVersion:
        if v1 < v2:
            return -1
        elif v1 > v2:
            return 1
        return 0
