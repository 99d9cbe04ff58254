"""
Tool catalog: descriptors, update methods, categories and the built-in inventory.

The catalog is loaded once at startup and never mutated afterwards. Order is
significant: descriptor indices are used as stable keys by the session.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

import yaml

from .common import SparkError

logger = logging.getLogger(__name__)


class UpdateMethod(str, Enum):
    """How a tool is probed and updated."""
    BREW = "brew"
    BREW_PKG = "brew_pkg"
    MAC_APP = "mac_app"
    NPM_PKG = "npm_pkg"
    NPM_SYS = "npm_sys"
    CLAUDE = "claude"
    OMZ = "omz"
    TOAD = "toad"
    DROID = "droid"
    OPENCODE = "opencode"
    MANUAL = "manual"


BREW_METHODS = frozenset({UpdateMethod.BREW, UpdateMethod.BREW_PKG})
NPM_METHODS = frozenset({UpdateMethod.NPM_PKG, UpdateMethod.NPM_SYS, UpdateMethod.CLAUDE})
MANUAL_METHODS = frozenset({UpdateMethod.MANUAL, UpdateMethod.DROID, UpdateMethod.OPENCODE})

# Category tags in display order, with jump key and label
CATEGORY_CODE = "CODE"
CATEGORY_TERM = "TERM"
CATEGORY_IDE = "IDE"
CATEGORY_PROD = "PROD"
CATEGORY_INFRA = "INFRA"
CATEGORY_UTILS = "UTILS"
CATEGORY_RUNTIME = "RUNTIME"
CATEGORY_SYS = "SYS"

CATEGORY_ORDER: tuple[str, ...] = (
    CATEGORY_CODE,
    CATEGORY_TERM,
    CATEGORY_IDE,
    CATEGORY_PROD,
    CATEGORY_INFRA,
    CATEGORY_UTILS,
    CATEGORY_RUNTIME,
    CATEGORY_SYS,
)

CATEGORY_LABELS = {
    CATEGORY_CODE: "AI Development",
    CATEGORY_TERM: "Terminals",
    CATEGORY_IDE: "IDEs & Editors",
    CATEGORY_PROD: "Productivity",
    CATEGORY_INFRA: "Infrastructure",
    CATEGORY_UTILS: "Utilities",
    CATEGORY_RUNTIME: "Runtimes",
    CATEGORY_SYS: "System",
}

CATEGORY_KEYS = {
    "c": CATEGORY_CODE,
    "t": CATEGORY_TERM,
    "i": CATEGORY_IDE,
    "p": CATEGORY_PROD,
    "f": CATEGORY_INFRA,
    "u": CATEGORY_UTILS,
    "r": CATEGORY_RUNTIME,
    "s": CATEGORY_SYS,
}

# Language runtimes and databases: updates need explicit confirmation
DEFAULT_PROTECTED_CATEGORIES: tuple[str, ...] = (CATEGORY_RUNTIME,)


class CatalogError(SparkError):
    """Catalog is missing, unreadable, empty or inconsistent."""


@dataclass(frozen=True)
class ToolDescriptor:
    """
    Static identity and metadata of one manageable tool.

    Attributes:
        id: Unique identifier (S-01, S-02, ...)
        name: Display name (e.g., "Claude CLI")
        binary: Binary command or application name (e.g., "claude")
        package: Package identifier (e.g., "@anthropic-ai/claude-code")
        category: Category tag (e.g., "RUNTIME")
        method: Update method used for probing and updating
        description: Optional free-form description
    """
    id: str
    name: str
    binary: str
    package: str
    category: str
    method: UpdateMethod
    description: str = ""

    @property
    def category_label(self) -> str:
        """Human-readable category name."""
        return category_label(self.category)

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on name, binary, package and category."""
        needle = query.lower()
        if not needle:
            return True
        return any(
            needle in field.lower()
            for field in (self.name, self.binary, self.package, self.category)
        )

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "binary": self.binary,
            "package": self.package,
            "category": self.category,
            "method": self.method.value,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], default_id: str = "") -> "ToolDescriptor":
        """
        Create descriptor from catalog file data.

        Raises:
            CatalogError: If required fields are missing or the method is unknown
        """
        name = str(data.get("name", "")).strip()
        binary = str(data.get("binary", "")).strip()
        if not name or not binary:
            raise CatalogError(f"Catalog entry needs 'name' and 'binary': {data!r}")

        raw_method = str(data.get("method", UpdateMethod.BREW_PKG.value))
        try:
            method = UpdateMethod(raw_method)
        except ValueError:
            raise CatalogError(f"Unknown update method '{raw_method}' for tool '{name}'") from None

        return cls(
            id=str(data.get("id") or default_id),
            name=name,
            binary=binary,
            package=str(data.get("package") or binary),
            category=str(data.get("category", CATEGORY_UTILS)).upper(),
            method=method,
            description=str(data.get("description", "")),
        )


def category_label(category: str) -> str:
    """Get display label for a category tag."""
    return CATEGORY_LABELS.get(category, category)


# (name, binary, package, category, method)
_INVENTORY: tuple[tuple[str, str, str, str, UpdateMethod], ...] = (
    # AI Development
    ("Claude CLI", "claude", "@anthropic-ai/claude-code", CATEGORY_CODE, UpdateMethod.CLAUDE),
    ("Droid CLI", "droid", "factory-cli", CATEGORY_CODE, UpdateMethod.DROID),
    ("Gemini CLI", "gemini", "@google/gemini-cli", CATEGORY_CODE, UpdateMethod.NPM_PKG),
    ("OpenCode", "opencode", "opencode-ai", CATEGORY_CODE, UpdateMethod.OPENCODE),
    ("Codex CLI", "codex", "@openai/codex", CATEGORY_CODE, UpdateMethod.NPM_PKG),
    ("Crush CLI", "crush", "crush", CATEGORY_CODE, UpdateMethod.BREW_PKG),
    ("Toad CLI", "toad", "batrachian-toad", CATEGORY_CODE, UpdateMethod.TOAD),
    ("Ollama", "ollama", "ollama", CATEGORY_CODE, UpdateMethod.MANUAL),
    # Terminal emulators
    ("iTerm2", "iterm", "iterm2", CATEGORY_TERM, UpdateMethod.MAC_APP),
    ("Ghostty", "ghostty", "ghostty", CATEGORY_TERM, UpdateMethod.MAC_APP),
    ("Warp Terminal", "warp", "warp", CATEGORY_TERM, UpdateMethod.MAC_APP),
    # IDEs
    ("VS Code", "code", "visual-studio-code", CATEGORY_IDE, UpdateMethod.MAC_APP),
    ("Cursor IDE", "cursor", "cursor", CATEGORY_IDE, UpdateMethod.MAC_APP),
    ("Zed Editor", "zed", "zed", CATEGORY_IDE, UpdateMethod.MAC_APP),
    ("Windsurf", "windsurf", "windsurf", CATEGORY_IDE, UpdateMethod.MAC_APP),
    ("Antigravity", "antigravity", "antigravity", CATEGORY_IDE, UpdateMethod.MANUAL),
    # Productivity
    ("JQ", "jq", "jq", CATEGORY_PROD, UpdateMethod.BREW_PKG),
    ("FZF", "fzf", "fzf", CATEGORY_PROD, UpdateMethod.BREW_PKG),
    ("Ripgrep", "rg", "ripgrep", CATEGORY_PROD, UpdateMethod.BREW_PKG),
    ("Bat", "bat", "bat", CATEGORY_PROD, UpdateMethod.BREW_PKG),
    ("HTTPie", "http", "httpie", CATEGORY_PROD, UpdateMethod.BREW_PKG),
    ("LazyGit", "lazygit", "lazygit", CATEGORY_PROD, UpdateMethod.BREW_PKG),
    ("TLDR", "tldr", "tldr", CATEGORY_PROD, UpdateMethod.BREW_PKG),
    # Infrastructure
    ("Docker Desktop", "docker", "docker", CATEGORY_INFRA, UpdateMethod.MAC_APP),
    ("Kubernetes CLI", "kubectl", "kubernetes-cli", CATEGORY_INFRA, UpdateMethod.BREW_PKG),
    ("Helm", "helm", "helm", CATEGORY_INFRA, UpdateMethod.BREW_PKG),
    ("Terraform", "terraform", "terraform", CATEGORY_INFRA, UpdateMethod.BREW_PKG),
    ("AWS CLI", "aws", "awscli", CATEGORY_INFRA, UpdateMethod.BREW_PKG),
    ("Ngrok", "ngrok", "ngrok", CATEGORY_INFRA, UpdateMethod.BREW_PKG),
    # Utilities
    ("Oh My Zsh", "omz", "oh-my-zsh", CATEGORY_UTILS, UpdateMethod.OMZ),
    ("Zellij", "zellij", "zellij", CATEGORY_UTILS, UpdateMethod.BREW_PKG),
    ("Tmux", "tmux", "tmux", CATEGORY_UTILS, UpdateMethod.BREW_PKG),
    ("Git", "git", "git", CATEGORY_UTILS, UpdateMethod.BREW_PKG),
    ("Bash", "bash", "bash", CATEGORY_UTILS, UpdateMethod.BREW_PKG),
    ("SQLite", "sqlite3", "sqlite", CATEGORY_UTILS, UpdateMethod.BREW_PKG),
    ("Watchman", "watchman", "watchman", CATEGORY_UTILS, UpdateMethod.BREW_PKG),
    ("Direnv", "direnv", "direnv", CATEGORY_UTILS, UpdateMethod.BREW_PKG),
    ("Heroku CLI", "heroku", "heroku", CATEGORY_UTILS, UpdateMethod.BREW_PKG),
    ("Pre-commit", "pre-commit", "pre-commit", CATEGORY_UTILS, UpdateMethod.BREW_PKG),
    # Runtimes
    ("Node.js", "node", "node", CATEGORY_RUNTIME, UpdateMethod.BREW_PKG),
    ("Python 3.13", "python3", "python@3.13", CATEGORY_RUNTIME, UpdateMethod.BREW_PKG),
    ("Go Lang", "go", "go", CATEGORY_RUNTIME, UpdateMethod.BREW_PKG),
    ("Ruby", "ruby", "ruby", CATEGORY_RUNTIME, UpdateMethod.BREW_PKG),
    ("PostgreSQL 16", "psql", "postgresql@16", CATEGORY_RUNTIME, UpdateMethod.BREW_PKG),
    # System
    ("Homebrew Core", "brew", "homebrew", CATEGORY_SYS, UpdateMethod.BREW_PKG),
    ("NPM Globals", "npm", "npm", CATEGORY_SYS, UpdateMethod.NPM_SYS),
)


def assign_id(position: int) -> str:
    """Sequential descriptor id for a 0-based catalog position."""
    return f"S-{position + 1:02d}"


def default_inventory() -> tuple[ToolDescriptor, ...]:
    """Get the built-in tool inventory, ids assigned in order."""
    return tuple(
        ToolDescriptor(
            id=assign_id(i),
            name=name,
            binary=binary,
            package=package,
            category=category,
            method=method,
        )
        for i, (name, binary, package, category, method) in enumerate(_INVENTORY)
    )


def _read_catalog_file(path: Path) -> Any:
    """Parse a YAML or JSON catalog file."""
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f)


def validate_catalog(tools: Sequence[ToolDescriptor]) -> tuple[ToolDescriptor, ...]:
    """
    Check catalog invariants.

    Args:
        tools: Descriptors in display order

    Returns:
        The descriptors as an immutable tuple

    Raises:
        CatalogError: If the catalog is empty or ids are not unique
    """
    if not tools:
        raise CatalogError("Tool catalog is empty", remediation="Add at least one tool entry")

    seen: set[str] = set()
    for tool in tools:
        if not tool.id:
            raise CatalogError(f"Tool '{tool.name}' has no id")
        if tool.id in seen:
            raise CatalogError(f"Duplicate tool id in catalog: {tool.id}")
        seen.add(tool.id)

    return tuple(tools)


def load_catalog(path: str | Path | None = None) -> tuple[ToolDescriptor, ...]:
    """
    Load the tool catalog.

    Without a path the built-in inventory is used. A catalog file is YAML (or
    JSON by extension) holding either a list of entries or a mapping with a
    ``tools`` list.

    Args:
        path: Optional catalog file path

    Returns:
        Immutable, ordered tuple of descriptors

    Raises:
        CatalogError: If the file is missing, unreadable, empty or invalid
    """
    if path is None:
        return validate_catalog(default_inventory())

    catalog_path = Path(os.path.expanduser(str(path)))
    if not catalog_path.is_file():
        raise CatalogError(f"Catalog file not found: {catalog_path}")

    try:
        data = _read_catalog_file(catalog_path)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise CatalogError(f"Failed to read catalog {catalog_path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("tools", [])
    if not isinstance(data, list):
        raise CatalogError(f"Catalog {catalog_path} must contain a list of tools")

    tools = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise CatalogError(f"Catalog entry #{i + 1} in {catalog_path} is not a mapping")
        tools.append(ToolDescriptor.from_dict(entry, default_id=assign_id(i)))

    logger.debug(f"Loaded {len(tools)} catalog entries from {catalog_path}")
    return validate_catalog(tools)
