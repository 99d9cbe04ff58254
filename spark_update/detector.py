"""
Local and remote version detection.

Local probes find the installed version of a tool. Remote probes answer
"what is the latest version" from a cache warmed once per session from the
package managers' own outdated listings, so no per-tool network query is made.
"""

from __future__ import annotations

import json
import logging
import os
import plistlib
import shutil
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence

from .catalog import BREW_METHODS, NPM_METHODS, ToolDescriptor, UpdateMethod
from .common import home_dir, local_bin_path, subprocess_env
from .version import CHECKING, MISSING, UNKNOWN, normalize, parse_tool_version

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 5.0
DEFAULT_WARMUP_TIMEOUT = 60.0

APPLICATIONS_DIR = "/Applications"

APP_BUNDLES = {
    "iterm": "iTerm.app",
    "ghostty": "Ghostty.app",
    "warp": "Warp.app",
    "code": "Visual Studio Code.app",
    "cursor": "Cursor.app",
    "zed": "Zed.app",
    "windsurf": "Windsurf.app",
    "docker": "Docker.app",
}

# Per-tool install roots checked before PATH
CUSTOM_INSTALL_PATHS = {
    "antigravity": (".antigravity", "antigravity", "bin", "antigravity"),
}

VERSION_FLAG_SETS: tuple[tuple[str, ...], ...] = (
    ("--version",),
    ("version",),
    ("-v",),
)

ERROR_PREFIXES = ("error", "usage", "unknown", "invalid")


def _looks_like_error(output: str) -> bool:
    lowered = output.lower()
    return lowered.startswith(ERROR_PREFIXES) or "unknown option" in lowered or "try --help" in lowered


def omz_root() -> str:
    """Oh My Zsh install root ($ZSH or ~/.oh-my-zsh)."""
    return os.environ.get("ZSH") or os.path.join(home_dir(), ".oh-my-zsh")


class Detector:
    """
    Version detection with a shared, once-built outdated cache.

    Local probes are safe to run concurrently from worker threads. The outdated
    cache is the only state shared between them; writes replace the mapping
    under a lock and readers work on the mapping they got.
    """

    def __init__(
        self,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        warmup_timeout: float = DEFAULT_WARMUP_TIMEOUT,
    ):
        self.probe_timeout = probe_timeout
        self.warmup_timeout = warmup_timeout

        self._cache_lock = threading.Lock()
        self._warmup_lock = threading.Lock()
        self._outdated: dict[str, str] = {}
        self._warmed = False

        generic = self._probe_cli
        self._local_strategies: dict[UpdateMethod, Callable[[ToolDescriptor], str]] = {
            UpdateMethod.MAC_APP: self._probe_mac_app,
            UpdateMethod.OMZ: self._probe_omz,
            UpdateMethod.MANUAL: self._probe_custom_path,
            UpdateMethod.BREW: generic,
            UpdateMethod.BREW_PKG: generic,
            UpdateMethod.NPM_PKG: generic,
            UpdateMethod.NPM_SYS: generic,
            UpdateMethod.CLAUDE: generic,
            UpdateMethod.TOAD: generic,
            UpdateMethod.DROID: generic,
            UpdateMethod.OPENCODE: generic,
        }

    # ------------------------------------------------------------------
    # Local probes
    # ------------------------------------------------------------------

    def local_version(self, tool: ToolDescriptor) -> str:
        """
        Get the installed version of a tool.

        Never raises for probe failures: a missing binary, a non-zero exit or a
        timeout all resolve to the MISSING sentinel.

        Args:
            tool: Tool descriptor

        Returns:
            Version string or "MISSING"

        Raises:
            KeyError: If no strategy is registered for the tool's method
        """
        strategy = self._local_strategies[tool.method]
        try:
            version = strategy(tool)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            logger.debug(f"Local probe for {tool.name} failed: {e}")
            return MISSING

        logger.debug(f"Local probe {tool.name}: {version}")
        return version or MISSING

    def _run(self, args: Sequence[str], timeout: float | None = None) -> str:
        """
        Run a probe command and return its output.

        Returns:
            Stripped stdout (stderr when stdout is empty), or "" on any failure
        """
        try:
            proc = subprocess.run(
                list(args),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                text=True,
                timeout=timeout or self.probe_timeout,
                check=False,
                env=subprocess_env(),
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Probe command {' '.join(args)} failed: {e}")
            return ""

        if proc.returncode != 0:
            return ""

        # Some tools print their version to stderr
        return (proc.stdout or "").strip() or (proc.stderr or "").strip()

    def _version_from(self, executable: str, binary: str) -> str:
        """Try the standard version flags against an executable."""
        for flags in VERSION_FLAG_SETS:
            output = self._run([executable, *flags])
            if output and not _looks_like_error(output):
                return parse_tool_version(binary, output)
        return ""

    def _probe_cli(self, tool: ToolDescriptor) -> str:
        # 1. PATH
        if shutil.which(tool.binary):
            version = self._version_from(tool.binary, tool.binary)
            if version:
                return version

        # 2. ~/.local/bin (pip/pipx and install-script tools)
        local_bin = local_bin_path(tool.binary)
        if os.path.isfile(local_bin) and os.access(local_bin, os.X_OK):
            output = self._run([local_bin, "--version"])
            if output:
                return parse_tool_version(tool.binary, output)

        # 3. Package manager listings
        if tool.method in NPM_METHODS:
            version = self._npm_list_version(tool.package or tool.binary)
            if version:
                return version

        if tool.method in BREW_METHODS:
            version = self._brew_list_version(tool.package)
            if version:
                return version

        return MISSING

    def _npm_list_version(self, package: str) -> str:
        output = self._run(["npm", "list", "-g", "--depth=0", "--json", package])
        if not output:
            return ""
        data = json.loads(output)
        if not isinstance(data, dict):
            return ""
        info = (data.get("dependencies") or {}).get(package) or {}
        version = info.get("version", "")
        return normalize(version) if version else ""

    def _brew_list_version(self, package: str) -> str:
        # "kubernetes-cli 1.28.2"
        fields = self._run(["brew", "list", "--versions", package]).split()
        if len(fields) >= 2:
            return normalize(fields[-1])
        return ""

    def _probe_mac_app(self, tool: ToolDescriptor) -> str:
        bundle = APP_BUNDLES.get(tool.binary)
        if not bundle:
            return MISSING

        plist_path = os.path.join(APPLICATIONS_DIR, bundle, "Contents", "Info.plist")
        if not os.path.isfile(plist_path):
            return MISSING

        try:
            with open(plist_path, "rb") as f:
                info = plistlib.load(f)
        except (OSError, plistlib.InvalidFileException) as e:
            logger.debug(f"Cannot read {plist_path}: {e}")
            return "Detected"

        version = str(info.get("CFBundleShortVersionString", "")).strip()
        return version or "Detected"

    def _probe_omz(self, tool: ToolDescriptor) -> str:
        root = omz_root()
        if not os.path.isdir(root):
            return MISSING

        output = self._run([
            "git",
            f"--git-dir={os.path.join(root, '.git')}",
            f"--work-tree={root}",
            "rev-parse",
            "--short",
            "HEAD",
        ])
        return output.splitlines()[0].strip() if output else "Installed"

    def _probe_custom_path(self, tool: ToolDescriptor) -> str:
        parts = CUSTOM_INSTALL_PATHS.get(tool.binary)
        if parts:
            custom = os.path.join(home_dir(), *parts)
            if os.path.isfile(custom):
                output = self._run([custom, "--version"])
                if output:
                    return parse_tool_version(tool.binary, output)
        return self._probe_cli(tool)

    # ------------------------------------------------------------------
    # Warm-up cache and remote probes
    # ------------------------------------------------------------------

    @property
    def is_warm(self) -> bool:
        """True once warm-up has completed."""
        with self._cache_lock:
            return self._warmed

    def outdated_cache(self) -> dict[str, str]:
        """Copy of the package -> latest version cache."""
        with self._cache_lock:
            return dict(self._outdated)

    def warm_up(self) -> dict[str, str]:
        """
        Build the outdated cache from brew and npm, both queried concurrently.

        Idempotent: only the first call does work; concurrent callers wait for
        it. A backend that fails leaves its packages unresolved.

        Returns:
            Copy of the cache after warm-up
        """
        with self._warmup_lock:
            if self.is_warm:
                return self.outdated_cache()

            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="spark-warmup") as pool:
                futures = [
                    pool.submit(self._fetch_brew_outdated),
                    pool.submit(self._fetch_npm_outdated),
                ]
                for future in futures:
                    try:
                        self._store(future.result())
                    except Exception as e:
                        # One backend failing must not abort the other
                        logger.warning(f"Outdated listing failed: {e}")

            with self._cache_lock:
                self._warmed = True
                count = len(self._outdated)

            logger.info(f"Outdated cache warmed: {count} packages")
            return self.outdated_cache()

    def _store(self, entries: dict[str, str]) -> None:
        if not entries:
            return
        with self._cache_lock:
            merged = dict(self._outdated)
            merged.update(entries)
            self._outdated = merged

    def _run_listing(self, args: Sequence[str]) -> str:
        """Run an outdated listing; non-zero exit is normal when packages are outdated."""
        try:
            proc = subprocess.run(
                list(args),
                capture_output=True,
                stdin=subprocess.DEVNULL,
                text=True,
                timeout=self.warmup_timeout,
                check=False,
                env=subprocess_env(),
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"{args[0]} outdated listing failed: {e}")
            return ""
        return proc.stdout or ""

    def _fetch_brew_outdated(self) -> dict[str, str]:
        output = self._run_listing(["brew", "outdated", "--json=v2"])
        if not output.strip():
            return {}
        try:
            data = json.loads(output)
        except ValueError as e:
            logger.warning(f"Unparseable brew outdated output: {e}")
            return {}
        if not isinstance(data, dict):
            return {}

        entries: dict[str, str] = {}
        for key in ("formulae", "casks"):
            for item in data.get(key) or []:
                if not isinstance(item, dict):
                    continue
                name = item.get("name")
                latest = item.get("current_version")
                if name and latest:
                    entries[name] = str(latest)
        logger.debug(f"brew outdated: {len(entries)} packages")
        return entries

    def _fetch_npm_outdated(self) -> dict[str, str]:
        output = self._run_listing(["npm", "outdated", "-g", "--json"])
        if not output.strip():
            return {}
        try:
            data = json.loads(output)
        except ValueError as e:
            logger.warning(f"Unparseable npm outdated output: {e}")
            return {}
        if not isinstance(data, dict):
            return {}

        entries = {
            package: str(info["latest"])
            for package, info in data.items()
            if isinstance(info, dict) and info.get("latest")
        }
        logger.debug(f"npm outdated: {len(entries)} packages")
        return entries

    def remote_version(self, tool: ToolDescriptor, local_version: str) -> str:
        """
        Get the latest known version of a tool.

        Args:
            tool: Tool descriptor
            local_version: Result of the local probe

        Returns:
            Cached latest version, the local version once warm-up has finished
            (not listed as outdated means up to date), "Unknown" for missing
            tools, or the transient "Checking..." before warm-up completes
        """
        if local_version == MISSING:
            return UNKNOWN

        with self._cache_lock:
            latest = self._outdated.get(tool.package)
            warmed = self._warmed

        if latest:
            return latest
        if warmed:
            return local_version
        return CHECKING
