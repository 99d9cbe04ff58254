"""
Update execution.

Each update method has one strategy. A strategy runs the mutating commands for
a tool and raises UpdateFailed on failure; execute() turns that into an
UpdateOutcome. There is no rollback: a failed update may leave the tool in an
intermediate state, which is reported, not repaired.
"""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from .catalog import ToolDescriptor, UpdateMethod
from .common import SparkError, subprocess_env, tail
from .detector import Detector, omz_root
from .version import PRESENCE_MARKERS, is_resolved

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_TIMEOUT = 600.0

TOAD_INSTALL_COMMAND = "curl -fsSL https://batrachian.ai/install | sh"
OMZ_UPGRADE_COMMAND = '"$ZSH/tools/upgrade.sh"'

MANUAL_MESSAGE = "manual update required (check vendor portal)"
NOT_MANAGED_MESSAGE = "manual update required (not manager-tracked)"

LATEST_HINT = "latest"


@dataclass(frozen=True)
class CommandResult:
    """
    Result of one external command.

    Attributes:
        args: Command that was run
        exit_code: Process exit code (-1 on timeout, 127 if not found)
        output: Combined stdout/stderr
        duration_seconds: Time taken
        timed_out: Whether the command hit its deadline
    """
    args: tuple[str, ...]
    exit_code: int
    output: str
    duration_seconds: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class UpdateOutcome:
    """
    Result of updating one tool.

    Exactly one of version_hint (success) or message (failure) is meaningful,
    and it is never empty.

    Attributes:
        tool_id: Descriptor id
        success: Whether the update succeeded
        version_hint: Version believed installed after a successful update
        message: Diagnostic text for a failed update
        method: Update method used
        manual: Failure is permanent and needs a human (not retryable)
        duration_seconds: Total time spent
    """
    tool_id: str
    success: bool
    version_hint: str = ""
    message: str = ""
    method: str = ""
    manual: bool = False
    duration_seconds: float = 0.0

    def __post_init__(self):
        if self.success and not self.version_hint:
            raise ValueError("Successful update needs a version hint")
        if not self.success and not self.message:
            raise ValueError("Failed update needs a message")

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "tool_id": self.tool_id,
            "success": self.success,
            "version_hint": self.version_hint,
            "message": self.message,
            "method": self.method,
            "manual": self.manual,
            "duration_seconds": self.duration_seconds,
        }


class UpdateFailed(SparkError):
    """
    A single tool update failed.

    Attributes:
        manual: The tool can only be updated by hand
    """
    def __init__(self, message: str, manual: bool = False, remediation: str | None = None):
        self.manual = manual
        super().__init__(message, remediation=remediation)


class UnsupportedMethodError(SparkError):
    """No update strategy is registered for a method tag."""


class UpdateExecutor:
    """Runs updates, one tool per call, each bounded by an overall timeout."""

    def __init__(self, timeout: float = DEFAULT_UPDATE_TIMEOUT, detector: Detector | None = None):
        self.timeout = timeout
        self.detector = detector

        self._strategies: dict[UpdateMethod, Callable[[ToolDescriptor, float], None]] = {
            UpdateMethod.BREW: self._update_brew,
            UpdateMethod.BREW_PKG: self._update_brew,
            UpdateMethod.MAC_APP: self._update_mac_app,
            UpdateMethod.NPM_PKG: self._update_npm,
            UpdateMethod.NPM_SYS: self._update_npm,
            UpdateMethod.CLAUDE: self._update_npm,
            UpdateMethod.OMZ: self._update_omz,
            UpdateMethod.TOAD: self._update_toad,
            UpdateMethod.MANUAL: self._update_manual,
            UpdateMethod.DROID: self._update_manual,
            UpdateMethod.OPENCODE: self._update_manual,
        }

    def execute(self, tool: ToolDescriptor) -> UpdateOutcome:
        """
        Update a tool.

        Args:
            tool: Tool descriptor

        Returns:
            UpdateOutcome: success with a version hint, or failure with a message

        Raises:
            UnsupportedMethodError: If the tool's method has no strategy
        """
        strategy = self._strategies.get(tool.method)
        if strategy is None:
            raise UnsupportedMethodError(f"Update method {tool.method} not implemented")

        start = time.time()
        deadline = start + self.timeout
        logger.info(f"Updating {tool.name} via {tool.method.value}")

        try:
            strategy(tool, deadline)
        except UpdateFailed as e:
            duration = time.time() - start
            logger.warning(f"Update of {tool.name} failed: {e.message}")
            return UpdateOutcome(
                tool_id=tool.id,
                success=False,
                message=e.message,
                method=tool.method.value,
                manual=e.manual,
                duration_seconds=duration,
            )

        hint = self._version_hint(tool)
        duration = time.time() - start
        logger.info(f"Updated {tool.name} to {hint} in {duration:.1f}s")
        return UpdateOutcome(
            tool_id=tool.id,
            success=True,
            version_hint=hint,
            method=tool.method.value,
            duration_seconds=duration,
        )

    def _version_hint(self, tool: ToolDescriptor) -> str:
        if self.detector is not None:
            version = self.detector.local_version(tool)
            if is_resolved(version) and version not in PRESENCE_MARKERS:
                return version
        return LATEST_HINT

    def run_command(
        self,
        args: Sequence[str],
        deadline: float,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """
        Run a command with combined output, bounded by the update deadline.

        Args:
            args: Command and arguments
            deadline: Absolute time.time() by which the update must finish
            env: Extra environment variables

        Returns:
            CommandResult (never raises for process failures)
        """
        command = tuple(args)
        remaining = deadline - time.time()
        if remaining <= 0:
            return CommandResult(command, -1, "", 0.0, timed_out=True)

        logger.debug(f"Executing: {' '.join(command)}")
        start = time.time()
        try:
            proc = subprocess.run(
                list(command),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                timeout=remaining,
                check=False,
                env=subprocess_env(**(env or {})),
            )
        except subprocess.TimeoutExpired as e:
            output = e.output or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            return CommandResult(command, -1, output, time.time() - start, timed_out=True)
        except FileNotFoundError:
            return CommandResult(command, 127, f"command not found: {command[0]}", time.time() - start)
        except OSError as e:
            return CommandResult(command, 126, str(e), time.time() - start)

        return CommandResult(command, proc.returncode, proc.stdout or "", time.time() - start)

    def _raise_for(self, result: CommandResult, label: str) -> None:
        if result.ok:
            return
        if result.timed_out:
            raise UpdateFailed(f"{label} timed out after {self.timeout:.0f}s")
        detail = tail(result.output) or f"exit code {result.exit_code}"
        raise UpdateFailed(f"{label} failed: {detail}")

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _update_brew(self, tool: ToolDescriptor, deadline: float) -> None:
        result = self.run_command(["brew", "upgrade", tool.package], deadline)
        self._raise_for(result, "brew upgrade")

    def _update_mac_app(self, tool: ToolDescriptor, deadline: float) -> None:
        check = self.run_command(["brew", "list", "--cask", tool.package], deadline)
        if not check.ok:
            raise UpdateFailed(NOT_MANAGED_MESSAGE, manual=True)

        result = self.run_command(["brew", "upgrade", "--cask", tool.package], deadline)
        self._raise_for(result, "brew cask upgrade")

    def _update_npm(self, tool: ToolDescriptor, deadline: float) -> None:
        spec = f"{tool.package or tool.binary}@latest"
        result = self.run_command(["npm", "install", "-g", spec], deadline)
        if result.ok:
            return

        # Stale symlinks from another install: retry exactly once with --force
        if "EEXIST" in result.output:
            logger.info(f"npm reported EEXIST for {spec}, retrying with --force")
            forced = self.run_command(["npm", "install", "-g", spec, "--force"], deadline)
            self._raise_for(forced, "npm install (even with --force)")
            return

        self._raise_for(result, "npm install")

    def _update_omz(self, tool: ToolDescriptor, deadline: float) -> None:
        result = self.run_command(["sh", "-c", OMZ_UPGRADE_COMMAND], deadline, env={"ZSH": omz_root()})
        self._raise_for(result, "omz update")

    def _update_toad(self, tool: ToolDescriptor, deadline: float) -> None:
        result = self.run_command(["sh", "-c", TOAD_INSTALL_COMMAND], deadline)
        self._raise_for(result, "install script")

    def _update_manual(self, tool: ToolDescriptor, deadline: float) -> None:
        raise UpdateFailed(MANUAL_MESSAGE, manual=True)
