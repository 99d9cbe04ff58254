"""
Messages exchanged with the session controller.

Result events come back from worker tasks, intents come from the presentation
layer, commands go out from the controller to the runner. All are immutable.
"""

from __future__ import annotations

from dataclasses import dataclass

from .catalog import ToolDescriptor
from .executor import UpdateOutcome


class Event:
    """Base class for everything the controller consumes."""


class Intent(Event):
    """User intent produced by the presentation layer."""


class Command:
    """Work requested by the controller."""


# --- Results from background tasks ---

@dataclass(frozen=True)
class LocalProbeResult(Event):
    index: int
    version: str


@dataclass(frozen=True)
class WarmUpFinished(Event):
    pass


@dataclass(frozen=True)
class RemoteProbeResult(Event):
    index: int
    version: str


@dataclass(frozen=True)
class UpdateFinished(Event):
    index: int
    outcome: UpdateOutcome


@dataclass(frozen=True)
class SplashElapsed(Event):
    pass


@dataclass(frozen=True)
class Tick(Event):
    """Cosmetic animation frame; never affects functional state."""


# --- User intents ---

@dataclass(frozen=True)
class Navigate(Intent):
    delta: int


@dataclass(frozen=True)
class JumpToCategory(Intent):
    category: str


@dataclass(frozen=True)
class NextCategory(Intent):
    pass


@dataclass(frozen=True)
class ToggleSelection(Intent):
    pass


@dataclass(frozen=True)
class ToggleGroup(Intent):
    pass


@dataclass(frozen=True)
class ToggleAll(Intent):
    pass


@dataclass(frozen=True)
class EnterSearch(Intent):
    pass


@dataclass(frozen=True)
class SearchInput(Intent):
    text: str


@dataclass(frozen=True)
class SearchBackspace(Intent):
    pass


@dataclass(frozen=True)
class ConfirmSearch(Intent):
    pass


@dataclass(frozen=True)
class CancelSearch(Intent):
    pass


@dataclass(frozen=True)
class OpenPreview(Intent):
    pass


@dataclass(frozen=True)
class Commit(Intent):
    """Start updating (Main) or proceed (Preview)."""


@dataclass(frozen=True)
class Confirm(Intent):
    """Explicit yes in the confirmation step."""


@dataclass(frozen=True)
class Cancel(Intent):
    """No / escape: leaves Preview or Confirm, clears an active filter in Main."""


@dataclass(frozen=True)
class Dismiss(Intent):
    """Any key on the splash or summary screen."""


@dataclass(frozen=True)
class Quit(Intent):
    force: bool = False


# --- Commands for the runner ---

@dataclass(frozen=True)
class ProbeLocal(Command):
    index: int
    tool: ToolDescriptor


@dataclass(frozen=True)
class WarmUp(Command):
    pass


@dataclass(frozen=True)
class ProbeRemote(Command):
    index: int
    tool: ToolDescriptor
    local_version: str


@dataclass(frozen=True)
class RunUpdate(Command):
    index: int
    tool: ToolDescriptor


@dataclass(frozen=True)
class ExitSession(Command):
    """
    Stop the loop.

    Attributes:
        code: Process exit code
        abort: Hard interrupt; in-flight external commands are abandoned
    """
    code: int = 0
    abort: bool = False
