"""
Session controller: the state machine behind the dashboard.

The controller is the only writer of tool runtime state, selection, filter,
update queue and session state. It performs no I/O: ``handle()`` applies one
event and returns the commands the runner must carry out. Results come back
later as events, in any order, and are applied idempotently by tool index.

States::

    SPLASH -> MAIN <-> SEARCH
              MAIN -> PREVIEW -> CONFIRM | UPDATING | MAIN
              MAIN -> CONFIRM -> UPDATING | MAIN
              MAIN -> UPDATING -> SUMMARY -> MAIN
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Iterable, Sequence

from .catalog import (
    DEFAULT_PROTECTED_CATEGORIES,
    MANUAL_METHODS,
    CatalogError,
    ToolDescriptor,
)
from .common import SparkError
from .events import (
    Cancel,
    CancelSearch,
    Command,
    Commit,
    Confirm,
    ConfirmSearch,
    Dismiss,
    EnterSearch,
    Event,
    ExitSession,
    Intent,
    JumpToCategory,
    LocalProbeResult,
    Navigate,
    NextCategory,
    OpenPreview,
    ProbeLocal,
    ProbeRemote,
    Quit,
    RemoteProbeResult,
    RunUpdate,
    SearchBackspace,
    SearchInput,
    SplashElapsed,
    Tick,
    ToggleAll,
    ToggleGroup,
    ToggleSelection,
    UpdateFinished,
    WarmUp,
    WarmUpFinished,
)
from .executor import LATEST_HINT, UpdateOutcome
from .version import (
    CHECKING,
    MISSING,
    PLACEHOLDER,
    PRESENCE_MARKERS,
    compare_versions,
    is_comparable,
    is_resolved,
    versions_match,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INTERRUPTED = 130


class SessionState(Enum):
    SPLASH = "splash"
    MAIN = "main"
    SEARCH = "search"
    PREVIEW = "preview"
    CONFIRM = "confirm"
    UPDATING = "updating"
    SUMMARY = "summary"


class ToolStatus(Enum):
    CHECKING = "checking"
    INSTALLED = "installed"
    OUTDATED = "outdated"
    MISSING = "missing"
    UNMANAGED = "unmanaged"
    MANUAL_CHECK = "manual_check"
    UPDATING = "updating"
    UPDATED = "updated"
    FAILED = "failed"


# Statuses owned by the update cycle; probe results never overwrite them
UPDATE_STATUSES = frozenset({ToolStatus.UPDATING, ToolStatus.UPDATED, ToolStatus.FAILED})

VALID_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.SPLASH: frozenset({SessionState.MAIN}),
    SessionState.MAIN: frozenset({
        SessionState.SEARCH,
        SessionState.PREVIEW,
        SessionState.CONFIRM,
        SessionState.UPDATING,
    }),
    SessionState.SEARCH: frozenset({SessionState.MAIN}),
    SessionState.PREVIEW: frozenset({SessionState.MAIN, SessionState.CONFIRM, SessionState.UPDATING}),
    SessionState.CONFIRM: frozenset({SessionState.MAIN, SessionState.UPDATING}),
    SessionState.UPDATING: frozenset({SessionState.SUMMARY}),
    SessionState.SUMMARY: frozenset({SessionState.MAIN}),
}


class InvalidTransition(SparkError):
    """The state machine was asked for a transition it does not allow."""


@dataclass(frozen=True)
class ToolRuntimeState:
    """
    Runtime data for one tool. Replaced, never mutated, by the controller.

    Attributes:
        tool: Static descriptor
        status: Current status
        local_version: Installed version, MISSING, or "..." before probing
        remote_version: Latest version, a sentinel, or "..." before probing
        message: Diagnostic or status detail
    """
    tool: ToolDescriptor
    status: ToolStatus = ToolStatus.CHECKING
    local_version: str = PLACEHOLDER
    remote_version: str = PLACEHOLDER
    message: str = ""


def compute_status(state: ToolRuntimeState) -> ToolStatus:
    """
    Resting status of a tool from its local and remote versions.

    Missing iff the local probe found nothing; Outdated iff the remote version
    is known and differs from the local one; Installed otherwise. Tools whose
    presence is known but whose version is not are Unmanaged; manual-only tools
    that are not known to be outdated need a ManualCheck.
    """
    local = state.local_version
    remote = state.remote_version

    if local == MISSING:
        return ToolStatus.MISSING
    if local == PLACEHOLDER:
        return ToolStatus.CHECKING
    if local in PRESENCE_MARKERS or not is_resolved(local):
        return ToolStatus.UNMANAGED
    if is_resolved(remote) and not versions_match(local, remote):
        return ToolStatus.OUTDATED
    if state.tool.method in MANUAL_METHODS:
        return ToolStatus.MANUAL_CHECK
    return ToolStatus.INSTALLED


@dataclass(frozen=True)
class SummaryEntry:
    tool_id: str
    name: str
    version: str = ""
    message: str = ""


@dataclass(frozen=True)
class UpdateSummary:
    """
    Result of one update cycle.

    Attributes:
        successes: Updated tools with their confirmed version
        failures: Failed tools with the captured diagnostic
        skipped: Names of tools that were not selected
        duration_seconds: Sum of update durations
    """
    successes: tuple[SummaryEntry, ...]
    failures: tuple[SummaryEntry, ...]
    skipped: tuple[str, ...]
    duration_seconds: float = 0.0

    @property
    def attempted(self) -> int:
        return len(self.successes) + len(self.failures)

    @property
    def success_rate(self) -> float:
        """Percentage of attempted updates that succeeded."""
        if not self.attempted:
            return 0.0
        return len(self.successes) / self.attempted * 100

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "successes": [{"tool": e.name, "version": e.version} for e in self.successes],
            "failures": [{"tool": e.name, "message": e.message} for e in self.failures],
            "skipped": list(self.skipped),
            "success_rate": self.success_rate,
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of the controller, published after every event."""
    state: SessionState
    tools: tuple[ToolRuntimeState, ...]
    cursor: int
    selection: frozenset[int]
    filter_text: str
    visible: tuple[int, ...]
    pending: tuple[int, ...]
    protected_categories: tuple[str, ...]
    pending_local: int
    queue_length: int
    in_flight: int
    current: int | None
    total_updates: int
    completed_updates: int
    summary: UpdateSummary | None = None
    frame: int = 0

    @property
    def scanning(self) -> bool:
        return self.pending_local > 0

    @property
    def progress(self) -> float:
        """Fraction of the update batch that has finished (0.0 - 1.0)."""
        if not self.total_updates:
            return 0.0
        return self.completed_updates / self.total_updates

    def is_protected(self, index: int) -> bool:
        return self.tools[index].tool.category in self.protected_categories


class SessionController:
    """
    Finite-state machine for one dashboard session.

    Args:
        tools: Catalog descriptors, in display order
        protected_categories: Categories whose updates need explicit confirmation

    Raises:
        CatalogError: If the catalog is empty
    """

    def __init__(
        self,
        tools: Sequence[ToolDescriptor],
        protected_categories: Iterable[str] = DEFAULT_PROTECTED_CATEGORIES,
    ):
        if not tools:
            raise CatalogError("Cannot start a session with an empty catalog")

        self.protected_categories = tuple(protected_categories)
        self.state = SessionState.SPLASH
        self.cursor = 0
        self.selection: set[int] = set()
        self.filter_text = ""
        self.frame = 0
        self.exit_code: int | None = None

        self._tools: list[ToolRuntimeState] = [ToolRuntimeState(tool=t) for t in tools]
        self._visible: list[int] = list(range(len(tools)))
        self._pending: list[int] = []

        self._pending_local: set[int] = set(range(len(tools)))
        self._warmup_requested = False
        self._warm = False
        self._remote_retried: set[int] = set()

        self._queue: deque[int] = deque()
        self._current: int | None = None
        self._total = 0
        self._completed = 0
        self._outcomes: dict[int, UpdateOutcome] = {}
        self._summary: UpdateSummary | None = None

        self._event_handlers: dict[type, Callable[[Event], list[Command]]] = {
            LocalProbeResult: self._on_local_result,
            WarmUpFinished: self._on_warm_up_finished,
            RemoteProbeResult: self._on_remote_result,
            UpdateFinished: self._on_update_finished,
            SplashElapsed: self._on_splash_elapsed,
            Tick: self._on_tick,
        }

        navigation = {
            Navigate: self._navigate,
            JumpToCategory: self._jump_to_category,
            NextCategory: self._next_category,
        }
        self._intent_handlers: dict[SessionState, dict[type, Callable[[Intent], list[Command]]]] = {
            SessionState.SPLASH: {
                Dismiss: self._leave_splash,
            },
            SessionState.MAIN: {
                **navigation,
                ToggleSelection: self._toggle_selection,
                ToggleGroup: self._toggle_group,
                ToggleAll: self._toggle_all,
                EnterSearch: self._enter_search,
                OpenPreview: self._open_preview,
                Commit: self._commit,
                Cancel: self._clear_filter,
            },
            SessionState.SEARCH: {
                **navigation,
                SearchInput: self._search_input,
                SearchBackspace: self._search_backspace,
                ConfirmSearch: self._confirm_search,
                CancelSearch: self._cancel_search,
            },
            SessionState.PREVIEW: {
                Commit: self._proceed_from_preview,
                Cancel: self._back_to_main,
            },
            SessionState.CONFIRM: {
                Confirm: self._confirm,
                Cancel: self._back_to_main,
            },
            SessionState.UPDATING: {},
            SessionState.SUMMARY: {
                Dismiss: self._leave_summary,
            },
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def tools(self) -> tuple[ToolRuntimeState, ...]:
        return tuple(self._tools)

    @property
    def queue(self) -> tuple[int, ...]:
        return tuple(self._queue)

    @property
    def finished(self) -> bool:
        return self.exit_code is not None

    def start(self) -> list[Command]:
        """Commands that begin the session: one local probe per tool."""
        return [ProbeLocal(i, s.tool) for i, s in enumerate(self._tools)]

    def handle(self, event: Event) -> list[Command]:
        """
        Apply one event.

        Args:
            event: Result event or user intent

        Returns:
            Commands for the runner to execute
        """
        if isinstance(event, Quit):
            return self._quit(event)

        if isinstance(event, Intent):
            handler = self._intent_handlers[self.state].get(type(event))
            if handler is None:
                return []
            return handler(event)

        handler = self._event_handlers.get(type(event))
        if handler is None:
            raise TypeError(f"Unhandled event type: {type(event).__name__}")
        return handler(event)

    def snapshot(self) -> SessionSnapshot:
        """Immutable copy of everything the presentation layer may show."""
        return SessionSnapshot(
            state=self.state,
            tools=tuple(self._tools),
            cursor=self.cursor,
            selection=frozenset(self.selection),
            filter_text=self.filter_text,
            visible=tuple(self._visible),
            pending=tuple(self._pending),
            protected_categories=self.protected_categories,
            pending_local=len(self._pending_local),
            queue_length=len(self._queue),
            in_flight=0 if self._current is None else 1,
            current=self._current,
            total_updates=self._total,
            completed_updates=self._completed,
            summary=self._summary,
            frame=self.frame,
        )

    def check_invariants(self) -> list[str]:
        """Return descriptions of violated invariants (empty when consistent)."""
        problems = []
        if not 0 <= self.cursor < len(self._tools):
            problems.append(f"invalid cursor position: {self.cursor}")
        for idx in self.selection:
            if not 0 <= idx < len(self._tools):
                problems.append(f"invalid selected index: {idx}")

        updating = [i for i, s in enumerate(self._tools) if s.status == ToolStatus.UPDATING]
        if len(updating) > 1:
            problems.append(f"more than one tool updating: {updating}")

        if self.state == SessionState.UPDATING:
            in_flight = 0 if self._current is None else 1
            if len(self._queue) + in_flight != self._total - self._completed:
                problems.append("queue length and in-flight count do not match remaining updates")
        elif self._queue or self._current is not None:
            problems.append(f"update queue active in state {self.state.name}")
        return problems

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, to: SessionState) -> None:
        if to not in VALID_TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.name} -> {to.name} is not allowed")
        logger.debug(f"Session {self.state.name} -> {to.name}")
        self.state = to

    def _set(self, index: int, **changes) -> ToolRuntimeState:
        state = replace(self._tools[index], **changes)
        self._tools[index] = state
        return state

    def _refresh_status(self, index: int) -> None:
        state = self._tools[index]
        if state.status in UPDATE_STATUSES:
            return
        self._set(index, status=compute_status(state))

    def _is_protected(self, index: int) -> bool:
        return self._tools[index].tool.category in self.protected_categories

    def _targets(self) -> list[int]:
        """Selected indices, or the cursor item when nothing is selected."""
        if self.selection:
            return sorted(self.selection)
        if self.cursor in self._visible:
            return [self.cursor]
        return []

    # ------------------------------------------------------------------
    # Background results
    # ------------------------------------------------------------------

    def _on_local_result(self, event: LocalProbeResult) -> list[Command]:
        if event.index not in self._pending_local:
            return []
        self._pending_local.discard(event.index)

        self._set(event.index, local_version=event.version)
        self._refresh_status(event.index)

        commands: list[Command] = []
        if not self._warmup_requested:
            self._warmup_requested = True
            commands.append(WarmUp())
        if self._warm:
            commands.append(ProbeRemote(event.index, self._tools[event.index].tool, event.version))
        return commands

    def _on_warm_up_finished(self, event: WarmUpFinished) -> list[Command]:
        if self._warm:
            return []
        self._warm = True
        return [
            ProbeRemote(i, s.tool, s.local_version)
            for i, s in enumerate(self._tools)
            if i not in self._pending_local and not is_resolved(s.remote_version)
        ]

    def _on_remote_result(self, event: RemoteProbeResult) -> list[Command]:
        if event.index in self._pending_local:
            return []
        self._set(event.index, remote_version=event.version)
        self._refresh_status(event.index)

        # Placeholder answers must be asked again once the cache is warm
        if event.version == CHECKING and self._warm and event.index not in self._remote_retried:
            self._remote_retried.add(event.index)
            state = self._tools[event.index]
            return [ProbeRemote(event.index, state.tool, state.local_version)]
        return []

    def _on_update_finished(self, event: UpdateFinished) -> list[Command]:
        if self.state != SessionState.UPDATING or event.index != self._current:
            logger.debug(f"Ignoring stale update result for index {event.index}")
            return []

        outcome = event.outcome
        state = self._tools[event.index]
        if outcome.success:
            local, remote = outcome.version_hint, state.remote_version
            if local == LATEST_HINT and is_resolved(remote):
                local = remote
            if is_resolved(remote) and is_resolved(local) and local not in PRESENCE_MARKERS:
                # Remote follows local for newer versions, revisions and uncached packages
                if (
                    remote == state.local_version
                    or not is_comparable(local, remote)
                    or compare_versions(local, remote) > 0
                ):
                    remote = local
            self._set(
                event.index,
                status=ToolStatus.UPDATED,
                local_version=local,
                remote_version=remote,
                message="",
            )
        else:
            self._set(event.index, status=ToolStatus.FAILED, message=outcome.message)

        self._outcomes[event.index] = outcome
        self._completed += 1
        self._current = None
        return self._dispatch_next()

    def _on_splash_elapsed(self, event: SplashElapsed) -> list[Command]:
        if self.state == SessionState.SPLASH:
            self._transition(SessionState.MAIN)
        return []

    def _on_tick(self, event: Tick) -> list[Command]:
        self.frame += 1
        return []

    # ------------------------------------------------------------------
    # Update queue
    # ------------------------------------------------------------------

    def _start_updates(self, indices: Sequence[int]) -> list[Command]:
        self.selection = set(indices)
        self._pending = []
        self._queue = deque(sorted(indices))
        self._total = len(self._queue)
        self._completed = 0
        self._outcomes = {}
        self._summary = None
        self._transition(SessionState.UPDATING)
        logger.info(f"Starting updates for {self._total} tools")
        return self._dispatch_next()

    def _dispatch_next(self) -> list[Command]:
        if self._queue:
            index = self._queue.popleft()
            self._current = index
            self._set(index, status=ToolStatus.UPDATING, message="")
            return [RunUpdate(index, self._tools[index].tool)]

        self._summary = self._build_summary()
        self._transition(SessionState.SUMMARY)
        logger.info(
            f"Updates finished: {len(self._summary.successes)} succeeded, "
            f"{len(self._summary.failures)} failed"
        )
        return []

    def _build_summary(self) -> UpdateSummary:
        successes = []
        failures = []
        for index in sorted(self._outcomes):
            state = self._tools[index]
            outcome = self._outcomes[index]
            if outcome.success:
                successes.append(SummaryEntry(state.tool.id, state.tool.name, version=state.local_version))
            else:
                failures.append(SummaryEntry(state.tool.id, state.tool.name, message=outcome.message))
        skipped = tuple(
            s.tool.name for i, s in enumerate(self._tools) if i not in self._outcomes
        )
        return UpdateSummary(
            successes=tuple(successes),
            failures=tuple(failures),
            skipped=skipped,
            duration_seconds=sum(o.duration_seconds for o in self._outcomes.values()),
        )

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def _quit(self, intent: Quit) -> list[Command]:
        if self.state == SessionState.UPDATING:
            if not intent.force:
                return []
            logger.warning("Hard interrupt during updates, abandoning in-flight command")
            self.exit_code = EXIT_INTERRUPTED
            return [ExitSession(EXIT_INTERRUPTED, abort=True)]
        self.exit_code = EXIT_OK
        return [ExitSession(EXIT_OK)]

    def _leave_splash(self, intent: Dismiss) -> list[Command]:
        self._transition(SessionState.MAIN)
        return []

    def _navigate(self, intent: Navigate) -> list[Command]:
        if not self._visible:
            return []
        if self.cursor not in self._visible:
            self.cursor = self._visible[0]
            return []
        pos = self._visible.index(self.cursor) + intent.delta
        pos = max(0, min(pos, len(self._visible) - 1))
        self.cursor = self._visible[pos]
        return []

    def _jump_to_category(self, intent: JumpToCategory) -> list[Command]:
        for i in self._visible:
            if self._tools[i].tool.category == intent.category:
                self.cursor = i
                break
        return []

    def _next_category(self, intent: NextCategory) -> list[Command]:
        if not self._visible:
            return []
        current = self._tools[self.cursor].tool.category
        for i in self._visible:
            if i > self.cursor and self._tools[i].tool.category != current:
                self.cursor = i
                return []
        self.cursor = self._visible[0]
        return []

    def _toggle_selection(self, intent: ToggleSelection) -> list[Command]:
        if self.cursor not in self._visible:
            return []
        if self.cursor in self.selection:
            self.selection.discard(self.cursor)
        else:
            self.selection.add(self.cursor)
        return []

    def _toggle_group(self, intent: ToggleGroup) -> list[Command]:
        category = self._tools[self.cursor].tool.category
        members = {i for i, s in enumerate(self._tools) if s.tool.category == category}
        if members <= self.selection:
            self.selection -= members
        else:
            self.selection |= members
        return []

    def _toggle_all(self, intent: ToggleAll) -> list[Command]:
        if len(self.selection) == len(self._tools):
            self.selection.clear()
        else:
            self.selection = set(range(len(self._tools)))
        return []

    def _apply_filter(self, text: str) -> None:
        self.filter_text = text
        if not text:
            self._visible = list(range(len(self._tools)))
            return
        self._visible = [i for i, s in enumerate(self._tools) if s.tool.matches(text)]
        if self._visible:
            self.cursor = self._visible[0]

    def _enter_search(self, intent: EnterSearch) -> list[Command]:
        self._transition(SessionState.SEARCH)
        return []

    def _search_input(self, intent: SearchInput) -> list[Command]:
        self._apply_filter(self.filter_text + intent.text)
        return []

    def _search_backspace(self, intent: SearchBackspace) -> list[Command]:
        self._apply_filter(self.filter_text[:-1])
        return []

    def _confirm_search(self, intent: ConfirmSearch) -> list[Command]:
        self._transition(SessionState.MAIN)
        return []

    def _cancel_search(self, intent: CancelSearch) -> list[Command]:
        self._apply_filter("")
        self._transition(SessionState.MAIN)
        return []

    def _clear_filter(self, intent: Cancel) -> list[Command]:
        self._apply_filter("")
        return []

    def _open_preview(self, intent: OpenPreview) -> list[Command]:
        if self._pending_local:
            return []
        targets = self._targets()
        if not targets:
            return []
        self._pending = targets
        self._transition(SessionState.PREVIEW)
        return []

    def _proceed(self, targets: list[int]) -> list[Command]:
        if any(self._is_protected(i) for i in targets):
            self._pending = targets
            self._transition(SessionState.CONFIRM)
            return []
        return self._start_updates(targets)

    def _commit(self, intent: Commit) -> list[Command]:
        if self._pending_local:
            logger.debug("Commit ignored while local probes are outstanding")
            return []
        targets = self._targets()
        if not targets:
            return []
        return self._proceed(targets)

    def _proceed_from_preview(self, intent: Commit) -> list[Command]:
        return self._proceed(list(self._pending))

    def _confirm(self, intent: Confirm) -> list[Command]:
        return self._start_updates(self._pending)

    def _back_to_main(self, intent: Cancel) -> list[Command]:
        self._pending = []
        self._transition(SessionState.MAIN)
        return []

    def _leave_summary(self, intent: Dismiss) -> list[Command]:
        touched = list(self._outcomes)
        for index in touched:
            state = self._set(index, status=ToolStatus.CHECKING, message="")
            self._set(index, status=compute_status(state))

        self.selection.clear()
        self._queue.clear()
        self._current = None
        self._total = 0
        self._completed = 0
        self._outcomes = {}
        self._summary = None
        self._transition(SessionState.MAIN)
        return []
