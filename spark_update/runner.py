"""
Session runner: the single cooperative control loop.

All state changes happen on the thread that calls run(). Probes, warm-up and
updates run in a thread pool and report back by posting immutable events to
the loop's queue; the splash timer and the animation tick do the same.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from .catalog import ToolDescriptor
from .detector import Detector
from .events import (
    Command,
    Event,
    ExitSession,
    LocalProbeResult,
    ProbeLocal,
    ProbeRemote,
    RemoteProbeResult,
    RunUpdate,
    SplashElapsed,
    Tick,
    UpdateFinished,
    WarmUp,
    WarmUpFinished,
)
from .executor import UpdateExecutor, UpdateOutcome
from .session import SessionController, SessionSnapshot
from .version import MISSING, UNKNOWN

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 16
DEFAULT_SPLASH_SECONDS = 2.0
DEFAULT_TICK_SECONDS = 0.15


class SessionRunner:
    """
    Drive a SessionController until it asks to exit.

    Args:
        controller: State machine to drive
        detector: Version detector used by probe tasks
        executor: Update executor used by update tasks
        max_workers: Thread pool size
        splash_seconds: Delay before the splash screen is dismissed (0 disables)
        tick_seconds: Animation frame interval (0 disables)
        on_snapshot: Called with a fresh snapshot after every processed event
    """

    def __init__(
        self,
        controller: SessionController,
        detector: Detector,
        executor: UpdateExecutor,
        max_workers: int = DEFAULT_MAX_WORKERS,
        splash_seconds: float = DEFAULT_SPLASH_SECONDS,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        on_snapshot: Callable[[SessionSnapshot], None] | None = None,
    ):
        self.controller = controller
        self.detector = detector
        self.executor = executor
        self.max_workers = max_workers
        self.splash_seconds = splash_seconds
        self.tick_seconds = tick_seconds
        self.on_snapshot = on_snapshot

        self.aborted = False
        self._events: queue.Queue[Event] = queue.Queue()
        self._stop = threading.Event()
        self._pool: ThreadPoolExecutor | None = None
        self._snapshot = controller.snapshot()

    @property
    def snapshot(self) -> SessionSnapshot:
        """Most recently published snapshot (safe to read from any thread)."""
        return self._snapshot

    def post(self, event: Event) -> None:
        """Queue an event for the loop. Thread-safe."""
        self._events.put(event)

    def run(self) -> int:
        """
        Run the session.

        Returns:
            Process exit code requested by the controller
        """
        self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="spark-task")
        timer = self._start_splash_timer()
        ticker = self._start_ticker()

        try:
            self._publish()
            exit_command = self._execute_all(self.controller.start())
            while exit_command is None:
                event = self._events.get()
                commands = self.controller.handle(event)
                self._publish()
                exit_command = self._execute_all(commands)
        finally:
            self._stop.set()
            if timer is not None:
                timer.cancel()
            if ticker is not None:
                ticker.join(timeout=1.0)
            # In-flight tasks are abandoned, never waited for
            self._pool.shutdown(wait=False, cancel_futures=True)

        self.aborted = exit_command.abort
        logger.info(f"Session finished with exit code {exit_command.code}")
        return exit_command.code

    def _publish(self) -> None:
        self._snapshot = self.controller.snapshot()
        if self.on_snapshot is not None:
            self.on_snapshot(self._snapshot)

    def _start_splash_timer(self) -> threading.Timer | None:
        if self.splash_seconds <= 0:
            self.post(SplashElapsed())
            return None
        timer = threading.Timer(self.splash_seconds, self.post, args=(SplashElapsed(),))
        timer.daemon = True
        timer.start()
        return timer

    def _start_ticker(self) -> threading.Thread | None:
        if self.tick_seconds <= 0:
            return None

        def tick():
            while not self._stop.wait(self.tick_seconds):
                self.post(Tick())

        thread = threading.Thread(target=tick, name="spark-tick", daemon=True)
        thread.start()
        return thread

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _execute_all(self, commands: list[Command]) -> ExitSession | None:
        for command in commands:
            if isinstance(command, ExitSession):
                return command
            self._execute(command)
        return None

    def _execute(self, command: Command) -> None:
        if isinstance(command, ProbeLocal):
            self._pool.submit(self._probe_local, command.index, command.tool)
        elif isinstance(command, WarmUp):
            self._pool.submit(self._warm_up)
        elif isinstance(command, ProbeRemote):
            self._pool.submit(self._probe_remote, command.index, command.tool, command.local_version)
        elif isinstance(command, RunUpdate):
            self._pool.submit(self._run_update, command.index, command.tool)
        else:
            raise TypeError(f"Unknown command: {type(command).__name__}")

    # ------------------------------------------------------------------
    # Tasks (run on pool threads; each posts exactly one event)
    # ------------------------------------------------------------------

    def _probe_local(self, index: int, tool: ToolDescriptor) -> None:
        try:
            version = self.detector.local_version(tool)
        except Exception as e:
            logger.warning(f"Local probe for {tool.name} raised: {e}", exc_info=True)
            version = MISSING
        self.post(LocalProbeResult(index, version))

    def _warm_up(self) -> None:
        try:
            self.detector.warm_up()
        except Exception as e:
            logger.warning(f"Cache warm-up raised: {e}", exc_info=True)
        self.post(WarmUpFinished())

    def _probe_remote(self, index: int, tool: ToolDescriptor, local_version: str) -> None:
        try:
            version = self.detector.remote_version(tool, local_version)
        except Exception as e:
            logger.warning(f"Remote probe for {tool.name} raised: {e}", exc_info=True)
            version = UNKNOWN
        self.post(RemoteProbeResult(index, version))

    def _run_update(self, index: int, tool: ToolDescriptor) -> None:
        try:
            outcome = self.executor.execute(tool)
        except Exception as e:
            logger.exception(f"Update task for {tool.name} raised")
            outcome = UpdateOutcome(
                tool_id=tool.id,
                success=False,
                message=str(e) or type(e).__name__,
                method=tool.method.value,
            )
        self.post(UpdateFinished(index, outcome))
