"""
Tests for the session control loop (spark_update/runner.py).

Detector and executor are replaced with in-memory fakes; the scripted
on_snapshot callback plays the user.
"""

import threading

import pytest

from spark_update.catalog import ToolDescriptor, UpdateMethod
from spark_update.events import Commit, Dismiss, Quit, ToggleAll
from spark_update.executor import UpdateOutcome
from spark_update.runner import SessionRunner
from spark_update.session import SessionController, SessionState, ToolStatus
from spark_update.version import MISSING, PLACEHOLDER, UNKNOWN

WATCHDOG_SECONDS = 10


def make_tool(index, binary, category="UTILS"):
    return ToolDescriptor(
        id=f"S-{index + 1:02d}", name=binary.title(), binary=binary, package=binary,
        category=category, method=UpdateMethod.BREW_PKG,
    )


class FakeDetector:
    def __init__(self, local, remote=None, broken_local=(), broken_remote=(), broken_warm_up=False):
        self.local = local
        self.remote = remote or {}
        self.broken_local = set(broken_local)
        self.broken_remote = set(broken_remote)
        self.broken_warm_up = broken_warm_up
        self.warm_up_calls = 0

    def local_version(self, tool):
        if tool.binary in self.broken_local:
            raise RuntimeError("probe exploded")
        return self.local.get(tool.binary, MISSING)

    def warm_up(self):
        self.warm_up_calls += 1
        if self.broken_warm_up:
            raise RuntimeError("warm-up exploded")
        return {}

    def remote_version(self, tool, local_version):
        if tool.binary in self.broken_remote:
            raise RuntimeError("lookup exploded")
        if local_version == MISSING:
            return UNKNOWN
        return self.remote.get(tool.binary, local_version)


class FakeExecutor:
    def __init__(self, raises=(), gate=None):
        self.raises = set(raises)
        self.gate = gate
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def execute(self, tool):
        with self._lock:
            self.calls.append(tool.binary)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                self.gate.wait(WATCHDOG_SECONDS)
            if tool.binary in self.raises:
                raise RuntimeError("executor exploded")
            return UpdateOutcome(tool_id=tool.id, success=True, version_hint="9.9")
        finally:
            with self._lock:
                self.active -= 1


def settled(snapshot):
    return (
        snapshot.state == SessionState.MAIN
        and not snapshot.scanning
        and all(s.remote_version != PLACEHOLDER for s in snapshot.tools)
    )


class Script:
    """Post events when the published snapshot satisfies each step's predicate, in order."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.runner = None
        self.snapshots = []

    def __call__(self, snapshot):
        self.snapshots.append(snapshot)
        if self.steps and self.steps[0][0](snapshot):
            _, events = self.steps.pop(0)
            for event in events:
                self.runner.post(event)


def run_session(tools, detector, executor, script, **kwargs):
    runner = SessionRunner(
        SessionController(tools),
        detector,
        executor,
        max_workers=4,
        splash_seconds=kwargs.pop("splash_seconds", 0),
        tick_seconds=kwargs.pop("tick_seconds", 0),
        on_snapshot=script,
        **kwargs,
    )
    script.runner = runner
    watchdog = threading.Timer(WATCHDOG_SECONDS, runner.post, args=(Quit(force=True),))
    watchdog.daemon = True
    watchdog.start()
    try:
        code = runner.run()
    finally:
        watchdog.cancel()
    return runner, code


@pytest.fixture
def tools():
    return [make_tool(0, "alpha"), make_tool(1, "beta"), make_tool(2, "gamma")]


class TestProbing:
    """Tests for the probing phase."""

    def test_probes_then_quit(self, tools):
        """Test every tool settles and a quit ends the session cleanly."""
        detector = FakeDetector({"alpha": "1.0", "beta": "1.0"}, remote={"alpha": "2.0"})
        script = Script((settled, [Quit()]))

        runner, code = run_session(tools, detector, FakeExecutor(), script)

        assert code == 0
        assert not runner.aborted
        statuses = [s.status for s in runner.snapshot.tools]
        assert statuses == [ToolStatus.OUTDATED, ToolStatus.INSTALLED, ToolStatus.MISSING]
        assert detector.warm_up_calls == 1

    def test_task_exceptions_become_results(self, tools):
        """Test raising probes resolve to sentinel values instead of stalling."""
        detector = FakeDetector(
            {"alpha": "1.0", "beta": "1.0", "gamma": "1.0"},
            broken_local={"alpha"},
            broken_remote={"beta"},
            broken_warm_up=True,
        )
        script = Script((settled, [Quit()]))

        runner, code = run_session(tools, detector, FakeExecutor(), script)

        assert code == 0
        alpha, beta, gamma = runner.snapshot.tools
        assert alpha.local_version == MISSING
        assert beta.remote_version == UNKNOWN
        assert gamma.status == ToolStatus.INSTALLED

    def test_splash_timer(self, tools):
        """Test the splash screen is shown first and then times out."""
        script = Script((settled, [Quit()]))

        run_session(tools, FakeDetector({}), FakeExecutor(), script, splash_seconds=0.05)

        assert script.snapshots[0].state == SessionState.SPLASH
        assert script.snapshots[-1].state == SessionState.MAIN

    def test_ticks_advance_frames(self, tools):
        """Test the animation ticker."""
        script = Script((lambda s: s.frame >= 2, [Quit()]))

        runner, code = run_session(tools, FakeDetector({}), FakeExecutor(), script, tick_seconds=0.05)

        assert code == 0
        assert runner.snapshot.frame >= 2


class TestUpdates:
    """Tests for the update phase."""

    def test_updates_run_one_at_a_time(self, tools):
        """Test the full cycle through to the summary and back."""
        detector = FakeDetector({"alpha": "1.0", "beta": "1.0", "gamma": "1.0"}, remote={"alpha": "2.0"})
        executor = FakeExecutor(raises={"gamma"})
        summaries = []

        def at_summary(snapshot):
            if snapshot.state == SessionState.SUMMARY:
                summaries.append(snapshot.summary)
                return True
            return False

        script = Script(
            (settled, [ToggleAll(), Commit()]),
            (at_summary, [Dismiss()]),
            (lambda s: s.state == SessionState.MAIN, [Quit()]),
        )

        runner, code = run_session(tools, detector, executor, script)

        assert code == 0
        assert executor.calls == ["alpha", "beta", "gamma"]
        assert executor.max_active == 1

        summary = summaries[0]
        assert [e.name for e in summary.successes] == ["Alpha", "Beta"]
        assert summary.failures[0].message == "executor exploded"
        assert runner.snapshot.selection == frozenset()

    def test_hard_quit_abandons_update(self, tools):
        """Test Ctrl+C during an update exits immediately with 130."""
        gate = threading.Event()
        executor = FakeExecutor(gate=gate)
        detector = FakeDetector({"alpha": "1.0", "beta": "1.0", "gamma": "1.0"})
        script = Script(
            (settled, [ToggleAll(), Commit()]),
            (lambda s: s.state == SessionState.UPDATING, [Quit(), Quit(force=True)]),
        )

        try:
            runner, code = run_session(tools, detector, executor, script)
        finally:
            gate.set()

        assert code == 130
        assert runner.aborted
        assert runner.snapshot.state == SessionState.UPDATING


class TestCommands:
    """Tests for command dispatch."""

    def test_unknown_command(self, tools):
        """Test an unsupported command type."""
        runner = SessionRunner(SessionController(tools), FakeDetector({}), FakeExecutor())
        with pytest.raises(TypeError):
            runner._execute(object())

    def test_initial_snapshot(self, tools):
        """Test a snapshot is available before the loop starts."""
        runner = SessionRunner(SessionController(tools), FakeDetector({}), FakeExecutor())
        assert runner.snapshot.state == SessionState.SPLASH
