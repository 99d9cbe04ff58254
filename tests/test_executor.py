"""
Tests for update execution (spark_update/executor.py).
"""

import subprocess
import time
from unittest.mock import MagicMock, patch

import pytest

from spark_update.catalog import ToolDescriptor, UpdateMethod
from spark_update.executor import (
    LATEST_HINT,
    MANUAL_MESSAGE,
    NOT_MANAGED_MESSAGE,
    UnsupportedMethodError,
    UpdateExecutor,
    UpdateOutcome,
)
from spark_update.version import MISSING


def make_tool(method=UpdateMethod.BREW_PKG, package="jq", binary="jq"):
    return ToolDescriptor(
        id="S-07", name=binary, binary=binary, package=package, category="UTILS", method=method,
    )


class Recorder:
    """subprocess.run replacement returning queued (exit_code, output) pairs."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        exit_code, output = self.results.pop(0) if self.results else (0, "")
        return subprocess.CompletedProcess(args, exit_code, stdout=output)


class TestUpdateOutcome:
    """Tests for the outcome invariants."""

    def test_success_needs_hint(self):
        """Test a success without a version hint is rejected."""
        with pytest.raises(ValueError):
            UpdateOutcome(tool_id="S-01", success=True)

    def test_failure_needs_message(self):
        """Test a failure without a message is rejected."""
        with pytest.raises(ValueError):
            UpdateOutcome(tool_id="S-01", success=False)

    def test_to_dict(self):
        """Test serialization."""
        data = UpdateOutcome(tool_id="S-01", success=True, version_hint="1.0").to_dict()
        assert data["version_hint"] == "1.0"
        assert data["success"] is True


class TestStrategies:
    """Tests for per-method update strategies."""

    def test_brew_upgrade(self):
        """Test brew packages are upgraded by package name."""
        recorder = Recorder((0, "==> Upgrading jq"))
        with patch("spark_update.executor.subprocess.run", recorder):
            outcome = UpdateExecutor().execute(make_tool(package="jq"))

        assert outcome.success
        assert outcome.version_hint == LATEST_HINT
        assert recorder.calls == [["brew", "upgrade", "jq"]]

    def test_brew_failure_message(self):
        """Test failure output becomes the message."""
        recorder = Recorder((1, "Error: jq not installed"))
        with patch("spark_update.executor.subprocess.run", recorder):
            outcome = UpdateExecutor().execute(make_tool())

        assert not outcome.success
        assert "brew upgrade failed" in outcome.message
        assert "jq not installed" in outcome.message
        assert not outcome.manual

    def test_npm_eexist_retries_once_with_force(self):
        """Test EEXIST triggers exactly one forced retry."""
        recorder = Recorder((1, "npm ERR! code EEXIST"), (0, "added 1 package"))
        tool = make_tool(method=UpdateMethod.NPM_PKG, package="@acme/cli")
        with patch("spark_update.executor.subprocess.run", recorder):
            outcome = UpdateExecutor().execute(tool)

        assert outcome.success
        assert recorder.calls == [
            ["npm", "install", "-g", "@acme/cli@latest"],
            ["npm", "install", "-g", "@acme/cli@latest", "--force"],
        ]

    def test_npm_eexist_forced_retry_fails(self):
        """Test a second failure is reported without further retries."""
        recorder = Recorder((1, "EEXIST"), (1, "EEXIST again"), (0, ""))
        tool = make_tool(method=UpdateMethod.NPM_SYS, package="npm")
        with patch("spark_update.executor.subprocess.run", recorder):
            outcome = UpdateExecutor().execute(tool)

        assert not outcome.success
        assert "--force" in outcome.message
        assert len(recorder.calls) == 2

    def test_npm_other_error_not_retried(self):
        """Test non-EEXIST errors fail immediately."""
        recorder = Recorder((1, "npm ERR! 404"))
        tool = make_tool(method=UpdateMethod.CLAUDE, package="@anthropic-ai/claude-code")
        with patch("spark_update.executor.subprocess.run", recorder):
            outcome = UpdateExecutor().execute(tool)

        assert not outcome.success
        assert len(recorder.calls) == 1

    def test_mac_app_not_cask_managed(self):
        """Test apps not installed through brew casks need a manual update."""
        recorder = Recorder((1, "Error: No such keg"))
        tool = make_tool(method=UpdateMethod.MAC_APP, package="zed", binary="zed")
        with patch("spark_update.executor.subprocess.run", recorder):
            outcome = UpdateExecutor().execute(tool)

        assert not outcome.success
        assert outcome.message == NOT_MANAGED_MESSAGE
        assert outcome.manual
        assert recorder.calls == [["brew", "list", "--cask", "zed"]]

    def test_mac_app_cask_upgrade(self):
        """Test cask-managed apps are upgraded."""
        recorder = Recorder((0, "zed"), (0, ""))
        tool = make_tool(method=UpdateMethod.MAC_APP, package="zed", binary="zed")
        with patch("spark_update.executor.subprocess.run", recorder):
            outcome = UpdateExecutor().execute(tool)

        assert outcome.success
        assert recorder.calls[1] == ["brew", "upgrade", "--cask", "zed"]

    @pytest.mark.parametrize("method", [UpdateMethod.MANUAL, UpdateMethod.DROID, UpdateMethod.OPENCODE])
    def test_manual_methods_spawn_nothing(self, method):
        """Test manual tools fail with guidance and run no process."""
        recorder = Recorder()
        with patch("spark_update.executor.subprocess.run", recorder):
            outcome = UpdateExecutor().execute(make_tool(method=method))

        assert not outcome.success
        assert outcome.message == MANUAL_MESSAGE
        assert outcome.manual
        assert recorder.calls == []

    def test_omz_runs_upgrade_script(self):
        """Test Oh My Zsh uses its own upgrade script."""
        recorder = Recorder((0, "Hooray!"))
        with patch("spark_update.executor.subprocess.run", recorder):
            outcome = UpdateExecutor().execute(make_tool(method=UpdateMethod.OMZ, binary="omz"))

        assert outcome.success
        assert recorder.calls[0][:2] == ["sh", "-c"]
        assert "upgrade.sh" in recorder.calls[0][2]

    def test_unsupported_method(self):
        """Test a method without a strategy."""
        executor = UpdateExecutor()
        del executor._strategies[UpdateMethod.TOAD]
        with pytest.raises(UnsupportedMethodError):
            executor.execute(make_tool(method=UpdateMethod.TOAD))


class TestVersionHint:
    """Tests for post-update version hints."""

    def test_hint_from_detector(self):
        """Test the detector's re-probe becomes the hint."""
        detector = MagicMock()
        detector.local_version.return_value = "1.7.1"
        with patch("spark_update.executor.subprocess.run", Recorder((0, ""))):
            outcome = UpdateExecutor(detector=detector).execute(make_tool())
        assert outcome.version_hint == "1.7.1"

    def test_unresolved_probe_falls_back(self):
        """Test an unreadable re-probe gives the generic hint."""
        detector = MagicMock()
        detector.local_version.return_value = MISSING
        with patch("spark_update.executor.subprocess.run", Recorder((0, ""))):
            outcome = UpdateExecutor(detector=detector).execute(make_tool())
        assert outcome.version_hint == LATEST_HINT

    def test_presence_marker_is_not_a_version(self):
        """Test an app seen on disk without a readable version gives the generic hint."""
        detector = MagicMock()
        detector.local_version.return_value = "Detected"
        recorder = Recorder((0, "zed"), (0, ""))
        tool = make_tool(method=UpdateMethod.MAC_APP, package="zed", binary="zed")
        with patch("spark_update.executor.subprocess.run", recorder):
            outcome = UpdateExecutor(detector=detector).execute(tool)
        assert outcome.version_hint == LATEST_HINT


class TestRunCommand:
    """Tests for command execution."""

    def test_timeout(self):
        """Test a command hitting its deadline."""
        error = subprocess.TimeoutExpired(["brew"], 1, output=b"partial")
        with patch("spark_update.executor.subprocess.run", side_effect=error):
            result = UpdateExecutor().run_command(["brew", "upgrade"], time.time() + 1)
        assert result.timed_out
        assert result.output == "partial"
        assert not result.ok

    def test_expired_deadline_runs_nothing(self):
        """Test no process is started after the deadline."""
        with patch("spark_update.executor.subprocess.run") as mock_run:
            result = UpdateExecutor().run_command(["brew", "upgrade"], time.time() - 1)
        assert result.timed_out
        mock_run.assert_not_called()

    def test_command_not_found(self):
        """Test a missing executable."""
        with patch("spark_update.executor.subprocess.run", side_effect=FileNotFoundError()):
            result = UpdateExecutor().run_command(["nope"], time.time() + 10)
        assert result.exit_code == 127

    def test_timeout_reported_in_outcome(self):
        """Test the outcome message for a timed-out update."""
        error = subprocess.TimeoutExpired(["brew"], 1)
        with patch("spark_update.executor.subprocess.run", side_effect=error):
            outcome = UpdateExecutor(timeout=30).execute(make_tool())
        assert not outcome.success
        assert "timed out after 30s" in outcome.message


class TestStrategyTable:
    """Tests for strategy registration."""

    def test_every_method_has_an_update_strategy(self):
        """Test the update table covers every update method."""
        assert set(UpdateExecutor()._strategies) == set(UpdateMethod)

    @pytest.mark.parametrize("method", list(UpdateMethod))
    def test_never_a_silent_noop(self, method):
        """Test every method yields a hint on success or a message on failure."""
        with patch("spark_update.executor.subprocess.run", Recorder()):
            outcome = UpdateExecutor().execute(make_tool(method=method))
        if outcome.success:
            assert outcome.version_hint
        else:
            assert outcome.message
