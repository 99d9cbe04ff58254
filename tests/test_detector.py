"""
Tests for local and remote version detection (spark_update/detector.py).
"""

import json
import plistlib
import subprocess
from unittest.mock import patch

import pytest

from spark_update.catalog import ToolDescriptor, UpdateMethod
from spark_update.detector import Detector
from spark_update.version import CHECKING, MISSING, UNKNOWN


def make_tool(binary="jq", package=None, method=UpdateMethod.BREW_PKG, name=None):
    return ToolDescriptor(
        id="S-01",
        name=name or binary,
        binary=binary,
        package=package or binary,
        category="UTILS",
        method=method,
    )


def completed(args, stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)


class FakeRun:
    """subprocess.run replacement answering by command prefix."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        for prefix, response in self.responses.items():
            if tuple(args[:len(prefix)]) == prefix:
                if isinstance(response, Exception):
                    raise response
                return completed(args, *response) if isinstance(response, tuple) else completed(args, response)
        return completed(args, "", 1)


BREW_OUTDATED = json.dumps({
    "formulae": [{"name": "jq", "installed_versions": ["1.6"], "current_version": "1.7.1"}],
    "casks": [{"name": "ghostty", "current_version": "1.1.0"}],
})

NPM_OUTDATED = json.dumps({
    "@anthropic-ai/claude-code": {"current": "1.0.0", "latest": "1.2.0"},
    "broken": "not a mapping",
})


class TestLocalVersion:
    """Tests for local probes."""

    def test_version_from_path(self):
        """Test a tool found on PATH."""
        fake = FakeRun({("jq", "--version"): "jq-1.7.1"})
        with patch("spark_update.detector.shutil.which", return_value="/usr/bin/jq"), \
                patch("spark_update.detector.subprocess.run", fake):
            assert Detector().local_version(make_tool()) == "1.7.1"

    def test_error_output_tries_next_flag(self):
        """Test an error banner moves on to the next version flag."""
        fake = FakeRun({
            ("kubectl", "--version"): "error: unknown flag: --version",
            ("kubectl", "version"): "Client Version: v1.29.0",
        })
        with patch("spark_update.detector.shutil.which", return_value="/usr/bin/kubectl"), \
                patch("spark_update.detector.subprocess.run", fake):
            assert Detector().local_version(make_tool("kubectl")) == "1.29.0"

    def test_version_on_stderr(self):
        """Test tools that print their version to stderr."""
        fake = FakeRun({("java", "--version"): ("", 0, "openjdk 21.0.1 2023-10-17")})
        with patch("spark_update.detector.shutil.which", return_value="/usr/bin/java"), \
                patch("spark_update.detector.subprocess.run", fake):
            assert Detector().local_version(make_tool("java")) == "21.0.1"

    def test_missing_binary(self):
        """Test a binary absent from PATH and package listings."""
        fake = FakeRun({})
        tool = make_tool("spark-test-no-such-tool")
        with patch("spark_update.detector.shutil.which", return_value=None), \
                patch("spark_update.detector.subprocess.run", fake):
            assert Detector().local_version(tool) == MISSING
        assert ["brew", "list", "--versions", "spark-test-no-such-tool"] in fake.calls

    def test_timeout_is_missing(self):
        """Test a hanging probe resolves to MISSING."""
        fake = FakeRun({(): subprocess.TimeoutExpired("jq", 5)})
        with patch("spark_update.detector.shutil.which", return_value="/usr/bin/jq"), \
                patch("spark_update.detector.subprocess.run", fake):
            assert Detector(probe_timeout=1).local_version(make_tool("spark-test-hangs")) == MISSING

    def test_brew_list_fallback(self):
        """Test brew listings when the binary is not on PATH."""
        fake = FakeRun({("brew", "list", "--versions"): "kubernetes-cli 1.28.2"})
        tool = make_tool("spark-test-kubectl", package="kubernetes-cli")
        with patch("spark_update.detector.shutil.which", return_value=None), \
                patch("spark_update.detector.subprocess.run", fake):
            assert Detector().local_version(tool) == "1.28.2"

    def test_npm_list_fallback(self):
        """Test npm global listings for npm packages."""
        listing = json.dumps({"dependencies": {"@acme/cli": {"version": "3.4.5"}}})
        fake = FakeRun({("npm", "list"): listing})
        tool = make_tool("spark-test-acme", package="@acme/cli", method=UpdateMethod.NPM_PKG)
        with patch("spark_update.detector.shutil.which", return_value=None), \
                patch("spark_update.detector.subprocess.run", fake):
            assert Detector().local_version(tool) == "3.4.5"

    def test_mac_app_plist(self, tmp_path):
        """Test app bundle versions come from Info.plist."""
        contents = tmp_path / "Zed.app" / "Contents"
        contents.mkdir(parents=True)
        with open(contents / "Info.plist", "wb") as f:
            plistlib.dump({"CFBundleShortVersionString": "0.170.4"}, f)

        tool = make_tool("zed", method=UpdateMethod.MAC_APP)
        with patch("spark_update.detector.APPLICATIONS_DIR", str(tmp_path)):
            assert Detector().local_version(tool) == "0.170.4"

    def test_mac_app_not_installed(self, tmp_path):
        """Test a missing bundle."""
        tool = make_tool("zed", method=UpdateMethod.MAC_APP)
        with patch("spark_update.detector.APPLICATIONS_DIR", str(tmp_path)):
            assert Detector().local_version(tool) == MISSING

    def test_omz_revision(self, tmp_path, monkeypatch):
        """Test Oh My Zsh reports its git revision."""
        monkeypatch.setenv("ZSH", str(tmp_path))
        fake = FakeRun({("git",): "a1b2c3d\n"})
        with patch("spark_update.detector.subprocess.run", fake):
            assert Detector().local_version(make_tool("omz", method=UpdateMethod.OMZ)) == "a1b2c3d"

    def test_omz_missing(self, tmp_path, monkeypatch):
        """Test Oh My Zsh absent."""
        monkeypatch.setenv("ZSH", str(tmp_path / "nope"))
        assert Detector().local_version(make_tool("omz", method=UpdateMethod.OMZ)) == MISSING


class TestWarmUp:
    """Tests for the outdated cache."""

    def _fake(self, brew=BREW_OUTDATED, npm=NPM_OUTDATED):
        return FakeRun({
            ("brew", "outdated"): (brew, 1),
            ("npm", "outdated"): (npm, 1),
        })

    def test_warm_up_merges_backends(self):
        """Test brew formulae, casks and npm packages are cached."""
        with patch("spark_update.detector.subprocess.run", self._fake()):
            detector = Detector()
            cache = detector.warm_up()

        assert cache == {
            "jq": "1.7.1",
            "ghostty": "1.1.0",
            "@anthropic-ai/claude-code": "1.2.0",
        }
        assert detector.is_warm

    def test_warm_up_idempotent(self):
        """Test only the first call runs the listings."""
        fake = self._fake()
        with patch("spark_update.detector.subprocess.run", fake):
            detector = Detector()
            detector.warm_up()
            detector.warm_up()
        assert len(fake.calls) == 2

    def test_one_backend_failing(self):
        """Test a failing backend leaves the other's results."""
        detector = Detector()
        with patch("spark_update.detector.subprocess.run", self._fake()), \
                patch.object(detector, "_fetch_brew_outdated", side_effect=RuntimeError("boom")):
            cache = detector.warm_up()
        assert cache == {"@anthropic-ai/claude-code": "1.2.0"}
        assert detector.is_warm

    def test_unparseable_output(self):
        """Test garbage output yields an empty but warm cache."""
        with patch("spark_update.detector.subprocess.run", self._fake(brew="<html>", npm="")):
            detector = Detector()
            assert detector.warm_up() == {}
        assert detector.is_warm

    def test_cache_copy_is_isolated(self):
        """Test callers cannot mutate the shared cache."""
        with patch("spark_update.detector.subprocess.run", self._fake()):
            detector = Detector()
            detector.warm_up()
        detector.outdated_cache()["jq"] = "9.9.9"
        assert detector.outdated_cache()["jq"] == "1.7.1"


class TestRemoteVersion:
    """Tests for remote version lookups."""

    @pytest.fixture
    def warm_detector(self):
        fake = FakeRun({("brew", "outdated"): (BREW_OUTDATED, 1), ("npm", "outdated"): ("{}", 0)})
        with patch("spark_update.detector.subprocess.run", fake):
            detector = Detector()
            detector.warm_up()
        return detector

    def test_missing_tool_is_unknown(self, warm_detector):
        """Test missing tools have no remote version."""
        assert warm_detector.remote_version(make_tool(), MISSING) == UNKNOWN

    def test_checking_before_warm_up(self):
        """Test the transient state before the cache exists."""
        assert Detector().remote_version(make_tool(), "1.6") == CHECKING

    def test_outdated_package(self, warm_detector):
        """Test a cached latest version."""
        assert warm_detector.remote_version(make_tool(), "1.6") == "1.7.1"

    def test_up_to_date_package(self, warm_detector):
        """Test a package not listed as outdated reports its local version."""
        assert warm_detector.remote_version(make_tool("rg", package="ripgrep"), "14.1.0") == "14.1.0"


class TestStrategyTable:
    """Tests for strategy registration."""

    def test_every_method_has_a_local_strategy(self):
        """Test the local probe table covers every update method."""
        assert set(Detector()._local_strategies) == set(UpdateMethod)

    def test_local_probe_idempotent(self):
        """Test two probes against an unchanged environment agree."""
        fake = FakeRun({("jq", "--version"): "jq-1.7.1"})
        detector = Detector()
        with patch("spark_update.detector.shutil.which", return_value="/usr/bin/jq"), \
                patch("spark_update.detector.subprocess.run", fake):
            assert detector.local_version(make_tool()) == detector.local_version(make_tool())
