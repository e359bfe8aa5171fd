"""Tests for the local process launcher."""

from __future__ import annotations

import signal
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from pipeside.launcher import LaunchedProcess, LocalLauncher, ProcessLauncher
from pipeside.types import ProcessLaunchRequest


class TestLaunch:
    def test_is_a_process_launcher(self):
        assert isinstance(LocalLauncher(), ProcessLauncher)

    def test_passes_request_to_popen(self, log):
        request = ProcessLaunchRequest(["make", "all"], env=["CI=true"], pwd="/ws")
        with patch("pipeside.launcher.subprocess.Popen") as popen:
            LocalLauncher(log).launch(request)
        popen.assert_called_once_with(
            ["make", "all"],
            env={"CI": "true"},
            cwd="/ws",
            stdin=subprocess.DEVNULL,
            stdout=None,
            stderr=None,
        )

    def test_empty_env_inherits(self, log):
        with patch("pipeside.launcher.subprocess.Popen") as popen:
            LocalLauncher(log).launch(ProcessLaunchRequest(["true"]))
        assert popen.call_args.kwargs["env"] is None

    def test_prints_masked_command(self, log):
        request = ProcessLaunchRequest(["login", "-p", "s3cret"], masks=[False, False, True])
        with patch("pipeside.launcher.subprocess.Popen"):
            LocalLauncher(log).launch(request)
        log.info.assert_called_once_with("$ login -p ********")

    def test_quiet_prints_nothing(self, log):
        with patch("pipeside.launcher.subprocess.Popen"):
            LocalLauncher(log).launch(ProcessLaunchRequest(["ps"], quiet=True))
        log.info.assert_not_called()


class TestLaunchedProcess:
    def test_join_captures_output(self):
        proc = MagicMock()
        proc.communicate.return_value = (b"  PID COMMAND\n", None)
        proc.returncode = 0
        launched = LaunchedProcess(proc)
        assert launched.join(timeout=5) == 0
        assert launched.output == b"  PID COMMAND\n"
        proc.communicate.assert_called_once_with(timeout=5)

    def test_join_timeout_kills_and_raises(self):
        proc = MagicMock()
        proc.communicate.side_effect = [subprocess.TimeoutExpired("docker", 5), (None, None)]
        with pytest.raises(subprocess.TimeoutExpired):
            LaunchedProcess(proc).join(timeout=5)
        proc.kill.assert_called_once()


class TestKill:
    def test_kills_processes_with_matching_environment(self, log):
        with (
            patch("pipeside.launcher._matching_pids", return_value=[101, 102]) as matching,
            patch("pipeside.launcher.os.kill") as kill,
        ):
            LocalLauncher(log).kill({"COOKIE": "abc"})
        matching.assert_called_once_with({"COOKIE=abc"})
        assert [c.args for c in kill.call_args_list] == [
            (101, signal.SIGTERM),
            (102, signal.SIGTERM),
        ]

    def test_vanished_process_is_ignored(self, log):
        with (
            patch("pipeside.launcher._matching_pids", return_value=[101]),
            patch("pipeside.launcher.os.kill", side_effect=ProcessLookupError),
        ):
            LocalLauncher(log).kill({"COOKIE": "abc"})

    def test_empty_filter_kills_nothing(self, log):
        with patch("pipeside.launcher.os.kill") as kill:
            LocalLauncher(log).kill({})
        kill.assert_not_called()


class TestPrintableCommand:
    def test_without_masks(self):
        assert ProcessLaunchRequest(["echo", "hi"]).printable_command() == "echo hi"

    def test_short_mask_list(self):
        request = ProcessLaunchRequest(["a", "b", "c"], masks=[True])
        assert request.printable_command() == "******** b c"
