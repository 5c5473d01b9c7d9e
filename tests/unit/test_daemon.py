"""Tests for routing daemon supervision."""

import subprocess
from unittest.mock import MagicMock, patch

from bastion_registry.common.config import BastionSettings
from bastion_registry.routing.daemon import PiperDaemon


def _fake_process(pid=1234, running=True):
    proc = MagicMock()
    proc.pid = pid
    proc.poll.return_value = None if running else 0
    return proc


class TestPiperCommand:
    def test_command_from_settings(self):
        settings = BastionSettings(
            api_key="k", config_path="/data/sshpiper.yaml", piper_listen_port=2223,
        )
        cmd = settings.piper_command
        assert cmd[0] == "/usr/local/bin/sshpiperd"
        assert cmd[cmd.index("-p") + 1] == "2223"
        assert cmd[-3:] == ["--config", "/data/sshpiper.yaml", "--no-check-perm"]


class TestPiperDaemon:
    def test_start_spawns_once(self):
        with patch("subprocess.Popen", return_value=_fake_process()) as popen:
            daemon = PiperDaemon(["sshpiperd", "yaml"])
            daemon.start()
            daemon.start()
        popen.assert_called_once_with(["sshpiperd", "yaml"])
        assert daemon.pid == 1234

    def test_restart_terminates_then_spawns(self):
        first, second = _fake_process(1), _fake_process(2)
        with patch("subprocess.Popen", side_effect=[first, second]):
            daemon = PiperDaemon(["sshpiperd"])
            daemon.start()
            daemon.restart()
        first.terminate.assert_called_once()
        first.wait.assert_called_once()
        assert daemon.pid == 2

    def test_kill_after_timeout(self):
        proc = _fake_process()
        proc.wait.side_effect = [subprocess.TimeoutExpired("sshpiperd", 1), 0]
        with patch("subprocess.Popen", return_value=proc):
            daemon = PiperDaemon(["sshpiperd"], stop_timeout=1)
            daemon.start()
            daemon.stop()
        proc.kill.assert_called_once()
        assert daemon.pid is None

    def test_stop_skips_exited_process(self):
        proc = _fake_process(running=False)
        with patch("subprocess.Popen", return_value=proc):
            daemon = PiperDaemon(["sshpiperd"])
            daemon.start()
            daemon.stop()
        proc.terminate.assert_not_called()

    def test_reload_restarts_in_background(self):
        daemon = PiperDaemon(["sshpiperd"])
        with patch("threading.Thread") as thread_cls:
            daemon.reload()
        thread_cls.assert_called_once()
        assert thread_cls.call_args.kwargs["daemon"] is True
        thread_cls.return_value.start.assert_called_once()

    def test_restart_failure_is_logged(self):
        with patch("subprocess.Popen", side_effect=FileNotFoundError("sshpiperd")):
            daemon = PiperDaemon(["sshpiperd"])
            daemon._restart_logged()
        assert daemon.pid is None
