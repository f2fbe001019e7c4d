"""Tests for spel.cli module."""

from __future__ import annotations

import argparse
import json
from unittest.mock import patch

import pytest

from spel.cli import _parse_pairs, _parse_value, _register_subcommands, main
from spel.session import log_path


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestParseValue:
    @pytest.mark.parametrize(
        "text,expected",
        [("42", 42), ("true", True), ('["a"]', ["a"]), ("hello", "hello"), ("", "")],
    )
    def test_json_or_string(self, text, expected):
        assert _parse_value(text) == expected


class TestParsePairs:
    def test_pairs(self):
        assert _parse_pairs(["url=https://x/?a=b", "amount=300"], "parameter") == {
            "url": "https://x/?a=b",
            "amount": 300,
        }

    def test_none(self):
        assert _parse_pairs(None, "flag") == {}

    @pytest.mark.parametrize("pair", ["novalue", "=x"])
    def test_invalid(self, pair):
        with pytest.raises(ValueError, match="expected key=value"):
            _parse_pairs([pair], "flag")


class TestRegisterSubcommands:
    def test_all_expected_commands_registered(self):
        parser = argparse.ArgumentParser()
        subparsers = parser.add_subparsers(dest="command")
        _register_subcommands(subparsers)
        assert set(subparsers.choices) == {
            "start",
            "serve",
            "status",
            "stop",
            "send",
            "list",
            "devices",
            "logs",
        }


# ---------------------------------------------------------------------------
# main
# ---------------------------------------------------------------------------


class TestMainBasics:
    def test_no_command_exits_with_1(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1

    @patch("spel.cli.get_version", return_value="9.9.9")
    def test_version(self, _mock_version, capsys):
        main(["-v"])
        assert capsys.readouterr().out.strip() == "9.9.9"


class TestMainSend:
    @patch("spel.cli.daemon_running", return_value=True)
    @patch("spel.cli.send_command")
    def test_snapshot_response_prints_text(self, mock_send, _running, capsys, runtime_dir):
        mock_send.return_value = {
            "success": True,
            "data": {"snapshot": '- button "Go" [@e1]', "refs_count": 1},
        }
        main(["send", "snapshot", "-p", "interactive=true"])
        out = capsys.readouterr().out
        assert out.startswith('- button "Go" [@e1]\n')
        assert '"refs_count": 1' in out
        mock_send.assert_called_once_with(
            "default", "snapshot", {"interactive": True}, None, timeout=120.0
        )

    @patch("spel.cli.daemon_running", return_value=True)
    @patch("spel.cli.send_command")
    def test_params_json_and_flags(self, mock_send, _running, capsys, runtime_dir):
        mock_send.return_value = {"success": True, "data": {"url": "https://x/"}}
        main(
            [
                "-s",
                "work",
                "send",
                "navigate",
                "--json",
                '{"url": "https://x/"}',
                "-f",
                "proxy=http://p:1",
            ]
        )
        mock_send.assert_called_once_with(
            "work", "navigate", {"url": "https://x/"}, {"proxy": "http://p:1"}, timeout=120.0
        )
        assert json.loads(capsys.readouterr().out) == {"url": "https://x/"}

    @patch("spel.cli.daemon_running", return_value=True)
    @patch("spel.cli.send_command")
    def test_folded_error_exits_1(self, mock_send, _running, capsys, runtime_dir):
        mock_send.return_value = {"success": True, "data": {"error": "Unknown action: x"}}
        with pytest.raises(SystemExit) as exc_info:
            main(["send", "x"])
        assert exc_info.value.code == 1
        assert "Unknown action: x" in capsys.readouterr().out

    @patch("spel.cli.daemon_running", return_value=True)
    @patch("spel.cli.send_command")
    def test_transport_error_exits_1(self, mock_send, _running, capsys, runtime_dir):
        mock_send.return_value = {"success": False, "error": "Parse error: boom"}
        with pytest.raises(SystemExit) as exc_info:
            main(["send", "url"])
        assert exc_info.value.code == 1
        assert "Parse error: boom" in capsys.readouterr().err

    def test_bad_param_exits_2(self, capsys, runtime_dir):
        with pytest.raises(SystemExit) as exc_info:
            main(["send", "click", "-p", "selector"])
        assert exc_info.value.code == 2
        assert "expected key=value" in capsys.readouterr().err

    @patch("spel.cli.daemon_running", return_value=False)
    @patch("spel.cli.start_daemon")
    def test_no_start(self, mock_start, _running, capsys, runtime_dir):
        with pytest.raises(SystemExit) as exc_info:
            main(["send", "url", "--no-start"])
        assert exc_info.value.code == 1
        mock_start.assert_not_called()

    @patch("spel.cli.daemon_running", return_value=False)
    @patch("spel.cli.start_daemon", return_value=True)
    @patch("spel.cli.send_command", return_value={"success": True, "data": {"url": "u"}})
    def test_starts_daemon_on_demand(self, _send, mock_start, _running, runtime_dir):
        main(["send", "url", "--headed"])
        mock_start.assert_called_once_with("default", headless=False, timeout=15.0)


class TestMainLifecycle:
    @patch("spel.cli.start_daemon", return_value=True)
    @patch("spel.cli.read_pid", return_value=321)
    def test_start(self, _pid, mock_start, capsys, runtime_dir):
        main(["-s", "work", "start"])
        mock_start.assert_called_once_with("work", headless=True, timeout=15.0)
        assert "Session 'work' running (pid 321)" in capsys.readouterr().out

    @patch("spel.cli.start_daemon", return_value=False)
    def test_start_failure(self, _start, capsys, runtime_dir):
        with pytest.raises(SystemExit) as exc_info:
            main(["start"])
        assert exc_info.value.code == 1
        assert "Failed to start daemon" in capsys.readouterr().err

    @patch("spel.cli.daemon_running", return_value=False)
    def test_status_not_running(self, _running, capsys, runtime_dir):
        with pytest.raises(SystemExit) as exc_info:
            main(["status"])
        assert exc_info.value.code == 1
        assert "is not running" in capsys.readouterr().out

    @patch("spel.cli.daemon_running", return_value=True)
    @patch("spel.cli.read_pid", return_value=55)
    def test_status_running(self, _pid, _running, capsys, runtime_dir):
        main(["status"])
        out = capsys.readouterr().out
        assert "Session 'default' is running (pid 55)" in out
        assert "spel-default.sock" in out

    @patch("spel.cli.stop_daemon")
    def test_stop(self, mock_stop, capsys, runtime_dir):
        mock_stop.return_value = {"success": True, "data": {"stopped": True}}
        main(["stop"])
        assert "Session 'default' stopped" in capsys.readouterr().out

    @patch("spel.cli.stop_daemon")
    def test_stop_not_running(self, mock_stop, capsys, runtime_dir):
        mock_stop.return_value = {
            "success": True,
            "data": {"stopped": False, "reason": "not running"},
        }
        main(["stop"])
        assert "was not running" in capsys.readouterr().out


class TestMainInspection:
    @patch("spel.cli.list_sessions")
    def test_list(self, mock_list, capsys, runtime_dir):
        mock_list.return_value = [
            {"name": "default", "socket": "/tmp/spel-default.sock", "pid": 12, "alive": True},
            {"name": "old", "socket": "/tmp/spel-old.sock", "pid": None, "alive": False},
        ]
        main(["list"])
        out = capsys.readouterr().out
        assert "### Sessions" in out
        assert "- default:\n  - status: running\n  - pid: 12" in out
        assert "- old:\n  - status: stale\n  - pid: -" in out

    @patch("spel.cli.list_sessions", return_value=[])
    def test_list_empty(self, _list, capsys, runtime_dir):
        main(["list"])
        assert "No sessions found." in capsys.readouterr().out

    def test_devices(self, capsys):
        main(["devices"])
        out = capsys.readouterr().out
        assert "### Devices" in out
        assert "- iphone 14" in out
        assert "- mobile: 375x667" in out

    def test_logs_missing_file(self, capsys, runtime_dir):
        with pytest.raises(SystemExit) as exc_info:
            main(["logs"])
        assert exc_info.value.code == 1
        assert "No log file found" in capsys.readouterr().err

    def test_logs_lines_zero_reads_full_file(self, capsys, runtime_dir):
        log_path("default").write_text("line one\nline two\n", encoding="utf-8")
        main(["logs", "-n", "0"])
        assert capsys.readouterr().out == "line one\nline two\n"
