"""Tests for error handling, structured logging and web verification."""

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

import requests

from aiserver_cli.errors import (
    CommandError,
    ErrorHandler,
    PrivilegeError,
    ProvisionError,
    handle_exception,
    handle_keyboard_interrupt,
    require_root_privileges,
)
from aiserver_cli.provision_logging import ProvisionLogger
from aiserver_cli.verify import verify_web_access


class TestErrorHandler(unittest.TestCase):
    """Test cases for the ErrorHandler class."""

    def setUp(self) -> None:
        self.error_handler = ErrorHandler()

    def test_identify_error_types(self) -> None:
        cases = {
            "E: Could not get lock /var/lib/dpkg/lock-frontend": "apt_lock",
            "Temporary failure resolving 'deb.debian.org'": "network",
            "Cannot connect to the Docker daemon at unix:///var/run/docker.sock": "docker_daemon",
            "Bind for 0.0.0.0:8080 failed: port is already allocated": "port_in_use",
            "write /var/lib/docker/tmp: no space left on device": "disk_space",
            "Permission denied": "permission_denied",
        }
        for message, expected in cases.items():
            with self.subTest(message=message):
                self.assertEqual(self.error_handler.identify_error_type(message), expected)

    def test_bind_mount_is_not_a_port_conflict(self) -> None:
        message = "invalid mount config: bind mount source path does not exist: /srv/models"
        self.assertNotEqual(self.error_handler.identify_error_type(message), "port_in_use")

    def test_unknown_error_gets_generic_suggestions(self) -> None:
        suggestions = self.error_handler.get_suggestions("Something odd happened")
        self.assertIn("Re-run with --verbose for command output", suggestions)

    @patch('aiserver_cli.errors.console')
    def test_display_error_with_suggestions(self, mock_console: Mock) -> None:
        error = ProvisionError("Test error", ["Suggestion 1", "Suggestion 2"])
        self.error_handler.display_error(error, "Test context")
        mock_console.print.assert_called_once()

    @patch('aiserver_cli.errors.console')
    def test_display_command_output_tail(self, mock_console: Mock) -> None:
        output = "\n".join(f"line {i}" for i in range(20))
        error = CommandError("apt failed", command=["apt-get", "update"], returncode=100, output=output)
        self.error_handler.display_error(error)

        panel = mock_console.print.call_args[0][0]
        self.assertIn("line 19", panel.renderable)
        self.assertNotIn("[dim]line 9[/dim]", panel.renderable)

    @patch('aiserver_cli.errors.console')
    def test_handle_exception_exits(self, mock_console: Mock) -> None:
        with self.assertRaises(SystemExit) as ctx:
            handle_exception(ProvisionError("boom"), "Doing a thing")
        self.assertEqual(ctx.exception.code, 1)

    @patch('aiserver_cli.errors.is_root', return_value=False)
    def test_require_root_privileges(self, _root: Mock) -> None:
        with self.assertRaises(PrivilegeError) as ctx:
            require_root_privileges("server ai.local.lan")
        self.assertIn("Run with sudo: sudo aiserver server ai.local.lan", ctx.exception.suggestions)

    @patch('aiserver_cli.errors.is_root', return_value=True)
    def test_root_passes_privilege_check(self, _root: Mock) -> None:
        require_root_privileges("server ai.local.lan")

    @patch('aiserver_cli.errors.console')
    def test_keyboard_interrupt_exit_code(self, mock_console: Mock) -> None:
        with self.assertRaises(SystemExit) as ctx:
            handle_keyboard_interrupt()
        self.assertEqual(ctx.exception.code, 130)


class TestProvisionLogger(unittest.TestCase):

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.provision_logger = ProvisionLogger(log_dir=Path(self.temp_dir.name) / "logs")

    def tearDown(self) -> None:
        for handler in self.provision_logger.event_logger.handlers:
            handler.close()
        self.temp_dir.cleanup()

    def read_entries(self):
        for handler in self.provision_logger.event_logger.handlers:
            handler.flush()
        with open(self.provision_logger.log_file) as f:
            return [json.loads(line) for line in f if line.strip()]

    def test_default_location_follows_config_home(self) -> None:
        home = Path(self.temp_dir.name) / "pi" / ".aiserver"
        with patch('aiserver_cli.provision_logging.aiserver_home', return_value=home):
            provision_logger = ProvisionLogger()
        for handler in provision_logger.event_logger.handlers:
            handler.close()

        self.assertEqual(provision_logger.log_file, home / "logs" / "provision.log")
        self.assertTrue(provision_logger.log_file.exists())

    def test_log_file_permissions(self) -> None:
        mode = os.stat(self.provision_logger.log_file).st_mode & 0o777
        self.assertEqual(mode, 0o600)

    def test_entries_are_json_lines(self) -> None:
        self.provision_logger.log_run("server", "started")
        self.provision_logger.log_transition("server", "UNVALIDATED", "PACKAGES_UPDATED")
        self.provision_logger.log_command(["apt-get", "update", "-qq"], 100)
        self.provision_logger.log_error("CommandError", "Failed to update system packages.")

        entries = self.read_entries()
        self.assertEqual(
            [entry["event_type"] for entry in entries],
            ["run", "state_transition", "command", "error"]
        )
        self.assertEqual(entries[0]["result"], "STARTED")
        self.assertEqual(entries[1]["details"], {"from": "UNVALIDATED", "to": "PACKAGES_UPDATED"})
        self.assertEqual(entries[2]["severity"], "WARNING")
        self.assertEqual(entries[2]["details"]["returncode"], 100)
        self.assertEqual(entries[3]["severity"], "ERROR")


@patch('aiserver_cli.verify.console', Mock())
class TestVerifyWebAccess(unittest.TestCase):
    """Polling runs against a fake clock advanced by sleeps and slow requests."""

    def setUp(self):
        self.now = 0.0

        monotonic_patcher = patch('aiserver_cli.verify.time.monotonic', side_effect=lambda: self.now)
        monotonic_patcher.start()
        self.addCleanup(monotonic_patcher.stop)

        sleep_patcher = patch('aiserver_cli.verify.time.sleep', side_effect=self.advance)
        self.mock_sleep = sleep_patcher.start()
        self.addCleanup(sleep_patcher.stop)

    def advance(self, seconds):
        self.now += seconds

    @patch('aiserver_cli.verify.requests.get')
    def test_success(self, mock_get):
        mock_get.return_value = Mock(status_code=200, text="Welcome to the AI Server on Raspberry Pi 4!")
        success, message = verify_web_access("http://ai.local.lan/", "Welcome to the AI Server")
        self.assertTrue(success)
        self.mock_sleep.assert_not_called()

    @patch('aiserver_cli.verify.requests.get')
    def test_retries_until_up(self, mock_get):
        mock_get.side_effect = [
            requests.exceptions.ConnectionError(),
            Mock(status_code=502, text="Bad Gateway"),
            Mock(status_code=200, text="ok"),
        ]
        success, _ = verify_web_access("http://ai.local.lan/", timeout=60, interval=5)
        self.assertTrue(success)
        self.assertEqual(mock_get.call_count, 3)
        self.assertEqual(self.mock_sleep.call_count, 2)

    @patch('aiserver_cli.verify.requests.get')
    def test_gives_up(self, mock_get):
        mock_get.return_value = Mock(status_code=200, text="nginx default page")
        success, message = verify_web_access("http://ai.local.lan/", "Welcome", timeout=10, interval=5)
        self.assertFalse(success)
        self.assertEqual(mock_get.call_count, 2)
        self.assertIn("after 10 seconds", message)

    @patch('aiserver_cli.verify.requests.get')
    def test_slow_requests_count_against_timeout(self, mock_get):
        def slow_timeout(url, timeout):
            self.advance(timeout)
            raise requests.exceptions.Timeout()

        mock_get.side_effect = slow_timeout
        success, _ = verify_web_access("http://ai.local.lan/", timeout=20, interval=5)

        self.assertFalse(success)
        self.assertLessEqual(self.now, 20)
        self.assertEqual(mock_get.call_count, 2)
