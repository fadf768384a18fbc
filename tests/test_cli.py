"""Tests for the command-line interface and status checks."""

import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from click.testing import CliRunner

from aiserver_cli.cli import main
from aiserver_cli.config import Config
from aiserver_cli.errors import CommandError, LaunchError
from aiserver_cli.host import HostProbe, HostState
from aiserver_cli.pipeline import ProvisionResult, ProvisionState
from aiserver_cli.system import SystemMonitor
from tests.fakes import FakeRunner, make_settings


class CliTestCase(unittest.TestCase):

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.home = Path(self.temp_dir.name)
        self.runner = CliRunner(env={
            "AISERVER_HOME": str(self.home / ".aiserver"),
            "SUDO_USER": "",
            "SUDO_UID": "",
        })

        logger_patcher = patch('aiserver_cli.cli.get_provision_logger', return_value=None)
        logger_patcher.start()
        self.addCleanup(logger_patcher.stop)

        root_patcher = patch('aiserver_cli.errors.is_root', return_value=True)
        root_patcher.start()
        self.addCleanup(root_patcher.stop)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()


class TestProvisionCommands(CliTestCase):

    def test_version(self) -> None:
        result = self.runner.invoke(main, ['--version'])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("0.1.0", result.output)

    @patch('aiserver_cli.cli.Provisioner')
    def test_server_requires_domain(self, mock_provisioner: Mock) -> None:
        result = self.runner.invoke(main, ['server'])
        self.assertEqual(result.exit_code, 1)
        self.assertIn("No domain provided", result.output)
        mock_provisioner.assert_not_called()

    @patch('aiserver_cli.cli.Provisioner')
    def test_server_rejects_invalid_domain(self, mock_provisioner: Mock) -> None:
        result = self.runner.invoke(main, ['server', 'bad;domain'])
        self.assertEqual(result.exit_code, 1)
        mock_provisioner.assert_not_called()

    @patch('aiserver_cli.cli.Provisioner')
    def test_server_requires_root(self, mock_provisioner: Mock) -> None:
        with patch('aiserver_cli.errors.is_root', return_value=False):
            result = self.runner.invoke(main, ['server', 'ai.local.lan'])

        self.assertEqual(result.exit_code, 1)
        self.assertIn("requires root privileges", result.output)
        mock_provisioner.assert_not_called()

    @patch('aiserver_cli.cli.Provisioner')
    def test_server_success(self, mock_provisioner: Mock) -> None:
        project_dir = self.home / "ai-server"
        mock_provisioner.return_value.run.return_value = ProvisionResult(
            profile="server",
            project_dir=project_dir,
            state=ProvisionState.DONE,
            success=True,
            url="http://ai.local.lan"
        )

        result = self.runner.invoke(main, [
            'server', 'ai.local.lan', '--skip-firmware', '--verify', '--project-dir', str(project_dir)
        ])

        self.assertEqual(result.exit_code, 0, result.output)
        settings = mock_provisioner.call_args[0][0]
        self.assertEqual(settings.domain, "ai.local.lan")
        self.assertEqual(settings.project_dir, project_dir)
        self.assertTrue(settings.skip_firmware)
        self.assertTrue(mock_provisioner.call_args[1]["verify_access"])
        self.assertIn("DONE", result.output)

    @patch('aiserver_cli.cli.Provisioner')
    def test_server_failure_exits_nonzero(self, mock_provisioner: Mock) -> None:
        instance = mock_provisioner.return_value
        instance.run.side_effect = LaunchError("Container 'ai-server' is not running")
        instance.result = ProvisionResult(
            profile="server",
            project_dir=self.home / "ai-server",
            state=ProvisionState.ABORTED
        )

        result = self.runner.invoke(main, ['server', 'ai.local.lan'])

        self.assertEqual(result.exit_code, 1)
        self.assertIn("ABORTED", result.output)

    @patch('aiserver_cli.cli.Provisioner')
    def test_edge_rerun_exits_zero(self, mock_provisioner: Mock) -> None:
        mock_provisioner.return_value.run.return_value = ProvisionResult(
            profile="edge",
            project_dir=self.home / "ai-inference",
            state=ProvisionState.PACKAGES_UPDATED,
            success=True,
            rerun_required=True
        )

        result = self.runner.invoke(main, ['edge'])

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Run the same command again", result.output)
        self.assertEqual(mock_provisioner.call_args[0][0].profile, "edge")

    @patch('aiserver_cli.cli.Provisioner')
    def test_keyboard_interrupt(self, mock_provisioner: Mock) -> None:
        mock_provisioner.return_value.run.side_effect = KeyboardInterrupt()
        result = self.runner.invoke(main, ['edge'])
        self.assertEqual(result.exit_code, 130)


class TestToolCommands(CliTestCase):

    @patch('aiserver_cli.cli.HostProbe')
    def test_plan(self, mock_host: Mock) -> None:
        mock_host.return_value.snapshot.return_value = HostState(packages=frozenset({"git"}))

        result = self.runner.invoke(main, ['plan', '--profile', 'edge'])

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("1 already installed", result.output)
        self.assertIn("5 to install", result.output)

    @patch('aiserver_cli.cli.HostProbe')
    def test_plan_host_query_failure(self, mock_host: Mock) -> None:
        mock_host.return_value.snapshot.side_effect = CommandError(
            "Failed to read the installed package list. Exiting.",
            command=["dpkg", "-l"],
            returncode=2
        )

        result = self.runner.invoke(main, ['plan'])

        self.assertEqual(result.exit_code, 1)
        self.assertNotIn("to install", result.output)

    def test_scaffold(self) -> None:
        project_dir = self.home / "scaffold"
        result = self.runner.invoke(main, ['scaffold', '--profile', 'edge', '--project-dir', str(project_dir)])

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertTrue((project_dir / "app" / "app.py").exists())
        self.assertTrue((project_dir / "Dockerfile").exists())
        self.assertTrue((project_dir / "docker-compose.yml").exists())

    @patch('aiserver_cli.cli.SystemMonitor')
    def test_status_failure(self, mock_monitor: Mock) -> None:
        mock_monitor.return_value.check_components.return_value = {
            "Docker": {"passed": True, "details": "daemon active"},
            "Container": {"passed": False, "details": "ai-server on port 8080"},
        }
        mock_monitor.return_value.host_metrics.return_value = {}

        result = self.runner.invoke(main, ['status'])

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Container", result.output)

    @patch('aiserver_cli.cli.verify_web_access')
    def test_verify(self, mock_verify: Mock) -> None:
        mock_verify.return_value = (True, "Server accessible")
        result = self.runner.invoke(main, ['verify', 'ai.local.lan', '--expect', 'Welcome'])

        self.assertEqual(result.exit_code, 0)
        mock_verify.assert_called_once_with("http://ai.local.lan/", "Welcome", timeout=60)

        mock_verify.return_value = (False, "Could not reach")
        result = self.runner.invoke(main, ['verify', 'ai.local.lan'])
        self.assertEqual(result.exit_code, 1)

    def test_config_set_and_reset(self) -> None:
        result = self.runner.invoke(main, ['config', '--set', 'app_port=9000', '--profile', 'server'])
        self.assertEqual(result.exit_code, 0, result.output)

        config = Config(config_dir=self.home / ".aiserver")
        self.assertEqual(config.get("app_port", profile="server"), 9000)

        result = self.runner.invoke(main, ['config', '--reset'])
        self.assertEqual(result.exit_code, 0)
        self.assertEqual(config.get("app_port", profile="server"), 8080)

    def test_config_rejects_bad_assignment(self) -> None:
        result = self.runner.invoke(main, ['config', '--set', 'app_port'])
        self.assertEqual(result.exit_code, 1)

        result = self.runner.invoke(main, ['config', '--set', 'app_port=9000'])
        self.assertEqual(result.exit_code, 1)


class TestSystemMonitor(unittest.TestCase):

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_server_components(self) -> None:
        runner = FakeRunner(
            responses=[
                (["docker", "inspect"], 0, "true\n"),
                (["systemctl", "is-enabled"], 1, ""),
            ],
            commands=["docker"]
        )
        monitor = SystemMonitor(HostProbe(runner), make_settings(self.temp_dir.name, profile="server"))

        checks = monitor.check_components()

        self.assertEqual(list(checks), ["Docker", "Container", "Scaffold", "Nginx", "Service"])
        self.assertTrue(checks["Docker"]["passed"])
        self.assertTrue(checks["Container"]["passed"])
        self.assertFalse(checks["Scaffold"]["passed"])
        self.assertFalse(checks["Service"]["passed"])
        self.assertIn("disabled", checks["Service"]["details"])

    def test_edge_without_docker(self) -> None:
        monitor = SystemMonitor(HostProbe(FakeRunner()), make_settings(self.temp_dir.name, profile="edge"))
        checks = monitor.check_components()

        self.assertEqual(list(checks), ["Docker", "Container", "Scaffold"])
        self.assertFalse(checks["Docker"]["passed"])
        self.assertEqual(checks["Docker"]["details"], "not installed")
        self.assertFalse(checks["Container"]["passed"])

    @patch('aiserver_cli.system.psutil')
    def test_host_metrics(self, mock_psutil: Mock) -> None:
        mock_psutil.cpu_percent.return_value = 12.5
        mock_psutil.virtual_memory.return_value = Mock(percent=40.0)
        mock_psutil.disk_usage.return_value = Mock(percent=55.0)

        monitor = SystemMonitor(HostProbe(FakeRunner()), make_settings(self.temp_dir.name, profile="edge"))
        metrics = monitor.host_metrics()

        self.assertEqual(metrics["cpu_percent"], 12.5)
        self.assertEqual(metrics["memory_percent"], 40.0)
        self.assertEqual(metrics["disk_percent"], 55.0)
        mock_psutil.disk_usage.assert_called_once_with("/")
