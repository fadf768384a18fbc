"""Status checks for a provisioned host."""

import os
from typing import Any, Dict, Self

import psutil

from .config import ProvisionSettings
from .host import HostProbe


class SystemMonitor:
    """Reports the health of the components a provisioning run sets up."""

    def __init__(self: Self, probe: HostProbe, settings: ProvisionSettings) -> None:
        self.probe = probe
        self.settings = settings

    def check_components(self: Self) -> Dict[str, Dict[str, Any]]:
        """Check docker, the container and, for the server profile, nginx and the unit.

        Returns:
            Mapping of component name to ``{"passed": bool, "details": str}``.
        """
        checks: Dict[str, Dict[str, Any]] = {}

        docker_installed = self.probe.command_exists("docker")
        checks["Docker"] = {
            "passed": docker_installed and self.probe.service_active("docker"),
            "details": "daemon active" if docker_installed else "not installed",
        }

        running = docker_installed and self.probe.container_running(self.settings.container_name)
        checks["Container"] = {
            "passed": running,
            "details": f"{self.settings.container_name} on port {self.settings.app_port}",
        }

        scaffold_files = [self.settings.app_file, self.settings.dockerfile_path, self.settings.compose_file]
        missing = [str(path) for path in scaffold_files if not path.exists()]
        checks["Scaffold"] = {
            "passed": not missing,
            "details": f"missing: {', '.join(missing)}" if missing else str(self.settings.project_dir),
        }

        if self.settings.profile == "server":
            checks["Nginx"] = {
                "passed": self.probe.service_active("nginx"),
                "details": str(self.settings.site_config_path),
            }
            name = self.settings.service_name
            active = self.probe.service_active(name)
            enabled = self.probe.service_enabled(name)
            checks["Service"] = {
                "passed": active and enabled,
                "details": f"{name}: {'active' if active else 'inactive'}, {'enabled' if enabled else 'disabled'}",
            }

        return checks

    def host_metrics(self: Self) -> Dict[str, Any]:
        """Return CPU, memory, disk and load figures for the host."""
        disk_path = self.settings.project_dir if self.settings.project_dir.exists() else "/"
        disk = psutil.disk_usage(str(disk_path))
        return {
            "cpu_percent": psutil.cpu_percent(interval=0.5),
            "memory_percent": psutil.virtual_memory().percent,
            "disk_percent": disk.percent,
            "load_average": os.getloadavg(),
        }
