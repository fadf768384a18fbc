"""Systemd unit registration for the server profile."""

import logging
from pathlib import Path
from typing import Optional, Self

from .config import ProvisionSettings
from .errors import ServiceError
from .provision_logging import ProvisionLogger
from .runner import CommandRunner
from .scaffold import write_file
from .template_registry import TemplateRenderer
from .ui.display import report

logger = logging.getLogger(__name__)

# Used when the compose binary cannot be resolved on PATH
FALLBACK_BIN_DIR = Path("/usr/local/bin")


class ServiceRegistrar:
    """Writes the unit file, then enables and starts the unit."""

    def __init__(
        self: Self,
        runner: CommandRunner,
        settings: ProvisionSettings,
        renderer: Optional[TemplateRenderer] = None,
        provision_logger: Optional[ProvisionLogger] = None
    ) -> None:
        self.runner = runner
        self.settings = settings
        self.renderer = renderer or TemplateRenderer()
        self.provision_logger = provision_logger

    def compose_exec(self: Self) -> str:
        """Absolute compose invocation for ExecStart/ExecStop lines."""
        binary, *rest = self.settings.compose_command
        resolved = self.runner.which(binary)
        if resolved is None:
            resolved = str(FALLBACK_BIN_DIR / binary)
            logger.warning("%s not found on PATH, using %s", binary, resolved)
        return " ".join([resolved, *rest])

    def render(self: Self) -> str:
        return self.renderer.render("server", "systemd", {
            "compose_exec": self.compose_exec(),
            "compose_file": str(self.settings.compose_file),
            "project_dir": str(self.settings.project_dir),
        })

    def write_unit(self: Self) -> Path:
        report("service", "Creating systemd service for AI server...")
        return write_file(self.settings.unit_path, self.render(), self.provision_logger)

    def activate(self: Self) -> None:
        """Reload unit files, enable the unit at boot and start it now.

        Raises:
            ServiceError: If any systemctl call fails.
        """
        name = self.settings.service_name
        for args, message in (
            (["systemctl", "daemon-reload"], "Failed to reload systemd units."),
            (["systemctl", "enable", name], f"Failed to enable {name}."),
            (["systemctl", "start", name], f"Failed to start {name}."),
        ):
            result = self.runner.run(args, privileged=True, check=False)
            if not result.ok:
                raise ServiceError(
                    f"{message} Exiting.",
                    [f"Check the unit: sudo systemctl status {name}", f"Inspect {self.settings.unit_path}"]
                )

    def run(self: Self) -> None:
        self.write_unit()
        self.activate()
