"""Container build, launch and post-launch health check."""

import logging
from typing import Self

from .config import ProvisionSettings
from .errors import LaunchError
from .host import HostProbe
from .runner import CommandRunner
from .ui.display import display_lines, report
from .ui.progress import show_progress

logger = logging.getLogger(__name__)


class ContainerLauncher:
    """Starts the scaffold with the compose CLI and verifies it is running."""

    def __init__(self: Self, runner: CommandRunner, probe: HostProbe, settings: ProvisionSettings) -> None:
        self.runner = runner
        self.probe = probe
        self.settings = settings

    def launch(self: Self) -> None:
        """Build the image and start the container in detached mode.

        Raises:
            CommandError: If the compose CLI exits non-zero.
        """
        report("launch", "Building and starting the AI server...")
        with show_progress("Running compose up (the first build can take a while)..."):
            self.runner.run(
                [*self.settings.compose_command, "up", "-d", "--build"],
                privileged=True,
                cwd=self.settings.project_dir,
                error_message="Failed to build and start the AI server container. Exiting."
            )

    def verify_running(self: Self) -> None:
        """Check the container's running flag, dumping its logs on failure.

        Raises:
            LaunchError: If the container is not running.
        """
        name = self.settings.container_name
        report("check", "Checking if the AI server container is running...")

        if self.probe.container_running(name):
            report("ok", "AI server container is running.")
            return

        report("error", "AI server container failed to start. Checking logs...")
        logs = self.runner.run(["docker", "logs", name], privileged=True, check=False)
        display_lines(f"docker logs {name}", logs.output.splitlines())
        raise LaunchError(
            f"Container '{name}' is not running",
            [
                f"Inspect the logs above or run: sudo docker logs {name}",
                f"Rebuild after fixing the app: cd {self.settings.project_dir} && "
                f"sudo {' '.join(self.settings.compose_command)} up -d --build"
            ]
        )

    def run(self: Self) -> None:
        self.launch()
        self.verify_running()
