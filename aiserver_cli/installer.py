"""Execution of dependency install plans."""

import logging
from typing import Dict, List, Self

import requests

from .config import ProvisionSettings, invoking_user
from .errors import DependencyError, RerunRequired
from .planner import Installer, PlannedAction, Requirement
from .runner import CommandRunner
from .ui.display import report
from .ui.progress import show_progress

logger = logging.getLogger(__name__)

APT_ENV: Dict[str, str] = {"DEBIAN_FRONTEND": "noninteractive"}

ICONS = {
    "docker": "docker",
    "docker-compose": "compose",
}


class DependencyInstaller:
    """Carries out the install actions of a plan, in order."""

    def __init__(self: Self, runner: CommandRunner, settings: ProvisionSettings) -> None:
        self.runner = runner
        self.settings = settings

    def execute(self: Self, plan: List[PlannedAction]) -> List[str]:
        """Install every requirement the plan marks for installation.

        Args:
            plan: Output of ``plan_actions``.

        Returns:
            Labels of the requirements that were installed.

        Raises:
            CommandError: If an installer exits non-zero.
            DependencyError: If an installer cannot be fetched.
            RerunRequired: If a requirement asks the run to stop after it is
                installed.
        """
        installed = []
        for item in plan:
            requirement = item.requirement
            icon = ICONS.get(requirement.name, "ok")

            if not item.needs_install:
                report(icon, f"{requirement.label} is already installed.")
                continue

            report("action", f"{requirement.label} is not installed. Installing {requirement.label}...")
            with show_progress(f"Installing {requirement.label}..."):
                self.install(requirement)
            installed.append(requirement.label)
            report("ok", f"{requirement.label} installed successfully.")

            if requirement.note:
                report("warning", requirement.note)
            if requirement.stop_after_install:
                raise RerunRequired(
                    f"{requirement.label} was installed for the first time. "
                    "Log out and back in, then run this command again to continue.",
                    installed=installed
                )

        return installed

    def install(self: Self, requirement: Requirement) -> None:
        """Install one requirement with its installer."""
        if requirement.installer is Installer.APT:
            self.runner.run(
                ["apt-get", "install", "-y", "-qq", *requirement.install_packages],
                privileged=True,
                env=APT_ENV,
                error_message=f"Failed to install {requirement.label}. Exiting."
            )
        elif requirement.installer is Installer.PIP:
            self.runner.run(
                ["pip3", "install", *requirement.install_packages],
                privileged=True,
                error_message=f"Failed to install {requirement.label}. Exiting."
            )
        elif requirement.installer is Installer.DOCKER_SCRIPT:
            self.install_docker()
        else:
            raise DependencyError(f"No installer for {requirement.label}")

    def install_docker(self: Self) -> None:
        """Install Docker with the official convenience script.

        The script is downloaded and piped to ``sh``; the invoking user is
        then added to the ``docker`` group.
        """
        url = self.settings.docker_install_url
        logger.info("Downloading Docker install script from %s", url)
        try:
            response = requests.get(url, timeout=60)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise DependencyError(
                f"Failed to download the Docker install script from {url}: {e}",
                [
                    "Check your network connection",
                    f"Download the script manually: curl -fsSL {url} -o get-docker.sh"
                ]
            )

        self.runner.run(
            ["sh", "-s"],
            privileged=True,
            input=response.text,
            error_message="Failed to install Docker. Exiting."
        )

        user = invoking_user()
        if user != "root":
            self.runner.run(
                ["usermod", "-aG", "docker", user],
                privileged=True,
                error_message=f"Failed to add {user} to the docker group. Exiting."
            )
