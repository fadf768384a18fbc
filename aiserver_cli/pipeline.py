"""
Provisioning pipeline.

Runs the steps of a profile strictly in order against the local host:

1. Validate input (server profile: the domain)
2. Update system packages (and, server profile, the firmware)
3. Install missing dependencies, make sure the Docker daemon runs
4. Write the project scaffold
5. Build and launch the container, check it is running
6. Configure the Nginx site (server profile)
7. Register and start the systemd unit (server profile)

Any failure aborts the run; nothing is retried or rolled back.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Self

from .config import ProvisionSettings
from .errors import ProvisionError, RerunRequired, ValidationError
from .host import HostProbe
from .installer import APT_ENV, DependencyInstaller
from .launcher import ContainerLauncher
from .planner import (
    PlannedAction,
    Requirement,
    RequirementKind,
    framework_requirements,
    plan_actions,
    system_requirements,
)
from .provision_logging import ProvisionLogger
from .proxy import ProxyConfigurator
from .runner import CommandRunner
from .scaffold import ScaffoldGenerator
from .service import ServiceRegistrar
from .template_registry import TemplateRenderer
from .ui.display import report
from .ui.progress import show_progress
from .validators import InputValidator
from .verify import EXPECTED_TEXT, verify_web_access

logger = logging.getLogger(__name__)


class ProvisionState(Enum):
    """States of a provisioning run."""
    UNVALIDATED = auto()
    PACKAGES_UPDATED = auto()
    DEPENDENCIES_SATISFIED = auto()
    SCAFFOLD_WRITTEN = auto()
    CONTAINER_RUNNING = auto()
    PROXY_CONFIGURED = auto()
    SERVICE_REGISTERED = auto()
    DONE = auto()
    ABORTED = auto()


PROFILE_STATES: Dict[str, List[ProvisionState]] = {
    "server": [
        ProvisionState.UNVALIDATED,
        ProvisionState.PACKAGES_UPDATED,
        ProvisionState.DEPENDENCIES_SATISFIED,
        ProvisionState.SCAFFOLD_WRITTEN,
        ProvisionState.CONTAINER_RUNNING,
        ProvisionState.PROXY_CONFIGURED,
        ProvisionState.SERVICE_REGISTERED,
        ProvisionState.DONE,
    ],
    "edge": [
        ProvisionState.UNVALIDATED,
        ProvisionState.PACKAGES_UPDATED,
        ProvisionState.DEPENDENCIES_SATISFIED,
        ProvisionState.SCAFFOLD_WRITTEN,
        ProvisionState.CONTAINER_RUNNING,
        ProvisionState.DONE,
    ],
}


@dataclass
class ProvisionResult:
    """Result of a provisioning run."""
    profile: str
    project_dir: Path
    state: ProvisionState = ProvisionState.UNVALIDATED
    success: bool = False
    rerun_required: bool = False
    url: Optional[str] = None
    installed: List[str] = field(default_factory=list)
    steps: List[Dict[str, Any]] = field(default_factory=list)
    error_message: Optional[str] = None


class Provisioner:
    """Drives one provisioning run through its profile's states."""

    def __init__(
        self: Self,
        settings: ProvisionSettings,
        runner: Optional[CommandRunner] = None,
        probe: Optional[HostProbe] = None,
        renderer: Optional[TemplateRenderer] = None,
        provision_logger: Optional[ProvisionLogger] = None,
        verify_access: bool = False
    ) -> None:
        if settings.profile not in PROFILE_STATES:
            raise ValidationError(f"Unknown profile: {settings.profile}")

        self.settings = settings
        self.provision_logger = provision_logger
        self.runner = runner or CommandRunner(
            timeout=settings.command_timeout,
            provision_logger=provision_logger
        )
        self.probe = probe or HostProbe(self.runner)
        self.renderer = renderer or TemplateRenderer()
        self.installer = DependencyInstaller(self.runner, settings)
        self.verify_access = verify_access
        self.result = ProvisionResult(profile=settings.profile, project_dir=settings.project_dir)

    @property
    def state(self: Self) -> ProvisionState:
        return self.result.state

    @property
    def is_server(self: Self) -> bool:
        return self.settings.profile == "server"

    def _advance(self: Self, new_state: ProvisionState) -> None:
        """Move to the next state of the profile; states only move forward."""
        states = PROFILE_STATES[self.settings.profile]
        current = self.result.state
        expected = states[states.index(current) + 1]
        if new_state is not expected:
            raise RuntimeError(f"Illegal transition {current.name} -> {new_state.name}")

        self.result.state = new_state
        logger.debug("State %s -> %s", current.name, new_state.name)
        if self.provision_logger is not None:
            self.provision_logger.log_transition(self.settings.profile, current.name, new_state.name)

    def _run_step(self: Self, name: str, func: Callable[[], Optional[str]]) -> None:
        """Run one step and record its outcome."""
        try:
            message = func() or "ok"
        except RerunRequired as e:
            self._record(name, True, e.message)
            raise
        except Exception as e:
            self._record(name, False, str(e))
            raise
        self._record(name, True, message)

    def _record(self: Self, name: str, success: bool, message: str) -> None:
        self.result.steps.append({'step': name, 'success': success, 'message': message})
        if self.provision_logger is not None:
            self.provision_logger.log_step(name, success, message)

    # Steps

    def validate(self: Self) -> str:
        """Validate input before any system mutation."""
        if self.is_server:
            self.settings.domain = InputValidator.validate_domain(self.settings.domain or "")
            return f"Domain {self.settings.domain} accepted"
        return "No input to validate"

    def update_packages(self: Self) -> str:
        report("update", "Updating system packages... Please wait.")
        suggestions = [
            "Check your network connection",
            "Make sure no other apt process holds the lock",
        ]
        message = "Failed to update system packages. Please check your network connection and try again."
        with show_progress("Running apt-get update and upgrade..."):
            self.runner.run(
                ["apt-get", "update", "-qq"],
                privileged=True, env=APT_ENV, error_message=message, suggestions=suggestions
            )
            self.runner.run(
                ["apt-get", "upgrade", "-y", "-qq"],
                privileged=True, env=APT_ENV, error_message=message, suggestions=suggestions
            )
        report("ok", "System packages updated.")
        return "apt-get update and upgrade completed"

    def update_firmware(self: Self) -> str:
        report("firmware", "Updating firmware...")
        self.runner.run(
            ["rpi-update"],
            privileged=True,
            env={"SKIP_WARNING": "1"},
            error_message="Failed to update firmware. Exiting.",
            suggestions=[
                "rpi-update only exists on Raspberry Pi OS",
                "Skip this step with --skip-firmware"
            ]
        )
        return "Firmware updated"

    def _execute_plan(self: Self, requirements: List[Requirement], include_pip: bool = False) -> List[PlannedAction]:
        commands = [req.name for req in requirements if req.kind is RequirementKind.COMMAND]
        include_packages = any(req.kind is RequirementKind.APT for req in requirements)
        state = self.probe.snapshot(commands=commands, include_packages=include_packages, include_pip=include_pip)
        plan = plan_actions(state, requirements)
        try:
            self.result.installed.extend(self.installer.execute(plan))
        except RerunRequired as e:
            self.result.installed.extend(e.installed)
            raise
        return plan

    def satisfy_dependencies(self: Self) -> str:
        plan = self._execute_plan(system_requirements(self.settings.profile, self.settings.compose_command[0]))
        self.ensure_docker_running()

        frameworks = framework_requirements(self.settings.profile)
        if frameworks:
            report("python", "Checking and installing AI frameworks...")
            plan = plan + self._execute_plan(frameworks, include_pip=True)

        installs = sum(1 for item in plan if item.needs_install)
        return f"{len(plan)} dependencies checked, {installs} installed"

    def ensure_docker_running(self: Self) -> None:
        report("check", "Checking if Docker is running...")
        if self.probe.service_active("docker"):
            report("ok", "Docker is running.")
            return

        report("warning", "Docker is not running. Attempting to start Docker...")
        self.runner.run(
            ["systemctl", "start", "docker"],
            privileged=True,
            error_message="Failed to start Docker. Exiting."
        )
        report("ok", "Docker started successfully.")

    def write_scaffold(self: Self) -> str:
        written = ScaffoldGenerator(self.settings, self.renderer, self.provision_logger).write()
        return f"Wrote {len(written)} files to {self.settings.project_dir}"

    def launch_container(self: Self) -> str:
        ContainerLauncher(self.runner, self.probe, self.settings).run()
        return f"Container {self.settings.container_name} is running"

    def configure_proxy(self: Self) -> str:
        ProxyConfigurator(self.runner, self.probe, self.settings, self.renderer, self.provision_logger).run()
        return f"Nginx serves {self.settings.domain}"

    def register_service(self: Self) -> str:
        ServiceRegistrar(self.runner, self.settings, self.renderer, self.provision_logger).run()
        return f"Unit {self.settings.service_name} enabled and started"

    def verify(self: Self) -> str:
        url = self.settings.public_url + "/"
        success, message = verify_web_access(
            url,
            EXPECTED_TEXT[self.settings.profile],
            timeout=self.settings.verify_timeout
        )
        if success:
            report("ok", message)
        else:
            # Not fatal: the model may still be loading
            report("warning", message)
        return message

    def run(self: Self) -> ProvisionResult:
        """Run every step of the profile.

        Returns:
            The ``ProvisionResult``. ``rerun_required`` is set when the run
            stopped early on purpose.

        Raises:
            ProvisionError: On the first failing step; the result's state is
                then ``ABORTED``.
        """
        profile = self.settings.profile
        if self.provision_logger is not None:
            self.provision_logger.log_run(profile, "started", {"project_dir": str(self.settings.project_dir)})

        try:
            self._run_step("validate", self.validate)
            self._run_step("update_packages", self.update_packages)
            if self.is_server and not self.settings.skip_firmware:
                self._run_step("update_firmware", self.update_firmware)
            self._advance(ProvisionState.PACKAGES_UPDATED)

            self._run_step("dependencies", self.satisfy_dependencies)
            self._advance(ProvisionState.DEPENDENCIES_SATISFIED)

            self._run_step("scaffold", self.write_scaffold)
            self._advance(ProvisionState.SCAFFOLD_WRITTEN)

            self._run_step("launch", self.launch_container)
            self._advance(ProvisionState.CONTAINER_RUNNING)

            if self.is_server:
                self._run_step("proxy", self.configure_proxy)
                self._advance(ProvisionState.PROXY_CONFIGURED)

                self._run_step("service", self.register_service)
                self._advance(ProvisionState.SERVICE_REGISTERED)

            if self.verify_access:
                self._run_step("verify", self.verify)

            self._advance(ProvisionState.DONE)

        except RerunRequired as e:
            self.result.rerun_required = True
            self.result.success = True
            report("warning", e.message)
            if self.provision_logger is not None:
                self.provision_logger.log_run(profile, "stopped", {"reason": e.message})
            return self.result

        except ProvisionError as e:
            self.result.state = ProvisionState.ABORTED
            self.result.error_message = e.message
            if self.provision_logger is not None:
                self.provision_logger.log_error(type(e).__name__, e.message)
                self.provision_logger.log_run(profile, "aborted")
            raise

        self.result.success = True
        self.result.url = self.settings.public_url
        if self.provision_logger is not None:
            self.provision_logger.log_run(profile, "completed")

        if self.is_server:
            report("done", "AI Server setup complete!")
            report("ok", f"Access your AI server at: {self.result.url}")
        else:
            report("done", "AI inference server is running!")
            report("ok", f"Access it at: {self.result.url}")

        return self.result
