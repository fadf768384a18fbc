"""External command execution for the provisioner.

Every command goes through ``CommandRunner.run`` which captures output,
records the exit status in the provisioning log and, unless told otherwise,
raises ``CommandError`` on a non-zero exit. Privileged commands get a
``sudo`` prefix when the process is not already root.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Self

from .errors import CommandError, is_root
from .provision_logging import ProvisionLogger

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command."""
    command: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self: Self) -> bool:
        return self.returncode == 0

    @property
    def output(self: Self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class CommandRunner:
    """Runs external commands with fail-fast semantics."""

    def __init__(
        self: Self,
        use_sudo: Optional[bool] = None,
        timeout: int = 1800,
        provision_logger: Optional[ProvisionLogger] = None
    ) -> None:
        """Initialize the runner.

        Args:
            use_sudo: Prefix privileged commands with sudo. Defaults to
                True unless already running as root.
            timeout: Per-command timeout in seconds.
            provision_logger: Structured log sink for executed commands.
        """
        self.use_sudo = (not is_root()) if use_sudo is None else use_sudo
        self.timeout = timeout
        self.provision_logger = provision_logger

    def build_command(
        self: Self,
        args: Sequence[str],
        privileged: bool = False,
        env: Optional[Dict[str, str]] = None
    ) -> List[str]:
        """Return the final argv, with ``env`` assignments and sudo applied."""
        command = list(args)
        if env:
            command = ["env"] + [f"{key}={value}" for key, value in env.items()] + command
        if privileged and self.use_sudo:
            command = ["sudo"] + command
        return command

    def run(
        self: Self,
        args: Sequence[str],
        *,
        privileged: bool = False,
        check: bool = True,
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        input: Optional[str] = None,
        error_message: Optional[str] = None,
        suggestions: Optional[List[str]] = None
    ) -> CommandResult:
        """Run a command and wait for it to exit.

        Args:
            args: Command and arguments.
            privileged: Whether the command needs root.
            check: Raise ``CommandError`` on a non-zero exit.
            cwd: Working directory.
            env: Extra environment variables for the command.
            input: Text fed to the command's stdin.
            error_message: Message used for the raised error.
            suggestions: Recovery suggestions attached to the raised error.

        Returns:
            The captured ``CommandResult``.

        Raises:
            CommandError: If ``check`` is set and the command fails, cannot
                be found or times out.
        """
        command = self.build_command(args, privileged=privileged, env=env)
        logger.debug("Running: %s", " ".join(command))

        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                check=False,
                cwd=str(cwd) if cwd else None,
                input=input,
                timeout=self.timeout
            )
            result = CommandResult(command, completed.returncode, completed.stdout or "", completed.stderr or "")
        except FileNotFoundError:
            result = CommandResult(command, 127, stderr=f"{command[0]}: command not found")
        except subprocess.TimeoutExpired:
            result = CommandResult(command, 124, stderr=f"timed out after {self.timeout} seconds")

        if self.provision_logger is not None:
            self.provision_logger.log_command(command, result.returncode)

        if result.output:
            logger.debug(result.output)

        if check and not result.ok:
            raise CommandError(
                error_message or f"Command failed with exit code {result.returncode}: {' '.join(command)}",
                command=command,
                returncode=result.returncode,
                output=result.output,
                suggestions=suggestions
            )

        return result

    def succeeds(self: Self, args: Sequence[str], privileged: bool = False) -> bool:
        """Return True when the command exits with status 0."""
        return self.run(args, privileged=privileged, check=False).ok

    def which(self: Self, name: str) -> Optional[str]:
        """Resolve a command on ``PATH``."""
        return shutil.which(name)
