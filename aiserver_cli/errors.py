"""Error handling and recovery suggestions for the AI server provisioner.

Every pipeline step raises a ``ProvisionError`` subclass on failure. The CLI
catches it once, renders it with contextual recovery suggestions and exits
with status 1.
"""

import os
import sys
from typing import Any, Dict, List, Optional, Sequence, Self

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

console = Console()


class ProvisionError(Exception):
    """Base exception class for provisioning errors."""

    def __init__(self: Self, message: str, suggestions: Optional[List[str]] = None) -> None:
        """Initialize provisioning error.

        Args:
            message: The error message to display.
            suggestions: Optional list of recovery suggestions.
        """
        super().__init__(message)
        self.message = message
        self.suggestions = suggestions or []


class ValidationError(ProvisionError):
    """Raised when user input fails validation."""
    pass


class ConfigError(ProvisionError):
    """Raised when there are configuration issues."""
    pass


class CommandError(ProvisionError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(
        self: Self,
        message: str,
        command: Sequence[str],
        returncode: int,
        output: str = "",
        suggestions: Optional[List[str]] = None
    ) -> None:
        super().__init__(message, suggestions)
        self.command = list(command)
        self.returncode = returncode
        self.output = output


class DependencyError(ProvisionError):
    """Raised when a dependency cannot be installed."""
    pass


class ScaffoldError(ProvisionError):
    """Raised when project files cannot be generated."""
    pass


class LaunchError(ProvisionError):
    """Raised when the container fails to build or stay running."""
    pass


class ProxyError(ProvisionError):
    """Raised when the reverse proxy cannot be configured."""
    pass


class ServiceError(ProvisionError):
    """Raised when the systemd unit cannot be registered or started."""
    pass


class PrivilegeError(ProvisionError):
    """Raised when an operation needs root and the process is not root."""
    pass


class RerunRequired(Exception):
    """Signals an intentional early stop that asks the user to run again.

    Not a failure: the CLI exits with status 0.
    """

    def __init__(self: Self, message: str, installed: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.installed = list(installed or [])


class ErrorHandler:
    """Handles and displays errors with recovery suggestions."""

    def __init__(self: Self) -> None:
        """Initialize the error handler."""
        self.error_patterns: Dict[str, Dict[str, Any]] = {
            "apt_lock": {
                "keywords": ["could not get lock", "dpkg was interrupted", "lock-frontend"],
                "suggestions": [
                    "Wait for unattended-upgrades or another apt process to finish",
                    "Repair an interrupted install: sudo dpkg --configure -a",
                    "Re-run the provisioner once the lock is released"
                ]
            },
            "network": {
                "keywords": [
                    "temporary failure resolving", "could not resolve",
                    "connection refused", "connection error", "timed out", "timeout"
                ],
                "suggestions": [
                    "Check your network connection and DNS settings",
                    "Verify the host can reach the package mirrors: ping deb.debian.org",
                    "Re-run the provisioner once connectivity is restored"
                ]
            },
            "permission_denied": {
                "keywords": ["permission denied", "operation not permitted", "are you root"],
                "suggestions": [
                    "Run the provisioner with sudo",
                    "Ensure your user account has sudo access",
                    "Check ownership of the project directory"
                ]
            },
            "docker_daemon": {
                "keywords": ["cannot connect to the docker daemon", "docker.sock", "is the docker daemon running"],
                "suggestions": [
                    "Start Docker: sudo systemctl start docker",
                    "Log out and back in so the docker group membership applies",
                    "Check the daemon logs: sudo journalctl -u docker"
                ]
            },
            "port_in_use": {
                "keywords": ["address already in use", "port is already allocated"],
                "suggestions": [
                    "Check what's using the port: sudo ss -tlnp",
                    "Stop the conflicting service or change app_port: aiserver config --set app_port=<PORT>",
                    "Remove stale containers: sudo docker ps -a"
                ]
            },
            "disk_space": {
                "keywords": ["no space left", "disk full"],
                "suggestions": [
                    "Check disk usage: aiserver status",
                    "Remove unused Docker images: sudo docker system prune",
                    "Move the project directory to larger storage"
                ]
            },
            "nginx_config": {
                "keywords": ["nginx", "sites-enabled", "emerg"],
                "suggestions": [
                    "Test the configuration: sudo nginx -t",
                    "Inspect the site file: /etc/nginx/sites-available/ai-server",
                    "Check Nginx logs: sudo journalctl -u nginx"
                ]
            }
        }

    def identify_error_type(self: Self, error_message: str) -> Optional[str]:
        """Identify the type of error based on the message.

        Args:
            error_message: The error message to analyze.

        Returns:
            The error type key if identified, None otherwise.
        """
        error_lower = error_message.lower()

        for error_type, pattern_data in self.error_patterns.items():
            for keyword in pattern_data["keywords"]:
                if keyword in error_lower:
                    return error_type

        return None

    def get_suggestions(self: Self, error_message: str) -> List[str]:
        """Get recovery suggestions for an error.

        Args:
            error_message: The error message to analyze.

        Returns:
            List of recovery suggestions.
        """
        error_type = self.identify_error_type(error_message)

        if error_type and error_type in self.error_patterns:
            return self.error_patterns[error_type]["suggestions"]

        return [
            "Re-run with --verbose for command output",
            "Review the provisioning log: ~/.aiserver/logs/provision.log",
            "Check the container state: aiserver status"
        ]

    def display_error(
        self: Self,
        error: Exception,
        context: Optional[str] = None,
        show_suggestions: bool = True
    ) -> None:
        """Display an error with formatting and suggestions.

        Args:
            error: The exception that occurred.
            context: Optional context about what was being attempted.
            show_suggestions: Whether to show recovery suggestions.
        """
        error_message = str(error)
        content = []

        if context:
            content.append(f"[bold]Context:[/bold] {context}")
            content.append("")

        content.append(f"[bold red]Error:[/bold red] {escape(error_message)}")

        if isinstance(error, CommandError) and error.output:
            tail = error.output.strip().splitlines()[-10:]
            content.append("")
            content.append("[bold]Command output:[/bold]")
            content.extend(f"  [dim]{escape(line)}[/dim]" for line in tail)

        if show_suggestions:
            if isinstance(error, ProvisionError) and error.suggestions:
                suggestions = error.suggestions
            else:
                lookup = error_message
                if isinstance(error, CommandError):
                    lookup = f"{error_message}\n{error.output}"
                suggestions = self.get_suggestions(lookup)

            if suggestions:
                content.append("")
                content.append("[bold blue]Suggested solutions:[/bold blue]")
                for i, suggestion in enumerate(suggestions, 1):
                    content.append(f"  {i}. {suggestion}")

        console.print(Panel(
            "\n".join(content),
            title="[bold red]❌ Provisioning Error[/bold red]",
            border_style="red",
            expand=False
        ))


def handle_exception(
    error: Exception,
    context: Optional[str] = None,
    exit_code: int = 1
) -> None:
    """Global exception handler for the provisioner CLI.

    Args:
        error: The exception that occurred.
        context: Optional context about what was being attempted.
        exit_code: Exit code to use when terminating.
    """
    error_handler = ErrorHandler()
    error_handler.display_error(error, context)
    sys.exit(exit_code)


def handle_keyboard_interrupt() -> None:
    """Handle Ctrl+C gracefully."""
    console.print("\n[yellow]Provisioning cancelled by user[/yellow]")
    sys.exit(130)


def is_root() -> bool:
    """Return True when running with an effective UID of 0."""
    return os.geteuid() == 0


def require_root_privileges(operation: str) -> None:
    """Check for root privileges and provide helpful error if missing.

    Args:
        operation: Command line of the operation requiring root access.

    Raises:
        PrivilegeError: If not running as root.
    """
    if not is_root():
        raise PrivilegeError(
            f"'aiserver {operation}' requires root privileges",
            [
                f"Run with sudo: sudo aiserver {operation}",
                "Ensure your user account has sudo access",
                "Settings in your ~/.aiserver/config.json still apply under sudo"
            ]
        )
