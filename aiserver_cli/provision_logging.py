"""Structured logging for provisioning runs.

Each pipeline event (state transition, command, generated file, failure) is
written as one JSON line to ``~/.aiserver/logs/provision.log`` so a failed run
can be reconstructed after the console output is gone.
"""

import json
import logging
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from rich.logging import RichHandler

from . import __version__
from .config import aiserver_home, give_to_invoking_user


class ProvisionEventType(Enum):
    """Types of provisioning events."""
    RUN = "run"
    STATE_TRANSITION = "state_transition"
    STEP = "step"
    COMMAND = "command"
    FILE_WRITE = "file_write"
    ERROR = "error"


class ProvisionLogger:
    """Writes provisioning events as JSON lines."""

    def __init__(self, log_dir: Optional[Path] = None) -> None:
        """Initialize provisioning logger.

        Args:
            log_dir: Directory for the log file. Defaults to
                ``$AISERVER_HOME/logs`` or the invoking user's
                ``~/.aiserver/logs``.
        """
        owned = []
        if log_dir is None:
            base = aiserver_home()
            base.mkdir(parents=True, exist_ok=True)
            owned.append(base)
            log_dir = base / "logs"

        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.log_dir, 0o700)

        self.log_file = self.log_dir / "provision.log"
        self._setup_logging()
        give_to_invoking_user(*owned, self.log_dir, self.log_file)

    def _setup_logging(self) -> None:
        """Configure the file handler."""
        self.event_logger = logging.getLogger(f"aiserver_provision.{self.log_dir}")
        self.event_logger.setLevel(logging.INFO)
        self.event_logger.propagate = False
        self.event_logger.handlers.clear()

        if not self.log_file.exists():
            self.log_file.touch()
        os.chmod(self.log_file, 0o600)

        handler = logging.FileHandler(self.log_file)
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter('%(message)s'))
        self.event_logger.addHandler(handler)

    def _create_log_entry(
        self,
        event_type: ProvisionEventType,
        message: str,
        profile: Optional[str] = None,
        result: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: str = "INFO"
    ) -> Dict[str, Any]:
        """Create a structured log entry."""
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type.value,
            "severity": severity,
            "message": message,
            "source": "aiserver_cli",
            "version": __version__
        }

        if profile:
            entry["profile"] = profile
        if result:
            entry["result"] = result
        if details:
            entry["details"] = details

        return entry

    def _write_entry(self, entry: Dict[str, Any]) -> None:
        self.event_logger.info(json.dumps(entry, default=str))

    def log_run(self, profile: str, outcome: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Log the start or end of a provisioning run."""
        self._write_entry(self._create_log_entry(
            ProvisionEventType.RUN,
            f"Provisioning run {outcome}: {profile}",
            profile=profile,
            result=outcome.upper(),
            details=details
        ))

    def log_transition(self, profile: str, old_state: str, new_state: str) -> None:
        """Log a pipeline state transition."""
        self._write_entry(self._create_log_entry(
            ProvisionEventType.STATE_TRANSITION,
            f"{old_state} -> {new_state}",
            profile=profile,
            details={"from": old_state, "to": new_state}
        ))

    def log_step(self, name: str, success: bool, message: str = "") -> None:
        """Log the outcome of one pipeline step."""
        status = "SUCCESS" if success else "FAILED"
        self._write_entry(self._create_log_entry(
            ProvisionEventType.STEP,
            f"Step {name} {status.lower()}" + (f": {message}" if message else ""),
            result=status,
            details={"step": name},
            severity="INFO" if success else "ERROR"
        ))

    def log_command(self, command: Sequence[str], returncode: int) -> None:
        """Log an executed external command and its exit status."""
        self._write_entry(self._create_log_entry(
            ProvisionEventType.COMMAND,
            " ".join(command),
            result="SUCCESS" if returncode == 0 else "FAILED",
            details={"command": list(command), "returncode": returncode},
            severity="INFO" if returncode == 0 else "WARNING"
        ))

    def log_file_written(self, path: Path, size: int) -> None:
        """Log a generated file."""
        self._write_entry(self._create_log_entry(
            ProvisionEventType.FILE_WRITE,
            f"Wrote {path}",
            details={"path": str(path), "bytes": size}
        ))

    def log_error(self, error_type: str, error_message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Log a failure that aborted the run."""
        self._write_entry(self._create_log_entry(
            ProvisionEventType.ERROR,
            f"Error: {error_type} - {error_message}",
            result="ERROR",
            details={"error_type": error_type, "error_message": error_message, **(details or {})},
            severity="ERROR"
        ))


# Global provisioning logger instance
_provision_logger = None


def get_provision_logger() -> ProvisionLogger:
    """Get the global provisioning logger instance."""
    global _provision_logger
    if _provision_logger is None:
        _provision_logger = ProvisionLogger()
    return _provision_logger


def configure_console_logging(verbose: bool = False) -> None:
    """Attach a rich handler to the package logger.

    Args:
        verbose: Show DEBUG records (command lines and output) when True,
            otherwise only warnings.
    """
    package_logger = logging.getLogger("aiserver_cli")
    package_logger.handlers.clear()
    handler = RichHandler(show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
