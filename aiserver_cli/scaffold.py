"""Project scaffold generation.

Renders the application source, Dockerfile and compose manifest for a profile
and writes them under the project directory. Every file is truncated and fully
rewritten on each run; identical settings produce identical content.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Self

from .config import ProvisionSettings
from .errors import ScaffoldError
from .provision_logging import ProvisionLogger
from .template_registry import TemplateRenderer
from .ui.display import report

logger = logging.getLogger(__name__)


def write_file(path: Path, content: str, provision_logger: Optional[ProvisionLogger] = None) -> Path:
    """Write rendered content to ``path``, replacing any existing file.

    Raises:
        ScaffoldError: If the file cannot be written.
    """
    try:
        path.write_text(content)
    except PermissionError:
        raise ScaffoldError(
            f"Permission denied writing {path}",
            ["Run the provisioner with sudo", f"Check ownership of {path.parent}"]
        )
    except OSError as e:
        raise ScaffoldError(f"Failed to write {path}: {e}")

    logger.debug("Wrote %s (%d bytes)", path, len(content))
    if provision_logger is not None:
        provision_logger.log_file_written(path, len(content))
    return path


def ensure_directory(path: Path) -> Path:
    """Create ``path`` and its parents if missing.

    Raises:
        ScaffoldError: If the directory cannot be created.
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        raise ScaffoldError(
            f"Permission denied creating {path}",
            ["Run the provisioner with sudo", "Choose another location with --project-dir"]
        )
    except OSError as e:
        raise ScaffoldError(f"Failed to create project directory {path}: {e}")
    return path


class ScaffoldGenerator:
    """Generates the deployable unit: app source, Dockerfile, compose manifest."""

    ARTIFACTS = ("app", "dockerfile", "compose")

    def __init__(
        self: Self,
        settings: ProvisionSettings,
        renderer: Optional[TemplateRenderer] = None,
        provision_logger: Optional[ProvisionLogger] = None
    ) -> None:
        self.settings = settings
        self.renderer = renderer or TemplateRenderer()
        self.provision_logger = provision_logger

    def context(self: Self) -> Dict[str, Any]:
        """Values for the scaffold templates' named slots."""
        return {
            "container_name": self.settings.container_name,
            "app_port": self.settings.app_port,
            "project_dir": str(self.settings.project_dir),
        }

    def destination(self: Self, artifact: str) -> Path:
        return {
            "app": self.settings.app_file,
            "dockerfile": self.settings.dockerfile_path,
            "compose": self.settings.compose_file,
        }[artifact]

    def render_all(self: Self) -> Dict[str, str]:
        """Render every scaffold artifact without touching the filesystem."""
        context = self.context()
        return {
            artifact: self.renderer.render(self.settings.profile, artifact, context)
            for artifact in self.ARTIFACTS
        }

    def write(self: Self) -> List[Path]:
        """Create the project tree and write all scaffold files.

        Returns:
            Paths of the written files.
        """
        rendered = self.render_all()

        report("directory", f"Creating project directory at {self.settings.project_dir}...")
        ensure_directory(self.settings.app_dir)

        written = []
        report("launch", "Setting up the AI Python application...")
        written.append(write_file(self.destination("app"), rendered["app"], self.provision_logger))

        report("file", f"Creating Dockerfile at {self.settings.dockerfile_path}...")
        written.append(write_file(self.destination("dockerfile"), rendered["dockerfile"], self.provision_logger))

        report("file", f"Creating docker-compose.yml at {self.settings.compose_file}...")
        written.append(write_file(self.destination("compose"), rendered["compose"], self.provision_logger))

        return written
