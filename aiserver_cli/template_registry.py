"""
Template Registry for the provisioner
Maps (profile, artifact) pairs to template files under ``templates/``
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from .errors import ScaffoldError

TEMPLATE_ROOT = Path(__file__).parent / "templates"


class TemplateRegistry:
    """
    A registry that maps provisioning profiles to their templates
    """

    def __init__(self):
        # Profile specific templates
        self.template_mappings = {
            'server': {
                'app': 'server/app.py.j2',
                'dockerfile': 'server/Dockerfile.j2',
                'nginx': 'server/nginx.conf.j2',
                'systemd': 'server/systemd.service.j2',
            },
            'edge': {
                'app': 'edge/app.py.j2',
                'dockerfile': 'edge/Dockerfile.j2',
            },
        }

        # Shared templates used when a profile has no specific one
        self.common_mappings = {
            'compose': 'common/docker-compose.yml.j2',
        }

    def get_template_path(self, profile, artifact):
        """
        Get the template path for a profile and artifact.
        Falls back to the common templates when the profile has no specific one.
        """
        specific = self.template_mappings.get(profile, {})
        if artifact in specific:
            return specific[artifact]

        if profile in self.template_mappings and artifact in self.common_mappings:
            return self.common_mappings[artifact]

        return None

    def get_available_profiles(self) -> List[str]:
        return list(self.template_mappings.keys())

    def get_available_artifacts(self, profile) -> List[str]:
        """
        Get all artifacts a profile can render
        """
        if profile not in self.template_mappings:
            return []
        artifacts = list(self.template_mappings[profile].keys())
        for artifact in self.common_mappings:
            if artifact not in artifacts:
                artifacts.append(artifact)
        return artifacts


class TemplateRenderer:
    """Renders registry templates with Jinja2."""

    def __init__(self, registry: Optional[TemplateRegistry] = None, template_root: Path = TEMPLATE_ROOT):
        self.registry = registry or TemplateRegistry()
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_root)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False
        )

    def render(self, profile: str, artifact: str, context: Dict[str, Any]) -> str:
        """
        Render one artifact for a profile.

        Args:
            profile: Provisioning profile name
            artifact: Artifact key (app, dockerfile, compose, nginx, systemd)
            context: Values for the template's named slots

        Returns:
            Rendered file content

        Raises:
            ScaffoldError: If no template exists or a slot is missing
        """
        template_path = self.registry.get_template_path(profile, artifact)
        if not template_path:
            raise ScaffoldError(f"No '{artifact}' template for profile '{profile}'")

        try:
            template = self.jinja_env.get_template(template_path)
            return template.render(**context)
        except TemplateError as e:
            raise ScaffoldError(f"Failed to render {template_path}: {e}")
