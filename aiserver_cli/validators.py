"""Input validation for the AI server provisioner.

Values checked here end up embedded in generated files (Nginx site, systemd
unit, compose manifest) and in command lines, so they are validated before any
system mutation happens.
"""

import re
from pathlib import Path
from typing import Union
from urllib.parse import urlparse

from .errors import ValidationError


class InputValidator:
    """Validates user inputs before they reach templates or commands."""

    PATTERNS = {
        'domain': re.compile(r'^[a-zA-Z0-9.-]+$'),
        'container_name': re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9_.-]*$'),
        'service_name': re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9_.@-]*$'),
    }

    MAX_LENGTHS = {
        'domain': 253,
        'container_name': 128,
        'service_name': 255,
        'path': 4096,
        'url': 2048,
    }

    @classmethod
    def validate_domain(cls, domain: str) -> str:
        """Validate the domain name or IP address the proxy will serve.

        Only letters, digits, dots and hyphens are accepted.

        Args:
            domain: Local domain or IP address.

        Returns:
            The domain unchanged.

        Raises:
            ValidationError: If the domain is missing or malformed.
        """
        if not domain:
            raise ValidationError(
                "No domain provided",
                ["Usage: aiserver server <your_local_domain_or_ip>"]
            )

        if len(domain) > cls.MAX_LENGTHS['domain']:
            raise ValidationError(f"Domain cannot exceed {cls.MAX_LENGTHS['domain']} characters")

        if not cls.PATTERNS['domain'].fullmatch(domain):
            raise ValidationError(
                f"Invalid domain name provided: {domain}",
                [
                    "Use only letters, digits, dots and hyphens",
                    "Examples: ai.local.lan, raspberrypi.local, 192.168.1.50"
                ]
            )

        return domain

    @classmethod
    def validate_container_name(cls, name: str) -> str:
        """Validate a Docker container name.

        Raises:
            ValidationError: If the name is not accepted by Docker.
        """
        if not name:
            raise ValidationError("Container name cannot be empty")

        if len(name) > cls.MAX_LENGTHS['container_name']:
            raise ValidationError(
                f"Container name cannot exceed {cls.MAX_LENGTHS['container_name']} characters"
            )

        if not cls.PATTERNS['container_name'].fullmatch(name):
            raise ValidationError(
                f"Invalid container name: {name}",
                ["Container names may contain letters, digits, '_', '.' and '-'"]
            )

        return name

    @classmethod
    def validate_service_name(cls, name: str) -> str:
        """Validate a systemd unit name (without the ``.service`` suffix)."""
        if not name:
            raise ValidationError("Service name cannot be empty")

        if name.endswith('.service'):
            name = name[:-len('.service')]

        if len(name) > cls.MAX_LENGTHS['service_name'] or not cls.PATTERNS['service_name'].fullmatch(name):
            raise ValidationError(f"Invalid service name: {name}")

        return name

    @classmethod
    def validate_port(cls, port: Union[int, str]) -> int:
        """Validate a TCP port number.

        Args:
            port: Port as an int or numeric string.

        Returns:
            The port as an int.

        Raises:
            ValidationError: If the port is not in 1-65535.
        """
        try:
            value = int(port)
        except (TypeError, ValueError):
            raise ValidationError(f"Port must be a number: {port}")

        if not 1 <= value <= 65535:
            raise ValidationError(f"Port must be between 1 and 65535: {value}")

        return value

    @classmethod
    def validate_directory(cls, path: Union[str, Path]) -> Path:
        """Validate a project directory path.

        ``~`` is expanded. The directory does not need to exist yet, but the
        path must be absolute once expanded and free of control characters.

        Raises:
            ValidationError: If the path is unusable.
        """
        text = str(path)
        if not text.strip():
            raise ValidationError("Directory path cannot be empty")

        if len(text) > cls.MAX_LENGTHS['path']:
            raise ValidationError(f"Path cannot exceed {cls.MAX_LENGTHS['path']} characters")

        if re.search(r'[\x00-\x1f\x7f]', text):
            raise ValidationError("Path contains control characters")

        expanded = Path(text).expanduser()
        if not expanded.is_absolute():
            raise ValidationError(
                f"Directory must be an absolute path: {text}",
                ["Example: --project-dir /home/pi/ai-server"]
            )

        return expanded

    @classmethod
    def validate_url(cls, url: str) -> str:
        """Validate an HTTP(S) URL used for web verification.

        A bare domain is accepted and turned into ``http://<domain>/``.

        Raises:
            ValidationError: If the URL is unusable.
        """
        if not url:
            raise ValidationError("URL cannot be empty")

        if len(url) > cls.MAX_LENGTHS['url']:
            raise ValidationError(f"URL cannot exceed {cls.MAX_LENGTHS['url']} characters")

        if '://' not in url:
            cls.validate_domain(url.rstrip('/'))
            url = f"http://{url.rstrip('/')}/"

        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValidationError(f"URL must use http or https: {url}")

        return url
