"""Configuration management for the AI server provisioner.

Settings are persisted as JSON in ``~/.aiserver/config.json``. Shared keys
live at the top level; per-profile keys (project directory, container name,
port) live under ``profiles.<name>``. Values resolve in the order: CLI
option, config file, built-in profile default.
"""

import getpass
import json
import os
import pwd
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Self

from .errors import ConfigError, ValidationError, is_root
from .validators import InputValidator

PROFILES = ("server", "edge")


def invoking_user() -> str:
    """Return the name of the user who ran the CLI, looking through sudo."""
    return os.environ.get("SUDO_USER") or getpass.getuser()


def invoking_user_home() -> Path:
    """Return the home directory of the invoking user, looking through sudo."""
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user:
        try:
            return Path(pwd.getpwnam(sudo_user).pw_dir)
        except KeyError:
            pass
    return Path.home()


def aiserver_home() -> Path:
    """Directory holding config and logs: $AISERVER_HOME, else the invoking user's ~/.aiserver."""
    env_dir = os.environ.get("AISERVER_HOME")
    return Path(env_dir) if env_dir else invoking_user_home() / ".aiserver"


def give_to_invoking_user(*paths: Path) -> None:
    """Hand files created under sudo back to the user who ran sudo."""
    uid, gid = os.environ.get("SUDO_UID"), os.environ.get("SUDO_GID")
    if not (uid and gid and is_root()):
        return
    for path in paths:
        os.chown(path, int(uid), int(gid))


PROFILE_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "server": {
        "project_dir": "~/ai-server",
        "container_name": "ai-server",
        "app_port": 8080,
    },
    "edge": {
        "project_dir": "~/ai-inference",
        "container_name": "ai-inference",
        "app_port": 5000,
    },
}


@dataclass
class ProvisionSettings:
    """Resolved paths, names and limits for one provisioning run."""
    profile: str
    project_dir: Path
    container_name: str
    app_port: int
    compose_command: List[str] = field(default_factory=lambda: ["docker-compose"])
    nginx_sites_available: Path = Path("/etc/nginx/sites-available")
    nginx_sites_enabled: Path = Path("/etc/nginx/sites-enabled")
    systemd_unit_dir: Path = Path("/etc/systemd/system")
    service_name: str = "ai-server"
    docker_install_url: str = "https://get.docker.com"
    command_timeout: int = 1800
    verify_timeout: int = 60
    skip_firmware: bool = False
    domain: Optional[str] = None

    @property
    def app_dir(self: Self) -> Path:
        return self.project_dir / "app"

    @property
    def app_file(self: Self) -> Path:
        return self.app_dir / "app.py"

    @property
    def dockerfile_path(self: Self) -> Path:
        return self.project_dir / "Dockerfile"

    @property
    def compose_file(self: Self) -> Path:
        return self.project_dir / "docker-compose.yml"

    @property
    def site_config_path(self: Self) -> Path:
        return self.nginx_sites_available / self.service_name

    @property
    def site_link_path(self: Self) -> Path:
        return self.nginx_sites_enabled / self.service_name

    @property
    def default_site_link(self: Self) -> Path:
        return self.nginx_sites_enabled / "default"

    @property
    def unit_path(self: Self) -> Path:
        return self.systemd_unit_dir / f"{self.service_name}.service"

    @property
    def public_url(self: Self) -> str:
        if self.domain:
            return f"http://{self.domain}"
        return f"http://localhost:{self.app_port}"


class Config:
    """Manages provisioner configuration with schema validation."""

    CONFIG_SCHEMA = {
        'compose_command': {'type': str, 'default': 'docker-compose'},
        'nginx_sites_available': {'type': str, 'default': '/etc/nginx/sites-available'},
        'nginx_sites_enabled': {'type': str, 'default': '/etc/nginx/sites-enabled'},
        'systemd_unit_dir': {'type': str, 'default': '/etc/systemd/system'},
        'service_name': {'type': str, 'default': 'ai-server', 'validator': 'validate_service_name'},
        'docker_install_url': {'type': str, 'default': 'https://get.docker.com'},
        'command_timeout': {'type': int, 'min': 30, 'max': 7200, 'default': 1800},
        'verify_timeout': {'type': int, 'min': 5, 'max': 600, 'default': 60},
        'skip_firmware': {'type': bool, 'default': False},
    }

    PROFILE_SCHEMA = {
        'project_dir': {'type': str, 'validator': 'validate_directory'},
        'container_name': {'type': str, 'validator': 'validate_container_name'},
        'app_port': {'type': int, 'min': 1, 'max': 65535},
    }

    def __init__(self: Self, config_dir: Optional[Path] = None) -> None:
        """Initialize configuration manager.

        Args:
            config_dir: Directory holding ``config.json``. Defaults to
                ``$AISERVER_HOME`` or the invoking user's ``~/.aiserver``,
                also when run through sudo.
        """
        self.config_dir = Path(config_dir) if config_dir is not None else aiserver_home()
        self.config_file = self.config_dir / "config.json"

    def _ensure_directories(self: Self) -> None:
        """Create the config directory with owner-only permissions."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self.config_dir, 0o700)

    def _check_value(self: Self, key: str, value: Any, schema: Dict[str, Any]) -> Optional[str]:
        """Return an error string for one value, or None when it is valid."""
        expected = schema['type']
        # bool is an int subclass; keep the two apart
        if expected is int and isinstance(value, bool):
            return f"Field '{key}' must be of type int"
        if not isinstance(value, expected):
            return f"Field '{key}' must be of type {expected.__name__}"

        if 'min' in schema and value < schema['min']:
            return f"Field '{key}' must be >= {schema['min']}"
        if 'max' in schema and value > schema['max']:
            return f"Field '{key}' must be <= {schema['max']}"

        if 'validator' in schema:
            validator = getattr(InputValidator, schema['validator'])
            try:
                validator(value)
            except ValidationError as e:
                return f"Field '{key}': {e.message}"

        return None

    def _validate_config_schema(self: Self, config: Dict[str, Any]) -> None:
        """Validate configuration against the schema.

        Raises:
            ConfigError: If validation fails.
        """
        errors = []

        for key, value in config.items():
            if key == 'profiles':
                continue
            if key not in self.CONFIG_SCHEMA:
                errors.append(f"Unknown field '{key}'")
                continue
            error = self._check_value(key, value, self.CONFIG_SCHEMA[key])
            if error:
                errors.append(error)

        profiles = config.get('profiles', {})
        if not isinstance(profiles, dict):
            errors.append("Field 'profiles' must be an object")
            profiles = {}

        for profile, values in profiles.items():
            if profile not in PROFILES:
                errors.append(f"Unknown profile '{profile}'")
                continue
            for key, value in values.items():
                if key not in self.PROFILE_SCHEMA:
                    errors.append(f"Unknown field '{profile}.{key}'")
                    continue
                error = self._check_value(f"{profile}.{key}", value, self.PROFILE_SCHEMA[key])
                if error:
                    errors.append(error)

        if errors:
            raise ConfigError(
                f"Configuration validation failed: {'; '.join(errors)}",
                [
                    f"Edit or remove {self.config_file}",
                    "Reset to defaults: aiserver config --reset"
                ]
            )

    def load(self: Self, validate: bool = True) -> Dict[str, Any]:
        """Load configuration from file with optional validation.

        Returns:
            Dictionary containing configuration data, without defaults.

        Raises:
            ConfigError: If the file cannot be read or fails validation.
        """
        if not self.config_file.exists():
            return {}

        try:
            with open(self.config_file, 'r') as f:
                config = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(f"Failed to load configuration: {e}")

        if not isinstance(config, dict):
            raise ConfigError("Configuration file must contain a JSON object")

        if validate:
            self._validate_config_schema(config)

        return config

    def save(self: Self, config: Dict[str, Any]) -> None:
        """Validate and save configuration atomically.

        Raises:
            ConfigError: If validation or saving fails.
        """
        self._validate_config_schema(config)
        self._ensure_directories()

        temp_file = self.config_file.with_suffix('.tmp')
        try:
            with open(temp_file, 'w') as f:
                json.dump(config, f, indent=2, sort_keys=True)
            os.chmod(temp_file, 0o600)
            temp_file.replace(self.config_file)
            give_to_invoking_user(self.config_dir, self.config_file)
        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise ConfigError(f"Failed to save configuration: {e}")

    def get(self: Self, key: str, default: Any = None, profile: Optional[str] = None) -> Any:
        """Get a configuration value, falling back to schema defaults.

        Args:
            key: Configuration key to retrieve.
            default: Value returned when neither file nor schema define one.
            profile: Profile section to read profile keys from.
        """
        config = self.load()
        if profile is not None and key in self.PROFILE_SCHEMA:
            section = config.get('profiles', {}).get(profile, {})
            if key in section:
                return section[key]
            return PROFILE_DEFAULTS[profile].get(key, default)

        if key in config:
            return config[key]
        return self.CONFIG_SCHEMA.get(key, {}).get('default', default)

    def set(self: Self, key: str, value: Any, profile: Optional[str] = None) -> None:
        """Set a configuration value with validation.

        Profile keys require ``profile``; shared keys must not be given one.

        Raises:
            ConfigError: If the key is unknown or the value is invalid.
        """
        config = self.load(validate=False)

        if key in self.PROFILE_SCHEMA:
            if profile not in PROFILES:
                raise ConfigError(
                    f"'{key}' is a per-profile setting",
                    [f"Pass --profile with one of: {', '.join(PROFILES)}"]
                )
            config.setdefault('profiles', {}).setdefault(profile, {})[key] = value
        elif key in self.CONFIG_SCHEMA:
            config[key] = value
        else:
            known = sorted(list(self.CONFIG_SCHEMA) + list(self.PROFILE_SCHEMA))
            raise ConfigError(f"Unknown configuration key: {key}", [f"Known keys: {', '.join(known)}"])

        self.save(config)

    def coerce(self: Self, key: str, raw: str) -> Any:
        """Convert a ``--set KEY=VALUE`` string to the schema type of ``key``."""
        schema = self.CONFIG_SCHEMA.get(key) or self.PROFILE_SCHEMA.get(key)
        if schema is None:
            raise ConfigError(f"Unknown configuration key: {key}")

        expected = schema['type']
        if expected is bool:
            lowered = raw.strip().lower()
            if lowered in ('1', 'true', 'yes', 'on'):
                return True
            if lowered in ('0', 'false', 'no', 'off'):
                return False
            raise ConfigError(f"Field '{key}' expects true or false, got: {raw}")
        if expected is int:
            try:
                return int(raw)
            except ValueError:
                raise ConfigError(f"Field '{key}' expects an integer, got: {raw}")
        return raw

    def reset(self: Self) -> None:
        """Remove the configuration file, restoring built-in defaults."""
        if self.config_file.exists():
            self.config_file.unlink()

    def settings_for(self: Self, profile: str, **overrides: Any) -> ProvisionSettings:
        """Resolve settings for a profile.

        Args:
            profile: ``server`` or ``edge``.
            **overrides: Values from CLI options; ``None`` values are ignored.

        Returns:
            Fully resolved ``ProvisionSettings``.

        Raises:
            ConfigError: If the profile is unknown or config is invalid.
            ValidationError: If an override is invalid.
        """
        if profile not in PROFILES:
            raise ConfigError(f"Unknown profile: {profile}")

        overrides = {k: v for k, v in overrides.items() if v is not None}

        def pick(key: str) -> Any:
            if key in overrides:
                return overrides[key]
            return self.get(key, profile=profile)

        project_dir = str(pick('project_dir'))
        if project_dir.startswith('~'):
            project_dir = str(invoking_user_home()) + project_dir[1:]

        domain = overrides.get('domain')
        if domain is not None:
            domain = InputValidator.validate_domain(domain)

        return ProvisionSettings(
            profile=profile,
            project_dir=InputValidator.validate_directory(project_dir),
            container_name=InputValidator.validate_container_name(pick('container_name')),
            app_port=InputValidator.validate_port(pick('app_port')),
            compose_command=shlex.split(pick('compose_command')),
            nginx_sites_available=Path(pick('nginx_sites_available')),
            nginx_sites_enabled=Path(pick('nginx_sites_enabled')),
            systemd_unit_dir=Path(pick('systemd_unit_dir')),
            service_name=InputValidator.validate_service_name(pick('service_name')),
            docker_install_url=pick('docker_install_url'),
            command_timeout=pick('command_timeout'),
            verify_timeout=pick('verify_timeout'),
            skip_firmware=bool(pick('skip_firmware')),
            domain=domain,
        )
