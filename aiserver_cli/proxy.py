"""Nginx reverse-proxy configuration for the server profile."""

import logging
from pathlib import Path
from typing import Optional, Self

from .config import ProvisionSettings
from .errors import ProxyError
from .host import HostProbe
from .provision_logging import ProvisionLogger
from .runner import CommandRunner
from .scaffold import write_file
from .template_registry import TemplateRenderer
from .ui.display import display_lines, report

logger = logging.getLogger(__name__)


def links_to(link: Path, target: Path) -> bool:
    """Return True when ``link`` is a symlink pointing at ``target``."""
    if not link.is_symlink():
        return False
    if link.readlink() == target:
        return True
    return link.resolve() == target.resolve()


class ProxyConfigurator:
    """Writes the site config, enables it and restarts Nginx."""

    def __init__(
        self: Self,
        runner: CommandRunner,
        probe: HostProbe,
        settings: ProvisionSettings,
        renderer: Optional[TemplateRenderer] = None,
        provision_logger: Optional[ProvisionLogger] = None
    ) -> None:
        self.runner = runner
        self.probe = probe
        self.settings = settings
        self.renderer = renderer or TemplateRenderer()
        self.provision_logger = provision_logger

    def render(self: Self) -> str:
        return self.renderer.render("server", "nginx", {
            "domain": self.settings.domain,
            "app_port": self.settings.app_port,
        })

    def remove_default_site(self: Self) -> None:
        """Drop the distribution's default site; a missing link is fine."""
        try:
            self.settings.default_site_link.unlink(missing_ok=True)
        except PermissionError:
            raise ProxyError(
                f"Permission denied removing {self.settings.default_site_link}",
                ["Run the provisioner with sudo"]
            )

    def write_site(self: Self) -> Path:
        return write_file(self.settings.site_config_path, self.render(), self.provision_logger)

    def enable_site(self: Self) -> None:
        """Link the site config into the enabled-sites directory.

        A link that already points at the site config is kept, so reruns
        succeed. Anything else occupying the path aborts the run.

        Raises:
            ProxyError: If the link path holds a foreign link or a file.
        """
        link = self.settings.site_link_path
        target = self.settings.site_config_path

        if links_to(link, target):
            report("ok", f"Site already enabled: {link}")
            return

        if link.is_symlink():
            raise ProxyError(
                f"{link} already links to {link.readlink()}, not {target}",
                [f"Remove the stale link: sudo rm {link}", "Re-run the provisioner"]
            )
        if link.exists():
            raise ProxyError(
                f"{link} exists and is not a symlink to {target}",
                [f"Move the file out of the way: sudo mv {link} {link}.bak", "Re-run the provisioner"]
            )

        try:
            link.symlink_to(target)
        except OSError as e:
            raise ProxyError(f"Failed to enable site {target}: {e}", ["Run the provisioner with sudo"])

    def restart(self: Self) -> None:
        report("update", "Restarting Nginx...")
        self.runner.run(
            ["nginx", "-t"],
            privileged=True,
            error_message="Nginx configuration test failed. Exiting."
        )
        self.runner.run(
            ["systemctl", "restart", "nginx"],
            privileged=True,
            error_message="Failed to restart Nginx. Exiting."
        )

    def verify_active(self: Self) -> None:
        """Check Nginx is active, dumping its status on failure.

        Raises:
            ProxyError: If Nginx is not active.
        """
        report("check", "Checking if Nginx is running...")
        if self.probe.service_active("nginx"):
            report("ok", "Nginx is running.")
            return

        report("error", "Nginx failed to start. Checking Nginx status...")
        status = self.runner.run(["systemctl", "status", "nginx", "--no-pager"], privileged=True, check=False)
        display_lines("systemctl status nginx", status.output.splitlines())
        raise ProxyError(
            "Nginx is not active",
            ["Test the configuration: sudo nginx -t", "Check Nginx logs: sudo journalctl -u nginx"]
        )

    def run(self: Self) -> None:
        report("proxy", "Setting up Nginx for local domain...")
        self.remove_default_site()
        self.write_site()
        self.enable_site()
        self.restart()
        self.verify_active()
