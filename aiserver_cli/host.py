"""Read-only queries against the local host.

The host's installed-package set and service states act as global state with
no transactional guarantee: a package reported here as installed can be
removed by another process before the pipeline acts on it. Queries are kept
side-effect free so they can be repeated freely.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Self, Set

from .runner import CommandRunner

# dpkg "desired/status" prefixes that mean the package is unpacked and configured
INSTALLED_STATES = ("ii", "hi")


@dataclass(frozen=True)
class HostState:
    """Snapshot of the software present on the host."""
    packages: FrozenSet[str] = field(default_factory=frozenset)
    commands: FrozenSet[str] = field(default_factory=frozenset)
    pip_listing: str = ""


def parse_dpkg_listing(listing: str) -> Set[str]:
    """Extract installed package names from ``dpkg -l`` output.

    Architecture qualifiers (``curl:arm64``) are dropped.
    """
    packages = set()
    for line in listing.splitlines():
        parts = line.split()
        if len(parts) < 2 or parts[0] not in INSTALLED_STATES:
            continue
        packages.add(parts[1].split(":", 1)[0])
    return packages


class HostProbe:
    """Queries package databases, commands, services and containers."""

    def __init__(self: Self, runner: CommandRunner) -> None:
        self.runner = runner

    def installed_packages(self: Self) -> Set[str]:
        """Return the set of installed dpkg packages.

        Raises:
            CommandError: If the dpkg database cannot be read.
        """
        result = self.runner.run(
            ["dpkg", "-l"],
            error_message="Failed to read the installed package list. Exiting.",
            suggestions=["Repair the dpkg database: sudo dpkg --configure -a"]
        )
        return parse_dpkg_listing(result.stdout)

    def command_exists(self: Self, name: str) -> bool:
        return self.runner.which(name) is not None

    def pip_listing(self: Self) -> str:
        """Return the raw ``pip3 list --format=columns`` output, or ``""``."""
        result = self.runner.run(["pip3", "list", "--format=columns"], privileged=True, check=False)
        return result.stdout if result.ok else ""

    def service_active(self: Self, name: str) -> bool:
        return self.runner.succeeds(["systemctl", "is-active", "--quiet", name])

    def service_enabled(self: Self, name: str) -> bool:
        return self.runner.succeeds(["systemctl", "is-enabled", "--quiet", name])

    def container_running(self: Self, name: str) -> bool:
        """Return True when Docker reports the container's running flag as true."""
        result = self.runner.run(
            ["docker", "inspect", "-f", "{{.State.Running}}", name],
            privileged=True,
            check=False
        )
        return result.ok and result.stdout.strip() == "true"

    def snapshot(
        self: Self,
        commands: Iterable[str] = (),
        include_packages: bool = True,
        include_pip: bool = False
    ) -> HostState:
        """Capture the parts of host state a plan needs.

        Args:
            commands: Command names to resolve on ``PATH``.
            include_packages: Query the dpkg database.
            include_pip: Query the pip package list.
        """
        return HostState(
            packages=frozenset(self.installed_packages()) if include_packages else frozenset(),
            commands=frozenset(name for name in commands if self.command_exists(name)),
            pip_listing=self.pip_listing() if include_pip else ""
        )
