"""Dependency requirements and the install plan.

``plan_actions`` is a pure function from a ``HostState`` snapshot to the list
of actions the pipeline will take, so the effect of a run can be inspected
(``aiserver plan``) and tested without a live host.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .host import HostState


class RequirementKind(Enum):
    """How presence of a requirement is detected."""
    APT = "apt"          # dpkg database lookup
    COMMAND = "command"  # resolvable on PATH
    PIP = "pip"          # substring of the pip package listing


class Installer(Enum):
    """How a missing requirement is installed."""
    APT = "apt"
    PIP = "pip"
    DOCKER_SCRIPT = "docker_script"


class Action(Enum):
    SKIP = "skip"
    INSTALL = "install"


@dataclass(frozen=True)
class Requirement:
    """A dependency the host must have before the scaffold is launched."""
    name: str
    label: str
    kind: RequirementKind
    installer: Installer
    packages: Tuple[str, ...] = ()
    stop_after_install: bool = False
    note: Optional[str] = None

    @property
    def install_packages(self) -> Tuple[str, ...]:
        return self.packages or (self.name,)


@dataclass(frozen=True)
class PlannedAction:
    requirement: Requirement
    action: Action

    @property
    def needs_install(self) -> bool:
        return self.action is Action.INSTALL


def is_satisfied(state: HostState, requirement: Requirement) -> bool:
    """Return True when the snapshot shows the requirement as present."""
    if requirement.kind is RequirementKind.APT:
        return requirement.name in state.packages
    if requirement.kind is RequirementKind.COMMAND:
        return requirement.name in state.commands
    # Substring match on purpose: "torch" is also satisfied by "torchvision"
    return requirement.name in state.pip_listing


def plan_actions(state: HostState, requirements: Iterable[Requirement]) -> List[PlannedAction]:
    """Map current host state to an ordered action plan.

    Args:
        state: Snapshot of the host.
        requirements: Requirements in installation order.

    Returns:
        One ``PlannedAction`` per requirement, in the same order.
    """
    return [
        PlannedAction(req, Action.SKIP if is_satisfied(state, req) else Action.INSTALL)
        for req in requirements
    ]


def apt_requirements(names: Sequence[str]) -> List[Requirement]:
    return [
        Requirement(name=name, label=name, kind=RequirementKind.APT, installer=Installer.APT)
        for name in names
    ]


SERVER_APT_PACKAGES = (
    "apt-transport-https",
    "ca-certificates",
    "curl",
    "software-properties-common",
    "python3",
    "python3-pip",
    "git",
    "nginx",
    "python3-certbot-nginx",
)

EDGE_APT_PACKAGES = (
    "ca-certificates",
    "git",
    "python3",
    "python3-pip",
)

DOCKER_GROUP_NOTE = (
    "Log out and back in (or reboot) so the docker group membership applies."
)


def docker_requirement(stop_after_install: bool = False) -> Requirement:
    return Requirement(
        name="docker",
        label="Docker",
        kind=RequirementKind.COMMAND,
        installer=Installer.DOCKER_SCRIPT,
        stop_after_install=stop_after_install,
        note=DOCKER_GROUP_NOTE
    )


def compose_requirement(command: str = "docker-compose") -> Requirement:
    return Requirement(
        name=command,
        label="Docker Compose",
        kind=RequirementKind.COMMAND,
        installer=Installer.PIP,
        packages=("docker-compose",)
    )


AI_FRAMEWORK_REQUIREMENTS = [
    Requirement(
        name="tflite-runtime",
        label="TensorFlow Lite",
        kind=RequirementKind.PIP,
        installer=Installer.PIP
    ),
    Requirement(
        name="torch",
        label="PyTorch",
        kind=RequirementKind.PIP,
        installer=Installer.PIP,
        packages=("torch", "torchvision")
    ),
]


def system_requirements(profile: str, compose_command: str = "docker-compose") -> List[Requirement]:
    """Return OS-level requirements for a profile in installation order.

    A compose command of plain ``docker`` (the ``docker compose`` plugin) is
    covered by the Docker requirement itself. The edge profile stops the run
    after a first-time Docker install so the user can pick up docker group
    membership before continuing.
    """
    compose = [] if compose_command == "docker" else [compose_requirement(compose_command)]
    if profile == "server":
        return (
            apt_requirements(SERVER_APT_PACKAGES)
            + [docker_requirement()]
            + compose
        )
    if profile == "edge":
        return (
            apt_requirements(EDGE_APT_PACKAGES)
            + [docker_requirement(stop_after_install=True)]
            + compose
        )
    raise ValueError(f"Unknown profile: {profile}")


def framework_requirements(profile: str) -> List[Requirement]:
    """Return host-side ML runtime requirements for a profile."""
    return list(AI_FRAMEWORK_REQUIREMENTS) if profile == "server" else []


def summarize(plan: Iterable[PlannedAction]) -> Dict[str, int]:
    """Count planned actions by kind."""
    counts = {action.value: 0 for action in Action}
    for item in plan:
        counts[item.action.value] += 1
    return counts
