"""Main CLI interface for the AI server provisioner."""

import sys
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import PROFILES, Config, ProvisionSettings
from .errors import ProvisionError, handle_exception, handle_keyboard_interrupt, require_root_privileges
from .host import HostProbe
from .pipeline import Provisioner
from .planner import RequirementKind, framework_requirements, plan_actions, summarize, system_requirements
from .provision_logging import ProvisionLogger, configure_console_logging, get_provision_logger
from .runner import CommandRunner
from .scaffold import ScaffoldGenerator
from .system import SystemMonitor
from .ui.display import display_plan_table, display_result_summary, display_status
from .validators import InputValidator
from .verify import verify_web_access

console = Console()


def _load_settings(profile: str, **overrides) -> ProvisionSettings:
    """Resolve settings or exit with a formatted error."""
    try:
        return Config().settings_for(profile, **overrides)
    except ProvisionError as e:
        handle_exception(e, "Failed to load settings")


def _open_provision_logger() -> Optional[ProvisionLogger]:
    """Open the structured run log; runs continue without it if unwritable."""
    try:
        return get_provision_logger()
    except OSError as e:
        console.print(f"[yellow]Warning:[/yellow] provisioning log disabled: {e}")
        return None


def _run_profile(settings: ProvisionSettings, verify: bool) -> None:
    provisioner = None
    try:
        provisioner = Provisioner(settings, provision_logger=_open_provision_logger(), verify_access=verify)
        result = provisioner.run()
    except KeyboardInterrupt:
        handle_keyboard_interrupt()
    except ProvisionError as e:
        if provisioner is not None:
            display_result_summary(provisioner.result)
        handle_exception(e, f"Provisioning the {settings.profile} profile failed")

    display_result_summary(result)
    if result.rerun_required:
        console.print("[yellow]Run the same command again to finish provisioning.[/yellow]")


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help='Show every command and its output')
def main(verbose: bool) -> None:
    """Provision a single-board computer as a self-hosted AI inference server."""
    configure_console_logging(verbose)


@main.command()
@click.argument('domain', required=False, default="")
@click.option('--project-dir', type=click.Path(), help='Where to write the scaffold (default ~/ai-server)')
@click.option('--skip-firmware', is_flag=True, help='Do not run rpi-update')
@click.option('--verify', is_flag=True, help='Request the published URL once provisioning finishes')
def server(domain: str, project_dir: Optional[str], skip_firmware: bool, verify: bool) -> None:
    """Provision the full AI server behind Nginx for DOMAIN (a local domain or IP)."""
    try:
        InputValidator.validate_domain(domain)
    except ProvisionError as e:
        handle_exception(e, "Invalid arguments")

    # The Nginx site and unit files are written in-process and need root
    try:
        require_root_privileges(f"server {domain}")
    except ProvisionError as e:
        handle_exception(e, "Insufficient privileges")

    settings = _load_settings(
        "server",
        domain=domain,
        project_dir=project_dir,
        skip_firmware=True if skip_firmware else None
    )
    _run_profile(settings, verify)


@main.command()
@click.option('--project-dir', type=click.Path(), help='Where to write the scaffold (default ~/ai-inference)')
@click.option('--verify', is_flag=True, help='Request the inference endpoint once provisioning finishes')
def edge(project_dir: Optional[str], verify: bool) -> None:
    """Provision a standalone containerized inference server."""
    settings = _load_settings("edge", project_dir=project_dir)
    _run_profile(settings, verify)


@main.command()
@click.option('--profile', type=click.Choice(PROFILES), default='server', show_default=True)
def plan(profile: str) -> None:
    """Show which dependencies a run would install, without changing anything."""
    settings = _load_settings(profile)
    probe = HostProbe(CommandRunner(timeout=settings.command_timeout))

    system = system_requirements(profile, settings.compose_command[0])
    commands = [req.name for req in system if req.kind is RequirementKind.COMMAND]
    frameworks = framework_requirements(profile)
    try:
        actions = plan_actions(probe.snapshot(commands=commands), system)
        if frameworks:
            state = probe.snapshot(include_packages=False, include_pip=True)
            actions += plan_actions(state, frameworks)
    except ProvisionError as e:
        handle_exception(e, "Failed to inspect the host")

    display_plan_table(actions, title=f"Install Plan ({profile})")
    counts = summarize(actions)
    console.print(f"[green]{counts['skip']} already installed[/green], [yellow]{counts['install']} to install[/yellow]")


@main.command()
@click.option('--profile', type=click.Choice(PROFILES), default='server', show_default=True)
@click.option('--project-dir', type=click.Path(), help='Where to write the scaffold')
def scaffold(profile: str, project_dir: Optional[str]) -> None:
    """Write the app source, Dockerfile and compose manifest only."""
    settings = _load_settings(profile, project_dir=project_dir)
    try:
        written = ScaffoldGenerator(settings).write()
    except ProvisionError as e:
        handle_exception(e, "Failed to write the scaffold")

    for path in written:
        console.print(f"[green]✓[/green] {path}")


@main.command()
@click.option('--profile', type=click.Choice(PROFILES), default='server', show_default=True)
def status(profile: str) -> None:
    """Check Docker, the container, Nginx and the systemd unit."""
    settings = _load_settings(profile)
    monitor = SystemMonitor(HostProbe(CommandRunner(timeout=60)), settings)

    with console.status("Checking components..."):
        checks = monitor.check_components()
        metrics = monitor.host_metrics()

    display_status(checks, metrics)
    if not all(check["passed"] for check in checks.values()):
        sys.exit(1)


@main.command()
@click.argument('url')
@click.option('--expect', help='Text the response body must contain')
@click.option('--timeout', type=int, default=60, show_default=True, help='Seconds to keep retrying')
def verify(url: str, expect: Optional[str], timeout: int) -> None:
    """Check that URL (or a bare domain) answers with status 200."""
    try:
        url = InputValidator.validate_url(url)
    except ProvisionError as e:
        handle_exception(e, "Invalid URL")

    success, message = verify_web_access(url, expect, timeout=timeout)
    if success:
        console.print(f"[green]{message}[/green]")
    else:
        console.print(f"[red]{message}[/red]")
        sys.exit(1)


@main.command('config')
@click.option('--set', 'assignments', multiple=True, metavar='KEY=VALUE', help='Update a setting')
@click.option('--profile', type=click.Choice(PROFILES), help='Profile for per-profile settings')
@click.option('--reset', is_flag=True, help='Restore built-in defaults')
def config_cmd(assignments: Tuple[str, ...], profile: Optional[str], reset: bool) -> None:
    """Show or update provisioner settings."""
    config = Config()

    try:
        if reset:
            config.reset()
            console.print("[green]✓[/green] Configuration reset to defaults")

        for assignment in assignments:
            key, sep, raw = assignment.partition('=')
            if not sep:
                raise ProvisionError(f"Expected KEY=VALUE, got: {assignment}")
            key = key.strip()
            config.set(key, config.coerce(key, raw.strip()), profile=profile)
            console.print(f"[green]✓[/green] {key} updated")

        table = Table(title=f"Configuration ({config.config_file})")
        table.add_column("Key", style="cyan")
        for name in PROFILES:
            table.add_column(name, style="white")

        for key in list(Config.PROFILE_SCHEMA) + list(Config.CONFIG_SCHEMA):
            table.add_row(key, *(str(config.get(key, profile=name)) for name in PROFILES))
    except ProvisionError as e:
        handle_exception(e, "Configuration error")

    console.print(table)


if __name__ == "__main__":
    main()
