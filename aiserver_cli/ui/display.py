"""Display utilities for the provisioner CLI.

Step messages carry a severity-coded emoji prefix; tables summarise plans,
results and host status.
"""

from typing import Any, Dict, Iterable, List

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_ICONS = {
    "ok": "✅",
    "action": "⚙️",
    "check": "🔍",
    "warning": "⚠️",
    "error": "❌",
    "update": "🔄",
    "firmware": "🔧",
    "file": "📝",
    "directory": "📁",
    "launch": "🚀",
    "docker": "🐳",
    "compose": "🔗",
    "python": "🐍",
    "proxy": "🔐",
    "service": "🔧",
    "done": "🎉",
}


def report(kind: str, message: str) -> None:
    """Print one step message with its severity icon.

    Args:
        kind: Key of ``STATUS_ICONS``.
        message: Plain text message; markup is escaped.
    """
    icon = STATUS_ICONS.get(kind, "•")
    console.print(f"{icon} {escape(message)}")


def display_plan_table(plan: Iterable[Any], title: str = "Install Plan") -> None:
    """Display planned dependency actions.

    Args:
        plan: ``PlannedAction`` items.
        title: Table title to display.
    """
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Dependency", style="cyan", no_wrap=True)
    table.add_column("Check", style="dim")
    table.add_column("Action", justify="center")
    table.add_column("Installs", style="blue")

    for item in plan:
        requirement = item.requirement
        if item.needs_install:
            action_text = "[yellow]install[/yellow]"
            installs = " ".join(requirement.install_packages)
        else:
            action_text = "[green]skip[/green]"
            installs = "-"
        table.add_row(requirement.label, requirement.kind.value, action_text, installs)

    console.print(table)


def display_result_summary(result: Any) -> None:
    """Display a summary of a provisioning run."""
    info_table = Table(title="Provisioning Summary")
    info_table.add_column("Property", style="cyan")
    info_table.add_column("Value", style="white")

    info_table.add_row("Profile", result.profile)
    info_table.add_row("Final State", result.state.name)
    info_table.add_row("Project Directory", str(result.project_dir))
    if result.url:
        info_table.add_row("URL", result.url)
    if result.installed:
        info_table.add_row("Installed", ", ".join(result.installed))

    console.print(info_table)

    steps_table = Table(title="Steps")
    steps_table.add_column("Step", style="cyan")
    steps_table.add_column("Status", justify="center")
    steps_table.add_column("Message", style="white")

    for step in result.steps:
        status = "✓" if step['success'] else "✗"
        status_style = "green" if step['success'] else "red"
        steps_table.add_row(
            step['step'].replace('_', ' ').title(),
            f"[{status_style}]{status}[/{status_style}]",
            escape(step['message'])
        )

    console.print(steps_table)


def display_status(checks: Dict[str, Dict[str, Any]], metrics: Dict[str, Any]) -> None:
    """Display service/container checks and host metrics.

    Args:
        checks: Mapping of check name to ``{"passed": bool, "details": str}``.
        metrics: Host metrics from ``SystemMonitor.host_metrics``.
    """
    table = Table(title="AI Server Status")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Details")

    for name, data in checks.items():
        if data.get("passed"):
            status_text = "[green]●[/green] OK"
        else:
            status_text = "[red]●[/red] Down"
        table.add_row(name, status_text, escape(str(data.get("details", ""))))

    console.print(table)

    if metrics:
        metrics_table = Table(title="Host Metrics", show_header=False)
        metrics_table.add_column("Metric", style="cyan", no_wrap=True)
        metrics_table.add_column("Value", justify="right")
        metrics_table.add_column("Status", justify="center")

        for label, key in (("CPU Usage", "cpu_percent"), ("Memory Usage", "memory_percent"), ("Disk Usage", "disk_percent")):
            value = metrics.get(key, 0.0)
            metrics_table.add_row(label, f"{value:.1f}%", _get_usage_status(value))

        load = metrics.get("load_average")
        if load:
            metrics_table.add_row("Load Average", f"{load[0]:.2f}", "[blue]ℹ[/blue]")

        console.print(metrics_table)


def display_lines(title: str, lines: List[str]) -> None:
    """Print captured command output (container logs, unit status) in a panel."""
    body = "\n".join(escape(line) for line in lines) if lines else "[dim](no output)[/dim]"
    console.print(Panel(body, title=title, border_style="yellow", expand=False))


def _get_usage_status(percentage: float) -> str:
    """Get status indicator for usage percentage."""
    if percentage < 70:
        return "[green]●[/green]"
    elif percentage < 85:
        return "[yellow]●[/yellow]"
    else:
        return "[red]●[/red]"
