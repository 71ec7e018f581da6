"""Console rendering and JSON payloads for pipeline results."""
from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import AppConfig
from .doctor.models import ProbeStatus
from .doctor.utils import serialize_result
from .pipeline import BootstrapReport
from .providers.compose import ServiceState

_PROBE_STATUS_STYLE = {
    ProbeStatus.GREEN: "[green]PASS[/green]",
    ProbeStatus.YELLOW: "[yellow]WARN[/yellow]",
    ProbeStatus.RED: "[red]FAIL[/red]",
}


def service_rows(
    states: Sequence[ServiceState],
    expected: Sequence[str],
) -> list[tuple[str, str, str]]:
    """Return ``(service, state, status)`` rows, expected services first.

    Running services are shown as ``Up``; expected services that were never
    observed are listed as ``missing``.
    """
    observed = {state.name: state for state in states}
    names = list(expected) + sorted(name for name in observed if name not in expected)
    rows: list[tuple[str, str, str]] = []
    for name in names:
        state = observed.get(name)
        if state is None:
            rows.append((name, "missing", ""))
        elif state.is_up:
            rows.append((name, "Up", state.status))
        else:
            rows.append((name, state.state or "unknown", state.status))
    return rows


def render_services(
    console: Console,
    states: Sequence[ServiceState],
    expected: Sequence[str],
) -> None:
    """Print the service table."""
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Service", style="bold")
    table.add_column("State")
    table.add_column("Status")
    for name, state, status in service_rows(states, expected):
        style = "green" if state == "Up" else "red"
        table.add_row(name, f"[{style}]{state}[/{style}]", status)
    console.print(table)


def render_report(console: Console, report: BootstrapReport, config: AppConfig) -> None:
    """Print the end-of-run summary for ``stackctl up``."""
    if report.dry_run:
        _render_dry_run(console, report)
        return

    if report.readiness is not None:
        console.print(
            f"[green]Services ready[/green] after {report.readiness.ticks} check(s)."
        )
        render_services(console, report.readiness.services, config.topology.services)

    if report.verification:
        console.print()
        for result in report.verification:
            status = _PROBE_STATUS_STYLE[result.status]
            console.print(f"{status} {result.id}: {escape(result.message)}")
            if result.remediation and result.status is not ProbeStatus.GREEN:
                console.print(f"  remediation: {escape(result.remediation)}")

    other_warnings = [
        warning for warning in report.warnings if warning not in report.verification_warnings
    ]
    for warning in other_warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")

    console.print()
    console.print(f"[bold]{report.project_name}[/bold] is running.")
    console.print(f"  Frontend:  {config.frontend_url}")
    if report.compose is not None:
        compose = report.compose.display
        console.print(f"  Status:    {compose} ps   (or: stackctl status)")
        console.print(f"  Stop:      {compose} down (or: stackctl down)")


def _render_dry_run(console: Console, report: BootstrapReport) -> None:
    docker = report.docker
    if docker is not None and docker.version is None:
        console.print("[yellow]Dry run[/yellow]: Docker would be installed with these steps:")
        for step in docker.steps:
            console.print(f"  - {step}")
    elif docker is not None:
        console.print(f"Docker {docker.version} already installed.")
    if report.compose is not None:
        console.print(f"Compose: {report.compose.display} {report.compose.version}")
    if report.topology is not None:
        order = " -> ".join(report.topology.startup_order())
        console.print(f"Startup order: {order}")
    for warning in report.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    console.print("[yellow]Dry run[/yellow]: no changes were made.")


def report_payload(report: BootstrapReport, config: AppConfig) -> dict[str, object]:
    """Return a JSON-serialisable summary of *report*."""
    payload: dict[str, object] = {
        "project_name": report.project_name,
        "dry_run": report.dry_run,
        "host": report.host.label if report.host else None,
        "docker": None,
        "compose": None,
        "startup_order": list(report.topology.startup_order()) if report.topology else None,
        "readiness": None,
        "verification": [serialize_result(result) for result in report.verification],
        "warnings": list(report.warnings),
        "frontend_url": config.frontend_url,
    }
    if report.docker is not None:
        payload["docker"] = {
            "version": report.docker.version,
            "installed": report.docker.installation_performed,
            "steps": list(report.docker.steps),
        }
    if report.compose is not None:
        payload["compose"] = {
            "command": report.compose.display,
            "version": report.compose.version,
        }
    if report.readiness is not None:
        payload["readiness"] = {
            "state": report.readiness.state.value,
            "ticks": report.readiness.ticks,
            "services": [
                {"service": name, "state": state, "status": status}
                for name, state, status in service_rows(
                    report.readiness.services, config.topology.services
                )
            ],
        }
    return payload


__all__ = ["render_report", "render_services", "report_payload", "service_rows"]
