"""Typer-powered command line for ``stackctl``.

``stackctl up`` is the one command most operators need: it prepares the host,
starts the three-tier stack and waits until it is ready. The remaining
commands inspect or tear down what ``up`` created.
"""
from __future__ import annotations

import json
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, load_config
from .doctor import (
    DoctorEngine,
    DoctorImpact,
    DoctorReport,
    ProbeStatus,
    collect_probes,
    collect_status_identifiers,
    create_probe_context,
    serialize_report,
)
from .errors import ConfigError, StackctlError
from .logging import OperationScope, StructuredLogger
from .pipeline import Bootstrapper
from .providers import CommandRunner, ComposeProvider, detect_compose
from .report import render_report, render_services, report_payload, service_rows

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to stackctl's YAML config file.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of formatted text.",
)

_PROBE_STATUS_STYLE = {
    ProbeStatus.GREEN: "[green]PASS[/green]",
    ProbeStatus.YELLOW: "[yellow]WARN[/yellow]",
    ProbeStatus.RED: "[red]FAIL[/red]",
}
_SUMMARY_STATUS_STYLE = {
    ProbeStatus.GREEN: "[green]GREEN[/green]",
    ProbeStatus.YELLOW: "[yellow]WARN[/yellow]",
    ProbeStatus.RED: "[red]RED[/red]",
}
_DOCTOR_IMPACT_MESSAGES = {
    DoctorImpact.OK: "Doctor run completed successfully.",
    DoctorImpact.VALIDATION: "Doctor detected configuration or descriptor errors.",
    DoctorImpact.ENVIRONMENT: "Doctor detected an unsupported host or outdated tools.",
    DoctorImpact.PROVIDER: "Doctor detected provider failures.",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Bootstrap and run a local frontend/backend/database stack.

        'stackctl up' checks the host, installs Docker when needed, starts the
        services with Docker Compose and waits until they report ready.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    config_file: Path | None
    logger: StructuredLogger


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=int(exc.exit_code)) from exc
    runtime = RuntimeContext(
        config=config,
        config_file=config_file,
        logger=StructuredLogger(config.logs_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the stackctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"stackctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int,
    json_output: bool = False,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    if json_output:
        console.print_json(data={"error": message, "exit_code": rc})
    else:
        console.print(f"[red]{escape(message)}[/red]")
    op.error(message, rc=rc)
    raise typer.Exit(code=rc)


def _fail(op: OperationScope, exc: StackctlError, *, json_output: bool = False) -> NoReturn:
    _command_error(op, str(exc), rc=int(exc.exit_code), json_output=json_output)


def _compose_provider(runtime: RuntimeContext, runner: CommandRunner) -> ComposeProvider:
    config = runtime.config
    command = detect_compose(runner, config.requirements.compose)
    return ComposeProvider(
        command=command,
        runner=runner,
        project_name=config.project_name,
        descriptor=config.descriptor_path,
    )


@app.command()
def up(
    ctx: typer.Context,
    project_dir: Path | None = typer.Option(
        None,
        "--project-dir",
        file_okay=False,
        help="Directory containing the compose descriptor (defaults to the current one).",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Report what would be installed and started without changing the host.",
    ),
    skip_install: bool = typer.Option(
        False,
        "--skip-install",
        help="Never install Docker; fail when it is missing.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Prepare the host, start the stack and wait until it is ready."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "up",
        args={
            "project_dir": project_dir,
            "dry_run": dry_run,
            "skip_install": skip_install,
            "json": json_output,
        },
        target={"kind": "project", "name": runtime.config.project_name},
    ) as op:
        config = runtime.config
        if project_dir is not None:
            try:
                config = load_config(
                    config_file=runtime.config_file,
                    overrides={"project_dir": str(project_dir)},
                )
            except ConfigError as exc:
                _fail(op, exc, json_output=json_output)

        def record(name: str, status: str, detail: object) -> None:
            op.add_step(name, status=status, detail=detail)
            if not json_output:
                console.print(f"[dim]{name}[/dim]: {status}")

        bootstrapper = Bootstrapper(
            config,
            runner=CommandRunner(dry_run=dry_run),
            record_step=record,
            skip_install=skip_install,
        )
        try:
            report = bootstrapper.run()
        except StackctlError as exc:
            _fail(op, exc, json_output=json_output)

        payload = report_payload(report, config)
        if json_output:
            console.print_json(data=payload)
        else:
            render_report(console, report, config)

        if dry_run:
            op.success("Dry run complete.", changed=0, context=payload)
        elif report.warnings:
            op.warning(
                "Stack is up with warnings.",
                warnings=report.warnings,
                context=payload,
            )
        else:
            op.success("Stack is up.", context=payload)


@app.command()
def doctor(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Run read-only host and project checks."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "doctor",
        args={"json": json_output},
        target={"kind": "system", "scope": "health"},
    ) as op:
        context = create_probe_context(runtime.config, CommandRunner())
        probes = list(collect_probes(context))
        engine = DoctorEngine(context)
        report = engine.run(probes, metadata={"project_dir": runtime.config.project_dir})
        report_data = serialize_report(report)

        if json_output:
            console.print_json(data=report_data)
        else:
            _render_doctor_report(report)

        warning_ids = collect_status_identifiers(report.results, ProbeStatus.YELLOW)
        error_ids = collect_status_identifiers(report.results, ProbeStatus.RED)
        log_context = {"report": report_data}

        summary = report.summary
        impact_message = _DOCTOR_IMPACT_MESSAGES.get(summary.impact, "Doctor detected issues.")

        if not json_output:
            if summary.exit_code == 0 and summary.status is ProbeStatus.YELLOW:
                console.print("[yellow]Doctor completed with warnings.[/yellow]")
            elif summary.exit_code != 0:
                console.print(f"[red]{impact_message}[/red]")

        if summary.exit_code == 0:
            if summary.status is ProbeStatus.YELLOW:
                op.warning(
                    "Doctor completed with warnings.",
                    warnings=warning_ids or None,
                    context=log_context,
                )
            else:
                op.success(_DOCTOR_IMPACT_MESSAGES[DoctorImpact.OK], context=log_context)
            return

        op.error(
            impact_message,
            rc=summary.exit_code,
            errors=error_ids or None,
            warnings=warning_ids or None,
            context=log_context,
        )
        raise typer.Exit(code=summary.exit_code)


def _render_doctor_report(report: DoctorReport) -> None:
    """Render a doctor report in a human-friendly format."""
    summary = report.summary
    totals = summary.totals
    totals_line = (
        f"green={totals.get(ProbeStatus.GREEN, 0)} "
        f"warn={totals.get(ProbeStatus.YELLOW, 0)} "
        f"red={totals.get(ProbeStatus.RED, 0)}"
    )
    console.print(
        f"Doctor summary: {_SUMMARY_STATUS_STYLE[summary.status]} "
        f"(impact={summary.impact.name.lower()}, exit={summary.exit_code})"
    )
    console.print(f"Totals: {totals_line}")
    if not report.results:
        console.print("No probes were executed.")
        return

    console.print()
    for result in report.results:
        console.print(
            f"{_PROBE_STATUS_STYLE[result.status]} {escape(f'[{result.category}]')} {result.id}: "
            f"{escape(result.message)}"
        )
        if result.remediation:
            console.print(f"  remediation: {escape(result.remediation)}")
        if result.impact is not DoctorImpact.OK:
            console.print(f"  impact: {result.impact.name.lower()} (exit={result.impact.value})")


@app.command()
def status(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the state of each service in the project."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    with runtime.logger.operation(
        "status",
        args={"json": json_output},
        target={"kind": "project", "name": config.project_name},
    ) as op:
        try:
            provider = _compose_provider(runtime, CommandRunner())
            states = provider.service_states()
        except StackctlError as exc:
            _fail(op, exc, json_output=json_output)

        rows = service_rows(states, config.topology.services)
        if json_output:
            console.print_json(
                data={
                    "services": [
                        {"service": name, "state": state, "status": detail}
                        for name, state, detail in rows
                    ]
                }
            )
        else:
            render_services(console, states, config.topology.services)

        down_services = [name for name, state, _detail in rows if state != "Up"]
        if down_services:
            op.warning(
                "Some services are not running.",
                warnings=down_services,
                changed=0,
            )
        else:
            op.success("All services are running.", changed=0)


@app.command()
def down(ctx: typer.Context) -> None:
    """Stop and remove the project's containers."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    with runtime.logger.operation(
        "down",
        target={"kind": "project", "name": config.project_name},
    ) as op:
        try:
            provider = _compose_provider(runtime, CommandRunner())
            provider.down()
        except StackctlError as exc:
            _fail(op, exc)
        console.print(f"[green]Stopped '{config.project_name}'.[/green]")
        op.success("Stack stopped.")


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()
