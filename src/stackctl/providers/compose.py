"""Docker Compose provider used to converge and inspect the service stack."""
from __future__ import annotations

import json
import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from ..config import ToolRequirement
from ..errors import ComposeError, ConvergeFailed, InstallationFailed, VersionTooLow
from ..versions import extract_version, satisfies
from .commands import CommandRunner, describe_failure

LOGGER = logging.getLogger(__name__)

RUNNING_STATES = frozenset({"running"})


@dataclass(frozen=True, slots=True)
class ComposeCommand:
    """Resolved Compose invocation and its version."""

    argv: tuple[str, ...]
    version: str
    flavor: Literal["v2", "v1"]

    @property
    def display(self) -> str:
        """Return the command as an operator would type it."""
        return " ".join(self.argv)


@dataclass(frozen=True, slots=True)
class ServiceState:
    """Observed state of a single Compose service."""

    name: str
    state: str
    status: str = ""

    @property
    def is_up(self) -> bool:
        """Return ``True`` when the service container is running."""
        return self.state.lower() in RUNNING_STATES or self.status.lower().startswith("up")


def detect_compose(
    runner: CommandRunner,
    requirement: ToolRequirement,
    *,
    docker_bin: str = "docker",
    legacy_bin: str = "docker-compose",
) -> ComposeCommand:
    """Return the Compose command to use, preferring the V2 plugin."""
    command: ComposeCommand | None = None
    if runner.which(docker_bin) is not None:
        result = runner.run([docker_bin, "compose", "version", "--short"])
        version = extract_version(result.stdout) if result.returncode == 0 else None
        if version:
            command = ComposeCommand(argv=(docker_bin, "compose"), version=version, flavor="v2")
    if command is None and runner.which(legacy_bin) is not None:
        result = runner.run([legacy_bin, "--version"])
        version = extract_version(result.stdout) if result.returncode == 0 else None
        if version:
            command = ComposeCommand(argv=(legacy_bin,), version=version, flavor="v1")
    if command is None:
        raise InstallationFailed(
            "Docker Compose not found. Install the docker-compose-plugin package."
        )
    if not satisfies(command.version, requirement.minimum):
        raise VersionTooLow(requirement.name, command.version, requirement.minimum)
    LOGGER.debug("Using %s %s", command.display, command.version)
    return command


@dataclass(slots=True)
class ComposeProvider:
    """Run Compose commands scoped to one project and descriptor."""

    command: ComposeCommand
    runner: CommandRunner
    project_name: str
    descriptor: Path

    def up(self, *, build: bool = True) -> subprocess.CompletedProcess[str]:
        """Create and start all services, rebuilding images by default."""
        args = ["up", "-d"]
        if build:
            args.append("--build")
        result = self._compose(args, mutating=True)
        if result.returncode != 0:
            raise ConvergeFailed(f"{self.command.display} up failed ({describe_failure(result)}).")
        return result

    def down(self) -> subprocess.CompletedProcess[str]:
        """Stop and remove the project's containers."""
        result = self._compose(["down"], mutating=True)
        if result.returncode != 0:
            raise ComposeError(f"{self.command.display} down failed ({describe_failure(result)}).")
        return result

    def service_states(self) -> list[ServiceState]:
        """Return the observed state of every service in the project."""
        if self.command.flavor == "v2":
            return self._service_states_json()
        return self._service_states_legacy()

    def logs(self, service: str) -> str:
        """Return the captured log output for *service*."""
        result = self._compose(["logs", "--no-color", service])
        if result.returncode != 0:
            raise ComposeError(
                f"{self.command.display} logs {service} failed ({describe_failure(result)})."
            )
        return f"{result.stdout or ''}{result.stderr or ''}"

    def base_args(self) -> list[str]:
        """Return the Compose invocation prefix for this project."""
        return [*self.command.argv, "-p", self.project_name, "-f", str(self.descriptor)]

    # ------------------------------------------------------------------
    def _compose(
        self,
        args: Sequence[str],
        *,
        mutating: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        return self.runner.run([*self.base_args(), *args], mutating=mutating)

    def _service_states_json(self) -> list[ServiceState]:
        result = self._compose(["ps", "--all", "--format", "json"])
        if result.returncode != 0:
            raise ComposeError(f"{self.command.display} ps failed ({describe_failure(result)}).")
        return parse_ps_json(result.stdout or "")

    def _service_states_legacy(self) -> list[ServiceState]:
        all_result = self._compose(["ps", "--services"])
        running_result = self._compose(["ps", "--services", "--filter", "status=running"])
        for result in (all_result, running_result):
            if result.returncode != 0:
                raise ComposeError(
                    f"{self.command.display} ps failed ({describe_failure(result)})."
                )
        running = set(_split_lines(running_result.stdout))
        states: list[ServiceState] = []
        for name in _split_lines(all_result.stdout):
            if name in running:
                states.append(ServiceState(name=name, state="running", status="Up"))
            else:
                states.append(ServiceState(name=name, state="stopped"))
        return states


def parse_ps_json(output: str) -> list[ServiceState]:
    """Parse ``compose ps --format json`` output.

    Compose releases before 2.21 print a single JSON array, later releases
    print one JSON object per line.
    """
    text = output.strip()
    if not text:
        return []
    try:
        if text.startswith("["):
            entries = json.loads(text)
        else:
            entries = [json.loads(line) for line in text.splitlines() if line.strip()]
    except json.JSONDecodeError as exc:
        raise ComposeError(f"Unexpected compose ps output: {exc}") from exc

    states: list[ServiceState] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        name = entry.get("Service")
        if not isinstance(name, str) or not name:
            continue
        states.append(
            ServiceState(
                name=name,
                state=str(entry.get("State") or ""),
                status=str(entry.get("Status") or ""),
            )
        )
    return states


def _split_lines(text: str | None) -> list[str]:
    return [line.strip() for line in (text or "").splitlines() if line.strip()]


__all__ = [
    "ComposeCommand",
    "ComposeProvider",
    "ServiceState",
    "detect_compose",
    "parse_ps_json",
]
