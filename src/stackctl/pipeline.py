"""The ``up`` pipeline: preflight, install, converge, wait, verify.

Every stage runs once, in order. Fatal problems raise a
:class:`~stackctl.errors.StackctlError` subclass immediately; the ownership
fix and the verification probes only ever produce warnings.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from .config import AppConfig
from .doctor.engine import create_probe_context, run_probes
from .doctor.models import ProbeResult, ProbeStatus
from .errors import InstallationFailed, ReadinessTimeout
from .permissions import apply_ownership_plan, invoking_owner, plan_ownership
from .preflight import HostIdentity, PreflightChecker
from .providers.commands import CommandRunner
from .providers.compose import ComposeCommand, ComposeProvider, detect_compose
from .providers.docker_installer import DockerInstaller, DockerInstallResult
from .readiness import ReadinessDeadline, ReadinessProber, ReadinessResult
from .topology import ServiceTopology, check_topology, load_topology
from .verify import collect_verification_probes

LOGGER = logging.getLogger(__name__)

StepRecorder = Callable[[str, str, object], None]


def _ignore_step(_name: str, _status: str, _detail: object) -> None:
    return None


@dataclass(slots=True)
class BootstrapReport:
    """Everything observed during one pipeline run."""

    project_name: str
    dry_run: bool = False
    host: HostIdentity | None = None
    docker: DockerInstallResult | None = None
    compose: ComposeCommand | None = None
    topology: ServiceTopology | None = None
    readiness: ReadinessResult | None = None
    verification: tuple[ProbeResult, ...] = ()
    warnings: list[str] = field(default_factory=list)

    @property
    def verification_warnings(self) -> list[str]:
        """Return messages of verification probes that did not pass."""
        return [result.message for result in self.verification if result.status is not ProbeStatus.GREEN]


class Bootstrapper:
    """Run the provisioning stages against one immutable configuration."""

    def __init__(
        self,
        config: AppConfig,
        *,
        runner: CommandRunner | None = None,
        sleep: Callable[[float], None] = time.sleep,
        env: Mapping[str, str] | None = None,
        record_step: StepRecorder | None = None,
        skip_install: bool = False,
    ) -> None:
        """Bind the pipeline to *config* and its collaborators."""
        self.config = config
        self.runner = runner or CommandRunner()
        self._sleep = sleep
        self._env = env
        self._record = record_step or _ignore_step
        self.skip_install = skip_install

    @property
    def dry_run(self) -> bool:
        """Return ``True`` when mutating commands are only planned."""
        return self.runner.dry_run

    def run(self) -> BootstrapReport:
        """Execute every stage and return the collected report."""
        report = BootstrapReport(project_name=self.config.project_name, dry_run=self.dry_run)

        report.host = self.preflight()
        report.docker = self.ensure_docker(report.host)
        if report.docker.version is None:
            # Dry run on a host without Docker: nothing below can be inspected.
            report.warnings.append("Docker is not installed; later stages were not planned.")
            return report

        report.compose = self.detect_compose()
        report.warnings.extend(self.fix_ownership())
        report.topology, topology_warnings = self.load_descriptor()
        report.warnings.extend(topology_warnings)

        provider = self.compose_provider(report.compose)
        self.converge(provider)
        if self.dry_run:
            return report

        report.readiness = self.wait_until_ready(provider)
        report.verification = self.verify(provider)
        report.warnings.extend(report.verification_warnings)
        return report

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def preflight(self) -> HostIdentity:
        """Reject unsupported hosts before anything is changed."""
        identity = PreflightChecker(self.config).check()
        self._record("preflight.os", "success", identity.label)
        return identity

    def ensure_docker(self, host: HostIdentity | None = None) -> DockerInstallResult:
        """Install Docker when it is missing."""
        installer = DockerInstaller(
            requirement=self.config.requirements.docker,
            settings=self.config.installer,
            runner=self.runner,
            elevate=self.config.elevate,
            codename=host.codename if host else None,
        )
        if self.skip_install:
            found = installer.detect_version()
            if found is None:
                raise InstallationFailed("Docker is not installed and installation was skipped.")
        result = installer.ensure(dry_run=self.dry_run)
        if result.installation_performed:
            self._record("install.docker", "success", result.version)
        elif result.dry_run and result.version is None:
            self._record("install.docker", "skipped", list(result.steps))
        else:
            self._record("install.docker", "unchanged", result.version)
        return result

    def detect_compose(self) -> ComposeCommand:
        """Resolve the Compose command and check its version."""
        command = detect_compose(self.runner, self.config.requirements.compose)
        self._record("compose.detect", "success", f"{command.display} {command.version}")
        return command

    def fix_ownership(self) -> list[str]:
        """Hand the project tree back to the invoking user."""
        try:
            spec = invoking_owner(self.config.project_dir, self._env)
        except (KeyError, OSError) as exc:
            warning = f"Ownership fix skipped; cannot resolve the invoking user: {exc}"
            self._record("permissions.fix", "warning", warning)
            return [warning]
        plan = plan_ownership(spec, elevate=self.config.elevate)
        warnings = apply_ownership_plan(plan, runner=self.runner)
        if warnings:
            status = "warning"
        elif plan.changed:
            status = "success"
        else:
            status = "unchanged"
        self._record("permissions.fix", status, [str(path) for path in plan.mismatched])
        return warnings

    def load_descriptor(self) -> tuple[ServiceTopology, list[str]]:
        """Load the descriptor; raises ``MissingDescriptor`` when absent."""
        topology = load_topology(self.config.descriptor_path)
        warnings = check_topology(topology, self.config.topology)
        self._record("descriptor.load", "success", list(topology.startup_order()))
        return topology, warnings

    def compose_provider(self, command: ComposeCommand) -> ComposeProvider:
        """Return a provider bound to this project."""
        return ComposeProvider(
            command=command,
            runner=self.runner,
            project_name=self.config.project_name,
            descriptor=self.config.descriptor_path,
        )

    def converge(self, provider: ComposeProvider) -> None:
        """Bring the declared services up, forcing an image rebuild."""
        provider.up(build=True)
        self._record("compose.up", "skipped" if self.dry_run else "success", None)

    def wait_until_ready(self, provider: ComposeProvider) -> ReadinessResult:
        """Poll until the services are up; raises ``ReadinessTimeout``."""
        readiness = self.config.readiness
        prober = ReadinessProber(
            ReadinessDeadline.from_config(readiness),
            self.config.topology.services,
            policy=readiness.policy,
            sleep=self._sleep,
        )
        result = prober.wait(provider.service_states)
        if not result.ready:
            self._record("readiness.wait", "error", {"ticks": result.ticks})
            raise ReadinessTimeout(result.ticks, readiness.timeout, result.pending)
        self._record("readiness.wait", "success", {"ticks": result.ticks})
        return result

    def verify(self, provider: ComposeProvider) -> tuple[ProbeResult, ...]:
        """Run the best-effort verification probes."""
        context = create_probe_context(self.config, self.runner, compose=provider)
        results = tuple(run_probes(context, collect_verification_probes()))
        for result in results:
            self._record(f"verify.{result.id}", result.status.value, result.message)
        return results


__all__ = ["BootstrapReport", "Bootstrapper", "StepRecorder"]
