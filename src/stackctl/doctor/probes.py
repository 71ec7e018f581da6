"""Read-only preflight probes for the doctor command."""

from __future__ import annotations

import platform
import sys
from collections.abc import Callable, Sequence

from .. import __version__
from ..errors import (
    DescriptorError,
    InstallationFailed,
    MissingDescriptor,
    UnsupportedEnvironment,
    VersionTooLow,
)
from ..permissions import invoking_owner, plan_ownership
from ..preflight import PreflightChecker
from ..providers.compose import detect_compose
from ..providers.docker_installer import DockerInstaller
from ..topology import check_topology, load_topology
from ..versions import satisfies
from .models import (
    DoctorImpact,
    ProbeCategory,
    ProbeContext,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
)


def collect_probes(context: ProbeContext) -> Sequence[ProbeDefinition]:
    """Return the set of probes that should run for the current context."""
    probes: list[ProbeDefinition] = []
    probes.extend(_env_probes())
    probes.extend(_descriptor_probes())
    probes.extend(_filesystem_probes())
    return tuple(probes)


def _make_probe(
    probe_id: str,
    category: ProbeCategory,
    handler: Callable[[ProbeContext], ProbeResult],
) -> ProbeDefinition:
    return ProbeDefinition(id=probe_id, category=category, run=handler)


def _result(
    probe_id: str,
    category: ProbeCategory,
    status: ProbeStatus,
    message: str,
    *,
    impact: DoctorImpact = DoctorImpact.OK,
    remediation: str | None = None,
    data: dict[str, object] | None = None,
    warnings: Sequence[str] = (),
) -> ProbeResult:
    return ProbeResult(
        id=probe_id,
        category=category,
        status=status,
        impact=impact,
        message=message,
        remediation=remediation,
        data=data,
        warnings=tuple(warnings),
    )


# ---------------------------------------------------------------------------
# Environment probes
# ---------------------------------------------------------------------------


def _env_probes() -> Sequence[ProbeDefinition]:
    return (
        _make_probe("env-python", "env", _probe_env_python),
        _make_probe("env-os", "env", _probe_env_os),
        _make_probe("env-docker", "env", _probe_env_docker),
        _make_probe("env-compose", "env", _probe_env_compose),
    )


def _probe_env_python(_context: ProbeContext) -> ProbeResult:
    version = platform.python_version()
    return _result(
        "env-python",
        "env",
        ProbeStatus.GREEN,
        f"Python {version} running stackctl {__version__}.",
        data={"executable": sys.executable, "version": version},
    )


def _probe_env_os(context: ProbeContext) -> ProbeResult:
    try:
        identity = PreflightChecker(context.config).check()
    except UnsupportedEnvironment as exc:
        return _result(
            "env-os",
            "env",
            ProbeStatus.RED,
            str(exc),
            impact=DoctorImpact.ENVIRONMENT,
            remediation=f"Run stackctl on {context.config.supported_os}.",
        )
    return _result(
        "env-os",
        "env",
        ProbeStatus.GREEN,
        f"Host is {identity.label}.",
        data={"codename": identity.codename},
    )


def _docker_installer(context: ProbeContext) -> DockerInstaller:
    config = context.config
    return DockerInstaller(
        requirement=config.requirements.docker,
        settings=config.installer,
        runner=context.runner,
        elevate=config.elevate,
    )


def _probe_env_docker(context: ProbeContext) -> ProbeResult:
    requirement = context.config.requirements.docker
    found = _docker_installer(context).detect_version()
    if found is None:
        return _result(
            "env-docker",
            "env",
            ProbeStatus.YELLOW,
            "Docker is not installed; 'stackctl up' will install it.",
            warnings=("missing:docker",),
        )
    if not satisfies(found, requirement.minimum):
        return _result(
            "env-docker",
            "env",
            ProbeStatus.RED,
            str(VersionTooLow(requirement.name, found, requirement.minimum)),
            impact=DoctorImpact.ENVIRONMENT,
            remediation=f"Upgrade Docker to {requirement.minimum} or newer.",
        )
    return _result(
        "env-docker",
        "env",
        ProbeStatus.GREEN,
        f"Docker {found} available (need >= {requirement.minimum}).",
        data={"version": found},
    )


def _probe_env_compose(context: ProbeContext) -> ProbeResult:
    requirement = context.config.requirements.compose
    try:
        command = detect_compose(context.runner, requirement)
    except VersionTooLow as exc:
        return _result(
            "env-compose",
            "env",
            ProbeStatus.RED,
            str(exc),
            impact=DoctorImpact.ENVIRONMENT,
            remediation="Install the docker-compose-plugin package.",
        )
    except InstallationFailed as exc:
        docker_missing = context.runner.which("docker") is None
        return _result(
            "env-compose",
            "env",
            ProbeStatus.YELLOW if docker_missing else ProbeStatus.RED,
            str(exc),
            impact=DoctorImpact.OK if docker_missing else DoctorImpact.ENVIRONMENT,
            remediation="Install the docker-compose-plugin package.",
            warnings=("missing:compose",),
        )
    return _result(
        "env-compose",
        "env",
        ProbeStatus.GREEN,
        f"{command.display} {command.version} available.",
        data={"command": command.display, "version": command.version},
    )


# ---------------------------------------------------------------------------
# Descriptor probes
# ---------------------------------------------------------------------------


def _descriptor_probes() -> Sequence[ProbeDefinition]:
    return (_make_probe("descriptor-services", "descriptor", _probe_descriptor),)


def _probe_descriptor(context: ProbeContext) -> ProbeResult:
    path = context.config.descriptor_path
    try:
        topology = load_topology(path)
        warnings = check_topology(topology, context.config.topology)
    except (MissingDescriptor, DescriptorError) as exc:
        return _result(
            "descriptor-services",
            "descriptor",
            ProbeStatus.RED,
            str(exc),
            impact=DoctorImpact.VALIDATION,
            remediation="Create or fix the compose descriptor in the project directory.",
        )
    data: dict[str, object] = {
        "path": str(path),
        "services": list(topology.names),
        "startup_order": list(topology.startup_order()),
    }
    if warnings:
        return _result(
            "descriptor-services",
            "descriptor",
            ProbeStatus.YELLOW,
            "; ".join(warnings),
            data=data,
            warnings=tuple(warnings),
        )
    return _result(
        "descriptor-services",
        "descriptor",
        ProbeStatus.GREEN,
        f"Descriptor declares {', '.join(topology.names)}.",
        data=data,
    )


# ---------------------------------------------------------------------------
# Filesystem probes
# ---------------------------------------------------------------------------


def _filesystem_probes() -> Sequence[ProbeDefinition]:
    return (_make_probe("fs-ownership", "fs", _probe_fs_ownership),)


def _probe_fs_ownership(context: ProbeContext) -> ProbeResult:
    root = context.config.project_dir
    try:
        spec = invoking_owner(root)
    except (KeyError, OSError) as exc:
        return _result(
            "fs-ownership",
            "fs",
            ProbeStatus.YELLOW,
            f"Cannot resolve the invoking user: {exc}",
        )
    plan = plan_ownership(spec, elevate=context.config.elevate)
    if plan.warnings:
        return _result(
            "fs-ownership",
            "fs",
            ProbeStatus.YELLOW,
            "; ".join(plan.warnings),
        )
    if plan.mismatched:
        names = [path.name for path in plan.mismatched]
        return _result(
            "fs-ownership",
            "fs",
            ProbeStatus.YELLOW,
            f"{len(names)} entries are not owned by {spec.user}:{spec.group}.",
            remediation="'stackctl up' will chown them back to the invoking user.",
            data={"entries": names},
        )
    return _result(
        "fs-ownership",
        "fs",
        ProbeStatus.GREEN,
        f"Project files owned by {spec.user}:{spec.group}.",
    )
