"""Installer for the Docker container runtime on apt-based hosts."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from ..config import InstallerConfig, ToolRequirement
from ..errors import InstallationFailed, VersionTooLow
from ..versions import extract_version, satisfies
from .commands import CommandRunner, describe_failure

LOGGER = logging.getLogger(__name__)

_APT_ENV = ("env", "DEBIAN_FRONTEND=noninteractive")


@dataclass(frozen=True, slots=True)
class InstallStep:
    """One command in the installation sequence."""

    name: str
    command: tuple[str, ...]
    allow_failure: bool = False
    input_text: str | None = None


@dataclass(frozen=True, slots=True)
class DockerInstallResult:
    """Outcome of :meth:`DockerInstaller.ensure`."""

    version: str | None
    binary: str | None
    installation_performed: bool
    dry_run: bool = False
    steps: tuple[str, ...] = ()


@dataclass(slots=True)
class DockerInstaller:
    """Ensure a Docker engine satisfying *requirement* is available.

    A present and recent enough ``docker`` binary makes :meth:`ensure` a
    no-op. Otherwise the fixed apt sequence from :meth:`plan` runs once and
    the binary is verified again. Partial failures are not rolled back.
    """

    requirement: ToolRequirement
    settings: InstallerConfig
    runner: CommandRunner
    elevate: tuple[str, ...] = ()
    codename: str | None = None
    binary: str = "docker"
    executed: list[str] = field(default_factory=list)

    def detect_version(self) -> str | None:
        """Return the installed Docker version, or ``None`` when absent."""
        if self.runner.which(self.binary) is None:
            return None
        result = self.runner.run([self.binary, "--version"])
        if result.returncode != 0:
            LOGGER.debug("%s --version failed: %s", self.binary, describe_failure(result))
            return None
        return extract_version(result.stdout or result.stderr or "")

    def ensure(self, *, dry_run: bool = False) -> DockerInstallResult:
        """Install Docker unless a satisfying version is already present."""
        found = self.detect_version()
        if found is not None:
            self._require_minimum(found)
            LOGGER.info("Docker %s already installed.", found)
            return DockerInstallResult(
                version=found,
                binary=self.runner.which(self.binary),
                installation_performed=False,
                dry_run=dry_run,
            )

        steps = self.plan()
        step_names = tuple(step.name for step in steps)
        if dry_run:
            return DockerInstallResult(
                version=None,
                binary=None,
                installation_performed=False,
                dry_run=True,
                steps=step_names,
            )

        LOGGER.info("Installing Docker (%d steps).", len(steps))
        for step in steps:
            self._execute(step)

        found = self.detect_version()
        if found is None:
            raise InstallationFailed(
                f"Docker installation finished but '{self.binary}' is still not available."
            )
        self._require_minimum(found)
        return DockerInstallResult(
            version=found,
            binary=self.runner.which(self.binary),
            installation_performed=True,
            steps=step_names,
        )

    def plan(self) -> list[InstallStep]:
        """Return the ordered installation sequence for this host."""
        settings = self.settings
        keyring = str(settings.keyring_path)
        source_line = (
            f"deb [arch={self._architecture()} signed-by={keyring}] "
            f"{settings.repository_url} {self._codename()} stable\n"
        )
        return [
            InstallStep(
                "remove-legacy-packages",
                self._apt("remove", "-y", *settings.legacy_packages),
                allow_failure=True,
            ),
            InstallStep("apt-update", self._apt("update")),
            InstallStep(
                "install-prerequisites",
                self._apt("install", "-y", *settings.prerequisites),
            ),
            InstallStep(
                "create-keyring-dir",
                self._elevated("install", "-m", "0755", "-d", str(settings.keyring_path.parent)),
            ),
            InstallStep(
                "fetch-signing-key",
                self._elevated("curl", "-fsSL", settings.keyring_url, "-o", keyring),
            ),
            InstallStep("signing-key-permissions", self._elevated("chmod", "a+r", keyring)),
            InstallStep(
                "write-apt-source",
                self._elevated("tee", str(settings.sources_path)),
                input_text=source_line,
            ),
            InstallStep("apt-update-docker", self._apt("update")),
            InstallStep("install-docker", self._apt("install", "-y", *settings.packages)),
            InstallStep(
                "enable-service",
                self._elevated("systemctl", "enable", "--now", settings.service),
            ),
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _execute(self, step: InstallStep) -> None:
        result = self.runner.run(step.command, input_text=step.input_text, mutating=True)
        self.executed.append(step.name)
        if result.returncode == 0:
            LOGGER.debug("Install step %s succeeded.", step.name)
            return
        if step.allow_failure:
            LOGGER.debug("Ignoring failure of %s: %s", step.name, describe_failure(result))
            return
        raise InstallationFailed(
            f"Docker installation step '{step.name}' failed ({describe_failure(result)})."
        )

    def _require_minimum(self, found: str) -> None:
        if not satisfies(found, self.requirement.minimum):
            raise VersionTooLow(self.requirement.name, found, self.requirement.minimum)

    def _elevated(self, *args: str) -> tuple[str, ...]:
        return (*self.elevate, *args)

    def _apt(self, *args: str) -> tuple[str, ...]:
        return (*self.elevate, *_APT_ENV, "apt-get", *args)

    def _architecture(self) -> str:
        return self._query(["dpkg", "--print-architecture"], fallback="amd64")

    def _codename(self) -> str:
        if self.codename:
            return self.codename
        return self._query(["lsb_release", "-cs"], fallback="jammy")

    def _query(self, args: Sequence[str], *, fallback: str) -> str:
        result = self.runner.run(args)
        value = (result.stdout or "").strip()
        if result.returncode != 0 or not value:
            LOGGER.debug("%s unavailable, using %s", args[0], fallback)
            return fallback
        return value


__all__ = ["DockerInstallResult", "DockerInstaller", "InstallStep"]
