"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

import pytest

from stackctl.config import AppConfig, load_config

UBUNTU_OS_RELEASE = (
    'PRETTY_NAME="Ubuntu 22.04.4 LTS"\n'
    'NAME="Ubuntu"\n'
    'VERSION_ID="22.04"\n'
    "VERSION_CODENAME=jammy\n"
    "ID=ubuntu\n"
)

DEBIAN_OS_RELEASE = (
    'PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"\n'
    'NAME="Debian GNU/Linux"\n'
    'VERSION_ID="12"\n'
    "VERSION_CODENAME=bookworm\n"
)

THREE_TIER_DESCRIPTOR = """\
services:
  frontend:
    build: ./frontend
    ports:
      - "8080:80"
    depends_on:
      - backend
  backend:
    build: ./backend
    depends_on:
      database:
        condition: service_healthy
  database:
    image: postgres:16
"""


@dataclass
class Response:
    """Canned result for commands matching a pattern."""

    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    effect: Callable[[], None] | None = None


def contains(command: Sequence[str], pattern: Sequence[str]) -> bool:
    """Return ``True`` when *pattern* appears contiguously inside *command*."""
    size = len(pattern)
    return any(
        tuple(command[index : index + size]) == tuple(pattern)
        for index in range(len(command) - size + 1)
    )


class ScriptedRunner:
    """Stand-in for ``CommandRunner`` that never touches the host."""

    def __init__(
        self,
        *,
        binaries: dict[str, str] | None = None,
        dry_run: bool = False,
    ) -> None:
        self.binaries = dict(binaries or {})
        self.dry_run = dry_run
        self.history: list[list[str]] = []
        self.mutations: list[list[str]] = []
        self.inputs: list[str | None] = []
        self._responses: list[tuple[tuple[str, ...], Response]] = []

    def on(
        self,
        *pattern: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        effect: Callable[[], None] | None = None,
    ) -> ScriptedRunner:
        """Register a response; later registrations win."""
        self._responses.append(
            (tuple(pattern), Response(returncode, stdout, stderr, effect))
        )
        return self

    def which(self, name: str) -> str | None:
        return self.binaries.get(name)

    def run(
        self,
        args: Sequence[str],
        *,
        input_text: str | None = None,
        timeout: float | None = None,
        mutating: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        command = list(args)
        self.history.append(command)
        self.inputs.append(input_text)
        if mutating:
            self.mutations.append(command)
            if self.dry_run:
                return subprocess.CompletedProcess(command, 0, "", "")
        for pattern, response in reversed(self._responses):
            if contains(command, pattern):
                if response.effect is not None:
                    response.effect()
                return subprocess.CompletedProcess(
                    command, response.returncode, response.stdout, response.stderr
                )
        return subprocess.CompletedProcess(command, 0, "", "")

    def matching(self, *pattern: str) -> list[list[str]]:
        """Return recorded commands containing *pattern*."""
        return [command for command in self.history if contains(command, pattern)]


@pytest.fixture()
def os_release(tmp_path: Path) -> Path:
    """Return an os-release file describing Ubuntu 22.04."""
    path = tmp_path / "os-release"
    path.write_text(UBUNTU_OS_RELEASE, encoding="utf-8")
    return path


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    """Return an empty project directory."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture()
def make_config(
    tmp_path: Path,
    os_release: Path,
    project_dir: Path,
) -> Callable[..., AppConfig]:
    """Return a factory that builds configs rooted in ``tmp_path``."""

    def factory(**overrides: object) -> AppConfig:
        values: dict[str, object] = {
            "project_dir": str(project_dir),
            "os_release_path": str(os_release),
            "logs_dir": str(tmp_path / "logs"),
            "elevate": [],
        }
        values.update(overrides)
        return load_config(
            config_file=tmp_path / "absent.yml",
            env={},
            overrides=values,
        )

    return factory
