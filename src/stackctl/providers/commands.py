"""Thin wrapper around :mod:`subprocess` shared by providers."""
from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field

LOGGER = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127


@dataclass(slots=True)
class CommandRunner:
    """Execute external commands and resolve binaries on ``PATH``.

    Providers never call :mod:`subprocess` directly so tests can substitute a
    scripted runner. A missing executable is reported as exit status 127 the
    way a shell would, instead of raising.
    """

    dry_run: bool = False
    history: list[list[str]] = field(default_factory=list)

    def which(self, name: str) -> str | None:
        """Return the resolved path for *name* or ``None``."""
        return shutil.which(name)

    def run(
        self,
        args: Sequence[str],
        *,
        input_text: str | None = None,
        timeout: float | None = None,
        mutating: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Run *args* and capture its output as text.

        Commands flagged as *mutating* are skipped in dry-run mode and reported
        as successful.
        """
        command = list(args)
        self.history.append(command)
        if mutating and self.dry_run:
            LOGGER.debug("dry-run: %s", " ".join(command))
            return subprocess.CompletedProcess(command, returncode=0, stdout="", stderr="")
        LOGGER.debug("exec: %s", " ".join(command))
        try:
            return subprocess.run(  # noqa: S603
                command,
                input=input_text,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            return subprocess.CompletedProcess(
                command,
                returncode=COMMAND_NOT_FOUND,
                stdout="",
                stderr=str(exc),
            )


def describe_failure(result: subprocess.CompletedProcess[str]) -> str:
    """Return the most useful line of output from a failed command."""
    stderr = (result.stderr or "").strip()
    stdout = (result.stdout or "").strip()
    message = stderr or stdout or "no output"
    return f"exit {result.returncode}: {message}"


__all__ = ["COMMAND_NOT_FOUND", "CommandRunner", "describe_failure"]
