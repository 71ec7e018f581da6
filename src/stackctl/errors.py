"""Error taxonomy shared by the bootstrap pipeline.

Every failure the pipeline can raise maps to exactly one exit code so the CLI
can fail fast without inspecting messages.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class StackctlError(RuntimeError):
    """Base class for fatal stackctl errors."""

    exit_code: ExitCode = ExitCode.PROVIDER


class ConfigError(StackctlError):
    """Raised when configuration parsing fails."""

    exit_code = ExitCode.VALIDATION


class UnsupportedEnvironment(StackctlError):
    """Raised when the host identity does not match the supported target."""

    exit_code = ExitCode.ENVIRONMENT


class VersionTooLow(StackctlError):
    """Raised when an external tool is older than the configured minimum."""

    exit_code = ExitCode.ENVIRONMENT

    def __init__(self, tool: str, found: str, required: str) -> None:
        """Record the offending tool and both versions."""
        super().__init__(
            f"{tool} version is too low (need >= {required}, found {found})."
        )
        self.tool = tool
        self.found = found
        self.required = required


class InstallationFailed(StackctlError):
    """Raised when a required binary is still missing after installation."""

    exit_code = ExitCode.PROVIDER


class MissingDescriptor(StackctlError):
    """Raised when the service topology descriptor file does not exist."""

    exit_code = ExitCode.VALIDATION

    def __init__(self, path: object) -> None:
        """Record the missing descriptor path."""
        super().__init__(
            f"Descriptor {path} not found. Make sure it exists in the project directory."
        )
        self.path = path


class DescriptorError(StackctlError):
    """Raised when the descriptor exists but cannot be used."""

    exit_code = ExitCode.VALIDATION


class ComposeError(StackctlError):
    """Raised when a Docker Compose command fails."""

    exit_code = ExitCode.PROVIDER


class ConvergeFailed(ComposeError):
    """Raised when the orchestration layer rejects the ``up`` request."""


class ReadinessTimeout(StackctlError):
    """Raised when services are not ready before the deadline expires."""

    exit_code = ExitCode.READINESS

    def __init__(self, ticks: int, timeout: float, pending: tuple[str, ...] = ()) -> None:
        """Record how long the prober waited and which services never came up."""
        detail = f" Pending: {', '.join(pending)}." if pending else ""
        super().__init__(
            f"Services did not become ready within {timeout:g}s ({ticks} checks).{detail}"
        )
        self.ticks = ticks
        self.timeout = timeout
        self.pending = pending


__all__ = [
    "ComposeError",
    "ConfigError",
    "ConvergeFailed",
    "DescriptorError",
    "InstallationFailed",
    "MissingDescriptor",
    "ReadinessTimeout",
    "StackctlError",
    "UnsupportedEnvironment",
    "VersionTooLow",
]
