"""Provider interfaces for stackctl."""
from __future__ import annotations

from .commands import CommandRunner
from .compose import ComposeCommand, ComposeProvider, ServiceState, detect_compose
from .docker_installer import DockerInstaller, DockerInstallResult, InstallStep

__all__ = [
    "CommandRunner",
    "ComposeCommand",
    "ComposeProvider",
    "DockerInstallResult",
    "DockerInstaller",
    "InstallStep",
    "ServiceState",
    "detect_compose",
]
