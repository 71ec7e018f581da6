"""Host identification checks that run before anything is changed."""
from __future__ import annotations

import logging
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .config import AppConfig
from .errors import UnsupportedEnvironment

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HostIdentity:
    """Distribution details read from ``os-release``."""

    name: str
    version_id: str
    pretty_name: str
    codename: str | None = None
    fields: Mapping[str, str] = field(default_factory=dict)

    @property
    def label(self) -> str:
        """Return a human-readable identity string."""
        if self.pretty_name:
            return self.pretty_name
        return f"{self.name} {self.version_id}".strip() or "unknown"

    def matches(self, target: str) -> bool:
        """Return ``True`` when *target* (e.g. ``Ubuntu 22.04``) names this host."""
        needle = target.strip()
        if not needle:
            return False
        candidates = (self.pretty_name, f"{self.name} {self.version_id}")
        return any(needle in candidate for candidate in candidates if candidate)


def parse_os_release(text: str) -> dict[str, str]:
    """Parse ``KEY=value`` lines, honouring shell quoting."""
    values: dict[str, str] = {}
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, raw_value = line.split("=", 1)
        try:
            parts = shlex.split(raw_value)
        except ValueError:
            parts = [raw_value.strip().strip("\"'")]
        values[key.strip()] = " ".join(parts)
    return values


def read_host_identity(path: Path) -> HostIdentity:
    """Return the :class:`HostIdentity` described by *path*."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise UnsupportedEnvironment(f"Cannot read host identity from {path}: {exc}") from exc
    fields = parse_os_release(text)
    return HostIdentity(
        name=fields.get("NAME", ""),
        version_id=fields.get("VERSION_ID", ""),
        pretty_name=fields.get("PRETTY_NAME", ""),
        codename=fields.get("VERSION_CODENAME") or fields.get("UBUNTU_CODENAME") or None,
        fields=fields,
    )


class PreflightChecker:
    """Reject hosts other than the single supported distribution."""

    def __init__(self, config: AppConfig) -> None:
        """Bind the checker to the supported target and os-release path."""
        self.target = config.supported_os
        self.os_release_path = config.os_release_path

    def check(self) -> HostIdentity:
        """Return the host identity or raise :class:`UnsupportedEnvironment`."""
        identity = read_host_identity(self.os_release_path)
        if not identity.matches(self.target):
            raise UnsupportedEnvironment(
                f"Host reports '{identity.label}'; only {self.target} is supported."
            )
        LOGGER.debug("Host %s matches %s", identity.label, self.target)
        return identity


__all__ = ["HostIdentity", "PreflightChecker", "parse_os_release", "read_host_identity"]
