"""Configuration loader for stackctl.

Configuration values are merged from several sources, lowest precedence
first:

1. Built-in defaults (the values a bare ``stackctl up`` relies upon).
2. ``/etc/stackctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``STACKCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export STACKCTL_SERVICE_PORT=9090
    export STACKCTL_READINESS__TIMEOUT=120

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` and handed to each component at construction time.
"""
from __future__ import annotations

import math
import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml
from packaging.version import InvalidVersion, Version

from .errors import ConfigError

ENV_PREFIX = "STACKCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


@dataclass(frozen=True)
class ToolRequirement:
    """A named external tool and the minimum version it must report."""

    name: str
    minimum: str

    @property
    def minimum_version(self) -> Version:
        """Return the parsed minimum version."""
        return Version(self.minimum)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"name": self.name, "minimum": self.minimum}


@dataclass(frozen=True)
class RequirementsConfig:
    """Minimum versions for the container runtime and orchestration CLI."""

    docker: ToolRequirement = ToolRequirement("docker", "20.10")
    compose: ToolRequirement = ToolRequirement("compose", "2.0")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"docker": self.docker.minimum, "compose": self.compose.minimum}


@dataclass(frozen=True)
class TopologyConfig:
    """Services expected in the descriptor and their required start order."""

    services: tuple[str, ...] = ("frontend", "backend", "database")
    startup_order: tuple[tuple[str, str], ...] = (("database", "backend"),)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "services": list(self.services),
            "startup_order": [list(pair) for pair in self.startup_order],
        }


@dataclass(frozen=True)
class ReadinessConfig:
    """Bounded polling parameters for the readiness prober."""

    timeout: float = 60.0
    interval: float = 5.0
    policy: str = "all"

    @property
    def max_ticks(self) -> int:
        """Return the number of polls allowed before timing out."""
        return max(1, math.ceil(self.timeout / self.interval))

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "timeout": self.timeout,
            "interval": self.interval,
            "policy": self.policy,
            "max_ticks": self.max_ticks,
        }


@dataclass(frozen=True)
class VerifyConfig:
    """Best-effort post-start verification settings."""

    smoke_url: str
    smoke_timeout: float = 5.0
    log_service: str = "backend"
    log_marker: str = "Connected to database"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "smoke_url": self.smoke_url,
            "smoke_timeout": self.smoke_timeout,
            "log_service": self.log_service,
            "log_marker": self.log_marker,
        }


@dataclass(frozen=True)
class InstallerConfig:
    """Package lists and repository locations used to install Docker."""

    legacy_packages: tuple[str, ...] = (
        "docker",
        "docker-engine",
        "docker.io",
        "containerd",
        "runc",
    )
    prerequisites: tuple[str, ...] = ("ca-certificates", "curl", "gnupg", "lsb-release")
    packages: tuple[str, ...] = (
        "docker-ce",
        "docker-ce-cli",
        "containerd.io",
        "docker-compose-plugin",
    )
    keyring_url: str = "https://download.docker.com/linux/ubuntu/gpg"
    keyring_path: Path = Path("/etc/apt/keyrings/docker.asc")
    repository_url: str = "https://download.docker.com/linux/ubuntu"
    sources_path: Path = Path("/etc/apt/sources.list.d/docker.list")
    service: str = "docker"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "legacy_packages": list(self.legacy_packages),
            "prerequisites": list(self.prerequisites),
            "packages": list(self.packages),
            "keyring_url": self.keyring_url,
            "keyring_path": str(self.keyring_path),
            "repository_url": self.repository_url,
            "sources_path": str(self.sources_path),
            "service": self.service,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for stackctl."""

    config_file: Path
    project_name: str
    project_dir: Path
    compose_file: Path
    service_port: int
    supported_os: str
    os_release_path: Path
    logs_dir: Path
    elevate: tuple[str, ...]
    requirements: RequirementsConfig
    topology: TopologyConfig
    readiness: ReadinessConfig
    verify: VerifyConfig
    installer: InstallerConfig

    @property
    def descriptor_path(self) -> Path:
        """Return the absolute location of the compose descriptor."""
        return self.project_dir / self.compose_file

    @property
    def frontend_url(self) -> str:
        """Return the URL operators use to reach the frontend."""
        return f"http://localhost:{self.service_port}"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "project_name": self.project_name,
            "project_dir": str(self.project_dir),
            "compose_file": str(self.compose_file),
            "service_port": self.service_port,
            "supported_os": self.supported_os,
            "os_release_path": str(self.os_release_path),
            "logs_dir": str(self.logs_dir),
            "elevate": list(self.elevate),
            "requirements": self.requirements.to_dict(),
            "topology": self.topology.to_dict(),
            "readiness": self.readiness.to_dict(),
            "verify": self.verify.to_dict(),
            "installer": self.installer.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/stackctl/config.yml",
    "project_name": "my-web-app",
    "project_dir": ".",
    "compose_file": "docker-compose.yml",
    "service_port": 8080,
    "supported_os": "Ubuntu 22.04",
    "os_release_path": "/etc/os-release",
    "logs_dir": "~/.local/state/stackctl",
    "elevate": None,  # derived from the effective uid when absent
    "requirements": {
        "docker": "20.10",
        "compose": "2.0",
    },
    "topology": {
        "services": ["frontend", "backend", "database"],
        "startup_order": [["database", "backend"]],
    },
    "readiness": {
        "timeout": 60,
        "interval": 5,
        "policy": "all",
    },
    "verify": {
        "smoke_url": None,  # derived from service_port when absent
        "smoke_timeout": 5.0,
        "log_service": "backend",
        "log_marker": "Connected to database",
    },
    "installer": {},
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_READINESS_POLICIES = {"all", "any"}
_SECTION_KEYS: dict[str, set[str]] = {
    "requirements": {"docker", "compose"},
    "topology": {"services", "startup_order"},
    "readiness": {"timeout", "interval", "policy"},
    "verify": {"smoke_url", "smoke_timeout", "log_service", "log_marker"},
    "installer": {
        "legacy_packages",
        "prerequisites",
        "packages",
        "keyring_url",
        "keyring_path",
        "repository_url",
        "sources_path",
        "service",
    },
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    readiness = _as_dict(raw.get("readiness"), "readiness")
    policy = readiness.get("policy")
    if policy is not None and str(policy) not in ALLOWED_READINESS_POLICIES:
        allowed = ", ".join(sorted(ALLOWED_READINESS_POLICIES))
        raise ConfigError(f"Unsupported readiness policy '{policy}'. Allowed: {allowed}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    project_dir = _to_path(raw.get("project_dir"))
    compose_file = _to_path(raw.get("compose_file"))
    logs_dir = _to_path(raw.get("logs_dir"))
    os_release_path = _to_path(raw.get("os_release_path"))

    project_name = _expect_str(raw.get("project_name"), "project_name").strip()
    if not project_name:
        raise ConfigError("project_name must be a non-empty string.")

    service_port = _expect_int(raw.get("service_port"), "service_port", default=8080)
    if not 0 < service_port < 65536:
        raise ConfigError(f"service_port must be between 1 and 65535. Got {service_port}.")

    supported_os = _expect_str(raw.get("supported_os"), "supported_os").strip()
    if not supported_os:
        raise ConfigError("supported_os must be a non-empty string.")

    requirements_mapping = _as_dict(raw.get("requirements"), "requirements")
    requirements = RequirementsConfig(
        docker=_build_requirement("docker", requirements_mapping.get("docker"), "20.10"),
        compose=_build_requirement("compose", requirements_mapping.get("compose"), "2.0"),
    )

    topology = _build_topology(_as_dict(raw.get("topology"), "topology"))

    readiness_mapping = _as_dict(raw.get("readiness"), "readiness")
    timeout = _expect_positive_float(
        readiness_mapping.get("timeout"), "readiness.timeout", default=60.0
    )
    interval = _expect_positive_float(
        readiness_mapping.get("interval"), "readiness.interval", default=5.0
    )
    if interval > timeout:
        raise ConfigError("readiness.interval must not exceed readiness.timeout.")
    readiness = ReadinessConfig(
        timeout=timeout,
        interval=interval,
        policy=str(readiness_mapping.get("policy", "all")),
    )

    verify_mapping = _as_dict(raw.get("verify"), "verify")
    smoke_url_value = verify_mapping.get("smoke_url")
    smoke_url = (
        str(smoke_url_value)
        if smoke_url_value not in (None, "")
        else f"http://localhost:{service_port}"
    )
    verify = VerifyConfig(
        smoke_url=smoke_url,
        smoke_timeout=_expect_positive_float(
            verify_mapping.get("smoke_timeout"), "verify.smoke_timeout", default=5.0
        ),
        log_service=str(verify_mapping.get("log_service", "backend")),
        log_marker=str(verify_mapping.get("log_marker", "Connected to database")),
    )

    installer = _build_installer(_as_dict(raw.get("installer"), "installer"))

    return AppConfig(
        config_file=config_file,
        project_name=project_name,
        project_dir=project_dir,
        compose_file=compose_file,
        service_port=service_port,
        supported_os=supported_os,
        os_release_path=os_release_path,
        logs_dir=logs_dir,
        elevate=_build_elevate(raw.get("elevate")),
        requirements=requirements,
        topology=topology,
        readiness=readiness,
        verify=verify,
        installer=installer,
    )


def _build_requirement(name: str, value: object | None, default: str) -> ToolRequirement:
    if isinstance(value, float):
        raise ConfigError(
            f"requirements.{name} was read as the number {value!r}; quote it "
            "(for example \"20.10\") so no digits are lost."
        )
    text = default if value is None else str(value).strip()
    try:
        Version(text)
    except InvalidVersion as exc:
        raise ConfigError(f"Invalid minimum version for requirements.{name}: {text!r}.") from exc
    return ToolRequirement(name=name, minimum=text)


def _build_topology(mapping: Mapping[str, object]) -> TopologyConfig:
    services_raw = mapping.get("services")
    if services_raw is None:
        services = TopologyConfig().services
    else:
        services = _as_str_tuple(services_raw, "topology.services")
    if not services:
        raise ConfigError("topology.services must list at least one service.")
    if len(set(services)) != len(services):
        raise ConfigError("topology.services must not contain duplicates.")

    order_raw = mapping.get("startup_order")
    order: list[tuple[str, str]] = []
    if order_raw is not None:
        for index, entry in enumerate(_as_sequence(order_raw, "topology.startup_order")):
            pair = _as_str_tuple(entry, f"topology.startup_order[{index}]")
            if len(pair) != 2:
                raise ConfigError(
                    f"topology.startup_order[{index}] must name exactly two services."
                )
            for name in pair:
                if name not in services:
                    raise ConfigError(
                        f"topology.startup_order[{index}] references unknown service '{name}'."
                    )
            order.append((pair[0], pair[1]))
    else:
        order.extend(TopologyConfig().startup_order)
    return TopologyConfig(services=services, startup_order=tuple(order))


def _build_installer(mapping: Mapping[str, object]) -> InstallerConfig:
    defaults = InstallerConfig()
    values: dict[str, object] = {}
    for key in ("legacy_packages", "prerequisites", "packages"):
        if mapping.get(key) is not None:
            values[key] = _as_str_tuple(mapping[key], f"installer.{key}")
    for key in ("keyring_url", "repository_url", "service"):
        if mapping.get(key) is not None:
            values[key] = _expect_str(mapping[key], f"installer.{key}")
    for key in ("keyring_path", "sources_path"):
        if mapping.get(key) is not None:
            values[key] = _to_path(mapping[key])
    if not values:
        return defaults
    return InstallerConfig(
        legacy_packages=cast(
            tuple[str, ...], values.get("legacy_packages", defaults.legacy_packages)
        ),
        prerequisites=cast(tuple[str, ...], values.get("prerequisites", defaults.prerequisites)),
        packages=cast(tuple[str, ...], values.get("packages", defaults.packages)),
        keyring_url=cast(str, values.get("keyring_url", defaults.keyring_url)),
        keyring_path=cast(Path, values.get("keyring_path", defaults.keyring_path)),
        repository_url=cast(str, values.get("repository_url", defaults.repository_url)),
        sources_path=cast(Path, values.get("sources_path", defaults.sources_path)),
        service=cast(str, values.get("service", defaults.service)),
    )


def _build_elevate(value: object | None) -> tuple[str, ...]:
    if value is None:
        return () if _is_root() else ("sudo",)
    if isinstance(value, str):
        return tuple(value.split())
    return _as_str_tuple(value, "elevate")


def _is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        if path_segments[0] == "requirements" and len(path_segments) > 1:
            # Version strings such as 20.10 must not pass through float coercion.
            parsed: object = value.strip()
        else:
            parsed = _coerce_value(value)
        _assign_nested(overrides, path_segments, parsed)
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _as_str_tuple(value: object, label: str) -> tuple[str, ...]:
    items: list[str] = []
    for index, item in enumerate(_as_sequence(value, label)):
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{label}[{index}] must be a non-empty string.")
        items.append(item.strip())
    return tuple(items)


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "InstallerConfig",
    "ReadinessConfig",
    "RequirementsConfig",
    "ToolRequirement",
    "TopologyConfig",
    "VerifyConfig",
    "load_config",
]
