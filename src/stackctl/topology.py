"""Load the service topology declared in the Compose descriptor."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import yaml

from .config import TopologyConfig
from .errors import DescriptorError, MissingDescriptor


@dataclass(frozen=True, slots=True)
class ServiceSpec:
    """A service as declared in the descriptor."""

    name: str
    image: str | None = None
    build: bool = False
    depends_on: tuple[str, ...] = ()
    ports: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ServiceTopology:
    """Immutable view of the declared services and their dependencies."""

    path: Path
    services: tuple[ServiceSpec, ...]

    @property
    def names(self) -> tuple[str, ...]:
        """Return service names in declaration order."""
        return tuple(service.name for service in self.services)

    def get(self, name: str) -> ServiceSpec | None:
        """Return the declared service called *name*."""
        for service in self.services:
            if service.name == name:
                return service
        return None

    def startup_order(self) -> tuple[str, ...]:
        """Return service names ordered so dependencies start first."""
        remaining = {service.name: set(service.depends_on) for service in self.services}
        ordered: list[str] = []
        while remaining:
            ready = [
                name
                for name in self.names
                if name in remaining and not (remaining[name] & remaining.keys())
            ]
            if not ready:
                cycle = ", ".join(sorted(remaining))
                raise DescriptorError(f"Dependency cycle between services: {cycle}.")
            for name in ready:
                ordered.append(name)
                del remaining[name]
        return tuple(ordered)

    def starts_before(self, first: str, second: str) -> bool:
        """Return ``True`` when *second* (transitively) depends on *first*."""
        seen: set[str] = set()
        pending = [second]
        while pending:
            current = pending.pop()
            spec = self.get(current)
            if spec is None:
                continue
            for dependency in spec.depends_on:
                if dependency == first:
                    return True
                if dependency not in seen:
                    seen.add(dependency)
                    pending.append(dependency)
        return False


def load_topology(path: Path) -> ServiceTopology:
    """Parse *path* into a :class:`ServiceTopology`."""
    if not path.is_file():
        raise MissingDescriptor(path)
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise DescriptorError(f"Failed to read descriptor {path}: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise DescriptorError(f"Descriptor {path} must contain a mapping at the top level.")

    services_raw = payload.get("services")
    if not isinstance(services_raw, Mapping) or not services_raw:
        raise DescriptorError(f"Descriptor {path} does not declare any services.")

    services: list[ServiceSpec] = []
    for name, definition in services_raw.items():
        body = definition if isinstance(definition, Mapping) else {}
        image = body.get("image")
        services.append(
            ServiceSpec(
                name=str(name),
                image=str(image) if image is not None else None,
                build="build" in body,
                depends_on=_names(body.get("depends_on")),
                ports=tuple(_port_label(entry) for entry in _sequence(body.get("ports"))),
            )
        )

    declared = {service.name for service in services}
    for service in services:
        unknown = [name for name in service.depends_on if name not in declared]
        if unknown:
            raise DescriptorError(
                f"Service '{service.name}' depends on undeclared service(s): "
                f"{', '.join(unknown)}."
            )
    return ServiceTopology(path=path, services=tuple(services))


def check_topology(topology: ServiceTopology, expected: TopologyConfig) -> list[str]:
    """Validate *topology* against the expected services.

    Missing services are fatal. Start-order pairs the descriptor does not
    enforce through ``depends_on`` are returned as warnings.
    """
    missing = [name for name in expected.services if topology.get(name) is None]
    if missing:
        raise DescriptorError(
            f"Descriptor {topology.path} is missing expected service(s): {', '.join(missing)}."
        )
    topology.startup_order()

    warnings: list[str] = []
    for first, second in expected.startup_order:
        if not topology.starts_before(first, second):
            warnings.append(
                f"Service '{second}' does not declare depends_on '{first}'; "
                f"'{first}' may start after '{second}'."
            )
    return warnings


def _sequence(value: object) -> Sequence[object]:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return value
    return ()


def _names(value: object) -> tuple[str, ...]:
    if isinstance(value, Mapping):
        return tuple(str(key) for key in value)
    return tuple(str(item) for item in _sequence(value))


def _port_label(entry: object) -> str:
    if isinstance(entry, Mapping):
        published = entry.get("published")
        target = entry.get("target")
        if published is not None:
            return f"{published}:{target}"
        return str(target)
    return str(entry)


__all__ = [
    "ServiceSpec",
    "ServiceTopology",
    "check_topology",
    "load_topology",
]
