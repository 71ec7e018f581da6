"""Tests for descriptor loading and topology checks."""
from __future__ import annotations

from pathlib import Path

import pytest
from conftest import THREE_TIER_DESCRIPTOR

from stackctl.config import TopologyConfig
from stackctl.errors import DescriptorError, MissingDescriptor
from stackctl.exit_codes import ExitCode
from stackctl.topology import check_topology, load_topology


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "docker-compose.yml"
    path.write_text(text)
    return path


def test_load_topology_reads_services(tmp_path: Path) -> None:
    """Services, dependencies and ports are read from the descriptor."""
    topology = load_topology(_write(tmp_path, THREE_TIER_DESCRIPTOR))

    assert topology.names == ("frontend", "backend", "database")
    frontend = topology.get("frontend")
    assert frontend is not None
    assert frontend.build is True
    assert frontend.ports == ("8080:80",)
    assert frontend.depends_on == ("backend",)
    backend = topology.get("backend")
    assert backend is not None
    assert backend.depends_on == ("database",)
    database = topology.get("database")
    assert database is not None
    assert database.image == "postgres:16"


def test_startup_order_puts_dependencies_first(tmp_path: Path) -> None:
    """Dependencies start before the services that need them."""
    topology = load_topology(_write(tmp_path, THREE_TIER_DESCRIPTOR))

    assert topology.startup_order() == ("database", "backend", "frontend")
    assert topology.starts_before("database", "backend")
    assert topology.starts_before("database", "frontend")
    assert not topology.starts_before("frontend", "database")


def test_missing_descriptor(tmp_path: Path) -> None:
    """An absent descriptor is a validation error naming the path."""
    path = tmp_path / "docker-compose.yml"

    with pytest.raises(MissingDescriptor) as excinfo:
        load_topology(path)

    assert excinfo.value.path == path
    assert excinfo.value.exit_code is ExitCode.VALIDATION


@pytest.mark.parametrize(
    "text",
    [
        "services: [\n",
        "- just\n- a list\n",
        "version: '3.8'\n",
        "services:\n  backend:\n    depends_on: [cache]\n",
    ],
)
def test_invalid_descriptors(tmp_path: Path, text: str) -> None:
    """Malformed descriptors raise DescriptorError."""
    with pytest.raises(DescriptorError):
        load_topology(_write(tmp_path, text))


def test_dependency_cycle_is_reported(tmp_path: Path) -> None:
    """Cyclic depends_on declarations cannot be ordered."""
    topology = load_topology(
        _write(
            tmp_path,
            "services:\n"
            "  a:\n    depends_on: [b]\n"
            "  b:\n    depends_on: [a]\n",
        )
    )

    with pytest.raises(DescriptorError, match="cycle"):
        topology.startup_order()


def test_check_topology_requires_expected_services(tmp_path: Path) -> None:
    """Every expected service must be declared."""
    topology = load_topology(
        _write(tmp_path, "services:\n  frontend:\n    image: nginx\n")
    )

    with pytest.raises(DescriptorError) as excinfo:
        check_topology(topology, TopologyConfig())

    assert "backend, database" in str(excinfo.value)


def test_check_topology_warns_on_unenforced_order(tmp_path: Path) -> None:
    """A backend without depends_on on the database only warns."""
    topology = load_topology(
        _write(
            tmp_path,
            "services:\n"
            "  frontend:\n    image: nginx\n"
            "  backend:\n    image: api\n"
            "  database:\n    image: postgres\n",
        )
    )

    warnings = check_topology(topology, TopologyConfig())

    assert len(warnings) == 1
    assert "'backend' does not declare depends_on 'database'" in warnings[0]


def test_check_topology_accepts_three_tier_descriptor(tmp_path: Path) -> None:
    """The reference descriptor passes without warnings."""
    topology = load_topology(_write(tmp_path, THREE_TIER_DESCRIPTOR))

    assert check_topology(topology, TopologyConfig()) == []
