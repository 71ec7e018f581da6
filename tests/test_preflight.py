"""Tests for host identification."""
from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from conftest import DEBIAN_OS_RELEASE

from stackctl.config import AppConfig
from stackctl.errors import UnsupportedEnvironment
from stackctl.exit_codes import ExitCode
from stackctl.preflight import PreflightChecker, parse_os_release, read_host_identity


def test_parse_os_release_handles_quoting() -> None:
    """Quoted and bare values are both unwrapped; comments are skipped."""
    fields = parse_os_release(
        '# comment\nNAME="Ubuntu"\nVERSION_ID=22.04\nPRETTY_NAME=\'Ubuntu 22.04 LTS\'\n\nJUNK\n'
    )

    assert fields == {
        "NAME": "Ubuntu",
        "VERSION_ID": "22.04",
        "PRETTY_NAME": "Ubuntu 22.04 LTS",
    }


def test_read_host_identity(os_release: Path) -> None:
    """Identity fields are populated from os-release."""
    identity = read_host_identity(os_release)

    assert identity.name == "Ubuntu"
    assert identity.version_id == "22.04"
    assert identity.codename == "jammy"
    assert identity.label == "Ubuntu 22.04.4 LTS"
    assert identity.matches("Ubuntu 22.04")
    assert not identity.matches("Ubuntu 24.04")


def test_read_host_identity_missing_file(tmp_path: Path) -> None:
    """An unreadable os-release file is an unsupported environment."""
    with pytest.raises(UnsupportedEnvironment):
        read_host_identity(tmp_path / "missing")


def test_checker_accepts_supported_host(make_config: Callable[..., AppConfig]) -> None:
    """The supported distribution passes the check."""
    identity = PreflightChecker(make_config()).check()

    assert identity.codename == "jammy"


def test_checker_rejects_other_distribution(
    tmp_path: Path,
    make_config: Callable[..., AppConfig],
) -> None:
    """Any other distribution is rejected with an environment error."""
    debian = tmp_path / "debian-os-release"
    debian.write_text(DEBIAN_OS_RELEASE)
    config = make_config(os_release_path=str(debian))

    with pytest.raises(UnsupportedEnvironment) as excinfo:
        PreflightChecker(config).check()

    assert "Debian GNU/Linux 12" in str(excinfo.value)
    assert "Ubuntu 22.04" in str(excinfo.value)
    assert excinfo.value.exit_code is ExitCode.ENVIRONMENT
