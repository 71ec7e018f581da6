"""Tests for the post-start verification probes."""
from __future__ import annotations

import urllib.error
from collections.abc import Callable
from pathlib import Path

import pytest
from conftest import ScriptedRunner

from stackctl.config import AppConfig
from stackctl.doctor import DoctorImpact, ProbeContext, ProbeExecutorOptions, ProbeStatus
from stackctl.providers.compose import ComposeCommand, ComposeProvider
from stackctl.verify import collect_verification_probes, probe_backend_log, probe_http_smoke


class _Response:
    def __init__(self, status: int) -> None:
        self.status = status

    def __enter__(self) -> _Response:
        return self

    def __exit__(self, *exc: object) -> None:
        return None


def _context(
    config: AppConfig,
    runner: ScriptedRunner | None = None,
) -> ProbeContext:
    compose = None
    if runner is not None:
        compose = ComposeProvider(
            command=ComposeCommand(("docker", "compose"), "2.24.5", "v2"),
            runner=runner,  # type: ignore[arg-type]
            project_name=config.project_name,
            descriptor=config.descriptor_path,
        )
    return ProbeContext(
        config=config,
        runner=runner or ScriptedRunner(),  # type: ignore[arg-type]
        options=ProbeExecutorOptions(request_timeout=1.0),
        compose=compose,
    )


def test_verification_probe_ids() -> None:
    """Both app checks run in a fixed order."""
    assert [probe.id for probe in collect_verification_probes()] == [
        "app-http",
        "app-backend-log",
    ]


def test_http_smoke_passes_on_200(
    monkeypatch: pytest.MonkeyPatch,
    make_config: Callable[..., AppConfig],
) -> None:
    """HTTP 200 from the frontend is a pass."""
    seen: dict[str, object] = {}

    def fake_urlopen(request: object, timeout: float) -> _Response:
        seen["url"] = getattr(request, "full_url", None)
        seen["timeout"] = timeout
        return _Response(200)

    monkeypatch.setattr("stackctl.verify.urllib.request.urlopen", fake_urlopen)

    result = probe_http_smoke(_context(make_config()))

    assert result.status is ProbeStatus.GREEN
    assert seen == {"url": "http://localhost:8080", "timeout": 1.0}


def test_http_smoke_warns_on_error_status(
    monkeypatch: pytest.MonkeyPatch,
    make_config: Callable[..., AppConfig],
) -> None:
    """Non-200 answers are warnings, never failures."""

    def fake_urlopen(request: object, timeout: float) -> _Response:
        raise urllib.error.HTTPError("http://localhost:8080", 502, "Bad Gateway", None, None)  # type: ignore[arg-type]

    monkeypatch.setattr("stackctl.verify.urllib.request.urlopen", fake_urlopen)

    result = probe_http_smoke(_context(make_config()))

    assert result.status is ProbeStatus.YELLOW
    assert result.impact is DoctorImpact.OK
    assert result.data == {"status_code": 502}


def test_http_smoke_warns_when_unreachable(
    monkeypatch: pytest.MonkeyPatch,
    make_config: Callable[..., AppConfig],
) -> None:
    """A refused connection is a warning."""

    def fake_urlopen(request: object, timeout: float) -> _Response:
        raise urllib.error.URLError(ConnectionRefusedError(111, "Connection refused"))

    monkeypatch.setattr("stackctl.verify.urllib.request.urlopen", fake_urlopen)

    result = probe_http_smoke(_context(make_config()))

    assert result.status is ProbeStatus.YELLOW
    assert "not reachable" in result.message


def test_http_smoke_rejects_non_http_url(make_config: Callable[..., AppConfig]) -> None:
    """Only http(s) URLs are requested."""
    config = make_config(verify={"smoke_url": "file:///etc/passwd"})

    result = probe_http_smoke(_context(config))

    assert result.status is ProbeStatus.YELLOW


def test_backend_log_marker_found(
    project_dir: Path,
    make_config: Callable[..., AppConfig],
) -> None:
    """The database connection line in the backend logs is a pass."""
    runner = ScriptedRunner()
    runner.on("logs", "--no-color", "backend", stdout="backend-1 | Connected to database\n")

    result = probe_backend_log(_context(make_config(), runner))

    assert result.status is ProbeStatus.GREEN
    assert runner.matching("-p", "my-web-app", "-f", str(project_dir / "docker-compose.yml"))


def test_backend_log_marker_missing(make_config: Callable[..., AppConfig]) -> None:
    """A missing marker only warns."""
    runner = ScriptedRunner()
    runner.on("logs", stdout="backend-1 | retrying connection\n")

    result = probe_backend_log(_context(make_config(), runner))

    assert result.status is ProbeStatus.YELLOW
    assert result.impact is DoctorImpact.OK
    assert result.remediation is not None
    assert "docker compose logs backend" in result.remediation


def test_backend_log_failure_warns(make_config: Callable[..., AppConfig]) -> None:
    """A failing logs command only warns."""
    runner = ScriptedRunner()
    runner.on("logs", returncode=1, stderr="no such service")

    result = probe_backend_log(_context(make_config(), runner))

    assert result.status is ProbeStatus.YELLOW
    assert "no such service" in result.message


def test_backend_log_without_compose(make_config: Callable[..., AppConfig]) -> None:
    """Without a Compose provider the log check is skipped with a warning."""
    result = probe_backend_log(_context(make_config()))

    assert result.status is ProbeStatus.YELLOW
