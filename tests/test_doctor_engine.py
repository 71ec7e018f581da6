"""Tests for the doctor probe execution engine."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, cast

import pytest

from stackctl.config import AppConfig
from stackctl.doctor import (
    DoctorEngine,
    DoctorImpact,
    ProbeContext,
    ProbeDefinition,
    ProbeExecutorOptions,
    ProbeResult,
    ProbeStatus,
    aggregate_results,
    create_probe_context,
    run_probes,
    serialize_report,
)
from stackctl.doctor.engine import _duration_ms, _run_single_probe, _unexpected_failure
from stackctl.providers import CommandRunner


def _dummy_context(options: ProbeExecutorOptions | None = None) -> ProbeContext:
    """Return a probe context populated with sentinel dependencies."""
    sentinel = cast(Any, object())
    return ProbeContext(
        config=sentinel,
        runner=sentinel,
        options=options or ProbeExecutorOptions(),
    )


def _result(
    status: ProbeStatus,
    impact: DoctorImpact,
    *,
    message: str = "ok",
) -> ProbeResult:
    return ProbeResult(
        id="probe",
        category="env",
        status=status,
        impact=impact,
        message=message,
    )


def test_aggregate_results_yellow_overrides_green() -> None:
    """A yellow result should promote the summary to yellow without failing."""
    summary = aggregate_results(
        [
            _result(ProbeStatus.GREEN, DoctorImpact.OK),
            _result(ProbeStatus.YELLOW, DoctorImpact.OK),
        ]
    )
    assert summary.status is ProbeStatus.YELLOW
    assert summary.exit_code == 0
    assert summary.totals[ProbeStatus.YELLOW] == 1


def test_aggregate_results_worst_impact_wins() -> None:
    """The highest impact tier decides the exit code."""
    summary = aggregate_results(
        [
            _result(ProbeStatus.RED, DoctorImpact.VALIDATION, message="descriptor missing"),
            _result(ProbeStatus.RED, DoctorImpact.ENVIRONMENT, message="wrong host"),
            _result(ProbeStatus.GREEN, DoctorImpact.OK),
        ]
    )
    assert summary.status is ProbeStatus.RED
    assert summary.impact is DoctorImpact.ENVIRONMENT
    assert summary.exit_code == 3


def test_run_probes_preserves_order_and_coerces_ids() -> None:
    """Execution keeps probe order and aligns ids and categories."""
    context = _dummy_context()

    def first_probe(ctx: ProbeContext) -> ProbeResult:
        assert ctx is context
        return ProbeResult(
            id="mismatch",
            category="fs",
            status=ProbeStatus.GREEN,
            impact=DoctorImpact.OK,
            message="first",
        )

    def second_probe(ctx: ProbeContext) -> ProbeResult:
        return _result(ProbeStatus.YELLOW, DoctorImpact.OK, message="second")

    probes = [
        ProbeDefinition(id="probe-1", category="env", run=first_probe),
        ProbeDefinition(id="probe-2", category="descriptor", run=second_probe),
    ]

    results = run_probes(context, probes)
    assert [result.id for result in results] == ["probe-1", "probe-2"]
    assert [result.category for result in results] == ["env", "descriptor"]
    assert all(result.duration_ms is not None for result in results)
    assert results[1].status is ProbeStatus.YELLOW


def test_run_probes_converts_exceptions_to_provider_failures() -> None:
    """Unhandled probe exceptions should become provider failures."""

    def boom(ctx: ProbeContext) -> ProbeResult:
        raise RuntimeError("kaboom")

    results = run_probes(
        _dummy_context(),
        [ProbeDefinition(id="broken", category="app", run=boom)],
    )
    assert results[0].status is ProbeStatus.RED
    assert results[0].impact is DoctorImpact.PROVIDER
    assert "unexpected error" in results[0].message
    assert "kaboom" in str(results[0].data)


def test_doctor_engine_run_returns_report_with_metadata() -> None:
    """Running the engine should produce a report with aggregated metadata."""
    probes = [
        ProbeDefinition(
            id="healthy",
            category="env",
            run=lambda ctx: _result(ProbeStatus.GREEN, DoctorImpact.OK),
        ),
    ]
    report = DoctorEngine(_dummy_context()).run(probes, metadata={"session": "test"})
    assert report.summary.status is ProbeStatus.GREEN
    assert report.summary.exit_code == 0
    assert report.metadata is not None
    assert report.metadata["probe_count"] == 1
    assert report.metadata["session"] == "test"

    payload = serialize_report(report)
    assert payload["summary"] == {
        "status": "green",
        "impact": "ok",
        "impact_code": 0,
        "exit_code": 0,
        "totals": {"green": 1, "yellow": 0, "red": 0},
    }


def test_create_probe_context_uses_smoke_timeout(
    make_config: Callable[..., AppConfig],
) -> None:
    """Default options take the request timeout from the verify settings."""
    config = make_config(verify={"smoke_timeout": 2.5})
    runner = CommandRunner()

    context = create_probe_context(config, runner)

    assert context.config is config
    assert context.runner is runner
    assert context.compose is None
    assert context.options.request_timeout == 2.5


def test_duration_ms_tracks_elapsed(monkeypatch: pytest.MonkeyPatch) -> None:
    """_duration_ms should convert perf_counter deltas to milliseconds."""
    monkeypatch.setattr("stackctl.doctor.engine.time.perf_counter", lambda: 10.5)
    assert _duration_ms(10.0) == 500


def test_unexpected_failure_wraps_exception() -> None:
    """_unexpected_failure should capture metadata about probe errors."""
    probe = ProbeDefinition(
        id="failing",
        category="env",
        run=lambda ctx: _result(ProbeStatus.GREEN, DoctorImpact.OK),
    )
    try:
        raise RuntimeError("boom")
    except RuntimeError as caught:
        result = _unexpected_failure(probe, caught, 42)
    assert result.status is ProbeStatus.RED
    assert "failing" in result.message and "boom" in result.message
    assert result.duration_ms == 42
    assert result.warnings == ("unhandled-exception",)
    assert isinstance(result.data, dict)
    assert "RuntimeError" in result.data["traceback"]


def test_run_single_probe_handles_exceptions(monkeypatch: pytest.MonkeyPatch) -> None:
    """Exceptions inside probe.run should be wrapped via _unexpected_failure."""

    def _broken(ctx: ProbeContext) -> ProbeResult:
        raise RuntimeError("fail")

    probe = ProbeDefinition(id="broken", category="fs", run=_broken)
    monkeypatch.setattr("stackctl.doctor.engine._duration_ms", lambda start: 50)
    result = _run_single_probe(probe, _dummy_context())
    assert result.status is ProbeStatus.RED
    assert result.impact is DoctorImpact.PROVIDER
    assert result.duration_ms == 50
