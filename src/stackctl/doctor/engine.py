"""Probe execution harness shared by ``doctor`` and post-start verification."""

from __future__ import annotations

import time
import traceback
from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING

from .models import (
    DoctorImpact,
    DoctorReport,
    ProbeContext,
    ProbeDefinition,
    ProbeExecutorOptions,
    ProbeResult,
    ProbeStatus,
    build_report,
)

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..providers.commands import CommandRunner
    from ..providers.compose import ComposeProvider


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _coerce_result(
    probe: ProbeDefinition,
    result: ProbeResult,
    duration_ms: int,
) -> ProbeResult:
    coerced = result
    if result.id != probe.id:
        coerced = replace(coerced, id=probe.id)
    if result.category != probe.category:
        coerced = replace(coerced, category=probe.category)
    if result.duration_ms is None:
        coerced = replace(coerced, duration_ms=duration_ms)
    return coerced


def _unexpected_failure(
    probe: ProbeDefinition,
    exc: Exception,
    duration_ms: int,
) -> ProbeResult:
    message = f"Probe '{probe.id}' raised an unexpected error: {exc}"
    data = {
        "exception": repr(exc),
        "traceback": traceback.format_exc(),
    }
    return ProbeResult(
        id=probe.id,
        category=probe.category,
        status=ProbeStatus.RED,
        impact=DoctorImpact.PROVIDER,
        message=message,
        remediation=None,
        duration_ms=duration_ms,
        data=data,
        warnings=("unhandled-exception",),
    )


def _run_single_probe(
    probe: ProbeDefinition,
    context: ProbeContext,
) -> ProbeResult:
    start = time.perf_counter()
    try:
        result = probe.run(context)
    except Exception as exc:  # pragma: no cover - probe bugs surface as RED results
        return _unexpected_failure(probe, exc, _duration_ms(start))
    duration_ms = _duration_ms(start)
    return _coerce_result(probe, result, duration_ms)


def run_probes(
    context: ProbeContext,
    probes: Sequence[ProbeDefinition],
) -> list[ProbeResult]:
    """Execute probes one after another, preserving their order."""
    return [_run_single_probe(probe, context) for probe in probes]


def create_probe_context(
    config: AppConfig,
    runner: CommandRunner,
    *,
    compose: ComposeProvider | None = None,
    options: ProbeExecutorOptions | None = None,
) -> ProbeContext:
    """Build a ProbeContext for the current configuration."""
    effective_options = options or ProbeExecutorOptions(
        request_timeout=config.verify.smoke_timeout,
    )
    return ProbeContext(
        config=config,
        runner=runner,
        options=effective_options,
        compose=compose,
    )


class DoctorEngine:
    """Coordinator that executes probes and aggregates the overall report."""

    def __init__(self, context: ProbeContext) -> None:
        """Store the probe execution context."""
        self._context = context

    @property
    def options(self) -> ProbeExecutorOptions:
        """Return the execution options associated with this engine."""
        return self._context.options

    def run(
        self,
        probes: Sequence[ProbeDefinition],
        *,
        metadata: Mapping[str, object] | None = None,
    ) -> DoctorReport:
        """Run the supplied probes and build a doctor report."""
        start = time.perf_counter()
        results = run_probes(self._context, probes)
        run_metadata: dict[str, object] = {
            "duration_ms": _duration_ms(start),
            "probe_count": len(results),
        }
        if metadata:
            run_metadata.update(metadata)
        return build_report(results, metadata=run_metadata)
