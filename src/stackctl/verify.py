"""Best-effort checks run once the services report ready.

Neither check can fail a run: an unreachable frontend or a missing database
log line is reported as a warning, since both often resolve a few seconds
after the containers start.
"""
from __future__ import annotations

import urllib.error
import urllib.request
from collections.abc import Sequence
from urllib.parse import urlparse

from .doctor.models import (
    DoctorImpact,
    ProbeContext,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
)
from .errors import ComposeError


def collect_verification_probes() -> Sequence[ProbeDefinition]:
    """Return the post-start verification probes in execution order."""
    return (
        ProbeDefinition(id="app-http", category="app", run=probe_http_smoke),
        ProbeDefinition(id="app-backend-log", category="app", run=probe_backend_log),
    )


def probe_http_smoke(context: ProbeContext) -> ProbeResult:
    """Expect HTTP 200 from the frontend URL."""
    url = context.config.verify.smoke_url
    remediation = "The frontend may still be starting; retry in a few seconds."
    if urlparse(url).scheme not in {"http", "https"}:
        return _warn("app-http", f"Smoke URL {url!r} is not an http(s) URL.")
    request = urllib.request.Request(url, method="GET")  # noqa: S310
    try:
        with urllib.request.urlopen(  # noqa: S310
            request,
            timeout=context.options.request_timeout,
        ) as response:
            code = int(response.status)
    except urllib.error.HTTPError as exc:
        code = exc.code
    except (urllib.error.URLError, OSError, ValueError) as exc:
        return _warn(
            "app-http",
            f"Frontend not reachable at {url}: {exc}",
            remediation=remediation,
        )
    if code == 200:
        return ProbeResult(
            id="app-http",
            category="app",
            status=ProbeStatus.GREEN,
            impact=DoctorImpact.OK,
            message=f"Frontend reachable at {url}.",
            data={"status_code": code},
        )
    return _warn(
        "app-http",
        f"Frontend at {url} answered HTTP {code}.",
        remediation=remediation,
        data={"status_code": code},
    )


def probe_backend_log(context: ProbeContext) -> ProbeResult:
    """Look for the database connection marker in the backend log stream."""
    verify = context.config.verify
    compose = context.compose
    if compose is None:
        return _warn("app-backend-log", "Compose is not available; log check skipped.")
    hint = f"Inspect '{compose.command.display} logs {verify.log_service}'."
    try:
        output = compose.logs(verify.log_service)
    except ComposeError as exc:
        return _warn("app-backend-log", str(exc), remediation=hint)
    if verify.log_marker in output:
        return ProbeResult(
            id="app-backend-log",
            category="app",
            status=ProbeStatus.GREEN,
            impact=DoctorImpact.OK,
            message=f"Service '{verify.log_service}' reported '{verify.log_marker}'.",
        )
    return _warn(
        "app-backend-log",
        f"'{verify.log_marker}' not found in '{verify.log_service}' logs.",
        remediation=hint,
    )


def _warn(
    probe_id: str,
    message: str,
    *,
    remediation: str | None = None,
    data: dict[str, object] | None = None,
) -> ProbeResult:
    return ProbeResult(
        id=probe_id,
        category="app",
        status=ProbeStatus.YELLOW,
        impact=DoctorImpact.OK,
        message=message,
        remediation=remediation,
        data=data,
    )


__all__ = ["collect_verification_probes", "probe_backend_log", "probe_http_smoke"]
