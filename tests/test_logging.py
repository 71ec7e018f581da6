"""Tests for the structured operation log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from stackctl.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    return [json.loads(line) for line in logger.path.read_text().splitlines()]


def test_operation_writes_single_json_line(tmp_path: Path) -> None:
    """A completed operation is appended as one JSON record."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("up", args={"dry_run": True}, target={"kind": "project"}) as op:
        op.add_step("preflight.os", detail="Ubuntu 22.04.4 LTS")
        op.add_step("install.docker", status="unchanged", detail=Path("/usr/bin/docker"))
        op.success("Stack is up.", changed=0)

    records = _records(logger)
    assert len(records) == 1
    record = records[0]
    assert record["command"] == "up"
    assert record["args"] == {"dry_run": True}
    assert record["steps"] == [
        {"name": "preflight.os", "status": "success", "detail": "Ubuntu 22.04.4 LTS"},
        {"name": "install.docker", "status": "unchanged", "detail": "/usr/bin/docker"},
    ]
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "success"
    assert result["rc"] == 0
    assert result["changed"] == 0


def test_operation_defaults_to_success(tmp_path: Path) -> None:
    """Leaving the scope without a result records a generic success."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("status"):
        pass

    result = _records(logger)[0]["result"]
    assert isinstance(result, dict)
    assert result["status"] == "success"


def test_error_result_defaults_errors_to_message(tmp_path: Path) -> None:
    """``error`` records the message as the error list and keeps the rc."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("up") as op:
        op.error("Descriptor missing.", rc=2)

    result = _records(logger)[0]["result"]
    assert isinstance(result, dict)
    assert result["status"] == "error"
    assert result["rc"] == 2
    assert result["errors"] == ["Descriptor missing."]


def test_unhandled_exception_is_recorded_and_reraised(tmp_path: Path) -> None:
    """Exceptions escaping the scope still produce an error record."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ValueError):
        with logger.operation("up"):
            raise ValueError("boom")

    result = _records(logger)[0]["result"]
    assert isinstance(result, dict)
    assert result["status"] == "error"
    assert "boom" in str(result["message"])


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo", args={"foo": "bar"}) as op:
        op.success("done", changed=0)


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger._operations_log_path  # type: ignore[attr-defined]

    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("demo") as op:
        op.success("done", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo-2") as op:
        op.success("done", changed=0)
