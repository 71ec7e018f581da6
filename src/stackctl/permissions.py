"""Plan and apply ownership fixes for the project tree.

Containers started through ``sudo`` tend to leave root-owned files behind in
bind-mounted directories. Before converging, the project tree is handed back to
the invoking user so later edits and rebuilds do not need elevation.
"""
from __future__ import annotations

import getpass
import grp
import logging
import os
import pwd
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .providers.commands import CommandRunner, describe_failure

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class OwnershipSpec:
    """Desired owner for every entry below *root*."""

    root: Path
    user: str
    group: str
    uid: int
    gid: int


@dataclass(slots=True)
class OwnershipAction:
    """Single ``chown`` invocation that brings an entry in line with the ownership spec."""

    paths: list[Path]
    command: list[str]


@dataclass(slots=True)
class OwnershipPlan:
    """Entries with the wrong owner and the commands that fix them."""

    spec: OwnershipSpec
    mismatched: list[Path] = field(default_factory=list)
    actions: list[OwnershipAction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Return ``True`` when applying the plan would change anything."""
        return bool(self.actions)


def _login_name() -> str:
    try:
        return getpass.getuser()
    except OSError:
        # Arbitrary container uids have no login name in the environment.
        return pwd.getpwuid(os.getuid()).pw_name


def invoking_owner(root: Path, env: Mapping[str, str] | None = None) -> OwnershipSpec:
    """Return the spec for the user who launched stackctl (``SUDO_USER`` aware)."""
    environ = os.environ if env is None else env
    name = environ.get("SUDO_USER") or _login_name()
    entry = pwd.getpwnam(name)
    try:
        group = grp.getgrgid(entry.pw_gid).gr_name
    except KeyError:
        group = str(entry.pw_gid)
    return OwnershipSpec(root=root, user=name, group=group, uid=entry.pw_uid, gid=entry.pw_gid)


def plan_ownership(spec: OwnershipSpec, *, elevate: tuple[str, ...] = ()) -> OwnershipPlan:
    """Return a plan covering the visible top-level entries of ``spec.root``."""
    plan = OwnershipPlan(spec=spec)
    try:
        entries = sorted(spec.root.iterdir())
    except OSError as exc:
        plan.warnings.append(f"Cannot inspect {spec.root}: {exc}")
        return plan

    for entry in entries:
        if entry.name.startswith("."):
            continue
        if _tree_has_foreign_owner(entry, spec.uid, spec.gid):
            plan.mismatched.append(entry)

    if plan.mismatched:
        plan.actions.append(
            OwnershipAction(
                paths=list(plan.mismatched),
                command=[
                    *elevate,
                    "chown",
                    "-R",
                    f"{spec.user}:{spec.group}",
                    *(str(path) for path in plan.mismatched),
                ],
            )
        )
    return plan


def apply_ownership_plan(plan: OwnershipPlan, *, runner: CommandRunner) -> list[str]:
    """Execute *plan*; failures are returned as warnings rather than raised."""
    warnings = list(plan.warnings)
    for action in plan.actions:
        result = runner.run(action.command, mutating=True)
        if result.returncode != 0:
            warnings.append(f"Ownership fix failed ({describe_failure(result)}).")
            continue
        LOGGER.debug("Ownership fixed for %d entries.", len(action.paths))
    return warnings


def _tree_has_foreign_owner(path: Path, uid: int, gid: int) -> bool:
    if _foreign(path, uid, gid):
        return True
    if path.is_symlink() or not path.is_dir():
        return False
    for current, dirnames, filenames in os.walk(path):
        base = Path(current)
        for name in (*dirnames, *filenames):
            if _foreign(base / name, uid, gid):
                return True
    return False


def _foreign(path: Path, uid: int, gid: int) -> bool:
    try:
        info = path.lstat()
    except OSError:
        return False
    return info.st_uid != uid or info.st_gid != gid


__all__ = [
    "OwnershipAction",
    "OwnershipPlan",
    "OwnershipSpec",
    "apply_ownership_plan",
    "invoking_owner",
    "plan_ownership",
]
