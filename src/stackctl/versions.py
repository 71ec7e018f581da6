"""Version parsing helpers for external tool output."""
from __future__ import annotations

import re

from packaging.version import InvalidVersion, Version

_VERSION_PATTERN = re.compile(r"(\d+(?:\.\d+)*)")


def extract_version(output: str) -> str | None:
    """Return the first dotted version number found in *output*.

    Handles ``Docker version 24.0.7, build afdd53b``, ``v2.21.0`` and
    ``docker-compose version 1.29.2, build 5becea4c`` alike.
    """
    match = _VERSION_PATTERN.search(output or "")
    if match is None:
        return None
    return match.group(1)


def parse_version(value: str) -> Version | None:
    """Parse *value* with :mod:`packaging`, returning ``None`` when invalid."""
    extracted = extract_version(value)
    if extracted is None:
        return None
    try:
        return Version(extracted)
    except InvalidVersion:
        return None


def satisfies(found: str, minimum: str) -> bool:
    """Return ``True`` when *found* is at least *minimum*.

    Comparison is numeric, so ``10.0`` satisfies ``2.0``.
    """
    found_version = parse_version(found)
    minimum_version = parse_version(minimum)
    if found_version is None or minimum_version is None:
        return False
    return found_version >= minimum_version


__all__ = ["extract_version", "parse_version", "satisfies"]
