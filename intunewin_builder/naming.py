"""File-name helpers shared by the packaging stages."""

from __future__ import annotations

import re

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def slug(name: str) -> str:
    """Filesystem- and command-line-safe form of a package name."""
    return _UNSAFE.sub("-", name).strip("-.") or "package"


def match_key(name: str) -> str:
    """Lowercased alphanumerics only, for fuzzy name comparisons."""
    return re.sub(r"[^a-z0-9]", "", name.lower())


def archive_name(package: str) -> str:
    return f"{slug(package)}.zip"


def script_name(package: str) -> str:
    return f"Install-{slug(package)}.ps1"
