"""Discovery of candidate deployment trees under a root directory."""

from __future__ import annotations

from collections.abc import Sequence
from fnmatch import fnmatchcase
from pathlib import Path

from pydantic import BaseModel

from intunewin_builder.types import SourceTree


class DiscoveryReport(BaseModel):
    """Result of scanning a root directory.

    Attributes
    ----------
    candidates: list[SourceTree]
        Matching directories, deduplicated and sorted by name.
    unmatched: list[str]
        Directory names that matched no pattern (useful when nothing matched).
    error: str | None
        The I/O error text if the root could not be listed.
    """

    candidates: list[SourceTree] = []
    unmatched: list[str] = []
    error: str | None = None


def _matches(name: str, patterns: Sequence[str]) -> bool:
    lowered = name.lower()
    return any(fnmatchcase(lowered, p.lower()) for p in patterns)


def discover_source_trees(root: Path, patterns: Sequence[str]) -> DiscoveryReport:
    """List directories directly under *root* whose names match any pattern.

    An inaccessible root is reported in ``error`` rather than raised; having no
    candidates is a normal outcome the caller has to handle.
    """
    try:
        entries = [p for p in root.iterdir() if p.is_dir()]
    except OSError as exc:
        return DiscoveryReport(error=f"{root}: {exc.strerror or exc}")

    seen: dict[str, SourceTree] = {}
    unmatched: list[str] = []
    for entry in entries:
        if _matches(entry.name, patterns):
            try:
                seen.setdefault(entry.name, SourceTree.from_path(entry))
            except OSError:
                unmatched.append(entry.name)
        else:
            unmatched.append(entry.name)

    candidates = [seen[k] for k in sorted(seen, key=str.lower)]
    return DiscoveryReport(candidates=candidates, unmatched=sorted(unmatched, key=str.lower))
