"""Extraction rules for deployment manifest text.

Each rule is a pure function ``(text) -> RuleHit | None``. Rules for one field
are kept in an ordered tuple; :mod:`intunewin_builder.metadata.extract` walks
the tuple and keeps the first hit.

Manifest anchors recognised here::

    Deployment: Revit_2023_23.1.7.0
    Revit 2023
    Product Code: {AAAA1111-BBBB-2222-CCCC-333344445555}
    Build number: 23.1.7.0

    Autodesk Installer
    Build number: 2.5.0.213
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from intunewin_builder.types import DOTTED_VERSION_RE, PRODUCT_CODE_RE


@dataclass(frozen=True)
class RuleHit:
    value: str
    confidence: Literal["high", "low"] = "high"
    warning: str | None = None


Rule = Callable[[str], "RuleHit | None"]

PLACEHOLDERS = frozenset(
    {
        "unknown",
        "n/a",
        "na",
        "none",
        "null",
        "product",
        "products",
        "application",
        "applications",
        "autodesk",
        "autodesk installer",
        "deployment",
        "summary",
    }
)

PRODUCT_FAMILIES = (
    "AutoCAD",
    "Revit",
    "Civil 3D",
    "Inventor",
    "Navisworks",
    "3ds Max",
    "Maya",
    "Vault",
    "Advance Steel",
    "Plant 3D",
    "Map 3D",
    "InfraWorks",
    "ReCap",
    "Fabrication",
    "Robot Structural Analysis",
    "Factory Design Utilities",
    "MotionBuilder",
    "Mudbox",
)

_PRODUCT_CODE_LINE = re.compile(r"^\s*Product Code\s*:", re.IGNORECASE)
_BUILD_LINE = re.compile(r"^\s*Build number\s*:\s*(\S+)", re.IGNORECASE)
_FIELD_LINE = re.compile(r"^\s*(?:Product|Application)\s*:\s*(.+?)\s*$", re.IGNORECASE)
_DEPLOYMENT_LINE = re.compile(r"^\s*Deployment(?: name)?\s*:\s*(.+?)\s*$", re.IGNORECASE)
_LABEL_LINE = re.compile(r"^[A-Za-z][A-Za-z ]*:\s")
_DEPLOYMENT_ID = re.compile(r"_\d+(?:\.\d+)+")
_VERSION_SUFFIX = re.compile(r"\s+v?\d+(?:\.\d+)+$", re.IGNORECASE)
_INSTALLER_HEADER = re.compile(r"^\s*Autodesk Installer\s*$", re.IGNORECASE)
_FAMILY_YEAR = re.compile(
    r"(?:Autodesk\s+)?(?:"
    + "|".join(re.escape(f) for f in PRODUCT_FAMILIES)
    + r")\b[^\n]*?\b(?:19|20)\d{2}\b",
    re.IGNORECASE,
)


def _lines(text: str) -> list[str]:
    return text.splitlines()


def _previous_nonblank(lines: list[str], index: int) -> str | None:
    for j in range(index - 1, -1, -1):
        if lines[j].strip():
            return lines[j].strip()
    return None


def is_acceptable_name(candidate: str | None) -> bool:
    """Reject placeholders, very short values and deployment identifiers."""
    if not candidate:
        return False
    value = candidate.strip()
    if len(value) < 4 or value.lower() in PLACEHOLDERS:
        return False
    if _DEPLOYMENT_ID.search(value):
        return False
    return not _LABEL_LINE.match(value)


def installer_build_line(lines: list[str]) -> int | None:
    """Index of the first ``Build number:`` line after the installer header."""
    for i, line in enumerate(lines):
        if _INSTALLER_HEADER.match(line):
            for j in range(i + 1, len(lines)):
                if _BUILD_LINE.match(lines[j]):
                    return j
            return None
    return None


# --- Program name ---------------------------------------------------------------


def _name_before(anchor: re.Pattern[str]) -> Rule:
    def rule(text: str) -> RuleHit | None:
        lines = _lines(text)
        for i, line in enumerate(lines):
            if anchor.match(line):
                candidate = _previous_nonblank(lines, i)
                if is_acceptable_name(candidate):
                    return RuleHit(candidate)  # type: ignore[arg-type]
        return None

    return rule


name_before_product_code = _name_before(_PRODUCT_CODE_LINE)
name_before_build_number = _name_before(_BUILD_LINE)


def name_from_field(text: str) -> RuleHit | None:
    for line in _lines(text):
        m = _FIELD_LINE.match(line)
        if m and is_acceptable_name(m.group(1)):
            return RuleHit(m.group(1))
    return None


def name_from_family_keyword(text: str) -> RuleHit | None:
    for line in _lines(text):
        if "_" in line:
            continue
        m = _FAMILY_YEAR.search(line)
        if m:
            return RuleHit(m.group(0).strip(), confidence="low")
    return None


def normalize_deployment_name(raw: str) -> str:
    value = " ".join(raw.replace("_", " ").split())
    while True:
        stripped = _VERSION_SUFFIX.sub("", value)
        if stripped == value:
            return value
        value = stripped


def name_from_deployment(text: str) -> RuleHit | None:
    for line in _lines(text):
        m = _DEPLOYMENT_LINE.match(line)
        if m:
            value = normalize_deployment_name(m.group(1))
            if len(value) >= 4:
                return RuleHit(
                    value,
                    confidence="low",
                    warning=f"derived from deployment name {m.group(1)!r}",
                )
    return None


PROGRAM_NAME_RULES: tuple[Rule, ...] = (
    name_before_product_code,
    name_before_build_number,
    name_from_field,
    name_from_family_keyword,
    name_from_deployment,
)


# --- Build number / installer version ----------------------------------------------


def build_number(text: str) -> RuleHit | None:
    lines = _lines(text)
    skip = installer_build_line(lines)
    for i, line in enumerate(lines):
        if i == skip:
            continue
        m = _BUILD_LINE.match(line)
        if m:
            raw = m.group(1)
            if DOTTED_VERSION_RE.match(raw):
                return RuleHit(raw)
            return RuleHit(raw, confidence="low", warning=f"{raw!r} is not a dotted version")
    return None


def installer_version(text: str) -> RuleHit | None:
    lines = _lines(text)
    idx = installer_build_line(lines)
    if idx is None:
        return None
    m = _BUILD_LINE.match(lines[idx])
    return RuleHit(m.group(1)) if m else None


# --- Product code ---------------------------------------------------------------


def product_code(text: str) -> RuleHit | None:
    for line in _lines(text):
        if _PRODUCT_CODE_LINE.match(line):
            m = PRODUCT_CODE_RE.search(line.split(":", 1)[1])
            if m:
                return RuleHit(m.group(0))
    return None
