"""Turn a deployment manifest into a :class:`PackageDescriptor`.

The extractor never raises for bad content: unresolved fields fall back to the
``UNKNOWN`` sentinel and are reported as :class:`ExtractionWarning` records.
"""

from __future__ import annotations

import codecs
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from intunewin_builder.errors import ExtractionWarning
from intunewin_builder.metadata import rules
from intunewin_builder.metadata.rules import Rule, RuleHit
from intunewin_builder.types import PackageDescriptor

ESSENTIAL_FIELDS = ("product_code", "build_number")


@dataclass(frozen=True)
class ExtractionResult:
    descriptor: PackageDescriptor
    warnings: list[ExtractionWarning] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when a field needed for detection rules could not be resolved."""
        return any(w.field in ESSENTIAL_FIELDS for w in self.warnings)


def read_manifest_text(path: Path) -> str:
    """Decode a manifest written as UTF-8 or UTF-16 (with BOM)."""
    raw = path.read_bytes()
    if raw.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return raw.decode("utf-16", errors="replace")
    return raw.decode("utf-8-sig", errors="replace")


def first_hit(text: str, chain: Sequence[Rule]) -> RuleHit | None:
    for rule in chain:
        hit = rule(text)
        if hit is not None:
            return hit
    return None


def extract_from_text(text: str, fallback_name: str | None = None) -> ExtractionResult:
    warnings: list[ExtractionWarning] = []
    values: dict[str, str] = {}

    chains: dict[str, Sequence[Rule]] = {
        "program_name": rules.PROGRAM_NAME_RULES,
        "build_number": (rules.build_number,),
        "product_code": (rules.product_code,),
        "installer_version": (rules.installer_version,),
    }
    for name, chain in chains.items():
        hit = first_hit(text, chain)
        if hit is None:
            continue
        values[name] = hit.value
        if hit.warning:
            warnings.append(ExtractionWarning(name, hit.warning))

    if "program_name" not in values and fallback_name:
        normalized = rules.normalize_deployment_name(fallback_name)
        if len(normalized) >= 4:
            values["program_name"] = normalized
            warnings.append(
                ExtractionWarning("program_name", f"derived from folder name {fallback_name!r}")
            )

    for name in chains:
        if name not in values:
            warnings.append(ExtractionWarning(name, "not found in manifest"))

    return ExtractionResult(descriptor=PackageDescriptor(**values), warnings=warnings)


def extract_metadata(manifest: Path, fallback_name: str | None = None) -> ExtractionResult:
    """Parse *manifest*; an unreadable file yields an all-``UNKNOWN`` descriptor."""
    try:
        text = read_manifest_text(manifest)
    except OSError as exc:
        result = extract_from_text("", fallback_name)
        return ExtractionResult(
            descriptor=result.descriptor,
            warnings=[ExtractionWarning("manifest", f"unreadable: {exc}"), *result.warnings],
        )
    return extract_from_text(text, fallback_name)
