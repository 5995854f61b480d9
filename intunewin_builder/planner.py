"""Descriptor emission: the human-readable report plus its JSON twin.

The JSON document is validated against ``schema/descriptor.schema.json`` before
anything is written; the text report is rendered from that same document so the
two never disagree.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from intunewin_builder.errors import ExtractionWarning
from intunewin_builder.naming import slug
from intunewin_builder.script.generator import GENERIC_FAILURE_CODE, template_environment
from intunewin_builder.types import CompressionOutcome, PackageDescriptor, SourceTree
from intunewin_builder.validator import write_descriptor_document

UNINSTALL_KEY = r"HKEY_LOCAL_MACHINE\SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"

RETURN_CODES = [
    {"code": 0, "type": "success"},
    {"code": 1707, "type": "success"},
    {"code": 3010, "type": "softReboot"},
    {"code": 1641, "type": "hardReboot"},
    {"code": 1618, "type": "retry"},
    {"code": GENERIC_FAILURE_CODE, "type": "failed"},
]


@dataclass(frozen=True)
class DescriptorFiles:
    report: Path
    document: Path


def detection_rules(descriptor: PackageDescriptor) -> dict:
    """Primary (MSI product code) and alternative (registry version) detection rules.

    Both depend on the product code; without one the caller gets ``None`` for each
    and has to define detection by hand.
    """
    if not descriptor.has_product_code:
        return {"primary": None, "alternative": None}

    version = descriptor.build_number if descriptor.build_number_valid else None
    primary = {
        "type": "msi",
        "productCode": descriptor.product_code,
        "productVersionOperator": "greaterThanOrEqual" if version else "notConfigured",
        "productVersion": version,
    }
    alternative = {
        "type": "registry",
        "keyPath": f"{UNINSTALL_KEY}\\{descriptor.product_code}",
        "valueName": "DisplayVersion",
        "operator": "greaterThanOrEqual" if version else "exists",
        "value": version,
        "check32BitOn64System": False,
    }
    return {"primary": primary, "alternative": alternative}


def build_descriptor_document(
    tree: SourceTree,
    descriptor: PackageDescriptor,
    outcome: CompressionOutcome,
    script: Path,
    warnings: list[ExtractionWarning],
) -> dict:
    run_cmd = f"powershell.exe -ExecutionPolicy Bypass -NoProfile -File .\\{script.name}"
    return {
        "schemaVersion": "1.0",
        "package": {
            "name": tree.name,
            "source": str(tree.path),
            "archive": outcome.output_path.name,
            "script": script.name,
            "generatedAt": datetime.now().isoformat(timespec="seconds"),
        },
        "descriptor": {
            "programName": descriptor.program_name,
            "buildNumber": descriptor.build_number,
            "productCode": descriptor.product_code,
            "installerVersion": descriptor.installer_version,
        },
        "install": {
            "installCommand": f"{run_cmd} -Mode Install",
            "uninstallCommand": f"{run_cmd} -Mode Uninstall",
            "installBehavior": "system",
            "returnCodes": RETURN_CODES,
        },
        "detection": detection_rules(descriptor),
        "compression": {
            "strategy": outcome.strategy.value,
            "bytesIn": outcome.bytes_in,
            "bytesOut": outcome.bytes_out,
            "ratioPercent": outcome.ratio_percent,
            "elapsedSeconds": round(outcome.elapsed_seconds, 2),
        },
        "warnings": [str(w) for w in warnings],
    }


def render_descriptor_report(document: dict) -> str:
    return template_environment().get_template("descriptor.txt.j2").render(doc=document)


def emit_descriptor(
    outdir: Path,
    tree: SourceTree,
    descriptor: PackageDescriptor,
    outcome: CompressionOutcome,
    script: Path,
    warnings: list[ExtractionWarning],
) -> DescriptorFiles:
    document = build_descriptor_document(tree, descriptor, outcome, script, warnings)
    stem = slug(tree.name)
    json_path = write_descriptor_document(outdir / f"{stem}.descriptor.json", document)
    report_path = outdir / f"{stem}.descriptor.txt"
    report_path.write_text(render_descriptor_report(document), encoding="utf-8")
    return DescriptorFiles(report=report_path, document=json_path)
