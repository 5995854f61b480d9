"""Structural validation of source trees and schema validation of descriptors."""

from __future__ import annotations

import json
from dataclasses import dataclass
from importlib import resources
from pathlib import Path

from jsonschema import Draft202012Validator

from intunewin_builder.config import BuilderSettings
from intunewin_builder.errors import StructuralError
from intunewin_builder.types import SourceTree, ValidationResult


@dataclass(frozen=True)
class RequiredPath:
    relpath: str
    critical: bool


def required_layout(settings: BuilderSettings) -> tuple[RequiredPath, ...]:
    """The files every deployment tree is expected to carry."""
    image = settings.image_dir.strip("/\\")
    return (
        RequiredPath(f"{image}/{settings.installer_name}", critical=True),
        RequiredPath(f"{image}/{settings.collection_name}", critical=True),
        RequiredPath(settings.manifest_name, critical=False),
    )


def validate_source_tree(tree: SourceTree, layout: tuple[RequiredPath, ...]) -> ValidationResult:
    """Probe *tree* for every entry in *layout* (read-only)."""
    missing_critical: list[str] = []
    missing_optional: list[str] = []
    for req in layout:
        if (tree.path / req.relpath).is_file():
            continue
        (missing_critical if req.critical else missing_optional).append(req.relpath)
    return ValidationResult(
        missing_critical=tuple(missing_critical),
        missing_optional=tuple(missing_optional),
    )


def ensure_valid(result: ValidationResult) -> None:
    """Raise :class:`StructuralError` listing every missing critical file."""
    if not result.passed:
        raise StructuralError(list(result.missing_critical))


# --- Schema validation --------------------------------------------------------


def _load_schema(package: str, resource_name: str) -> dict:
    with resources.files(package).joinpath(resource_name).open("r", encoding="utf-8") as f:
        return json.load(f)


def _descriptor_schema() -> dict:
    return _load_schema("intunewin_builder.schema", "descriptor.schema.json")


def validate_descriptor_document(data: dict) -> None:
    Draft202012Validator(_descriptor_schema()).validate(data)


def write_descriptor_document(path: Path, data: dict) -> Path:
    """Validate *data* against the bundled schema, then write it as JSON."""
    validate_descriptor_document(data)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path
