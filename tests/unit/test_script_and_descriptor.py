from __future__ import annotations

import codecs
import json
from pathlib import Path

from intunewin_builder.planner import detection_rules, emit_descriptor
from intunewin_builder.script.generator import (
    ps_quote,
    render_install_script,
    template_environment,
    write_install_script,
)
from intunewin_builder.types import (
    UNKNOWN,
    CompressionOutcome,
    PackageDescriptor,
    SourceTree,
    Strategy,
)
from intunewin_builder.validator import validate_descriptor_document
from tests.helpers import PRODUCT_CODE, make_deployment

DESCRIPTOR = PackageDescriptor(
    program_name="Revit 2023",
    build_number="23.1.7.0",
    product_code=PRODUCT_CODE,
    installer_version="2.5.0.213",
)


def _tree(tmp_path: Path) -> SourceTree:
    return SourceTree.from_path(make_deployment(tmp_path))


def test_ps_quote_escapes_single_quotes() -> None:
    assert ps_quote("O'Brien Tools") == "'O''Brien Tools'"


def test_script_is_parameterized_by_descriptor(tmp_path, settings) -> None:
    text = render_install_script(_tree(tmp_path), DESCRIPTOR, "Revit_2023.zip", settings)

    assert "[ValidateSet('Install', 'Uninstall')]" in text
    assert "$ArchiveName      = 'Revit_2023.zip'" in text
    assert "$ProgramName      = 'Revit 2023'" in text
    assert "$BuildNumber      = '23.1.7.0'" in text
    assert f"$ProductCode      = '{PRODUCT_CODE}'" in text
    assert "$InstallerVersion = '2.5.0.213'" in text
    assert "$InstallerPath    = 'image\\Installer.exe'" in text
    assert "'-i', 'deploy', '--offline_mode', '-q'" in text
    assert "'/x', $ProductCode" in text
    assert "$GenericFailure   = 1603" in text
    assert "Test-Elevated" in text
    assert "Clear-Scratch" in text


def test_written_script_uses_bom_and_crlf(tmp_path, settings) -> None:
    path = write_install_script(
        _tree(tmp_path), DESCRIPTOR, "Revit_2023.zip", tmp_path / "work", settings
    )
    raw = path.read_bytes()
    assert path.name == "Install-Revit_2023.ps1"
    assert raw.startswith(codecs.BOM_UTF8)
    assert b"\r\n" in raw and b"\n" not in raw.replace(b"\r\n", b"")


def test_detection_rules_reference_product_code_and_build() -> None:
    rules = detection_rules(DESCRIPTOR)
    assert rules["primary"]["productCode"] == PRODUCT_CODE
    assert rules["primary"]["productVersion"] == "23.1.7.0"
    assert rules["alternative"]["keyPath"].endswith("\\" + PRODUCT_CODE)
    assert rules["alternative"]["value"] == "23.1.7.0"


def test_detection_rules_without_product_code() -> None:
    assert detection_rules(PackageDescriptor(program_name="Maya 2024")) == {
        "primary": None,
        "alternative": None,
    }


def test_detection_rules_skip_version_check_for_raw_build() -> None:
    rules = detection_rules(DESCRIPTOR.model_copy(update={"build_number": "2023-R1"}))
    assert rules["primary"]["productVersionOperator"] == "notConfigured"
    assert rules["alternative"]["operator"] == "exists"


def test_emit_descriptor_writes_report_and_valid_json(tmp_path, settings) -> None:
    tree = _tree(tmp_path)
    outcome = CompressionOutcome(
        strategy=Strategy.STANDARD,
        output_path=tmp_path / "Revit_2023.zip",
        bytes_in=1000,
        bytes_out=400,
        elapsed_seconds=0.5,
    )
    files = emit_descriptor(
        tmp_path / "out", tree, DESCRIPTOR, outcome, Path("Install-Revit_2023.ps1"), []
    )

    doc = json.loads(files.document.read_text(encoding="utf-8"))
    validate_descriptor_document(doc)
    assert doc["compression"]["ratioPercent"] == 60.0

    report = files.report.read_text(encoding="utf-8")
    assert "Program name:       Revit 2023" in report
    assert "Build number:       23.1.7.0" in report
    assert f"Product code:       {PRODUCT_CODE}" in report
    assert "Version check:      greaterThanOrEqual 23.1.7.0" in report
    assert "60.0% saved" in report
    assert "WARNINGS" not in report


def test_unknown_descriptor_still_renders(tmp_path, settings) -> None:
    text = render_install_script(_tree(tmp_path), PackageDescriptor(), "x.zip", settings)
    assert f"$ProductCode      = '{UNKNOWN}'" in text


def test_one_environment_serves_both_templates() -> None:
    env = template_environment()
    assert env.filters["ps_quote"]("it's") == "'it''s'"
    assert {"install.ps1.j2", "descriptor.txt.j2"} <= set(env.list_templates())
