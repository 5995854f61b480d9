"""Install/uninstall entry script generation.

The script is the entry point handed to the wrapping tool. It is rendered from
``templates/install.ps1.j2`` with every descriptor value quoted for PowerShell.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from jinja2 import Environment, PackageLoader, StrictUndefined

from intunewin_builder.config import BuilderSettings
from intunewin_builder.naming import script_name, slug
from intunewin_builder.types import UNKNOWN, PackageDescriptor, SourceTree

GENERIC_FAILURE_CODE = 1603


def ps_quote(value: object) -> str:
    """Single-quoted PowerShell literal (no interpolation)."""
    return "'" + str(value).replace("'", "''") + "'"


def template_environment() -> Environment:
    """Jinja environment for every bundled template (script and descriptor report)."""
    env = Environment(
        loader=PackageLoader("intunewin_builder", "templates"),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )
    env.filters["ps_quote"] = ps_quote
    return env


def render_install_script(
    tree: SourceTree,
    descriptor: PackageDescriptor,
    archive: str,
    settings: BuilderSettings,
) -> str:
    image = settings.image_dir.strip("/\\").replace("/", "\\")
    template = template_environment().get_template("install.ps1.j2")
    return template.render(
        tree_name=tree.name,
        script_name=script_name(tree.name),
        scratch_name=slug(tree.name),
        generated_at=datetime.now().strftime("%Y-%m-%d %H:%M"),
        archive_name=archive,
        program_name=descriptor.program_name,
        build_number=descriptor.build_number,
        product_code=descriptor.product_code,
        installer_version=descriptor.installer_version,
        installer_relpath=f"{image}\\{settings.installer_name}",
        collection_relpath=f"{image}\\{settings.collection_name}",
        unknown=UNKNOWN,
        generic_failure=GENERIC_FAILURE_CODE,
    )


def write_install_script(
    tree: SourceTree,
    descriptor: PackageDescriptor,
    archive: str,
    dest_dir: Path,
    settings: BuilderSettings,
) -> Path:
    """Render the script into *dest_dir* (UTF-8 with BOM, CRLF for Windows PowerShell)."""
    dest_dir.mkdir(parents=True, exist_ok=True)
    path = dest_dir / script_name(tree.name)
    path.write_text(
        render_install_script(tree, descriptor, archive, settings),
        encoding="utf-8-sig",
        newline="\r\n",
    )
    return path
