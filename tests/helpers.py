"""Shared builders for test deployment trees."""

from __future__ import annotations

from pathlib import Path

PRODUCT_CODE = "{AAAA1111-BBBB-2222-CCCC-333344445555}"

SUMMARY_TEXT = f"""Deployment: Revit_2023_23.1.7.0
Deployment path: D:\\Deployments\\Revit_2023
Created: 2023-04-11 09:12

Products
Revit 2023
Product Code: {PRODUCT_CODE}
Build number: 23.1.7.0
Language: English (US)

Autodesk Installer
Build number: 2.5.0.213
"""


def make_deployment(
    root: Path,
    name: str = "Revit_2023",
    *,
    manifest: str | None = SUMMARY_TEXT,
    installer: bool = True,
    collection: bool = True,
    payload_files: int = 3,
) -> Path:
    """Create a small deployment tree shaped like the vendor tool's output."""
    tree = root / name
    image = tree / "image"
    image.mkdir(parents=True, exist_ok=True)
    if installer:
        (image / "Installer.exe").write_bytes(b"MZ" + b"\x00" * 256)
    if collection:
        (image / "Collection.xml").write_text(
            '<?xml version="1.0"?>\n<Collection />\n', encoding="utf-8"
        )
    if manifest is not None:
        (tree / "Summary.txt").write_text(manifest, encoding="utf-8")
    data = image / "x64" / "RVT"
    data.mkdir(parents=True, exist_ok=True)
    for i in range(payload_files):
        (data / f"payload{i}.bin").write_bytes((f"block-{i}-".encode() * 400))
    return tree


