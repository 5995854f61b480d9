"""Archive checks and safe extraction helpers.

Guards against common archive attacks on extraction:
- Zip Slip (../ traversal)
- Absolute paths
- Oversized members (basic cap)
"""

from __future__ import annotations

import os
import stat
import zipfile
from pathlib import Path

from intunewin_builder.errors import CompressionError

MAX_MEMBER_BYTES = 16 * 1024**3  # deployment images carry multi-GiB members


def check_archive(path: Path) -> None:
    """Raise :class:`CompressionError` unless *path* is a non-empty, readable zip."""
    if not path.is_file():
        raise CompressionError(f"Archive was not created: {path}")
    if path.stat().st_size == 0:
        raise CompressionError(f"Archive is empty: {path}")
    if not zipfile.is_zipfile(path):
        raise CompressionError(f"Archive is not a readable zip: {path}")


def _is_within(base: Path, target: Path) -> bool:
    try:
        target.relative_to(base)
        return True
    except ValueError:
        return False


def safe_extract_zip(zip_path: Path, dest: Path) -> list[Path]:
    """Extract *zip_path* into *dest* and return the written file paths."""
    dest.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    with zipfile.ZipFile(zip_path) as z:
        for m in z.infolist():
            fn = Path(m.filename)
            if fn.name in {"", "."} or m.is_dir():
                continue
            if fn.is_absolute() or ".." in fn.parts:
                raise RuntimeError(f"Unsafe member path: {m.filename}")
            target = (dest / fn).resolve()
            if not _is_within(dest.resolve(), target):
                raise RuntimeError(f"Member escapes destination: {m.filename}")
            if m.file_size > MAX_MEMBER_BYTES:
                raise RuntimeError(f"Member too large: {m.filename} ({m.file_size} bytes)")
            target.parent.mkdir(parents=True, exist_ok=True)
            with z.open(m) as src, open(target, "wb") as out:
                while block := src.read(1024 * 1024):
                    out.write(block)
            mode = stat.S_IMODE(m.external_attr >> 16)
            if mode:
                os.chmod(target, mode & ~stat.S_ISUID & ~stat.S_ISGID)
            written.append(target)
    return written
