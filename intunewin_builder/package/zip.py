"""Zip writers used by the compression strategies.

Three writers share one signature ``(root, files, dest, cancel)``:

- ``write_standard``: whole tree, default deflate level, single pass.
- ``write_streaming``: per-file streamed ZIP64 entries in fixed-size blocks so
  very large members never sit in memory.
- ``write_chunked``: batches compressed into intermediate archives, then either
  promoted (one batch) or wrapped into a stored container (several batches).

Arcnames are relative, forward-slashed and sorted for reproducible output.
"""

from __future__ import annotations

import os
import shutil
import tempfile
import zipfile
from collections.abc import Sequence
from pathlib import Path

from intunewin_builder.cancel import CancelToken

STREAM_BLOCK_BYTES = 4 * 1024 * 1024


def iter_tree_files(root: Path) -> list[Path]:
    """All regular files under *root*, sorted by relative path."""
    files = [p for p in root.rglob("*") if p.is_file() and not p.is_symlink()]
    return sorted(files, key=lambda p: _as_rel_arcname(root, p))


def _as_rel_arcname(root: Path, path: Path) -> str:
    return path.relative_to(root).as_posix()


def _open_zip(dest: Path, compression: int) -> zipfile.ZipFile:
    # Vendor payloads can carry pre-1980 mtimes; zip clamps them instead of failing.
    return zipfile.ZipFile(
        dest, "w", compression=compression, allowZip64=True, strict_timestamps=False
    )


def write_standard(root: Path, files: Sequence[Path], dest: Path, cancel: CancelToken) -> None:
    with _open_zip(dest, zipfile.ZIP_DEFLATED) as z:
        for fp in files:
            cancel.raise_if_cancelled("package")
            z.write(fp, arcname=_as_rel_arcname(root, fp))


def write_streaming(root: Path, files: Sequence[Path], dest: Path, cancel: CancelToken) -> None:
    with _open_zip(dest, zipfile.ZIP_DEFLATED) as z:
        for fp in files:
            cancel.raise_if_cancelled("package")
            info = zipfile.ZipInfo.from_file(
                fp, arcname=_as_rel_arcname(root, fp), strict_timestamps=False
            )
            info.compress_type = zipfile.ZIP_DEFLATED
            with open(fp, "rb") as src, z.open(info, "w", force_zip64=True) as out:
                while block := src.read(STREAM_BLOCK_BYTES):
                    out.write(block)
                    cancel.raise_if_cancelled("package")


def batches(files: Sequence[Path], size: int) -> list[list[Path]]:
    """Split *files* into consecutive batches; always at least one (maybe empty)."""
    out = [list(files[i : i + size]) for i in range(0, len(files), size)]
    return out or [[]]


def part_name(dest: Path, index: int) -> str:
    return f"{dest.stem}.part{index:03d}.zip"


def write_chunked(
    root: Path,
    files: Sequence[Path],
    dest: Path,
    cancel: CancelToken,
    *,
    chunk_size: int = 1000,
) -> None:
    workdir = Path(tempfile.mkdtemp(prefix=".chunks-", dir=dest.parent))
    try:
        parts: list[Path] = []
        for i, batch in enumerate(batches(files, chunk_size), start=1):
            part = workdir / part_name(dest, i)
            write_streaming(root, batch, part, cancel)
            parts.append(part)

        if len(parts) == 1:
            os.replace(parts[0], dest)
            return

        # Parts are already deflated; store them as-is in the container.
        with _open_zip(dest, zipfile.ZIP_STORED) as z:
            for part in parts:
                cancel.raise_if_cancelled("package")
                z.write(part, arcname=part.name)
    finally:
        shutil.rmtree(workdir, ignore_errors=True)
