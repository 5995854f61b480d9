"""Artifact assembly: isolated staging + the external wrapping tool.

Each run copies exactly one archive and one script into a fresh staging
directory, so nothing left over from an earlier package can end up inside the
wrapped artifact. The staging directory is removed whether the tool succeeds
or not.

The tool's output naming is not under our control, so the result is located
heuristically (see :func:`resolve_output`).
"""

from __future__ import annotations

import shutil
import subprocess
import tempfile
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from intunewin_builder.cancel import CancelToken
from intunewin_builder.errors import StagingError, ToolInvocationError
from intunewin_builder.logging import RunLog
from intunewin_builder.naming import match_key, slug
from intunewin_builder.types import FinalArtifact

ARTIFACT_GLOB = "*.intunewin"

ToolRunner = Callable[[list[str]], int]


@dataclass(frozen=True)
class StagedArtifactSet:
    directory: Path
    archive: Path
    script: Path


def run_tool(cmd: list[str]) -> int:
    """Run the wrapping tool and wait for it; no timeout."""
    return subprocess.run(cmd, check=False).returncode


@contextmanager
def staging_directory(package: str, root: Path, log: RunLog) -> Iterator[Path]:
    """A fresh, uniquely named directory that is always removed afterwards."""
    root.mkdir(parents=True, exist_ok=True)
    prefix = f"{slug(package)}-{datetime.now():%Y%m%d-%H%M%S}-"
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=root))
    log.info("staging in %s", path)
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as exc:
            log.warning("could not remove staging directory %s: %s", path, exc)


def stage_files(staging: Path, archive: Path, script: Path) -> StagedArtifactSet:
    for src in (archive, script):
        if not src.is_file():
            raise StagingError(f"Cannot stage missing file: {src}")
    try:
        staged_archive = Path(shutil.copy2(archive, staging / archive.name))
        staged_script = Path(shutil.copy2(script, staging / script.name))
    except OSError as exc:
        raise StagingError(f"Copy into staging failed: {exc}") from exc

    for src, dst in ((archive, staged_archive), (script, staged_script)):
        if not dst.is_file() or dst.stat().st_size != src.stat().st_size:
            raise StagingError(f"Staged copy is incomplete: {dst}")
    return StagedArtifactSet(directory=staging, archive=staged_archive, script=staged_script)


def resolve_output(
    output_dir: Path, package: str, started_at: float, window_seconds: int
) -> FinalArtifact:
    """Pick the wrapped artifact produced for *package*.

    Candidates whose name contains the package name or that were modified within
    *window_seconds* of the invocation are preferred (both together ranking
    highest); otherwise the most recently modified artifact wins. Best effort
    only: concurrent outside activity in *output_dir* can still fool it.
    """
    candidates = sorted(p for p in output_dir.glob(ARTIFACT_GLOB) if p.is_file())
    if not candidates:
        raise ToolInvocationError(f"No {ARTIFACT_GLOB} file found in {output_dir}")

    key = match_key(package)

    def facts(p: Path) -> tuple[bool, bool, float]:
        mtime = p.stat().st_mtime
        named = bool(key) and key in match_key(p.stem)
        return named, mtime >= started_at - window_seconds, mtime

    def rank(p: Path) -> tuple[bool, bool, bool, float, str]:
        named, recent, mtime = facts(p)
        return named and recent, recent, named, mtime, p.name

    preferred = [p for p in candidates if any(facts(p)[:2])]
    chosen = max(preferred or candidates, key=rank)
    named, recent, _ = facts(chosen)
    if not preferred:
        matched_by = "latest"
    elif named and recent:
        matched_by = "name+recent"
    else:
        matched_by = "name" if named else "recent"
    return FinalArtifact(path=chosen, matched_by=matched_by)


def assemble(
    tool: Path,
    archive: Path,
    script: Path,
    package: str,
    output_dir: Path,
    *,
    log: RunLog,
    staging_root: Path | None = None,
    window_seconds: int = 300,
    runner: ToolRunner = run_tool,
    cancel: CancelToken | None = None,
) -> FinalArtifact:
    """Stage *archive* + *script*, run the wrapping tool, return its artifact."""
    if not tool.is_file():
        raise ToolInvocationError(f"Wrapping tool not found: {tool}")
    output_dir.mkdir(parents=True, exist_ok=True)
    staging_root = staging_root or Path(tempfile.gettempdir()) / "intunewin-builder"

    with staging_directory(package, staging_root, log) as staging:
        staged = stage_files(staging, archive, script)
        if cancel is not None:
            cancel.raise_if_cancelled("assemble")
        cmd = [
            str(tool),
            "-c",
            str(staged.directory),
            "-s",
            staged.script.name,
            "-o",
            str(output_dir),
            "-q",
        ]
        log.info("running %s", " ".join(cmd))
        started = time.time()
        try:
            code = runner(cmd)
        except OSError as exc:
            raise ToolInvocationError(f"Could not start wrapping tool: {exc}") from exc

    if code != 0:
        raise ToolInvocationError(f"Wrapping tool exited with code {code}")
    artifact = resolve_output(output_dir, package, started, window_seconds)
    log.info("wrapped artifact %s (matched by %s)", artifact.path.name, artifact.matched_by)
    return artifact
