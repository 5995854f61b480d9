"""Locating (and if needed downloading) the external wrapping utility."""

from __future__ import annotations

import hashlib
import os
import tempfile
from collections.abc import Callable
from pathlib import Path

import httpx

from intunewin_builder.config import BuilderSettings
from intunewin_builder.errors import ToolInvocationError
from intunewin_builder.logging import RunLog


def file_digest(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def check_tool_digest(path: Path, expected: str) -> None:
    """Remove *path* and raise unless it hashes to *expected* (hex or ``sha256:<hex>``)."""
    want = expected.strip().lower().removeprefix("sha256:")
    got = file_digest(path)
    if got != want:
        path.unlink(missing_ok=True)
        raise ToolInvocationError(
            f"Downloaded {path.name} failed its SHA-256 check: got {got}, expected {want}"
        )


def download_tool(url: str, dest: Path, *, client: httpx.Client | None = None) -> Path:
    """Stream *url* to *dest* via a temp file in the same directory."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".download-", dir=dest.parent)
    tmp = Path(tmp_name)
    own_client = client is None
    client = client or httpx.Client(timeout=60, follow_redirects=True)
    try:
        with os.fdopen(fd, "wb") as out, client.stream("GET", url) as r:
            r.raise_for_status()
            for chunk in r.iter_bytes():
                out.write(chunk)
        os.replace(tmp, dest)
        dest.chmod(0o755)
    finally:
        tmp.unlink(missing_ok=True)
        if own_client:
            client.close()
    return dest


def ensure_tool(
    settings: BuilderSettings,
    *,
    confirm: Callable[[str], bool],
    log: RunLog,
    client: httpx.Client | None = None,
) -> Path:
    """Return the wrapping tool path, downloading it when absent or refused for reuse."""
    path = settings.tool_path
    if path.is_file() and confirm(f"Use existing wrapping tool at {path}?"):
        log.info("using wrapping tool %s", path)
        return path

    if not settings.tool_url:
        raise ToolInvocationError(f"Wrapping tool not found at {path} and no download URL set")

    log.info("downloading wrapping tool from %s", settings.tool_url)
    try:
        download_tool(settings.tool_url, path, client=client)
    except httpx.HTTPError as exc:
        raise ToolInvocationError(f"Could not download wrapping tool: {exc}") from exc

    if settings.tool_sha256:
        check_tool_digest(path, settings.tool_sha256)
    return path
