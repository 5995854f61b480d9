from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from intunewin_builder.config import BuilderSettings
from intunewin_builder.logging import RunLog, open_run_log


@pytest.fixture
def settings(tmp_path: Path) -> BuilderSettings:
    return BuilderSettings(
        source_root=tmp_path / "deployments",
        output_dir=tmp_path / "out",
        log_dir=None,
        staging_root=tmp_path / "staging",
        tool_path=tmp_path / "tools" / "IntuneWinAppUtil.exe",
        tool_url=None,
    )


@pytest.fixture
def run_log() -> Iterator[RunLog]:
    with open_run_log(None, run_id="test-run") as log:
        yield log
