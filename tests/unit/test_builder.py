from __future__ import annotations

import errno
import functools
import os
import time
import zipfile
from pathlib import Path

import pytest

from intunewin_builder.cancel import CancelToken
from intunewin_builder.config import GIB
from intunewin_builder.errors import BuildAborted, Cancelled, CompressionError
from intunewin_builder.package import zip as zip_writers
from intunewin_builder.package.builder import PackageBuilder, default_strategies, next_strategy
from intunewin_builder.security.archive import safe_extract_zip
from intunewin_builder.types import CompressionOutcome, SourceTree, Strategy, TreeStats
from tests.helpers import make_deployment


def _tree(tmp_path: Path, **kw) -> SourceTree:
    return SourceTree.from_path(make_deployment(tmp_path / "src", **kw))


def _sized(n: int):
    return lambda _root: TreeStats(file_count=1, total_bytes=n)


def _builder(settings, run_log, **kw) -> PackageBuilder:
    kw.setdefault("confirm", lambda _q: True)
    return PackageBuilder(settings, log=run_log, **kw)


def _snapshot(root: Path) -> dict[str, bytes]:
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in root.rglob("*") if p.is_file()}


def test_standard_roundtrip_preserves_paths_and_bytes(tmp_path, settings, run_log) -> None:
    tree = _tree(tmp_path)
    dest = tmp_path / "work" / "Revit_2023.zip"

    outcome = _builder(settings, run_log).build(tree, dest)

    assert outcome.strategy is Strategy.STANDARD
    assert outcome.bytes_in == tree.stats().total_bytes
    assert outcome.bytes_out == dest.stat().st_size > 0
    assert outcome.ratio_percent is not None and outcome.ratio_percent > 0

    extracted = tmp_path / "extracted"
    safe_extract_zip(dest, extracted)
    assert _snapshot(extracted) == _snapshot(tree.path)


def test_size_between_thresholds_selects_enhanced(tmp_path, settings, run_log) -> None:
    tree = _tree(tmp_path)
    dest = tmp_path / "work" / "out.zip"

    outcome = _builder(settings, run_log, measure=_sized(5 * GIB)).build(tree, dest)

    assert outcome.strategy is Strategy.ENHANCED
    assert [a.strategy for a in outcome.attempts] == [Strategy.ENHANCED]
    assert zipfile.ZipFile(dest).namelist()


def test_enhanced_failure_falls_back_to_chunked(tmp_path, settings, run_log) -> None:
    tree = _tree(tmp_path)
    dest = tmp_path / "work" / "out.zip"

    def broken(root, files, out, cancel):
        out.write_bytes(b"partial garbage")
        raise OSError("simulated stream failure")

    strategies = default_strategies(settings)
    strategies[Strategy.ENHANCED] = broken
    outcome = _builder(
        settings, run_log, measure=_sized(5 * GIB), strategies=strategies
    ).build(tree, dest)

    assert outcome.strategy is Strategy.CHUNKED
    assert [a.strategy for a in outcome.attempts] == [Strategy.ENHANCED, Strategy.CHUNKED]
    assert "simulated stream failure" in outcome.attempts[0].error
    assert outcome.attempts[1].error is None
    assert dest.stat().st_size > 0
    with zipfile.ZipFile(dest) as z:
        assert "image/Installer.exe" in z.namelist()


def test_chunked_wraps_several_batches_and_cleans_up(tmp_path, settings, run_log) -> None:
    settings = settings.model_copy(update={"chunk_size": 2})
    tree = _tree(tmp_path, payload_files=3)  # 6 files in total -> 3 batches
    dest = tmp_path / "work" / "Revit.zip"
    def broken(root, files, out, cancel):
        raise OSError("nope")

    strategies = default_strategies(settings)
    strategies[Strategy.ENHANCED] = broken

    outcome = _builder(
        settings, run_log, measure=_sized(5 * GIB), strategies=strategies
    ).build(tree, dest)

    assert outcome.strategy is Strategy.CHUNKED
    with zipfile.ZipFile(dest) as z:
        assert z.namelist() == ["Revit.part001.zip", "Revit.part002.zip", "Revit.part003.zip"]
    assert sorted(p.name for p in dest.parent.iterdir()) == ["Revit.zip"]


def test_all_strategies_failing_leaves_no_file(tmp_path, settings, run_log) -> None:
    tree = _tree(tmp_path)
    dest = tmp_path / "work" / "out.zip"

    def broken(root, files, out, cancel):
        out.write_bytes(b"junk")
        raise CompressionError("boom")

    strategies = {s: broken for s in (Strategy.STANDARD, Strategy.ENHANCED, Strategy.CHUNKED)}
    with pytest.raises(CompressionError):
        _builder(settings, run_log, measure=_sized(5 * GIB), strategies=strategies).build(
            tree, dest
        )
    assert not dest.exists()


def test_standard_failure_does_not_fall_back(tmp_path, settings, run_log) -> None:
    calls: list[str] = []

    def broken(root, files, out, cancel):
        calls.append("standard")
        raise OSError("disk went away")

    def chunked(root, files, out, cancel):
        calls.append("chunked")

    strategies = {Strategy.STANDARD: broken, Strategy.CHUNKED: chunked}
    with pytest.raises(CompressionError):
        _builder(settings, run_log, strategies=strategies).build(
            _tree(tmp_path), tmp_path / "out.zip"
        )
    assert calls == ["standard"]


def test_extreme_size_declined_aborts_without_output(tmp_path, settings, run_log) -> None:
    questions: list[str] = []

    def deny(question: str) -> bool:
        questions.append(question)
        return False

    dest = tmp_path / "work" / "out.zip"
    builder = _builder(settings, run_log, confirm=deny, measure=_sized(9 * GIB))
    with pytest.raises(BuildAborted):
        builder.build(_tree(tmp_path), dest)

    assert not dest.exists()
    assert len(questions) == 1
    assert "upload" in questions[0].lower()


def test_extreme_size_confirmed_proceeds(tmp_path, settings, run_log) -> None:
    outcome = _builder(settings, run_log, measure=_sized(9 * GIB)).build(
        _tree(tmp_path), tmp_path / "out.zip"
    )
    assert outcome.strategy is Strategy.ENHANCED


def test_cancelled_token_stops_build(tmp_path, settings, run_log) -> None:
    token = CancelToken()
    token.cancel()
    with pytest.raises(Cancelled):
        _builder(settings, run_log, cancel=token).build(_tree(tmp_path), tmp_path / "out.zip")
    assert not (tmp_path / "out.zip").exists()


def test_transitions_stop_on_cancel_and_disk_full() -> None:
    assert next_strategy(Strategy.ENHANCED, OSError("x")) is Strategy.CHUNKED
    assert next_strategy(Strategy.ENHANCED, OSError(errno.ENOSPC, "full")) is Strategy.FAILED
    assert next_strategy(Strategy.ENHANCED, Cancelled("stop")) is Strategy.FAILED
    assert next_strategy(Strategy.CHUNKED, OSError("x")) is Strategy.FAILED
    assert next_strategy(Strategy.STANDARD, OSError("x")) is Strategy.FAILED


def test_ratio_is_space_saved_percentage() -> None:
    mb = 1024 * 1024
    outcome = CompressionOutcome(
        strategy=Strategy.STANDARD,
        output_path=Path("x.zip"),
        bytes_in=1000 * mb,
        bytes_out=400 * mb,
        elapsed_seconds=1.0,
    )
    assert outcome.ratio_percent == 60.0

    empty = outcome.model_copy(update={"bytes_in": 0})
    assert empty.ratio_percent is None


def _age_to_1979(path: Path) -> None:
    t = time.mktime((1979, 6, 1, 12, 0, 0, 0, 0, -1))
    os.utime(path, (t, t))


@pytest.mark.parametrize("size", [1024, 5 * GIB])
def test_pre_1980_timestamps_are_packaged(tmp_path, settings, run_log, size) -> None:
    tree = _tree(tmp_path)
    _age_to_1979(tree.path / "image" / "x64" / "RVT" / "payload2.bin")
    dest = tmp_path / "work" / "Revit_2023.zip"

    outcome = _builder(settings, run_log, measure=_sized(size)).build(tree, dest)

    assert [a.error for a in outcome.attempts] == [None]
    with zipfile.ZipFile(dest) as z:
        assert z.getinfo("image/x64/RVT/payload2.bin").date_time[0] == 1980


def test_unexpected_error_is_compression_error_without_output(tmp_path, settings, run_log) -> None:
    dest = tmp_path / "work" / "out.zip"

    def odd(root, files, out, cancel):
        out.write_bytes(b"half an archive")
        raise ValueError("unexpected writer state")

    with pytest.raises(CompressionError, match="ValueError"):
        _builder(settings, run_log, strategies={Strategy.STANDARD: odd}).build(
            _tree(tmp_path), dest
        )
    assert not dest.exists()


def test_chunked_failure_removes_intermediates(tmp_path, settings, run_log, monkeypatch) -> None:
    tree = _tree(tmp_path, payload_files=3)
    dest = tmp_path / "work" / "Revit.zip"
    token = CancelToken()
    original = zip_writers.write_streaming
    calls: list[Path] = []

    def cancel_on_second_batch(root, files, out, cancel):
        calls.append(out)
        if len(calls) == 2:
            token.cancel()
        original(root, files, out, cancel)

    def broken(root, files, out, cancel):
        raise OSError("stream failure")

    monkeypatch.setattr(zip_writers, "write_streaming", cancel_on_second_batch)
    strategies = {
        Strategy.ENHANCED: broken,
        Strategy.CHUNKED: functools.partial(zip_writers.write_chunked, chunk_size=2),
    }
    builder = _builder(
        settings, run_log, cancel=token, measure=_sized(5 * GIB), strategies=strategies
    )
    with pytest.raises(Cancelled):
        builder.build(tree, dest)

    assert len(calls) == 2
    assert calls[0].parent.name.startswith(".chunks-")
    assert list(dest.parent.iterdir()) == []
