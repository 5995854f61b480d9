"""Size-adaptive compression of a source tree into one archive.

Strategy selection is a small state machine over :class:`Strategy`:

    measured size < T1            -> STANDARD
    T1 <= size (<= T2, or > T2
      after operator confirmation) -> ENHANCED

    STANDARD  --any failure-->        FAILED
    ENHANCED  --compression/IO-->     CHUNKED
    CHUNKED   --any failure-->        FAILED
    any state --cancel / disk full--> FAILED

Whatever path is taken, the destination is either a non-empty readable zip or
absent. Failures outside the recoverable set end the build as a
:class:`CompressionError`.
"""

from __future__ import annotations

import errno
import functools
import time
import zipfile
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from intunewin_builder.cancel import CancelToken
from intunewin_builder.config import BuilderSettings
from intunewin_builder.errors import BuildAborted, Cancelled, CompressionError
from intunewin_builder.logging import RunLog
from intunewin_builder.package import zip as zip_writers
from intunewin_builder.security.archive import check_archive
from intunewin_builder.types import (
    CompressionOutcome,
    SourceTree,
    Strategy,
    StrategyAttempt,
    TreeStats,
    measure_tree,
)

StrategyFn = Callable[[Path, Sequence[Path], Path, CancelToken], None]
Confirm = Callable[[str], bool]

RECOVERABLE = (OSError, CompressionError, zipfile.LargeZipFile, zipfile.BadZipFile, MemoryError)


def format_bytes(n: int) -> str:
    size = float(n)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TiB"


def initial_strategy(size: int, enhanced_threshold: int) -> Strategy:
    return Strategy.STANDARD if size < enhanced_threshold else Strategy.ENHANCED


def next_strategy(current: Strategy, exc: BaseException) -> Strategy:
    if isinstance(exc, Cancelled):
        return Strategy.FAILED
    if isinstance(exc, OSError) and exc.errno == errno.ENOSPC:
        return Strategy.FAILED
    if current is Strategy.ENHANCED:
        return Strategy.CHUNKED
    return Strategy.FAILED


def extreme_size_question(size: int, threshold: int) -> str:
    return (
        f"Source is {format_bytes(size)}, above {format_bytes(threshold)}. Likely problems:\n"
        "  - zip tooling and the wrapping utility may hit archive size limits\n"
        "  - Intune upload may exceed the per-app content limit\n"
        "  - clients will take a long time to download the package\n"
        "  - staging needs free disk space of roughly twice the source size\n"
        "Continue anyway?"
    )


def default_strategies(settings: BuilderSettings) -> dict[Strategy, StrategyFn]:
    return {
        Strategy.STANDARD: zip_writers.write_standard,
        Strategy.ENHANCED: zip_writers.write_streaming,
        Strategy.CHUNKED: functools.partial(
            zip_writers.write_chunked, chunk_size=settings.chunk_size
        ),
    }


class PackageBuilder:
    """Compress a validated :class:`SourceTree` into a single zip archive."""

    def __init__(
        self,
        settings: BuilderSettings,
        *,
        confirm: Confirm,
        log: RunLog,
        cancel: CancelToken | None = None,
        strategies: Mapping[Strategy, StrategyFn] | None = None,
        measure: Callable[[Path], TreeStats] = measure_tree,
    ) -> None:
        self.settings = settings
        self.confirm = confirm
        self.log = log
        self.cancel = cancel or CancelToken()
        self.strategies = dict(strategies or default_strategies(settings))
        self.measure = measure

    def plan(self, size: int) -> Strategy:
        """Pick the first strategy; oversized sources need operator consent."""
        extreme = self.settings.extreme_threshold_bytes
        if size > extreme:
            self.log.warning("source size %s exceeds %s", format_bytes(size), format_bytes(extreme))
            if not self.confirm(extreme_size_question(size, extreme)):
                raise BuildAborted("Build declined for oversized source")
        return initial_strategy(size, self.settings.enhanced_threshold_bytes)

    def build(self, tree: SourceTree, dest: Path) -> CompressionOutcome:
        self.cancel.raise_if_cancelled("package")
        stats = self.measure(tree.path)
        state = self.plan(stats.total_bytes)
        self.log.info(
            "packaging %s: %d files, %s, strategy=%s",
            tree.name,
            stats.file_count,
            format_bytes(stats.total_bytes),
            state.value,
        )

        files = zip_writers.iter_tree_files(tree.path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        self._discard(dest)

        attempts: list[StrategyAttempt] = []
        started = time.monotonic()
        while True:
            t0 = time.monotonic()
            try:
                self.strategies[state](tree.path, files, dest, self.cancel)
                check_archive(dest)
            except (*RECOVERABLE, Cancelled) as exc:
                attempts.append(
                    StrategyAttempt(
                        strategy=state, elapsed_seconds=time.monotonic() - t0, error=str(exc)
                    )
                )
                self._discard(dest)
                following = next_strategy(state, exc)
                self.log.warning("strategy %s failed (%s); next=%s", state.value, exc, following.value)
                if following is Strategy.FAILED:
                    if isinstance(exc, Cancelled):
                        raise
                    raise CompressionError(
                        f"All compression strategies failed for {tree.name}: {exc}"
                    ) from exc
                state = following
                continue
            except Exception as exc:
                self._discard(dest)
                raise CompressionError(
                    f"Unexpected {type(exc).__name__} writing {dest.name}: {exc}"
                ) from exc
            except BaseException:
                self._discard(dest)
                raise

            attempts.append(StrategyAttempt(strategy=state, elapsed_seconds=time.monotonic() - t0))
            break

        outcome = CompressionOutcome(
            strategy=state,
            output_path=dest,
            bytes_in=stats.total_bytes,
            bytes_out=dest.stat().st_size,
            elapsed_seconds=time.monotonic() - started,
            attempts=tuple(attempts),
        )
        ratio = outcome.ratio_percent
        self.log.info(
            "archive %s written: %s -> %s (%s saved) in %.1fs",
            dest.name,
            format_bytes(outcome.bytes_in),
            format_bytes(outcome.bytes_out),
            "n/a" if ratio is None else f"{ratio:.1f}%",
            outcome.elapsed_seconds,
        )
        return outcome

    def _discard(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            self.log.warning("could not remove %s: %s", path, exc)
