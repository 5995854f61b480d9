"""Cooperative cancellation for long-running stages."""

from __future__ import annotations

from intunewin_builder.errors import Cancelled


class CancelToken:
    """Flag checked by stages between units of work (files, batches, stages)."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, stage: str = "pipeline") -> None:
        if self._cancelled:
            raise Cancelled("Run cancelled", stage=stage)
