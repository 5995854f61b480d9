"""Error taxonomy for the packaging pipeline.

Fatal conditions are exceptions rooted at :class:`PipelineError`; each one knows
the stage it belongs to so the orchestrator can report *where* a run stopped.
Non-fatal metadata problems are :class:`ExtractionWarning` records instead.
"""

from __future__ import annotations

from dataclasses import dataclass


class PipelineError(Exception):
    """Base class for every fatal pipeline failure."""

    stage: str = "pipeline"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class StructuralError(PipelineError):
    """Critical files are missing from a source tree."""

    stage = "validate"

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__("Missing critical files: " + ", ".join(self.missing))


class CompressionError(PipelineError):
    """A compression strategy failed (or all of them did)."""

    stage = "package"


class BuildAborted(PipelineError):
    """The operator declined to continue an oversized build."""

    stage = "package"


class StagingError(PipelineError):
    """Filesystem failure while staging files for the wrapping tool."""

    stage = "assemble"


class ToolInvocationError(PipelineError):
    """Wrapping tool missing, exited non-zero, or produced no artifact."""

    stage = "assemble"


class Cancelled(PipelineError):
    """The run was cancelled through its cancel token."""


@dataclass(frozen=True)
class ExtractionWarning:
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"
