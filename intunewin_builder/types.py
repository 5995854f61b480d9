"""Shared Pydantic models passed between pipeline stages.

Every model is frozen: a stage produces it and later stages only read it.
"""

from __future__ import annotations

import os
import re
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

UNKNOWN = "Unknown"

PRODUCT_CODE_RE = re.compile(r"\{[0-9A-Fa-f]+(?:-[0-9A-Fa-f]+)+\}")
DOTTED_VERSION_RE = re.compile(r"^\d+(?:\.\d+)+$")


class TreeStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_count: int = 0
    total_bytes: int = 0


def measure_tree(root: Path) -> TreeStats:
    """Walk *root* and return file count and aggregate size in bytes."""
    count = 0
    total = 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            fp = Path(dirpath) / name
            if fp.is_symlink():
                continue
            count += 1
            total += fp.stat().st_size
    return TreeStats(file_count=count, total_bytes=total)


class SourceTree(BaseModel):
    """One deployment directory as staged by the vendor deployment tool."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: Path
    created_at: datetime

    @classmethod
    def from_path(cls, path: Path) -> SourceTree:
        path = path.resolve()
        st = path.stat()
        created = getattr(st, "st_birthtime", st.st_ctime)
        return cls(name=path.name, path=path, created_at=datetime.fromtimestamp(created))

    def stats(self) -> TreeStats:
        # Computed on demand; the tree on disk is the source of truth.
        return measure_tree(self.path)


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    missing_critical: tuple[str, ...] = ()
    missing_optional: tuple[str, ...] = ()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def passed(self) -> bool:
        return not self.missing_critical


class PackageDescriptor(BaseModel):
    """Normalized identity of a deployment.

    Fields never hold ``None``; unresolved values are the ``UNKNOWN`` sentinel so
    templates always render.
    """

    model_config = ConfigDict(frozen=True)

    program_name: str = UNKNOWN
    build_number: str = UNKNOWN
    product_code: str = UNKNOWN
    installer_version: str = UNKNOWN

    @field_validator("product_code")
    @classmethod
    def _check_product_code(cls, v: str) -> str:
        if v != UNKNOWN and not PRODUCT_CODE_RE.fullmatch(v):
            raise ValueError(f"Product code is not a bracketed hex token: {v!r}")
        return v

    @property
    def build_number_valid(self) -> bool:
        return bool(DOTTED_VERSION_RE.match(self.build_number))

    @property
    def has_product_code(self) -> bool:
        return self.product_code != UNKNOWN


class Strategy(str, Enum):
    STANDARD = "standard"
    ENHANCED = "enhanced"
    CHUNKED = "chunked"
    FAILED = "failed"


class StrategyAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: Strategy
    elapsed_seconds: float
    error: str | None = None


class CompressionOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: Strategy
    output_path: Path
    bytes_in: int
    bytes_out: int
    elapsed_seconds: float
    attempts: tuple[StrategyAttempt, ...] = ()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ratio_percent(self) -> float | None:
        """Space saved, ``(1 - out/in) * 100``; ``None`` for empty input."""
        if self.bytes_in <= 0:
            return None
        return round((1 - self.bytes_out / self.bytes_in) * 100, 1)


class FinalArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Path
    matched_by: str = Field(description='"name", "recent", "name+recent" or "latest"')
