"""Structured logging helpers: JSON lines with run context.

Instead of a process-wide log path, each pipeline run owns a :class:`RunLog`
that is created at pipeline start, passed to every stage and closed at the end.
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        for key in ("run_id", "stage"):
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def get_logger(name: str = "intunewin_builder") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


class RunLog:
    """Logging context for a single pipeline run."""

    def __init__(self, logger: logging.Logger, run_id: str, log_file: Path | None = None) -> None:
        self.logger = logger
        self.run_id = run_id
        self.log_file = log_file
        self.stage = "pipeline"
        self.failed_stage: str | None = None

    def _extra(self) -> dict[str, str]:
        return {"run_id": self.run_id, "stage": self.stage}

    def info(self, msg: str, *args: Any) -> None:
        self.logger.info(msg, *args, extra=self._extra())

    def warning(self, msg: str, *args: Any) -> None:
        self.logger.warning(msg, *args, extra=self._extra())

    def error(self, msg: str, *args: Any) -> None:
        self.logger.error(msg, *args, extra=self._extra())

    def exception(self, msg: str, *args: Any) -> None:
        self.logger.exception(msg, *args, extra=self._extra())

    @contextmanager
    def step(self, stage: str) -> Iterator[RunLog]:
        """Tag records with *stage* and log its elapsed time."""
        previous, self.stage = self.stage, stage
        start = time.monotonic()
        self.info("stage started")
        try:
            yield self
        except BaseException:
            self.failed_stage = stage
            raise
        finally:
            self.info("stage finished in %.2fs", time.monotonic() - start)
            self.stage = previous


@contextmanager
def open_run_log(log_dir: Path | None = None, run_id: str | None = None) -> Iterator[RunLog]:
    """Create a :class:`RunLog`, optionally mirrored to ``<log_dir>/<run_id>.jsonl``."""
    run_id = run_id or f"{datetime.now():%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"
    logger = get_logger()
    handler: logging.Handler | None = None
    log_file: Path | None = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"{run_id}.jsonl"
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
    try:
        yield RunLog(logger, run_id, log_file)
    finally:
        if handler is not None:
            logger.removeHandler(handler)
            handler.close()
