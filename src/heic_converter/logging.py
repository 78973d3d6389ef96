from __future__ import annotations

import csv
import json
import logging
import threading
from dataclasses import asdict, dataclass
from io import StringIO
from pathlib import Path
from typing import Any, Iterable

from .utils import atomic_write


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

SUMMARY_HEADER = ["batch_id", "timestamp", "total", "succeeded", "failed", "failures"]


def configure_logging(
    level: int | str = logging.INFO, *, handlers: Iterable[logging.Handler] | None = None
) -> logging.Logger:
    """Configure the package logger with sensible defaults."""

    logger = logging.getLogger("heic_converter")
    logger.setLevel(level)
    if logger.handlers:
        return logger

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        logger.addHandler(stream_handler)
    else:
        for handler in handlers:
            logger.addHandler(handler)

    return logger


@dataclass(slots=True)
class RunLogEntry:
    run_id: str
    source: str
    status: str
    media_type: str | None
    output_name: str | None
    error_code: str | None
    convert_ms: float
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RunLogger:
    """Appends one JSON line per finished task; safe to share between workers."""

    def __init__(self, log_file: Path) -> None:
        self._log_file = log_file
        self._lock = threading.Lock()

    def append(self, entry: RunLogEntry) -> None:
        line = json.dumps(entry.to_dict(), ensure_ascii=False)
        with self._lock:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            with self._log_file.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")


def write_summary_csv(path: Path, header: list[str], rows: list[list[str]]) -> None:
    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    writer.writerows(rows)
    atomic_write(path, buffer.getvalue())


def append_summary_row(path: Path, row: list[str]) -> None:
    header = SUMMARY_HEADER
    rows: list[list[str]] = []
    if path.exists():
        with path.open("r", encoding="utf-8", newline="") as handle:
            reader = list(csv.reader(handle))
        if reader:
            header = reader[0]
            rows = reader[1:]
    rows.append(row)
    write_summary_csv(path, header, rows)


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "RunLogEntry",
    "RunLogger",
    "append_summary_row",
    "configure_logging",
    "write_summary_csv",
]
