from __future__ import annotations

import hashlib
import os
import re
import tempfile
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Iterator


SAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._ ()-]+")


def slugify(value: str, max_length: int = 120) -> str:
    normalized = SAFE_FILENAME_RE.sub("-", value.strip())
    normalized = re.sub("-+", "-", normalized)
    normalized = normalized.replace("-.", ".")
    normalized = normalized.strip("-._ ")
    if not normalized:
        normalized = "file"
    if len(normalized) > max_length:
        normalized = normalized[:max_length]
    return normalized


def generate_run_id(prefix: str = "run") -> str:
    epoch_ms = int(time.time() * 1000)
    random_bits = hashlib.sha256(os.urandom(16)).hexdigest()[:8]
    return f"{prefix}-{epoch_ms}-{random_bits}"


def atomic_write(path: Path, data: str, encoding: str = "utf-8") -> None:
    atomic_write_bytes(path, data.encode(encoding))


def atomic_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("wb", delete=False, dir=path.parent) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
    os.replace(tmp.name, path)


def iter_files(paths: Iterable[Path]) -> Iterator[Path]:
    for path in paths:
        if path.is_file():
            yield path
        elif path.is_dir():
            for file_path in sorted(path.rglob("*")):
                if file_path.is_file():
                    yield file_path


def human_size(nbytes: int) -> str:
    if nbytes == 0:
        return "0 B"
    value = float(nbytes)
    for unit in ("B", "KB", "MB", "GB"):
        if abs(value) < 1024 or unit == "GB":
            return f"{round(value, 2):g} {unit}"
        value /= 1024
    return f"{round(value, 2):g} GB"  # pragma: no cover


def suffix_of(name: str) -> str:
    return Path(name).suffix.lower()
