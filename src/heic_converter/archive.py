from __future__ import annotations

import threading
from io import BytesIO
from pathlib import PurePosixPath
from zipfile import ZIP_DEFLATED, ZipFile, ZipInfo

from .errors import ArchiveError

# Fixed entry metadata keeps archives byte-identical across runs.
ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)
ENTRY_PERMISSIONS = 0o644 << 16


def disambiguate(name: str, taken: set[str]) -> str:
    """Return ``name`` or the first free ``stem (n)suffix`` variant."""

    if name.lower() not in taken:
        return name
    path = PurePosixPath(name)
    stem, suffix = path.stem, path.suffix
    index = 1
    while True:
        candidate = f"{stem} ({index}){suffix}"
        if candidate.lower() not in taken:
            return candidate
        index += 1


class ArchiveBuilder:
    """Accumulates converted outputs and serialises them into one ZIP."""

    def __init__(self) -> None:
        self._entries: list[tuple[str, bytes]] = []
        self._taken: set[str] = set()
        self._finalized = False
        self._lock = threading.Lock()

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, name: str, payload: bytes) -> str:
        with self._lock:
            if self._finalized:
                raise ArchiveError("ARCHIVE_FINALIZED", "Archive already finalized")
            stored = disambiguate(name, self._taken)
            self._taken.add(stored.lower())
            self._entries.append((stored, payload))
            return stored

    def finalize(self) -> bytes:
        with self._lock:
            if self._finalized:
                raise ArchiveError("ARCHIVE_FINALIZED", "Archive already finalized")
            self._finalized = True
            buffer = BytesIO()
            try:
                with ZipFile(buffer, "w", compression=ZIP_DEFLATED) as archive:
                    for name, payload in self._entries:
                        info = ZipInfo(name, date_time=ENTRY_DATE_TIME)
                        info.compress_type = ZIP_DEFLATED
                        info.external_attr = ENTRY_PERMISSIONS
                        archive.writestr(info, payload)
            except (OSError, ValueError) as exc:
                raise ArchiveError("ARCHIVE_FAILED", f"Archive assembly failed: {exc}") from exc
            return buffer.getvalue()


__all__ = ["ArchiveBuilder", "disambiguate"]
