from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .errors import ConverterError
from .utils import atomic_write_bytes, slugify


@dataclass(frozen=True, slots=True)
class Handle:
    handle_id: str
    name: str
    size: int


class HandleRegistry:
    """Keeps converted payloads addressable until they are explicitly released."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    @property
    def live_count(self) -> int:
        with self._lock:
            return len(self._blobs)

    def create(self, name: str, payload: bytes) -> Handle:
        handle = Handle(handle_id=uuid.uuid4().hex, name=name, size=len(payload))
        with self._lock:
            self._blobs[handle.handle_id] = payload
        return handle

    def is_live(self, handle: Handle) -> bool:
        with self._lock:
            return handle.handle_id in self._blobs

    def read(self, handle: Handle) -> bytes:
        with self._lock:
            payload = self._blobs.get(handle.handle_id)
        if payload is None:
            raise ConverterError("HANDLE_RELEASED", f"Handle for {handle.name} has been released")
        return payload

    def release(self, handle: Handle) -> bool:
        with self._lock:
            return self._blobs.pop(handle.handle_id, None) is not None

    def release_all(self, handles: Iterable[Handle]) -> int:
        return sum(1 for handle in list(handles) if self.release(handle))

    def save(self, handle: Handle, destination: Path) -> Path:
        """Write the payload to ``destination`` (a file path or a directory)."""

        payload = self.read(handle)
        target = destination / slugify(handle.name) if destination.is_dir() else destination
        atomic_write_bytes(target, payload)
        return target


__all__ = ["Handle", "HandleRegistry"]
