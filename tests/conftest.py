from __future__ import annotations

import threading
import time
from io import BytesIO

import pytest
from PIL import Image

from heic_converter.codec import CodecAdapter
from heic_converter.config import AppConfig
from heic_converter.detection import SourceKind
from heic_converter.models import CandidateFile
from heic_converter.scheduler import BatchScheduler


class FakeHeifCodec:
    """Stands in for the HEIF decoder; payloads starting with ``bad`` fail."""

    def __init__(self, delays: dict[bytes, float] | None = None) -> None:
        self.delays = delays or {}
        self.calls: list[bytes] = []
        self._lock = threading.Lock()

    def transcode(self, payload: bytes, target_format: str, quality: float) -> bytes | list[bytes]:
        with self._lock:
            self.calls.append(payload)
        time.sleep(self.delays.get(payload, 0.0))
        if payload.startswith(b"bad"):
            raise ValueError("corrupt container")
        return b"PNG:" + payload


def make_candidate(name: str, payload: bytes | None = None, media_type: str | None = "image/heic") -> CandidateFile:
    return CandidateFile.from_bytes(name, payload if payload is not None else name.encode("utf-8"), media_type)


def jpeg_bytes(size: tuple[int, int] = (8, 6), color: tuple[int, int, int] = (200, 30, 30)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG")
    return buffer.getvalue()


@pytest.fixture()
def config() -> AppConfig:
    return AppConfig()


@pytest.fixture()
def fake_codec() -> FakeHeifCodec:
    return FakeHeifCodec()


@pytest.fixture()
def scheduler(config: AppConfig, fake_codec: FakeHeifCodec) -> BatchScheduler:
    adapter = CodecAdapter(config, codecs={SourceKind.HEIF: fake_codec})
    return BatchScheduler(config, adapter)
