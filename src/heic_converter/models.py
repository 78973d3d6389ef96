"""Domain models for batch conversion."""

from __future__ import annotations

import mimetypes
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


@dataclass(frozen=True, slots=True)
class CandidateFile:
    """A raw input as handed over by the caller."""

    name: str
    payload: bytes = field(repr=False)
    size: int
    media_type: str | None = None
    file_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @classmethod
    def from_bytes(cls, name: str, payload: bytes, media_type: str | None = None) -> "CandidateFile":
        return cls(name=name, payload=payload, size=len(payload), media_type=media_type)

    @classmethod
    def from_path(cls, path: Path, *, max_bytes: int | None = None, load: bool = True) -> "CandidateFile":
        """Describe ``path`` from its metadata.

        The payload is only read when ``load`` is set and the file is within
        ``max_bytes``; otherwise it stays empty and ``size`` carries the
        on-disk length so admission can still reject it.
        """

        media_type, _ = mimetypes.guess_type(path.name)
        size = path.stat().st_size
        payload = b""
        if load and (max_bytes is None or size <= max_bytes):
            payload = path.read_bytes()
        return cls(name=path.name, payload=payload, size=size, media_type=media_type)


@dataclass(frozen=True, slots=True)
class AdmissionDecision:
    candidate: CandidateFile
    accepted: bool
    rule: str
    reason: str | None = None


@dataclass(slots=True)
class AdmissionReport:
    accepted: list[CandidateFile] = field(default_factory=list)
    rejected: list[AdmissionDecision] = field(default_factory=list)


class TaskStatus(str, Enum):
    QUEUED = "queued"
    CONVERTING = "converting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class ConversionTask:
    index: int
    source: CandidateFile
    status: TaskStatus = TaskStatus.QUEUED
    output: bytes | None = field(default=None, repr=False)
    output_name: str | None = None
    failure_reason: str | None = None

    @property
    def terminal(self) -> bool:
        return self.status in {TaskStatus.SUCCEEDED, TaskStatus.FAILED}


class JobState(str, Enum):
    IDLE = "idle"
    READY = "ready"
    CONVERTING = "converting"
    ARCHIVING = "archiving"
    COMPLETED = "completed"


class Phase(str, Enum):
    CONVERTING = "converting"
    ARCHIVING = "archiving"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    completed: int
    total: int
    phase: Phase
    job_id: str | None = None
    message: str | None = None


@dataclass(slots=True)
class BatchSummary:
    timestamp: float = field(default_factory=time.time)
    total_files: int = 0
    succeeded: int = 0
    failed: int = 0
    failure_reasons: list[tuple[str, str]] = field(default_factory=list)
    rejections: list[tuple[str, str]] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.succeeded > 0 and self.failed > 0

    def to_dict(self) -> dict[str, object]:
        return {
            "totalFiles": self.total_files,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failureReasons": [list(item) for item in self.failure_reasons],
            "rejections": [list(item) for item in self.rejections],
        }

    def as_row(self, batch_id: str) -> list[str]:
        return [
            batch_id,
            time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.timestamp)),
            str(self.total_files),
            str(self.succeeded),
            str(self.failed),
            "; ".join(f"{name}: {reason}" for name, reason in self.failure_reasons),
        ]


@dataclass(slots=True)
class BatchResult:
    tasks: list[ConversionTask]
    summary: BatchSummary
    archive: bytes | None = field(default=None, repr=False)
    entry_names: list[str] = field(default_factory=list)
    cancelled: bool = False


__all__ = [
    "AdmissionDecision",
    "AdmissionReport",
    "BatchResult",
    "BatchSummary",
    "CandidateFile",
    "ConversionTask",
    "JobState",
    "Phase",
    "ProgressEvent",
    "TaskStatus",
]
