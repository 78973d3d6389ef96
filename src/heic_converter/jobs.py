from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable

from .admission import REASON_UNSUPPORTED, AdmissionFilter
from .config import AppConfig
from .errors import ArchiveError, BatchFailedError, ConverterError, InvalidTransitionError
from .handles import Handle, HandleRegistry
from .models import (
    AdmissionDecision,
    AdmissionReport,
    BatchResult,
    BatchSummary,
    CandidateFile,
    JobState,
    Phase,
    ProgressEvent,
    TaskStatus,
)
from .scheduler import BatchScheduler
from .utils import generate_run_id

logger = logging.getLogger(__name__)

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

Listener = Callable[[ProgressEvent], None]


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime(ISO_FORMAT)


@dataclass(slots=True)
class BatchJob:
    job_id: str
    files: list[CandidateFile]
    rejected: list[AdmissionDecision] = field(default_factory=list)
    completed_count: int = 0
    summary: BatchSummary | None = None
    archive_handle: Handle | None = None
    item_handles: list[Handle] = field(default_factory=list)
    entry_names: list[str] = field(default_factory=list)
    error_code: str | None = None
    error_message: str | None = None
    submitted_at: str | None = None
    started_at: str | None = None
    finished_at: str | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)


@dataclass(frozen=True, slots=True)
class JobView:
    """Read-only picture of the current batch handed to callers."""

    job_id: str
    state: JobState
    files: tuple[CandidateFile, ...]
    rejected: tuple[AdmissionDecision, ...]
    completed_count: int
    total_count: int
    summary: BatchSummary | None
    archive_handle: Handle | None
    item_handles: tuple[Handle, ...]
    entry_names: tuple[str, ...]
    error_code: str | None
    error_message: str | None
    submitted_at: str | None
    started_at: str | None
    finished_at: str | None


class JobManager:
    """Owns the lifecycle of one batch at a time.

    ``idle -> ready -> converting -> archiving -> completed``; ``cancel`` and
    ``reset`` lead back to ``idle`` and a failed run returns to ``ready`` with
    its file set intact so it can be started again.
    """

    def __init__(
        self,
        config: AppConfig,
        scheduler: BatchScheduler | None = None,
        *,
        handles: HandleRegistry | None = None,
        admission: AdmissionFilter | None = None,
    ) -> None:
        self._config = config
        self._scheduler = scheduler or BatchScheduler(config)
        self._handles = handles or HandleRegistry()
        self._admission = admission or AdmissionFilter(config)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="batch-job")
        self._lock = threading.RLock()
        self._state = JobState.IDLE
        self._job: BatchJob | None = None
        self._future: Future[BatchResult | None] | None = None
        self._listeners: list[Listener] = []

    @property
    def state(self) -> JobState:
        with self._lock:
            return self._state

    @property
    def handles(self) -> HandleRegistry:
        return self._handles

    @property
    def job(self) -> JobView | None:
        with self._lock:
            job = self._job
            if job is None:
                return None
            return JobView(
                job_id=job.job_id,
                state=self._state,
                files=tuple(job.files),
                rejected=tuple(job.rejected),
                completed_count=job.completed_count,
                total_count=len(job.files),
                summary=job.summary,
                archive_handle=job.archive_handle,
                item_handles=tuple(job.item_handles),
                entry_names=tuple(job.entry_names),
                error_code=job.error_code,
                error_message=job.error_message,
                submitted_at=job.submitted_at,
                started_at=job.started_at,
                finished_at=job.finished_at,
            )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def submit(self, candidates: Iterable[CandidateFile]) -> AdmissionReport:
        """Screen ``candidates`` and hold the admitted set as the pending batch.

        A batch-level rejection propagates as ``BatchValidationError`` and
        leaves the state and any previously held set untouched.
        """

        candidates = list(candidates)
        with self._lock:
            self._require("submit", JobState.IDLE, JobState.READY)
            if not candidates:
                return AdmissionReport()
            report = self._admission.screen(candidates)
            self._discard_job()
            self._job = BatchJob(
                job_id=generate_run_id("batch"),
                files=list(report.accepted),
                rejected=list(report.rejected),
                submitted_at=_utc_now(),
            )
            self._state = JobState.READY
            logger.info(
                "Batch %s ready with %d file(s), %d rejected",
                self._job.job_id,
                len(report.accepted),
                len(report.rejected),
            )
            return report

    def remove(self, file_id: str) -> bool:
        with self._lock:
            self._require("remove a file", JobState.READY)
            assert self._job is not None
            remaining = [item for item in self._job.files if item.file_id != file_id]
            if len(remaining) == len(self._job.files):
                return False
            self._job.files = remaining
            if not remaining:
                self._discard_job()
                self._state = JobState.IDLE
            return True

    def start(self, *, concurrency: int | None = None) -> Future[BatchResult | None]:
        with self._lock:
            self._require("start", JobState.READY)
            job = self._job
            assert job is not None
            if job.started_at is not None:
                # Each run gets its own job so completed_count never decreases within one.
                job = BatchJob(
                    job_id=generate_run_id("batch"),
                    files=list(job.files),
                    rejected=list(job.rejected),
                    submitted_at=job.submitted_at,
                )
                self._job = job
            job.started_at = _utc_now()
            self._state = JobState.CONVERTING
            logger.info("Batch %s converting %d file(s)", job.job_id, len(job.files))
            self._future = self._executor.submit(self._run, job, concurrency)
            return self._future

    def wait(self, timeout: float | None = None) -> BatchResult | None:
        with self._lock:
            future = self._future
        if future is None:
            return None
        return future.result(timeout=timeout)

    def cancel(self) -> None:
        with self._lock:
            self._require("cancel", JobState.READY, JobState.CONVERTING, JobState.ARCHIVING)
            if self._job is not None:
                self._job.cancel_event.set()
                logger.info("Batch %s canceled", self._job.job_id)
            self._discard_job()
            self._state = JobState.IDLE

    def reset(self) -> None:
        with self._lock:
            self._require("reset", JobState.COMPLETED)
            self._discard_job()
            self._state = JobState.IDLE

    def save_archive(self, destination: Path) -> Path:
        with self._lock:
            self._require("save the archive", JobState.COMPLETED)
            assert self._job is not None and self._job.archive_handle is not None
            handle = self._job.archive_handle
        return self._handles.save(handle, destination)

    def save_item(self, name: str, destination: Path) -> Path:
        with self._lock:
            self._require("save a converted file", JobState.COMPLETED)
            assert self._job is not None
            handle = next((h for h in self._job.item_handles if h.name == name), None)
        if handle is None:
            raise ConverterError("NOT_FOUND", f"No converted file named {name}")
        return self._handles.save(handle, destination)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._job is not None:
                self._job.cancel_event.set()
        self._executor.shutdown(wait=wait)

    def _run(self, job: BatchJob, concurrency: int | None) -> BatchResult | None:
        def _progress(event: ProgressEvent) -> None:
            with self._lock:
                if not self._is_current(job):
                    return
                if event.phase is Phase.CONVERTING:
                    if event.completed <= job.completed_count:
                        return
                    job.completed_count = event.completed
                elif event.phase is Phase.ARCHIVING:
                    self._state = JobState.ARCHIVING
                self._notify(event)

        try:
            result = self._scheduler.run(
                job.files,
                concurrency=concurrency,
                progress=_progress,
                cancellation=job.cancel_event,
                job_id=job.job_id,
            )
        except (BatchFailedError, ArchiveError) as exc:
            logger.warning("Batch %s failed: %s", job.job_id, exc)
            summary = exc.summary if isinstance(exc, BatchFailedError) else None
            self._fail(job, exc, summary if isinstance(summary, BatchSummary) else None)
            return None
        except Exception as exc:
            logger.exception("Batch %s aborted", job.job_id)
            self._fail(job, ConverterError("UNKNOWN", str(exc)), None)
            raise

        with self._lock:
            if result.cancelled or not self._is_current(job):
                return None
            job.summary = self._with_rejections(job, result.summary)
            job.entry_names = list(result.entry_names)
            if result.archive is not None:
                job.archive_handle = self._handles.create(self._config.runtime.archive_name, result.archive)
            job.item_handles = [
                self._handles.create(task.output_name, task.output)
                for task in result.tasks
                if task.status is TaskStatus.SUCCEEDED and task.output is not None and task.output_name
            ]
            job.finished_at = _utc_now()
            self._state = JobState.COMPLETED
            total = len(job.files)
            self._notify(ProgressEvent(total, total, Phase.COMPLETED, job.job_id))
        logger.info(
            "Batch %s completed: %d succeeded, %d failed",
            job.job_id,
            result.summary.succeeded,
            result.summary.failed,
        )
        return result

    def _fail(self, job: BatchJob, exc: ConverterError, summary: BatchSummary | None) -> None:
        with self._lock:
            if not self._is_current(job):
                return
            job.error_code = exc.code
            job.error_message = str(exc)
            job.summary = self._with_rejections(job, summary) if summary is not None else None
            job.finished_at = _utc_now()
            self._state = JobState.READY
            self._notify(
                ProgressEvent(job.completed_count, len(job.files), Phase.FAILED, job.job_id, str(exc))
            )

    @staticmethod
    def _with_rejections(job: BatchJob, summary: BatchSummary) -> BatchSummary:
        summary.rejections = [
            (decision.candidate.name, decision.reason or REASON_UNSUPPORTED) for decision in job.rejected
        ]
        return summary

    def _is_current(self, job: BatchJob) -> bool:
        return self._job is job and not job.cancel_event.is_set()

    def _require(self, operation: str, *states: JobState) -> None:
        if self._state not in states:
            raise InvalidTransitionError(operation, self._state.value)

    def _discard_job(self) -> None:
        job = self._job
        if job is None:
            return
        handles = list(job.item_handles)
        if job.archive_handle is not None:
            handles.append(job.archive_handle)
        released = self._handles.release_all(handles)
        if released:
            logger.debug("Released %d handle(s) of batch %s", released, job.job_id)
        self._job = None

    def _notify(self, event: ProgressEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Progress listener failed for %s", event.phase.value)


__all__ = ["BatchJob", "JobManager", "JobView", "Listener"]
