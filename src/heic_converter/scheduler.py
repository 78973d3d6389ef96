from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from threading import Event
from typing import Callable, Iterator, Sequence

from .admission import REASON_TOO_LARGE
from .archive import ArchiveBuilder
from .codec import REASON_CONVERSION_FAILED, CodecAdapter
from .config import AppConfig
from .errors import BatchFailedError, ConversionError
from .logging import RunLogEntry, RunLogger
from .models import BatchResult, BatchSummary, CandidateFile, ConversionTask, Phase, ProgressEvent, TaskStatus

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


@dataclass(slots=True)
class _RunState:
    pending: deque[ConversionTask]
    total: int
    cancellation: Event
    callback: ProgressCallback
    job_id: str | None
    run_logger: RunLogger | None
    completed: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)

    def claim(self) -> ConversionTask | None:
        with self.lock:
            if self.cancellation.is_set() or not self.pending:
                return None
            return self.pending.popleft()


class BatchScheduler:
    """Drives a fixed-size worker pool over an admitted file set."""

    def __init__(
        self,
        config: AppConfig,
        adapter: CodecAdapter | None = None,
        *,
        archive_factory: Callable[[], ArchiveBuilder] = ArchiveBuilder,
    ) -> None:
        self._config = config
        self._adapter = adapter or CodecAdapter(config)
        self._archive_factory = archive_factory

    @property
    def adapter(self) -> CodecAdapter:
        return self._adapter

    def run(
        self,
        candidates: Sequence[CandidateFile],
        *,
        concurrency: int | None = None,
        progress: ProgressCallback | None = None,
        cancellation: Event | None = None,
        job_id: str | None = None,
    ) -> BatchResult:
        tasks = [ConversionTask(index=index, source=candidate) for index, candidate in enumerate(candidates)]
        summary = BatchSummary(total_files=len(tasks))
        if not tasks:
            return BatchResult(tasks=tasks, summary=summary)

        workers = max(1, min(concurrency or self._config.runtime.concurrency, len(tasks)))
        log_file = self._config.runtime.log_file
        state = _RunState(
            pending=deque(tasks),
            total=len(tasks),
            cancellation=cancellation or Event(),
            callback=progress or (lambda _: None),
            job_id=job_id,
            run_logger=RunLogger(log_file) if log_file else None,
        )
        logger.info("Converting %d file(s) with %d worker(s)", len(tasks), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="convert-worker") as executor:
            futures = [executor.submit(self._worker, state) for _ in range(workers)]
        for future in futures:
            future.result()

        if state.cancellation.is_set():
            logger.info("Batch %s canceled after %d of %d file(s)", job_id or "-", state.completed, state.total)
            return BatchResult(tasks=tasks, summary=summary, cancelled=True)

        self._summarize(tasks, summary)
        if summary.succeeded == 0:
            raise BatchFailedError("NO_SUCCESSFUL_CONVERSIONS", "No file could be converted", summary=summary)

        self._emit(state, ProgressEvent(state.total, state.total, Phase.ARCHIVING, job_id))
        builder = self._archive_factory()
        entry_names: list[str] = []
        for task in tasks:
            if task.status is TaskStatus.SUCCEEDED and task.output is not None and task.output_name:
                task.output_name = builder.add(task.output_name, task.output)
                entry_names.append(task.output_name)
        archive = builder.finalize()
        logger.info("Batch %s archived %d file(s), %d failed", job_id or "-", summary.succeeded, summary.failed)
        return BatchResult(tasks=tasks, summary=summary, archive=archive, entry_names=entry_names)

    def stream(
        self,
        candidates: Sequence[CandidateFile],
        *,
        concurrency: int | None = None,
        cancellation: Event | None = None,
        job_id: str | None = None,
    ) -> Iterator[ProgressEvent | BatchResult]:
        """Yield progress events as they happen, then the final result."""

        events: queue.SimpleQueue[ProgressEvent | None] = queue.SimpleQueue()

        def _run() -> BatchResult:
            try:
                return self.run(
                    candidates,
                    concurrency=concurrency,
                    progress=events.put,
                    cancellation=cancellation,
                    job_id=job_id,
                )
            finally:
                events.put(None)

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="batch-stream") as executor:
            future = executor.submit(_run)
            while True:
                event = events.get()
                if event is None:
                    break
                yield event
            yield future.result()

    def _worker(self, state: _RunState) -> None:
        while True:
            task = state.claim()
            if task is None:
                return
            self._process(task, state)

    def _process(self, task: ConversionTask, state: _RunState) -> None:
        source = task.source
        task.status = TaskStatus.CONVERTING
        start = time.perf_counter()
        output: bytes | None = None
        output_name: str | None = None
        reason: str | None = None
        error_code: str | None = None
        # Payload length is re-checked in case the source changed after admission.
        if len(source.payload) > self._config.runtime.max_file_size_bytes:
            reason, error_code = REASON_TOO_LARGE, "SIZE_LIMIT"
        else:
            try:
                converted = self._adapter.convert(source.payload, source.media_type, source.name)
            except ConversionError as exc:
                reason, error_code = str(exc), exc.code
            else:
                output, output_name = converted.payload, converted.name
        elapsed = (time.perf_counter() - start) * 1000

        with state.lock:
            if state.cancellation.is_set():
                return
            if reason is None:
                task.status = TaskStatus.SUCCEEDED
                task.output = output
                task.output_name = output_name
            else:
                task.status = TaskStatus.FAILED
                task.failure_reason = reason
            state.completed += 1
            state.callback(ProgressEvent(state.completed, state.total, Phase.CONVERTING, state.job_id))

        if state.run_logger is not None:
            entry = RunLogEntry(
                run_id=state.job_id or "-",
                source=source.name,
                status=task.status.value,
                media_type=source.media_type,
                output_name=output_name,
                error_code=error_code,
                convert_ms=round(elapsed, 3),
                size_bytes=len(source.payload),
            )
            try:
                state.run_logger.append(entry)
            except OSError as exc:
                logger.warning("Could not write run log entry for %s: %s", source.name, exc)

    def _emit(self, state: _RunState, event: ProgressEvent) -> None:
        with state.lock:
            if state.cancellation.is_set():
                return
            state.callback(event)

    def _summarize(self, tasks: Sequence[ConversionTask], summary: BatchSummary) -> None:
        for task in tasks:
            if task.status is TaskStatus.SUCCEEDED:
                summary.succeeded += 1
            elif task.status is TaskStatus.FAILED:
                summary.failed += 1
                summary.failure_reasons.append((task.source.name, task.failure_reason or REASON_CONVERSION_FAILED))


__all__ = ["BatchScheduler", "ProgressCallback"]
