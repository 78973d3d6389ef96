from __future__ import annotations

import threading
from io import BytesIO
from zipfile import ZipFile

import pytest

from conftest import FakeHeifCodec, make_candidate
from heic_converter.archive import ArchiveBuilder
from heic_converter.codec import CodecAdapter
from heic_converter.config import AppConfig
from heic_converter.detection import SourceKind
from heic_converter.errors import ArchiveError, BatchValidationError, InvalidTransitionError
from heic_converter.handles import HandleRegistry
from heic_converter.jobs import JobManager
from heic_converter.models import CandidateFile, JobState, Phase, ProgressEvent
from heic_converter.scheduler import BatchScheduler


@pytest.fixture()
def manager(config: AppConfig, scheduler: BatchScheduler):
    manager = JobManager(config, scheduler)
    yield manager
    manager.shutdown()


def test_three_files_complete(manager: JobManager) -> None:
    events: list[ProgressEvent] = []
    manager.subscribe(events.append)
    report = manager.submit([make_candidate(f"img{i}.heic") for i in range(3)])
    assert manager.state is JobState.READY
    assert len(report.accepted) == 3
    assert manager.job.total_count == 3

    manager.start()
    result = manager.wait(timeout=10)

    assert result is not None
    assert manager.state is JobState.COMPLETED
    converting = [(e.completed, e.total) for e in events if e.phase is Phase.CONVERTING]
    assert converting == [(1, 3), (2, 3), (3, 3)]
    assert [e.phase for e in events[-2:]] == [Phase.ARCHIVING, Phase.COMPLETED]
    assert len([e for e in events if e.phase is Phase.COMPLETED]) == 1
    job = manager.job
    assert job.completed_count == 3
    assert job.summary.succeeded == 3
    assert job.summary.failed == 0
    assert job.archive_handle is not None
    assert job.archive_handle.name == "converted_images.zip"
    assert [h.name for h in job.item_handles] == ["img0.png", "img1.png", "img2.png"]


def test_oversized_file_rejects_whole_submission(config: AppConfig, scheduler: BatchScheduler) -> None:
    config.runtime.max_file_size_mb = 1
    manager = JobManager(config, scheduler)
    oversized = CandidateFile(name="huge.heic", payload=b"x", size=2 * 1024 * 1024, media_type="image/heic")
    try:
        with pytest.raises(BatchValidationError) as exc:
            manager.submit([oversized, make_candidate("fine.heic")])
        assert "huge.heic" in str(exc.value)
        assert manager.state is JobState.IDLE
        assert manager.job is None
    finally:
        manager.shutdown()


def test_too_many_files_leaves_held_set_unchanged(manager: JobManager, fake_codec: FakeHeifCodec) -> None:
    manager.submit([make_candidate("keep.heic")])
    held = manager.job

    with pytest.raises(BatchValidationError) as exc:
        manager.submit([make_candidate(f"img{i}.heic") for i in range(101)])

    assert exc.value.code == "TOO_MANY_FILES"
    assert manager.state is JobState.READY
    assert manager.job.job_id == held.job_id
    assert [f.name for f in manager.job.files] == ["keep.heic"]
    assert fake_codec.calls == []


def test_too_many_files_from_idle(manager: JobManager) -> None:
    with pytest.raises(BatchValidationError):
        manager.submit([make_candidate(f"img{i}.heic") for i in range(101)])
    assert manager.state is JobState.IDLE


def test_empty_submission_is_noop(manager: JobManager) -> None:
    report = manager.submit([])
    assert report.accepted == []
    assert manager.state is JobState.IDLE
    assert manager.job is None


def test_submit_replaces_pending_set(manager: JobManager) -> None:
    manager.submit([make_candidate("a.heic")])
    first = manager.job.job_id
    manager.submit([make_candidate("b.heic"), make_candidate("c.heic")])
    assert manager.job.job_id != first
    assert [f.name for f in manager.job.files] == ["b.heic", "c.heic"]


def test_type_rejections_are_reported_not_fatal(manager: JobManager) -> None:
    report = manager.submit([make_candidate("a.heic"), make_candidate("notes.txt", media_type="text/plain")])
    assert [d.candidate.name for d in report.rejected] == ["notes.txt"]
    assert [d.candidate.name for d in manager.job.rejected] == ["notes.txt"]
    assert manager.job.total_count == 1


def test_type_rejections_appear_in_summary(manager: JobManager) -> None:
    manager.submit([make_candidate("a.heic"), make_candidate("notes.txt", media_type="text/plain")])
    manager.start()
    manager.wait(timeout=10)
    summary = manager.job.summary.to_dict()
    assert summary["totalFiles"] == 1
    assert summary["succeeded"] == 1
    assert summary["rejections"] == [["notes.txt", "unsupported type"]]


def test_type_rejections_kept_when_batch_fails(manager: JobManager) -> None:
    manager.submit([make_candidate("a.heic", b"bad"), make_candidate("notes.txt", media_type="text/plain")])
    manager.start()
    manager.wait(timeout=10)
    assert manager.state is JobState.READY
    assert manager.job.summary.rejections == [("notes.txt", "unsupported type")]


def test_remove_last_file_returns_to_idle(manager: JobManager) -> None:
    manager.submit([make_candidate("a.heic"), make_candidate("b.heic")])
    first, second = manager.job.files
    assert manager.remove(first.file_id)
    assert not manager.remove("missing")
    assert manager.state is JobState.READY
    assert manager.remove(second.file_id)
    assert manager.state is JobState.IDLE


def test_invalid_transitions(manager: JobManager) -> None:
    with pytest.raises(InvalidTransitionError):
        manager.start()
    with pytest.raises(InvalidTransitionError):
        manager.cancel()
    with pytest.raises(InvalidTransitionError):
        manager.reset()
    manager.submit([make_candidate("a.heic")])
    with pytest.raises(InvalidTransitionError):
        manager.reset()
    manager.start()
    manager.wait(timeout=10)
    with pytest.raises(InvalidTransitionError):
        manager.submit([make_candidate("b.heic")])


def test_cancel_in_ready_discards_set(manager: JobManager) -> None:
    manager.submit([make_candidate("a.heic")])
    manager.cancel()
    assert manager.state is JobState.IDLE
    assert manager.job is None


def test_cancel_mid_batch_silences_progress(config: AppConfig) -> None:
    started = threading.Event()
    release = threading.Event()

    class BlockingCodec:
        def transcode(self, payload, target_format, quality):
            if payload == b"slow":
                started.set()
                release.wait(5)
            return b"PNG:" + payload

    scheduler = BatchScheduler(config, CodecAdapter(config, codecs={SourceKind.HEIF: BlockingCodec()}))
    manager = JobManager(config, scheduler)
    events: list[ProgressEvent] = []
    manager.subscribe(events.append)
    try:
        manager.submit([make_candidate("fast.heic", b"fast"), make_candidate("slow.heic", b"slow"), make_candidate("c.heic", b"c")])
        manager.start(concurrency=1)
        assert started.wait(5)
        manager.cancel()
        seen = list(events)
        release.set()
        assert manager.wait(timeout=10) is None
        assert manager.state is JobState.IDLE
        assert events == seen
        assert all(e.phase is Phase.CONVERTING for e in events)
        assert manager.handles.live_count == 0
    finally:
        release.set()
        manager.shutdown()


def test_reset_releases_handles(manager: JobManager) -> None:
    manager.submit([make_candidate("a.heic"), make_candidate("b.heic")])
    manager.start()
    manager.wait(timeout=10)
    assert manager.handles.live_count == 3
    manager.reset()
    assert manager.state is JobState.IDLE
    assert manager.handles.live_count == 0


def test_new_batch_does_not_accumulate_handles(manager: JobManager) -> None:
    for _ in range(3):
        manager.submit([make_candidate("a.heic")])
        manager.start()
        manager.wait(timeout=10)
        manager.reset()
    assert manager.handles.live_count == 0


def test_all_failures_return_to_ready(manager: JobManager) -> None:
    events: list[ProgressEvent] = []
    manager.subscribe(events.append)
    manager.submit([make_candidate("a.heic", b"bad-a")])
    manager.start()
    assert manager.wait(timeout=10) is None
    assert manager.state is JobState.READY
    job = manager.job
    assert job.error_code == "NO_SUCCESSFUL_CONVERSIONS"
    assert job.summary.failure_reasons == [("a.heic", "conversion failed")]
    assert events[-1].phase is Phase.FAILED
    assert job.archive_handle is None


def test_archive_failure_is_retryable(config: AppConfig, fake_codec: FakeHeifCodec) -> None:
    attempts: list[int] = []

    class FlakyArchive(ArchiveBuilder):
        def finalize(self) -> bytes:
            attempts.append(1)
            if len(attempts) == 1:
                raise ArchiveError("ARCHIVE_FAILED", "out of memory")
            return super().finalize()

    scheduler = BatchScheduler(
        config, CodecAdapter(config, codecs={SourceKind.HEIF: fake_codec}), archive_factory=FlakyArchive
    )
    manager = JobManager(config, scheduler)
    events: list[ProgressEvent] = []
    manager.subscribe(events.append)
    try:
        manager.submit([make_candidate("a.heic"), make_candidate("b.heic")])
        manager.start()
        manager.wait(timeout=10)
        assert manager.state is JobState.READY
        assert manager.job.error_code == "ARCHIVE_FAILED"
        assert manager.job.completed_count == 2
        failed_id = manager.job.job_id

        manager.start()
        assert manager.job.job_id != failed_id
        manager.wait(timeout=10)
        assert manager.state is JobState.COMPLETED
        assert manager.job.error_code is None
        assert manager.job.completed_count == 2
        assert [f.name for f in manager.job.files] == ["a.heic", "b.heic"]
        for job_id in (failed_id, manager.job.job_id):
            counts = [e.completed for e in events if e.job_id == job_id and e.phase is Phase.CONVERTING]
            assert counts == [1, 2]
    finally:
        manager.shutdown()


def test_partial_success_keeps_archive(manager: JobManager) -> None:
    manager.submit([make_candidate("a.heic", b"good"), make_candidate("b.heic", b"bad")])
    manager.start()
    manager.wait(timeout=10)
    job = manager.job
    assert manager.state is JobState.COMPLETED
    assert job.summary.partial
    assert job.summary.to_dict()["failureReasons"] == [["b.heic", "conversion failed"]]
    assert job.entry_names == ("a.png",)


def test_save_archive_and_item(tmp_path, manager: JobManager) -> None:
    manager.submit([make_candidate("a.heic", b"one"), make_candidate("b.heic", b"two")])
    manager.start()
    manager.wait(timeout=10)

    archive_path = manager.save_archive(tmp_path / "out.zip")
    with ZipFile(BytesIO(archive_path.read_bytes())) as bundle:
        assert bundle.namelist() == ["a.png", "b.png"]
        assert bundle.read("b.png") == b"PNG:two"

    item_path = manager.save_item("a.png", tmp_path)
    assert item_path == tmp_path / "a.png"
    assert item_path.read_bytes() == b"PNG:one"


def test_listener_errors_do_not_break_the_batch(manager: JobManager) -> None:
    def _boom(event: ProgressEvent) -> None:
        raise RuntimeError("listener bug")

    manager.subscribe(_boom)
    manager.submit([make_candidate("a.heic")])
    manager.start()
    manager.wait(timeout=10)
    assert manager.state is JobState.COMPLETED


def test_shared_handle_registry(config: AppConfig, scheduler: BatchScheduler) -> None:
    registry = HandleRegistry()
    manager = JobManager(config, scheduler, handles=registry)
    try:
        manager.submit([make_candidate("a.heic")])
        manager.start()
        manager.wait(timeout=10)
        assert registry.read(manager.job.archive_handle)[:2] == b"PK"
    finally:
        manager.shutdown()
