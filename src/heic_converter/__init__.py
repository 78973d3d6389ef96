"""Local batch HEIC/HEIF to PNG conversion toolkit."""

from .admission import AdmissionFilter
from .archive import ArchiveBuilder
from .codec import CodecAdapter
from .config import AppConfig, load_config
from .jobs import JobManager
from .models import BatchResult, BatchSummary, CandidateFile, JobState
from .scheduler import BatchScheduler

__all__ = [
    "AdmissionFilter",
    "AppConfig",
    "ArchiveBuilder",
    "BatchResult",
    "BatchScheduler",
    "BatchSummary",
    "CandidateFile",
    "CodecAdapter",
    "JobManager",
    "JobState",
    "load_config",
]
