"""Generation job lifecycle: submission, polling, records."""

from mediagen.jobs.manager import JobHandle, JobManager
from mediagen.jobs.models import HistoryPage, JobRecord, RecordStatus
from mediagen.jobs.poller import StatusPoller
from mediagen.jobs.store import FileJobRecordStore, JobRecordStore, get_record_store
from mediagen.jobs.submitter import JobSubmitter

__all__ = [
    "FileJobRecordStore",
    "HistoryPage",
    "JobHandle",
    "JobManager",
    "JobRecord",
    "JobRecordStore",
    "JobSubmitter",
    "RecordStatus",
    "StatusPoller",
    "get_record_store",
]
