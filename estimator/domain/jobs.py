"""Domain entities for model ingestion jobs."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class JobStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    TRANSLATING = "translating"
    POLLING = "polling"
    COMPLETE = "complete"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETE, JobStatus.FAILED, JobStatus.TIMED_OUT}
)

ACTIVE_STATUSES: frozenset[JobStatus] = frozenset(set(JobStatus) - TERMINAL_STATUSES)

# Forward edges of the job state machine. Every non-terminal state may fail
# (cancellation); terminal states have no outgoing edges.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.UPLOADING, JobStatus.FAILED}),
    JobStatus.UPLOADING: frozenset({JobStatus.TRANSLATING, JobStatus.FAILED}),
    JobStatus.TRANSLATING: frozenset({JobStatus.POLLING, JobStatus.FAILED}),
    JobStatus.POLLING: frozenset({JobStatus.COMPLETE, JobStatus.FAILED, JobStatus.TIMED_OUT}),
    JobStatus.COMPLETE: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.TIMED_OUT: frozenset(),
}


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(slots=True)
class UploadJob:
    """One submit-poll-extract unit of work."""

    id: str
    source_file_name: str
    file_size_bytes: int
    file_extension: str
    created_at: datetime
    status: JobStatus = JobStatus.PENDING
    translation_id: str | None = None
    attempts: int = 0
    progress_percent: int = 0
    last_polled_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    error_kind: str | None = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def to_dict(self) -> dict[str, object]:
        return {
            "job_id": self.id,
            "source_file_name": self.source_file_name,
            "file_size_bytes": self.file_size_bytes,
            "file_extension": self.file_extension,
            "status": self.status.value,
            "translation_id": self.translation_id,
            "attempts": self.attempts,
            "progress_percent": self.progress_percent,
            "created_at": self.created_at.isoformat(),
            "last_polled_at": self.last_polled_at.isoformat() if self.last_polled_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "error_kind": self.error_kind,
        }
