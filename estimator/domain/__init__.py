"""Domain layer definitions."""

from .jobs import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    JobStatus,
    UploadJob,
    can_transition,
    is_terminal,
)

__all__ = [
    "ACTIVE_STATUSES",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "JobStatus",
    "UploadJob",
    "can_transition",
    "is_terminal",
]
