"""Observer channel for job progress and terminal-state notifications."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from estimator.domain import UploadJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class JobEvent:
    job_id: str
    kind: str  # "status" or "progress"
    status: str
    progress_percent: int
    attempts: int
    error: str | None = None
    error_kind: str | None = None

    @classmethod
    def from_job(cls, job: UploadJob, kind: str) -> "JobEvent":
        return cls(
            job_id=job.id,
            kind=kind,
            status=job.status.value,
            progress_percent=job.progress_percent,
            attempts=job.attempts,
            error=job.error,
            error_kind=job.error_kind,
        )


Subscriber = Callable[[JobEvent], None]


class JobEventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; the returned function unsubscribes it."""

        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: JobEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Job event subscriber failed for %s", event.job_id)
