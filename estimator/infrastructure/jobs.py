"""Job State Store: one record per job id, the only shared mutable state."""
from __future__ import annotations

import asyncio
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Protocol

from estimator.core.errors import InvalidTransition, JobNotFound
from estimator.core.schema import CostReport, Element
from estimator.domain import JobStatus, UploadJob, can_transition, is_terminal

ExpectedStatus = JobStatus | Iterable[JobStatus] | None

# (elements, accuracy band, extraction warnings)
ExtractedElements = tuple[tuple[Element, ...], str | None, tuple[str, ...]]


class JobStateStore(Protocol):
    """Persistence contract for job state."""

    def next_job_id(self) -> str: ...

    def create(self, job: UploadJob) -> UploadJob: ...

    def get(self, job_id: str) -> UploadJob | None: ...

    def require(self, job_id: str) -> UploadJob: ...

    def list_jobs(self) -> list[UploadJob]: ...

    def transition(
        self,
        job_id: str,
        target: JobStatus,
        *,
        expected: ExpectedStatus = None,
        **changes: object,
    ) -> UploadJob | None: ...

    def update(self, job_id: str, *, expected_status: JobStatus, **changes: object) -> UploadJob | None: ...

    def poll_lock(self, job_id: str) -> asyncio.Lock: ...

    def release_poll_lock(self, job_id: str) -> bool: ...

    def save_elements(
        self,
        job_id: str,
        elements: Iterable[Element],
        accuracy_band: str | None,
        warnings: Iterable[str] = (),
    ) -> None: ...

    def get_elements(self, job_id: str) -> ExtractedElements | None: ...

    def save_report(self, job_id: str, report: CostReport) -> None: ...

    def get_report(self, job_id: str) -> CostReport | None: ...

    def record_report_error(self, job_id: str, kind: str, message: str) -> None: ...

    def get_report_error(self, job_id: str) -> tuple[str, str] | None: ...

    def reset(self) -> None: ...


def _expected_set(expected: ExpectedStatus) -> frozenset[JobStatus] | None:
    if expected is None:
        return None
    if isinstance(expected, JobStatus):
        return frozenset({expected})
    return frozenset(expected)


class InMemoryJobStateStore:
    """In-memory store with atomic compare-and-set updates per job id.

    Records handed out are copies; callers change state only through
    :meth:`transition` and :meth:`update`, which check the current status
    under the store lock before writing.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._jobs: dict[str, UploadJob] = {}
        self._poll_locks: dict[str, asyncio.Lock] = {}
        self._elements: dict[str, ExtractedElements] = {}
        self._reports: dict[str, CostReport] = {}
        self._report_errors: dict[str, tuple[str, str]] = {}
        self._job_counter = 0

    # ------------------------------------------------------------------
    # job records
    # ------------------------------------------------------------------
    def next_job_id(self) -> str:
        with self._lock:
            self._job_counter += 1
            return f"job-{self._job_counter:05d}"

    def create(self, job: UploadJob) -> UploadJob:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"job {job.id} already exists")
            self._jobs[job.id] = replace(job)
            return replace(job)

    def get(self, job_id: str) -> UploadJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job is not None else None

    def require(self, job_id: str) -> UploadJob:
        job = self.get(job_id)
        if job is None:
            raise JobNotFound(f"job {job_id} not found")
        return job

    def list_jobs(self) -> list[UploadJob]:
        with self._lock:
            return [replace(job) for job in self._jobs.values()]

    def transition(
        self,
        job_id: str,
        target: JobStatus,
        *,
        expected: ExpectedStatus = None,
        **changes: object,
    ) -> UploadJob | None:
        """Move ``job_id`` to ``target`` if it is currently in ``expected``.

        Returns the updated record, or ``None`` when the job is terminal or
        its status no longer matches ``expected`` (someone else won the
        race). A target that is not an edge of the state machine raises
        :class:`InvalidTransition`.
        """

        if "status" in changes:
            raise ValueError("pass the new status as target")
        allowed = _expected_set(expected)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(f"job {job_id} not found")
            if is_terminal(job.status):
                return None
            if allowed is not None and job.status not in allowed:
                return None
            if not can_transition(job.status, target):
                raise InvalidTransition(f"{job_id}: {job.status.value} -> {target.value}")

            updated = replace(job, status=target, **changes)
            if is_terminal(target) and updated.completed_at is None:
                updated.completed_at = datetime.now(timezone.utc)
            self._jobs[job_id] = updated
            return replace(updated)

    def update(self, job_id: str, *, expected_status: JobStatus, **changes: object) -> UploadJob | None:
        """Change fields other than status while the job is in ``expected_status``."""

        if "status" in changes:
            raise ValueError("use transition() to change status")
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(f"job {job_id} not found")
            if job.status != expected_status or is_terminal(job.status):
                return None
            updated = replace(job, **changes)
            self._jobs[job_id] = updated
            return replace(updated)

    def poll_lock(self, job_id: str) -> asyncio.Lock:
        with self._lock:
            lock = self._poll_locks.get(job_id)
            if lock is None:
                lock = asyncio.Lock()
                self._poll_locks[job_id] = lock
            return lock

    def release_poll_lock(self, job_id: str) -> bool:
        """Forget the poll lock of a terminal job once nobody holds it."""

        with self._lock:
            job = self._jobs.get(job_id)
            lock = self._poll_locks.get(job_id)
            if lock is None or lock.locked() or job is None or not is_terminal(job.status):
                return False
            del self._poll_locks[job_id]
            return True

    # ------------------------------------------------------------------
    # extraction output
    # ------------------------------------------------------------------
    def save_elements(
        self,
        job_id: str,
        elements: Iterable[Element],
        accuracy_band: str | None,
        warnings: Iterable[str] = (),
    ) -> None:
        with self._lock:
            self._elements[job_id] = (tuple(elements), accuracy_band, tuple(warnings))

    def get_elements(self, job_id: str) -> ExtractedElements | None:
        with self._lock:
            return self._elements.get(job_id)

    def save_report(self, job_id: str, report: CostReport) -> None:
        with self._lock:
            self._reports[job_id] = report
            self._report_errors.pop(job_id, None)

    def get_report(self, job_id: str) -> CostReport | None:
        with self._lock:
            return self._reports.get(job_id)

    def record_report_error(self, job_id: str, kind: str, message: str) -> None:
        with self._lock:
            self._report_errors[job_id] = (kind, message)

    def get_report_error(self, job_id: str) -> tuple[str, str] | None:
        with self._lock:
            return self._report_errors.get(job_id)

    # ------------------------------------------------------------------
    # testing helpers
    # ------------------------------------------------------------------
    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()
            self._poll_locks.clear()
            self._elements.clear()
            self._reports.clear()
            self._report_errors.clear()
            self._job_counter = 0
