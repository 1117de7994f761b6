"""Drives a submitted job through the bounded polling state machine.

``uploading -> translating -> polling -> complete | failed | timed_out``

Each job gets one asyncio task. The only suspension points are the status
calls and the inter-poll wait, both of which observe the job's stop event.
The event is set on cancel and whenever the job turns terminal, so every
loop polling the same job wakes up. All state changes go through the Job
State Store's compare-and-set methods, so a cancel racing with a poll
result cannot bring a job back from a terminal state.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable

from estimator.core.errors import JobNotFound, PollTimeout, StatusCheckFailed, TranslationError
from estimator.core.settings import IngestionSettings
from estimator.domain import ACTIVE_STATUSES, JobStatus, UploadJob
from estimator.infrastructure.events import JobEvent, JobEventBus
from estimator.infrastructure.jobs import JobStateStore
from estimator.infrastructure.translation import (
    COMPLETE,
    ERROR,
    TranslationClientError,
    TranslationService,
    TranslationStatus,
    TranslationTransportError,
)

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"
CANCELLED_KIND = "Cancelled"

TerminalCallback = Callable[[UploadJob], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PollOutcome:
    status: TranslationStatus | None = None
    failure: str | None = None
    expired: bool = False


class TranslationJobOrchestrator:
    def __init__(
        self,
        store: JobStateStore,
        service: TranslationService,
        *,
        settings: IngestionSettings | None = None,
        events: JobEventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._service = service
        self._settings = settings or IngestionSettings()
        self._events = events or JobEventBus()
        self._clock = clock
        self._tasks: dict[str, asyncio.Task[UploadJob]] = {}
        self._stop_events: dict[str, asyncio.Event] = {}
        # runs and manual status checks using a job's stop event or poll lock
        self._users: Counter[str] = Counter()

    @property
    def events(self) -> JobEventBus:
        return self._events

    # ------------------------------------------------------------------
    # task management
    # ------------------------------------------------------------------
    def start(self, job_id: str, on_terminal: TerminalCallback | None = None) -> asyncio.Task[UploadJob]:
        """Spawn the polling task for ``job_id`` unless one is already running."""

        existing = self._tasks.get(job_id)
        if existing is not None and not existing.done():
            return existing

        self._store.require(job_id)
        task = asyncio.create_task(self._drive(job_id, on_terminal), name=f"poll-{job_id}")
        self._tasks[job_id] = task

        def _forget(done: asyncio.Task[UploadJob]) -> None:
            if self._tasks.get(job_id) is done:
                del self._tasks[job_id]

        task.add_done_callback(_forget)
        return task

    def is_running(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    async def wait(self, job_id: str) -> UploadJob:
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return self._store.require(job_id)

    async def shutdown(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _drive(self, job_id: str, on_terminal: TerminalCallback | None) -> UploadJob:
        job = await self.run(job_id)
        if on_terminal is not None:
            try:
                await on_terminal(job)
            except Exception:
                logger.exception("Post-processing of %s failed", job_id)
        return job

    # ------------------------------------------------------------------
    # cancellation
    # ------------------------------------------------------------------
    def cancel(self, job_id: str) -> bool:
        """Fail a non-terminal job with ``cancelled``; False if it was already terminal."""

        job = self._store.transition(
            job_id,
            JobStatus.FAILED,
            expected=ACTIVE_STATUSES,
            error=CANCELLED,
            error_kind=CANCELLED_KIND,
        )
        self._stop(job_id)
        if job is None:
            return False
        logger.info("Job %s cancelled", job_id)
        self._publish(job, "status")
        return True

    # ------------------------------------------------------------------
    # state machine
    # ------------------------------------------------------------------
    async def run(self, job_id: str) -> UploadJob:
        """Poll ``job_id`` until it is terminal and return the final record.

        Failures are recorded on the job, never raised.
        """

        self._users[job_id] += 1
        stop_event = self._stop_events.setdefault(job_id, asyncio.Event())
        try:
            job = self._store.require(job_id)
            if job.is_terminal:
                return job
            if job.translation_id is None:
                self._finish(job_id, JobStatus.FAILED, "job was never submitted", "UploadFailed")
                return self._store.require(job_id)

            if job.status == JobStatus.PENDING:
                job = self._store.transition(job_id, JobStatus.UPLOADING, expected=JobStatus.PENDING) or job
            if job.status == JobStatus.UPLOADING:
                job = self._advance(job_id, JobStatus.UPLOADING, JobStatus.TRANSLATING)
                if job is None:
                    return self._store.require(job_id)
            if job.status == JobStatus.TRANSLATING:
                job = self._advance(job_id, JobStatus.TRANSLATING, JobStatus.POLLING)
                if job is None:
                    return self._store.require(job_id)

            return await self._poll_until_terminal(job, stop_event)
        except asyncio.CancelledError:
            self._finish(job_id, JobStatus.FAILED, CANCELLED, CANCELLED_KIND)
            raise
        except JobNotFound:
            raise
        except Exception as exc:
            logger.exception("Polling %s crashed", job_id)
            self._finish(job_id, JobStatus.FAILED, f"internal error: {exc}", "InternalError")
            return self._store.require(job_id)
        finally:
            self._leave(job_id)

    def _stop(self, job_id: str) -> None:
        event = self._stop_events.get(job_id)
        if event is not None:
            event.set()

    def _leave(self, job_id: str) -> None:
        self._users[job_id] -= 1
        if self._users[job_id] > 0:
            return
        del self._users[job_id]
        self._stop_events.pop(job_id, None)
        self._store.release_poll_lock(job_id)

    def _advance(self, job_id: str, current: JobStatus, target: JobStatus) -> UploadJob | None:
        job = self._store.transition(job_id, target, expected=current)
        if job is not None:
            logger.info("Job %s %s -> %s", job_id, current.value, target.value)
            self._publish(job, "status")
        return job

    def _finish(
        self,
        job_id: str,
        target: JobStatus,
        error: str | None,
        error_kind: str | None,
        **changes: object,
    ) -> UploadJob | None:
        job = self._store.transition(
            job_id,
            target,
            expected=JobStatus.POLLING if target is not JobStatus.FAILED else ACTIVE_STATUSES,
            error=error,
            error_kind=error_kind,
            **changes,
        )
        if job is not None:
            log = logger.info if target is JobStatus.COMPLETE else logger.warning
            log("Job %s finished as %s%s", job_id, target.value, f" ({error})" if error else "")
            self._publish(job, "status")
            self._stop(job_id)
        return job

    async def _poll_until_terminal(self, job: UploadJob, stop_event: asyncio.Event) -> UploadJob:
        settings = self._settings
        job_id = job.id
        started = self._clock()
        deadline = started + settings.job_timeout
        attempts = job.attempts

        while not stop_event.is_set():
            elapsed = self._clock() - started
            if elapsed >= settings.job_timeout:
                self._time_out(job_id, f"no result after {elapsed:.0f}s", attempts)
                break

            outcome = await self._poll_once(job, stop_event, deadline)
            if stop_event.is_set():
                # Stopped while the request was in flight; its answer is dropped.
                break

            attempts += 1
            if outcome.expired:
                self._time_out(job_id, f"no result after {settings.job_timeout:.0f}s", attempts)
                break
            polled_at = _utcnow()
            status = outcome.status

            if status is not None and status.state == COMPLETE:
                self._finish(
                    job_id,
                    JobStatus.COMPLETE,
                    None,
                    None,
                    attempts=attempts,
                    progress_percent=100,
                    last_polled_at=polled_at,
                )
                break
            if status is not None and status.state == ERROR:
                self._finish(
                    job_id,
                    JobStatus.FAILED,
                    status.message or "translation failed",
                    TranslationError.kind,
                    attempts=attempts,
                    last_polled_at=polled_at,
                )
                break

            changes: dict[str, object] = {"attempts": attempts, "last_polled_at": polled_at}
            if status is not None:
                changes["progress_percent"] = status.progress
            updated = self._store.update(job_id, expected_status=JobStatus.POLLING, **changes)
            if updated is None:
                break
            if status is not None:
                self._publish(updated, "progress")
            else:
                logger.warning("Status check %d for %s failed: %s", attempts, job_id, outcome.failure)

            if attempts >= settings.max_attempts:
                if outcome.failure is not None:
                    self._finish(
                        job_id,
                        JobStatus.FAILED,
                        f"status checks failed: {outcome.failure}",
                        StatusCheckFailed.kind,
                    )
                else:
                    self._time_out(job_id, f"still processing after {attempts} status checks", attempts)
                break

            remaining = settings.job_timeout - (self._clock() - started)
            if remaining <= 0:
                self._time_out(job_id, f"no result after {settings.job_timeout:.0f}s", attempts)
                break
            await self._wait(stop_event, min(settings.poll_interval, remaining))

        return self._store.require(job_id)

    def _time_out(self, job_id: str, reason: str, attempts: int) -> None:
        self._finish(job_id, JobStatus.TIMED_OUT, reason, PollTimeout.kind, attempts=attempts)

    async def _poll_once(self, job: UploadJob, stop_event: asyncio.Event, deadline: float) -> PollOutcome:
        """One status check, retrying transport errors before giving up.

        An answer that cannot be parsed is returned as a failure right away.
        No request outlives ``deadline``; reaching it marks the outcome expired.
        """

        retries = self._settings.max_transient_retries
        async with self._store.poll_lock(job.id):
            failures = 0
            reason = "job deadline reached"
            while True:
                timeout = min(self._settings.step_timeout, deadline - self._clock())
                if timeout <= 0:
                    return PollOutcome(failure=reason, expired=True)
                try:
                    status = await asyncio.wait_for(
                        self._service.status(job.translation_id or ""),
                        timeout=timeout,
                    )
                    return PollOutcome(status=status)
                except (TranslationTransportError, asyncio.TimeoutError) as exc:
                    failures += 1
                    reason = str(exc) or type(exc).__name__
                    if failures > retries or stop_event.is_set():
                        return PollOutcome(failure=reason)
                    logger.warning("Status check for %s failed (%s), retry %d/%d", job.id, reason, failures, retries)
                except TranslationClientError as exc:
                    return PollOutcome(failure=str(exc))

    @staticmethod
    async def _wait(stop_event: asyncio.Event, delay: float) -> None:
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # manual re-poll
    # ------------------------------------------------------------------
    async def probe(self, job_id: str) -> TranslationStatus:
        """Ask the service about a job without touching its record.

        Used for timed-out jobs, whose service-side work may still finish.
        """

        job = self._store.require(job_id)
        if job.translation_id is None:
            raise StatusCheckFailed(f"{job_id} was never submitted")
        self._users[job_id] += 1
        try:
            async with self._store.poll_lock(job_id):
                return await asyncio.wait_for(
                    self._service.status(job.translation_id),
                    timeout=self._settings.step_timeout,
                )
        except (TranslationClientError, asyncio.TimeoutError) as exc:
            raise StatusCheckFailed(str(exc) or type(exc).__name__) from exc
        finally:
            self._leave(job_id)

    def _publish(self, job: UploadJob, kind: str) -> None:
        self._events.publish(JobEvent.from_job(job, kind))
