"""Ingestion Gateway: validates uploads and hands them to the translation service."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from estimator.core.errors import InvalidFormat, PayloadTooLarge, UploadFailed
from estimator.core.settings import IngestionSettings
from estimator.domain import JobStatus, UploadJob
from estimator.infrastructure.jobs import JobStateStore
from estimator.infrastructure.translation import TranslationClientError, TranslationService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SourceFile:
    filename: str
    path: Path
    size_bytes: int

    @classmethod
    def from_path(cls, path: Path, filename: str | None = None) -> "SourceFile":
        return cls(filename=filename or path.name, path=path, size_bytes=path.stat().st_size)


def file_extension(filename: str) -> str:
    return Path(filename).suffix.lower().lstrip(".")


class IngestionGateway:
    def __init__(
        self,
        store: JobStateStore,
        service: TranslationService,
        *,
        settings: IngestionSettings | None = None,
    ) -> None:
        self._store = store
        self._service = service
        self._settings = settings or IngestionSettings()

    def validate_extension(self, filename: str) -> str:
        extension = file_extension(filename)
        if extension not in self._settings.allowed_extensions:
            allowed = ", ".join(sorted(self._settings.allowed_extensions))
            raise InvalidFormat(f"unsupported file type {extension or '<none>'!r}; expected one of {allowed}")
        return extension

    def validate_size(self, size_bytes: int) -> None:
        if size_bytes > self._settings.max_upload_bytes:
            raise PayloadTooLarge(
                f"file is {size_bytes} bytes; the limit is {self._settings.max_upload_bytes} bytes"
            )

    def validate(self, filename: str, size_bytes: int) -> str:
        """Check extension and size; returns the normalised extension."""

        extension = self.validate_extension(filename)
        self.validate_size(size_bytes)
        return extension

    async def submit(self, source: SourceFile) -> UploadJob:
        """Send ``source`` to the translation service and persist its job record.

        Nothing is stored when the service does not accept the file.
        """

        extension = self.validate(source.filename, source.size_bytes)
        try:
            translation_id = await asyncio.wait_for(
                self._service.submit(source.path, source.filename),
                timeout=self._settings.upload_timeout,
            )
        except (TranslationClientError, asyncio.TimeoutError) as exc:
            reason = str(exc) or type(exc).__name__
            logger.error("Upload of %s failed: %s", source.filename, reason)
            raise UploadFailed(f"upload of {source.filename} failed: {reason}") from exc
        except OSError as exc:
            raise UploadFailed(f"could not read {source.filename}: {exc}") from exc

        job = UploadJob(
            id=self._store.next_job_id(),
            source_file_name=source.filename,
            file_size_bytes=source.size_bytes,
            file_extension=extension,
            created_at=datetime.now(timezone.utc),
            status=JobStatus.UPLOADING,
            translation_id=translation_id,
        )
        self._store.create(job)
        logger.info("Job %s created for %s (translation %s)", job.id, source.filename, translation_id)
        return job
