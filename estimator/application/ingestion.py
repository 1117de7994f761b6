"""Application service tying the ingestion pipeline together."""
from __future__ import annotations

import logging
from typing import Iterable

from estimator.application.gateway import IngestionGateway, SourceFile
from estimator.core.aggregator import aggregate
from estimator.core.errors import (
    ExtractionDataError,
    IngestionError,
    ReportGenerationError,
    ReportNotReady,
    ResultFetchError,
)
from estimator.core.rates import RateTable, default_rate_table
from estimator.core.schema import AssemblySelection, CostReport
from estimator.core.settings import IngestionSettings, TranslationServiceSettings
from estimator.domain import JobStatus, UploadJob
from estimator.exporters.cost_report_csv import render_cost_report_csv
from estimator.extractors import ElementExtractor
from estimator.infrastructure import (
    ExtractedElements,
    HttpTranslationClient,
    InMemoryJobStateStore,
    JobEventBus,
    JobStateStore,
    SimulatedTranslationService,
    TranslationService,
)
from estimator.workers.orchestrator import TranslationJobOrchestrator

logger = logging.getLogger(__name__)

_REPORT_ERRORS: dict[str, type[IngestionError]] = {
    ExtractionDataError.kind: ExtractionDataError,
    ResultFetchError.kind: ResultFetchError,
    ReportGenerationError.kind: ReportGenerationError,
}


class IngestionService:
    """Coordinates upload, polling, extraction and aggregation for each job."""

    def __init__(
        self,
        store: JobStateStore,
        service: TranslationService,
        *,
        settings: IngestionSettings | None = None,
        rate_table: RateTable | None = None,
        events: JobEventBus | None = None,
        orchestrator: TranslationJobOrchestrator | None = None,
    ) -> None:
        self.settings = settings or IngestionSettings()
        self.store = store
        self.translation_service = service
        self.rate_table = rate_table or default_rate_table()
        self.events = events or JobEventBus()
        self.gateway = IngestionGateway(store, service, settings=self.settings)
        self.orchestrator = orchestrator or TranslationJobOrchestrator(
            store,
            service,
            settings=self.settings,
            events=self.events,
        )
        self.extractor = ElementExtractor(service, rate_table=self.rate_table, settings=self.settings)

    # ------------------------------------------------------------------
    # upload & status
    # ------------------------------------------------------------------
    async def upload(self, source: SourceFile) -> dict[str, str]:
        job = await self.gateway.submit(source)
        self.orchestrator.start(job.id, self._after_polling)
        return {"job_id": job.id, "accepted_file_name": job.source_file_name}

    def status(self, job_id: str) -> dict[str, object]:
        job = self.store.require(job_id)
        payload: dict[str, object] = {
            "job_id": job.id,
            "status": job.status.value,
            "progress_percent": job.progress_percent,
            "attempts": job.attempts,
        }
        if job.error is not None:
            payload["error"] = job.error
            payload["error_kind"] = job.error_kind
        extracted = self.store.get_elements(job_id)
        if extracted is not None:
            elements, _, _ = extracted
            payload["elements"] = [element.model_dump(mode="json") for element in elements]
        report_error = self.store.get_report_error(job_id)
        if report_error is not None:
            kind, message = report_error
            payload["report_error"] = {"kind": kind, "message": message}
        return payload

    def list_jobs(self) -> list[dict[str, object]]:
        return [job.to_dict() for job in sorted(self.store.list_jobs(), key=lambda item: item.id)]

    def cancel(self, job_id: str) -> dict[str, object]:
        cancelled = self.orchestrator.cancel(job_id)
        job = self.store.require(job_id)
        return {"job_id": job_id, "cancelled": cancelled, "status": job.status.value}

    async def probe(self, job_id: str) -> dict[str, object]:
        status = await self.orchestrator.probe(job_id)
        job = self.store.require(job_id)
        return {
            "job_id": job_id,
            "status": job.status.value,
            "remote_state": status.state,
            "remote_progress": status.progress,
            "remote_message": status.message,
        }

    async def wait(self, job_id: str) -> UploadJob:
        return await self.orchestrator.wait(job_id)

    # ------------------------------------------------------------------
    # extraction & reporting
    # ------------------------------------------------------------------
    async def _after_polling(self, job: UploadJob) -> None:
        if job.status != JobStatus.COMPLETE:
            return
        try:
            result = await self.extractor.extract(job)
            report = aggregate(
                result.elements,
                (),
                rate_table=self.rate_table,
                accuracy_band=result.accuracy_band,
                processing_duration=self._processing_duration(job),
                extraction_warnings=result.warnings,
            )
        except (ExtractionDataError, ResultFetchError) as exc:
            logger.error("Report for %s not produced: %s", job.id, exc.message)
            self.store.record_report_error(job.id, exc.kind, exc.message)
            return
        except Exception as exc:
            logger.exception("Cost report for %s could not be built", job.id)
            self.store.record_report_error(
                job.id,
                ReportGenerationError.kind,
                f"report generation failed: {exc}",
            )
            return

        self.store.save_elements(job.id, result.elements, result.accuracy_band, result.warnings)
        self.store.save_report(job.id, report)
        logger.info("Cost report for %s: %d elements, total %s", job.id, report.total_elements, report.total_cost)

    @staticmethod
    def _processing_duration(job: UploadJob) -> float | None:
        if job.completed_at is None:
            return None
        return round((job.completed_at - job.created_at).total_seconds(), 3)

    def _require_elements(self, job_id: str) -> ExtractedElements:
        job = self.store.require(job_id)
        report_error = self.store.get_report_error(job_id)
        if report_error is not None:
            kind, message = report_error
            raise _REPORT_ERRORS.get(kind, IngestionError)(message)
        extracted = self.store.get_elements(job_id)
        if extracted is None:
            raise ReportNotReady(f"{job_id} is {job.status.value}; no cost report yet")
        return extracted

    def report(self, job_id: str) -> CostReport:
        self._require_elements(job_id)
        report = self.store.get_report(job_id)
        if report is None:
            raise ReportNotReady(f"{job_id} has no cost report yet")
        return report

    def estimate(self, job_id: str, selections: Iterable[AssemblySelection]) -> CostReport:
        """Re-price a finished job with parametric assembly selections."""

        elements, accuracy_band, warnings = self._require_elements(job_id)
        job = self.store.require(job_id)
        return aggregate(
            elements,
            selections,
            rate_table=self.rate_table,
            accuracy_band=accuracy_band,
            processing_duration=self._processing_duration(job),
            extraction_warnings=warnings,
        )

    def export_csv(self, job_id: str) -> str:
        return render_cost_report_csv(self.report(job_id))

    def list_assemblies(self) -> list[dict[str, object]]:
        return [
            assembly.model_dump(mode="json")
            for _, assembly in sorted(self.rate_table.assemblies.items())
        ]

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def shutdown(self) -> None:
        await self.orchestrator.shutdown()
        if isinstance(self.translation_service, HttpTranslationClient):
            await self.translation_service.aclose()


def build_translation_service(config: TranslationServiceSettings | None = None) -> TranslationService:
    config = config or TranslationServiceSettings.from_env()
    if not config.configured:
        logger.warning("TRANSLATION_API_BASE not set; using the simulated translation service")
        return SimulatedTranslationService()
    return HttpTranslationClient(
        config.api_base or "",
        client_id=config.client_id,
        client_secret=config.client_secret,
        token_url=config.token_url,
    )


def build_ingestion_service(
    *,
    settings: IngestionSettings | None = None,
    service: TranslationService | None = None,
) -> IngestionService:
    settings = settings or IngestionSettings.from_env()
    return IngestionService(
        InMemoryJobStateStore(),
        service or build_translation_service(),
        settings=settings,
    )


_service: IngestionService | None = None


def configure_ingestion_service(service: IngestionService) -> None:
    """Install the service used by the HTTP routes."""

    global _service
    _service = service


def get_ingestion_service() -> IngestionService:
    """Return the process-wide ingestion service, building a default one on first use."""

    global _service
    if _service is None:
        _service = build_ingestion_service()
    return _service


def reset_ingestion_state() -> None:
    """Drop the process-wide service (used in tests)."""

    global _service
    _service = None
