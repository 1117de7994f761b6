from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response

from estimator.application import get_ingestion_service

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("")
async def list_jobs() -> dict:
    service = get_ingestion_service()
    return {"items": service.list_jobs()}


@router.get("/{job_id}")
async def get_job_status(job_id: str) -> dict:
    return get_ingestion_service().status(job_id)


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: str) -> dict:
    return get_ingestion_service().cancel(job_id)


@router.post("/{job_id}/probe")
async def probe_job(job_id: str) -> dict:
    """Check the service directly, e.g. for a job that timed out here."""
    return await get_ingestion_service().probe(job_id)


@router.get("/{job_id}/report")
async def get_cost_report(job_id: str) -> dict:
    report = get_ingestion_service().report(job_id)
    return report.model_dump(mode="json")


@router.get("/{job_id}/export.csv")
async def export_cost_report(job_id: str) -> Response:
    content = get_ingestion_service().export_csv(job_id)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{job_id}-cost-report.csv"'},
    )
