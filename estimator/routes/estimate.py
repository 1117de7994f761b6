from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from estimator.application import get_ingestion_service
from estimator.core.schema import AssemblySelection

router = APIRouter(tags=["estimate"])


@router.get("/assemblies")
async def list_assemblies() -> dict:
    return {"items": get_ingestion_service().list_assemblies()}


@router.post("/jobs/{job_id}/estimate")
async def estimate_job(job_id: str, payload: dict) -> dict:
    raw = payload.get("selections") or []
    if not isinstance(raw, list):
        raise HTTPException(status_code=400, detail="selections must be a list")
    try:
        selections = [AssemblySelection(**item) for item in raw]
    except (TypeError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=f"invalid selection: {exc}") from exc

    report = get_ingestion_service().estimate(job_id, selections)
    return report.model_dump(mode="json")
