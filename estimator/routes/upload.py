from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, File, HTTPException, UploadFile

from estimator.application import SourceFile, get_ingestion_service
from estimator.core.storage import discard_upload, save_upload

router = APIRouter(prefix="/jobs", tags=["upload"])


@router.post("")
async def upload_model(file: UploadFile = File(...)) -> dict:
    """Upload a building model and start its translation job."""
    try:
        if not file.filename:
            raise HTTPException(status_code=400, detail="Uploaded file must have a filename")

        safe_name = Path(file.filename).name
        service = get_ingestion_service()
        service.gateway.validate_extension(safe_name)

        staged = save_upload(safe_name, file.file)
        try:
            source = SourceFile.from_path(staged, filename=safe_name)
            return await service.upload(source)
        finally:
            discard_upload(staged)
    finally:
        await file.close()
