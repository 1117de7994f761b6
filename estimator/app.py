import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from estimator.application import IngestionService, configure_ingestion_service, get_ingestion_service
from estimator.core.errors import IngestionError
from estimator.routes import estimate, jobs, upload

ERROR_STATUS_CODES: dict[str, int] = {
    "InvalidFormat": 415,
    "PayloadTooLarge": 413,
    "UploadFailed": 502,
    "StatusCheckFailed": 502,
    "ResultFetchError": 502,
    "JobNotFound": 404,
    "ReportNotReady": 409,
    "InvalidTransition": 409,
    "ExtractionDataError": 422,
    "ReportGenerationError": 500,
}


async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(exc.kind, 500),
        content={"error": exc.kind, "detail": exc.message},
    )


def create_app(service: IngestionService | None = None) -> FastAPI:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if service is not None:
        configure_ingestion_service(service)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await get_ingestion_service().shutdown()

    app = FastAPI(title="Model Cost Estimation API", version="0.1.0", lifespan=lifespan)

    origins_env = os.getenv("API_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    if not origins:
        origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(IngestionError, ingestion_error_handler)

    app.include_router(upload.router, prefix="/api")
    app.include_router(jobs.router, prefix="/api")
    app.include_router(estimate.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Model Cost Estimation API",
                "docs": "/docs",
                "health": "/api/jobs",
            }
        )

    return app


app = create_app()
