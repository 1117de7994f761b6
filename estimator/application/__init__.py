"""Application services."""

from .gateway import IngestionGateway, SourceFile
from .ingestion import (
    IngestionService,
    build_ingestion_service,
    build_translation_service,
    configure_ingestion_service,
    get_ingestion_service,
    reset_ingestion_state,
)

__all__ = [
    "IngestionGateway",
    "IngestionService",
    "SourceFile",
    "build_ingestion_service",
    "build_translation_service",
    "configure_ingestion_service",
    "get_ingestion_service",
    "reset_ingestion_state",
]
