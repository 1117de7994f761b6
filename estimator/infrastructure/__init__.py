"""Infrastructure layer exports."""

from .events import JobEvent, JobEventBus
from .jobs import ExtractedElements, InMemoryJobStateStore, JobStateStore
from .simulated import SAMPLE_PAYLOAD, SimulatedTranslationService
from .translation import (
    HttpTranslationClient,
    TranslationClientError,
    TranslationResponseError,
    TranslationService,
    TranslationStatus,
    TranslationTransportError,
)

__all__ = [
    "ExtractedElements",
    "HttpTranslationClient",
    "InMemoryJobStateStore",
    "JobEvent",
    "JobEventBus",
    "JobStateStore",
    "SAMPLE_PAYLOAD",
    "SimulatedTranslationService",
    "TranslationClientError",
    "TranslationResponseError",
    "TranslationService",
    "TranslationStatus",
    "TranslationTransportError",
]
