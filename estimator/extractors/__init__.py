"""Result payload extractors."""

from .elements import ElementExtractor, ExtractionResult, normalize_payload, resolve_category

__all__ = [
    "ElementExtractor",
    "ExtractionResult",
    "normalize_payload",
    "resolve_category",
]
