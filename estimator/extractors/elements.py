"""Normalise a translation service result payload into Element records.

The service returns loosely typed JSON. Three shapes are accepted:

* ``{"elements": {"structural": [...], "mep": [...], ...}}``, records
  grouped under a category label;
* ``{"elements": [{"category": "Structural", ...}, ...]}``;
* a bare list of records carrying their own ``category``.

Labels outside the five canonical categories land in ``Unknown`` so the
aggregator can report coverage gaps. Bad quantities or costs are coerced
to zero with a warning; only a payload whose overall structure cannot be
decoded raises :class:`ExtractionDataError`.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterator

from estimator.core.errors import ExtractionDataError, InvalidTransition, ResultFetchError
from estimator.core.rates import RateTable, default_rate_table
from estimator.core.schema import MAX_AMOUNT, Element, ElementCategory
from estimator.core.settings import IngestionSettings
from estimator.domain import JobStatus, UploadJob
from estimator.infrastructure.translation import (
    TranslationClientError,
    TranslationResponseError,
    TranslationService,
    TranslationTransportError,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
UNIT_COST_PRECISION = Decimal("0.0001")

CATEGORY_ALIASES: dict[str, ElementCategory] = {
    "structural": ElementCategory.STRUCTURAL,
    "structure": ElementCategory.STRUCTURAL,
    "architectural": ElementCategory.ARCHITECTURAL,
    "architecture": ElementCategory.ARCHITECTURAL,
    "mep": ElementCategory.MEP,
    "mechanical": ElementCategory.MEP,
    "services": ElementCategory.MEP,
    "building services": ElementCategory.MEP,
    "finishes": ElementCategory.FINISHES,
    "finish": ElementCategory.FINISHES,
    "external": ElementCategory.EXTERNAL,
    "external works": ElementCategory.EXTERNAL,
    "exterior": ElementCategory.EXTERNAL,
}

ID_KEYS = ("id", "objectid", "element_id", "elementId")
TYPE_KEYS = ("type", "name", "element", "type_name", "material")
UNIT_COST_KEYS = ("unit_cost", "unitCost", "rate")
TOTAL_COST_KEYS = ("cost", "total_cost", "totalCost", "total")


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    elements: tuple[Element, ...]
    accuracy_band: str | None = None
    warnings: tuple[str, ...] = ()


def resolve_category(label: Any) -> ElementCategory:
    if not isinstance(label, str):
        return ElementCategory.UNKNOWN
    key = " ".join(label.replace("_", " ").split()).lower()
    return CATEGORY_ALIASES.get(key, ElementCategory.UNKNOWN)


def _first(record: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in record and record[key] is not None and record[key] != "":
            return record[key]
    return None


def _decode(payload: Any) -> Any:
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ExtractionDataError("result payload is not UTF-8 text") from exc
    if isinstance(payload, str):
        try:
            return json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ExtractionDataError(f"result payload is not valid JSON: {exc.msg}") from exc
    return payload


def _iter_records(payload: Any, warnings: list[str]) -> Iterator[tuple[Any, Any]]:
    """Yield ``(group label, record)`` pairs from any accepted payload shape."""

    if isinstance(payload, list):
        for record in payload:
            yield None, record
        return
    if not isinstance(payload, dict):
        raise ExtractionDataError(f"result payload must be an object or list, got {type(payload).__name__}")

    body = payload.get("elements", payload.get("categories"))
    if isinstance(body, list):
        for record in body:
            yield None, record
    elif isinstance(body, dict):
        for label, records in body.items():
            if not isinstance(records, list):
                message = f"category {label!r} does not hold a list of records; skipped"
                logger.warning(message)
                warnings.append(message)
                continue
            for record in records:
                yield label, record
    else:
        raise ExtractionDataError("result payload has no elements collection")


class _RecordNormaliser:
    def __init__(self, rate_table: RateTable, warnings: list[str]) -> None:
        self._rate_table = rate_table
        self._warnings = warnings

    def _warn(self, element_id: str, message: str) -> None:
        text = f"{element_id}: {message}"
        logger.warning("Element %s", text)
        self._warnings.append(text)

    def amount(self, value: Any, *, field_name: str, element_id: str) -> Decimal:
        """Non-negative Decimal, or zero with a warning."""

        if isinstance(value, bool):
            self._warn(element_id, f"{field_name} {value!r} is not numeric, using 0")
            return ZERO
        try:
            number = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            self._warn(element_id, f"{field_name} {value!r} is not numeric, using 0")
            return ZERO
        if not number.is_finite():
            self._warn(element_id, f"{field_name} {value!r} is not finite, using 0")
            return ZERO
        if number < 0:
            self._warn(element_id, f"{field_name} {value!r} is negative, using 0")
            return ZERO
        if number > MAX_AMOUNT:
            self._warn(element_id, f"{field_name} {value!r} exceeds {MAX_AMOUNT:,.0f}, using 0")
            return ZERO
        return number

    def unit_cost(
        self,
        record: dict[str, Any],
        category: ElementCategory,
        element_type: str,
        quantity: Decimal,
        element_id: str,
    ) -> Decimal:
        explicit = _first(record, UNIT_COST_KEYS)
        if explicit is not None:
            return self.amount(explicit, field_name="unit cost", element_id=element_id)

        if category is not ElementCategory.UNKNOWN:
            rated = self._rate_table.unit_cost_for(category, element_type)
            if rated is not None:
                return rated

        total = _first(record, TOTAL_COST_KEYS)
        if total is not None:
            total_cost = self.amount(total, field_name="cost", element_id=element_id)
            if quantity <= 0:
                return ZERO
            derived = total_cost / quantity
            if derived > MAX_AMOUNT:
                self._warn(element_id, f"unit cost derived from cost {total} is out of range, using 0")
                return ZERO
            return derived.quantize(UNIT_COST_PRECISION, rounding=ROUND_HALF_UP)
        return ZERO

    def element(self, label: Any, record: dict[str, Any], position: int) -> Element:
        raw_category = record.get("category", label)
        category = resolve_category(raw_category)
        source_category = raw_category if isinstance(raw_category, str) else None

        raw_id = _first(record, ID_KEYS)
        element_id = str(raw_id) if raw_id is not None else f"{category.value.lower()}-{position:04d}"
        element_type = str(_first(record, TYPE_KEYS) or "unspecified").strip()

        raw_quantity = record.get("quantity")
        if raw_quantity is None:
            self._warn(element_id, "quantity missing, using 0")
            quantity = ZERO
        else:
            quantity = self.amount(raw_quantity, field_name="quantity", element_id=element_id)

        return Element(
            id=element_id,
            category=category,
            type=element_type,
            quantity=quantity,
            unit=str(record.get("unit") or "ea"),
            unit_cost=self.unit_cost(record, category, element_type, quantity, element_id),
            source_category=source_category,
        )


def normalize_payload(payload: Any, *, rate_table: RateTable | None = None) -> ExtractionResult:
    rate_table = rate_table or default_rate_table()
    payload = _decode(payload)
    warnings: list[str] = []
    normaliser = _RecordNormaliser(rate_table, warnings)

    elements: list[Element] = []
    for position, (label, record) in enumerate(_iter_records(payload, warnings)):
        if not isinstance(record, dict):
            message = f"record #{position} is not an object; skipped"
            logger.warning(message)
            warnings.append(message)
            continue
        elements.append(normaliser.element(label, record, position))

    accuracy_band = None
    if isinstance(payload, dict):
        band = payload.get("accuracy_band", payload.get("accuracy"))
        if isinstance(band, str) and band.strip():
            accuracy_band = band.strip()

    return ExtractionResult(elements=tuple(elements), accuracy_band=accuracy_band, warnings=tuple(warnings))


class ElementExtractor:
    """Fetches a finished job's result payload and normalises it."""

    def __init__(
        self,
        service: TranslationService,
        *,
        rate_table: RateTable | None = None,
        settings: IngestionSettings | None = None,
    ) -> None:
        self._service = service
        self._rate_table = rate_table
        self._settings = settings or IngestionSettings()

    async def _fetch(self, job: UploadJob) -> Any:
        failures = 0
        while True:
            try:
                return await asyncio.wait_for(
                    self._service.fetch_result(job.translation_id or ""),
                    timeout=self._settings.step_timeout,
                )
            except (TranslationTransportError, asyncio.TimeoutError) as exc:
                failures += 1
                if failures > self._settings.max_transient_retries:
                    raise ResultFetchError(f"result download failed after {failures} tries: {exc}") from exc
                logger.warning("Result download for %s failed (%s), retrying", job.id, exc)
            except TranslationResponseError as exc:
                raise ExtractionDataError(str(exc)) from exc
            except TranslationClientError as exc:
                raise ResultFetchError(str(exc)) from exc

    async def extract(self, job: UploadJob) -> ExtractionResult:
        if job.status != JobStatus.COMPLETE:
            raise InvalidTransition(f"{job.id} is {job.status.value}; extraction needs a complete job")
        payload = await self._fetch(job)
        result = normalize_payload(payload, rate_table=self._rate_table or default_rate_table())
        logger.info(
            "Extracted %d elements for %s (%d warnings)",
            len(result.elements),
            job.id,
            len(result.warnings),
        )
        return result
