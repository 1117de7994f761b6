"""Offline translation service used when no real service is configured."""
from __future__ import annotations

import copy
import uuid
from pathlib import Path
from typing import Any

from .translation import COMPLETE, PROCESSING, TranslationResponseError, TranslationStatus

SAMPLE_PAYLOAD: dict[str, Any] = {
    "elements": {
        "structural": [
            {"id": "COL001", "type": "Concrete Column", "quantity": 12, "unit": "ea", "cost": 45000},
            {"id": "BEAM001", "type": "Steel Beam IPE400", "quantity": 24, "unit": "ea", "cost": 72000},
            {"id": "SLAB001", "type": "Concrete Slab 200mm", "quantity": 850, "unit": "m²", "cost": 140250},
        ],
        "architectural": [
            {"id": "WALL001", "type": "Masonry Wall", "quantity": 320, "unit": "m²", "cost": 57600},
            {"id": "DOOR001", "type": "Timber Door", "quantity": 18, "unit": "ea", "cost": 21600},
            {"id": "WIN001", "type": "Aluminum Window", "quantity": 35, "unit": "m²", "cost": 87500},
        ],
        "mep": [
            {"id": "HVAC001", "type": "Air Conditioning", "quantity": 850, "unit": "m²", "cost": 153000},
            {"id": "ELEC001", "type": "Electrical Services", "quantity": 850, "unit": "m²", "cost": 68000},
            {"id": "PLUMB001", "type": "Plumbing Services", "quantity": 850, "unit": "m²", "cost": 59500},
        ],
        "finishes": [
            {"id": "FLOOR001", "type": "Porcelain Tiles", "quantity": 680, "unit": "m²", "cost": 47600},
            {"id": "CEIL001", "type": "Suspended Ceiling", "quantity": 750, "unit": "m²", "cost": 52500},
            {"id": "PAINT001", "type": "Interior Paint", "quantity": 1200, "unit": "m²", "cost": 18000},
        ],
        "external": [
            {"id": "ROOF001", "type": "Colorbond Roofing", "quantity": 400, "unit": "m²", "cost": 32000},
            {"id": "CLAD001", "type": "Brick Veneer", "quantity": 280, "unit": "m²", "cost": 50400},
            {"id": "LAND001", "type": "Landscaping", "quantity": 1, "unit": "lot", "cost": 25000},
        ],
    },
    "accuracy": "±2.1%",
}


class SimulatedTranslationService:
    """Completes every job after a fixed number of status checks."""

    def __init__(self, *, checks_before_complete: int = 2, payload: Any | None = None) -> None:
        self._checks_before_complete = max(0, checks_before_complete)
        self._payload = SAMPLE_PAYLOAD if payload is None else payload
        self._checks: dict[str, int] = {}

    async def submit(self, path: Path, filename: str) -> str:
        translation_id = f"sim-{uuid.uuid4().hex[:12]}"
        self._checks[translation_id] = 0
        return translation_id

    async def status(self, translation_id: str) -> TranslationStatus:
        if translation_id not in self._checks:
            raise TranslationResponseError(f"unknown translation job {translation_id}")
        self._checks[translation_id] += 1
        seen = self._checks[translation_id]
        if seen > self._checks_before_complete:
            return TranslationStatus(state=COMPLETE, progress=100)
        progress = int(100 * seen / (self._checks_before_complete + 1))
        return TranslationStatus(state=PROCESSING, progress=progress)

    async def fetch_result(self, translation_id: str) -> Any:
        return copy.deepcopy(self._payload)
