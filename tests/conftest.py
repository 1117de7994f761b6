from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from estimator.application import reset_ingestion_state
from estimator.infrastructure.translation import TranslationStatus


def processing(progress: int = 0) -> TranslationStatus:
    return TranslationStatus(state="processing", progress=progress)


def complete() -> TranslationStatus:
    return TranslationStatus(state="complete", progress=100)


class ScriptedTranslationService:
    """Translation service double that replays a list of status answers.

    Items in ``statuses`` are returned in order; exception instances are
    raised instead. Once the script runs out ``default`` is used.
    """

    def __init__(
        self,
        statuses: list[Any] | None = None,
        *,
        default: Any = None,
        payload: Any = None,
        submit_error: Exception | None = None,
        fetch_errors: list[Exception] | None = None,
    ) -> None:
        self.statuses = list(statuses or [])
        self.default = default if default is not None else processing(10)
        self.payload = payload
        self.submit_error = submit_error
        self.fetch_errors = list(fetch_errors or [])
        self.submitted: list[str] = []
        self.status_calls = 0
        self.fetch_calls = 0
        self.on_status: Callable[[int], None] | None = None

    async def submit(self, path: Path, filename: str) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(filename)
        return f"remote-{len(self.submitted)}"

    async def status(self, translation_id: str) -> TranslationStatus:
        self.status_calls += 1
        if self.on_status is not None:
            self.on_status(self.status_calls)
        item = self.statuses.pop(0) if self.statuses else self.default
        if isinstance(item, BaseException):
            raise item
        return item

    async def fetch_result(self, translation_id: str) -> Any:
        self.fetch_calls += 1
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        return self.payload


@pytest.fixture(autouse=True)
def reset_state():
    reset_ingestion_state()
    yield
    reset_ingestion_state()


@pytest.fixture()
def make_service() -> Callable[..., ScriptedTranslationService]:
    return ScriptedTranslationService

