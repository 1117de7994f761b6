from __future__ import annotations

import asyncio
import io
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from estimator.application import build_translation_service
from estimator.core.settings import IngestionSettings, TranslationServiceSettings
from estimator.core.storage import discard_upload, save_upload
from estimator.infrastructure import HttpTranslationClient, SimulatedTranslationService


def test_ingestion_settings_from_env(monkeypatch):
    monkeypatch.setenv("ESTIMATOR_POLL_INTERVAL", "0.5")
    monkeypatch.setenv("ESTIMATOR_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("ESTIMATOR_JOB_TIMEOUT", "12")
    monkeypatch.setenv("ESTIMATOR_MAX_UPLOAD_MB", "2")

    settings = IngestionSettings.from_env()

    assert settings.poll_interval == 0.5
    assert settings.max_attempts == 3
    assert settings.job_timeout == 12
    assert settings.step_timeout == 30
    assert settings.max_upload_bytes == 2 * 1024 * 1024


def test_ingestion_settings_reject_bad_values(monkeypatch):
    with pytest.raises(ValueError):
        IngestionSettings(max_attempts=0)
    with pytest.raises(ValueError):
        IngestionSettings(job_timeout=0)

    monkeypatch.setenv("ESTIMATOR_MAX_ATTEMPTS", "many")
    with pytest.raises(ValueError):
        IngestionSettings.from_env()


def test_unconfigured_service_falls_back_to_simulation(monkeypatch):
    monkeypatch.delenv("TRANSLATION_API_BASE", raising=False)

    assert isinstance(build_translation_service(), SimulatedTranslationService)


def test_configured_service_uses_http_client():
    config = TranslationServiceSettings(api_base="https://translate.example.com", client_id="id", client_secret="s")

    service = build_translation_service(config)

    assert isinstance(service, HttpTranslationClient)
    asyncio.run(service.aclose())


def test_simulated_service_completes_after_configured_checks(tmp_path):
    service = SimulatedTranslationService(checks_before_complete=2)

    async def scenario():
        translation_id = await service.submit(tmp_path / "test.ifc", "test.ifc")
        states = [await service.status(translation_id) for _ in range(3)]
        payload = await service.fetch_result(translation_id)
        return states, payload

    states, payload = asyncio.run(scenario())

    assert [status.state for status in states] == ["processing", "processing", "complete"]
    assert states[0].progress < states[1].progress < states[2].progress
    assert payload["accuracy"] == "±2.1%"


def test_uploads_are_staged_and_discarded(tmp_path, monkeypatch):
    monkeypatch.setenv("UPLOADS_ROOT", str(tmp_path / "uploads"))

    staged = save_upload("../../etc/model.ifc", io.BytesIO(b"ISO-10303-21;"))

    assert staged.name == "model.ifc"
    assert staged.read_bytes() == b"ISO-10303-21;"
    assert (tmp_path / "uploads").resolve() in staged.parents

    discard_upload(staged)

    assert not staged.exists()
    assert not staged.parent.exists()
    assert (tmp_path / "uploads").exists()
