import asyncio
import csv
import io
import sys
import time
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from estimator.app import create_app
from estimator.application import IngestionService, SourceFile
from estimator.core.errors import ExtractionDataError, ReportGenerationError, ReportNotReady
from estimator.core.rates import RateTable
from estimator.core.schema import AssemblySelection, ElementCategory
from estimator.core.settings import IngestionSettings
from estimator.infrastructure import (
    SAMPLE_PAYLOAD,
    InMemoryJobStateStore,
    TranslationStatus,
    TranslationTransportError,
)

FAST = IngestionSettings(poll_interval=0, max_attempts=10, job_timeout=30, step_timeout=5)

TEN_ELEMENT_PAYLOAD = {
    "elements": {
        "structural": [
            {"id": "COL001", "type": "Concrete Column", "quantity": 12, "unit": "ea", "unit_cost": 3750},
            {"id": "COL002", "type": "Concrete Column", "quantity": 8, "unit": "ea", "unit_cost": 3750},
            {"id": "BEAM001", "type": "Steel Beam IPE400", "quantity": 24, "unit": "ea", "unit_cost": 3000},
            {"id": "SLAB001", "type": "Concrete Slab 200mm", "quantity": 850, "unit": "m²", "unit_cost": 165},
        ],
        "architectural": [
            {"id": "WALL001", "type": "Masonry Wall", "quantity": 320, "unit": "m²", "unit_cost": 180},
            {"id": "DOOR001", "type": "Timber Door", "quantity": 18, "unit": "ea", "unit_cost": 1200},
            {"id": "WIN001", "type": "Aluminum Window", "quantity": 35, "unit": "m²", "unit_cost": 2500},
        ],
        "mep": [
            {"id": "HVAC001", "type": "Air Conditioning", "quantity": 850, "unit": "m²", "unit_cost": 180},
            {"id": "ELEC001", "type": "Electrical Services", "quantity": 850, "unit": "m²", "unit_cost": 80},
        ],
        "external": [
            {"id": "ROOF001", "type": "Colorbond Roofing", "quantity": 400, "unit": "m²", "unit_cost": 80},
        ],
    },
    "accuracy": "±5%",
}


def _processing(progress: int) -> TranslationStatus:
    return TranslationStatus(state="processing", progress=progress)


def _complete() -> TranslationStatus:
    return TranslationStatus(state="complete", progress=100)


def _model_file(tmp_path: Path, name: str = "test.ifc", size: int = 5 * 1024 * 1024) -> Path:
    path = tmp_path / name
    path.write_bytes(b"0" * size)
    return path


def test_ifc_upload_to_cost_report(tmp_path, make_service):
    fake = make_service(
        [_processing(25), _processing(50), _processing(75), _complete()],
        payload=TEN_ELEMENT_PAYLOAD,
    )
    service = IngestionService(InMemoryJobStateStore(), fake, settings=FAST, rate_table=RateTable())
    events = []
    service.events.subscribe(events.append)

    async def scenario():
        accepted = await service.upload(SourceFile.from_path(_model_file(tmp_path)))
        job = await service.wait(accepted["job_id"])
        return accepted, job

    accepted, job = asyncio.run(scenario())

    assert accepted == {"job_id": "job-00001", "accepted_file_name": "test.ifc"}
    assert job.status.value == "complete"
    assert job.file_size_bytes == 5 * 1024 * 1024
    assert "translating" in [event.status for event in events]

    status = service.status(job.id)
    assert status["status"] == "complete"
    assert status["progress_percent"] == 100
    assert status["attempts"] == 4
    assert len(status["elements"]) == 10

    report = service.report(job.id)
    counts = {breakdown.category: breakdown.element_count for breakdown in report.categories}
    assert counts == {
        ElementCategory.STRUCTURAL: 4,
        ElementCategory.ARCHITECTURAL: 3,
        ElementCategory.MEP: 2,
        ElementCategory.FINISHES: 0,
        ElementCategory.EXTERNAL: 1,
        ElementCategory.UNKNOWN: 0,
    }
    assert report.total_elements == 10
    assert report.total_cost == sum(breakdown.subtotal for breakdown in report.categories)
    assert report.total_cost == Decimal("706950.00")
    assert report.accuracy_band == "±5%"
    assert report.processing_duration is not None
    assert report.coverage_gaps == ()


def test_estimate_adds_parametric_assemblies(tmp_path, make_service):
    fake = make_service([_complete()], payload=SAMPLE_PAYLOAD)
    service = IngestionService(InMemoryJobStateStore(), fake, settings=FAST)

    async def scenario():
        accepted = await service.upload(SourceFile.from_path(_model_file(tmp_path, "tower.rvt", 1024)))
        return await service.wait(accepted["job_id"])

    job = asyncio.run(scenario())
    selections = [AssemblySelection(assembly_id="finished_wall", quantity=10, escalation_percent=5)]

    estimate = service.estimate(job.id, selections)

    assert estimate.assemblies_total == Decimal("840.00")
    assert estimate.total_cost == service.report(job.id).total_cost + Decimal("840.00")
    assert service.report(job.id).parametric_assemblies == ()


def test_unreadable_result_is_reported_without_failing_job(tmp_path, make_service):
    fake = make_service([_complete()], payload="<<not json>>")
    service = IngestionService(InMemoryJobStateStore(), fake, settings=FAST, rate_table=RateTable())

    async def scenario():
        accepted = await service.upload(SourceFile.from_path(_model_file(tmp_path, "plan.dxf", 1024)))
        return await service.wait(accepted["job_id"])

    job = asyncio.run(scenario())

    assert job.status.value == "complete"
    assert service.status(job.id)["report_error"]["kind"] == "ExtractionDataError"
    with pytest.raises(ExtractionDataError):
        service.report(job.id)


def test_coerced_fields_reach_report_gaps(tmp_path, make_service):
    payload = {
        "elements": {
            "structural": [
                {"id": "COL001", "type": "Concrete Column", "quantity": -5, "unit": "ea", "unit_cost": 3750},
                {"id": "SLAB001", "type": "Concrete Slab", "quantity": 1e30, "unit": "m²", "unit_cost": 165},
                {"id": "BEAM001", "type": "Steel Beam", "quantity": 2, "unit": "ea", "unit_cost": 3000},
            ]
        }
    }
    fake = make_service([_complete()], payload=payload)
    service = IngestionService(InMemoryJobStateStore(), fake, settings=FAST, rate_table=RateTable())

    async def scenario():
        accepted = await service.upload(SourceFile.from_path(_model_file(tmp_path, "frame.ifc", 1024)))
        return await service.wait(accepted["job_id"])

    job = asyncio.run(scenario())

    status = service.status(job.id)
    assert len(status["elements"]) == 3
    assert "report_error" not in status
    report = service.report(job.id)
    assert report.total_cost == Decimal("6000.00")
    assert len(report.coverage_gaps) == 2
    assert report.coverage_gaps[0] == "COL001: quantity -5 is negative, using 0"
    assert report.coverage_gaps[1].startswith("SLAB001: quantity")
    estimate = service.estimate(job.id, [])
    assert estimate.coverage_gaps == report.coverage_gaps


def test_unexpected_report_failure_is_recorded(tmp_path, make_service, monkeypatch):
    def broken_aggregate(*args, **kwargs):
        raise RuntimeError("rate lookup exploded")

    monkeypatch.setattr("estimator.application.ingestion.aggregate", broken_aggregate)
    fake = make_service([_complete()], payload=SAMPLE_PAYLOAD)
    service = IngestionService(InMemoryJobStateStore(), fake, settings=FAST)

    async def scenario():
        accepted = await service.upload(SourceFile.from_path(_model_file(tmp_path, "tower.rvt", 1024)))
        return await service.wait(accepted["job_id"])

    job = asyncio.run(scenario())

    assert job.status.value == "complete"
    report_error = service.status(job.id)["report_error"]
    assert report_error["kind"] == "ReportGenerationError"
    assert "rate lookup exploded" in report_error["message"]
    with pytest.raises(ReportGenerationError):
        service.report(job.id)

def test_report_before_completion_is_not_ready(tmp_path, make_service):
    fake = make_service(default=_processing(10))
    service = IngestionService(
        InMemoryJobStateStore(),
        fake,
        settings=IngestionSettings(poll_interval=30),
        rate_table=RateTable(),
    )

    async def scenario():
        accepted = await service.upload(SourceFile.from_path(_model_file(tmp_path, "site.dwg", 1024)))
        job_id = accepted["job_id"]
        with pytest.raises(ReportNotReady):
            service.report(job_id)
        cancelled = service.cancel(job_id)
        await service.wait(job_id)
        return cancelled

    cancelled = asyncio.run(scenario())

    assert cancelled["cancelled"] is True
    assert cancelled["status"] == "failed"


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------
@pytest.fixture()
def make_client(tmp_path, monkeypatch, make_service):
    monkeypatch.setenv("UPLOADS_ROOT", str(tmp_path / "uploads"))

    def factory(fake=None, **settings):
        values = {"poll_interval": 0, "max_upload_bytes": 1024 * 1024}
        values.update(settings)
        fake = fake or make_service([_processing(50), _complete()], payload=SAMPLE_PAYLOAD)
        service = IngestionService(InMemoryJobStateStore(), fake, settings=IngestionSettings(**values))
        return TestClient(create_app(service))

    return factory


def _wait_for_elements(client: TestClient, job_id: str) -> dict:
    for _ in range(200):
        body = client.get(f"/api/jobs/{job_id}").json()
        if "elements" in body or body["status"] in {"failed", "timed_out"}:
            return body
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


def test_api_end_to_end(make_client, tmp_path):
    with make_client() as client:
        response = client.post(
            "/api/jobs",
            files={"file": ("test.ifc", b"ISO-10303-21;" * 100, "application/octet-stream")},
        )
        assert response.status_code == 200
        job_id = response.json()["job_id"]
        assert response.json()["accepted_file_name"] == "test.ifc"

        status = _wait_for_elements(client, job_id)
        assert status["status"] == "complete"
        assert len(status["elements"]) == 15

        report = client.get(f"/api/jobs/{job_id}/report")
        assert report.status_code == 200
        body = report.json()
        assert Decimal(body["total_cost"]) == Decimal("929950")
        assert body["accuracy_band"] == "±2.1%"
        assert [item["category"] for item in body["categories"]] == [
            "Structural",
            "Architectural",
            "MEP",
            "Finishes",
            "External",
            "Unknown",
        ]

        export = client.get(f"/api/jobs/{job_id}/export.csv")
        assert export.status_code == 200
        assert export.headers["content-type"].startswith("text/csv")
        rows = list(csv.DictReader(io.StringIO(export.text)))
        assert len(rows) == 15
        assert sum(Decimal(row["total_cost"]) for row in rows) == Decimal(body["total_cost"])

        estimate = client.post(
            f"/api/jobs/{job_id}/estimate",
            json={"selections": [{"assembly_id": "solar_power_system", "quantity": 1, "escalation_percent": 5}]},
        )
        assert estimate.status_code == 200
        assert Decimal(estimate.json()["assemblies_total"]) == Decimal("10500")

        listing = client.get("/api/jobs").json()["items"]
        assert [item["job_id"] for item in listing] == [job_id]

        cancel = client.post(f"/api/jobs/{job_id}/cancel")
        assert cancel.json() == {"job_id": job_id, "cancelled": False, "status": "complete"}


def test_api_rejects_unsupported_format(make_client, make_service):
    fake = make_service()
    with make_client(fake) as client:
        response = client.post("/api/jobs", files={"file": ("model.obj", b"v 0 0 0", "text/plain")})

    assert response.status_code == 415
    assert response.json()["error"] == "InvalidFormat"
    assert fake.submitted == []


def test_api_rejects_oversized_upload(make_client, make_service):
    fake = make_service()
    with make_client(fake, max_upload_bytes=1024) as client:
        response = client.post("/api/jobs", files={"file": ("big.ifc", b"0" * 2048, "application/octet-stream")})
        listing = client.get("/api/jobs").json()["items"]

    assert response.status_code == 413
    assert response.json()["error"] == "PayloadTooLarge"
    assert listing == []
    assert fake.submitted == []


def test_api_reports_upload_failure(make_client, make_service):
    fake = make_service(submit_error=TranslationTransportError("service unavailable"))
    with make_client(fake) as client:
        response = client.post("/api/jobs", files={"file": ("test.ifc", b"ISO", "application/octet-stream")})
        listing = client.get("/api/jobs").json()["items"]

    assert response.status_code == 502
    assert response.json()["error"] == "UploadFailed"
    assert listing == []


def test_api_unknown_job_is_404(make_client):
    with make_client() as client:
        assert client.get("/api/jobs/job-99999").status_code == 404
        assert client.get("/api/jobs/job-99999/report").json()["error"] == "JobNotFound"


def test_api_rejects_bad_selections(make_client):
    with make_client() as client:
        job_id = client.post("/api/jobs", files={"file": ("test.ifc", b"ISO", "application/octet-stream")}).json()["job_id"]
        _wait_for_elements(client, job_id)

        not_a_list = client.post(f"/api/jobs/{job_id}/estimate", json={"selections": {"assembly_id": "x"}})
        negative = client.post(
            f"/api/jobs/{job_id}/estimate",
            json={"selections": [{"assembly_id": "finished_wall", "quantity": -1}]},
        )

    assert not_a_list.status_code == 400
    assert negative.status_code == 400


def test_api_lists_assemblies(make_client):
    with make_client() as client:
        items = client.get("/api/assemblies").json()["items"]

    assert len(items) == 10
    assert {"finished_wall", "solar_power_system"} <= {item["id"] for item in items}


def test_api_report_generation_failure_is_500(make_client, monkeypatch):
    def broken_aggregate(*args, **kwargs):
        raise RuntimeError("rate lookup exploded")

    monkeypatch.setattr("estimator.application.ingestion.aggregate", broken_aggregate)
    with make_client() as client:
        job_id = client.post("/api/jobs", files={"file": ("test.ifc", b"ISO", "application/octet-stream")}).json()["job_id"]
        for _ in range(200):
            if "report_error" in client.get(f"/api/jobs/{job_id}").json():
                break
            time.sleep(0.01)
        response = client.get(f"/api/jobs/{job_id}/report")

    assert response.status_code == 500
    assert response.json()["error"] == "ReportGenerationError"
