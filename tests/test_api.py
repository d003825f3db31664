"""Tests for the FastAPI status surface."""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from api.server import app
from conftest import FakeArchive
from edgar_ingest.config import config_from_dict
from edgar_ingest.models import ProcessingRecord, ProcessingStatus as S
from edgar_ingest.pipeline import build_pipeline


@pytest.fixture
def pipeline(tmp_path):
    config = config_from_dict({
        "data_dir": str(tmp_path),
        "log_dir": str(tmp_path / "logs"),
        "filing_types": {"form6k": {"enabled": False}},
        "jobs": {"ticker_sync": {"enabled": False}},
    })
    p = build_pipeline(config, transport=FakeArchive().transport)
    app.state.pipeline = p
    yield p
    app.state.pipeline = None
    p.close()


@pytest.fixture
def client(pipeline):
    return TestClient(app)


class TestApi:
    def test_health(self, client):
        assert client.get("/api/health").json()["status"] == "ok"

    def test_list_jobs(self, client):
        names = {job["name"] for job in client.get("/api/jobs").json()}
        assert names == {"filing_sync", "retry_failed", "auto_backfill", "ticker_sync", "retention_cleanup"}

    def test_get_unknown_job(self, client):
        assert client.get("/api/jobs/nope").status_code == 404

    def test_run_disabled_job(self, client):
        body = client.post("/api/jobs/ticker_sync/run").json()
        assert body["started"] is False
        assert body["detail"] == "disabled"

    def test_run_job_starts_in_background(self, client, pipeline):
        body = client.post("/api/jobs/retention_cleanup/run").json()
        assert body["started"] is True
        assert body["run_id"]

    def test_cancel_idle_job(self, client):
        assert client.post("/api/jobs/filing_sync/cancel").json()["detail"] == "not running"

    def test_statistics(self, client, pipeline):
        pipeline.db.create_record(ProcessingRecord("0000320193-24-000001", "4",
                                                   filing_date=date(2024, 1, 2), status=S.FAILED))
        body = client.get("/api/statistics").json()
        assert "form6k" not in body["filing_types"]
        assert body["filing_types"]["insider"]["failed"] == 1
        assert body["filing_types"]["insider"]["total"] == 1

    def test_get_record(self, client, pipeline):
        pipeline.db.create_record(ProcessingRecord("0000320193-24-000001", "4",
                                                   filing_date=date(2024, 1, 2),
                                                   status=S.FAILED, error_message="HTTP 503",
                                                   retry_count=1))
        body = client.get("/api/records/0000320193-24-000001").json()
        assert body["status"] == "FAILED"
        assert body["error_message"] == "HTTP 503"
        assert body["filing_date"] == "2024-01-02"

    def test_record_not_found_and_bad_format(self, client):
        assert client.get("/api/records/0000320193-24-999999").status_code == 404
        assert client.get("/api/records/garbage").status_code == 400
