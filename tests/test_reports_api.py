"""Tests for the reports API."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from dashboard.api.main import app
from scripts.lib import supabase_client


@pytest.fixture
def client(tmp_path):
    with patch.dict("os.environ", {"HUBSPOT_ACCESS_TOKEN": "", "HUBSPOT_API_KEY": ""}, clear=False), \
            patch.object(supabase_client, "is_configured", return_value=False):
        with TestClient(app) as test_client:
            app.state.processed_dir = tmp_path
            yield test_client


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["integrations"] == {"supabase": False, "hubspot": False}


class TestReports:
    def test_list(self, client):
        assert client.get("/api/reports").json() == {"reports": ["hygiene", "aging", "forecast", "weekly"]}

    def test_unknown_type_is_404(self, client):
        assert client.get("/api/reports/velocity/latest").status_code == 404
        assert client.post("/api/reports/velocity/run").status_code == 404

    def test_latest_without_saved_report_is_404(self, client):
        assert client.get("/api/reports/hygiene/latest").status_code == 404

    def test_latest_reads_local_export(self, client, tmp_path):
        (tmp_path / "deal_forecast.json").write_text(json.dumps({"total_arr": 3000}), encoding="utf-8")
        response = client.get("/api/reports/forecast/latest")
        assert response.status_code == 200
        assert response.json() == {"total_arr": 3000}

    def test_latest_prefers_supabase_snapshot(self, client):
        with patch.object(supabase_client, "is_configured", return_value=True), \
                patch.object(supabase_client, "get_latest_snapshot", return_value={"total_arr": 1}) as latest:
            response = client.get("/api/reports/forecast/latest")
        assert response.json() == {"total_arr": 1}
        latest.assert_called_once_with("deal_forecast")

    def test_run_without_hubspot_is_503(self, client):
        assert client.post("/api/reports/weekly/run").status_code == 503

    def test_run_returns_report(self, client, sales_pipeline):
        hubspot = MagicMock()
        hubspot.is_configured = True
        hubspot.list_pipelines = AsyncMock(return_value=[sales_pipeline])
        hubspot.search_deals = AsyncMock(return_value=[])
        hubspot.get_owners = AsyncMock(return_value={})
        app.state.hubspot = hubspot

        response = client.post("/api/reports/weekly/run")
        assert response.status_code == 200
        body = response.json()
        assert body["total_pipeline"] == 0
        assert body["stage_breakdown"] == []
