import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import alerts.engine as detector_module
import core.config as config_module
import core.engine as engine_module
import db.sqlite as sqlite_module
import db.stores as stores_module


BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)

HIGH_CPU = {
    "alert_name": "High CPU",
    "alert_type": "high_utilization",
    "rsi_thresholds": {"enabled": True},
    "stochastic_thresholds": {"enabled": True},
    "williams_r_thresholds": {"enabled": True},
}


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("CONFLUENCE_DB_PATH", str(tmp_path / "api.db"))
    for module, name in (
        (config_module, "_settings"),
        (sqlite_module, "_storage"),
        (stores_module, "_window_source"),
        (stores_module, "_configuration_source"),
        (stores_module, "_alert_history"),
        (detector_module, "_detector"),
        (engine_module, "_engine"),
    ):
        monkeypatch.setattr(module, name, None)

    from main import app

    with TestClient(app) as test_client:
        yield test_client


def _report_series(client, values, agent_id="web-1"):
    responses = []
    for i, value in enumerate(values):
        payload = {
            "collected_at": (BASE + timedelta(minutes=5 * i)).isoformat(),
            "cpu_percent": value,
            "memory_percent": 40.0,
        }
        response = client.post(f"/api/metrics/{agent_id}/report", json=payload)
        assert response.status_code == 200
        responses.append(response.json())
    return responses


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_resolutions(client):
    data = client.get("/api/metrics/resolutions").json()

    assert len(data["resolutions"]) == 6
    assert data["default"] == "raw"


def test_configuration_endpoints(client):
    created = client.post("/api/alerts/configurations", json=HIGH_CPU)
    assert created.status_code == 200
    config_id = created.json()["configuration"]["id"]

    assert client.get(f"/api/alerts/configurations/{config_id}").json()["configuration"]["alert_name"] == "High CPU"

    updated = client.put(f"/api/alerts/configurations/{config_id}", json={"min_indicator_count": 3})
    assert updated.json()["configuration"]["min_indicator_count"] == 3

    assert client.put(f"/api/alerts/configurations/{config_id}", json={"alert_type": "nope"}).status_code == 400
    assert client.delete(f"/api/alerts/configurations/{config_id}").status_code == 200

    listing = client.get("/api/alerts/configurations", params={"enabled_only": True}).json()
    assert listing["count"] == 0
    assert client.get("/api/alerts/configurations/999").status_code == 404


def test_invalid_configuration_is_rejected(client):
    response = client.post("/api/alerts/configurations", json={**HIGH_CPU, "alert_type": "sideways"})

    assert response.status_code == 400


def test_reporting_triggers_one_alert_then_cools_down(client):
    client.post("/api/alerts/configurations", json=HIGH_CPU)

    responses = _report_series(client, [float(v) for v in range(50, 66)])
    counts = [r["alert_count"] for r in responses]

    assert counts[:13] == [0] * 13
    assert counts[13] == 1
    assert sum(counts) == 1

    alert = responses[13]["alerts"][0]
    assert alert["severity"] == "low"
    assert alert["indicator_count"] == 2

    history = client.get("/api/alerts/history", params={"agent_id": "web-1"}).json()
    assert history["count"] == 1
    stored = history["alerts"][0]
    assert stored["metric_values"]["cpu_percent"] == 63.0
    assert set(stored["contributing_indicators"]) == {"Stochastic", "Williams %R"}

    recent = client.get("/api/alerts/recent").json()
    assert recent["count"] == 1


def test_alert_lifecycle(client):
    client.post("/api/alerts/configurations", json=HIGH_CPU)
    _report_series(client, [float(v) for v in range(50, 65)])
    alert_id = client.get("/api/alerts/active").json()["alerts"][0]["id"]

    acknowledged = client.post(f"/api/alerts/history/{alert_id}/acknowledge", json={"acknowledged_by": "ops"})
    assert acknowledged.json()["alert"]["acknowledged_by"] == "ops"

    resolved = client.post(f"/api/alerts/history/{alert_id}/resolve", json={"resolved_by": "ops", "notes": "scaled out"})
    assert resolved.json()["alert"]["resolved_at"] is not None

    assert client.get("/api/alerts/active").json()["count"] == 0
    assert client.get(f"/api/alerts/history/{alert_id}").json()["alert"]["notes"] == "scaled out"
    assert client.post("/api/alerts/history/999/resolve", json={}).status_code == 404

    stats = client.get("/api/alerts/stats").json()
    assert stats["history"]["total_alerts"] == 1
    assert stats["history"]["resolved_count"] == 1
    assert stats["detector"]["triggers"] == 1


def test_indicator_and_window_inspection(client):
    assert client.get("/api/metrics/web-1/indicators").status_code == 404

    _report_series(client, [float(v) for v in range(50, 65)])

    indicators = client.get("/api/metrics/web-1/indicators").json()["indicators"]
    assert indicators["rsi"]["value"] == 100.0
    assert indicators["williams_r"]["signal"] == "high_extreme"

    window = client.get("/api/metrics/web-1/window", params={"lookback": 5}).json()
    assert window["count"] == 5
    assert window["data"][-1]["value"] == 64.0

    latest = client.get("/api/metrics/web-1/latest").json()
    assert latest["cpu_percent"] == 64.0
    assert client.get("/api/metrics/nobody/latest").status_code == 404


def test_resolution_override(client):
    response = client.put("/api/metrics/web-1/resolution", json={"resolution": "15min"})
    assert response.json()["resolution"] == "15min"

    assert client.put("/api/metrics/web-1/resolution", json={"resolution": "2min"}).status_code == 400

    cleared = client.put("/api/metrics/web-1/resolution", json={"resolution": None})
    assert cleared.json()["resolution"] == "raw"
    assert cleared.json()["override"] is None


def test_invalid_report_is_rejected(client):
    response = client.post("/api/metrics/web-1/report", json={"cpu_percent": "lots"})

    assert response.status_code == 400


def test_alert_test_endpoint(client):
    client.post("/api/alerts/configurations", json=HIGH_CPU)

    result = client.post("/api/alerts/test", json={"values": list(range(50, 65))}).json()
    assert result["configurations_evaluated"] == 1
    assert result["triggered_count"] == 1
    assert result["triggered"][0]["severity"] == "medium"

    assert client.post("/api/alerts/test", json={"values": [1.0, 2.0]}).status_code == 400
    assert client.get("/api/alerts/history").json()["count"] == 0


def test_csv_upload_backfills_history(client):
    rows = ["timestamp,cpu_percent,memory_percent"]
    rows += [f"{(BASE + timedelta(minutes=5 * i)).isoformat()},{20 + i},{50}" for i in range(24)]
    rows.append("not-a-time,10,10")

    response = client.post(
        "/api/upload/csv",
        params={"agent_id": "db-1"},
        files={"file": ("history.csv", "\n".join(rows), "text/csv")},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["count"] == 24
    assert data["errors"] == 1
    assert data["candles"] > 0

    window = client.get("/api/metrics/db-1/window", params={"resolution": "1hour"}).json()
    assert [point["value"] for point in window["data"]] == [31.0, 43.0]


def test_report_batch_upload(client):
    payload = [
        {"collected_at": (BASE + timedelta(minutes=5 * i)).isoformat(), "cpu": 10 + i}
        for i in range(3)
    ]

    response = client.post("/api/upload/reports", params={"agent_id": "db-2"}, json=payload)

    assert response.json()["count"] == 3


def test_ingestion_stats(client):
    _report_series(client, [10.0, 20.0])

    stats = client.get("/api/metrics/stats").json()

    assert stats["reports_ingested"] == 2
    assert stats["storage"]["metric_count"] == 2
    assert stats["storage"]["agents"] == ["web-1"]


def test_report_ingestion_runs_off_the_event_loop(client, monkeypatch):
    engine = engine_module.get_engine()
    ingest = engine.ingest
    loop_threads = []

    def spy(report):
        try:
            asyncio.get_running_loop()
            loop_threads.append(True)
        except RuntimeError:
            loop_threads.append(False)
        return ingest(report)

    monkeypatch.setattr(engine, "ingest", spy)
    _report_series(client, [10.0])

    assert loop_threads == [False]
