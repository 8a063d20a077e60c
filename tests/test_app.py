import time
from typing import Dict, Iterator

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from services.factory import AnalyticsServices, build_services
from tests.conftest import FakeBackend, paged

RANGE = {"from": "2024-03-01T00:00:00Z", "to": "2024-03-07T23:59:59Z"}


@pytest.fixture
def api_client(fake_backend: FakeBackend, monkeypatch) -> Iterator[TestClient]:
    built: Dict[str, AnalyticsServices] = {}

    def build_test_services() -> AnalyticsServices:
        services = built.get("default")
        if services is None:
            services = build_services(fake_backend.client(), debounce_ms=0)
            built["default"] = services
        return services

    def cache_clear() -> None:
        built.clear()

    build_test_services.cache_clear = cache_clear  # type: ignore[attr-defined]

    monkeypatch.setattr("app.main.build_default_services", build_test_services)
    monkeypatch.setattr("app.api.build_default_services", build_test_services)

    fake_backend.sensors = [
        {"id_sensor_instalado": 1, "nombre": "Temperatura 1", "unidad_medida": "°C",
         "tipo_medida": "Temperatura", "instalacion": {"nombre_instalacion": "Estanque A"}},
        {"id_sensor_instalado": 2, "nombre": "pH 1", "unidad_medida": "pH", "tipo_medida": "pH"},
    ]
    fake_backend.readings[1] = paged(
        [
            {"id_sensor_instalado": 1, "valor": 23.5, "tipo_medida": "Temperatura",
             "tomada_en": "2024-03-02T08:00:00Z"},
            {"id_sensor_instalado": 1, "valor": 24.0, "tipo_medida": "Temperatura",
             "tomada_en": "2024-03-02T09:00:00Z"},
        ]
    )
    fake_backend.readings[2] = paged(
        [{"id_sensor_instalado": 2, "valor": 7.1, "tipo_medida": "pH", "tomada_en": "2024-03-03T08:00:00Z"}]
    )
    fake_backend.averages[1] = [{"timestamp": "2024-03-02T00:00:00Z", "promedio": 23.75, "muestras": 2}]
    fake_backend.averages[2] = [{"timestamp": "2024-03-03T00:00:00Z", "promedio": 7.1, "muestras": 1}]

    app = create_app()
    with TestClient(app) as client:
        yield client


def _poll(client: TestClient, path: str, done, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    last_payload: dict | None = None
    while time.monotonic() < deadline:
        response = client.get(path)
        assert response.status_code == 200
        payload = response.json()
        last_payload = payload
        if done(payload):
            return payload
        time.sleep(0.02)
    pytest.fail(f"{path} did not settle: {last_payload}")


def test_summary_uses_dashboard_field_names(api_client: TestClient) -> None:
    response = api_client.get("/analytics/summary", params=RANGE)

    assert response.status_code == 200
    body = response.json()
    assert body["totalLecturas"] == 3
    assert body["lecturasHoy"] == 0
    assert body["promedioTemperatura"] == pytest.approx(23.75)
    assert body["promedioPH"] == pytest.approx(7.1)
    assert body["promedioOxigeno"] == 0.0
    assert body["sensoresFallidos"] == []


def test_summary_reports_failed_sensors(api_client: TestClient, fake_backend: FakeBackend) -> None:
    fake_backend.failing.add(2)

    response = api_client.get("/analytics/summary", params=RANGE)

    assert response.status_code == 200
    assert response.json()["totalLecturas"] == 2
    assert response.json()["sensoresFallidos"] == [2]


def test_inverted_range_is_rejected(api_client: TestClient) -> None:
    response = api_client.get("/analytics/summary", params={"from": RANGE["to"], "to": RANGE["from"]})

    assert response.status_code == 400


def test_invalid_sensor_listing_maps_to_bad_gateway(api_client: TestClient, fake_backend: FakeBackend) -> None:
    fake_backend.sensors = {"unexpected": True}  # type: ignore[assignment]

    response = api_client.get("/analytics/summary", params=RANGE)

    assert response.status_code == 502
    assert response.json()["detail"].startswith("Backend request failed")


def test_sensor_averages_and_trend(api_client: TestClient) -> None:
    averages = api_client.get("/analytics/averages", params=RANGE)
    trend = api_client.get("/analytics/trend", params={**RANGE, "parameter": "ph"})

    assert averages.status_code == 200
    assert [row["sensor_id"] for row in averages.json()] == [1, 2]
    assert trend.status_code == 200
    assert len(trend.json()) == 1
    assert trend.json()[0]["value"] == pytest.approx(7.1)


def test_export_download_is_an_attachment(api_client: TestClient) -> None:
    response = api_client.get("/analytics/export", params={**RANGE, "format": "csv", "sensor_ids": [1]})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == 'attachment; filename="analytics-2024-03-01_2024-03-07.csv"'
    assert response.headers["x-record-count"] == "2"
    assert "# Total lecturas: 2" in response.text


def test_export_without_sensors_returns_not_found(api_client: TestClient, fake_backend: FakeBackend) -> None:
    fake_backend.sensors = []

    response = api_client.get("/analytics/export", params=RANGE)

    assert response.status_code == 404
    assert response.json()["detail"] == "No sensors available for the current filter."


def test_export_job_can_be_polled_and_downloaded(api_client: TestClient) -> None:
    response = api_client.post("/exports", json={**RANGE, "format": "json"})

    assert response.status_code == 202
    export_id = response.json()["export_id"]

    record = _poll(api_client, f"/exports/{export_id}", lambda body: body["status"] not in {"pending", "running"})
    assert record["status"] == "succeeded"
    assert record["record_count"] == 3
    assert record["progress"] == {"done": 2, "total": 2}

    download = api_client.get(f"/exports/{export_id}/download")
    assert download.status_code == 200
    assert download.json()["meta"]["totalLecturas"] == 3


def test_unknown_export_returns_not_found(api_client: TestClient) -> None:
    assert api_client.get("/exports/missing").status_code == 404
    assert api_client.get("/exports/missing/download").status_code == 404


def test_dashboard_commits_latest_range(api_client: TestClient) -> None:
    first = api_client.put("/dashboard/range", json={"from": "2024-01-01T00:00:00Z", "to": "2024-01-02T00:00:00Z"})
    second = api_client.put("/dashboard/range", json=RANGE)

    assert first.status_code == 202
    assert second.status_code == 202
    generation = second.json()["generation"]
    assert generation == first.json()["generation"] + 1

    state = _poll(api_client, "/dashboard/summary", lambda body: body["committed_generation"] == generation)
    assert state["generation"] == generation
    assert state["summary"]["totalLecturas"] == 3


def test_health_endpoints(api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {"status": "ok"}
    assert api_client.get("/").json()["status"] == "ok"
