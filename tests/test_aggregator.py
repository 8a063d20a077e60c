"""Unit tests for the aggregation logic."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from backend.client import BackendError
from models.records import Average, ParameterType, SensorMeta, TimeWindow
from services.aggregator import (
    AnalyticsAggregator,
    compute_bucket_minutes,
    filter_in_window,
    weighted_average,
)
from services.errors import NoSensorsError
from tests.conftest import FakeBackend, paged

WINDOW = TimeWindow(
    start=datetime(2024, 3, 1, tzinfo=timezone.utc),
    end=datetime(2024, 3, 31, 23, 59, tzinfo=timezone.utc),
)
OUTSIDE_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

TEMP = SensorMeta(id=1, name="Temperatura estanque 1", unit="°C", facility="Estanque 1", type="Temperatura")
PH = SensorMeta(id=2, name="pH estanque 1", unit="pH", facility="Estanque 1", type="pH")
OXY = SensorMeta(id=3, name="Oxígeno estanque 1", unit="mg/L", facility="Estanque 1", type="Oxígeno")


def _avg(promedio: float, muestras: Optional[int] = None, day: int = 10) -> Average:
    return Average(
        timestamp=datetime(2024, 3, day, tzinfo=timezone.utc),
        promedio=promedio,
        muestras=muestras,
    )


def _raw_avg(promedio: float, muestras: Optional[int] = None, day: int = 10, hour: int = 0) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"timestamp": f"2024-03-{day:02d}T{hour:02d}:00:00Z", "promedio": promedio}
    if muestras is not None:
        payload["muestras"] = muestras
    return payload


def _rows(sensor_id: int, count: int) -> List[Dict[str, Any]]:
    return [
        {"id_sensor_instalado": sensor_id, "valor": float(index), "tomada_en": "2024-03-05T00:00:00Z"}
        for index in range(count)
    ]


def _run(fake_backend: FakeBackend, method: str, *args: Any, **kwargs: Any) -> Any:
    async def scenario() -> Any:
        async with fake_backend.client() as client:
            aggregator = AnalyticsAggregator(client)
            return await getattr(aggregator, method)(*args, **kwargs)

    return asyncio.run(scenario())


def test_weighted_average_with_equal_weights() -> None:
    avg, weight = weighted_average([_avg(10, 2), _avg(20, 2)])

    assert avg == 15
    assert weight == 4


def test_weighted_average_excludes_zero_sample_entries() -> None:
    avg, weight = weighted_average([_avg(10, 0), _avg(20, 4)])

    assert avg == 20
    assert weight == 4


def test_weighted_average_falls_back_to_plain_mean_without_counts() -> None:
    avg, weight = weighted_average([_avg(6.0), _avg(8.0), _avg(10.0, 0)])

    assert avg == pytest.approx(8.0)
    assert weight == 3


def test_weighted_average_of_nothing_is_zero() -> None:
    assert weighted_average([]) == (0.0, 0)


def test_bucket_minutes_targets_point_count_with_floor() -> None:
    one_hour = TimeWindow(start=WINDOW.start, end=WINDOW.start + timedelta(hours=1))
    thirty_days = TimeWindow(start=WINDOW.start, end=WINDOW.start + timedelta(days=30))

    assert compute_bucket_minutes(one_hour, 100) == 5
    assert compute_bucket_minutes(thirty_days, 100) == 432
    assert compute_bucket_minutes(thirty_days, 240) == 180


def test_filter_in_window_drops_out_of_range_and_invalid_timestamps() -> None:
    entries = [
        _avg(1, day=1),
        Average(timestamp=None, promedio=2),
        Average(timestamp=datetime(2024, 4, 2, tzinfo=timezone.utc), promedio=3),
        _avg(4, day=20),
    ]

    assert [entry.promedio for entry in filter_in_window(entries, WINDOW)] == [1, 4]


def test_summary_tolerates_failing_sensor(fake_backend: FakeBackend) -> None:
    sensors = [SensorMeta(id=1, name="a"), SensorMeta(id=2, name="b"), SensorMeta(id=3, name="c")]
    fake_backend.readings[1] = paged(_rows(1, 5))
    fake_backend.readings[3] = paged(_rows(3, 7))
    fake_backend.failing.add(2)

    summary = _run(fake_backend, "summarize", sensors, WINDOW, now=OUTSIDE_NOW)

    assert summary.total_lecturas == 12
    assert summary.lecturas_hoy == 0
    assert summary.failed_sensors == [2]
    count_requests = fake_backend.requests_to("/api/lecturas")
    assert all(request.url.params["limit"] == "1" for request in count_requests)


def test_summary_counts_today_when_range_includes_it(fake_backend: FakeBackend) -> None:
    fake_backend.readings[1] = paged(_rows(1, 9))
    now = datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)

    summary = _run(fake_backend, "summarize", [TEMP], WINDOW, now=now)

    count_requests = fake_backend.requests_to("/api/lecturas")
    assert len(count_requests) == 2
    assert count_requests[1].url.params["desde"] == "2024-03-15T00:00:00Z"
    assert count_requests[1].url.params["hasta"].startswith("2024-03-15T23:59:59")
    assert summary.total_lecturas == 9
    assert summary.lecturas_hoy == 9


def test_summary_groups_averages_by_detected_parameter(fake_backend: FakeBackend) -> None:
    second_temp = SensorMeta(id=4, name="Sonda", unit="°C")
    fake_backend.averages[1] = [_raw_avg(20, 1), _raw_avg(22, 3)]
    february = _raw_avg(99, 50)
    february["timestamp"] = "2024-02-01T00:00:00Z"
    fake_backend.averages[4] = [_raw_avg(30, 4), february]
    fake_backend.averages[2] = [_raw_avg(7.0), _raw_avg(8.0)]
    fake_backend.averages[3] = [_raw_avg(5.0, 2), _raw_avg(6.0, 0)]

    summary = _run(fake_backend, "summarize", [TEMP, PH, OXY, second_temp], WINDOW, now=OUTSIDE_NOW)

    # (20*1 + 22*3 + 30*4) / 8; the February bucket is outside the window.
    assert summary.promedio_temperatura == pytest.approx(25.75)
    assert summary.promedio_ph == pytest.approx(7.5)
    assert summary.promedio_oxigeno == pytest.approx(5.0)
    bucket_params = {request.url.params["bucketMinutes"] for request in fake_backend.requests_to("/api/promedios")}
    assert bucket_params == {str(compute_bucket_minutes(WINDOW, 100))}


def test_summary_without_sensors_is_zero(fake_backend: FakeBackend) -> None:
    summary = _run(fake_backend, "summarize", [], WINDOW)

    assert summary.total_lecturas == 0
    assert summary.promedio_temperatura == 0.0
    assert fake_backend.requests == []


def test_sensor_averages_are_sorted_descending(fake_backend: FakeBackend) -> None:
    fake_backend.averages[1] = [_raw_avg(24, 2), _raw_avg(26, 2)]
    fake_backend.averages[2] = [_raw_avg(7.2)]
    fake_backend.averages[3] = [_raw_avg(6.0, 3)]

    rows = _run(fake_backend, "sensor_averages", [PH, OXY, TEMP], WINDOW)

    assert [row.sensor_id for row in rows] == [1, 2, 3]
    assert rows[0].promedio == pytest.approx(25.0)
    assert rows[0].muestras == 4
    assert rows[0].unit == "°C"


def test_sensor_averages_retry_without_range_and_filter_locally(fake_backend: FakeBackend) -> None:
    fake_backend.reject_ranged_averages.add(1)
    outside = _raw_avg(100, 10)
    outside["timestamp"] = "2023-12-31T00:00:00Z"
    fake_backend.averages[1] = [_raw_avg(20, 1), outside]

    rows = _run(fake_backend, "sensor_averages", [TEMP], WINDOW)

    requests = fake_backend.requests_to("/api/promedios")
    assert len(requests) == 2
    assert "desde" not in requests[1].url.params
    assert rows[0].promedio == pytest.approx(20.0)


def test_sensor_averages_propagate_second_failure(fake_backend: FakeBackend) -> None:
    fake_backend.failing.add(1)

    with pytest.raises(BackendError):
        _run(fake_backend, "sensor_averages", [TEMP], WINDOW)


def test_trend_merges_sensors_by_timestamp(fake_backend: FakeBackend) -> None:
    second_temp = SensorMeta(id=4, name="Sonda", unit="°C")
    fake_backend.averages[1] = [_raw_avg(20, 1, hour=1), _raw_avg(21, 0, hour=0)]
    fake_backend.averages[4] = [_raw_avg(30, 3, hour=1)]
    fake_backend.averages[2] = [_raw_avg(7.0, 1, hour=1)]

    points = _run(fake_backend, "trend", [TEMP, PH, second_temp], WINDOW, ParameterType.temperature)

    assert [point.timestamp.hour for point in points] == [0, 1]
    assert points[0].value == pytest.approx(21.0)
    assert points[0].muestras == 1
    assert points[1].value == pytest.approx((20 * 1 + 30 * 3) / 4)
    assert points[1].muestras == 4
    queried = {request.url.params["sensorInstaladoId"] for request in fake_backend.requests_to("/api/promedios")}
    assert queried == {"1", "4"}


def test_collect_export_caps_sensors_unless_all_requested(fake_backend: FakeBackend) -> None:
    sensors = [SensorMeta(id=index, name=f"s{index}") for index in range(1, 26)]
    for sensor in sensors:
        fake_backend.readings[sensor.id] = paged(_rows(sensor.id, 2))

    capped = _run(fake_backend, "collect_export", sensors, WINDOW)
    assert len(capped) == 40
    assert {reading.sensor_id for reading in capped} == set(range(1, 21))

    everything = _run(fake_backend, "collect_export", sensors, WINDOW, include_all=True)
    assert len(everything) == 50


def test_collect_export_keeps_sensor_order_and_skips_failures(fake_backend: FakeBackend) -> None:
    fake_backend.readings[1] = paged(_rows(1, 3))
    fake_backend.readings[3] = _rows(3, 2)
    fake_backend.failing.add(2)
    progress: List[tuple] = []

    readings = _run(
        fake_backend,
        "collect_export",
        [TEMP, PH, OXY],
        WINDOW,
        on_progress=lambda done, total: progress.append((done, total)),
    )

    assert [reading.sensor_id for reading in readings] == [1, 1, 1, 3, 3]
    assert progress == [(0, 3), (1, 3), (2, 3), (3, 3)]


def test_collect_export_requires_sensors(fake_backend: FakeBackend) -> None:
    with pytest.raises(NoSensorsError):
        _run(fake_backend, "collect_export", [], WINDOW)


def test_count_reads_total_even_when_sample_row_is_malformed(fake_backend: FakeBackend) -> None:
    def serve(page: int, limit: int) -> Dict[str, Any]:
        return {
            "data": [{"id_sensor_instalado": 1, "valor": None, "tomada_en": "2024-03-05T00:00:00Z"}],
            "pagination": {"page": page, "limit": limit, "total": 500, "totalPages": 500},
        }

    fake_backend.readings[1] = serve

    summary = _run(fake_backend, "summarize", [TEMP], WINDOW, now=OUTSIDE_NOW)

    assert summary.total_lecturas == 500
    assert summary.failed_sensors == []


def test_collect_export_keeps_valid_rows_around_malformed_ones(fake_backend: FakeBackend) -> None:
    rows = _rows(1, 4)
    rows[1]["valor"] = None
    rows[3]["valor"] = "sin dato"
    fake_backend.readings[1] = paged(rows)

    readings = _run(fake_backend, "collect_export", [TEMP], WINDOW)

    assert [reading.value for reading in readings] == [0.0, 2.0]
