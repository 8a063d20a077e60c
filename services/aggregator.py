"""Aggregation of sensor readings and pre-computed averages across sensors."""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from backend.client import BackendClient, BackendError
from models.records import (
    AnalyticsSummary,
    Average,
    Page,
    ParameterType,
    Reading,
    SensorAverageRow,
    SensorMeta,
    TimeWindow,
    TrendPoint,
)
from services.classifier import classify_sensor
from services.concurrency import ProgressCallback, map_with_concurrency, map_with_progress
from services.errors import NoSensorsError
from services.fetcher import DEFAULT_PAGE_SIZE, fetch_all_readings
from settings import Settings

logger = logging.getLogger(__name__)

MIN_BUCKET_MINUTES = 5


def compute_bucket_minutes(window: TimeWindow, target_points: int = 100) -> int:
    """Bucket width that yields roughly ``target_points`` averages, never under 5 minutes."""
    total_minutes = max(1, math.ceil(window.total_minutes))
    bucket = math.ceil(total_minutes / max(1, target_points))
    return max(MIN_BUCKET_MINUTES, bucket)


def weighted_average(entries: Sequence[Average]) -> Tuple[float, float]:
    """Return ``(mean, weight)`` for a group of bucket averages.

    When any entry reports a positive sample count, only those entries take
    part and they are weighted by ``muestras``; entries without a count are
    left out rather than weighted as zero. Otherwise the plain mean of all
    entries is used.
    """
    if not entries:
        return 0.0, 0

    counted = [entry for entry in entries if entry.muestras is not None and entry.muestras > 0]
    if counted:
        weight = sum(entry.muestras for entry in counted)  # type: ignore[misc]
        weighted_sum = sum(entry.promedio * entry.muestras for entry in counted)  # type: ignore[operator]
        return (weighted_sum / weight if weight > 0 else 0.0), weight

    return sum(entry.promedio for entry in entries) / len(entries), len(entries)


def filter_in_window(entries: Iterable[Average], window: TimeWindow) -> List[Average]:
    """Drop averages outside the window, including ones with unparseable timestamps."""
    return [entry for entry in entries if window.contains(entry.timestamp)]


def _finite_or_zero(value: float) -> float:
    return value if math.isfinite(value) else 0.0


@dataclass
class SensorSeries:
    sensor: SensorMeta
    parameter: ParameterType
    averages: List[Average]


class AnalyticsAggregator:
    """Fans backend requests out across sensors and combines the answers."""

    def __init__(
        self,
        client: BackendClient,
        concurrency: int = 3,
        target_points: int = 100,
        export_sensor_cap: int = 20,
        export_page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.client = client
        self.concurrency = concurrency
        self.target_points = target_points
        self.export_sensor_cap = export_sensor_cap
        self.export_page_size = export_page_size

    @classmethod
    def from_settings(cls, client: BackendClient, settings: Settings) -> "AnalyticsAggregator":
        return cls(
            client=client,
            concurrency=settings.fetch_concurrency,
            target_points=settings.target_points,
            export_sensor_cap=settings.export_sensor_cap,
            export_page_size=settings.export_page_size,
        )

    async def load_sensors(self, sensor_ids: Optional[Sequence[int]] = None) -> List[SensorMeta]:
        """List installed sensors, optionally restricted to ``sensor_ids`` (in that order)."""
        sensors = await self.client.list_sensors()
        if not sensor_ids:
            return sensors
        by_id = {sensor.id: sensor for sensor in sensors}
        return [
            by_id.get(sensor_id) or SensorMeta(id=sensor_id, name=f"Sensor {sensor_id}")
            for sensor_id in sensor_ids
        ]

    async def count_readings(
        self, sensors: Sequence[SensorMeta], window: TimeWindow
    ) -> Tuple[int, List[int]]:
        """Sum reading counts across sensors, returning ``(total, failed_sensor_ids)``.

        Each sensor is asked for a single reading so the envelope's
        ``pagination.total`` can be read back cheaply.
        """

        async def count_one(sensor: SensorMeta) -> Optional[int]:
            try:
                response = await self.client.get_readings(
                    sensor.id, page=1, limit=1, start=window.start, end=window.end
                )
            except Exception as exc:  # noqa: BLE001 - a failed sensor counts as zero
                logger.warning(
                    "Reading count failed; counting sensor as zero",
                    extra={"sensor_id": sensor.id, "reason": str(exc)},
                )
                return None
            if isinstance(response, Page):
                return response.pagination.total
            return len(response)

        counts = await map_with_concurrency(sensors, self.concurrency, count_one)
        failed = [sensor.id for sensor, count in zip(sensors, counts) if count is None]
        return sum(count or 0 for count in counts), failed

    async def _fetch_series(
        self, sensors: Sequence[SensorMeta], window: TimeWindow, bucket_minutes: int
    ) -> List[SensorSeries]:
        async def fetch_one(sensor: SensorMeta) -> SensorSeries:
            try:
                averages = await self.client.get_averages(
                    sensor.id, bucket_minutes, start=window.start, end=window.end
                )
            except Exception as exc:  # noqa: BLE001 - a failed sensor contributes nothing
                logger.warning(
                    "Averages fetch failed; using an empty series",
                    extra={"sensor_id": sensor.id, "reason": str(exc)},
                )
                averages = []
            return SensorSeries(
                sensor=sensor,
                parameter=classify_sensor(sensor),
                averages=filter_in_window(averages, window),
            )

        return await map_with_concurrency(sensors, self.concurrency, fetch_one)

    async def summarize(
        self,
        sensors: Sequence[SensorMeta],
        window: TimeWindow,
        now: Optional[datetime] = None,
    ) -> AnalyticsSummary:
        """Compute the dashboard cards for ``sensors`` over ``window``.

        Individual sensor failures never abort the summary; they contribute
        zero readings and an empty averages series.
        """
        if not sensors:
            logger.info("No sensors selected; returning an empty summary")
            return AnalyticsSummary()

        bucket_minutes = compute_bucket_minutes(window, self.target_points)
        total, failed = await self.count_readings(sensors, window)

        today_count = 0
        current = now or datetime.now(timezone.utc)
        today = current.astimezone(timezone.utc).date()
        if window.includes_day(today):
            today_count, today_failed = await self.count_readings(sensors, TimeWindow.for_day(today))
            failed.extend(sensor_id for sensor_id in today_failed if sensor_id not in failed)

        series = await self._fetch_series(sensors, window, bucket_minutes)
        grouped: Dict[ParameterType, List[Average]] = defaultdict(list)
        for item in series:
            grouped[item.parameter].extend(item.averages)

        summary = AnalyticsSummary(
            total_lecturas=total,
            lecturas_hoy=today_count,
            promedio_temperatura=_finite_or_zero(weighted_average(grouped[ParameterType.temperature])[0]),
            promedio_ph=_finite_or_zero(weighted_average(grouped[ParameterType.ph])[0]),
            promedio_oxigeno=_finite_or_zero(weighted_average(grouped[ParameterType.oxygen])[0]),
            failed_sensors=failed,
        )
        logger.info(
            "Summary computed",
            extra={"record_count": total, "total": len(sensors), "reason": f"failed={failed}" if failed else None},
        )
        return summary

    async def sensor_averages(
        self, sensors: Sequence[SensorMeta], window: TimeWindow
    ) -> List[SensorAverageRow]:
        """One weighted average per sensor, highest first.

        Only the first ``export_sensor_cap`` sensors are queried. When the
        backend rejects the ranged request the averages are requested without
        a range and filtered locally; a second failure propagates.
        """
        selected = list(sensors)[: self.export_sensor_cap]
        bucket_minutes = compute_bucket_minutes(window, self.target_points)

        async def average_one(sensor: SensorMeta) -> SensorAverageRow:
            try:
                averages = await self.client.get_averages(
                    sensor.id, bucket_minutes, start=window.start, end=window.end
                )
            except BackendError as exc:
                logger.info(
                    "Ranged averages rejected; retrying without range",
                    extra={"sensor_id": sensor.id, "reason": str(exc)},
                )
                averages = await self.client.get_averages(sensor.id, bucket_minutes)

            avg, samples = weighted_average(filter_in_window(averages, window))
            return SensorAverageRow(
                sensor_id=sensor.id,
                name=sensor.name or f"Sensor {sensor.id}",
                unit=sensor.unit,
                promedio=_finite_or_zero(avg),
                muestras=_finite_or_zero(float(samples)),
            )

        rows = await map_with_concurrency(selected, self.concurrency, average_one)
        return sorted(rows, key=lambda row: row.promedio, reverse=True)

    async def trend(
        self,
        sensors: Sequence[SensorMeta],
        window: TimeWindow,
        parameter: ParameterType,
    ) -> List[TrendPoint]:
        """Merge averages of every sensor measuring ``parameter`` into one series.

        Buckets sharing a timestamp are combined weighted by sample count;
        buckets without a positive count weigh 1.
        """
        matching = [sensor for sensor in sensors if classify_sensor(sensor) is parameter]
        if not matching:
            return []

        bucket_minutes = compute_bucket_minutes(window, self.target_points)
        series = await self._fetch_series(matching, window, bucket_minutes)

        sums: Dict[datetime, List[float]] = {}
        for item in series:
            for entry in item.averages:
                if entry.timestamp is None or not math.isfinite(entry.promedio):
                    continue
                weight = float(entry.muestras) if entry.muestras and entry.muestras > 0 else 1.0
                bucket = sums.setdefault(entry.timestamp, [0.0, 0.0])
                bucket[0] += entry.promedio * weight
                bucket[1] += weight

        return [
            TrendPoint(timestamp=moment, value=total / weight if weight > 0 else 0.0, muestras=weight)
            for moment, (total, weight) in sorted(sums.items())
        ]

    async def collect_export(
        self,
        sensors: Sequence[SensorMeta],
        window: TimeWindow,
        include_all: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[Reading]:
        """Fetch every reading in ``window`` for the export sensor set.

        Without ``include_all`` only the first ``export_sensor_cap`` sensors
        are exported. A sensor whose fetch fails contributes no readings.
        """
        if not sensors:
            raise NoSensorsError()

        selected = list(sensors) if include_all else list(sensors)[: self.export_sensor_cap]

        async def fetch_one(sensor: SensorMeta) -> List[Reading]:
            try:
                return await fetch_all_readings(
                    self.client,
                    sensor.id,
                    start=window.start,
                    end=window.end,
                    page_size=self.export_page_size,
                )
            except Exception as exc:  # noqa: BLE001 - export continues with partial data
                logger.warning(
                    "Export fetch failed; skipping sensor",
                    extra={"sensor_id": sensor.id, "reason": str(exc)},
                )
                return []

        def log_progress(done: int, total: int) -> None:
            logger.debug("Export progress", extra={"done": done, "total": total})

        per_sensor = await map_with_progress(
            selected, self.concurrency, fetch_one, on_progress or log_progress
        )
        return [reading for readings in per_sensor for reading in readings]
