"""Export encoding (CSV / JSON) and background export jobs."""

from __future__ import annotations

import asyncio
import csv
import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Sequence
from uuid import uuid4

from app.schemas import ExportFormat, ExportProgressModel, ExportRecord, ExportStatus
from models.records import Reading, SensorMeta, TimeWindow, isoformat_utc
from services.aggregator import AnalyticsAggregator
from services.concurrency import ProgressCallback
from services.errors import ExportNotFoundError, ExportNotReadyError

logger = logging.getLogger(__name__)

CSV_HEADER = ("sensor_id", "sensor", "instalacion", "tipo_medida", "valor", "unidad", "timestamp")

DEFAULT_MAX_RETAINED = 50

_MEDIA_TYPES = {
    ExportFormat.csv: "text/csv; charset=utf-8",
    ExportFormat.json: "application/json",
}


@dataclass(frozen=True)
class ExportFile:
    filename: str
    media_type: str
    content: str
    record_count: int


def _format_value(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _format_timestamp(moment: Optional[datetime]) -> str:
    return isoformat_utc(moment) if moment is not None else ""


def export_filename(window: TimeWindow, fmt: ExportFormat) -> str:
    return f"analytics-{window.start:%Y-%m-%d}_{window.end:%Y-%m-%d}.{fmt.value}"


def encode_csv(
    readings: Sequence[Reading],
    sensors: Mapping[int, SensorMeta],
    window: TimeWindow,
) -> str:
    """Render readings as CSV, preceded by a ``#`` comment block. Every field is quoted."""
    buffer = io.StringIO()
    buffer.write(f"# Rango: {isoformat_utc(window.start)} a {isoformat_utc(window.end)}\n")
    buffer.write(f"# Total lecturas: {len(readings)}\n")

    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for reading in readings:
        sensor = sensors.get(reading.sensor_id)
        writer.writerow(
            (
                reading.sensor_id,
                sensor.name if sensor else f"Sensor {reading.sensor_id}",
                sensor.facility if sensor else "",
                reading.kind,
                _format_value(reading.value),
                sensor.unit if sensor else "",
                _format_timestamp(reading.timestamp),
            )
        )
    return buffer.getvalue()


def encode_json(
    readings: Sequence[Reading],
    sensors: Mapping[int, SensorMeta],
    window: TimeWindow,
    generated_at: Optional[datetime] = None,
) -> str:
    generated = generated_at or datetime.now(timezone.utc)
    lecturas = []
    for reading in readings:
        sensor = sensors.get(reading.sensor_id)
        lecturas.append(
            {
                "sensorId": reading.sensor_id,
                "sensor": sensor.name if sensor else f"Sensor {reading.sensor_id}",
                "instalacion": sensor.facility if sensor else "",
                "tipoMedida": reading.kind,
                "valor": reading.value,
                "unidad": sensor.unit if sensor else "",
                "timestamp": _format_timestamp(reading.timestamp),
            }
        )
    payload = {
        "meta": {
            "desde": isoformat_utc(window.start),
            "hasta": isoformat_utc(window.end),
            "totalLecturas": len(readings),
            "generadoEn": isoformat_utc(generated),
        },
        "lecturas": lecturas,
    }
    return json.dumps(payload, ensure_ascii=False, indent=2)


def encode_export(
    readings: Sequence[Reading],
    sensors: Sequence[SensorMeta],
    window: TimeWindow,
    fmt: ExportFormat,
) -> ExportFile:
    lookup = {sensor.id: sensor for sensor in sensors}
    if fmt is ExportFormat.json:
        content = encode_json(readings, lookup, window)
    else:
        content = encode_csv(readings, lookup, window)
    return ExportFile(
        filename=export_filename(window, fmt),
        media_type=_MEDIA_TYPES[fmt],
        content=content,
        record_count=len(readings),
    )


class ExportService:
    """Runs exports inline or as background asyncio tasks tracked by id."""

    def __init__(self, aggregator: AnalyticsAggregator, max_retained: int = DEFAULT_MAX_RETAINED) -> None:
        self.aggregator = aggregator
        self.max_retained = max(1, max_retained)
        self._records: Dict[str, ExportRecord] = {}
        self._files: Dict[str, ExportFile] = {}
        self._tasks: Dict[str, asyncio.Task[None]] = {}

    async def run(
        self,
        sensors: Sequence[SensorMeta],
        window: TimeWindow,
        fmt: ExportFormat,
        include_all: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ExportFile:
        readings = await self.aggregator.collect_export(
            sensors, window, include_all=include_all, on_progress=on_progress
        )
        export = encode_export(readings, sensors, window, fmt)
        logger.info("Export encoded", extra={"record_count": export.record_count})
        return export

    def start(
        self,
        sensors: Sequence[SensorMeta],
        window: TimeWindow,
        fmt: ExportFormat,
        include_all: bool = False,
    ) -> str:
        """Register an export job and schedule it on the running event loop."""
        export_id = str(uuid4())
        self._records[export_id] = ExportRecord(
            export_id=export_id,
            status=ExportStatus.pending,
            format=fmt,
            created_at=datetime.now(timezone.utc),
        )
        task = asyncio.get_running_loop().create_task(
            self._run_job(export_id, list(sensors), window, fmt, include_all)
        )
        self._tasks[export_id] = task
        task.add_done_callback(lambda done, eid=export_id: self._job_done(eid, done))
        logger.info("Export scheduled", extra={"export_id": export_id, "total": len(sensors)})
        return export_id

    def fetch(self, export_id: str) -> ExportRecord:
        record = self._records.get(export_id)
        if record is None:
            raise ExportNotFoundError(export_id)
        return record.model_copy(deep=True)

    def download(self, export_id: str) -> ExportFile:
        record = self.fetch(export_id)
        export = self._files.get(export_id)
        if record.status is not ExportStatus.succeeded or export is None:
            raise ExportNotReadyError(export_id, record.status.value)
        return export

    async def wait(self, export_id: str) -> ExportRecord:
        task = self._tasks.get(export_id)
        if task is not None:
            # asyncio.wait neither cancels the job nor re-raises its cancellation.
            await asyncio.wait({task})
        return self.fetch(export_id)

    def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()

    def _job_done(self, export_id: str, task: "asyncio.Task[None]") -> None:
        self._tasks.pop(export_id, None)
        record = self._records[export_id]
        # A job cancelled before its first step never runs its own error handling.
        if task.cancelled() and record.status in (ExportStatus.pending, ExportStatus.running):
            logger.warning("Export cancelled", extra={"export_id": export_id})
            record.status = ExportStatus.failed
            record.message = "Export failed: cancelled before completion"
            record.finished_at = datetime.now(timezone.utc)
        self._evict_finished()

    def _evict_finished(self) -> None:
        """Drop the oldest finished jobs once more than ``max_retained`` are held."""
        finished = [eid for eid in self._records if eid not in self._tasks]
        for export_id in finished[: max(0, len(self._records) - self.max_retained)]:
            self._records.pop(export_id, None)
            self._files.pop(export_id, None)

    async def _run_job(
        self,
        export_id: str,
        sensors: Sequence[SensorMeta],
        window: TimeWindow,
        fmt: ExportFormat,
        include_all: bool,
    ) -> None:
        record = self._records[export_id]
        record.status = ExportStatus.running

        def on_progress(done: int, total: int) -> None:
            record.progress = ExportProgressModel(done=done, total=total)
            logger.debug("Export progress", extra={"export_id": export_id, "done": done, "total": total})

        try:
            export = await self.run(sensors, window, fmt, include_all=include_all, on_progress=on_progress)
        except Exception as exc:  # noqa: BLE001 - recorded on the job for the client to read
            logger.error("Export failed", extra={"export_id": export_id, "reason": str(exc)})
            record.status = ExportStatus.failed
            record.message = f"Export failed: {exc}"
        else:
            self._files[export_id] = export
            record.status = ExportStatus.succeeded
            record.record_count = export.record_count
            record.filename = export.filename
            record.message = f"Export succeeded ({export.record_count} records)"
        record.finished_at = datetime.now(timezone.utc)
