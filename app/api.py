"""HTTP route definitions for the service."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.schemas import (
    DashboardRangeRequest,
    DashboardScheduled,
    DashboardState,
    ExportAccepted,
    ExportFormat,
    ExportRecord,
    ExportRequest,
    SensorAverageResponse,
    SummaryResponse,
    TrendPointResponse,
)
from backend.client import BackendError
from models.records import ParameterType, SensorMeta, TimeWindow
from services.errors import ExportNotFoundError, ExportNotReadyError, NoSensorsError
from services.exporter import ExportFile
from services.factory import AnalyticsServices, build_default_services

router = APIRouter()


def get_services() -> AnalyticsServices:
    return build_default_services()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _window(start: datetime, end: datetime) -> TimeWindow:
    try:
        return TimeWindow(start=_as_utc(start), end=_as_utc(end))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _bad_gateway(exc: BackendError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Backend request failed: {exc}",
    )


async def _load_sensors(
    services: AnalyticsServices, sensor_ids: Optional[List[int]]
) -> List[SensorMeta]:
    try:
        return await services.aggregator.load_sensors(sensor_ids)
    except BackendError as exc:
        raise _bad_gateway(exc) from exc


def _require_sensors(sensors: List[SensorMeta]) -> None:
    if not sensors:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(NoSensorsError()))


def _attachment(export: ExportFile) -> Response:
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{export.filename}"',
            "X-Record-Count": str(export.record_count),
        },
    )


@router.get(
    "/analytics/summary",
    response_model=SummaryResponse,
    summary="Reading counts and per-parameter averages for a date range.",
)
async def get_summary(
    start: datetime = Query(..., alias="from"),
    end: datetime = Query(..., alias="to"),
    sensor_ids: Optional[List[int]] = Query(None),
    services: AnalyticsServices = Depends(get_services),
) -> SummaryResponse:
    window = _window(start, end)
    sensors = await _load_sensors(services, sensor_ids)
    summary = await services.aggregator.summarize(sensors, window)
    return SummaryResponse.from_summary(summary)


@router.get(
    "/analytics/averages",
    response_model=List[SensorAverageResponse],
    summary="Weighted average per sensor, highest first.",
)
async def get_sensor_averages(
    start: datetime = Query(..., alias="from"),
    end: datetime = Query(..., alias="to"),
    sensor_ids: Optional[List[int]] = Query(None),
    services: AnalyticsServices = Depends(get_services),
) -> List[SensorAverageResponse]:
    window = _window(start, end)
    sensors = await _load_sensors(services, sensor_ids)
    try:
        rows = await services.aggregator.sensor_averages(sensors, window)
    except BackendError as exc:
        raise _bad_gateway(exc) from exc
    return [SensorAverageResponse.from_row(row) for row in rows]


@router.get(
    "/analytics/trend",
    response_model=List[TrendPointResponse],
    summary="Merged time series for one parameter across its sensors.",
)
async def get_trend(
    parameter: ParameterType = Query(ParameterType.temperature),
    start: datetime = Query(..., alias="from"),
    end: datetime = Query(..., alias="to"),
    sensor_ids: Optional[List[int]] = Query(None),
    services: AnalyticsServices = Depends(get_services),
) -> List[TrendPointResponse]:
    window = _window(start, end)
    sensors = await _load_sensors(services, sensor_ids)
    points = await services.aggregator.trend(sensors, window, parameter)
    return [TrendPointResponse.from_point(point) for point in points]


@router.get(
    "/analytics/export",
    summary="Export every reading in the range as a CSV or JSON download.",
    response_class=Response,
)
async def export_readings(
    start: datetime = Query(..., alias="from"),
    end: datetime = Query(..., alias="to"),
    format: ExportFormat = Query(ExportFormat.csv),
    include_all: bool = Query(False, alias="all"),
    sensor_ids: Optional[List[int]] = Query(None),
    services: AnalyticsServices = Depends(get_services),
) -> Response:
    window = _window(start, end)
    sensors = await _load_sensors(services, sensor_ids)
    _require_sensors(sensors)
    export = await services.exports.run(sensors, window, format, include_all=include_all)
    return _attachment(export)


@router.post(
    "/exports",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ExportAccepted,
    summary="Start a background export job.",
)
async def start_export(
    request: ExportRequest,
    services: AnalyticsServices = Depends(get_services),
) -> ExportAccepted:
    window = _window(request.start, request.end)
    sensors = await _load_sensors(services, request.sensor_ids)
    _require_sensors(sensors)
    export_id = services.exports.start(
        sensors, window, request.format, include_all=request.include_all
    )
    return ExportAccepted(export_id=export_id)


@router.get(
    "/exports/{export_id}",
    response_model=ExportRecord,
    summary="Fetch status and progress of an export job.",
)
async def get_export(
    export_id: str,
    services: AnalyticsServices = Depends(get_services),
) -> ExportRecord:
    try:
        return services.exports.fetch(export_id)
    except ExportNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get(
    "/exports/{export_id}/download",
    summary="Download the file produced by a finished export job.",
    response_class=Response,
)
async def download_export(
    export_id: str,
    services: AnalyticsServices = Depends(get_services),
) -> Response:
    try:
        export = services.exports.download(export_id)
    except ExportNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ExportNotReadyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _attachment(export)


@router.put(
    "/dashboard/range",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=DashboardScheduled,
    summary="Change the dashboard range; the summary refreshes after a short debounce.",
)
async def set_dashboard_range(
    request: DashboardRangeRequest,
    services: AnalyticsServices = Depends(get_services),
) -> DashboardScheduled:
    window = _window(request.start, request.end)
    sensors = await _load_sensors(services, request.sensor_ids)
    generation = services.dashboard.schedule(sensors, window)
    return DashboardScheduled(generation=generation)


@router.get(
    "/dashboard/summary",
    response_model=DashboardState,
    summary="Last committed dashboard summary.",
)
async def get_dashboard_summary(
    services: AnalyticsServices = Depends(get_services),
) -> DashboardState:
    runner = services.dashboard
    summary = SummaryResponse.from_summary(runner.summary) if runner.summary else None
    return DashboardState(
        generation=runner.generation,
        committed_generation=runner.committed_generation,
        pending=runner.pending,
        summary=summary,
    )


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
