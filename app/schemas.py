"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.records import AnalyticsSummary, SensorAverageRow, TrendPoint


class ExportFormat(str, Enum):
    csv = "csv"
    json = "json"


class ExportStatus(str, Enum):
    """Export lifecycle states exposed via the API."""

    pending = "pending"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


class SummaryResponse(BaseModel):
    """Dashboard card values, keyed the way the dashboard front-end reads them."""

    model_config = ConfigDict(populate_by_name=True)

    total_lecturas: int = Field(..., ge=0, alias="totalLecturas")
    lecturas_hoy: int = Field(..., ge=0, alias="lecturasHoy")
    promedio_temperatura: float = Field(..., alias="promedioTemperatura")
    promedio_ph: float = Field(..., alias="promedioPH")
    promedio_oxigeno: float = Field(..., alias="promedioOxigeno")
    failed_sensors: List[int] = Field(
        default_factory=list,
        alias="sensoresFallidos",
        description="Sensors whose requests failed and were counted as zero.",
    )

    @classmethod
    def from_summary(cls, summary: AnalyticsSummary) -> "SummaryResponse":
        return cls(
            total_lecturas=summary.total_lecturas,
            lecturas_hoy=summary.lecturas_hoy,
            promedio_temperatura=summary.promedio_temperatura,
            promedio_ph=summary.promedio_ph,
            promedio_oxigeno=summary.promedio_oxigeno,
            failed_sensors=list(summary.failed_sensors),
        )


class SensorAverageResponse(BaseModel):
    sensor_id: int
    name: str
    unit: str
    promedio: float
    muestras: float

    @classmethod
    def from_row(cls, row: SensorAverageRow) -> "SensorAverageResponse":
        return cls(
            sensor_id=row.sensor_id,
            name=row.name,
            unit=row.unit,
            promedio=row.promedio,
            muestras=row.muestras,
        )


class TrendPointResponse(BaseModel):
    timestamp: datetime
    value: float
    muestras: float

    @classmethod
    def from_point(cls, point: TrendPoint) -> "TrendPointResponse":
        return cls(timestamp=point.timestamp, value=point.value, muestras=point.muestras)


class ExportRequest(BaseModel):
    """Body of ``POST /exports``."""

    start: datetime = Field(..., alias="from")
    end: datetime = Field(..., alias="to")
    format: ExportFormat = ExportFormat.csv
    include_all: bool = Field(False, description="Export every sensor instead of the first 20.")
    sensor_ids: Optional[List[int]] = None

    model_config = ConfigDict(populate_by_name=True)


class ExportAccepted(BaseModel):
    export_id: str = Field(..., description="Generated identifier for the export job.")
    message: str = "Preparing export..."


class ExportProgressModel(BaseModel):
    done: int = Field(0, ge=0)
    total: int = Field(0, ge=0)


class ExportRecord(BaseModel):
    """Full record representing an export job."""

    export_id: str
    status: ExportStatus
    format: ExportFormat
    created_at: datetime
    finished_at: Optional[datetime] = None
    progress: ExportProgressModel = Field(default_factory=ExportProgressModel)
    record_count: Optional[int] = None
    filename: Optional[str] = None
    message: Optional[str] = None


class DashboardRangeRequest(BaseModel):
    start: datetime = Field(..., alias="from")
    end: datetime = Field(..., alias="to")
    sensor_ids: Optional[List[int]] = None

    model_config = ConfigDict(populate_by_name=True)


class DashboardScheduled(BaseModel):
    generation: int


class DashboardState(BaseModel):
    generation: int
    committed_generation: Optional[int] = None
    pending: bool
    summary: Optional[SummaryResponse] = None
