"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import List, Optional, Union


class ParameterType(str, Enum):
    """Canonical water-quality parameter a sensor measures."""

    temperature = "temperature"
    ph = "ph"
    oxygen = "oxygen"
    salinity = "salinity"
    turbidity = "turbidity"
    nitrates = "nitrates"
    ammonia = "ammonia"
    barometric = "barometric"
    other = "other"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Naive values are assumed to already be UTC.
    """
    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError(f"Invalid timestamp format: {value!r}") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class Reading:
    """A single sensor measurement as returned by the backend."""

    sensor_id: int
    value: float
    kind: str
    timestamp: Optional[datetime]


@dataclass(frozen=True, slots=True)
class SensorMeta:
    """Display metadata used to decorate readings and classify sensors."""

    id: int
    name: str
    unit: str = ""
    facility: str = ""
    type: str = ""


@dataclass(frozen=True, slots=True)
class Pagination:
    page: int
    limit: int
    total: int
    total_pages: int


@dataclass(frozen=True, slots=True)
class Page:
    """Paginated envelope: ``{"data": [...], "pagination": {...}}``."""

    data: List[Reading]
    pagination: Pagination


# The readings endpoint answers with either shape depending on backend version.
ReadingsResponse = Union[List[Reading], Page]


@dataclass(frozen=True, slots=True)
class Average:
    """One pre-aggregated bucket from the averages endpoint."""

    timestamp: Optional[datetime]
    promedio: float
    muestras: Optional[int] = None


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Inclusive time range selected on the dashboard."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("Time window bounds must be timezone-aware.")
        if self.end < self.start:
            raise ValueError("Time window end precedes its start.")

    def contains(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        return self.start <= moment <= self.end

    def includes_day(self, day: date) -> bool:
        return self.start.date() <= day <= self.end.date()

    @classmethod
    def for_day(cls, day: date) -> "TimeWindow":
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1) - timedelta(microseconds=1)
        return cls(start=start, end=end)

    @property
    def total_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60


@dataclass
class AnalyticsSummary:
    """Dashboard card values for one date range and sensor selection."""

    total_lecturas: int = 0
    lecturas_hoy: int = 0
    promedio_temperatura: float = 0.0
    promedio_ph: float = 0.0
    promedio_oxigeno: float = 0.0
    failed_sensors: List[int] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SensorAverageRow:
    sensor_id: int
    name: str
    unit: str
    promedio: float
    muestras: float


@dataclass(frozen=True, slots=True)
class TrendPoint:
    timestamp: datetime
    value: float
    muestras: float
