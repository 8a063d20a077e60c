"""Decode backend JSON payloads into domain models.

The readings endpoint is inconsistent across backend versions: it answers with
either a bare list of readings or a ``{"data": [...], "pagination": {...}}``
envelope. Everything downstream works with :data:`ReadingsResponse` and never
inspects raw payloads.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional

from models.records import (
    Average,
    Page,
    Pagination,
    Reading,
    ReadingsResponse,
    SensorMeta,
    parse_timestamp,
)


logger = logging.getLogger(__name__)


class PayloadError(ValueError):
    """Raised when a backend payload does not have the expected shape."""


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _optional_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        return None


def _reading_timestamp(raw: Mapping[str, Any]) -> Optional[datetime]:
    taken_at = _first(raw, "tomada_en", "timestamp")
    if taken_at is not None:
        return _optional_timestamp(taken_at)

    day = raw.get("fecha")
    hour = raw.get("hora")
    if isinstance(day, str) and isinstance(hour, str) and day and hour:
        return _optional_timestamp(f"{day.strip()}T{hour.strip()}")
    if isinstance(day, str) and day:
        return _optional_timestamp(day)

    return _optional_timestamp(raw.get("created_at"))


def _to_int(value: Any, field: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise PayloadError(f"Field {field!r} is not an integer: {value!r}") from exc


def _to_float(value: Any, field: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise PayloadError(f"Field {field!r} is not numeric: {value!r}") from exc


def decode_reading(raw: Any, default_sensor_id: Optional[int] = None) -> Reading:
    if not isinstance(raw, Mapping):
        raise PayloadError(f"Reading must be an object, got {type(raw).__name__}.")

    sensor_raw = _first(raw, "id_sensor_instalado", "sensor_instalado_id")
    if sensor_raw is None:
        if default_sensor_id is None:
            raise PayloadError("Reading is missing its sensor id.")
        sensor_id = default_sensor_id
    else:
        sensor_id = _to_int(sensor_raw, "id_sensor_instalado")

    return Reading(
        sensor_id=sensor_id,
        value=_to_float(raw.get("valor"), "valor"),
        kind=str(_first(raw, "tipo_medida", "tipo_sensor") or ""),
        timestamp=_reading_timestamp(raw),
    )


def _decode_rows(items: Iterable[Any], default_sensor_id: Optional[int]) -> List[Reading]:
    """Decode reading rows, skipping malformed ones instead of failing the page."""
    readings: List[Reading] = []
    for item in items:
        try:
            readings.append(decode_reading(item, default_sensor_id))
        except PayloadError as exc:
            logger.debug(
                "Skipping malformed reading",
                extra={"sensor_id": default_sensor_id, "reason": str(exc)},
            )
    return readings


def decode_pagination(raw: Any) -> Pagination:
    if not isinstance(raw, Mapping):
        raise PayloadError("Pagination block must be an object.")
    total = _to_int(raw.get("total", 0), "total")
    limit = _to_int(raw.get("limit", 0), "limit")
    return Pagination(
        page=_to_int(raw.get("page", 1), "page"),
        limit=limit,
        total=total,
        total_pages=_to_int(raw.get("totalPages", 1), "totalPages"),
    )


def decode_readings_response(
    payload: Any, default_sensor_id: Optional[int] = None
) -> ReadingsResponse:
    """Turn a readings payload into a bare list or a :class:`Page`.

    An object carrying ``data`` but no ``pagination`` block has no envelope to
    follow and is treated like a bare list.
    """
    if isinstance(payload, list):
        return _decode_rows(payload, default_sensor_id)

    if isinstance(payload, Mapping) and isinstance(payload.get("data"), list):
        readings = _decode_rows(payload["data"], default_sensor_id)
        pagination = payload.get("pagination")
        if pagination is None:
            return readings
        return Page(data=readings, pagination=decode_pagination(pagination))

    raise PayloadError("Readings payload is neither a list nor a paginated envelope.")


def decode_average(raw: Any) -> Average:
    if not isinstance(raw, Mapping):
        raise PayloadError("Average entry must be an object.")
    muestras_raw = raw.get("muestras")
    muestras: Optional[int] = None
    if muestras_raw is not None:
        try:
            muestras = int(muestras_raw)
        except (TypeError, ValueError):
            muestras = None
    return Average(
        timestamp=_optional_timestamp(raw.get("timestamp")),
        promedio=_to_float(raw.get("promedio"), "promedio"),
        muestras=muestras,
    )


def decode_averages(payload: Any) -> list[Average]:
    if isinstance(payload, Mapping) and isinstance(payload.get("data"), list):
        payload = payload["data"]
    if not isinstance(payload, list):
        raise PayloadError("Averages payload must be a list.")
    return [decode_average(item) for item in payload]


def _facility_name(raw: Mapping[str, Any]) -> str:
    facility = raw.get("instalacion")
    if isinstance(facility, Mapping):
        return str(_first(facility, "nombre_instalacion", "nombre") or "")
    value = _first(raw, "facilityName", "nombre_instalacion", "instalacion")
    if value is not None:
        return str(value)
    facility_id = raw.get("id_instalacion")
    return f"Instalación {facility_id}" if facility_id is not None else ""


def decode_sensor(raw: Any) -> SensorMeta:
    if not isinstance(raw, Mapping):
        raise PayloadError("Sensor entry must be an object.")
    sensor_id = _to_int(_first(raw, "id_sensor_instalado", "id"), "id_sensor_instalado")
    catalog = _catalog_entry(raw)
    name = _first(raw, "name", "sensor", "nombre", "descripcion") or _first(catalog, "sensor", "nombre")
    return SensorMeta(
        id=sensor_id,
        name=str(name or f"Sensor {sensor_id}"),
        unit=str(_first(raw, "unit", "unidad_medida") or _first(catalog, "unidad_medida", "unit") or ""),
        facility=_facility_name(raw),
        type=str(
            _first(raw, "tipoMedida", "tipo_medida")
            or _first(catalog, "tipo_medida", "tipoMedida")
            or _first(raw, "type")
            or ""
        ),
    )


def _catalog_entry(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    # Installed sensors may carry their type, unit and name on the catalog record.
    for key in ("catalogo_sensores", "catalogo"):
        entry = raw.get(key)
        if isinstance(entry, Mapping):
            return entry
    return {}


def decode_sensors(payload: Any) -> list[SensorMeta]:
    if isinstance(payload, Mapping) and isinstance(payload.get("data"), list):
        payload = payload["data"]
    if not isinstance(payload, list):
        raise PayloadError("Sensors payload must be a list.")
    return [decode_sensor(item) for item in payload]
