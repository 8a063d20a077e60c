"""Async HTTP client for the external aquaculture backend."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from backend.decoding import (
    PayloadError,
    decode_averages,
    decode_readings_response,
    decode_sensors,
)
from models.records import Average, ReadingsResponse, SensorMeta, isoformat_utc
from settings import Settings

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


class BackendError(Exception):
    """A backend request failed at the transport, HTTP, or payload level."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


def _range_params(start: Optional[datetime], end: Optional[datetime]) -> Dict[str, str]:
    params: Dict[str, str] = {}
    if start is not None:
        params["desde"] = isoformat_utc(start)
    if end is not None:
        params["hasta"] = isoformat_utc(end)
    return params


class BackendClient:
    """Thin wrapper over ``httpx.AsyncClient`` returning decoded models."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackendClient":
        return cls(base_url=settings.backend_url, timeout=settings.backend_timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *_exc_info: Any) -> None:
        await self.aclose()

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Any:
        try:
            response = await self._client.get(f"{API_PREFIX}{path}", params=params)
        except httpx.HTTPError as exc:
            raise BackendError(f"Network error calling {path}: {exc}") from exc

        if response.is_error:
            detail: Any = None
            try:
                body = response.json()
                if isinstance(body, dict):
                    detail = body.get("message") or body.get("error")
            except ValueError:
                detail = None
            message = detail or f"HTTP {response.status_code}: {response.reason_phrase}"
            logger.debug(
                "Backend request rejected: %s", path, extra={"status_code": response.status_code}
            )
            raise BackendError(str(message), status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(f"Backend returned invalid JSON for {path}.") from exc

    async def get_readings(
        self,
        sensor_id: int,
        page: int = 1,
        limit: int = 1000,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> ReadingsResponse:
        params: Dict[str, Any] = {"sensorInstaladoId": sensor_id, "page": page, "limit": limit}
        params.update(_range_params(start, end))
        payload = await self._get_json("/lecturas", params)
        try:
            return decode_readings_response(payload, default_sensor_id=sensor_id)
        except PayloadError as exc:
            raise BackendError(f"Malformed readings payload: {exc}") from exc

    async def get_averages(
        self,
        sensor_id: int,
        bucket_minutes: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Average]:
        params: Dict[str, Any] = {"sensorInstaladoId": sensor_id, "bucketMinutes": bucket_minutes}
        params.update(_range_params(start, end))
        payload = await self._get_json("/promedios", params)
        try:
            return decode_averages(payload)
        except PayloadError as exc:
            raise BackendError(f"Malformed averages payload: {exc}") from exc

    async def list_sensors(self) -> list[SensorMeta]:
        payload = await self._get_json("/sensores-instalados", {})
        try:
            return decode_sensors(payload)
        except PayloadError as exc:
            raise BackendError(f"Malformed sensors payload: {exc}") from exc
