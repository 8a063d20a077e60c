from __future__ import annotations

import re
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import typer

from cli.config import CLIConfig

_FILENAME_PATTERN = re.compile(r'filename="?([^";]+)"?')


def _range_params(
    start: datetime, end: datetime, sensor_ids: Optional[Sequence[int]] = None
) -> List[Tuple[str, Any]]:
    params: List[Tuple[str, Any]] = [("from", start.isoformat()), ("to", end.isoformat())]
    for sensor_id in sensor_ids or ():
        params.append(("sensor_ids", sensor_id))
    return params


class ApiClient:
    """Minimal HTTP client for the analytics service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=60.0)

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, params: Any = None) -> httpx.Response:
        try:
            response = self._client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            self._handle_transport_error(exc)
        return response

    def get_summary(
        self, start: datetime, end: datetime, sensor_ids: Optional[Sequence[int]] = None
    ) -> Dict[str, Any]:
        return self._get("/analytics/summary", _range_params(start, end, sensor_ids)).json()

    def get_averages(
        self, start: datetime, end: datetime, sensor_ids: Optional[Sequence[int]] = None
    ) -> List[Dict[str, Any]]:
        return self._get("/analytics/averages", _range_params(start, end, sensor_ids)).json()

    def get_trend(
        self,
        parameter: str,
        start: datetime,
        end: datetime,
        sensor_ids: Optional[Sequence[int]] = None,
    ) -> List[Dict[str, Any]]:
        params = _range_params(start, end, sensor_ids) + [("parameter", parameter)]
        return self._get("/analytics/trend", params).json()

    def start_export(
        self,
        start: datetime,
        end: datetime,
        fmt: str,
        include_all: bool = False,
        sensor_ids: Optional[Sequence[int]] = None,
    ) -> str:
        body: Dict[str, Any] = {
            "from": start.isoformat(),
            "to": end.isoformat(),
            "format": fmt,
            "include_all": include_all,
        }
        if sensor_ids:
            body["sensor_ids"] = list(sensor_ids)
        try:
            response = self._client.post("/exports", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            self._handle_transport_error(exc)
        export_id = response.json().get("export_id")
        if not isinstance(export_id, str):
            raise typer.BadParameter("Unexpected response payload when starting export.")
        return export_id

    def get_export(self, export_id: str) -> Dict[str, Any]:
        try:
            response = self._client.get(f"/exports/{export_id}")
            if response.status_code == 404:
                raise typer.BadParameter(f"Export {export_id} was not found.")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def poll_export(
        self,
        export_id: str,
        interval: float,
        timeout: float,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        last_payload: Dict[str, Any] | None = None
        while time.monotonic() <= deadline:
            last_payload = self.get_export(export_id)
            progress = last_payload.get("progress") or {}
            if on_progress is not None:
                on_progress(int(progress.get("done", 0)), int(progress.get("total", 0)))
            if last_payload.get("status") not in {"pending", "running"}:
                return last_payload
            time.sleep(interval)
        typer.secho(
            (
                f"Timed out waiting for export {export_id}. "
                f"Last status: {last_payload.get('status') if last_payload else 'unknown'}"
            ),
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    def download_export(self, export_id: str) -> Tuple[str, bytes]:
        response = self._get(f"/exports/{export_id}/download")
        disposition = response.headers.get("content-disposition", "")
        match = _FILENAME_PATTERN.search(disposition)
        filename = match.group(1) if match else f"analytics-{export_id}"
        return filename, response.content

    def set_dashboard_range(
        self, start: datetime, end: datetime, sensor_ids: Optional[Sequence[int]] = None
    ) -> int:
        body: Dict[str, Any] = {"from": start.isoformat(), "to": end.isoformat()}
        if sensor_ids:
            body["sensor_ids"] = list(sensor_ids)
        try:
            response = self._client.put("/dashboard/range", json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            self._handle_transport_error(exc)
        return int(response.json()["generation"])

    def poll_dashboard(self, generation: int, interval: float, timeout: float) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        last_payload: Dict[str, Any] | None = None
        while time.monotonic() <= deadline:
            last_payload = self._get("/dashboard/summary").json()
            committed = last_payload.get("committed_generation") or 0
            if committed >= generation or not last_payload.get("pending"):
                return last_payload
            time.sleep(interval)
        typer.secho(
            f"Timed out waiting for dashboard refresh (generation {generation}).",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    @staticmethod
    def _handle_transport_error(exc: httpx.TransportError) -> None:
        typer.secho(f"Could not reach the analytics service: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
