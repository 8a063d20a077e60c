from __future__ import annotations

import math
from typing import Any, Callable, Dict, List, Set, Union

import httpx
import pytest

from backend.client import BackendClient

PageSource = Union[List[Dict[str, Any]], Dict[str, Any], Callable[[int, int], Any]]


def paged(rows: List[Dict[str, Any]]) -> Callable[[int, int], Dict[str, Any]]:
    """Serve ``rows`` through a paginated envelope honouring ``page`` and ``limit``."""

    def serve(page: int, limit: int) -> Dict[str, Any]:
        total_pages = max(1, math.ceil(len(rows) / limit))
        start = (page - 1) * limit
        return {
            "data": rows[start : start + limit],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": len(rows),
                "totalPages": total_pages,
            },
        }

    return serve


class FakeBackend:
    """In-memory stand-in for the external REST backend."""

    def __init__(self) -> None:
        self.sensors: List[Dict[str, Any]] = []
        self.readings: Dict[int, PageSource] = {}
        self.averages: Dict[int, List[Dict[str, Any]]] = {}
        self.failing: Set[int] = set()
        self.reject_ranged_averages: Set[int] = set()
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = request.url.params

        if path == "/api/sensores-instalados":
            return httpx.Response(200, json=self.sensors)

        sensor_id = int(params["sensorInstaladoId"])
        if sensor_id in self.failing:
            return httpx.Response(500, json={"message": f"sensor {sensor_id} exploded"})

        if path == "/api/lecturas":
            source = self.readings.get(sensor_id, [])
            if callable(source):
                return httpx.Response(
                    200, json=source(int(params.get("page", 1)), int(params.get("limit", 1000)))
                )
            return httpx.Response(200, json=source)

        if path == "/api/promedios":
            if sensor_id in self.reject_ranged_averages and "desde" in params:
                return httpx.Response(400, json={"message": "range not supported"})
            return httpx.Response(200, json=self.averages.get(sensor_id, []))

        return httpx.Response(404, json={"message": "not found"})

    def client(self) -> BackendClient:
        return BackendClient("http://backend.test", transport=httpx.MockTransport(self.handler))

    def requests_to(self, path: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]


@pytest.fixture()
def fake_backend() -> FakeBackend:
    return FakeBackend()
