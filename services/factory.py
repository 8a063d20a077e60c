"""Default wiring of the backend client and analytics services."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from backend.client import BackendClient
from services.aggregator import AnalyticsAggregator
from services.dashboard import DashboardRunner
from services.exporter import ExportService
from settings import get_settings


@dataclass
class AnalyticsServices:
    client: BackendClient
    aggregator: AnalyticsAggregator
    exports: ExportService
    dashboard: DashboardRunner

    async def shutdown(self) -> None:
        """Cancel background jobs and close the backend connection pool."""
        self.exports.shutdown()
        self.dashboard.shutdown()
        await self.client.aclose()


def build_services(client: BackendClient, debounce_ms: int | None = None) -> AnalyticsServices:
    settings = get_settings()
    aggregator = AnalyticsAggregator.from_settings(client, settings)
    delay_ms = settings.debounce_ms if debounce_ms is None else debounce_ms
    return AnalyticsServices(
        client=client,
        aggregator=aggregator,
        exports=ExportService(aggregator),
        dashboard=DashboardRunner(aggregator, debounce_seconds=delay_ms / 1000),
    )


@lru_cache
def build_default_services() -> AnalyticsServices:
    """Factory that wires the services against the configured backend."""
    return build_services(BackendClient.from_settings(get_settings()))
