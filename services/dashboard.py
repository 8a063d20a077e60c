"""Debounced summary refreshes for the dashboard cards."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Sequence, Set

from models.records import AnalyticsSummary, SensorMeta, TimeWindow
from services.aggregator import AnalyticsAggregator

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.25


class DashboardRunner:
    """Holds the committed dashboard summary and refreshes it on range changes.

    Every call to :meth:`schedule` bumps a generation counter. A run waits for
    the debounce delay, skips itself if a newer run was scheduled meanwhile,
    and after its backend requests finish commits only if it is still the
    newest generation. Requests of superseded runs are left to finish; their
    results are dropped.
    """

    def __init__(
        self,
        aggregator: AnalyticsAggregator,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self.aggregator = aggregator
        self.debounce_seconds = debounce_seconds
        self.generation = 0
        self.committed_generation: Optional[int] = None
        self.summary: Optional[AnalyticsSummary] = None
        self._tasks: Set[asyncio.Task[bool]] = set()

    @property
    def pending(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def schedule(
        self,
        sensors: Sequence[SensorMeta],
        window: TimeWindow,
        now: Optional[datetime] = None,
    ) -> int:
        self.generation += 1
        generation = self.generation
        task = asyncio.get_running_loop().create_task(
            self._run(generation, list(sensors), window, now)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return generation

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def _run(
        self,
        generation: int,
        sensors: List[SensorMeta],
        window: TimeWindow,
        now: Optional[datetime],
    ) -> bool:
        await asyncio.sleep(self.debounce_seconds)
        if not self.is_current(generation):
            logger.debug("Summary run superseded during debounce", extra={"generation": generation})
            return False

        try:
            summary = await self.aggregator.summarize(sensors, window, now=now)
        except Exception as exc:  # noqa: BLE001 - keep the previously committed summary
            logger.error("Summary run failed", extra={"generation": generation, "reason": str(exc)})
            return False

        if not self.is_current(generation):
            logger.info("Discarding stale summary", extra={"generation": generation})
            return False

        self.summary = summary
        self.committed_generation = generation
        logger.debug("Summary committed", extra={"generation": generation})
        return True
