"""Paginated retrieval of every reading for one sensor."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from backend.client import BackendClient
from models.records import Page, Reading

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000


async def fetch_all_readings(
    client: BackendClient,
    sensor_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> List[Reading]:
    """Follow the readings endpoint page by page and concatenate the results.

    A bare-list response is the complete result. Otherwise pages are requested
    until the current page number reaches ``totalPages``. Backend errors
    propagate to the caller.
    """
    readings: List[Reading] = []
    page = 1

    while True:
        response = await client.get_readings(
            sensor_id, page=page, limit=page_size, start=start, end=end
        )
        if not isinstance(response, Page):
            readings.extend(response)
            break

        readings.extend(response.data)
        total_pages = response.pagination.total_pages
        logger.debug(
            "Fetched readings page",
            extra={"sensor_id": sensor_id, "page": page, "total_pages": total_pages},
        )
        if page >= total_pages:
            break
        page += 1

    return readings
