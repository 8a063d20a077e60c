"""Bounded-concurrency mapping over asyncio tasks."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[int, int], None]


async def map_with_concurrency(
    items: Sequence[T],
    limit: int,
    fn: Callable[[T], Awaitable[R]],
    on_progress: Optional[ProgressCallback] = None,
) -> List[R]:
    """Apply ``fn`` to every item with at most ``limit`` calls in flight.

    Results are written positionally, so ``result[i]`` always corresponds to
    ``items[i]`` regardless of completion order. Exceptions raised by ``fn``
    are not caught and abort the whole map.

    Workers claim indices from a shared cursor without a lock. That is only
    correct because asyncio never switches tasks between reading and
    incrementing the cursor; running workers on OS threads would require an
    atomic fetch-and-add or a mutex around the claim.
    """
    total = len(items)
    results: List[R] = [None] * total  # type: ignore[list-item]
    cursor = 0
    done = 0

    if on_progress is not None:
        on_progress(0, total)

    async def worker() -> None:
        nonlocal cursor, done
        while cursor < total:
            current = cursor
            cursor += 1
            results[current] = await fn(items[current])
            if on_progress is not None:
                done += 1
                on_progress(done, total)

    await asyncio.gather(*(worker() for _ in range(max(1, limit))))
    return results


async def map_with_progress(
    items: Sequence[T],
    limit: int,
    fn: Callable[[T], Awaitable[R]],
    on_progress: ProgressCallback,
) -> List[R]:
    """Like :func:`map_with_concurrency`, reporting ``(done, total)`` as items finish."""
    return await map_with_concurrency(items, limit, fn, on_progress=on_progress)
