"""
Snapshot streams: live views over stored state.

``watch`` polls a fetch function and yields the full state each time it
changes. Consumers stop it with ``aclose()`` or by cancelling their task.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NOTHING = object()


async def watch(
    fetch: Callable[[], Awaitable[T]],
    interval: float = 2.0,
) -> AsyncIterator[T]:
    """Yield ``fetch()`` whenever its result differs from the last one yielded.

    The first poll always yields. Delivery is at-least-once: a consumer that
    reconnects starts over with a full snapshot.
    """
    last: object = _NOTHING
    while True:
        snapshot = await fetch()
        if last is _NOTHING or snapshot != last:
            last = snapshot
            yield snapshot
        await asyncio.sleep(interval)
