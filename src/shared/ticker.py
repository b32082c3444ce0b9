"""Periodic background loop with an explicit stop signal."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

log = logging.getLogger(__name__)


async def run_periodic(
    name: str,
    fn: Callable[[], Awaitable[Any] | Any],
    interval: float,
    stop: asyncio.Event,
) -> None:
    """Call *fn* every *interval* seconds until *stop* is set.

    An exception from one tick is logged and the loop keeps going.
    """
    log.debug("Ticker %s started (every %.2fs)", name, interval)
    while not stop.is_set():
        try:
            out = fn()
            if inspect.isawaitable(out):
                await out
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Ticker %s tick failed", name)
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
    log.debug("Ticker %s stopped", name)
