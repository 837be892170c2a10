"""Keep a chat's "typing" indicator alive while a reply is generated."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

TYPING_INTERVAL_SECONDS = 3.0


async def run_with_progress(
    coro: Awaitable[T],
    notify: Callable[[], Awaitable[None]],
    interval: float = TYPING_INTERVAL_SECONDS,
) -> T:
    """Await *coro* in its own task, calling *notify* every *interval* seconds.

    *notify* runs once right away and then on every tick until the task is
    done. Failures in *notify* are logged and do not affect the task. If the
    caller is cancelled, the task is cancelled too.
    """
    task = asyncio.ensure_future(coro)
    try:
        while True:
            try:
                await notify()
            except Exception:
                logger.warning("Progress notification failed", exc_info=True)
            done, _ = await asyncio.wait({task}, timeout=interval)
            if done:
                return task.result()
    finally:
        if not task.done():
            task.cancel()
