"""
Fixed pacing for bulk writes. Not a backoff: the pause does not react to
throttling, it only spreads writes out.
"""
import asyncio
import logging

logger = logging.getLogger(__name__)


async def pace_writes(writes: int, total: int, pause_every: int, pause_seconds: float) -> None:
    """Sleep after every ``pause_every``-th write, except after the last one."""
    if pause_every and writes % pause_every == 0 and writes < total:
        logger.debug(f"Pausing {pause_seconds}s after {writes} writes")
        await asyncio.sleep(pause_seconds)
