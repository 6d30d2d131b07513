"""Cancellation-aware waiting and periodic loops shared by every background task."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


async def wait_for_shutdown(shutdown: asyncio.Event, timeout: float) -> bool:
    """Sleep for up to ``timeout`` seconds, waking early on shutdown.

    Args:
        shutdown: Event set when the agent is stopping.
        timeout: Maximum number of seconds to wait.

    Returns:
        bool: True if shutdown was requested.
    """
    if shutdown.is_set():
        return True
    try:
        await asyncio.wait_for(shutdown.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False


async def race_shutdown(awaitable: Awaitable, shutdown: asyncio.Event) -> bool:
    """Run ``awaitable`` until it finishes or shutdown is requested.

    The loser is cancelled. Exceptions raised by ``awaitable`` propagate.

    Args:
        awaitable: Operation to run (e.g. waiting for a disconnect).
        shutdown: Event set when the agent is stopping.

    Returns:
        bool: True if shutdown won the race.
    """
    work = asyncio.ensure_future(awaitable)
    stop = asyncio.ensure_future(shutdown.wait())
    try:
        await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (work, stop):
            if not task.done():
                task.cancel()
        await asyncio.gather(work, stop, return_exceptions=True)

    if stop.done() and not stop.cancelled():
        return True
    work.result()
    return False


async def run_periodic(
    name: str,
    func: Callable[[], Awaitable[object]],
    interval: Callable[[], float],
    shutdown: asyncio.Event,
    run_immediately: bool = True,
) -> None:
    """Run ``func`` every ``interval()`` seconds until shutdown.

    Errors raised by ``func`` are logged and the loop continues.

    Args:
        name: Loop name for logging.
        func: Coroutine function to run each cycle.
        interval: Returns the delay before the next cycle (read every cycle).
        shutdown: Event set when the agent is stopping.
        run_immediately: Run the first cycle before waiting.
    """
    logger.info(f"Starting {name} loop")

    if not run_immediately and await wait_for_shutdown(shutdown, interval()):
        logger.info(f"{name} loop stopped")
        return

    while not shutdown.is_set():
        try:
            await func()
        except Exception as e:
            logger.exception(f"Error in {name} loop: {e}")

        if await wait_for_shutdown(shutdown, interval()):
            break

    logger.info(f"{name} loop stopped")
