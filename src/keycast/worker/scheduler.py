"""Fixed-cadence periodic task runner.

Each periodic task runs as its own loop:
- Ticks are spaced by a fixed interval on the event loop's monotonic clock
- A tick whose body overruns the interval causes the missed ticks to be
  skipped, never queued
- Any exception raised by a tick body is logged and the loop carries on
- The loop exits once the shared shutdown event is set; a running tick is
  allowed to finish first
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodicTask:
    """Definition of a periodic task.

    Attributes:
        name: Label used in log lines.
        interval: Seconds between two tick starts.
        action: Coroutine function executed on every tick.
        run_immediately: Run the first tick right away instead of after one interval.
    """

    name: str
    interval: float
    action: Callable[[], Awaitable[object]]
    run_immediately: bool = False

    def __post_init__(self) -> None:
        if self.interval <= 0:
            msg = f"Interval of {self.name} must be positive, got {self.interval}"
            raise ValueError(msg)


async def run_periodic_task(task: PeriodicTask, shutdown_event: asyncio.Event) -> int:
    """Run a periodic task until shutdown is requested.

    Args:
        task: The task definition.
        shutdown_event: Event that stops the loop when set.

    Returns:
        Number of ticks executed.
    """
    loop = asyncio.get_running_loop()
    next_run = loop.time() if task.run_immediately else loop.time() + task.interval
    ticks = 0

    logger.info(
        "Periodic task starting: name=%s, interval=%ss, run_immediately=%s",
        task.name,
        task.interval,
        task.run_immediately,
    )

    while not shutdown_event.is_set():
        delay = next_run - loop.time()
        if delay > 0:
            # Wait for the next tick or shutdown, whichever comes first
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
            continue

        ticks += 1
        try:
            await task.action()
        except Exception as e:
            logger.exception(
                "Periodic task failed: name=%s, tick=%d, error=%s",
                task.name,
                ticks,
                e,
            )

        next_run += task.interval
        now = loop.time()
        if next_run <= now:
            missed = int((now - next_run) // task.interval) + 1
            next_run += missed * task.interval
            logger.warning(
                "Periodic task overran its interval: name=%s, skipped_ticks=%d",
                task.name,
                missed,
            )

    logger.info("Periodic task stopped: name=%s, ticks=%d", task.name, ticks)
    return ticks
