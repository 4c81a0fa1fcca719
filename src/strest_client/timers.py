"""Recurring timers driven by the asyncio event loop."""

import asyncio
from collections.abc import Callable

from strest_client.telemetry.logger import get_logger

logger = get_logger(__name__)


class PeriodicTimer:
    """Call ``callback`` every ``interval`` seconds until cancelled.

    At most one run is live per timer: ``start`` cancels the previous run
    before scheduling a new one.
    """

    def __init__(self, interval: float, callback: Callable[[], object], name: str = "timer"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._task: asyncio.Task | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        logger.debug("timer_started", timer=self.name, interval=self.interval)

    def cancel(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        if not task.done():
            task.cancel()
            logger.debug("timer_cancelled", timer=self.name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.ticks += 1
            try:
                self.callback()
            except Exception:
                logger.exception("timer_callback_failed", timer=self.name)
