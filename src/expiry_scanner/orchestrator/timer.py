from __future__ import annotations

import asyncio
from typing import Callable, Optional

from ..logging import get_logger

LOG = get_logger("orchestrator-timer")


class RepeatingTimer:
    """Cancellable fixed-interval timer running on the current event loop.

    ``callback`` is invoked synchronously on the loop once per interval; it
    must not block. The first firing happens one interval after
    :meth:`start`.
    """

    def __init__(self, interval: float, callback: Callable[[], None], *, name: str = "timer") -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = float(interval)
        self.name = name
        self._callback = callback
        self._task: Optional[asyncio.Task] = None
        self.fired = 0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.active:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            LOG.debug(f"Timer '{self.name}' cancelled after {self.fired} firing(s)")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.fired += 1
            try:
                self._callback()
            except Exception as exc:
                LOG.error(f"Timer '{self.name}' callback failed: {exc}")
