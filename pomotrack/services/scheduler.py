import asyncio
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)

TickCallback = Callable[[int], None]


class ManualScheduler:
    """Scheduler driven by hand: fire() delivers ticks while active."""

    def __init__(self):
        self.callback: TickCallback | None = None
        self.start_count = 0
        self.cancel_count = 0

    @property
    def active(self) -> bool:
        return self.callback is not None

    def start(self, callback: TickCallback) -> None:
        self.callback = callback
        self.start_count += 1

    def cancel(self) -> None:
        if self.callback is not None:
            self.cancel_count += 1
        self.callback = None

    def fire(self, times: int = 1, elapsed: int = 1) -> None:
        for _ in range(times):
            if self.callback is None:
                return
            self.callback(elapsed)


class AsyncioTickScheduler:
    """
    Calls back once per second on the event loop.

    Elapsed whole seconds are measured with time.monotonic, so if the host
    stalls the next callback reports every missed second at once instead of
    replaying them.
    """

    interval = 1.0

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None, clock: Callable[[], float] = time.monotonic):
        self._loop = loop
        self._clock = clock
        self._handle: asyncio.TimerHandle | None = None
        self._callback: TickCallback | None = None
        self._last = 0.0
        self._carry = 0.0

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self, callback: TickCallback) -> None:
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        self._callback = callback
        self._last = self._clock()
        self._carry = 0.0
        self._handle = loop.call_later(self.interval, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._callback = None

    def _fire(self) -> None:
        callback = self._callback
        if callback is None:
            return

        now = self._clock()
        self._carry += now - self._last
        self._last = now
        elapsed = max(1, int(self._carry))
        self._carry = max(0.0, self._carry - elapsed)

        self._handle = self._loop.call_later(self.interval, self._fire)
        try:
            callback(elapsed)
        except Exception:
            logger.exception("Tick callback failed")
            self.cancel()
