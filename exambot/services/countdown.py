from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CountdownTimer:
    """One-second countdown driven by the running asyncio loop.

    ``tick()`` may also be called directly; the scheduled callback does
    nothing more than call it and reschedule itself.
    """

    def __init__(
        self,
        on_expire: Optional[Callable[[], None]] = None,
        on_tick: Optional[Callable[[int], None]] = None,
        interval: float = 1.0,
    ) -> None:
        self.on_expire = on_expire
        self.on_tick = on_tick
        self.interval = interval
        self.remaining = 0
        self._running = False
        self._handle: asyncio.TimerHandle | None = None
        self._origin: Optional[float] = None
        self._scheduled = 0

    @property
    def running(self) -> bool:
        return self._running

    def start(self, duration_seconds: int) -> None:
        if duration_seconds < 0:
            raise ValueError("duration_seconds must be >= 0")
        # restart cleanly so repeated starts never stack tick sources
        self.stop()
        self.remaining = int(duration_seconds)
        self._running = True
        self._origin = None
        self._scheduled = 0
        self._schedule()

    def stop(self) -> None:
        self._running = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def tick(self) -> None:
        if not self._running:
            return
        self.remaining = max(0, self.remaining - 1)
        if self.on_tick is not None:
            self.on_tick(self.remaining)
        if self.remaining == 0:
            self.stop()
            logger.debug("Countdown expired")
            if self.on_expire is not None:
                self.on_expire()

    def _schedule(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop: the owner drives tick() by hand
            self._handle = None
            return
        # tick n is due at origin + n * interval
        if self._origin is None:
            self._origin = loop.time()
        self._scheduled += 1
        self._handle = loop.call_at(self._origin + self._scheduled * self.interval, self._on_interval)

    def _on_interval(self) -> None:
        self._handle = None
        self.tick()
        if self._running:
            self._schedule()
