"""One-shot expiration countdown for a charge."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .config import config
from .logging_utils import get_logger

logger = get_logger(__name__)


@dataclass
class TimerHandle:
    """Token for one countdown. Invalidated by stop() or by firing."""

    deadline: float
    active: bool = True
    fired: bool = False
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    def remaining(self) -> float:
        """Seconds until expiry, 0 once fired."""
        if self.fired:
            return 0.0
        return max(0.0, self.deadline - time.monotonic())


class ExpirationTimer:
    """Counts down at tick resolution and fires ``on_expired`` exactly once.

    Only one countdown is live per timer; starting again stops the previous
    one first.
    """

    def __init__(
        self,
        on_expired: Callable[[], None],
        tick_interval: Optional[float] = None,
        on_tick: Optional[Callable[[float], None]] = None,
    ):
        self._on_expired = on_expired
        self._on_tick = on_tick
        self.tick_interval = tick_interval or config.tick_interval_seconds
        self._handle: Optional[TimerHandle] = None

    @property
    def is_running(self) -> bool:
        return self._handle is not None and self._handle.active

    def start(self, duration: float) -> TimerHandle:
        """Start a countdown of ``duration`` seconds.

        Must be called from within a running event loop.
        """
        self.stop()
        loop = asyncio.get_running_loop()
        handle = TimerHandle(deadline=time.monotonic() + duration)
        handle.task = loop.create_task(self._run(handle))
        self._handle = handle
        logger.debug(f"Expiration timer started for {duration:.0f}s")
        return handle

    def stop(self, handle: Optional[TimerHandle] = None) -> None:
        """Stop a countdown. Stopping a finished or stopped handle is a no-op."""
        handle = handle or self._handle
        if handle is None:
            return
        handle.active = False
        if handle.task is not None and not handle.task.done() and handle.task is not asyncio.current_task():
            handle.task.cancel()
        if self._handle is handle:
            self._handle = None

    def remaining(self) -> float:
        """Seconds left on the live countdown, 0 when none is running."""
        if self._handle is None:
            return 0.0
        return self._handle.remaining()

    async def _run(self, handle: TimerHandle) -> None:
        while handle.active:
            left = handle.deadline - time.monotonic()
            if left <= 0:
                handle.active = False
                handle.fired = True
                if self._handle is handle:
                    self._handle = None
                logger.info("Charge expired")
                self._on_expired()
                return

            await asyncio.sleep(min(self.tick_interval, left))

            if handle.active and self._on_tick is not None:
                self._on_tick(handle.remaining())
