"""Progress throttling helpers."""
import time
from typing import Callable, Optional


class Throttle:
    """Allows an action at most once per interval."""

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic):
        self.interval = interval
        self._clock = clock
        self._last: Optional[float] = None

    def ready(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self.interval:
            return False
        self._last = now
        return True


class ProgressTracker:
    """
    Turns raw detector progress into throttled percentage updates.

    The detector reports a fraction between 0 and 1 as often as it likes.
    The callback receives a value between 0 and 100, only when it changed by
    at least one percent and no more than once per interval. After
    `destroy()` the callback is never invoked again.
    """

    def __init__(
        self,
        callback: Callable[[float], None],
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._callback = callback
        self._throttle = Throttle(interval, clock)
        self._last_reported = 0.0
        self._destroyed = False

    @property
    def last_reported(self) -> float:
        return self._last_reported

    def update_from_highlighter(self, fraction: float):
        if self._destroyed:
            return

        progress = min(100.0, max(0.0, fraction * 100))
        if progress <= self._last_reported:
            return
        # Completion always goes through
        if progress < 100:
            if progress - self._last_reported < 1 or not self._throttle.ready():
                return

        self._last_reported = progress
        self._callback(progress)

    def destroy(self):
        self._destroyed = True
