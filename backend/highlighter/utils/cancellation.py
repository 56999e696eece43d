"""Cooperative cancellation handle."""
import asyncio


class CancellationToken:
    """
    Cancellation handle owned by a running detection.

    Cancelling only sets a flag; long-running work polls `cancelled` or
    awaits `wait()` and stops at its own next safe point.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        self._event.set()

    async def wait(self):
        await self._event.wait()

    def __repr__(self):
        return f"<CancellationToken(cancelled={self.cancelled})>"
