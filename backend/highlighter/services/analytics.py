"""Analytics sinks. Recording an event never blocks or fails the caller."""
import asyncio
import logging
import time
from typing import Any, Dict, Optional, Set

import httpx

from highlighter.config import settings

logger = logging.getLogger(__name__)

ANALYTICS_HTTP_TIMEOUT_SECONDS = 10.0


class LoggingAnalytics:
    """Writes events to the log."""

    def record(self, category: str, data: Dict[str, Any]):
        logger.info(f"analytics {category}: {data}")


class HttpAnalytics:
    """Posts events to an HTTP collector in the background."""

    def __init__(self, url: Optional[str] = None, user_id: Optional[str] = None):
        self.url = url or settings.analytics_url
        self.user_id = user_id
        self._pending: Set[asyncio.Task] = set()

    def record(self, category: str, data: Dict[str, Any]):
        if not self.url:
            return
        event = {
            "category": category,
            "data": data,
            "user_id": self.user_id,
            "timestamp": int(time.time() * 1000),
        }
        try:
            task = asyncio.get_running_loop().create_task(self._send(event))
        except RuntimeError:
            logger.debug(f"No event loop, dropping analytics event {category}")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, event: Dict[str, Any]):
        try:
            async with httpx.AsyncClient(timeout=ANALYTICS_HTTP_TIMEOUT_SECONDS) as client:
                response = await client.post(self.url, json=event)
            if response.status_code >= 400:
                logger.debug(f"Analytics collector returned HTTP {response.status_code}")
        except httpx.HTTPError as e:
            logger.debug(f"Analytics event not delivered: {e}")

    async def close(self):
        """Wait for events still in flight."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
