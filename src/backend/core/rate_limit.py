"""
Per-actor write quota.

slowapi guards every route per client IP; this limiter additionally caps
lifecycle writes per (actor, resource class) with a moving window from the
`limits` package (the storage/strategy layer slowapi is built on).
"""

import logging
import time
from typing import Optional
from uuid import UUID

from limits import parse
from limits.aio.storage import MemoryStorage
from limits.aio.strategies import MovingWindowRateLimiter

from core.config import settings
from core.exceptions import RateLimitedError
from core.metrics import track_rejected_write
from db.enums import ResourceClass

logger = logging.getLogger(__name__)


class WriteRateLimiter:
    """Moving-window write quota keyed by actor id and resource class."""

    def __init__(self, limit: Optional[str] = None):
        self.reset()
        self.configure(limit or settings.rate_limit.write_limit_string)

    def configure(self, limit: str) -> None:
        """Replace the quota, e.g. "30/60 second"."""
        self.item = parse(limit)

    async def check(self, actor_id: UUID, resource_class: ResourceClass) -> None:
        """
        Count one write attempt against the actor's quota.

        Raises:
            RateLimitedError: If the quota for this resource class is spent
        """
        keys = (str(actor_id), resource_class.value)
        if await self.strategy.hit(self.item, *keys):
            return

        stats = await self.strategy.get_window_stats(self.item, *keys)
        retry_after = max(1, int(stats.reset_time - time.time()))
        track_rejected_write(resource_class.value, RateLimitedError.code)
        logger.info(
            f"Write quota exceeded | Actor: {actor_id} | Class: {resource_class.value} | "
            f"Retry after: {retry_after}s"
        )
        raise RateLimitedError(retry_after=retry_after)

    def reset(self) -> None:
        """Drop all recorded hits."""
        self.storage = MemoryStorage()
        self.strategy = MovingWindowRateLimiter(self.storage)


write_rate_limiter = WriteRateLimiter()
