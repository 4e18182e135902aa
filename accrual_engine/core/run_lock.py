import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis_async

logger = logging.getLogger(__name__)


class RunLock:
    """Advisory lock taken around every scheduled task run.

    With a REDIS_URL configured the lock is a Redis key per task name, so two
    service instances never execute the same task at the same time. Without
    it the lock always succeeds and the deployment must run exactly one
    scheduler instance.
    """

    def __init__(self, redis_url: Optional[str] = None, ttl_seconds: int = 4 * 3600, prefix: str = "accrual-engine:task-lock"):
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self._client = redis_async.from_url(redis_url) if redis_url else None
        if self._client is None:
            logger.info("No REDIS_URL configured; task runs are only guarded within this process")

    @property
    def distributed(self) -> bool:
        return self._client is not None

    @asynccontextmanager
    async def hold(self, task_name: str) -> AsyncIterator[bool]:
        """Yield True if this instance may run the task now."""
        if self._client is None:
            yield True
            return

        lock = self._client.lock(f"{self.prefix}:{task_name}", timeout=self.ttl_seconds, blocking=False)
        acquired = await lock.acquire()
        try:
            yield bool(acquired)
        finally:
            if acquired:
                try:
                    await lock.release()
                except Exception as e:
                    # Lock may have expired under a very slow run
                    logger.warning(f"Failed to release run lock for task {task_name}: {e}")

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
