"""Redis-backed keyed lock service.

Two kinds of lock are handed out:

* **Cooldown locks** (``try_acquire``): ``SET NX EX`` with a fixed TTL and no
  explicit release. Used to reject catalog syncs for a store that started
  within the last few seconds.
* **Mutexes** (``hold``): redis-py's token-guarded ``Lock``, whose release
  only deletes the key while it still carries our token. Used to serialize
  all mutation of one conversation for the duration of ingress-through-reply.

The service is injected into callers rather than living at module level so a
different backend can be dropped in when the deployment changes.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from redis.exceptions import LockError

from chatorder.core.exceptions import LockNotAcquiredError

logger = logging.getLogger(__name__)

LOCK_PREFIX = "lock:"
POLL_INTERVAL = 0.05


class LockService:
    """Keyed locks stored in Redis."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis

    async def try_acquire(self, key: str, ttl_seconds: int) -> bool:
        """Take a TTL lock if nobody holds it. Returns False when already held."""
        acquired = await self.redis.set(f"{LOCK_PREFIX}{key}", "1", ex=ttl_seconds, nx=True)
        return bool(acquired)

    @asynccontextmanager
    async def hold(
        self,
        key: str,
        ttl_seconds: float,
        wait_timeout: float,
    ) -> AsyncIterator[None]:
        """Hold an exclusive mutex on ``key`` for the body of the ``async with``.

        Waits up to ``wait_timeout`` seconds. The TTL bounds how long a crashed
        holder can block others.

        Raises:
            LockNotAcquiredError: If the lock could not be taken in time.
        """
        lock = self.redis.lock(
            f"{LOCK_PREFIX}{key}",
            timeout=ttl_seconds,
            sleep=POLL_INTERVAL,
            blocking_timeout=wait_timeout,
            thread_local=False,
        )
        if not await lock.acquire():
            raise LockNotAcquiredError(key)

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # TTL ran out; the key is gone or belongs to the next holder
                logger.warning("Lock %s expired before release", key)
