"""Per-practitioner advisory lock around the validate-then-commit window.

Two concurrent batches for the same practitioner would otherwise both
read the same existing-slot universe and both commit. The lock serializes
them; a batch that cannot get the lock is rejected with 409.

If Redis itself is unreachable the batch proceeds unlocked and a warning
is logged: the read-then-write race is then the only guard, as before.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager, suppress
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from booking_engine.config import settings

logger = logging.getLogger(__name__)

# Lua script for atomic compare-and-delete
COMPARE_AND_DELETE = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("del", KEYS[1])
else
  return 0
end
"""

# Refresh the TTL only while the token still matches
EXTEND_IF_OWNED = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("pexpire", KEYS[1], ARGV[2])
else
  return 0
end
"""


class PractitionerBusyError(RuntimeError):
    """Another batch holds the lock for this practitioner."""

    def __init__(self, lock_key: str):
        super().__init__(f"Another slot batch is already being committed for {lock_key}")
        self.lock_key = lock_key


class PractitionerLock:
    """Token-based Redis lock keyed by practitioner (or seed schedule)."""

    def __init__(
        self,
        redis_client: Optional[redis.Redis],
        ttl_ms: Optional[int] = None,
        retries: Optional[int] = None,
        backoff_seconds: float = 0.05,
    ):
        self.redis = redis_client
        self.ttl_ms = ttl_ms or settings.practitioner_lock_ttl_ms
        self.retries = settings.practitioner_lock_retries if retries is None else retries
        self.backoff_seconds = backoff_seconds

    async def _try_acquire(self, key: str, token: str) -> bool:
        return bool(await self.redis.set(key, token, nx=True, px=self.ttl_ms))

    async def _keep_alive(self, key: str, token: str):
        """Extend the TTL while the holder is still working."""
        interval = self.ttl_ms / 3000
        while True:
            await asyncio.sleep(interval)
            try:
                extended = await self.redis.eval(EXTEND_IF_OWNED, 1, key, token, self.ttl_ms)
            except RedisError as e:
                logger.warning("Failed to extend lock %s: %s", key, e)
                continue
            if not extended:
                logger.warning("Lost slot batch lock %s before the batch finished", key)
                return

    @asynccontextmanager
    async def hold(self, lock_key: str):
        """Hold the lock for `lock_key` for the duration of the block.

        The TTL is refreshed in the background, so a slow commit keeps the
        lock; the TTL only bounds how long a crashed holder blocks others.

        Raises:
            PractitionerBusyError: if the lock is still held after all retries.
        """
        if self.redis is None:
            logger.warning("No Redis client; committing %s without a lock", lock_key)
            yield
            return

        key = f"slot-batch-lock:{lock_key}"
        token = str(uuid.uuid4())
        try:
            acquired = await self._try_acquire(key, token)
            for attempt in range(self.retries):
                if acquired:
                    break
                await asyncio.sleep(self.backoff_seconds * (attempt + 1))
                acquired = await self._try_acquire(key, token)
        except RedisError as e:
            logger.warning("Lock store unavailable (%s); committing %s without a lock", e, lock_key)
            acquired = None

        if acquired is None:
            yield
            return
        if not acquired:
            raise PractitionerBusyError(lock_key)

        logger.debug("Acquired slot batch lock %s (token %s)", key, token[:8])
        keep_alive = asyncio.create_task(self._keep_alive(key, token))
        try:
            yield
        finally:
            keep_alive.cancel()
            with suppress(asyncio.CancelledError):
                await keep_alive
            try:
                await self.redis.eval(COMPARE_AND_DELETE, 1, key, token)
                logger.debug("Released slot batch lock %s", key)
            except RedisError as e:
                logger.warning("Failed to release lock %s: %s", key, e)
