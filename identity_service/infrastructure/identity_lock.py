"""Per-key mutual exclusion for identity reconciliation.

Two observations touching the same email or phone must not run their
read-decide-write sequences concurrently, or both can miss each other and
create competing primaries. Callers hold one lock per ``email:<value>`` and
``phone:<value>`` key for the whole sequence.

Observed-value keys alone do not cover callers that reach the same group
through different values, so callers then also hold one ``root:<id>`` key per
primary they will read or relink. Root keys are only taken while already
holding observed-value keys, never the other way round.

Supports both Redis-based (distributed) and in-memory (single instance) locks.
Keys are always acquired in sorted order so overlapping callers cannot deadlock.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager

from redis.exceptions import LockError, RedisError

from identity_service.domain.errors import LockTimeout
from identity_service.infrastructure.redis import redis_client
from identity_service.settings import settings

logger = logging.getLogger(__name__)


def identity_keys(email: str | None, phone: str | None) -> list[str]:
    """Lock keys for an observation, in acquisition order."""
    keys = []
    if email is not None:
        keys.append(f"email:{email}")
    if phone is not None:
        keys.append(f"phone:{phone}")
    return sorted(keys)


def root_keys(root_ids: Iterable[int]) -> list[str]:
    """Lock keys for the primaries rooting the groups an observation touches."""
    return sorted(f"root:{root_id}" for root_id in set(root_ids))


class InMemoryIdentityLock:
    """In-process locks for development/single instance deployments."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per key; a lock is dropped once nobody references it
        self._refs: dict[str, int] = defaultdict(int)

    def _checkout(self, key: str) -> asyncio.Lock:
        self._refs[key] += 1
        return self._locks.setdefault(key, asyncio.Lock())

    def _checkin(self, key: str) -> None:
        self._refs[key] -= 1
        if self._refs[key] <= 0:
            del self._refs[key]
            self._locks.pop(key, None)

    def active_keys(self) -> list[str]:
        """Keys currently held or waited on."""
        return sorted(self._locks)

    @asynccontextmanager
    async def hold(self, keys: Iterable[str], timeout: float) -> AsyncIterator[None]:
        """Hold every key for the duration of the block.

        Raises:
            LockTimeout: A key could not be acquired within ``timeout`` seconds
        """
        acquired: list[str] = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                got_lock = False
                try:
                    async with asyncio.timeout(timeout):
                        got_lock = await lock.acquire()
                except TimeoutError:
                    # The deadline can fire after acquire() already returned
                    if got_lock:
                        lock.release()
                    self._checkin(key)
                    raise LockTimeout(f"Timed out waiting for identity lock {key}")
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)


class RedisIdentityLock:
    """Redis-based locks for distributed deployments."""

    key_prefix = "lock:identity"

    def __init__(self, fallback: InMemoryIdentityLock) -> None:
        self._fallback = fallback

    async def _release(self, locks: list) -> None:
        for lock in reversed(locks):
            try:
                await lock.release()
            except LockError as e:
                # Lease expired while held; the next holder already owns it
                logger.warning(f"Identity lock {lock.name} expired before release: {e}")

    @asynccontextmanager
    async def hold(self, keys: Iterable[str], timeout: float) -> AsyncIterator[None]:
        """Hold every key for the duration of the block.

        Falls back to in-process locks if Redis fails while acquiring.

        Raises:
            LockTimeout: A key could not be acquired within ``timeout`` seconds
        """
        keys = sorted(set(keys))
        client = redis_client.client
        locks = []
        try:
            for key in keys:
                lock = client.lock(
                    f"{self.key_prefix}:{key}",
                    timeout=settings.identity_lock_lease_seconds,
                    blocking_timeout=timeout,
                )
                if not await lock.acquire():
                    raise LockTimeout(f"Timed out waiting for identity lock {key}")
                locks.append(lock)
        except LockTimeout:
            await self._release(locks)
            raise
        except RedisError as e:
            await self._release(locks)
            logger.warning(f"Redis identity lock failed: {e}. Using in-process lock.")
            async with self._fallback.hold(keys, timeout):
                yield
            return

        try:
            yield
        finally:
            await self._release(locks)


class IdentityLock:
    """Chooses the lock backend per call, Redis when it is connected."""

    def __init__(self) -> None:
        self.memory = InMemoryIdentityLock()
        self.redis = RedisIdentityLock(self.memory)

    def hold(self, keys: Iterable[str], timeout: float | None = None):
        """Async context manager holding every key.

        Usage:
            async with identity_lock.hold(identity_keys(email, phone)):
                ...
        """
        if timeout is None:
            timeout = settings.identity_lock_timeout_seconds
        if settings.redis_enabled and redis_client.client is not None:
            return self.redis.hold(keys, timeout)
        return self.memory.hold(keys, timeout)


# Global identity lock instance
identity_lock = IdentityLock()
