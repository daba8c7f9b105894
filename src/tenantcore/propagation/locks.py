"""Per-target exclusive locks.

Two runs must never interleave writes to the same tenant's data
category. Every target write (and every rollback restore) happens while
holding the ``(tenant_id, data_category)`` lock.

Two backends:
- ``InMemoryTargetLocks`` — asyncio locks, one process.
- ``RedisTargetLocks`` — redis-py locks shared by every worker on the same Redis.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from ..config import LockBackend, PropagationSettings, SharedConfig
from ..exceptions import ConfigurationError, TargetLockTimeoutError

logger = logging.getLogger(__name__)


class TargetLockManager(ABC):
    """Grants exclusive access to one tenant's data category."""

    @abstractmethod
    def hold(self, tenant_id: str, category: str, timeout: float) -> Any:
        """Async context manager holding the lock.

        Raises:
            TargetLockTimeoutError: if the lock is not acquired within ``timeout`` seconds.
        """
        raise NotImplementedError


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class InMemoryTargetLocks(TargetLockManager):
    """asyncio.Lock per ``(tenant_id, category)``.

    An entry lives only while some task holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], _LockEntry] = {}

    def locked(self, tenant_id: str, category: str) -> bool:
        entry = self._locks.get((tenant_id, category))
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, tenant_id: str, category: str, timeout: float) -> AsyncIterator[None]:
        key = (tenant_id, category)
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _LockEntry()
        entry.users += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise TargetLockTimeoutError(
                    f"Timed out after {timeout}s waiting for {category} lock on {tenant_id}",
                    tenant_id=tenant_id,
                    category=category,
                ) from e
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]


class RedisTargetLocks(TargetLockManager):
    """Distributed locks via ``redis.asyncio`` ``Redis.lock()``.

    ``ttl_seconds`` bounds how long a lock survives a crashed holder.
    """

    def __init__(self, client: Any, prefix: str = "tenantcore:locks", ttl_seconds: int = 120) -> None:
        self._client = client
        self._prefix = prefix
        self._ttl = ttl_seconds

    def _key(self, tenant_id: str, category: str) -> str:
        return f"{self._prefix}:{tenant_id}:{category}"

    @asynccontextmanager
    async def hold(self, tenant_id: str, category: str, timeout: float) -> AsyncIterator[None]:
        from redis.exceptions import LockError

        lock = self._client.lock(
            self._key(tenant_id, category),
            timeout=self._ttl,
            blocking_timeout=timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise TargetLockTimeoutError(
                f"Timed out after {timeout}s waiting for {category} lock on {tenant_id}",
                tenant_id=tenant_id,
                category=category,
            )
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Expired under us: the TTL elapsed before the write finished.
                logger.warning("Lock %s was lost before release: %s", self._key(tenant_id, category), e)


def create_lock_manager(
    config: SharedConfig | PropagationSettings,
    redis_client: Optional[Any] = None,
    redis_url: Optional[str] = None,
) -> TargetLockManager:
    """Build the lock manager selected by ``lock_backend``.

    Raises:
        ConfigurationError: redis backend without a client or REDIS_URL.
    """
    if isinstance(config, SharedConfig):
        settings = config.propagation
        redis_url = redis_url or config.redis_url
    else:
        settings = config

    if settings.lock_backend != LockBackend.REDIS:
        return InMemoryTargetLocks()

    if redis_client is None:
        if not redis_url:
            raise ConfigurationError("PROPAGATION_LOCK_BACKEND=redis requires REDIS_URL")
        import redis.asyncio as aioredis

        redis_client = aioredis.from_url(redis_url, decode_responses=True)
    return RedisTargetLocks(redis_client, prefix=settings.lock_key_prefix, ttl_seconds=settings.lock_ttl_seconds)


__all__ = [
    "InMemoryTargetLocks",
    "RedisTargetLocks",
    "TargetLockManager",
    "create_lock_manager",
]
