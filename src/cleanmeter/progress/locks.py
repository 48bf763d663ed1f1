"""Exclusive scan locks, one holder per scope."""

import uuid
from abc import ABC, abstractmethod
from typing import Dict, Set

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..config.settings import Settings
from ..errors import InternalError
from ..logging import get_logger

logger = get_logger(__name__)

# Deletes the key only while it still holds our token.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class ScanLock(ABC):
    """Guards a scope so at most one scan runs in it."""

    @abstractmethod
    async def acquire(self, scope: str) -> bool:
        """Try to take the lock. Returns False if another scan holds it."""

    @abstractmethod
    async def release(self, scope: str) -> None:
        """Release a lock taken by this holder. Releasing twice is a no-op."""


class LocalScanLock(ScanLock):
    """In-process lock for a single event loop."""

    def __init__(self):
        self._held: Set[str] = set()

    async def acquire(self, scope: str) -> bool:
        if scope in self._held:
            return False
        self._held.add(scope)
        return True

    async def release(self, scope: str) -> None:
        self._held.discard(scope)

    def is_held(self, scope: str) -> bool:
        return scope in self._held


class RedisScanLock(ScanLock):
    """Cross-process lock using ``SET key token NX EX ttl``.

    The TTL bounds how long a crashed holder can block its scope.
    """

    def __init__(self, redis: Redis, ttl_seconds: int = 600, prefix: str = "scan_lock"):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self._tokens: Dict[str, str] = {}

    def _key(self, scope: str) -> str:
        return f"{self.prefix}:{scope}"

    async def acquire(self, scope: str) -> bool:
        token = uuid.uuid4().hex
        try:
            acquired = await self.redis.set(
                self._key(scope),
                token,
                ex=self.ttl_seconds,
                nx=True
            )
        except RedisError as e:
            raise InternalError(f"Failed to acquire scan lock: {e}") from e

        if acquired:
            self._tokens[scope] = token
            return True
        return False

    async def release(self, scope: str) -> None:
        token = self._tokens.pop(scope, None)
        if token is None:
            return
        try:
            await self.redis.eval(_RELEASE_SCRIPT, 1, self._key(scope), token)
        except RedisError as e:
            logger.error("scan_lock_release_failed", scope=scope, error=str(e))
            raise InternalError(f"Failed to release scan lock: {e}") from e

    async def is_locked(self, scope: str) -> bool:
        try:
            value = await self.redis.get(self._key(scope))
        except RedisError as e:
            raise InternalError(f"Failed to read scan lock: {e}") from e
        return value is not None


def build_scan_lock(settings: Settings) -> ScanLock:
    """Redis lock when ``redis_url`` is configured, otherwise in-process."""
    if settings.redis_url:
        client = Redis.from_url(settings.redis_url, decode_responses=True)
        return RedisScanLock(client, ttl_seconds=settings.scan_lock_ttl_seconds)
    return LocalScanLock()
