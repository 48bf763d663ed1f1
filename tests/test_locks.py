"""Tests for scan locks."""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cleanmeter.config.settings import Settings
from cleanmeter.errors import InternalError
from cleanmeter.progress import LocalScanLock, RedisScanLock, build_scan_lock


class TestLocalScanLock:
    """Test the in-process lock."""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self):
        lock = LocalScanLock()

        assert await lock.acquire("user-1")
        assert not await lock.acquire("user-1")
        assert await lock.acquire("user-2")

        await lock.release("user-1")
        await lock.release("user-1")

        assert not lock.is_held("user-1")
        assert await lock.acquire("user-1")


class TestRedisScanLock:
    """Test the Redis-backed lock."""

    @pytest.fixture
    def redis(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)
        mock_redis.get = AsyncMock(return_value=None)
        return mock_redis

    @pytest.mark.asyncio
    async def test_acquire_uses_set_nx_with_ttl(self, redis):
        lock = RedisScanLock(redis, ttl_seconds=30)

        assert await lock.acquire("user-1")

        args, kwargs = redis.set.call_args
        assert args[0] == "scan_lock:user-1"
        assert kwargs == {"ex": 30, "nx": True}

    @pytest.mark.asyncio
    async def test_acquire_when_held(self, redis):
        redis.set.return_value = None
        lock = RedisScanLock(redis)

        assert not await lock.acquire("user-1")

    @pytest.mark.asyncio
    async def test_release_deletes_own_token(self, redis):
        lock = RedisScanLock(redis)
        await lock.acquire("user-1")
        token = redis.set.call_args[0][1]

        await lock.release("user-1")
        await lock.release("user-1")

        redis.eval.assert_called_once()
        assert redis.eval.call_args[0][1:] == (1, "scan_lock:user-1", token)

    @pytest.mark.asyncio
    async def test_release_without_acquire_is_noop(self, redis):
        await RedisScanLock(redis).release("user-1")

        redis.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_is_locked(self, redis):
        redis.get.return_value = b"token"

        assert await RedisScanLock(redis).is_locked("user-1")

    @pytest.mark.asyncio
    async def test_redis_errors_become_internal(self, redis):
        redis.set.side_effect = RedisConnectionError("down")

        with pytest.raises(InternalError):
            await RedisScanLock(redis).acquire("user-1")


class TestBuildScanLock:
    """Test lock selection from settings."""

    def test_local_without_redis(self):
        assert isinstance(build_scan_lock(Settings(redis_url=None)), LocalScanLock)

    def test_redis_when_configured(self):
        lock = build_scan_lock(Settings(redis_url="redis://localhost:6379/0", scan_lock_ttl_seconds=45))

        assert isinstance(lock, RedisScanLock)
        assert lock.ttl_seconds == 45
