"""Shared fixtures for cleanmeter tests."""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from cleanmeter.clock import FixedClock
from cleanmeter.models.user import User
from cleanmeter.storage.memory import InMemoryEntitlementStore


@pytest.fixture
def clock():
    """Clock pinned to mid-morning on 2024-03-15 UTC."""
    return FixedClock(datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryEntitlementStore()


@pytest.fixture
def make_user(store, clock):
    """Factory that inserts a user into the in-memory store."""

    async def _make_user(user_id="user-1", email="alice@example.com", **fields):
        user = User(
            id=user_id,
            email=email,
            created_at=clock.now(),
            last_active_at=clock.now(),
            **fields
        )
        return await store.create_user(user)

    return _make_user


@pytest_asyncio.fixture
async def free_user(make_user):
    return await make_user()
