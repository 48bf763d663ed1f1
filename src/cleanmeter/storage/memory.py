"""In-process entitlement store.

Backs the test suite and single-process deployments. Records are copied on
the way in and out so callers never hold references into the store.
"""

import asyncio
from typing import Dict, List, Optional

from ..errors import InvalidArgumentError, NotFoundError
from ..logging import get_logger
from ..models.requests import ProRequest, RequestStatus, UpgradeLogEntry
from ..models.user import User
from .base import EntitlementStore, T, Transform

logger = get_logger(__name__)


class InMemoryEntitlementStore(EntitlementStore):
    """Dictionary-backed store with a lock per user record."""

    def __init__(self):
        self._users: Dict[str, User] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._requests: Dict[str, ProRequest] = {}
        self._request_lock = asyncio.Lock()
        self._logs: List[UpgradeLogEntry] = []

    async def get_user(self, user_id: str) -> Optional[User]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        for user in self._users.values():
            if user.email == email:
                return user.model_copy(deep=True)
        return None

    async def create_user(self, user: User) -> User:
        if user.id in self._users:
            raise InvalidArgumentError(f"User {user.id} already exists")
        if await self.get_user_by_email(user.email):
            raise InvalidArgumentError(f"User with email {user.email} already exists")
        self._users[user.id] = user.model_copy(deep=True)
        self._locks[user.id] = asyncio.Lock()
        logger.debug("user_created", user_id=user.id)
        return user.model_copy(deep=True)

    async def atomic_update(self, user_id: str, transform: Transform[T]) -> T:
        lock = self._locks.get(user_id)
        if lock is None:
            raise NotFoundError(f"User {user_id} not found")
        async with lock:
            current = self._users[user_id]
            updated, result = transform(current.model_copy(deep=True))
            if updated is not None:
                self._users[user_id] = updated.model_copy(deep=True)
            return result

    async def append_upgrade_log(self, entry: UpgradeLogEntry) -> UpgradeLogEntry:
        self._logs.append(entry.model_copy(deep=True))
        return entry

    async def list_upgrade_logs(self, user_id: Optional[str] = None) -> List[UpgradeLogEntry]:
        return [
            entry.model_copy(deep=True)
            for entry in self._logs
            if user_id is None or entry.user_id == user_id
        ]

    async def add_pro_request(self, request: ProRequest) -> ProRequest:
        async with self._request_lock:
            self._requests[request.id] = request.model_copy(deep=True)
        return request

    async def query_pro_requests(
        self,
        email: Optional[str] = None,
        status: Optional[RequestStatus] = None
    ) -> List[ProRequest]:
        email = email.strip().lower() if email else None
        matches = [
            request for request in self._requests.values()
            if (email is None or request.email == email)
            and (status is None or request.status == status)
        ]
        # dict preserves insertion order, so ties keep submission order
        matches.sort(key=lambda request: request.submitted_at)
        return [request.model_copy(deep=True) for request in matches]

    async def compare_and_set_request_status(
        self,
        request_id: str,
        expected: RequestStatus,
        new_status: RequestStatus,
        converted_at=None
    ) -> Optional[ProRequest]:
        async with self._request_lock:
            current = self._requests.get(request_id)
            if current is None or current.status != expected:
                return None
            update = {"status": new_status}
            if converted_at is not None:
                update["converted_at"] = converted_at
            updated = current.model_copy(update=update)
            self._requests[request_id] = updated
            return updated.model_copy(deep=True)
