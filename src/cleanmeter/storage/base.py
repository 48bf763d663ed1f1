"""Entitlement store abstraction for cleanmeter."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from ..models.requests import ProRequest, RequestStatus, UpgradeLogEntry
from ..models.user import User

T = TypeVar("T")

# Receives the current record and returns (record to write or None, result).
Transform = Callable[[User], Tuple[Optional[User], T]]


class StoreBackend(str, Enum):
    """Entitlement store backend types."""
    MEMORY = "memory"
    POSTGRES = "postgres"


class EntitlementStore(ABC):
    """Durable keyed record store holding users, requests and upgrade logs.

    Implementations must make ``atomic_update`` linearizable per user and
    ``compare_and_set_request_status`` atomic per request. Driver failures
    surface as ``InternalError``.
    """

    async def connect(self) -> None:
        """Open connections. Called once by the owning entry point."""

    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        """
        Load a user record.

        Args:
            user_id: Opaque user identifier

        Returns:
            The user or None if not found
        """
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Load a user record by (case-insensitive) email."""
        pass

    @abstractmethod
    async def create_user(self, user: User) -> User:
        """Insert a new user record and return it as stored."""
        pass

    @abstractmethod
    async def atomic_update(self, user_id: str, transform: Transform[T]) -> T:
        """
        Apply ``transform`` to a user record as one linearizable step.

        The transform sees the current record. If it returns a record, that
        record replaces the stored one before any other update of the same
        user can observe it. Returning None leaves the record untouched.

        Args:
            user_id: Opaque user identifier
            transform: Pure function of the current record

        Returns:
            The result half of the transform's return value

        Raises:
            NotFoundError: No such user
        """
        pass

    @abstractmethod
    async def append_upgrade_log(self, entry: UpgradeLogEntry) -> UpgradeLogEntry:
        """Append an audit record. Entries are never updated or deleted."""
        pass

    @abstractmethod
    async def list_upgrade_logs(self, user_id: Optional[str] = None) -> List[UpgradeLogEntry]:
        """List audit records, oldest first."""
        pass

    @abstractmethod
    async def add_pro_request(self, request: ProRequest) -> ProRequest:
        """Insert a Pro plan request."""
        pass

    @abstractmethod
    async def query_pro_requests(
        self,
        email: Optional[str] = None,
        status: Optional[RequestStatus] = None
    ) -> List[ProRequest]:
        """List requests matching all given filters in submission order."""
        pass

    @abstractmethod
    async def compare_and_set_request_status(
        self,
        request_id: str,
        expected: RequestStatus,
        new_status: RequestStatus,
        converted_at=None
    ) -> Optional[ProRequest]:
        """
        Move a request from ``expected`` to ``new_status``.

        Returns:
            The updated request, or None if it was missing or no longer in
            ``expected`` status
        """
        pass


def get_store(backend: StoreBackend = StoreBackend.MEMORY, **kwargs) -> EntitlementStore:
    """Factory for entitlement store backends."""
    backend = StoreBackend(backend)
    if backend == StoreBackend.MEMORY:
        from .memory import InMemoryEntitlementStore
        return InMemoryEntitlementStore()
    if backend == StoreBackend.POSTGRES:
        from .postgres import PostgresEntitlementStore
        return PostgresEntitlementStore(**kwargs)
    raise ValueError(f"Unsupported store backend: {backend}")
