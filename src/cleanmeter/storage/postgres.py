"""PostgreSQL entitlement store."""

from contextlib import asynccontextmanager
from typing import List, Optional

import asyncpg

from ..errors import InternalError, InvalidArgumentError, NotFoundError
from ..logging import get_logger
from ..models.requests import ProRequest, RequestStatus, UpgradeLogEntry
from ..models.user import Plan, Usage, User
from .base import EntitlementStore, T, Transform

logger = get_logger(__name__)

SCHEMA = """
    CREATE TABLE IF NOT EXISTS cmp_users (
        id VARCHAR(255) PRIMARY KEY,
        email VARCHAR(255) UNIQUE NOT NULL,
        display_name VARCHAR(255),
        plan_type VARCHAR(20) NOT NULL DEFAULT 'free',
        plan_expires_at TIMESTAMP WITH TIME ZONE,
        plan_activated_at TIMESTAMP WITH TIME ZONE,
        plan_activated_by VARCHAR(255),
        plan_method VARCHAR(20),
        scans_today INTEGER NOT NULL DEFAULT 0,
        last_scan_date DATE,
        total_cleaned_bytes BIGINT NOT NULL DEFAULT 0,
        last_cleanup_date DATE,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        last_active_at TIMESTAMP WITH TIME ZONE
    );

    CREATE TABLE IF NOT EXISTS cmp_upgrade_logs (
        seq BIGSERIAL,
        id VARCHAR(36) PRIMARY KEY,
        user_id VARCHAR(255) NOT NULL,
        identifier VARCHAR(255) NOT NULL,
        user_email VARCHAR(255) NOT NULL,
        plan VARCHAR(20) NOT NULL,
        duration VARCHAR(20) NOT NULL,
        activated_by VARCHAR(255) NOT NULL,
        notes TEXT,
        timestamp TIMESTAMP WITH TIME ZONE NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_upgrade_logs_user ON cmp_upgrade_logs (user_id, timestamp);

    CREATE TABLE IF NOT EXISTS cmp_pro_requests (
        seq BIGSERIAL,
        id VARCHAR(36) PRIMARY KEY,
        user_id VARCHAR(255) NOT NULL,
        email VARCHAR(255) NOT NULL,
        preferred_contact VARCHAR(20) NOT NULL,
        phone VARCHAR(64),
        whatsapp VARCHAR(64),
        country VARCHAR(64),
        message TEXT,
        status VARCHAR(20) NOT NULL DEFAULT 'pending',
        submitted_at TIMESTAMP WITH TIME ZONE NOT NULL,
        converted_at TIMESTAMP WITH TIME ZONE
    );

    CREATE INDEX IF NOT EXISTS idx_pro_requests_email_status
    ON cmp_pro_requests (email, status, submitted_at);
"""


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        display_name=row["display_name"],
        plan=Plan(
            type=row["plan_type"],
            expires_at=row["plan_expires_at"],
            activated_at=row["plan_activated_at"],
            activated_by=row["plan_activated_by"],
            method=row["plan_method"],
        ),
        usage=Usage(
            scans_today=row["scans_today"],
            last_scan_date=row["last_scan_date"],
            total_cleaned_bytes=row["total_cleaned_bytes"],
            last_cleanup_date=row["last_cleanup_date"],
        ),
        created_at=row["created_at"],
        last_active_at=row["last_active_at"],
    )


def _row_to_request(row) -> ProRequest:
    return ProRequest(
        id=row["id"],
        user_id=row["user_id"],
        email=row["email"],
        preferred_contact=row["preferred_contact"],
        phone=row["phone"],
        whatsapp=row["whatsapp"],
        country=row["country"],
        message=row["message"],
        status=row["status"],
        submitted_at=row["submitted_at"],
        converted_at=row["converted_at"],
    )


def _row_to_log(row) -> UpgradeLogEntry:
    return UpgradeLogEntry(
        id=row["id"],
        user_id=row["user_id"],
        identifier=row["identifier"],
        user_email=row["user_email"],
        plan=row["plan"],
        duration=row["duration"],
        activated_by=row["activated_by"],
        notes=row["notes"],
        timestamp=row["timestamp"],
    )


class PostgresEntitlementStore(EntitlementStore):
    """PostgreSQL storage for users, Pro requests and upgrade logs.

    Per-user updates run in a transaction holding a row lock
    (``SELECT ... FOR UPDATE``), which serialises concurrent meters for the
    same user across processes.
    """

    def __init__(self, connection_string: str, min_size: int = 1, max_size: int = 10):
        self.connection_string = connection_string
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_size,
                max_size=self.max_size,
            )
        except (asyncpg.PostgresError, OSError) as e:
            raise InternalError(f"Failed to connect to PostgreSQL: {e}") from e
        logger.info("postgres_pool_opened", max_size=self.max_size)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("postgres_pool_closed")

    @asynccontextmanager
    async def connection(self):
        """Acquire a pooled connection, wrapping driver errors."""
        if self._pool is None:
            raise InternalError("Entitlement store is not connected")
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, OSError) as e:
            logger.error("postgres_error", error=str(e))
            raise InternalError(f"Storage failure: {e}") from e

    async def create_tables(self):
        """Create entitlement tables."""
        async with self.connection() as conn:
            await conn.execute(SCHEMA)

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self.connection() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM cmp_users WHERE id = $1
            """, user_id)

        return _row_to_user(row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self.connection() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM cmp_users WHERE email = $1
            """, email.strip().lower())

        return _row_to_user(row) if row else None

    async def create_user(self, user: User) -> User:
        async with self.connection() as conn:
            try:
                row = await conn.fetchrow("""
                    INSERT INTO cmp_users
                    (id, email, display_name, plan_type, plan_expires_at, plan_activated_at,
                     plan_activated_by, plan_method, scans_today, last_scan_date,
                     total_cleaned_bytes, last_cleanup_date, created_at, last_active_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12,
                            COALESCE($13, NOW()), $14)
                    RETURNING *
                """, *self._user_params(user), user.created_at, user.last_active_at)
            except asyncpg.UniqueViolationError as e:
                raise InvalidArgumentError(f"User {user.id} <{user.email}> already exists") from e

        return _row_to_user(row)

    async def atomic_update(self, user_id: str, transform: Transform[T]) -> T:
        async with self.connection() as conn:
            async with conn.transaction():
                row = await conn.fetchrow("""
                    SELECT * FROM cmp_users WHERE id = $1 FOR UPDATE
                """, user_id)
                if row is None:
                    raise NotFoundError(f"User {user_id} not found")

                updated, result = transform(_row_to_user(row))
                if updated is not None:
                    await conn.execute("""
                        UPDATE cmp_users SET
                            email = $2,
                            display_name = $3,
                            plan_type = $4,
                            plan_expires_at = $5,
                            plan_activated_at = $6,
                            plan_activated_by = $7,
                            plan_method = $8,
                            scans_today = $9,
                            last_scan_date = $10,
                            total_cleaned_bytes = $11,
                            last_cleanup_date = $12,
                            last_active_at = $13
                        WHERE id = $1
                    """, *self._user_params(updated), updated.last_active_at)
                return result

    async def append_upgrade_log(self, entry: UpgradeLogEntry) -> UpgradeLogEntry:
        async with self.connection() as conn:
            await conn.execute("""
                INSERT INTO cmp_upgrade_logs
                (id, user_id, identifier, user_email, plan, duration, activated_by, notes, timestamp)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            """, entry.id, entry.user_id, entry.identifier, entry.user_email,
                entry.plan.value, entry.duration.value, entry.activated_by,
                entry.notes, entry.timestamp)
        return entry

    async def list_upgrade_logs(self, user_id: Optional[str] = None) -> List[UpgradeLogEntry]:
        async with self.connection() as conn:
            if user_id is None:
                rows = await conn.fetch("""
                    SELECT * FROM cmp_upgrade_logs ORDER BY timestamp, seq
                """)
            else:
                rows = await conn.fetch("""
                    SELECT * FROM cmp_upgrade_logs WHERE user_id = $1 ORDER BY timestamp, seq
                """, user_id)

        return [_row_to_log(row) for row in rows]

    async def add_pro_request(self, request: ProRequest) -> ProRequest:
        async with self.connection() as conn:
            await conn.execute("""
                INSERT INTO cmp_pro_requests
                (id, user_id, email, preferred_contact, phone, whatsapp, country,
                 message, status, submitted_at, converted_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            """, request.id, request.user_id, request.email, request.preferred_contact.value,
                request.phone, request.whatsapp, request.country, request.message,
                request.status.value, request.submitted_at, request.converted_at)
        return request

    async def query_pro_requests(
        self,
        email: Optional[str] = None,
        status: Optional[RequestStatus] = None
    ) -> List[ProRequest]:
        clauses = []
        params = []
        if email is not None:
            params.append(email.strip().lower())
            clauses.append(f"email = ${len(params)}")
        if status is not None:
            params.append(RequestStatus(status).value)
            clauses.append(f"status = ${len(params)}")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        async with self.connection() as conn:
            rows = await conn.fetch(
                f"SELECT * FROM cmp_pro_requests {where} ORDER BY submitted_at, seq",
                *params
            )

        return [_row_to_request(row) for row in rows]

    async def compare_and_set_request_status(
        self,
        request_id: str,
        expected: RequestStatus,
        new_status: RequestStatus,
        converted_at=None
    ) -> Optional[ProRequest]:
        async with self.connection() as conn:
            row = await conn.fetchrow("""
                UPDATE cmp_pro_requests SET
                    status = $3,
                    converted_at = COALESCE($4, converted_at)
                WHERE id = $1 AND status = $2
                RETURNING *
            """, request_id, RequestStatus(expected).value, RequestStatus(new_status).value,
                converted_at)

        return _row_to_request(row) if row else None

    @staticmethod
    def _user_params(user: User) -> tuple:
        plan = user.plan
        usage = user.usage
        return (
            user.id,
            user.email,
            user.display_name,
            plan.type.value,
            plan.expires_at,
            plan.activated_at,
            plan.activated_by,
            plan.method.value if plan.method else None,
            usage.scans_today,
            usage.last_scan_date,
            usage.total_cleaned_bytes,
            usage.last_cleanup_date,
        )
