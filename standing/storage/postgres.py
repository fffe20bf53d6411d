"""asyncpg-backed repositories."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import AsyncIterator, Iterator, Optional
from uuid import UUID

import asyncpg

from standing.errors import Conflict, NotFound, StorageFailure
from standing.models import (
    AuditRecord,
    ConfigurableType,
    CsrfToken,
    Member,
    MemberStatus,
    Payment,
    Session,
    TypeKind,
)

logger = logging.getLogger(__name__)

# pg_advisory_xact_lock key guarding first-run admin creation.
_SETUP_LOCK_KEY = 7_170_301

_TRANSIENT_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
    OSError,
)

_CONSTRAINT_DETAILS = {
    "members_email_key": "email_taken",
    "members_username_key": "username_taken",
    "payments_external_ref_key": "duplicate_external_ref",
    "configurable_types_kind_slug_key": "slug_taken",
    "configurable_types_kind_name_key": "name_taken",
    "sessions_token_hash_key": "token_collision",
}

_MEMBER_COLUMNS = """
    id, email, username, display_name, password_hash, status, role,
    membership_type_id, joined_at, dues_paid_until, bypass_dues, notes,
    rejected_at, suspended_at, version, created_at, updated_at
"""

_PAYMENT_COLUMNS = """
    id, member_id, external_ref, amount_cents, currency, status, method,
    description, paid_at, created_at, updated_at
"""

_TYPE_COLUMNS = """
    id, kind, name, slug, description, color, icon, sort_order, is_active,
    is_system, fee_cents, billing_period, created_at, updated_at
"""


@contextmanager
def translate_errors() -> Iterator[None]:
    """Map driver errors onto the domain taxonomy."""
    try:
        yield
    except asyncpg.exceptions.UniqueViolationError as exc:
        constraint = getattr(exc, "constraint_name", None) or ""
        raise Conflict(_CONSTRAINT_DETAILS.get(constraint, "conflict")) from exc
    except asyncpg.exceptions.ForeignKeyViolationError as exc:
        raise NotFound("referenced_entity_missing") from exc
    except _TRANSIENT_ERRORS as exc:
        logger.warning("storage unavailable", extra={"error": type(exc).__name__})
        raise StorageFailure() from exc


def _rows_affected(status: str) -> int:
    # asyncpg returns command tags like "UPDATE 1" / "DELETE 3"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class PostgresMemberRepository:
    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def _one(self, query: str, *args) -> Optional[Member]:
        row = await self._conn.fetchrow(query, *args)
        return Member.from_record(row) if row else None

    async def get(self, member_id: UUID) -> Optional[Member]:
        return await self._one(f"SELECT {_MEMBER_COLUMNS} FROM members WHERE id = $1", member_id)

    async def get_by_email(self, email: str) -> Optional[Member]:
        return await self._one(f"SELECT {_MEMBER_COLUMNS} FROM members WHERE email = $1", email)

    async def get_by_username(self, username: str) -> Optional[Member]:
        return await self._one(f"SELECT {_MEMBER_COLUMNS} FROM members WHERE username = $1", username)

    async def lock(self, member_id: UUID) -> Optional[Member]:
        return await self._one(f"SELECT {_MEMBER_COLUMNS} FROM members WHERE id = $1 FOR UPDATE", member_id)

    async def insert(self, member: Member) -> Member:
        row = await self._conn.fetchrow(
            f"""
            INSERT INTO members (
                id, email, username, display_name, password_hash, status, role,
                membership_type_id, joined_at, dues_paid_until, bypass_dues, notes,
                rejected_at, suspended_at, version, created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
            RETURNING {_MEMBER_COLUMNS}
            """,
            member.id,
            member.email,
            member.username,
            member.display_name,
            member.password_hash,
            member.status.value,
            member.role.value,
            member.membership_type_id,
            member.joined_at,
            member.dues_paid_until,
            member.bypass_dues,
            member.notes,
            member.rejected_at,
            member.suspended_at,
            member.version,
            member.created_at,
            member.updated_at,
        )
        return Member.from_record(row)

    async def save(self, member: Member) -> Member:
        row = await self._conn.fetchrow(
            f"""
            UPDATE members
            SET email = $3,
                username = $4,
                display_name = $5,
                password_hash = $6,
                status = $7,
                role = $8,
                membership_type_id = $9,
                joined_at = $10,
                dues_paid_until = $11,
                bypass_dues = $12,
                notes = $13,
                rejected_at = $14,
                suspended_at = $15,
                updated_at = $16,
                version = version + 1
            WHERE id = $1 AND version = $2
            RETURNING {_MEMBER_COLUMNS}
            """,
            member.id,
            member.version,
            member.email,
            member.username,
            member.display_name,
            member.password_hash,
            member.status.value,
            member.role.value,
            member.membership_type_id,
            member.joined_at,
            member.dues_paid_until,
            member.bypass_dues,
            member.notes,
            member.rejected_at,
            member.suspended_at,
            member.updated_at,
        )
        if row is None:
            exists = await self._conn.fetchval("SELECT 1 FROM members WHERE id = $1", member.id)
            raise Conflict("concurrent_update") if exists else NotFound("member_not_found")
        return Member.from_record(row)

    async def list(
        self,
        *,
        status: Optional[MemberStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Member]:
        rows = await self._conn.fetch(
            f"""
            SELECT {_MEMBER_COLUMNS} FROM members
            WHERE ($1::text IS NULL OR status = $1)
            ORDER BY created_at, id
            LIMIT $2 OFFSET $3
            """,
            status.value if status else None,
            limit,
            offset,
        )
        return [Member.from_record(row) for row in rows]

    async def list_lapsed(self, now: datetime, *, limit: int = 500) -> list[Member]:
        rows = await self._conn.fetch(
            f"""
            SELECT {_MEMBER_COLUMNS} FROM members
            WHERE status = 'active' AND bypass_dues = FALSE
              AND dues_paid_until IS NOT NULL AND dues_paid_until <= $1
            ORDER BY dues_paid_until
            LIMIT $2
            """,
            now,
            limit,
        )
        return [Member.from_record(row) for row in rows]

    async def list_grace_elapsed(self, cutoff: datetime, *, limit: int = 500) -> list[Member]:
        rows = await self._conn.fetch(
            f"""
            SELECT {_MEMBER_COLUMNS} FROM members
            WHERE status = 'expired' AND bypass_dues = FALSE
              AND dues_paid_until IS NOT NULL AND dues_paid_until <= $1
            ORDER BY dues_paid_until
            LIMIT $2
            """,
            cutoff,
            limit,
        )
        return [Member.from_record(row) for row in rows]

    async def count_with_type(self, type_id: UUID) -> int:
        return int(await self._conn.fetchval("SELECT COUNT(*) FROM members WHERE membership_type_id = $1", type_id))

    async def lock_setup(self) -> None:
        await self._conn.execute("SELECT pg_advisory_xact_lock($1)", _SETUP_LOCK_KEY)

    async def count_admins(self) -> int:
        return int(await self._conn.fetchval("SELECT COUNT(*) FROM members WHERE role = 'admin'"))


class PostgresPaymentRepository:
    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def get(self, payment_id: UUID) -> Optional[Payment]:
        row = await self._conn.fetchrow(f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE id = $1", payment_id)
        return Payment.from_record(row) if row else None

    async def get_by_external_ref(self, external_ref: str) -> Optional[Payment]:
        row = await self._conn.fetchrow(
            f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE external_ref = $1",
            external_ref,
        )
        return Payment.from_record(row) if row else None

    async def insert(self, payment: Payment) -> Payment:
        row = await self._conn.fetchrow(
            f"""
            INSERT INTO payments (
                id, member_id, external_ref, amount_cents, currency, status, method,
                description, paid_at, created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            RETURNING {_PAYMENT_COLUMNS}
            """,
            payment.id,
            payment.member_id,
            payment.external_ref,
            payment.amount_cents,
            payment.currency,
            payment.status.value,
            payment.method.value,
            payment.description,
            payment.paid_at,
            payment.created_at,
            payment.updated_at,
        )
        return Payment.from_record(row)

    async def save(self, payment: Payment) -> Payment:
        row = await self._conn.fetchrow(
            f"""
            UPDATE payments
            SET status = $2, paid_at = $3, description = $4, updated_at = $5
            WHERE id = $1
            RETURNING {_PAYMENT_COLUMNS}
            """,
            payment.id,
            payment.status.value,
            payment.paid_at,
            payment.description,
            payment.updated_at,
        )
        if row is None:
            raise NotFound("payment_not_found")
        return Payment.from_record(row)

    async def list_for_member(self, member_id: UUID, *, limit: int = 50) -> list[Payment]:
        rows = await self._conn.fetch(
            f"""
            SELECT {_PAYMENT_COLUMNS} FROM payments
            WHERE member_id = $1
            ORDER BY created_at DESC
            LIMIT $2
            """,
            member_id,
            limit,
        )
        return [Payment.from_record(row) for row in rows]


class PostgresAuditRepository:
    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def append(self, record: AuditRecord) -> AuditRecord:
        row = await self._conn.fetchrow(
            """
            INSERT INTO audit_log (
                actor_id, action, entity_type, entity_id, before_value, after_value,
                ip, user_agent, created_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING id, actor_id, action, entity_type, entity_id, before_value,
                      after_value, ip, user_agent, created_at
            """,
            record.actor_id,
            record.action,
            record.entity_type,
            record.entity_id,
            record.before,
            record.after,
            record.ip,
            record.user_agent,
            record.created_at,
        )
        return AuditRecord.from_record(row)

    async def list(
        self,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        before_id: Optional[int] = None,
        limit: int = 50,
    ) -> list[AuditRecord]:
        rows = await self._conn.fetch(
            """
            SELECT id, actor_id, action, entity_type, entity_id, before_value,
                   after_value, ip, user_agent, created_at
            FROM audit_log
            WHERE ($1::text IS NULL OR entity_type = $1)
              AND ($2::text IS NULL OR entity_id = $2)
              AND ($3::uuid IS NULL OR actor_id = $3)
              AND ($4::bigint IS NULL OR id < $4)
            ORDER BY id DESC
            LIMIT $5
            """,
            entity_type,
            entity_id,
            actor_id,
            before_id,
            limit,
        )
        return [AuditRecord.from_record(row) for row in rows]


class PostgresTypeRepository:
    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def list(self, kind: TypeKind, *, include_inactive: bool = False) -> list[ConfigurableType]:
        rows = await self._conn.fetch(
            f"""
            SELECT {_TYPE_COLUMNS} FROM configurable_types
            WHERE kind = $1 AND ($2 OR is_active)
            ORDER BY sort_order, lower(name)
            """,
            kind.value,
            include_inactive,
        )
        return [ConfigurableType.from_record(row) for row in rows]

    async def get(self, kind: TypeKind, type_id: UUID) -> Optional[ConfigurableType]:
        row = await self._conn.fetchrow(
            f"SELECT {_TYPE_COLUMNS} FROM configurable_types WHERE kind = $1 AND id = $2",
            kind.value,
            type_id,
        )
        return ConfigurableType.from_record(row) if row else None

    async def get_by_slug(self, kind: TypeKind, slug: str) -> Optional[ConfigurableType]:
        row = await self._conn.fetchrow(
            f"SELECT {_TYPE_COLUMNS} FROM configurable_types WHERE kind = $1 AND slug = $2",
            kind.value,
            slug,
        )
        return ConfigurableType.from_record(row) if row else None

    async def insert(self, item: ConfigurableType) -> ConfigurableType:
        row = await self._conn.fetchrow(
            f"""
            INSERT INTO configurable_types (
                id, kind, name, slug, description, color, icon, sort_order, is_active,
                is_system, fee_cents, billing_period, created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
            RETURNING {_TYPE_COLUMNS}
            """,
            item.id,
            item.kind.value,
            item.name,
            item.slug,
            item.description,
            item.color,
            item.icon,
            item.sort_order,
            item.is_active,
            item.is_system,
            item.fee_cents,
            item.billing_period.value if item.billing_period else None,
            item.created_at,
            item.updated_at,
        )
        return ConfigurableType.from_record(row)

    async def save(self, item: ConfigurableType) -> ConfigurableType:
        row = await self._conn.fetchrow(
            f"""
            UPDATE configurable_types
            SET name = $3, slug = $4, description = $5, color = $6, icon = $7,
                sort_order = $8, is_active = $9, fee_cents = $10, billing_period = $11,
                updated_at = $12
            WHERE kind = $1 AND id = $2
            RETURNING {_TYPE_COLUMNS}
            """,
            item.kind.value,
            item.id,
            item.name,
            item.slug,
            item.description,
            item.color,
            item.icon,
            item.sort_order,
            item.is_active,
            item.fee_cents,
            item.billing_period.value if item.billing_period else None,
            item.updated_at,
        )
        if row is None:
            raise NotFound("type_not_found")
        return ConfigurableType.from_record(row)

    async def delete(self, kind: TypeKind, type_id: UUID) -> bool:
        status = await self._conn.execute(
            "DELETE FROM configurable_types WHERE kind = $1 AND id = $2",
            kind.value,
            type_id,
        )
        return _rows_affected(status) > 0


class PostgresUnitOfWork:
    def __init__(self, conn: asyncpg.Connection) -> None:
        self.members = PostgresMemberRepository(conn)
        self.payments = PostgresPaymentRepository(conn)
        self.audit = PostgresAuditRepository(conn)
        self.types = PostgresTypeRepository(conn)


_SESSION_COLUMNS = "id, member_id, token_hash, expires_at, created_at, last_used_at, ip, user_agent"


class PostgresSessionRepository:
    def __init__(self, pool: asyncpg.pool.Pool) -> None:
        self._pool = pool

    async def insert(self, session: Session) -> Session:
        with translate_errors():
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO sessions (id, member_id, token_hash, expires_at, created_at, last_used_at, ip, user_agent)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    RETURNING {_SESSION_COLUMNS}
                    """,
                    session.id,
                    session.member_id,
                    session.token_hash,
                    session.expires_at,
                    session.created_at,
                    session.last_used_at,
                    session.ip,
                    session.user_agent,
                )
        return Session.from_record(row)

    async def get_by_hash(self, token_hash: str) -> Optional[Session]:
        with translate_errors():
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE token_hash = $1", token_hash)
        return Session.from_record(row) if row else None

    async def touch(self, session_id: UUID, at: datetime) -> bool:
        with translate_errors():
            async with self._pool.acquire() as conn:
                status = await conn.execute("UPDATE sessions SET last_used_at = $2 WHERE id = $1", session_id, at)
        return _rows_affected(status) > 0

    async def delete(self, session_id: UUID) -> bool:
        with translate_errors():
            async with self._pool.acquire() as conn:
                status = await conn.execute("DELETE FROM sessions WHERE id = $1", session_id)
        return _rows_affected(status) > 0

    async def delete_for_member(self, member_id: UUID) -> int:
        with translate_errors():
            async with self._pool.acquire() as conn:
                status = await conn.execute("DELETE FROM sessions WHERE member_id = $1", member_id)
        return _rows_affected(status)

    async def delete_expired(self, now: datetime) -> int:
        with translate_errors():
            async with self._pool.acquire() as conn:
                status = await conn.execute("DELETE FROM sessions WHERE expires_at <= $1", now)
        return _rows_affected(status)

    async def list_for_member(self, member_id: UUID) -> list[Session]:
        with translate_errors():
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(
                    f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE member_id = $1 ORDER BY created_at DESC",
                    member_id,
                )
        return [Session.from_record(row) for row in rows]


class PostgresCsrfRepository:
    def __init__(self, pool: asyncpg.pool.Pool) -> None:
        self._pool = pool

    async def upsert(self, token: CsrfToken) -> CsrfToken:
        try:
            with translate_errors():
                async with self._pool.acquire() as conn:
                    row = await conn.fetchrow(
                        """
                        INSERT INTO csrf_tokens (session_id, token_hash, created_at)
                        VALUES ($1, $2, $3)
                        ON CONFLICT (session_id)
                        DO UPDATE SET token_hash = EXCLUDED.token_hash, created_at = EXCLUDED.created_at
                        RETURNING session_id, token_hash, created_at
                        """,
                        token.session_id,
                        token.token_hash,
                        token.created_at,
                    )
        except NotFound as exc:
            raise NotFound("session_not_found") from exc
        return CsrfToken.from_record(row)

    async def get(self, session_id: UUID) -> Optional[CsrfToken]:
        with translate_errors():
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT session_id, token_hash, created_at FROM csrf_tokens WHERE session_id = $1",
                    session_id,
                )
        return CsrfToken.from_record(row) if row else None


class PostgresStorage:
    def __init__(self, pool: asyncpg.pool.Pool) -> None:
        self._pool = pool
        self.sessions = PostgresSessionRepository(pool)
        self.csrf = PostgresCsrfRepository(pool)

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[PostgresUnitOfWork]:
        with translate_errors():
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    yield PostgresUnitOfWork(conn)
