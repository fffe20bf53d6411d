"""Repository protocols shared by the in-memory and Postgres stores."""

from __future__ import annotations

from datetime import datetime
from typing import AsyncContextManager, Optional, Protocol, Sequence
from uuid import UUID

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


class MemberRepository(Protocol):
    async def get(self, member_id: UUID) -> Optional[Member]:
        ...

    async def get_by_email(self, email: str) -> Optional[Member]:
        ...

    async def get_by_username(self, username: str) -> Optional[Member]:
        ...

    async def lock(self, member_id: UUID) -> Optional[Member]:
        """Read the member and hold its row lock until the unit of work ends."""
        ...

    async def insert(self, member: Member) -> Member:
        ...

    async def save(self, member: Member) -> Member:
        """Persist changes; fails with Conflict when ``member.version`` is stale."""
        ...

    async def list(
        self,
        *,
        status: Optional[MemberStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Member]:
        ...

    async def list_lapsed(self, now: datetime, *, limit: int = 500) -> list[Member]:
        """Active members without bypass whose dues ended at or before ``now``."""
        ...

    async def list_grace_elapsed(self, cutoff: datetime, *, limit: int = 500) -> list[Member]:
        """Expired members without bypass whose dues ended at or before ``cutoff``."""
        ...

    async def count_with_type(self, type_id: UUID) -> int:
        ...

    async def lock_setup(self) -> None:
        """Serialize first-run setup until the unit of work ends."""
        ...

    async def count_admins(self) -> int:
        ...


class PaymentRepository(Protocol):
    async def get(self, payment_id: UUID) -> Optional[Payment]:
        ...

    async def get_by_external_ref(self, external_ref: str) -> Optional[Payment]:
        ...

    async def insert(self, payment: Payment) -> Payment:
        ...

    async def save(self, payment: Payment) -> Payment:
        ...

    async def list_for_member(self, member_id: UUID, *, limit: int = 50) -> list[Payment]:
        ...


class AuditRepository(Protocol):
    async def append(self, record: AuditRecord) -> AuditRecord:
        ...

    async def list(
        self,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        before_id: Optional[int] = None,
        limit: int = 50,
    ) -> list[AuditRecord]:
        """Newest first."""
        ...


class TypeRepository(Protocol):
    async def list(self, kind: TypeKind, *, include_inactive: bool = False) -> list[ConfigurableType]:
        ...

    async def get(self, kind: TypeKind, type_id: UUID) -> Optional[ConfigurableType]:
        ...

    async def get_by_slug(self, kind: TypeKind, slug: str) -> Optional[ConfigurableType]:
        ...

    async def insert(self, item: ConfigurableType) -> ConfigurableType:
        ...

    async def save(self, item: ConfigurableType) -> ConfigurableType:
        ...

    async def delete(self, kind: TypeKind, type_id: UUID) -> bool:
        ...


class UnitOfWork(Protocol):
    """Repositories bound to a single transaction.

    Everything written through a unit of work becomes visible together when the
    ``unit_of_work()`` block exits normally, or not at all.
    """

    members: MemberRepository
    payments: PaymentRepository
    audit: AuditRepository
    types: TypeRepository


class SessionRepository(Protocol):
    async def insert(self, session: Session) -> Session:
        ...

    async def get_by_hash(self, token_hash: str) -> Optional[Session]:
        ...

    async def touch(self, session_id: UUID, at: datetime) -> bool:
        """Bump ``last_used_at``; False when the session no longer exists."""
        ...

    async def delete(self, session_id: UUID) -> bool:
        """Remove the session and its CSRF token."""
        ...

    async def delete_for_member(self, member_id: UUID) -> int:
        ...

    async def delete_expired(self, now: datetime) -> int:
        ...

    async def list_for_member(self, member_id: UUID) -> Sequence[Session]:
        ...


class CsrfRepository(Protocol):
    async def upsert(self, token: CsrfToken) -> CsrfToken:
        """Replace any prior token for the session; NotFound if the session is gone."""
        ...

    async def get(self, session_id: UUID) -> Optional[CsrfToken]:
        ...


class Storage(Protocol):
    sessions: SessionRepository
    csrf: CsrfRepository

    def unit_of_work(self) -> AsyncContextManager[UnitOfWork]:
        ...
