"""In-memory storage used by tests and local development.

A unit of work stages its writes and applies them in a single synchronous
step at commit, so readers never observe a half-applied operation. Member
row locks are per-member ``asyncio.Lock`` instances held until the unit of
work ends, mirroring ``SELECT ... FOR UPDATE`` in the Postgres store.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import AsyncIterator, Dict, Optional
from uuid import UUID

from standing.errors import Conflict, NotFound
from standing.models import (
    AuditRecord,
    ConfigurableType,
    CsrfToken,
    Member,
    MemberRole,
    MemberStatus,
    Payment,
    Session,
    TypeKind,
)

# Pseudo member id whose lock serializes first-run setup.
_SETUP_LOCK_ID = UUID(int=0)


class _State:
    def __init__(self) -> None:
        self.members: Dict[UUID, Member] = {}
        self.payments: Dict[UUID, Payment] = {}
        self.types: Dict[UUID, ConfigurableType] = {}
        self.audit: list[AuditRecord] = []
        self.sessions: Dict[UUID, Session] = {}
        self.csrf: Dict[UUID, CsrfToken] = {}
        self.member_locks: Dict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.audit_ids = itertools.count(1)


class InMemoryUnitOfWork:
    def __init__(self, state: _State) -> None:
        self._state = state
        self._members: Dict[UUID, Member] = {}
        self._member_base: Dict[UUID, Optional[int]] = {}
        self._payments: Dict[UUID, Payment] = {}
        self._payment_new: set[UUID] = set()
        self._types: Dict[UUID, Optional[ConfigurableType]] = {}
        self._type_new: set[UUID] = set()
        self._audit: list[AuditRecord] = []
        self._held: list[asyncio.Lock] = []
        self._held_ids: set[UUID] = set()
        self.members = InMemoryMemberRepository(self)
        self.payments = InMemoryPaymentRepository(self)
        self.audit = InMemoryAuditRepository(self)
        self.types = InMemoryTypeRepository(self)

    # views -------------------------------------------------------------

    def member_view(self) -> Dict[UUID, Member]:
        merged = dict(self._state.members)
        merged.update(self._members)
        return merged

    def payment_view(self) -> Dict[UUID, Payment]:
        merged = dict(self._state.payments)
        merged.update(self._payments)
        return merged

    def type_view(self) -> Dict[UUID, ConfigurableType]:
        merged = dict(self._state.types)
        for type_id, item in self._types.items():
            if item is None:
                merged.pop(type_id, None)
            else:
                merged[type_id] = item
        return merged

    # staging -----------------------------------------------------------

    async def acquire(self, member_id: UUID) -> None:
        if member_id in self._held_ids:
            return
        lock = self._state.member_locks[member_id]
        await lock.acquire()
        self._held.append(lock)
        self._held_ids.add(member_id)

    def stage_member(self, member: Member, *, base_version: Optional[int]) -> None:
        self._member_base.setdefault(member.id, base_version)
        self._members[member.id] = member

    def stage_payment(self, payment: Payment, *, new: bool) -> None:
        if new:
            self._payment_new.add(payment.id)
        self._payments[payment.id] = payment

    def stage_type(self, type_id: UUID, item: Optional[ConfigurableType], *, new: bool = False) -> None:
        if new:
            self._type_new.add(type_id)
        self._types[type_id] = item

    def stage_audit(self, record: AuditRecord) -> AuditRecord:
        stored = replace(record, id=next(self._state.audit_ids))
        self._audit.append(stored)
        return stored

    # lifecycle ---------------------------------------------------------

    def commit(self) -> None:
        state = self._state
        for member_id, base in self._member_base.items():
            current = state.members.get(member_id)
            if base is None and current is not None:
                raise Conflict("member_exists")
            if base is not None and (current is None or current.version != base):
                raise Conflict("concurrent_update")
        merged_members = self.member_view()
        for member in self._members.values():
            for other in merged_members.values():
                if other.id == member.id:
                    continue
                if other.email == member.email:
                    raise Conflict("email_taken")
                if other.username == member.username:
                    raise Conflict("username_taken")
        for payment_id in self._payment_new:
            ref = self._payments[payment_id].external_ref
            if any(p.external_ref == ref for p in state.payments.values()):
                raise Conflict("duplicate_external_ref")
        merged_types = self.type_view()
        for type_id, item in self._types.items():
            if item is None:
                continue
            for other in merged_types.values():
                if other.id == type_id or other.kind != item.kind:
                    continue
                if other.slug == item.slug:
                    raise Conflict("slug_taken")
                if other.name.lower() == item.name.lower():
                    raise Conflict("name_taken")

        state.members.update(self._members)
        state.payments.update(self._payments)
        for type_id, item in self._types.items():
            if item is None:
                state.types.pop(type_id, None)
            else:
                state.types[type_id] = item
        state.audit.extend(self._audit)

    def release(self) -> None:
        while self._held:
            self._held.pop().release()
        self._held_ids.clear()


class InMemoryMemberRepository:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self._uow = uow

    async def get(self, member_id: UUID) -> Optional[Member]:
        member = self._uow.member_view().get(member_id)
        return replace(member) if member else None

    async def get_by_email(self, email: str) -> Optional[Member]:
        for member in self._uow.member_view().values():
            if member.email == email:
                return replace(member)
        return None

    async def get_by_username(self, username: str) -> Optional[Member]:
        for member in self._uow.member_view().values():
            if member.username == username:
                return replace(member)
        return None

    async def lock(self, member_id: UUID) -> Optional[Member]:
        await self._uow.acquire(member_id)
        return await self.get(member_id)

    async def insert(self, member: Member) -> Member:
        for other in self._uow.member_view().values():
            if other.id == member.id:
                raise Conflict("member_exists")
            if other.email == member.email:
                raise Conflict("email_taken")
            if other.username == member.username:
                raise Conflict("username_taken")
        self._uow.stage_member(replace(member), base_version=None)
        return replace(member)

    async def save(self, member: Member) -> Member:
        current = self._uow.member_view().get(member.id)
        if current is None:
            raise NotFound("member_not_found")
        if current.version != member.version:
            raise Conflict("concurrent_update")
        stored = replace(member, version=member.version + 1)
        self._uow.stage_member(stored, base_version=current.version)
        return replace(stored)

    async def list(
        self,
        *,
        status: Optional[MemberStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Member]:
        members = [m for m in self._uow.member_view().values() if status is None or m.status == status]
        members.sort(key=lambda m: (m.created_at, str(m.id)))
        return [replace(m) for m in members[offset : offset + limit]]

    async def list_lapsed(self, now: datetime, *, limit: int = 500) -> list[Member]:
        found = [
            m
            for m in self._uow.member_view().values()
            if m.status == MemberStatus.ACTIVE
            and not m.bypass_dues
            and m.dues_paid_until is not None
            and m.dues_paid_until <= now
        ]
        found.sort(key=lambda m: m.dues_paid_until)
        return [replace(m) for m in found[:limit]]

    async def list_grace_elapsed(self, cutoff: datetime, *, limit: int = 500) -> list[Member]:
        found = [
            m
            for m in self._uow.member_view().values()
            if m.status == MemberStatus.EXPIRED
            and not m.bypass_dues
            and m.dues_paid_until is not None
            and m.dues_paid_until <= cutoff
        ]
        found.sort(key=lambda m: m.dues_paid_until)
        return [replace(m) for m in found[:limit]]

    async def count_with_type(self, type_id: UUID) -> int:
        return sum(1 for m in self._uow.member_view().values() if m.membership_type_id == type_id)

    async def lock_setup(self) -> None:
        await self._uow.acquire(_SETUP_LOCK_ID)

    async def count_admins(self) -> int:
        return sum(1 for m in self._uow.member_view().values() if m.role == MemberRole.ADMIN)


class InMemoryPaymentRepository:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self._uow = uow

    async def get(self, payment_id: UUID) -> Optional[Payment]:
        payment = self._uow.payment_view().get(payment_id)
        return replace(payment) if payment else None

    async def get_by_external_ref(self, external_ref: str) -> Optional[Payment]:
        for payment in self._uow.payment_view().values():
            if payment.external_ref == external_ref:
                return replace(payment)
        return None

    async def insert(self, payment: Payment) -> Payment:
        if any(p.external_ref == payment.external_ref for p in self._uow.payment_view().values()):
            raise Conflict("duplicate_external_ref")
        self._uow.stage_payment(replace(payment), new=True)
        return replace(payment)

    async def save(self, payment: Payment) -> Payment:
        if payment.id not in self._uow.payment_view():
            raise NotFound("payment_not_found")
        self._uow.stage_payment(replace(payment), new=False)
        return replace(payment)

    async def list_for_member(self, member_id: UUID, *, limit: int = 50) -> list[Payment]:
        found = [p for p in self._uow.payment_view().values() if p.member_id == member_id]
        found.sort(key=lambda p: p.created_at, reverse=True)
        return [replace(p) for p in found[:limit]]


class InMemoryAuditRepository:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self._uow = uow

    async def append(self, record: AuditRecord) -> AuditRecord:
        return replace(self._uow.stage_audit(record))

    async def list(
        self,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        before_id: Optional[int] = None,
        limit: int = 50,
    ) -> list[AuditRecord]:
        records = list(self._uow._state.audit) + list(self._uow._audit)
        found = [
            r
            for r in records
            if (entity_type is None or r.entity_type == entity_type)
            and (entity_id is None or r.entity_id == entity_id)
            and (actor_id is None or r.actor_id == actor_id)
            and (before_id is None or (r.id or 0) < before_id)
        ]
        found.sort(key=lambda r: r.id or 0, reverse=True)
        return [replace(r) for r in found[:limit]]


class InMemoryTypeRepository:
    def __init__(self, uow: InMemoryUnitOfWork) -> None:
        self._uow = uow

    async def list(self, kind: TypeKind, *, include_inactive: bool = False) -> list[ConfigurableType]:
        found = [
            t
            for t in self._uow.type_view().values()
            if t.kind == kind and (include_inactive or t.is_active)
        ]
        found.sort(key=lambda t: (t.sort_order, t.name.lower()))
        return [replace(t) for t in found]

    async def get(self, kind: TypeKind, type_id: UUID) -> Optional[ConfigurableType]:
        item = self._uow.type_view().get(type_id)
        if item is None or item.kind != kind:
            return None
        return replace(item)

    async def get_by_slug(self, kind: TypeKind, slug: str) -> Optional[ConfigurableType]:
        for item in self._uow.type_view().values():
            if item.kind == kind and item.slug == slug:
                return replace(item)
        return None

    async def insert(self, item: ConfigurableType) -> ConfigurableType:
        self._check_unique(item)
        self._uow.stage_type(item.id, replace(item), new=True)
        return replace(item)

    async def save(self, item: ConfigurableType) -> ConfigurableType:
        if item.id not in self._uow.type_view():
            raise NotFound("type_not_found")
        self._check_unique(item)
        self._uow.stage_type(item.id, replace(item))
        return replace(item)

    async def delete(self, kind: TypeKind, type_id: UUID) -> bool:
        if await self.get(kind, type_id) is None:
            return False
        self._uow.stage_type(type_id, None)
        return True

    def _check_unique(self, item: ConfigurableType) -> None:
        for other in self._uow.type_view().values():
            if other.id == item.id or other.kind != item.kind:
                continue
            if other.slug == item.slug:
                raise Conflict("slug_taken")
            if other.name.lower() == item.name.lower():
                raise Conflict("name_taken")


class InMemorySessionRepository:
    def __init__(self, state: _State) -> None:
        self._state = state

    async def insert(self, session: Session) -> Session:
        if any(s.token_hash == session.token_hash for s in self._state.sessions.values()):
            raise Conflict("token_collision")
        self._state.sessions[session.id] = replace(session)
        return replace(session)

    async def get_by_hash(self, token_hash: str) -> Optional[Session]:
        for session in self._state.sessions.values():
            if session.token_hash == token_hash:
                return replace(session)
        return None

    async def touch(self, session_id: UUID, at: datetime) -> bool:
        session = self._state.sessions.get(session_id)
        if session is None:
            return False
        self._state.sessions[session_id] = replace(session, last_used_at=at)
        return True

    async def delete(self, session_id: UUID) -> bool:
        self._state.csrf.pop(session_id, None)
        return self._state.sessions.pop(session_id, None) is not None

    async def delete_for_member(self, member_id: UUID) -> int:
        doomed = [s.id for s in self._state.sessions.values() if s.member_id == member_id]
        for session_id in doomed:
            await self.delete(session_id)
        return len(doomed)

    async def delete_expired(self, now: datetime) -> int:
        doomed = [s.id for s in self._state.sessions.values() if s.expires_at <= now]
        for session_id in doomed:
            await self.delete(session_id)
        return len(doomed)

    async def list_for_member(self, member_id: UUID) -> list[Session]:
        return [replace(s) for s in self._state.sessions.values() if s.member_id == member_id]


class InMemoryCsrfRepository:
    def __init__(self, state: _State) -> None:
        self._state = state

    async def upsert(self, token: CsrfToken) -> CsrfToken:
        if token.session_id not in self._state.sessions:
            raise NotFound("session_not_found")
        self._state.csrf[token.session_id] = replace(token)
        return replace(token)

    async def get(self, session_id: UUID) -> Optional[CsrfToken]:
        token = self._state.csrf.get(session_id)
        return replace(token) if token else None


class InMemoryStorage:
    def __init__(self) -> None:
        self._state = _State()
        self.sessions = InMemorySessionRepository(self._state)
        self.csrf = InMemoryCsrfRepository(self._state)

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[InMemoryUnitOfWork]:
        uow = InMemoryUnitOfWork(self._state)
        try:
            yield uow
            uow.commit()
        finally:
            uow.release()
