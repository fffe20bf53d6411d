"""Server-side sessions keyed by the hash of an opaque bearer token.

The raw token exists only in the value returned from ``create``; storage only
ever sees its SHA-256 digest, so a leaked sessions table cannot be replayed.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional
from uuid import UUID, uuid4

from standing.errors import Unauthenticated
from standing.models import Member, Session
from standing.obs import metrics
from standing.storage.base import SessionRepository

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
_USER_AGENT_MAX = 200

MemberLookup = Callable[[UUID], Awaitable[Optional[Member]]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


@dataclass(slots=True, frozen=True)
class IssuedSession:
    session: Session
    raw_token: str


@dataclass(slots=True, frozen=True)
class SessionContext:
    """A validated session together with the member who owns it."""

    session: Session
    member: Member


class SessionStore:
    def __init__(
        self,
        repository: SessionRepository,
        member_lookup: MemberLookup,
        *,
        ttl: timedelta,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._repo = repository
        self._lookup = member_lookup
        self._ttl = ttl
        self._clock = clock

    async def create(
        self,
        member_id: UUID,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> IssuedSession:
        raw_token = secrets.token_urlsafe(TOKEN_BYTES)
        now = self._clock()
        session = Session(
            id=uuid4(),
            member_id=member_id,
            token_hash=hash_token(raw_token),
            expires_at=now + self._ttl,
            created_at=now,
            last_used_at=now,
            ip=ip,
            user_agent=(user_agent or "")[:_USER_AGENT_MAX] or None,
        )
        stored = await self._repo.insert(session)
        metrics.SESSIONS_ISSUED.inc()
        return IssuedSession(session=stored, raw_token=raw_token)

    async def validate(self, raw_token: Optional[str]) -> SessionContext:
        """Resolve a presented token to its session and member.

        Unknown, expired and orphaned tokens all fail the same way; the
        reason is only recorded in logs and metrics.
        """
        if not raw_token:
            raise self._reject("missing")
        session = await self._repo.get_by_hash(hash_token(raw_token))
        if session is None:
            raise self._reject("not_found")
        now = self._clock()
        if session.is_expired(now):
            raise self._reject("expired", session_id=session.id)
        member = await self._lookup(session.member_id)
        if member is None:
            raise self._reject("member_missing", session_id=session.id)
        if not await self._repo.touch(session.id, now):
            raise self._reject("revoked", session_id=session.id)
        session.last_used_at = now
        return SessionContext(session=session, member=member)

    async def revoke(self, session_id: UUID, *, cause: str = "logout") -> bool:
        removed = await self._repo.delete(session_id)
        if removed:
            metrics.SESSIONS_REVOKED.labels(cause=cause).inc()
        return removed

    async def revoke_all(self, member_id: UUID, *, cause: str = "revoke_all") -> int:
        count = await self._repo.delete_for_member(member_id)
        if count:
            metrics.SESSIONS_REVOKED.labels(cause=cause).inc(count)
        return count

    async def sweep_expired(self) -> int:
        count = await self._repo.delete_expired(self._clock())
        if count:
            metrics.SESSIONS_REVOKED.labels(cause="expired").inc(count)
        return count

    async def list_for_member(self, member_id: UUID) -> list[Session]:
        return list(await self._repo.list_for_member(member_id))

    def _reject(self, reason: str, *, session_id: Optional[UUID] = None) -> Unauthenticated:
        metrics.SESSIONS_REJECTED.labels(reason=reason).inc()
        logger.info("session rejected", extra={"reason": reason, "session_id": str(session_id) if session_id else None})
        return Unauthenticated()
