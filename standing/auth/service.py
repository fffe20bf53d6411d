"""Login, logout and credential changes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from standing.audit.recorder import AuditRecorder, Provenance
from standing.auth import events
from standing.auth.csrf import CsrfGuard
from standing.auth.sessions import SessionContext, SessionStore
from standing.errors import NotFound, RateLimited, Unauthenticated
from standing.infra import password as passwords
from standing.infra import rate_limit
from standing.membership import policy
from standing.models import Member, Session
from standing.obs import metrics
from standing.storage.base import Storage

logger = logging.getLogger(__name__)

# Called as limiter(identity, limit=..., window_seconds=...).
RateLimiter = Callable[..., Awaitable[bool]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class LoginResult:
    member: Member
    session: Session
    raw_token: str
    csrf_token: str


class AuthService:
    def __init__(
        self,
        storage: Storage,
        sessions: SessionStore,
        csrf: CsrfGuard,
        audit: AuditRecorder,
        *,
        login_attempts_per_minute: int = 10,
        limiter: RateLimiter = rate_limit.allow_login,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._storage = storage
        self._sessions = sessions
        self._csrf = csrf
        self._audit = audit
        self._login_limit = login_attempts_per_minute
        self._limiter = limiter
        self._clock = clock

    async def login(
        self,
        email: str,
        password: str,
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        previous_token: Optional[str] = None,
    ) -> LoginResult:
        """Verify credentials and open a fresh session.

        Any session the client presented beforehand is revoked, so a planted
        token never survives authentication.
        """
        normalised = (email or "").strip().lower()
        identity = rate_limit.login_identity(normalised, ip)
        if not await self._limiter(identity, limit=self._login_limit, window_seconds=60):
            metrics.LOGINS.labels(outcome="rate_limited").inc()
            raise RateLimited()

        async with self._storage.unit_of_work() as uow:
            member = await uow.members.get_by_email(normalised)
        if member is None:
            passwords.verify_dummy(password or "")
            await self._fail("unknown_email", ip=ip)
        if not passwords.verify_password(member.password_hash, password or ""):
            await self._fail("bad_password", member=member, ip=ip)
        if member.is_rejected:
            await self._fail("rejected", member=member, ip=ip)

        if passwords.check_needs_rehash(member.password_hash):
            member = await self._rehash(member, password)

        if previous_token:
            await self._drop_previous(previous_token)

        issued = await self._sessions.create(member.id, ip=ip, user_agent=user_agent)
        csrf_token = await self._csrf.issue(issued.session.id)
        metrics.LOGINS.labels(outcome="ok").inc()
        await events.log_event("login_succeeded", member_id=str(member.id), meta={"ip": ip, "session_id": issued.session.id})
        return LoginResult(member=member, session=issued.session, raw_token=issued.raw_token, csrf_token=csrf_token)

    async def logout(self, context: SessionContext) -> None:
        await self._sessions.revoke(context.session.id, cause="logout")
        await events.log_event("logout", member_id=str(context.member.id), meta={"session_id": context.session.id})

    async def logout_everywhere(self, context: SessionContext) -> int:
        count = await self._sessions.revoke_all(context.member.id, cause="logout_all")
        await events.log_event("logout_all", member_id=str(context.member.id), meta={"revoked": count})
        return count

    async def rotate_csrf(self, context: SessionContext) -> str:
        return await self._csrf.issue(context.session.id)

    async def change_password(
        self,
        context: SessionContext,
        current_password: str,
        new_password: str,
        *,
        provenance: Optional[Provenance] = None,
    ) -> int:
        """Replace the member's credential and revoke every session they hold."""
        if not passwords.verify_password(context.member.password_hash, current_password or ""):
            raise Unauthenticated("invalid_credentials")
        policy.guard_password(new_password)
        new_hash = passwords.hash_password(new_password)
        async with self._storage.unit_of_work() as uow:
            member = await uow.members.lock(context.member.id)
            if member is None:
                raise NotFound("member_not_found")
            saved = await uow.members.save(replace(member, password_hash=new_hash, updated_at=self._clock()))
            await self._audit.record(
                uow,
                action="member.password_changed",
                entity_type="member",
                entity_id=member.id,
                actor_id=member.id,
                before=member.snapshot(),
                after=saved.snapshot(),
                provenance=provenance,
            )
        revoked = await self._sessions.revoke_all(member.id, cause="password_change")
        await events.log_event("password_changed", member_id=str(member.id), meta={"revoked": revoked})
        return revoked

    async def _rehash(self, member: Member, password: str) -> Member:
        new_hash = passwords.hash_password(password)
        async with self._storage.unit_of_work() as uow:
            current = await uow.members.lock(member.id)
            if current is None:
                return member
            return await uow.members.save(replace(current, password_hash=new_hash))

    async def _drop_previous(self, raw_token: str) -> None:
        try:
            context = await self._sessions.validate(raw_token)
        except Unauthenticated:
            return
        await self._sessions.revoke(context.session.id, cause="login_rotation")

    async def _fail(self, reason: str, *, member: Optional[Member] = None, ip: Optional[str] = None) -> None:
        metrics.LOGINS.labels(outcome="failed").inc()
        logger.info("login failed", extra={"reason": reason})
        await events.log_event(
            "login_failed",
            member_id=str(member.id) if member else None,
            meta={"reason": reason, "ip": ip},
        )
        raise Unauthenticated("invalid_credentials")
