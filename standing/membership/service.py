"""Member lifecycle operations backed by storage and the audit trail."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import UUID, uuid4

from standing.audit.recorder import AuditRecorder, Provenance
from standing.errors import Conflict, InvalidTransition, NotFound, ValidationError
from standing.infra.password import hash_password
from standing.membership import policy
from standing.membership.machine import (
    StandingEvent,
    TransitionResult,
    add_period,
    effective_status,
    transition,
)
from standing.models import BillingPeriod, ConfigurableType, Member, MemberRole, MemberStatus, TypeKind
from standing.obs import metrics
from standing.storage.base import Storage, UnitOfWork

logger = logging.getLogger(__name__)

_AUDIT_ACTIONS = {
    StandingEvent.APPROVE: "member.approved",
    StandingEvent.REJECT: "member.rejected",
    StandingEvent.SUSPEND: "member.suspended",
    StandingEvent.REINSTATE: "member.reinstated",
    StandingEvent.GRANT_HONORARY: "member.honorary_granted",
    StandingEvent.EVALUATE: "member.expired",
    StandingEvent.GRACE_ELAPSED: "member.grace_suspended",
}

_INITIAL_STATUSES = frozenset({MemberStatus.PENDING, MemberStatus.ACTIVE, MemberStatus.HONORARY})


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class SweepReport:
    expired: int = 0
    suspended: int = 0


@dataclass(slots=True, frozen=True)
class ProfileChanges:
    display_name: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    membership_type_id: Optional[UUID] = None
    bypass_dues: Optional[bool] = None
    notes: Optional[str] = None


class MembershipService:
    def __init__(
        self,
        storage: Storage,
        audit: AuditRecorder,
        *,
        grace_period: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._storage = storage
        self._audit = audit
        self._grace = grace_period
        self._clock = clock

    # reads -------------------------------------------------------------

    async def get_member(self, member_id: UUID) -> Member:
        """Load a member, persisting a lapse first if dues ran out since the last sweep."""
        async with self._storage.unit_of_work() as uow:
            member = await uow.members.get(member_id)
        if member is None:
            raise NotFound("member_not_found")
        at = self._clock()
        if effective_status(member, at) != member.status and member.status == MemberStatus.ACTIVE:
            member = await self.refresh_standing(member_id)
        return self._view(member, at)

    async def list_members(
        self,
        *,
        status: Optional[MemberStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Member]:
        async with self._storage.unit_of_work() as uow:
            members = await uow.members.list(status=status, limit=max(1, min(limit, 200)), offset=max(0, offset))
        at = self._clock()
        return [self._view(member, at) for member in members]

    async def lookup(self, member_id: UUID) -> Optional[Member]:
        async with self._storage.unit_of_work() as uow:
            return await uow.members.get(member_id)

    # creation ----------------------------------------------------------

    async def signup(
        self,
        *,
        email: str,
        username: str,
        password: str,
        display_name: Optional[str] = None,
        membership_type_id: Optional[UUID] = None,
        provenance: Optional[Provenance] = None,
    ) -> Member:
        """Register an applicant. New members always start pending."""
        email = policy.normalise_email(email)
        username = policy.normalise_username(username)
        display_name = policy.normalise_display_name(display_name, username)
        policy.guard_password(password)
        password_hash = hash_password(password)
        now = self._clock()
        async with self._storage.unit_of_work() as uow:
            membership_type = await self._resolve_type_for_assignment(uow, membership_type_id, allow_default=True)
            member = Member(
                id=uuid4(),
                email=email,
                username=username,
                display_name=display_name,
                password_hash=password_hash,
                status=MemberStatus.PENDING,
                role=MemberRole.MEMBER,
                created_at=now,
                updated_at=now,
                membership_type_id=membership_type.id if membership_type else None,
            )
            stored = await uow.members.insert(member)
            await self._audit.record(
                uow,
                action="member.signup",
                entity_type="member",
                entity_id=stored.id,
                actor_id=stored.id,
                after=stored.snapshot(),
                provenance=provenance,
            )
        logger.info("member signed up", extra={"member_id": str(stored.id)})
        return stored

    async def create_member(
        self,
        *,
        actor_id: UUID,
        email: str,
        username: str,
        password: str,
        display_name: Optional[str] = None,
        status: MemberStatus = MemberStatus.ACTIVE,
        role: MemberRole = MemberRole.MEMBER,
        membership_type_id: Optional[UUID] = None,
        bypass_dues: bool = False,
        notes: Optional[str] = None,
        provenance: Optional[Provenance] = None,
    ) -> Member:
        """Create a member directly, skipping the application step."""
        if status not in _INITIAL_STATUSES:
            raise ValidationError("unsupported_initial_status")
        draft = self._draft(email, username, password, display_name, notes=notes)
        async with self._storage.unit_of_work() as uow:
            return await self._insert_member(
                uow,
                draft,
                actor_id=actor_id,
                status=status,
                role=role,
                membership_type_id=membership_type_id,
                bypass_dues=bypass_dues,
                provenance=provenance,
            )

    async def setup_complete(self) -> bool:
        async with self._storage.unit_of_work() as uow:
            return await uow.members.count_admins() > 0

    async def bootstrap_admin(
        self,
        *,
        email: str,
        username: str,
        password: str,
        display_name: Optional[str] = None,
        provenance: Optional[Provenance] = None,
    ) -> Member:
        """Create the first administrator of a fresh deployment.

        Refused with ``Conflict("setup_complete")`` once any admin exists. The
        check and the insert share one unit of work holding the setup lock,
        so two racing setups cannot both succeed.
        """
        draft = self._draft(email, username, password, display_name)
        async with self._storage.unit_of_work() as uow:
            await uow.members.lock_setup()
            if await uow.members.count_admins() > 0:
                raise Conflict("setup_complete")
            member = await self._insert_member(
                uow,
                draft,
                actor_id=None,
                status=MemberStatus.ACTIVE,
                role=MemberRole.ADMIN,
                membership_type_id=None,
                bypass_dues=True,
                provenance=provenance,
            )
        logger.info("first administrator created", extra={"member_id": str(member.id)})
        return member

    def _draft(
        self,
        email: str,
        username: str,
        password: str,
        display_name: Optional[str],
        *,
        notes: Optional[str] = None,
    ) -> dict:
        email = policy.normalise_email(email)
        username = policy.normalise_username(username)
        display_name = policy.normalise_display_name(display_name, username)
        notes = policy.guard_notes(notes)
        policy.guard_password(password)
        return {
            "email": email,
            "username": username,
            "display_name": display_name,
            "notes": notes,
            "password_hash": hash_password(password),
        }

    async def _insert_member(
        self,
        uow: UnitOfWork,
        draft: dict,
        *,
        actor_id: Optional[UUID],
        status: MemberStatus,
        role: MemberRole,
        membership_type_id: Optional[UUID],
        bypass_dues: bool,
        provenance: Optional[Provenance],
    ) -> Member:
        now = self._clock()
        membership_type = await self._resolve_type_for_assignment(uow, membership_type_id, allow_default=True)
        joined_at = None
        dues = None
        if status == MemberStatus.ACTIVE:
            if membership_type is None:
                raise ValidationError("membership_type_required")
            joined_at = now
            dues = add_period(now, membership_type.billing_period or BillingPeriod.YEARLY)
        elif status == MemberStatus.HONORARY:
            joined_at = now
        member = Member(
            id=uuid4(),
            created_at=now,
            updated_at=now,
            status=status,
            role=role,
            membership_type_id=membership_type.id if membership_type else None,
            joined_at=joined_at,
            dues_paid_until=dues,
            bypass_dues=bypass_dues,
            **draft,
        )
        stored = await uow.members.insert(member)
        await self._audit.record(
            uow,
            action="member.created",
            entity_type="member",
            entity_id=stored.id,
            actor_id=actor_id,
            after=stored.snapshot(),
            provenance=provenance,
        )
        return stored

    # lifecycle ---------------------------------------------------------

    async def approve(self, member_id: UUID, *, actor_id: UUID, provenance: Optional[Provenance] = None) -> Member:
        return await self._apply(member_id, StandingEvent.APPROVE, actor_id=actor_id, provenance=provenance)

    async def reject(self, member_id: UUID, *, actor_id: UUID, provenance: Optional[Provenance] = None) -> Member:
        """Refuse a pending application and sign the applicant out everywhere."""
        member = await self._apply(member_id, StandingEvent.REJECT, actor_id=actor_id, provenance=provenance)
        revoked = await self._storage.sessions.delete_for_member(member_id)
        if revoked:
            metrics.SESSIONS_REVOKED.labels(cause="rejected").inc(revoked)
        return member

    async def suspend(self, member_id: UUID, *, actor_id: UUID, provenance: Optional[Provenance] = None) -> Member:
        return await self._apply(member_id, StandingEvent.SUSPEND, actor_id=actor_id, provenance=provenance)

    async def reinstate(self, member_id: UUID, *, actor_id: UUID, provenance: Optional[Provenance] = None) -> Member:
        return await self._apply(member_id, StandingEvent.REINSTATE, actor_id=actor_id, provenance=provenance)

    async def grant_honorary(self, member_id: UUID, *, actor_id: UUID, provenance: Optional[Provenance] = None) -> Member:
        return await self._apply(member_id, StandingEvent.GRANT_HONORARY, actor_id=actor_id, provenance=provenance)

    async def apply_payment(self, uow: UnitOfWork, member: Member, *, at: datetime) -> TransitionResult:
        """Credit a completed payment to a member the caller has already locked.

        Runs inside the caller's unit of work so the payment row and the new
        standing commit together.
        """
        period = await self._period_for(uow, member)
        if period is None:
            logger.warning("payment for member without membership type", extra={"member_id": str(member.id)})
            return TransitionResult(event=StandingEvent.PAYMENT_RECEIVED, before=member, after=member)
        if member.is_rejected:
            logger.warning("payment for rejected applicant", extra={"member_id": str(member.id)})
        result = transition(member, StandingEvent.PAYMENT_RECEIVED, at=at, period=period)
        if not result.changed:
            metrics.TRANSITIONS.labels(event=StandingEvent.PAYMENT_RECEIVED.value, result="noop").inc()
            return result
        saved = await uow.members.save(result.after)
        metrics.TRANSITIONS.labels(event=StandingEvent.PAYMENT_RECEIVED.value, result="applied").inc()
        return TransitionResult(event=result.event, before=member, after=saved)

    async def refresh_standing(self, member_id: UUID) -> Member:
        """Persist an expiry the member's dues already imply."""
        member = await self._system_transition(member_id, StandingEvent.EVALUATE, self._clock())
        if member is None:
            raise NotFound("member_not_found")
        return member

    async def sweep_lapsed(self) -> SweepReport:
        """Expire lapsed members and, with a grace period, suspend long-expired ones."""
        now = self._clock()
        expired = suspended = 0
        async with self._storage.unit_of_work() as uow:
            lapsed = await uow.members.list_lapsed(now)
        for candidate in lapsed:
            before = candidate.status
            member = await self._system_transition(candidate.id, StandingEvent.EVALUATE, now)
            if member is not None and member.status != before:
                expired += 1
        if self._grace is not None:
            async with self._storage.unit_of_work() as uow:
                overdue = await uow.members.list_grace_elapsed(now - self._grace)
            for candidate in overdue:
                before = candidate.status
                member = await self._system_transition(candidate.id, StandingEvent.GRACE_ELAPSED, now)
                if member is not None and member.status != before:
                    suspended += 1
        report = SweepReport(expired=expired, suspended=suspended)
        if expired or suspended:
            logger.info("standing sweep", extra={"expired": expired, "suspended": suspended})
        return report

    # profile -----------------------------------------------------------

    async def update_profile(
        self,
        member_id: UUID,
        changes: ProfileChanges,
        *,
        actor_id: UUID,
        provenance: Optional[Provenance] = None,
    ) -> Member:
        """Edit non-lifecycle fields. Changing the membership type leaves dues untouched."""
        async with self._storage.unit_of_work() as uow:
            member = await uow.members.lock(member_id)
            if member is None:
                raise NotFound("member_not_found")
            updated = member
            if changes.display_name is not None:
                updated = replace(updated, display_name=policy.normalise_display_name(changes.display_name, member.username))
            if changes.email is not None:
                updated = replace(updated, email=policy.normalise_email(changes.email))
            if changes.username is not None:
                updated = replace(updated, username=policy.normalise_username(changes.username))
            if changes.membership_type_id is not None and changes.membership_type_id != member.membership_type_id:
                membership_type = await self._resolve_type_for_assignment(uow, changes.membership_type_id, allow_default=False)
                updated = replace(updated, membership_type_id=membership_type.id if membership_type else None)
            if changes.bypass_dues is not None:
                updated = replace(updated, bypass_dues=changes.bypass_dues)
            if changes.notes is not None:
                updated = replace(updated, notes=policy.guard_notes(changes.notes) or None)
            if updated == member:
                return self._view(member, self._clock())
            updated = replace(updated, updated_at=self._clock())
            saved = await uow.members.save(updated)
            await self._audit.record(
                uow,
                action="member.updated",
                entity_type="member",
                entity_id=member.id,
                actor_id=actor_id,
                before=member.snapshot(),
                after=saved.snapshot(),
                provenance=provenance,
            )
        return self._view(saved, self._clock())

    async def set_role(
        self,
        member_id: UUID,
        role: MemberRole,
        *,
        actor_id: UUID,
        provenance: Optional[Provenance] = None,
    ) -> Member:
        if member_id == actor_id and role != MemberRole.ADMIN:
            raise Conflict("cannot_demote_self")
        async with self._storage.unit_of_work() as uow:
            member = await uow.members.lock(member_id)
            if member is None:
                raise NotFound("member_not_found")
            if member.role == role:
                return self._view(member, self._clock())
            saved = await uow.members.save(replace(member, role=role, updated_at=self._clock()))
            await self._audit.record(
                uow,
                action="member.role_changed",
                entity_type="member",
                entity_id=member.id,
                actor_id=actor_id,
                before=member.snapshot(),
                after=saved.snapshot(),
                provenance=provenance,
            )
        return self._view(saved, self._clock())

    # internals ---------------------------------------------------------

    async def _apply(
        self,
        member_id: UUID,
        event: StandingEvent,
        *,
        actor_id: Optional[UUID],
        provenance: Optional[Provenance],
    ) -> Member:
        at = self._clock()
        async with self._storage.unit_of_work() as uow:
            member = await uow.members.lock(member_id)
            if member is None:
                raise NotFound("member_not_found")
            period = None
            if event == StandingEvent.APPROVE:
                period = await self._period_for(uow, member)
                if period is None and member.status == MemberStatus.PENDING and not member.is_rejected:
                    raise ValidationError("membership_type_required")
            try:
                result = transition(member, event, at=at, period=period, grace=self._grace)
            except InvalidTransition:
                metrics.TRANSITIONS.labels(event=event.value, result="invalid").inc()
                raise
            saved = await uow.members.save(result.after)
            await self._audit.record(
                uow,
                action=_AUDIT_ACTIONS[event],
                entity_type="member",
                entity_id=member.id,
                actor_id=actor_id,
                before=member.snapshot(),
                after=saved.snapshot(),
                provenance=provenance,
            )
        metrics.TRANSITIONS.labels(event=event.value, result="applied").inc()
        logger.info(
            "member transition",
            extra={"member_id": str(member_id), "event": event.value, "status": saved.status.value},
        )
        return self._view(saved, at)

    async def _system_transition(self, member_id: UUID, event: StandingEvent, at: datetime) -> Optional[Member]:
        """Time-driven transition; re-reads under lock so a concurrent payment wins."""
        async with self._storage.unit_of_work() as uow:
            member = await uow.members.lock(member_id)
            if member is None:
                return None
            result = transition(member, event, at=at, grace=self._grace)
            if not result.changed:
                return member
            saved = await uow.members.save(result.after)
            await self._audit.record(
                uow,
                action=_AUDIT_ACTIONS[event],
                entity_type="member",
                entity_id=member.id,
                before=member.snapshot(),
                after=saved.snapshot(),
            )
        metrics.TRANSITIONS.labels(event=event.value, result="applied").inc()
        return saved

    async def _period_for(self, uow: UnitOfWork, member: Member) -> Optional[BillingPeriod]:
        if member.membership_type_id is None:
            return None
        membership_type = await uow.types.get(TypeKind.MEMBERSHIP, member.membership_type_id)
        if membership_type is None:
            return None
        return membership_type.billing_period or BillingPeriod.YEARLY

    async def _resolve_type_for_assignment(
        self,
        uow: UnitOfWork,
        type_id: Optional[UUID],
        *,
        allow_default: bool,
    ) -> Optional[ConfigurableType]:
        if type_id is None:
            if not allow_default:
                return None
            active = await uow.types.list(TypeKind.MEMBERSHIP)
            return active[0] if active else None
        membership_type = await uow.types.get(TypeKind.MEMBERSHIP, type_id)
        if membership_type is None:
            raise ValidationError("unknown_membership_type")
        if not membership_type.is_active:
            raise ValidationError("membership_type_inactive")
        return membership_type

    def _view(self, member: Member, at: datetime) -> Member:
        status = effective_status(member, at)
        return member if status == member.status else replace(member, status=status)
