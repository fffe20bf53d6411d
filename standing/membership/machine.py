"""Membership lifecycle rules.

``transition`` is a pure function: it takes the current member, an event and
the instant it happens, and returns the member as it should be stored next.
It never touches storage, which keeps every rule testable in isolation and
lets the service, the reconciler and the sweep job share one definition.

    pending  --approve-->         active
    pending  --reject-->          pending (rejected, terminal)
    active   --evaluate-->        expired        (dues lapsed, no bypass)
    expired  --payment_received--> active
    active   --payment_received--> active        (dues extended)
    active   --suspend-->         suspended
    expired  --suspend-->         suspended
    suspended --reinstate-->      active | expired
    *        --grant_honorary-->  honorary
    expired  --grace_elapsed-->   suspended      (only with a grace period)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional

from dateutil.relativedelta import relativedelta

from standing.errors import InvalidTransition, ValidationError
from standing.models import BillingPeriod, Member, MemberStatus


class StandingEvent(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    SUSPEND = "suspend"
    REINSTATE = "reinstate"
    GRANT_HONORARY = "grant_honorary"
    PAYMENT_RECEIVED = "payment_received"
    EVALUATE = "evaluate"
    GRACE_ELAPSED = "grace_elapsed"


GOOD_STANDING = frozenset({MemberStatus.ACTIVE, MemberStatus.HONORARY})


@dataclass(slots=True, frozen=True)
class TransitionResult:
    event: StandingEvent
    before: Member
    after: Member

    @property
    def changed(self) -> bool:
        return self.before != self.after


def add_period(start: datetime, period: BillingPeriod) -> Optional[datetime]:
    """End of one billing period starting at ``start``; None means it never ends."""
    if period == BillingPeriod.MONTHLY:
        return start + relativedelta(months=1)
    if period == BillingPeriod.YEARLY:
        return start + relativedelta(years=1)
    return None


def extend_dues(previous: Optional[datetime], at: datetime, period: BillingPeriod) -> Optional[datetime]:
    """Credit one period from whichever is later, ``at`` or the current paid-through date."""
    if period == BillingPeriod.LIFETIME:
        return None
    base = at if previous is None or previous < at else previous
    return add_period(base, period)


def dues_lapsed(member: Member, at: datetime) -> bool:
    if member.bypass_dues or member.dues_paid_until is None:
        return False
    return member.dues_paid_until <= at


def effective_status(member: Member, at: datetime) -> MemberStatus:
    """Status as it should be reported at ``at``, before any sweep has persisted it."""
    if member.status in (MemberStatus.ACTIVE, MemberStatus.EXPIRED) and member.bypass_dues:
        return MemberStatus.ACTIVE
    if member.status == MemberStatus.ACTIVE and dues_lapsed(member, at):
        return MemberStatus.EXPIRED
    return member.status


def in_good_standing(member: Member, at: datetime) -> bool:
    return effective_status(member, at) in GOOD_STANDING


def state_label(member: Member) -> str:
    return "rejected" if member.is_rejected else member.status.value


def _invalid(member: Member, event: StandingEvent) -> InvalidTransition:
    return InvalidTransition(state_label(member), event.value)


def _require_period(period: Optional[BillingPeriod]) -> BillingPeriod:
    if period is None:
        raise ValidationError("billing_period_required")
    return period


def _approve(member: Member, at: datetime, period: Optional[BillingPeriod], grace: Optional[timedelta]) -> Member:
    if member.status != MemberStatus.PENDING or member.is_rejected:
        raise _invalid(member, StandingEvent.APPROVE)
    period = _require_period(period)
    if period == BillingPeriod.LIFETIME:
        dues = None
    else:
        fresh = add_period(at, period)
        existing = member.dues_paid_until
        dues = existing if existing is not None and fresh is not None and existing > fresh else fresh
    return replace(member, status=MemberStatus.ACTIVE, joined_at=at, dues_paid_until=dues, updated_at=at)


def _reject(member: Member, at: datetime, period: Optional[BillingPeriod], grace: Optional[timedelta]) -> Member:
    if member.status != MemberStatus.PENDING or member.is_rejected:
        raise _invalid(member, StandingEvent.REJECT)
    return replace(member, rejected_at=at, updated_at=at)


def _suspend(member: Member, at: datetime, period: Optional[BillingPeriod], grace: Optional[timedelta]) -> Member:
    if member.status not in (MemberStatus.ACTIVE, MemberStatus.EXPIRED):
        raise _invalid(member, StandingEvent.SUSPEND)
    return replace(member, status=MemberStatus.SUSPENDED, suspended_at=at, updated_at=at)


def _reinstate(member: Member, at: datetime, period: Optional[BillingPeriod], grace: Optional[timedelta]) -> Member:
    if member.status != MemberStatus.SUSPENDED:
        raise _invalid(member, StandingEvent.REINSTATE)
    status = MemberStatus.EXPIRED if dues_lapsed(member, at) else MemberStatus.ACTIVE
    return replace(member, status=status, suspended_at=None, updated_at=at)


def _grant_honorary(member: Member, at: datetime, period: Optional[BillingPeriod], grace: Optional[timedelta]) -> Member:
    if member.status == MemberStatus.HONORARY or member.is_rejected:
        raise _invalid(member, StandingEvent.GRANT_HONORARY)
    joined_at = member.joined_at or at
    return replace(member, status=MemberStatus.HONORARY, joined_at=joined_at, suspended_at=None, updated_at=at)


def _payment_received(member: Member, at: datetime, period: Optional[BillingPeriod], grace: Optional[timedelta]) -> Member:
    if member.is_rejected:
        return member
    period = _require_period(period)
    dues = extend_dues(member.dues_paid_until, at, period)
    status = member.status
    if status in (MemberStatus.ACTIVE, MemberStatus.EXPIRED):
        status = MemberStatus.ACTIVE
    return replace(member, status=status, dues_paid_until=dues, updated_at=at)


def _evaluate(member: Member, at: datetime, period: Optional[BillingPeriod], grace: Optional[timedelta]) -> Member:
    if member.status == MemberStatus.ACTIVE and dues_lapsed(member, at):
        return replace(member, status=MemberStatus.EXPIRED, updated_at=at)
    return member


def _grace_elapsed(member: Member, at: datetime, period: Optional[BillingPeriod], grace: Optional[timedelta]) -> Member:
    if grace is None or member.status != MemberStatus.EXPIRED or member.bypass_dues:
        return member
    if member.dues_paid_until is None or member.dues_paid_until + grace > at:
        return member
    return replace(member, status=MemberStatus.SUSPENDED, suspended_at=at, updated_at=at)


_Handler = Callable[[Member, datetime, Optional[BillingPeriod], Optional[timedelta]], Member]

_HANDLERS: Dict[StandingEvent, _Handler] = {
    StandingEvent.APPROVE: _approve,
    StandingEvent.REJECT: _reject,
    StandingEvent.SUSPEND: _suspend,
    StandingEvent.REINSTATE: _reinstate,
    StandingEvent.GRANT_HONORARY: _grant_honorary,
    StandingEvent.PAYMENT_RECEIVED: _payment_received,
    StandingEvent.EVALUATE: _evaluate,
    StandingEvent.GRACE_ELAPSED: _grace_elapsed,
}


def transition(
    member: Member,
    event: StandingEvent,
    *,
    at: datetime,
    period: Optional[BillingPeriod] = None,
    grace: Optional[timedelta] = None,
) -> TransitionResult:
    """Apply ``event`` to ``member`` at instant ``at``.

    ``period`` is the billing period of the member's membership type and is
    required for approval and payments. ``grace`` enables the
    expired-to-suspended rule; without it that event is a no-op.
    Raises ``InvalidTransition`` for pairs the lifecycle does not allow.
    """
    after = _HANDLERS[event](member, at, period, grace)
    return TransitionResult(event=event, before=member, after=after)
