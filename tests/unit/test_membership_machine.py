from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from standing.errors import InvalidTransition, ValidationError
from standing.membership.machine import (
    StandingEvent,
    add_period,
    effective_status,
    extend_dues,
    in_good_standing,
    transition,
)
from standing.models import BillingPeriod, Member, MemberRole, MemberStatus

T0 = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


def make_member(status: MemberStatus = MemberStatus.PENDING, **overrides) -> Member:
    member = Member(
        id=uuid4(),
        email="ada@example.org",
        username="ada",
        display_name="Ada",
        password_hash="$argon2id$stub",
        status=status,
        role=MemberRole.MEMBER,
        created_at=T0 - timedelta(days=30),
        updated_at=T0 - timedelta(days=30),
    )
    return replace(member, **overrides)


def test_approve_sets_active_and_one_year_of_dues():
    result = transition(make_member(), StandingEvent.APPROVE, at=T0, period=BillingPeriod.YEARLY)
    assert result.after.status == MemberStatus.ACTIVE
    assert result.after.joined_at == T0
    assert result.after.dues_paid_until == datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)
    assert result.changed


def test_approve_monthly_uses_calendar_months():
    at = datetime(2024, 1, 31, tzinfo=timezone.utc)
    result = transition(make_member(), StandingEvent.APPROVE, at=at, period=BillingPeriod.MONTHLY)
    assert result.after.dues_paid_until == datetime(2024, 2, 29, tzinfo=timezone.utc)


def test_approve_lifetime_never_lapses():
    result = transition(make_member(), StandingEvent.APPROVE, at=T0, period=BillingPeriod.LIFETIME)
    assert result.after.dues_paid_until is None
    assert effective_status(result.after, T0 + timedelta(days=3650)) == MemberStatus.ACTIVE


def test_approve_keeps_credit_paid_while_pending():
    prepaid = T0 + timedelta(days=500)
    member = make_member(dues_paid_until=prepaid)
    result = transition(member, StandingEvent.APPROVE, at=T0, period=BillingPeriod.YEARLY)
    assert result.after.dues_paid_until == prepaid


def test_approve_requires_billing_period():
    with pytest.raises(ValidationError):
        transition(make_member(), StandingEvent.APPROVE, at=T0)


def test_rejected_applicant_is_terminal():
    rejected = transition(make_member(), StandingEvent.REJECT, at=T0).after
    assert rejected.status == MemberStatus.PENDING
    assert rejected.rejected_at == T0

    with pytest.raises(InvalidTransition) as excinfo:
        transition(rejected, StandingEvent.APPROVE, at=T0, period=BillingPeriod.YEARLY)
    assert excinfo.value.detail == "invalid_transition:rejected:approve"

    with pytest.raises(InvalidTransition):
        transition(rejected, StandingEvent.REJECT, at=T0)
    with pytest.raises(InvalidTransition):
        transition(rejected, StandingEvent.GRANT_HONORARY, at=T0)


@pytest.mark.parametrize("status", [MemberStatus.ACTIVE, MemberStatus.EXPIRED])
def test_suspend_from_active_or_expired(status):
    result = transition(make_member(status), StandingEvent.SUSPEND, at=T0)
    assert result.after.status == MemberStatus.SUSPENDED
    assert result.after.suspended_at == T0


@pytest.mark.parametrize("status", [MemberStatus.PENDING, MemberStatus.SUSPENDED, MemberStatus.HONORARY])
def test_suspend_rejected_from_other_states(status):
    with pytest.raises(InvalidTransition) as excinfo:
        transition(make_member(status), StandingEvent.SUSPEND, at=T0)
    assert excinfo.value.detail == f"invalid_transition:{status.value}:suspend"
    assert excinfo.value.status_code == 409


def test_reinstate_depends_on_dues():
    paid = make_member(MemberStatus.SUSPENDED, dues_paid_until=T0 + timedelta(days=10), suspended_at=T0)
    lapsed = make_member(MemberStatus.SUSPENDED, dues_paid_until=T0 - timedelta(days=10), suspended_at=T0)

    assert transition(paid, StandingEvent.REINSTATE, at=T0).after.status == MemberStatus.ACTIVE
    after = transition(lapsed, StandingEvent.REINSTATE, at=T0).after
    assert after.status == MemberStatus.EXPIRED
    assert after.suspended_at is None

    with pytest.raises(InvalidTransition):
        transition(make_member(MemberStatus.ACTIVE), StandingEvent.REINSTATE, at=T0)


@pytest.mark.parametrize(
    "status",
    [MemberStatus.PENDING, MemberStatus.ACTIVE, MemberStatus.EXPIRED, MemberStatus.SUSPENDED],
)
def test_grant_honorary_from_any_non_honorary_state(status):
    after = transition(make_member(status), StandingEvent.GRANT_HONORARY, at=T0).after
    assert after.status == MemberStatus.HONORARY
    assert after.joined_at is not None
    with pytest.raises(InvalidTransition):
        transition(after, StandingEvent.GRANT_HONORARY, at=T0)


def test_payment_restores_expired_member_from_payment_time():
    member = make_member(MemberStatus.EXPIRED, dues_paid_until=T0 - timedelta(days=40))
    after = transition(member, StandingEvent.PAYMENT_RECEIVED, at=T0, period=BillingPeriod.YEARLY).after
    assert after.status == MemberStatus.ACTIVE
    assert after.dues_paid_until == T0 + timedelta(days=365)


def test_payment_extends_from_existing_paid_through_date():
    paid_until = T0 + timedelta(days=20)
    member = make_member(MemberStatus.ACTIVE, dues_paid_until=paid_until)
    after = transition(member, StandingEvent.PAYMENT_RECEIVED, at=T0, period=BillingPeriod.MONTHLY).after
    assert after.dues_paid_until == add_period(paid_until, BillingPeriod.MONTHLY)


@pytest.mark.parametrize("status", [MemberStatus.PENDING, MemberStatus.SUSPENDED, MemberStatus.HONORARY])
def test_payment_credits_dues_without_changing_status(status):
    after = transition(make_member(status), StandingEvent.PAYMENT_RECEIVED, at=T0, period=BillingPeriod.YEARLY).after
    assert after.status == status
    assert after.dues_paid_until == add_period(T0, BillingPeriod.YEARLY)


def test_payment_for_rejected_applicant_changes_nothing():
    member = make_member(rejected_at=T0 - timedelta(days=1))
    result = transition(member, StandingEvent.PAYMENT_RECEIVED, at=T0, period=BillingPeriod.YEARLY)
    assert not result.changed


def test_evaluate_expires_at_the_paid_through_instant():
    member = make_member(MemberStatus.ACTIVE, dues_paid_until=T0)
    assert transition(member, StandingEvent.EVALUATE, at=T0 - timedelta(seconds=1)).after.status == MemberStatus.ACTIVE
    assert transition(member, StandingEvent.EVALUATE, at=T0).after.status == MemberStatus.EXPIRED


def test_evaluate_ignores_bypass_and_lifetime():
    bypass = make_member(MemberStatus.ACTIVE, dues_paid_until=T0 - timedelta(days=1), bypass_dues=True)
    lifetime = make_member(MemberStatus.ACTIVE, dues_paid_until=None)
    assert not transition(bypass, StandingEvent.EVALUATE, at=T0).changed
    assert not transition(lifetime, StandingEvent.EVALUATE, at=T0).changed


def test_grace_elapsed_needs_a_configured_grace_period():
    member = make_member(MemberStatus.EXPIRED, dues_paid_until=T0 - timedelta(days=90))
    assert not transition(member, StandingEvent.GRACE_ELAPSED, at=T0).changed

    within = transition(member, StandingEvent.GRACE_ELAPSED, at=T0, grace=timedelta(days=120))
    assert not within.changed

    after = transition(member, StandingEvent.GRACE_ELAPSED, at=T0, grace=timedelta(days=30)).after
    assert after.status == MemberStatus.SUSPENDED
    assert after.suspended_at == T0


def test_effective_status_reports_lapse_before_any_sweep():
    member = make_member(MemberStatus.ACTIVE, dues_paid_until=T0)
    assert effective_status(member, T0 + timedelta(minutes=1)) == MemberStatus.EXPIRED
    assert not in_good_standing(member, T0 + timedelta(minutes=1))

    bypass = make_member(MemberStatus.EXPIRED, bypass_dues=True)
    assert effective_status(bypass, T0) == MemberStatus.ACTIVE
    assert in_good_standing(make_member(MemberStatus.HONORARY), T0)


def test_extend_dues_lifetime_clears_paid_through():
    assert extend_dues(T0, T0, BillingPeriod.LIFETIME) is None
