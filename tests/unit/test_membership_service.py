import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from standing.errors import Conflict, InvalidTransition, NotFound, Unauthenticated, ValidationError
from standing.membership.machine import add_period
from standing.membership.service import MembershipService, ProfileChanges
from standing.models import BillingPeriod, MemberRole, MemberStatus


async def _audit_actions(container, member_id) -> list[str]:
    records = await container.audit.list(entity_type="member", entity_id=str(member_id))
    return [record.action for record in records]


@pytest.mark.asyncio
async def test_signup_starts_pending_with_default_membership_type(container, membership_types):
    member = await container.membership.signup(
        email="  Grace@Example.org ",
        username="grace",
        password="long-enough-pw",
    )
    assert member.status == MemberStatus.PENDING
    assert member.email == "grace@example.org"
    assert member.display_name == "grace"
    assert member.membership_type_id == membership_types["regular"].id
    assert member.password_hash != "long-enough-pw"
    assert await _audit_actions(container, member.id) == ["member.signup"]


@pytest.mark.asyncio
async def test_signup_rejects_duplicates_and_bad_input(container, membership_types):
    await container.membership.signup(email="dup@example.org", username="dup", password="long-enough-pw")
    with pytest.raises(Conflict) as excinfo:
        await container.membership.signup(email="DUP@example.org", username="other", password="long-enough-pw")
    assert excinfo.value.detail == "email_taken"
    with pytest.raises(Conflict):
        await container.membership.signup(email="new@example.org", username="dup", password="long-enough-pw")
    with pytest.raises(ValidationError):
        await container.membership.signup(email="not-an-email", username="valid", password="long-enough-pw")
    with pytest.raises(ValidationError):
        await container.membership.signup(email="ok@example.org", username="valid", password="short")


@pytest.mark.asyncio
async def test_approve_grants_a_billing_period(container, clock, admin):
    applicant = await container.membership.signup(email="a@example.org", username="applicant", password="long-enough-pw")
    approved = await container.membership.approve(applicant.id, actor_id=admin.id)

    assert approved.status == MemberStatus.ACTIVE
    assert approved.joined_at == clock.now
    assert approved.dues_paid_until == add_period(clock.now, BillingPeriod.YEARLY)

    records = await container.audit.list(entity_type="member", entity_id=str(applicant.id))
    latest = records[0]
    assert latest.action == "member.approved"
    assert latest.actor_id == admin.id
    assert latest.before["status"] == "pending"
    assert latest.after["status"] == "active"
    assert "password_hash" not in latest.after


@pytest.mark.asyncio
async def test_approve_without_membership_type_is_rejected(container):
    applicant = await container.membership.signup(email="a@example.org", username="applicant", password="long-enough-pw")
    assert applicant.membership_type_id is None
    with pytest.raises(ValidationError) as excinfo:
        await container.membership.approve(applicant.id, actor_id=uuid4())
    assert excinfo.value.detail == "membership_type_required"


@pytest.mark.asyncio
async def test_invalid_transition_leaves_no_trace(container, admin):
    applicant = await container.membership.signup(email="a@example.org", username="applicant", password="long-enough-pw")
    with pytest.raises(InvalidTransition):
        await container.membership.suspend(applicant.id, actor_id=admin.id)

    stored = await container.membership.lookup(applicant.id)
    assert stored.status == MemberStatus.PENDING
    assert stored.suspended_at is None
    assert await _audit_actions(container, applicant.id) == ["member.signup"]


@pytest.mark.asyncio
async def test_lifecycle_round_trip(container, admin, make_member):
    member = await make_member()
    suspended = await container.membership.suspend(member.id, actor_id=admin.id)
    assert suspended.status == MemberStatus.SUSPENDED
    reinstated = await container.membership.reinstate(member.id, actor_id=admin.id)
    assert reinstated.status == MemberStatus.ACTIVE
    honorary = await container.membership.grant_honorary(member.id, actor_id=admin.id)
    assert honorary.status == MemberStatus.HONORARY
    assert await _audit_actions(container, member.id) == [
        "member.honorary_granted",
        "member.reinstated",
        "member.suspended",
        "member.created",
    ]


@pytest.mark.asyncio
async def test_unknown_member_is_not_found(container):
    with pytest.raises(NotFound):
        await container.membership.get_member(uuid4())
    with pytest.raises(NotFound):
        await container.membership.suspend(uuid4(), actor_id=uuid4())


@pytest.mark.asyncio
async def test_reading_a_lapsed_member_persists_the_expiry(container, clock, make_member):
    member = await make_member()
    clock.advance(days=400)

    viewed = await container.membership.get_member(member.id)
    assert viewed.status == MemberStatus.EXPIRED

    stored = await container.membership.lookup(member.id)
    assert stored.status == MemberStatus.EXPIRED
    assert "member.expired" in await _audit_actions(container, member.id)


@pytest.mark.asyncio
async def test_list_members_reports_effective_status(container, clock, make_member):
    member = await make_member()
    clock.advance(days=400)
    listed = {m.id: m for m in await container.membership.list_members()}
    assert listed[member.id].status == MemberStatus.EXPIRED
    # listing does not write
    assert (await container.membership.lookup(member.id)).status == MemberStatus.ACTIVE


@pytest.mark.asyncio
async def test_sweep_expires_lapsed_members_but_not_bypassed(container, clock, make_member):
    first = await make_member()
    second = await make_member()
    exempt = await make_member(bypass_dues=True)
    clock.advance(days=366)

    report = await container.membership.sweep_lapsed()

    assert report.expired == 2
    assert report.suspended == 0
    assert (await container.membership.lookup(first.id)).status == MemberStatus.EXPIRED
    assert (await container.membership.lookup(second.id)).status == MemberStatus.EXPIRED
    assert (await container.membership.lookup(exempt.id)).status == MemberStatus.ACTIVE

    again = await container.membership.sweep_lapsed()
    assert again.expired == 0


@pytest.mark.asyncio
async def test_sweep_with_grace_period_suspends_long_expired(storage, container, clock, make_member):
    member = await make_member()
    graced = MembershipService(storage, container.audit, grace_period=timedelta(days=30), clock=clock)
    clock.advance(days=366 + 31)

    report = await graced.sweep_lapsed()

    assert report.expired == 1
    assert report.suspended == 1
    stored = await graced.lookup(member.id)
    assert stored.status == MemberStatus.SUSPENDED
    assert stored.suspended_at == clock.now


@pytest.mark.asyncio
async def test_update_profile_and_uniqueness(container, admin, make_member):
    first = await make_member()
    second = await make_member()

    updated = await container.membership.update_profile(
        first.id,
        ProfileChanges(display_name="First Member", notes="paid in cash"),
        actor_id=admin.id,
    )
    assert updated.display_name == "First Member"
    assert updated.notes == "paid in cash"

    with pytest.raises(Conflict):
        await container.membership.update_profile(
            second.id, ProfileChanges(email=first.email), actor_id=admin.id
        )

    with pytest.raises(ValidationError):
        await container.membership.update_profile(
            second.id, ProfileChanges(membership_type_id=uuid4()), actor_id=admin.id
        )


@pytest.mark.asyncio
async def test_admin_cannot_demote_themselves(container, admin, make_member):
    with pytest.raises(Conflict) as excinfo:
        await container.membership.set_role(admin.id, MemberRole.MEMBER, actor_id=admin.id)
    assert excinfo.value.detail == "cannot_demote_self"

    member = await make_member()
    promoted = await container.membership.set_role(member.id, MemberRole.ADMIN, actor_id=admin.id)
    assert promoted.role == MemberRole.ADMIN


@pytest.mark.asyncio
async def test_create_member_rejects_unsupported_initial_status(container, admin, membership_types):
    with pytest.raises(ValidationError):
        await container.membership.create_member(
            actor_id=admin.id,
            email="x@example.org",
            username="xmember",
            password="long-enough-pw",
            status=MemberStatus.SUSPENDED,
        )


@pytest.mark.asyncio
async def test_reject_signs_the_applicant_out(container, admin, make_member):
    applicant = await make_member(status=MemberStatus.PENDING)
    first = await container.auth.login(applicant.email, "correct-horse-battery")
    second = await container.auth.login(applicant.email, "correct-horse-battery")

    await container.membership.reject(applicant.id, actor_id=admin.id)

    assert await container.sessions.list_for_member(applicant.id) == []
    for token in (first.raw_token, second.raw_token):
        with pytest.raises(Unauthenticated):
            await container.sessions.validate(token)


@pytest.mark.asyncio
async def test_bootstrap_admin_only_once(container, membership_types):
    assert await container.membership.setup_complete() is False
    first = await container.membership.bootstrap_admin(
        email="Root@Example.org", username="root", password="long-enough-pw"
    )
    assert first.role == MemberRole.ADMIN
    assert first.status == MemberStatus.ACTIVE
    assert first.bypass_dues is True
    assert await container.membership.setup_complete() is True
    assert await _audit_actions(container, first.id) == ["member.created"]

    with pytest.raises(Conflict) as excinfo:
        await container.membership.bootstrap_admin(email="two@example.org", username="two", password="long-enough-pw")
    assert excinfo.value.detail == "setup_complete"


@pytest.mark.asyncio
async def test_concurrent_bootstrap_creates_one_admin(container, membership_types):
    results = await asyncio.gather(
        container.membership.bootstrap_admin(email="a@example.org", username="alpha", password="long-enough-pw"),
        container.membership.bootstrap_admin(email="b@example.org", username="bravo", password="long-enough-pw"),
        return_exceptions=True,
    )
    created = [item for item in results if not isinstance(item, Exception)]
    refused = [item for item in results if isinstance(item, Conflict)]
    assert len(created) == 1
    assert [item.detail for item in refused] == ["setup_complete"]
