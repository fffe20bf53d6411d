from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from standing.auth.gate import AccessGate
from standing.auth.sessions import SessionContext
from standing.errors import Forbidden
from standing.models import Member, MemberRole, MemberStatus, Session

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def context_for(status=MemberStatus.ACTIVE, role=MemberRole.MEMBER, **overrides) -> SessionContext:
    member = Member(
        id=uuid4(),
        email="m@example.org",
        username="member",
        display_name="Member",
        password_hash="$argon2id$stub",
        status=status,
        role=role,
        created_at=NOW,
        updated_at=NOW,
        dues_paid_until=NOW + timedelta(days=30),
    )
    member = replace(member, **overrides)
    session = Session(
        id=uuid4(),
        member_id=member.id,
        token_hash="0" * 64,
        expires_at=NOW + timedelta(hours=1),
        created_at=NOW,
        last_used_at=NOW,
    )
    return SessionContext(session=session, member=member)


@pytest.fixture
def gate() -> AccessGate:
    return AccessGate(clock=lambda: NOW)


def test_member_cannot_reach_admin_operations(gate):
    with pytest.raises(Forbidden) as excinfo:
        gate.authorize(context_for(), MemberRole.ADMIN)
    assert excinfo.value.detail == "insufficient_role"


def test_admin_satisfies_member_requirement(gate):
    ctx = context_for(role=MemberRole.ADMIN)
    assert gate.authorize(ctx) is ctx.member


@pytest.mark.parametrize("status", [MemberStatus.ACTIVE, MemberStatus.HONORARY])
def test_good_standing_statuses_pass(gate, status):
    gate.authorize(context_for(status), require_good_standing=True)


@pytest.mark.parametrize("status", [MemberStatus.PENDING, MemberStatus.EXPIRED, MemberStatus.SUSPENDED])
def test_other_statuses_lack_good_standing(gate, status):
    with pytest.raises(Forbidden) as excinfo:
        gate.authorize(context_for(status), require_good_standing=True)
    assert excinfo.value.detail == "standing_required"


def test_lapsed_dues_count_as_expired_before_any_sweep(gate):
    ctx = context_for(dues_paid_until=NOW - timedelta(seconds=1))
    gate.authorize(ctx)
    with pytest.raises(Forbidden):
        gate.authorize(ctx, require_good_standing=True)


def test_bypass_keeps_lapsed_member_in_good_standing(gate):
    ctx = context_for(MemberStatus.EXPIRED, bypass_dues=True, dues_paid_until=NOW - timedelta(days=90))
    gate.authorize(ctx, require_good_standing=True)


def test_admins_skip_the_standing_check(gate):
    ctx = context_for(MemberStatus.EXPIRED, role=MemberRole.ADMIN)
    gate.authorize(ctx, MemberRole.ADMIN, require_good_standing=True)
