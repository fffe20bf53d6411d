from uuid import uuid4

import pytest

from standing.auth.events import STREAM_KEY
from standing.container import build_container
from standing.errors import RateLimited, Unauthenticated
from standing.infra import rate_limit

PASSWORD = "correct-horse-battery"


@pytest.mark.asyncio
async def test_login_opens_session_with_csrf(container, make_member):
    member = await make_member()
    result = await container.auth.login(member.email.upper(), PASSWORD, ip="10.0.0.1", user_agent="pytest")

    context = await container.sessions.validate(result.raw_token)
    assert context.member.id == member.id
    assert context.session.ip == "10.0.0.1"
    assert await container.csrf.validate(result.session.id, result.csrf_token)


@pytest.mark.asyncio
async def test_login_failures_are_indistinguishable(container, admin, make_member):
    member = await make_member()
    with pytest.raises(Unauthenticated) as wrong_password:
        await container.auth.login(member.email, "not-the-password")
    with pytest.raises(Unauthenticated) as unknown_email:
        await container.auth.login("nobody@example.org", PASSWORD)
    assert wrong_password.value.detail == unknown_email.value.detail == "invalid_credentials"


@pytest.mark.asyncio
async def test_rejected_applicant_cannot_log_in(container, admin):
    applicant = await container.membership.signup(email="r@example.org", username="rejected", password=PASSWORD)
    await container.membership.reject(applicant.id, actor_id=admin.id)
    with pytest.raises(Unauthenticated):
        await container.auth.login("r@example.org", PASSWORD)


@pytest.mark.asyncio
async def test_pending_applicant_can_log_in(container, membership_types):
    applicant = await container.membership.signup(email="p@example.org", username="pending", password=PASSWORD)
    result = await container.auth.login("p@example.org", PASSWORD)
    assert result.member.id == applicant.id


@pytest.mark.asyncio
async def test_login_revokes_the_previously_presented_session(container, make_member):
    member = await make_member()
    first = await container.auth.login(member.email, PASSWORD)
    second = await container.auth.login(member.email, PASSWORD, previous_token=first.raw_token)

    with pytest.raises(Unauthenticated):
        await container.sessions.validate(first.raw_token)
    assert (await container.sessions.validate(second.raw_token)).session.id == second.session.id


@pytest.mark.asyncio
async def test_login_is_rate_limited(storage, clock, make_member):
    async def deny(*args, **kwargs):
        return False

    limited = build_container(storage, clock=clock, limiter=deny)
    member = await make_member()
    with pytest.raises(RateLimited):
        await limited.auth.login(member.email, PASSWORD)


@pytest.mark.asyncio
async def test_login_is_counted_per_login_identity(storage, clock, make_member):
    calls = []

    async def recording_allow(identity, **kwargs):
        calls.append(identity)
        return await rate_limit.allow_login(identity, **kwargs)

    limited = build_container(storage, clock=clock, limiter=recording_allow)
    member = await make_member()
    await limited.auth.login(member.email.upper(), PASSWORD, ip="10.0.0.1")
    await limited.auth.login(member.email, PASSWORD, ip="10.0.0.2")
    assert calls == [f"email:{member.email}"] * 2


@pytest.mark.asyncio
async def test_security_events_reach_the_stream(container, make_member, fake_redis):
    member = await make_member()
    await container.auth.login(member.email, PASSWORD)
    with pytest.raises(Unauthenticated):
        await container.auth.login(member.email, "wrong-password")

    entries = await fake_redis.xrange(STREAM_KEY)
    events = [fields["event"] for _, fields in entries]
    assert events == ["login_succeeded", "login_failed"]
    assert entries[0][1]["member_id"] == str(member.id)


@pytest.mark.asyncio
async def test_change_password_revokes_every_session(container, make_member):
    member = await make_member()
    first = await container.auth.login(member.email, PASSWORD)
    second = await container.auth.login(member.email, PASSWORD)
    context = await container.sessions.validate(first.raw_token)

    revoked = await container.auth.change_password(context, PASSWORD, "a-brand-new-secret")

    assert revoked == 2
    for token in (first.raw_token, second.raw_token):
        with pytest.raises(Unauthenticated):
            await container.sessions.validate(token)
    with pytest.raises(Unauthenticated):
        await container.auth.login(member.email, PASSWORD)
    assert (await container.auth.login(member.email, "a-brand-new-secret")).member.id == member.id

    [record] = await container.audit.list(entity_type="member", entity_id=str(member.id), limit=1)
    assert record.action == "member.password_changed"
    assert "password_hash" not in record.after


@pytest.mark.asyncio
async def test_change_password_requires_current_password(container, make_member):
    member = await make_member()
    result = await container.auth.login(member.email, PASSWORD)
    context = await container.sessions.validate(result.raw_token)
    with pytest.raises(Unauthenticated):
        await container.auth.change_password(context, "wrong", "a-brand-new-secret")
    assert (await container.sessions.validate(result.raw_token)).member.id == member.id


@pytest.mark.asyncio
async def test_logout_everywhere(container, make_member):
    member = await make_member()
    tokens = [(await container.auth.login(member.email, PASSWORD)).raw_token for _ in range(3)]
    context = await container.sessions.validate(tokens[0])
    assert await container.auth.logout_everywhere(context) == 3
    assert await container.sessions.list_for_member(member.id) == []
    assert await container.sessions.list_for_member(uuid4()) == []
