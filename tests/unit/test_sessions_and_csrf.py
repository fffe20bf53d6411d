from datetime import timedelta
from uuid import uuid4

import pytest

from standing.auth.sessions import hash_token
from standing.errors import Forbidden, NotFound, Unauthenticated


@pytest.mark.asyncio
async def test_only_the_token_hash_is_stored(container, storage, make_member):
    member = await make_member()
    issued = await container.sessions.create(member.id, ip="127.0.0.1", user_agent="x" * 500)

    assert issued.session.token_hash == hash_token(issued.raw_token)
    assert issued.session.token_hash != issued.raw_token
    assert len(issued.session.user_agent) == 200
    stored = await storage.sessions.get_by_hash(hash_token(issued.raw_token))
    assert stored.id == issued.session.id


@pytest.mark.asyncio
async def test_validate_touches_last_used(container, clock, make_member):
    member = await make_member()
    issued = await container.sessions.create(member.id)
    clock.advance(hours=2)
    context = await container.sessions.validate(issued.raw_token)
    assert context.session.last_used_at == clock.now


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, "", "not-a-real-token"])
async def test_unknown_tokens_are_unauthenticated(container, token):
    with pytest.raises(Unauthenticated) as excinfo:
        await container.sessions.validate(token)
    assert excinfo.value.detail == "unauthenticated"


@pytest.mark.asyncio
async def test_any_flipped_bit_in_the_token_is_unauthenticated(container, make_member):
    member = await make_member()
    issued = await container.sessions.create(member.id)
    raw = issued.raw_token

    for position in range(len(raw)):
        for bit in (0x01, 0x20):
            flipped = raw[:position] + chr(ord(raw[position]) ^ bit) + raw[position + 1 :]
            with pytest.raises(Unauthenticated):
                await container.sessions.validate(flipped)
    with pytest.raises(Unauthenticated):
        await container.sessions.validate(raw + "A")
    with pytest.raises(Unauthenticated):
        await container.sessions.validate(raw[:-1])

    context = await container.sessions.validate(raw)
    assert context.session.id == issued.session.id


@pytest.mark.asyncio
async def test_expired_sessions_fail_and_are_swept(container, clock, make_member):
    member = await make_member()
    issued = await container.sessions.create(member.id)
    clock.advance(hours=24)

    with pytest.raises(Unauthenticated):
        await container.sessions.validate(issued.raw_token)
    assert await container.sessions.sweep_expired() == 1
    assert await container.sessions.list_for_member(member.id) == []


@pytest.mark.asyncio
async def test_sweep_before_validate_keeps_live_sessions(container, clock, make_member):
    member = await make_member()
    stale = await container.sessions.create(member.id)
    clock.advance(hours=23)
    live = await container.sessions.create(member.id)
    clock.advance(hours=1)

    assert await container.sessions.sweep_expired() == 1
    with pytest.raises(Unauthenticated):
        await container.sessions.validate(stale.raw_token)
    context = await container.sessions.validate(live.raw_token)
    assert context.session.id == live.session.id
    assert [item.id for item in await container.sessions.list_for_member(member.id)] == [live.session.id]


@pytest.mark.asyncio
async def test_revoke_drops_the_bound_csrf_token(container, storage, make_member):
    member = await make_member()
    issued = await container.sessions.create(member.id)
    await container.csrf.issue(issued.session.id)

    assert await container.sessions.revoke(issued.session.id)
    assert await storage.csrf.get(issued.session.id) is None
    assert not await container.sessions.revoke(issued.session.id)
    with pytest.raises(Unauthenticated):
        await container.sessions.validate(issued.raw_token)


@pytest.mark.asyncio
async def test_csrf_token_is_bound_to_its_session(container, make_member):
    member = await make_member()
    first = await container.sessions.create(member.id)
    second = await container.sessions.create(member.id)
    first_token = await container.csrf.issue(first.session.id)
    second_token = await container.csrf.issue(second.session.id)

    assert await container.csrf.validate(first.session.id, first_token)
    assert not await container.csrf.validate(first.session.id, second_token)
    assert not await container.csrf.validate(first.session.id, None)
    with pytest.raises(Forbidden) as excinfo:
        await container.csrf.require(first.session.id, second_token)
    assert excinfo.value.detail == "csrf_failed"


@pytest.mark.asyncio
async def test_reissuing_csrf_invalidates_the_old_token(container, make_member):
    member = await make_member()
    issued = await container.sessions.create(member.id)
    old = await container.csrf.issue(issued.session.id)
    new = await container.csrf.issue(issued.session.id)
    assert not await container.csrf.validate(issued.session.id, old)
    assert await container.csrf.validate(issued.session.id, new)


@pytest.mark.asyncio
async def test_csrf_requires_a_live_session(container):
    with pytest.raises(NotFound):
        await container.csrf.issue(uuid4())


@pytest.mark.asyncio
async def test_session_lifetime_matches_configured_ttl(container, clock, make_member):
    member = await make_member()
    issued = await container.sessions.create(member.id)
    assert issued.session.expires_at - clock.now == timedelta(hours=24)
