import itertools
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

from standing.container import build_container
from standing.infra.redis import redis_client, set_redis_client
from standing.main import create_app
from standing.models import MemberRole, MemberStatus, TypeKind
from standing.settings import settings
from standing.storage.memory import InMemoryStorage

START = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
PASSWORD = "correct-horse-battery"
WEBHOOK_SECRET = "whsec_test_secret"


class FrozenClock:
    """Callable clock that only moves when a test advances it."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


async def _always_allow(*args, **kwargs) -> bool:
    return True


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
    original = redis_client._client
    client = FakeRedis(decode_responses=True)
    set_redis_client(client)
    try:
        yield client
    finally:
        set_redis_client(original)
        await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings(monkeypatch):
    """Cookies must travel over plain http://testserver and webhooks need a known secret."""
    monkeypatch.setattr(settings, "environment", "test")
    monkeypatch.setattr(settings, "cookie_secure", False)
    monkeypatch.setattr(settings, "payment_webhook_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "obs_metrics_public", False)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def container(storage, clock):
    return build_container(storage, clock=clock, limiter=_always_allow)


@pytest_asyncio.fixture
async def membership_types(container):
    created = await container.types.seed_defaults()
    return {item.slug: item for item in created if item.kind == TypeKind.MEMBERSHIP}


@pytest_asyncio.fixture
async def admin(container, membership_types):
    return await container.membership.create_member(
        actor_id=uuid4(),
        email="admin@example.org",
        username="admin",
        password=PASSWORD,
        role=MemberRole.ADMIN,
        bypass_dues=True,
        membership_type_id=membership_types["regular"].id,
    )


@pytest.fixture
def make_member(container, admin, membership_types):
    counter = itertools.count(1)

    async def _make(*, status=MemberStatus.ACTIVE, type_slug="regular", **kwargs):
        n = next(counter)
        return await container.membership.create_member(
            actor_id=admin.id,
            email=kwargs.pop("email", f"member{n}@example.org"),
            username=kwargs.pop("username", f"member{n}"),
            password=kwargs.pop("password", PASSWORD),
            status=status,
            membership_type_id=membership_types[type_slug].id,
            **kwargs,
        )

    return _make


@pytest.fixture
def app(container):
    return create_app(container)


@pytest_asyncio.fixture
async def client_factory(app):
    clients = []

    async def _make() -> AsyncClient:
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")
        clients.append(client)
        return client

    yield _make
    for client in clients:
        await client.aclose()


@pytest_asyncio.fixture
async def api_client(client_factory):
    return await client_factory()


@pytest.fixture
def login():
    async def _login(client: AsyncClient, email: str, password: str = PASSWORD) -> str:
        resp = await client.post("/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        csrf_token = resp.json()["csrf_token"]
        client.headers[settings.csrf_header_name] = csrf_token
        return csrf_token

    return _login


@pytest_asyncio.fixture
async def admin_client(client_factory, admin, login):
    client = await client_factory()
    await login(client, admin.email)
    return client
