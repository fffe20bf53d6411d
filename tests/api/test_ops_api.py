import pytest

from standing.settings import settings


@pytest.mark.asyncio
async def test_liveness_and_readiness(api_client):
    assert (await api_client.get("/health/live")).json() == {"status": "ok"}

    resp = await api_client.get("/health/ready")
    assert resp.status_code == 200
    assert resp.json()["checks"] == {"storage": "ok", "redis": "ok"}


@pytest.mark.asyncio
async def test_metrics_are_admin_only_by_default(api_client, admin_client, make_member, client_factory, login):
    assert (await api_client.get("/metrics")).status_code == 401

    member = await make_member()
    client = await client_factory()
    await login(client, member.email)
    assert (await client.get("/metrics")).status_code == 403

    resp = await admin_client.get("/metrics")
    assert resp.status_code == 200
    assert "standing_http_requests_total" in resp.text


@pytest.mark.asyncio
async def test_metrics_can_be_public(api_client, monkeypatch):
    monkeypatch.setattr(settings, "obs_metrics_public", True)
    resp = await api_client.get("/metrics")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_request_id_is_propagated(api_client):
    resp = await api_client.get("/health/live", headers={"X-Request-Id": "abc-123"})
    assert resp.headers["X-Request-Id"] == "abc-123"
