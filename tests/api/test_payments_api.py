import json

import pytest

from standing.payments import signature
from standing.settings import settings


def signed(payload: dict, *, secret: str | None = None) -> tuple[bytes, dict]:
    body = json.dumps(payload).encode()
    header = signature.sign(secret if secret is not None else settings.payment_webhook_secret, body)
    return body, {signature.SIGNATURE_HEADER: header, "Content-Type": "application/json"}


def completed_payload(member_id, *, ref="pi_1001", amount=5000) -> dict:
    return {
        "id": ref,
        "amount": amount,
        "currency": "usd",
        "status": "completed",
        "created": "2024-01-20T08:00:00Z",
        "member_id": str(member_id),
    }


@pytest.mark.asyncio
async def test_signed_webhook_is_reconciled_once(api_client, make_member):
    member = await make_member()
    body, headers = signed(completed_payload(member.id))

    first = await api_client.post("/payments/webhook", content=body, headers=headers)
    assert first.status_code == 200
    assert first.json()["outcome"] == "applied"
    assert first.json()["payment"]["currency"] == "USD"
    paid_until = first.json()["dues_paid_until"]

    second = await api_client.post("/payments/webhook", content=body, headers=headers)
    assert second.status_code == 200
    assert second.json()["outcome"] == "duplicate"
    assert second.json()["dues_paid_until"] == paid_until


@pytest.mark.asyncio
async def test_unsigned_or_forged_webhooks_are_rejected(api_client, container, make_member):
    member = await make_member()
    body, _ = signed(completed_payload(member.id))

    resp = await api_client.post("/payments/webhook", content=body)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "invalid_signature"

    _, forged = signed(completed_payload(member.id), secret="guessed")
    resp = await api_client.post("/payments/webhook", content=body, headers=forged)
    assert resp.status_code == 400

    assert await container.reconciler.list_for_member(member.id) == []


@pytest.mark.asyncio
async def test_malformed_event_is_a_422(api_client, make_member):
    member = await make_member()
    body, headers = signed(completed_payload(member.id, amount=49.99))
    resp = await api_client.post("/payments/webhook", content=body, headers=headers)
    assert resp.status_code == 422
    assert resp.json()["detail"] == "malformed_payment_event"


@pytest.mark.asyncio
async def test_webhook_for_unknown_member_is_404(api_client):
    body, headers = signed(completed_payload("5b1f2f5e-1f7a-4c1e-9a55-2f2b3c4d5e6f"))
    resp = await api_client.post("/payments/webhook", content=body, headers=headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_admin_records_manual_payment(admin_client, make_member):
    member = await make_member()
    resp = await admin_client.post(
        "/payments/manual",
        json={"member_id": str(member.id), "amount_cents": 5000, "description": "cash at meetup"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["outcome"] == "applied"
    assert body["payment"]["method"] == "manual"
    assert body["payment"]["description"] == "cash at meetup"

    history = await admin_client.get(f"/members/{member.id}/payments")
    assert [item["external_ref"] for item in history.json()] == [body["payment"]["external_ref"]]


@pytest.mark.asyncio
async def test_manual_payment_requires_admin_and_csrf(client_factory, admin, make_member, login):
    member = await make_member()
    client = await client_factory()
    await login(client, member.email)
    resp = await client.post("/payments/manual", json={"member_id": str(member.id), "amount_cents": 100})
    assert resp.status_code == 403

    admin_session = await client_factory()
    await login(admin_session, admin.email)
    admin_session.headers.pop(settings.csrf_header_name)
    resp = await admin_session.post("/payments/manual", json={"member_id": str(member.id), "amount_cents": 100})
    assert resp.status_code == 403
    assert resp.json()["detail"] == "csrf_failed"
