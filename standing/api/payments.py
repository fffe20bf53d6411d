"""Payment provider webhook and manual payment routes."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError

from standing.api import schemas
from standing.api.deps import get_container, provenance, require_admin
from standing.audit.recorder import Provenance
from standing.auth.sessions import SessionContext
from standing.container import Container
from standing.errors import InvalidSignature, ValidationError
from standing.models import PaymentMethod
from standing.obs import metrics
from standing.payments import signature
from standing.payments.reconciler import ReconcileResult
from standing.payments.schemas import PaymentEvent
from standing.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _reconcile_out(result: ReconcileResult) -> schemas.ReconcileOut:
    return schemas.ReconcileOut(
        outcome=result.outcome.value,
        payment=schemas.PaymentOut.model_validate(result.payment),
        member_status=result.member.status,
        dues_paid_until=result.member.dues_paid_until,
    )


@router.post("/webhook", response_model=schemas.ReconcileOut)
async def webhook_endpoint(
    request: Request,
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.ReconcileOut:
    """Provider callback. Authenticated by signature instead of a session, so no CSRF check."""
    body = await request.body()
    try:
        signature.verify(
            settings.payment_webhook_secret,
            request.headers.get(signature.SIGNATURE_HEADER),
            body,
            tolerance_seconds=settings.payment_webhook_tolerance_seconds,
        )
    except InvalidSignature as exc:
        metrics.WEBHOOK_REJECTED.labels(reason=exc.detail).inc()
        logger.warning("webhook signature rejected", extra={"reason": exc.detail})
        raise
    try:
        event = PaymentEvent.model_validate_json(body)
    except PydanticValidationError as exc:
        metrics.WEBHOOK_REJECTED.labels(reason="malformed").inc()
        raise ValidationError("malformed_payment_event") from exc
    result = await container.reconciler.reconcile(event, method=PaymentMethod.PROVIDER, provenance=origin)
    return _reconcile_out(result)


@router.post("/manual", response_model=schemas.ReconcileOut)
async def manual_payment_endpoint(
    payload: schemas.ManualPaymentRequest,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.ReconcileOut:
    result = await container.reconciler.record_manual(
        payload.member_id,
        amount_cents=payload.amount_cents,
        currency=payload.currency,
        method=PaymentMethod(payload.method),
        description=payload.description,
        actor_id=context.member.id,
        provenance=origin,
    )
    return _reconcile_out(result)
