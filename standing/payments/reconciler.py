"""Apply payment events to payment records and member standing exactly once.

Each event is keyed by ``external_ref``. The member row is locked before the
payment row is re-read, so concurrent deliveries of the same event serialize
and the loser sees the winner's write. The unique constraint on
``external_ref`` backs this up if two first-seen deliveries still race.

Payment status moves forward only:

    (new)     -> pending | completed | failed | refunded
    pending   -> completed | failed | refunded
    failed    -> completed | refunded
    completed -> refunded
    refunded  -> (terminal)

Anything else is reported as stale and changes nothing. Only the move into
``completed`` extends dues.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional
from uuid import UUID, uuid4

from standing.audit.recorder import AuditRecorder, Provenance
from standing.errors import Conflict, NotFound, ValidationError
from standing.membership.service import MembershipService
from standing.models import Member, Payment, PaymentMethod, PaymentStatus
from standing.obs import metrics
from standing.payments.schemas import PaymentEvent
from standing.storage.base import Storage

logger = logging.getLogger(__name__)

_ALLOWED_FROM: Dict[PaymentStatus, FrozenSet[Optional[PaymentStatus]]] = {
    PaymentStatus.PENDING: frozenset({None}),
    PaymentStatus.COMPLETED: frozenset({None, PaymentStatus.PENDING, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({None, PaymentStatus.PENDING}),
    PaymentStatus.REFUNDED: frozenset({None, PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.COMPLETED}),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"


@dataclass(slots=True, frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    payment: Payment
    member: Member


class PaymentReconciler:
    def __init__(
        self,
        storage: Storage,
        membership: MembershipService,
        audit: AuditRecorder,
        *,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._storage = storage
        self._membership = membership
        self._audit = audit
        self._clock = clock

    async def reconcile(
        self,
        event: PaymentEvent,
        *,
        method: PaymentMethod = PaymentMethod.PROVIDER,
        actor_id: Optional[UUID] = None,
        provenance: Optional[Provenance] = None,
    ) -> ReconcileResult:
        async with self._storage.unit_of_work() as uow:
            seen = await uow.payments.get_by_external_ref(event.external_ref)
            member_id = seen.member_id if seen else event.member_id
            if member_id is None:
                raise ValidationError("member_id_required")
            member = await uow.members.lock(member_id)
            if member is None:
                raise NotFound("member_not_found")
            existing = await uow.payments.get_by_external_ref(event.external_ref)
            if existing is not None:
                self._check_consistent(existing, event)

            previous = existing.status if existing else None
            if existing is not None and previous == event.status:
                return self._finish(ReconcileOutcome.DUPLICATE, event, existing, member)
            if existing is not None and previous not in _ALLOWED_FROM[event.status]:
                return self._finish(ReconcileOutcome.STALE, event, existing, member)

            now = self._clock()
            if existing is None:
                payment = Payment(
                    id=uuid4(),
                    member_id=member.id,
                    external_ref=event.external_ref,
                    amount_cents=event.amount_cents,
                    currency=event.currency,
                    status=event.status,
                    method=method,
                    created_at=now,
                    updated_at=now,
                    description=event.description,
                    paid_at=event.occurred_at if event.status == PaymentStatus.COMPLETED else None,
                )
                payment = await uow.payments.insert(payment)
            else:
                paid_at = event.occurred_at if event.status == PaymentStatus.COMPLETED else existing.paid_at
                payment = await uow.payments.save(
                    replace(
                        existing,
                        status=event.status,
                        paid_at=paid_at,
                        description=event.description or existing.description,
                        updated_at=now,
                    )
                )

            after_member = member
            if event.status == PaymentStatus.COMPLETED:
                result = await self._membership.apply_payment(uow, member, at=event.occurred_at)
                after_member = result.after

            await self._audit.record(
                uow,
                action=f"payment.{event.status.value}",
                entity_type="payment",
                entity_id=payment.id,
                actor_id=actor_id,
                before={
                    "payment": existing.snapshot() if existing else None,
                    "member": member.snapshot(),
                },
                after={
                    "payment": payment.snapshot(),
                    "member": after_member.snapshot(),
                },
                provenance=provenance,
            )
        logger.info(
            "payment reconciled",
            extra={
                "external_ref": event.external_ref,
                "status": event.status.value,
                "member_id": str(member.id),
                "dues_paid_until": after_member.dues_paid_until.isoformat() if after_member.dues_paid_until else None,
            },
        )
        return self._finish(ReconcileOutcome.APPLIED, event, payment, after_member)

    async def record_manual(
        self,
        member_id: UUID,
        *,
        amount_cents: int,
        actor_id: UUID,
        currency: str = "USD",
        method: PaymentMethod = PaymentMethod.MANUAL,
        description: Optional[str] = None,
        provenance: Optional[Provenance] = None,
    ) -> ReconcileResult:
        """Record an offline or waived payment as a completed event."""
        if method == PaymentMethod.PROVIDER:
            raise ValidationError("manual_method_required")
        event = PaymentEvent(
            external_ref=f"{method.value}-{uuid4()}",
            amount_cents=0 if method == PaymentMethod.WAIVED else amount_cents,
            currency=currency,
            status=PaymentStatus.COMPLETED,
            occurred_at=self._clock(),
            member_id=member_id,
            description=description,
        )
        return await self.reconcile(event, method=method, actor_id=actor_id, provenance=provenance)

    async def list_for_member(self, member_id: UUID, *, limit: int = 50) -> list[Payment]:
        async with self._storage.unit_of_work() as uow:
            return await uow.payments.list_for_member(member_id, limit=max(1, min(limit, 200)))

    def _check_consistent(self, existing: Payment, event: PaymentEvent) -> None:
        mismatch = None
        if event.member_id is not None and event.member_id != existing.member_id:
            mismatch = "member"
        elif event.currency != existing.currency:
            mismatch = "currency"
        elif event.amount_cents != existing.amount_cents and event.status != PaymentStatus.REFUNDED:
            mismatch = "amount"
        if mismatch is None:
            return
        logger.warning(
            "payment event disagrees with stored payment",
            extra={"external_ref": existing.external_ref, "field": mismatch},
        )
        metrics.PAYMENTS_RECONCILED.labels(status=event.status.value, outcome="conflict").inc()
        raise Conflict("payment_mismatch")

    def _finish(
        self,
        outcome: ReconcileOutcome,
        event: PaymentEvent,
        payment: Payment,
        member: Member,
    ) -> ReconcileResult:
        metrics.PAYMENTS_RECONCILED.labels(status=event.status.value, outcome=outcome.value).inc()
        if outcome == ReconcileOutcome.STALE:
            logger.info(
                "stale payment event ignored",
                extra={"external_ref": event.external_ref, "status": event.status.value},
            )
        return ReconcileResult(outcome=outcome, payment=payment, member=member)
