"""Role and standing checks for authenticated requests."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from standing.auth.sessions import SessionContext
from standing.errors import Forbidden
from standing.membership.machine import in_good_standing
from standing.models import Member, MemberRole
from standing.obs import metrics

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AccessGate:
    """Decide whether an authenticated member may perform an operation.

    The gate only reads: a member whose dues lapsed is treated as expired
    here even if no sweep has persisted that yet.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _now) -> None:
        self._clock = clock

    def authorize(
        self,
        context: SessionContext,
        required_role: MemberRole = MemberRole.MEMBER,
        *,
        require_good_standing: bool = False,
    ) -> Member:
        member = context.member
        if member.role.rank < required_role.rank:
            self._deny("insufficient_role", member)
        if require_good_standing and member.role != MemberRole.ADMIN and not in_good_standing(member, self._clock()):
            self._deny("standing_required", member)
        return member

    def _deny(self, reason: str, member: Member) -> None:
        metrics.ACCESS_DENIED.labels(reason=reason).inc()
        logger.info("access denied", extra={"reason": reason, "member_id": str(member.id)})
        raise Forbidden(reason)
