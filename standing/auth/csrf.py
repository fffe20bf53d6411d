"""Per-session anti-forgery tokens for state-changing requests."""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from standing.auth.sessions import hash_token
from standing.errors import Forbidden
from standing.models import CsrfToken
from standing.obs import metrics
from standing.storage.base import CsrfRepository

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CsrfGuard:
    def __init__(self, repository: CsrfRepository, *, clock: Callable[[], datetime] = _now) -> None:
        self._repo = repository
        self._clock = clock

    async def issue(self, session_id: UUID) -> str:
        """Mint a token for the session, replacing any earlier one."""
        raw = secrets.token_urlsafe(32)
        await self._repo.upsert(CsrfToken(session_id=session_id, token_hash=hash_token(raw), created_at=self._clock()))
        return raw

    async def validate(self, session_id: UUID, presented: Optional[str]) -> bool:
        if not presented:
            return False
        stored = await self._repo.get(session_id)
        if stored is None:
            return False
        return hmac.compare_digest(stored.token_hash, hash_token(presented))

    async def require(self, session_id: UUID, presented: Optional[str]) -> None:
        if not await self.validate(session_id, presented):
            metrics.CSRF_REJECTED.inc()
            logger.info("csrf rejected", extra={"session_id": str(session_id), "present": bool(presented)})
            raise Forbidden("csrf_failed")
