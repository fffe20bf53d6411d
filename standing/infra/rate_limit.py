"""Login throttling: a per-identity attempt budget counted in Redis.

Each identity gets a fixed window. The counter key holds a digest of the
identity, so member email addresses never appear in Redis.
"""

from __future__ import annotations

import hashlib
import time
from typing import Optional

from standing.infra.redis import redis_client

_KEY_PREFIX = "standing:login-attempts"


def login_identity(email: Optional[str], ip: Optional[str] = None) -> str:
    """The name an attempt is counted under.

    Spellings of the same address share one budget. A blank email falls
    back to the caller's address.
    """
    normalised = (email or "").strip().lower()
    if normalised:
        return f"email:{normalised}"
    return f"ip:{ip or 'unknown'}"


def _counter_key(identity: str, window: int, now: float) -> str:
    digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()[:32]
    return f"{_KEY_PREFIX}:{digest}:{window}:{int(now // window)}"


async def allow_login(
    identity: str,
    *,
    limit: int,
    window_seconds: int = 60,
    now: Optional[float] = None,
) -> bool:
    """Count one attempt for ``identity``; False once the window's budget is spent."""
    if limit <= 0:
        return False
    window = max(1, int(window_seconds))
    key = _counter_key(identity, window, time.time() if now is None else now)
    async with redis_client.pipeline(transaction=True) as pipe:
        pipe.incr(key)
        pipe.expire(key, window)
        attempts, _ = await pipe.execute()
    return int(attempts) <= limit
