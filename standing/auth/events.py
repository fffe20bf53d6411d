"""Security event stream for login, logout and session revocation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from redis.exceptions import RedisError

from standing.infra.redis import redis_client

STREAM_KEY = "x:standing.security"
STREAM_MAXLEN = 10_000

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _stringify(meta: Dict[str, Any]) -> Dict[str, str]:
    return {key: ("" if value is None else str(value)) for key, value in meta.items()}


async def log_event(event: str, *, member_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> None:
    payload: Dict[str, Any] = {"event": event, "ts": _now_iso()}
    if member_id:
        payload["member_id"] = member_id
    if meta:
        payload.update(_stringify(meta))
    try:
        await redis_client.xadd(STREAM_KEY, payload, maxlen=STREAM_MAXLEN, approximate=True)
    except RedisError:
        # The stream is a side channel; the authoritative record is the audit log.
        logger.warning("security event dropped", extra={"event": event}, exc_info=True)
