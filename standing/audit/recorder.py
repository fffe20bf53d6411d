"""Append-only audit trail for state-changing operations.

Records are written through the caller's unit of work so the audit entry
commits or rolls back together with the change it describes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from standing.models import AuditRecord
from standing.obs import metrics
from standing.storage.base import Storage, UnitOfWork

_USER_AGENT_MAX = 200
_FORBIDDEN_KEYS = frozenset({"password", "password_hash", "token", "token_hash"})


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class Provenance:
    ip: Optional[str] = None
    user_agent: Optional[str] = None


def _scrub(snapshot: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if snapshot is None:
        return None
    cleaned: Dict[str, Any] = {}
    for key, value in snapshot.items():
        if key in _FORBIDDEN_KEYS:
            continue
        cleaned[key] = _scrub(value) if isinstance(value, dict) else value
    return cleaned


class AuditRecorder:
    def __init__(self, storage: Storage, *, clock: Callable[[], datetime] = _now) -> None:
        self._storage = storage
        self._clock = clock

    async def record(
        self,
        uow: UnitOfWork,
        *,
        action: str,
        entity_type: str,
        entity_id: Any,
        actor_id: Optional[UUID] = None,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        provenance: Optional[Provenance] = None,
    ) -> AuditRecord:
        provenance = provenance or Provenance()
        record = AuditRecord(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            created_at=self._clock(),
            before=_scrub(before),
            after=_scrub(after),
            ip=provenance.ip,
            user_agent=(provenance.user_agent or "")[:_USER_AGENT_MAX] or None,
        )
        stored = await uow.audit.append(record)
        metrics.AUDIT_RECORDS.labels(action=action).inc()
        return stored

    async def list(
        self,
        *,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        actor_id: Optional[UUID] = None,
        before_id: Optional[int] = None,
        limit: int = 50,
    ) -> list[AuditRecord]:
        async with self._storage.unit_of_work() as uow:
            return await uow.audit.list(
                entity_type=entity_type,
                entity_id=entity_id,
                actor_id=actor_id,
                before_id=before_id,
                limit=max(1, min(limit, 200)),
            )
