"""Read access to the append-only audit log."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from standing.api import schemas
from standing.api.deps import get_container, require_admin
from standing.auth.sessions import SessionContext
from standing.container import Container

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=schemas.AuditPage)
async def list_audit_endpoint(
    entity_type: Optional[str] = Query(default=None, max_length=64),
    entity_id: Optional[str] = Query(default=None, max_length=128),
    actor_id: Optional[UUID] = Query(default=None),
    before_id: Optional[int] = Query(default=None, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    _: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
) -> schemas.AuditPage:
    records = await container.audit.list(
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        before_id=before_id,
        limit=limit,
    )
    items = [schemas.AuditOut.model_validate(record) for record in records]
    next_before_id = items[-1].id if len(items) == limit else None
    return schemas.AuditPage(items=items, next_before_id=next_before_id)
