"""Configurable type catalog routes."""

from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from standing.api import schemas
from standing.api.deps import get_container, provenance, require_admin, require_good_standing
from standing.audit.recorder import Provenance
from standing.auth.sessions import SessionContext
from standing.catalog.schemas import TypeCreate, TypeUpdate
from standing.container import Container
from standing.models import MemberRole, TypeKind

router = APIRouter(prefix="/types", tags=["types"])


@router.post("/seed", response_model=List[schemas.TypeOut])
async def seed_types_endpoint(
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
) -> List[schemas.TypeOut]:
    created = await container.types.seed_defaults(actor_id=context.member.id)
    return [schemas.TypeOut.model_validate(item) for item in created]


@router.get("/{kind}", response_model=List[schemas.TypeOut])
async def list_types_endpoint(
    kind: TypeKind,
    include_inactive: bool = Query(default=False),
    context: SessionContext = Depends(require_good_standing),
    container: Container = Depends(get_container),
) -> List[schemas.TypeOut]:
    show_inactive = include_inactive and context.member.role == MemberRole.ADMIN
    items = await container.types.list(kind, include_inactive=show_inactive)
    return [schemas.TypeOut.model_validate(item) for item in items]


@router.post("/{kind}", response_model=schemas.TypeOut, status_code=status.HTTP_201_CREATED)
async def create_type_endpoint(
    kind: TypeKind,
    payload: TypeCreate,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.TypeOut:
    item = await container.types.create(kind, payload, actor_id=context.member.id, provenance=origin)
    return schemas.TypeOut.model_validate(item)


@router.post("/{kind}/reorder", response_model=List[schemas.TypeOut])
async def reorder_types_endpoint(
    kind: TypeKind,
    payload: schemas.ReorderRequest,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> List[schemas.TypeOut]:
    items = await container.types.reorder(kind, payload.ids, actor_id=context.member.id, provenance=origin)
    return [schemas.TypeOut.model_validate(item) for item in items]


@router.get("/{kind}/{type_id}", response_model=schemas.TypeOut)
async def get_type_endpoint(
    kind: TypeKind,
    type_id: UUID,
    _: SessionContext = Depends(require_good_standing),
    container: Container = Depends(get_container),
) -> schemas.TypeOut:
    return schemas.TypeOut.model_validate(await container.types.get(kind, type_id))


@router.patch("/{kind}/{type_id}", response_model=schemas.TypeOut)
async def update_type_endpoint(
    kind: TypeKind,
    type_id: UUID,
    payload: TypeUpdate,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.TypeOut:
    item = await container.types.update(kind, type_id, payload, actor_id=context.member.id, provenance=origin)
    return schemas.TypeOut.model_validate(item)


@router.delete("/{kind}/{type_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response, response_model=None)
async def delete_type_endpoint(
    kind: TypeKind,
    type_id: UUID,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> None:
    await container.types.delete(kind, type_id, actor_id=context.member.id, provenance=origin)
