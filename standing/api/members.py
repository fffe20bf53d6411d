"""Admin member management routes."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from standing.api import schemas
from standing.api.deps import get_container, provenance, require_admin, require_member
from standing.audit.recorder import Provenance
from standing.auth.sessions import SessionContext
from standing.container import Container
from standing.errors import Forbidden
from standing.membership.service import ProfileChanges
from standing.models import MemberRole, MemberStatus

router = APIRouter(prefix="/members", tags=["members"])


@router.get("", response_model=List[schemas.MemberAdminOut])
async def list_members_endpoint(
    status_filter: Optional[MemberStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
) -> List[schemas.MemberAdminOut]:
    members = await container.membership.list_members(status=status_filter, limit=limit, offset=offset)
    return [schemas.member_admin_out(member) for member in members]


@router.post("", response_model=schemas.MemberAdminOut, status_code=status.HTTP_201_CREATED)
async def create_member_endpoint(
    payload: schemas.MemberCreateRequest,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.MemberAdminOut:
    member = await container.membership.create_member(
        actor_id=context.member.id,
        email=payload.email,
        username=payload.username,
        password=payload.password,
        display_name=payload.display_name,
        status=MemberStatus(payload.status),
        role=payload.role,
        membership_type_id=payload.membership_type_id,
        bypass_dues=payload.bypass_dues,
        notes=payload.notes,
        provenance=origin,
    )
    return schemas.member_admin_out(member)


@router.get("/{member_id}", response_model=schemas.MemberAdminOut)
async def get_member_endpoint(
    member_id: UUID,
    _: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
) -> schemas.MemberAdminOut:
    return schemas.member_admin_out(await container.membership.get_member(member_id))


@router.patch("/{member_id}", response_model=schemas.MemberAdminOut)
async def update_member_endpoint(
    member_id: UUID,
    payload: schemas.MemberUpdateRequest,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.MemberAdminOut:
    member = await container.membership.update_profile(
        member_id,
        ProfileChanges(**payload.model_dump(exclude_unset=True)),
        actor_id=context.member.id,
        provenance=origin,
    )
    return schemas.member_admin_out(member)


@router.post("/{member_id}/role", response_model=schemas.MemberAdminOut)
async def set_role_endpoint(
    member_id: UUID,
    payload: schemas.RoleUpdateRequest,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.MemberAdminOut:
    member = await container.membership.set_role(member_id, payload.role, actor_id=context.member.id, provenance=origin)
    return schemas.member_admin_out(member)


async def _lifecycle(action: str, member_id: UUID, context: SessionContext, container: Container, origin: Provenance):
    handler = {
        "approve": container.membership.approve,
        "reject": container.membership.reject,
        "suspend": container.membership.suspend,
        "reinstate": container.membership.reinstate,
        "honorary": container.membership.grant_honorary,
    }[action]
    member = await handler(member_id, actor_id=context.member.id, provenance=origin)
    return schemas.member_admin_out(member)


@router.post("/{member_id}/approve", response_model=schemas.MemberAdminOut)
async def approve_endpoint(
    member_id: UUID,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.MemberAdminOut:
    return await _lifecycle("approve", member_id, context, container, origin)


@router.post("/{member_id}/reject", response_model=schemas.MemberAdminOut)
async def reject_endpoint(
    member_id: UUID,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.MemberAdminOut:
    return await _lifecycle("reject", member_id, context, container, origin)


@router.post("/{member_id}/suspend", response_model=schemas.MemberAdminOut)
async def suspend_endpoint(
    member_id: UUID,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.MemberAdminOut:
    return await _lifecycle("suspend", member_id, context, container, origin)


@router.post("/{member_id}/reinstate", response_model=schemas.MemberAdminOut)
async def reinstate_endpoint(
    member_id: UUID,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.MemberAdminOut:
    return await _lifecycle("reinstate", member_id, context, container, origin)


@router.post("/{member_id}/honorary", response_model=schemas.MemberAdminOut)
async def honorary_endpoint(
    member_id: UUID,
    context: SessionContext = Depends(require_admin),
    container: Container = Depends(get_container),
    origin: Provenance = Depends(provenance),
) -> schemas.MemberAdminOut:
    return await _lifecycle("honorary", member_id, context, container, origin)


@router.get("/{member_id}/payments", response_model=List[schemas.PaymentOut])
async def member_payments_endpoint(
    member_id: UUID,
    limit: int = Query(default=50, ge=1, le=200),
    context: SessionContext = Depends(require_member),
    container: Container = Depends(get_container),
) -> List[schemas.PaymentOut]:
    if context.member.id != member_id and context.member.role != MemberRole.ADMIN:
        raise Forbidden("insufficient_role")
    payments = await container.reconciler.list_for_member(member_id, limit=limit)
    return [schemas.PaymentOut.model_validate(payment) for payment in payments]
