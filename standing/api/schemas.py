"""Request and response models for the HTTP surface."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from standing.membership.policy import PASSWORD_MIN_LEN, USERNAME_PATTERN
from standing.models import BillingPeriod, MemberRole, MemberStatus, PaymentMethod, PaymentStatus, TypeKind


class MemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    username: str
    display_name: str
    status: MemberStatus
    role: MemberRole
    membership_type_id: Optional[UUID] = None
    joined_at: Optional[datetime] = None
    dues_paid_until: Optional[datetime] = None
    bypass_dues: bool = False
    rejected: bool = False
    created_at: datetime


class MemberAdminOut(MemberOut):
    notes: Optional[str] = None
    rejected_at: Optional[datetime] = None
    suspended_at: Optional[datetime] = None
    updated_at: datetime


class SignupRequest(BaseModel):
    email: Annotated[str, Field(max_length=254)]
    username: Annotated[str, Field(pattern=USERNAME_PATTERN)]
    password: Annotated[str, Field(min_length=PASSWORD_MIN_LEN, max_length=256)]
    display_name: Annotated[str, Field(default="", max_length=80)]
    membership_type_id: Optional[UUID] = None


class SetupRequest(BaseModel):
    email: Annotated[str, Field(max_length=254)]
    username: Annotated[str, Field(pattern=USERNAME_PATTERN)]
    password: Annotated[str, Field(min_length=PASSWORD_MIN_LEN, max_length=256)]
    display_name: Annotated[str, Field(default="", max_length=80)]


class LoginRequest(BaseModel):
    email: Annotated[str, Field(max_length=254)]
    password: Annotated[str, Field(max_length=256)]


class LoginResponse(BaseModel):
    member: MemberOut
    csrf_token: str
    expires_at: datetime


class CsrfResponse(BaseModel):
    csrf_token: str


class PasswordChangeRequest(BaseModel):
    current_password: Annotated[str, Field(max_length=256)]
    new_password: Annotated[str, Field(min_length=PASSWORD_MIN_LEN, max_length=256)]


class SelfUpdateRequest(BaseModel):
    display_name: Annotated[str, Field(max_length=80)]


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    created_at: datetime
    last_used_at: datetime
    expires_at: datetime
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    current: bool = False


class MemberCreateRequest(BaseModel):
    email: Annotated[str, Field(max_length=254)]
    username: Annotated[str, Field(pattern=USERNAME_PATTERN)]
    password: Annotated[str, Field(min_length=PASSWORD_MIN_LEN, max_length=256)]
    display_name: Annotated[str, Field(default="", max_length=80)]
    status: Literal["pending", "active", "honorary"] = "active"
    role: MemberRole = MemberRole.MEMBER
    membership_type_id: Optional[UUID] = None
    bypass_dues: bool = False
    notes: Optional[str] = Field(default=None, max_length=2000)


class MemberUpdateRequest(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=80)
    email: Optional[str] = Field(default=None, max_length=254)
    username: Optional[str] = Field(default=None, pattern=USERNAME_PATTERN)
    membership_type_id: Optional[UUID] = None
    bypass_dues: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class RoleUpdateRequest(BaseModel):
    role: MemberRole


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    member_id: UUID
    external_ref: str
    amount_cents: int
    currency: str
    status: PaymentStatus
    method: PaymentMethod
    description: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class ManualPaymentRequest(BaseModel):
    member_id: UUID
    amount_cents: int = Field(ge=0, strict=True)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    method: Literal["manual", "waived"] = "manual"
    description: Optional[str] = Field(default=None, max_length=500)


class ReconcileOut(BaseModel):
    outcome: Literal["applied", "duplicate", "stale"]
    payment: PaymentOut
    member_status: MemberStatus
    dues_paid_until: Optional[datetime] = None


class AuditOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor_id: Optional[UUID] = None
    action: str
    entity_type: str
    entity_id: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime


class AuditPage(BaseModel):
    items: List[AuditOut]
    next_before_id: Optional[int] = None


class TypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kind: TypeKind
    name: str
    slug: str
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    sort_order: int
    is_active: bool
    is_system: bool
    fee_cents: Optional[int] = None
    billing_period: Optional[BillingPeriod] = None


class ReorderRequest(BaseModel):
    ids: List[UUID] = Field(min_length=1, max_length=500)


def member_out(member) -> MemberOut:
    return MemberOut.model_validate(member).model_copy(update={"rejected": member.is_rejected})


def member_admin_out(member) -> MemberAdminOut:
    return MemberAdminOut.model_validate(member).model_copy(update={"rejected": member.is_rejected})
