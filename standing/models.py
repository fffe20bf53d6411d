"""Domain records shared by the storage, membership, payment and audit layers."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional
from uuid import UUID

RecordLike = Mapping[str, Any]


class MemberStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    HONORARY = "honorary"


class MemberRole(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]


_ROLE_RANK = {MemberRole.MEMBER: 0, MemberRole.ADMIN: 1}


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    PROVIDER = "provider"
    MANUAL = "manual"
    WAIVED = "waived"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"


class TypeKind(str, Enum):
    EVENT = "event"
    ANNOUNCEMENT = "announcement"
    MEMBERSHIP = "membership"


def _as_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    return UUID(str(value))


def _as_optional_uuid(value: Any) -> Optional[UUID]:
    if value is None:
        return None
    return _as_uuid(value)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _coerce_json_to_dict(value: Any) -> Optional[dict[str, Any]]:
    if value is None:
        return None
    if isinstance(value, dict):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value).decode("utf-8")
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return None
        return decoded if isinstance(decoded, dict) else None
    if isinstance(value, Mapping):
        return dict(value)
    return None


@dataclass(slots=True)
class Member:
    id: UUID
    email: str
    username: str
    display_name: str
    password_hash: str
    status: MemberStatus
    role: MemberRole
    created_at: datetime
    updated_at: datetime
    membership_type_id: Optional[UUID] = None
    joined_at: Optional[datetime] = None
    dues_paid_until: Optional[datetime] = None
    bypass_dues: bool = False
    notes: Optional[str] = None
    rejected_at: Optional[datetime] = None
    suspended_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_rejected(self) -> bool:
        return self.rejected_at is not None

    def snapshot(self) -> Dict[str, Any]:
        """Audit-safe view of the member. The credential hash is never included."""
        return {
            "id": str(self.id),
            "email": self.email,
            "username": self.username,
            "display_name": self.display_name,
            "status": self.status.value,
            "role": self.role.value,
            "membership_type_id": str(self.membership_type_id) if self.membership_type_id else None,
            "joined_at": _iso(self.joined_at),
            "dues_paid_until": _iso(self.dues_paid_until),
            "bypass_dues": self.bypass_dues,
            "notes": self.notes,
            "rejected_at": _iso(self.rejected_at),
            "suspended_at": _iso(self.suspended_at),
        }

    @classmethod
    def from_record(cls, record: RecordLike) -> "Member":
        return cls(
            id=_as_uuid(record["id"]),
            email=str(record["email"]),
            username=str(record["username"]),
            display_name=str(record.get("display_name") or ""),
            password_hash=str(record["password_hash"]),
            status=MemberStatus(record["status"]),
            role=MemberRole(record["role"]),
            created_at=record["created_at"],
            updated_at=record["updated_at"],
            membership_type_id=_as_optional_uuid(record.get("membership_type_id")),
            joined_at=record.get("joined_at"),
            dues_paid_until=record.get("dues_paid_until"),
            bypass_dues=bool(record.get("bypass_dues", False)),
            notes=record.get("notes"),
            rejected_at=record.get("rejected_at"),
            suspended_at=record.get("suspended_at"),
            version=int(record.get("version", 0)),
        )


@dataclass(slots=True)
class Session:
    id: UUID
    member_id: UUID
    token_hash: str
    expires_at: datetime
    created_at: datetime
    last_used_at: datetime
    ip: Optional[str] = None
    user_agent: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    @classmethod
    def from_record(cls, record: RecordLike) -> "Session":
        return cls(
            id=_as_uuid(record["id"]),
            member_id=_as_uuid(record["member_id"]),
            token_hash=str(record["token_hash"]),
            expires_at=record["expires_at"],
            created_at=record["created_at"],
            last_used_at=record["last_used_at"],
            ip=record.get("ip"),
            user_agent=record.get("user_agent"),
        )


@dataclass(slots=True)
class CsrfToken:
    session_id: UUID
    token_hash: str
    created_at: datetime

    @classmethod
    def from_record(cls, record: RecordLike) -> "CsrfToken":
        return cls(
            session_id=_as_uuid(record["session_id"]),
            token_hash=str(record["token_hash"]),
            created_at=record["created_at"],
        )


@dataclass(slots=True)
class Payment:
    id: UUID
    member_id: UUID
    external_ref: str
    amount_cents: int
    currency: str
    status: PaymentStatus
    method: PaymentMethod
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    paid_at: Optional[datetime] = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "member_id": str(self.member_id),
            "external_ref": self.external_ref,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status.value,
            "method": self.method.value,
            "description": self.description,
            "paid_at": _iso(self.paid_at),
        }

    @classmethod
    def from_record(cls, record: RecordLike) -> "Payment":
        return cls(
            id=_as_uuid(record["id"]),
            member_id=_as_uuid(record["member_id"]),
            external_ref=str(record["external_ref"]),
            amount_cents=int(record["amount_cents"]),
            currency=str(record["currency"]),
            status=PaymentStatus(record["status"]),
            method=PaymentMethod(record["method"]),
            created_at=record["created_at"],
            updated_at=record["updated_at"],
            description=record.get("description"),
            paid_at=record.get("paid_at"),
        )


@dataclass(slots=True)
class AuditRecord:
    actor_id: Optional[UUID]
    action: str
    entity_type: str
    entity_id: str
    created_at: datetime
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    id: Optional[int] = None

    @classmethod
    def from_record(cls, record: RecordLike) -> "AuditRecord":
        return cls(
            id=int(record["id"]),
            actor_id=_as_optional_uuid(record.get("actor_id")),
            action=str(record["action"]),
            entity_type=str(record["entity_type"]),
            entity_id=str(record["entity_id"]),
            created_at=record["created_at"],
            before=_coerce_json_to_dict(record.get("before_value")),
            after=_coerce_json_to_dict(record.get("after_value")),
            ip=record.get("ip"),
            user_agent=record.get("user_agent"),
        )


@dataclass(slots=True)
class ConfigurableType:
    id: UUID
    kind: TypeKind
    name: str
    slug: str
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    sort_order: int = 0
    is_active: bool = True
    is_system: bool = False
    fee_cents: Optional[int] = None
    billing_period: Optional[BillingPeriod] = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "kind": self.kind.value,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "color": self.color,
            "icon": self.icon,
            "sort_order": self.sort_order,
            "is_active": self.is_active,
            "is_system": self.is_system,
            "fee_cents": self.fee_cents,
            "billing_period": self.billing_period.value if self.billing_period else None,
        }

    @classmethod
    def from_record(cls, record: RecordLike) -> "ConfigurableType":
        period = record.get("billing_period")
        return cls(
            id=_as_uuid(record["id"]),
            kind=TypeKind(record["kind"]),
            name=str(record["name"]),
            slug=str(record["slug"]),
            created_at=record["created_at"],
            updated_at=record["updated_at"],
            description=record.get("description"),
            color=record.get("color"),
            icon=record.get("icon"),
            sort_order=int(record.get("sort_order") or 0),
            is_active=bool(record.get("is_active", True)),
            is_system=bool(record.get("is_system", False)),
            fee_cents=record.get("fee_cents"),
            billing_period=BillingPeriod(period) if period else None,
        )
