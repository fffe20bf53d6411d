"""Payment event payloads accepted from the provider webhook and admins."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from standing.models import PaymentStatus


class PaymentEvent(BaseModel):
    """A payment notification. Amounts are integer minor units; floats are rejected."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    external_ref: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("external_ref", "externalRef", "id"),
    )
    amount_cents: int = Field(ge=0, strict=True, validation_alias=AliasChoices("amount_cents", "amountCents", "amount"))
    currency: str = Field(default="USD", min_length=3, max_length=3)
    status: PaymentStatus
    occurred_at: datetime = Field(validation_alias=AliasChoices("occurred_at", "occurredAt", "created"))
    member_id: Optional[UUID] = Field(default=None, validation_alias=AliasChoices("member_id", "memberId"))
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("currency", mode="before")
    def _upper_currency(cls, value):  # type: ignore[override]
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("status", mode="before")
    def _lower_status(cls, value):  # type: ignore[override]
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("occurred_at")
    def _aware(cls, value: datetime) -> datetime:  # type: ignore[override]
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
