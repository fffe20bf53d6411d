"""Payloads for creating and editing configurable types."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from standing.models import BillingPeriod


class TypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    slug: Optional[str] = Field(default=None, max_length=80)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=64)
    sort_order: Optional[int] = None
    is_active: bool = True
    fee_cents: Optional[int] = Field(default=None, ge=0, strict=True)
    billing_period: Optional[BillingPeriod] = None


class TypeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    slug: Optional[str] = Field(default=None, max_length=80)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=64)
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None
    fee_cents: Optional[int] = Field(default=None, ge=0, strict=True)
    billing_period: Optional[BillingPeriod] = None
