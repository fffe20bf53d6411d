"""Admin-managed type catalogs: event types, announcement types, membership types."""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence
from uuid import UUID, uuid4

from standing.audit.recorder import AuditRecorder, Provenance
from standing.catalog.schemas import TypeCreate, TypeUpdate
from standing.errors import Conflict, NotFound, ValidationError
from standing.models import BillingPeriod, ConfigurableType, TypeKind
from standing.storage.base import Storage, UnitOfWork

logger = logging.getLogger(__name__)

_HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")

DEFAULT_TYPES: dict[TypeKind, tuple[dict, ...]] = {
    TypeKind.EVENT: (
        {"name": "Meeting", "color": "#3b82f6", "icon": "users"},
        {"name": "Workshop", "color": "#10b981", "icon": "wrench"},
        {"name": "Social", "color": "#f59e0b", "icon": "coffee"},
    ),
    TypeKind.ANNOUNCEMENT: (
        {"name": "General", "color": "#6b7280", "icon": "megaphone"},
        {"name": "News", "color": "#3b82f6", "icon": "newspaper"},
        {"name": "Urgent", "color": "#ef4444", "icon": "alert-triangle"},
    ),
    TypeKind.MEMBERSHIP: (
        {"name": "Regular", "fee_cents": 5000, "billing_period": BillingPeriod.YEARLY},
        {"name": "Student", "fee_cents": 2500, "billing_period": BillingPeriod.YEARLY},
        {"name": "Corporate", "fee_cents": 50000, "billing_period": BillingPeriod.YEARLY},
        {"name": "Lifetime", "fee_cents": 100000, "billing_period": BillingPeriod.LIFETIME},
    ),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def slugify(value: str) -> str:
    return _SLUG_STRIP_RE.sub("-", value.strip().lower()).strip("-")


def validate_hex_color(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if not _HEX_COLOR_RE.match(value):
        raise ValidationError("invalid_color")
    return value.lower()


class TypeService:
    def __init__(self, storage: Storage, audit: AuditRecorder, *, clock: Callable[[], datetime] = _now) -> None:
        self._storage = storage
        self._audit = audit
        self._clock = clock

    async def list(self, kind: TypeKind, *, include_inactive: bool = False) -> list[ConfigurableType]:
        async with self._storage.unit_of_work() as uow:
            return await uow.types.list(kind, include_inactive=include_inactive)

    async def get(self, kind: TypeKind, type_id: UUID) -> ConfigurableType:
        async with self._storage.unit_of_work() as uow:
            item = await uow.types.get(kind, type_id)
        if item is None:
            raise NotFound("type_not_found")
        return item

    async def get_by_slug(self, kind: TypeKind, slug: str) -> ConfigurableType:
        async with self._storage.unit_of_work() as uow:
            item = await uow.types.get_by_slug(kind, slugify(slug))
        if item is None:
            raise NotFound("type_not_found")
        return item

    async def create(
        self,
        kind: TypeKind,
        payload: TypeCreate,
        *,
        actor_id: Optional[UUID] = None,
        provenance: Optional[Provenance] = None,
    ) -> ConfigurableType:
        now = self._clock()
        slug = slugify(payload.slug or payload.name)
        if not slug:
            raise ValidationError("invalid_slug")
        async with self._storage.unit_of_work() as uow:
            sort_order = payload.sort_order
            if sort_order is None:
                existing = await uow.types.list(kind, include_inactive=True)
                sort_order = max((t.sort_order for t in existing), default=-1) + 1
            item = ConfigurableType(
                id=uuid4(),
                kind=kind,
                name=payload.name.strip(),
                slug=slug,
                created_at=now,
                updated_at=now,
                description=payload.description,
                color=validate_hex_color(payload.color),
                icon=payload.icon,
                sort_order=sort_order,
                is_active=payload.is_active,
                **self._pricing(kind, payload.fee_cents, payload.billing_period),
            )
            stored = await uow.types.insert(item)
            await self._audit.record(
                uow,
                action="type.created",
                entity_type=f"{kind.value}_type",
                entity_id=stored.id,
                actor_id=actor_id,
                after=stored.snapshot(),
                provenance=provenance,
            )
        return stored

    async def update(
        self,
        kind: TypeKind,
        type_id: UUID,
        payload: TypeUpdate,
        *,
        actor_id: Optional[UUID] = None,
        provenance: Optional[Provenance] = None,
    ) -> ConfigurableType:
        async with self._storage.unit_of_work() as uow:
            current = await uow.types.get(kind, type_id)
            if current is None:
                raise NotFound("type_not_found")
            changes = payload.model_dump(exclude_unset=True)
            updated = current
            if changes.get("name") is not None:
                updated = replace(updated, name=changes["name"].strip())
            if changes.get("slug") is not None:
                slug = slugify(changes["slug"])
                if not slug:
                    raise ValidationError("invalid_slug")
                if current.is_system and slug != current.slug:
                    raise Conflict("system_type")
                updated = replace(updated, slug=slug)
            if "description" in changes:
                updated = replace(updated, description=changes["description"])
            if "color" in changes:
                updated = replace(updated, color=validate_hex_color(changes["color"]))
            if "icon" in changes:
                updated = replace(updated, icon=changes["icon"])
            if changes.get("sort_order") is not None:
                updated = replace(updated, sort_order=changes["sort_order"])
            if changes.get("is_active") is not None:
                updated = replace(updated, is_active=changes["is_active"])
            if "fee_cents" in changes or "billing_period" in changes:
                pricing = self._pricing(
                    kind,
                    changes.get("fee_cents", current.fee_cents),
                    changes.get("billing_period", current.billing_period),
                )
                updated = replace(updated, **pricing)
            if updated == current:
                return current
            saved = await uow.types.save(replace(updated, updated_at=self._clock()))
            await self._audit.record(
                uow,
                action="type.updated",
                entity_type=f"{kind.value}_type",
                entity_id=saved.id,
                actor_id=actor_id,
                before=current.snapshot(),
                after=saved.snapshot(),
                provenance=provenance,
            )
        return saved

    async def delete(
        self,
        kind: TypeKind,
        type_id: UUID,
        *,
        actor_id: Optional[UUID] = None,
        provenance: Optional[Provenance] = None,
    ) -> None:
        """Remove an unused type. Types still referenced must be deactivated instead."""
        async with self._storage.unit_of_work() as uow:
            current = await uow.types.get(kind, type_id)
            if current is None:
                raise NotFound("type_not_found")
            if current.is_system:
                raise Conflict("system_type")
            if await self._usage(uow, current) > 0:
                raise Conflict("type_in_use")
            await uow.types.delete(kind, type_id)
            await self._audit.record(
                uow,
                action="type.deleted",
                entity_type=f"{kind.value}_type",
                entity_id=type_id,
                actor_id=actor_id,
                before=current.snapshot(),
                provenance=provenance,
            )

    async def reorder(
        self,
        kind: TypeKind,
        ordered_ids: Sequence[UUID],
        *,
        actor_id: Optional[UUID] = None,
        provenance: Optional[Provenance] = None,
    ) -> list[ConfigurableType]:
        """Move the listed types to the front in the given order.

        Types left out keep their relative order and follow the listed ones,
        so positions stay unique across the kind.
        """
        if len(set(ordered_ids)) != len(ordered_ids):
            raise ValidationError("duplicate_ids")
        now = self._clock()
        async with self._storage.unit_of_work() as uow:
            items = []
            for type_id in ordered_ids:
                item = await uow.types.get(kind, type_id)
                if item is None:
                    raise NotFound("type_not_found")
                items.append(item)
            listed = set(ordered_ids)
            items.extend(item for item in await uow.types.list(kind, include_inactive=True) if item.id not in listed)
            for position, item in enumerate(items):
                if item.sort_order != position:
                    await uow.types.save(replace(item, sort_order=position, updated_at=now))
            await self._audit.record(
                uow,
                action="type.reordered",
                entity_type=f"{kind.value}_type",
                entity_id=kind.value,
                actor_id=actor_id,
                after={"order": [str(item.id) for item in items]},
                provenance=provenance,
            )
            return await uow.types.list(kind, include_inactive=True)

    async def seed_defaults(self, *, actor_id: Optional[UUID] = None) -> list[ConfigurableType]:
        """Insert the built-in types that are missing. Existing rows are left alone."""
        created: list[ConfigurableType] = []
        now = self._clock()
        async with self._storage.unit_of_work() as uow:
            for kind, defaults in DEFAULT_TYPES.items():
                for position, preset in enumerate(defaults):
                    slug = slugify(preset["name"])
                    if await uow.types.get_by_slug(kind, slug) is not None:
                        continue
                    item = ConfigurableType(
                        id=uuid4(),
                        kind=kind,
                        name=preset["name"],
                        slug=slug,
                        created_at=now,
                        updated_at=now,
                        color=preset.get("color"),
                        icon=preset.get("icon"),
                        sort_order=position,
                        is_system=True,
                        fee_cents=preset.get("fee_cents"),
                        billing_period=preset.get("billing_period"),
                    )
                    created.append(await uow.types.insert(item))
            for item in created:
                await self._audit.record(
                    uow,
                    action="type.seeded",
                    entity_type=f"{item.kind.value}_type",
                    entity_id=item.id,
                    actor_id=actor_id,
                    after=item.snapshot(),
                )
        if created:
            logger.info("seeded default types", extra={"count": len(created)})
        return created

    async def _usage(self, uow: UnitOfWork, item: ConfigurableType) -> int:
        if item.kind == TypeKind.MEMBERSHIP:
            return await uow.members.count_with_type(item.id)
        # Events and announcements that reference these types live outside this service.
        return 0

    @staticmethod
    def _pricing(
        kind: TypeKind,
        fee_cents: Optional[int],
        billing_period: Optional[BillingPeriod],
    ) -> dict:
        if kind != TypeKind.MEMBERSHIP:
            if fee_cents is not None or billing_period is not None:
                raise ValidationError("pricing_only_for_membership")
            return {"fee_cents": None, "billing_period": None}
        return {
            "fee_cents": fee_cents if fee_cents is not None else 0,
            "billing_period": billing_period or BillingPeriod.YEARLY,
        }
