"""Audit trail rows for document and verification changes.

Entries are queued on the caller's session and land with the caller's
commit, so a rolled-back operation leaves no audit row behind.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models.audit_log import AuditLog

MAX_SUMMARY_FIELDS = 3


def serialize_for_audit(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            Decimal: str,
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
            UUID: str,
            Enum: lambda v: v.value,
        },
    )


def model_snapshot(model: Any, *, exclude: Iterable[str] | None = None) -> dict[str, Any]:
    """Column values of an ORM row keyed by column name (``metadata``, not ``provenance``)."""
    if model is None:
        return {}
    excluded = set(exclude or ())
    snapshot = {
        attr.columns[0].name: getattr(model, attr.key)
        for attr in model.__mapper__.column_attrs
        if attr.key not in excluded and attr.columns[0].name not in excluded
    }
    return serialize_for_audit(snapshot)


def diff_values(old: Any, new: Any, path: str = "") -> dict[str, dict[str, Any]]:
    """Flattened ``{dotted.path: {"from", "to"}}`` of the leaves that differ."""
    if isinstance(old, dict) and isinstance(new, dict):
        changes: dict[str, dict[str, Any]] = {}
        for key in sorted(old.keys() | new.keys(), key=str):
            changes.update(diff_values(old.get(key), new.get(key), f"{path}.{key}" if path else str(key)))
        return changes
    if old == new:
        return {}
    return {path or "value": {"from": old, "to": new}}


def _summary(action: str, changes: dict[str, dict[str, Any]] | None) -> str:
    if not changes:
        return action
    fields = list(changes)
    more = "..." if len(fields) > MAX_SUMMARY_FIELDS else ""
    return f"{action}: {', '.join(fields[:MAX_SUMMARY_FIELDS])}{more}"


def record_audit_log(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    actor_id,
    action: str,
    resource_type: str,
    resource_id: str,
    old_value: Any | None = None,
    new_value: Any | None = None,
) -> AuditLog:
    old = serialize_for_audit(old_value) if old_value is not None else None
    new = serialize_for_audit(new_value) if new_value is not None else None
    changes = None
    if old is not None or new is not None:
        changes = diff_values(old or {}, new or {}) or None
    entry = AuditLog(
        org_id=ctx.org_id,
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        old_value=old,
        new_value=new,
        changes=changes,
        summary=_summary(action, changes),
    )
    db.add(entry)
    return entry


def record_model_change(
    db: AsyncSession,
    ctx: deps.TenantContext,
    model: Any,
    *,
    action: str,
    resource_type: str,
    resource_id: str,
    before: dict[str, Any] | None,
    actor_id=None,
    exclude: Iterable[str] | None = None,
) -> AuditLog:
    """Audit a row change given the snapshot taken before it was mutated."""
    return record_audit_log(
        db,
        ctx,
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        old_value=before,
        new_value=model_snapshot(model, exclude=exclude),
    )


async def list_resource_events(
    db: AsyncSession,
    ctx: deps.TenantContext,
    resource_type: str,
    resource_id: str,
    *,
    action_prefix: str | None = None,
) -> list[AuditLog]:
    conditions = [
        AuditLog.org_id == ctx.org_id,
        AuditLog.resource_type == resource_type,
        AuditLog.resource_id == resource_id,
    ]
    if action_prefix:
        conditions.append(AuditLog.action.startswith(action_prefix))
    stmt = select(AuditLog).where(*conditions).order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
    result = await db.execute(stmt)
    return list(result.scalars().all())
