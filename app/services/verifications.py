from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.clock import Clock, system_clock
from app.models.verification_record import VerificationRecord
from app.schemas.documents import VerificationMethod
from app.services import kyc_bridge
from app.services.audit import model_snapshot, record_model_change


async def get_verification(
    db: AsyncSession, ctx: deps.TenantContext, person_id: UUID, field_name: str
) -> VerificationRecord | None:
    return await kyc_bridge.find_verification(db, ctx, person_id, field_name)


async def record_verification(
    db: AsyncSession,
    ctx: deps.TenantContext,
    person_id: UUID,
    field_name: str,
    *,
    is_verified: bool,
    method: VerificationMethod | str,
    metadata: dict[str, Any] | None = None,
    verified_by: UUID | None = None,
    clock: Clock = system_clock,
) -> VerificationRecord:
    """Upsert the verification for ``(person, field)`` and notify the KYC bridge."""
    method = VerificationMethod(method)
    now = clock.now()
    record = await get_verification(db, ctx, person_id, field_name)
    before = None
    if record is None:
        record = VerificationRecord(
            org_id=ctx.org_id,
            person_id=person_id,
            field_name=field_name,
            created_at=now,
            updated_at=now,
        )
        db.add(record)
    else:
        before = model_snapshot(record, exclude={"id"})

    record.is_verified = is_verified
    record.method = method.value
    record.verification_metadata = dict(metadata or {})
    record.verified_by = verified_by
    record.verified_at = now if is_verified else None
    record_model_change(
        db,
        ctx,
        record,
        action="data_verification.recorded",
        resource_type="data_verification",
        resource_id=f"{person_id}:{field_name}",
        before=before,
        actor_id=verified_by,
        exclude={"id"},
    )
    await db.flush()

    if is_verified:
        await kyc_bridge.on_verification_recorded(
            db, ctx, person_id, field_name, record.verification_metadata, method, clock=clock
        )
    return record
