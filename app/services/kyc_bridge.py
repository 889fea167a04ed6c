"""Reconcile KYC verification results with uploaded documents.

Uploads and verification callbacks arrive in either order. Both entry points
end in the same approval step so the final document state does not depend on
which one ran first.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.clock import Clock, system_clock
from app.core.settings import settings
from app.models.document import Document
from app.models.verification_record import VerificationRecord
from app.schemas.documents import DocumentStatus, DocumentType, OwnerKind, VerificationMethod
from app.services import documents, timeline

logger = logging.getLogger(__name__)

INE_OCR_FIELD = "ine_ocr"
FACE_MATCH_FIELD = "face_match"
PROOF_OF_ADDRESS_FIELD = "proof_of_address"

VERIFICATION_FIELD_BY_TYPE: dict[DocumentType, str] = {
    DocumentType.INE_FRONT: INE_OCR_FIELD,
    DocumentType.INE_BACK: INE_OCR_FIELD,
    DocumentType.SELFIE: FACE_MATCH_FIELD,
    DocumentType.PROOF_OF_ADDRESS: PROOF_OF_ADDRESS_FIELD,
}

DEFAULT_METHOD_BY_FIELD: dict[str, VerificationMethod] = {
    INE_OCR_FIELD: VerificationMethod.KYC_INE_OCR,
    FACE_MATCH_FIELD: VerificationMethod.KYC_FACE_MATCH,
    PROOF_OF_ADDRESS_FIELD: VerificationMethod.DOCUMENT,
}

_SCORE_KEYS = ("score", "face_match_score", "confidence")


def verification_field_for_type(document_type: DocumentType | str) -> str | None:
    try:
        return VERIFICATION_FIELD_BY_TYPE.get(DocumentType(document_type))
    except ValueError:
        return None


def document_types_for_field(field_name: str) -> list[DocumentType]:
    return [doc_type for doc_type, field in VERIFICATION_FIELD_BY_TYPE.items() if field == field_name]


def build_provenance(
    field_name: str,
    method: VerificationMethod | str | None,
    metadata: dict[str, Any] | None,
    validated_at: datetime,
) -> dict[str, Any]:
    metadata = metadata or {}
    resolved_method = method or DEFAULT_METHOD_BY_FIELD.get(field_name, VerificationMethod.API)
    provenance: dict[str, Any] = {
        "kyc_validated": True,
        "auto_approved": True,
        "source": "kyc",
        "validation_method": VerificationMethod(resolved_method).value,
        "verification_field": field_name,
        "validated_at": validated_at.isoformat(),
    }
    for key in _SCORE_KEYS:
        if metadata.get(key) is not None:
            provenance["confidence_score"] = metadata[key]
            break
    if metadata.get("ocr_data"):
        provenance["ocr_data"] = metadata["ocr_data"]
    return provenance


async def find_verification(
    db: AsyncSession,
    ctx: deps.TenantContext,
    person_id: UUID,
    field_name: str,
) -> VerificationRecord | None:
    stmt = select(VerificationRecord).where(
        VerificationRecord.org_id == ctx.org_id,
        VerificationRecord.person_id == person_id,
        VerificationRecord.field_name == field_name,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def _eligible(document: Document) -> bool:
    return (
        document.is_active
        and not documents.is_superseded(document)
        and document.status != DocumentStatus.APPROVED.value
    )


async def _auto_approve(
    db: AsyncSession,
    ctx: deps.TenantContext,
    document: Document,
    field_name: str,
    method: VerificationMethod | str | None,
    metadata: dict[str, Any] | None,
    clock: Clock,
) -> Document:
    now = clock.now()
    documents.stamp_provenance(document, build_provenance(field_name, method, metadata, now))
    await documents.approve(db, ctx, document, clock=clock)
    timeline.emit(
        db,
        ctx,
        timeline.DOCUMENT_AUTO_APPROVED,
        document,
        payload={"verification_field": field_name, "validation_method": document.provenance["validation_method"]},
    )
    logger.info("Auto-approved document %s from verification %s", document.id, field_name)
    return document


async def on_document_uploaded(
    db: AsyncSession,
    ctx: deps.TenantContext,
    document: Document,
    *,
    person_id: UUID | None = None,
    clock: Clock = system_clock,
) -> bool:
    """Approve a fresh upload when its verification already passed."""
    if not settings.kyc_auto_approve_enabled:
        return False
    field_name = verification_field_for_type(document.type)
    if field_name is None:
        return False
    if person_id is None:
        person_id = document.person_id
    if person_id is None and document.owner_kind == OwnerKind.PERSON.value:
        person_id = document.owner_id
    if person_id is None:
        logger.debug("No person resolved for document %s; skipping KYC lookup", document.id)
        return False
    if not _eligible(document):
        return False

    record = await find_verification(db, ctx, person_id, field_name)
    if record is None or not record.is_verified:
        return False
    await _auto_approve(
        db, ctx, document, field_name, record.method, record.verification_metadata, clock
    )
    return True


async def on_verification_recorded(
    db: AsyncSession,
    ctx: deps.TenantContext,
    person_id: UUID,
    field_name: str,
    metadata: dict[str, Any] | None = None,
    method: VerificationMethod | str | None = None,
    *,
    clock: Clock = system_clock,
) -> list[Document]:
    """Approve current documents backed by ``field_name``.

    Matches person-owned rows and rows whose owner resolved to the person at
    upload, such as identification records.
    """
    if not settings.kyc_auto_approve_enabled:
        return []
    doc_types = document_types_for_field(field_name)
    if not doc_types:
        return []

    stmt = (
        select(Document)
        .where(
            Document.org_id == ctx.org_id,
            or_(
                Document.person_id == person_id,
                and_(Document.owner_kind == OwnerKind.PERSON.value, Document.owner_id == person_id),
            ),
            Document.type.in_([doc_type.value for doc_type in doc_types]),
            Document.is_active.is_(True),
            Document.superseded_by_id.is_(None),
        )
        .order_by(Document.type.asc())
    )
    result = await db.execute(stmt)
    approved = []
    for document in result.scalars().all():
        if not _eligible(document):
            continue
        approved.append(
            await _auto_approve(db, ctx, document, field_name, method, metadata, clock)
        )
    return approved


async def reconcile_verifications(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    person_id: UUID | None = None,
    clock: Clock = system_clock,
) -> int:
    """Replay verified records against current documents; returns approvals made."""
    conditions = [
        VerificationRecord.org_id == ctx.org_id,
        VerificationRecord.is_verified.is_(True),
    ]
    if person_id is not None:
        conditions.append(VerificationRecord.person_id == person_id)
    stmt = select(VerificationRecord).where(*conditions).order_by(VerificationRecord.person_id)
    result = await db.execute(stmt)
    approved = 0
    for record in result.scalars().all():
        approved += len(
            await on_verification_recorded(
                db,
                ctx,
                record.person_id,
                record.field_name,
                record.verification_metadata,
                record.method,
                clock=clock,
            )
        )
    return approved
