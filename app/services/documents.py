"""Document entity store.

Sole writer of ``documents`` rows. Every state transition goes through one
of the functions below so the per-owner/type validity rules hold: at most
one active document per ``(owner_kind, owner_id, type)``, and a superseded
document is frozen.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core import errors
from app.core.clock import Clock, system_clock
from app.core.settings import settings
from app.models.document import Document
from app.schemas.documents import (
    DocumentFileRef,
    DocumentStatus,
    DocumentType,
    OwnerKind,
    OwnerRef,
    ReplacementReason,
    category_for_type,
)
from app.services.audit import model_snapshot, record_model_change
from app.services.storage.key_generator import KeyGenerator

logger = logging.getLogger(__name__)

EXPIRABLE_STATUSES = (DocumentStatus.PENDING.value, DocumentStatus.APPROVED.value)


def parse_document_type(value: Any) -> DocumentType:
    try:
        return DocumentType(value)
    except ValueError as exc:
        raise errors.DocumentValidationError(
            errors.INVALID_TYPE,
            f"Unsupported document type: {value}",
            {"type": str(value), "allowed": [item.value for item in DocumentType]},
        ) from exc


def _owner_or_raise(owner: OwnerRef | None) -> OwnerRef:
    if owner is None:
        raise errors.DocumentValidationError(errors.OWNER_REQUIRED, "Document owner is required")
    return owner


def _ensure_modifiable(document: Document, action: str) -> None:
    if is_superseded(document):
        raise errors.not_modifiable(document.id, action)


def _deactivate(document: Document, now: datetime) -> None:
    document.is_active = False
    if document.valid_to is None:
        document.valid_to = now


def _audit(db, ctx, document: Document, action: str, before: dict | None, actor_id) -> None:
    record_model_change(
        db,
        ctx,
        document,
        action=action,
        resource_type="document",
        resource_id=str(document.id),
        before=before,
        actor_id=actor_id,
    )


def is_superseded(document: Document) -> bool:
    return document.superseded_by_id is not None


def is_valid_at(document: Document, as_of: datetime) -> bool:
    """Temporal window check only: ``valid_from <= as_of < valid_to``."""
    if document.valid_from is None or document.valid_from > as_of:
        return False
    return document.valid_to is None or as_of < document.valid_to


def is_currently_valid(
    document: Document,
    as_of: datetime | None = None,
    *,
    clock: Clock = system_clock,
) -> bool:
    if document.status != DocumentStatus.APPROVED.value:
        return False
    return is_valid_at(document, as_of or clock.now())


def stamp_provenance(document: Document, values: dict[str, Any]) -> None:
    # Reassign so the JSON column registers the change.
    document.provenance = {**(document.provenance or {}), **values}


async def create(
    db: AsyncSession,
    ctx: deps.TenantContext,
    owner: OwnerRef | None,
    document_type: DocumentType | str,
    file: DocumentFileRef,
    *,
    metadata: dict[str, Any] | None = None,
    person_id: UUID | None = None,
    notes: str | None = None,
    expires_at: datetime | None = None,
    actor_id: UUID | None = None,
    clock: Clock = system_clock,
) -> Document:
    owner = _owner_or_raise(owner)
    doc_type = parse_document_type(document_type)
    document_id = uuid4()
    storage_path = file.storage_path or KeyGenerator.generate_object_key(
        ctx.org_id,
        f"{owner.kind.value.lower()}_document",
        document_id,
        file.file_name,
        {"owner_id": str(owner.id), "document_type": doc_type.value},
    )
    now = clock.now()
    document = Document(
        id=document_id,
        org_id=ctx.org_id,
        owner_kind=owner.kind.value,
        owner_id=owner.id,
        person_id=owner.id if owner.kind is OwnerKind.PERSON else person_id,
        type=doc_type.value,
        category=category_for_type(doc_type).value,
        status=DocumentStatus.PENDING.value,
        file_name=file.file_name,
        storage_path=storage_path,
        storage_provider=file.storage_provider,
        content_type=file.content_type,
        size_bytes=file.size_bytes,
        checksum=file.checksum,
        is_active=False,
        expires_at=expires_at,
        notes=notes,
        provenance=dict(metadata or {}),
        created_by=actor_id,
        created_at=now,
        updated_at=now,
    )
    db.add(document)
    _audit(db, ctx, document, "document.created", None, actor_id)
    await db.flush()
    logger.info(
        "Created document %s type=%s owner=%s:%s", document.id, document.type, owner.kind.value, owner.id
    )
    return document


async def get_document(
    db: AsyncSession, ctx: deps.TenantContext, document_id: UUID
) -> Document | None:
    stmt = select(Document).where(Document.org_id == ctx.org_id, Document.id == document_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def require_document(
    db: AsyncSession, ctx: deps.TenantContext, document_id: UUID
) -> Document:
    document = await get_document(db, ctx, document_id)
    if document is None:
        raise errors.DocumentNotFound(
            errors.DOCUMENT_NOT_FOUND,
            "Document not found",
            {"document_id": str(document_id)},
        )
    return document


async def get_active_document(
    db: AsyncSession,
    ctx: deps.TenantContext,
    owner: OwnerRef,
    document_type: DocumentType | str,
) -> Document | None:
    doc_type = parse_document_type(document_type)
    stmt = (
        select(Document)
        .where(
            Document.org_id == ctx.org_id,
            Document.owner_kind == owner.kind.value,
            Document.owner_id == owner.id,
            Document.type == doc_type.value,
            Document.is_active.is_(True),
            Document.superseded_by_id.is_(None),
        )
        .order_by(Document.created_at.desc(), Document.id.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def get_latest_version(
    db: AsyncSession,
    ctx: deps.TenantContext,
    owner: OwnerRef,
    document_type: DocumentType | str,
) -> Document | None:
    """Newest non-superseded version, active or not (expired rows included)."""
    doc_type = parse_document_type(document_type)
    stmt = (
        select(Document)
        .where(
            Document.org_id == ctx.org_id,
            Document.owner_kind == owner.kind.value,
            Document.owner_id == owner.id,
            Document.type == doc_type.value,
            Document.superseded_by_id.is_(None),
        )
        .order_by(Document.created_at.desc(), Document.id.desc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def _current_versions(
    db: AsyncSession,
    ctx: deps.TenantContext,
    owner: OwnerRef,
    statuses: Iterable[DocumentStatus],
) -> list[Document]:
    stmt = (
        select(Document)
        .where(
            Document.org_id == ctx.org_id,
            Document.owner_kind == owner.kind.value,
            Document.owner_id == owner.id,
            Document.superseded_by_id.is_(None),
            Document.status.in_([status.value for status in statuses]),
        )
        .order_by(Document.type.asc(), Document.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def are_all_required_approved(
    db: AsyncSession,
    ctx: deps.TenantContext,
    owner: OwnerRef,
    required_types: Iterable[DocumentType | str],
) -> bool:
    approved = {doc.type for doc in await _current_versions(db, ctx, owner, [DocumentStatus.APPROVED])}
    return all(parse_document_type(required).value in approved for required in required_types)


async def missing_required_for_owner(
    db: AsyncSession,
    ctx: deps.TenantContext,
    owner: OwnerRef,
    required_types: Iterable[DocumentType | str],
) -> list[DocumentType]:
    """Required types with no current pending or approved version, in request order."""
    present = {
        doc.type
        for doc in await _current_versions(
            db, ctx, owner, [DocumentStatus.PENDING, DocumentStatus.APPROVED]
        )
    }
    missing: list[DocumentType] = []
    for required in required_types:
        doc_type = parse_document_type(required)
        if doc_type.value not in present and doc_type not in missing:
            missing.append(doc_type)
    return missing


async def list_rejected_for_reupload(
    db: AsyncSession, ctx: deps.TenantContext, owner: OwnerRef
) -> list[Document]:
    return await _current_versions(db, ctx, owner, [DocumentStatus.REJECTED])


async def list_documents_for_owner(
    db: AsyncSession,
    ctx: deps.TenantContext,
    owner: OwnerRef,
    *,
    document_type: DocumentType | str | None = None,
) -> list[Document]:
    conditions = [
        Document.org_id == ctx.org_id,
        Document.owner_kind == owner.kind.value,
        Document.owner_id == owner.id,
    ]
    if document_type is not None:
        conditions.append(Document.type == parse_document_type(document_type).value)
    stmt = select(Document).where(*conditions).order_by(Document.created_at.desc(), Document.id.desc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_pending_for_review(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    limit: int = 50,
) -> list[Document]:
    stmt = (
        select(Document)
        .where(
            Document.org_id == ctx.org_id,
            Document.status == DocumentStatus.PENDING.value,
            Document.is_active.is_(True),
            Document.superseded_by_id.is_(None),
        )
        .order_by(Document.created_at.asc(), Document.id.asc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def approve(
    db: AsyncSession,
    ctx: deps.TenantContext,
    document: Document,
    *,
    reviewer_id: UUID | None = None,
    notes: str | None = None,
    clock: Clock = system_clock,
) -> Document:
    _ensure_modifiable(document, "approve")
    before = model_snapshot(document)
    document.status = DocumentStatus.APPROVED.value
    document.reviewed_at = clock.now()
    document.reviewed_by = reviewer_id
    document.rejection_reason = None
    if notes:
        document.notes = notes
    _audit(db, ctx, document, "document.approved", before, reviewer_id)
    await db.flush()
    return document


async def reject(
    db: AsyncSession,
    ctx: deps.TenantContext,
    document: Document,
    reason: str,
    *,
    reviewer_id: UUID | None = None,
    clock: Clock = system_clock,
) -> Document:
    _ensure_modifiable(document, "reject")
    reason = (reason or "").strip()
    if not reason:
        raise errors.DocumentValidationError(
            errors.REJECTION_REASON_REQUIRED,
            "A rejection reason is required",
            {"document_id": str(document.id)},
        )
    before = model_snapshot(document)
    document.status = DocumentStatus.REJECTED.value
    document.rejection_reason = reason
    document.reviewed_at = clock.now()
    document.reviewed_by = reviewer_id
    _audit(db, ctx, document, "document.rejected", before, reviewer_id)
    await db.flush()
    return document


async def activate(
    db: AsyncSession,
    ctx: deps.TenantContext,
    document: Document,
    *,
    actor_id: UUID | None = None,
    clock: Clock = system_clock,
) -> Document:
    _ensure_modifiable(document, "activate")
    if document.is_active:
        return document
    now = clock.now()

    stmt = select(Document).where(
        Document.org_id == ctx.org_id,
        Document.owner_kind == document.owner_kind,
        Document.owner_id == document.owner_id,
        Document.type == document.type,
        Document.is_active.is_(True),
        Document.id != document.id,
    )
    result = await db.execute(stmt)
    others = result.scalars().all()
    for other in others:
        before = model_snapshot(other)
        _deactivate(other, now)
        _audit(db, ctx, other, "document.deactivated", before, actor_id)
    if others:
        # Deactivations must reach the database before the new row turns
        # active, or the per-owner/type unique index rejects the flush.
        await db.flush()

    before = model_snapshot(document)
    document.is_active = True
    document.valid_from = now
    document.valid_to = None
    _audit(db, ctx, document, "document.activated", before, actor_id)
    await db.flush()
    return document


async def supersede_with(
    db: AsyncSession,
    ctx: deps.TenantContext,
    old_document: Document,
    new_document: Document,
    reason: ReplacementReason | str,
    *,
    actor_id: UUID | None = None,
    clock: Clock = system_clock,
) -> bool:
    """Mark ``old_document`` as replaced by ``new_document``.

    Returns False without touching anything when ``old_document`` is already
    superseded. An existing ``valid_to`` is kept so the old window still ends
    where the replacement's window starts.
    """
    if is_superseded(old_document):
        return False
    if old_document.id == new_document.id:
        raise ValueError("A document cannot supersede itself")
    reason = ReplacementReason(reason)
    now = clock.now()
    before = model_snapshot(old_document)
    old_document.superseded_by_id = new_document.id
    old_document.replacement_reason = reason.value
    old_document.replaced_at = now
    _deactivate(old_document, now)
    _audit(db, ctx, old_document, "document.supersession_recorded", before, actor_id)
    await db.flush()
    logger.info(
        "Document %s superseded by %s reason=%s", old_document.id, new_document.id, reason.value
    )
    return True


async def mark_expired(
    db: AsyncSession,
    ctx: deps.TenantContext,
    document: Document,
    *,
    actor_id: UUID | None = None,
    clock: Clock = system_clock,
) -> Document:
    _ensure_modifiable(document, "expire")
    if document.status == DocumentStatus.EXPIRED.value:
        return document
    before = model_snapshot(document)
    document.status = DocumentStatus.EXPIRED.value
    _deactivate(document, clock.now())
    _audit(db, ctx, document, "document.expired", before, actor_id)
    await db.flush()
    return document


async def expire_due_documents(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    actor_id: UUID | None = None,
    clock: Clock = system_clock,
) -> list[Document]:
    now = clock.now()
    stmt = (
        select(Document)
        .where(
            Document.org_id == ctx.org_id,
            Document.expires_at.is_not(None),
            Document.expires_at <= now,
            Document.status.in_(EXPIRABLE_STATUSES),
            Document.superseded_by_id.is_(None),
        )
        .order_by(Document.expires_at.asc())
    )
    result = await db.execute(stmt)
    expired = []
    for document in result.scalars().all():
        expired.append(await mark_expired(db, ctx, document, actor_id=actor_id, clock=clock))
    if expired:
        logger.info("Expired %d documents for org %s", len(expired), ctx.org_id)
    return expired


async def list_expiring_soon(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    days: int | None = None,
    clock: Clock = system_clock,
) -> list[Document]:
    now = clock.now()
    horizon = now + timedelta(days=settings.document_expiry_notice_days if days is None else days)
    stmt = (
        select(Document)
        .where(
            Document.org_id == ctx.org_id,
            Document.is_active.is_(True),
            Document.status.in_(EXPIRABLE_STATUSES),
            Document.expires_at > now,
            Document.expires_at <= horizon,
        )
        .order_by(Document.expires_at.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _predecessors(
    db: AsyncSession, ctx: deps.TenantContext, document_ids: Iterable[UUID]
) -> list[Document]:
    stmt = (
        select(Document)
        .where(Document.org_id == ctx.org_id, Document.superseded_by_id.in_(list(document_ids)))
        .order_by(Document.created_at.desc(), Document.id.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_complete_history_chain(
    db: AsyncSession,
    ctx: deps.TenantContext,
    document: Document,
    *,
    max_length: int | None = None,
) -> list[Document]:
    """Full replacement lineage of ``document``, oldest first."""
    limit = settings.document_history_max_length if max_length is None else max_length
    seen = {document.id}

    ancestors: list[Document] = []
    frontier = [document.id]
    while frontier and len(seen) < limit:
        generation = []
        for candidate in await _predecessors(db, ctx, frontier):
            if candidate.id in seen or len(seen) >= limit:
                continue
            seen.add(candidate.id)
            generation.append(candidate)
        ancestors.extend(generation)
        frontier = [candidate.id for candidate in generation]
    ancestors.reverse()

    descendants: list[Document] = []
    cursor = document
    while cursor.superseded_by_id is not None and len(seen) < limit:
        if cursor.superseded_by_id in seen:
            logger.warning("Supersession cycle detected at document %s", cursor.id)
            break
        successor = await get_document(db, ctx, cursor.superseded_by_id)
        if successor is None:
            break
        seen.add(successor.id)
        descendants.append(successor)
        cursor = successor

    return [*ancestors, document, *descendants]
