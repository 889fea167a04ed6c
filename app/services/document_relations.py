from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core import errors
from app.core.clock import Clock, system_clock
from app.models.document import Document
from app.models.documentable_relation import DocumentableRelation
from app.schemas.documents import (
    DocumentType,
    OwnerRef,
    RelatableKind,
    RelationContext,
    relatable_kind_for_owner,
)
from app.services.documents import parse_document_type

logger = logging.getLogger(__name__)


async def _find_edge(
    db: AsyncSession,
    ctx: deps.TenantContext,
    document_id: UUID,
    relatable_type: RelatableKind,
    relatable_id: UUID,
    context: RelationContext,
) -> DocumentableRelation | None:
    stmt = select(DocumentableRelation).where(
        DocumentableRelation.org_id == ctx.org_id,
        DocumentableRelation.document_id == document_id,
        DocumentableRelation.relatable_type == relatable_type.value,
        DocumentableRelation.relatable_id == relatable_id,
        DocumentableRelation.context == context.value,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def ensure_ownership(
    db: AsyncSession,
    ctx: deps.TenantContext,
    document: Document,
    *,
    owner: OwnerRef | None = None,
    created_by: UUID | None = None,
    clock: Clock = system_clock,
) -> DocumentableRelation:
    relatable_type = relatable_kind_for_owner(owner.kind if owner else document.owner_kind)
    relatable_id = owner.id if owner else document.owner_id
    existing = await _find_edge(
        db, ctx, document.id, relatable_type, relatable_id, RelationContext.OWNERSHIP
    )
    if existing is not None:
        if existing.restore():
            logger.warning("Restored detached ownership edge %s for document %s", existing.id, document.id)
            await db.flush()
        return existing

    now = clock.now()
    relation = DocumentableRelation(
        org_id=ctx.org_id,
        document_id=document.id,
        relatable_type=relatable_type.value,
        relatable_id=relatable_id,
        context=RelationContext.OWNERSHIP.value,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    db.add(relation)
    await db.flush()
    return relation


async def find_active_usage(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id: UUID,
    document_type: DocumentType | str,
    *,
    exclude_document_id: UUID | None = None,
) -> DocumentableRelation | None:
    """Current USAGE edge for ``document_type`` inside one application.

    If more than one edge is active the most recently created document wins.
    """
    doc_type = parse_document_type(document_type)
    conditions = [
        DocumentableRelation.org_id == ctx.org_id,
        DocumentableRelation.relatable_type == RelatableKind.APPLICATION.value,
        DocumentableRelation.relatable_id == application_id,
        DocumentableRelation.context == RelationContext.USAGE.value,
        DocumentableRelation.deleted_at.is_(None),
        Document.org_id == ctx.org_id,
        Document.type == doc_type.value,
    ]
    if exclude_document_id is not None:
        conditions.append(DocumentableRelation.document_id != exclude_document_id)
    stmt = (
        select(DocumentableRelation)
        .join(Document, Document.id == DocumentableRelation.document_id)
        .where(*conditions)
        .order_by(
            Document.created_at.desc(),
            DocumentableRelation.created_at.desc(),
            DocumentableRelation.id.desc(),
        )
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def attach_usage(
    db: AsyncSession,
    ctx: deps.TenantContext,
    document: Document,
    application_id: UUID,
    *,
    created_by: UUID | None = None,
    notes: str | None = None,
    clock: Clock = system_clock,
) -> DocumentableRelation:
    existing = await _find_edge(
        db, ctx, document.id, RelatableKind.APPLICATION, application_id, RelationContext.USAGE
    )
    if existing is not None:
        if existing.restore():
            logger.info("Restored usage of document %s in application %s", document.id, application_id)
            await db.flush()
        return existing

    now = clock.now()
    relation = DocumentableRelation(
        org_id=ctx.org_id,
        document_id=document.id,
        relatable_type=RelatableKind.APPLICATION.value,
        relatable_id=application_id,
        context=RelationContext.USAGE.value,
        notes=notes,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    db.add(relation)
    await db.flush()
    return relation


async def detach_usage(
    db: AsyncSession,
    ctx: deps.TenantContext,
    relation: DocumentableRelation,
    *,
    clock: Clock = system_clock,
) -> bool:
    if relation.org_id != ctx.org_id:
        raise errors.DocumentNotFound(
            errors.RELATION_NOT_FOUND, "Relation not found", {"relation_id": str(relation.id)}
        )
    if not relation.is_usage:
        raise errors.DocumentStateConflict(
            errors.NOT_MODIFIABLE,
            "Ownership relations cannot be detached",
            {"relation_id": str(relation.id)},
        )
    if not relation.detach(clock.now()):
        return False
    await db.flush()
    return True


async def list_usage_relations(
    db: AsyncSession,
    ctx: deps.TenantContext,
    document: Document,
    *,
    include_detached: bool = False,
) -> list[DocumentableRelation]:
    conditions = [
        DocumentableRelation.org_id == ctx.org_id,
        DocumentableRelation.document_id == document.id,
        DocumentableRelation.context == RelationContext.USAGE.value,
    ]
    if not include_detached:
        conditions.append(DocumentableRelation.deleted_at.is_(None))
    stmt = select(DocumentableRelation).where(*conditions).order_by(DocumentableRelation.created_at.asc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_active_usage_documents(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id: UUID,
) -> list[Document]:
    stmt = (
        select(Document)
        .join(DocumentableRelation, DocumentableRelation.document_id == Document.id)
        .where(
            Document.org_id == ctx.org_id,
            DocumentableRelation.org_id == ctx.org_id,
            DocumentableRelation.relatable_type == RelatableKind.APPLICATION.value,
            DocumentableRelation.relatable_id == application_id,
            DocumentableRelation.context == RelationContext.USAGE.value,
            DocumentableRelation.deleted_at.is_(None),
        )
        .order_by(Document.type.asc(), Document.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
