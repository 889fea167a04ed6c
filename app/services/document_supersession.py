"""Supersession resolver.

``attach_document_to_application`` is the one place where a new document
takes over an application requirement from an older one. It runs as a
single savepoint: either the old document is superseded, its usage edge
detached and the new edge attached, or nothing changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.clock import Clock, system_clock
from app.models.document import Document
from app.models.documentable_relation import DocumentableRelation
from app.schemas.documents import DocumentStatus, DocumentType, OwnerRef, ReplacementReason
from app.services import document_relations, documents, timeline

logger = logging.getLogger(__name__)

SNAPSHOT_STATUSES = (DocumentStatus.PENDING.value, DocumentStatus.APPROVED.value)


@dataclass(slots=True)
class AttachmentResult:
    usage: DocumentableRelation
    superseded: Document | None = None
    reason: ReplacementReason | None = None


def replacement_reason_for(document: Document) -> ReplacementReason:
    if document.status == DocumentStatus.REJECTED.value:
        return ReplacementReason.REJECTED
    if document.status == DocumentStatus.EXPIRED.value:
        return ReplacementReason.EXPIRED
    return ReplacementReason.UPDATED


async def attach_document_to_application(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id: UUID,
    document: Document,
    *,
    actor_id: UUID | None = None,
    clock: Clock = system_clock,
) -> AttachmentResult:
    superseded: Document | None = None
    reason: ReplacementReason | None = None

    async with db.begin_nested():
        await document_relations.ensure_ownership(db, ctx, document, created_by=actor_id, clock=clock)

        previous = await document_relations.find_active_usage(
            db, ctx, application_id, document.type, exclude_document_id=document.id
        )
        if previous is not None:
            old_document = await documents.require_document(db, ctx, previous.document_id)
            if not documents.is_superseded(old_document):
                reason = replacement_reason_for(old_document)
                await documents.supersede_with(
                    db, ctx, old_document, document, reason, actor_id=actor_id, clock=clock
                )
                superseded = old_document
            await document_relations.detach_usage(db, ctx, previous, clock=clock)

        usage = await document_relations.attach_usage(
            db, ctx, document, application_id, created_by=actor_id, clock=clock
        )

    if superseded is not None:
        timeline.emit(
            db,
            ctx,
            timeline.DOCUMENT_SUPERSEDED,
            superseded,
            actor_id=actor_id,
            payload={
                "application_id": application_id,
                "superseded_by_id": document.id,
                "reason": reason.value,
            },
        )
    return AttachmentResult(usage=usage, superseded=superseded, reason=reason)


async def snapshot_active_documents(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id: UUID,
    owner: OwnerRef,
    *,
    actor_id: UUID | None = None,
    clock: Clock = system_clock,
) -> list[AttachmentResult]:
    """Attach every current document of ``owner`` to an application."""
    now = clock.now()
    stmt = (
        select(Document)
        .where(
            Document.org_id == ctx.org_id,
            Document.owner_kind == owner.kind.value,
            Document.owner_id == owner.id,
            Document.is_active.is_(True),
            Document.superseded_by_id.is_(None),
            Document.status.in_(SNAPSHOT_STATUSES),
        )
        .order_by(Document.type.asc(), Document.created_at.desc())
    )
    result = await db.execute(stmt)
    candidates = [doc for doc in result.scalars().all() if documents.is_valid_at(doc, now)]

    attached: list[AttachmentResult] = []
    async with db.begin_nested():
        for document in candidates:
            attached.append(
                await attach_document_to_application(
                    db, ctx, application_id, document, actor_id=actor_id, clock=clock
                )
            )
    logger.info(
        "Snapshot attached %d documents of %s:%s to application %s",
        len(attached),
        owner.kind.value,
        owner.id,
        application_id,
    )
    return attached


async def missing_document_types(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id: UUID,
    required_types: Iterable[DocumentType | str],
) -> list[DocumentType]:
    attached = await document_relations.list_active_usage_documents(db, ctx, application_id)
    present = {doc.type for doc in attached}
    missing = []
    for required in required_types:
        doc_type = documents.parse_document_type(required)
        if doc_type.value not in present and doc_type not in missing:
            missing.append(doc_type)
    return missing


async def has_all_required_documents(
    db: AsyncSession,
    ctx: deps.TenantContext,
    application_id: UUID,
    required_types: Iterable[DocumentType | str],
) -> bool:
    return not await missing_document_types(db, ctx, application_id, required_types)
