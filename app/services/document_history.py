from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models.document import Document
from app.schemas.documents import (
    DocumentChainEntry,
    DocumentDTO,
    DocumentHistoryEntry,
    DocumentType,
    OwnerRef,
)
from app.services import document_relations, documents


def _is_current(document: Document) -> bool:
    return bool(document.is_active) and not documents.is_superseded(document)


async def history_for_type(
    db: AsyncSession,
    ctx: deps.TenantContext,
    owner: OwnerRef,
    document_type: DocumentType | str,
) -> list[DocumentHistoryEntry]:
    """Every version of one document type for an owner, newest first."""
    entries = []
    for document in await documents.list_documents_for_owner(
        db, ctx, owner, document_type=document_type
    ):
        usages = await document_relations.list_usage_relations(db, ctx, document)
        entries.append(
            DocumentHistoryEntry(
                document=DocumentDTO.model_validate(document),
                application_ids=[usage.relatable_id for usage in usages],
                is_current=_is_current(document),
            )
        )
    return entries


async def chain_entries(
    db: AsyncSession,
    ctx: deps.TenantContext,
    document: Document,
) -> list[DocumentChainEntry]:
    chain = await documents.get_complete_history_chain(db, ctx, document)
    return [
        DocumentChainEntry(
            document=DocumentDTO.model_validate(member),
            position=position,
            is_current=_is_current(member),
        )
        for position, member in enumerate(chain)
    ]


async def documents_valid_at(
    db: AsyncSession,
    ctx: deps.TenantContext,
    owner: OwnerRef,
    as_of: datetime,
    *,
    document_type: DocumentType | str | None = None,
) -> list[Document]:
    """Documents whose validity window contained ``as_of``."""
    conditions = [
        Document.org_id == ctx.org_id,
        Document.owner_kind == owner.kind.value,
        Document.owner_id == owner.id,
        Document.valid_from.is_not(None),
        Document.valid_from <= as_of,
        or_(Document.valid_to.is_(None), Document.valid_to > as_of),
    ]
    if document_type is not None:
        conditions.append(Document.type == documents.parse_document_type(document_type).value)
    stmt = select(Document).where(*conditions).order_by(Document.type.asc(), Document.valid_from.desc())
    result = await db.execute(stmt)
    return list(result.scalars().all())
