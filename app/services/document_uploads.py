from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core import errors
from app.core.clock import Clock, system_clock
from app.models.document import Document
from app.schemas.documents import DocumentFileRef, DocumentType, OwnerRef
from app.services import (
    document_relations,
    document_supersession,
    documents,
    kyc_bridge,
    timeline,
)
from app.services.document_supersession import AttachmentResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UploadResult:
    document: Document
    attachment: AttachmentResult | None = None
    superseded: Document | None = None
    auto_approved: bool = False


def _coerce_file(file: DocumentFileRef | dict[str, Any] | None) -> DocumentFileRef:
    if isinstance(file, DocumentFileRef):
        return file
    try:
        return DocumentFileRef.model_validate(file or {})
    except ValidationError as exc:
        raise errors.DocumentValidationError(
            errors.INVALID_FILE,
            "Invalid file reference",
            {"errors": exc.errors(include_url=False)},
        ) from exc


async def register_upload(
    db: AsyncSession,
    ctx: deps.TenantContext,
    *,
    owner: OwnerRef | None,
    document_type: DocumentType | str,
    file: DocumentFileRef | dict[str, Any],
    application_id: UUID | None = None,
    person_id: UUID | None = None,
    metadata: dict[str, Any] | None = None,
    notes: str | None = None,
    expires_at: datetime | None = None,
    actor_id: UUID | None = None,
    clock: Clock = system_clock,
) -> UploadResult:
    """Record a stored file as a new document version.

    Runs create, activate, application attachment and the KYC lookup as one
    unit. The newest earlier version of the same owner and type is
    superseded even when it is not attached to ``application_id`` or has
    already expired.
    """
    if owner is None:
        raise errors.DocumentValidationError(errors.OWNER_REQUIRED, "Document owner is required")
    doc_type = documents.parse_document_type(document_type)
    file_ref = _coerce_file(file)

    async with db.begin_nested():
        previous = await documents.get_latest_version(db, ctx, owner, doc_type)
        document = await documents.create(
            db,
            ctx,
            owner,
            doc_type,
            file_ref,
            metadata=metadata,
            person_id=person_id,
            notes=notes,
            expires_at=expires_at,
            actor_id=actor_id,
            clock=clock,
        )
        await documents.activate(db, ctx, document, actor_id=actor_id, clock=clock)

        attachment = None
        if application_id is not None:
            attachment = await document_supersession.attach_document_to_application(
                db, ctx, application_id, document, actor_id=actor_id, clock=clock
            )
        else:
            await document_relations.ensure_ownership(
                db, ctx, document, created_by=actor_id, clock=clock
            )

        superseded = attachment.superseded if attachment else None
        if previous is not None and not documents.is_superseded(previous):
            await documents.supersede_with(
                db,
                ctx,
                previous,
                document,
                document_supersession.replacement_reason_for(previous),
                actor_id=actor_id,
                clock=clock,
            )
            superseded = superseded or previous

        auto_approved = await kyc_bridge.on_document_uploaded(
            db, ctx, document, person_id=person_id, clock=clock
        )

    timeline.emit(
        db,
        ctx,
        timeline.DOCUMENT_UPLOADED,
        document,
        actor_id=actor_id,
        payload={
            "application_id": application_id,
            "superseded_id": superseded.id if superseded else None,
            "auto_approved": auto_approved,
        },
    )
    logger.info(
        "Registered upload %s type=%s application=%s auto_approved=%s",
        document.id,
        document.type,
        application_id,
        auto_approved,
    )
    return UploadResult(
        document=document,
        attachment=attachment,
        superseded=superseded,
        auto_approved=auto_approved,
    )
