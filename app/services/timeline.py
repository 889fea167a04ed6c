"""Best-effort timeline events for document activity.

Events land in two places: an ``audit_logs`` row queued on the current
session and one line on the ``app.audit`` log stream. Neither may break the
operation that produced the event, so failures are logged and dropped.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.logging import get_audit_logger
from app.models.document import Document
from app.models.audit_log import AuditLog
from app.services.audit import list_resource_events, record_audit_log, serialize_for_audit

logger = logging.getLogger(__name__)

DOCUMENT_UPLOADED = "document.uploaded"
DOCUMENT_SUPERSEDED = "document.superseded"
DOCUMENT_AUTO_APPROVED = "document.auto_approved"
DOCUMENT_EXPIRED = "document.expired"


def emit(
    db: AsyncSession,
    ctx: deps.TenantContext,
    event: str,
    document: Document,
    *,
    actor_id=None,
    payload: dict[str, Any] | None = None,
) -> None:
    fields = {
        "document_id": str(document.id),
        "document_type": document.type,
        "owner_kind": document.owner_kind,
        "owner_id": str(document.owner_id),
        **(payload or {}),
    }
    try:
        fields = serialize_for_audit(fields)
        record_audit_log(
            db,
            ctx,
            actor_id=actor_id,
            action=event,
            resource_type="document",
            resource_id=str(document.id),
            new_value=fields,
        )
        get_audit_logger().info(
            "%s document=%s", event, document.id, extra={"event": event, "fields": fields}
        )
    except Exception:
        logger.warning("Timeline event %s dropped for document %s", event, document.id, exc_info=True)


async def events_for_document(
    db: AsyncSession, ctx: deps.TenantContext, document_id
) -> list[AuditLog]:
    """Audit rows of one document, oldest first. State changes and timeline events share the stream."""
    return await list_resource_events(db, ctx, "document", str(document_id), action_prefix="document.")
