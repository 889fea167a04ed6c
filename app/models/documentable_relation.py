import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)

from app.db.base import Base
from app.models.types import UTCDateTime, utcnow
from app.schemas.documents import RelatableKind, RelationContext, RelationState


class DocumentableRelation(Base):
    """Edge between a document and something that owns or uses it.

    OWNERSHIP edges are written once per document and never detached. USAGE
    edges move between ACTIVE and DETACHED as the document backing an
    application requirement changes; ``deleted_at`` carries the state.
    """

    __tablename__ = "documentable_relations"
    __table_args__ = (
        UniqueConstraint(
            "document_id",
            "relatable_type",
            "relatable_id",
            "context",
            name="uq_documentable_relations_edge",
        ),
        CheckConstraint(
            "relatable_type IN ('PERSON', 'IDENTIFICATION', 'APPLICATION')",
            name="ck_documentable_relations_relatable_type",
        ),
        CheckConstraint(
            "context IN ('OWNERSHIP', 'USAGE')",
            name="ck_documentable_relations_context",
        ),
        Index("ix_documentable_relations_relatable", "org_id", "relatable_type", "relatable_id"),
        Index("ix_documentable_relations_document_context", "document_id", "context"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    document_id = Column(
        Uuid(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False
    )
    relatable_type = Column(String(32), nullable=False)
    relatable_id = Column(Uuid(as_uuid=True), nullable=False)
    context = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(Uuid(as_uuid=True), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now()
    )
    deleted_at = Column(UTCDateTime(), nullable=True)

    @property
    def state(self) -> RelationState:
        return RelationState.DETACHED if self.deleted_at is not None else RelationState.ACTIVE

    @property
    def is_usage(self) -> bool:
        return self.context == RelationContext.USAGE.value

    def detach(self, now: datetime) -> bool:
        """ACTIVE -> DETACHED. Returns False when already detached."""
        if self.context == RelationContext.OWNERSHIP.value:
            raise ValueError("Ownership relations cannot be detached")
        if self.state is RelationState.DETACHED:
            return False
        self.deleted_at = now
        return True

    def restore(self) -> bool:
        """DETACHED -> ACTIVE. Returns False when already active."""
        if self.state is RelationState.ACTIVE:
            return False
        self.deleted_at = None
        return True

    @property
    def relatable_kind(self) -> RelatableKind:
        return RelatableKind(self.relatable_type)
