import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
    func,
    text,
)

from app.db.base import Base
from app.models.types import JSONDocument, UTCDateTime, utcnow
from app.schemas.documents import DocumentStatus, DocumentType, OwnerKind, ReplacementReason


def _in_clause(column: str, values) -> str:
    quoted = ", ".join(f"'{value.value}'" for value in values)
    return f"{column} IN ({quoted})"


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(_in_clause("status", DocumentStatus), name="ck_documents_status"),
        CheckConstraint(_in_clause("type", DocumentType), name="ck_documents_type"),
        CheckConstraint(_in_clause("owner_kind", OwnerKind), name="ck_documents_owner_kind"),
        CheckConstraint(
            "replacement_reason IS NULL OR " + _in_clause("replacement_reason", ReplacementReason),
            name="ck_documents_replacement_reason",
        ),
        CheckConstraint(
            "valid_to IS NULL OR valid_from IS NULL OR valid_to >= valid_from",
            name="ck_documents_validity_window",
        ),
        Index("ix_documents_org_owner_type", "org_id", "owner_kind", "owner_id", "type"),
        Index("ix_documents_org_person", "org_id", "person_id"),
        Index("ix_documents_superseded_by_id", "superseded_by_id"),
        Index("ix_documents_validity", "valid_from", "valid_to"),
        Index(
            "uq_documents_active_per_owner_type",
            "org_id",
            "owner_kind",
            "owner_id",
            "type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    owner_kind = Column(String(32), nullable=False)
    owner_id = Column(Uuid(as_uuid=True), nullable=False)
    # Applicant behind the owner; equals owner_id for person-owned rows.
    person_id = Column(Uuid(as_uuid=True), nullable=True)
    type = Column(String(64), nullable=False)
    category = Column(String(32), nullable=False)
    status = Column(String(20), nullable=False, default=DocumentStatus.PENDING.value)

    file_name = Column(String(255), nullable=False)
    storage_path = Column(String(1024), nullable=False)
    storage_provider = Column(String(32), nullable=True)
    content_type = Column(String(100), nullable=True)
    size_bytes = Column(BigInteger, nullable=True)
    checksum = Column(String(128), nullable=True)

    is_active = Column(Boolean, nullable=False, default=False)
    valid_from = Column(UTCDateTime(), nullable=True)
    valid_to = Column(UTCDateTime(), nullable=True)
    expires_at = Column(UTCDateTime(), nullable=True)

    superseded_by_id = Column(
        Uuid(as_uuid=True), ForeignKey("documents.id", ondelete="SET NULL"), nullable=True
    )
    replacement_reason = Column(String(20), nullable=True)
    replaced_at = Column(UTCDateTime(), nullable=True)

    rejection_reason = Column(Text, nullable=True)
    reviewed_at = Column(UTCDateTime(), nullable=True)
    reviewed_by = Column(Uuid(as_uuid=True), nullable=True)
    notes = Column(Text, nullable=True)
    provenance = Column("metadata", JSONDocument, nullable=True)

    created_by = Column(Uuid(as_uuid=True), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    @property
    def is_superseded(self) -> bool:
        return self.superseded_by_id is not None

    def __repr__(self) -> str:
        return f"<Document {self.id} {self.type} {self.status} active={self.is_active}>"
