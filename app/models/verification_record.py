import uuid

from sqlalchemy import Boolean, Column, String, UniqueConstraint, Uuid, func

from app.db.base import Base
from app.models.types import JSONDocument, UTCDateTime, utcnow


class VerificationRecord(Base):
    __tablename__ = "data_verifications"
    __table_args__ = (
        UniqueConstraint("org_id", "person_id", "field_name", name="uq_data_verifications_person_field"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    person_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    field_name = Column(String(64), nullable=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    method = Column(String(32), nullable=False)
    verification_metadata = Column("metadata", JSONDocument, nullable=True)
    verified_by = Column(Uuid(as_uuid=True), nullable=True)
    verified_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow, server_default=func.now())
    updated_at = Column(
        UTCDateTime(), nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now()
    )
