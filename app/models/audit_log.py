import uuid

from sqlalchemy import JSON, Column, Index, String, Text, Uuid, func

from app.db.base import Base
from app.models.types import UTCDateTime, utcnow


class AuditLog(Base):
    """Append-only change log, list-partitioned by tenant on PostgreSQL."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_resource", "org_id", "resource_type", "resource_id"),
        {"postgresql_partition_by": "LIST (org_id)"},
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, primary_key=True, nullable=False, index=True)
    actor_id = Column(Uuid(as_uuid=True), nullable=True)
    action = Column(String(255), nullable=False)
    resource_type = Column(String(64), nullable=False)
    resource_id = Column(String(255), nullable=False)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    changes = Column(JSON, nullable=True)
    summary = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow, server_default=func.now())
