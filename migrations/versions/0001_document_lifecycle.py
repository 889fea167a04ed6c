"""Create documents, documentable_relations, data_verifications and audit_logs"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_document_lifecycle"
down_revision = None
branch_labels = None
depends_on = None

DOCUMENT_STATUSES = ("PENDING", "APPROVED", "REJECTED", "EXPIRED")
DOCUMENT_TYPES = (
    "INE_FRONT",
    "INE_BACK",
    "PASSPORT",
    "CURP",
    "RFC_CONSTANCIA",
    "DRIVER_LICENSE_FRONT",
    "DRIVER_LICENSE_BACK",
    "PROOF_OF_ADDRESS",
    "UTILITY_BILL",
    "BANK_STATEMENT_ADDRESS",
    "LEASE_AGREEMENT",
    "PAYSLIP",
    "BANK_STATEMENT",
    "TAX_RETURN",
    "EMPLOYMENT_LETTER",
    "SELFIE",
    "SIGNATURE",
    "OTHER",
)
REPLACEMENT_REASONS = ("REJECTED", "EXPIRED", "UPDATED")


def _in(column: str, values) -> str:
    return f"{column} IN ({', '.join(repr(value) for value in values)})"


def upgrade() -> None:
    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=64), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", "org_id"),
        postgresql_partition_by="LIST (org_id)",
    )
    op.create_index("ix_audit_logs_org_id", "audit_logs", ["org_id"])
    op.create_index("ix_audit_logs_resource", "audit_logs", ["org_id", "resource_type", "resource_id"])
    op.execute("CREATE TABLE audit_logs_default PARTITION OF audit_logs DEFAULT")

    op.create_table(
        "documents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("owner_kind", sa.String(length=32), nullable=False),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("person_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("storage_path", sa.String(length=1024), nullable=False),
        sa.Column("storage_provider", sa.String(length=32), nullable=True),
        sa.Column("content_type", sa.String(length=100), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("checksum", sa.String(length=128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("valid_from", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("valid_to", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "superseded_by_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("documents.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("replacement_reason", sa.String(length=20), nullable=True),
        sa.Column("replaced_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("reviewed_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(_in("status", DOCUMENT_STATUSES), name="ck_documents_status"),
        sa.CheckConstraint(_in("type", DOCUMENT_TYPES), name="ck_documents_type"),
        sa.CheckConstraint(_in("owner_kind", ("PERSON", "IDENTIFICATION")), name="ck_documents_owner_kind"),
        sa.CheckConstraint(
            "replacement_reason IS NULL OR " + _in("replacement_reason", REPLACEMENT_REASONS),
            name="ck_documents_replacement_reason",
        ),
        sa.CheckConstraint(
            "valid_to IS NULL OR valid_from IS NULL OR valid_to >= valid_from",
            name="ck_documents_validity_window",
        ),
    )
    op.create_index("ix_documents_org_id", "documents", ["org_id"])
    op.create_index("ix_documents_org_owner_type", "documents", ["org_id", "owner_kind", "owner_id", "type"])
    op.create_index("ix_documents_org_person", "documents", ["org_id", "person_id"])
    op.create_index("ix_documents_superseded_by_id", "documents", ["superseded_by_id"])
    op.create_index("ix_documents_validity", "documents", ["valid_from", "valid_to"])
    op.create_index(
        "uq_documents_active_per_owner_type",
        "documents",
        ["org_id", "owner_kind", "owner_id", "type"],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "documentable_relations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column(
            "document_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("relatable_type", sa.String(length=32), nullable=False),
        sa.Column("relatable_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("context", sa.String(length=20), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "document_id", "relatable_type", "relatable_id", "context", name="uq_documentable_relations_edge"
        ),
        sa.CheckConstraint(
            _in("relatable_type", ("PERSON", "IDENTIFICATION", "APPLICATION")),
            name="ck_documentable_relations_relatable_type",
        ),
        sa.CheckConstraint(_in("context", ("OWNERSHIP", "USAGE")), name="ck_documentable_relations_context"),
    )
    op.create_index("ix_documentable_relations_org_id", "documentable_relations", ["org_id"])
    op.create_index(
        "ix_documentable_relations_relatable",
        "documentable_relations",
        ["org_id", "relatable_type", "relatable_id"],
    )
    op.create_index(
        "ix_documentable_relations_document_context",
        "documentable_relations",
        ["document_id", "context"],
    )

    op.create_table(
        "data_verifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("person_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("field_name", sa.String(length=64), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("method", sa.String(length=32), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("verified_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("verified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("org_id", "person_id", "field_name", name="uq_data_verifications_person_field"),
    )
    op.create_index("ix_data_verifications_org_id", "data_verifications", ["org_id"])
    op.create_index("ix_data_verifications_person_id", "data_verifications", ["person_id"])


def downgrade() -> None:
    op.drop_index("ix_data_verifications_person_id", table_name="data_verifications")
    op.drop_index("ix_data_verifications_org_id", table_name="data_verifications")
    op.drop_table("data_verifications")

    op.drop_index("ix_documentable_relations_document_context", table_name="documentable_relations")
    op.drop_index("ix_documentable_relations_relatable", table_name="documentable_relations")
    op.drop_index("ix_documentable_relations_org_id", table_name="documentable_relations")
    op.drop_table("documentable_relations")

    op.drop_index("uq_documents_active_per_owner_type", table_name="documents")
    op.drop_index("ix_documents_validity", table_name="documents")
    op.drop_index("ix_documents_superseded_by_id", table_name="documents")
    op.drop_index("ix_documents_org_person", table_name="documents")
    op.drop_index("ix_documents_org_owner_type", table_name="documents")
    op.drop_index("ix_documents_org_id", table_name="documents")
    op.drop_table("documents")

    op.execute("DROP TABLE IF EXISTS audit_logs_default")
    op.drop_index("ix_audit_logs_resource", table_name="audit_logs")
    op.drop_index("ix_audit_logs_org_id", table_name="audit_logs")
    op.drop_table("audit_logs")
