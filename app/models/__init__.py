from app.models.audit_log import AuditLog
from app.models.document import Document
from app.models.documentable_relation import DocumentableRelation
from app.models.verification_record import VerificationRecord

__all__ = [
    "AuditLog",
    "Document",
    "DocumentableRelation",
    "VerificationRecord",
]
