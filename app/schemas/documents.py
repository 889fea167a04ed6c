from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DocumentType(str, Enum):
    INE_FRONT = "INE_FRONT"
    INE_BACK = "INE_BACK"
    PASSPORT = "PASSPORT"
    CURP = "CURP"
    RFC_CONSTANCIA = "RFC_CONSTANCIA"
    DRIVER_LICENSE_FRONT = "DRIVER_LICENSE_FRONT"
    DRIVER_LICENSE_BACK = "DRIVER_LICENSE_BACK"
    PROOF_OF_ADDRESS = "PROOF_OF_ADDRESS"
    UTILITY_BILL = "UTILITY_BILL"
    BANK_STATEMENT_ADDRESS = "BANK_STATEMENT_ADDRESS"
    LEASE_AGREEMENT = "LEASE_AGREEMENT"
    PAYSLIP = "PAYSLIP"
    BANK_STATEMENT = "BANK_STATEMENT"
    TAX_RETURN = "TAX_RETURN"
    EMPLOYMENT_LETTER = "EMPLOYMENT_LETTER"
    SELFIE = "SELFIE"
    SIGNATURE = "SIGNATURE"
    OTHER = "OTHER"


class DocumentCategory(str, Enum):
    IDENTITY = "IDENTITY"
    ADDRESS = "ADDRESS"
    INCOME = "INCOME"
    VERIFICATION = "VERIFICATION"
    OTHER = "OTHER"


class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class ReplacementReason(str, Enum):
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    UPDATED = "UPDATED"


class OwnerKind(str, Enum):
    PERSON = "PERSON"
    IDENTIFICATION = "IDENTIFICATION"


class RelatableKind(str, Enum):
    PERSON = "PERSON"
    IDENTIFICATION = "IDENTIFICATION"
    APPLICATION = "APPLICATION"


class RelationContext(str, Enum):
    OWNERSHIP = "OWNERSHIP"
    USAGE = "USAGE"


class RelationState(str, Enum):
    ACTIVE = "ACTIVE"
    DETACHED = "DETACHED"


class VerificationMethod(str, Enum):
    MANUAL = "MANUAL"
    DOCUMENT = "DOCUMENT"
    API = "API"
    KYC_INE_OCR = "KYC_INE_OCR"
    KYC_FACE_MATCH = "KYC_FACE_MATCH"
    KYC_LIVENESS = "KYC_LIVENESS"


_CATEGORY_BY_TYPE: dict[DocumentType, DocumentCategory] = {
    DocumentType.INE_FRONT: DocumentCategory.IDENTITY,
    DocumentType.INE_BACK: DocumentCategory.IDENTITY,
    DocumentType.PASSPORT: DocumentCategory.IDENTITY,
    DocumentType.CURP: DocumentCategory.IDENTITY,
    DocumentType.RFC_CONSTANCIA: DocumentCategory.IDENTITY,
    DocumentType.DRIVER_LICENSE_FRONT: DocumentCategory.IDENTITY,
    DocumentType.DRIVER_LICENSE_BACK: DocumentCategory.IDENTITY,
    DocumentType.PROOF_OF_ADDRESS: DocumentCategory.ADDRESS,
    DocumentType.UTILITY_BILL: DocumentCategory.ADDRESS,
    DocumentType.BANK_STATEMENT_ADDRESS: DocumentCategory.ADDRESS,
    DocumentType.LEASE_AGREEMENT: DocumentCategory.ADDRESS,
    DocumentType.PAYSLIP: DocumentCategory.INCOME,
    DocumentType.BANK_STATEMENT: DocumentCategory.INCOME,
    DocumentType.TAX_RETURN: DocumentCategory.INCOME,
    DocumentType.EMPLOYMENT_LETTER: DocumentCategory.INCOME,
    DocumentType.SELFIE: DocumentCategory.VERIFICATION,
    DocumentType.SIGNATURE: DocumentCategory.OTHER,
    DocumentType.OTHER: DocumentCategory.OTHER,
}


def category_for_type(document_type: DocumentType | str) -> DocumentCategory:
    return _CATEGORY_BY_TYPE[DocumentType(document_type)]


def relatable_kind_for_owner(owner_kind: OwnerKind | str) -> RelatableKind:
    return RelatableKind(OwnerKind(owner_kind).value)


class OwnerRef(BaseModel):
    """The subject a document belongs to: a person or one of their identifications."""

    model_config = ConfigDict(frozen=True)

    kind: OwnerKind
    id: UUID


class DocumentFileRef(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    storage_path: str | None = Field(default=None, max_length=1024)
    storage_provider: str | None = Field(default=None, max_length=32)
    content_type: str | None = Field(default=None, max_length=100)
    size_bytes: int | None = Field(default=None, ge=0)
    checksum: str | None = Field(default=None, max_length=128)

    @field_validator("file_name")
    @classmethod
    def _strip_file_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("file_name must not be blank")
        return value


class DocumentDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: UUID
    org_id: str
    owner_kind: OwnerKind
    owner_id: UUID
    person_id: UUID | None = None
    type: DocumentType
    category: DocumentCategory
    status: DocumentStatus
    file_name: str
    storage_path: str
    is_active: bool
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    expires_at: datetime | None = None
    superseded_by_id: UUID | None = None
    replacement_reason: ReplacementReason | None = None
    replaced_at: datetime | None = None
    rejection_reason: str | None = None
    reviewed_at: datetime | None = None
    reviewed_by: UUID | None = None
    notes: str | None = None
    provenance: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @field_validator("provenance", mode="before")
    @classmethod
    def _default_provenance(cls, value):
        return value or {}


class DocumentChainEntry(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    document: DocumentDTO
    position: int
    is_current: bool


class DocumentHistoryEntry(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    document: DocumentDTO
    application_ids: list[UUID] = Field(default_factory=list)
    is_current: bool
