from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, PendingRollbackError

from conftest import make_file_ref, make_identification, make_person
from app.core import errors
from app.models.audit_log import AuditLog
from app.models.document import Document
from app.schemas.documents import (
    DocumentCategory,
    DocumentFileRef,
    DocumentStatus,
    DocumentType,
    ReplacementReason,
)
from app.services import documents


async def _active_document(db, ctx, owner, doc_type, clock, **kwargs):
    document = await documents.create(db, ctx, owner, doc_type, make_file_ref(), clock=clock, **kwargs)
    await documents.activate(db, ctx, document, clock=clock)
    return document


@pytest.mark.asyncio
async def test_create_inserts_pending_inactive_document(db, tenant_ctx, clock, person) -> None:
    document = await documents.create(
        db,
        tenant_ctx,
        person,
        "PROOF_OF_ADDRESS",
        make_file_ref("recibo cfe.pdf"),
        metadata={"channel": "mobile"},
        clock=clock,
    )

    assert document.status == DocumentStatus.PENDING.value
    assert document.is_active is False
    assert document.valid_from is None
    assert document.category == DocumentCategory.ADDRESS.value
    assert document.provenance == {"channel": "mobile"}
    assert document.storage_path == (
        f"orgs/default/people/{person.id}/documents/proof_of_address/{document.id}/recibo_cfe.pdf"
    )

    result = await db.execute(select(AuditLog).where(AuditLog.action == "document.created"))
    assert result.scalar_one().resource_id == str(document.id)


@pytest.mark.asyncio
async def test_create_keeps_supplied_storage_path(db, tenant_ctx, clock) -> None:
    owner = make_identification()
    document = await documents.create(
        db,
        tenant_ctx,
        owner,
        DocumentType.INE_FRONT,
        make_file_ref(storage_path="bucket/ine/front.jpg"),
        clock=clock,
    )
    assert document.storage_path == "bucket/ine/front.jpg"
    assert document.owner_kind == "IDENTIFICATION"
    assert document.category == DocumentCategory.IDENTITY.value


@pytest.mark.asyncio
async def test_create_rejects_unknown_type(db, tenant_ctx, clock, person) -> None:
    with pytest.raises(errors.DocumentValidationError) as excinfo:
        await documents.create(db, tenant_ctx, person, "BIRTH_CHART", make_file_ref(), clock=clock)
    assert excinfo.value.code == errors.INVALID_TYPE
    assert "PROOF_OF_ADDRESS" in excinfo.value.details["allowed"]


@pytest.mark.asyncio
async def test_create_requires_owner(db, tenant_ctx, clock) -> None:
    with pytest.raises(errors.DocumentValidationError) as excinfo:
        await documents.create(db, tenant_ctx, None, "SELFIE", make_file_ref(), clock=clock)
    assert excinfo.value.code == errors.OWNER_REQUIRED


def test_file_ref_rejects_blank_name() -> None:
    with pytest.raises(ValueError):
        DocumentFileRef(file_name="   ")


@pytest.mark.asyncio
async def test_approve_sets_review_fields(db, tenant_ctx, clock, person) -> None:
    reviewer = uuid4()
    document = await _active_document(db, tenant_ctx, person, "PAYSLIP", clock)

    await documents.approve(db, tenant_ctx, document, reviewer_id=reviewer, clock=clock)

    assert document.status == DocumentStatus.APPROVED.value
    assert document.reviewed_by == reviewer
    assert document.reviewed_at is not None
    assert document.rejection_reason is None


@pytest.mark.asyncio
async def test_reject_requires_reason(db, tenant_ctx, clock, person) -> None:
    document = await _active_document(db, tenant_ctx, person, "PAYSLIP", clock)

    with pytest.raises(errors.DocumentValidationError) as excinfo:
        await documents.reject(db, tenant_ctx, document, "  ", clock=clock)
    assert excinfo.value.code == errors.REJECTION_REASON_REQUIRED

    await documents.reject(db, tenant_ctx, document, "Illegible scan", clock=clock)
    assert document.status == DocumentStatus.REJECTED.value
    assert document.rejection_reason == "Illegible scan"


@pytest.mark.asyncio
async def test_approve_superseded_document_is_not_modifiable(db, tenant_ctx, clock, person) -> None:
    old = await _active_document(db, tenant_ctx, person, "PROOF_OF_ADDRESS", clock)
    new = await _active_document(db, tenant_ctx, person, "PROOF_OF_ADDRESS", clock)
    await documents.supersede_with(db, tenant_ctx, old, new, ReplacementReason.UPDATED, clock=clock)
    snapshot = {
        "status": old.status,
        "reviewed_at": old.reviewed_at,
        "reviewed_by": old.reviewed_by,
        "valid_to": old.valid_to,
    }

    with pytest.raises(errors.DocumentStateConflict) as excinfo:
        await documents.approve(db, tenant_ctx, old, reviewer_id=uuid4(), clock=clock)

    assert excinfo.value.code == errors.NOT_MODIFIABLE
    assert excinfo.value.status_code == 409
    await db.refresh(old)
    assert {
        "status": old.status,
        "reviewed_at": old.reviewed_at,
        "reviewed_by": old.reviewed_by,
        "valid_to": old.valid_to,
    } == snapshot

    with pytest.raises(errors.DocumentStateConflict):
        await documents.reject(db, tenant_ctx, old, "too late", clock=clock)


@pytest.mark.asyncio
async def test_activate_deactivates_previous_active_document(db, tenant_ctx, clock, person) -> None:
    first = await _active_document(db, tenant_ctx, person, "SELFIE", clock)
    second = await _active_document(db, tenant_ctx, person, "SELFIE", clock)

    assert first.is_active is False
    assert first.valid_to == second.valid_from
    assert second.is_active is True
    assert second.valid_to is None

    active = await documents.get_active_document(db, tenant_ctx, person, "SELFIE")
    assert active.id == second.id


@pytest.mark.asyncio
async def test_activate_leaves_other_types_and_owners_alone(db, tenant_ctx, clock, person) -> None:
    selfie = await _active_document(db, tenant_ctx, person, "SELFIE", clock)
    await _active_document(db, tenant_ctx, person, "PAYSLIP", clock)
    await _active_document(db, tenant_ctx, make_person(), "SELFIE", clock)

    assert selfie.is_active is True


@pytest.mark.asyncio
async def test_supersede_with_is_idempotent(db, tenant_ctx, clock, person) -> None:
    old = await _active_document(db, tenant_ctx, person, "BANK_STATEMENT", clock)
    new = await _active_document(db, tenant_ctx, person, "BANK_STATEMENT", clock)
    other = await documents.create(db, tenant_ctx, person, "BANK_STATEMENT", make_file_ref(), clock=clock)

    assert await documents.supersede_with(db, tenant_ctx, old, new, "UPDATED", clock=clock) is True
    terminal = (old.superseded_by_id, old.replacement_reason, old.replaced_at, old.valid_to, old.is_active)

    assert await documents.supersede_with(db, tenant_ctx, old, new, "UPDATED", clock=clock) is False
    assert await documents.supersede_with(db, tenant_ctx, old, other, "REJECTED", clock=clock) is False
    assert (old.superseded_by_id, old.replacement_reason, old.replaced_at, old.valid_to, old.is_active) == terminal
    assert old.superseded_by_id == new.id


@pytest.mark.asyncio
async def test_supersede_with_closes_window_of_unactivated_document(db, tenant_ctx, clock, person) -> None:
    old = await documents.create(db, tenant_ctx, person, "TAX_RETURN", make_file_ref(), clock=clock)
    new = await documents.create(db, tenant_ctx, person, "TAX_RETURN", make_file_ref(), clock=clock)

    await documents.supersede_with(db, tenant_ctx, old, new, ReplacementReason.UPDATED, clock=clock)

    assert old.valid_to == old.replaced_at
    assert old.replacement_reason == "UPDATED"


@pytest.mark.asyncio
async def test_supersede_with_refuses_self(db, tenant_ctx, clock, person) -> None:
    document = await _active_document(db, tenant_ctx, person, "OTHER", clock)
    with pytest.raises(ValueError):
        await documents.supersede_with(db, tenant_ctx, document, document, "UPDATED", clock=clock)


@pytest.mark.asyncio
async def test_is_currently_valid_requires_approval_and_window(db, tenant_ctx, clock, person) -> None:
    document = await _active_document(db, tenant_ctx, person, "PASSPORT", clock)
    started = document.valid_from

    assert documents.is_valid_at(document, started) is True
    assert documents.is_currently_valid(document, started) is False

    await documents.approve(db, tenant_ctx, document, clock=clock)
    assert documents.is_currently_valid(document, started) is True
    assert documents.is_currently_valid(document, started - timedelta(seconds=1)) is False

    replacement = await _active_document(db, tenant_ctx, person, "PASSPORT", clock)
    assert documents.is_currently_valid(document, replacement.valid_from) is False
    assert documents.is_currently_valid(document, replacement.valid_from - timedelta(microseconds=1)) is True


@pytest.mark.asyncio
async def test_history_chain_walks_both_directions(db, tenant_ctx, clock, person) -> None:
    chain = []
    for _ in range(4):
        document = await _active_document(db, tenant_ctx, person, "INE_FRONT", clock)
        if chain:
            await documents.supersede_with(db, tenant_ctx, chain[-1], document, "UPDATED", clock=clock)
        chain.append(document)

    expected = [doc.id for doc in chain]
    for member in chain:
        lineage = await documents.get_complete_history_chain(db, tenant_ctx, member)
        assert [doc.id for doc in lineage] == expected


@pytest.mark.asyncio
async def test_history_chain_is_bounded(db, tenant_ctx, clock, person) -> None:
    chain = []
    for _ in range(5):
        document = await _active_document(db, tenant_ctx, person, "PAYSLIP", clock)
        if chain:
            await documents.supersede_with(db, tenant_ctx, chain[-1], document, "UPDATED", clock=clock)
        chain.append(document)

    lineage = await documents.get_complete_history_chain(db, tenant_ctx, chain[0], max_length=3)
    assert [doc.id for doc in lineage] == [doc.id for doc in chain[:3]]


@pytest.mark.asyncio
async def test_history_chain_of_standalone_document(db, tenant_ctx, clock, person) -> None:
    document = await _active_document(db, tenant_ctx, person, "CURP", clock)
    assert await documents.get_complete_history_chain(db, tenant_ctx, document) == [document]


@pytest.mark.asyncio
async def test_mark_expired_and_sweep(db, tenant_ctx, clock, person) -> None:
    expiring = await _active_document(
        db, tenant_ctx, person, "PASSPORT", clock, expires_at=clock.current + timedelta(days=3)
    )
    later = await _active_document(
        db, tenant_ctx, person, "DRIVER_LICENSE_FRONT", clock, expires_at=clock.current + timedelta(days=20)
    )

    soon = await documents.list_expiring_soon(db, tenant_ctx, days=7, clock=clock)
    assert [doc.id for doc in soon] == [expiring.id]

    clock.advance(days=5)
    expired = await documents.expire_due_documents(db, tenant_ctx, clock=clock)

    assert [doc.id for doc in expired] == [expiring.id]
    assert expiring.status == DocumentStatus.EXPIRED.value
    assert expiring.is_active is False
    assert expiring.valid_to is not None
    assert later.status == DocumentStatus.PENDING.value

    assert await documents.expire_due_documents(db, tenant_ctx, clock=clock) == []


@pytest.mark.asyncio
async def test_pending_review_queue_is_oldest_first(db, tenant_ctx, clock, person) -> None:
    first = await _active_document(db, tenant_ctx, person, "PAYSLIP", clock)
    second = await _active_document(db, tenant_ctx, person, "TAX_RETURN", clock)
    approved = await _active_document(db, tenant_ctx, person, "CURP", clock)
    await documents.approve(db, tenant_ctx, approved, clock=clock)

    queue = await documents.list_pending_for_review(db, tenant_ctx)
    assert [doc.id for doc in queue] == [first.id, second.id]


@pytest.mark.asyncio
async def test_lookups_are_tenant_scoped(db, tenant_ctx, clock, person) -> None:
    document = await _active_document(db, tenant_ctx, person, "SELFIE", clock)
    other_tenant = type(tenant_ctx)(org_id="other-org")

    assert await documents.get_document(db, other_tenant, document.id) is None
    assert await documents.get_active_document(db, other_tenant, person, "SELFIE") is None
    with pytest.raises(errors.DocumentNotFound) as excinfo:
        await documents.require_document(db, other_tenant, document.id)
    assert excinfo.value.code == errors.DOCUMENT_NOT_FOUND


@pytest.mark.asyncio
async def test_unique_index_blocks_second_active_row(db, tenant_ctx, clock, person) -> None:
    await _active_document(db, tenant_ctx, person, "SIGNATURE", clock)
    rogue = await documents.create(db, tenant_ctx, person, "SIGNATURE", make_file_ref(), clock=clock)
    rogue.is_active = True

    # Newer SQLAlchemy surfaces the failed savepoint flush as PendingRollbackError.
    with pytest.raises((IntegrityError, PendingRollbackError)):
        async with db.begin_nested():
            await db.flush()
    result = await db.execute(
        select(Document).where(Document.type == "SIGNATURE", Document.is_active.is_(True))
    )
    assert len(result.scalars().all()) == 1


@pytest.mark.asyncio
async def test_create_resolves_person(db, tenant_ctx, clock, person) -> None:
    identification = make_identification()

    own = await documents.create(db, tenant_ctx, person, "SELFIE", make_file_ref(), clock=clock)
    linked = await documents.create(
        db, tenant_ctx, identification, "INE_FRONT", make_file_ref(), person_id=person.id, clock=clock
    )
    anonymous = await documents.create(db, tenant_ctx, identification, "INE_BACK", make_file_ref(), clock=clock)

    assert own.person_id == person.id
    assert linked.person_id == person.id
    assert anonymous.person_id is None


@pytest.mark.asyncio
async def test_zero_overrides_are_not_treated_as_unset(db, tenant_ctx, clock, person) -> None:
    await _active_document(
        db, tenant_ctx, person, "PASSPORT", clock, expires_at=clock.current + timedelta(days=3)
    )
    first = await _active_document(db, tenant_ctx, person, "PAYSLIP", clock)
    second = await _active_document(db, tenant_ctx, person, "PAYSLIP", clock)
    await documents.supersede_with(db, tenant_ctx, first, second, "UPDATED", clock=clock)

    assert await documents.list_expiring_soon(db, tenant_ctx, days=0, clock=clock) == []
    assert await documents.get_complete_history_chain(db, tenant_ctx, second, max_length=0) == [second]


@pytest.mark.asyncio
async def test_latest_version_includes_expired_documents(db, tenant_ctx, clock, person) -> None:
    document = await _active_document(db, tenant_ctx, person, "PROOF_OF_ADDRESS", clock)
    await documents.mark_expired(db, tenant_ctx, document, clock=clock)

    assert await documents.get_active_document(db, tenant_ctx, person, "PROOF_OF_ADDRESS") is None
    assert await documents.get_latest_version(db, tenant_ctx, person, "PROOF_OF_ADDRESS") is document


@pytest.mark.asyncio
async def test_owner_requirement_checks(db, tenant_ctx, clock, person) -> None:
    selfie = await _active_document(db, tenant_ctx, person, "SELFIE", clock)
    await documents.approve(db, tenant_ctx, selfie, clock=clock)
    await _active_document(db, tenant_ctx, person, "PAYSLIP", clock)
    rejected = await _active_document(db, tenant_ctx, person, "CURP", clock)
    await documents.reject(db, tenant_ctx, rejected, "Illegible", clock=clock)
    old_rejected = await _active_document(db, tenant_ctx, person, "INE_FRONT", clock)
    await documents.reject(db, tenant_ctx, old_rejected, "Cropped", clock=clock)
    replacement = await _active_document(db, tenant_ctx, person, "INE_FRONT", clock)
    await documents.supersede_with(db, tenant_ctx, old_rejected, replacement, "REJECTED", clock=clock)

    assert await documents.are_all_required_approved(db, tenant_ctx, person, ["SELFIE"])
    assert not await documents.are_all_required_approved(db, tenant_ctx, person, ["SELFIE", "PAYSLIP"])
    missing = await documents.missing_required_for_owner(
        db, tenant_ctx, person, ["SELFIE", "PAYSLIP", "CURP", "TAX_RETURN", "CURP"]
    )
    assert missing == [DocumentType.CURP, DocumentType.TAX_RETURN]
    reupload = await documents.list_rejected_for_reupload(db, tenant_ctx, person)
    assert [doc.id for doc in reupload] == [rejected.id]
    assert await documents.missing_required_for_owner(db, tenant_ctx, make_person(), ["SELFIE"]) == [
        DocumentType.SELFIE
    ]
