"""Randomised upload/attach/detach/expire sequences checked against the lifecycle rules."""

import random
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from conftest import make_file_ref, make_person
from app.models.document import Document
from app.models.documentable_relation import DocumentableRelation
from app.services import document_relations, document_uploads, documents

TYPES = ["INE_FRONT", "SELFIE", "PAYSLIP"]


async def _check_invariants(db, ctx, owners) -> None:
    for owner in owners:
        for doc_type in TYPES:
            rows = await documents.list_documents_for_owner(db, ctx, owner, document_type=doc_type)
            active = [doc for doc in rows if doc.is_active]
            assert len(active) <= 1

            if not rows:
                continue
            newest = rows[0]
            chain = await documents.get_complete_history_chain(db, ctx, newest)
            assert {doc.id for doc in chain} == {doc.id for doc in rows}
            assert chain[-1].id == newest.id

            windows = sorted(
                (doc.valid_from, doc.valid_to) for doc in rows if doc.valid_from is not None
            )
            for (_, earlier_end), (later_start, _) in zip(windows, windows[1:]):
                assert earlier_end is not None
                assert earlier_end <= later_start

    duplicates = await db.execute(
        select(
            DocumentableRelation.document_id,
            DocumentableRelation.relatable_id,
            DocumentableRelation.context,
            func.count(),
        )
        .group_by(
            DocumentableRelation.document_id,
            DocumentableRelation.relatable_id,
            DocumentableRelation.context,
        )
        .having(func.count() > 1)
    )
    assert duplicates.all() == []


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", [7, 42, 1234])
async def test_random_sequences_keep_lifecycle_rules(db, tenant_ctx, clock, seed) -> None:
    rng = random.Random(seed)
    owners = [make_person(), make_person()]
    # Applications belong to a single applicant.
    applications = {owner: [uuid4(), uuid4()] for owner in owners}

    for _ in range(40):
        action = rng.choice(["upload", "upload", "attach", "detach", "review", "expire"])
        owner = rng.choice(owners)
        doc_type = rng.choice(TYPES)
        application_id = rng.choice(applications[owner])

        if action == "upload":
            await document_uploads.register_upload(
                db,
                tenant_ctx,
                owner=owner,
                document_type=doc_type,
                file=make_file_ref(),
                application_id=application_id if rng.random() < 0.5 else None,
                clock=clock,
            )
        elif action == "attach":
            current = await documents.get_active_document(db, tenant_ctx, owner, doc_type)
            if current is not None:
                await document_uploads.document_supersession.attach_document_to_application(
                    db, tenant_ctx, application_id, current, clock=clock
                )
        elif action == "expire":
            current = await documents.get_active_document(db, tenant_ctx, owner, doc_type)
            if current is not None:
                await documents.mark_expired(db, tenant_ctx, current, clock=clock)
        elif action == "detach":
            usage = await document_relations.find_active_usage(db, tenant_ctx, application_id, doc_type)
            if usage is not None:
                await document_relations.detach_usage(db, tenant_ctx, usage, clock=clock)
        else:
            current = await documents.get_active_document(db, tenant_ctx, owner, doc_type)
            if current is not None and current.status == "PENDING":
                if rng.random() < 0.5:
                    await documents.approve(db, tenant_ctx, current, clock=clock)
                else:
                    await documents.reject(db, tenant_ctx, current, "Unreadable", clock=clock)

    await _check_invariants(db, tenant_ctx, owners)
    total = await db.scalar(select(func.count()).select_from(Document))
    assert total >= 1
