#!/usr/bin/env python3
"""
Replay verified KYC results against current documents.

Approves any active document whose verification already passed but which
was uploaded or re-activated without going through the KYC bridge (for
example rows written before auto-approval was enabled).

Usage:
    python scripts/sync_kyc_verifications.py --org-id default
    python scripts/sync_kyc_verifications.py --org-id default --person-id <uuid> --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from uuid import UUID

from app.api.deps import tenant_scope
from app.core.logging import configure_logging
from app.core.settings import settings
from app.db.session import AsyncSessionLocal, engine, session_scope
from app.services import kyc_bridge

logger = logging.getLogger("scripts.sync_kyc_verifications")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--org-id", default=settings.default_org_id)
    parser.add_argument("--person-id", type=UUID, default=None)
    parser.add_argument("--dry-run", action="store_true", help="roll back instead of committing")
    return parser.parse_args(argv)


async def run(
    org_id: str, person_id: UUID | None, dry_run: bool, *, session_factory=AsyncSessionLocal
) -> int:
    ctx = tenant_scope(org_id)
    async with session_scope(session_factory, commit=not dry_run) as session:
        approved = await kyc_bridge.reconcile_verifications(session, ctx, person_id=person_id)
    logger.info("KYC sync finished org=%s approved=%d dry_run=%s", org_id, approved, dry_run)
    return approved


async def _main(org_id: str, person_id: UUID | None, dry_run: bool) -> None:
    try:
        await run(org_id, person_id, dry_run)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    configure_logging()
    args = parse_args(argv)
    asyncio.run(_main(args.org_id, args.person_id, args.dry_run))


if __name__ == "__main__":
    main()
