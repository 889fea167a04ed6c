#!/usr/bin/env python3
"""
Expire documents whose own expiry date has passed and report the ones
expiring soon.

Usage:
    python scripts/expire_documents.py --org-id default
    python scripts/expire_documents.py --org-id default --as-of 2026-01-31T00:00:00+00:00
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime

from app.api.deps import tenant_scope
from app.core.clock import Clock, FixedClock, system_clock
from app.core.logging import configure_logging
from app.core.settings import settings
from app.db.session import AsyncSessionLocal, engine, session_scope
from app.services import documents, timeline

logger = logging.getLogger("scripts.expire_documents")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--org-id", default=settings.default_org_id)
    parser.add_argument("--as-of", type=datetime.fromisoformat, default=None)
    parser.add_argument("--notice-days", type=int, default=settings.document_expiry_notice_days)
    return parser.parse_args(argv)


async def run(
    org_id: str, clock: Clock, notice_days: int, *, session_factory=AsyncSessionLocal
) -> tuple[int, int]:
    ctx = tenant_scope(org_id)
    async with session_scope(session_factory) as session:
        expired = await documents.expire_due_documents(session, ctx, clock=clock)
        for document in expired:
            timeline.emit(session, ctx, timeline.DOCUMENT_EXPIRED, document)
        expiring = await documents.list_expiring_soon(session, ctx, days=notice_days, clock=clock)
        for document in expiring:
            logger.info(
                "Document %s (%s) of %s:%s expires at %s",
                document.id,
                document.type,
                document.owner_kind,
                document.owner_id,
                document.expires_at.isoformat(),
            )
    logger.info("Expiry sweep org=%s expired=%d expiring_soon=%d", org_id, len(expired), len(expiring))
    return len(expired), len(expiring)


async def _main(org_id: str, clock: Clock, notice_days: int) -> None:
    try:
        await run(org_id, clock, notice_days)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    configure_logging()
    args = parse_args(argv)
    clock = FixedClock(args.as_of) if args.as_of else system_clock
    asyncio.run(_main(args.org_id, clock, args.notice_days))


if __name__ == "__main__":
    main()
