"""
Match Expiry -- Scheduled Job.

Moves suggestions that are still open (``suggested`` or ``viewed``) past
their ``expires_at`` to ``expired`` so they can no longer be accepted.
Reads also expire stale matches lazily; this job keeps listings tidy.

Intended to run every few minutes from cron or any async scheduler.

Usage with a simple cron runner::

    python -m baitech.jobs.matchExpiry
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from baitech.core.logging import setup_logging
from baitech.models.base import utcnow
from baitech.models.matching import Matching, MatchStatus
from baitech.services.matchingEngine import transition_match
from baitech.services.matchStateManager import OPEN_MATCH_STATUSES

logger = logging.getLogger(__name__)


async def expire_stale_matches(
    db: AsyncSession,
    now: Optional[datetime] = None,
) -> int:
    """Expire every open match whose ``expires_at`` has passed.

    Args:
        db: Async database session.
        now: Reference time override (for testing).

    Returns:
        Number of matches expired.
    """
    now = now or utcnow()

    stmt = select(Matching).where(
        Matching.status.in_(OPEN_MATCH_STATUSES),
        Matching.expires_at.is_not(None),
        Matching.expires_at <= now,
    )
    stale = (await db.execute(stmt)).scalars().all()

    for matching in stale:
        transition_match(matching, MatchStatus.EXPIRED, now)

    if stale:
        await db.flush()
    logger.info("Match expiry run at %s: %d expired", now.isoformat(), len(stale))
    return len(stale)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

async def _cli_main() -> None:
    from baitech.api.deps import async_session_factory

    async with async_session_factory() as session:
        try:
            expired = await expire_stale_matches(session)
            await session.commit()
            logger.info("Match expiry completed: %d expired", expired)
        except Exception:
            await session.rollback()
            logger.exception("Match expiry failed")
            raise


if __name__ == "__main__":
    setup_logging()
    asyncio.run(_cli_main())
