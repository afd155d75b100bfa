"""
esports_backend/tasks/auto_cancel.py
Background sweep cancelling completed tournaments whose winners were never declared.
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from esports_backend.config.settings import settings
from esports_backend.exceptions import StateConflictError
from esports_backend.services.lifecycle_service import LifecycleService

logger = logging.getLogger(__name__)


def _default_session_factory():
    from esports_backend.database import AsyncSessionLocal
    return AsyncSessionLocal


async def run_sweep_once(session_factory=None, now: Optional[datetime] = None) -> Dict[str, List[int]]:
    """
    Run a single sweep cycle.

    Each tournament is cancelled in its own transaction. A tournament whose
    winners were declared (or that changed status) after the scan fails with
    a state conflict and is skipped.

    Returns:
        {"cancelled": [...], "skipped": [...]}
    """
    session_factory = session_factory or _default_session_factory()
    outcome: Dict[str, List[int]] = {"cancelled": [], "skipped": []}

    async with session_factory() as db:
        expired = await LifecycleService.find_expired_completed(db, now=now)

    for tournament_id in expired:
        async with session_factory() as db:
            try:
                await LifecycleService.auto_cancel(db, tournament_id, now=now)
                await db.commit()
                outcome["cancelled"].append(tournament_id)
            except StateConflictError as e:
                await db.rollback()
                logger.warning(f"Auto-cancel skipped tournament {tournament_id}: {e.code} - {e.message}")
                outcome["skipped"].append(tournament_id)

    logger.info(
        f"Auto-cancel sweep completed: {len(outcome['cancelled'])} cancelled, "
        f"{len(outcome['skipped'])} skipped"
    )
    return outcome


async def sweep_loop(session_factory=None, interval_seconds: Optional[int] = None):
    """
    Background sweep loop.
    Runs every interval_seconds (default AUTO_CANCEL_SWEEP_INTERVAL_SECONDS).
    """
    interval_seconds = interval_seconds or settings.AUTO_CANCEL_SWEEP_INTERVAL_SECONDS
    logger.info(f"Starting auto-cancel sweep with interval {interval_seconds}s")

    while True:
        try:
            await run_sweep_once(session_factory)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Auto-cancel sweep error: {type(e).__name__}: {str(e)}")

        await asyncio.sleep(interval_seconds)


def start_sweep_task(session_factory=None, interval_seconds: Optional[int] = None) -> asyncio.Task:
    """Start the sweep as a background task on the running loop."""
    return asyncio.create_task(sweep_loop(session_factory, interval_seconds))
