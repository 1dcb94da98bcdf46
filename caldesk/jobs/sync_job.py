"""Periodic pull sync job."""

import asyncio
import logging

from caldesk.auth.google import list_linked_owners
from caldesk.sync.pull import pull_sync

logger = logging.getLogger(__name__)

_pull_lock = asyncio.Lock()


async def run_periodic_pull() -> None:
    """Run pull sync for every owner with a linked remote calendar."""
    if _pull_lock.locked():
        logger.debug("Periodic pull already running, skipping")
        return

    async with _pull_lock:
        owners = await list_linked_owners()
        logger.info(f"Running periodic pull for {len(owners)} owners")

        for owner_id in owners:
            try:
                await pull_sync(owner_id)
            except Exception as e:
                logger.error(f"Error pulling calendar for owner {owner_id}: {e}")

        logger.info("Periodic pull completed")
