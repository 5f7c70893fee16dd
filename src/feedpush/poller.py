"""Background polling loop: the scheduled trigger for sync cycles."""

import asyncio
import logging

from feedpush.scheduler import FetchScheduler

logger = logging.getLogger(__name__)


async def poll_feeds_once(scheduler: FetchScheduler) -> int:
    """Sync all channels once. Returns count of new items found."""
    outcome = await scheduler.sync_all()
    failed = sum(1 for r in outcome.values() if isinstance(r, Exception))
    total_new = sum(r for r in outcome.values() if not isinstance(r, Exception))
    if failed:
        logger.info("Poll cycle: %d of %d feeds failed", failed, len(outcome))
    return total_new


async def start_polling(scheduler: FetchScheduler, interval: int) -> None:
    """Run the polling loop indefinitely."""
    logger.info("Poller started (interval: %ds)", interval)

    while True:
        try:
            new_count = await poll_feeds_once(scheduler)
            if new_count > 0:
                logger.info("Poll cycle complete: %d new items", new_count)
        except Exception as e:
            logger.error("Poll cycle failed: %s", e)

        await asyncio.sleep(interval)
