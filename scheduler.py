"""
Midnight scheduler for the daily stock reduction.

Arms a one-shot sleep until the next local midnight, runs the reduction,
then re-arms. The delay is recomputed every cycle instead of repeating a
fixed 24h interval, so DST changes and clock adjustments do not drift the
firing time. Safety against double runs comes from the engine's last-run
marker, not from this loop.
"""

import asyncio
import logging
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)

# Fire slightly after midnight so date.today() has rolled over
MIDNIGHT_GRACE_SECONDS = 1
# Wait before retrying a failed reduction
RETRY_DELAY_SECONDS = 300


def seconds_until_next_midnight(now: datetime) -> float:
    """Seconds from now until the start of the next local calendar day."""
    next_midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time())
    if now.tzinfo is not None:
        next_midnight = next_midnight.replace(tzinfo=now.tzinfo)
    return (next_midnight - now).total_seconds()


async def daily_reduction_loop(run_reduction, clock=datetime.now):
    """
    Run run_reduction shortly after every local midnight until cancelled.

    Args:
        run_reduction: Blocking callable (executed in a worker thread)
        clock: Callable returning the current local datetime
    """
    logger.info("Starting daily stock reduction scheduler")
    retry_pending = False

    while True:
        try:
            if not retry_pending:
                delay = seconds_until_next_midnight(clock()) + MIDNIGHT_GRACE_SECONDS
                logger.info(f"Next daily stock reduction in {delay:.0f}s")
                await asyncio.sleep(delay)

            await asyncio.to_thread(run_reduction)
            retry_pending = False

        except asyncio.CancelledError:
            logger.info("Daily stock reduction scheduler cancelled")
            break
        except Exception as e:
            logger.error(f"Daily stock reduction failed, retrying in {RETRY_DELAY_SECONDS}s: {e}",
                         exc_info=True)
            retry_pending = True
            try:
                await asyncio.sleep(RETRY_DELAY_SECONDS)
            except asyncio.CancelledError:
                logger.info("Daily stock reduction scheduler cancelled")
                break
