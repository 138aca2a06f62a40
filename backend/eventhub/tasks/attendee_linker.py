"""Background task that backfills attendee-to-transaction links

Checkout and the payment_intent.succeeded webhook each link attendees when they
find their counterpart. If both commit at the same moment neither sees the
other, and the rows stay unlinked until this sweep finds them.
"""
import asyncio
import logging

from eventhub.core.config import settings
from eventhub.core.metrics import sweeper_runs_counter
from eventhub.db.session import transaction_scope
from eventhub.services.attendee_service import sweep_unlinked_attendees

linker_logger = logging.getLogger("attendee_linker")


def run_attendee_sweep() -> int:
    """One sweep in its own session and transaction

    Returns:
        int: number of attendee rows linked
    """
    try:
        with transaction_scope() as db:
            linked = sweep_unlinked_attendees(db)
    except Exception:
        sweeper_runs_counter.labels(status="failure").inc()
        raise

    sweeper_runs_counter.labels(status="success").inc()
    if linked:
        linker_logger.info(f"Attendee sweep linked {linked} rows")
    return linked


async def attendee_linker_task():
    """Run the attendee sweep every ATTENDEE_LINK_SWEEP_INTERVAL seconds"""
    while True:
        try:
            await asyncio.sleep(settings.ATTENDEE_LINK_SWEEP_INTERVAL)
            await asyncio.to_thread(run_attendee_sweep)
        except asyncio.CancelledError:
            linker_logger.info("Attendee linker task cancelled")
            raise
        except Exception as e:
            linker_logger.error(f"Attendee sweep failed: {e}", exc_info=True)
