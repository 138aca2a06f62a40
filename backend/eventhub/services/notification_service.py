"""Fire-and-forget notifications tied to a unit of work

Webhook handlers queue notifications on the session with on_commit(); the
dispatcher runs them only after the delivery's transaction commits and drops
them on rollback. A failing notification is logged and never propagates.
"""
import logging
from typing import Callable

from sqlalchemy.orm import Session

from eventhub.models.event import Event
from eventhub.models.transaction import Transaction
from eventhub.models.user import User
from eventhub.services import email_service

logger = logging.getLogger(__name__)

_PENDING_KEY = "pending_notifications"


def on_commit(db: Session, callback: Callable, *args, **kwargs) -> None:
    """Queue a callback to run after db commits"""
    db.info.setdefault(_PENDING_KEY, []).append((callback, args, kwargs))


def run_pending(db: Session) -> int:
    """Run queued callbacks, isolating each failure

    Returns:
        int: number of callbacks that completed without raising
    """
    pending = db.info.pop(_PENDING_KEY, [])
    delivered = 0
    for callback, args, kwargs in pending:
        try:
            callback(*args, **kwargs)
            delivered += 1
        except Exception as e:
            logger.error(f"Notification {getattr(callback, '__name__', callback)} failed: {e}", exc_info=True)
    return delivered


def discard_pending(db: Session) -> None:
    dropped = db.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.info(f"Dropped {len(dropped)} queued notifications after rollback")


def notify_ticket_purchase(transaction: Transaction, db: Session) -> None:
    """Queue the buyer receipt and the host sale notice"""
    buyer = db.query(User).filter(User.id == transaction.user_id).first()
    event = db.query(Event).filter(Event.id == transaction.event_id).first()
    if not event:
        return
    amount = f"{transaction.amount:.2f}"
    if buyer:
        on_commit(db, email_service.send_ticket_receipt_email, buyer.email, event.title, amount, transaction.currency)

    host = db.query(User).filter(User.id == transaction.host_user_id).first() if transaction.host_user_id else None
    if host:
        payout = f"{transaction.transfer_amount:.2f}" if transaction.transfer_amount is not None else None
        on_commit(db, email_service.send_ticket_sale_email, host.email, event.title, payout, transaction.currency)


def notify_subscription_started(user_id: str, plan_name: str, db: Session) -> None:
    user = db.query(User).filter(User.id == user_id).first()
    if user:
        on_commit(db, email_service.send_subscription_confirmation_email, user.email, plan_name)


def notify_subscription_canceled(user_id: str, plan_name: str, db: Session) -> None:
    user = db.query(User).filter(User.id == user_id).first()
    if user:
        on_commit(db, email_service.send_subscription_canceled_email, user.email, plan_name)
