"""Attendee service

Ticket holders are written by the checkout request while the matching
Transaction is written by the payment_intent.succeeded webhook. Either may land
first, so both sides look up their counterpart and link if it exists:

- checkout: find the Transaction by payment intent id, link rows at insert time
- webhook: after creating the Transaction, bulk-link unlinked rows for (user, event)
- sweeper: backfill rows both sides missed because they committed concurrently
"""
import logging
import stripe
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from eventhub.core.metrics import attendees_linked_counter
from eventhub.models.enums import AttendeePaymentStatus, TransactionStatus, TransactionType
from eventhub.models.event import Event
from eventhub.models.event_attendee import EventAttendee
from eventhub.models.transaction import Transaction
from eventhub.services import stripe_service
from eventhub.services.errors import (
    ConflictError, GatewayError, NotFoundError, PermissionDeniedError, ValidationError
)
from eventhub.services.transaction_service import get_transaction_by_payment_intent_id

logger = logging.getLogger(__name__)

# ============================================================================
# LINKING
# ============================================================================

def create_bulk_event_attendees(
    event_id: str,
    attendees: List[Dict[str, Any]],
    transaction_id: Optional[str],
    db: Session,
) -> List[EventAttendee]:
    """Insert attendee rows; transaction_id may be None when the webhook has not landed yet"""
    rows = []
    for attendee in attendees:
        amount_paid = Decimal(str(attendee.get("amount_paid") or 0))
        row = EventAttendee(
            event_id=event_id,
            user_id=attendee["user_id"],
            name=attendee.get("name"),
            rsvp_status=attendee.get("rsvp_status") or "yes",
            is_incognito=bool(attendee.get("is_incognito", False)),
            amount_paid=amount_paid,
            platform_fee_amount=Decimal(str(attendee.get("platform_fee_amount") or 0)),
            host_payout_amount=Decimal(str(attendee.get("host_payout_amount") or 0)),
            payment_status=AttendeePaymentStatus.SUCCEEDED.value if amount_paid > 0 else None,
            transaction_id=transaction_id,
        )
        db.add(row)
        rows.append(row)
    db.flush()
    return rows


def link_attendees_to_transaction(user_id: str, event_id: str, transaction_id: str, db: Session) -> int:
    """Point every unlinked attendee row for (user, event) at a transaction

    Rows that already carry a transaction are left alone, so re-running is harmless.

    Returns:
        int: number of rows linked
    """
    linked = db.query(EventAttendee).filter(
        EventAttendee.user_id == user_id,
        EventAttendee.event_id == event_id,
        EventAttendee.is_deleted == False,  # noqa: E712
        EventAttendee.transaction_id.is_(None),
    ).update({EventAttendee.transaction_id: transaction_id}, synchronize_session="fetch")
    db.flush()
    return linked


def sweep_unlinked_attendees(db: Session) -> int:
    """Link paid attendee rows that are still unlinked to their succeeded EVENT transaction

    Returns:
        int: number of rows linked
    """
    pairs = db.query(EventAttendee.user_id, EventAttendee.event_id).filter(
        EventAttendee.transaction_id.is_(None),
        EventAttendee.is_deleted == False,  # noqa: E712
        EventAttendee.amount_paid > 0,
    ).distinct().all()

    total = 0
    for user_id, event_id in pairs:
        transaction = db.query(Transaction).filter(
            Transaction.user_id == user_id,
            Transaction.event_id == event_id,
            Transaction.type == TransactionType.EVENT.value,
            Transaction.status == TransactionStatus.SUCCEEDED.value,
            Transaction.is_deleted == False,  # noqa: E712
        ).order_by(Transaction.created_at.desc()).first()
        if not transaction:
            continue
        linked = link_attendees_to_transaction(user_id, event_id, transaction.id, db)
        if linked:
            logger.info(f"Backfilled {linked} attendees for user {user_id} on event {event_id} -> {transaction.id}")
            total += linked

    if total:
        attendees_linked_counter.labels(source="sweeper").inc(total)
    return total

# ============================================================================
# REQUEST PATHS
# ============================================================================

def register_attendees(
    buyer_id: str,
    event_id: str,
    attendees: List[Dict[str, Any]],
    stripe_payment_intent_id: Optional[str],
    db: Session,
) -> List[EventAttendee]:
    """Create attendee rows for a checkout, linking the transaction if it already exists

    Every row belongs to the buyer; guest tickets carry the guest's name.

    Raises:
        NotFoundError: event missing
        ConflictError: buyer is the host or already attending
        ValidationError: paid event without a payment intent, or a transaction for another buyer/event
    """
    event = db.query(Event).filter(Event.id == event_id, Event.is_deleted == False).first()  # noqa: E712
    if not event:
        raise NotFoundError("Event not found")
    if event.created_by == buyer_id:
        raise ConflictError("Hosts cannot register for their own event")

    already_attending = db.query(EventAttendee).filter(
        EventAttendee.event_id == event_id,
        EventAttendee.user_id == buyer_id,
        EventAttendee.is_deleted == False,  # noqa: E712
    ).first()
    if already_attending:
        raise ConflictError("You are already attending this event")

    if event.is_paid_event and not stripe_payment_intent_id:
        raise ValidationError("A payment is required for this event")

    transaction_id = None
    if stripe_payment_intent_id:
        transaction = get_transaction_by_payment_intent_id(stripe_payment_intent_id, db)
        if transaction:
            if transaction.user_id != buyer_id or transaction.event_id != event_id:
                raise ValidationError("Payment does not belong to this checkout")
            transaction_id = transaction.id
        else:
            logger.warning(
                f"No transaction yet for payment intent {stripe_payment_intent_id}; "
                f"attendees for user {buyer_id} on event {event_id} will be linked by the webhook"
            )

    rows = create_bulk_event_attendees(
        event_id,
        [dict(attendee, user_id=buyer_id) for attendee in attendees],
        transaction_id,
        db,
    )
    db.commit()
    for row in rows:
        db.refresh(row)

    if transaction_id:
        attendees_linked_counter.labels(source="checkout").inc(len(rows))
    logger.info(f"Registered {len(rows)} attendees for user {buyer_id} on event {event_id}")
    return rows


def refund_attendee(attendee_id: str, user_id: str, db: Session) -> EventAttendee:
    """Refund one attendee's ticket at Stripe

    The Transaction itself flips to REFUNDED when charge.refunded arrives.

    Raises:
        NotFoundError: attendee missing
        PermissionDeniedError: caller is not the event host
        ConflictError: already refunded
        ValidationError: nothing was paid, or no payment intent is linked
        GatewayError: Stripe rejected the refund
    """
    attendee = db.query(EventAttendee).filter(
        EventAttendee.id == attendee_id,
        EventAttendee.is_deleted == False,  # noqa: E712
    ).first()
    if not attendee:
        raise NotFoundError("Attendee not found")

    event = db.query(Event).filter(Event.id == attendee.event_id).first()
    if not event or event.created_by != user_id:
        raise PermissionDeniedError("Only the host can refund attendees")

    if attendee.payment_status == AttendeePaymentStatus.REFUNDED.value:
        raise ConflictError("Attendee has already been refunded")

    # One payment intent covers every ticket in a checkout, so the transaction may
    # already be REFUNDED after a partial refund of a sibling ticket
    transaction = attendee.transaction
    if not attendee.amount_paid or attendee.amount_paid <= 0 \
            or attendee.payment_status != AttendeePaymentStatus.SUCCEEDED.value \
            or not transaction or not transaction.stripe_payment_intent_id:
        raise ValidationError("Attendee has no refundable payment")

    try:
        stripe_service.create_refund(
            transaction.stripe_payment_intent_id,
            attendee.amount_paid,
            metadata={"event_id": str(attendee.event_id), "attendee_id": str(attendee.id)},
        )
    except stripe.StripeError as e:
        logger.error(f"Refund failed for attendee {attendee_id} on {transaction.stripe_payment_intent_id}: {e}")
        raise GatewayError("Payment provider rejected the refund")

    attendee.payment_status = AttendeePaymentStatus.REFUNDED.value
    db.commit()
    db.refresh(attendee)
    logger.info(f"Refunded {attendee.amount_paid} to attendee {attendee_id} on event {attendee.event_id}")
    return attendee
