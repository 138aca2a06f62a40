"""Payment service - ticket payment intents

Nothing is written locally here. The metadata attached to the intent comes back
on payment_intent.succeeded, which is where the Transaction gets recorded.
"""
import logging
import stripe
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Tuple

from sqlalchemy.orm import Session

from eventhub.models.enums import StripeAccountStatus
from eventhub.models.event import Event
from eventhub.models.user import User
from eventhub.services import stripe_service
from eventhub.services.errors import GatewayError, NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)


def _parse_amounts(total, subtotal) -> Tuple[Decimal, Decimal]:
    try:
        total = Decimal(str(total))
        subtotal = Decimal(str(subtotal))
    except InvalidOperation:
        raise ValidationError("Amounts must be numbers")
    if subtotal <= 0:
        raise ValidationError("Subtotal must be greater than zero")
    if total < subtotal:
        raise ValidationError("Total cannot be less than subtotal")
    return total, subtotal


def _payable_event(event_id: str, db: Session) -> Tuple[Event, User]:
    """Event plus a host that can receive transfers"""
    event = db.query(Event).filter(Event.id == event_id, Event.is_deleted == False).first()  # noqa: E712
    if not event:
        raise NotFoundError("Event not found")

    host = db.query(User).filter(User.id == event.created_by).first()
    if not host or not host.stripe_account_id or host.stripe_account_status != StripeAccountStatus.ACTIVE.value:
        raise ValidationError("Event host cannot accept payments yet")
    return event, host


def _intent_metadata(event_id: str, user_id: str, total: Decimal, subtotal: Decimal) -> Dict[str, str]:
    return {
        "event_id": str(event_id),
        "user_id": str(user_id),
        "total": str(total),
        "subtotal": str(subtotal),
    }


def _intent_response(intent: Any) -> Dict[str, Any]:
    return {
        "id": stripe_service.get_stripe_id(intent),
        "client_secret": stripe_service.get_stripe_value(intent, "client_secret"),
        "amount": stripe_service.get_stripe_value(intent, "amount"),
        "status": stripe_service.get_stripe_value(intent, "status"),
    }


def create_ticket_payment_intent(user_id: str, event_id: str, total, subtotal, db: Session) -> Dict[str, Any]:
    """Create a payment intent charging `total` with `subtotal` routed to the host.

    Args:
        user_id: Buyer
        event_id: Event the tickets are for
        total: Amount charged to the buyer, in dollars, fees included
        subtotal: Ticket amount transferred to the host, in dollars
        db: Database session

    Returns:
        dict with id, client_secret, amount (cents) and status

    Raises:
        NotFoundError: event missing
        ValidationError: bad amounts or host not onboarded
        GatewayError: Stripe rejected the call
    """
    total, subtotal = _parse_amounts(total, subtotal)
    event, host = _payable_event(event_id, db)

    buyer = db.query(User).filter(User.id == user_id).first()
    try:
        intent = stripe_service.create_payment_intent(
            total=total,
            subtotal=subtotal,
            destination_account_id=host.stripe_account_id,
            metadata=_intent_metadata(event.id, user_id, total, subtotal),
            customer_id=buyer.stripe_customer_id if buyer else None,
        )
    except stripe.StripeError as e:
        logger.error(f"Failed to create payment intent for user {user_id} on event {event_id}: {e}")
        raise GatewayError("Payment provider rejected the payment request")

    logger.info(f"Created payment intent {stripe_service.get_stripe_id(intent)} for user {user_id} on event {event_id}: {total}")
    return _intent_response(intent)


def update_ticket_payment_intent(
    payment_intent_id: str,
    user_id: str,
    event_id: str,
    total,
    subtotal,
    db: Session,
) -> Dict[str, Any]:
    """Change the amounts on an unconfirmed ticket payment intent; same checks as create

    Only the buyer recorded in the intent's metadata may update it, since that
    user_id decides who owns the Transaction the webhook records.

    Raises:
        PermissionDeniedError: the intent was not created for this user
    """
    total, subtotal = _parse_amounts(total, subtotal)
    event, _host = _payable_event(event_id, db)

    try:
        existing = stripe_service.retrieve_payment_intent(payment_intent_id)
    except stripe.StripeError as e:
        logger.error(f"Failed to retrieve payment intent {payment_intent_id}: {e}")
        raise GatewayError("Payment provider rejected the payment update")

    owner_id = stripe_service.get_stripe_value(stripe_service.get_stripe_value(existing, "metadata", {}), "user_id")
    if str(owner_id) != str(user_id):
        logger.warning(f"User {user_id} tried to update payment intent {payment_intent_id} owned by {owner_id}")
        raise PermissionDeniedError("You cannot update this payment")

    try:
        intent = stripe_service.update_payment_intent(
            payment_intent_id,
            total=total,
            subtotal=subtotal,
            metadata=_intent_metadata(event.id, user_id, total, subtotal),
        )
    except stripe.StripeError as e:
        logger.error(f"Failed to update payment intent {payment_intent_id}: {e}")
        raise GatewayError("Payment provider rejected the payment update")

    logger.info(f"Updated payment intent {payment_intent_id} for user {user_id} on event {event_id}: {total}")
    return _intent_response(intent)
