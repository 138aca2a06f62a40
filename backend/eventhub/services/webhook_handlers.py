"""Stripe webhook reconciliation handlers

One handler per event type. Each looks up the local record by the Stripe id,
creates it only for creation/success events, and otherwise updates just the
fields its event type owns. Handlers flush but never commit; the dispatcher
wraps each delivery in a single transaction.
"""
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from eventhub.core.config import settings
from eventhub.core.metrics import (
    attendees_linked_counter, subscriptions_recorded_counter, transactions_recorded_counter
)
from eventhub.models.enums import SubscriptionStatus, TransactionStatus, TransactionType
from eventhub.models.event import Event
from eventhub.models.platform_stripe_product import PlatformStripeProduct
from eventhub.models.platform_subscription import PlatformSubscription
from eventhub.models.stripe_product import StripeProduct
from eventhub.services import (
    attendee_service,
    notification_service,
    platform_subscription_service,
    product_service,
    stripe_service,
    subscription_service,
    transaction_service,
    user_service,
)
from eventhub.services.stripe_service import get_stripe_id, get_stripe_value, to_dollars

logger = logging.getLogger(__name__)


class WebhookHandlerError(Exception):
    """A delivery that cannot be reconciled; the delivery rolls back and Stripe redelivers"""


class MissingMetadataError(WebhookHandlerError):
    """Correlation ids expected on a Stripe object are absent"""

# ============================================================================
# PAYLOAD HELPERS
# ============================================================================

def _timestamp(value) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value else None


def _is_platform(metadata: Any) -> bool:
    return str(get_stripe_value(metadata, 'is_platform', '')).lower() == 'true'


def _require_metadata(metadata: Any, keys: Iterable[str], source: str) -> Dict[str, str]:
    values = {key: get_stripe_value(metadata, key) for key in keys}
    missing = [key for key, value in values.items() if not value]
    if missing:
        logger.error(f"Missing metadata {missing} on {source}")
        raise MissingMetadataError(f"Missing metadata {', '.join(missing)} on {source}")
    return {key: str(value) for key, value in values.items()}


def _as_payload(obj: Any) -> Dict[str, Any]:
    """Plain JSON-safe copy of a Stripe object for the audit column"""
    if not isinstance(obj, dict) and hasattr(obj, "to_dict"):
        obj = obj.to_dict()
    return json.loads(json.dumps(obj, default=str))


def _first_line(invoice: Any) -> Any:
    lines = get_stripe_value(get_stripe_value(invoice, 'lines'), 'data', [])
    return lines[0] if lines else None


def _invoice_subscription_id(invoice: Any) -> Optional[str]:
    """Subscription id across invoice API versions (top-level, parent details, or first line)"""
    subscription = get_stripe_value(invoice, 'subscription')
    if not subscription:
        details = get_stripe_value(get_stripe_value(invoice, 'parent'), 'subscription_details')
        subscription = get_stripe_value(details, 'subscription')
    if not subscription:
        subscription = get_stripe_value(_first_line(invoice), 'subscription')
    return get_stripe_id(subscription) if subscription else None


def _invoice_payment_intent_id(invoice: Any) -> Optional[str]:
    """Payment intent id across invoice API versions (top-level or invoice payments list)"""
    payment_intent = get_stripe_value(invoice, 'payment_intent')
    if not payment_intent:
        payments = get_stripe_value(get_stripe_value(invoice, 'payments'), 'data', [])
        if payments:
            payment_intent = get_stripe_value(get_stripe_value(payments[0], 'payment'), 'payment_intent')
    return get_stripe_id(payment_intent) if payment_intent else None


def _invoice_period(invoice: Any) -> Tuple[Optional[datetime], Optional[datetime]]:
    period = get_stripe_value(_first_line(invoice), 'period', {})
    return _timestamp(get_stripe_value(period, 'start')), _timestamp(get_stripe_value(period, 'end'))


def _subscription_period(subscription: Any) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Current period from the subscription, or from its first item on newer API versions"""
    start = get_stripe_value(subscription, 'current_period_start')
    end = get_stripe_value(subscription, 'current_period_end')
    if not start or not end:
        items = get_stripe_value(get_stripe_value(subscription, 'items'), 'data', [])
        if items:
            start = start or get_stripe_value(items[0], 'current_period_start')
            end = end or get_stripe_value(items[0], 'current_period_end')
    return _timestamp(start), _timestamp(end)


def _payment_method_type(payment_intent: Any) -> Optional[str]:
    types = get_stripe_value(payment_intent, 'payment_method_types', [])
    return types[0] if types else None

# ============================================================================
# PRODUCT & PRICE MIRRORS
# ============================================================================

def handle_product_updated(product: Any, db: Session):
    record = product_service.update_product_mirror(product, db)
    if not record:
        logger.warning(f"Product {get_stripe_id(product)} not found locally, skipping update")
        return
    logger.info(f"Product {record.stripe_product_id} mirror updated (active={record.active})")


def handle_product_deleted(product: Any, db: Session):
    record = product_service.soft_delete_product_mirror(get_stripe_id(product), db)
    if not record:
        logger.warning(f"Product {get_stripe_id(product)} not found locally, skipping delete")
        return
    logger.info(f"Product {record.stripe_product_id} soft-deleted")


def handle_price_updated(price: Any, db: Session):
    record = product_service.update_price_active(get_stripe_id(price), bool(get_stripe_value(price, 'active', False)), db)
    if not record:
        logger.info(f"Price {get_stripe_id(price)} not found locally, skipping update")
        return
    logger.info(f"Price {record.stripe_price_id} active={record.active}")


def handle_price_deleted(price: Any, db: Session):
    record = product_service.soft_delete_price_mirror(get_stripe_id(price), db)
    if not record:
        logger.info(f"Price {get_stripe_id(price)} not found locally, skipping delete")
        return
    logger.info(f"Price {record.stripe_price_id} soft-deleted")

# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

def _plan_name(record, db: Session) -> str:
    if isinstance(record, PlatformSubscription):
        product = db.query(PlatformStripeProduct).filter(
            PlatformStripeProduct.id == record.platform_stripe_product_id
        ).first()
    else:
        product = db.query(StripeProduct).filter(StripeProduct.id == record.product_id).first()
    return product.name if product else "your plan"


def handle_subscription_updated(subscription: Any, db: Session):
    """Mirror status, cancel flags and period dates onto the matching row"""
    stripe_subscription_id = get_stripe_id(subscription)
    is_platform = _is_platform(get_stripe_value(subscription, 'metadata', {}))

    changes = {
        "status": stripe_service.get_subscription_status(get_stripe_value(subscription, 'status')),
        "cancel_at_end_date": bool(get_stripe_value(subscription, 'cancel_at_period_end', False)),
        "canceled_at": _timestamp(get_stripe_value(subscription, 'canceled_at')),
    }
    start_date, end_date = _subscription_period(subscription)
    if start_date:
        changes["start_date"] = start_date
    if end_date:
        changes["end_date"] = end_date

    if is_platform:
        record = platform_subscription_service.update_platform_subscription_by_stripe_id(stripe_subscription_id, changes, db)
    else:
        record = subscription_service.update_subscription_by_stripe_id(stripe_subscription_id, changes, db)

    kind = "Platform subscription" if is_platform else "Subscription"
    if not record:
        logger.warning(f"{kind} {stripe_subscription_id} not found locally, skipping update")
        return
    logger.info(f"{kind} {stripe_subscription_id} updated (status={record.status})")


def handle_subscription_deleted(subscription: Any, db: Session):
    """Force the matching row to CANCELED"""
    stripe_subscription_id = get_stripe_id(subscription)
    is_platform = _is_platform(get_stripe_value(subscription, 'metadata', {}))

    if is_platform:
        record = platform_subscription_service.get_platform_subscription_by_stripe_id(stripe_subscription_id, db)
    else:
        record = subscription_service.get_subscription_by_stripe_id(stripe_subscription_id, db)

    kind = "Platform subscription" if is_platform else "Subscription"
    if not record:
        logger.warning(f"{kind} {stripe_subscription_id} not found locally for deletion")
        return

    was_canceled = record.status == SubscriptionStatus.CANCELED.value
    subscription_service.apply_subscription_changes(record, {
        "status": SubscriptionStatus.CANCELED.value,
        "canceled_at": datetime.now(timezone.utc),
        "cancel_at_end_date": False,
    })
    db.flush()

    if not was_canceled:
        notification_service.notify_subscription_canceled(record.user_id, _plan_name(record, db), db)
    logger.info(f"{kind} {stripe_subscription_id} marked as canceled")


def handle_invoice_payment_succeeded(invoice: Any, db: Session):
    """Record the subscription on its first paid invoice and each billing cycle's transaction"""
    stripe_subscription_id = _invoice_subscription_id(invoice)
    if not stripe_subscription_id:
        logger.info(f"Invoice {get_stripe_id(invoice)} is not for a subscription, skipping")
        return

    subscription = stripe_service.retrieve_subscription(stripe_subscription_id)
    metadata = get_stripe_value(subscription, 'metadata', {})

    # Platform and creator subscriptions live in disjoint tables; decide before any lookup
    if _is_platform(metadata):
        _record_platform_invoice(stripe_subscription_id, subscription, metadata, invoice, db)
    else:
        _record_creator_invoice(stripe_subscription_id, subscription, metadata, invoice, db)


def _record_creator_invoice(stripe_subscription_id: str, subscription: Any, metadata: Any, invoice: Any, db: Session):
    ids = _require_metadata(
        metadata, ("user_id", "owner_id", "product_id", "price_id"), f"subscription {stripe_subscription_id}"
    )
    period_start, period_end = _invoice_period(invoice)
    status = stripe_service.get_subscription_status(get_stripe_value(subscription, 'status'))
    payment_intent_id = _invoice_payment_intent_id(invoice)

    existing = subscription_service.get_subscription_by_stripe_id(stripe_subscription_id, db)
    if existing:
        logger.info(f"Subscription {stripe_subscription_id} already exists, updating billing period")
        changes = {"status": status}
        if period_end:
            changes["end_date"] = period_end
        subscription_service.apply_subscription_changes(existing, changes)
        db.flush()
        if payment_intent_id:
            _record_subscription_transaction(payment_intent_id, ids, invoice, db)
        return

    if not payment_intent_id:
        logger.error(f"Payment intent not found on invoice {get_stripe_id(invoice)}")
        raise WebhookHandlerError(f"Payment intent not found on invoice {get_stripe_id(invoice)}")

    record = subscription_service.create_subscription({
        "user_id": ids["user_id"],
        "owner_id": ids["owner_id"],
        "product_id": ids["product_id"],
        "price_id": ids["price_id"],
        "stripe_subscription_id": stripe_subscription_id,
        "status": status,
        "start_date": period_start,
        "end_date": period_end,
        "cancel_at_end_date": bool(get_stripe_value(subscription, 'cancel_at_period_end', False)),
        "canceled_at": _timestamp(get_stripe_value(subscription, 'canceled_at')),
    }, db)
    subscriptions_recorded_counter.labels(kind="creator").inc()

    _record_subscription_transaction(payment_intent_id, ids, invoice, db)
    notification_service.notify_subscription_started(record.user_id, _plan_name(record, db), db)


def _record_subscription_transaction(payment_intent_id: str, ids: Dict[str, str], invoice: Any, db: Session):
    """Companion transaction for one paid creator invoice, skipped if already recorded"""
    if transaction_service.get_transaction_by_payment_intent_id(payment_intent_id, db):
        logger.info(f"Transaction for payment intent {payment_intent_id} already exists, skipping")
        return

    payment_intent = stripe_service.retrieve_payment_intent(payment_intent_id)
    amount = to_dollars(get_stripe_value(invoice, 'amount_paid', 0))
    transfer_amount = (amount * Decimal(settings.CREATOR_PAYOUT_PERCENT) / 100).quantize(Decimal("0.01"))

    transaction_service.create_transaction({
        "type": TransactionType.SUBSCRIPTION.value,
        "stripe_payment_intent_id": payment_intent_id,
        "amount": amount,
        "currency": get_stripe_value(invoice, 'currency', 'usd'),
        "status": TransactionStatus.SUCCEEDED.value,
        "user_id": ids["user_id"],
        "host_user_id": ids["owner_id"],
        "product_id": ids["product_id"],
        "price_id": ids["price_id"],
        "transfer_amount": transfer_amount,
        "payment_method": _payment_method_type(payment_intent),
        "stripe_metadata": _as_payload(invoice),
    }, db)
    transactions_recorded_counter.labels(type=TransactionType.SUBSCRIPTION.value).inc()


def _record_platform_invoice(stripe_subscription_id: str, subscription: Any, metadata: Any, invoice: Any, db: Session):
    ids = _require_metadata(metadata, ("user_id", "price_id"), f"platform subscription {stripe_subscription_id}")
    period_start, period_end = _invoice_period(invoice)
    status = stripe_service.get_subscription_status(get_stripe_value(subscription, 'status'))

    existing = platform_subscription_service.get_platform_subscription_by_stripe_id(stripe_subscription_id, db)
    if existing:
        logger.info(f"Platform subscription {stripe_subscription_id} already exists, updating billing period")
        changes = {"status": status}
        if period_start:
            changes["start_date"] = period_start
        if period_end:
            changes["end_date"] = period_end
        subscription_service.apply_subscription_changes(existing, changes)
        db.flush()
        return

    price = platform_subscription_service.get_platform_price(ids["price_id"], db)
    if not price:
        logger.info(f"Price {ids['price_id']} is not a platform price, skipping platform subscription creation")
        return

    record = platform_subscription_service.create_platform_subscription({
        "user_id": ids["user_id"],
        "stripe_subscription_id": stripe_subscription_id,
        "status": status,
        "start_date": period_start,
        "end_date": period_end,
        "cancel_at_end_date": bool(get_stripe_value(subscription, 'cancel_at_period_end', False)),
    }, price, db)
    subscriptions_recorded_counter.labels(kind="platform").inc()
    notification_service.notify_subscription_started(record.user_id, _plan_name(record, db), db)

# ============================================================================
# TICKET PAYMENTS & REFUNDS
# ============================================================================

def handle_payment_intent_succeeded(payment_intent: Any, db: Session):
    """Record a ticket purchase and link the buyer's attendee rows to it"""
    payment_intent_id = get_stripe_id(payment_intent)
    metadata = get_stripe_value(payment_intent, 'metadata', {})
    event_id = get_stripe_value(metadata, 'event_id')
    user_id = get_stripe_value(metadata, 'user_id')

    if not event_id or not user_id:
        # Subscription invoices also produce payment intents; those carry no ticket metadata
        logger.info(f"Payment intent {payment_intent_id} is not a ticket purchase, skipping")
        return
    event_id, user_id = str(event_id), str(user_id)

    transaction = transaction_service.get_transaction_by_payment_intent_id(payment_intent_id, db)
    if transaction:
        logger.info(f"Transaction for payment intent {payment_intent_id} already exists, skipping creation")
    else:
        event = db.query(Event).filter(Event.id == event_id).first()
        if not event:
            logger.warning(f"Event {event_id} for payment intent {payment_intent_id} not found locally")

        transfer_data = get_stripe_value(payment_intent, 'transfer_data')
        transfer_cents = get_stripe_value(transfer_data, 'amount')

        transaction = transaction_service.create_transaction({
            "type": TransactionType.EVENT.value,
            "stripe_payment_intent_id": payment_intent_id,
            "amount": to_dollars(get_stripe_value(payment_intent, 'amount', 0)),
            "currency": get_stripe_value(payment_intent, 'currency', 'usd'),
            "status": TransactionStatus.SUCCEEDED.value,
            "user_id": user_id,
            "event_id": event_id,
            "host_user_id": event.created_by if event else None,
            "transfer_amount": to_dollars(transfer_cents) if transfer_cents is not None else None,
            "payment_method": _payment_method_type(payment_intent),
            "stripe_metadata": _as_payload(payment_intent),
        }, db)
        transactions_recorded_counter.labels(type=TransactionType.EVENT.value).inc()
        notification_service.notify_ticket_purchase(transaction, db)

    linked = attendee_service.link_attendees_to_transaction(user_id, event_id, transaction.id, db)
    if linked:
        attendees_linked_counter.labels(source="webhook").inc(linked)
    logger.info(f"Linked {linked} attendees for user {user_id} on event {event_id} to transaction {transaction.id}")


def handle_charge_refunded(charge: Any, db: Session):
    """Mark the transaction REFUNDED; a full refund of a subscription payment cancels the subscription.

    Ticket refunds never touch attendee rows; a refunded attendee can still attend.
    """
    payment_intent_id = get_stripe_id(get_stripe_value(charge, 'payment_intent'))
    if not payment_intent_id:
        logger.info(f"Charge {get_stripe_id(charge)} has no payment intent, skipping")
        return

    transaction = transaction_service.get_transaction_by_payment_intent_id(payment_intent_id, db)
    if not transaction:
        logger.warning(f"Transaction for payment intent {payment_intent_id} not found locally")
        return

    amount = get_stripe_value(charge, 'amount', 0)
    amount_refunded = get_stripe_value(charge, 'amount_refunded', 0)
    # >= tolerates refunds that sum past the original amount after rounding
    is_fully_refunded = amount_refunded >= amount

    if transaction.status != TransactionStatus.REFUNDED.value:
        transaction.status = TransactionStatus.REFUNDED.value
        db.flush()
    logger.info(
        f"Transaction {transaction.id} refunded "
        f"({'full' if is_fully_refunded else 'partial'}: {amount_refunded}/{amount})"
    )

    if not is_fully_refunded or transaction.type != TransactionType.SUBSCRIPTION.value or not transaction.product_id:
        return

    subscription = subscription_service.get_active_subscription_for_product(
        transaction.user_id, transaction.product_id, db
    )
    if not subscription:
        logger.info(f"No active subscription for user {transaction.user_id} on product {transaction.product_id}")
        return

    subscription.status = SubscriptionStatus.CANCELED.value
    subscription.canceled_at = datetime.now(timezone.utc)
    db.flush()
    notification_service.notify_subscription_canceled(subscription.user_id, _plan_name(subscription, db), db)
    logger.info(f"Subscription {subscription.stripe_subscription_id} canceled after full refund")

# ============================================================================
# CONNECTED ACCOUNTS
# ============================================================================

def handle_account_updated(account: Any, db: Session):
    """Store the connect account id and its derived status on the owning user"""
    account_id = get_stripe_id(account)
    user_id = get_stripe_value(get_stripe_value(account, 'metadata', {}), 'userId')
    if not user_id:
        # Accounts created outside onboarding carry no userId; redelivery cannot fix that
        logger.warning(f"Connected account {account_id} has no userId metadata, skipping")
        return

    status = stripe_service.get_account_status(account)
    user = user_service.update_user(str(user_id), {
        "stripe_account_id": account_id,
        "stripe_account_status": status,
    }, db)
    if not user:
        logger.warning(f"User {user_id} for connected account {account_id} not found locally")
        return
    logger.info(f"Connected account {account_id} for user {user_id} is {status}")
