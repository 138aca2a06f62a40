"""Creator subscription service

Ledger access for creator-plan subscriptions plus the two request paths that
touch them: starting a subscription (intent only, no local row) and cancelling.
"""
import logging
import stripe
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from sqlalchemy.orm import Session

from eventhub.models.enums import StripeAccountStatus, SubscriptionStatus
from eventhub.models.platform_subscription import PlatformSubscription
from eventhub.models.stripe_price import StripePrice
from eventhub.models.subscription import Subscription
from eventhub.models.user import User
from eventhub.services import stripe_service
from eventhub.services.errors import (
    ConflictError, GatewayError, NotFoundError, PermissionDeniedError, ValidationError
)

logger = logging.getLogger(__name__)
payments_logger = logging.getLogger("payments")

AnySubscription = Union[Subscription, PlatformSubscription]

# ============================================================================
# LEDGER ACCESS
# ============================================================================

def apply_subscription_changes(record: AnySubscription, changes: Dict[str, Any]) -> bool:
    """Apply webhook-driven changes to a creator or platform subscription row.

    CANCELED is terminal: a canceled row only accepts a first canceled_at.

    Returns:
        bool: True if any field was written
    """
    if record.status == SubscriptionStatus.CANCELED.value:
        if record.canceled_at is None and changes.get("canceled_at") is not None:
            record.canceled_at = changes["canceled_at"]
            return True
        logger.info(f"Subscription {record.stripe_subscription_id} is canceled; ignoring update")
        return False

    for field, value in changes.items():
        setattr(record, field, value)
    return True


def get_subscription_by_stripe_id(stripe_subscription_id: str, db: Session) -> Optional[Subscription]:
    return db.query(Subscription).filter(
        Subscription.stripe_subscription_id == stripe_subscription_id,
        Subscription.is_deleted == False,  # noqa: E712
    ).first()


def create_subscription(data: Dict[str, Any], db: Session) -> Subscription:
    subscription = Subscription(**data)
    db.add(subscription)
    db.flush()
    payments_logger.info(
        f"Recorded creator subscription {subscription.stripe_subscription_id} "
        f"for user {subscription.user_id} on product {subscription.product_id}"
    )
    return subscription


def update_subscription_by_stripe_id(
    stripe_subscription_id: str,
    changes: Dict[str, Any],
    db: Session,
) -> Optional[Subscription]:
    subscription = get_subscription_by_stripe_id(stripe_subscription_id, db)
    if not subscription:
        return None
    if apply_subscription_changes(subscription, changes):
        db.flush()
    return subscription


def get_active_subscription_for_product(user_id: str, product_id: str, db: Session) -> Optional[Subscription]:
    """Most recent ACTIVE subscription a user holds on a product"""
    return db.query(Subscription).filter(
        Subscription.user_id == user_id,
        Subscription.product_id == product_id,
        Subscription.status == SubscriptionStatus.ACTIVE.value,
        Subscription.is_deleted == False,  # noqa: E712
    ).order_by(Subscription.created_at.desc()).first()

# ============================================================================
# REQUEST PATHS
# ============================================================================

def create_subscription_intent(user_id: str, price_id: str, db: Session) -> Dict[str, Any]:
    """Start a creator subscription and return the secret the client confirms.

    No local row is written; invoice.payment_succeeded records the subscription
    once the first payment clears, using the metadata attached here.

    Args:
        user_id: Subscriber's user id
        price_id: Local StripePrice id
        db: Database session

    Returns:
        dict with stripe_subscription_id, client_secret and status

    Raises:
        NotFoundError: price, product or user missing
        ValidationError: owner cannot receive payouts, or self-subscription
        ConflictError: an ACTIVE subscription to this product already exists
        GatewayError: Stripe rejected a call
    """
    price = db.query(StripePrice).filter(
        StripePrice.id == price_id,
        StripePrice.active == True,  # noqa: E712
        StripePrice.is_deleted == False,  # noqa: E712
    ).first()
    if not price or not price.product or price.product.is_deleted or not price.product.active:
        raise NotFoundError("Price not found")

    product = price.product
    owner = db.query(User).filter(User.id == product.user_id).first()
    if not owner or not owner.stripe_account_id or owner.stripe_account_status != StripeAccountStatus.ACTIVE.value:
        raise ValidationError("Plan owner cannot accept payments yet")
    if owner.id == user_id:
        raise ValidationError("You cannot subscribe to your own plan")

    subscriber = db.query(User).filter(User.id == user_id).first()
    if not subscriber:
        raise NotFoundError("User not found")

    if get_active_subscription_for_product(user_id, product.id, db):
        raise ConflictError("You already have an active subscription to this plan")

    metadata = {
        "user_id": str(subscriber.id),
        "owner_id": str(owner.id),
        "price_id": str(price.id),
        "product_id": str(product.id),
    }

    try:
        customer = stripe_service.lookup_or_create_customer(subscriber.email, subscriber.name, subscriber.id)
        customer_id = stripe_service.get_stripe_id(customer)
        subscription = stripe_service.create_subscription_payment_intent(
            customer_id=customer_id,
            stripe_price_id=price.stripe_price_id,
            destination_account_id=owner.stripe_account_id,
            metadata=metadata,
        )
    except stripe.StripeError as e:
        logger.error(f"Failed to create subscription intent for user {user_id} on price {price_id}: {e}")
        raise GatewayError("Payment provider rejected the subscription request")

    if subscriber.stripe_customer_id != customer_id:
        subscriber.stripe_customer_id = customer_id
        db.commit()

    stripe_subscription_id = stripe_service.get_stripe_id(subscription)
    logger.info(f"Created subscription intent {stripe_subscription_id} for user {user_id} on product {product.id}")
    return {
        "stripe_subscription_id": stripe_subscription_id,
        "client_secret": stripe_service.get_subscription_client_secret(subscription),
        "status": stripe_service.get_stripe_value(subscription, "status"),
    }


def cancel_subscription(subscription_id: str, user_id: str, db: Session) -> Subscription:
    """Cancel a creator subscription at period end.

    The status flip arrives later through customer.subscription.updated/deleted;
    only cancel_at_end_date and canceled_at are written here.

    Raises:
        NotFoundError: subscription missing
        PermissionDeniedError: caller is neither subscriber nor owner
        GatewayError: Stripe rejected the cancellation
    """
    subscription = db.query(Subscription).filter(
        Subscription.id == subscription_id,
        Subscription.is_deleted == False,  # noqa: E712
    ).first()
    if not subscription:
        raise NotFoundError("Subscription not found")

    if user_id not in (subscription.user_id, subscription.owner_id):
        raise PermissionDeniedError("You cannot cancel this subscription")

    if subscription.cancel_at_end_date or subscription.status == SubscriptionStatus.CANCELED.value:
        logger.info(f"Subscription {subscription.stripe_subscription_id} already canceled or set to cancel")
        return subscription

    try:
        stripe_service.cancel_stripe_subscription(subscription.stripe_subscription_id)
    except stripe.StripeError as e:
        logger.error(f"Failed to cancel Stripe subscription {subscription.stripe_subscription_id}: {e}")
        raise GatewayError("Payment provider rejected the cancellation")

    subscription.cancel_at_end_date = True
    subscription.canceled_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(subscription)

    logger.info(f"Subscription {subscription.stripe_subscription_id} set to cancel at period end by user {user_id}")
    return subscription
