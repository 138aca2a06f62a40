"""Platform subscription service

Platform plans live on the main Stripe account and are tracked separately from
creator subscriptions; nothing here reads or writes the creator tables.
"""
import logging
import stripe
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from eventhub.models.enums import SubscriptionStatus
from eventhub.models.platform_stripe_price import PlatformStripePrice
from eventhub.models.platform_subscription import PlatformSubscription
from eventhub.models.user import User
from eventhub.services import stripe_service
from eventhub.services.errors import GatewayError, NotFoundError, PermissionDeniedError
from eventhub.services.subscription_service import apply_subscription_changes

logger = logging.getLogger(__name__)
payments_logger = logging.getLogger("payments")


def get_platform_price(price_id: str, db: Session) -> Optional[PlatformStripePrice]:
    """Active, non-deleted platform price by local id"""
    return db.query(PlatformStripePrice).filter(
        PlatformStripePrice.id == price_id,
        PlatformStripePrice.active == True,  # noqa: E712
        PlatformStripePrice.is_deleted == False,  # noqa: E712
    ).first()


def get_platform_subscription_by_stripe_id(stripe_subscription_id: str, db: Session) -> Optional[PlatformSubscription]:
    return db.query(PlatformSubscription).filter(
        PlatformSubscription.stripe_subscription_id == stripe_subscription_id
    ).first()


def create_platform_subscription(data: Dict[str, Any], price: PlatformStripePrice, db: Session) -> PlatformSubscription:
    """Insert a platform subscription for a known platform price"""
    subscription = PlatformSubscription(
        platform_stripe_price_id=price.id,
        platform_stripe_product_id=price.platform_stripe_product_id,
        **data,
    )
    db.add(subscription)
    db.flush()
    payments_logger.info(
        f"Recorded platform subscription {subscription.stripe_subscription_id} "
        f"for user {subscription.user_id} on platform price {price.id}"
    )
    return subscription


def update_platform_subscription_by_stripe_id(
    stripe_subscription_id: str,
    changes: Dict[str, Any],
    db: Session,
) -> Optional[PlatformSubscription]:
    subscription = get_platform_subscription_by_stripe_id(stripe_subscription_id, db)
    if not subscription:
        return None
    if apply_subscription_changes(subscription, changes):
        db.flush()
    return subscription

# ============================================================================
# REQUEST PATHS
# ============================================================================

def create_platform_checkout(user_id: str, price_id: str, db: Session) -> Dict[str, str]:
    """Create a hosted checkout session for a platform plan

    Raises:
        NotFoundError: user or active platform price missing
        GatewayError: Stripe rejected a call
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")

    price = get_platform_price(price_id, db)
    if not price:
        raise NotFoundError("Plan price not found")

    try:
        customer = stripe_service.lookup_or_create_customer(user.email, user.name, user.id)
        customer_id = stripe_service.get_stripe_id(customer)
        session = stripe_service.create_subscription_checkout(
            customer_id=customer_id,
            stripe_price_id=price.stripe_price_id,
            price_id=price.id,
            user_id=user.id,
        )
    except stripe.StripeError as e:
        logger.error(f"Failed to create platform checkout for user {user_id} on price {price_id}: {e}")
        raise GatewayError("Payment provider rejected the checkout request")

    if user.stripe_customer_id != customer_id:
        user.stripe_customer_id = customer_id
        db.commit()

    return {
        "id": stripe_service.get_stripe_id(session),
        "url": stripe_service.get_stripe_value(session, "url"),
    }


def cancel_platform_subscription(subscription_id: str, user_id: str, db: Session) -> PlatformSubscription:
    """Cancel a platform subscription at period end

    Raises:
        NotFoundError: subscription missing
        PermissionDeniedError: caller does not own the subscription
        GatewayError: Stripe rejected the cancellation
    """
    subscription = db.query(PlatformSubscription).filter(PlatformSubscription.id == subscription_id).first()
    if not subscription:
        raise NotFoundError("Subscription not found")
    if subscription.user_id != user_id:
        raise PermissionDeniedError("You cannot cancel this subscription")
    if subscription.cancel_at_end_date or subscription.status == SubscriptionStatus.CANCELED.value:
        return subscription

    try:
        stripe_service.cancel_stripe_subscription(subscription.stripe_subscription_id)
    except stripe.StripeError as e:
        logger.error(f"Failed to cancel platform subscription {subscription.stripe_subscription_id}: {e}")
        raise GatewayError("Payment provider rejected the cancellation")

    subscription.cancel_at_end_date = True
    db.commit()
    db.refresh(subscription)
    logger.info(f"Platform subscription {subscription.stripe_subscription_id} set to cancel at period end")
    return subscription
