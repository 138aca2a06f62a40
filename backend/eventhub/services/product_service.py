"""Product and price mirrors

Local copies of Stripe products/prices, creator plan creation and the product
delete cascade. Mirror updates from webhooks only flush; request paths commit.
"""
import logging
import stripe
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Union

from sqlalchemy.orm import Session

from eventhub.core.metrics import gateway_failures_counter
from eventhub.models.enums import StripeAccountStatus, SubscriptionStatus
from eventhub.models.platform_stripe_price import PlatformStripePrice
from eventhub.models.platform_stripe_product import PlatformStripeProduct
from eventhub.models.stripe_price import StripePrice
from eventhub.models.stripe_product import StripeProduct
from eventhub.models.subscription import Subscription
from eventhub.models.user import User
from eventhub.services import stripe_service
from eventhub.services.errors import GatewayError, NotFoundError, PermissionDeniedError, ValidationError
from eventhub.services.stripe_service import get_stripe_value

logger = logging.getLogger(__name__)

AnyProduct = Union[StripeProduct, PlatformStripeProduct]
AnyPrice = Union[StripePrice, PlatformStripePrice]

# ============================================================================
# MIRROR LOOKUPS
# ============================================================================

def get_product_mirror(stripe_product_id: str, db: Session) -> Optional[AnyProduct]:
    """Creator mirror first, then platform mirror"""
    product = db.query(StripeProduct).filter(StripeProduct.stripe_product_id == stripe_product_id).first()
    if product:
        return product
    return db.query(PlatformStripeProduct).filter(
        PlatformStripeProduct.stripe_product_id == stripe_product_id
    ).first()


def get_price_mirror(stripe_price_id: str, db: Session) -> Optional[AnyPrice]:
    """Creator mirror first, then platform mirror"""
    price = db.query(StripePrice).filter(StripePrice.stripe_price_id == stripe_price_id).first()
    if price:
        return price
    return db.query(PlatformStripePrice).filter(
        PlatformStripePrice.stripe_price_id == stripe_price_id
    ).first()

# ============================================================================
# MIRROR UPDATES (webhook side)
# ============================================================================

def update_product_mirror(stripe_product: Any, db: Session) -> Optional[AnyProduct]:
    """Copy name/active/description from a Stripe product onto its mirror"""
    product = get_product_mirror(get_stripe_value(stripe_product, 'id'), db)
    if not product:
        return None

    product.name = get_stripe_value(stripe_product, 'name', product.name)
    product.active = bool(get_stripe_value(stripe_product, 'active', product.active))
    product.description = get_stripe_value(stripe_product, 'description')
    db.flush()
    return product


def soft_delete_product_mirror(stripe_product_id: str, db: Session) -> Optional[AnyProduct]:
    product = get_product_mirror(stripe_product_id, db)
    if not product:
        return None
    product.active = False
    product.is_deleted = True
    db.flush()
    return product


def update_price_active(stripe_price_id: str, active: bool, db: Session) -> Optional[AnyPrice]:
    """Only the active flag is mutable; amount, currency and interval are fixed at creation"""
    price = get_price_mirror(stripe_price_id, db)
    if not price:
        return None
    price.active = active
    db.flush()
    return price


def soft_delete_price_mirror(stripe_price_id: str, db: Session) -> Optional[AnyPrice]:
    price = get_price_mirror(stripe_price_id, db)
    if not price:
        return None
    price.active = False
    price.is_deleted = True
    db.flush()
    return price

# ============================================================================
# REQUEST PATHS
# ============================================================================

def create_creator_product(
    user_id: str,
    name: str,
    amount: Decimal,
    interval: str,
    db: Session,
    description: Optional[str] = None,
) -> StripeProduct:
    """Create a creator plan at Stripe and mirror it locally

    Raises:
        ValidationError: caller has no ACTIVE connect account
        GatewayError: Stripe rejected a call
    """
    owner = db.query(User).filter(User.id == user_id).first()
    if not owner or not owner.stripe_account_id or owner.stripe_account_status != StripeAccountStatus.ACTIVE.value:
        raise ValidationError("Connect your payout account before creating a plan")

    try:
        stripe_product = stripe_service.create_stripe_product(
            name=name,
            description=description,
            metadata={"user_id": str(owner.id)},
        )
        stripe_price = stripe_service.create_stripe_price(
            product_id=stripe_service.get_stripe_id(stripe_product),
            amount=amount,
            interval=interval,
        )
    except stripe.StripeError as e:
        logger.error(f"Failed to create Stripe product for user {user_id}: {e}")
        raise GatewayError("Payment provider rejected the plan")

    product = StripeProduct(
        stripe_product_id=stripe_service.get_stripe_id(stripe_product),
        user_id=owner.id,
        stripe_account_id=owner.stripe_account_id,
        name=name,
        description=description,
        active=True,
    )
    db.add(product)
    db.flush()

    db.add(StripePrice(
        product_id=product.id,
        stripe_price_id=stripe_service.get_stripe_id(stripe_price),
        amount=amount,
        currency=get_stripe_value(stripe_price, 'currency', 'usd'),
        interval=interval,
        active=True,
    ))
    db.commit()
    db.refresh(product)

    logger.info(f"Created creator product {product.id} ({product.stripe_product_id}) for user {user_id}")
    return product


def delete_creator_product(product_id: str, user_id: str, db: Session) -> StripeProduct:
    """Delete a creator plan.

    Stripe calls are best effort: a product that is deleted locally but still
    active remotely is the lesser failure, so gateway errors are logged and the
    local soft-delete proceeds. Each active subscription is cancelled on its own;
    one failure does not stop the rest.

    Raises:
        NotFoundError: product missing or already deleted
        PermissionDeniedError: caller does not own the product
    """
    product = db.query(StripeProduct).filter(
        StripeProduct.id == product_id,
        StripeProduct.is_deleted == False,  # noqa: E712
    ).first()
    if not product:
        raise NotFoundError("Product not found")
    if product.user_id != user_id:
        raise PermissionDeniedError("You cannot delete this product")

    try:
        stripe_service.archive_stripe_product(product.stripe_product_id)
    except Exception as e:
        gateway_failures_counter.labels(operation="archive_product").inc()
        logger.error(f"Failed to archive Stripe product {product.stripe_product_id}: {e}")

    prices = db.query(StripePrice).filter(
        StripePrice.product_id == product.id,
        StripePrice.is_deleted == False,  # noqa: E712
    ).all()

    for price in prices:
        try:
            stripe_service.update_stripe_price(price.stripe_price_id, active=False)
        except Exception as e:
            gateway_failures_counter.labels(operation="deactivate_price").inc()
            logger.error(f"Failed to deactivate Stripe price {price.stripe_price_id}: {e}")

    product.active = False
    product.is_deleted = True
    for price in prices:
        price.active = False
        price.is_deleted = True

    active_subscriptions = db.query(Subscription).filter(
        Subscription.product_id == product.id,
        Subscription.status == SubscriptionStatus.ACTIVE.value,
        Subscription.is_deleted == False,  # noqa: E712
    ).all()

    now = datetime.now(timezone.utc)
    for subscription in active_subscriptions:
        try:
            stripe_service.cancel_stripe_subscription(subscription.stripe_subscription_id)
            subscription.cancel_at_end_date = True
            subscription.canceled_at = now
            logger.info(f"Canceled subscription {subscription.stripe_subscription_id} for deleted product {product.id}")
        except Exception as e:
            gateway_failures_counter.labels(operation="cancel_subscription").inc()
            logger.error(
                f"Failed to cancel subscription {subscription.stripe_subscription_id} "
                f"for deleted product {product.id}: {e}"
            )

    db.commit()
    db.refresh(product)
    logger.info(f"Deleted product {product.id} with {len(prices)} prices and {len(active_subscriptions)} active subscriptions")
    return product
