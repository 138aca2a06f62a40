"""Stripe gateway client

Thin wrappers over the Stripe SDK used by the request paths and the webhook
handlers, plus the pure status derivations applied to Stripe objects.
"""
import logging
import stripe
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from eventhub.core.config import settings
from eventhub.models.enums import StripeAccountStatus, SubscriptionStatus

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY

# ============================================================================
# STRIPE OBJECT ACCESS HELPERS
# ============================================================================

def get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access).

    Key lookup wins for mappings and Stripe objects so keys such as 'items'
    never resolve to dict methods.
    """
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key, default)
    elif isinstance(obj, stripe.StripeObject):
        value = obj[key] if key in obj else default
    else:
        value = getattr(obj, key, default)
    return default if value is None else value


def get_stripe_id(obj: Any) -> Optional[str]:
    """Return the id of an expandable field, whether it arrived as a string or an object"""
    if obj is None or isinstance(obj, str):
        return obj
    return get_stripe_value(obj, 'id')


def to_cents(amount) -> int:
    """Convert a dollar amount to integer cents"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_dollars(cents) -> Decimal:
    """Convert integer cents to a two-decimal dollar amount"""
    return (Decimal(cents or 0) / 100).quantize(Decimal("0.01"))

# ============================================================================
# STATUS DERIVATIONS
# ============================================================================

_SUBSCRIPTION_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.UNPAID,
    "incomplete": SubscriptionStatus.INCOMPLETE,
}


def get_subscription_status(status: Optional[str]) -> str:
    """Map a Stripe subscription status onto the local vocabulary (unknown -> unpaid)"""
    return _SUBSCRIPTION_STATUS_MAP.get(status, SubscriptionStatus.UNPAID).value


def get_account_status(account: Any) -> str:
    """Derive the local connect-account status from a Stripe account.

    Fully active wins outright; then submitted-but-incomplete is pending;
    then outstanding requirements; then reported errors.
    """
    details_submitted = bool(get_stripe_value(account, 'details_submitted', False))
    charges_enabled = bool(get_stripe_value(account, 'charges_enabled', False))
    payouts_enabled = bool(get_stripe_value(account, 'payouts_enabled', False))

    if details_submitted and charges_enabled and payouts_enabled:
        return StripeAccountStatus.ACTIVE.value
    if details_submitted:
        return StripeAccountStatus.PENDING_VERIFICATION.value

    requirements = get_stripe_value(account, 'requirements', {})
    if get_stripe_value(requirements, 'currently_due', []):
        return StripeAccountStatus.ACTION_REQUIRED.value
    if get_stripe_value(requirements, 'errors', []):
        return StripeAccountStatus.ERROR.value

    return StripeAccountStatus.PENDING_VERIFICATION.value

# ============================================================================
# PRODUCTS & PRICES
# ============================================================================

def create_stripe_product(name: str, description: Optional[str] = None, metadata: Optional[Dict] = None):
    params = {"name": name, "metadata": metadata or {}}
    if description:
        params["description"] = description
    return stripe.Product.create(**params)


def retrieve_stripe_product(product_id: str):
    return stripe.Product.retrieve(product_id)


def update_stripe_product(product_id: str, **fields):
    return stripe.Product.modify(product_id, **fields)


def archive_stripe_product(product_id: str):
    """Archive a product (Stripe keeps products with prices; they can only be deactivated)"""
    return stripe.Product.modify(product_id, active=False)


def create_stripe_price(product_id: str, amount, interval: str, currency: Optional[str] = None):
    return stripe.Price.create(
        product=product_id,
        unit_amount=to_cents(amount),
        currency=currency or settings.STRIPE_CURRENCY,
        recurring={"interval": interval},
    )


def list_stripe_prices(product_id: str) -> List[Any]:
    prices = stripe.Price.list(product=product_id, limit=100)
    return list(get_stripe_value(prices, 'data', []))


def update_stripe_price(price_id: str, active: bool):
    return stripe.Price.modify(price_id, active=active)

# ============================================================================
# PAYMENT INTENTS (ticket purchases)
# ============================================================================

def create_payment_intent(
    total,
    subtotal,
    destination_account_id: str,
    metadata: Dict[str, str],
    customer_id: Optional[str] = None,
):
    """Create a ticket payment intent.

    The buyer is charged `total`; `subtotal` is transferred to the host's connect
    account and the difference stays with the platform as its fee.

    Args:
        total: Amount charged to the buyer, in dollars
        subtotal: Amount transferred to the host, in dollars
        destination_account_id: Host's connect account id
        metadata: Correlation ids echoed back on payment_intent.succeeded
        customer_id: Optional Stripe customer to attach
    """
    params = {
        "amount": to_cents(total),
        "currency": settings.STRIPE_CURRENCY,
        "automatic_payment_methods": {"enabled": True},
        "transfer_data": {
            "amount": to_cents(subtotal),
            "destination": destination_account_id,
        },
        "metadata": metadata,
    }
    if customer_id:
        params["customer"] = customer_id
    return stripe.PaymentIntent.create(**params)


def update_payment_intent(payment_intent_id: str, total, subtotal, metadata: Dict[str, str]):
    return stripe.PaymentIntent.modify(
        payment_intent_id,
        amount=to_cents(total),
        transfer_data={"amount": to_cents(subtotal)},
        metadata=metadata,
    )


def retrieve_payment_intent(payment_intent_id: str):
    return stripe.PaymentIntent.retrieve(payment_intent_id)


def cancel_payment_intent(payment_intent_id: str):
    return stripe.PaymentIntent.cancel(payment_intent_id)


def create_refund(payment_intent_id: str, amount, metadata: Optional[Dict[str, str]] = None):
    return stripe.Refund.create(
        payment_intent=payment_intent_id,
        amount=to_cents(amount),
        reason="requested_by_customer",
        metadata=metadata or {},
    )

# ============================================================================
# CONNECT ACCOUNTS
# ============================================================================

def create_stripe_account(user_id: str, email: str):
    """Create an express connect account tagged with the local user id"""
    return stripe.Account.create(
        type="express",
        email=email,
        capabilities={
            "card_payments": {"requested": True},
            "transfers": {"requested": True},
        },
        metadata={"userId": str(user_id)},
    )


def retrieve_stripe_account(account_id: str):
    return stripe.Account.retrieve(account_id)


def create_account_link(account_id: str):
    return stripe.AccountLink.create(
        account=account_id,
        refresh_url=settings.FRONTEND_URL,
        return_url=settings.FRONTEND_URL,
        type="account_onboarding",
    )


def create_dashboard_link(account_id: str):
    return stripe.Account.create_login_link(account_id)

# ============================================================================
# CUSTOMERS
# ============================================================================

def lookup_or_create_customer(email: str, name: Optional[str] = None, user_id: Optional[str] = None):
    """Return the first Stripe customer with this email, creating one if none exists"""
    existing = stripe.Customer.list(email=email, limit=1)
    data = get_stripe_value(existing, 'data', [])
    if data:
        return data[0]

    params = {"email": email}
    if name:
        params["name"] = name
    if user_id:
        params["metadata"] = {"user_id": str(user_id)}
    customer = stripe.Customer.create(**params)
    logger.info(f"Created Stripe customer {get_stripe_id(customer)} for {email}")
    return customer

# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

def create_subscription_payment_intent(
    customer_id: str,
    stripe_price_id: str,
    destination_account_id: str,
    metadata: Dict[str, str],
):
    """Create an incomplete creator subscription whose first invoice the client confirms.

    The owner's share is routed with transfer_data.amount_percent; the local ids
    needed to record the subscription travel in metadata.
    """
    return stripe.Subscription.create(
        customer=customer_id,
        items=[{"price": stripe_price_id}],
        payment_behavior="default_incomplete",
        payment_settings={"save_default_payment_method": "on_subscription"},
        expand=["latest_invoice.confirmation_secret", "latest_invoice.payment_intent"],
        transfer_data={
            "destination": destination_account_id,
            "amount_percent": settings.CREATOR_PAYOUT_PERCENT,
        },
        metadata=metadata,
    )


def get_subscription_client_secret(subscription: Any) -> Optional[str]:
    """Client secret for confirming the first invoice of an incomplete subscription"""
    invoice = get_stripe_value(subscription, 'latest_invoice')
    confirmation_secret = get_stripe_value(invoice, 'confirmation_secret')
    if confirmation_secret:
        return get_stripe_value(confirmation_secret, 'client_secret')
    payment_intent = get_stripe_value(invoice, 'payment_intent')
    return get_stripe_value(payment_intent, 'client_secret')


def retrieve_subscription(subscription_id: str):
    return stripe.Subscription.retrieve(subscription_id)


def cancel_stripe_subscription(subscription_id: str):
    """Cancel at the end of the current billing period"""
    return stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)


def create_subscription_checkout(customer_id: str, stripe_price_id: str, price_id: str, user_id: str):
    """Create a hosted checkout session for a platform plan

    metadata.price_id carries the local PlatformStripePrice id, not the Stripe price id.
    """
    metadata = {
        "user_id": str(user_id),
        "price_id": str(price_id),
        "is_platform": "true",
    }
    return stripe.checkout.Session.create(
        customer=customer_id,
        mode="subscription",
        line_items=[{"price": stripe_price_id, "quantity": 1}],
        success_url=f"{settings.ADMIN_URL}/plans",
        cancel_url=f"{settings.ADMIN_URL}/plans",
        metadata=metadata,
        subscription_data={"metadata": metadata},
    )
