"""User service - payment-account fields and connect onboarding"""
import logging
import stripe
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from eventhub.models.enums import StripeAccountStatus
from eventhub.models.user import User
from eventhub.services import stripe_service
from eventhub.services.errors import GatewayError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Fields other modules may write through update_user
UPDATABLE_FIELDS = {"stripe_account_id", "stripe_account_status", "stripe_customer_id", "name"}


def get_user(user_id: str, db: Session) -> Optional[User]:
    return db.query(User).filter(User.id == user_id, User.is_deleted == False).first()  # noqa: E712


def update_user(user_id: str, changes: Dict[str, Any], db: Session) -> Optional[User]:
    """Update whitelisted user fields; flushes only, the caller commits

    Returns:
        The updated user, or None if no such user exists
    """
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update user fields: {sorted(unknown)}")

    user = get_user(user_id, db)
    if not user:
        return None
    for field, value in changes.items():
        setattr(user, field, value)
    db.flush()
    return user


def create_or_refresh_connect_account(user_id: str, db: Session) -> Dict[str, str]:
    """Create the user's express account on first call and return an onboarding link

    Raises:
        NotFoundError: user missing
        GatewayError: Stripe rejected a call
    """
    user = get_user(user_id, db)
    if not user:
        raise NotFoundError("User not found")

    try:
        if not user.stripe_account_id:
            account = stripe_service.create_stripe_account(user.id, user.email)
            update_user(user.id, {
                "stripe_account_id": stripe_service.get_stripe_id(account),
                "stripe_account_status": StripeAccountStatus.PENDING_VERIFICATION.value,
            }, db)
            db.commit()
            logger.info(f"Created connect account {user.stripe_account_id} for user {user.id}")

        link = stripe_service.create_account_link(user.stripe_account_id)
    except stripe.StripeError as e:
        logger.error(f"Failed to create connect onboarding for user {user_id}: {e}")
        raise GatewayError("Payment provider rejected the onboarding request")

    return {
        "account_id": user.stripe_account_id,
        "url": stripe_service.get_stripe_value(link, "url"),
    }


def create_connect_dashboard_link(user_id: str, db: Session) -> Dict[str, str]:
    """Login link to the Stripe express dashboard

    Raises:
        NotFoundError: user missing
        ValidationError: account missing or not yet ACTIVE
        GatewayError: Stripe rejected the call
    """
    user = get_user(user_id, db)
    if not user:
        raise NotFoundError("User not found")
    if not user.stripe_account_id or user.stripe_account_status != StripeAccountStatus.ACTIVE.value:
        raise ValidationError("Stripe account is not active")

    try:
        link = stripe_service.create_dashboard_link(user.stripe_account_id)
    except stripe.StripeError as e:
        logger.error(f"Failed to create dashboard link for user {user_id}: {e}")
        raise GatewayError("Payment provider rejected the dashboard request")

    return {"url": stripe_service.get_stripe_value(link, "url")}
