"""Platform subscription API routes"""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from eventhub.core.security import require_auth
from eventhub.db.session import get_db
from eventhub.schemas.subscriptions import PlatformCheckoutRequest
from eventhub.services.errors import ServiceError
from eventhub.services.platform_subscription_service import cancel_platform_subscription, create_platform_checkout

router = APIRouter(prefix="/api/platform-subscriptions", tags=["platform-subscriptions"])
logger = logging.getLogger(__name__)


@router.post("/checkout")
def create_checkout(
    checkout_request: PlatformCheckoutRequest,
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Create a Stripe checkout session for a platform plan"""
    try:
        return create_platform_checkout(user_id, checkout_request.price_id, db)
    except ServiceError as e:
        raise HTTPException(e.status_code, e.message)


@router.post("/{subscription_id}/cancel")
def cancel_checkout_subscription(
    subscription_id: str,
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    try:
        subscription = cancel_platform_subscription(subscription_id, user_id, db)
    except ServiceError as e:
        raise HTTPException(e.status_code, e.message)
    return {
        "subscription": {
            "id": subscription.id,
            "stripe_subscription_id": subscription.stripe_subscription_id,
            "status": subscription.status,
            "cancel_at_end_date": subscription.cancel_at_end_date,
        }
    }
