"""Creator subscription API routes"""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from eventhub.core.security import require_auth
from eventhub.db.session import get_db
from eventhub.schemas.subscriptions import SubscriptionIntentRequest
from eventhub.services.errors import ServiceError
from eventhub.services.subscription_service import cancel_subscription, create_subscription_intent

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])
logger = logging.getLogger(__name__)


def serialize_subscription(subscription) -> dict:
    return {
        "id": subscription.id,
        "stripe_subscription_id": subscription.stripe_subscription_id,
        "product_id": subscription.product_id,
        "price_id": subscription.price_id,
        "status": subscription.status,
        "cancel_at_end_date": subscription.cancel_at_end_date,
        "canceled_at": subscription.canceled_at.isoformat() if subscription.canceled_at else None,
        "end_date": subscription.end_date.isoformat() if subscription.end_date else None,
    }


@router.post("/payment-intent")
def create_subscription_payment_intent(
    intent_request: SubscriptionIntentRequest,
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Start a subscription to a creator plan; the client confirms with the returned secret"""
    try:
        return create_subscription_intent(user_id, intent_request.price_id, db)
    except ServiceError as e:
        raise HTTPException(e.status_code, e.message)


@router.post("/{subscription_id}/cancel")
def cancel_subscription_route(
    subscription_id: str,
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Cancel at period end (subscriber or plan owner)"""
    try:
        subscription = cancel_subscription(subscription_id, user_id, db)
    except ServiceError as e:
        raise HTTPException(e.status_code, e.message)
    return {"subscription": serialize_subscription(subscription)}
