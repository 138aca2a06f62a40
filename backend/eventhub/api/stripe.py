"""Stripe API routes: webhooks, connect onboarding and ticket payment intents"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from eventhub.core.security import require_auth
from eventhub.db.session import get_db
from eventhub.schemas.payments import PaymentIntentRequest
from eventhub.services.errors import ServiceError
from eventhub.services.payment_service import create_ticket_payment_intent, update_ticket_payment_intent
from eventhub.services.user_service import create_connect_dashboard_link, create_or_refresh_connect_account
from eventhub.services.webhook_service import (
    CONNECTED_ACCOUNT, MAIN_ACCOUNT, WebhookEndpoint, WebhookSignatureError, process_stripe_webhook
)

router = APIRouter(prefix="/api/stripe", tags=["stripe"])
logger = logging.getLogger(__name__)


async def raw_body(request: Request) -> bytes:
    """Request body exactly as received; signature verification fails on a re-serialized one"""
    return await request.body()


def _handle_webhook(payload: bytes, sig_header: Optional[str], endpoint: WebhookEndpoint, db: Session):
    if not sig_header:
        raise HTTPException(400, "Missing stripe-signature header")

    try:
        return process_stripe_webhook(payload, sig_header, endpoint, db)
    except WebhookSignatureError as e:
        raise HTTPException(400, f"Webhook Error: {e}")
    except Exception as e:
        # Non-2xx so Stripe redelivers; the transaction was already rolled back
        logger.error(f"Unexpected error processing {endpoint.name} webhook: {e}", exc_info=True)
        raise HTTPException(500, "Webhook processing failed")


# Plain def so the database and Stripe calls run in the threadpool, off the event loop
@router.post("/webhook/main-account")
def main_account_webhook(
    payload: bytes = Depends(raw_body),
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Products, prices, subscriptions, invoices, payment intents and charges"""
    return _handle_webhook(payload, stripe_signature, MAIN_ACCOUNT, db)


@router.post("/webhook/connected-account")
def connected_account_webhook(
    payload: bytes = Depends(raw_body),
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Connect account status changes"""
    return _handle_webhook(payload, stripe_signature, CONNECTED_ACCOUNT, db)


@router.post("/account")
def create_account(user_id: str = Depends(require_auth), db: Session = Depends(get_db)):
    """Create (or resume) connect onboarding and return the onboarding URL"""
    try:
        return create_or_refresh_connect_account(user_id, db)
    except ServiceError as e:
        raise HTTPException(e.status_code, e.message)


@router.get("/dashboard")
def get_dashboard(user_id: str = Depends(require_auth), db: Session = Depends(get_db)):
    try:
        return create_connect_dashboard_link(user_id, db)
    except ServiceError as e:
        raise HTTPException(e.status_code, e.message)


@router.post("/payment-intent")
def create_payment_intent(
    intent_request: PaymentIntentRequest,
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Create the payment intent for a ticket checkout"""
    try:
        return create_ticket_payment_intent(
            user_id,
            intent_request.event_id,
            intent_request.total,
            intent_request.subtotal,
            db
        )
    except ServiceError as e:
        raise HTTPException(e.status_code, e.message)


@router.put("/payment-intent/{payment_intent_id}")
def update_payment_intent(
    payment_intent_id: str,
    intent_request: PaymentIntentRequest,
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Update amounts on a ticket payment intent before it is confirmed"""
    try:
        return update_ticket_payment_intent(
            payment_intent_id,
            user_id,
            intent_request.event_id,
            intent_request.total,
            intent_request.subtotal,
            db
        )
    except ServiceError as e:
        raise HTTPException(e.status_code, e.message)
