"""Stripe webhook verification and dispatch

Two endpoints, each verified with its own signing secret and routed through its
own handler table. One delivery is one database transaction: the handler's
writes commit together or roll back together, and queued notifications only
run after the commit.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

import stripe
from opentelemetry import trace
from sqlalchemy.orm import Session

from eventhub.core.config import settings
from eventhub.core.metrics import webhook_events_counter
from eventhub.services import notification_service
from eventhub.services.webhook_handlers import (
    handle_account_updated,
    handle_charge_refunded,
    handle_invoice_payment_succeeded,
    handle_payment_intent_succeeded,
    handle_price_deleted,
    handle_price_updated,
    handle_product_deleted,
    handle_product_updated,
    handle_subscription_deleted,
    handle_subscription_updated,
)

logger = logging.getLogger(__name__)
webhook_logger = logging.getLogger("webhook")
tracer = trace.get_tracer(__name__)

Handler = Callable[[Any, Session], None]


class WebhookSignatureError(Exception):
    """The delivery could not be authenticated or parsed; nothing was processed"""


class StripeEventType(str, Enum):
    PRODUCT_UPDATED = "product.updated"
    PRODUCT_DELETED = "product.deleted"
    PRICE_UPDATED = "price.updated"
    PRICE_DELETED = "price.deleted"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    CHARGE_REFUNDED = "charge.refunded"
    ACCOUNT_UPDATED = "account.updated"

    @classmethod
    def parse(cls, value: str) -> Optional["StripeEventType"]:
        try:
            return cls(value)
        except ValueError:
            return None


MAIN_ACCOUNT_HANDLERS: Dict[StripeEventType, Handler] = {
    StripeEventType.PRODUCT_UPDATED: handle_product_updated,
    StripeEventType.PRODUCT_DELETED: handle_product_deleted,
    StripeEventType.PRICE_UPDATED: handle_price_updated,
    StripeEventType.PRICE_DELETED: handle_price_deleted,
    StripeEventType.SUBSCRIPTION_UPDATED: handle_subscription_updated,
    StripeEventType.SUBSCRIPTION_DELETED: handle_subscription_deleted,
    StripeEventType.INVOICE_PAYMENT_SUCCEEDED: handle_invoice_payment_succeeded,
    StripeEventType.PAYMENT_INTENT_SUCCEEDED: handle_payment_intent_succeeded,
    StripeEventType.CHARGE_REFUNDED: handle_charge_refunded,
}

CONNECTED_ACCOUNT_HANDLERS: Dict[StripeEventType, Handler] = {
    StripeEventType.ACCOUNT_UPDATED: handle_account_updated,
}


@dataclass(frozen=True)
class WebhookEndpoint:
    name: str
    secret_setting: str
    handlers: Mapping[StripeEventType, Handler]

    @property
    def secret(self) -> str:
        # Read at call time so a rotated secret applies without re-importing
        return getattr(settings, self.secret_setting)


MAIN_ACCOUNT = WebhookEndpoint("main-account", "STRIPE_MAIN_ACCOUNT_WEBHOOK_SECRET", MAIN_ACCOUNT_HANDLERS)
CONNECTED_ACCOUNT = WebhookEndpoint("connected-account", "STRIPE_CONNECTED_ACCOUNT_WEBHOOK_SECRET", CONNECTED_ACCOUNT_HANDLERS)


def verify_webhook(payload: bytes, sig_header: str, endpoint: WebhookEndpoint):
    """Verify a delivery against the endpoint's secret and parse the event

    Raises:
        WebhookSignatureError: secret not configured, bad signature, or unparseable payload
    """
    if not endpoint.secret:
        raise WebhookSignatureError(f"Webhook secret for {endpoint.name} is not configured")
    with tracer.start_as_current_span(f"stripe.webhook {event_type}") as span:
        span.set_attribute("stripe.endpoint", endpoint.name)
        span.set_attribute("stripe.event_id", event_id or "")
        try:
            handler(event["data"]["object"], db)
            db.commit()
        except Exception as e:
            db.rollback()
            notification_service.discard_pending(db)
            webhook_logger.error(f"Webhook {event_type} ({event_id}) on {endpoint.name} failed, rolled back: {e}", exc_info=True)
            webhook_events_counter.labels(endpoint=endpoint.name, event_type=event_type, outcome="failed").inc()
            raise

    webhook_events_counter.labels(endpoint=endpoint.name, event_type=event_type, outcome="processed").inc()
    webhook_logger.info(f"Processed {event_type} ({event_id}) on {endpoint.name}")
    notification_service.run_pending(db)
    return True


def process_stripe_webhook(payload: bytes, sig_header: str, endpoint: WebhookEndpoint, db: Session) -> Dict[str, bool]:
    """Verify, then dispatch, one webhook delivery

    Args:
        payload: Raw request body, exactly as received
        sig_header: Value of the stripe-signature header
        endpoint: MAIN_ACCOUNT or CONNECTED_ACCOUNT
        db: Database session for this delivery

    Returns:
        dict: {"received": True}

    Raises:
        WebhookSignatureError: verification failed
        Exception: a handler failed and its transaction was rolled back
    """
    try:
        event = verify_webhook(payload, sig_header, endpoint)
    except WebhookSignatureError as e:
        webhook_logger.warning(f"Rejected webhook on {endpoint.name}: {e}")
        webhook_events_counter.labels(endpoint=endpoint.name, event_type="unknown", outcome="rejected").inc()
        raise

    dispatch_event(event, endpoint, db)
    return {"received": True}
