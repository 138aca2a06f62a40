"""Email service - transactional email via Resend"""
import logging
from html import escape
from typing import Optional

import resend

from eventhub.core.config import settings

logger = logging.getLogger(__name__)


def _send_email(to: str, subject: str, html: str) -> bool:
    """
    Internal helper function to send email via Resend API.

    Args:
        to: Recipient email address
        subject: Email subject
        html: HTML email content

    Returns:
        bool: True on success, False on failure
    """
    if not settings.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY is not set; skipping email")
        return False

    try:
        resend.api_key = settings.RESEND_API_KEY

        response = resend.Emails.send(
            {
                "from": settings.RESEND_FROM_EMAIL,
                "to": to,
                "subject": subject,
                "html": html,
            }
        )

        # Resend returns a dict with 'id' on success; older clients return an object
        email_id = None
        if isinstance(response, dict):
            email_id = response.get('id')
        elif hasattr(response, 'id'):
            email_id = response.id

        if email_id:
            logger.info(f"Email sent successfully to {to} (id: {email_id})")
            return True
        logger.error(f"Email send returned invalid response: {response} (type: {type(response)})")
        return False

    except Exception as exc:
        logger.error(f"Failed to send email to {to}: {exc}", exc_info=True)
        return False


def send_ticket_receipt_email(email: str, event_title: str, amount: str, currency: str) -> bool:
    """
    Confirm a ticket purchase to the buyer.

    Args:
        email: Buyer's email address
        event_title: Event the tickets are for
        amount: Amount charged, already formatted in dollars
        currency: ISO currency code

    Returns:
        bool: True on success, False on failure
    """
    html = f"""
    <p>Thanks for your purchase!</p>
    <p>Your tickets for <strong>{escape(event_title)}</strong> are confirmed.</p>
    <p>Amount charged: {escape(amount)} {escape(currency.upper())}</p>
    """
    return _send_email(email, f"Your tickets for {event_title}", html)


def send_ticket_sale_email(email: str, event_title: str, payout: Optional[str], currency: str) -> bool:
    """Tell a host that tickets to their event were sold"""
    payout_line = f"<p>Your payout: {escape(payout)} {escape(currency.upper())}</p>" if payout else ""
    html = f"""
    <p>Good news! Someone just bought tickets to <strong>{escape(event_title)}</strong>.</p>
    {payout_line}
    """
    return _send_email(email, f"New ticket sale for {event_title}", html)


def send_subscription_confirmation_email(email: str, plan_name: str) -> bool:
    """Confirm a new creator or platform subscription"""
    html = f"""
    <p>Your subscription to <strong>{escape(plan_name)}</strong> is active.</p>
    <p>You can manage it any time from your account settings.</p>
    """
    return _send_email(email, f"You're subscribed to {plan_name}", html)


def send_subscription_canceled_email(email: str, plan_name: str) -> bool:
    """Tell a subscriber their subscription ended"""
    html = f"""
    <p>Your subscription to <strong>{escape(plan_name)}</strong> has been canceled.</p>
    """
    return _send_email(email, f"Your {plan_name} subscription was canceled", html)
