"""Event attendee API routes"""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from eventhub.core.security import require_auth
from eventhub.db.session import get_db
from eventhub.schemas.attendees import CreateAttendeesRequest
from eventhub.services.attendee_service import refund_attendee, register_attendees
from eventhub.services.errors import ServiceError

router = APIRouter(prefix="/api/event-attendees", tags=["event-attendees"])
logger = logging.getLogger(__name__)


def serialize_attendee(attendee) -> dict:
    return {
        "id": attendee.id,
        "event_id": attendee.event_id,
        "user_id": attendee.user_id,
        "name": attendee.name,
        "rsvp_status": attendee.rsvp_status,
        "amount_paid": str(attendee.amount_paid),
        "payment_status": attendee.payment_status,
        "transaction_id": attendee.transaction_id,
    }


@router.post("", status_code=201)
def create_attendees(
    attendee_request: CreateAttendeesRequest,
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Register the buyer's tickets after checkout

    The transaction link may still be empty here if the payment webhook has
    not been processed yet; it is filled in when it is.
    """
    try:
        rows = register_attendees(
            user_id,
            attendee_request.event_id,
            [attendee.model_dump() for attendee in attendee_request.attendees],
            attendee_request.stripe_payment_intent_id,
            db
        )
    except ServiceError as e:
        raise HTTPException(e.status_code, e.message)
    return {"attendees": [serialize_attendee(row) for row in rows]}


@router.post("/{attendee_id}/refund")
def refund_attendee_route(
    attendee_id: str,
    user_id: str = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Refund an attendee's ticket (event host only)"""
    try:
        attendee = refund_attendee(attendee_id, user_id, db)
    except ServiceError as e:
        raise HTTPException(e.status_code, e.message)
    return {"attendee": serialize_attendee(attendee)}
