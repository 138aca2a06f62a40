"""Pydantic schemas for event attendees"""
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field


class AttendeeInput(BaseModel):
    name: Optional[str] = None  # guest name; omitted for the buyer's own ticket
    rsvp_status: str = "yes"
    is_incognito: bool = False
    amount_paid: Decimal = Decimal("0")
    platform_fee_amount: Decimal = Decimal("0")
    host_payout_amount: Decimal = Decimal("0")


class CreateAttendeesRequest(BaseModel):
    event_id: str
    attendees: List[AttendeeInput] = Field(min_length=1)
    stripe_payment_intent_id: Optional[str] = None
