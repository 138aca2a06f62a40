"""Pydantic schemas for ticket payment intents"""
from decimal import Decimal
from pydantic import BaseModel, Field


class PaymentIntentRequest(BaseModel):
    event_id: str
    total: Decimal = Field(gt=0)  # charged to the buyer, fees included
    subtotal: Decimal = Field(gt=0)  # transferred to the host
