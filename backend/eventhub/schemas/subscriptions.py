"""Pydantic schemas for creator and platform subscriptions"""
from pydantic import BaseModel


class SubscriptionIntentRequest(BaseModel):
    price_id: str


class PlatformCheckoutRequest(BaseModel):
    price_id: str
