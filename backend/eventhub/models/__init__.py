"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from eventhub.models.base import Base
from eventhub.models.user import User
from eventhub.models.event import Event
from eventhub.models.event_attendee import EventAttendee
from eventhub.models.transaction import Transaction
from eventhub.models.stripe_product import StripeProduct
from eventhub.models.stripe_price import StripePrice
from eventhub.models.subscription import Subscription
from eventhub.models.platform_stripe_product import PlatformStripeProduct
from eventhub.models.platform_stripe_price import PlatformStripePrice
from eventhub.models.platform_subscription import PlatformSubscription

# Export all for convenience
__all__ = [
    "Base", "User", "Event", "EventAttendee", "Transaction",
    "StripeProduct", "StripePrice", "Subscription",
    "PlatformStripeProduct", "PlatformStripePrice", "PlatformSubscription"
]
