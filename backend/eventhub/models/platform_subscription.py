"""PlatformSubscription model"""
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey
from eventhub.models.base import Base, generate_uuid, utcnow


class PlatformSubscription(Base):
    """A user's subscription to a platform plan; disjoint from creator subscriptions"""
    __tablename__ = "platform_subscriptions"
    
    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    platform_stripe_product_id = Column(String(36), ForeignKey("platform_stripe_products.id"), nullable=False)
    platform_stripe_price_id = Column(String(36), ForeignKey("platform_stripe_prices.id"), nullable=False)
    stripe_subscription_id = Column(String(255), unique=True, nullable=False, index=True)
    status = Column(String(50), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    cancel_at_end_date = Column(Boolean, default=False, nullable=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
