"""Creator-plan Subscription model"""
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from eventhub.models.base import Base, generate_uuid, utcnow


class Subscription(Base):
    """A user's subscription to another user's paid product"""
    __tablename__ = "subscriptions"
    
    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)  # subscriber
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)  # plan owner
    product_id = Column(String(36), ForeignKey("stripe_products.id"), nullable=False, index=True)
    price_id = Column(String(36), ForeignKey("stripe_prices.id"), nullable=False)
    stripe_subscription_id = Column(String(255), unique=True, nullable=False, index=True)
    status = Column(String(50), nullable=False)  # 'active', 'trialing', 'past_due', 'canceled', 'unpaid', 'incomplete'
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    cancel_at_end_date = Column(Boolean, default=False, nullable=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    product = relationship("StripeProduct", back_populates="subscriptions")
