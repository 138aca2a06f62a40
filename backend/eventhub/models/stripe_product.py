"""StripeProduct model"""
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Text
from sqlalchemy.orm import relationship
from eventhub.models.base import Base, generate_uuid, utcnow


class StripeProduct(Base):
    """Local mirror of a creator's Stripe product"""
    __tablename__ = "stripe_products"
    
    id = Column(String(36), primary_key=True, default=generate_uuid)
    stripe_product_id = Column(String(255), unique=True, nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)  # plan owner
    stripe_account_id = Column(String(255), nullable=False)  # owner's connect account at creation time
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    prices = relationship("StripePrice", back_populates="product")
    subscriptions = relationship("Subscription", back_populates="product")
