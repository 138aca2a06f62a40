"""PlatformStripeProduct model"""
from sqlalchemy import Column, String, DateTime, Boolean, Text
from sqlalchemy.orm import relationship
from eventhub.models.base import Base, generate_uuid, utcnow


class PlatformStripeProduct(Base):
    """Local mirror of a platform plan product on the main Stripe account"""
    __tablename__ = "platform_stripe_products"
    
    id = Column(String(36), primary_key=True, default=generate_uuid)
    stripe_product_id = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    active = Column(Boolean, default=True, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    prices = relationship("PlatformStripePrice", back_populates="product")
