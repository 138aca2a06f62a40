"""StripePrice model"""
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Numeric
from sqlalchemy.orm import relationship
from eventhub.models.base import Base, generate_uuid, utcnow


class StripePrice(Base):
    """Local mirror of a creator product's Stripe price
    
    amount/currency/interval are fixed at creation; webhooks only touch active/is_deleted.
    """
    __tablename__ = "stripe_prices"
    
    id = Column(String(36), primary_key=True, default=generate_uuid)
    product_id = Column(String(36), ForeignKey("stripe_products.id"), nullable=False, index=True)
    stripe_price_id = Column(String(255), unique=True, nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(10), nullable=False)
    interval = Column(String(20), nullable=False)  # 'month', 'year'
    active = Column(Boolean, default=True, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    product = relationship("StripeProduct", back_populates="prices")
