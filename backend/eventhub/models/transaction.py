"""Transaction model"""
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Numeric, JSON
from eventhub.models.base import Base, generate_uuid, utcnow


class Transaction(Base):
    """One row per succeeded (or later refunded) payment intent"""
    __tablename__ = "transactions"
    
    id = Column(String(36), primary_key=True, default=generate_uuid)
    type = Column(String(20), nullable=False)  # 'event', 'subscription'
    stripe_payment_intent_id = Column(String(255), unique=True, nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)  # dollars
    currency = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False)  # 'succeeded', 'refunded'
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)  # payer
    host_user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)  # event host or plan owner
    event_id = Column(String(36), ForeignKey("events.id"), nullable=True, index=True)
    product_id = Column(String(36), ForeignKey("stripe_products.id"), nullable=True, index=True)
    price_id = Column(String(36), ForeignKey("stripe_prices.id"), nullable=True)
    transfer_amount = Column(Numeric(10, 2), nullable=True)
    payment_method = Column(String(50), nullable=True)
    stripe_metadata = Column(JSON, nullable=True)  # raw processor payload
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
