"""User model"""
from sqlalchemy import Column, String, DateTime, Boolean
from eventhub.models.base import Base, generate_uuid, utcnow


class User(Base):
    """Platform user; only the payment-related columns are managed here"""
    __tablename__ = "users"
    
    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_account_id = Column(String(255), nullable=True, unique=True, index=True)  # Connect express account
    stripe_account_status = Column(String(50), nullable=True)  # 'active', 'pending_verification', 'action_required', 'error'
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
