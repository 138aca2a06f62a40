"""EventAttendee model"""
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Numeric
from sqlalchemy.orm import relationship
from eventhub.models.base import Base, generate_uuid, utcnow


class EventAttendee(Base):
    """Ticket holder row, created at checkout, possibly before its Transaction exists"""
    __tablename__ = "event_attendees"
    
    id = Column(String(36), primary_key=True, default=generate_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)  # purchaser
    name = Column(String(255), nullable=True)  # guest name when the ticket is for someone else
    rsvp_status = Column(String(20), default="yes", nullable=False)
    is_incognito = Column(Boolean, default=False, nullable=False)
    amount_paid = Column(Numeric(10, 2), default=0, nullable=False)
    platform_fee_amount = Column(Numeric(10, 2), default=0, nullable=False)
    host_payout_amount = Column(Numeric(10, 2), default=0, nullable=False)
    payment_status = Column(String(20), nullable=True)  # 'succeeded', 'refunded'
    transaction_id = Column(String(36), ForeignKey("transactions.id"), nullable=True, index=True)
    is_checked_in = Column(Boolean, default=False, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    transaction = relationship("Transaction")
