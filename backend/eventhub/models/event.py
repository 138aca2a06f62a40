"""Event model"""
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from eventhub.models.base import Base, generate_uuid, utcnow


class Event(Base):
    """Event listing; ticket payments are routed to the host's connect account"""
    __tablename__ = "events"
    
    id = Column(String(36), primary_key=True, default=generate_uuid)
    title = Column(String(255), nullable=False)
    created_by = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    is_paid_event = Column(Boolean, default=False, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    
    host = relationship("User", foreign_keys=[created_by])
