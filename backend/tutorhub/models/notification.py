from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Index, CheckConstraint
from sqlalchemy.sql import func

from ..database import Base
from ..utils.helpers import new_uuid, utcnow

class NotificationQueue(Base):
    __tablename__ = "notification_queue"
    
    id = Column(String(36), primary_key=True, default=new_uuid)
    center_id = Column(String(36), ForeignKey('tutorial_centers.id'), nullable=False, index=True)
    recipient_type = Column(String(20), nullable=False)  # parent, student, teacher
    recipient_id = Column(String(36), nullable=False)
    notification_type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    channel = Column(String(10), nullable=False)  # email, sms, both
    status = Column(String(20), nullable=False, default='pending')
    scheduled_for = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    related_entity_type = Column(String(50), nullable=True)
    related_entity_id = Column(String(36), nullable=True)
    
    # Delivery bookkeeping
    retry_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    
    created_by = Column(String(36), ForeignKey('users.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)
    
    __table_args__ = (
        Index('ix_notification_queue_due', 'status', 'scheduled_for'),
        CheckConstraint(
            "status IN ('pending', 'scheduled', 'processing', 'sent', 'failed')",
            name='check_notification_status'
        ),
        CheckConstraint(
            "channel IN ('email', 'sms', 'both')",
            name='check_notification_channel'
        ),
    )


class NotificationLog(Base):
    """One row per channel delivery attempt"""
    __tablename__ = "notification_logs"
    
    id = Column(Integer, primary_key=True, index=True)
    notification_id = Column(String(36), ForeignKey('notification_queue.id'), nullable=False, index=True)
    center_id = Column(String(36), nullable=False)
    channel = Column(String(10), nullable=False)
    recipient_address = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False)  # sent, failed
    provider = Column(String(50), nullable=False)
    provider_message_id = Column(String(255), nullable=True)
    provider_response = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
