from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text
from sqlalchemy.sql import func

from ..database import Base

class PortalAccessLog(Base):
    """Append-only record of every portal token validation attempt"""
    __tablename__ = "portal_access_logs"
    
    id = Column(Integer, primary_key=True, index=True)
    # Claims are unreadable for malformed tokens, so these may be empty
    center_id = Column(String(36), nullable=True, index=True)
    entity_type = Column(String(20), nullable=True)
    entity_id = Column(String(36), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    page_path = Column(Text, nullable=True)
    access_granted = Column(Boolean, nullable=False)
    failure_reason = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
