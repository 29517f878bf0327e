from sqlalchemy import Column, Integer, String, Text, DateTime, JSON
from sqlalchemy.sql import func

from ..database import Base

class AuditLog(Base):
    __tablename__ = "audit_logs"
    
    id = Column(Integer, primary_key=True, index=True)
    center_id = Column(String(36), nullable=True, index=True)
    user_id = Column(String(36), nullable=True)
    action = Column(String(50), nullable=False)  # create, update, delete, reverse, issue_token, revoke_token
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(36), nullable=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
