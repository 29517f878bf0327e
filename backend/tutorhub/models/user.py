from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.sql import func

from ..database import Base

class User(Base):
    """Staff profile. The id is the auth provider's user id."""
    __tablename__ = "users"
    
    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255))
    role = Column(String(50), nullable=False)
    center_id = Column(String(36), ForeignKey('tutorial_centers.id'), nullable=True, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    __table_args__ = (
        CheckConstraint(
            "role IN ('super_admin', 'center_admin', 'center_staff')",
            name='check_user_role'
        ),
    )
