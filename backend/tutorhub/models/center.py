from sqlalchemy import Column, String, Boolean, DateTime, CheckConstraint
from sqlalchemy.sql import func

from ..database import Base
from ..utils.helpers import new_uuid

class TutorialCenter(Base):
    __tablename__ = "tutorial_centers"
    
    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    logo_url = Column(String(500), nullable=True)
    primary_color = Column(String(20), default="#1E40AF")
    is_active = Column(Boolean, default=True)
    
    # Subscription (synced from the payment processor)
    subscription_tier = Column(String(20), nullable=False, default="starter")
    subscription_status = Column(String(30), nullable=False, default="trialing")
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, default=False)
    
    # Module flags (premium modules need both the tier and the flag)
    hostel_module_enabled = Column(Boolean, default=False)
    transport_module_enabled = Column(Boolean, default=False)
    library_module_enabled = Column(Boolean, default=False)
    sms_module_enabled = Column(Boolean, default=False)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    
    __table_args__ = (
        CheckConstraint(
            "subscription_tier IN ('micro', 'starter', 'standard', 'premium')",
            name='check_center_subscription_tier'
        ),
    )
