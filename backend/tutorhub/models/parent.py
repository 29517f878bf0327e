from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func

from ..database import Base
from ..utils.helpers import new_uuid

class Parent(Base):
    __tablename__ = "parents"
    
    id = Column(String(36), primary_key=True, default=new_uuid)
    center_id = Column(String(36), ForeignKey('tutorial_centers.id'), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True)
    
    # Notification preferences
    notification_attendance = Column(String(20), default='immediate')  # immediate, daily, none
    notification_grades = Column(Boolean, default=True)
    notification_sms = Column(Boolean, default=True)
    notification_email = Column(Boolean, default=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ParentStudent(Base):
    __tablename__ = "parent_students"
    
    id = Column(String(36), primary_key=True, default=new_uuid)
    parent_id = Column(String(36), ForeignKey('parents.id', ondelete='CASCADE'), nullable=False, index=True)
    student_id = Column(String(36), ForeignKey('students.id', ondelete='CASCADE'), nullable=False, index=True)
    relationship_type = Column(String(30), default='parent')
    verified_at = Column(DateTime(timezone=True), nullable=True)
    can_receive_notifications = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    __table_args__ = (
        UniqueConstraint('parent_id', 'student_id', name='uq_parent_student'),
    )
