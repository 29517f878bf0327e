from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.sql import func

from ..database import Base
from ..utils.helpers import new_uuid

class Student(Base):
    __tablename__ = "students"
    
    id = Column(String(36), primary_key=True, default=new_uuid)
    center_id = Column(String(36), ForeignKey('tutorial_centers.id'), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(20), nullable=True)
    student_number = Column(String(50), nullable=True, index=True)
    grade = Column(String(20), nullable=True)
    class_id = Column(String(36), nullable=True)
    status = Column(String(20), default='active')  # active, inactive, graduated, withdrawn
    created_at = Column(DateTime(timezone=True), server_default=func.now())
