from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Numeric
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..database import Base
from ..utils.helpers import new_uuid

class StudentFee(Base):
    __tablename__ = "student_fees"
    
    id = Column(String(36), primary_key=True, default=new_uuid)
    center_id = Column(String(36), ForeignKey('tutorial_centers.id'), nullable=False, index=True)
    student_id = Column(String(36), ForeignKey('students.id'), nullable=False, index=True)
    description = Column(String(255), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    amount_paid = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default='unpaid')  # unpaid, partial, paid
    due_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)


class Payment(Base):
    __tablename__ = "payments"
    
    id = Column(String(36), primary_key=True, default=new_uuid)
    center_id = Column(String(36), ForeignKey('tutorial_centers.id'), nullable=False, index=True)
    student_id = Column(String(36), ForeignKey('students.id'), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(30), nullable=True)
    status = Column(String(20), nullable=False, default='completed')  # completed, reversed
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)
    
    allocations = relationship("PaymentAllocation", back_populates="payment")


class PaymentAllocation(Base):
    __tablename__ = "payment_allocations"
    
    id = Column(String(36), primary_key=True, default=new_uuid)
    payment_id = Column(String(36), ForeignKey('payments.id'), nullable=False, index=True)
    fee_id = Column(String(36), ForeignKey('student_fees.id'), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    
    payment = relationship("Payment", back_populates="allocations")
    fee = relationship("StudentFee")


class PaymentReversal(Base):
    __tablename__ = "payment_reversals"
    
    id = Column(String(36), primary_key=True, default=new_uuid)
    original_payment_id = Column(String(36), ForeignKey('payments.id'), nullable=False, unique=True)
    center_id = Column(String(36), nullable=False)
    student_id = Column(String(36), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    reason = Column(Text, nullable=False)
    reversed_by = Column(String(36), ForeignKey('users.id'), nullable=False)
    reversed_at = Column(DateTime(timezone=True), nullable=False)
