from datetime import date
from pydantic import validator
from typing import List, Optional

from .base import CamelModel
from ..utils.helpers import is_valid_uuid


class SendNotificationRequest(CamelModel):
    recipient_type: str
    recipient_id: Optional[str] = None
    recipient_ids: Optional[List[str]] = None
    notification_type: str
    title: str
    message: str
    channel: str
    process_immediately: bool = False

    @validator('recipient_type')
    def validate_recipient_type(cls, v):
        if v not in ("parent", "student", "teacher"):
            raise ValueError('recipientType must be parent, student or teacher')
        return v

    @validator('notification_type', 'title', 'message')
    def validate_not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError('Missing required fields')
        return v

    @validator('channel')
    def validate_channel(cls, v):
        if v not in ("email", "sms", "both"):
            raise ValueError('channel must be email, sms or both')
        return v

    @property
    def all_recipient_ids(self) -> List[str]:
        if self.recipient_ids:
            return self.recipient_ids
        return [self.recipient_id] if self.recipient_id else []


class StudentEventRequest(CamelModel):
    student_id: str

    @validator('student_id')
    def validate_student_id(cls, v):
        if not is_valid_uuid(v):
            raise ValueError('Invalid student ID format')
        return v


class AttendanceNotificationRequest(StudentEventRequest):
    status: str
    attendance_date: date

    @validator('status')
    def validate_status(cls, v):
        if v not in ("absent", "late"):
            raise ValueError('status must be absent or late')
        return v


class ReportCardNotificationRequest(StudentEventRequest):
    report_card_id: str
    term: str

    @validator('report_card_id', 'term')
    def validate_not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError('Missing required fields')
        return v.strip()
