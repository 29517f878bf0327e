"""
Models package - Import all SQLAlchemy models here
"""

from .center import TutorialCenter
from .user import User
from .student import Student
from .teacher import Teacher
from .parent import Parent, ParentStudent
from .portal_token import PortalAccessToken
from .portal_access_log import PortalAccessLog
from .notification import NotificationQueue, NotificationLog
from .payment import StudentFee, Payment, PaymentAllocation, PaymentReversal
from .audit_log import AuditLog

__all__ = [
    "TutorialCenter",
    "User",
    "Student",
    "Teacher",
    "Parent",
    "ParentStudent",
    "PortalAccessToken",
    "PortalAccessLog",
    "NotificationQueue",
    "NotificationLog",
    "StudentFee",
    "Payment",
    "PaymentAllocation",
    "PaymentReversal",
    "AuditLog"
]
