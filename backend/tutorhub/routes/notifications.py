"""
Staff-facing notification queueing and queue status
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.student import Student
from ..schemas.notifications import (
    AttendanceNotificationRequest,
    ReportCardNotificationRequest,
    SendNotificationRequest,
)
from ..services.notification_service import (
    QUEUE_STATUSES,
    NotificationData,
    NotificationSenders,
    NotificationService,
    get_notification_senders,
)
from ..utils.security import AuthenticatedUser, Capability, require_capability, require_center

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def get_notification_service(
    db: Session = Depends(get_db),
    senders: NotificationSenders = Depends(get_notification_senders)
) -> NotificationService:
    return NotificationService(db, senders)


@router.post("/send")
def send_notification(
    payload: SendNotificationRequest,
    current_user: AuthenticatedUser = Depends(require_capability(Capability.SEND_NOTIFICATIONS)),
    service: NotificationService = Depends(get_notification_service)
):
    """
    Queue a notification for one or more recipients.

    Recipients are queued independently; the response counts how many were
    queued and how many failed.
    """
    center_id = require_center(current_user)

    recipient_ids = payload.all_recipient_ids
    if not recipient_ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No recipients specified")

    template = NotificationData(
        center_id=center_id,
        recipient_type=payload.recipient_type,
        recipient_id="",
        notification_type=payload.notification_type,
        title=payload.title,
        message=payload.message,
        channel=payload.channel,
        created_by=current_user.id
    )
    queued, failed = service.enqueue_many(template, recipient_ids)

    if payload.process_immediately and queued:
        service.process_batch(len(queued))

    return {
        "success": True,
        "queued": len(queued),
        "failed": len(failed),
        "processedImmediately": payload.process_immediately,
    }


@router.get("")
async def get_notifications(
    status_filter: Optional[str] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    current_user: AuthenticatedUser = Depends(require_capability(Capability.VIEW_NOTIFICATIONS)),
    service: NotificationService = Depends(get_notification_service)
):
    center_id = require_center(current_user)

    if status_filter == "all":
        status_filter = None
    if status_filter and status_filter not in QUEUE_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid status")

    return {
        "success": True,
        "notifications": service.list_queue(center_id, status=status_filter, limit=limit),
        "counts": service.queue_counts(center_id),
    }


def _require_student_in_center(db: Session, student_id: str, center_id: str):
    exists = db.query(Student.id).filter(
        Student.id == student_id,
        Student.center_id == center_id
    ).first()
    if not exists:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")


@router.post("/attendance")
def notify_attendance(
    payload: AttendanceNotificationRequest,
    current_user: AuthenticatedUser = Depends(require_capability(Capability.SEND_NOTIFICATIONS)),
    db: Session = Depends(get_db),
    service: NotificationService = Depends(get_notification_service)
):
    """Alert a student's parents that they were marked absent or late"""
    center_id = require_center(current_user)
    _require_student_in_center(db, payload.student_id, center_id)

    queued = service.queue_attendance_notification(payload.student_id, payload.status, payload.attendance_date)
    logger.info(f"Queued {len(queued)} attendance alert(s) for student {payload.student_id}")

    return {"success": True, "queued": len(queued)}


@router.post("/report-card")
def notify_report_card(
    payload: ReportCardNotificationRequest,
    current_user: AuthenticatedUser = Depends(require_capability(Capability.SEND_NOTIFICATIONS)),
    db: Session = Depends(get_db),
    service: NotificationService = Depends(get_notification_service)
):
    """Tell a student's parents a report card has been published"""
    center_id = require_center(current_user)
    _require_student_in_center(db, payload.student_id, center_id)

    queued = service.queue_report_card_notification(payload.student_id, payload.report_card_id, payload.term)
    logger.info(f"Queued {len(queued)} report card notice(s) for student {payload.student_id}")

    return {"success": True, "queued": len(queued)}
