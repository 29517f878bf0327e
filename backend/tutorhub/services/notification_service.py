"""
Notification Service - queueing and batch dispatch of SMS/email notifications
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.center import TutorialCenter
from ..models.notification import NotificationLog, NotificationQueue
from ..models.parent import Parent, ParentStudent
from ..models.student import Student
from ..models.teacher import Teacher
from ..utils.helpers import ensure_utc, is_valid_uuid, isoformat_utc, utcnow
from .delivery import SendResult
from .email_service import ResendEmailSender, render_notification_email
from .sms_service import ClickatellSmsSender

logger = logging.getLogger(__name__)

CHANNELS = ("email", "sms", "both")
RECIPIENT_MODELS = {
    "parent": Parent,
    "student": Student,
    "teacher": Teacher,
}
QUEUE_STATUSES = ("pending", "scheduled", "processing", "sent", "failed")
DUE_STATUSES = ("pending", "scheduled")


@dataclass
class NotificationSenders:
    sms: ClickatellSmsSender
    email: ResendEmailSender


@lru_cache()
def get_notification_senders() -> NotificationSenders:
    """Process-wide senders (one HTTP session each)"""
    return NotificationSenders(sms=ClickatellSmsSender(), email=ResendEmailSender())


@dataclass
class NotificationData:
    center_id: str
    recipient_type: str
    recipient_id: str
    notification_type: str
    title: str
    message: str
    channel: str
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    created_by: Optional[str] = None


@dataclass
class EnqueueResult:
    success: bool
    notification_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BatchResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass
class _Dispatch:
    """Outcome of sending one queue row over its channels"""
    success: bool
    retryable: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def error_message(self) -> Optional[str]:
        return "; ".join(self.errors) if self.errors else None


def pick_channel(sms_enabled: bool, email_enabled: bool) -> Optional[str]:
    """Channel from a parent's delivery preferences, None when both are off"""
    if sms_enabled and email_enabled:
        return "both"
    if sms_enabled:
        return "sms"
    if email_enabled:
        return "email"
    return None


def format_long_date(value: date) -> str:
    """e.g. Monday, 3 March 2025"""
    return f"{value:%A}, {value.day} {value:%B %Y}"


class NotificationService:

    def __init__(self, db: Session, senders: NotificationSenders, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.senders = senders
        self._clock = clock or utcnow

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------

    def enqueue(self, data: NotificationData) -> EnqueueResult:
        """Insert one queue row. Failures are reported, never raised."""
        if not is_valid_uuid(data.recipient_id):
            logger.warning(f"Rejected notification for malformed recipient id {data.recipient_id!r}")
            return EnqueueResult(success=False, error="Invalid recipient id")
        if data.recipient_type not in RECIPIENT_MODELS:
            return EnqueueResult(success=False, error=f"Invalid recipient type: {data.recipient_type}")
        if data.channel not in CHANNELS:
            return EnqueueResult(success=False, error=f"Invalid channel: {data.channel}")

        now = self._now()
        scheduled_for = ensure_utc(data.scheduled_for) or now
        status = "scheduled" if scheduled_for > now else "pending"

        try:
            row = NotificationQueue(
                center_id=data.center_id,
                recipient_type=data.recipient_type,
                recipient_id=data.recipient_id,
                notification_type=data.notification_type,
                title=data.title,
                message=data.message,
                channel=data.channel,
                status=status,
                scheduled_for=scheduled_for,
                related_entity_type=data.related_entity_type,
                related_entity_id=data.related_entity_id,
                created_by=data.created_by,
                created_at=now
            )
            self.db.add(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error queuing notification for {data.recipient_type} {data.recipient_id}: {e}")
            return EnqueueResult(success=False, error="Failed to queue notification")

        return EnqueueResult(success=True, notification_id=row.id)

    def enqueue_many(self, template: NotificationData, recipient_ids: List[str]) -> Tuple[List[str], List[str]]:
        """
        Queue the same notification for several recipients.

        Returns (queued notification ids, recipient ids that failed).
        """
        queued, failed = [], []
        for recipient_id in recipient_ids:
            result = self.enqueue(replace(template, recipient_id=recipient_id))
            if result.success:
                queued.append(result.notification_id)
            else:
                failed.append(recipient_id)

        logger.info(f"Queued {len(queued)} {template.notification_type} notification(s), {len(failed)} failed")
        return queued, failed

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _claim(self, row_id: str) -> bool:
        """pending|scheduled -> processing; False if another run got there first"""
        claimed = self.db.query(NotificationQueue).filter(
            NotificationQueue.id == row_id,
            NotificationQueue.status.in_(DUE_STATUSES)
        ).update(
            {NotificationQueue.status: "processing", NotificationQueue.updated_at: self._now()},
            synchronize_session=False
        )
        self.db.commit()
        return claimed == 1

    def _retry_or_fail(self, row: NotificationQueue, now: datetime, error: str, delay: timedelta):
        """Count a failed attempt; back to pending until the attempt limit, then failed"""
        row.error_message = error
        row.updated_at = now
        row.retry_count = (row.retry_count or 0) + 1
        if row.retry_count < settings.NOTIFICATION_MAX_ATTEMPTS:
            row.status = "pending"
            row.scheduled_for = now + delay
        else:
            row.status = "failed"

    def _release(self, row_id: str, error: str):
        """Return a claimed row to the queue after a storage error mid-dispatch"""
        try:
            row = self.db.query(NotificationQueue).filter(
                NotificationQueue.id == row_id,
                NotificationQueue.status == "processing"
            ).first()
            if row is None:
                return
            self._retry_or_fail(row, self._now(), error, timedelta(minutes=settings.NOTIFICATION_RETRY_DELAY_MINUTES))
            self.db.commit()
            logger.warning(f"Notification {row_id} released as {row.status} (attempt {row.retry_count}): {error}")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Could not release notification {row_id}; it stays processing until the lease expires: {e}")

    def _reclaim_stale(self, now: datetime) -> int:
        """Rows stuck in processing past the lease (crashed run) count one attempt and become due again"""
        cutoff = now - timedelta(minutes=settings.NOTIFICATION_PROCESSING_LEASE_MINUTES)
        try:
            rows = self.db.query(NotificationQueue).filter(
                NotificationQueue.status == "processing",
                NotificationQueue.updated_at < cutoff
            ).all()
            for row in rows:
                self._retry_or_fail(row, now, "Delivery interrupted", timedelta(0))
            if rows:
                self.db.commit()
                logger.warning(f"Reclaimed {len(rows)} notifications stuck in processing")
            return len(rows)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error reclaiming stale notifications: {e}")
            return 0

    def _get_recipient(self, row: NotificationQueue):
        model = RECIPIENT_MODELS.get(row.recipient_type)
        if model is None:
            return None
        return self.db.query(model).filter(
            model.id == row.recipient_id,
            model.center_id == row.center_id
        ).first()

    def _log_delivery(self, row: NotificationQueue, channel: str, address: str, provider: str, result: SendResult):
        self.db.add(NotificationLog(
            notification_id=row.id,
            center_id=row.center_id,
            channel=channel,
            recipient_address=address,
            status="sent" if result.success else "failed",
            provider=provider,
            provider_message_id=result.message_id,
            provider_response=result.error
        ))

    def _send_channel(self, row: NotificationQueue, channel: str, address: str, send) -> SendResult:
        sender = self.senders.sms if channel == "sms" else self.senders.email
        try:
            result = send()
        except Exception as e:
            # Unexpected sender failure: not safe to assume a retry will help
            logger.exception(f"{channel} sender raised for notification {row.id}")
            result = SendResult.failed(str(e) or e.__class__.__name__)
        self._log_delivery(row, channel, address, sender.provider, result)
        return result

    def _dispatch(self, row: NotificationQueue) -> _Dispatch:
        recipient = self._get_recipient(row)
        if recipient is None:
            return _Dispatch(success=False, errors=["Recipient not found"])

        results: Dict[str, SendResult] = {}

        if row.channel in ("sms", "both") and recipient.phone:
            results["sms"] = self._send_channel(
                row, "sms", recipient.phone,
                lambda: self.senders.sms.send(recipient.phone, row.message)
            )

        if row.channel in ("email", "both") and recipient.email:
            html_body = render_notification_email(row.title, recipient.full_name, row.message)
            results["email"] = self._send_channel(
                row, "email", recipient.email,
                lambda: self.senders.email.send(recipient.email, row.title, html_body)
            )

        if not results:
            return _Dispatch(success=False, errors=["No deliverable address"])

        if any(result.success for result in results.values()):
            return _Dispatch(success=True)

        return _Dispatch(
            success=False,
            retryable=all(result.retryable for result in results.values()),
            errors=[f"{channel}: {result.error}" for channel, result in results.items()]
        )

    def process_batch(self, max_count: Optional[int] = None) -> BatchResult:
        """
        Send up to `max_count` due notifications, oldest first.

        Retryable failures go back to pending after a delay until
        NOTIFICATION_MAX_ATTEMPTS is reached; other failures are final.
        """
        if max_count is None:
            max_count = settings.NOTIFICATION_BATCH_SIZE

        now = self._now()
        result = BatchResult()
        self._reclaim_stale(now)

        try:
            rows = self.db.query(NotificationQueue).filter(
                NotificationQueue.status.in_(DUE_STATUSES),
                NotificationQueue.scheduled_for <= now
            ).order_by(NotificationQueue.scheduled_for.asc()).limit(max_count).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error fetching notifications: {e}")
            return result

        for row in rows:
            row_id = row.id
            try:
                if not self._claim(row.id):
                    result.skipped += 1
                    continue

                outcome = self._dispatch(row)
                finished_at = self._now()
                row.updated_at = finished_at

                if outcome.success:
                    row.status = "sent"
                    row.sent_at = finished_at
                    row.error_message = None
                    result.processed += 1
                else:
                    if outcome.retryable:
                        self._retry_or_fail(
                            row, finished_at, outcome.error_message,
                            timedelta(minutes=settings.NOTIFICATION_RETRY_DELAY_MINUTES)
                        )
                    else:
                        row.error_message = outcome.error_message
                        row.status = "failed"
                    result.failed += 1
                    logger.warning(
                        f"Notification {row.id} {row.status} "
                        f"(attempt {row.retry_count or 1}): {row.error_message}"
                    )

                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Error processing notification {row_id}: {e}")
                self._release(row_id, "Storage error during delivery")
                result.failed += 1

        if rows:
            logger.info(
                f"📨 Notification batch: {result.processed} sent, {result.failed} failed, "
                f"{result.skipped} skipped"
            )
        return result

    # ------------------------------------------------------------------
    # Queue view
    # ------------------------------------------------------------------

    def queue_counts(self, center_id: str) -> Dict[str, int]:
        counts = {status: 0 for status in QUEUE_STATUSES}
        rows = self.db.query(NotificationQueue.status, func.count(NotificationQueue.id)).filter(
            NotificationQueue.center_id == center_id
        ).group_by(NotificationQueue.status).all()
        for status, count in rows:
            counts[status] = count
        return counts

    def list_queue(self, center_id: str, status: Optional[str] = None, limit: int = 50) -> List[dict]:
        query = self.db.query(NotificationQueue).filter(NotificationQueue.center_id == center_id)
        if status:
            query = query.filter(NotificationQueue.status == status)
        rows = query.order_by(NotificationQueue.created_at.desc()).limit(limit).all()

        return [
            {
                "id": row.id,
                "recipientType": row.recipient_type,
                "recipientId": row.recipient_id,
                "notificationType": row.notification_type,
                "title": row.title,
                "channel": row.channel,
                "status": row.status,
                "retryCount": row.retry_count,
                "errorMessage": row.error_message,
                "scheduledFor": isoformat_utc(row.scheduled_for),
                "sentAt": isoformat_utc(row.sent_at),
                "createdAt": isoformat_utc(row.created_at),
            }
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Parent fan-out
    # ------------------------------------------------------------------

    def _notifiable_parents(self, student_id: str) -> List[Parent]:
        return self.db.query(Parent).join(
            ParentStudent, ParentStudent.parent_id == Parent.id
        ).filter(
            ParentStudent.student_id == student_id,
            ParentStudent.verified_at.isnot(None),
            ParentStudent.can_receive_notifications == True
        ).all()

    def _student_with_center(self, student_id: str):
        return self.db.query(Student, TutorialCenter).join(
            TutorialCenter, TutorialCenter.id == Student.center_id
        ).filter(Student.id == student_id).first()

    def queue_attendance_notification(self, student_id: str, status: str, on_date: date) -> List[str]:
        """Alert verified parents who asked for immediate attendance notices"""
        found = self._student_with_center(student_id)
        if not found:
            return []
        student, center = found

        queued = []
        for parent in self._notifiable_parents(student_id):
            if parent.notification_attendance != "immediate":
                continue
            channel = pick_channel(parent.notification_sms, parent.notification_email)
            if channel is None:
                continue

            result = self.enqueue(NotificationData(
                center_id=student.center_id,
                recipient_type="parent",
                recipient_id=parent.id,
                notification_type="attendance_absent" if status == "absent" else "attendance_late",
                title=f"{center.name} - Attendance Alert",
                message=(
                    f"{student.full_name} was marked {status} on {format_long_date(on_date)}. "
                    f"If you believe this is an error, please contact the school."
                ),
                channel=channel,
                related_entity_type="student",
                related_entity_id=student_id
            ))
            if result.success:
                queued.append(result.notification_id)
        return queued

    def queue_report_card_notification(self, student_id: str, report_card_id: str, term: str) -> List[str]:
        found = self._student_with_center(student_id)
        if not found:
            return []
        student, center = found

        queued = []
        for parent in self._notifiable_parents(student_id):
            if not parent.notification_grades:
                continue
            channel = pick_channel(parent.notification_sms, parent.notification_email)
            if channel is None:
                continue

            result = self.enqueue(NotificationData(
                center_id=student.center_id,
                recipient_type="parent",
                recipient_id=parent.id,
                notification_type="report_card_published",
                title=f"{center.name} - Report Card Available",
                message=(
                    f"The report card for {student.full_name} for {term} has been published. "
                    f"You can view it by logging into the parent portal."
                ),
                channel=channel,
                related_entity_type="report_card",
                related_entity_id=report_card_id
            ))
            if result.success:
                queued.append(result.notification_id)
        return queued
