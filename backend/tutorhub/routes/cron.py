"""
Externally scheduled jobs (Vercel Cron, systemd timer, crontab + curl)
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from ..config import settings
from ..services.notification_service import NotificationService
from ..utils.helpers import isoformat_utc, utcnow
from .notifications import get_notification_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


def verify_cron_secret(authorization: Optional[str] = Header(None)):
    """Open when CRON_SECRET is unset, otherwise requires the bearer secret"""
    if not settings.CRON_SECRET:
        return
    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.api_route("/notifications", methods=["GET", "POST"])
def process_notifications(
    _auth: None = Depends(verify_cron_secret),
    service: NotificationService = Depends(get_notification_service)
):
    result = service.process_batch(settings.NOTIFICATION_BATCH_SIZE)
    return {
        "success": True,
        "processed": result.processed,
        "failed": result.failed,
        "timestamp": isoformat_utc(utcnow()),
    }
