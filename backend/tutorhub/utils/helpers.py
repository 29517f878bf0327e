import ipaddress
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request

from ..config import settings

# Longest textual IPv6 address
IP_MAX_LENGTH = 45


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the database.

    SQLite drops tzinfo on DateTime(timezone=True) columns; every timestamp
    we write is UTC so a naive value is UTC too.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


def is_valid_uuid(value) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def is_ip_address(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def get_client_ip(request: Request) -> Optional[str]:
    """
    Client IP for audit rows.

    X-Forwarded-For / X-Real-IP are only believed when the socket peer is a
    configured proxy and the header holds a real address. The result always
    fits the 45-character IP columns.
    """
    peer = request.client.host if request.client else None

    if peer and peer in settings.trusted_proxies_list:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            candidate = forwarded_for.split(",")[0].strip()
            if is_ip_address(candidate):
                return candidate

        real_ip = (request.headers.get("X-Real-IP") or "").strip()
        if is_ip_address(real_ip):
            return real_ip

    return peer[:IP_MAX_LENGTH] if peer else None


def isoformat_utc(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string with a Z suffix, or None"""
    value = ensure_utc(value)
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")
