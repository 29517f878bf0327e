"""
Portal Token Utilities

Signed, time-limited JWTs for the student, teacher and parent portals.
These helpers never touch the database; storage lives in
services/portal_token_service.py.
"""

import hashlib
import math
import re
import secrets
from calendar import timegm
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError

from ..config import settings
from ..exceptions import PortalTokenConfigError

ALGORITHM = "HS256"
MIN_SECRET_LENGTH = 32
ENTITY_TYPES = ("student", "teacher", "parent")

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class PortalTokenError(Exception):
    """Raised by decode_portal_token. `reason` is a short machine tag."""

    INVALID_FORMAT = "invalid_format"
    EXPIRED = "expired"
    INVALID = "invalid"
    INVALID_CLAIMS = "invalid_claims"

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


def get_jwt_secret() -> str:
    """Signing secret. Raises PortalTokenConfigError if unusable."""
    secret = settings.PORTAL_JWT_SECRET
    if not secret:
        raise PortalTokenConfigError("PORTAL_JWT_SECRET is not configured")
    if len(secret) < MIN_SECRET_LENGTH:
        raise PortalTokenConfigError(
            f"PORTAL_JWT_SECRET must be at least {MIN_SECRET_LENGTH} characters"
        )
    return secret


def is_portal_tokens_configured() -> bool:
    try:
        get_jwt_secret()
        return True
    except PortalTokenConfigError:
        return False


def generate_portal_token(
    entity_type: str,
    entity_id: str,
    center_id: str,
    expires_in_days: int = 30,
    issued_at: Optional[datetime] = None
) -> str:
    """Sign a portal token valid for `expires_in_days` days from `issued_at`"""
    if entity_type not in ENTITY_TYPES:
        raise ValueError(f"Invalid entity type: {entity_type}")

    secret = get_jwt_secret()
    issued_at = issued_at or datetime.now(timezone.utc)
    iat = timegm(issued_at.utctimetuple())

    payload = {
        "type": entity_type,
        "entityId": entity_id,
        "centerId": center_id,
        "iat": iat,
        "exp": iat + int(timedelta(days=expires_in_days).total_seconds()),
        # Unique per issuance so two tokens minted in the same second never share a hash
        "jti": generate_token_id(),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def is_valid_token_format(token) -> bool:
    """Cheap structural check: three non-empty base64url segments"""
    if not isinstance(token, str):
        return False
    parts = token.split(".")
    if len(parts) != 3:
        return False
    return all(_SEGMENT_RE.match(part) for part in parts)


def decode_portal_token(token: str, now: Optional[datetime] = None) -> dict:
    """
    Verify signature, expiry and claim shape.

    Args:
        token: Encoded JWT
        now: Clock used for the expiry check (defaults to current UTC time)

    Returns:
        Decoded claims

    Raises:
        PortalTokenError: token is unusable, see `reason`
        PortalTokenConfigError: signing secret is unusable
    """
    if not is_valid_token_format(token):
        raise PortalTokenError(PortalTokenError.INVALID_FORMAT, "Invalid token format")

    secret = get_jwt_secret()
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        raise PortalTokenError(PortalTokenError.EXPIRED, "Token has expired")
    except JWTError:
        raise PortalTokenError(PortalTokenError.INVALID, "Invalid or expired token")

    if not claims.get("type") or not claims.get("entityId") or not claims.get("centerId"):
        raise PortalTokenError(PortalTokenError.INVALID_CLAIMS, "Invalid or expired token")
    if claims["type"] not in ENTITY_TYPES:
        raise PortalTokenError(PortalTokenError.INVALID_CLAIMS, "Invalid or expired token")

    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise PortalTokenError(PortalTokenError.INVALID_CLAIMS, "Invalid or expired token")

    now = now or datetime.now(timezone.utc)
    if exp <= now.timestamp():
        raise PortalTokenError(PortalTokenError.EXPIRED, "Token has expired")

    return claims


def verify_portal_token(token: str, now: Optional[datetime] = None) -> Optional[dict]:
    """Decoded claims, or None if the token is invalid or expired"""
    try:
        return decode_portal_token(token, now=now)
    except PortalTokenError:
        return None


def decode_token_unsafe(token: str) -> Optional[dict]:
    """
    Decode claims WITHOUT verifying the signature.
    Only for audit logging - never for authentication.
    """
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return None


def hash_token(token: str) -> str:
    """SHA-256 hex digest stored in place of the bearer token"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token_id() -> str:
    return secrets.token_hex(16)


def get_token_expiration_date(claims: dict) -> datetime:
    return datetime.fromtimestamp(claims["exp"], tz=timezone.utc)


def get_token_remaining_days(claims: dict, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    remaining = get_token_expiration_date(claims) - now
    return max(0, math.floor(remaining.total_seconds() / 86400))


def is_token_expiring_soon(claims: dict, days_threshold: int = 7, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    return get_token_expiration_date(claims) <= now + timedelta(days=days_threshold)


def build_portal_url(entity_type: str, token: str, base_url: Optional[str] = None) -> str:
    """Parents sign in through /parent; students and teachers carry the token in the path"""
    base = (base_url if base_url is not None else settings.APP_URL).rstrip("/")
    if entity_type == "parent":
        return f"{base}/parent"
    return f"{base}/{entity_type}/{token}"
