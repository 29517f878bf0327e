"""
Portal Token Service

Issues, validates and revokes portal access tokens. Storage keeps only the
token hash; every validation attempt is written to portal_access_logs.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import EntityNotFoundError
from ..models.center import TutorialCenter
from ..models.parent import Parent
from ..models.portal_access_log import PortalAccessLog
from ..models.portal_token import PortalAccessToken
from ..models.student import Student
from ..models.teacher import Teacher
from ..utils.helpers import IP_MAX_LENGTH, ensure_utc, isoformat_utc, utcnow
from ..utils.portal_tokens import (
    PortalTokenError,
    decode_portal_token,
    decode_token_unsafe,
    generate_portal_token,
    get_token_expiration_date,
    hash_token,
)
from .audit_service import record_audit

logger = logging.getLogger(__name__)

MAX_EXPIRY_DAYS = 365

ENTITY_MODELS = {
    "student": Student,
    "teacher": Teacher,
    "parent": Parent,
}

# decode_portal_token reason -> audit log failure tag
_FAILURE_TAGS = {
    PortalTokenError.INVALID_FORMAT: "Invalid token format",
    PortalTokenError.EXPIRED: "Token expired",
    PortalTokenError.INVALID: "Invalid token",
    PortalTokenError.INVALID_CLAIMS: "Invalid token",
}


@dataclass
class IssuedToken:
    token: str
    token_id: str
    token_hash: str
    expires_at: datetime
    expires_in_days: int
    revoked_count: int = 0


@dataclass
class PortalAccessDecision:
    valid: bool
    error: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    center_id: Optional[str] = None
    entity: dict = field(default_factory=dict)
    expires_at: Optional[datetime] = None

    @classmethod
    def denied(cls, error: str) -> "PortalAccessDecision":
        return cls(valid=False, error=error)

    def to_response(self) -> dict:
        if not self.valid:
            return {"valid": False, "error": self.error}
        return {
            "success": True,
            "valid": True,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "centerId": self.center_id,
            "entityName": self.entity.get("full_name") or "",
            "entityEmail": self.entity.get("email"),
            "entity": self.entity,
            "expiresAt": isoformat_utc(self.expires_at),
        }


def _claim_str(claims: Optional[dict], key: str, max_length: int = 36) -> Optional[str]:
    if not claims:
        return None
    value = claims.get(key)
    if not isinstance(value, str):
        return None
    return value[:max_length]


def _clip_ip(ip_address: Optional[str]) -> Optional[str]:
    return ip_address[:IP_MAX_LENGTH] if ip_address else None


def serialize_entity(entity_type: str, entity, center: Optional[TutorialCenter]) -> dict:
    """Portal-safe view of an entity row"""
    if entity_type == "parent":
        return {
            "id": entity.id,
            "full_name": entity.full_name,
            "email": entity.email,
            "phone": entity.phone,
            "center_id": entity.center_id,
            "is_active": entity.is_active,
        }

    data = {
        "id": entity.id,
        "full_name": entity.full_name,
        "email": entity.email,
        "phone": entity.phone,
        "center_id": entity.center_id,
        "status": entity.status,
    }
    if entity_type == "student":
        data.update({
            "student_number": entity.student_number,
            "grade": entity.grade,
            "class_id": entity.class_id,
        })
    else:
        data["specialization"] = entity.specialization

    data["center"] = {
        "name": center.name,
        "logo_url": center.logo_url,
        "primary_color": center.primary_color,
    } if center else None
    return data


def is_entity_active(entity_type: str, entity) -> bool:
    if entity_type == "parent":
        return entity.is_active is not False
    return entity.status == "active"


class PortalTokenService:
    """Portal token lifecycle over one database session"""

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self._clock = clock or utcnow

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def get_entity(self, entity_type: str, entity_id: str, center_id: str, for_update: bool = False):
        model = ENTITY_MODELS.get(entity_type)
        if model is None:
            raise ValueError(f"Invalid entity type: {entity_type}")

        query = self.db.query(model).filter(model.id == entity_id, model.center_id == center_id)
        if for_update:
            # Serializes concurrent issuance for one entity on PostgreSQL
            query = query.with_for_update()
        return query.first()

    def issue(
        self,
        entity_type: str,
        entity_id: str,
        center_id: str,
        expires_in_days: Optional[int] = None,
        created_by: Optional[str] = None,
        created_ip: Optional[str] = None
    ) -> IssuedToken:
        """
        Issue a new token, revoking the entity's previous active tokens.

        Revocation and insertion commit in one transaction.

        Raises:
            PortalTokenConfigError: signing secret missing or too short
            ValueError: bad entity type or expiry
            EntityNotFoundError: entity is not in this center
            SQLAlchemyError: storage failure (transaction rolled back)
        """
        created_ip = _clip_ip(created_ip)
        if expires_in_days is None:
            expires_in_days = settings.PORTAL_TOKEN_DEFAULT_DAYS
        if not 1 <= expires_in_days <= MAX_EXPIRY_DAYS:
            raise ValueError(f"expiresInDays must be between 1 and {MAX_EXPIRY_DAYS}")

        issued_at = self._now().replace(microsecond=0)
        token = generate_portal_token(
            entity_type, entity_id, center_id,
            expires_in_days=expires_in_days,
            issued_at=issued_at
        )
        token_hash = hash_token(token)
        expires_at = issued_at + timedelta(days=expires_in_days)

        try:
            entity = self.get_entity(entity_type, entity_id, center_id, for_update=True)
            if entity is None:
                raise EntityNotFoundError(f"{entity_type} not found")

            revoked_count = self.db.query(PortalAccessToken).filter(
                PortalAccessToken.entity_type == entity_type,
                PortalAccessToken.entity_id == entity_id,
                PortalAccessToken.is_revoked == False
            ).update({PortalAccessToken.is_revoked: True}, synchronize_session=False)

            record = PortalAccessToken(
                center_id=center_id,
                entity_type=entity_type,
                entity_id=entity_id,
                token_hash=token_hash,
                expires_at=expires_at,
                is_revoked=False,
                created_by=created_by,
                created_ip=created_ip
            )
            self.db.add(record)
            self.db.flush()

            record_audit(
                self.db,
                action="issue_token",
                entity_type=entity_type,
                entity_id=entity_id,
                center_id=center_id,
                user_id=created_by,
                new_values={
                    "token_id": record.id,
                    "expires_at": isoformat_utc(expires_at),
                    "revoked_previous": revoked_count,
                },
                ip_address=created_ip
            )
            self.db.commit()
        except (EntityNotFoundError, SQLAlchemyError):
            self.db.rollback()
            raise

        logger.info(
            f"Issued portal token {record.id} for {entity_type} {entity_id} "
            f"(center {center_id}, {expires_in_days} days, revoked {revoked_count} previous)"
        )

        return IssuedToken(
            token=token,
            token_id=record.id,
            token_hash=token_hash,
            expires_at=expires_at,
            expires_in_days=expires_in_days,
            revoked_count=revoked_count
        )

    # ------------------------------------------------------------------
    # Verification / validation
    # ------------------------------------------------------------------

    def verify(self, token: str) -> Optional[dict]:
        """Signature and expiry check only. Does not consult storage."""
        try:
            return decode_portal_token(token, now=self._now())
        except PortalTokenError:
            return None

    def _untracked_tokens_allowed(self, now: datetime) -> bool:
        if not settings.PORTAL_ALLOW_UNTRACKED_TOKENS:
            return False
        cutoff = ensure_utc(settings.PORTAL_UNTRACKED_TOKENS_UNTIL)
        return cutoff is None or now < cutoff

    def _log_access(
        self,
        claims: Optional[dict],
        granted: bool,
        failure_reason: Optional[str],
        ip_address: Optional[str],
        user_agent: Optional[str],
        page_path: Optional[str]
    ):
        """Append one access log row and commit. Failures are logged, not raised."""
        try:
            self.db.add(PortalAccessLog(
                center_id=_claim_str(claims, "centerId"),
                entity_type=_claim_str(claims, "type", 20),
                entity_id=_claim_str(claims, "entityId"),
                ip_address=ip_address,
                user_agent=user_agent,
                page_path=page_path,
                access_granted=granted,
                failure_reason=failure_reason
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to log portal access attempt: {e}")

    def validate(
        self,
        token: str,
        expected_entity_type: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        page_path: Optional[str] = None
    ) -> PortalAccessDecision:
        """
        Full access decision for a portal request.

        Signature and expiry are checked before any storage lookup. Every call
        writes exactly one access log row.
        """
        now = self._now()
        ip_address = _clip_ip(ip_address)

        def deny(claims, tag, error):
            self._log_access(claims, False, tag, ip_address, user_agent, page_path)
            return PortalAccessDecision.denied(error)

        try:
            claims = decode_portal_token(token, now=now)
        except PortalTokenError as e:
            unverified = None
            if e.reason != PortalTokenError.INVALID_FORMAT:
                unverified = decode_token_unsafe(token)
            return deny(unverified, _FAILURE_TAGS[e.reason], str(e))

        if expected_entity_type and claims["type"] != expected_entity_type:
            return deny(claims, "Token type mismatch", "Token type mismatch")

        record = self.db.query(PortalAccessToken).filter(
            PortalAccessToken.token_hash == hash_token(token)
        ).first()

        if record is None:
            if not self._untracked_tokens_allowed(now):
                return deny(claims, "Token not recognized", "Token not recognized")
            # Tokens issued before hashes were stored
            logger.warning(
                f"Accepting untracked portal token for {claims['type']} {claims['entityId']} "
                f"(legacy compatibility mode)"
            )
        else:
            if record.is_revoked:
                return deny(claims, "Token revoked", "Token has been revoked")
            if ensure_utc(record.expires_at) <= now:
                return deny(claims, "Token expired", "Token has expired")

            record.last_used_at = now
            record.last_ip = ip_address

        entity_type = claims["type"]
        entity = self.get_entity(entity_type, claims["entityId"], claims["centerId"])
        if entity is None:
            return deny(claims, "Entity not found", "Entity not found")

        if not is_entity_active(entity_type, entity):
            return deny(claims, "Entity inactive", "Account is inactive")

        center = self.db.query(TutorialCenter).filter(TutorialCenter.id == claims["centerId"]).first()

        self._log_access(claims, True, None, ip_address, user_agent, page_path)

        return PortalAccessDecision(
            valid=True,
            entity_type=entity_type,
            entity_id=claims["entityId"],
            center_id=claims["centerId"],
            entity=serialize_entity(entity_type, entity, center),
            expires_at=get_token_expiration_date(claims)
        )

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(
        self,
        entity_type: str,
        entity_id: str,
        center_id: str,
        token_id: Optional[str] = None,
        revoked_by: Optional[str] = None
    ) -> int:
        """
        Revoke the entity's non-revoked tokens (or just `token_id`).

        Returns the number of rows changed; already revoked rows are not
        counted, so repeating the call returns 0.
        """
        query = self.db.query(PortalAccessToken).filter(
            PortalAccessToken.entity_type == entity_type,
            PortalAccessToken.entity_id == entity_id,
            PortalAccessToken.center_id == center_id,
            PortalAccessToken.is_revoked == False
        )
        if token_id:
            query = query.filter(PortalAccessToken.id == token_id)

        try:
            revoked_count = query.update({PortalAccessToken.is_revoked: True}, synchronize_session=False)
            if revoked_count:
                record_audit(
                    self.db,
                    action="revoke_token",
                    entity_type=entity_type,
                    entity_id=entity_id,
                    center_id=center_id,
                    user_id=revoked_by,
                    new_values={"revoked_count": revoked_count, "token_id": token_id}
                )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        if revoked_count:
            logger.info(f"Revoked {revoked_count} portal token(s) for {entity_type} {entity_id}")
        return revoked_count

    def list_tokens(self, entity_type: str, entity_id: str, center_id: str) -> List[dict]:
        now = self._now()
        records = self.db.query(PortalAccessToken).filter(
            PortalAccessToken.entity_type == entity_type,
            PortalAccessToken.entity_id == entity_id,
            PortalAccessToken.center_id == center_id
        ).order_by(PortalAccessToken.created_at.desc()).all()

        return [
            {
                "id": record.id,
                "state": record.state(now),
                "expiresAt": isoformat_utc(record.expires_at),
                "createdAt": isoformat_utc(record.created_at),
                "createdBy": record.created_by,
                "lastUsedAt": isoformat_utc(record.last_used_at),
                "lastIp": record.last_ip,
            }
            for record in records
        ]
