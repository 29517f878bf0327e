from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.sql import func

from ..database import Base
from ..utils.helpers import new_uuid, ensure_utc

class PortalAccessToken(Base):
    """Issued portal token. Only the SHA-256 hash of the bearer token is kept."""
    __tablename__ = "portal_access_tokens"
    
    id = Column(String(36), primary_key=True, default=new_uuid)
    center_id = Column(String(36), ForeignKey('tutorial_centers.id'), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(String(36), nullable=False)
    token_hash = Column(String(64), unique=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_revoked = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(36), ForeignKey('users.id'), nullable=True)
    created_ip = Column(String(45), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    last_ip = Column(String(45), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    
    __table_args__ = (
        Index('ix_portal_tokens_entity_active', 'entity_type', 'entity_id', 'is_revoked'),
        CheckConstraint(
            "entity_type IN ('student', 'teacher', 'parent')",
            name='check_portal_token_entity_type'
        ),
    )
    
    def state(self, now) -> str:
        """active, revoked or expired. Expiry is derived, never stored."""
        if self.is_revoked:
            return "revoked"
        if ensure_utc(self.expires_at) <= now:
            return "expired"
        return "active"
