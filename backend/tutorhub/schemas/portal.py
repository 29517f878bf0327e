from pydantic import validator
from typing import Optional

from .base import CamelModel
from ..utils.helpers import is_valid_uuid

ISSUABLE_ENTITY_TYPES = ("student", "teacher")
ENTITY_TYPES = ("student", "teacher", "parent")
CHANNELS = ("email", "sms", "both")


class GenerateTokenRequest(CamelModel):
    entity_type: str
    entity_id: str
    expires_in_days: int = 30
    send_notification: bool = False
    notification_channel: str = "both"

    @validator('entity_type')
    def validate_entity_type(cls, v):
        if v not in ISSUABLE_ENTITY_TYPES:
            raise ValueError('Invalid entity type. Must be "student" or "teacher"')
        return v

    @validator('entity_id')
    def validate_entity_id(cls, v):
        if not is_valid_uuid(v):
            raise ValueError('Invalid entity ID format')
        return v

    @validator('expires_in_days')
    def validate_expires_in_days(cls, v):
        if v < 1 or v > 365:
            raise ValueError('expiresInDays must be between 1 and 365')
        return v

    @validator('notification_channel')
    def validate_channel(cls, v):
        if v not in CHANNELS:
            raise ValueError('notificationChannel must be email, sms or both')
        return v


class ValidateTokenRequest(CamelModel):
    token: Optional[str] = None
    entity_type: Optional[str] = None
    page_path: Optional[str] = None


class RevokeTokenRequest(CamelModel):
    entity_type: str
    entity_id: str
    revoke_all: bool = True
    token_id: Optional[str] = None

    @validator('entity_type')
    def validate_entity_type(cls, v):
        if v not in ENTITY_TYPES:
            raise ValueError('Invalid entity type')
        return v

    @validator('entity_id')
    def validate_entity_id(cls, v):
        if not is_valid_uuid(v):
            raise ValueError('Invalid entity ID format')
        return v
