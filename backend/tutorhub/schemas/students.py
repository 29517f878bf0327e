from pydantic import EmailStr, validator
from typing import Optional

from .base import CamelModel
from ..utils.validators import validate_phone


class StudentCreate(CamelModel):
    full_name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    student_number: Optional[str] = None
    grade: Optional[str] = None
    class_id: Optional[str] = None

    @validator('full_name')
    def validate_full_name(cls, v):
        v = v.strip()
        if len(v) < 2:
            raise ValueError('Full name must be at least 2 characters')
        return v

    @validator('email')
    def normalize_email(cls, v):
        return v.lower() if v else v

    @validator('phone')
    def validate_phone_number(cls, v):
        ok, formatted, error = validate_phone(v)
        if not ok:
            raise ValueError(error)
        return formatted
