from pydantic import validator

from .base import CamelModel


class ReversePaymentRequest(CamelModel):
    payment_id: str
    reason: str

    @validator('reason')
    def validate_reason(cls, v):
        if not v or not v.strip():
            raise ValueError('Reversal reason is required')
        return v.strip()
