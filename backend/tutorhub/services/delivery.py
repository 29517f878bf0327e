"""
Delivery primitives shared by the SMS and email senders
"""
from dataclasses import dataclass
from typing import Optional


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    # Transient failure (network, timeout, provider 5xx/429): safe to try again later
    retryable: bool = False

    @classmethod
    def ok(cls, message_id: Optional[str] = None) -> "SendResult":
        return cls(success=True, message_id=message_id)

    @classmethod
    def failed(cls, error: str, retryable: bool = False) -> "SendResult":
        return cls(success=False, error=error, retryable=retryable)


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500
