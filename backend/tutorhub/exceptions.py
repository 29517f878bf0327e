"""
Domain exceptions

Services raise these; routes translate them into HTTP responses.
"""
from typing import Optional


class TutorHubError(Exception):
    """Base class for all application errors"""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(TutorHubError):
    """A required setting is missing or unusable. Not recoverable per request."""


class PortalTokenConfigError(ConfigurationError):
    """PORTAL_JWT_SECRET is missing or too short"""


class ExternalServiceError(TutorHubError):
    """An external provider was unreachable or returned an error"""


class AuthProviderError(ExternalServiceError):
    pass


class PaymentProviderError(ExternalServiceError):
    pass


class LimitExceededError(TutorHubError):
    """A subscription tier resource limit would be exceeded"""


class DowngradeBlockedError(TutorHubError):
    """Target tier cannot accommodate the center's current active staff"""

    def __init__(self, message: str, staff_count: int, staff_limit: int, target_tier: str):
        super().__init__(message, {
            "staffCount": staff_count,
            "staffLimit": staff_limit,
            "targetTier": target_tier,
            "staffToDeactivate": staff_count - staff_limit,
        })
        self.staff_count = staff_count
        self.staff_limit = staff_limit
        self.target_tier = target_tier

    @property
    def staff_to_deactivate(self) -> int:
        return self.staff_count - self.staff_limit


class PaymentReversalError(TutorHubError):
    pass


class EntityNotFoundError(TutorHubError):
    """A student, teacher, parent or other row is missing or outside the caller's center"""
