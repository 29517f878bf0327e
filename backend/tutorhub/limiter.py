"""
Shared Rate Limiter Instance

This module provides a singleton rate limiter instance that can be imported
throughout the application without causing circular import issues.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings


def _storage_uri() -> str:
    if settings.RATE_LIMIT_STORAGE_URI:
        return settings.RATE_LIMIT_STORAGE_URI
    # Redis in production so limits are shared between workers
    if settings.APP_ENV == "production":
        return settings.REDIS_URL
    return "memory://"


# Keyed on the socket peer; forwarded headers are client controlled
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000/hour"],  # Default limit for all routes
    storage_uri=_storage_uri(),
    enabled=settings.RATE_LIMIT_ENABLED
)
