from pydantic import validator

from .base import CamelModel


class DowngradeRequest(CamelModel):
    target_tier: str

    @validator('target_tier')
    def validate_target_tier(cls, v):
        if v not in ("micro", "starter", "standard", "premium"):
            raise ValueError('Invalid tier')
        return v
