"""Shared domain models for the GLRS safety platform."""
from .crisis import (
    AlertStatus,
    CrisisTier,
    InvalidTierError,
    NotificationChannel,
)

__all__ = [
    "AlertStatus",
    "CrisisTier",
    "InvalidTierError",
    "NotificationChannel",
]
