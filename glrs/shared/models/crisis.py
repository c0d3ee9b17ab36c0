"""Crisis tier, alert status and notification channel domain models.

Tiers are a fixed, totally ordered severity scale. Resolution of a scan is
always "max by severity" across surviving matches, never "first tier checked".
"""
from enum import Enum
from typing import FrozenSet, Union


class InvalidTierError(ValueError):
    """Raised when a value does not name one of the recognized crisis tiers."""
    pass


class CrisisTier(Enum):
    """Severity classification of a detected crisis indicator.

    Ordered CRITICAL > HIGH > MODERATE > STANDARD > NONE. NONE is the
    result of a scan with no surviving match and is never assigned to
    a keyword.
    """
    CRITICAL = "critical"   # Bypass LLM, push + email + SMS within 2 seconds
    HIGH = "high"           # Modify response, push + email within 5 minutes
    MODERATE = "moderate"   # Daily digest to coach
    STANDARD = "standard"   # Log only
    NONE = "none"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @property
    def is_actionable(self) -> bool:
        """True when the tier warrants any response beyond a log entry."""
        return self.severity >= _SEVERITY[CrisisTier.MODERATE]

    @classmethod
    def keyword_tiers(cls) -> tuple:
        """Tiers a keyword can belong to, most severe first."""
        return (cls.CRITICAL, cls.HIGH, cls.MODERATE, cls.STANDARD)

    @classmethod
    def from_value(cls, value: Union[str, "CrisisTier"]) -> "CrisisTier":
        """Parse a tier name or value (case-insensitive).

        Raises:
            InvalidTierError: If value is not a recognized tier
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for tier in cls:
                if tier.value == normalized:
                    return tier
        raise InvalidTierError(f"Unrecognized crisis tier: {value!r}")

    def __lt__(self, other):
        if not isinstance(other, CrisisTier):
            return NotImplemented
        return self.severity < other.severity

    def __le__(self, other):
        if not isinstance(other, CrisisTier):
            return NotImplemented
        return self.severity <= other.severity

    def __gt__(self, other):
        if not isinstance(other, CrisisTier):
            return NotImplemented
        return self.severity > other.severity

    def __ge__(self, other):
        if not isinstance(other, CrisisTier):
            return NotImplemented
        return self.severity >= other.severity


_SEVERITY = {
    CrisisTier.NONE: 0,
    CrisisTier.STANDARD: 1,
    CrisisTier.MODERATE: 2,
    CrisisTier.HIGH: 3,
    CrisisTier.CRITICAL: 4,
}


class AlertStatus(Enum):
    """Review state of a crisis alert.

    Transitions are monotonic: OPEN -> ACKNOWLEDGED -> RESOLVED.
    OPEN -> RESOLVED is allowed (a coach may close an alert directly).
    """
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self is AlertStatus.RESOLVED

    def can_transition_to(self, target: "AlertStatus") -> bool:
        return target.rank > self.rank


_STATUS_RANK = {
    AlertStatus.OPEN: 0,
    AlertStatus.ACKNOWLEDGED: 1,
    AlertStatus.RESOLVED: 2,
}


class NotificationChannel(Enum):
    """Delivery channels referenced by the notification matrix."""
    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"
    DIGEST = "digest"
    LOG = "log"

    @classmethod
    def immediate(cls) -> FrozenSet["NotificationChannel"]:
        """Channels that result in an outbound send at dispatch time."""
        return frozenset({cls.PUSH, cls.EMAIL, cls.SMS})
