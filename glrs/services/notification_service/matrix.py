"""Notification matrix - fixed tier -> channel policy.

| Tier     | Channels           | Target latency | Alert created |
|----------|--------------------|----------------|---------------|
| CRITICAL | push + email + SMS | < 2 seconds    | yes           |
| HIGH     | push + email       | < 5 minutes    | yes           |
| MODERATE | digest             | daily, 8 PM PT | yes           |
| STANDARD | log                | n/a            | no            |

Read-only at runtime.
"""
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional, Union

from glrs.shared.models import CrisisTier, InvalidTierError, NotificationChannel


class DeliveryTiming(Enum):
    IMMEDIATE = "immediate"
    DIGEST = "digest"
    LOG_ONLY = "log-only"


class ResponseAction(Enum):
    """What the chat pipeline does with the AI reply for a tier."""
    BYPASS_LLM = "bypass_llm"            # Replace the reply with crisis resources
    MODIFY_RESPONSE = "modify_response"  # Prepend supportive text and resources
    LOG_ONLY = "log_only"                # Reply proceeds unchanged
    PROCEED = "proceed"                  # Nothing detected


@dataclass(frozen=True)
class NotificationMatrixEntry:
    """Channel policy for one tier."""
    tier: CrisisTier
    channels: FrozenSet[NotificationChannel]
    urgency_seconds: Optional[int]
    creates_alert: bool
    timing: DeliveryTiming
    response_action: ResponseAction
    show_resources: bool = False

    @property
    def immediate_channels(self) -> FrozenSet[NotificationChannel]:
        """Channels sent at dispatch time (push, email, SMS)."""
        return self.channels & NotificationChannel.immediate()

    def to_dict(self) -> dict:
        return {
            "tier": self.tier.value,
            "channels": sorted(channel.value for channel in self.channels),
            "urgency_seconds": self.urgency_seconds,
            "creates_alert": self.creates_alert,
            "timing": self.timing.value,
            "response_action": self.response_action.value,
            "show_resources": self.show_resources,
        }


NOTIFICATION_MATRIX: Mapping[CrisisTier, NotificationMatrixEntry] = MappingProxyType({
    CrisisTier.CRITICAL: NotificationMatrixEntry(
        tier=CrisisTier.CRITICAL,
        channels=frozenset({NotificationChannel.PUSH, NotificationChannel.EMAIL, NotificationChannel.SMS}),
        urgency_seconds=2,
        creates_alert=True,
        timing=DeliveryTiming.IMMEDIATE,
        response_action=ResponseAction.BYPASS_LLM,
        show_resources=True,
    ),
    CrisisTier.HIGH: NotificationMatrixEntry(
        tier=CrisisTier.HIGH,
        channels=frozenset({NotificationChannel.PUSH, NotificationChannel.EMAIL}),
        urgency_seconds=300,
        creates_alert=True,
        timing=DeliveryTiming.IMMEDIATE,
        response_action=ResponseAction.MODIFY_RESPONSE,
        show_resources=True,
    ),
    CrisisTier.MODERATE: NotificationMatrixEntry(
        tier=CrisisTier.MODERATE,
        channels=frozenset({NotificationChannel.DIGEST}),
        urgency_seconds=None,
        creates_alert=True,
        timing=DeliveryTiming.DIGEST,
        response_action=ResponseAction.LOG_ONLY,
    ),
    CrisisTier.STANDARD: NotificationMatrixEntry(
        tier=CrisisTier.STANDARD,
        channels=frozenset({NotificationChannel.LOG}),
        urgency_seconds=None,
        creates_alert=False,
        timing=DeliveryTiming.LOG_ONLY,
        response_action=ResponseAction.LOG_ONLY,
    ),
})


@dataclass(frozen=True)
class EscalationRule:
    """Re-notify through `channels` when an alert stays OPEN past `after`."""
    tier: CrisisTier
    after: timedelta
    channels: FrozenSet[NotificationChannel]


ESCALATION_POLICY: Mapping[CrisisTier, EscalationRule] = MappingProxyType({
    CrisisTier.CRITICAL: EscalationRule(
        tier=CrisisTier.CRITICAL,
        after=timedelta(minutes=15),
        channels=frozenset({NotificationChannel.PUSH, NotificationChannel.SMS}),
    ),
    CrisisTier.HIGH: EscalationRule(
        tier=CrisisTier.HIGH,
        after=timedelta(hours=1),
        channels=frozenset({NotificationChannel.PUSH, NotificationChannel.EMAIL, NotificationChannel.SMS}),
    ),
})


def get_matrix_entry(tier: Union[str, CrisisTier]) -> NotificationMatrixEntry:
    """Look up the policy for a tier.

    Raises:
        InvalidTierError: If tier is unknown or NONE
    """
    resolved = CrisisTier.from_value(tier)
    entry = NOTIFICATION_MATRIX.get(resolved)
    if entry is None:
        raise InvalidTierError(f"No notification policy for tier {resolved.value}")
    return entry
