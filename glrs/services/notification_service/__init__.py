"""Notification Service: coach notifications per the notification matrix.

CRITICAL alerts go out over push, email and SMS concurrently; HIGH over push
and email; MODERATE alerts wait for the daily digest; STANDARD is log only.
Unacknowledged CRITICAL and HIGH alerts are escalated by a scheduled sweep.

Components:
- matrix.py: NOTIFICATION_MATRIX and ESCALATION_POLICY
- dispatcher.py: NotificationDispatcher (send, retry, escalate)
- digest.py: Daily MODERATE digest
- senders.py: Push/email/SMS senders (SNS, SES)
- recipients.py: Coach lookup
- content.py: Channel message content
"""

from .config import NotificationConfig
from .digest import DigestSummary, run_daily_digest
from .dispatcher import (
    ChannelResult,
    DispatchResult,
    EscalationSummary,
    NotificationDispatcher,
    create_dispatcher,
)
from .matrix import (
    ESCALATION_POLICY,
    NOTIFICATION_MATRIX,
    DeliveryTiming,
    EscalationRule,
    NotificationMatrixEntry,
    ResponseAction,
    get_matrix_entry,
)
from .recipients import CoachContact, RecipientDirectory, StaticRecipientDirectory
from .senders import (
    EmailMessage,
    EmailSender,
    NotificationSendError,
    PushMessage,
    PushSender,
    SmsMessage,
    SmsSender,
)

__all__ = [
    "NotificationConfig",
    "DigestSummary",
    "run_daily_digest",
    "ChannelResult",
    "DispatchResult",
    "EscalationSummary",
    "NotificationDispatcher",
    "create_dispatcher",
    "ESCALATION_POLICY",
    "NOTIFICATION_MATRIX",
    "DeliveryTiming",
    "EscalationRule",
    "NotificationMatrixEntry",
    "ResponseAction",
    "get_matrix_entry",
    "CoachContact",
    "RecipientDirectory",
    "StaticRecipientDirectory",
    "EmailMessage",
    "EmailSender",
    "NotificationSendError",
    "PushMessage",
    "PushSender",
    "SmsMessage",
    "SmsSender",
]
