"""Channel senders - push, email and SMS delivery collaborators.

The dispatcher only sees the abstract senders. Production implementations
deliver through AWS: SNS mobile push, SES email and SNS SMS. boto3 is
synchronous, so each call runs in a worker thread to keep channel sends
concurrent.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import boto3

from .config import NotificationConfig

logger = logging.getLogger(__name__)


class NotificationSendError(Exception):
    """A channel provider rejected or could not deliver a message."""
    pass


@dataclass(frozen=True)
class PushMessage:
    title: str
    body: str
    priority: str
    target_user_id: str
    endpoint_arn: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class SmsMessage:
    to: str
    body: str


class PushSender(ABC):
    @abstractmethod
    async def send(self, message: PushMessage) -> Optional[str]:
        """Deliver a push notification; return the message id (None if disabled)."""


class EmailSender(ABC):
    @abstractmethod
    async def send(self, message: EmailMessage) -> Optional[str]:
        """Deliver an email; return the message id (None if disabled)."""


class SmsSender(ABC):
    @abstractmethod
    async def send(self, message: SmsMessage) -> Optional[str]:
        """Deliver an SMS; return the message id (None if disabled)."""


class _AwsSender:
    """Shared lazy boto3 client handling."""

    SERVICE = ""

    def __init__(self, config: Optional[NotificationConfig] = None, client=None):
        self.config = config or NotificationConfig()
        self._client = client

    @property
    def client(self):
        """Lazy initialization of the boto3 client."""
        if self._client is None:
            self._client = boto3.client(self.SERVICE, region_name=self.config.region)
        return self._client

    async def _call(self, operation: str, **kwargs) -> Dict[str, Any]:
        method = getattr(self.client, operation)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except Exception as e:
            raise NotificationSendError(f"{self.SERVICE}.{operation} failed: {e}") from e


class SnsPushSender(_AwsSender, PushSender):
    """Mobile push through an SNS platform endpoint."""

    SERVICE = "sns"

    async def send(self, message: PushMessage) -> Optional[str]:
        if not message.endpoint_arn:
            raise NotificationSendError(f"No push endpoint registered for {message.target_user_id}")
        if not self.config.enabled:
            logger.info("PUSH_SEND_SKIPPED", extra={"reason": "notifications_disabled"})
            return None

        payload = {
            "default": message.body,
            "GCM": json.dumps({
                "notification": {"title": message.title, "body": message.body},
                "data": message.data,
                "priority": "high",
            }),
            "APNS": json.dumps({
                "aps": {
                    "alert": {"title": message.title, "body": message.body},
                    "sound": "default",
                    "interruption-level": "critical" if message.priority == "critical" else "time-sensitive",
                },
                **message.data,
            }),
        }
        response = await self._call(
            "publish",
            TargetArn=message.endpoint_arn,
            Message=json.dumps(payload),
            MessageStructure="json",
        )
        return response.get("MessageId")


class SesEmailSender(_AwsSender, EmailSender):
    """Alert email through SES."""

    SERVICE = "ses"

    async def send(self, message: EmailMessage) -> Optional[str]:
        if not self.config.enabled:
            logger.info("EMAIL_SEND_SKIPPED", extra={"reason": "notifications_disabled"})
            return None

        response = await self._call(
            "send_email",
            Source=self.config.ses_sender_address,
            Destination={"ToAddresses": [message.to]},
            Message={
                "Subject": {"Data": message.subject, "Charset": "UTF-8"},
                "Body": {
                    "Text": {"Data": message.text, "Charset": "UTF-8"},
                    "Html": {"Data": message.html, "Charset": "UTF-8"},
                },
            },
        )
        return response.get("MessageId")


class SnsSmsSender(_AwsSender, SmsSender):
    """Transactional SMS through SNS."""

    SERVICE = "sns"

    async def send(self, message: SmsMessage) -> Optional[str]:
        if not self.config.enabled:
            logger.info("SMS_SEND_SKIPPED", extra={"reason": "notifications_disabled"})
            return None

        response = await self._call(
            "publish",
            PhoneNumber=message.to,
            Message=message.body,
            MessageAttributes={
                "AWS.SNS.SMS.SMSType": {"DataType": "String", "StringValue": "Transactional"},
                "AWS.SNS.SMS.SenderID": {"DataType": "String", "StringValue": self.config.sms_sender_id},
            },
        )
        return response.get("MessageId")
