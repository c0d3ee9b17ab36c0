"""Notification Service configuration."""
import os
from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class NotificationConfig:
    """Configuration for coach notification delivery."""

    # Upper bound on any single channel send; a stalled provider cannot hang dispatch
    channel_timeout_seconds: float = 5.0

    # AWS region for SNS and SES
    region: str = "us-west-2"

    # Verified SES sender identity
    ses_sender_address: str = "alerts@glrecoveryservices.com"

    # Base URL for coach review links
    app_base_url: str = "https://app.glrecoveryservices.com"

    # Alphanumeric sender id shown on SMS, where the carrier supports it
    sms_sender_id: str = "GLRS"

    # Daily digest window
    digest_lookback_hours: int = 24

    # Whether outbound sends are enabled (disable for local dev)
    enabled: bool = True

    def __post_init__(self):
        if self.channel_timeout_seconds <= 0:
            raise ValueError(
                f"channel_timeout_seconds must be positive, got {self.channel_timeout_seconds}"
            )
        if self.digest_lookback_hours <= 0:
            raise ValueError(
                f"digest_lookback_hours must be positive, got {self.digest_lookback_hours}"
            )

    @property
    def digest_lookback(self) -> timedelta:
        return timedelta(hours=self.digest_lookback_hours)

    def review_url(self, alert_id: str) -> str:
        return f"{self.app_base_url.rstrip('/')}/coach/alerts/{alert_id}"

    @classmethod
    def from_env(cls) -> "NotificationConfig":
        """Create config from environment variables.

        Environment variables:
            NOTIFICATION_CHANNEL_TIMEOUT: Per-channel timeout seconds (default 5.0)
            AWS_REGION: Region for SNS/SES (default us-west-2)
            SES_SENDER_ADDRESS: From address for alert emails
            APP_BASE_URL: Base URL for review links
            SMS_SENDER_ID: SMS sender id (default GLRS)
            DIGEST_LOOKBACK_HOURS: Digest window (default 24)
            NOTIFICATIONS_ENABLED: "false" disables outbound sends
        """
        return cls(
            channel_timeout_seconds=float(os.getenv("NOTIFICATION_CHANNEL_TIMEOUT", "5.0")),
            region=os.getenv("AWS_REGION", "us-west-2"),
            ses_sender_address=os.getenv("SES_SENDER_ADDRESS", cls.ses_sender_address),
            app_base_url=os.getenv("APP_BASE_URL", cls.app_base_url),
            sms_sender_id=os.getenv("SMS_SENDER_ID", cls.sms_sender_id),
            digest_lookback_hours=int(os.getenv("DIGEST_LOOKBACK_HOURS", "24")),
            enabled=os.getenv("NOTIFICATIONS_ENABLED", "true").lower() == "true",
        )
