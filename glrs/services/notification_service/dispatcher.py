"""Notification dispatcher - fans alerts out to coach channels.

Each channel send is its own task with its own timeout. A failing or
stalled provider is recorded in that channel's result and never delays or
fails the other channels: a broken email provider cannot prevent SMS
delivery.
"""
import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Union

from glrs.shared.database import get_connection_manager
from glrs.shared.models import AlertStatus, CrisisTier, NotificationChannel
from glrs.shared.utils import hash_pii
from glrs.services.crisis_engine.handler import AlertLifecycleManager
from glrs.services.crisis_engine.models import CrisisAlert
from .config import NotificationConfig
from .content import NotificationContent, build_alert_content, build_escalation_content
from .matrix import ESCALATION_POLICY, DeliveryTiming, get_matrix_entry
from .recipients import (
    CoachContact,
    PostgresRecipientDirectory,
    RecipientDirectory,
    StaticRecipientDirectory,
)
from .senders import (
    EmailSender,
    PushSender,
    SesEmailSender,
    SmsSender,
    SnsPushSender,
    SnsSmsSender,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelResult:
    """Outcome of one channel send."""
    channel: NotificationChannel
    sent: bool
    provider_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False
    latency_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "sent": self.sent,
            "provider_id": self.provider_id,
            "error": self.error,
            "skipped": self.skipped,
            "latency_ms": round(self.latency_ms, 2),
        }


@dataclass(frozen=True)
class DispatchResult:
    """Per-channel outcome map for one dispatch call."""
    alert_id: str
    tier: CrisisTier
    timing: DeliveryTiming
    channels: Mapping[NotificationChannel, ChannelResult] = field(default_factory=dict)
    coach_id: Optional[str] = None
    latency_ms: float = 0.0

    @property
    def succeeded(self) -> List[NotificationChannel]:
        return [ch for ch, result in self.channels.items() if result.sent]

    @property
    def failed(self) -> List[NotificationChannel]:
        return [
            ch for ch, result in self.channels.items()
            if not result.sent and not result.skipped
        ]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def success_map(self) -> Dict[str, bool]:
        return {ch.value: result.sent for ch, result in self.channels.items()}

    def to_dict(self) -> dict:
        return {
            "alert_id": self.alert_id,
            "tier": self.tier.value,
            "timing": self.timing.value,
            "coach_id": self.coach_id,
            "latency_ms": round(self.latency_ms, 2),
            "channels": {ch.value: result.to_dict() for ch, result in self.channels.items()},
        }


@dataclass
class EscalationSummary:
    """Result of one escalation sweep."""
    escalated: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    results: Dict[str, DispatchResult] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "escalated": len(self.escalated),
            "skipped": len(self.skipped),
            "alerts": {alert_id: result.to_dict() for alert_id, result in self.results.items()},
        }


class NotificationDispatcher:
    """Dispatches crisis alerts per the notification matrix.

    Never raises for channel failures; the returned DispatchResult carries
    the per-channel outcome and the alert records which channels delivered.
    """

    def __init__(
        self,
        lifecycle_manager: AlertLifecycleManager,
        recipients: RecipientDirectory,
        push_sender: PushSender,
        email_sender: EmailSender,
        sms_sender: SmsSender,
        config: Optional[NotificationConfig] = None,
    ):
        self.lifecycle_manager = lifecycle_manager
        self.recipients = recipients
        self.config = config or NotificationConfig()
        self._senders = {
            NotificationChannel.PUSH: push_sender,
            NotificationChannel.EMAIL: email_sender,
            NotificationChannel.SMS: sms_sender,
        }

        logger.info(
            "NOTIFICATION_DISPATCHER_INITIALIZED",
            extra={
                "channel_timeout_seconds": self.config.channel_timeout_seconds,
                "enabled": self.config.enabled,
            }
        )

    @property
    def email_sender(self) -> EmailSender:
        return self._senders[NotificationChannel.EMAIL]

    async def send_crisis_notifications(self, alert: CrisisAlert) -> DispatchResult:
        """Notify the member's coach through every channel the tier requires.

        CRITICAL sends push, email and SMS concurrently; HIGH sends push and
        email; MODERATE waits for the daily digest; STANDARD is log only.

        Returns:
            DispatchResult with one ChannelResult per immediate channel

        Logs:
            - NOTIFICATION_DEFERRED: MODERATE/STANDARD, nothing sent now
            - NOTIFICATION_DISPATCH_COMPLETED: per-channel outcome summary
            - NOTIFICATION_SLA_EXCEEDED: dispatch slower than the tier target
        """
        entry = get_matrix_entry(alert.tier)
        if entry.timing is not DeliveryTiming.IMMEDIATE:
            logger.info(
                "NOTIFICATION_DEFERRED",
                extra={"alert_id": alert.alert_id, "tier": alert.tier.value, "timing": entry.timing.value}
            )
            return DispatchResult(alert_id=alert.alert_id, tier=alert.tier, timing=entry.timing)

        start_time = time.perf_counter()
        coach = self.recipients.resolve_coach(alert.user_id, alert.coach_id)
        content = self._alert_content(alert, coach)
        channels = await self._dispatch(alert, entry.immediate_channels, coach, content)
        latency_ms = (time.perf_counter() - start_time) * 1000

        result = DispatchResult(
            alert_id=alert.alert_id,
            tier=alert.tier,
            timing=entry.timing,
            channels=channels,
            coach_id=coach.coach_id if coach else None,
            latency_ms=latency_ms,
        )
        self._record_outcomes(alert.alert_id, result)

        logger.info(
            "NOTIFICATION_DISPATCH_COMPLETED",
            extra={
                "alert_id": alert.alert_id,
                "tier": alert.tier.value,
                "outcomes": result.success_map(),
                "latency_ms": latency_ms,
                "sla_ms": entry.urgency_seconds * 1000,
            }
        )
        if latency_ms > entry.urgency_seconds * 1000:
            logger.warning(
                "NOTIFICATION_SLA_EXCEEDED",
                extra={
                    "alert_id": alert.alert_id,
                    "tier": alert.tier.value,
                    "latency_ms": latency_ms,
                    "sla_ms": entry.urgency_seconds * 1000,
                }
            )
        return result

    async def retry_failed_notifications(
        self,
        alert: CrisisAlert,
        failed_channels: Iterable[Union[str, NotificationChannel]],
    ) -> DispatchResult:
        """Re-attempt only the named channels that have not yet delivered.

        Channels already delivered, or not part of the tier's matrix entry,
        are reported as skipped and never re-sent.
        """
        current = self.lifecycle_manager.get_alert(alert.alert_id)
        entry = get_matrix_entry(current.tier)
        requested = {NotificationChannel(ch) for ch in failed_channels}

        skipped: Dict[NotificationChannel, ChannelResult] = {}
        to_retry = set()
        for channel in requested:
            if current.notifications_sent.get(channel.value):
                skipped[channel] = ChannelResult(channel, sent=True, skipped=True)
            elif channel not in entry.immediate_channels:
                skipped[channel] = ChannelResult(
                    channel, sent=False, skipped=True, error=f"{channel.value} not used for tier {current.tier.value}"
                )
            elif current.status is AlertStatus.RESOLVED:
                skipped[channel] = ChannelResult(channel, sent=False, skipped=True, error="alert resolved")
            else:
                to_retry.add(channel)

        start_time = time.perf_counter()
        coach = None
        channels: Dict[NotificationChannel, ChannelResult] = {}
        if to_retry:
            coach = self.recipients.resolve_coach(current.user_id, current.coach_id)
            content = self._alert_content(current, coach)
            channels = await self._dispatch(current, to_retry, coach, content)

        result = DispatchResult(
            alert_id=current.alert_id,
            tier=current.tier,
            timing=entry.timing,
            channels={**skipped, **channels},
            coach_id=coach.coach_id if coach else None,
            latency_ms=(time.perf_counter() - start_time) * 1000,
        )
        if channels:
            self._record_outcomes(current.alert_id, result)

        logger.info(
            "NOTIFICATION_RETRY_COMPLETED",
            extra={
                "alert_id": current.alert_id,
                "retried": sorted(ch.value for ch in to_retry),
                "skipped": sorted(ch.value for ch in skipped),
                "outcomes": result.success_map(),
            }
        )
        return result

    async def escalate_unacknowledged_alerts(self) -> EscalationSummary:
        """Sweep OPEN alerts past their tier's escalation timeout.

        Safe to run concurrently with acknowledgment and with other sweeps:
        each alert is claimed with a conditional write on (status OPEN,
        escalation count) immediately before sending, so an acknowledged
        alert is never escalated and a round is never sent twice. An alert
        is re-escalated at most once per timeout interval.
        """
        summary = EscalationSummary()
        now = self.lifecycle_manager.now()

        for tier, rule in ESCALATION_POLICY.items():
            for alert in self.lifecycle_manager.find_unacknowledged_alerts_older_than(tier, rule.after):
                if alert.last_escalated_at and now - alert.last_escalated_at < rule.after:
                    summary.skipped.append(alert.alert_id)
                    continue

                claimed = self.lifecycle_manager.claim_escalation(alert)
                if claimed is None:
                    summary.skipped.append(alert.alert_id)
                    continue

                coach = self.recipients.resolve_coach(claimed.user_id, claimed.coach_id)
                content = None
                if coach is not None:
                    content = build_escalation_content(
                        claimed,
                        coach,
                        self.recipients.member_name(claimed.user_id),
                        now - claimed.created_at,
                        self.config,
                    )
                channels = await self._dispatch(claimed, rule.channels, coach, content)

                result = DispatchResult(
                    alert_id=claimed.alert_id,
                    tier=tier,
                    timing=DeliveryTiming.IMMEDIATE,
                    channels=channels,
                    coach_id=coach.coach_id if coach else None,
                )
                summary.escalated.append(claimed.alert_id)
                summary.results[claimed.alert_id] = result

                logger.critical(
                    "CRISIS_ALERT_ESCALATED",
                    extra={
                        "alert_id": claimed.alert_id,
                        "tier": tier.value,
                        "escalation_count": claimed.escalation_count,
                        "open_minutes": int((now - claimed.created_at).total_seconds() // 60),
                        "outcomes": result.success_map(),
                    }
                )

        logger.info(
            "ESCALATION_SWEEP_COMPLETED",
            extra={"escalated": len(summary.escalated), "skipped": len(summary.skipped)}
        )
        return summary

    # ------------------------------------------------------------------
    # Channel fan-out
    # ------------------------------------------------------------------

    def _alert_content(
        self,
        alert: CrisisAlert,
        coach: Optional[CoachContact],
    ) -> Optional[NotificationContent]:
        if coach is None:
            return None
        return build_alert_content(
            alert, coach, self.recipients.member_name(alert.user_id), self.config
        )

    async def _dispatch(
        self,
        alert: CrisisAlert,
        channels: Iterable[NotificationChannel],
        coach: Optional[CoachContact],
        content: Optional[NotificationContent],
    ) -> Dict[NotificationChannel, ChannelResult]:
        ordered = sorted(channels, key=lambda ch: ch.value)
        results = await asyncio.gather(
            *(self._send_channel(alert, channel, coach, content) for channel in ordered)
        )
        return dict(zip(ordered, results))

    async def _send_channel(
        self,
        alert: CrisisAlert,
        channel: NotificationChannel,
        coach: Optional[CoachContact],
        content: Optional[NotificationContent],
    ) -> ChannelResult:
        start_time = time.perf_counter()

        def failure(error: str) -> ChannelResult:
            latency_ms = (time.perf_counter() - start_time) * 1000
            log = logger.critical if alert.tier is CrisisTier.CRITICAL else logger.error
            log(
                "NOTIFICATION_CHANNEL_FAILED",
                extra={
                    "alert_id": alert.alert_id,
                    "tier": alert.tier.value,
                    "channel": channel.value,
                    "error": error,
                    "coach_id_hash": hash_pii(coach.coach_id) if coach else None,
                }
            )
            return ChannelResult(channel, sent=False, error=error, latency_ms=latency_ms)

        if coach is None or content is None:
            return failure("No coach assigned")

        if channel is NotificationChannel.PUSH:
            message = content.push
        elif channel is NotificationChannel.EMAIL:
            if not coach.email:
                return failure("No email address on file")
            message = content.email
        elif channel is NotificationChannel.SMS:
            if not coach.phone:
                return failure("No phone number on file")
            message = content.sms
        else:
            return failure(f"{channel.value} is not an outbound channel")

        try:
            provider_id = await asyncio.wait_for(
                self._senders[channel].send(message),
                timeout=self.config.channel_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return failure(f"timed out after {self.config.channel_timeout_seconds}s")
        except Exception as e:
            return failure(f"{type(e).__name__}: {e}")

        latency_ms = (time.perf_counter() - start_time) * 1000
        if provider_id is None:
            logger.warning(
                "NOTIFICATION_CHANNEL_DISABLED",
                extra={"alert_id": alert.alert_id, "channel": channel.value}
            )
            return ChannelResult(
                channel, sent=False, skipped=True, error="delivery disabled", latency_ms=latency_ms
            )

        logger.info(
            "NOTIFICATION_CHANNEL_SENT",
            extra={
                "alert_id": alert.alert_id,
                "channel": channel.value,
                "latency_ms": latency_ms,
            }
        )
        return ChannelResult(channel, sent=True, provider_id=provider_id, latency_ms=latency_ms)

    def _record_outcomes(self, alert_id: str, result: DispatchResult) -> None:
        outcomes = {
            ch.value: r.sent for ch, r in result.channels.items() if not r.skipped
        }
        if not outcomes:
            return
        try:
            self.lifecycle_manager.record_notification_outcomes(alert_id, outcomes)
        except Exception as e:
            # Delivery already happened; the result map still reports it
            logger.critical(
                "NOTIFICATION_STATUS_WRITE_FAILED",
                extra={"alert_id": alert_id, "outcomes": outcomes, "error": str(e)}
            )


def create_dispatcher(
    lifecycle_manager: AlertLifecycleManager,
    config: Optional[NotificationConfig] = None,
    recipients: Optional[RecipientDirectory] = None,
) -> NotificationDispatcher:
    """Build a dispatcher with the AWS senders.

    Recipients come from the users table when DB_HOST is set, else from the
    JSON file named by RECIPIENTS_FILE, else an empty directory.
    """
    config = config or NotificationConfig.from_env()
    if recipients is None:
        path = os.getenv("RECIPIENTS_FILE")
        if os.getenv("DB_HOST"):
            recipients = PostgresRecipientDirectory(get_connection_manager())
        elif path:
            recipients = StaticRecipientDirectory.from_file(path)
        else:
            recipients = StaticRecipientDirectory()

    return NotificationDispatcher(
        lifecycle_manager=lifecycle_manager,
        recipients=recipients,
        push_sender=SnsPushSender(config),
        email_sender=SesEmailSender(config),
        sms_sender=SnsSmsSender(config),
        config=config,
    )
