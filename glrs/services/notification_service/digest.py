"""Daily crisis digest - batched MODERATE alerts, one email per coach.

Runs once a day (8 PM Pacific, from the scheduler). Looks back over the
digest window for MODERATE alerts not yet digested, groups them by coach and
then by member, and sends each coach a single email. Alerts are marked
digested only after their coach's email was accepted, so a failed send is
picked up by the next run.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from glrs.shared.utils import hash_pii
from glrs.services.crisis_engine.handler import AlertLifecycleManager
from glrs.services.crisis_engine.models import CrisisAlert
from .config import NotificationConfig
from .content import build_digest_email
from .recipients import RecipientDirectory
from .senders import EmailSender

logger = logging.getLogger(__name__)


@dataclass
class DigestSummary:
    """Result of one digest run."""
    coaches_notified: int = 0
    alerts_digested: int = 0
    unassigned_alerts: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "coaches_notified": self.coaches_notified,
            "alerts_digested": self.alerts_digested,
            "unassigned_alerts": len(self.unassigned_alerts),
            "failed_coaches": len(self.failures),
        }


async def run_daily_digest(
    lifecycle_manager: AlertLifecycleManager,
    recipients: RecipientDirectory,
    email_sender: EmailSender,
    config: Optional[NotificationConfig] = None,
) -> DigestSummary:
    """Send each coach one email covering their members' MODERATE alerts.

    Coaches with no alerts in the window get nothing. Alerts whose member
    has no assigned coach are logged and left undigested.

    Logs:
        - DIGEST_RUN_STARTED / DIGEST_RUN_COMPLETED
        - DIGEST_SEND_FAILED: per coach, alerts stay pending
    """
    config = config or NotificationConfig()
    candidates = lifecycle_manager.find_digest_candidates(config.digest_lookback)
    summary = DigestSummary()

    logger.info(
        "DIGEST_RUN_STARTED",
        extra={"candidates": len(candidates), "lookback_hours": config.digest_lookback_hours}
    )

    by_coach: Dict[str, List[CrisisAlert]] = {}
    for alert in candidates:
        coach_id = alert.coach_id or recipients.get_assigned_coach_id(alert.user_id)
        if not coach_id:
            summary.unassigned_alerts.append(alert.alert_id)
            logger.warning(
                "DIGEST_ALERT_UNASSIGNED",
                extra={"alert_id": alert.alert_id, "user_id_hash": hash_pii(alert.user_id)}
            )
            continue
        by_coach.setdefault(coach_id, []).append(alert)

    outcomes = await asyncio.gather(
        *(
            _send_coach_digest(coach_id, alerts, recipients, email_sender, config)
            for coach_id, alerts in by_coach.items()
        )
    )

    for (coach_id, alerts), error in zip(by_coach.items(), outcomes):
        if error is not None:
            summary.failures[coach_id] = error
            continue
        summary.coaches_notified += 1
        for alert in alerts:
            if lifecycle_manager.mark_digested(alert.alert_id) is not None:
                summary.alerts_digested += 1

    logger.info("DIGEST_RUN_COMPLETED", extra=summary.to_dict())
    return summary


async def _send_coach_digest(
    coach_id: str,
    alerts: List[CrisisAlert],
    recipients: RecipientDirectory,
    email_sender: EmailSender,
    config: NotificationConfig,
) -> Optional[str]:
    """Send one coach's digest; return an error string or None on success."""
    coach = recipients.get_coach(coach_id)
    if coach is None or not coach.email:
        error = "Coach not found" if coach is None else "No email address on file"
    else:
        names = {alert.user_id: recipients.member_name(alert.user_id) for alert in alerts}
        message = build_digest_email(coach, alerts, names, config)
        try:
            provider_id = await asyncio.wait_for(
                email_sender.send(message), timeout=config.channel_timeout_seconds
            )
        except asyncio.TimeoutError:
            error = f"timed out after {config.channel_timeout_seconds}s"
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
        else:
            if provider_id is None:
                return "Delivery disabled"

            logger.info(
                "DIGEST_SENT",
                extra={
                    "coach_id_hash": hash_pii(coach_id),
                    "alert_count": len(alerts),
                    "member_count": len(names),
                }
            )
            return None

    logger.error(
        "DIGEST_SEND_FAILED",
        extra={"coach_id_hash": hash_pii(coach_id), "alert_count": len(alerts), "error": error}
    )
    return error
