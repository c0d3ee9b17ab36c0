"""Notification content for each channel.

Push and SMS carry a short excerpt; email carries the full sanitized
excerpt and a link to the coach review page.
"""
import html
from collections import OrderedDict
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Sequence

from glrs.shared.models import CrisisTier
from glrs.services.crisis_engine.models import CrisisAlert
from .config import NotificationConfig
from .recipients import CoachContact
from .senders import EmailMessage, PushMessage, SmsMessage

SHORT_EXCERPT_CHARS = 100

TIER_LABELS: Dict[CrisisTier, str] = {
    CrisisTier.CRITICAL: "[CRITICAL]",
    CrisisTier.HIGH: "[HIGH]",
    CrisisTier.MODERATE: "[MODERATE]",
    CrisisTier.STANDARD: "[INFO]",
}


def truncate(text: str, limit: int = SHORT_EXCERPT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def push_priority(tier: CrisisTier) -> str:
    return "critical" if tier is CrisisTier.CRITICAL else "high"


def _trigger_line(alert: CrisisAlert) -> str:
    if alert.category:
        return f'Keyword "{alert.triggered_by}" ({alert.category})'
    return f'Keyword "{alert.triggered_by}"'


@dataclass(frozen=True)
class NotificationContent:
    """Rendered messages for one alert and one coach."""
    push: PushMessage
    email: EmailMessage
    sms: SmsMessage


def build_alert_content(
    alert: CrisisAlert,
    coach: CoachContact,
    member_name: str,
    config: NotificationConfig,
) -> NotificationContent:
    """Render push, email and SMS content for an alert."""
    label = TIER_LABELS[alert.tier]
    tier_name = alert.tier.value.upper()
    trigger = _trigger_line(alert)
    review_url = config.review_url(alert.alert_id)

    push = PushMessage(
        title=f"{label} {tier_name} Crisis Alert",
        body=f"{member_name} needs immediate attention. {trigger} detected in {alert.source}.",
        priority=push_priority(alert.tier),
        target_user_id=coach.coach_id,
        endpoint_arn=coach.push_endpoint_arn,
        data={"alert_id": alert.alert_id, "tier": alert.tier.value, "type": "crisis"},
    )

    text = (
        f"{tier_name} crisis alert for {member_name}\n\n"
        f"Source: {alert.source}\n"
        f"Triggered by: {trigger}\n"
        f"Detected at: {alert.created_at.isoformat()}Z\n\n"
        f"Flagged content:\n\"{alert.flagged_content}\"\n\n"
        f"Review this alert: {review_url}\n"
    )
    email = EmailMessage(
        to=coach.email or "",
        subject=f"{label} {tier_name} Crisis Alert: {member_name}",
        html=_render_html(
            heading=f"{tier_name} crisis alert for {member_name}",
            rows=[
                ("Source", alert.source),
                ("Triggered by", trigger),
                ("Detected at", f"{alert.created_at.isoformat()}Z"),
                ("Flagged content", alert.flagged_content),
            ],
            link=review_url,
        ),
        text=text,
    )

    sms = SmsMessage(
        to=coach.phone or "",
        body=(
            f"GLRS CRISIS ALERT: {member_name} - {tier_name}\n"
            f"{trigger} in {alert.source}\n"
            f"\"{truncate(alert.flagged_content)}\"\n"
            f"Review: {review_url}"
        ),
    )
    return NotificationContent(push=push, email=email, sms=sms)


def build_escalation_content(
    alert: CrisisAlert,
    coach: CoachContact,
    member_name: str,
    open_for: timedelta,
    config: NotificationConfig,
) -> NotificationContent:
    """Render content for an alert that is still unacknowledged."""
    minutes = int(open_for.total_seconds() // 60)
    tier_name = alert.tier.value.upper()
    review_url = config.review_url(alert.alert_id)
    summary = f"{tier_name} alert for {member_name} has not been acknowledged for {minutes} minutes."

    return NotificationContent(
        push=PushMessage(
            title="ESCALATION: Unacknowledged Crisis Alert",
            body=summary,
            priority="critical",
            target_user_id=coach.coach_id,
            endpoint_arn=coach.push_endpoint_arn,
            data={"alert_id": alert.alert_id, "tier": alert.tier.value, "type": "crisis_escalation"},
        ),
        email=EmailMessage(
            to=coach.email or "",
            subject=f"ESCALATION: {tier_name} alert for {member_name} unacknowledged",
            html=_render_html(
                heading="Unacknowledged crisis alert",
                rows=[("Status", summary), ("Triggered by", _trigger_line(alert))],
                link=review_url,
            ),
            text=f"{summary}\nImmediate action required.\nReview: {review_url}\n",
        ),
        sms=SmsMessage(
            to=coach.phone or "",
            body=(
                f"GLRS ESCALATION: {tier_name} alert for {member_name} unacknowledged "
                f"for {minutes}min. Immediate action required. {review_url}"
            ),
        ),
    )


def build_digest_email(
    coach: CoachContact,
    alerts: Sequence[CrisisAlert],
    member_names: Dict[str, str],
    config: NotificationConfig,
) -> EmailMessage:
    """One email summarizing a coach's MODERATE alerts, grouped by member."""
    by_member: "OrderedDict[str, List[CrisisAlert]]" = OrderedDict()
    for alert in alerts:
        by_member.setdefault(alert.user_id, []).append(alert)

    text_lines = [
        f"Hi {coach.first_name},",
        "",
        f"{len(alerts)} moderate alert(s) across {len(by_member)} member(s) in the last day.",
        "",
    ]
    rows = []
    for user_id, member_alerts in by_member.items():
        name = member_names.get(user_id, "PIR")
        text_lines.append(f"{name} ({len(member_alerts)})")
        for alert in member_alerts:
            line = f"{_trigger_line(alert)} in {alert.source}: \"{truncate(alert.flagged_content)}\""
            text_lines.append(f"  - {line}")
            text_lines.append(f"    {config.review_url(alert.alert_id)}")
            rows.append((name, line))
        text_lines.append("")

    return EmailMessage(
        to=coach.email or "",
        subject=f"Daily Crisis Digest: {len(alerts)} moderate alert(s)",
        html=_render_html(
            heading="Daily crisis digest",
            rows=rows,
            link=f"{config.app_base_url.rstrip('/')}/coach/alerts",
        ),
        text="\n".join(text_lines),
    )


def _render_html(heading: str, rows: Sequence[tuple], link: str) -> str:
    body = "".join(
        f"<tr><th align=\"left\">{html.escape(label)}</th><td>{html.escape(value)}</td></tr>"
        for label, value in rows
    )
    return (
        f"<h2>{html.escape(heading)}</h2>"
        f"<table>{body}</table>"
        f"<p><a href=\"{html.escape(link)}\">Review in GLRS</a></p>"
    )
