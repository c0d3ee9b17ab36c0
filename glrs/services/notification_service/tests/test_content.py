"""Tests for notification content rendering."""
from datetime import datetime, timedelta

import pytest

from glrs.shared.models import CrisisTier
from glrs.services.crisis_engine.models import CrisisAlert
from glrs.services.notification_service.config import NotificationConfig
from glrs.services.notification_service.content import (
    build_alert_content,
    build_digest_email,
    build_escalation_content,
    push_priority,
    truncate,
)
from glrs.services.notification_service.recipients import CoachContact


def make_alert(tier=CrisisTier.CRITICAL, flagged="I want to kill myself", alert_id="alert_abc", user_id="user_1"):
    return CrisisAlert(
        alert_id=alert_id,
        user_id=user_id,
        tier=tier,
        source="check-in",
        triggered_by="kill myself",
        category="suicidal_ideation",
        flagged_content=flagged,
        created_at=datetime(2025, 11, 8, 12, 0, 0),
        matched_terms=("kill myself",),
    )


@pytest.fixture
def config():
    return NotificationConfig(app_base_url="https://app.example.test/")


@pytest.fixture
def coach():
    return CoachContact(
        coach_id="coach_1",
        email="dana@example.test",
        phone="+15555550100",
        push_endpoint_arn="arn:endpoint",
        first_name="Dana",
    )


class TestHelpers:
    def test_truncate(self):
        assert truncate("short") == "short"
        assert truncate("x" * 100) == "x" * 100
        assert truncate("x" * 101) == "x" * 100 + "..."

    def test_push_priority(self):
        assert push_priority(CrisisTier.CRITICAL) == "critical"
        assert push_priority(CrisisTier.HIGH) == "high"


class TestAlertContent:
    def test_channels_addressed_to_coach(self, coach, config):
        content = build_alert_content(make_alert(), coach, "Alex", config)

        assert content.push.endpoint_arn == "arn:endpoint"
        assert content.push.priority == "critical"
        assert content.push.data["alert_id"] == "alert_abc"
        assert content.email.to == "dana@example.test"
        assert content.sms.to == "+15555550100"

    def test_review_link_and_trigger(self, coach, config):
        content = build_alert_content(make_alert(), coach, "Alex", config)

        assert "https://app.example.test/coach/alerts/alert_abc" in content.email.text
        assert "https://app.example.test/coach/alerts/alert_abc" in content.sms.body
        assert 'Keyword "kill myself" (suicidal_ideation)' in content.email.text
        assert content.email.subject == "[CRITICAL] CRITICAL Crisis Alert: Alex"

    def test_sms_excerpt_truncated(self, coach, config):
        content = build_alert_content(make_alert(flagged="a" * 300), coach, "Alex", config)

        assert "a" * 100 + "..." in content.sms.body
        assert "a" * 101 not in content.sms.body
        assert "a" * 300 in content.email.text

    def test_html_escaped(self, coach, config):
        content = build_alert_content(make_alert(flagged="<script>alert(1)</script>"), coach, "Alex", config)

        assert "<script>" not in content.email.html
        assert "&lt;script&gt;" in content.email.html

    def test_high_push_priority(self, coach, config):
        content = build_alert_content(make_alert(tier=CrisisTier.HIGH), coach, "Alex", config)

        assert content.push.priority == "high"
        assert content.push.title == "[HIGH] HIGH Crisis Alert"


class TestEscalationContent:
    def test_reports_open_minutes(self, coach, config):
        content = build_escalation_content(make_alert(), coach, "Alex", timedelta(minutes=17, seconds=40), config)

        assert content.push.title == "ESCALATION: Unacknowledged Crisis Alert"
        assert "17 minutes" in content.push.body
        assert "17min" in content.sms.body
        assert content.push.data["type"] == "crisis_escalation"


class TestDigestEmail:
    def test_groups_by_member(self, coach, config):
        alerts = [
            make_alert(CrisisTier.MODERATE, alert_id="alert_1", user_id="user_1"),
            make_alert(CrisisTier.MODERATE, alert_id="alert_2", user_id="user_2"),
            make_alert(CrisisTier.MODERATE, alert_id="alert_3", user_id="user_1"),
        ]

        email = build_digest_email(coach, alerts, {"user_1": "Alex"}, config)

        assert email.subject == "Daily Crisis Digest: 3 moderate alert(s)"
        assert email.text.startswith("Hi Dana,")
        assert "3 moderate alert(s) across 2 member(s)" in email.text
        assert "Alex (2)" in email.text
        assert "PIR (1)" in email.text
        assert email.text.index("alert_3") < email.text.index("PIR (1)")
