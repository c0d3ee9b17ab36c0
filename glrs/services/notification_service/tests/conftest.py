"""Shared fixtures for notification service tests."""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from glrs.shared.utils import configure_pii_salt
from glrs.services.crisis_engine.alert_repository import AlertRepository
from glrs.services.crisis_engine.handler import AlertLifecycleManager
from glrs.services.notification_service.config import NotificationConfig
from glrs.services.notification_service.recipients import CoachContact, StaticRecipientDirectory
from glrs.services.safety_service.detector import CrisisDetector


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture(scope="session")
def detector():
    return CrisisDetector()


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 11, 8, 12, 0, 0))


@pytest.fixture
def manager(clock):
    return AlertLifecycleManager(repository=AlertRepository(), clock=clock)


@pytest.fixture
def coach():
    return CoachContact(
        coach_id="coach_1",
        email="dana@example.test",
        phone="+15555550100",
        push_endpoint_arn="arn:aws:sns:us-west-2:123456789012:endpoint/GCM/glrs/abc",
        first_name="Dana",
        last_name="Reyes",
    )


@pytest.fixture
def second_coach():
    return CoachContact(coach_id="coach_2", email="sam@example.test", first_name="Sam")


@pytest.fixture
def recipients(coach, second_coach):
    return StaticRecipientDirectory(
        coaches={"coach_1": coach, "coach_2": second_coach},
        assignments={"user_1": "coach_1", "user_2": "coach_2"},
        display_names={"user_1": "Alex", "user_2": "Jordan"},
    )


@pytest.fixture
def config():
    return NotificationConfig(channel_timeout_seconds=0.2, app_base_url="https://app.example.test")


def make_sender(prefix):
    sender = MagicMock()
    sender.send = AsyncMock(return_value=f"{prefix}-message-id")
    return sender


@pytest.fixture
def push_sender():
    return make_sender("push")


@pytest.fixture
def email_sender():
    return make_sender("email")


@pytest.fixture
def sms_sender():
    return make_sender("sms")
