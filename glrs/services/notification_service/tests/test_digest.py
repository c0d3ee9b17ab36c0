"""Tests for the daily MODERATE digest."""
import pytest

from glrs.services.notification_service.digest import run_daily_digest
from glrs.services.notification_service.recipients import CoachContact, StaticRecipientDirectory
from glrs.services.notification_service.senders import EmailMessage, NotificationSendError


@pytest.fixture
def moderate(manager, detector):
    def create(user_id, text="cravings are bad", coach_id=None):
        return manager.create_crisis_alert(detector.scan(text), user_id=user_id, coach_id=coach_id)
    return create


class TestRunDailyDigest:
    @pytest.mark.asyncio
    async def test_one_email_per_coach(self, manager, recipients, email_sender, config, moderate):
        moderate("user_1")
        moderate("user_1", "having panic attacks")
        moderate("user_2")

        summary = await run_daily_digest(manager, recipients, email_sender, config)

        assert summary.coaches_notified == 2
        assert summary.alerts_digested == 3
        assert summary.failures == {}
        messages = {call.args[0].to: call.args[0] for call in email_sender.send.await_args_list}
        assert set(messages) == {"dana@example.test", "sam@example.test"}
        assert isinstance(messages["dana@example.test"], EmailMessage)
        assert messages["dana@example.test"].subject == "Daily Crisis Digest: 2 moderate alert(s)"
        assert "Alex (2)" in messages["dana@example.test"].text

    @pytest.mark.asyncio
    async def test_digested_alerts_not_sent_twice(self, manager, recipients, email_sender, config, moderate):
        alert = moderate("user_1")

        await run_daily_digest(manager, recipients, email_sender, config)
        second = await run_daily_digest(manager, recipients, email_sender, config)

        assert second.coaches_notified == 0
        assert email_sender.send.await_count == 1
        assert manager.get_alert(alert.alert_id).digested_at is not None

    @pytest.mark.asyncio
    async def test_failed_send_leaves_alerts_pending(
        self, manager, recipients, email_sender, config, moderate
    ):
        sam_alert = moderate("user_2")
        moderate("user_1")

        async def reject_sam(message):
            if message.to == "sam@example.test":
                raise NotificationSendError("mailbox unavailable")
            return "email-message-id"

        email_sender.send.side_effect = reject_sam
        summary = await run_daily_digest(manager, recipients, email_sender, config)

        assert summary.coaches_notified == 1
        assert summary.alerts_digested == 1
        assert "mailbox unavailable" in summary.failures["coach_2"]
        assert manager.get_alert(sam_alert.alert_id).digested_at is None

        email_sender.send.side_effect = None
        retry = await run_daily_digest(manager, recipients, email_sender, config)
        assert retry.coaches_notified == 1
        assert retry.alerts_digested == 1

    @pytest.mark.asyncio
    async def test_disabled_delivery_leaves_alerts_pending(
        self, manager, recipients, email_sender, config, moderate
    ):
        alert = moderate("user_1")
        email_sender.send.return_value = None

        summary = await run_daily_digest(manager, recipients, email_sender, config)

        assert summary.failures == {"coach_1": "Delivery disabled"}
        assert summary.alerts_digested == 0
        assert manager.get_alert(alert.alert_id).digested_at is None

    @pytest.mark.asyncio
    async def test_unassigned_member_reported(self, manager, recipients, email_sender, config, moderate):
        alert = moderate("user_3")

        summary = await run_daily_digest(manager, recipients, email_sender, config)

        assert summary.unassigned_alerts == [alert.alert_id]
        assert summary.coaches_notified == 0
        email_sender.send.assert_not_awaited()
        assert manager.get_alert(alert.alert_id).digested_at is None

    @pytest.mark.asyncio
    async def test_alert_coach_overrides_assignment(
        self, manager, recipients, email_sender, config, moderate
    ):
        moderate("user_1", coach_id="coach_2")

        await run_daily_digest(manager, recipients, email_sender, config)

        assert email_sender.send.await_args.args[0].to == "sam@example.test"

    @pytest.mark.asyncio
    async def test_outside_lookback_window_ignored(
        self, manager, recipients, email_sender, config, moderate, clock
    ):
        moderate("user_1")
        clock.advance(hours=25)
        recent = moderate("user_1", "having panic attacks")

        summary = await run_daily_digest(manager, recipients, email_sender, config)

        assert summary.alerts_digested == 1
        assert manager.get_alert(recent.alert_id).digested_at is not None

    @pytest.mark.asyncio
    async def test_immediate_tiers_not_digested(self, manager, detector, recipients, email_sender, config):
        manager.create_crisis_alert(detector.scan("I want to die"), user_id="user_1")
        manager.create_crisis_alert(detector.scan("I relapsed today"), user_id="user_1")

        summary = await run_daily_digest(manager, recipients, email_sender, config)

        assert summary.alerts_digested == 0
        email_sender.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_coach_without_email(self, manager, email_sender, config, moderate):
        directory = StaticRecipientDirectory(
            coaches={"coach_1": CoachContact(coach_id="coach_1", phone="+15555550100")},
            assignments={"user_1": "coach_1"},
        )
        moderate("user_1")

        summary = await run_daily_digest(manager, directory, email_sender, config)

        assert summary.failures == {"coach_1": "No email address on file"}
        email_sender.send.assert_not_awaited()
