"""Tests for crisis tier, alert status and channel models."""
import pytest

from glrs.shared.models import (
    AlertStatus,
    CrisisTier,
    InvalidTierError,
    NotificationChannel,
)


class TestCrisisTier:
    """Tiers form a total order by severity."""

    def test_ordering(self):
        assert CrisisTier.CRITICAL > CrisisTier.HIGH > CrisisTier.MODERATE
        assert CrisisTier.MODERATE > CrisisTier.STANDARD > CrisisTier.NONE

    def test_max_by_severity(self):
        tiers = [CrisisTier.STANDARD, CrisisTier.CRITICAL, CrisisTier.MODERATE]
        assert max(tiers) is CrisisTier.CRITICAL

    def test_sorting(self):
        assert sorted([CrisisTier.HIGH, CrisisTier.NONE, CrisisTier.CRITICAL]) == [
            CrisisTier.NONE, CrisisTier.HIGH, CrisisTier.CRITICAL,
        ]

    def test_comparison_with_other_types_unsupported(self):
        with pytest.raises(TypeError):
            CrisisTier.HIGH < 3

    def test_actionable_tiers(self):
        assert CrisisTier.CRITICAL.is_actionable
        assert CrisisTier.HIGH.is_actionable
        assert CrisisTier.MODERATE.is_actionable
        assert not CrisisTier.STANDARD.is_actionable
        assert not CrisisTier.NONE.is_actionable

    def test_keyword_tiers_exclude_none(self):
        assert CrisisTier.NONE not in CrisisTier.keyword_tiers()
        assert CrisisTier.keyword_tiers()[0] is CrisisTier.CRITICAL

    @pytest.mark.parametrize("value,expected", [
        ("critical", CrisisTier.CRITICAL),
        ("HIGH", CrisisTier.HIGH),
        ("  Moderate ", CrisisTier.MODERATE),
        (CrisisTier.STANDARD, CrisisTier.STANDARD),
    ])
    def test_from_value(self, value, expected):
        assert CrisisTier.from_value(value) is expected

    @pytest.mark.parametrize("value", ["severe", "", None, 4])
    def test_from_value_rejects_unknown(self, value):
        with pytest.raises(InvalidTierError):
            CrisisTier.from_value(value)

    def test_invalid_tier_is_value_error(self):
        assert issubclass(InvalidTierError, ValueError)


class TestAlertStatus:
    """Status transitions only move forward."""

    def test_forward_transitions_allowed(self):
        assert AlertStatus.OPEN.can_transition_to(AlertStatus.ACKNOWLEDGED)
        assert AlertStatus.OPEN.can_transition_to(AlertStatus.RESOLVED)
        assert AlertStatus.ACKNOWLEDGED.can_transition_to(AlertStatus.RESOLVED)

    def test_backward_and_self_transitions_rejected(self):
        assert not AlertStatus.RESOLVED.can_transition_to(AlertStatus.OPEN)
        assert not AlertStatus.RESOLVED.can_transition_to(AlertStatus.ACKNOWLEDGED)
        assert not AlertStatus.ACKNOWLEDGED.can_transition_to(AlertStatus.OPEN)
        assert not AlertStatus.OPEN.can_transition_to(AlertStatus.OPEN)

    def test_only_resolved_is_terminal(self):
        assert AlertStatus.RESOLVED.is_terminal
        assert not AlertStatus.OPEN.is_terminal
        assert not AlertStatus.ACKNOWLEDGED.is_terminal


class TestNotificationChannel:
    def test_immediate_channels(self):
        assert NotificationChannel.immediate() == frozenset({
            NotificationChannel.PUSH,
            NotificationChannel.EMAIL,
            NotificationChannel.SMS,
        })
