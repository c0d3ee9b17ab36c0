"""Tests for recipient lookup."""
import json
from contextlib import contextmanager
from unittest.mock import MagicMock

import pytest

from glrs.services.notification_service.recipients import (
    CoachContact,
    PostgresRecipientDirectory,
    StaticRecipientDirectory,
)


class TestCoachContact:
    def test_from_dict_accepts_phone_number_key(self):
        coach = CoachContact.from_dict("c1", {"email": "a@example.test", "phone_number": "+1555"})

        assert coach.phone == "+1555"
        assert coach.first_name == "Coach"


class TestStaticRecipientDirectory:
    def test_explicit_coach_wins(self, recipients):
        assert recipients.resolve_coach("user_1", "coach_2").coach_id == "coach_2"

    def test_assigned_coach(self, recipients):
        assert recipients.resolve_coach("user_1").coach_id == "coach_1"

    def test_unassigned_member(self, recipients):
        assert recipients.resolve_coach("user_9") is None

    def test_unknown_coach(self, recipients):
        assert recipients.resolve_coach("user_1", "coach_404") is None

    def test_member_name_default(self, recipients):
        assert recipients.member_name("user_1") == "Alex"
        assert recipients.member_name("user_9") == "PIR"

    def test_from_file(self, tmp_path):
        path = tmp_path / "recipients.json"
        path.write_text(json.dumps({
            "coaches": {"coach_1": {"email": "dana@example.test", "phone": "+15555550100", "first_name": "Dana"}},
            "assignments": {"user_1": "coach_1"},
            "display_names": {"user_1": "Alex"},
        }))

        directory = StaticRecipientDirectory.from_file(str(path))

        coach = directory.resolve_coach("user_1")
        assert coach == CoachContact(
            coach_id="coach_1", email="dana@example.test", phone="+15555550100", first_name="Dana"
        )
        assert directory.member_name("user_1") == "Alex"


class TestPostgresRecipientDirectory:
    @pytest.fixture
    def cursor(self):
        return MagicMock()

    @pytest.fixture
    def directory(self, cursor):
        conn = MagicMock()
        conn.cursor.return_value.__enter__.return_value = cursor

        @contextmanager
        def get_connection():
            yield conn

        connection_manager = MagicMock()
        connection_manager.get_connection.side_effect = get_connection
        return PostgresRecipientDirectory(connection_manager)

    def test_get_coach(self, directory, cursor):
        cursor.fetchone.return_value = ("coach_1", "dana@example.test", None, "arn:x", None, None)

        coach = directory.get_coach("coach_1")

        assert coach.email == "dana@example.test"
        assert coach.first_name == "Coach"
        assert cursor.execute.call_args.args[1] == ("coach_1",)

    def test_missing_rows(self, directory, cursor):
        cursor.fetchone.return_value = None

        assert directory.get_coach("coach_404") is None
        assert directory.get_assigned_coach_id("user_9") is None
        assert directory.resolve_coach("user_9") is None

    def test_assigned_coach_and_name(self, directory, cursor):
        cursor.fetchone.return_value = ("coach_1",)
        assert directory.get_assigned_coach_id("user_1") == "coach_1"

        cursor.fetchone.return_value = ("Alex",)
        assert directory.member_name("user_1") == "Alex"
