"""Recipient lookup - which coach hears about a member's alert.

A member's assigned coach is resolved at notification time unless the alert
already names one. A missing coach or contact detail is a channel failure,
not an exception.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from glrs.shared.database import ConnectionManager
from glrs.shared.utils import hash_pii

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoachContact:
    """Contact details for a coach."""
    coach_id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    push_endpoint_arn: Optional[str] = None
    first_name: str = "Coach"
    last_name: str = ""

    @classmethod
    def from_dict(cls, coach_id: str, data: Mapping[str, Any]) -> "CoachContact":
        return cls(
            coach_id=coach_id,
            email=data.get("email"),
            phone=data.get("phone") or data.get("phone_number"),
            push_endpoint_arn=data.get("push_endpoint_arn"),
            first_name=data.get("first_name") or "Coach",
            last_name=data.get("last_name") or "",
        )


class RecipientDirectory(ABC):
    """Resolves coaches and member display names."""

    @abstractmethod
    def get_coach(self, coach_id: str) -> Optional[CoachContact]:
        """Contact details for a coach, or None."""

    @abstractmethod
    def get_assigned_coach_id(self, user_id: str) -> Optional[str]:
        """The member's assigned coach, or None."""

    @abstractmethod
    def get_display_name(self, user_id: str) -> Optional[str]:
        """The member's display name, or None."""

    def resolve_coach(self, user_id: str, coach_id: Optional[str] = None) -> Optional[CoachContact]:
        """Coach for an alert: the given coach_id, else the member's assigned coach."""
        coach_id = coach_id or self.get_assigned_coach_id(user_id)
        if not coach_id:
            logger.error(
                "COACH_NOT_ASSIGNED",
                extra={"user_id_hash": hash_pii(user_id)}
            )
            return None

        coach = self.get_coach(coach_id)
        if coach is None:
            logger.error(
                "COACH_NOT_FOUND",
                extra={"coach_id_hash": hash_pii(coach_id), "user_id_hash": hash_pii(user_id)}
            )
        return coach

    def member_name(self, user_id: str) -> str:
        return self.get_display_name(user_id) or "PIR"


class StaticRecipientDirectory(RecipientDirectory):
    """In-memory directory for development and tests."""

    def __init__(
        self,
        coaches: Optional[Mapping[str, CoachContact]] = None,
        assignments: Optional[Mapping[str, str]] = None,
        display_names: Optional[Mapping[str, str]] = None,
    ):
        self._coaches: Dict[str, CoachContact] = dict(coaches or {})
        self._assignments: Dict[str, str] = dict(assignments or {})
        self._display_names: Dict[str, str] = dict(display_names or {})

    @classmethod
    def from_file(cls, path: str) -> "StaticRecipientDirectory":
        """Load from a JSON file.

        Format:
            {
                "coaches": {"coach_1": {"email": "...", "phone": "+1..."}},
                "assignments": {"user_1": "coach_1"},
                "display_names": {"user_1": "Alex"}
            }
        """
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)

        directory = cls(
            coaches={
                coach_id: CoachContact.from_dict(coach_id, details)
                for coach_id, details in data.get("coaches", {}).items()
            },
            assignments=data.get("assignments", {}),
            display_names=data.get("display_names", {}),
        )
        logger.info(
            "RECIPIENT_DIRECTORY_LOADED",
            extra={"coaches": len(directory._coaches), "assignments": len(directory._assignments)}
        )
        return directory

    def get_coach(self, coach_id: str) -> Optional[CoachContact]:
        return self._coaches.get(coach_id)

    def get_assigned_coach_id(self, user_id: str) -> Optional[str]:
        return self._assignments.get(user_id)

    def get_display_name(self, user_id: str) -> Optional[str]:
        return self._display_names.get(user_id)


class PostgresRecipientDirectory(RecipientDirectory):
    """Directory backed by the users table."""

    def __init__(self, connection_manager: ConnectionManager):
        self.connection_manager = connection_manager

    def _fetch_one(self, query: str, params: tuple) -> Optional[tuple]:
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone()

    def get_coach(self, coach_id: str) -> Optional[CoachContact]:
        row = self._fetch_one(
            """
            SELECT id, email, phone, push_endpoint_arn, first_name, last_name
            FROM users WHERE id = %s AND role = 'coach'
            """,
            (coach_id,),
        )
        if row is None:
            return None
        return CoachContact(
            coach_id=row[0],
            email=row[1],
            phone=row[2],
            push_endpoint_arn=row[3],
            first_name=row[4] or "Coach",
            last_name=row[5] or "",
        )

    def get_assigned_coach_id(self, user_id: str) -> Optional[str]:
        row = self._fetch_one("SELECT assigned_coach FROM users WHERE id = %s", (user_id,))
        return row[0] if row else None

    def get_display_name(self, user_id: str) -> Optional[str]:
        row = self._fetch_one("SELECT first_name FROM users WHERE id = %s", (user_id,))
        return row[0] if row else None
