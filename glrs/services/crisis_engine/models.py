"""Crisis alert records and lifecycle errors.

Alerts are immutable snapshots. Every state change produces a new snapshot
through a conditional write in the alert store; nothing mutates an alert
in place.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from glrs.shared.database import NotFoundError
from glrs.shared.models import AlertStatus, CrisisTier


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed from the alert's current state.

    Covers both illegal transitions (RESOLVED -> ACKNOWLEDGED) and lost races
    (two reviewers acknowledging the same OPEN alert).
    """

    def __init__(
        self,
        alert_id: str,
        current: Optional[AlertStatus],
        target: str,
    ):
        self.alert_id = alert_id
        self.current = current
        self.target = target
        current_value = current.value if current else "unknown"
        super().__init__(
            f"Alert {alert_id} cannot move to {target} from {current_value}"
        )


class AlertNotFoundError(NotFoundError):
    """Raised when an alert id does not exist in the alert store."""

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Alert not found: {alert_id}")


@dataclass(frozen=True)
class AlertNote:
    """Reviewer annotation on an alert."""
    author_id: str
    text: str
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "author_id": self.author_id,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlertNote":
        return cls(
            author_id=data["author_id"],
            text=data["text"],
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass(frozen=True)
class CrisisAlert:
    """Persisted record of an actionable detection.

    Created OPEN by the detection pipeline, then owned by the coach review
    workflow. Status only ever moves forward: OPEN -> ACKNOWLEDGED -> RESOLVED.

    Attributes:
        alert_id: Unique alert identifier
        user_id: Member whose text triggered the alert
        tier: Resolved crisis tier (CRITICAL, HIGH or MODERATE)
        source: Where the text came from (check-in, chat, reflection, ...)
        triggered_by: Phrase that resolved the tier
        category: Lexicon category of that phrase
        flagged_content: Sanitized excerpt of the member's text
        matched_terms: Every surviving phrase, for the reviewer
        coach_id: Assigned coach at alert time, when known
        notifications_sent: Channel value -> delivered flag
    """
    alert_id: str
    user_id: str
    tier: CrisisTier
    source: str
    triggered_by: str
    category: str
    flagged_content: str
    created_at: datetime = field(default_factory=datetime.utcnow)
    status: AlertStatus = AlertStatus.OPEN
    matched_terms: Tuple[str, ...] = ()
    coach_id: Optional[str] = None
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    notes: Tuple[AlertNote, ...] = ()
    notifications_sent: Mapping[str, bool] = field(default_factory=dict)
    escalation_count: int = 0
    last_escalated_at: Optional[datetime] = None
    digested_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal

    def delivered_channels(self) -> Tuple[str, ...]:
        return tuple(sorted(ch for ch, sent in self.notifications_sent.items() if sent))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "alert_id": self.alert_id,
            "user_id": self.user_id,
            "tier": self.tier.value,
            "source": self.source,
            "triggered_by": self.triggered_by,
            "category": self.category,
            "flagged_content": self.flagged_content,
            "matched_terms": list(self.matched_terms),
            "coach_id": self.coach_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": _iso(self.acknowledged_at),
            "resolved_by": self.resolved_by,
            "resolved_at": _iso(self.resolved_at),
            "resolution_notes": self.resolution_notes,
            "notes": [note.to_dict() for note in self.notes],
            "notifications_sent": dict(self.notifications_sent),
            "escalation_count": self.escalation_count,
            "last_escalated_at": _iso(self.last_escalated_at),
            "digested_at": _iso(self.digested_at),
        }
