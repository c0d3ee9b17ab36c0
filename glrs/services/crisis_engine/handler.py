"""Alert lifecycle manager - persists detections and drives review state.

Receives actionable detections from the Safety Service, stores them as
crisis alerts and moves them through OPEN -> ACKNOWLEDGED -> RESOLVED as
coaches respond.
"""
import logging
import os
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Optional

from glrs.shared.database import get_connection_manager
from glrs.shared.models import AlertStatus, CrisisTier
from glrs.shared.utils import hash_pii, sanitize_excerpt
from glrs.services.safety_service.config import SafetyConfig
from glrs.services.safety_service.detector import DetectionResult
from .alert_repository import AlertRepository
from .models import AlertNote, CrisisAlert, InvalidTransitionError

logger = logging.getLogger(__name__)


# Tiers that produce a reviewable alert; STANDARD is log-only
ALERT_CREATING_TIERS = frozenset({
    CrisisTier.CRITICAL,
    CrisisTier.HIGH,
    CrisisTier.MODERATE,
})


class AlertLifecycleManager:
    """Creates crisis alerts and manages their review state.

    Status transitions are conditional writes against the alert store, so
    concurrent reviewers cannot both move the same alert out of a state:
    the loser gets InvalidTransitionError. Store failures propagate.
    """

    def __init__(
        self,
        repository: Optional[AlertRepository] = None,
        max_excerpt_chars: int = 500,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """Initialize manager with dependencies.

        Args:
            repository: Alert store (in-memory when omitted)
            max_excerpt_chars: Longest flagged-content excerpt kept on an alert
            clock: Source of "now" (UTC)
        """
        self.repository = repository or AlertRepository()
        self.max_excerpt_chars = max_excerpt_chars
        self._clock = clock

        logger.info(
            "ALERT_LIFECYCLE_MANAGER_INITIALIZED",
            extra={"backend": "memory" if self.repository.uses_memory else "postgresql"}
        )

    def create_crisis_alert(
        self,
        detection_result: DetectionResult,
        user_id: str,
        source: Optional[str] = None,
        coach_id: Optional[str] = None,
    ) -> CrisisAlert:
        """Persist an actionable detection as an OPEN alert.

        Args:
            detection_result: Result of scan_for_crisis
            user_id: Member whose text was scanned
            source: Where the text came from; defaults to the scan's source
            coach_id: Assigned coach, when known

        Returns:
            The stored CrisisAlert

        Raises:
            ValueError: If the resolved tier does not create alerts
            RepositoryError: If the alert store is unavailable

        Logs:
            - CRISIS_ALERT_CREATED: critical level for CRITICAL, warning otherwise
        """
        tier = detection_result.resolved_tier
        if tier not in ALERT_CREATING_TIERS:
            raise ValueError(f"Tier {tier.value} does not create alerts")

        primary = detection_result.primary_term
        alert = CrisisAlert(
            alert_id=f"alert_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            tier=tier,
            source=source or detection_result.source or "unknown",
            triggered_by=primary.phrase if primary else "",
            category=primary.category if primary else "",
            flagged_content=sanitize_excerpt(detection_result.input_text, self.max_excerpt_chars),
            created_at=self._clock(),
            matched_terms=tuple(term.phrase for term in detection_result.matched_terms),
            coach_id=coach_id,
        )
        stored = self.repository.insert(alert)

        log = logger.critical if tier is CrisisTier.CRITICAL else logger.warning
        log(
            "CRISIS_ALERT_CREATED",
            extra={
                "alert_id": stored.alert_id,
                "user_id_hash": hash_pii(user_id),
                "tier": tier.value,
                "category": stored.category,
                "source": stored.source,
                "match_count": len(stored.matched_terms),
            }
        )
        return stored

    def acknowledge_alert(self, alert_id: str, reviewer_id: str) -> CrisisAlert:
        """Move an alert from OPEN to ACKNOWLEDGED.

        Raises:
            AlertNotFoundError: If the alert does not exist
            InvalidTransitionError: If the alert is not OPEN, including when a
                concurrent reviewer acknowledged it first
        """
        alert = self.repository.get(alert_id)
        if alert.status is not AlertStatus.OPEN:
            self._reject(alert_id, alert.status, AlertStatus.ACKNOWLEDGED.value, reviewer_id)

        now = self._clock()
        updated = self.repository.transition(
            alert_id,
            AlertStatus.OPEN,
            {
                "status": AlertStatus.ACKNOWLEDGED.value,
                "acknowledged_by": reviewer_id,
                "acknowledged_at": now,
            },
        )
        if updated is None:
            current = self.repository.get(alert_id)
            self._reject(alert_id, current.status, AlertStatus.ACKNOWLEDGED.value, reviewer_id)

        logger.info(
            "CRISIS_ALERT_ACKNOWLEDGED",
            extra={
                "alert_id": alert_id,
                "reviewer_id_hash": hash_pii(reviewer_id),
                "tier": updated.tier.value,
                "time_to_acknowledge_seconds": (now - updated.created_at).total_seconds(),
            }
        )
        return updated

    def resolve_alert(
        self,
        alert_id: str,
        reviewer_id: str,
        resolution_notes: str = "",
    ) -> CrisisAlert:
        """Move an OPEN or ACKNOWLEDGED alert to RESOLVED.

        Raises:
            AlertNotFoundError: If the alert does not exist
            InvalidTransitionError: If the alert is already RESOLVED or its
                status changed while resolving
        """
        alert = self.repository.get(alert_id)
        if not alert.status.can_transition_to(AlertStatus.RESOLVED):
            self._reject(alert_id, alert.status, AlertStatus.RESOLVED.value, reviewer_id)

        now = self._clock()
        updated = self.repository.transition(
            alert_id,
            alert.status,
            {
                "status": AlertStatus.RESOLVED.value,
                "resolved_by": reviewer_id,
                "resolved_at": now,
                "resolution_notes": resolution_notes,
            },
        )
        if updated is None:
            current = self.repository.get(alert_id)
            self._reject(alert_id, current.status, AlertStatus.RESOLVED.value, reviewer_id)

        logger.info(
            "CRISIS_ALERT_RESOLVED",
            extra={
                "alert_id": alert_id,
                "reviewer_id_hash": hash_pii(reviewer_id),
                "tier": updated.tier.value,
                "from_status": alert.status.value,
                "time_to_resolve_seconds": (now - updated.created_at).total_seconds(),
            }
        )
        return updated

    def add_alert_note(self, alert_id: str, author_id: str, note: str) -> CrisisAlert:
        """Append a note without changing status.

        Raises:
            ValueError: If the note is empty
            AlertNotFoundError: If the alert does not exist
            InvalidTransitionError: If the alert is RESOLVED
        """
        if not note or not note.strip():
            raise ValueError("Note text is required")

        entry = AlertNote(author_id=author_id, text=note.strip(), created_at=self._clock())
        updated = self.repository.append_note(alert_id, entry)
        if updated is None:
            self._reject(alert_id, AlertStatus.RESOLVED, "note", author_id)

        logger.info(
            "CRISIS_ALERT_NOTE_ADDED",
            extra={
                "alert_id": alert_id,
                "author_id_hash": hash_pii(author_id),
                "note_count": len(updated.notes),
            }
        )
        return updated

    def find_unacknowledged_alerts_older_than(
        self,
        tier: CrisisTier,
        duration: timedelta,
    ) -> List[CrisisAlert]:
        """OPEN alerts of a tier created more than `duration` ago."""
        tier = CrisisTier.from_value(tier)
        cutoff = self._clock() - duration
        return self.repository.find_open_older_than(tier, cutoff)

    def get_alert(self, alert_id: str) -> CrisisAlert:
        """Raises AlertNotFoundError for an unknown id."""
        return self.repository.get(alert_id)

    def get_active_alerts(self, tier: Optional[CrisisTier] = None) -> List[CrisisAlert]:
        """All alerts that are not RESOLVED, optionally for one tier."""
        return self.repository.find_active(tier)

    def log_detection(
        self,
        detection_result: DetectionResult,
        user_id: str,
        alert_id: Optional[str] = None,
    ) -> Optional[str]:
        """Record a detection row for analytics. NONE results are not logged."""
        if detection_result.resolved_tier is CrisisTier.NONE:
            return None
        return self.repository.log_detection(
            user_id_hash=hash_pii(user_id),
            tier=detection_result.resolved_tier,
            source=detection_result.source,
            categories=[term.category for term in detection_result.matched_terms],
            match_count=len(detection_result.matched_terms),
            lexicon_version=detection_result.lexicon_version,
            alert_id=alert_id,
        )

    # ------------------------------------------------------------------
    # Notification bookkeeping (used by the notification dispatcher)
    # ------------------------------------------------------------------

    def record_notification_outcomes(
        self,
        alert_id: str,
        outcomes: Mapping[str, bool],
    ) -> CrisisAlert:
        """Merge channel delivery outcomes into the alert."""
        return self.repository.record_notification_status(alert_id, outcomes)

    def claim_escalation(self, alert: CrisisAlert) -> Optional[CrisisAlert]:
        """Claim the next escalation round for an alert.

        Returns None when the alert was acknowledged, resolved or escalated
        by another sweep since it was read.
        """
        claimed = self.repository.mark_escalated(
            alert.alert_id,
            expected_count=alert.escalation_count,
            escalated_at=self._clock(),
        )
        if claimed is None:
            logger.info(
                "CRISIS_ESCALATION_SKIPPED",
                extra={"alert_id": alert.alert_id, "reason": "status_or_count_changed"}
            )
        return claimed

    def find_digest_candidates(self, lookback: timedelta) -> List[CrisisAlert]:
        """MODERATE alerts from the lookback window not yet in a digest."""
        return self.repository.find_digest_candidates(self._clock() - lookback)

    def mark_digested(self, alert_id: str) -> Optional[CrisisAlert]:
        return self.repository.mark_digested(alert_id, self._clock())

    def now(self) -> datetime:
        return self._clock()

    def _reject(
        self,
        alert_id: str,
        current: AlertStatus,
        target: str,
        actor_id: str,
    ) -> None:
        logger.warning(
            "CRISIS_ALERT_TRANSITION_REJECTED",
            extra={
                "alert_id": alert_id,
                "current_status": current.value,
                "target": target,
                "actor_id_hash": hash_pii(actor_id),
            }
        )
        raise InvalidTransitionError(alert_id, current, target)


def summarize_alerts(alerts: List[CrisisAlert]) -> Dict[str, int]:
    """Count alerts per tier, for list endpoints."""
    counts = {tier.value: 0 for tier in ALERT_CREATING_TIERS}
    for alert in alerts:
        counts[alert.tier.value] = counts.get(alert.tier.value, 0) + 1
    return counts


def create_lifecycle_manager() -> AlertLifecycleManager:
    """Build the manager for a service process.

    Uses PostgreSQL when DB_HOST is set, otherwise the in-memory store.
    """
    connection_manager = get_connection_manager() if os.getenv("DB_HOST") else None
    return AlertLifecycleManager(
        repository=AlertRepository(connection_manager),
        max_excerpt_chars=SafetyConfig.from_env().max_excerpt_chars,
    )
