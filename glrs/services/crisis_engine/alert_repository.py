"""Alert store for crisis alerts.

PostgreSQL backend through the shared BaseRepository, with an in-memory
backend for development and tests when no connection manager is given.

Every state change is a conditional write: the update names the column
values it expects (status, escalation count, ...) and affects nothing when
a concurrent writer changed them first. Callers turn a lost write into
InvalidTransitionError or a retry; nothing is silently overwritten.
"""
import json
import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from glrs.shared.database import (
    BaseRepository,
    ConnectionManager,
    DuplicateError,
    RepositoryError,
)
from glrs.shared.models import AlertStatus, CrisisTier
from .models import AlertNote, AlertNotFoundError, CrisisAlert

logger = logging.getLogger(__name__)


ALERT_COLUMNS = (
    "id",
    "user_id",
    "coach_id",
    "tier",
    "source",
    "triggered_by",
    "category",
    "flagged_content",
    "matched_terms",
    "status",
    "created_at",
    "acknowledged_by",
    "acknowledged_at",
    "resolved_by",
    "resolved_at",
    "resolution_notes",
    "notes",
    "notifications_sent",
    "escalation_count",
    "last_escalated_at",
    "digested_at",
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS crisis_alerts (
    id                  TEXT PRIMARY KEY,
    user_id             TEXT NOT NULL,
    coach_id            TEXT,
    tier                TEXT NOT NULL,
    source              TEXT NOT NULL,
    triggered_by        TEXT NOT NULL,
    category            TEXT NOT NULL,
    flagged_content     TEXT NOT NULL,
    matched_terms       JSONB NOT NULL DEFAULT '[]',
    status              TEXT NOT NULL DEFAULT 'open',
    created_at          TIMESTAMP NOT NULL,
    acknowledged_by     TEXT,
    acknowledged_at     TIMESTAMP,
    resolved_by         TEXT,
    resolved_at         TIMESTAMP,
    resolution_notes    TEXT,
    notes               JSONB NOT NULL DEFAULT '[]',
    notifications_sent  JSONB NOT NULL DEFAULT '{}',
    escalation_count    INTEGER NOT NULL DEFAULT 0,
    last_escalated_at   TIMESTAMP,
    digested_at         TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_crisis_alerts_open
    ON crisis_alerts (tier, status, created_at);

CREATE TABLE IF NOT EXISTS crisis_detection_logs (
    id              TEXT PRIMARY KEY,
    user_id_hash    TEXT NOT NULL,
    tier            TEXT NOT NULL,
    source          TEXT,
    categories      JSONB NOT NULL DEFAULT '[]',
    match_count     INTEGER NOT NULL,
    alert_id        TEXT,
    lexicon_version TEXT,
    detected_at     TIMESTAMP NOT NULL
);
"""

# Lost compare-and-set rounds tolerated on read-modify-write fields
_MAX_CAS_ATTEMPTS = 5


def _load_json(value: Any, default: Any) -> Any:
    """JSONB arrives parsed from psycopg2; the memory store keeps strings."""
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


class AlertRepository(BaseRepository[CrisisAlert]):
    """Repository for crisis alerts and detection log rows.

    Uses PostgreSQL when a connection manager is provided, otherwise an
    in-memory store guarded by a lock (development and tests).
    """

    TABLE_NAME = "crisis_alerts"

    def __init__(self, connection_manager: Optional[ConnectionManager] = None):
        super().__init__(connection_manager, self.TABLE_NAME)
        self._lock = threading.Lock()
        self._memory_rows: Dict[str, Dict[str, Any]] = {}
        self._memory_detections: List[Dict[str, Any]] = []

        logger.info(
            "ALERT_REPOSITORY_INITIALIZED",
            extra={"backend": "postgresql" if connection_manager else "memory"}
        )

    @property
    def uses_memory(self) -> bool:
        return self.connection_manager is None

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _row_to_entity(self, row) -> CrisisAlert:
        if not isinstance(row, Mapping):
            row = dict(zip(ALERT_COLUMNS, row))

        return CrisisAlert(
            alert_id=row["id"],
            user_id=row["user_id"],
            coach_id=row["coach_id"],
            tier=CrisisTier.from_value(row["tier"]),
            source=row["source"],
            triggered_by=row["triggered_by"],
            category=row["category"],
            flagged_content=row["flagged_content"],
            matched_terms=tuple(_load_json(row["matched_terms"], [])),
            status=AlertStatus(row["status"]),
            created_at=row["created_at"],
            acknowledged_by=row["acknowledged_by"],
            acknowledged_at=row["acknowledged_at"],
            resolved_by=row["resolved_by"],
            resolved_at=row["resolved_at"],
            resolution_notes=row["resolution_notes"],
            notes=tuple(AlertNote.from_dict(n) for n in _load_json(row["notes"], [])),
            notifications_sent=dict(_load_json(row["notifications_sent"], {})),
            escalation_count=row["escalation_count"] or 0,
            last_escalated_at=row["last_escalated_at"],
            digested_at=row["digested_at"],
        )

    def _entity_to_params(self, alert: CrisisAlert) -> Dict[str, Any]:
        return {
            "id": alert.alert_id,
            "user_id": alert.user_id,
            "coach_id": alert.coach_id,
            "tier": alert.tier.value,
            "source": alert.source,
            "triggered_by": alert.triggered_by,
            "category": alert.category,
            "flagged_content": alert.flagged_content,
            "matched_terms": json.dumps(list(alert.matched_terms)),
            "status": alert.status.value,
            "created_at": alert.created_at,
            "acknowledged_by": alert.acknowledged_by,
            "acknowledged_at": alert.acknowledged_at,
            "resolved_by": alert.resolved_by,
            "resolved_at": alert.resolved_at,
            "resolution_notes": alert.resolution_notes,
            "notes": json.dumps([note.to_dict() for note in alert.notes]),
            "notifications_sent": json.dumps(dict(alert.notifications_sent), sort_keys=True),
            "escalation_count": alert.escalation_count,
            "last_escalated_at": alert.last_escalated_at,
            "digested_at": alert.digested_at,
        }

    # ------------------------------------------------------------------
    # Basic operations
    # ------------------------------------------------------------------

    def insert(self, alert: CrisisAlert) -> CrisisAlert:
        """Persist a new alert.

        Raises:
            DuplicateError: If the alert id already exists
            RepositoryError: If the store is unavailable
        """
        if not self.uses_memory:
            return super().insert(alert)

        with self._lock:
            if alert.alert_id in self._memory_rows:
                raise DuplicateError(f"crisis_alerts entity {alert.alert_id} already exists")
            self._memory_rows[alert.alert_id] = self._entity_to_params(alert)
        return alert

    def get(self, alert_id: str) -> CrisisAlert:
        """Load an alert.

        Raises:
            AlertNotFoundError: If no alert has this id
        """
        if self.uses_memory:
            with self._lock:
                row = self._memory_rows.get(alert_id)
                alert = self._row_to_entity(dict(row)) if row is not None else None
        else:
            alert = self.find_by_id(alert_id)

        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    def compare_and_set(
        self,
        alert_id: str,
        expected: Dict[str, Any],
        changes: Dict[str, Any],
    ) -> Optional[CrisisAlert]:
        """Apply changes only if every expected column still holds its value.

        Returns:
            Updated alert, or None if the guard failed or the alert is missing
        """
        if not self.uses_memory:
            return self.update_where(alert_id, expected, changes)

        with self._lock:
            row = self._memory_rows.get(alert_id)
            if row is None:
                return None
            if any(row.get(column) != value for column, value in expected.items()):
                return None
            row.update(changes)
            return self._row_to_entity(dict(row))

    # ------------------------------------------------------------------
    # Lifecycle writes
    # ------------------------------------------------------------------

    def transition(
        self,
        alert_id: str,
        expected_status: AlertStatus,
        changes: Dict[str, Any],
    ) -> Optional[CrisisAlert]:
        """Move an alert out of expected_status; None if it is no longer there."""
        return self.compare_and_set(
            alert_id,
            {"status": expected_status.value},
            changes,
        )

    def append_note(self, alert_id: str, note: AlertNote) -> Optional[CrisisAlert]:
        """Append a note while the alert is not RESOLVED.

        Returns:
            Updated alert, or None if the alert is RESOLVED

        Raises:
            AlertNotFoundError: If no alert has this id
            RepositoryError: If concurrent writers keep winning
        """
        return self._read_modify_write(
            alert_id,
            lambda alert: None if alert.status.is_terminal else {
                "notes": json.dumps([n.to_dict() for n in alert.notes + (note,)]),
            },
            guard_columns=("status", "notes"),
        )

    def record_notification_status(
        self,
        alert_id: str,
        outcomes: Mapping[str, bool],
    ) -> CrisisAlert:
        """Merge per-channel delivery outcomes; a delivered channel stays delivered."""
        def merge(alert: CrisisAlert) -> Dict[str, Any]:
            merged = dict(alert.notifications_sent)
            for channel, sent in outcomes.items():
                merged[channel] = merged.get(channel, False) or sent
            return {"notifications_sent": json.dumps(merged, sort_keys=True)}

        return self._read_modify_write(
            alert_id, merge, guard_columns=("notifications_sent",)
        )

    def mark_escalated(
        self,
        alert_id: str,
        expected_count: int,
        escalated_at: datetime,
    ) -> Optional[CrisisAlert]:
        """Claim one escalation round.

        Succeeds only while the alert is still OPEN and no other sweep has
        escalated it since it was read.
        """
        return self.compare_and_set(
            alert_id,
            {"status": AlertStatus.OPEN.value, "escalation_count": expected_count},
            {"escalation_count": expected_count + 1, "last_escalated_at": escalated_at},
        )

    def mark_digested(self, alert_id: str, digested_at: datetime) -> Optional[CrisisAlert]:
        """Flag an alert as included in a coach digest (only once)."""
        if self.uses_memory:
            return self.compare_and_set(
                alert_id, {"digested_at": None}, {"digested_at": digested_at}
            )
        # "= NULL" never matches in SQL, so the guard needs IS NULL
        return self._fetch_write(
            f"""
            UPDATE {self.table_name}
            SET digested_at = %s
            WHERE id = %s AND digested_at IS NULL
            RETURNING *
            """,
            (digested_at, alert_id),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_open_older_than(self, tier: CrisisTier, cutoff: datetime) -> List[CrisisAlert]:
        """OPEN alerts of a tier created before cutoff, oldest first."""
        if self.uses_memory:
            return self._select_memory(
                lambda a: a.tier is tier and a.status is AlertStatus.OPEN and a.created_at < cutoff
            )
        return self._fetch_all(
            f"""
            SELECT * FROM {self.table_name}
            WHERE tier = %s AND status = %s AND created_at < %s
            ORDER BY created_at
            """,
            (tier.value, AlertStatus.OPEN.value, cutoff),
        )

    def find_active(self, tier: Optional[CrisisTier] = None) -> List[CrisisAlert]:
        """Alerts that are not RESOLVED, oldest first."""
        if self.uses_memory:
            return self._select_memory(
                lambda a: a.is_active and (tier is None or a.tier is tier)
            )
        query = f"SELECT * FROM {self.table_name} WHERE status <> %s"
        params: tuple = (AlertStatus.RESOLVED.value,)
        if tier is not None:
            query += " AND tier = %s"
            params += (tier.value,)
        return self._fetch_all(query + " ORDER BY created_at", params)

    def find_digest_candidates(self, since: datetime) -> List[CrisisAlert]:
        """MODERATE alerts created since `since` and not yet digested."""
        if self.uses_memory:
            return self._select_memory(
                lambda a: (
                    a.tier is CrisisTier.MODERATE
                    and a.created_at >= since
                    and a.digested_at is None
                )
            )
        return self._fetch_all(
            f"""
            SELECT * FROM {self.table_name}
            WHERE tier = %s AND created_at >= %s AND digested_at IS NULL
            ORDER BY created_at
            """,
            (CrisisTier.MODERATE.value, since),
        )

    # ------------------------------------------------------------------
    # Detection log
    # ------------------------------------------------------------------

    def log_detection(
        self,
        user_id_hash: str,
        tier: CrisisTier,
        source: Optional[str],
        categories: List[str],
        match_count: int,
        lexicon_version: str,
        alert_id: Optional[str] = None,
    ) -> str:
        """Record a detection for analytics (every tier, alert or not).

        Returns:
            Detection log id
        """
        record = {
            "id": f"det_{uuid.uuid4().hex[:12]}",
            "user_id_hash": user_id_hash,
            "tier": tier.value,
            "source": source,
            "categories": json.dumps(sorted(categories)),
            "match_count": match_count,
            "alert_id": alert_id,
            "lexicon_version": lexicon_version,
            "detected_at": datetime.utcnow(),
        }

        if self.uses_memory:
            with self._lock:
                self._memory_detections.append(record)
            return record["id"]

        columns = ", ".join(record)
        placeholders = ", ".join(["%s"] * len(record))
        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"INSERT INTO crisis_detection_logs ({columns}) VALUES ({placeholders})",
                        list(record.values()),
                    )
                    conn.commit()
        except Exception as e:
            logger.error(
                "DETECTION_LOG_WRITE_FAILED",
                extra={"tier": tier.value, "error": str(e)}
            )
            raise RepositoryError(f"Failed to write detection log: {e}") from e
        return record["id"]

    def detection_log(self) -> List[Dict[str, Any]]:
        """Detection rows held by the memory backend."""
        with self._lock:
            return [dict(record) for record in self._memory_detections]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read_modify_write(
        self,
        alert_id: str,
        build_changes: Callable[[CrisisAlert], Optional[Dict[str, Any]]],
        guard_columns: tuple,
    ) -> Optional[CrisisAlert]:
        for _ in range(_MAX_CAS_ATTEMPTS):
            alert = self.get(alert_id)
            changes = build_changes(alert)
            if changes is None:
                return None
            params = self._entity_to_params(alert)
            expected = {column: params[column] for column in guard_columns}
            updated = self.compare_and_set(alert_id, expected, changes)
            if updated is not None:
                return updated

        logger.error(
            "ALERT_WRITE_CONTENTION",
            extra={"alert_id": alert_id, "attempts": _MAX_CAS_ATTEMPTS}
        )
        raise RepositoryError(f"Alert {alert_id} kept changing; write abandoned")

    def _select_memory(self, predicate: Callable[[CrisisAlert], bool]) -> List[CrisisAlert]:
        with self._lock:
            alerts = [self._row_to_entity(dict(row)) for row in self._memory_rows.values()]
        return sorted(
            (alert for alert in alerts if predicate(alert)),
            key=lambda alert: alert.created_at,
        )

    def _fetch_write(self, query: str, params: tuple) -> Optional[CrisisAlert]:
        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
                    conn.commit()
        except Exception as e:
            logger.error(
                "ALERT_WRITE_FAILED",
                extra={"table_name": self.table_name, "error": str(e)}
            )
            raise RepositoryError(f"Alert write failed: {e}") from e
        return self._row_to_entity(row) if row is not None else None
