"""Crisis Engine: alert lifecycle for actionable detections.

Persists CRITICAL, HIGH and MODERATE detections as crisis alerts and tracks
coach review: OPEN -> ACKNOWLEDGED -> RESOLVED, never backwards. Concurrent
reviewers are serialized by conditional writes in the alert store.

Endpoints (http_handler.py):
- GET /alerts/active - List unresolved alerts
- GET /alerts/<id> - Alert detail
- POST /alerts/<id>/acknowledge - Acknowledge alert
- POST /alerts/<id>/resolve - Resolve alert
- POST /alerts/<id>/notes - Add reviewer note
- POST /alerts/<id>/retry - Retry failed notification channels
- POST /sweeps/escalation - Escalate unacknowledged alerts (scheduler)
- POST /sweeps/digest - Send the daily MODERATE digest (scheduler)
"""

from .alert_repository import AlertRepository
from .handler import ALERT_CREATING_TIERS, AlertLifecycleManager, create_lifecycle_manager
from .models import AlertNote, AlertNotFoundError, CrisisAlert, InvalidTransitionError

__all__ = [
    "AlertRepository",
    "ALERT_CREATING_TIERS",
    "AlertLifecycleManager",
    "create_lifecycle_manager",
    "AlertNote",
    "AlertNotFoundError",
    "CrisisAlert",
    "InvalidTransitionError",
]
