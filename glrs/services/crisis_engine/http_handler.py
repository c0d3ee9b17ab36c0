"""Crisis Engine HTTP handler - alert review and scheduler endpoints.

Coaches acknowledge, annotate and resolve alerts here. The scheduler calls
the sweep endpoints: escalation every few minutes, the digest once a day
at 8 PM Pacific.
"""
import asyncio
import logging
import os

from flask import Flask, jsonify, request

from glrs.shared.database import RepositoryError
from glrs.shared.models import CrisisTier, InvalidTierError
from glrs.shared.utils import configure_pii_salt
from glrs.services.notification_service import create_dispatcher, run_daily_digest
from .handler import create_lifecycle_manager, summarize_alerts
from .models import AlertNotFoundError, InvalidTransitionError

logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)

# Configure PII salt
pii_salt = os.getenv("PII_HASH_SALT", "default_dev_salt_change_in_production_32chars")
configure_pii_salt(pii_salt)

lifecycle_manager = create_lifecycle_manager()
dispatcher = create_dispatcher(lifecycle_manager)


@app.errorhandler(AlertNotFoundError)
def handle_not_found(error: AlertNotFoundError):
    return jsonify({"error": "Alert not found", "alert_id": error.alert_id}), 404


@app.errorhandler(InvalidTransitionError)
def handle_invalid_transition(error: InvalidTransitionError):
    return jsonify({
        "error": "Invalid status transition",
        "alert_id": error.alert_id,
        "current_status": error.current.value if error.current else None,
        "requested": error.target,
    }), 409


@app.errorhandler(ValueError)
def handle_bad_request(error: ValueError):
    return jsonify({"error": str(error)}), 400


@app.errorhandler(RepositoryError)
def handle_repository_error(error: RepositoryError):
    logger.error("ALERT_STORE_ERROR", extra={"error": str(error)})
    return jsonify({"error": "Alert store unavailable"}), 503


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint, including the alert store when PostgreSQL backs it."""
    repository = lifecycle_manager.repository
    if repository.uses_memory:
        store = {"status": "memory", "healthy": True}
    else:
        store = repository.connection_manager.health_check()

    return jsonify({
        "status": "healthy" if store["healthy"] else "degraded",
        "service": "crisis-engine",
        "alert_store": store,
    }), 200 if store["healthy"] else 503


@app.route("/alerts/active", methods=["GET"])
def get_active_alerts():
    """List unresolved alerts.

    Query Params:
        tier: Filter by tier (optional)
    """
    tier_param = request.args.get("tier")
    try:
        tier = CrisisTier.from_value(tier_param) if tier_param else None
    except InvalidTierError:
        return jsonify({"error": f"Unknown tier: {tier_param}"}), 400

    active = lifecycle_manager.get_active_alerts(tier)
    return jsonify({
        "count": len(active),
        "by_tier": summarize_alerts(active),
        "alerts": [alert.to_dict() for alert in active],
    }), 200


@app.route("/alerts/<alert_id>", methods=["GET"])
def get_alert(alert_id: str):
    return jsonify(lifecycle_manager.get_alert(alert_id).to_dict()), 200


@app.route("/alerts/<alert_id>/acknowledge", methods=["POST"])
def acknowledge_alert(alert_id: str):
    """Acknowledge an OPEN alert.

    Request Body:
        {
            "reviewer_id": "coach_123"
        }
    """
    data = request.get_json(silent=True) or {}
    reviewer_id = data.get("reviewer_id")
    if not reviewer_id:
        return jsonify({"error": "Missing reviewer_id"}), 400

    alert = lifecycle_manager.acknowledge_alert(alert_id, reviewer_id)
    return jsonify({
        "alert_id": alert.alert_id,
        "status": alert.status.value,
        "acknowledged_by": alert.acknowledged_by,
        "acknowledged_at": alert.acknowledged_at.isoformat() if alert.acknowledged_at else None,
    }), 200


@app.route("/alerts/<alert_id>/resolve", methods=["POST"])
def resolve_alert(alert_id: str):
    """Resolve an alert.

    Request Body:
        {
            "reviewer_id": "coach_123",
            "resolution_notes": "Called member, safety plan in place"
        }
    """
    data = request.get_json(silent=True) or {}
    reviewer_id = data.get("reviewer_id")
    if not reviewer_id:
        return jsonify({"error": "Missing reviewer_id"}), 400

    alert = lifecycle_manager.resolve_alert(
        alert_id, reviewer_id, data.get("resolution_notes", "")
    )
    return jsonify({
        "alert_id": alert.alert_id,
        "status": alert.status.value,
        "resolved_by": alert.resolved_by,
        "resolved_at": alert.resolved_at.isoformat() if alert.resolved_at else None,
    }), 200


@app.route("/alerts/<alert_id>/notes", methods=["POST"])
def add_note(alert_id: str):
    """Append a reviewer note.

    Request Body:
        {
            "author_id": "coach_123",
            "note": "Left voicemail"
        }
    """
    data = request.get_json(silent=True) or {}
    author_id = data.get("author_id")
    note = data.get("note")
    if not author_id or not note:
        return jsonify({"error": "Missing author_id or note"}), 400

    alert = lifecycle_manager.add_alert_note(alert_id, author_id, note)
    return jsonify({
        "alert_id": alert.alert_id,
        "status": alert.status.value,
        "notes": [n.to_dict() for n in alert.notes],
    }), 201


@app.route("/alerts/<alert_id>/retry", methods=["POST"])
def retry_notifications(alert_id: str):
    """Retry failed notification channels.

    Request Body:
        {
            "channels": ["email", "sms"]   (optional, defaults to every undelivered channel)
        }
    """
    data = request.get_json(silent=True) or {}
    alert = lifecycle_manager.get_alert(alert_id)
    channels = data.get("channels")
    if channels is None:
        channels = [ch for ch, sent in alert.notifications_sent.items() if not sent]

    # Unknown channel names raise ValueError -> 400
    result = asyncio.run(dispatcher.retry_failed_notifications(alert, channels))
    return jsonify(result.to_dict()), 200


@app.route("/sweeps/escalation", methods=["POST"])
def escalation_sweep():
    """Escalate unacknowledged CRITICAL and HIGH alerts (scheduler target)."""
    summary = asyncio.run(dispatcher.escalate_unacknowledged_alerts())
    return jsonify(summary.to_dict()), 200


@app.route("/sweeps/digest", methods=["POST"])
def digest_sweep():
    """Send the daily MODERATE digest (scheduler target)."""
    summary = asyncio.run(run_daily_digest(
        lifecycle_manager,
        dispatcher.recipients,
        dispatcher.email_sender,
        dispatcher.config,
    ))
    return jsonify(summary.to_dict()), 200


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", "8003"))
    app.run(host="0.0.0.0", port=port, debug=False)
