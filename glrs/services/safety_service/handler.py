"""Safety Service HTTP handler - crisis scan endpoint.

Every check-in, reflection and chat turn passes through /scan before an AI
response is generated. Member identifiers are hashed with hash_pii() before
they reach the logs.
"""
import asyncio
import logging
import os

from flask import Flask, jsonify, request

from glrs.shared.models import CrisisTier
from glrs.shared.utils import configure_pii_salt, hash_pii
from glrs.services.crisis_engine.handler import ALERT_CREATING_TIERS, create_lifecycle_manager
from glrs.services.notification_service import ResponseAction, create_dispatcher, get_matrix_entry
from .config import CRISIS_RESPONSES, SafetyConfig
from .detector import CrisisDetector

logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)

# Configure PII salt from environment
pii_salt = os.getenv("PII_HASH_SALT", "default_dev_salt_change_in_production_32chars")
configure_pii_salt(pii_salt)

config = SafetyConfig.from_env()
detector = CrisisDetector(config=config)
lifecycle_manager = create_lifecycle_manager()
dispatcher = create_dispatcher(lifecycle_manager)


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint for ECS/ALB."""
    return jsonify({
        "status": "healthy",
        "service": "safety-service",
        "lexicon_version": detector.database.version,
    }), 200


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check - verifies the lexicon is loaded.

    Returns:
        200 if ready, 503 if not
    """
    if detector is None or len(detector.database) == 0:
        return jsonify({"status": "not_ready", "reason": "lexicon_not_loaded"}), 503
    return jsonify({"status": "ready", "keyword_count": len(detector.database)}), 200


@app.route("/scan", methods=["POST"])
def scan_text():
    """Scan member text for crisis language.

    Request Body:
        {
            "text": "Member text",
            "user_id": "user_123",
            "source": "check-in" | "reflection" | "chat" | ...,
            "coach_id": "coach_456" (optional)
        }

    Response:
        {
            "tier": "critical" | "high" | "moderate" | "standard" | "none",
            "detected": true | false,
            "action": "bypass_llm" | "modify_response" | "log_only" | "proceed",
            "show_resources": true | false,
            "crisis_response": "..." | null,
            "alert_id": "alert_..." | null,
            "notifications": {"push": true, ...} | null,
            "detection": {...}
        }

    Error Handling:
        Detection itself never fails. If persisting or dispatching the alert
        fails, the tier, action and crisis response are still returned so
        the chat pipeline can withhold the AI reply; the failure is reported
        in "error" with a 200 so the caller keeps the conservative action.
    """
    data = request.get_json(silent=True)
    if not data:
        logger.warning("SCAN_REQUEST_INVALID", extra={"reason": "empty_body"})
        return jsonify({"error": "Request body required"}), 400

    text = data.get("text")
    user_id = data.get("user_id")
    if not isinstance(text, str) or not user_id:
        logger.warning("SCAN_REQUEST_INVALID", extra={"reason": "missing_text_or_user_id"})
        return jsonify({"error": "Missing required field: text or user_id"}), 400

    source = data.get("source", "chat")
    user_id_hash = hash_pii(user_id)

    logger.info(
        "SCAN_REQUESTED",
        extra={"user_id_hash": user_id_hash, "source": source, "text_length": len(text)}
    )

    result = detector.scan(text, context=source)
    tier = result.resolved_tier

    response = {
        "tier": tier.value,
        "detected": tier is not CrisisTier.NONE,
        "action": ResponseAction.PROCEED.value,
        "show_resources": False,
        "crisis_response": None,
        "alert_id": None,
        "notifications": None,
        "detection": result.to_dict(),
    }
    if tier is CrisisTier.NONE:
        return jsonify(response), 200

    entry = get_matrix_entry(tier)
    response["action"] = entry.response_action.value
    response["show_resources"] = entry.show_resources
    if entry.response_action is not ResponseAction.PROCEED:
        response["crisis_response"] = CRISIS_RESPONSES.get(tier.value)

    alert = None
    try:
        if tier in ALERT_CREATING_TIERS:
            alert = lifecycle_manager.create_crisis_alert(
                result, user_id=user_id, source=source, coach_id=data.get("coach_id")
            )
            response["alert_id"] = alert.alert_id
        lifecycle_manager.log_detection(result, user_id, alert.alert_id if alert else None)
    except Exception as e:
        logger.critical(
            "SCAN_ALERT_PERSIST_FAILED",
            extra={
                "user_id_hash": user_id_hash,
                "tier": tier.value,
                "error": str(e),
                "error_type": type(e).__name__,
            }
        )
        response["error"] = "Alert could not be recorded"
        return jsonify(response), 200

    if alert is not None:
        dispatch = asyncio.run(dispatcher.send_crisis_notifications(alert))
        response["notifications"] = dispatch.success_map() or None

    return jsonify(response), 200


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", "8001"))
    app.run(host="0.0.0.0", port=port, debug=False)
