"""Health check endpoints."""
from flask import Blueprint, current_app

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Basic health check endpoint."""
    return {"status": "ok"}, 200


@bp.route("/ready")
def readiness_check():
    """Readiness check: the gate token and the connected app must be configured."""
    cfg = current_app.config["APP_CONFIG"]
    missing = []
    if not cfg.api_bearer_token:
        missing.append("API_BEARER_TOKEN")
    if not cfg.sf_client_id:
        missing.append("SF_CLIENT_ID")
    if missing:
        return {"status": "not ready", "missing": missing}, 503
    return {"status": "ready"}, 200
