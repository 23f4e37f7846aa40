"""Health check endpoints."""
from flask import Blueprint

from scim_provisioning.api.decorators import get_services

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Basic health check endpoint."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Ready once the webhook delivery scheduler is running."""
    if not get_services().scheduler.running:
        return ("webhook scheduler not running", 503, {"Content-Type": "text/plain"})
    return ("ready", 200, {"Content-Type": "text/plain"})
