"""Webhook subscription management for SCIM clients.

Any valid access token may manage its own client's subscriptions; touching
another client's subscription is refused with 403.
"""
from __future__ import annotations
import logging

from flask import Blueprint

from scim_provisioning.api.decorators import get_scim_client, get_services, require_scope
from scim_provisioning.api.responses import app_config, enforce_json_request, read_json_body, scim_response
from scim_provisioning.core.errors import ValidationError

bp = Blueprint("webhooks", __name__, url_prefix="/scim/v2/webhooks")

logger = logging.getLogger(__name__)


@bp.before_request
def validate_request():
    enforce_json_request(app_config().json_max_size_bytes)


@bp.route("", methods=["GET"])
@require_scope()
def list_webhooks():
    """List the caller's subscriptions; secrets are masked."""
    subscriptions = get_services().dispatcher.list_for_client(get_scim_client().client_id)
    return scim_response({
        "totalResults": len(subscriptions),
        "webhooks": [subscription.to_dict() for subscription in subscriptions],
    })


@bp.route("/stats", methods=["GET"])
@require_scope()
def webhook_stats():
    """Delivery counters and success rate per subscription."""
    stats = get_services().dispatcher.stats_for_client(get_scim_client().client_id)
    return scim_response({"totalResults": len(stats), "webhooks": stats})


@bp.route("", methods=["POST"])
@require_scope()
def register_webhook():
    """Register a subscription.

    Body:
        webhookUrl (required), events (required), secret, maxRetries,
        retryDelayMs, isActive

    Returns:
        201 Created; the secret is only echoed when the server generated it
    """
    payload = read_json_body()
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", "invalidSyntax")

    supplied_secret = payload.get("secret")
    if supplied_secret is not None and (not isinstance(supplied_secret, str) or not supplied_secret):
        raise ValidationError("secret must be a non-empty string")

    subscription = get_services().dispatcher.register(
        get_scim_client().client_id,
        payload.get("webhookUrl"),
        payload.get("events"),
        secret=supplied_secret,
        max_retries=payload.get("maxRetries"),
        retry_delay_ms=payload.get("retryDelayMs"),
        is_active=payload.get("isActive") is not False,
    )
    return scim_response(subscription.to_dict(reveal_secret=supplied_secret is None), 201)


@bp.route("/<subscription_id>/deactivate", methods=["POST"])
@require_scope()
def deactivate_webhook(subscription_id: str):
    get_services().dispatcher.deactivate(subscription_id, get_scim_client().client_id)
    return ("", 204)


@bp.route("/<subscription_id>", methods=["DELETE"])
@require_scope()
def delete_webhook(subscription_id: str):
    get_services().dispatcher.delete(subscription_id, get_scim_client().client_id)
    return ("", 204)
