"""Response and request-body helpers shared by the SCIM blueprints."""
from __future__ import annotations
from typing import Any, Optional

from flask import Response, current_app, jsonify, request

from scim_provisioning.core.errors import PayloadTooLargeError, ScimError, ValidationError

SCIM_MEDIA_TYPE = "application/scim+json"
ACCEPTED_CONTENT_TYPES = ("application/scim+json", "application/json")


def scim_response(payload: Any, status: int = 200, headers: Optional[dict] = None) -> Response:
    """Serialize ``payload`` as ``application/scim+json``."""
    response = jsonify(payload)
    response.status_code = status
    response.mimetype = SCIM_MEDIA_TYPE
    for name, value in (headers or {}).items():
        response.headers[name] = value
    return response


def enforce_json_request(max_bytes: int) -> None:
    """Reject oversized bodies and unexpected content types.

    Content type is only checked on payload-bearing methods that carry a body.

    Raises:
        PayloadTooLargeError: Content-Length above ``max_bytes``
        ScimError: 415 for a content type other than SCIM or plain JSON
    """
    if request.content_length and request.content_length > max_bytes:
        raise PayloadTooLargeError(f"Request payload exceeds maximum allowed size ({max_bytes} bytes)")

    if request.method not in ("POST", "PUT", "PATCH") or not request.content_length:
        return
    content_type = (request.mimetype or "").lower()
    if content_type not in ACCEPTED_CONTENT_TYPES:
        raise ScimError(415, "Content-Type must be application/scim+json", "invalidSyntax")


def read_json_body() -> Any:
    """Parse the request body as JSON.

    Raises:
        ValidationError: empty or malformed body (invalidSyntax)
    """
    if not request.get_data(cache=True):
        raise ValidationError("Request body is required", "invalidSyntax")
    payload = request.get_json(force=True, silent=True)
    if payload is None:
        raise ValidationError("Request body is not valid JSON", "invalidSyntax")
    return payload


def app_config():
    return current_app.config["APP_CONFIG"]
