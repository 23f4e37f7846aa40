"""Error handlers for the application.

Every failure leaves the gateway as a SCIM error envelope (RFC 7644 §3.12).
"""
from __future__ import annotations
import logging

from werkzeug.exceptions import HTTPException

from scim_provisioning.api.responses import scim_response
from scim_provisioning.core.errors import InternalError, RateLimitError, ScimError

logger = logging.getLogger(__name__)

BEARER_CHALLENGE = 'Bearer realm="SCIM"'

_HTTP_SCIM_TYPES = {
    400: "invalidSyntax",
    413: "tooLarge",
}


def scim_error_response(error: ScimError):
    """Render a ScimError with the headers its status calls for."""
    headers = {}
    if error.status == 401:
        headers["WWW-Authenticate"] = BEARER_CHALLENGE
    if isinstance(error, RateLimitError):
        headers["Retry-After"] = str(error.retry_after)
    return scim_response(error.to_dict(), error.status, headers)


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(ScimError)
    def handle_scim_error(error: ScimError):
        if error.status >= 500:
            logger.error(f"❌ SCIM error {error.status}: {error.detail}")
        return scim_error_response(error)

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        """Routing errors (404, 405), oversized bodies (413) and the like."""
        status = error.code or 500
        detail = error.description or error.name
        if status == 413:
            detail = "Request payload exceeds maximum allowed size"
        return scim_error_response(ScimError(status, detail, _HTTP_SCIM_TYPES.get(status)))

    @app.errorhandler(Exception)
    def handle_exception(error: Exception):
        """Handle uncaught exceptions."""
        # Always log the full error; the client only sees a generic message
        app.logger.error(f"Unhandled exception: {error}", exc_info=True)
        print(f"[ERROR UNHANDLED] {error}")
        return scim_error_response(InternalError("An unexpected error occurred"))
