"""SCIM protocol error taxonomy.

Every error raised by the core layer is a ``ScimError`` carrying an HTTP
status, a human-readable detail and an optional ``scimType`` code
(RFC 7644 Section 3.12). The Flask layer renders them with ``to_dict()``.
"""
from __future__ import annotations
from typing import Optional

SCIM_ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"


class ScimError(Exception):
    """SCIM protocol error with HTTP status and optional scimType."""

    status = 500
    scim_type: Optional[str] = None

    def __init__(self, status: Optional[int] = None, detail: str = "", scim_type: Optional[str] = None):
        if status is not None:
            self.status = status
        if scim_type is not None:
            self.scim_type = scim_type
        self.detail = detail
        super().__init__(detail)

    def to_dict(self) -> dict:
        """Convert to SCIM error response format."""
        error_dict = {
            "schemas": [SCIM_ERROR_SCHEMA],
            "status": str(self.status),
            "detail": self.detail,
        }
        if self.scim_type:
            error_dict["scimType"] = self.scim_type
        return error_dict


class AuthenticationError(ScimError):
    """Missing, malformed, expired or revoked credentials (401)."""

    status = 401

    def __init__(self, detail: str = "Authentication failed", scim_type: Optional[str] = None):
        super().__init__(None, detail, scim_type)


class AuthorizationError(ScimError):
    """Valid credentials without the required permission (403)."""

    status = 403
    scim_type = "insufficientScope"

    def __init__(self, detail: str = "Insufficient scope", scim_type: Optional[str] = None):
        super().__init__(None, detail, scim_type)


class ValidationError(ScimError):
    """Malformed request content (400)."""

    status = 400
    scim_type = "invalidValue"

    def __init__(self, detail: str, scim_type: Optional[str] = None):
        super().__init__(None, detail, scim_type)


class PayloadTooLargeError(ValidationError):
    """Request body exceeds a configured byte ceiling (413)."""

    status = 413
    scim_type = "tooLarge"


class NotFoundError(ScimError):
    """Unknown resource id (404)."""

    status = 404
    scim_type = "noTarget"

    def __init__(self, detail: str = "Resource not found", scim_type: Optional[str] = None):
        super().__init__(None, detail, scim_type)


class ConflictError(ScimError):
    """Uniqueness violation (409)."""

    status = 409
    scim_type = "uniqueness"

    def __init__(self, detail: str, scim_type: Optional[str] = None):
        super().__init__(None, detail, scim_type)


class RateLimitError(ScimError):
    """Client exceeded its request ceiling (429)."""

    status = 429
    scim_type = "tooMany"

    def __init__(self, detail: str, retry_after: int = 60):
        super().__init__(None, detail)
        self.retry_after = retry_after


class InternalError(ScimError):
    """Unexpected failure (500)."""

    status = 500

    def __init__(self, detail: str = "Internal server error"):
        super().__init__(None, detail)
