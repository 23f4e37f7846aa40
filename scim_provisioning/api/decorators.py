"""Bearer token authentication for SCIM endpoints.

Tokens are issued by ``/scim/v2/token`` and validated by the TokenAuthority
held in ``app.extensions["scim"]``. Validation failures are raised as
``ScimError`` subclasses and rendered by the application error handlers:

    401 Unauthorized  : missing, malformed, expired, revoked or stale token
    403 Forbidden     : insufficient scope, IP not in the client allow-list
    429 Too Many      : client over its per-minute request ceiling
"""
from __future__ import annotations
import logging
from functools import wraps
from typing import Optional

from flask import current_app, g, request

from scim_provisioning.core.errors import AuthenticationError, ScimError
from scim_provisioning.core.models import ClientIdentity
from scim_provisioning.core.services import ServiceContainer
from scim_provisioning.core.token_authority import token_fingerprint

logger = logging.getLogger(__name__)


def get_services() -> ServiceContainer:
    return current_app.extensions["scim"]


def _bearer_token() -> str:
    """Extract the token from ``Authorization: Bearer <token>``.

    Raises:
        AuthenticationError: header missing, wrong scheme or empty token
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        raise AuthenticationError("Authorization header missing. Provide 'Authorization: Bearer <token>'.")

    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        raise AuthenticationError("Authorization header must use Bearer token scheme: 'Authorization: Bearer <token>'.")

    token = token.strip()
    if not token:
        raise AuthenticationError("Bearer token is empty.")
    return token


def _log_auth_attempt(token: str, success: bool, reason: str = "") -> None:
    """Log an authentication attempt without the token itself."""
    correlation_id = request.headers.get("X-Correlation-Id", "none")
    status = "✅ SUCCESS" if success else "❌ FAILED"
    message = (
        f"SCIM auth {status} | token_hash={token_fingerprint(token)} | "
        f"ip={request.remote_addr} | path={request.path} | correlation_id={correlation_id}"
    )
    if success:
        logger.info(message)
    else:
        logger.warning(f"{message} | reason={reason}")


def require_scope(scope: Optional[str] = None):
    """
    Decorator requiring a valid SCIM access token.

    Args:
        scope: Scope the token must carry (e.g. ``"write:users"``); ``None``
            accepts any valid token

    Returns:
        Decorated view; the caller identity is stored in ``g.scim_client``

    Raises:
        AuthenticationError / AuthorizationError / RateLimitError
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            token = _bearer_token()
            authority = get_services().token_authority
            try:
                # ProxyFix has already replaced remote_addr with the forwarded client
                identity = authority.authorize(token, scope, client_ip=request.remote_addr)
            except ScimError as exc:
                _log_auth_attempt(token, success=False, reason=exc.detail)
                raise
            _log_auth_attempt(token, success=True)
            g.scim_client = identity
            return fn(*args, **kwargs)

        return wrapper
    return decorator


def get_scim_client() -> Optional[ClientIdentity]:
    """Caller identity for the current request, after ``@require_scope``."""
    return getattr(g, "scim_client", None)
