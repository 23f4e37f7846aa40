"""OAuth 2.0 token endpoint (RFC 6749 §4.4, client credentials grant).

Request:
    POST /scim/v2/token
    Content-Type: application/x-www-form-urlencoded
    grant_type=client_credentials&client_id=scim-xxx&client_secret=yyy[&scope=...]

Client credentials may also be sent with HTTP Basic authentication.

Response:
    {"access_token": "eyJ...", "token_type": "Bearer", "expires_in": 3600,
     "scope": "read:users read:groups"}
"""
from __future__ import annotations
import logging

from flask import Blueprint, jsonify, request

from scim_provisioning.api.decorators import get_services
from scim_provisioning.core.errors import AuthenticationError

bp = Blueprint("oauth", __name__, url_prefix="/scim/v2")

logger = logging.getLogger(__name__)

BASIC_CHALLENGE = 'Basic realm="SCIM OAuth 2.0"'
_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _oauth_error(error: str, description: str, status: int):
    response = jsonify({"error": error, "error_description": description})
    response.status_code = status
    response.headers.update(_NO_STORE)
    if status == 401:
        response.headers["WWW-Authenticate"] = BASIC_CHALLENGE
    return response


def _client_credentials() -> tuple[str, str]:
    """Credentials from HTTP Basic auth, falling back to the form body."""
    auth = request.authorization
    if auth is not None and auth.type == "basic" and auth.username:
        return auth.username, auth.password or ""
    return request.form.get("client_id", ""), request.form.get("client_secret", "")


@bp.route("/token", methods=["POST"])
def issue_token():
    """Issue an access token to a registered SCIM client."""
    grant_type = request.form.get("grant_type")
    if not grant_type:
        return _oauth_error("invalid_request", "grant_type is required", 400)
    if grant_type != "client_credentials":
        return _oauth_error("unsupported_grant_type", "grant_type must be client_credentials", 400)

    client_id, client_secret = _client_credentials()
    if not client_id or not client_secret:
        return _oauth_error("invalid_request", "client_id and client_secret are required", 400)

    try:
        token = get_services().token_authority.issue_token(
            client_id, client_secret, request.form.get("scope")
        )
    except AuthenticationError as exc:
        return _oauth_error("invalid_client", exc.detail, 401)

    response = jsonify({
        "access_token": token.token,
        "token_type": "Bearer",
        "expires_in": token.expires_in,
        "scope": token.scope,
    })
    response.headers.update(_NO_STORE)
    return response
