"""SCIM 2.0 API endpoints (RFC 7644) for Users, Groups and Bulk.

Routes delegate to the ResourceGateway and BulkProcessor held in
``app.extensions["scim"]``; this module only handles HTTP concerns.

Security:
    - OAuth 2.0 Bearer Token authentication (RFC 6750) via @require_scope
    - Reads require ``read:<kind>``, writes ``write:<kind>``, deletes ``delete:<kind>``
    - /Bulk requires ``bulk:operations`` plus the per-kind scope of each operation
"""
from __future__ import annotations
import logging

from flask import Blueprint, request

from scim_provisioning.api.decorators import get_scim_client, get_services, require_scope
from scim_provisioning.api.responses import app_config, enforce_json_request, read_json_body, scim_response
from scim_provisioning.core.errors import AuthorizationError
from scim_provisioning.core.models import (
    BULK_OPERATIONS,
    DELETE_GROUPS,
    DELETE_USERS,
    READ_GROUPS,
    READ_USERS,
    WRITE_GROUPS,
    WRITE_USERS,
)
from scim_provisioning.core.resource_gateway import ResourceKind

# SCIM 2.0 Blueprint
bp = Blueprint("scim", __name__, url_prefix="/scim/v2")

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Request Validation Middleware
# ─────────────────────────────────────────────────────────────────────────────

@bp.before_request
def validate_request():
    """Enforce body size and content type before authentication runs."""
    cfg = app_config()
    limit = cfg.bulk_max_payload_bytes if request.path.rstrip("/").endswith("/Bulk") else cfg.json_max_size_bytes
    enforce_json_request(limit)


# ─────────────────────────────────────────────────────────────────────────────
# Shared handlers
# ─────────────────────────────────────────────────────────────────────────────

def _list(kind: ResourceKind):
    result = get_services().gateway.list(
        kind,
        filter_text=request.args.get("filter"),
        start_index=request.args.get("startIndex", 1),
        count=request.args.get("count"),
    )
    return scim_response(result)


def _search(kind: ResourceKind):
    """POST /.search: same semantics as GET with the query in the body."""
    payload = read_json_body()
    if not isinstance(payload, dict):
        payload = {}
    result = get_services().gateway.list(
        kind,
        filter_text=payload.get("filter"),
        start_index=payload.get("startIndex", 1),
        count=payload.get("count"),
    )
    return scim_response(result)


def _create(kind: ResourceKind):
    gateway = get_services().gateway
    resource = gateway.create(kind, read_json_body())
    return scim_response(resource, 201, {"Location": gateway.location(kind, resource["id"])})


def _replace(kind: ResourceKind, resource_id: str):
    return scim_response(get_services().gateway.replace(kind, resource_id, read_json_body()))


def _patch(kind: ResourceKind, resource_id: str):
    return scim_response(get_services().gateway.patch(kind, resource_id, read_json_body()))


def _delete(kind: ResourceKind, resource_id: str):
    get_services().gateway.delete(kind, resource_id)
    return ("", 204)


# ─────────────────────────────────────────────────────────────────────────────
# Users
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/Users", methods=["GET"])
@require_scope(READ_USERS)
def list_users():
    """List users with filtering and pagination (RFC 7644 §3.4.2)."""
    return _list(ResourceKind.USER)


@bp.route("/Users/.search", methods=["POST"])
@require_scope(READ_USERS)
def search_users():
    return _search(ResourceKind.USER)


@bp.route("/Users", methods=["POST"])
@require_scope(WRITE_USERS)
def create_user():
    """Create a user.

    Returns:
        201 Created with Location header and User resource
    """
    return _create(ResourceKind.USER)


@bp.route("/Users/<resource_id>", methods=["GET"])
@require_scope(READ_USERS)
def get_user(resource_id: str):
    return scim_response(get_services().gateway.get(ResourceKind.USER, resource_id))


@bp.route("/Users/<resource_id>", methods=["PUT"])
@require_scope(WRITE_USERS)
def replace_user(resource_id: str):
    return _replace(ResourceKind.USER, resource_id)


@bp.route("/Users/<resource_id>", methods=["PATCH"])
@require_scope(WRITE_USERS)
def patch_user(resource_id: str):
    return _patch(ResourceKind.USER, resource_id)


@bp.route("/Users/<resource_id>", methods=["DELETE"])
@require_scope(DELETE_USERS)
def delete_user(resource_id: str):
    """Soft-delete a user (status becomes terminated).

    Returns:
        204 No Content
    """
    return _delete(ResourceKind.USER, resource_id)


# ─────────────────────────────────────────────────────────────────────────────
# Groups
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/Groups", methods=["GET"])
@require_scope(READ_GROUPS)
def list_groups():
    return _list(ResourceKind.GROUP)


@bp.route("/Groups/.search", methods=["POST"])
@require_scope(READ_GROUPS)
def search_groups():
    return _search(ResourceKind.GROUP)


@bp.route("/Groups", methods=["POST"])
@require_scope(WRITE_GROUPS)
def create_group():
    return _create(ResourceKind.GROUP)


@bp.route("/Groups/<resource_id>", methods=["GET"])
@require_scope(READ_GROUPS)
def get_group(resource_id: str):
    return scim_response(get_services().gateway.get(ResourceKind.GROUP, resource_id))


@bp.route("/Groups/<resource_id>", methods=["PUT"])
@require_scope(WRITE_GROUPS)
def replace_group(resource_id: str):
    return _replace(ResourceKind.GROUP, resource_id)


@bp.route("/Groups/<resource_id>", methods=["PATCH"])
@require_scope(WRITE_GROUPS)
def patch_group(resource_id: str):
    return _patch(ResourceKind.GROUP, resource_id)


@bp.route("/Groups/<resource_id>", methods=["DELETE"])
@require_scope(DELETE_GROUPS)
def delete_group(resource_id: str):
    """Deactivate a group (isActive becomes false)."""
    return _delete(ResourceKind.GROUP, resource_id)


# ─────────────────────────────────────────────────────────────────────────────
# Bulk
# ─────────────────────────────────────────────────────────────────────────────

def _check_operation_scope(kind: ResourceKind, scope: str) -> None:
    client = get_scim_client()
    if client is None or not client.has_scope(scope):
        raise AuthorizationError(f"Insufficient scope for {kind.endpoint}. Required: '{scope}'")


@bp.route("/Bulk", methods=["POST"])
@require_scope(BULK_OPERATIONS)
def bulk():
    """Execute a BulkRequest (RFC 7644 §3.7).

    Whole-request problems (size, schema, operation count) fail with a
    single error; per-operation failures are reported inside the
    BulkResponse, which is always 200.
    """
    payload = read_json_body()
    result = get_services().bulk.process(
        payload,
        payload_size=len(request.get_data(cache=True)),
        scope_check=_check_operation_scope,
    )
    return scim_response(result)
