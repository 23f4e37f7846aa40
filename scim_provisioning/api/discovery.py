"""SCIM schema discovery endpoints (RFC 7643 §5-7). Public, no token required."""
from __future__ import annotations

from flask import Blueprint

from scim_provisioning.api.responses import app_config, scim_response
from scim_provisioning.core.resource_gateway import LIST_RESPONSE_SCHEMA
from scim_provisioning.core.scim_transformer import (
    ENTERPRISE_USER_SCHEMA,
    GROUP_SCHEMA,
    ORG_UNIT_EXTENSION,
    USER_SCHEMA,
)

bp = Blueprint("discovery", __name__, url_prefix="/scim/v2")

SERVICE_PROVIDER_CONFIG_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:ServiceProviderConfig"
RESOURCE_TYPE_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:ResourceType"
SCHEMA_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Schema"


def _attribute(name: str, type_: str = "string", *, required: bool = False, multi: bool = False,
               uniqueness: str = "none", mutability: str = "readWrite", sub_attributes=None) -> dict:
    attribute = {
        "name": name,
        "type": type_,
        "multiValued": multi,
        "required": required,
        "caseExact": False,
        "mutability": mutability,
        "returned": "default",
        "uniqueness": uniqueness,
    }
    if sub_attributes:
        attribute["subAttributes"] = sub_attributes
    return attribute


def _list_response(resources: list) -> dict:
    return {
        "schemas": [LIST_RESPONSE_SCHEMA],
        "totalResults": len(resources),
        "startIndex": 1,
        "itemsPerPage": len(resources),
        "Resources": resources,
    }


# ─────────────────────────────────────────────────────────────────────────────
# Endpoints
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("/ServiceProviderConfig", methods=["GET"])
def service_provider_config():
    """Return SCIM ServiceProviderConfig (RFC 7643 Section 5)."""
    cfg = app_config()
    config = {
        "schemas": [SERVICE_PROVIDER_CONFIG_SCHEMA],
        "patch": {"supported": True},
        "bulk": {
            "supported": True,
            "maxOperations": cfg.bulk_max_operations,
            "maxPayloadSize": cfg.bulk_max_payload_bytes,
        },
        "filter": {"supported": True, "maxResults": cfg.max_page_size},
        "changePassword": {"supported": False},
        "sort": {"supported": False},
        "etag": {"supported": False},
        "authenticationSchemes": [
            {
                "type": "oauthbearertoken",
                "name": "OAuth 2.0 Bearer Token",
                "description": "OAuth 2.0 client credentials grant with JWT access tokens",
                "specUri": "https://tools.ietf.org/html/rfc6750",
                "primary": True,
            }
        ],
        "meta": {
            "resourceType": "ServiceProviderConfig",
            "location": f"{cfg.base_url}/ServiceProviderConfig",
        },
    }
    return scim_response(config)


@bp.route("/ResourceTypes", methods=["GET"])
def resource_types():
    """Return supported SCIM resource types."""
    base_url = app_config().base_url
    resources = [
        {
            "schemas": [RESOURCE_TYPE_SCHEMA],
            "id": "User",
            "name": "User",
            "endpoint": "/Users",
            "description": "Employee identity",
            "schema": USER_SCHEMA,
            "schemaExtensions": [{"schema": ENTERPRISE_USER_SCHEMA, "required": False}],
            "meta": {"resourceType": "ResourceType", "location": f"{base_url}/ResourceTypes/User"},
        },
        {
            "schemas": [RESOURCE_TYPE_SCHEMA],
            "id": "Group",
            "name": "Group",
            "endpoint": "/Groups",
            "description": "Organizational unit",
            "schema": GROUP_SCHEMA,
            "meta": {"resourceType": "ResourceType", "location": f"{base_url}/ResourceTypes/Group"},
        },
    ]
    return scim_response(_list_response(resources))


@bp.route("/Schemas", methods=["GET"])
def schemas():
    """Return SCIM schema definitions."""
    base_url = app_config().base_url
    value_attrs = [_attribute("value"), _attribute("type"), _attribute("primary", "boolean")]
    user_schema = {
        "schemas": [SCHEMA_SCHEMA],
        "id": USER_SCHEMA,
        "name": "User",
        "description": "User Account",
        "attributes": [
            _attribute("userName", required=True, uniqueness="server"),
            _attribute("name", "complex", required=True, sub_attributes=[
                _attribute("givenName", required=True),
                _attribute("familyName", required=True),
                _attribute("formatted", mutability="readOnly"),
            ]),
            _attribute("displayName", mutability="readOnly"),
            _attribute("emails", "complex", multi=True, sub_attributes=value_attrs),
            _attribute("phoneNumbers", "complex", multi=True, sub_attributes=value_attrs),
            _attribute("active", "boolean"),
            _attribute("externalId"),
        ],
        "meta": {"resourceType": "Schema", "location": f"{base_url}/Schemas/{USER_SCHEMA}"},
    }
    enterprise_schema = {
        "schemas": [SCHEMA_SCHEMA],
        "id": ENTERPRISE_USER_SCHEMA,
        "name": "EnterpriseUser",
        "description": "Enterprise User",
        "attributes": [_attribute("employeeNumber"), _attribute("department")],
        "meta": {"resourceType": "Schema", "location": f"{base_url}/Schemas/{ENTERPRISE_USER_SCHEMA}"},
    }
    group_schema = {
        "schemas": [SCHEMA_SCHEMA],
        "id": GROUP_SCHEMA,
        "name": "Group",
        "description": "Group",
        "attributes": [
            _attribute("displayName", required=True),
            _attribute("externalId"),
            _attribute("members", "complex", multi=True, sub_attributes=[
                _attribute("value", mutability="immutable"),
                _attribute("display", mutability="readOnly"),
                _attribute("$ref", "reference", mutability="immutable"),
            ]),
            _attribute(ORG_UNIT_EXTENSION, "complex", mutability="readOnly", sub_attributes=[
                _attribute("unitType"),
                _attribute("level", "integer"),
                _attribute("parentUnitId"),
            ]),
        ],
        "meta": {"resourceType": "Schema", "location": f"{base_url}/Schemas/{GROUP_SCHEMA}"},
    }
    return scim_response(_list_response([user_schema, enterprise_schema, group_schema]))
