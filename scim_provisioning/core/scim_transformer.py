"""SCIM 2.0 ↔ directory record transformations.

This module provides bidirectional transformations between internal
directory records (identities and org units) and SCIM 2.0 User/Group
resources as defined in RFC 7643.

Usage:
    # Identity → SCIM User
    scim_user = ScimTransformer.identity_to_scim(identity, base_url="/scim/v2")

    # SCIM User → identity fields
    fields = ScimTransformer.scim_to_identity(scim_user)

    # Org unit → SCIM Group
    scim_group = ScimTransformer.orgunit_to_scim(unit, members, base_url="/scim/v2")
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional

USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
GROUP_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Group"
ENTERPRISE_USER_SCHEMA = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"
ORG_UNIT_EXTENSION = "x-orgUnit"

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
STATUS_TERMINATED = "terminated"


def _meta(resource_type: str, record: Dict[str, Any], location: str) -> Dict[str, Any]:
    meta = {
        "resourceType": resource_type,
        "location": location,
    }
    if record.get("createdAt"):
        meta["created"] = record["createdAt"]
    if record.get("updatedAt"):
        meta["lastModified"] = record["updatedAt"]
    return meta


def _first_value(items: Any) -> Optional[str]:
    """Primary entry of a SCIM multi-valued attribute, else the first."""
    if not isinstance(items, list) or not items:
        return None
    entries = [item for item in items if isinstance(item, dict)]
    primary = next((item.get("value") for item in entries if item.get("primary")), None)
    if primary:
        return primary
    return entries[0].get("value") if entries else None


class ScimTransformer:
    """Bidirectional transformer for SCIM/directory representations."""

    @staticmethod
    def identity_to_scim(identity: Dict[str, Any], base_url: str = "/scim/v2") -> Dict[str, Any]:
        """Convert an identity record to a SCIM 2.0 User resource.

        Args:
            identity: Internal identity document
            base_url: SCIM API base URL for resource location

        Returns:
            SCIM 2.0 compliant User resource

        Example:
            >>> identity = {
            ...     "id": "abc123",
            ...     "employeeId": "E-1001",
            ...     "firstName": "Alice",
            ...     "lastName": "Smith",
            ...     "email": "alice@example.com",
            ...     "status": "active",
            ... }
            >>> ScimTransformer.identity_to_scim(identity)["userName"]
            'alice@example.com'
        """
        user_id = identity.get("id", "")
        first_name = identity.get("firstName") or ""
        last_name = identity.get("lastName") or ""
        full_name = f"{first_name} {last_name}".strip()
        email = identity.get("email")

        scim_resource = {
            "schemas": [USER_SCHEMA, ENTERPRISE_USER_SCHEMA],
            "id": user_id,
            "userName": email or f"{identity.get('employeeId')}@example.com",
            "name": {
                "givenName": first_name,
                "familyName": last_name,
                "formatted": full_name,
            },
            "displayName": full_name,
            "active": identity.get("status") == STATUS_ACTIVE,
            "meta": _meta("User", identity, f"{base_url}/Users/{user_id}"),
        }
        if identity.get("employeeId"):
            scim_resource["externalId"] = identity["employeeId"]
        if email:
            scim_resource["emails"] = [{"value": email, "primary": True, "type": "work"}]
        if identity.get("phoneNumber"):
            scim_resource["phoneNumbers"] = [
                {"value": identity["phoneNumber"], "primary": True, "type": "work"}
            ]

        # Enterprise extension
        assignment = identity.get("assignment") or {}
        enterprise = {}
        if identity.get("employeeId"):
            enterprise["employeeNumber"] = identity["employeeId"]
        if assignment.get("unitId"):
            enterprise["department"] = assignment["unitId"]
        scim_resource[ENTERPRISE_USER_SCHEMA] = enterprise
        if assignment.get("positionId"):
            scim_resource["x-position"] = {"id": assignment["positionId"]}

        return scim_resource

    @staticmethod
    def scim_to_identity(scim_user: Dict[str, Any]) -> Dict[str, Any]:
        """Convert a SCIM 2.0 User to identity fields.

        Only attributes present in the payload are returned, except
        ``status`` which defaults to active when ``active`` is absent.

        Example:
            >>> scim_user = {
            ...     "userName": "bob@example.com",
            ...     "name": {"givenName": "Bob", "familyName": "Jones"},
            ...     "active": False,
            ... }
            >>> ScimTransformer.scim_to_identity(scim_user)["status"]
            'inactive'
        """
        fields: Dict[str, Any] = {
            "status": STATUS_ACTIVE if scim_user.get("active", True) else STATUS_INACTIVE,
        }

        name = scim_user.get("name", {})
        if isinstance(name, dict):
            if "givenName" in name:
                fields["firstName"] = name["givenName"]
            if "familyName" in name:
                fields["lastName"] = name["familyName"]

        # userName is the directory email; emails[] only fills in when it is absent
        email = scim_user.get("userName")
        if email is None:
            email = _first_value(scim_user.get("emails"))
        if isinstance(email, str) and email.strip():
            fields["email"] = email.strip().lower()

        phone = _first_value(scim_user.get("phoneNumbers"))
        if phone:
            fields["phoneNumber"] = phone

        enterprise = scim_user.get(ENTERPRISE_USER_SCHEMA) or {}
        employee_id = scim_user.get("externalId") or enterprise.get("employeeNumber")
        if employee_id:
            fields["employeeId"] = employee_id

        assignment = {}
        if enterprise.get("department"):
            assignment["unitId"] = enterprise["department"]
        position = scim_user.get("x-position") or {}
        if isinstance(position, dict) and position.get("id"):
            assignment["positionId"] = position["id"]
        if assignment:
            fields["assignment"] = assignment

        return fields

    @staticmethod
    def orgunit_to_scim(
        unit: Dict[str, Any],
        members: Optional[List[Dict[str, Any]]] = None,
        base_url: str = "/scim/v2",
    ) -> Dict[str, Any]:
        """Convert an org unit record to a SCIM 2.0 Group resource.

        Args:
            unit: Internal org unit document
            members: Identities assigned to the unit
            base_url: SCIM API base URL for resource location
        """
        group_id = unit.get("id", "")
        scim_resource = {
            "schemas": [GROUP_SCHEMA],
            "id": group_id,
            "displayName": unit.get("name"),
            "meta": _meta("Group", unit, f"{base_url}/Groups/{group_id}"),
            ORG_UNIT_EXTENSION: {
                "unitType": unit.get("type"),
                "level": unit.get("level"),
                "parentUnitId": unit.get("parentId"),
                "isActive": unit.get("isActive", True),
            },
        }
        if unit.get("code"):
            scim_resource["externalId"] = unit["code"]
        if members:
            scim_resource["members"] = [
                {
                    "value": member["id"],
                    "display": f"{member.get('firstName', '')} {member.get('lastName', '')}".strip(),
                    "$ref": f"{base_url}/Users/{member['id']}",
                }
                for member in members
            ]
        return scim_resource

    @staticmethod
    def scim_to_orgunit(scim_group: Dict[str, Any]) -> Dict[str, Any]:
        """Convert a SCIM 2.0 Group to org unit fields."""
        fields: Dict[str, Any] = {}
        if "displayName" in scim_group:
            fields["name"] = scim_group["displayName"]
        if scim_group.get("externalId"):
            fields["code"] = scim_group["externalId"]

        extension = scim_group.get(ORG_UNIT_EXTENSION) or {}
        if "unitType" in extension:
            fields["type"] = extension["unitType"]
        if "level" in extension:
            fields["level"] = extension["level"]
        if "parentUnitId" in extension:
            fields["parentId"] = extension["parentUnitId"]
        return fields

    @staticmethod
    def member_ids(scim_group: Dict[str, Any]) -> List[str]:
        """Ids referenced by a Group ``members`` attribute."""
        members = scim_group.get("members") or []
        if isinstance(members, dict):
            members = [members]
        return [m["value"] for m in members if isinstance(m, dict) and m.get("value")]
