"""SCIM resource operations over the identity directory.

Users are backed by identity records, Groups by org units. Group membership
is derived from each identity's ``assignment.unitId``, so adding a member to
a Group moves the identity into that org unit.

Every successful mutation notifies the webhook dispatcher with the SCIM
representation (and the previous one on update). Notification failures are
logged and never fail the mutation.
"""
from __future__ import annotations
import enum
import logging
from typing import Any, Optional

from scim_provisioning.core.errors import ConflictError, NotFoundError, ValidationError
from scim_provisioning.core.filter_parser import (
    GROUP_ATTRIBUTE_MAP,
    USER_ATTRIBUTE_MAP,
    USER_VALUE_CODECS,
    compile_scim_filter,
)
from scim_provisioning.core.predicates import Comparison
from scim_provisioning.core.repositories import DocumentRepository
from scim_provisioning.core.scim_transformer import (
    ENTERPRISE_USER_SCHEMA,
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    STATUS_TERMINATED,
    ScimTransformer,
)
from scim_provisioning.core.validators import (
    validate_email,
    validate_scim_group_payload,
    validate_scim_user_payload,
)

logger = logging.getLogger(__name__)

LIST_RESPONSE_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
PATCH_OP_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"


class ResourceKind(enum.Enum):
    USER = "Users"
    GROUP = "Groups"

    @property
    def endpoint(self) -> str:
        return f"/{self.value}"

    @property
    def resource_type(self) -> str:
        return "User" if self is ResourceKind.USER else "Group"

    @property
    def event_prefix(self) -> str:
        return "user" if self is ResourceKind.USER else "group"

    def scope(self, verb: str) -> str:
        """``read``/``write``/``delete`` scope for this kind."""
        return f"{verb}:{self.value.lower()}"

    @classmethod
    def from_endpoint(cls, name: str) -> "ResourceKind":
        for kind in cls:
            if kind.value == name:
                return kind
        raise ValueError(f"Unknown resource endpoint: {name}")


def _parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def _coerce_bool(value: Any) -> bool:
    # Some identity providers send "True"/"False" strings in PatchOp values
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValidationError("active must be a boolean")


def _checked_email(email: Any) -> str:
    if not isinstance(email, str):
        raise ValidationError("userName is required")
    try:
        return validate_email(email)
    except ValueError as exc:
        raise ValidationError(f"userName: {exc}")


def _multi_value(value: Any) -> Optional[str]:
    """Extract a scalar from a string, ``{"value": ..}`` or a list of those."""
    if isinstance(value, list):
        if not value:
            return None
        entries = [v for v in value if isinstance(v, dict)]
        primary = next((v.get("value") for v in entries if v.get("primary")), None)
        if primary:
            return primary
        return entries[0].get("value") if entries else value[0]
    if isinstance(value, dict):
        return value.get("value")
    return value


class ResourceGateway:
    """CRUD, filtering and PatchOp for ``/Users`` and ``/Groups``."""

    def __init__(
        self,
        identities: DocumentRepository,
        org_units: DocumentRepository,
        *,
        dispatcher=None,
        base_url: str = "/scim/v2",
        default_page_size: int = 100,
        max_page_size: int = 1000,
    ):
        self.identities = identities
        self.org_units = org_units
        self.dispatcher = dispatcher
        self.base_url = base_url.rstrip("/")
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    def _repository(self, kind: ResourceKind) -> DocumentRepository:
        return self.identities if kind is ResourceKind.USER else self.org_units

    def _load(self, kind: ResourceKind, resource_id: str) -> dict:
        record = self._repository(kind).find_by_id(resource_id) if resource_id else None
        if record is None:
            raise NotFoundError(f"{kind.resource_type} {resource_id} not found")
        return record

    def _members(self, unit_id: str) -> list[dict]:
        members = self.identities.find_all(Comparison("assignment.unitId", "eq", unit_id))
        members = [m for m in members if m.get("status") != STATUS_TERMINATED]
        return sorted(members, key=lambda m: (m.get("createdAt") or "", m["id"]))

    def to_scim(self, kind: ResourceKind, record: dict) -> dict:
        if kind is ResourceKind.USER:
            return ScimTransformer.identity_to_scim(record, self.base_url)
        return ScimTransformer.orgunit_to_scim(record, self._members(record["id"]), self.base_url)

    def location(self, kind: ResourceKind, resource_id: str) -> str:
        return f"{self.base_url}{kind.endpoint}/{resource_id}"

    def _notify(self, kind: ResourceKind, verb: str, resource: dict, previous: Optional[dict] = None) -> None:
        if self.dispatcher is None:
            return
        event = f"{kind.event_prefix}.{verb}"
        try:
            self.dispatcher.trigger(event, resource, previous)
        except Exception:
            logger.exception(f"Webhook trigger failed | event={event} | id={resource.get('id')}")

    def _ensure_unique_email(self, email: str, exclude_id: Optional[str] = None) -> None:
        for existing in self.identities.find_all(Comparison("email", "eq", email)):
            if existing["id"] != exclude_id:
                raise ConflictError(f"User with userName '{email}' already exists")

    def _resolve_members(self, unit_id: str, member_ids: list[str]) -> list[str]:
        """Keep the ids of identities that exist and are not terminated."""
        resolved = []
        for member_id in dict.fromkeys(member_ids):
            identity = self.identities.find_by_id(member_id)
            if identity is None or identity.get("status") == STATUS_TERMINATED:
                logger.warning(f"Ignoring unknown or terminated group member | group={unit_id} | member={member_id}")
                continue
            resolved.append(member_id)
        return resolved

    def _set_members(self, unit_id: str, member_ids: list[str]) -> None:
        """Move identities in or out of the unit until its members are ``member_ids``."""
        current = {m["id"]: m for m in self._members(unit_id)}
        for member_id, identity in current.items():
            if member_id not in member_ids:
                self._assign(identity, None)
        for member_id in member_ids:
            if member_id not in current:
                identity = self.identities.find_by_id(member_id)
                if identity is not None:
                    self._assign(identity, unit_id)

    def _assign(self, identity: dict, unit_id: Optional[str]) -> None:
        assignment = dict(identity.get("assignment") or {})
        assignment["unitId"] = unit_id
        self.identities.update(identity["id"], {"assignment": assignment})

    # ─────────────────────────────────────────────────────────────────────────
    # Read
    # ─────────────────────────────────────────────────────────────────────────

    def list(
        self,
        kind: ResourceKind,
        filter_text: Optional[str] = None,
        start_index: Any = 1,
        count: Any = None,
    ) -> dict:
        """Filtered, paginated ListResponse.

        Args:
            kind: Resource kind
            filter_text: SCIM filter expression (optional)
            start_index: 1-based index of the first result; values < 1 become 1
            count: Page size, clamped to [0, max_page_size]

        Returns:
            ListResponse with totalResults counted before pagination

        Raises:
            ValidationError: malformed filter (invalidFilter) or non-integer paging
        """
        start = max(1, _parse_int(start_index if start_index not in (None, "") else 1, "startIndex"))
        size = self.default_page_size if count in (None, "") else _parse_int(count, "count")
        size = min(max(0, size), self.max_page_size)

        if kind is ResourceKind.USER:
            predicate = compile_scim_filter(filter_text, USER_ATTRIBUTE_MAP, USER_VALUE_CODECS)
        else:
            predicate = compile_scim_filter(filter_text, GROUP_ATTRIBUTE_MAP)

        records = self._repository(kind).find_all(predicate)
        records.sort(key=lambda r: (r.get("createdAt") or "", r["id"]))
        page = records[start - 1:start - 1 + size]

        return {
            "schemas": [LIST_RESPONSE_SCHEMA],
            "totalResults": len(records),
            "startIndex": start,
            "itemsPerPage": len(page),
            "Resources": [self.to_scim(kind, record) for record in page],
        }

    def get(self, kind: ResourceKind, resource_id: str) -> dict:
        return self.to_scim(kind, self._load(kind, resource_id))

    # ─────────────────────────────────────────────────────────────────────────
    # Create / replace
    # ─────────────────────────────────────────────────────────────────────────

    def create(self, kind: ResourceKind, body: Any) -> dict:
        """Create a User or Group and return its SCIM representation.

        Raises:
            ValidationError: missing required attributes
            ConflictError: userName already taken (uniqueness)
        """
        if kind is ResourceKind.USER:
            validate_scim_user_payload(body)
            fields = ScimTransformer.scim_to_identity(body)
            fields["email"] = _checked_email(fields.get("email"))
            self._ensure_unique_email(fields["email"])
            fields.setdefault("assignment", {"unitId": None, "positionId": None})
            record = self.identities.create(fields)
            logger.info(f"User created | id={record['id']} | userName={record['email']}")
        else:
            validate_scim_group_payload(body)
            fields = ScimTransformer.scim_to_orgunit(body)
            fields.setdefault("type", "department")
            fields.setdefault("level", 0)
            fields.setdefault("parentId", None)
            fields["isActive"] = True
            record = self.org_units.create(fields)
            self._set_members(record["id"], self._resolve_members(record["id"], ScimTransformer.member_ids(body)))
            logger.info(f"Group created | id={record['id']} | displayName={record['name']}")

        resource = self.to_scim(kind, record)
        self._notify(kind, "created", resource)
        return resource

    def replace(self, kind: ResourceKind, resource_id: str, body: Any) -> dict:
        """PUT: overwrite mutable attributes, keep id/createdAt/unset externalId."""
        existing = self._load(kind, resource_id)
        previous = self.to_scim(kind, existing)

        if kind is ResourceKind.USER:
            validate_scim_user_payload(body)
            fields = ScimTransformer.scim_to_identity(body)
            fields["email"] = _checked_email(fields.get("email"))
            self._ensure_unique_email(fields["email"], exclude_id=resource_id)
            changes = {
                "firstName": fields["firstName"],
                "lastName": fields["lastName"],
                "email": fields["email"],
                "phoneNumber": fields.get("phoneNumber"),
                "status": fields["status"],
            }
            if "employeeId" in fields:
                changes["employeeId"] = fields["employeeId"]
            if "assignment" in fields:
                assignment = dict(existing.get("assignment") or {})
                assignment.update(fields["assignment"])
                changes["assignment"] = assignment
            record = self.identities.update(resource_id, changes)
        else:
            validate_scim_group_payload(body)
            fields = ScimTransformer.scim_to_orgunit(body)
            record = self.org_units.update(resource_id, fields)
            if "members" in body:
                self._set_members(resource_id, self._resolve_members(resource_id, ScimTransformer.member_ids(body)))

        resource = self.to_scim(kind, record)
        self._notify(kind, "updated", resource, previous)
        return resource

    # ─────────────────────────────────────────────────────────────────────────
    # PatchOp
    # ─────────────────────────────────────────────────────────────────────────

    def patch(self, kind: ResourceKind, resource_id: str, body: Any) -> dict:
        """Apply a PatchOp request (RFC 7644 Section 3.5.2).

        Operations run in order; ``op`` is case-insensitive. Unrecognized
        paths are ignored. A path-less ``add``/``replace`` with an object
        value applies each key as a path.

        Raises:
            ValidationError: malformed PatchOp envelope or operation
            NotFoundError: unknown resource id
        """
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object", scim_type="invalidSyntax")
        if PATCH_OP_SCHEMA not in (body.get("schemas") or []):
            raise ValidationError(f"schemas must contain '{PATCH_OP_SCHEMA}'", scim_type="invalidSyntax")
        operations = body.get("Operations")
        if not isinstance(operations, list) or not operations:
            raise ValidationError("Operations must be a non-empty list", scim_type="invalidSyntax")

        existing = self._load(kind, resource_id)
        previous = self.to_scim(kind, existing)
        changes: dict[str, Any] = {}
        # Group membership is collected here and written once every op has validated
        members = [m["id"] for m in self._members(resource_id)] if kind is ResourceKind.GROUP else []
        original_members = list(members)

        for operation in operations:
            if not isinstance(operation, dict):
                raise ValidationError("Operation must be an object", scim_type="invalidSyntax")
            op = str(operation.get("op", "")).lower()
            if op not in ("add", "replace", "remove"):
                raise ValidationError(f"Unsupported patch op: {operation.get('op')!r}", scim_type="invalidSyntax")
            path = operation.get("path")
            value = operation.get("value")

            if not path:
                if op == "remove":
                    raise ValidationError("remove requires a path", scim_type="noTarget")
                if not isinstance(value, dict):
                    raise ValidationError("Path-less operation value must be an object")
                for key, item in self._expand_object(value):
                    self._apply(kind, resource_id, existing, changes, members, op, key, item)
            else:
                self._apply(kind, resource_id, existing, changes, members, op, path, value)

        if kind is ResourceKind.USER and "email" in changes:
            self._ensure_unique_email(changes["email"], exclude_id=resource_id)
        if changes:
            self._repository(kind).update(resource_id, changes)
        if members != original_members:
            self._set_members(resource_id, members)
        record = self._load(kind, resource_id)

        resource = self.to_scim(kind, record)
        if resource != previous:
            self._notify(kind, "updated", resource, previous)
        return resource

    @staticmethod
    def _expand_object(value: dict) -> list[tuple[str, Any]]:
        """Flatten a path-less value into (path, value) pairs."""
        pairs = []
        for key, item in value.items():
            if key == ENTERPRISE_USER_SCHEMA and isinstance(item, dict):
                pairs.extend((f"{key}:{sub}", sub_value) for sub, sub_value in item.items())
            elif key == "name" and isinstance(item, dict):
                pairs.extend((f"name.{sub}", sub_value) for sub, sub_value in item.items())
            else:
                pairs.append((key, item))
        return pairs

    def _apply(self, kind, resource_id, existing, changes, members, op, path, value) -> None:
        if kind is ResourceKind.USER:
            self._apply_user(existing, changes, op, path, value)
        else:
            self._apply_group(resource_id, changes, members, op, path, value)

    def _apply_user(self, existing: dict, changes: dict, op: str, path: str, value: Any) -> None:
        key = path.strip().lower()
        enterprise = ENTERPRISE_USER_SCHEMA.lower()
        removing = op == "remove"

        def assignment() -> dict:
            if "assignment" not in changes:
                changes["assignment"] = dict(existing.get("assignment") or {})
            return changes["assignment"]

        if key == "active":
            if not removing:
                changes["status"] = STATUS_ACTIVE if _coerce_bool(value) else STATUS_INACTIVE
        elif key in ("name.givenname", "name.familyname", "username") or key.startswith("emails"):
            if removing:
                raise ValidationError(f"Required attribute '{path}' cannot be removed", scim_type="mutability")
            if key == "name.givenname":
                changes["firstName"] = value
            elif key == "name.familyname":
                changes["lastName"] = value
            else:
                email = _multi_value(value)
                if not isinstance(email, str):
                    raise ValidationError(f"Invalid value for '{path}'")
                try:
                    changes["email"] = validate_email(email)
                except ValueError as exc:
                    raise ValidationError(f"{path}: {exc}")
        elif key.startswith("phonenumbers"):
            changes["phoneNumber"] = None if removing else _multi_value(value)
        elif key in ("externalid", f"{enterprise}:employeenumber"):
            changes["employeeId"] = None if removing else value
        elif key == f"{enterprise}:department":
            assignment()["unitId"] = None if removing else value
        elif key == "x-position.id":
            assignment()["positionId"] = None if removing else value
        else:
            logger.debug(f"Ignoring unsupported patch path | path={path}")

    def _apply_group(self, unit_id: str, changes: dict, members: list, op: str, path: str, value: Any) -> None:
        key = path.strip().lower()
        removing = op == "remove"

        if key == "displayname":
            if removing:
                raise ValidationError("Required attribute 'displayName' cannot be removed", scim_type="mutability")
            if not isinstance(value, str) or not value.strip():
                raise ValidationError("displayName must be a non-empty string")
            changes["name"] = value.strip()
        elif key == "externalid":
            changes["code"] = None if removing else value
        elif key.startswith("members"):
            if key == "members":
                ids = ScimTransformer.member_ids({"members": value}) if value is not None else []
            else:
                # members[value eq "<id>"]
                start, end = path.find('"'), path.rfind('"')
                ids = [path[start + 1:end]] if start != -1 and end > start else []
            if op == "add":
                members.extend([i for i in self._resolve_members(unit_id, ids) if i not in members])
            elif op == "replace":
                members[:] = self._resolve_members(unit_id, ids)
            elif key == "members" and not ids:
                members.clear()
            else:
                members[:] = [i for i in members if i not in ids]
        else:
            logger.debug(f"Ignoring unsupported patch path | path={path}")

    # ─────────────────────────────────────────────────────────────────────────
    # Delete
    # ─────────────────────────────────────────────────────────────────────────

    def delete(self, kind: ResourceKind, resource_id: str) -> None:
        """Soft delete: users become terminated, groups inactive."""
        existing = self._load(kind, resource_id)
        if kind is ResourceKind.USER:
            if existing.get("status") == STATUS_TERMINATED:
                return
            record = self.identities.update(resource_id, {"status": STATUS_TERMINATED})
            logger.info(f"User deactivated | id={resource_id}")
        else:
            if existing.get("isActive") is False:
                return
            record = self.org_units.update(resource_id, {"isActive": False})
            logger.info(f"Group deactivated | id={resource_id}")
        self._notify(kind, "deleted", self.to_scim(kind, record))
