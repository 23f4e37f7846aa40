"""SCIM Bulk operations (RFC 7644 Section 3.7).

Operations run strictly in submission order against the resource gateway.
Each operation is isolated: its failure becomes its own result entry and
processing continues until the error count reaches ``failOnErrors``.

Known limitation: ``bulkId`` cross references (``"bulkId:<id>"`` in a
later operation's path or data) are not resolved. Every operation runs
against already-persisted state only.
"""
from __future__ import annotations
import enum
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from scim_provisioning.core.errors import (
    SCIM_ERROR_SCHEMA,
    PayloadTooLargeError,
    ScimError,
    ValidationError,
)
from scim_provisioning.core.resource_gateway import ResourceGateway, ResourceKind

logger = logging.getLogger(__name__)

BULK_REQUEST_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:BulkRequest"
BULK_RESPONSE_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:BulkResponse"

MAX_OPERATIONS = 1000
MAX_PAYLOAD_BYTES = 10 * 1024 * 1024  # 10 MiB

_PATH_RE = re.compile(r"^/(Users|Groups)(?:/([^/]+))?$")


class BulkVerb(enum.Enum):
    CREATE = "POST"
    REPLACE = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @property
    def scope_verb(self) -> str:
        return "delete" if self is BulkVerb.DELETE else "write"


@dataclass(frozen=True)
class BulkCommand:
    """Decoded operation target: what to do to which resource."""
    kind: ResourceKind
    verb: BulkVerb
    resource_id: Optional[str] = None


@dataclass(frozen=True)
class BulkOperation:
    method: str
    path: str
    bulk_id: Optional[str] = None
    data: Any = None

    @classmethod
    def from_dict(cls, raw: Any) -> "BulkOperation":
        if not isinstance(raw, dict):
            raise ValidationError("Bulk operation must be an object", scim_type="invalidSyntax")
        return cls(
            method=str(raw.get("method") or ""),
            path=str(raw.get("path") or ""),
            bulk_id=raw.get("bulkId"),
            data=raw.get("data"),
        )


@dataclass(frozen=True)
class BulkOperationResult:
    method: str
    status: int
    bulk_id: Optional[str] = None
    location: Optional[str] = None
    response: Optional[dict] = None

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"method": self.method, "status": str(self.status)}
        if self.bulk_id is not None:
            result["bulkId"] = self.bulk_id
        if self.location is not None:
            result["location"] = self.location
        if self.response is not None:
            result["response"] = self.response
        return result


def decode_command(operation: BulkOperation) -> BulkCommand:
    """Map method + path to a BulkCommand.

    Raises:
        ValidationError: unknown method, bad path, or id presence mismatch
    """
    try:
        verb = BulkVerb(operation.method.upper())
    except ValueError:
        raise ValidationError(f"Unsupported bulk method: {operation.method!r}", scim_type="invalidSyntax")
    match = _PATH_RE.match(operation.path)
    if not match:
        raise ValidationError(f"Invalid path: {operation.path}", scim_type="invalidPath")
    kind = ResourceKind.from_endpoint(match.group(1))
    resource_id = match.group(2)
    if verb is BulkVerb.CREATE and resource_id:
        raise ValidationError("POST path must not include a resource id", scim_type="invalidPath")
    if verb is not BulkVerb.CREATE and not resource_id:
        raise ValidationError(f"{verb.value} path requires a resource id", scim_type="invalidPath")
    return BulkCommand(kind, verb, resource_id)


ScopeCheck = Callable[[ResourceKind, str], None]


class BulkProcessor:
    """Validates a BulkRequest and dispatches its operations in order."""

    def __init__(
        self,
        gateway: ResourceGateway,
        max_operations: int = MAX_OPERATIONS,
        max_payload_bytes: int = MAX_PAYLOAD_BYTES,
    ):
        self.gateway = gateway
        self.max_operations = max_operations
        self.max_payload_bytes = max_payload_bytes

    def validate(self, request: Any, payload_size: Optional[int] = None) -> tuple[list, Optional[int]]:
        """Whole-request checks; nothing runs if any of these fail.

        Returns:
            (operations, fail_on_errors)
        """
        if payload_size is None:
            payload_size = len(json.dumps(request, separators=(",", ":")).encode("utf-8"))
        if payload_size > self.max_payload_bytes:
            raise PayloadTooLargeError(f"Payload too large. Max {self.max_payload_bytes} bytes")

        if not isinstance(request, dict) or BULK_REQUEST_SCHEMA not in (request.get("schemas") or []):
            raise ValidationError("Invalid bulk request schema", scim_type="invalidSyntax")

        operations = request.get("Operations")
        if not isinstance(operations, list) or not operations:
            raise ValidationError("Operations array is required")
        if len(operations) > self.max_operations:
            raise ValidationError(
                f"Too many operations. Max {self.max_operations} per request",
                scim_type="tooMany",
            )

        fail_on_errors = request.get("failOnErrors")
        if fail_on_errors is not None:
            if isinstance(fail_on_errors, bool) or not isinstance(fail_on_errors, int) or fail_on_errors < 1:
                raise ValidationError("failOnErrors must be a positive integer")
        return operations, fail_on_errors

    def process(
        self,
        request: Any,
        payload_size: Optional[int] = None,
        scope_check: Optional[ScopeCheck] = None,
    ) -> dict:
        """Run a BulkRequest and return the BulkResponse.

        Args:
            request: Parsed BulkRequest body
            payload_size: Raw body size in bytes, when known
            scope_check: ``scope_check(kind, scope)`` raising AuthorizationError
                when the caller may not act on ``kind``

        Returns:
            BulkResponse; ``Operations`` holds one result per attempted operation

        Raises:
            ValidationError / PayloadTooLargeError: whole-request validation
        """
        operations, fail_on_errors = self.validate(request, payload_size)

        results = []
        error_count = 0
        for raw in operations:
            result = self._run(raw, scope_check)
            results.append(result.to_dict())
            if result.status >= 400:
                error_count += 1
                if fail_on_errors is not None and error_count >= fail_on_errors:
                    logger.info(
                        f"Bulk request stopped | errors={error_count} | "
                        f"attempted={len(results)}/{len(operations)}"
                    )
                    break

        logger.info(f"Bulk request processed | operations={len(results)} | errors={error_count}")
        return {"schemas": [BULK_RESPONSE_SCHEMA], "Operations": results}

    def _run(self, raw: Any, scope_check: Optional[ScopeCheck]) -> BulkOperationResult:
        method = raw.get("method", "") if isinstance(raw, dict) else ""
        bulk_id = raw.get("bulkId") if isinstance(raw, dict) else None
        try:
            operation = BulkOperation.from_dict(raw)
            command = decode_command(operation)
            if scope_check is not None:
                scope_check(command.kind, command.kind.scope(command.verb.scope_verb))
            return self._dispatch(command, operation)
        except ScimError as exc:
            return BulkOperationResult(method, exc.status, bulk_id, response=exc.to_dict())
        except Exception as exc:
            logger.exception(f"Bulk operation failed | method={method} | bulkId={bulk_id}")
            return BulkOperationResult(
                method,
                500,
                bulk_id,
                response={"schemas": [SCIM_ERROR_SCHEMA], "status": "500", "detail": str(exc) or "Internal server error"},
            )

    def _dispatch(self, command: BulkCommand, operation: BulkOperation) -> BulkOperationResult:
        gateway = self.gateway
        kind, verb, resource_id = command.kind, command.verb, command.resource_id

        if verb is BulkVerb.CREATE:
            resource = gateway.create(kind, operation.data)
            return BulkOperationResult(
                verb.value, 201, operation.bulk_id, gateway.location(kind, resource["id"]), resource
            )
        if verb is BulkVerb.REPLACE:
            resource = gateway.replace(kind, resource_id, operation.data)
            return BulkOperationResult(verb.value, 200, operation.bulk_id, gateway.location(kind, resource_id), resource)
        if verb is BulkVerb.PATCH:
            resource = gateway.patch(kind, resource_id, operation.data)
            return BulkOperationResult(verb.value, 200, operation.bulk_id, gateway.location(kind, resource_id), resource)
        if verb is BulkVerb.DELETE:
            gateway.delete(kind, resource_id)
            return BulkOperationResult(verb.value, 204, operation.bulk_id, gateway.location(kind, resource_id))
        raise AssertionError(f"Unhandled bulk verb: {verb}")
