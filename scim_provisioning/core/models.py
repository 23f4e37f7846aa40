"""Data model for clients, tokens and webhook subscriptions.

Identities and org units are plain document dicts owned by the storage
layer; see ``repositories.py``.
"""
from __future__ import annotations
import datetime
from dataclasses import dataclass, field, replace
from typing import Any, Optional

# Scopes a client may be granted
READ_USERS = "read:users"
WRITE_USERS = "write:users"
DELETE_USERS = "delete:users"
READ_GROUPS = "read:groups"
WRITE_GROUPS = "write:groups"
DELETE_GROUPS = "delete:groups"
BULK_OPERATIONS = "bulk:operations"

ALL_SCOPES = (
    READ_USERS,
    WRITE_USERS,
    DELETE_USERS,
    READ_GROUPS,
    WRITE_GROUPS,
    DELETE_GROUPS,
    BULK_OPERATIONS,
)
DEFAULT_CLIENT_SCOPES = (READ_USERS, READ_GROUPS)

# Webhook events
USER_CREATED = "user.created"
USER_UPDATED = "user.updated"
USER_DELETED = "user.deleted"
GROUP_CREATED = "group.created"
GROUP_UPDATED = "group.updated"
GROUP_DELETED = "group.deleted"

WEBHOOK_EVENTS = (
    USER_CREATED,
    USER_UPDATED,
    USER_DELETED,
    GROUP_CREATED,
    GROUP_UPDATED,
    GROUP_DELETED,
)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def isoformat(value: Optional[datetime.datetime]) -> Optional[str]:
    """Render a datetime as ISO 8601 with a ``Z`` suffix."""
    if value is None:
        return None
    return value.astimezone(datetime.timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass
class Client:
    """SCIM client registered by an administrator."""
    client_id: str
    client_name: str
    client_secret: str  # Argon2id hash, never the plain secret
    scopes: tuple[str, ...] = DEFAULT_CLIENT_SCOPES
    rate_limit: int = 100  # requests per minute
    ip_allow_list: tuple[str, ...] = ()
    is_active: bool = True
    access_token_ttl: int = 3600
    secret_version: int = 1
    created_by: str = "admin"
    description: Optional[str] = None
    created_at: datetime.datetime = field(default_factory=utcnow)
    updated_at: datetime.datetime = field(default_factory=utcnow)
    last_used_at: Optional[datetime.datetime] = None
    total_requests: int = 0

    def to_public_dict(self) -> dict:
        """Client representation without the secret hash."""
        return {
            "clientId": self.client_id,
            "clientName": self.client_name,
            "scopes": list(self.scopes),
            "rateLimit": self.rate_limit,
            "ipAllowList": list(self.ip_allow_list),
            "isActive": self.is_active,
            "accessTokenExpiresIn": self.access_token_ttl,
            "createdBy": self.created_by,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
            "lastUsedAt": isoformat(self.last_used_at),
            "totalRequests": self.total_requests,
        }


@dataclass(frozen=True)
class AccessToken:
    """Issued bearer token. Immutable; revocation is recorded by the store."""
    token: str
    token_id: str
    client_id: str
    scopes: tuple[str, ...]
    expires_at: datetime.datetime
    secret_version: int
    issued_at: datetime.datetime = field(default_factory=utcnow)
    revoked: bool = False

    @property
    def expires_in(self) -> int:
        return max(0, int((self.expires_at - utcnow()).total_seconds()))

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)

    def revoke(self) -> "AccessToken":
        return replace(self, revoked=True)


@dataclass(frozen=True)
class ClientIdentity:
    """Authenticated caller, as seen by route handlers and the request log."""
    client_id: str
    scopes: tuple[str, ...]
    token_id: Optional[str] = None

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    retry_delay_ms: int = 1000

    def delay_seconds(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        return self.retry_delay_ms * (2 ** (attempt - 1)) / 1000.0


@dataclass
class WebhookSubscription:
    id: str
    client_id: str
    webhook_url: str
    events: tuple[str, ...]
    secret: str
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    is_active: bool = True
    total_deliveries: int = 0
    failed_deliveries: int = 0
    last_triggered_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime = field(default_factory=utcnow)
    updated_at: datetime.datetime = field(default_factory=utcnow)

    @property
    def success_rate(self) -> float:
        if not self.total_deliveries:
            return 0.0
        return (self.total_deliveries - self.failed_deliveries) / self.total_deliveries * 100

    def to_dict(self, reveal_secret: bool = False) -> dict:
        return {
            "id": self.id,
            "clientId": self.client_id,
            "webhookUrl": self.webhook_url,
            "events": list(self.events),
            "secret": self.secret if reveal_secret else "***",
            "isActive": self.is_active,
            "retryPolicy": {
                "maxRetries": self.retry_policy.max_retries,
                "retryDelayMs": self.retry_policy.retry_delay_ms,
            },
            "totalDeliveries": self.total_deliveries,
            "failedDeliveries": self.failed_deliveries,
            "successRate": round(self.success_rate, 2),
            "lastTriggeredAt": isoformat(self.last_triggered_at),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }


@dataclass(frozen=True)
class WebhookPayload:
    event: str
    timestamp: str
    resource_type: str
    resource_id: str
    action: str
    data: Optional[dict[str, Any]] = None
    previous_data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict:
        body: dict[str, Any] = {
            "event": self.event,
            "timestamp": self.timestamp,
            "resourceType": self.resource_type,
            "resourceId": self.resource_id,
            "action": self.action,
        }
        if self.data is not None:
            body["data"] = self.data
        if self.previous_data is not None:
            body["previousData"] = self.previous_data
        return body
