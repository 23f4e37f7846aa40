"""OAuth 2.0 client-credentials authority for SCIM clients.

Clients are registered by an administrator and authenticate with
``client_id``/``client_secret`` at the token endpoint. Secrets are stored as
Argon2id hashes only. Issued tokens are HS256 JWTs signed with the server
key and mirrored in a token store so they can be revoked.

Token claims:
    sub / client_id   owning client
    scope             space-separated granted scopes
    jti               token id (store key)
    sv                client secret version at issuance
    iat / exp         issue and expiry timestamps

Security:
    - Secret rotation bumps ``secret_version`` and revokes stored tokens;
      tokens stamped with an older version are rejected even if the store
      lost the revocation
    - Tokens are never logged; only a truncated SHA-256 hash is
    - Per-client sliding one-minute rate limit and optional IP allow-list
"""
from __future__ import annotations
import collections
import datetime
import hashlib
import ipaddress
import logging
import secrets
import threading
import time
import uuid
from typing import Callable, Iterable, Optional

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from scim_provisioning.core.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from scim_provisioning.core.models import (
    ALL_SCOPES,
    DEFAULT_CLIENT_SCOPES,
    AccessToken,
    Client,
    ClientIdentity,
    isoformat,
    utcnow,
)
from scim_provisioning.core.repositories import ClientRepository, TokenRepository

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
RATE_LIMIT_WINDOW_SECONDS = 60


def token_fingerprint(token: str) -> str:
    """SHA-256 hash of a token, truncated for logs."""
    return hashlib.sha256(token.encode()).hexdigest()[:12]


def generate_client_id() -> str:
    return f"scim-{secrets.token_hex(8)}"


def generate_client_secret() -> str:
    """256-bit random secret, URL-safe."""
    return secrets.token_urlsafe(32)


class TokenAuthority:
    """Issues and validates bearer tokens for registered SCIM clients."""

    def __init__(
        self,
        clients: ClientRepository,
        tokens: TokenRepository,
        signing_key: str,
        *,
        default_token_ttl: int = 3600,
        password_hasher: Optional[PasswordHasher] = None,
        audit_log=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not signing_key:
            raise ValueError("Token signing key must not be empty")
        self.clients = clients
        self.tokens = tokens
        self.default_token_ttl = default_token_ttl
        self.audit_log = audit_log
        self._signing_key = signing_key
        self._hasher = password_hasher or PasswordHasher()
        self._clock = clock
        self._rate_lock = threading.Lock()
        self._request_times: dict[str, collections.deque] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Client administration
    # ─────────────────────────────────────────────────────────────────────────

    def register_client(
        self,
        client_name: str,
        scopes: Optional[Iterable[str]] = None,
        *,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        rate_limit: int = 100,
        ip_allow_list: Iterable[str] = (),
        access_token_ttl: Optional[int] = None,
        created_by: str = "admin",
        description: Optional[str] = None,
    ) -> tuple[Client, str]:
        """Register a client and return it with its plain secret.

        The plain secret is returned exactly once; only its hash is stored.

        Raises:
            ValidationError: unknown scope, bad allow-list entry, duplicate id
        """
        if not client_name or not client_name.strip():
            raise ValidationError("clientName is required")
        granted = tuple(dict.fromkeys(scopes)) if scopes is not None else DEFAULT_CLIENT_SCOPES
        unknown = [scope for scope in granted if scope not in ALL_SCOPES]
        if unknown:
            raise ValidationError(f"Unknown scopes: {', '.join(unknown)}")
        if rate_limit < 1:
            raise ValidationError("rateLimit must be a positive integer")
        allow_list = tuple(ip_allow_list)
        for entry in allow_list:
            try:
                ipaddress.ip_network(entry, strict=False)
            except ValueError:
                raise ValidationError(f"Invalid IP allow-list entry: {entry!r}")

        client_id = client_id or generate_client_id()
        if self.clients.get(client_id) is not None:
            raise ValidationError(f"Client {client_id} already exists", scim_type="uniqueness")
        plain_secret = client_secret or generate_client_secret()

        client = Client(
            client_id=client_id,
            client_name=client_name.strip(),
            client_secret=self._hasher.hash(plain_secret),
            scopes=granted,
            rate_limit=rate_limit,
            ip_allow_list=allow_list,
            access_token_ttl=access_token_ttl or self.default_token_ttl,
            created_by=created_by,
            description=description,
        )
        self.clients.save(client)
        logger.info(f"Registered SCIM client | client_id={client_id} | scopes={' '.join(granted)}")
        return client, plain_secret

    def get_client(self, client_id: str) -> Client:
        client = self.clients.get(client_id)
        if client is None:
            raise NotFoundError(f"Client {client_id} not found")
        return client

    def rotate_secret(self, client_id: str) -> str:
        """Replace the client secret and invalidate every token issued so far."""
        self.get_client(client_id)
        plain_secret = generate_client_secret()
        if self.clients.bump_secret(client_id, self._hasher.hash(plain_secret), utcnow()) is None:
            raise NotFoundError(f"Client {client_id} not found")
        revoked = self.tokens.revoke_for_client(client_id)
        logger.info(f"Rotated client secret | client_id={client_id} | revoked_tokens={revoked}")
        return plain_secret

    def deactivate_client(self, client_id: str) -> None:
        if self.clients.update(client_id, is_active=False, updated_at=utcnow()) is None:
            raise NotFoundError(f"Client {client_id} not found")
        self.tokens.revoke_for_client(client_id)
        logger.info(f"Deactivated SCIM client | client_id={client_id}")

    def delete_client(self, client_id: str) -> None:
        """Permanently remove a client. Only inactive clients can be deleted."""
        client = self.get_client(client_id)
        if client.is_active:
            raise ValidationError("Cannot delete active client. Deactivate first.")
        self.tokens.revoke_for_client(client_id)
        self.clients.delete(client_id)
        with self._rate_lock:
            self._request_times.pop(client_id, None)
        logger.info(f"Deleted SCIM client | client_id={client_id}")

    def revoke_token(self, token: str) -> bool:
        """Revoke a single bearer token. Unknown or malformed tokens return False."""
        try:
            claims = self._decode(token)
        except AuthenticationError:
            return False
        return self.tokens.revoke(claims.get("jti", ""))

    def revoke_all_client_tokens(self, client_id: str) -> int:
        return self.tokens.revoke_for_client(client_id)

    def client_stats(self, client_id: str) -> dict:
        """Usage summary built from the client record and recent request log."""
        client = self.get_client(client_id)
        tokens = self.tokens.list_for_client(client_id)
        now = utcnow()
        live_tokens = [t for t in tokens if not t.revoked and t.expires_at > now]

        recent = []
        if self.audit_log is not None:
            recent = self.audit_log.recent_for_client(client_id, limit=100)
        day_ago = now - datetime.timedelta(hours=24)
        requests_last_24h = sum(1 for entry in recent if entry.timestamp >= day_ago)
        avg_duration = sum(entry.duration_ms for entry in recent) / len(recent) if recent else 0
        error_rate = sum(1 for entry in recent if entry.status_code >= 400) / len(recent) if recent else 0

        return {
            "clientId": client.client_id,
            "clientName": client.client_name,
            "isActive": client.is_active,
            "totalRequests": client.total_requests,
            "requestsLast24h": requests_last_24h,
            "avgDuration": round(avg_duration),
            "errorRate": round(error_rate * 100),
            "activeTokens": len(live_tokens),
            "lastUsedAt": isoformat(client.last_used_at),
        }

    def client_can_receive(self, client_id: str, scope: str) -> bool:
        """True when the client exists, is active and holds ``scope``."""
        client = self.clients.get(client_id)
        return client is not None and client.is_active and scope in client.scopes

    # ─────────────────────────────────────────────────────────────────────────
    # Token issuance and validation
    # ─────────────────────────────────────────────────────────────────────────

    def issue_token(
        self,
        client_id: str,
        client_secret: str,
        requested_scope: Optional[str] = None,
    ) -> AccessToken:
        """Client-credentials grant.

        Args:
            client_id: Registered client id
            client_secret: Plain secret
            requested_scope: Optional space-separated scopes to narrow the grant

        Returns:
            AccessToken: bearer token with granted scopes

        Raises:
            AuthenticationError: unknown/inactive client, wrong secret, or no
                overlap between requested and allowed scopes
        """
        client = self.clients.get(client_id) if client_id else None
        if client is None or not client.is_active:
            logger.warning(f"❌ Token request rejected | client_id={client_id} | reason=unknown_or_inactive")
            raise AuthenticationError("Invalid client credentials")
        if not self._verify_secret(client, client_secret or ""):
            logger.warning(f"❌ Token request rejected | client_id={client_id} | reason=bad_secret")
            raise AuthenticationError("Invalid client credentials")

        if requested_scope and requested_scope.strip():
            requested = requested_scope.split()
            scopes = tuple(scope for scope in client.scopes if scope in requested)
        else:
            scopes = tuple(client.scopes)
        if not scopes:
            raise AuthenticationError("Requested scope is not granted to this client")

        issued_at = utcnow()
        expires_at = issued_at + datetime.timedelta(seconds=client.access_token_ttl)
        token_id = str(uuid.uuid4())
        claims = {
            "sub": client.client_id,
            "client_id": client.client_id,
            "scope": " ".join(scopes),
            "jti": token_id,
            "sv": client.secret_version,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        encoded = jwt.encode(claims, self._signing_key, algorithm=JWT_ALGORITHM)
        token = AccessToken(
            token=encoded,
            token_id=token_id,
            client_id=client.client_id,
            scopes=scopes,
            expires_at=expires_at,
            secret_version=client.secret_version,
            issued_at=issued_at,
        )
        self.tokens.save(token)
        self.clients.update(client.client_id, last_used_at=issued_at)
        logger.info(
            f"✅ Token issued | client_id={client.client_id} | "
            f"token_hash={token_fingerprint(encoded)} | scope={token.scope}"
        )
        return token

    def authorize(
        self,
        token: Optional[str],
        required_scope: Optional[str] = None,
        client_ip: Optional[str] = None,
    ) -> ClientIdentity:
        """Validate a bearer token and enforce scope, IP allow-list and rate limit.

        Raises:
            AuthenticationError: missing, malformed, expired, revoked or stale token
            AuthorizationError: missing scope or IP not allowed
            RateLimitError: client over its per-minute ceiling
        """
        if not token:
            raise AuthenticationError("Bearer token is missing")

        claims = self._decode(token)
        fingerprint = token_fingerprint(token)
        record = self.tokens.get(claims.get("jti", ""))
        if record is None or record.revoked:
            logger.warning(f"❌ Token rejected | token_hash={fingerprint} | reason=revoked")
            raise AuthenticationError("Token has been revoked")

        client = self.clients.get(record.client_id)
        if client is None or not client.is_active:
            logger.warning(f"❌ Token rejected | token_hash={fingerprint} | reason=client_inactive")
            raise AuthenticationError("Client is inactive or no longer exists")
        if claims.get("sv") != client.secret_version or record.secret_version != client.secret_version:
            logger.warning(f"❌ Token rejected | token_hash={fingerprint} | reason=secret_rotated")
            raise AuthenticationError("Token was issued before the client secret was rotated")

        identity = ClientIdentity(client.client_id, tuple(record.scopes), record.token_id)
        if required_scope and not identity.has_scope(required_scope):
            raise AuthorizationError(f"Insufficient scope. Required: '{required_scope}'")

        if client.ip_allow_list:
            self._check_ip(client, client_ip)
        self._check_rate_limit(client)
        self.clients.record_usage(client.client_id, utcnow())
        return identity

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _verify_secret(self, client: Client, plain_secret: str) -> bool:
        try:
            return self._hasher.verify(client.client_secret, plain_secret)
        except VerifyMismatchError:
            return False
        except (VerificationError, InvalidHashError):
            logger.error(f"Stored secret hash unusable | client_id={client.client_id}")
            return False

    def _decode(self, token: str) -> dict:
        try:
            return jwt.decode(
                token,
                self._signing_key,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["exp", "iat", "jti", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError as exc:
            logger.warning(f"❌ Token rejected | token_hash={token_fingerprint(token)} | reason={exc}")
            raise AuthenticationError("Invalid access token")

    def _check_ip(self, client: Client, client_ip: Optional[str]) -> None:
        try:
            address = ipaddress.ip_address(client_ip or "")
        except ValueError:
            raise AuthorizationError(f"IP address {client_ip} not allowed")
        for entry in client.ip_allow_list:
            if address in ipaddress.ip_network(entry, strict=False):
                return
        logger.warning(f"❌ IP not allowed | client_id={client.client_id} | client_ip={client_ip}")
        raise AuthorizationError(f"IP address {client_ip} not allowed")

    def _check_rate_limit(self, client: Client) -> None:
        now = self._clock()
        window_start = now - RATE_LIMIT_WINDOW_SECONDS
        with self._rate_lock:
            times = self._request_times.setdefault(client.client_id, collections.deque())
            while times and times[0] <= window_start:
                times.popleft()
            if len(times) >= client.rate_limit:
                retry_after = max(1, int(times[0] - window_start + 0.999))
                raise RateLimitError(
                    f"Rate limit exceeded. Try again in {retry_after} seconds.",
                    retry_after=retry_after,
                )
            times.append(now)
