"""Storage contracts consumed by the gateway, token authority and dispatcher.

Only the interfaces are part of the contract; the in-memory implementations
back the demo server and the test suite. Every in-memory store guards its
state with a lock so counters and read-modify-write updates are atomic.
"""
from __future__ import annotations
import copy
import datetime
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Iterable, Optional

from scim_provisioning.core.models import (
    AccessToken,
    Client,
    WebhookSubscription,
    isoformat,
    utcnow,
)
from scim_provisioning.core.predicates import MatchAll, Predicate


# ─────────────────────────────────────────────────────────────────────────────
# Documents (identities, org units)
# ─────────────────────────────────────────────────────────────────────────────

class DocumentRepository(ABC):
    """Lookup/list/mutate documents by logical id."""

    @abstractmethod
    def find_by_id(self, doc_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def find_all(self, predicate: Optional[Predicate] = None) -> list[dict]:
        ...

    @abstractmethod
    def create(self, document: dict) -> dict:
        ...

    @abstractmethod
    def update(self, doc_id: str, changes: dict) -> Optional[dict]:
        ...


class InMemoryDocumentRepository(DocumentRepository):
    def __init__(self, documents: Iterable[dict] = ()):
        self._lock = threading.RLock()
        self._documents: dict[str, dict] = {}
        for document in documents:
            self.create(document)

    def find_by_id(self, doc_id: str) -> Optional[dict]:
        with self._lock:
            document = self._documents.get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    def find_all(self, predicate: Optional[Predicate] = None) -> list[dict]:
        predicate = predicate or MatchAll()
        with self._lock:
            return [copy.deepcopy(doc) for doc in self._documents.values() if predicate.matches(doc)]

    def create(self, document: dict) -> dict:
        document = copy.deepcopy(document)
        now = isoformat(utcnow())
        document.setdefault("id", str(uuid.uuid4()))
        document.setdefault("createdAt", now)
        document.setdefault("updatedAt", now)
        with self._lock:
            self._documents[document["id"]] = document
            return copy.deepcopy(document)

    def update(self, doc_id: str, changes: dict) -> Optional[dict]:
        """Merge top-level ``changes`` into the stored document."""
        with self._lock:
            document = self._documents.get(doc_id)
            if document is None:
                return None
            document.update(copy.deepcopy(changes))
            document["id"] = doc_id
            document["updatedAt"] = isoformat(utcnow())
            return copy.deepcopy(document)

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)


# ─────────────────────────────────────────────────────────────────────────────
# OAuth clients and tokens
# ─────────────────────────────────────────────────────────────────────────────

class ClientRepository(ABC):
    @abstractmethod
    def get(self, client_id: str) -> Optional[Client]:
        ...

    @abstractmethod
    def save(self, client: Client) -> Client:
        ...

    @abstractmethod
    def delete(self, client_id: str) -> bool:
        ...

    @abstractmethod
    def list(self) -> list[Client]:
        ...

    @abstractmethod
    def update(self, client_id: str, **changes) -> Optional[Client]:
        """Atomically set ``changes`` on the stored client. None when missing."""

    @abstractmethod
    def bump_secret(self, client_id: str, secret_hash: str, at: datetime.datetime) -> Optional[Client]:
        """Atomically store a new secret hash and increment ``secret_version``."""

    @abstractmethod
    def record_usage(self, client_id: str, at: datetime.datetime) -> None:
        """Atomically bump ``total_requests`` and set ``last_used_at``."""


class InMemoryClientRepository(ClientRepository):
    def __init__(self):
        self._lock = threading.RLock()
        self._clients: dict[str, Client] = {}

    def get(self, client_id: str) -> Optional[Client]:
        with self._lock:
            client = self._clients.get(client_id)
            return replace(client) if client is not None else None

    def save(self, client: Client) -> Client:
        with self._lock:
            self._clients[client.client_id] = replace(client)
            return client

    def delete(self, client_id: str) -> bool:
        with self._lock:
            return self._clients.pop(client_id, None) is not None

    def list(self) -> list[Client]:
        with self._lock:
            return [replace(client) for client in self._clients.values()]

    def update(self, client_id: str, **changes) -> Optional[Client]:
        with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                return None
            self._clients[client_id] = replace(client, **changes)
            return replace(self._clients[client_id])

    def bump_secret(self, client_id: str, secret_hash: str, at: datetime.datetime) -> Optional[Client]:
        with self._lock:
            client = self._clients.get(client_id)
            if client is None:
                return None
            return self.update(
                client_id,
                client_secret=secret_hash,
                secret_version=client.secret_version + 1,
                updated_at=at,
            )

    def record_usage(self, client_id: str, at: datetime.datetime) -> None:
        with self._lock:
            client = self._clients.get(client_id)
            if client is not None:
                client.total_requests += 1
                client.last_used_at = at


class TokenRepository(ABC):
    @abstractmethod
    def save(self, token: AccessToken) -> AccessToken:
        ...

    @abstractmethod
    def get(self, token_id: str) -> Optional[AccessToken]:
        ...

    @abstractmethod
    def revoke(self, token_id: str) -> bool:
        ...

    @abstractmethod
    def revoke_for_client(self, client_id: str) -> int:
        """Revoke every live token of a client; return how many changed."""

    @abstractmethod
    def list_for_client(self, client_id: str) -> list[AccessToken]:
        ...


class InMemoryTokenRepository(TokenRepository):
    def __init__(self):
        self._lock = threading.RLock()
        self._tokens: dict[str, AccessToken] = {}

    def save(self, token: AccessToken) -> AccessToken:
        with self._lock:
            self._tokens[token.token_id] = token
            return token

    def get(self, token_id: str) -> Optional[AccessToken]:
        with self._lock:
            return self._tokens.get(token_id)

    def revoke(self, token_id: str) -> bool:
        with self._lock:
            token = self._tokens.get(token_id)
            if token is None or token.revoked:
                return False
            self._tokens[token_id] = token.revoke()
            return True

    def revoke_for_client(self, client_id: str) -> int:
        revoked = 0
        with self._lock:
            for token_id, token in list(self._tokens.items()):
                if token.client_id == client_id and not token.revoked:
                    self._tokens[token_id] = token.revoke()
                    revoked += 1
        return revoked

    def list_for_client(self, client_id: str) -> list[AccessToken]:
        with self._lock:
            return [token for token in self._tokens.values() if token.client_id == client_id]


# ─────────────────────────────────────────────────────────────────────────────
# Webhook subscriptions
# ─────────────────────────────────────────────────────────────────────────────

class WebhookRepository(ABC):
    @abstractmethod
    def create(self, subscription: WebhookSubscription) -> WebhookSubscription:
        ...

    @abstractmethod
    def get(self, subscription_id: str) -> Optional[WebhookSubscription]:
        ...

    @abstractmethod
    def list_for_client(self, client_id: str) -> list[WebhookSubscription]:
        ...

    @abstractmethod
    def find_active_for_event(self, event: str) -> list[WebhookSubscription]:
        ...

    @abstractmethod
    def deactivate(self, subscription_id: str) -> bool:
        ...

    @abstractmethod
    def delete(self, subscription_id: str) -> bool:
        ...

    @abstractmethod
    def record_delivery(self, subscription_id: str, failed: bool, at: datetime.datetime) -> None:
        """Atomically count one finished delivery.

        Success bumps ``total_deliveries`` and sets ``last_triggered_at``;
        failure bumps both ``total_deliveries`` and ``failed_deliveries``.
        """


class InMemoryWebhookRepository(WebhookRepository):
    def __init__(self):
        self._lock = threading.RLock()
        self._subscriptions: dict[str, WebhookSubscription] = {}

    def create(self, subscription: WebhookSubscription) -> WebhookSubscription:
        with self._lock:
            self._subscriptions[subscription.id] = replace(subscription)
            return subscription

    def get(self, subscription_id: str) -> Optional[WebhookSubscription]:
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            return replace(subscription) if subscription is not None else None

    def list_for_client(self, client_id: str) -> list[WebhookSubscription]:
        with self._lock:
            return [replace(s) for s in self._subscriptions.values() if s.client_id == client_id]

    def find_active_for_event(self, event: str) -> list[WebhookSubscription]:
        with self._lock:
            return [
                replace(s)
                for s in self._subscriptions.values()
                if s.is_active and event in s.events
            ]

    def deactivate(self, subscription_id: str) -> bool:
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None:
                return False
            subscription.is_active = False
            subscription.updated_at = utcnow()
            return True

    def delete(self, subscription_id: str) -> bool:
        with self._lock:
            return self._subscriptions.pop(subscription_id, None) is not None

    def record_delivery(self, subscription_id: str, failed: bool, at: datetime.datetime) -> None:
        with self._lock:
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None:
                return
            subscription.total_deliveries += 1
            if failed:
                subscription.failed_deliveries += 1
            else:
                subscription.last_triggered_at = at
            subscription.updated_at = at

