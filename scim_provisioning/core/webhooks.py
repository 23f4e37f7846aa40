"""Outbound webhook notifications for SCIM resource changes.

Subscribers register a URL and a set of events. Each resource mutation is
turned into a signed JSON payload and delivered in the background:

    trigger() -> DeliveryTask per subscriber -> scheduler -> run() -> deliver()

Delivery contract (subscriber side):
    POST <webhookUrl>
    Content-Type: application/json
    X-SCIM-Signature: hex(HMAC-SHA256(secret, raw body))
    X-SCIM-Event: user.created | user.updated | ... | group.deleted
    X-SCIM-Delivery: ISO 8601 timestamp of the attempt

Failed attempts are retried with exponential backoff
(``retry_delay_ms * 2^(attempt-1)``) up to ``max_retries`` attempts in
total; exhausted deliveries are only counted, never raised.
"""
from __future__ import annotations
import hashlib
import hmac
import json
import logging
import secrets
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional
from urllib.parse import urlparse

import requests

from scim_provisioning.core.errors import AuthorizationError, NotFoundError, ValidationError
from scim_provisioning.core.models import (
    WEBHOOK_EVENTS,
    RetryPolicy,
    WebhookPayload,
    WebhookSubscription,
    isoformat,
    utcnow,
)
from scim_provisioning.core.repositories import WebhookRepository
from scim_provisioning.core.scheduler import DeliveryScheduler

logger = logging.getLogger(__name__)

_RESOURCE_TYPES = {"user": "User", "group": "Group"}
_READ_SCOPES = {"user": "read:users", "group": "read:groups"}


def serialize_payload(payload: dict) -> bytes:
    """Canonical JSON body that is signed and sent."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_payload(body: bytes | str, secret: str) -> str:
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes | str, signature: str, secret: str) -> bool:
    """Constant-time check of an ``X-SCIM-Signature`` header value."""
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(body, secret), signature.strip().lower())


@dataclass(frozen=True)
class DeliveryTask:
    subscription_id: str
    payload: WebhookPayload
    attempt: int = 1


class WebhookDispatcher:
    """Fans resource events out to webhook subscribers."""

    def __init__(
        self,
        subscriptions: WebhookRepository,
        scheduler: DeliveryScheduler,
        *,
        http_session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        subscriber_filter: Optional[Callable[[str, str], bool]] = None,
        default_retry_policy: RetryPolicy = RetryPolicy(),
    ):
        self.subscriptions = subscriptions
        self.scheduler = scheduler
        self.http = http_session or requests.Session()
        self.timeout = timeout
        self.subscriber_filter = subscriber_filter
        self.default_retry_policy = default_retry_policy
        scheduler.bind(self.run)

    # ─────────────────────────────────────────────────────────────────────────
    # Event fan-out
    # ─────────────────────────────────────────────────────────────────────────

    def trigger(self, event: str, resource: dict, previous: Optional[dict] = None) -> int:
        """Enqueue one delivery per interested subscriber.

        Args:
            event: ``<user|group>.<created|updated|deleted>``
            resource: SCIM representation of the resource after the change
            previous: SCIM representation before an update

        Returns:
            Number of deliveries enqueued
        """
        if event not in WEBHOOK_EVENTS:
            raise ValueError(f"Unknown webhook event: {event}")
        kind, verb = event.split(".")

        subscribers = self.subscriptions.find_active_for_event(event)
        if self.subscriber_filter is not None:
            scope = _READ_SCOPES[kind]
            subscribers = [s for s in subscribers if self.subscriber_filter(s.client_id, scope)]
        if not subscribers:
            return 0

        payload = WebhookPayload(
            event=event,
            timestamp=isoformat(utcnow()),
            resource_type=_RESOURCE_TYPES[kind],
            resource_id=resource.get("id", ""),
            action=verb,
            data=None if verb == "deleted" else resource,
            previous_data=previous if verb == "updated" else None,
        )
        for subscription in subscribers:
            self.scheduler.submit(DeliveryTask(subscription.id, payload, 1))
        logger.debug(f"Webhook event queued | event={event} | subscribers={len(subscribers)}")
        return len(subscribers)

    # ─────────────────────────────────────────────────────────────────────────
    # Delivery
    # ─────────────────────────────────────────────────────────────────────────

    def deliver(self, subscription: WebhookSubscription, payload: WebhookPayload, attempt: int = 1) -> bool:
        """POST one signed payload. Returns True on a 2xx response."""
        body = serialize_payload(payload.to_dict())
        headers = {
            "Content-Type": "application/json",
            "X-SCIM-Signature": sign_payload(body, subscription.secret),
            "X-SCIM-Event": payload.event,
            "X-SCIM-Delivery": isoformat(utcnow()),
        }
        try:
            response = self.http.post(subscription.webhook_url, data=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning(
                f"❌ Webhook delivery failed (attempt {attempt}) | "
                f"url={subscription.webhook_url} | error={exc}"
            )
            return False
        if not 200 <= response.status_code < 300:
            logger.warning(
                f"❌ Webhook delivery failed (attempt {attempt}) | "
                f"url={subscription.webhook_url} | status={response.status_code}"
            )
            return False
        logger.info(f"✅ Webhook delivered | event={payload.event} | url={subscription.webhook_url}")
        return True

    def run(self, task: DeliveryTask) -> None:
        """Execute one attempt and schedule the next on failure. Never raises."""
        try:
            subscription = self.subscriptions.get(task.subscription_id)
            if subscription is None or not subscription.is_active:
                logger.info(f"Webhook delivery dropped | subscription={task.subscription_id} | reason=inactive")
                return

            if self.deliver(subscription, task.payload, task.attempt):
                self.subscriptions.record_delivery(subscription.id, failed=False, at=utcnow())
                return

            policy = subscription.retry_policy
            if task.attempt < policy.max_retries:
                delay = policy.delay_seconds(task.attempt)
                self.scheduler.submit(
                    DeliveryTask(task.subscription_id, task.payload, task.attempt + 1),
                    delay_seconds=delay,
                )
                return

            self.subscriptions.record_delivery(subscription.id, failed=True, at=utcnow())
            logger.error(
                f"❌ Webhook delivery failed after {task.attempt} attempts | url={subscription.webhook_url}"
            )
        except Exception:
            logger.exception(f"Webhook delivery task crashed | subscription={task.subscription_id}")

    # ─────────────────────────────────────────────────────────────────────────
    # Subscription management
    # ─────────────────────────────────────────────────────────────────────────

    def register(
        self,
        client_id: str,
        webhook_url: str,
        events: Iterable[str],
        *,
        secret: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
        is_active: bool = True,
    ) -> WebhookSubscription:
        """Create a subscription for ``client_id``.

        Raises:
            ValidationError: bad URL, empty or unknown events, bad retry policy
        """
        parsed = urlparse(webhook_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError("Invalid webhook URL")

        if isinstance(events, str) or events is None:
            raise ValidationError("events must be a list")
        event_list = tuple(dict.fromkeys(events))
        if not event_list:
            raise ValidationError("At least one event is required")
        for event in event_list:
            if event not in WEBHOOK_EVENTS:
                raise ValidationError(f"Invalid event: {event}")

        retries = self.default_retry_policy.max_retries if max_retries is None else max_retries
        delay_ms = self.default_retry_policy.retry_delay_ms if retry_delay_ms is None else retry_delay_ms
        if not isinstance(retries, int) or isinstance(retries, bool) or retries < 1:
            raise ValidationError("maxRetries must be a positive integer")
        if not isinstance(delay_ms, int) or isinstance(delay_ms, bool) or delay_ms < 0:
            raise ValidationError("retryDelayMs must be a non-negative integer")

        subscription = WebhookSubscription(
            id=str(uuid.uuid4()),
            client_id=client_id,
            webhook_url=webhook_url,
            events=event_list,
            secret=secret or secrets.token_hex(32),
            retry_policy=RetryPolicy(max_retries=retries, retry_delay_ms=delay_ms),
            is_active=is_active,
        )
        self.subscriptions.create(subscription)
        logger.info(
            f"Webhook registered | client_id={client_id} | url={webhook_url} | events={','.join(event_list)}"
        )
        return subscription

    def list_for_client(self, client_id: str) -> list[WebhookSubscription]:
        return self.subscriptions.list_for_client(client_id)

    def stats_for_client(self, client_id: str) -> list[dict[str, Any]]:
        return [
            {
                "id": s.id,
                "webhookUrl": s.webhook_url,
                "events": list(s.events),
                "isActive": s.is_active,
                "totalDeliveries": s.total_deliveries,
                "failedDeliveries": s.failed_deliveries,
                "successRate": round(s.success_rate, 2),
                "lastTriggeredAt": isoformat(s.last_triggered_at),
            }
            for s in self.subscriptions.list_for_client(client_id)
        ]

    def _owned(self, subscription_id: str, client_id: Optional[str]) -> WebhookSubscription:
        subscription = self.subscriptions.get(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Webhook {subscription_id} not found")
        if client_id is not None and subscription.client_id != client_id:
            raise AuthorizationError("Webhook belongs to another client")
        return subscription

    def deactivate(self, subscription_id: str, client_id: Optional[str] = None) -> None:
        self._owned(subscription_id, client_id)
        self.subscriptions.deactivate(subscription_id)
        logger.info(f"Webhook deactivated | id={subscription_id}")

    def delete(self, subscription_id: str, client_id: Optional[str] = None) -> None:
        self._owned(subscription_id, client_id)
        self.subscriptions.delete(subscription_id)
        logger.info(f"Webhook deleted | id={subscription_id}")
