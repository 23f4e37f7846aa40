"""Service wiring: repositories, token authority, gateway, bulk, webhooks.

``build_services()`` assembles one ``ServiceContainer`` from an ``AppConfig``.
Every collaborator can be injected, which is how tests swap in a manual
scheduler, a stub HTTP session or a low-cost password hasher.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

import requests
from argon2 import PasswordHasher

from scim_provisioning.config.settings import AppConfig
from scim_provisioning.core.audit import RequestAuditLog
from scim_provisioning.core.bulk_processor import BulkProcessor
from scim_provisioning.core.models import RetryPolicy
from scim_provisioning.core.repositories import (
    ClientRepository,
    DocumentRepository,
    InMemoryClientRepository,
    InMemoryDocumentRepository,
    InMemoryTokenRepository,
    InMemoryWebhookRepository,
    TokenRepository,
    WebhookRepository,
)
from scim_provisioning.core.resource_gateway import ResourceGateway
from scim_provisioning.core.scheduler import BackgroundDeliveryScheduler, DeliveryScheduler
from scim_provisioning.core.token_authority import TokenAuthority
from scim_provisioning.core.webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    config: AppConfig
    token_authority: TokenAuthority
    gateway: ResourceGateway
    bulk: BulkProcessor
    dispatcher: WebhookDispatcher
    scheduler: DeliveryScheduler
    audit_log: RequestAuditLog

    def start(self) -> None:
        self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.shutdown(wait=False)


def build_services(
    cfg: AppConfig,
    *,
    identities: Optional[DocumentRepository] = None,
    org_units: Optional[DocumentRepository] = None,
    clients: Optional[ClientRepository] = None,
    tokens: Optional[TokenRepository] = None,
    webhooks: Optional[WebhookRepository] = None,
    scheduler: Optional[DeliveryScheduler] = None,
    http_session: Optional[requests.Session] = None,
    password_hasher: Optional[PasswordHasher] = None,
) -> ServiceContainer:
    """Assemble the service graph for one application instance."""
    audit_log = RequestAuditLog(cfg.audit_log_dir or None, cfg.audit_log_signing_key)
    token_authority = TokenAuthority(
        clients if clients is not None else InMemoryClientRepository(),
        tokens if tokens is not None else InMemoryTokenRepository(),
        cfg.token_signing_key,
        default_token_ttl=cfg.token_ttl_seconds,
        password_hasher=password_hasher,
        audit_log=audit_log,
    )

    scheduler = scheduler or BackgroundDeliveryScheduler(max_workers=cfg.webhook_max_workers)
    dispatcher = WebhookDispatcher(
        webhooks if webhooks is not None else InMemoryWebhookRepository(),
        scheduler,
        http_session=http_session,
        timeout=cfg.webhook_timeout_seconds,
        subscriber_filter=token_authority.client_can_receive,
        default_retry_policy=RetryPolicy(
            max_retries=cfg.webhook_default_max_retries,
            retry_delay_ms=cfg.webhook_default_retry_delay_ms,
        ),
    )

    gateway = ResourceGateway(
        identities if identities is not None else InMemoryDocumentRepository(),
        org_units if org_units is not None else InMemoryDocumentRepository(),
        dispatcher=dispatcher,
        base_url=cfg.base_url,
        default_page_size=cfg.default_page_size,
        max_page_size=cfg.max_page_size,
    )
    bulk = BulkProcessor(
        gateway,
        max_operations=cfg.bulk_max_operations,
        max_payload_bytes=cfg.bulk_max_payload_bytes,
    )

    if cfg.bootstrap_client_id:
        _bootstrap_client(token_authority, cfg)

    return ServiceContainer(
        config=cfg,
        token_authority=token_authority,
        gateway=gateway,
        bulk=bulk,
        dispatcher=dispatcher,
        scheduler=scheduler,
        audit_log=audit_log,
    )


def _bootstrap_client(token_authority: TokenAuthority, cfg: AppConfig) -> None:
    """Register the configured initial client once."""
    if token_authority.clients.get(cfg.bootstrap_client_id) is not None:
        return
    token_authority.register_client(
        "Bootstrap client",
        cfg.bootstrap_scopes,
        client_id=cfg.bootstrap_client_id,
        client_secret=cfg.bootstrap_client_secret,
        created_by="bootstrap",
    )
    print(f"[services] Registered bootstrap SCIM client: {cfg.bootstrap_client_id}")
