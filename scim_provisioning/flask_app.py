"""Flask application factory and bootstrap.

This module provides the create_app() factory function for initializing
the Flask application with all blueprints, middleware, and services.
"""
from __future__ import annotations
import time
from typing import Optional

from flask import Flask, g, request
from werkzeug.middleware.proxy_fix import ProxyFix

from scim_provisioning.config import AppConfig, load_settings
from scim_provisioning.core.audit import RequestLogEntry
from scim_provisioning.core.services import ServiceContainer, build_services


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(config: Optional[AppConfig] = None, services: Optional[ServiceContainer] = None) -> Flask:
    """Create and configure Flask application.

    Args:
        config: Settings; loaded from the environment when omitted
        services: Pre-built service graph; built from ``config`` when omitted
    """
    cfg = config or (services.config if services is not None else load_settings())
    services = services or build_services(cfg)

    app = Flask(__name__)

    # Store config and services for easy access in routes
    app.config["APP_CONFIG"] = cfg
    app.config["SECRET_KEY"] = cfg.secret_key
    app.config["MAX_CONTENT_LENGTH"] = max(cfg.bulk_max_payload_bytes, cfg.json_max_size_bytes)
    app.extensions["scim"] = services

    # Trust X-Forwarded-* headers from proxy (nginx)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)  # type: ignore

    # Register blueprints
    from scim_provisioning.api import discovery, errors, health, oauth, scim, webhooks

    app.register_blueprint(health.bp)
    app.register_blueprint(oauth.bp)
    app.register_blueprint(discovery.bp)
    app.register_blueprint(webhooks.bp)
    app.register_blueprint(scim.bp)

    # Register error handlers
    errors.register_error_handlers(app)

    _register_middleware(app, services)

    services.start()

    # Log startup info
    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    print(f"[flask_app] Mode={mode_label}")
    print(f"[flask_app] SCIM 2.0 API registered at /scim/v2")

    if cfg.demo_mode:
        print("[flask_app] WARNING: Demo mode active - do not deploy with demo credentials")

    return app


def _register_middleware(app: Flask, services: ServiceContainer):
    """Register request timing, correlation id and audit hooks."""

    @app.before_request
    def start_timer() -> None:
        g.request_started = time.perf_counter()

    @app.after_request
    def record_request(response):
        correlation_id = request.headers.get("X-Correlation-Id")
        if correlation_id:
            response.headers["X-Correlation-Id"] = correlation_id

        client = g.get("scim_client")
        if client is None:
            return response

        started = g.get("request_started", time.perf_counter())
        error_message = None
        if response.status_code >= 400:
            body = response.get_json(silent=True) or {}
            error_message = body.get("detail") if isinstance(body, dict) else None
        services.audit_log.record(RequestLogEntry(
            endpoint=request.path,
            method=request.method,
            client_id=client.client_id,
            status_code=response.status_code,
            duration_ms=int((time.perf_counter() - started) * 1000),
            ip_address=request.remote_addr,
            resource_id=(request.view_args or {}).get("resource_id"),
            error_message=error_message,
        ))
        return response
