"""Pytest shared fixtures for the SCIM gateway tests."""
import json
import pathlib
import sys
from typing import Optional

# Add project root to Python path (scripts/ is not an installed package)
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests
from argon2 import PasswordHasher

from scim_provisioning.config import AppConfig
from scim_provisioning.core.models import ALL_SCOPES
from scim_provisioning.core.repositories import InMemoryDocumentRepository
from scim_provisioning.core.scheduler import DeliveryScheduler
from scim_provisioning.core.services import build_services
from scim_provisioning.flask_app import create_app

TEST_SIGNING_KEY = "test-signing-key-0123456789abcdef0123456789"
BASE_URL = "https://scim.example.test/scim/v2"
SCIM_JSON = "application/scim+json"

# Argon2 parameters kept minimal so client registration stays fast in tests
FAST_HASHER = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


# ─────────────────────────────────────────────────────────────────────────────
# Test doubles
# ─────────────────────────────────────────────────────────────────────────────
class ManualScheduler(DeliveryScheduler):
    """Queues tasks instead of running them; tests drain the queue explicitly."""

    def __init__(self):
        super().__init__()
        self.pending: list = []
        self.submitted: list = []
        self._running = False

    def submit(self, task, delay_seconds: float = 0.0) -> None:
        self.pending.append((task, delay_seconds))
        self.submitted.append((task, delay_seconds))

    def start(self) -> None:
        self._running = True

    def shutdown(self, wait: bool = True) -> None:
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def run_pending(self, max_rounds: int = 20) -> int:
        """Run queued tasks, including retries they schedule. Returns tasks run."""
        executed = 0
        for _ in range(max_rounds):
            if not self.pending:
                break
            batch, self.pending = self.pending, []
            for task, _delay in batch:
                self.handler(task)
                executed += 1
        return executed


class _StubResponse:
    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.text = ""


class StubSession:
    """Records webhook POSTs and answers with scripted status codes."""

    def __init__(self):
        self.calls: list[dict] = []
        self.responses: list = []  # ints (status codes) or exceptions, consumed in order
        self.default_status = 200

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "data": data, "headers": dict(headers or {}), "timeout": timeout})
        outcome = self.responses.pop(0) if self.responses else self.default_status
        if isinstance(outcome, Exception):
            raise outcome
        return _StubResponse(outcome)

    def payloads(self) -> list[dict]:
        return [json.loads(call["data"]) for call in self.calls]


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig(
        demo_mode=True,
        secret_key="test-flask-secret",
        token_signing_key=TEST_SIGNING_KEY,
        base_url=BASE_URL,
        default_page_size=100,
        max_page_size=1000,
        audit_log_dir=str(tmp_path / "audit"),
        audit_log_signing_key="test-audit-key",
    )


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def http_session() -> StubSession:
    return StubSession()


@pytest.fixture
def identities() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture
def org_units() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture
def services(app_config, scheduler, http_session, identities, org_units):
    return build_services(
        app_config,
        identities=identities,
        org_units=org_units,
        scheduler=scheduler,
        http_session=http_session,
        password_hasher=FAST_HASHER,
    )


@pytest.fixture
def app(app_config, services):
    flask_app = create_app(app_config, services)
    flask_app.config["TESTING"] = True
    yield flask_app
    services.shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def register_client(services):
    """Factory: register a SCIM client, return (client_id, plain_secret)."""
    def _register(scopes=ALL_SCOPES, **kwargs):
        registered, secret = services.token_authority.register_client("Test client", scopes, **kwargs)
        return registered.client_id, secret
    return _register


@pytest.fixture
def make_token(services, register_client):
    """Factory: register a client and return a bearer token string."""
    def _make(scopes=ALL_SCOPES, **kwargs) -> str:
        client_id, secret = register_client(scopes, **kwargs)
        return services.token_authority.issue_token(client_id, secret).token
    return _make


@pytest.fixture
def token(make_token) -> str:
    return make_token()


def auth_headers(token: Optional[str], **extra) -> dict:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    headers.update(extra)
    return headers


def scim_json(client, method: str, path: str, token: Optional[str] = None, body=None, **kwargs):
    """Send a SCIM JSON request through the Flask test client."""
    return client.open(
        path,
        method=method,
        data=json.dumps(body) if body is not None else None,
        content_type=SCIM_JSON if body is not None else None,
        headers=auth_headers(token, **kwargs.pop("headers", {})),
        **kwargs,
    )


def user_payload(email: str = "alice@example.com", given: str = "Alice", family: str = "Smith", **extra) -> dict:
    body = {
        "schemas": ["urn:ietf:params:scim:schemas:core:2.0:User"],
        "userName": email,
        "name": {"givenName": given, "familyName": family},
    }
    body.update(extra)
    return body


def group_payload(display_name: str = "Engineering", **extra) -> dict:
    body = {
        "schemas": ["urn:ietf:params:scim:schemas:core:2.0:Group"],
        "displayName": display_name,
    }
    body.update(extra)
    return body
