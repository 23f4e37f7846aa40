"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

DEMO_TOKEN_SIGNING_KEY = "demo-scim-token-signing-key-change-in-production"
DEMO_BOOTSTRAP_CLIENT_ID = "scim-demo-client"
DEMO_BOOTSTRAP_CLIENT_SECRET = "demo-scim-client-secret"


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    # Priority 1: Read from /run/secrets
    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    # Priority 2: Fallback to environment variable
    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _env_int(var_name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be an integer, got {raw!r}")
    if value < minimum:
        raise RuntimeError(f"Environment variable {var_name} must be >= {minimum}")
    return value


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool

    # Flask
    secret_key: str

    # Tokens
    token_signing_key: str = ""
    token_ttl_seconds: int = 3600

    # SCIM protocol
    base_url: str = "http://localhost:5000/scim/v2"
    default_page_size: int = 100
    max_page_size: int = 1000
    json_max_size_bytes: int = 1024 * 1024
    bulk_max_operations: int = 1000
    bulk_max_payload_bytes: int = 10 * 1024 * 1024

    # Webhooks
    webhook_timeout_seconds: float = 10.0
    webhook_max_workers: int = 8
    webhook_default_max_retries: int = 3
    webhook_default_retry_delay_ms: int = 1000

    # Audit
    audit_log_dir: str = ""
    audit_log_signing_key: str = ""

    # Initial client (created at startup when client id is set)
    bootstrap_client_id: str = ""
    bootstrap_client_secret: str = ""
    bootstrap_scopes: list[str] = field(default_factory=list)


def _get_or_generate(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable or use demo default."""
    value = os.environ.get(var_name)
    if value:
        return value

    if demo_mode and demo_default is not None:
        print(f"[demo-mode] Using default for {var_name}")
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    # ─────────────────────────────────────────────────────────────────────────
    # Secrets (Priority: /run/secrets > environment variables > demo defaults)
    # ─────────────────────────────────────────────────────────────────────────

    secret_key = _load_secret_from_file("flask_secret_key", "FLASK_SECRET_KEY")
    if not secret_key:
        if not demo_mode:
            raise RuntimeError("FLASK_SECRET_KEY not found in /run/secrets or environment")
        secret_key = secrets.token_urlsafe(48)
        print("[demo-mode] Generated temporary FLASK_SECRET_KEY")

    token_signing_key = _load_secret_from_file("scim_token_signing_key", "SCIM_TOKEN_SIGNING_KEY")
    if not token_signing_key:
        if not demo_mode:
            raise RuntimeError("SCIM_TOKEN_SIGNING_KEY not found in /run/secrets or environment")
        token_signing_key = DEMO_TOKEN_SIGNING_KEY
        print("[demo-mode] Using demo SCIM_TOKEN_SIGNING_KEY")

    audit_log_signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""

    bootstrap_client_id = _get_or_generate(
        "SCIM_BOOTSTRAP_CLIENT_ID",
        demo_default=DEMO_BOOTSTRAP_CLIENT_ID,
        required=False,
        demo_mode=demo_mode,
    )
    bootstrap_client_secret = _load_secret_from_file(
        "scim_bootstrap_client_secret", "SCIM_BOOTSTRAP_CLIENT_SECRET"
    ) or (DEMO_BOOTSTRAP_CLIENT_SECRET if demo_mode else "")
    if bootstrap_client_id and not bootstrap_client_secret:
        raise RuntimeError("SCIM_BOOTSTRAP_CLIENT_SECRET is required when SCIM_BOOTSTRAP_CLIENT_ID is set.")

    default_bootstrap_scopes = "read:users write:users delete:users read:groups write:groups delete:groups bulk:operations"
    bootstrap_scopes = [
        scope.strip()
        for scope in os.environ.get("SCIM_BOOTSTRAP_SCOPES", default_bootstrap_scopes).replace(",", " ").split()
        if scope.strip()
    ]

    # ─────────────────────────────────────────────────────────────────────────
    # Protocol limits
    # ─────────────────────────────────────────────────────────────────────────

    base_url = os.environ.get("SCIM_BASE_URL", "http://localhost:5000/scim/v2").rstrip("/")
    default_page_size = _env_int("SCIM_DEFAULT_PAGE_SIZE", 100)
    max_page_size = _env_int("SCIM_MAX_PAGE_SIZE", 1000, minimum=1)
    if default_page_size > max_page_size:
        raise RuntimeError("SCIM_DEFAULT_PAGE_SIZE must not exceed SCIM_MAX_PAGE_SIZE")

    config = AppConfig(
        demo_mode=demo_mode,
        secret_key=secret_key,
        token_signing_key=token_signing_key,
        token_ttl_seconds=_env_int("SCIM_TOKEN_TTL_SECONDS", 3600, minimum=1),
        base_url=base_url,
        default_page_size=default_page_size,
        max_page_size=max_page_size,
        json_max_size_bytes=_env_int("SCIM_JSON_MAX_SIZE_BYTES", 1024 * 1024, minimum=1),
        bulk_max_operations=_env_int("SCIM_BULK_MAX_OPERATIONS", 1000, minimum=1),
        bulk_max_payload_bytes=_env_int("SCIM_BULK_MAX_PAYLOAD_BYTES", 10 * 1024 * 1024, minimum=1),
        webhook_timeout_seconds=float(_env_int("WEBHOOK_TIMEOUT_SECONDS", 10, minimum=1)),
        webhook_max_workers=_env_int("WEBHOOK_MAX_WORKERS", 8, minimum=1),
        webhook_default_max_retries=_env_int("WEBHOOK_DEFAULT_MAX_RETRIES", 3, minimum=1),
        webhook_default_retry_delay_ms=_env_int("WEBHOOK_DEFAULT_RETRY_DELAY_MS", 1000),
        audit_log_dir=os.environ.get("AUDIT_LOG_DIR", "").strip(),
        audit_log_signing_key=audit_log_signing_key,
        bootstrap_client_id=bootstrap_client_id,
        bootstrap_client_secret=bootstrap_client_secret,
        bootstrap_scopes=bootstrap_scopes,
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(f"[settings] Mode={mode_label}; base_url={base_url}; bulk_max_operations={config.bulk_max_operations}")
    if demo_mode:
        print("[settings] WARNING: Demo credentials in use. Do not deploy with these defaults.")

    return config
