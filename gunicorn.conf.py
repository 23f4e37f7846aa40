"""Gunicorn configuration for the SCIM provisioning gateway.

Each worker builds its own application through the factory. Webhook
deliveries run on a per-worker background scheduler, so the scheduler is
started after fork rather than in the master process.
"""
import os

wsgi_app = "scim_provisioning.flask_app:create_app()"
bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:5000")
workers = int(os.environ.get("GUNICORN_WORKERS", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "30"))
preload_app = False


def post_fork(server, worker):
    """
    Called just after a worker has been forked.

    Secrets in /run/secrets take priority over environment variables; this
    only reports what the worker will see so misconfiguration shows up in
    the worker log rather than on the first request.
    """
    from pathlib import Path

    secrets_dir = Path("/run/secrets")
    if secrets_dir.exists() and secrets_dir.is_dir():
        secret_files = list(secrets_dir.glob("*"))
        if secret_files:
            worker.log.info(f"Found {len(secret_files)} secrets in /run/secrets")
            return

    if os.environ.get("DEMO_MODE", "false").lower() == "true":
        worker.log.warning("DEMO_MODE=true: demo signing key and bootstrap client in use")
    elif not os.environ.get("SCIM_TOKEN_SIGNING_KEY"):
        worker.log.error("SCIM_TOKEN_SIGNING_KEY is not set and /run/secrets is empty")


def worker_exit(server, worker):
    """Stop the worker's webhook scheduler without waiting on pending retries."""
    app = getattr(worker, "wsgi", None)
    services = getattr(app, "extensions", {}).get("scim") if app is not None else None
    if services is not None:
        services.shutdown()
