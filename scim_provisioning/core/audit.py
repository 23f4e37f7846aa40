"""Request audit trail for authenticated SCIM calls.

Every request that reached an authorized handler produces one entry:
endpoint, method, client id, status, latency, client IP, resource id and
error message. Entries always go to the module logger; when a directory is
configured they are also appended as HMAC-SHA256-signed JSON lines.
"""
from __future__ import annotations
import collections
import datetime
import hashlib
import hmac
import json
import logging
import sys
import threading
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

from scim_provisioning.core.models import isoformat, utcnow

logger = logging.getLogger(__name__)

AUDIT_LOG_FILENAME = "scim-requests.jsonl"


@dataclass(frozen=True)
class RequestLogEntry:
    endpoint: str
    method: str
    client_id: str
    status_code: int
    duration_ms: int
    ip_address: Optional[str] = None
    resource_id: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime.datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        event = asdict(self)
        event["timestamp"] = isoformat(self.timestamp)
        return event


def sign_event(event: dict[str, Any], signing_key: bytes) -> str:
    """Generate HMAC-SHA256 signature for an audit event."""
    if not signing_key:
        return ""
    # Canonical JSON representation for signing
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


class RequestAuditLog:
    """Writes request entries and keeps a bounded recent history per process."""

    def __init__(self, log_dir: Optional[str] = None, signing_key: str = "", history_size: int = 1000):
        self.log_dir = Path(log_dir) if log_dir else None
        self._signing_key = signing_key.encode("utf-8") if signing_key else b""
        self._recent: collections.deque[RequestLogEntry] = collections.deque(maxlen=history_size)
        self._lock = threading.Lock()

    @property
    def log_file(self) -> Optional[Path]:
        return self.log_dir / AUDIT_LOG_FILENAME if self.log_dir else None

    def record(self, entry: RequestLogEntry) -> bool:
        """Log an entry. Never raises; returns False if the file write failed."""
        with self._lock:
            self._recent.append(entry)
        logger.info(
            f"SCIM request | {entry.method} {entry.endpoint} | client_id={entry.client_id} | "
            f"status={entry.status_code} | duration_ms={entry.duration_ms}"
            + (f" | error={entry.error_message}" if entry.error_message else "")
        )
        if self.log_file is None:
            return True
        try:
            self._append(entry)
            return True
        except OSError as exc:
            print(f"[audit] Warning: Failed to write request log entry: {exc}", file=sys.stderr)
            return False

    def _append(self, entry: RequestLogEntry) -> None:
        event = entry.to_dict()
        signature = sign_event(event, self._signing_key)
        if signature:
            event["signature"] = signature
        with self._lock:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            # Append to JSONL file (one JSON object per line)
            with self.log_file.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event, ensure_ascii=False) + "\n")

    def recent_for_client(self, client_id: str, limit: int = 100) -> list[RequestLogEntry]:
        """Most recent entries for a client, newest first."""
        with self._lock:
            entries = [e for e in reversed(self._recent) if e.client_id == client_id]
        return entries[:limit]

    def verify(self) -> tuple[int, int]:
        """Verify all signatures in the log file.

        Returns:
            Tuple of (total_events, valid_signatures)
        """
        if self.log_file is None or not self.log_file.exists():
            return 0, 0

        total = 0
        valid = 0
        with self.log_file.open("r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                total += 1
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                stored_sig = event.pop("signature", "")
                if stored_sig and hmac.compare_digest(stored_sig, sign_event(event, self._signing_key)):
                    valid += 1
        return total, valid
