#!/usr/bin/env python3
"""Verify the HMAC signatures of the SCIM request audit log.

Reads AUDIT_LOG_DIR and AUDIT_LOG_SIGNING_KEY (or the matching /run/secrets
file) the same way the application does. Exit status is 0 only when every
line carries a valid signature.
"""
from __future__ import annotations

import argparse
import os
import sys

from scim_provisioning.config.settings import _load_secret_from_file
from scim_provisioning.core.audit import RequestAuditLog


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Verify SCIM request audit log signatures")
    parser.add_argument("--log-dir", default=os.environ.get("AUDIT_LOG_DIR", ""), help="Audit log directory")
    args = parser.parse_args(argv)

    if not args.log_dir:
        print("[verify_audit] ✗ No audit log directory (use --log-dir or AUDIT_LOG_DIR)", file=sys.stderr)
        return 2

    signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""
    total, valid = RequestAuditLog(args.log_dir, signing_key).verify()
    print(f"Audit log: {valid}/{total} events with valid signatures")
    return 0 if total == valid else 1


if __name__ == "__main__":
    sys.exit(main())
