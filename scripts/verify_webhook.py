#!/usr/bin/env python3
"""
Check the X-SCIM-Signature of a webhook delivery.

Subscribers can run this against a captured request body to confirm that a
delivery came from the gateway:

    python scripts/verify_webhook.py body.json <signature> --secret <secret>
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from scim_provisioning.core.webhooks import sign_payload, verify_signature


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify a SCIM webhook signature")
    parser.add_argument("body", type=Path, help="File holding the raw request body, byte for byte")
    parser.add_argument("signature", help="Value of the X-SCIM-Signature header")
    parser.add_argument(
        "--secret",
        default=os.environ.get("SCIM_WEBHOOK_SECRET", ""),
        help="Subscription secret (default: $SCIM_WEBHOOK_SECRET)",
    )
    parser.add_argument("--show-expected", action="store_true", help="Print the expected signature on mismatch")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if not args.secret:
        print("[verify_webhook] ✗ No secret given (use --secret or SCIM_WEBHOOK_SECRET)", file=sys.stderr)
        return 2
    if not args.body.exists():
        print(f"[verify_webhook] ✗ Cannot find {args.body}", file=sys.stderr)
        return 2

    body = args.body.read_bytes()
    if verify_signature(body, args.signature.strip(), args.secret):
        print("[verify_webhook] ✓ Signature valid")
        return 0

    print("[verify_webhook] ✗ Signature mismatch", file=sys.stderr)
    if args.show_expected:
        print(f"[verify_webhook] expected={sign_payload(body, args.secret)}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
