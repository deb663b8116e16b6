#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Generate an RSA key pair and a donor access token for local development.

Production tokens come from the identity provider; this script only lets a
developer call the booking API against a local server. Export the printed
JWT_PUBLIC_KEY before starting the app.
"""

import argparse
import os
import sys
from datetime import datetime, timedelta, timezone

import jwt

# Add the parent directory to the path so we can import from api
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.auth import generate_key_pair


def issue_token(private_key: str, donor_id: str, org_id: str, permissions=None, ttl_minutes: int = 60) -> str:
    """Sign an RS256 access token carrying the donor claims."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": donor_id,
        "org_id": org_id,
        "permissions": permissions or [],
        "iat": now,
        "exp": now + timedelta(minutes=ttl_minutes),
        "type": "access"
    }
    return jwt.encode(payload, private_key, algorithm="RS256")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--donor-id", required=True)
    parser.add_argument("--org-id", required=True)
    parser.add_argument("--permission", action="append", default=[], help="Repeat for several permissions")
    parser.add_argument("--ttl-minutes", type=int, default=60)
    args = parser.parse_args(argv)

    private_key, public_key = generate_key_pair()
    token = issue_token(private_key, args.donor_id, args.org_id, args.permission, args.ttl_minutes)

    newline = "\\n"
    print(f'JWT_PUBLIC_KEY="{public_key.replace(chr(10), newline)}"')
    print()
    print(f"Authorization: Bearer {token}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
